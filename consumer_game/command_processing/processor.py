from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from consumer_game.api.models import CommandRequest, CommandResult
from consumer_game.core.transitions import Transition, consume, purge
from consumer_game.session import GameSession

logger = logging.getLogger(__name__)


def _validation_message(e: ValidationError, raw: Mapping[str, Any]) -> str:
    errors = e.errors()
    for err in errors:
        if tuple(err.get("loc", ())) == ("command",):
            command = raw.get("command")
            return "command is required" if command is None else f"Unknown command: {command}"
    if not errors:
        return "Invalid command"
    return str(errors[0].get("msg", "Invalid command")).removeprefix("Value error, ")


class CommandProcessor:
    """Applies player commands to the session.

    Results are meant for the issuing connection only; the state changes they
    cause reach everyone through the session's normal broadcasts.
    """

    def __init__(self, session: GameSession) -> None:
        self._session = session

    async def handle(self, raw: Any) -> dict[str, Any]:
        """Entry point for decoded inbound frames / request bodies.

        Returns the payload to send back to the requester: a `state` snapshot for
        `status`, a `command_result` for everything else (including bad input).
        """

        if not isinstance(raw, Mapping):
            return CommandResult(command="", success=False, error="Invalid command").to_wire()

        try:
            request = CommandRequest.model_validate(raw)
        except ValidationError as e:
            return CommandResult(
                command=str(raw.get("command") or ""),
                success=False,
                error=_validation_message(e, raw),
            ).to_wire()

        if request.command == "status":
            return self._session.snapshot().to_wire()

        result = await self.execute(request)
        return result.to_wire()

    async def execute(self, request: CommandRequest) -> CommandResult:
        queue = request.queue or ""
        try:
            if request.command == "ack":
                return await self.ack(queue)
            if request.command == "reject":
                return await self.reject(queue)
            if request.command == "purge":
                return await self.purge(queue)
            if request.command == "reset":
                return await self.reset()
            raise ValueError(f"Unknown command: {request.command}")
        except ValueError as e:
            logger.info("Rejected %s %s: %s", request.command, queue, e)
            return CommandResult(command=request.command, success=False, error=str(e))

    async def ack(self, queue_name: str) -> CommandResult:
        t = await self._session.apply_mutation(
            lambda state: consume(state, command="ack", queue_name=queue_name, config=self._session.config)
        )
        return self._result("ack", t)

    async def reject(self, queue_name: str) -> CommandResult:
        t = await self._session.apply_mutation(
            lambda state: consume(state, command="reject", queue_name=queue_name, config=self._session.config)
        )
        return self._result("reject", t)

    async def purge(self, queue_name: str) -> CommandResult:
        t = await self._session.apply_mutation(
            lambda state: purge(state, queue_name=queue_name, config=self._session.config)
        )
        logger.info("Queue %s purged", queue_name)
        return self._result("purge", t)

    async def reset(self) -> CommandResult:
        await self._session.reset()
        return CommandResult(command="reset", success=True)

    @staticmethod
    def _result(command: str, t: Transition | None) -> CommandResult:
        outcome = t.outcome if t is not None else None
        if outcome is None:
            return CommandResult(command=command, success=True)
        return CommandResult(
            command=command,
            success=True,
            correct=outcome.correct,
            message_kind=outcome.message_kind,
            score_change=outcome.score_change,
        )
