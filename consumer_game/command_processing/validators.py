from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from consumer_game.api.models import GameState, QueueState


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to validators.

    Keep this tight and serializable-ish so we can safely log it.
    """

    command: str
    queue: str | None = None


def require_queue(*, ctx: ValidationContext, state: GameState) -> QueueState:
    queue = state.queues.get(ctx.queue or "")
    if queue is None:
        raise ValueError(f'Queue "{ctx.queue}" not found')
    return queue


class CommandValidator(ABC):
    """A small, composable validation unit for an incoming command."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class GameOverValidator(CommandValidator):
    """Deny every mutating command once the session has ended."""

    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        if state.game_over:
            raise ValueError("Game over. Use reset to start a new game.")


@dataclass(frozen=True, slots=True)
class QueueExistsValidator(CommandValidator):
    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        require_queue(ctx=ctx, state=state)


@dataclass(frozen=True, slots=True)
class QueueUnlockedValidator(CommandValidator):
    """Locked queues only accept purge."""

    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        queue = require_queue(ctx=ctx, state=state)
        if queue.locked:
            raise ValueError(f'Queue "{queue.name}" is locked. Use purge {queue.name} to recover it.')


@dataclass(frozen=True, slots=True)
class QueueNotEmptyValidator(CommandValidator):
    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        queue = require_queue(ctx=ctx, state=state)
        if not queue.messages:
            raise ValueError(f'Queue "{queue.name}" is empty')


@dataclass(frozen=True, slots=True)
class QueueLockedValidator(CommandValidator):
    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        queue = require_queue(ctx=ctx, state=state)
        if not queue.locked:
            raise ValueError(f'Queue "{queue.name}" is not locked')


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    validators: tuple[CommandValidator, ...]

    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        for v in self.validators:
            v.validate(ctx=ctx, state=state)


_CONSUME_PIPELINE = ValidatorPipeline(
    validators=(
        GameOverValidator(),
        QueueExistsValidator(),
        QueueUnlockedValidator(),
        QueueNotEmptyValidator(),
    )
)

# Order matters: the first failing validator decides the error message.
DEFAULT_COMMAND_PIPELINES: dict[str, ValidatorPipeline] = {
    "ack": _CONSUME_PIPELINE,
    "reject": _CONSUME_PIPELINE,
    "purge": ValidatorPipeline(
        validators=(
            GameOverValidator(),
            QueueExistsValidator(),
            QueueLockedValidator(),
        )
    ),
}


def pipeline_for_command(command: str) -> ValidatorPipeline:
    pipe = DEFAULT_COMMAND_PIPELINES.get(command)
    if pipe is None:
        raise ValueError(f"Unknown command: {command}")
    return pipe
