from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class MessageKind(StrEnum):
    good = "good"
    bad = "bad"


class QueueStatus(StrEnum):
    active = "active"
    locked = "locked"
    # Locked past its grace period; only ever seen once the game is over.
    expired = "expired"


class Message(BaseModel):
    id: str
    kind: MessageKind


class QueueState(BaseModel):
    name: str
    messages: list[Message] = Field(default_factory=list)
    status: QueueStatus = QueueStatus.active
    locked_at: datetime | None = None

    @property
    def locked(self) -> bool:
        return self.status != QueueStatus.active


class GameState(BaseModel):
    """Authoritative in-memory game state (server truth)."""

    score: int = 0
    spawn_interval_ms: int = 3000
    fanout_active: bool = False
    game_over: bool = False
    game_over_reason: str | None = None

    # Insertion order is creation order.
    queues: dict[str, QueueState] = Field(default_factory=dict)

    started_at: datetime | None = None
    generation: int = 0

    # Drives themed queue names; restarts on reset.
    queue_counter: int = 0
    total_messages: int = 0


def to_epoch_ms(ts: datetime | None) -> int | None:
    if ts is None:
        return None
    return int(ts.timestamp() * 1000)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class QueueView(WireModel):
    name: str
    # Front of the queue first.
    messages: list[MessageKind]
    locked: bool
    locked_at: int | None = None


class StateSnapshot(WireModel):
    type: Literal["state"] = "state"
    score: int
    spawn_interval_ms: int
    fanout_active: bool
    game_over: bool
    game_over_reason: str | None = None
    generation: int
    started_at: int | None = None
    queues: list[QueueView]

    @classmethod
    def from_state(cls, state: GameState) -> "StateSnapshot":
        return cls(
            score=state.score,
            spawn_interval_ms=state.spawn_interval_ms,
            fanout_active=state.fanout_active,
            game_over=state.game_over,
            game_over_reason=state.game_over_reason,
            generation=state.generation,
            started_at=to_epoch_ms(state.started_at),
            queues=[
                QueueView(
                    name=q.name,
                    messages=[m.kind for m in q.messages],
                    locked=q.locked,
                    locked_at=to_epoch_ms(q.locked_at),
                )
                for q in state.queues.values()
            ],
        )


CommandName = Literal["ack", "reject", "purge", "reset", "status"]

QUEUE_COMMANDS: frozenset[str] = frozenset({"ack", "reject", "purge"})


class CommandRequest(BaseModel):
    command: CommandName
    queue: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _queue_required(self) -> "CommandRequest":
        if self.command in QUEUE_COMMANDS and not (self.queue or "").strip():
            raise ValueError(f"Queue name is required for {self.command}")
        return self


class CommandResult(WireModel):
    type: Literal["command_result"] = "command_result"
    command: str
    success: bool
    correct: bool | None = None
    message_kind: MessageKind | None = None
    score_change: int | None = None
    error: str | None = None
