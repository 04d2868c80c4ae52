from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

EventType = Literal[
    "queue_added",
    "queue_locked",
    "game_over",
    "message_spawned",
    "message_spawned_fanout",
    "difficulty_increased",
    "fanout_start",
    "fanout_end",
]


@dataclass(frozen=True, slots=True)
class GameEvent:
    type: EventType
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, payload: dict[str, Any] | None = None) -> "GameEvent":
        return GameEvent(type=type, payload=payload or {}, ts=datetime.now(timezone.utc))

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload}
