from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping

ENV_PREFIX = "CONSUMER_GAME_"


@dataclass(frozen=True, slots=True)
class GameConfig:
    """Every tunable of the game server.

    Durations ending in `_s` are seconds (floats are fine, tests use tiny values),
    `_ms` fields are integer milliseconds.
    """

    initial_spawn_interval_ms: int = 3000
    min_spawn_interval_ms: int = 500
    spawn_interval_step_ms: int = 200

    difficulty_period_s: float = 20.0

    queue_add_min_delay_s: float = 20.0
    queue_add_max_delay_s: float = 30.0
    max_queues: int = 10
    initial_queues: int = 2
    queue_capacity: int = 10

    lock_grace_s: float = 10.0

    fanout_period_s: float = 30.0
    fanout_duration_s: float = 5.0

    correct_score: int = 10
    wrong_score: int = -5
    purge_penalty: int = -50

    # Broker ops waiting for the mirror; newer ops are dropped beyond this.
    broker_backlog_max: int = 1000
    broker_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3001

    def __post_init__(self) -> None:
        if self.min_spawn_interval_ms <= 0:
            raise ValueError("min_spawn_interval_ms must be positive")
        if self.initial_spawn_interval_ms < self.min_spawn_interval_ms:
            raise ValueError("initial_spawn_interval_ms must be >= min_spawn_interval_ms")
        if self.queue_add_max_delay_s < self.queue_add_min_delay_s:
            raise ValueError("queue_add_max_delay_s must be >= queue_add_min_delay_s")
        if not 0 < self.initial_queues <= self.max_queues:
            raise ValueError("initial_queues must be between 1 and max_queues")
        if self.broker_backlog_max < 1:
            raise ValueError("broker_backlog_max must be at least 1")
        if self.queue_capacity < 1:
            raise ValueError("queue_capacity must be at least 1")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GameConfig":
        """Build a config from `CONSUMER_GAME_<FIELD>` variables.

        `BROKER_URL` and `LOG_LEVEL` are accepted as short forms; the prefixed
        names win when both are set.
        """

        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}

        for short in ("broker_url", "log_level"):
            raw = env.get(short.upper())
            if raw:
                overrides[short] = raw

        for f in fields(cls):
            key = f"{ENV_PREFIX}{f.name.upper()}"
            raw = env.get(key)
            if raw is None or raw == "":
                continue
            overrides[f.name] = _coerce(key=key, raw=raw, default=getattr(cls(), f.name))

        return replace(cls(), **overrides)


def _coerce(*, key: str, raw: str, default: object) -> object:
    # Field types are taken from the defaults; annotations are strings here.
    try:
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e
    return raw
