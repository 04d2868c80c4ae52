from __future__ import annotations

import random
from collections.abc import Generator
from dataclasses import replace
from typing import Any

import fakeredis
import pytest
from fastapi.testclient import TestClient

from consumer_game.config import GameConfig
from consumer_game.infra.redis_broker import RedisBroker

# Everything timer-driven is pushed far into the future; tests that exercise a
# timer shrink just that one with dataclasses.replace.
QUIET = GameConfig(
    difficulty_period_s=3600,
    queue_add_min_delay_s=3600,
    queue_add_max_delay_s=3600,
    fanout_period_s=3600,
    lock_grace_s=3600,
)


class RecordingBroker:
    """MessageBrokerAdapter that remembers every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.closed = False

    def create_queue(self, name: str) -> None:
        self.calls.append(("create_queue", name))

    def delete_queue(self, name: str) -> None:
        self.calls.append(("delete_queue", name))

    def purge_queue(self, name: str) -> None:
        self.calls.append(("purge_queue", name))

    def publish(self, queue_name: str, payload: str) -> None:
        self.calls.append(("publish", queue_name, payload))

    def consume_one(self, queue_name: str) -> str | None:
        self.calls.append(("consume_one", queue_name))
        return None

    def close(self) -> None:
        self.closed = True

    def actions(self, action: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == action]


class FailingBroker(RecordingBroker):
    """Every operation blows up after being recorded."""

    def create_queue(self, name: str) -> None:
        super().create_queue(name)
        raise ConnectionError("broker down")

    def delete_queue(self, name: str) -> None:
        super().delete_queue(name)
        raise ConnectionError("broker down")

    def purge_queue(self, name: str) -> None:
        super().purge_queue(name)
        raise ConnectionError("broker down")

    def publish(self, queue_name: str, payload: str) -> None:
        super().publish(queue_name, payload)
        raise ConnectionError("broker down")

    def consume_one(self, queue_name: str) -> str | None:
        super().consume_one(queue_name)
        raise ConnectionError("broker down")


class RecordingSink:
    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []

    def publish(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)

    def types(self) -> list[str]:
        return [str(p["type"]) for p in self.payloads]

    def of_type(self, type_: str) -> list[dict[str, Any]]:
        return [p for p in self.payloads if p["type"] == type_]


@pytest.fixture()
def quiet_config() -> GameConfig:
    return QUIET


@pytest.fixture()
def fast_config() -> GameConfig:
    """Quiet config with a short lock grace period."""

    return replace(QUIET, lock_grace_s=0.1)


@pytest.fixture()
def recording_broker() -> RecordingBroker:
    return RecordingBroker()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def client_and_redis() -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient running the full app against fakeredis."""

    from consumer_game.main import create_app

    r = fakeredis.FakeRedis(decode_responses=True)
    app = create_app(QUIET, broker=RedisBroker(r), rng=random.Random(7))
    with TestClient(app) as c:
        yield c, r
