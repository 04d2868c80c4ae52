from __future__ import annotations

from typing import Protocol
from urllib.parse import urlparse


class MessageBrokerAdapter(Protocol):
    """The narrow slice of a message broker the game mirrors its queues into.

    Calls are blocking; the game only ever invokes them from the broker mirror's
    worker thread, one at a time. Implementations raise on failure and the mirror
    logs and discards the error.
    """

    def create_queue(self, name: str) -> None:  # pragma: no cover
        ...

    def delete_queue(self, name: str) -> None:  # pragma: no cover
        ...

    def purge_queue(self, name: str) -> None:  # pragma: no cover
        ...

    def publish(self, queue_name: str, payload: str) -> None:  # pragma: no cover
        ...

    def consume_one(self, queue_name: str) -> str | None:  # pragma: no cover
        ...

    def close(self) -> None:  # pragma: no cover
        ...


def create_broker(url: str) -> MessageBrokerAdapter:
    scheme = urlparse(url).scheme.lower()

    if scheme in {"redis", "rediss", "unix"}:
        from consumer_game.infra.redis_broker import RedisBroker

        return RedisBroker.from_url(url)

    if scheme in {"amqp", "amqps"}:
        from consumer_game.infra.amqp_broker import AmqpBroker

        return AmqpBroker(url)

    raise ValueError(f"Unsupported broker URL scheme: {scheme or url!r}")
