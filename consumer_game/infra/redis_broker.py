from __future__ import annotations

import logging
from typing import cast

import redis

logger = logging.getLogger(__name__)

QUEUES_SET_KEY = "consumer_game:queues"
QUEUE_KEY_PREFIX = "consumer_game:queue:"  # + {name}


def _queue_key(name: str) -> str:
    return f"{QUEUE_KEY_PREFIX}{name}"


class RedisBroker:
    """Game queues mirrored as Redis lists (RPUSH to publish, LPOP to consume)."""

    def __init__(self, r: redis.Redis) -> None:
        self._r = r

    @classmethod
    def from_url(cls, url: str) -> "RedisBroker":
        # Payloads are JSON text, so read them back as str.
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def create_queue(self, name: str) -> None:
        # Lists only exist while non-empty; the set keeps track of declared queues.
        self._r.sadd(QUEUES_SET_KEY, name)

    def delete_queue(self, name: str) -> None:
        pipe = self._r.pipeline()
        pipe.delete(_queue_key(name))
        pipe.srem(QUEUES_SET_KEY, name)
        pipe.execute()

    def purge_queue(self, name: str) -> None:
        self._r.delete(_queue_key(name))

    def publish(self, queue_name: str, payload: str) -> None:
        self._r.rpush(_queue_key(queue_name), payload)

    def consume_one(self, queue_name: str) -> str | None:
        return cast(str | None, self._r.lpop(_queue_key(queue_name)))

    def queue_names(self) -> set[str]:
        return cast(set[str], self._r.smembers(QUEUES_SET_KEY))

    def queue_length(self, name: str) -> int:
        return cast(int, self._r.llen(_queue_key(name)))

    def close(self) -> None:
        try:
            self._r.close()
        except redis.RedisError:
            logger.debug("Ignoring error while closing Redis client", exc_info=True)
