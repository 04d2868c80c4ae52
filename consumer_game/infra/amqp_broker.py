from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

import pika
from pika.adapters.blocking_connection import BlockingChannel

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AmqpBroker:
    """Game queues mirrored into an AMQP 0-9-1 broker (RabbitMQ / LavinMQ).

    Uses a pika BlockingConnection opened lazily. Any failure drops the
    connection so the next call reconnects instead of reusing a dead channel.
    """

    def __init__(self, url: str) -> None:
        self._params = pika.URLParameters(url)
        self._connection: pika.BlockingConnection | None = None
        self._channel: BlockingChannel | None = None

    def _ch(self) -> BlockingChannel:
        if self._channel is None or self._channel.is_closed:
            self._connection = pika.BlockingConnection(self._params)
            self._channel = self._connection.channel()
            logger.info("Connected to AMQP broker at %s", self._params.host)
        return self._channel

    def _run(self, op: str, fn: Callable[[BlockingChannel], T]) -> T:
        try:
            return fn(self._ch())
        except Exception:
            logger.debug("AMQP %s failed; dropping connection", op)
            self.close()
            raise

    def create_queue(self, name: str) -> None:
        self._run("queue_declare", lambda ch: ch.queue_declare(queue=name, durable=False, auto_delete=True))

    def delete_queue(self, name: str) -> None:
        self._run("queue_delete", lambda ch: ch.queue_delete(queue=name))

    def purge_queue(self, name: str) -> None:
        self._run("queue_purge", lambda ch: ch.queue_purge(queue=name))

    def publish(self, queue_name: str, payload: str) -> None:
        self._run(
            "basic_publish",
            lambda ch: ch.basic_publish(
                exchange="",
                routing_key=queue_name,
                body=payload.encode("utf-8"),
                properties=pika.BasicProperties(content_type="application/json"),
            ),
        )

    def consume_one(self, queue_name: str) -> str | None:
        method, _properties, body = self._run("basic_get", lambda ch: ch.basic_get(queue=queue_name, auto_ack=True))
        if method is None or body is None:
            return None
        return body.decode("utf-8")

    def close(self) -> None:
        conn, self._connection, self._channel = self._connection, None, None
        if conn is None or conn.is_closed:
            return
        try:
            conn.close()
        except Exception:
            logger.debug("Ignoring error while closing AMQP connection", exc_info=True)
