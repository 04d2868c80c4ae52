from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from consumer_game.core.transitions import BrokerOp
from consumer_game.infra.broker import MessageBrokerAdapter

logger = logging.getLogger(__name__)


class BrokerMirror:
    """Fire-and-forget broker side effects, applied in issue order.

    Contract:
      - `submit(op, generation=...)` never blocks and never raises. At most
        `max_backlog` ops wait; anything submitted past that is dropped with a
        warning.
      - ops run one at a time on a single worker thread (broker clients block).
      - an op whose generation is stale by the time it is picked up is skipped,
        and a completion for a stale generation is discarded.
      - failures are logged and dropped; game state never depends on them.
    """

    def __init__(
        self,
        broker: MessageBrokerAdapter,
        *,
        current_generation: Callable[[], int],
        max_backlog: int = 1000,
    ) -> None:
        self._broker = broker
        self._current_generation = current_generation
        self._pending: asyncio.Queue[tuple[int, BrokerOp]] = asyncio.Queue(maxsize=max_backlog)
        self._dropped = 0
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="broker-mirror")
        self._task: asyncio.Task[None] | None = None

    @property
    def broker(self) -> MessageBrokerAdapter:
        return self._broker

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain(), name="broker-mirror")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._executor.shutdown(wait=False, cancel_futures=True)

    @property
    def backlog(self) -> int:
        return self._pending.qsize()

    @property
    def dropped(self) -> int:
        return self._dropped

    def submit(self, op: BrokerOp, *, generation: int) -> None:
        try:
            self._pending.put_nowait((generation, op))
        except asyncio.QueueFull:
            self._dropped += 1
            # Warn on the first drop and every hundredth after it.
            if self._dropped % 100 == 1:
                logger.warning(
                    "Broker backlog full (%d ops); dropped %s for %s (%d dropped so far)",
                    self._pending.maxsize,
                    op.action,
                    op.queue,
                    self._dropped,
                )

    async def join(self) -> None:
        """Wait until every submitted op has been attempted."""

        await self._pending.join()

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            generation, op = await self._pending.get()
            try:
                if generation != self._current_generation():
                    logger.debug("Skipping stale broker %s for %s (generation %s)", op.action, op.queue, generation)
                    continue
                try:
                    await loop.run_in_executor(self._executor, self._apply, op)
                except Exception:
                    logger.warning("Broker %s failed for queue %s", op.action, op.queue, exc_info=True)
                    continue
                if generation != self._current_generation():
                    logger.debug("Discarding broker %s result for stale generation %s", op.action, generation)
            finally:
                self._pending.task_done()

    def _apply(self, op: BrokerOp) -> None:
        b = self._broker
        if op.action == "create_queue":
            b.create_queue(op.queue)
        elif op.action == "delete_queue":
            b.delete_queue(op.queue)
        elif op.action == "purge_queue":
            b.purge_queue(op.queue)
        elif op.action == "publish":
            b.publish(op.queue, op.payload or "")
        elif op.action == "consume_one":
            b.consume_one(op.queue)
        else:
            raise ValueError(f"Unknown broker action: {op.action}")
