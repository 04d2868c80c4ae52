"""Timers that drive the game forward.

Each scheduler owns at most one asyncio task. `start(generation)` cancels the
previous task before creating the new one, and every tick goes through
`GameSession.apply_mutation(..., generation=generation)`, so a task that
outlives a reset turns into a no-op and exits.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from consumer_game.api.models import GameState, QueueStatus
from consumer_game.core.transitions import (
    Transition,
    add_queue,
    expire_lock,
    increase_difficulty,
    set_fanout,
    spawn,
)

if TYPE_CHECKING:
    from consumer_game.session import GameSession

logger = logging.getLogger(__name__)


class Scheduler(ABC):
    name: str = "scheduler"

    def __init__(self, session: GameSession) -> None:
        self._session = session
        self._task: asyncio.Task[None] | None = None
        self._generation: int | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def generation(self) -> int | None:
        return self._generation

    def start(self, generation: int) -> None:
        self.stop()
        self._generation = generation
        self._task = asyncio.create_task(self._run(generation), name=f"{self.name}-g{generation}")

    def stop(self) -> asyncio.Task[None] | None:
        """Cancel the running task, if any, and return it so callers can await it."""

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    def _is_current(self, generation: int) -> bool:
        return self._session.generation == generation

    async def _apply(self, generation: int, fn: Callable[[GameState], Transition]) -> Transition | None:
        try:
            return await self._session.apply_mutation(fn, generation=generation)
        except Exception:
            logger.exception("%s tick failed", self.name)
            return None

    @abstractmethod
    async def _run(self, generation: int) -> None:
        raise NotImplementedError


class SpawnScheduler(Scheduler):
    """Spawns messages every `spawn_interval_ms` (fixed for the lifetime of one task)."""

    name = "spawn"

    def __init__(self, session: GameSession) -> None:
        super().__init__(session)
        self._interval_ms = session.config.initial_spawn_interval_ms

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    def start(self, generation: int, *, interval_ms: int | None = None) -> None:
        self._interval_ms = interval_ms if interval_ms is not None else self._session.state.spawn_interval_ms
        super().start(generation)

    async def _run(self, generation: int) -> None:
        session = self._session
        interval_s = self._interval_ms / 1000
        while self._is_current(generation):
            await asyncio.sleep(interval_s)
            await self._apply(
                generation,
                lambda state: spawn(state, config=session.config, rng=session.rng, now=session.now()),
            )


class DifficultyScheduler(Scheduler):
    name = "difficulty"

    def __init__(self, session: GameSession, *, spawner: SpawnScheduler) -> None:
        super().__init__(session)
        self._spawner = spawner

    async def _run(self, generation: int) -> None:
        config = self._session.config
        while self._is_current(generation):
            await asyncio.sleep(config.difficulty_period_s)
            t = await self._apply(generation, lambda state: increase_difficulty(state, config=config))
            if t is None or not t.events or not self._is_current(generation):
                continue
            # start() cancels the running spawn task before creating its replacement.
            self._spawner.start(generation, interval_ms=t.state.spawn_interval_ms)
            logger.info("Spawn interval now %dms", t.state.spawn_interval_ms)


class QueueLifecycleScheduler(Scheduler):
    """Adds a queue after a random delay in [min, max), then schedules the next attempt."""

    name = "queue-lifecycle"

    def next_delay_s(self) -> float:
        config = self._session.config
        span = config.queue_add_max_delay_s - config.queue_add_min_delay_s
        return config.queue_add_min_delay_s + self._session.rng.random() * span

    async def _run(self, generation: int) -> None:
        config = self._session.config
        while self._is_current(generation):
            await asyncio.sleep(self.next_delay_s())
            t = await self._apply(generation, lambda state: add_queue(state, config=config))
            if t is not None and t.events:
                logger.info("Queue added: %s", next(reversed(t.state.queues)))


class FanoutModeScheduler(Scheduler):
    name = "fanout"

    async def _run(self, generation: int) -> None:
        config = self._session.config
        wait_s = config.fanout_period_s
        while self._is_current(generation):
            await asyncio.sleep(wait_s)
            wait_s = config.fanout_period_s

            started = await self._apply(generation, lambda state: set_fanout(state, active=True))
            if started is None or not started.events:
                continue

            await asyncio.sleep(config.fanout_duration_s)
            await self._apply(generation, lambda state: set_fanout(state, active=False))
            # Keep fanout starts one period apart.
            wait_s = max(0.0, config.fanout_period_s - config.fanout_duration_s)


class LockGraceTimers:
    """One grace timer per locked queue, reconciled against state after every commit.

    A timer is keyed by queue name and bound to the lock episode (`locked_at`)
    and generation it was armed under.
    """

    def __init__(self, session: GameSession) -> None:
        self._session = session
        self._timers: dict[str, tuple[datetime, asyncio.Task[None]]] = {}

    @property
    def pending(self) -> set[str]:
        return {name for name, (_, task) in self._timers.items() if not task.done()}

    def sync(self, state: GameState) -> None:
        for name, (locked_at, _task) in list(self._timers.items()):
            queue = state.queues.get(name)
            still_locked = (
                queue is not None and queue.status == QueueStatus.locked and queue.locked_at == locked_at
            )
            if state.game_over or not still_locked:
                self._cancel(name)

        if state.game_over:
            return

        for queue in state.queues.values():
            if queue.status != QueueStatus.locked or queue.name in self._timers or queue.locked_at is None:
                continue
            self._arm(queue.name, queue.locked_at, state.generation)

    def cancel_all(self) -> list[asyncio.Task[None]]:
        return [self._cancel(name) for name in list(self._timers)]

    def _arm(self, name: str, locked_at: datetime, generation: int) -> None:
        task = asyncio.create_task(self._expire_after(name, locked_at, generation), name=f"grace-{name}-g{generation}")
        self._timers[name] = (locked_at, task)
        logger.info("Queue %s locked; %gs to purge", name, self._session.config.lock_grace_s)

    def _cancel(self, name: str) -> asyncio.Task[None]:
        _, task = self._timers.pop(name)
        # The expiring timer reconciles itself away; don't cancel the running task.
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        return task

    async def _expire_after(self, name: str, locked_at: datetime, generation: int) -> None:
        grace_s = self._session.config.lock_grace_s
        await asyncio.sleep(grace_s)
        try:
            await self._session.apply_mutation(
                lambda state: expire_lock(state, queue_name=name, locked_at=locked_at, grace_s=grace_s),
                generation=generation,
            )
        except Exception:
            logger.exception("Grace timer for %s failed", name)
