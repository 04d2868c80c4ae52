from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from consumer_game.api.models import GameState, StateSnapshot
from consumer_game.config import GameConfig
from consumer_game.core.events import GameEvent
from consumer_game.core.transitions import Transition, new_game
from consumer_game.infra.broker import MessageBrokerAdapter
from consumer_game.infra.mirror import BrokerMirror
from consumer_game.schedulers import (
    DifficultyScheduler,
    FanoutModeScheduler,
    LockGraceTimers,
    QueueLifecycleScheduler,
    SpawnScheduler,
)

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def publish(self, payload: dict[str, Any]) -> None:  # pragma: no cover
        ...


def _now() -> datetime:
    return datetime.now(tz=UTC)


class GameSession:
    """The single authoritative game, owned by the server process.

    Every write goes through `apply_mutation`, which holds one asyncio.Lock for
    the whole mutation: run a pure transition, swap in the new state, hand broker
    ops to the mirror, reconcile grace timers, and queue the broadcasts. Nothing
    inside the lock awaits, so observers never see a half-applied mutation and
    broadcasts leave in commit order.
    """

    def __init__(
        self,
        *,
        config: GameConfig,
        broker: MessageBrokerAdapter,
        sink: EventSink,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.config = config
        self.rng = rng or random.Random()
        self._clock = clock
        self._sink = sink
        self._state = GameState(spawn_interval_ms=config.initial_spawn_interval_ms)
        self._lock = asyncio.Lock()
        self._mirror = BrokerMirror(
            broker,
            current_generation=lambda: self._state.generation,
            max_backlog=config.broker_backlog_max,
        )

        self.spawner = SpawnScheduler(self)
        self.difficulty = DifficultyScheduler(self, spawner=self.spawner)
        self.queue_lifecycle = QueueLifecycleScheduler(self)
        self.fanout = FanoutModeScheduler(self)
        self.grace_timers = LockGraceTimers(self)

    @property
    def state(self) -> GameState:
        """Current committed state. Treat as read-only; mutate through `apply_mutation`."""

        return self._state

    @property
    def generation(self) -> int:
        return self._state.generation

    @property
    def mirror(self) -> BrokerMirror:
        return self._mirror

    def now(self) -> datetime:
        return self._clock()

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot.from_state(self._state)

    async def start(self) -> None:
        self._mirror.start()
        await self.initialize()

    async def close(self) -> None:
        async with self._lock:
            tasks = self._stop_timers()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._mirror.stop()
        self._mirror.broker.close()

    async def initialize(self) -> Transition:
        return await self.reset()

    async def reset(self) -> Transition:
        async with self._lock:
            self._stop_timers()
            t = new_game(self._state, config=self.config, now=self.now())
            self._commit(t)
            self._start_timers(t.state.generation)
            logger.info("Game started (generation %d)", t.state.generation)
            return t

    async def apply_mutation(
        self,
        fn: Callable[[GameState], Transition],
        *,
        generation: int | None = None,
    ) -> Transition | None:
        """Apply one mutation atomically.

        When `generation` is given and no longer current, the call is a stale
        timer callback: nothing runs and None is returned. Exceptions raised by
        `fn` propagate and leave the state untouched.
        """

        async with self._lock:
            if generation is not None and generation != self._state.generation:
                return None
            t = fn(self._state)
            self._commit(t)
            return t

    def _commit(self, t: Transition) -> None:
        previous = self._state
        self._state = t.state

        for op in t.effects:
            self._mirror.submit(op, generation=t.state.generation)

        self.grace_timers.sync(t.state)

        for event in t.events:
            self._log_event(event)
            self._sink.publish(event.to_wire())

        if t.state != previous:
            self._sink.publish(self.snapshot().to_wire())

    def _start_timers(self, generation: int) -> None:
        self.spawner.start(generation, interval_ms=self._state.spawn_interval_ms)
        self.difficulty.start(generation)
        self.queue_lifecycle.start(generation)
        self.fanout.start(generation)

    def _stop_timers(self) -> list[asyncio.Task[None]]:
        stopped = [s.stop() for s in (self.spawner, self.difficulty, self.queue_lifecycle, self.fanout)]
        tasks = [t for t in stopped if t is not None]
        tasks.extend(self.grace_timers.cancel_all())
        return tasks

    def _log_event(self, event: GameEvent) -> None:
        if event.type == "game_over":
            logger.warning("Game over: %s", event.payload.get("reason"))
        elif event.type in {"queue_locked", "fanout_start", "fanout_end"}:
            logger.info("%s %s", event.type, event.payload)
        else:
            logger.debug("%s %s", event.type, event.payload)
