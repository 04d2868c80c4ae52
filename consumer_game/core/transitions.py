"""Pure game rules.

Every function takes the current GameState (never mutated) plus its inputs and
returns a `Transition`: the next state, the events to broadcast, and the broker
operations to mirror. Nothing here touches asyncio, sockets or the broker, so
the whole state machine can be driven synchronously from tests.

Validation failures raise `ValueError` with a player-facing message.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from consumer_game.api.models import GameState, Message, MessageKind, QueueState, to_epoch_ms
from consumer_game.command_processing.validators import ValidationContext, pipeline_for_command
from consumer_game.config import GameConfig
from consumer_game.core.events import EventType, GameEvent
from consumer_game.core.naming import queue_name_for
from consumer_game.fsm import QueueFSM

BrokerAction = Literal["create_queue", "delete_queue", "purge_queue", "publish", "consume_one"]

MESSAGE_KINDS: tuple[MessageKind, ...] = (MessageKind.good, MessageKind.bad)


@dataclass(frozen=True, slots=True)
class BrokerOp:
    action: BrokerAction
    queue: str
    payload: str | None = None


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """What a successful player command did, for the issuing connection only."""

    correct: bool | None = None
    message_kind: MessageKind | None = None
    score_change: int | None = None


@dataclass(slots=True)
class Transition:
    state: GameState
    events: list[GameEvent] = field(default_factory=list)
    effects: list[BrokerOp] = field(default_factory=list)
    outcome: CommandOutcome | None = None

    def emit(self, type: EventType, **payload: Any) -> None:
        self.events.append(GameEvent.now(type=type, payload=payload))

    def mirror(self, action: BrokerAction, queue: str, payload: str | None = None) -> None:
        self.effects.append(BrokerOp(action=action, queue=queue, payload=payload))


def _begin(state: GameState) -> Transition:
    return Transition(state=state.model_copy(deep=True))


def _add_queue(t: Transition) -> QueueState:
    s = t.state
    name = queue_name_for(s.queue_counter)
    s.queue_counter += 1

    queue = QueueState(name=name)
    s.queues[name] = queue
    t.mirror("create_queue", name)
    t.emit("queue_added", name=name)
    return queue


def _lock(t: Transition, queue: QueueState, *, now: datetime) -> None:
    fsm = QueueFSM(queue)
    fsm.overflow()
    fsm.sync_status_to_model()
    queue.locked_at = now
    t.emit("queue_locked", name=queue.name, lockedAt=to_epoch_ms(now))


def new_game(previous: GameState, *, config: GameConfig, now: datetime) -> Transition:
    """Fresh generation: tear down the previous queues and open the initial ones."""

    t = Transition(
        state=GameState(
            spawn_interval_ms=config.initial_spawn_interval_ms,
            started_at=now,
            generation=previous.generation + 1,
        )
    )
    for name in previous.queues:
        t.mirror("delete_queue", name)
    for _ in range(config.initial_queues):
        _add_queue(t)
    return t


def add_queue(state: GameState, *, config: GameConfig) -> Transition:
    t = _begin(state)
    if t.state.game_over or len(t.state.queues) >= config.max_queues:
        return t
    _add_queue(t)
    return t


def spawn(state: GameState, *, config: GameConfig, rng: random.Random, now: datetime) -> Transition:
    """One spawn tick: a message into one random unlocked queue, or into all of them during fanout."""

    t = _begin(state)
    s = t.state
    if s.game_over:
        return t

    unlocked = [q for q in s.queues.values() if not q.locked]
    if not unlocked:
        return t

    targets = unlocked if s.fanout_active else [rng.choice(unlocked)]
    for queue in targets:
        s.total_messages += 1
        message = Message(id=f"m{s.generation}-{s.total_messages}", kind=rng.choice(MESSAGE_KINDS))

        t.mirror("publish", queue.name, message.model_dump_json())
        queue.messages.append(message)

        wire_message = message.model_dump(mode="json")
        if s.fanout_active:
            t.emit("message_spawned_fanout", queue=queue.name, message=wire_message)
        else:
            t.emit("message_spawned", queue=queue.name, message=wire_message)

        if len(queue.messages) >= config.queue_capacity:
            _lock(t, queue, now=now)

    return t


def increase_difficulty(state: GameState, *, config: GameConfig) -> Transition:
    t = _begin(state)
    s = t.state
    if s.game_over:
        return t

    interval = max(config.min_spawn_interval_ms, s.spawn_interval_ms - config.spawn_interval_step_ms)
    if interval == s.spawn_interval_ms:
        return t

    s.spawn_interval_ms = interval
    t.emit("difficulty_increased", spawnIntervalMs=interval)
    return t


def set_fanout(state: GameState, *, active: bool) -> Transition:
    t = _begin(state)
    s = t.state
    if s.game_over or s.fanout_active == active:
        return t

    s.fanout_active = active
    t.emit("fanout_start" if active else "fanout_end")
    return t


def expire_lock(state: GameState, *, queue_name: str, locked_at: datetime, grace_s: float) -> Transition:
    """Grace period elapsed for one lock episode; ends the game if still unpurged."""

    t = _begin(state)
    s = t.state
    queue = s.queues.get(queue_name)
    if s.game_over or queue is None or not queue.locked or queue.locked_at != locked_at:
        return t

    fsm = QueueFSM(queue)
    fsm.expire()
    fsm.sync_status_to_model()

    reason = f'Queue "{queue_name}" stayed locked for {grace_s:g}s without a purge'
    s.game_over = True
    s.game_over_reason = reason
    # The pending fanout_end is a no-op once the game is over.
    s.fanout_active = False
    t.emit("game_over", reason=reason, queue=queue_name)
    return t


def consume(
    state: GameState,
    *,
    command: Literal["ack", "reject"],
    queue_name: str,
    config: GameConfig,
) -> Transition:
    """ack / reject the front message. Correct when the action matches the message kind."""

    pipeline_for_command(command).validate(ctx=ValidationContext(command=command, queue=queue_name), state=state)

    t = _begin(state)
    queue = t.state.queues[queue_name]
    message = queue.messages.pop(0)

    expected = MessageKind.good if command == "ack" else MessageKind.bad
    correct = message.kind == expected
    delta = config.correct_score if correct else config.wrong_score
    t.state.score += delta

    t.mirror("consume_one", queue_name)
    t.outcome = CommandOutcome(correct=correct, message_kind=message.kind, score_change=delta)
    return t


def purge(state: GameState, *, queue_name: str, config: GameConfig) -> Transition:
    pipeline_for_command("purge").validate(ctx=ValidationContext(command="purge", queue=queue_name), state=state)

    t = _begin(state)
    queue = t.state.queues[queue_name]

    fsm = QueueFSM(queue)
    fsm.purge()
    fsm.sync_status_to_model()
    queue.messages.clear()
    queue.locked_at = None
    t.state.score += config.purge_penalty

    t.mirror("purge_queue", queue_name)
    t.outcome = CommandOutcome(score_change=config.purge_penalty)
    return t
