from __future__ import annotations

import random
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from consumer_game.api.models import GameState, Message, MessageKind, QueueState, QueueStatus
from consumer_game.config import GameConfig
from consumer_game.core import transitions as tr

CONFIG = GameConfig()
NOW = datetime(2025, 1, 1, tzinfo=UTC)


def _fresh() -> GameState:
    return tr.new_game(GameState(), config=CONFIG, now=NOW).state


def _with_messages(state: GameState, name: str, kinds: list[MessageKind]) -> GameState:
    s = state.model_copy(deep=True)
    s.queues[name].messages = [Message(id=f"t{i}", kind=k) for i, k in enumerate(kinds)]
    return s


def _locked(state: GameState, name: str, *, at: datetime = NOW) -> GameState:
    s = _with_messages(state, name, [MessageKind.good] * CONFIG.queue_capacity)
    s.queues[name].status = QueueStatus.locked
    s.queues[name].locked_at = at
    return s


def test_new_game_opens_two_themed_queues() -> None:
    t = tr.new_game(GameState(), config=CONFIG, now=NOW)

    assert list(t.state.queues) == ["lemming-1", "lemur-2"]
    assert t.state.generation == 1
    assert t.state.score == 0
    assert t.state.spawn_interval_ms == 3000
    assert t.state.fanout_active is False
    assert t.state.game_over is False
    assert [e.type for e in t.events] == ["queue_added", "queue_added"]
    assert [(op.action, op.queue) for op in t.effects] == [("create_queue", "lemming-1"), ("create_queue", "lemur-2")]


def test_new_game_tears_down_previous_generation() -> None:
    previous = _locked(_fresh(), "lemming-1")
    previous.score = 120
    previous.game_over = True
    previous.spawn_interval_ms = 700
    previous.fanout_active = True

    t = tr.new_game(previous, config=CONFIG, now=NOW)

    assert t.state.generation == previous.generation + 1
    assert t.state.score == 0
    assert t.state.spawn_interval_ms == 3000
    assert t.state.game_over is False
    assert t.state.fanout_active is False
    assert len(t.state.queues) == 2
    deletes = [op.queue for op in t.effects if op.action == "delete_queue"]
    assert deletes == ["lemming-1", "lemur-2"]
    # Teardown comes before the new queues are declared.
    assert [op.action for op in t.effects][:2] == ["delete_queue", "delete_queue"]


def test_ack_on_empty_queue_fails() -> None:
    with pytest.raises(ValueError) as e:
        tr.consume(_fresh(), command="ack", queue_name="lemming-1", config=CONFIG)

    assert str(e.value) == 'Queue "lemming-1" is empty'


def test_ack_good_message_scores_ten_and_empties_queue() -> None:
    state = _with_messages(_fresh(), "lemur-2", [MessageKind.good])

    t = tr.consume(state, command="ack", queue_name="lemur-2", config=CONFIG)

    assert t.state.score == 10
    assert t.state.queues["lemur-2"].messages == []
    assert t.outcome == tr.CommandOutcome(correct=True, message_kind=MessageKind.good, score_change=10)
    assert [(op.action, op.queue) for op in t.effects] == [("consume_one", "lemur-2")]
    # Input state is never mutated.
    assert state.score == 0
    assert len(state.queues["lemur-2"].messages) == 1


@pytest.mark.parametrize(
    ("command", "kind", "correct", "delta"),
    [
        ("ack", MessageKind.good, True, 10),
        ("ack", MessageKind.bad, False, -5),
        ("reject", MessageKind.bad, True, 10),
        ("reject", MessageKind.good, False, -5),
    ],
)
def test_consume_scoring(command: str, kind: MessageKind, correct: bool, delta: int) -> None:
    state = _with_messages(_fresh(), "lemming-1", [kind, MessageKind.good])

    t = tr.consume(state, command=command, queue_name="lemming-1", config=CONFIG)  # type: ignore[arg-type]

    assert t.outcome is not None
    assert t.outcome.correct is correct
    assert t.outcome.message_kind == kind
    assert t.outcome.score_change == delta
    assert t.state.score == delta
    # Only the front message is consumed.
    assert [m.kind for m in t.state.queues["lemming-1"].messages] == [MessageKind.good]


def test_consume_unknown_queue_fails() -> None:
    with pytest.raises(ValueError) as e:
        tr.consume(_fresh(), command="reject", queue_name="walrus-9", config=CONFIG)

    assert str(e.value) == 'Queue "walrus-9" not found'


def test_consume_locked_queue_fails() -> None:
    state = _locked(_fresh(), "lemming-1")

    with pytest.raises(ValueError) as e:
        tr.consume(state, command="ack", queue_name="lemming-1", config=CONFIG)

    assert "is locked" in str(e.value)
    assert "purge lemming-1" in str(e.value)


def test_spawn_fills_queue_then_locks_it() -> None:
    cfg = replace(CONFIG, initial_queues=1)
    state = tr.new_game(GameState(), config=cfg, now=NOW).state
    rng = random.Random(3)

    locked_events = []
    for _ in range(cfg.queue_capacity):
        t = tr.spawn(state, config=cfg, rng=rng, now=NOW)
        locked_events.extend(e for e in t.events if e.type == "queue_locked")
        state = t.state

    queue = state.queues["lemming-1"]
    assert len(queue.messages) == 10
    assert queue.locked is True
    assert queue.locked_at == NOW
    assert len(locked_events) == 1
    assert locked_events[0].payload == {"name": "lemming-1", "lockedAt": int(NOW.timestamp() * 1000)}
    assert state.total_messages == 10
    assert len({m.id for m in queue.messages}) == 10

    # A locked queue takes no more arrivals.
    t = tr.spawn(state, config=cfg, rng=rng, now=NOW)
    assert t.events == []
    assert t.effects == []
    assert len(t.state.queues["lemming-1"].messages) == 10


def test_spawn_picks_one_unlocked_queue() -> None:
    state = _locked(_fresh(), "lemming-1")

    t = tr.spawn(state, config=CONFIG, rng=random.Random(0), now=NOW)

    assert [e.type for e in t.events] == ["message_spawned"]
    assert t.events[0].payload["queue"] == "lemur-2"
    assert t.events[0].payload["message"]["kind"] in {"good", "bad"}
    assert len(t.state.queues["lemur-2"].messages) == 1
    publish = t.effects[0]
    assert publish.action == "publish"
    assert publish.queue == "lemur-2"
    assert Message.model_validate_json(publish.payload or "") == t.state.queues["lemur-2"].messages[0]


def test_spawn_during_fanout_hits_every_unlocked_queue() -> None:
    state = tr.add_queue(_fresh(), config=CONFIG).state
    state = _locked(state, "lemur-2")
    state.fanout_active = True

    t = tr.spawn(state, config=CONFIG, rng=random.Random(1), now=NOW)

    assert [e.type for e in t.events] == ["message_spawned_fanout", "message_spawned_fanout"]
    assert [e.payload["queue"] for e in t.events] == ["lemming-1", "orca-3"]
    assert len(t.state.queues["lemming-1"].messages) == 1
    assert len(t.state.queues["orca-3"].messages) == 1
    assert len(t.state.queues["lemur-2"].messages) == 10


def test_spawn_is_noop_without_unlocked_queues_or_after_game_over() -> None:
    all_locked = _locked(_locked(_fresh(), "lemming-1"), "lemur-2")
    assert tr.spawn(all_locked, config=CONFIG, rng=random.Random(), now=NOW).state == all_locked

    over = _fresh()
    over.game_over = True
    assert tr.spawn(over, config=CONFIG, rng=random.Random(), now=NOW).state == over


def test_purge_requires_a_locked_queue() -> None:
    with pytest.raises(ValueError) as e:
        tr.purge(_fresh(), queue_name="lemming-1", config=CONFIG)

    assert str(e.value) == 'Queue "lemming-1" is not locked'


def test_purge_locked_queue_costs_fifty_and_unlocks() -> None:
    state = tr.add_queue(_fresh(), config=CONFIG).state
    state = _locked(state, "orca-3")
    state.score = 20

    t = tr.purge(state, queue_name="orca-3", config=CONFIG)

    queue = t.state.queues["orca-3"]
    assert t.state.score == -30
    assert queue.messages == []
    assert queue.locked is False
    assert queue.locked_at is None
    assert t.outcome == tr.CommandOutcome(score_change=-50)
    assert [(op.action, op.queue) for op in t.effects] == [("purge_queue", "orca-3")]


def test_grace_expiry_ends_the_game() -> None:
    state = _locked(_fresh(), "lemur-2")

    t = tr.expire_lock(state, queue_name="lemur-2", locked_at=NOW, grace_s=10)

    assert t.state.game_over is True
    assert t.state.queues["lemur-2"].status == QueueStatus.expired
    assert [e.type for e in t.events] == ["game_over"]
    assert "lemur-2" in t.events[0].payload["reason"]
    assert "10s" in t.events[0].payload["reason"]


def test_grace_expiry_during_fanout_clears_fanout() -> None:
    state = tr.set_fanout(_locked(_fresh(), "lemur-2"), active=True).state

    over = tr.expire_lock(state, queue_name="lemur-2", locked_at=NOW, grace_s=10).state

    assert over.game_over is True
    assert over.fanout_active is False
    # The scheduler's fanout_end arrives after game over and changes nothing.
    assert tr.set_fanout(over, active=False).state == over


def test_after_game_over_nothing_mutates_but_new_game() -> None:
    state = _locked(_fresh(), "lemur-2")
    state = _with_messages(state, "lemming-1", [MessageKind.good])
    over = tr.expire_lock(state, queue_name="lemur-2", locked_at=NOW, grace_s=10).state

    for command in ("ack", "reject"):
        with pytest.raises(ValueError) as e:
            tr.consume(over, command=command, queue_name="lemming-1", config=CONFIG)  # type: ignore[arg-type]
        assert "Game over" in str(e.value)
    with pytest.raises(ValueError):
        tr.purge(over, queue_name="lemur-2", config=CONFIG)

    assert tr.spawn(over, config=CONFIG, rng=random.Random(), now=NOW).state == over
    assert tr.increase_difficulty(over, config=CONFIG).state == over
    assert tr.add_queue(over, config=CONFIG).state == over
    assert tr.set_fanout(over, active=True).state == over

    fresh = tr.new_game(over, config=CONFIG, now=NOW).state
    assert fresh.game_over is False


def test_grace_expiry_ignores_purged_or_relocked_queue() -> None:
    state = _fresh()
    assert tr.expire_lock(state, queue_name="lemming-1", locked_at=NOW, grace_s=10).state == state

    relocked = _locked(state, "lemming-1", at=NOW + timedelta(seconds=30))
    t = tr.expire_lock(relocked, queue_name="lemming-1", locked_at=NOW, grace_s=10)
    assert t.state.game_over is False
    assert t.events == []


def test_difficulty_floors_at_minimum_interval() -> None:
    state = _fresh()
    intervals = []
    for _ in range(30):
        t = tr.increase_difficulty(state, config=CONFIG)
        state = t.state
        intervals.append(state.spawn_interval_ms)

    assert intervals[0] == 2800
    assert min(intervals) == 500
    assert intervals[-1] == 500
    # No event once the floor is reached.
    assert tr.increase_difficulty(state, config=CONFIG).events == []


def test_add_queue_uses_next_name_and_caps_count() -> None:
    state = _fresh()
    names = []
    for _ in range(12):
        t = tr.add_queue(state, config=CONFIG)
        state = t.state
        names.extend(e.payload["name"] for e in t.events)

    assert names[:3] == ["orca-3", "panda-4", "rhino-5"]
    assert len(state.queues) == 10
    assert len(names) == 8


def test_fanout_toggle_emits_once() -> None:
    on = tr.set_fanout(_fresh(), active=True)
    assert on.state.fanout_active is True
    assert [e.type for e in on.events] == ["fanout_start"]

    assert tr.set_fanout(on.state, active=True).events == []

    off = tr.set_fanout(on.state, active=False)
    assert off.state.fanout_active is False
    assert [e.to_wire() for e in off.events] == [{"type": "fanout_end"}]


def test_queue_state_reports_locked_for_expired() -> None:
    q = QueueState(name="x", status=QueueStatus.expired)
    assert q.locked is True
