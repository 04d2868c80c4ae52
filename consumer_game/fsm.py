from __future__ import annotations

from statemachine import State, StateMachine

from consumer_game.api.models import QueueState, QueueStatus


class QueueFSM(StateMachine):
    """FSM wrapper around a single QueueState's overflow lifecycle.

    - active -> locked when the queue fills up
    - locked -> active on purge
    - locked -> expired when the grace period runs out (ends the game)

    Transitions only guard the lifecycle; the caller mutates messages / timestamps
    and then calls `sync_status_to_model`.
    """

    active = State(QueueStatus.active.value, value=QueueStatus.active.value, initial=True)
    locked = State(QueueStatus.locked.value, value=QueueStatus.locked.value)
    expired = State(QueueStatus.expired.value, value=QueueStatus.expired.value, final=True)

    overflow = active.to(locked)
    purge = locked.to(active)
    expire = locked.to(expired)

    def __init__(self, queue_state: QueueState):
        self.queue_state = queue_state
        super().__init__(start_value=queue_state.status.value)

    def sync_status_to_model(self) -> None:
        self.queue_state.status = QueueStatus(str(self.current_state.value))
