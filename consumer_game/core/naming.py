from __future__ import annotations

# CloudAMQP animal theme.
QUEUE_NAME_POOL: tuple[str, ...] = (
    "lemming",
    "lemur",
    "orca",
    "panda",
    "rhino",
    "tiger",
    "whale",
    "hippo",
    "bunny",
    "pika",
    "koala",
    "falcon",
    "otter",
    "fox",
    "lynx",
)


def queue_name_for(counter: int) -> str:
    """Name of the queue created when the counter moves from `counter` to `counter + 1`."""

    animal = QUEUE_NAME_POOL[counter % len(QUEUE_NAME_POOL)]
    return f"{animal}-{counter + 1}"
