from __future__ import annotations

import random
from dataclasses import dataclass

from consumer_game.command_processing.processor import CommandProcessor
from consumer_game.config import GameConfig
from consumer_game.infra.broker import MessageBrokerAdapter, create_broker
from consumer_game.session import GameSession
from consumer_game.websocket_hub import BroadcastHub


@dataclass(slots=True)
class GameRuntime:
    """Everything one server process owns, wired together.

    Stored on `app.state.runtime`; routes reach it through `api.deps`.
    """

    config: GameConfig
    hub: BroadcastHub
    session: GameSession
    processor: CommandProcessor

    @classmethod
    def build(
        cls,
        *,
        config: GameConfig,
        broker: MessageBrokerAdapter | None = None,
        rng: random.Random | None = None,
    ) -> "GameRuntime":
        hub = BroadcastHub()
        session = GameSession(
            config=config,
            broker=broker if broker is not None else create_broker(config.broker_url),
            sink=hub,
            rng=rng,
        )
        return cls(config=config, hub=hub, session=session, processor=CommandProcessor(session))

    async def start(self) -> None:
        self.hub.start()
        await self.session.start()

    async def stop(self) -> None:
        await self.session.close()
        await self.hub.stop()
