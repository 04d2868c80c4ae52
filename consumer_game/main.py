from __future__ import annotations

import logging
import random
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from consumer_game.api.routes import router
from consumer_game.config import GameConfig
from consumer_game.infra.broker import MessageBrokerAdapter
from consumer_game.runtime import GameRuntime

APP_NAME = "consumer-game"
APP_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def create_app(
    config: GameConfig | None = None,
    *,
    broker: MessageBrokerAdapter | None = None,
    rng: random.Random | None = None,
) -> FastAPI:
    """Build the app. The game runtime is created and started by the lifespan.

    `broker` / `rng` let tests inject fakeredis or a seeded RNG.
    """

    if config is None:
        load_dotenv(override=False)
        config = GameConfig.from_env()

    logging.basicConfig(level=config.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        runtime = GameRuntime.build(config=config, broker=broker, rng=rng)
        app.state.runtime = runtime
        await runtime.start()
        logger.info("%s ready (broker: %s)", APP_NAME, type(runtime.session.mirror.broker).__name__)
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
    app.include_router(router)

    @app.get("/info")
    async def info() -> dict[str, str]:
        return {"name": APP_NAME, "version": APP_VERSION}

    return app


def run() -> None:
    import uvicorn

    load_dotenv(override=False)
    config = GameConfig.from_env()
    uvicorn.run(create_app(config), host=config.host, port=config.port)


app = create_app()
