from __future__ import annotations

from fastapi import Depends
from starlette.requests import HTTPConnection

from consumer_game.command_processing.processor import CommandProcessor
from consumer_game.runtime import GameRuntime
from consumer_game.session import GameSession


def get_runtime(conn: HTTPConnection) -> GameRuntime:
    runtime = getattr(conn.app.state, "runtime", None)
    if runtime is None:
        raise RuntimeError("Game runtime not initialized. Is the app lifespan running?")
    return runtime


def get_session(runtime: GameRuntime = Depends(get_runtime)) -> GameSession:
    return runtime.session


def get_processor(runtime: GameRuntime = Depends(get_runtime)) -> CommandProcessor:
    return runtime.processor
