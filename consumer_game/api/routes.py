from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from consumer_game.api.deps import get_processor, get_runtime, get_session
from consumer_game.api.models import CommandResult
from consumer_game.command_processing.processor import CommandProcessor
from consumer_game.runtime import GameRuntime
from consumer_game.session import GameSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def game_ws(websocket: WebSocket, runtime: GameRuntime = Depends(get_runtime)) -> None:
    hub = runtime.hub
    await hub.connect(websocket)
    hub.send_to(websocket, runtime.session.snapshot().to_wire())

    try:
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except json.JSONDecodeError:
                hub.send_to(websocket, CommandResult(command="", success=False, error="Invalid JSON").to_wire())
                continue

            reply = await runtime.processor.handle(raw)
            # Through the hub so the reply lands after the broadcasts it caused.
            hub.send_to(websocket, reply)
    except WebSocketDisconnect:
        await hub.disconnect(websocket)
    except Exception:
        logger.exception("WebSocket handler failed")
        await hub.disconnect(websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/state")
async def get_state_route(session: GameSession = Depends(get_session)) -> dict[str, Any]:
    return session.snapshot().to_wire()


@router.post("/commands")
async def command_route(
    body: dict[str, Any],
    processor: CommandProcessor = Depends(get_processor),
) -> dict[str, Any]:
    """Run one command over HTTP; handy for scripting without a WebSocket client."""

    return await processor.handle(body)
