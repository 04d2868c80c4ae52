from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)

Payload = dict[str, Any]


class BroadcastHub:
    """In-process WebSocket fan-out for the single game session.

    Contract:
      - register a connection with `connect(websocket)`.
      - `publish(payload)` queues a payload for every connection,
        `send_to(websocket, payload)` for one connection only.
      - both are synchronous and never block, so they can be called while the
        session's mutation lock is held.
      - a single pump task drains the outbox, so every observer sees payloads in
        the order they were queued.

    Payloads should be JSON-serializable dicts.
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._outbox: asyncio.Queue[tuple[WebSocket | None, Payload]] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def start(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump(), name="broadcast-hub")

    async def stop(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("Client connected (%d total)", len(self._connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket not in self._connections:
                return
            self._connections.discard(websocket)
        logger.info("Client disconnected (%d total)", len(self._connections))

    def publish(self, payload: Payload) -> None:
        self._outbox.put_nowait((None, payload))

    def send_to(self, websocket: WebSocket, payload: Payload) -> None:
        self._outbox.put_nowait((websocket, payload))

    async def flush(self) -> None:
        """Wait until everything queued so far has been delivered."""

        await self._outbox.join()

    async def _pump(self) -> None:
        while True:
            target, payload = await self._outbox.get()
            try:
                if target is None:
                    await self._broadcast(payload)
                else:
                    await self._send(target, payload)
            finally:
                self._outbox.task_done()

    async def _broadcast(self, payload: Payload) -> None:
        async with self._lock:
            conns = list(self._connections)

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        if dead:
            await self._prune(dead)

    async def _send(self, websocket: WebSocket, payload: Payload) -> None:
        try:
            await websocket.send_json(payload)
        except Exception:
            await self._prune([websocket])

    async def _prune(self, dead: list[WebSocket]) -> None:
        async with self._lock:
            for ws in dead:
                self._connections.discard(ws)
        logger.debug("Dropped %d dead connection(s)", len(dead))
