"""WebSocket transport for town subscriptions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..services.town_subscriptions import EVENT_DISCONNECT, TownSocket, town_subscription_handler

logger = logging.getLogger("covey_api.realtime")

router = APIRouter(prefix="/api/v1/towns", tags=["realtime"])

INVALID_SESSION_CLOSE_CODE = 4401


class WebSocketTownSocket(TownSocket):
    """Socket facade over one FastAPI WebSocket.

    Town events are produced synchronously, so ``emit`` only enqueues
    frames; a sender task drains the queue onto the wire in order.
    """

    def __init__(self, *, auth: Mapping[str, Any], loop: asyncio.AbstractEventLoop) -> None:
        self.auth = auth
        self._loop = loop
        self._handlers: dict[str, Callable[..., Any]] = {}
        self._outbox: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue()
        self._disconnect_fired = False
        self.disconnected = False

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event] = handler

    def emit(self, event: str, *args: Any) -> None:
        if self.disconnected:
            return
        self._loop.call_soon_threadsafe(self._outbox.put_nowait, {"event": event, "args": list(args)})

    def disconnect(self, close: bool = False) -> None:
        if self.disconnected:
            return
        self.disconnected = True
        self._loop.call_soon_threadsafe(self._outbox.put_nowait, None)

    def dispatch(self, event: str, payload: Any = None) -> bool:
        if event == EVENT_DISCONNECT:
            return False
        handler = self._handlers.get(event)
        if handler is None:
            return False
        handler(payload)
        return True

    def fire_disconnect(self) -> None:
        if self._disconnect_fired:
            return
        self._disconnect_fired = True
        handler = self._handlers.get(EVENT_DISCONNECT)
        if handler is not None:
            handler()

    async def drain(self, websocket: WebSocket) -> None:
        while True:
            frame = await self._outbox.get()
            if frame is None:
                await websocket.close(code=1000)
                return
            await websocket.send_json(frame)


async def _receive_frames(websocket: WebSocket, socket: WebSocketTownSocket) -> None:
    while True:
        try:
            frame = await websocket.receive_json()
        except WebSocketDisconnect:
            return
        except ValueError:
            logger.warning("[SOCKET] Dropping non-JSON frame")
            continue
        if not isinstance(frame, dict):
            continue
        event = str(frame.get("event") or "").strip()
        if not socket.dispatch(event, frame.get("payload")):
            logger.debug("[SOCKET] Unhandled event: event='%s'", event)


@router.websocket("/{town_id}/socket")
async def town_socket(websocket: WebSocket, town_id: str, token: str = Query(default="")) -> None:
    await websocket.accept()
    socket = WebSocketTownSocket(
        auth={"token": token, "coveyTownID": town_id},
        loop=asyncio.get_running_loop(),
    )
    town_subscription_handler(socket, websocket.app.state.towns_store)
    if socket.disconnected:
        await websocket.close(code=INVALID_SESSION_CLOSE_CODE)
        return

    sender = asyncio.create_task(socket.drain(websocket))
    receiver = asyncio.create_task(_receive_frames(websocket, socket))
    try:
        await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sender, receiver):
            if not task.done():
                task.cancel()
        socket.fire_disconnect()
        logger.info("[SOCKET] Connection closed: town_id='%s'", town_id)
