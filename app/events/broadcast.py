from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass

from starlette.websockets import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


@dataclass
class _Client:
    websocket: WebSocket
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue


class WebSocketHub:
    """Fan-out of change notifications to connected browsers.

    broadcast() is plain sync code so that request handlers running in the
    threadpool can call it; messages are handed to each client's event loop.
    Delivery is at-most-once: a slow or dead client simply misses messages.
    """

    def __init__(self, max_queue: int = 100):
        self._clients: list[_Client] = []
        self._lock = threading.Lock()
        self._max_queue = max_queue

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def broadcast(self, topic: str, payload: dict | None = None) -> int:
        message = {"topic": topic, "payload": payload or {}}
        with self._lock:
            clients = list(self._clients)
        for client in clients:
            try:
                client.loop.call_soon_threadsafe(self._offer, client.queue, message)
            except RuntimeError:
                # loop already closed; the serve() coroutine will unregister it
                pass
        return len(clients)

    @staticmethod
    def _offer(queue: asyncio.Queue, message: dict) -> None:
        if not queue.full():
            queue.put_nowait(message)

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        client = _Client(websocket, asyncio.get_running_loop(), asyncio.Queue(maxsize=self._max_queue))
        with self._lock:
            self._clients.append(client)
        receiver = asyncio.create_task(self._drain_incoming(websocket))
        try:
            while not receiver.done():
                getter = asyncio.create_task(client.queue.get())
                done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    await websocket.send_json(getter.result())
                else:
                    getter.cancel()
        except WebSocketDisconnect:
            pass
        finally:
            receiver.cancel()
            with self._lock:
                if client in self._clients:
                    self._clients.remove(client)
            logger.debug("WebSocket client disconnected (%s left)", len(self._clients))

    @staticmethod
    async def _drain_incoming(websocket: WebSocket) -> None:
        # Clients never send anything useful; reading is how we notice the disconnect.
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return


hub = WebSocketHub()
