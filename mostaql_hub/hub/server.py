"""Mostaql Hub — WebSocket Server.

Exposes the NotificationHub over aiohttp:
  - GET <path> (default /jobNotificationHub): WebSocket endpoint; each
    connection becomes one hub subscriber exchanging JSON text frames
  - GET /health: JSON status (subscriber count plus cycle stats)
"""

from __future__ import annotations

import functools
import json
import weakref
from typing import Any, Callable, Optional

from aiohttp import WSCloseCode, WSMsgType, web

from mostaql_hub.config import HubConfig
from mostaql_hub.errors import DispatchError
from mostaql_hub.hub import messages
from mostaql_hub.hub.hub import NotificationHub
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

StatusProvider = Callable[[], dict[str, Any]]

# Arabic titles stay readable on the wire
_dumps = functools.partial(json.dumps, ensure_ascii=False)


class HubServer:
    """aiohttp application serving one NotificationHub.

    Attributes:
        hub: The hub connections subscribe to.
        config: Host, port, path and heartbeat settings.
    """

    def __init__(
        self,
        hub: NotificationHub,
        config: Optional[HubConfig] = None,
        status_provider: Optional[StatusProvider] = None,
    ) -> None:
        self.hub = hub
        self.config = config or HubConfig()
        self.status_provider = status_provider
        self._runner: Optional[web.AppRunner] = None
        self._sockets: "weakref.WeakSet[web.WebSocketResponse]" = weakref.WeakSet()

    def build_app(self) -> web.Application:
        """Create the aiohttp application (also used directly by tests)."""
        app = web.Application()
        app.router.add_get(self.config.path, self._handle_websocket)
        app.router.add_get("/health", self._handle_health)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self) -> None:
        """Bind and start serving."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info(
            "✅ Hub listening on ws://%s:%d%s",
            self.config.host, self.config.port, self.config.path,
        )

    async def stop(self) -> None:
        """Close every connection and release the listening socket."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.hub.close()
        logger.info("Hub server stopped")

    # ── Handlers ─────────────────────────────────────────

    async def _handle_health(self, request: web.Request) -> web.Response:
        status: dict[str, Any] = {
            "status": "ok",
            "subscribers": self.hub.subscriber_count,
            "broadcasts": self.hub.total_broadcasts,
            "dropped": self.hub.total_dropped,
        }
        if self.status_provider is not None:
            status.update(self.status_provider())
        return web.json_response(status, dumps=_dumps)

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self.config.heartbeat_seconds or None)
        await ws.prepare(request)

        async def send(message: dict[str, Any]) -> None:
            if ws.closed:
                raise ConnectionResetError("WebSocket is closed")
            await ws.send_json(message, dumps=_dumps)

        async def close() -> None:
            # Ends the receive loop below, which then unsubscribes
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Delivery failed")

        try:
            handle = await self.hub.subscribe(send, close=close)
        except DispatchError as e:
            logger.warning("Rejected connection from %s: %s", request.remote, e)
            await ws.close()
            return ws

        self._sockets.add(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._handle_frame(handle, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        "Connection %s closed with error: %s",
                        handle.connection_id, ws.exception(),
                    )
        finally:
            await self.hub.unsubscribe(handle)
            self._sockets.discard(ws)
        return ws

    async def _handle_frame(self, handle: Any, data: str) -> None:
        try:
            frame = json.loads(data)
        except ValueError:
            logger.debug("Ignoring non-JSON frame from %s", handle.connection_id)
            return

        event = frame.get("event") if isinstance(frame, dict) else None
        if event == messages.PING:
            await self.hub.handle_ping(handle)
        else:
            self.hub.touch(handle)
            logger.debug("Ignoring '%s' frame from %s", event, handle.connection_id)

    async def _on_shutdown(self, app: web.Application) -> None:
        for ws in set(self._sockets):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
