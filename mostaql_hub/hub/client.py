"""Mostaql Hub — Hub Client.

Subscriber side of the push hub. A single task owns the connection and
drives an explicit state machine:

    CONNECTING → CONNECTED → (RECONNECTING ⇄ CONNECTED)* → DISCONNECTED

On an unexpected disconnect the client retries with ExponentialBackoff
(first retry immediate, then doubling up to a ceiling). Once the attempt
budget is spent it stays DISCONNECTED until reconnect() is called.

Hub events are delivered to a HubListener, one method per event.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp

from mostaql_hub.hub import messages
from mostaql_hub.models import Listing
from mostaql_hub.utils.logger import get_logger
from mostaql_hub.utils.resilience import ExponentialBackoff

logger = get_logger(__name__)


class ClientState(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class HubListener:
    """Receives hub events. Override the methods you need."""

    async def on_connected(self, connection_id: str) -> None:
        pass

    async def on_listings_received(self, listings: list[Listing]) -> None:
        pass

    async def on_disconnected(self, reason: str) -> None:
        pass

    async def on_pong(self, timestamp: str) -> None:
        pass

    async def on_tracked_update(self, project: dict[str, Any], changes: list[str]) -> None:
        pass


# ═══════════════════════════════════════════════════════════
# Transport
# ═══════════════════════════════════════════════════════════


class HubConnection(Protocol):
    """One live connection to the hub."""

    async def receive(self) -> Optional[dict[str, Any]]:
        """Next JSON message, or None once the connection is closed."""
        ...

    async def send(self, message: dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[str], Awaitable[HubConnection]]


class AiohttpConnection:
    """HubConnection over an aiohttp client WebSocket."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    async def receive(self) -> Optional[dict[str, Any]]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except ValueError:
                    logger.debug("Ignoring non-JSON frame from hub")
                    continue
                if isinstance(data, dict):
                    return data
            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                return None

    async def send(self, message: dict[str, Any]) -> None:
        await self._ws.send_json(message)

    async def close(self) -> None:
        await self._ws.close()
        await self._session.close()


async def connect_aiohttp(url: str) -> HubConnection:
    """Default connector: open an aiohttp WebSocket to the hub."""
    session = aiohttp.ClientSession()
    try:
        ws = await session.ws_connect(url)
    except BaseException:
        await session.close()
        raise
    return AiohttpConnection(session, ws)


# ═══════════════════════════════════════════════════════════
# Client
# ═══════════════════════════════════════════════════════════


class HubClient:
    """Long-lived hub subscription with automatic reconnection.

    Attributes:
        url: Hub WebSocket URL.
        listener: Receiver of hub events.
        connection_id: Id assigned by the hub in its Connected message.
    """

    def __init__(
        self,
        url: str,
        listener: HubListener,
        connector: Optional[Connector] = None,
        max_attempts: int = 10,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        ping_interval: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.listener = listener
        self.connection_id: Optional[str] = None
        self._connector = connector or connect_aiohttp
        self._backoff = ExponentialBackoff(base_delay, max_delay, max_attempts)
        self._ping_interval = ping_interval
        self._sleep = sleep
        self._state = ClientState.DISCONNECTED
        self._connection: Optional[HubConnection] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._closing = False

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._backoff.attempts

    def _set_state(self, state: ClientState) -> None:
        if state is not self._state:
            logger.info("Hub client: %s → %s", self._state.value.upper(), state.value.upper())
            self._state = state

    # ── Lifecycle ────────────────────────────────────────

    def start(self) -> asyncio.Task[None]:
        """Start the connection task (no-op if it is already running)."""
        if self._task is None or self._task.done():
            self._closing = False
            self._backoff.reset()
            self._task = asyncio.create_task(self._run())
        return self._task

    def reconnect(self) -> asyncio.Task[None]:
        """Manually restart after the client gave up."""
        logger.info("Manual reconnect requested")
        return self.start()

    async def wait_closed(self) -> None:
        """Wait until the client reaches DISCONNECTED."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._close_connection()
        self._set_state(ClientState.DISCONNECTED)

    async def send_ping(self) -> bool:
        """Send a Ping; the hub answers with a Pong event."""
        if self._connection is None or self._state is not ClientState.CONNECTED:
            return False
        await self._connection.send(messages.ping())
        return True

    # ── State machine ────────────────────────────────────

    async def _run(self) -> None:
        self._set_state(ClientState.CONNECTING)
        connection = await self._try_connect()

        while not self._closing:
            if connection is not None:
                self._backoff.reset()
                reason = await self._serve(connection)
                if self._closing:
                    break
                logger.warning("⚠️ Lost connection to hub: %s", reason)
                await self._notify("on_disconnected", reason)

            delay = self._backoff.next_delay()
            if delay is None:
                logger.error(
                    "❌ Gave up reconnecting after %d attempts", self._backoff.max_attempts,
                )
                self._set_state(ClientState.DISCONNECTED)
                await self._notify("on_disconnected", "reconnect attempts exhausted")
                return

            self._set_state(ClientState.RECONNECTING)
            logger.info(
                "Reconnect attempt %d/%d in %.0fs",
                self._backoff.attempts, self._backoff.max_attempts, delay,
            )
            if delay > 0:
                await self._sleep(delay)
            connection = await self._try_connect()

        self._set_state(ClientState.DISCONNECTED)

    async def _try_connect(self) -> Optional[HubConnection]:
        try:
            return await self._connector(self.url)
        except Exception as e:
            logger.warning("Could not connect to %s: %s", self.url, e)
            return None

    async def _serve(self, connection: HubConnection) -> str:
        """Pump messages until the connection drops; return the reason."""
        self._connection = connection
        self._set_state(ClientState.CONNECTED)
        logger.info("✅ Connected to hub at %s", self.url)

        pinger = asyncio.create_task(self._ping_loop()) if self._ping_interval > 0 else None
        try:
            while True:
                message = await connection.receive()
                if message is None:
                    return "connection closed"
                await self._handle_message(message)
        except Exception as e:
            return f"{type(e).__name__}: {e}"
        finally:
            if pinger is not None:
                pinger.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pinger
            await self._close_connection()

    async def _ping_loop(self) -> None:
        while True:
            await self._sleep(self._ping_interval)
            try:
                await self.send_ping()
            except Exception as e:
                logger.debug("Ping failed: %s", e)

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.debug("Error closing hub connection: %s", e)

    # ── Events ───────────────────────────────────────────

    async def _handle_message(self, message: dict[str, Any]) -> None:
        event = message.get("event")
        if event == messages.CONNECTED:
            self.connection_id = str(message.get("connectionId") or "")
            await self._notify("on_connected", self.connection_id)
        elif event == messages.NEW_LISTINGS_DETECTED:
            listings = messages.parse_listings(message)
            logger.info("📥 Received %d listing(s) from hub", len(listings))
            await self._notify("on_listings_received", listings)
        elif event == messages.PONG:
            await self._notify("on_pong", str(message.get("timestamp") or ""))
        elif event == messages.TRACKED_PROJECT_UPDATED:
            await self._notify(
                "on_tracked_update",
                message.get("project") or {},
                list(message.get("changes") or []),
            )
        else:
            logger.debug("Ignoring unknown hub event: %s", event)

    async def _notify(self, method: str, *args: Any) -> None:
        """Call a listener method; a failing listener never breaks the connection."""
        try:
            await getattr(self.listener, method)(*args)
        except Exception as e:
            logger.error("Listener %s failed: %s", method, e)
