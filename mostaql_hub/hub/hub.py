"""Mostaql Hub — Notification Hub.

Registry of connected subscribers and the fan-out point for listing
batches. One scrape serves any number of subscribers; a slow or dead
subscriber is timed out, logged as a DispatchError and dropped without
affecting delivery to the others.

The subscriber registry is the only structure mutated concurrently
(connects and disconnects arrive independently of the scrape cycle), so
add/remove/snapshot all go through one asyncio.Lock. Broadcast sends
happen outside the lock, concurrently; only the Connected confirmation
is sent while holding it. Dropped subscribers have their connection
closed so the remote side can reconnect.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from mostaql_hub.errors import DispatchError
from mostaql_hub.hub import messages
from mostaql_hub.models import Listing
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

SendFunc = Callable[[dict[str, Any]], Awaitable[None]]
CloseFunc = Callable[[], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Subscriber:
    """A connected notification recipient, owned by the hub.

    Attributes:
        connection_id: Unique id, sent to the subscriber in Connected.
        send: Coroutine function delivering one message dict.
        close: Optional coroutine function ending the underlying
            connection when the hub drops the subscriber.
        connected_at: When the subscriber registered.
        last_seen: Last time the subscriber was heard from (ping) or
            successfully delivered to.
    """

    connection_id: str
    send: SendFunc
    close: Optional[CloseFunc] = None
    connected_at: datetime = field(default_factory=_utcnow)
    last_seen: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SubscriberHandle:
    """Opaque token returned by subscribe()."""

    connection_id: str


@dataclass(frozen=True)
class BroadcastResult:
    """Outcome of one fan-out.

    Attributes:
        delivered: Subscribers that received the message.
        dropped: Connection ids removed because their send failed.
    """

    delivered: int = 0
    dropped: tuple[str, ...] = ()

    @property
    def attempted(self) -> int:
        return self.delivered + len(self.dropped)


HandleLike = Union[SubscriberHandle, str]


def _connection_id(handle: HandleLike) -> str:
    return handle if isinstance(handle, str) else handle.connection_id


class NotificationHub:
    """Subscriber registry and broadcaster.

    Attributes:
        send_timeout: Seconds allowed for one send before the subscriber
            is considered dead.
        total_broadcasts: Broadcasts performed since startup.
        total_dropped: Subscribers dropped after failed sends.
    """

    def __init__(self, send_timeout: float = 5.0) -> None:
        self.send_timeout = send_timeout
        self.total_broadcasts = 0
        self.total_dropped = 0
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

    # ── Registry ─────────────────────────────────────────

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def is_subscribed(self, handle: HandleLike) -> bool:
        return _connection_id(handle) in self._subscribers

    async def subscribers(self) -> list[Subscriber]:
        """Snapshot of the current subscribers."""
        async with self._lock:
            return list(self._subscribers.values())

    async def subscribe(
        self,
        send: SendFunc,
        connection_id: Optional[str] = None,
        close: Optional[CloseFunc] = None,
    ) -> SubscriberHandle:
        """Register a subscriber, then send it a Connected confirmation.

        Registration and confirmation happen under the registry lock, so
        a broadcast either completes before the subscriber exists or
        snapshots it after Connected was delivered. Nothing sent after
        Connected is missed.

        Args:
            send: Coroutine function delivering one message dict.
            connection_id: Optional explicit id (generated when omitted).
            close: Optional coroutine function that ends the connection
                when the subscriber is dropped.

        Returns:
            Handle identifying the subscriber.

        Raises:
            DispatchError: If the confirmation could not be delivered; the
                subscriber is removed again.
        """
        subscriber = Subscriber(
            connection_id=connection_id or uuid.uuid4().hex, send=send, close=close,
        )
        async with self._lock:
            self._subscribers[subscriber.connection_id] = subscriber
            try:
                await asyncio.wait_for(
                    send(messages.connected(subscriber.connection_id)), self.send_timeout,
                )
            except asyncio.TimeoutError as e:
                self._subscribers.pop(subscriber.connection_id, None)
                raise DispatchError(subscriber.connection_id, "confirmation timed out") from e
            except Exception as e:
                self._subscribers.pop(subscriber.connection_id, None)
                raise DispatchError(subscriber.connection_id, f"confirmation failed: {e}") from e
            count = len(self._subscribers)
        logger.info("➕ Subscriber %s connected (%d active)", subscriber.connection_id, count)
        return SubscriberHandle(subscriber.connection_id)

    async def unsubscribe(self, handle: HandleLike) -> bool:
        """Remove a subscriber. Idempotent.

        Returns:
            True if the subscriber was registered.
        """
        connection_id = _connection_id(handle)
        async with self._lock:
            removed = self._subscribers.pop(connection_id, None)
            count = len(self._subscribers)
        if removed is not None:
            logger.info("➖ Subscriber %s disconnected (%d active)", connection_id, count)
        return removed is not None

    def touch(self, handle: HandleLike) -> None:
        """Mark a subscriber as recently heard from."""
        subscriber = self._subscribers.get(_connection_id(handle))
        if subscriber is not None:
            subscriber.last_seen = _utcnow()

    # ── Delivery ─────────────────────────────────────────

    async def broadcast(self, listings: Iterable[Listing]) -> BroadcastResult:
        """Send a NewListingsDetected batch to every subscriber."""
        message = messages.new_listings_detected(listings)
        result = await self.broadcast_message(message)
        logger.info(
            "📡 Broadcast %d listing(s) to %d subscriber(s) (%d dropped)",
            message["count"], result.delivered, len(result.dropped),
        )
        return result

    async def broadcast_message(self, message: dict[str, Any]) -> BroadcastResult:
        """Send any message to every subscriber, dropping those that fail."""
        targets = await self.subscribers()
        self.total_broadcasts += 1
        if not targets:
            logger.debug("No subscribers for %s", message.get("event"))
            return BroadcastResult()

        outcomes = await asyncio.gather(*(self._deliver(s, message) for s in targets))
        dropped = tuple(s.connection_id for s, ok in zip(targets, outcomes) if not ok)
        if dropped:
            await self._drop(dropped)
        return BroadcastResult(delivered=len(targets) - len(dropped), dropped=dropped)

    async def handle_ping(self, handle: HandleLike) -> bool:
        """Reply Pong to one subscriber.

        Returns:
            False if the reply failed (the subscriber is then dropped).
        """
        connection_id = _connection_id(handle)
        subscriber = self._subscribers.get(connection_id)
        if subscriber is None:
            return False
        subscriber.last_seen = _utcnow()
        ok = await self._deliver(subscriber, messages.pong())
        if not ok:
            await self._drop((connection_id,))
        return ok

    async def close(self) -> None:
        """Forget every subscriber (hub shutdown)."""
        async with self._lock:
            count = len(self._subscribers)
            self._subscribers.clear()
        logger.info("Hub closed (%d subscriber(s) released)", count)

    async def _deliver(self, subscriber: Subscriber, message: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(subscriber.send(message), self.send_timeout)
        except asyncio.TimeoutError:
            error = DispatchError(subscriber.connection_id, f"send timed out after {self.send_timeout:g}s")
        except Exception as e:
            error = DispatchError(subscriber.connection_id, f"{type(e).__name__}: {e}")
        else:
            subscriber.last_seen = _utcnow()
            return True

        logger.warning("%s", error)
        return False

    async def _drop(self, connection_ids: Iterable[str]) -> None:
        """Remove failed subscribers and end their connections.

        A dropped subscriber must see its connection close, otherwise it
        stays connected without receiving anything and never reconnects.
        """
        removed: list[Subscriber] = []
        async with self._lock:
            for connection_id in connection_ids:
                subscriber = self._subscribers.pop(connection_id, None)
                if subscriber is not None:
                    self.total_dropped += 1
                    removed.append(subscriber)
                    logger.info("Dropped subscriber %s after failed delivery", connection_id)

        for subscriber in removed:
            if subscriber.close is None:
                continue
            try:
                await asyncio.wait_for(subscriber.close(), self.send_timeout)
            except asyncio.TimeoutError:
                logger.warning("Closing subscriber %s timed out", subscriber.connection_id)
            except Exception as e:
                logger.warning("Closing subscriber %s failed: %s", subscriber.connection_id, e)
