"""Mostaql Hub — Listing Inbox.

Subscriber-side handling of pushed batches (listen mode). The hub already
sends fully enriched listings, so no HTTP requests are made here: the
inbox applies its own SeenSet, FilterCriteria and quiet hours, keeps the
most recent listings for display and forwards accepted batches to the
local sink.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Optional

from mostaql_hub.core.cycle import ListingSink
from mostaql_hub.core.filters import FilterCriteria, FilterStage, check
from mostaql_hub.core.quiet_hours import QuietHours
from mostaql_hub.core.seen_set import SeenSet
from mostaql_hub.hub.client import HubListener
from mostaql_hub.models import Listing
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

RECENT_LIMIT = 50


def _id_key(listing: Listing) -> int:
    return int(listing.id) if listing.id.isdigit() else 0


class ListingInbox(HubListener):
    """HubListener that filters and records received listings.

    Attributes:
        seen_set: Ids already handled by this subscriber.
        criteria: This subscriber's own filter criteria.
        recent: Most recent accepted listings, highest id first.
        today_count: Accepted listings today.
        last_check: When the last batch arrived.
    """

    def __init__(
        self,
        seen_set: Optional[SeenSet] = None,
        criteria: Optional[FilterCriteria] = None,
        quiet_hours: Optional[QuietHours] = None,
        sink: Optional[ListingSink] = None,
        recent_limit: int = RECENT_LIMIT,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.seen_set = seen_set or SeenSet()
        self.criteria = criteria or FilterCriteria()
        self.quiet_hours = quiet_hours
        self.sink = sink
        self.recent_limit = recent_limit
        self.recent: list[Listing] = []
        self.today_count = 0
        self.last_check: Optional[datetime] = None
        self.connected = False
        self._clock = clock
        self._today: date = clock().date()

    async def on_connected(self, connection_id: str) -> None:
        self.connected = True
        logger.info("✅ Subscribed to hub (connection %s)", connection_id)

    async def on_disconnected(self, reason: str) -> None:
        self.connected = False
        logger.warning("Hub connection lost: %s", reason)

    async def on_pong(self, timestamp: str) -> None:
        logger.debug("Pong from hub at %s", timestamp)

    async def on_tracked_update(self, project: dict[str, Any], changes: list[str]) -> None:
        logger.info(
            "🔄 Tracked project %s changed: %s",
            project.get("title") or project.get("url", "?"), "; ".join(changes),
        )

    async def on_listings_received(self, listings: list[Listing]) -> None:
        await self.accept(listings)

    async def accept(self, listings: list[Listing]) -> list[Listing]:
        """Filter a received batch and forward what survives.

        Every unseen id is recorded, whether or not it passes the
        filters, so a re-broadcast never notifies twice.

        Returns:
            The accepted listings.
        """
        now = self._clock()
        if now.date() != self._today:
            self._today = now.date()
            self.today_count = 0
        self.last_check = now

        accepted: list[Listing] = []
        for listing in listings:
            if listing.id in self.seen_set:
                logger.debug("Skipping already seen listing %s", listing.id)
                continue
            self.seen_set.add(listing.id)

            ok, reason = check(listing, self.criteria, FilterStage.DEEP, now)
            if not ok:
                logger.debug("  ❌ SKIP %s — %s", listing.id, reason)
                continue
            accepted.append(listing)

        self._remember(accepted)
        self.today_count += len(accepted)

        if not accepted:
            return accepted
        if self.quiet_hours is not None and self.quiet_hours.is_quiet(now):
            logger.info("🌙 Quiet hours: %d listing(s) received, notifications suppressed", len(accepted))
            return accepted

        logger.info("📥 %d new listing(s) accepted", len(accepted))
        if self.sink is not None:
            try:
                await self.sink.dispatch_listings(accepted)
            except Exception as e:
                logger.error("Local dispatch failed: %s", e)
        return accepted

    def _remember(self, accepted: list[Listing]) -> None:
        by_id = {listing.id: listing for listing in self.recent}
        for listing in accepted:
            by_id[listing.id] = listing
        self.recent = sorted(by_id.values(), key=_id_key, reverse=True)[:self.recent_limit]
