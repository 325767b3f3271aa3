"""Mostaql Hub — Notification Dispatcher.

Fans each final batch out to every configured sink: the push hub (server
mode) and Telegram (optional in every mode). Sinks are isolated: one
failing never prevents delivery to the other, and nothing raises back
into the scrape cycle.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence

from mostaql_hub.hub import messages
from mostaql_hub.hub.hub import NotificationHub
from mostaql_hub.models import Listing
from mostaql_hub.notifier.formatters import (
    format_new_listings,
    format_shutdown_message,
    format_startup_message,
    format_system_alert,
    format_system_status,
    format_tracked_update,
)
from mostaql_hub.notifier.telegram_bot import TelegramNotifier
from mostaql_hub.utils.logger import get_logger

if TYPE_CHECKING:
    from mostaql_hub.tracker import TrackedUpdate

logger = get_logger(__name__)


@dataclass
class DispatchReport:
    """What happened to one batch.

    Attributes:
        hub_delivered: Subscribers that received the batch (None: no hub).
        telegram_sent: Whether Telegram accepted it (None: no Telegram).
    """

    hub_delivered: Optional[int] = None
    telegram_sent: Optional[bool] = None


class NotificationDispatcher:
    """Sends listing batches and system messages to hub + Telegram.

    Attributes:
        hub: Push hub, present in server mode.
        telegram: Telegram sink, present when configured.
    """

    def __init__(
        self,
        hub: Optional[NotificationHub] = None,
        telegram: Optional[TelegramNotifier] = None,
    ) -> None:
        self.hub = hub
        self.telegram = telegram
        self._start_time = time.monotonic()

    @property
    def sink_names(self) -> list[str]:
        names = ["log"]
        if self.hub is not None:
            names.append("hub")
        if self.telegram is not None:
            names.append("telegram")
        return names

    async def dispatch_listings(self, listings: Sequence[Listing]) -> DispatchReport:
        """Deliver one batch to every sink.

        Args:
            listings: Final batch of a cycle (or an inbox-accepted batch).

        Returns:
            Per-sink outcome.
        """
        report = DispatchReport()
        if not listings:
            return report

        for listing in listings:
            logger.info("  📌 %s — %s — %s", listing.id, listing.title[:60], listing.budget_raw)

        # ── Hub ──────────────────────────────────────────
        if self.hub is not None:
            try:
                result = await self.hub.broadcast(listings)
                report.hub_delivered = result.delivered
            except Exception as e:
                logger.error("Hub broadcast failed: %s", e)
                report.hub_delivered = 0

        # ── Telegram ─────────────────────────────────────
        if self.telegram is not None:
            report.telegram_sent = await self._send_telegram(format_new_listings(listings))

        logger.info(
            "Dispatched %d listing(s) via %s",
            len(listings), ", ".join(self.sink_names),
        )
        return report

    async def dispatch_tracked_update(self, update: "TrackedUpdate") -> None:
        """Notify subscribers and Telegram of a tracked project change."""
        logger.info("🔄 Tracked project changed: %s — %s", update.title or update.url, "; ".join(update.changes))
        if self.hub is not None:
            try:
                await self.hub.broadcast_message(
                    messages.tracked_project_updated(update.to_wire(), list(update.changes)),
                )
            except Exception as e:
                logger.error("Hub tracked-update broadcast failed: %s", e)
        if self.telegram is not None:
            await self._send_telegram(format_tracked_update(update.title, update.url, update.changes))

    async def send_startup_message(self, info: dict[str, Any]) -> None:
        await self._send_telegram(format_startup_message(info), disable_preview=True)

    async def send_shutdown_message(self) -> None:
        uptime_s = time.monotonic() - self._start_time
        hours, mins = int(uptime_s // 3600), int((uptime_s % 3600) // 60)
        await self._send_telegram(
            format_shutdown_message(f"{hours}h {mins}m" if hours else f"{mins}m"),
            disable_preview=True,
        )

    async def send_status_report(self, status: dict[str, Any]) -> None:
        await self._send_telegram(format_system_status(status), disable_preview=True)

    async def send_error_alert(self, error_msg: str) -> None:
        logger.warning("⚠️ System alert: %s", error_msg)
        await self._send_telegram(format_system_alert(error_msg), disable_preview=True)

    async def _send_telegram(self, text: str, disable_preview: bool = False) -> Optional[bool]:
        if self.telegram is None or not text:
            return None
        try:
            return await self.telegram.send_message(text, disable_preview=disable_preview) is not None
        except Exception as e:
            logger.error("Telegram send failed: %s", e)
            return False
