"""Mostaql Hub — Notifier Package.

Delivery of final batches to local sinks:
  - formatters: HTML message builders (listing card, batch list, alerts)
  - telegram_bot: Async Telegram client with retry/fallback
  - dispatcher: Fan-out to hub + Telegram with sink isolation
"""

from mostaql_hub.notifier.dispatcher import DispatchReport, NotificationDispatcher
from mostaql_hub.notifier.formatters import (
    format_listing_alert,
    format_listings_batch,
    format_new_listings,
    format_tracked_update,
)
from mostaql_hub.notifier.telegram_bot import TelegramNotifier

__all__ = [
    "format_listing_alert",
    "format_listings_batch",
    "format_new_listings",
    "format_tracked_update",
    "DispatchReport",
    "NotificationDispatcher",
    "TelegramNotifier",
]
