"""Mostaql Hub — Push Message Builders.

JSON-ready dicts exchanged over the hub's WebSocket connections. Every
message carries an "event" name; timestamps are ISO-8601 UTC with a
trailing "Z".
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from mostaql_hub.models import Listing, utc_timestamp

# ── Event names ──────────────────────────────────────────
CONNECTED = "Connected"
NEW_LISTINGS_DETECTED = "NewListingsDetected"
PING = "Ping"
PONG = "Pong"
TRACKED_PROJECT_UPDATED = "TrackedProjectUpdated"

CONNECTED_MESSAGE = "Successfully connected to Job Notification Hub"


def connected(connection_id: str, timestamp: Optional[str] = None) -> dict[str, Any]:
    return {
        "event": CONNECTED,
        "connectionId": connection_id,
        "timestamp": timestamp or utc_timestamp(),
        "message": CONNECTED_MESSAGE,
    }


def new_listings_detected(listings: Iterable[Listing], timestamp: Optional[str] = None) -> dict[str, Any]:
    payload = [listing.to_wire() for listing in listings]
    return {
        "event": NEW_LISTINGS_DETECTED,
        "timestamp": timestamp or utc_timestamp(),
        "count": len(payload),
        "listings": payload,
    }


def ping() -> dict[str, Any]:
    return {"event": PING}


def pong(timestamp: Optional[str] = None) -> dict[str, Any]:
    return {"event": PONG, "timestamp": timestamp or utc_timestamp()}


def tracked_project_updated(
    project: dict[str, Any],
    changes: list[str],
    timestamp: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "event": TRACKED_PROJECT_UPDATED,
        "timestamp": timestamp or utc_timestamp(),
        "project": project,
        "changes": changes,
    }


def parse_listings(message: dict[str, Any]) -> list[Listing]:
    """Decode the listings of a NewListingsDetected message, skipping malformed entries."""
    listings: list[Listing] = []
    for item in message.get("listings") or []:
        if not isinstance(item, dict):
            continue
        try:
            listings.append(Listing.from_wire(item))
        except ValueError:
            continue
    return listings
