"""Mostaql Hub — Data Models.

Dataclasses for the entities that flow through one scrape cycle:
  - Listing: a project as seen on the listing page, progressively
    enriched with detail-page fields
  - DetailFields: enrichment data scraped from a project page
  - CycleResult: statistics and final batch of one scrape cycle

Listings carry to_wire()/from_wire() for the push-hub JSON format.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional

# Budget text Mostaql shows when the owner did not set one
UNKNOWN_BUDGET = "غير محدد"

# Python attribute → wire key, for every optional field of a listing
_WIRE_OPTIONAL: dict[str, str] = {
    "time_posted": "time",
    "description": "description",
    "hiring_rate_raw": "hiringRate",
    "status": "status",
    "communications": "communications",
    "duration_raw": "duration",
    "client_registration_date_raw": "registrationDate",
}


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a moment as ISO-8601 UTC with a trailing 'Z'.

    Args:
        moment: Aware or naive-UTC datetime. Defaults to now.

    Returns:
        String like '2026-10-19T12:00:00.123Z'.
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat(timespec="milliseconds") + "Z"


# ═══════════════════════════════════════════════════════════
# Scraper Models
# ═══════════════════════════════════════════════════════════


@dataclass
class DetailFields:
    """Enrichment fields extracted from a project's detail page.

    Empty strings mean "not found on the page".
    """

    description: str = ""
    hiring_rate_raw: str = ""
    status: str = ""
    communications: str = ""
    duration_raw: str = ""
    budget_raw: str = ""
    client_registration_date_raw: str = ""

    def present_count(self) -> int:
        """Number of non-empty fields, for extraction-quality logging."""
        return sum(1 for f in fields(self) if getattr(self, f.name))


@dataclass
class Listing:
    """One job posting.

    Created from list-page data (id, title, budget, url, time) and enriched
    once from the detail page. The id is fixed after construction, and a
    populated field is never reset to empty by enrichment.

    Attributes:
        id: Stable project ID scraped from the URL.
        title: Project title.
        budget_raw: Free-form budget text, e.g. "$500.00 - $1,000.00".
        url: Absolute URL to the project page.
        time_posted: Relative posting time from the listing row.
        duration_raw: Execution duration text, e.g. "5 أيام".
        hiring_rate_raw: Client hiring rate, e.g. "85%" or "لم يحسب بعد".
        description: Full project description.
        client_registration_date_raw: e.g. "14 فبراير 2026".
        status: Project status label.
        communications: Ongoing communications count text.
    """

    id: str
    title: str = ""
    budget_raw: str = ""
    url: str = ""
    time_posted: str = ""
    duration_raw: str = ""
    hiring_rate_raw: str = ""
    description: str = ""
    client_registration_date_raw: str = ""
    status: str = ""
    communications: str = ""

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("Listing.id is immutable once assigned")
        super().__setattr__(name, value)

    @property
    def has_known_budget(self) -> bool:
        """Whether the list page provided a budget value."""
        return bool(self.budget_raw.strip()) and self.budget_raw.strip() != UNKNOWN_BUDGET

    @property
    def is_enriched(self) -> bool:
        """Whether any detail-only field has been populated."""
        return any((
            self.description, self.hiring_rate_raw, self.duration_raw,
            self.client_registration_date_raw, self.status, self.communications,
        ))

    def merge_detail(self, detail: DetailFields) -> None:
        """Fill this listing from detail-page data.

        Non-empty detail values win over existing ones; empty detail values
        never clear a field. The detail budget is used only when the list
        page had none (empty or the "غير محدد" marker).

        Args:
            detail: Fields scraped from the project page.
        """
        for name in (
            "description", "hiring_rate_raw", "status", "communications",
            "duration_raw", "client_registration_date_raw",
        ):
            value = getattr(detail, name)
            if value:
                setattr(self, name, value)

        if detail.budget_raw and not self.has_known_budget:
            self.budget_raw = detail.budget_raw

    def to_wire(self) -> dict[str, Any]:
        """Convert to the push-message listing dict (camelCase keys).

        Optional fields are omitted when empty.

        Returns:
            Dict with id, title, budget, url and any populated extras.
        """
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "budget": self.budget_raw,
            "url": self.url,
        }
        for attr, key in _WIRE_OPTIONAL.items():
            value = getattr(self, attr)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Listing":
        """Construct a Listing from a push-message listing dict.

        Args:
            data: Dict as produced by to_wire().

        Returns:
            A Listing instance.

        Raises:
            ValueError: If the dict has no id.
        """
        listing_id = str(data.get("id") or "")
        if not listing_id:
            raise ValueError("Listing payload has no id")
        kwargs = {attr: str(data.get(key) or "") for attr, key in _WIRE_OPTIONAL.items()}
        return cls(
            id=listing_id,
            title=str(data.get("title") or ""),
            budget_raw=str(data.get("budget") or ""),
            url=str(data.get("url") or ""),
            **kwargs,
        )


# ═══════════════════════════════════════════════════════════
# Cycle Models
# ═══════════════════════════════════════════════════════════


class CycleState(str, enum.Enum):
    """States of one scrape cycle, in execution order."""

    FETCHING = "fetching"
    DEDUPING = "deduping"
    CHEAP_FILTERING = "cheap_filtering"
    ENRICHING = "enriching"
    DEEP_FILTERING = "deep_filtering"
    DISPATCHING = "dispatching"
    DONE = "done"


@dataclass
class CycleResult:
    """Statistics and outcome of one scrape cycle.

    Attributes:
        listed: Unique listings returned by all categories.
        new: Listings not present in the seen set.
        passed_cheap: Survivors of the list-data filter.
        enriched: Detail pages fetched and merged.
        enrich_failed: Detail fetches that failed or timed out.
        passed_deep: Survivors of the full-data filter.
        dispatched: Listings handed to the dispatcher.
        suppressed: Survivors withheld because of quiet hours.
        fetch_errors: Category name → FetchError message.
        parse_errors: Category name → ParseError message.
        listings: The final batch (survivors).
        state: Last state reached (always DONE when run() returns).
        cancelled: Whether the cycle stopped early on cancellation.
        duration_seconds: Wall time of the cycle.
    """

    listed: int = 0
    new: int = 0
    passed_cheap: int = 0
    enriched: int = 0
    enrich_failed: int = 0
    passed_deep: int = 0
    dispatched: int = 0
    suppressed: int = 0
    fetch_errors: dict[str, str] = field(default_factory=dict)
    parse_errors: dict[str, str] = field(default_factory=dict)
    listings: list[Listing] = field(default_factory=list)
    state: CycleState = CycleState.FETCHING
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def error_count(self) -> int:
        """Total category-level errors plus failed enrichments."""
        return len(self.fetch_errors) + len(self.parse_errors) + self.enrich_failed

    def summary(self) -> dict[str, Any]:
        """Flat stats dict for logging and health recording."""
        return {
            "listed": self.listed,
            "new": self.new,
            "passed_cheap": self.passed_cheap,
            "enriched": self.enriched,
            "enrich_failed": self.enrich_failed,
            "passed_deep": self.passed_deep,
            "dispatched": self.dispatched,
            "suppressed": self.suppressed,
            "fetch_errors": len(self.fetch_errors),
            "parse_errors": len(self.parse_errors),
            "cancelled": self.cancelled,
            "duration": self.duration_seconds,
        }
