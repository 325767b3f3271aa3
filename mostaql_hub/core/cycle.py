"""Mostaql Hub — Scrape Cycle.

One fetch → dedupe → cheap filter → enrich → deep filter → record →
dispatch pass over every enabled category. The only state carried
between cycles is the shared SeenSet.

A cycle never raises for fetch, parse or dispatch failures: a failing
category contributes nothing, a failing or slow detail page leaves its
listing unenriched, and a failing sink is logged.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence

from mostaql_hub.core.filters import FilterCriteria, FilterStage, filter_batch
from mostaql_hub.core.quiet_hours import QuietHours
from mostaql_hub.core.seen_set import SeenSet
from mostaql_hub.errors import FetchError, ParseError
from mostaql_hub.models import CycleResult, CycleState, Listing
from mostaql_hub.utils.logger import get_logger

if TYPE_CHECKING:
    from mostaql_hub.config import CategoryConfig
    from mostaql_hub.scraper.fetcher import Fetcher

logger = get_logger(__name__)


class ListingSink(Protocol):
    """Receives the final batch of a cycle."""

    async def dispatch_listings(self, listings: list[Listing]) -> None:
        ...


class ScrapeCycle:
    """Runs scrape cycles against a fetcher and a shared SeenSet.

    Attributes:
        criteria: Filter criteria; read once at the start of every run,
            so replacing it takes effect on the next cycle.
        seen_set: Dedup memory shared across cycles.
    """

    def __init__(
        self,
        fetcher: "Fetcher",
        seen_set: SeenSet,
        categories: Sequence["CategoryConfig"],
        sink: Optional[ListingSink] = None,
        criteria: Optional[FilterCriteria] = None,
        quiet_hours: Optional[QuietHours] = None,
        detail_timeout: float = 3.0,
        detail_concurrency: int = 3,
        remember_rejected: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.fetcher = fetcher
        self.seen_set = seen_set
        self.categories = list(categories)
        self.sink = sink
        self.criteria = criteria or FilterCriteria()
        self.quiet_hours = quiet_hours
        self.detail_timeout = detail_timeout
        self.detail_concurrency = max(1, detail_concurrency)
        self.remember_rejected = remember_rejected
        self._clock = clock

    async def run(self, cancel_event: Optional[asyncio.Event] = None) -> CycleResult:
        """Run one complete cycle.

        Args:
            cancel_event: When set, the cycle stops at the next phase
                boundary (or aborts in-flight detail fetches) without
                recording or dispatching anything.

        Returns:
            CycleResult with per-phase counters, errors and the final batch.
        """
        cancel = cancel_event or asyncio.Event()
        result = CycleResult()
        started = time.monotonic()
        criteria = self.criteria
        now = self._clock()

        enabled = [c for c in self.categories if getattr(c, "enabled", True)]
        logger.info("═══ Scrape Cycle Starting (%d categories) ═══", len(enabled))

        # ── Step 1: Fetch listing pages ──────────────────
        result.state = CycleState.FETCHING
        listings = await self._fetch_categories(enabled, result, cancel)
        result.listed = len(listings)
        if cancel.is_set():
            return self._finish(result, started, cancelled=True)

        # ── Step 2: Drop already-seen ids ────────────────
        result.state = CycleState.DEDUPING
        fresh = [listing for listing in listings if listing.id not in self.seen_set]
        result.new = len(fresh)
        logger.info("Found %d listings, %d new", result.listed, result.new)

        # ── Step 3: Cheap filter ─────────────────────────
        result.state = CycleState.CHEAP_FILTERING
        candidates, _ = filter_batch(fresh, criteria, FilterStage.CHEAP, now)
        result.passed_cheap = len(candidates)
        if cancel.is_set():
            return self._finish(result, started, cancelled=True)

        # ── Step 4-5: Enrich from detail pages ───────────
        result.state = CycleState.ENRICHING
        await self._enrich_all(candidates, result, cancel)
        if cancel.is_set():
            return self._finish(result, started, cancelled=True)

        # ── Step 6: Deep filter ──────────────────────────
        result.state = CycleState.DEEP_FILTERING
        survivors, rejected = filter_batch(candidates, criteria, FilterStage.DEEP, now)
        result.passed_deep = len(survivors)

        # ── Step 7: Record ───────────────────────────────
        self.seen_set.add_many(listing.id for listing in survivors)
        if self.remember_rejected:
            self.seen_set.add_many(listing.id for listing in rejected)
        result.listings = survivors

        # ── Step 8: Dispatch ─────────────────────────────
        result.state = CycleState.DISPATCHING
        if survivors:
            if self.quiet_hours is not None and self.quiet_hours.is_quiet(now):
                result.suppressed = len(survivors)
                logger.info(
                    "🌙 Quiet hours (%s): %d listing(s) recorded, notifications suppressed",
                    self.quiet_hours, len(survivors),
                )
            else:
                await self._dispatch(survivors, result)

        return self._finish(result, started)

    # ═══════════════════════════════════════════════════════
    # Phases
    # ═══════════════════════════════════════════════════════

    async def _fetch_categories(
        self,
        categories: Sequence["CategoryConfig"],
        result: CycleResult,
        cancel: asyncio.Event,
    ) -> list[Listing]:
        """Fetch every category, isolating failures; first occurrence of an id wins."""
        merged: list[Listing] = []
        seen_ids: set[str] = set()

        for category in categories:
            if cancel.is_set():
                break
            try:
                page = await self.fetcher.fetch_list_page(category.url)
            except ParseError as e:
                result.parse_errors[category.name] = str(e)
                if e.is_challenge:
                    logger.error(
                        "🛑 Anti-bot challenge on category '%s' (marker: %s). "
                        "A session/cookie refresh may be needed.",
                        category.name, e.marker,
                    )
                else:
                    logger.error("Parse error on category '%s': %s", category.name, e)
                continue
            except FetchError as e:
                result.fetch_errors[category.name] = str(e)
                logger.warning("Fetch error on category '%s': %s", category.name, e)
                continue
            except Exception as e:
                result.fetch_errors[category.name] = f"{type(e).__name__}: {e}"
                logger.exception("Unexpected error fetching category '%s'", category.name)
                continue

            added = 0
            for listing in page:
                if listing.id not in seen_ids:
                    seen_ids.add(listing.id)
                    merged.append(listing)
                    added += 1
            logger.info("Category '%s': %d listings (%d unique)", category.name, len(page), added)

        return merged

    async def _enrich_all(
        self,
        listings: list[Listing],
        result: CycleResult,
        cancel: asyncio.Event,
    ) -> None:
        if not listings:
            return
        semaphore = asyncio.Semaphore(self.detail_concurrency)
        outcomes = await asyncio.gather(
            *(self._enrich_one(listing, semaphore, cancel) for listing in listings)
        )
        result.enriched = sum(1 for o in outcomes if o is True)
        result.enrich_failed = sum(1 for o in outcomes if o is False)
        logger.info(
            "Enrichment: %d enriched, %d failed (of %d)",
            result.enriched, result.enrich_failed, len(listings),
        )

    async def _enrich_one(
        self,
        listing: Listing,
        semaphore: asyncio.Semaphore,
        cancel: asyncio.Event,
    ) -> Optional[bool]:
        """Fetch and merge one detail page.

        Returns:
            True if enriched, False on failure or timeout, None if skipped
            (no URL or cancelled).
        """
        if not listing.url:
            return None

        async with semaphore:
            if cancel.is_set():
                return None

            fetch = asyncio.ensure_future(
                asyncio.wait_for(self.fetcher.fetch_detail(listing.url), self.detail_timeout)
            )
            stop = asyncio.ensure_future(cancel.wait())
            try:
                await asyncio.wait({fetch, stop}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (fetch, stop):
                    if not task.done():
                        task.cancel()
                await asyncio.gather(fetch, stop, return_exceptions=True)

            if fetch.cancelled():
                return None

            error = fetch.exception()
            if error is None:
                listing.merge_detail(fetch.result())
                return True

            if isinstance(error, asyncio.TimeoutError):
                logger.warning(
                    "Detail for %s timed out after %.1fs, continuing unenriched",
                    listing.id, self.detail_timeout,
                )
            elif isinstance(error, ParseError) and error.is_challenge:
                logger.error("🛑 Anti-bot challenge on detail page of %s", listing.id)
            elif isinstance(error, (FetchError, ParseError)):
                logger.warning("Detail for %s failed: %s", listing.id, error)
            else:
                logger.error(
                    "Unexpected error fetching detail for %s: %s: %s",
                    listing.id, type(error).__name__, error,
                )
            return False

    async def _dispatch(self, listings: list[Listing], result: CycleResult) -> None:
        if self.sink is None:
            for listing in listings:
                logger.info("  📌 %s — %s — %s", listing.id, listing.title[:60], listing.budget_raw)
            result.dispatched = len(listings)
            return

        try:
            await self.sink.dispatch_listings(listings)
        except Exception as e:
            logger.error("Dispatch failed for %d listing(s): %s", len(listings), e)
            return
        result.dispatched = len(listings)

    def _finish(self, result: CycleResult, started: float, cancelled: bool = False) -> CycleResult:
        result.cancelled = cancelled
        result.state = CycleState.DONE
        result.duration_seconds = round(time.monotonic() - started, 2)
        if cancelled:
            result.listings = []
            logger.warning("═══ Scrape Cycle Cancelled (%.1fs) ═══", result.duration_seconds)
            return result

        logger.info("═══ Scrape Cycle Complete ═══")
        logger.info(
            "  Listed: %d | New: %d | Cheap: %d | Enriched: %d (%d failed) | Deep: %d | "
            "Dispatched: %d | Suppressed: %d | Errors: %d | Time: %.1fs",
            result.listed, result.new, result.passed_cheap, result.enriched,
            result.enrich_failed, result.passed_deep, result.dispatched,
            result.suppressed, result.error_count, result.duration_seconds,
        )
        return result
