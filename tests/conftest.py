"""Shared fixtures and fakes for the Mostaql Hub test suite."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from mostaql_hub.config import CategoryConfig, ScraperConfig
from mostaql_hub.errors import FetchError
from mostaql_hub.models import DetailFields, Listing


class FakeFetcher:
    """In-memory Fetcher.

    pages: source URL → list of listings, or an exception to raise.
    details: listing URL → DetailFields, an exception, or a delay in seconds
        (float) after which an empty DetailFields is returned.
    """

    def __init__(
        self,
        pages: Optional[dict[str, Any]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.pages = pages or {}
        self.details = details or {}
        self.list_calls: list[str] = []
        self.detail_calls: list[str] = []

    async def fetch_list_page(self, source_url: str) -> list[Listing]:
        self.list_calls.append(source_url)
        page = self.pages.get(source_url, [])
        if isinstance(page, Exception):
            raise page
        # Fresh copies so enrichment in one cycle never leaks into the next
        return [Listing(**vars(listing)) for listing in page]

    async def fetch_detail(self, listing_url: str) -> DetailFields:
        self.detail_calls.append(listing_url)
        detail = self.details.get(listing_url, DetailFields())
        if isinstance(detail, Exception):
            raise detail
        if isinstance(detail, (int, float)):
            await asyncio.sleep(detail)
            return DetailFields()
        return detail


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.batches: list[list[Listing]] = []
        self.fail = fail

    async def dispatch_listings(self, listings: list[Listing]) -> None:
        if self.fail:
            raise RuntimeError("sink down")
        self.batches.append(list(listings))


def make_listing(listing_id: str, budget: str = "$500.00", title: str = "", **extra: Any) -> Listing:
    return Listing(
        id=listing_id,
        title=title or f"Project {listing_id}",
        budget_raw=budget,
        url=f"https://mostaql.com/project/{listing_id}",
        **extra,
    )


@pytest.fixture
def scraper_config() -> ScraperConfig:
    return ScraperConfig(
        base_url="https://mostaql.com",
        categories=[
            CategoryConfig("development", "https://mostaql.com/projects?category=development"),
            CategoryConfig("ai", "https://mostaql.com/projects?category=ai-machine-learning"),
        ],
        request_delay_seconds=0,
        max_retries=2,
        timeout_seconds=5,
    )


@pytest.fixture
def fetch_error() -> FetchError:
    return FetchError("https://mostaql.com/projects", "server error", status_code=503)
