"""Mostaql Hub — Fetcher.

The retrieval boundary of a scrape cycle. `Fetcher` is the protocol the
cycle depends on; `MostaqlFetcher` implements it over MostaqlClient and
the two page scrapers, with one circuit breaker per listing URL so a
category serving challenge pages is left alone for a cooldown.
"""

from __future__ import annotations

from typing import Optional, Protocol

from mostaql_hub.config import ScraperConfig
from mostaql_hub.models import DetailFields, Listing
from mostaql_hub.scraper.client import MostaqlClient
from mostaql_hub.scraper.detail_scraper import DetailScraper
from mostaql_hub.scraper.list_scraper import ListScraper
from mostaql_hub.utils.logger import get_logger
from mostaql_hub.utils.resilience import CircuitBreaker

logger = get_logger(__name__)


class Fetcher(Protocol):
    """Retrieves listing pages and detail pages.

    Both methods raise FetchError on transport failure and ParseError
    when the page is unusable.
    """

    async def fetch_list_page(self, source_url: str) -> list[Listing]:
        ...

    async def fetch_detail(self, listing_url: str) -> DetailFields:
        ...


class MostaqlFetcher:
    """Fetcher backed by mostaql.com.

    Attributes:
        client: HTTP client used for all requests.
        breakers: Circuit breaker per listing URL.
    """

    def __init__(self, config: ScraperConfig, client: Optional[MostaqlClient] = None) -> None:
        self.config = config
        self.client = client or MostaqlClient(config)
        self.list_scraper = ListScraper(config.base_url)
        self.detail_scraper = DetailScraper()
        self.breakers: dict[str, CircuitBreaker] = {}

    def breaker_for(self, source_url: str) -> CircuitBreaker:
        if source_url not in self.breakers:
            self.breakers[source_url] = CircuitBreaker(
                name=f"list:{source_url}",
                failure_threshold=self.config.circuit_failure_threshold,
                cooldown_seconds=self.config.circuit_cooldown_seconds,
            )
        return self.breakers[source_url]

    async def fetch_list_page(self, source_url: str) -> list[Listing]:
        """Fetch and parse one category listing page.

        Raises:
            CircuitOpenError: If the category is cooling down.
            FetchError: If the page could not be retrieved.
            ParseError: On a challenge page or unrecognisable HTML.
        """
        return await self.breaker_for(source_url).call(self._fetch_list_page, source_url)

    async def _fetch_list_page(self, source_url: str) -> list[Listing]:
        html = await self.client.get_list_page(source_url)
        return self.list_scraper.extract_listings(html, source_url)

    async def fetch_detail(self, listing_url: str) -> DetailFields:
        """Fetch and parse one project detail page."""
        html = await self.client.get_detail_page(listing_url)
        return self.detail_scraper.extract_detail(html, listing_url)

    async def close(self) -> None:
        await self.client.close()
