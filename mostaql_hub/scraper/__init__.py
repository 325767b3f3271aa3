"""Mostaql Hub — Scraper Package.

Retrieval of mostaql.com listing and detail pages:
  - MostaqlClient: Async HTTP client with retry and rate limiting
  - ListScraper: Listing page parser (table rows, card fallback)
  - DetailScraper: Detail page parser
  - MostaqlFetcher: Fetcher implementation with per-category circuit breakers
"""

from mostaql_hub.scraper.client import MostaqlClient
from mostaql_hub.scraper.detail_scraper import DetailScraper
from mostaql_hub.scraper.fetcher import Fetcher, MostaqlFetcher
from mostaql_hub.scraper.list_scraper import ListScraper

__all__ = [
    "MostaqlClient",
    "ListScraper",
    "DetailScraper",
    "Fetcher",
    "MostaqlFetcher",
]
