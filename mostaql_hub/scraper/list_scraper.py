"""Mostaql Hub — Listing Page Scraper.

Parses project listings from a category listing page's HTML using
selectolax. Two strategies are tried in order:
  1. Table rows containing a /project/<id> link (classic view)
  2. Card links inside project/card containers (grid view fallback)
"""

from __future__ import annotations

import re
from typing import Optional

from selectolax.parser import HTMLParser, Node

from mostaql_hub.errors import ParseError
from mostaql_hub.models import UNKNOWN_BUDGET, Listing
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

PROJECT_ID_RE = re.compile(r"/project/(\d+)")
_WHITESPACE_RE = re.compile(r"\s+")

# Card links shorter than this are icons or "more" links, not titles
_MIN_CARD_TITLE_LENGTH = 6

_ROW_SELECTOR = "tr"
_LINK_SELECTOR = "a[href*='/project/']"
_CARD_SELECTOR = (
    "div[class*='card'] a[href*='/project/'], "
    "div[class*='project'] a[href*='/project/']"
)
# Any of these means the page is a listing page, even if it has no rows
_STRUCTURE_SELECTOR = "table, div[class*='project'], div[class*='card']"


def clean_text(text: str) -> str:
    """Collapse runs of whitespace (entities are already decoded by the parser)."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def _text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return clean_text(node.text(deep=True, separator=" "))


def _attr(node: Optional[Node], name: str) -> str:
    if node is None:
        return ""
    return node.attributes.get(name) or ""


class ListScraper:
    """Extracts listings from category listing pages.

    Attributes:
        base_url: Site root used to absolutize relative project links.
    """

    def __init__(self, base_url: str = "https://mostaql.com") -> None:
        self.base_url = base_url.rstrip("/")

    def extract_listings(self, html: str, url: str = "") -> list[Listing]:
        """Parse a listing page into Listings, newest first.

        Args:
            html: Raw listing page HTML.
            url: Page URL, used in error messages.

        Returns:
            Listings deduplicated by id, in page order.

        Raises:
            ParseError: If the page has no recognisable listing structure.
        """
        tree = HTMLParser(html)

        listings = self._from_rows(tree)
        strategy = "rows"
        if not listings:
            listings = self._from_cards(tree)
            strategy = "cards"

        if not listings and tree.css_first(_STRUCTURE_SELECTOR) is None:
            raise ParseError(url or "<listing page>", "no listing structure found")

        unique = _dedupe(listings)
        logger.debug(
            "Extracted %d listing(s) via %s strategy%s",
            len(unique), strategy, f" from {url}" if url else "",
        )
        return unique

    def _from_rows(self, tree: HTMLParser) -> list[Listing]:
        results: list[Listing] = []
        for row in tree.css(_ROW_SELECTOR):
            link = row.css_first(_LINK_SELECTOR)
            if link is None:
                continue
            href = _attr(link, "href")
            match = PROJECT_ID_RE.search(href)
            if not match:
                continue

            cells = row.css("td")
            budget = _text(cells[3]) if len(cells) > 3 else ""
            time_posted = _text(cells[4]) if len(cells) > 4 else ""

            results.append(Listing(
                id=match.group(1),
                title=_text(link),
                budget_raw=budget or UNKNOWN_BUDGET,
                url=self._absolute(href),
                time_posted=time_posted,
            ))
        return results

    def _from_cards(self, tree: HTMLParser) -> list[Listing]:
        results: list[Listing] = []
        for link in tree.css(_CARD_SELECTOR):
            href = _attr(link, "href")
            match = PROJECT_ID_RE.search(href)
            title = _text(link)
            if not match or len(title) < _MIN_CARD_TITLE_LENGTH:
                continue
            results.append(Listing(
                id=match.group(1),
                title=title,
                budget_raw=UNKNOWN_BUDGET,
                url=self._absolute(href),
            ))
        return results

    def _absolute(self, href: str) -> str:
        if href.startswith("http"):
            return href
        return f"{self.base_url}/{href.lstrip('/')}"


def _dedupe(listings: list[Listing]) -> list[Listing]:
    seen: set[str] = set()
    unique: list[Listing] = []
    for listing in listings:
        if listing.id not in seen:
            seen.add(listing.id)
            unique.append(listing)
    return unique
