"""Mostaql Hub — Detail Page Scraper.

Parses project detail pages into DetailFields using selectolax.
Extracts the status label, the full description, and the sidebar /
client-widget meta rows (communications, hiring rate, duration, budget,
client registration date).

Every extraction is resilient: missing fields stay empty and never
cause an exception.
"""

from __future__ import annotations

from typing import Optional

from selectolax.parser import HTMLParser, Node

from mostaql_hub.models import DetailFields
from mostaql_hub.scraper.list_scraper import clean_text
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

_STATUS_SELECTOR = "span[class*='label-prj']"
_DESCRIPTION_SELECTORS = (
    "div.project-post__body",
    "#projectDetailsTab .carda__content",
    ".carda__content",
    ".project-description",
)
_META_ROW_SELECTOR = "tr.meta-row, .meta-row, table.table-meta tr"

# Arabic row label → DetailFields attribute
META_LABELS: dict[str, str] = {
    "التواصلات الجارية": "communications",
    "معدل التوظيف": "hiring_rate_raw",
    "مدة التنفيذ": "duration_raw",
    "الميزانية": "budget_raw",
    "تاريخ التسجيل": "client_registration_date_raw",
}


def _text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return clean_text(node.text(deep=True, separator=" "))


def _meta_value_node(row: Node) -> Optional[Node]:
    """The value cell of a meta row: .meta-value, else the last td."""
    value = row.css_first(".meta-value")
    if value is not None:
        return value
    cells = row.css("td")
    return cells[-1] if cells else None


class DetailScraper:
    """Extracts enrichment fields from project detail pages."""

    def extract_detail(self, html: str, url: str = "") -> DetailFields:
        """Parse a detail page.

        Args:
            html: Complete HTML of the project page.
            url: Page URL, used in logs.

        Returns:
            DetailFields with every field found; missing ones stay empty.
        """
        tree = HTMLParser(html)
        detail = DetailFields()

        # ── Status ───────────────────────────────────────
        detail.status = _text(tree.css_first(_STATUS_SELECTOR))

        # ── Description ──────────────────────────────────
        for selector in _DESCRIPTION_SELECTORS:
            description = _text(tree.css_first(selector))
            if description:
                detail.description = description
                break

        # ── Meta rows ────────────────────────────────────
        for row in tree.css(_META_ROW_SELECTOR):
            row_text = _text(row)
            for label, attr in META_LABELS.items():
                if label not in row_text or getattr(detail, attr):
                    continue
                value = _text(_meta_value_node(row))
                # A value cell that only repeats the label carries nothing
                if value and value != label:
                    setattr(detail, attr, value)
                break

        logger.debug(
            "Parsed detail%s (%d/7 fields)",
            f" for {url}" if url else "", detail.present_count(),
        )
        return detail
