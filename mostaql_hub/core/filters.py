"""Mostaql Hub — Listing Filter Engine.

Pure predicate evaluation of a listing against the user's criteria.
Filters run twice per listing: a cheap pass on list-page data (title,
budget) before any detail page is fetched, and a deep pass once the
detail fields are merged in.

Missing data never blocks a listing: an unparseable budget, duration or
registration date passes its rule. The one exception is the hiring rate
marker "لم يحسب بعد" (not calculated yet), which counts as 0%.
"""

from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from mostaql_hub.models import Listing
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

# ── Parsing tables ───────────────────────────────────────
_ARABIC_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹", "01234567890123456789")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_INT_RE = re.compile(r"\d+")

_NOT_CALCULATED_MARKER = "بعد"   # from "لم يحسب بعد"
_ONE_DAY = "يوم واحد"

_ARABIC_MONTHS: dict[str, int] = {
    "يناير": 1, "فبراير": 2, "مارس": 3, "أبريل": 4, "مايو": 5, "يونيو": 6,
    "يوليو": 7, "أغسطس": 8, "سبتمبر": 9, "أكتوبر": 10, "نوفمبر": 11, "ديسمبر": 12,
    # Alternate spellings seen on profile pages
    "ابريل": 4, "إبريل": 4, "يونيه": 6, "يوليه": 7, "اغسطس": 8, "اكتوبر": 10,
}


class FilterStage(str, enum.Enum):
    """Which pass of the pipeline is evaluating the listing."""

    CHEAP = "cheap"
    DEEP = "deep"


@dataclass(frozen=True)
class FilterCriteria:
    """User-configured filter parameters. Zero/empty disables a rule.

    Attributes:
        min_budget: Minimum acceptable (maximum) budget in USD.
        min_hiring_rate: Minimum client hiring rate, in percent.
        include_keywords: Comma-separated; at least one must appear.
        exclude_keywords: Comma-separated; none may appear.
        max_duration_days: Maximum execution duration in days.
        min_client_age_days: Minimum client account age in days.
    """

    min_budget: float = 0.0
    min_hiring_rate: float = 0.0
    include_keywords: str = ""
    exclude_keywords: str = ""
    max_duration_days: int = 0
    min_client_age_days: int = 0

    @property
    def is_empty(self) -> bool:
        """Whether no rule is enabled."""
        return not any((
            self.min_budget, self.min_hiring_rate, self.include_terms,
            self.exclude_terms, self.max_duration_days, self.min_client_age_days,
        ))

    @property
    def include_terms(self) -> list[str]:
        return _split_keywords(self.include_keywords)

    @property
    def exclude_terms(self) -> list[str]:
        return _split_keywords(self.exclude_keywords)


# ═══════════════════════════════════════════════════════════
# Field Parsers
# ═══════════════════════════════════════════════════════════


def _split_keywords(raw: str) -> list[str]:
    return [kw.strip().casefold() for kw in raw.split(",") if kw.strip()]


def _normalize_number_text(text: str) -> str:
    """Convert Arabic-Indic digits and drop thousands separators."""
    return text.translate(_ARABIC_DIGITS).replace(",", "").replace("٬", "")


def parse_budget_value(raw: str) -> float:
    """Return the highest number in a budget string.

    Budgets are usually ranges; the maximum gives the optimistic reading.
      "$500.00 - $1,000.00" → 1000.0
      "$25.00"              → 25.0
      "غير محدد"            → 0.0 (unknown)

    Args:
        raw: Budget text.

    Returns:
        The maximum parsed value, or 0.0 if none.
    """
    if not raw:
        return 0.0
    values = [float(n) for n in _NUMBER_RE.findall(_normalize_number_text(raw))]
    return max(values) if values else 0.0


def parse_hiring_rate(raw: str) -> float:
    """Parse a hiring rate like "85%" or "46.67%".

    The "لم يحسب بعد" marker and unparseable text map to 0.0.
    """
    if not raw or _NOT_CALCULATED_MARKER in raw:
        return 0.0
    match = _NUMBER_RE.search(_normalize_number_text(raw))
    return float(match.group(0)) if match else 0.0


def parse_duration_days(raw: str) -> int:
    """Parse a duration like "5 أيام" into days ("يوم واحد" → 1, unknown → 0)."""
    if not raw:
        return 0
    match = _INT_RE.search(_normalize_number_text(raw))
    if match:
        return int(match.group(0))
    if _ONE_DAY in raw:
        return 1
    return 0


def parse_registration_date(raw: str) -> Optional[date]:
    """Parse a registration date like "14 فبراير 2026".

    Returns:
        The date, or None if the text does not match "D <month> YYYY".
    """
    parts = _normalize_number_text(raw or "").split()
    if len(parts) < 3:
        return None
    day_text, month_name, year_text = parts[0], parts[1], parts[2]
    month = _ARABIC_MONTHS.get(month_name)
    if month is None or not day_text.isdigit() or not year_text.isdigit():
        return None
    try:
        return date(int(year_text), month, int(day_text))
    except ValueError:
        return None


def client_age_days(raw: str, now: Optional[datetime] = None) -> Optional[int]:
    """Days between a registration date and now (rounded up), or None if unknown."""
    registered = parse_registration_date(raw)
    if registered is None:
        return None
    now = now or datetime.now()
    delta = now - datetime.combine(registered, datetime.min.time())
    return math.ceil(abs(delta.total_seconds()) / 86400)


# ═══════════════════════════════════════════════════════════
# Evaluation
# ═══════════════════════════════════════════════════════════


def check(
    listing: Listing,
    criteria: FilterCriteria,
    stage: FilterStage = FilterStage.DEEP,
    now: Optional[datetime] = None,
) -> tuple[bool, str]:
    """Evaluate every enabled rule and explain the decision.

    Rules:
      1. Budget minimum (max of range; unknown passes)
      2. Hiring rate minimum (only once the rate is known)
      3. Include keywords (deferred in the cheap stage until a description exists)
      4. Exclude keywords
      5. Maximum duration (unknown passes)
      6. Minimum client account age (unknown passes)

    Args:
        listing: The listing to evaluate.
        criteria: Active filter criteria.
        stage: CHEAP for list-page data, DEEP after enrichment.
        now: Reference time for the client-age rule.

    Returns:
        Tuple of (passes, reason).
    """
    # ── Rule 1: Budget ───────────────────────────────────
    if criteria.min_budget > 0 and listing.budget_raw:
        budget = parse_budget_value(listing.budget_raw)
        if 0 < budget < criteria.min_budget:
            return False, f"Budget {budget:g} < {criteria.min_budget:g}"

    # ── Rule 2: Hiring rate ──────────────────────────────
    if criteria.min_hiring_rate > 0 and listing.hiring_rate_raw:
        rate = parse_hiring_rate(listing.hiring_rate_raw)
        if rate < criteria.min_hiring_rate:
            return False, f"Hiring rate {rate:g}% < {criteria.min_hiring_rate:g}%"

    content = f"{listing.title} {listing.description}".casefold()

    # ── Rule 3: Include keywords ─────────────────────────
    includes = criteria.include_terms
    if includes and (stage is FilterStage.DEEP or listing.description):
        if not any(kw in content for kw in includes):
            return False, "No include keyword matched"

    # ── Rule 4: Exclude keywords ─────────────────────────
    for kw in criteria.exclude_terms:
        if kw in content:
            return False, f"Exclude keyword: {kw}"

    # ── Rule 5: Duration ─────────────────────────────────
    if criteria.max_duration_days > 0 and listing.duration_raw:
        days = parse_duration_days(listing.duration_raw)
        if days > criteria.max_duration_days:
            return False, f"Duration {days}d > {criteria.max_duration_days}d"

    # ── Rule 6: Client age ───────────────────────────────
    if criteria.min_client_age_days > 0 and listing.client_registration_date_raw:
        age = client_age_days(listing.client_registration_date_raw, now)
        if age is not None and age < criteria.min_client_age_days:
            return False, f"Client age {age}d < {criteria.min_client_age_days}d"

    return True, "All enabled rules passed"


def evaluate(
    listing: Listing,
    criteria: FilterCriteria,
    stage: FilterStage = FilterStage.DEEP,
    now: Optional[datetime] = None,
) -> bool:
    """Return True if the listing passes every enabled rule."""
    passes, _ = check(listing, criteria, stage, now)
    return passes


def filter_batch(
    listings: Iterable[Listing],
    criteria: FilterCriteria,
    stage: FilterStage = FilterStage.DEEP,
    now: Optional[datetime] = None,
) -> tuple[list[Listing], list[Listing]]:
    """Split listings into (passed, rejected), logging each decision at DEBUG.

    Args:
        listings: Listings to evaluate.
        criteria: Active filter criteria.
        stage: Filter stage.
        now: Reference time for the client-age rule.

    Returns:
        Tuple of (passed, rejected), both in input order.
    """
    passed: list[Listing] = []
    rejected: list[Listing] = []

    for listing in listings:
        ok, reason = check(listing, criteria, stage, now)
        if ok:
            passed.append(listing)
            logger.debug("  ✅ PASS %s — %s — %s", listing.id, listing.title[:40], reason)
        else:
            rejected.append(listing)
            logger.debug("  ❌ SKIP %s — %s — %s", listing.id, listing.title[:40], reason)

    logger.info(
        "%s filter: %d passed, %d filtered out (of %d total)",
        stage.value.capitalize(), len(passed), len(rejected), len(passed) + len(rejected),
    )
    return passed, rejected
