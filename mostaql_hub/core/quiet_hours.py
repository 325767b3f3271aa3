"""Mostaql Hub — Quiet Hours.

A daily time-of-day window during which notifications are suppressed
(bookkeeping still happens). Windows may wrap past midnight, e.g.
23:00–07:00. Both ends are inclusive, at minute resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Optional


def parse_hhmm(text: str) -> time:
    """Parse an "HH:MM" string.

    Args:
        text: Time of day, 24-hour clock.

    Returns:
        The corresponding datetime.time.

    Raises:
        ValueError: If the text is not a valid HH:MM time.
    """
    try:
        hours, minutes = (int(part) for part in text.strip().split(":"))
        return time(hour=hours, minute=minutes)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid time of day {text!r}, expected HH:MM") from e


@dataclass(frozen=True)
class QuietHours:
    """Quiet-hours window.

    Attributes:
        start: Window start (inclusive).
        end: Window end (inclusive).
        enabled: When False, contains() is always False.
    """

    start: time
    end: time
    enabled: bool = True

    @classmethod
    def from_strings(cls, start: str, end: str, enabled: bool = True) -> "QuietHours":
        return cls(start=parse_hhmm(start), end=parse_hhmm(end), enabled=enabled)

    @property
    def wraps_midnight(self) -> bool:
        return _minutes(self.start) > _minutes(self.end)

    def contains(self, moment: time) -> bool:
        """Whether a time of day falls inside the window."""
        if not self.enabled:
            return False
        now = _minutes(moment)
        start = _minutes(self.start)
        end = _minutes(self.end)
        if start <= end:
            return start <= now <= end
        return now >= start or now <= end

    def is_quiet(self, now: Optional[datetime] = None) -> bool:
        """Whether the given moment (default: local now) is in quiet hours."""
        return self.contains((now or datetime.now()).time())

    def __str__(self) -> str:
        state = "" if self.enabled else " (disabled)"
        return f"{self.start:%H:%M}–{self.end:%H:%M}{state}"


def _minutes(moment: time) -> int:
    return moment.hour * 60 + moment.minute
