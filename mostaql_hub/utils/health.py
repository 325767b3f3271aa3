"""Mostaql Hub — Health Monitoring.

Tracks scrape-cycle statistics for the /health endpoint and for alerting.
In-memory only, with bounded history (deque).

Usage:
    monitor = HealthMonitor()
    monitor.record_cycle(result)
    status = monitor.get_status()
    alert = monitor.should_alert(circuit_breakers=[cb1, cb2])
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Optional

from mostaql_hub.models import CycleResult
from mostaql_hub.utils.logger import get_logger
from mostaql_hub.utils.resilience import CircuitBreaker

logger = get_logger(__name__)


@dataclass
class _CycleRecord:
    """Record of a single scan cycle."""
    timestamp: float
    duration: float
    new: int
    dispatched: int
    errors: int


@dataclass
class _ErrorRecord:
    """Record of a single error event."""
    timestamp: float
    component: str
    error: str


class HealthMonitor:
    """Cycle statistics, daily counters and alert conditions.

    Attributes:
        parse_alert_threshold: Consecutive cycles with parse errors
            before suggesting a session refresh.
        today_count: Listings dispatched or suppressed today.
        last_check: Wall-clock time of the last completed cycle.
    """

    def __init__(self, max_history: int = 200, parse_alert_threshold: int = 3) -> None:
        self.start_time = time.monotonic()
        self._start_datetime = datetime.now()
        self.parse_alert_threshold = parse_alert_threshold

        self._cycles: deque[_CycleRecord] = deque(maxlen=max_history)
        self._errors: deque[_ErrorRecord] = deque(maxlen=max_history)

        # Aggregate counters (never reset)
        self.total_cycles = 0
        self.total_listings = 0
        self.total_dispatched = 0
        self.total_suppressed = 0
        self.error_counts: dict[str, int] = {"fetch": 0, "parse": 0, "enrich": 0}

        # Daily counter
        self.today_count = 0
        self._today: date = date.today()

        self.last_check: Optional[datetime] = None
        self.last_cycle_duration = 0.0
        self.parse_error_streak = 0
        self._parse_alerted = False

    def record_cycle(self, result: CycleResult, now: Optional[datetime] = None) -> None:
        """Record a completed scan cycle.

        Args:
            result: The cycle's result.
            now: Wall-clock time of completion (defaults to now).
        """
        now = now or datetime.now()
        if now.date() != self._today:
            self._today = now.date()
            self.today_count = 0

        self._cycles.append(_CycleRecord(
            timestamp=time.monotonic(),
            duration=result.duration_seconds,
            new=result.new,
            dispatched=result.dispatched,
            errors=result.error_count,
        ))

        self.total_cycles += 1
        self.total_listings += result.passed_deep
        self.total_dispatched += result.dispatched
        self.total_suppressed += result.suppressed
        self.today_count += result.dispatched + result.suppressed
        self.error_counts["fetch"] += len(result.fetch_errors)
        self.error_counts["parse"] += len(result.parse_errors)
        self.error_counts["enrich"] += result.enrich_failed

        if result.parse_errors:
            self.parse_error_streak += 1
        else:
            self.parse_error_streak = 0
            self._parse_alerted = False

        self.last_check = now
        self.last_cycle_duration = result.duration_seconds

    def record_error(self, component: str, error: str) -> None:
        """Record an error outside the cycle (sinks, tracker, etc.)."""
        self._errors.append(_ErrorRecord(
            timestamp=time.monotonic(),
            component=component,
            error=error[:200],
        ))
        self.error_counts[component] = self.error_counts.get(component, 0) + 1
        logger.debug("Health: error recorded for %s", component)

    def get_status(self) -> dict[str, Any]:
        """Current health snapshot (JSON-serialisable)."""
        now = time.monotonic()
        recent = list(self._cycles)[-20:]
        avg_duration = sum(c.duration for c in recent) / len(recent) if recent else 0.0
        one_hour_ago = now - 3600

        return {
            "uptime": self._format_uptime(now - self.start_time),
            "started_at": self._start_datetime.strftime("%Y-%m-%d %H:%M"),
            "total_cycles": self.total_cycles,
            "total_listings": self.total_listings,
            "total_dispatched": self.total_dispatched,
            "total_suppressed": self.total_suppressed,
            "today_count": self.today_count,
            "last_check": self.last_check.isoformat(timespec="seconds") if self.last_check else None,
            "last_cycle_duration": round(self.last_cycle_duration, 1),
            "avg_cycle_duration": round(avg_duration, 1),
            "errors": dict(self.error_counts),
            "recent_errors_1h": sum(1 for e in self._errors if e.timestamp > one_hour_ago),
            "parse_error_streak": self.parse_error_streak,
        }

    def should_alert(
        self,
        circuit_breakers: Optional[Iterable[CircuitBreaker]] = None,
    ) -> Optional[str]:
        """Check if any condition warrants an alert.

        Each condition alerts once: the parse streak until it resets, a
        circuit breaker until it closes again.

        Returns:
            Alert message, or None if everything is fine.
        """
        alerts: list[str] = []

        if self.parse_error_streak >= self.parse_alert_threshold and not self._parse_alerted:
            alerts.append(
                f"فشل تحليل صفحات مستقل في {self.parse_error_streak} دورات متتالية "
                "(قد تكون هناك صفحة تحقق). قد يلزم تحديث الجلسة/الكوكيز."
            )
            self._parse_alerted = True

        for cb in circuit_breakers or ():
            if cb.is_open and not cb.has_alerted:
                alerts.append(f"خدمة {cb.name} غير متاحة")
                cb.mark_alerted()

        if not alerts:
            return None
        return "\n".join(f"• {a}" for a in alerts)

    @staticmethod
    def _format_uptime(seconds: float) -> str:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        if hours >= 24:
            return f"{hours // 24}d {hours % 24}h {mins}m"
        if hours:
            return f"{hours}h {mins}m"
        return f"{mins}m"
