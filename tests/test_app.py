"""Tests for config loading, health monitoring, tracked projects, the inbox and the CLI."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import pytest

from mostaql_hub.config import TrackedProjectConfig, build_config, load_config
from mostaql_hub.core.filters import FilterCriteria
from mostaql_hub.core.quiet_hours import QuietHours
from mostaql_hub.core.seen_set import SeenSet
from mostaql_hub.errors import FetchError
from mostaql_hub.inbox import ListingInbox
from mostaql_hub.main import MostaqlHubApp, apply_overrides, build_parser
from mostaql_hub.models import CycleResult, DetailFields
from mostaql_hub.tracker import ProjectTracker
from mostaql_hub.utils.health import HealthMonitor
from mostaql_hub.utils.logger import _setup_logging, configure_logging
from mostaql_hub.utils.resilience import CircuitBreaker, ExponentialBackoff

from conftest import FakeFetcher, RecordingSink, make_listing

MINIMAL = {
    "scraper": {
        "base_url": "https://mostaql.com/",
        "categories": {
            "development": {"url": "https://mostaql.com/projects?category=development"},
            "all": {"url": "https://mostaql.com/projects", "enabled": False},
        },
    },
}


# ═══════════════════════════════════════════════════════════
# Config
# ═══════════════════════════════════════════════════════════


def test_build_config_defaults():
    config = build_config(MINIMAL)
    assert config.scraper.base_url == "https://mostaql.com"
    assert [c.name for c in config.scraper.enabled_categories] == ["development"]
    assert config.scraper.scan_interval_seconds == 60
    assert config.filters.is_empty
    assert not config.quiet_hours.enabled
    assert config.seen_set.capacity == 500
    assert config.hub.path == "/jobNotificationHub"
    assert not config.telegram.enabled
    assert (config.telegram.daily_report_hour, config.telegram.daily_report_minute) == (23, 55)
    assert config.log_level == "INFO"


def test_build_config_accepts_keyword_lists_and_tracked_projects():
    settings = dict(MINIMAL)
    settings["filters"] = {"min_budget": 100, "include_keywords": ["python", "django"]}
    settings["tracked_projects"] = [{"url": "https://mostaql.com/project/9", "title": "bid"}]
    config = build_config(settings)
    assert config.filters.include_terms == ["python", "django"]
    assert config.filters.min_budget == 100
    assert config.tracked_projects == [TrackedProjectConfig("https://mostaql.com/project/9", "bid")]


def test_build_config_rejects_bad_input():
    with pytest.raises(ValueError, match="scraper"):
        build_config({})
    with pytest.raises(ValueError, match="Unknown configuration keys in 'hub'"):
        build_config({**MINIMAL, "hub": {"prot": 1}})
    with pytest.raises(ValueError, match="daily report time"):
        build_config({**MINIMAL, "telegram": {"daily_report_hour": 25}})


def test_load_config_resolves_env_vars(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("MH_TOKEN", "123:abc")
    monkeypatch.delenv("MH_PORT", raising=False)
    settings = tmp_path / "settings.yaml"
    settings.write_text(
        "scraper:\n"
        "  base_url: https://mostaql.com\n"
        "  scan_interval_seconds: 30\n"
        "  categories:\n"
        "    development:\n"
        "      url: https://mostaql.com/projects?category=development\n"
        "hub:\n"
        "  port: ${MH_PORT:-9090}\n"
        "telegram:\n"
        "  bot_token: ${MH_TOKEN}\n"
        "  chat_id: '42'\n"
        "quiet_hours:\n"
        "  enabled: true\n"
        "  start: '22:00'\n"
        "  end: '06:00'\n",
        encoding="utf-8",
    )
    config = load_config(settings, tmp_path / "missing.env")
    assert config.hub.port == 9090
    assert config.telegram.enabled
    assert config.scraper.scan_interval_seconds == 30
    assert config.quiet_hours.is_quiet(datetime(2026, 1, 1, 23, 0))


def test_load_config_missing_variable(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("MH_UNSET", raising=False)
    settings = tmp_path / "settings.yaml"
    settings.write_text(
        "scraper:\n"
        "  base_url: ${MH_UNSET}\n"
        "  categories:\n"
        "    a: {url: 'https://mostaql.com/projects'}\n",
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match="MH_UNSET"):
        load_config(settings, tmp_path / "missing.env")


def test_load_config_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / "missing.env")


# ═══════════════════════════════════════════════════════════
# Resilience
# ═══════════════════════════════════════════════════════════


def test_backoff_schedule():
    backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0, max_attempts=6)
    delays = [backoff.next_delay() for _ in range(7)]
    assert delays == [0.0, 1.0, 2.0, 4.0, 8.0, 10.0, None]
    backoff.reset()
    assert backoff.next_delay() == 0.0


def test_circuit_breaker_cooldown_and_trial():
    now = [0.0]
    cb = CircuitBreaker("test", failure_threshold=2, cooldown_seconds=10, clock=lambda: now[0])
    cb.record_failure(RuntimeError("1"))
    assert cb.state == CircuitBreaker.CLOSED
    cb.record_failure(RuntimeError("2"))
    assert cb.is_open

    now[0] = 11.0
    assert cb.state == CircuitBreaker.HALF_OPEN

    async def ok():
        return "fine"

    assert asyncio.run(cb.call(ok)) == "fine"
    assert cb.state == CircuitBreaker.CLOSED


# ═══════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════


def test_health_counts_and_parse_streak_alert():
    monitor = HealthMonitor(parse_alert_threshold=2)
    broken = CycleResult(parse_errors={"development": "challenge"})

    monitor.record_cycle(CycleResult(dispatched=2, suppressed=1, passed_deep=3))
    monitor.record_cycle(broken)
    assert monitor.should_alert() is None
    monitor.record_cycle(broken)

    alert = monitor.should_alert()
    assert alert is not None and "2" in alert
    # Alerts once per streak
    assert monitor.should_alert() is None

    status = monitor.get_status()
    assert status["total_cycles"] == 3
    assert status["today_count"] == 3
    assert status["errors"]["parse"] == 2


def test_health_resets_daily_count():
    monitor = HealthMonitor()
    monitor.record_cycle(CycleResult(dispatched=4), now=datetime(2026, 10, 18, 23, 59))
    monitor.record_cycle(CycleResult(dispatched=1), now=datetime(2026, 10, 19, 0, 1))
    assert monitor.today_count == 1
    assert monitor.total_dispatched == 5


def test_health_alerts_on_open_circuit_once():
    cb = CircuitBreaker("telegram", failure_threshold=1)
    cb.record_failure(RuntimeError("down"))
    monitor = HealthMonitor()
    assert "telegram" in monitor.should_alert([cb])
    assert monitor.should_alert([cb]) is None


# ═══════════════════════════════════════════════════════════
# Tracked projects
# ═══════════════════════════════════════════════════════════


def test_tracker_baseline_then_change():
    url = "https://mostaql.com/project/77"
    fetcher = FakeFetcher(details={url: DetailFields(status="مفتوح", communications="2")})
    updates = []

    async def on_update(update):
        updates.append(update)

    tracker = ProjectTracker(fetcher, [TrackedProjectConfig(url, "My bid")], on_update=on_update)

    async def scenario():
        first = await tracker.check()
        fetcher.details[url] = DetailFields(status="مغلق", communications="2")
        second = await tracker.check()
        return first, second

    first, second = asyncio.run(scenario())
    assert first == []
    assert len(second) == 1
    assert second[0].changes == ("الحالة: مفتوح -> مغلق",)
    assert updates == second
    assert tracker.projects[0].status == "مغلق"


def test_tracker_isolates_fetch_errors():
    bad, good = "https://mostaql.com/project/1", "https://mostaql.com/project/2"
    fetcher = FakeFetcher(details={bad: FetchError(bad, "timeout"), good: DetailFields(status="مفتوح")})
    tracker = ProjectTracker(fetcher)
    tracker.track(bad)
    tracker.track(good)
    asyncio.run(tracker.check())
    assert fetcher.detail_calls == [bad, good]
    assert tracker.projects[1].has_baseline
    assert tracker.untrack(bad)
    assert not tracker.untrack(bad)


# ═══════════════════════════════════════════════════════════
# Inbox (listen mode)
# ═══════════════════════════════════════════════════════════


def test_inbox_applies_own_criteria_and_dedupes():
    sink = RecordingSink()
    inbox = ListingInbox(
        seen_set=SeenSet(),
        criteria=FilterCriteria(min_budget=500),
        sink=sink,
        clock=lambda: datetime(2026, 10, 19, 12, 0),
    )
    batch = [make_listing("10", budget="$900.00"), make_listing("11", budget="$50.00")]

    async def scenario():
        first = await inbox.accept(batch)
        second = await inbox.accept(batch)
        return first, second

    first, second = asyncio.run(scenario())
    assert [l.id for l in first] == ["10"]
    assert second == []
    assert len(sink.batches) == 1
    assert "11" in inbox.seen_set
    assert inbox.today_count == 1


def test_inbox_keeps_recent_sorted_and_suppresses_in_quiet_hours():
    sink = RecordingSink()
    inbox = ListingInbox(
        sink=sink,
        quiet_hours=QuietHours.from_strings("23:00", "07:00"),
        recent_limit=2,
        clock=lambda: datetime(2026, 10, 19, 3, 0),
    )
    accepted = asyncio.run(inbox.accept([make_listing("5"), make_listing("12"), make_listing("9")]))
    assert len(accepted) == 3
    assert sink.batches == []
    assert [l.id for l in inbox.recent] == ["12", "9"]


# ═══════════════════════════════════════════════════════════
# Application wiring
# ═══════════════════════════════════════════════════════════


def test_parser_and_overrides():
    args = build_parser().parse_args(["listen", "--url", "ws://example:1/hub", "--interval", "15"])
    config = apply_overrides(build_config(MINIMAL), args)
    assert args.mode == "listen"
    assert config.client.server_url == "ws://example:1/hub"
    assert config.scraper.scan_interval_seconds == 15


def test_app_rejects_unknown_mode():
    with pytest.raises(ValueError):
        MostaqlHubApp(build_config(MINIMAL), "scrape")


def test_app_status_snapshot():
    app = MostaqlHubApp(build_config(MINIMAL), "poll")
    app.seen_set.add("1")
    status = app.status()
    assert status["mode"] == "poll"
    assert status["seen"] == 1
    assert status["total_cycles"] == 0


def test_health_records_out_of_cycle_errors():
    monitor = HealthMonitor()
    monitor.record_error("telegram", "getMe failed at startup")
    status = monitor.get_status()
    assert status["errors"]["telegram"] == 1
    assert status["recent_errors_1h"] == 1


class StatusSink:
    def __init__(self, fail: bool = False) -> None:
        self.reports: list[dict] = []
        self.fail = fail

    async def send_status_report(self, status):
        if self.fail:
            raise RuntimeError("telegram down")
        self.reports.append(status)


def test_daily_report_sends_status_snapshot():
    app = MostaqlHubApp(build_config(MINIMAL), "poll")
    sink = StatusSink()
    app._dispatcher = sink
    asyncio.run(app._run_daily_report())
    assert len(sink.reports) == 1
    assert sink.reports[0]["mode"] == "poll"


def test_daily_report_failure_recorded_in_health():
    app = MostaqlHubApp(build_config(MINIMAL), "poll")
    app._dispatcher = StatusSink(fail=True)
    asyncio.run(app._run_daily_report())
    assert app.health.get_status()["errors"]["daily_report"] == 1


def test_configure_logging_sets_console_level():
    try:
        configure_logging("warning")
        assert _setup_logging().level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
        with pytest.raises(ValueError, match="chatty"):
            configure_logging("chatty")
    finally:
        configure_logging("INFO")
