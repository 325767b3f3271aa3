"""Tests for ScrapeCycle and CycleScheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from mostaql_hub.config import CategoryConfig
from mostaql_hub.core.cycle import ScrapeCycle
from mostaql_hub.core.filters import FilterCriteria
from mostaql_hub.core.quiet_hours import QuietHours
from mostaql_hub.core.scheduler import CycleScheduler
from mostaql_hub.core.seen_set import SeenSet
from mostaql_hub.errors import FetchError, ParseError
from mostaql_hub.models import CycleResult, CycleState, DetailFields

from conftest import FakeFetcher, RecordingSink, make_listing

DEV = CategoryConfig("development", "https://mostaql.com/projects?category=development")
AI = CategoryConfig("ai", "https://mostaql.com/projects?category=ai-machine-learning")
NOON = datetime(2026, 10, 19, 12, 0)


def _cycle(fetcher, sink=None, categories=(DEV,), **kwargs) -> ScrapeCycle:
    kwargs.setdefault("clock", lambda: NOON)
    return ScrapeCycle(
        fetcher=fetcher,
        seen_set=kwargs.pop("seen_set", SeenSet()),
        categories=list(categories),
        sink=sink,
        **kwargs,
    )


def test_end_to_end_budget_and_hiring_rate():
    listing_2 = make_listing("2", budget="$900")
    fetcher = FakeFetcher(
        pages={DEV.url: [make_listing("1", budget="$100"), listing_2]},
        details={listing_2.url: DetailFields(hiring_rate_raw="85%")},
    )
    sink = RecordingSink()
    cycle = _cycle(fetcher, sink, criteria=FilterCriteria(min_budget=500, min_hiring_rate=50))

    result = asyncio.run(cycle.run())

    assert result.state is CycleState.DONE
    assert (result.listed, result.new, result.passed_cheap, result.passed_deep) == (2, 2, 1, 1)
    assert fetcher.detail_calls == [listing_2.url]
    assert [l.id for l in sink.batches[0]] == ["2"]
    assert sink.batches[0][0].hiring_rate_raw == "85%"
    assert cycle.seen_set.snapshot() == ["2"]
    assert result.dispatched == 1


def test_second_cycle_is_idempotent():
    fetcher = FakeFetcher(pages={DEV.url: [make_listing("1"), make_listing("2")]})
    sink = RecordingSink()
    cycle = _cycle(fetcher, sink)

    async def scenario():
        return await cycle.run(), await cycle.run()

    first, second = asyncio.run(scenario())
    assert first.dispatched == 2
    assert second.new == 0
    assert second.dispatched == 0
    assert len(sink.batches) == 1
    assert len(fetcher.detail_calls) == 2


def test_categories_merged_first_occurrence_wins():
    fetcher = FakeFetcher(pages={
        DEV.url: [make_listing("1", title="from dev"), make_listing("2")],
        AI.url: [make_listing("1", title="from ai"), make_listing("3")],
    })
    sink = RecordingSink()
    result = asyncio.run(_cycle(fetcher, sink, categories=(DEV, AI)).run())

    assert result.listed == 3
    batch = sink.batches[0]
    assert [l.id for l in batch] == ["1", "2", "3"]
    assert batch[0].title == "from dev"


def test_failing_category_is_isolated():
    fetcher = FakeFetcher(pages={
        DEV.url: FetchError(DEV.url, "server error", status_code=503),
        AI.url: [make_listing("5")],
    })
    sink = RecordingSink()
    result = asyncio.run(_cycle(fetcher, sink, categories=(DEV, AI)).run())

    assert "development" in result.fetch_errors
    assert result.dispatched == 1
    assert [l.id for l in sink.batches[0]] == ["5"]


def test_challenge_page_recorded_as_parse_error():
    fetcher = FakeFetcher(pages={
        DEV.url: ParseError(DEV.url, "anti-bot challenge page", marker="Cloudflare"),
    })
    result = asyncio.run(_cycle(fetcher, RecordingSink()).run())
    assert result.parse_errors == {"development": f"Failed to parse {DEV.url}: anti-bot challenge page"}
    assert result.listed == 0


def test_disabled_category_not_fetched():
    disabled = CategoryConfig("all", "https://mostaql.com/projects", enabled=False)
    fetcher = FakeFetcher(pages={DEV.url: [make_listing("1")]})
    asyncio.run(_cycle(fetcher, RecordingSink(), categories=(DEV, disabled)).run())
    assert fetcher.list_calls == [DEV.url]


def test_slow_detail_times_out_and_listing_continues_unenriched():
    slow, fast = make_listing("1"), make_listing("2")
    fetcher = FakeFetcher(
        pages={DEV.url: [slow, fast]},
        details={slow.url: 5.0, fast.url: DetailFields(status="مفتوح")},
    )
    sink = RecordingSink()
    result = asyncio.run(_cycle(fetcher, sink, detail_timeout=0.05).run())

    assert result.enriched == 1
    assert result.enrich_failed == 1
    by_id = {l.id: l for l in sink.batches[0]}
    assert set(by_id) == {"1", "2"}
    assert by_id["1"].status == ""
    assert by_id["2"].status == "مفتوح"


def test_failing_detail_does_not_abort_cycle():
    broken = make_listing("9")
    fetcher = FakeFetcher(
        pages={DEV.url: [broken]},
        details={broken.url: FetchError(broken.url, "timeout")},
    )
    result = asyncio.run(_cycle(fetcher, RecordingSink()).run())
    assert result.enrich_failed == 1
    assert result.dispatched == 1


def test_detail_budget_fills_unknown_list_budget():
    listing = make_listing("1", budget="غير محدد")
    fetcher = FakeFetcher(
        pages={DEV.url: [listing]},
        details={listing.url: DetailFields(budget_raw="$25.00 - $50.00")},
    )
    sink = RecordingSink()
    cycle = _cycle(fetcher, sink, criteria=FilterCriteria(min_budget=100))
    result = asyncio.run(cycle.run())

    # Passes the cheap filter (unknown), rejected by the deep one
    assert result.passed_cheap == 1
    assert result.passed_deep == 0
    assert sink.batches == []
    assert "1" not in cycle.seen_set


def test_remember_rejected_records_deep_rejects():
    listing = make_listing("1")
    fetcher = FakeFetcher(
        pages={DEV.url: [listing]},
        details={listing.url: DetailFields(hiring_rate_raw="10%")},
    )
    cycle = _cycle(
        fetcher, RecordingSink(),
        criteria=FilterCriteria(min_hiring_rate=50), remember_rejected=True,
    )
    asyncio.run(cycle.run())
    assert "1" in cycle.seen_set


def test_quiet_hours_record_but_suppress():
    fetcher = FakeFetcher(pages={DEV.url: [make_listing("1")]})
    sink = RecordingSink()
    cycle = _cycle(
        fetcher, sink,
        quiet_hours=QuietHours.from_strings("23:00", "07:00"),
        clock=lambda: datetime(2026, 10, 19, 2, 0),
    )
    result = asyncio.run(cycle.run())

    assert result.suppressed == 1
    assert result.dispatched == 0
    assert sink.batches == []
    assert "1" in cycle.seen_set


def test_failing_sink_is_logged_not_raised():
    fetcher = FakeFetcher(pages={DEV.url: [make_listing("1")]})
    cycle = _cycle(fetcher, RecordingSink(fail=True))
    result = asyncio.run(cycle.run())
    assert result.dispatched == 0
    assert result.state is CycleState.DONE


def test_cancelled_cycle_neither_records_nor_dispatches():
    listing = make_listing("1")
    fetcher = FakeFetcher(pages={DEV.url: [listing]}, details={listing.url: 5.0})
    sink = RecordingSink()
    cycle = _cycle(fetcher, sink, detail_timeout=10)

    async def scenario():
        cancel = asyncio.Event()
        task = asyncio.create_task(cycle.run(cancel))
        await asyncio.sleep(0.05)
        cancel.set()
        return await asyncio.wait_for(task, 2)

    result = asyncio.run(scenario())
    assert result.cancelled
    assert result.state is CycleState.DONE
    assert result.listings == []
    assert sink.batches == []
    assert len(cycle.seen_set) == 0


# ═══════════════════════════════════════════════════════════
# Scheduler
# ═══════════════════════════════════════════════════════════


class _SlowCycle:
    def __init__(self) -> None:
        self.runs = 0
        self.release = asyncio.Event()

    async def run(self, cancel_event=None):
        self.runs += 1
        await self.release.wait()
        return CycleResult()


def test_overlapping_trigger_is_skipped():
    async def scenario():
        cycle = _SlowCycle()
        scheduler = CycleScheduler(cycle, interval_seconds=60)
        first = asyncio.create_task(scheduler.run_now())
        await asyncio.sleep(0)
        skipped = await scheduler.run_now()
        cycle.release.set()
        finished = await first
        return cycle, scheduler, skipped, finished

    cycle, scheduler, skipped, finished = asyncio.run(scenario())
    assert skipped is None
    assert finished is not None
    assert cycle.runs == 1
    assert scheduler.skipped_count == 1
    assert scheduler.cycle_count == 1


def test_hook_receives_result_and_errors_are_contained():
    received = []

    async def hook(result):
        received.append(result)
        raise RuntimeError("hook broke")

    async def scenario():
        fetcher = FakeFetcher(pages={DEV.url: [make_listing("1")]})
        scheduler = CycleScheduler(_cycle(fetcher, RecordingSink()), on_cycle_complete=hook)
        return await scheduler.run_now(), scheduler

    result, scheduler = asyncio.run(scenario())
    assert received == [result]
    assert scheduler.last_result is result


def test_start_reschedule_and_stop_keep_seen_set():
    async def scenario():
        fetcher = FakeFetcher(pages={DEV.url: [make_listing("1")]})
        cycle = _cycle(fetcher, RecordingSink())
        scheduler = CycleScheduler(cycle, interval_seconds=60)
        scheduler.start(run_immediately=False)
        running = scheduler.is_running
        await scheduler.run_now()
        scheduler.reschedule(30)
        scheduler.pause()
        paused = scheduler.is_paused
        scheduler.resume()
        await scheduler.stop()
        after_stop = await scheduler.run_now()
        return scheduler, cycle, running, paused, after_stop

    scheduler, cycle, running, paused, after_stop = asyncio.run(scenario())
    assert running
    assert paused
    assert scheduler.interval_seconds == 30
    assert "1" in cycle.seen_set
    assert after_stop is None
    assert not scheduler.is_running


def test_invalid_interval_rejected():
    with pytest.raises(ValueError):
        CycleScheduler(_SlowCycle(), interval_seconds=0)


def test_scheduled_overlap_is_counted_as_skipped():
    async def scenario():
        cycle = _SlowCycle()
        scheduler = CycleScheduler(cycle, interval_seconds=1)
        scheduler.start(run_immediately=True)
        # The first cycle blocks past the next trigger
        await asyncio.sleep(1.6)
        skipped = scheduler.skipped_count
        cycle.release.set()
        await scheduler.stop()
        return cycle, skipped

    cycle, skipped = asyncio.run(scenario())
    assert cycle.runs == 1
    assert skipped >= 1


def test_daily_job_keeps_firing_while_scanning_is_paused():
    async def report():
        pass

    async def scenario():
        scheduler = CycleScheduler(_SlowCycle(), interval_seconds=60)
        scheduler.add_daily_job("daily_report", report, hour=21, minute=30)
        scheduler.start(run_immediately=False)
        scheduler.pause()
        daily = scheduler.next_run_time("daily_report")
        scan = scheduler.next_run_time(CycleScheduler.JOB_ID)
        await scheduler.stop()
        return daily, scan

    daily, scan = asyncio.run(scenario())
    assert daily is not None
    assert (daily.hour, daily.minute) == (21, 30)
    assert scan is None
