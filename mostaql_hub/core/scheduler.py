"""Mostaql Hub — Cycle Scheduler.

Runs ScrapeCycle on a fixed interval with APScheduler's AsyncIOScheduler.
At most one cycle executes at a time: the job has max_instances=1 and
every run (scheduled or manual) goes through an asyncio.Lock, so a
trigger that arrives while a cycle is running is skipped. Both kinds of
skip are counted: manual ones in run_now(), scheduled ones through an
EVENT_JOB_MAX_INSTANCES listener.

Daily jobs (the status report) run on a CronTrigger in the same
scheduler and are not affected by pause().

The SeenSet lives on the cycle, so rescheduling to a new interval keeps
everything the process has already seen.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from mostaql_hub.core.cycle import ScrapeCycle
from mostaql_hub.models import CycleResult
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

CycleHook = Callable[[CycleResult], Awaitable[None]]
DailyJob = Callable[[], Awaitable[None]]


class CycleScheduler:
    """Periodic runner for a ScrapeCycle.

    Attributes:
        cycle: The cycle to run.
        interval_seconds: Current trigger interval.
        cycle_count: Cycles completed (including cancelled ones).
        skipped_count: Triggers skipped because a cycle was running.
        last_result: Result of the most recent cycle.
    """

    JOB_ID = "scrape_cycle"

    def __init__(
        self,
        cycle: ScrapeCycle,
        interval_seconds: int = 60,
        on_cycle_complete: Optional[CycleHook] = None,
    ) -> None:
        if interval_seconds < 1:
            raise ValueError("interval_seconds must be >= 1")
        self.cycle = cycle
        self.interval_seconds = interval_seconds
        self.on_cycle_complete = on_cycle_complete

        self.cycle_count = 0
        self.skipped_count = 0
        self.last_result: Optional[CycleResult] = None
        self.last_run_at: Optional[datetime] = None

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._daily_jobs: dict[str, tuple[DailyJob, int, int]] = {}
        self._lock = asyncio.Lock()
        self._cancel_event = asyncio.Event()
        self._paused = False
        self._stopping = False

    # ── State ────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_cycle_active(self) -> bool:
        return self._lock.locked()

    # ── Lifecycle ────────────────────────────────────────

    def start(self, run_immediately: bool = True) -> None:
        """Start the interval job. Must be called from the running event loop.

        Args:
            run_immediately: Fire the first cycle now instead of after one interval.
        """
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        self._stopping = False
        self._cancel_event = asyncio.Event()
        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        # next_run_time=None would add the job paused, so only pass it to fire now
        extra = {"next_run_time": datetime.now()} if run_immediately else {}
        self._scheduler.add_job(
            self._scheduled_run,
            IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            name=f"Scrape cycle (every {self.interval_seconds}s)",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.interval_seconds,
            **extra,
        )
        self._scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
        for job_id, (func, hour, minute) in self._daily_jobs.items():
            self._add_cron_job(job_id, func, hour, minute)
        self._scheduler.start()
        logger.info("Scheduler started (every %ds)", self.interval_seconds)

    def add_daily_job(self, job_id: str, func: DailyJob, hour: int, minute: int = 0) -> None:
        """Run func every day at hour:minute (local time).

        Jobs added before start() are registered when the scheduler starts.
        """
        self._daily_jobs[job_id] = (func, hour, minute)
        if self._scheduler is not None and self.is_running:
            self._add_cron_job(job_id, func, hour, minute)

    def _add_cron_job(self, job_id: str, func: DailyJob, hour: int, minute: int) -> None:
        scheduler = self._scheduler
        if scheduler is None:
            return
        scheduler.add_job(
            func,
            CronTrigger(hour=hour, minute=minute),
            id=job_id,
            name=f"{job_id} ({hour}:{minute:02d})",
            max_instances=1,
            replace_existing=True,
        )
        logger.info("Daily job '%s' scheduled at %d:%02d", job_id, hour, minute)

    def next_run_time(self, job_id: str) -> Optional[datetime]:
        """When a job fires next (None if unknown or paused)."""
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(job_id)
        return job.next_run_time if job is not None else None

    def reschedule(self, interval_seconds: int) -> None:
        """Change the interval; the SeenSet and counters are kept."""
        if interval_seconds < 1:
            raise ValueError("interval_seconds must be >= 1")
        self.interval_seconds = interval_seconds
        if self._scheduler is not None and self.is_running:
            self._scheduler.reschedule_job(
                self.JOB_ID, trigger=IntervalTrigger(seconds=interval_seconds),
            )
        logger.info("Scan interval changed to %ds", interval_seconds)

    def pause(self) -> None:
        self._paused = True
        if self._scheduler is not None and self.is_running:
            self._scheduler.pause_job(self.JOB_ID)
        logger.info("Scanning PAUSED")

    def resume(self) -> None:
        self._paused = False
        if self._scheduler is not None and self.is_running:
            self._scheduler.resume_job(self.JOB_ID)
        logger.info("Scanning RESUMED")

    async def stop(self, wait: bool = True) -> None:
        """Stop scheduling new cycles.

        Args:
            wait: If True, let the active cycle finish normally. If False,
                signal it to cancel (it stops without dispatching).
        """
        self._stopping = True
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        if not wait:
            self._cancel_event.set()

        # Wait for the active cycle (if any) to reach DONE
        async with self._lock:
            pass

    # ── Running ──────────────────────────────────────────

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        """APScheduler refused a scheduled run because a cycle is still active."""
        if event.job_id != self.JOB_ID:
            return
        self.skipped_count += 1
        logger.warning(
            "Scheduled scan cycle overlapped a running one, skipping (%d skipped so far)",
            self.skipped_count,
        )

    async def _scheduled_run(self) -> None:
        if self._paused:
            logger.info("Scan cycle skipped (paused)")
            return
        await self.run_now()

    async def run_now(self) -> Optional[CycleResult]:
        """Run one cycle immediately unless one is already active.

        Returns:
            The cycle result, or None if skipped.
        """
        if self._stopping:
            logger.info("Scan cycle skipped (scheduler stopping)")
            return None

        if self._lock.locked():
            self.skipped_count += 1
            logger.warning(
                "Previous scan cycle still running, skipping (%d skipped so far)",
                self.skipped_count,
            )
            return None

        async with self._lock:
            self.cycle_count += 1
            self.last_run_at = datetime.now()
            started = time.monotonic()

            logger.info("╔══════════════════════════════════════════╗")
            logger.info("║  Scan Cycle #%d — %s  ║", self.cycle_count, self.last_run_at.strftime("%H:%M:%S"))
            logger.info("╚══════════════════════════════════════════╝")

            try:
                result = await self.cycle.run(self._cancel_event)
            except Exception as e:
                logger.exception("Scan cycle #%d crashed: %s", self.cycle_count, e)
                return None

            self.last_result = result
            if self.on_cycle_complete is not None:
                try:
                    await self.on_cycle_complete(result)
                except Exception as e:
                    logger.error("Post-cycle hook failed: %s", e)

            logger.debug("Cycle #%d wall time: %.1fs", self.cycle_count, time.monotonic() - started)
            return result
