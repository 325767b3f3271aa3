"""Mostaql Hub — Main Orchestrator.

Ties the components together for one of three modes:
  - serve:  scrape on a schedule and push batches to hub subscribers
            over WebSockets (plus Telegram when configured)
  - poll:   scrape on a schedule and notify local sinks only
  - listen: subscribe to a remote hub and filter pushed batches locally

Usage:
    python -m mostaql_hub.main serve
    python -m mostaql_hub.main poll --interval 120
    python -m mostaql_hub.main listen --url ws://host:8080/jobNotificationHub
    python scripts/run.py serve
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from mostaql_hub.config import AppConfig, load_config
from mostaql_hub.core.cycle import ScrapeCycle
from mostaql_hub.core.scheduler import CycleScheduler
from mostaql_hub.core.seen_set import SeenSet
from mostaql_hub.hub.client import HubClient
from mostaql_hub.hub.hub import NotificationHub
from mostaql_hub.hub.server import HubServer
from mostaql_hub.inbox import ListingInbox
from mostaql_hub.models import CycleResult
from mostaql_hub.notifier.dispatcher import NotificationDispatcher
from mostaql_hub.notifier.telegram_bot import TelegramNotifier
from mostaql_hub.scraper.fetcher import MostaqlFetcher
from mostaql_hub.tracker import ProjectTracker
from mostaql_hub.utils.health import HealthMonitor
from mostaql_hub.utils.logger import configure_logging, get_logger
from mostaql_hub.utils.resilience import CircuitBreaker

logger = get_logger(__name__)

MODES = ("serve", "poll", "listen")


class MostaqlHubApp:
    """Main application orchestrator.

    Owns every long-lived object (SeenSet, hub, scheduler, sinks) and
    passes them explicitly to the components that need them.

    Attributes:
        config: Full application configuration.
        mode: One of serve, poll, listen.
        health: HealthMonitor for cycle stats and alerting.
    """

    def __init__(self, config: AppConfig, mode: str) -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown mode '{mode}', expected one of {', '.join(MODES)}")
        self.config = config
        self.mode = mode
        self.health = HealthMonitor()

        self.seen_set = SeenSet(config.seen_set.capacity)
        self._telegram: Optional[TelegramNotifier] = None
        self._hub: Optional[NotificationHub] = None
        self._server: Optional[HubServer] = None
        self._fetcher: Optional[MostaqlFetcher] = None
        self._dispatcher: Optional[NotificationDispatcher] = None
        self._tracker: Optional[ProjectTracker] = None
        self._scheduler: Optional[CycleScheduler] = None
        self._client: Optional[HubClient] = None

        self._shutdown = asyncio.Event()

    # ── Startup ──────────────────────────────────────────

    async def start(self) -> None:
        """Full startup sequence, then wait for a shutdown signal."""
        try:
            await self._init_telegram()
            if self.mode == "listen":
                await self._start_listen()
            else:
                await self._start_scraping()

            logger.info("═══ Entering main loop (%s mode) ═══", self.mode)
            await self._shutdown.wait()
        finally:
            await self.shutdown()

    async def _init_telegram(self) -> None:
        if not self.config.telegram.enabled:
            logger.info("Telegram sink disabled (no bot token / chat id)")
            return
        self._telegram = TelegramNotifier(self.config.telegram)
        if not await self._telegram.initialize():
            logger.error("Telegram bot connection failed! Continuing anyway...")
            self.health.record_error("telegram", "getMe failed at startup")

    async def _start_scraping(self) -> None:
        cfg = self.config

        if self.mode == "serve":
            logger.info("═══ Starting push hub ═══")
            self._hub = NotificationHub(send_timeout=cfg.hub.send_timeout_seconds)
            self._server = HubServer(self._hub, cfg.hub, status_provider=self.status)
            await self._server.start()

        self._fetcher = MostaqlFetcher(cfg.scraper)
        self._dispatcher = NotificationDispatcher(hub=self._hub, telegram=self._telegram)
        if cfg.tracked_projects:
            self._tracker = ProjectTracker(
                self._fetcher, cfg.tracked_projects,
                on_update=self._dispatcher.dispatch_tracked_update,
            )

        cycle = ScrapeCycle(
            fetcher=self._fetcher,
            seen_set=self.seen_set,
            categories=cfg.scraper.enabled_categories,
            sink=self._dispatcher,
            criteria=cfg.filters,
            quiet_hours=cfg.quiet_hours,
            detail_timeout=cfg.scraper.detail_timeout_seconds,
            detail_concurrency=cfg.scraper.detail_concurrency,
            remember_rejected=cfg.seen_set.remember_rejected,
        )
        self._scheduler = CycleScheduler(
            cycle,
            interval_seconds=cfg.scraper.scan_interval_seconds,
            on_cycle_complete=self._after_cycle,
        )

        await self._dispatcher.send_startup_message({
            "mode": self.mode,
            "categories": [c.name for c in cfg.scraper.enabled_categories],
            "interval_seconds": cfg.scraper.scan_interval_seconds,
            "quiet_hours": str(cfg.quiet_hours) if cfg.quiet_hours.enabled else "",
        })

        logger.info("═══ Setting up scheduler ═══")
        if self._telegram is not None:
            self._scheduler.add_daily_job(
                "daily_report",
                self._run_daily_report,
                hour=cfg.telegram.daily_report_hour,
                minute=cfg.telegram.daily_report_minute,
            )
        self._scheduler.start(run_immediately=True)

    async def _start_listen(self) -> None:
        cfg = self.config
        self._dispatcher = NotificationDispatcher(telegram=self._telegram)
        inbox = ListingInbox(
            seen_set=self.seen_set,
            criteria=cfg.filters,
            quiet_hours=cfg.quiet_hours,
            sink=self._dispatcher,
        )
        self._client = HubClient(
            cfg.client.server_url,
            inbox,
            max_attempts=cfg.client.max_reconnect_attempts,
            base_delay=cfg.client.base_delay_seconds,
            max_delay=cfg.client.max_delay_seconds,
            ping_interval=cfg.client.ping_interval_seconds,
        )
        logger.info("═══ Connecting to hub %s ═══", cfg.client.server_url)
        self._client.start()

    # ── Cycle hook ───────────────────────────────────────

    async def _after_cycle(self, result: CycleResult) -> None:
        """Tracked projects, health stats and alerts after every cycle."""
        if result.cancelled:
            return

        if self._tracker is not None:
            await self._tracker.check()

        self.health.record_cycle(result)
        alert = self.health.should_alert(circuit_breakers=self._circuit_breakers())
        if alert and self._dispatcher is not None:
            await self._dispatcher.send_error_alert(alert)

    async def _run_daily_report(self) -> None:
        """Scheduled job: send the daily status summary."""
        if self._dispatcher is None:
            return
        try:
            logger.info("═══ Generating daily report ═══")
            await self._dispatcher.send_status_report(self.status())
        except Exception as e:
            logger.error("Daily report failed: %s", e)
            self.health.record_error("daily_report", str(e)[:200])

    def _circuit_breakers(self) -> list[CircuitBreaker]:
        breakers: list[CircuitBreaker] = []
        if self._fetcher is not None:
            breakers.extend(self._fetcher.breakers.values())
        if self._telegram is not None:
            breakers.append(self._telegram.circuit_breaker)
        return breakers

    def status(self) -> dict[str, Any]:
        """Health snapshot for the /health endpoint."""
        status = self.health.get_status()
        status["mode"] = self.mode
        status["seen"] = len(self.seen_set)
        if self._hub is not None:
            status["subscribers"] = self._hub.subscriber_count
        if self._scheduler is not None:
            status["skipped_triggers"] = self._scheduler.skipped_count
            status["paused"] = self._scheduler.is_paused
        return status

    # ── Shutdown ─────────────────────────────────────────

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def shutdown(self) -> None:
        """Graceful shutdown: finish the active cycle, notify, close connections."""
        logger.info("═══ Shutting down ═══")

        if self._scheduler is not None:
            await self._scheduler.stop(wait=True)
        if self._client is not None:
            await self._client.stop()
        if self._server is not None:
            await self._server.stop()
        if self._fetcher is not None:
            await self._fetcher.close()

        if self._dispatcher is not None and self.mode != "listen":
            try:
                await self._dispatcher.send_shutdown_message()
            except Exception as e:
                logger.warning("Failed to send shutdown message: %s", e)

        logger.info("Shutdown complete")


# ═══════════════════════════════════════════════════════════
# Entry Point
# ═══════════════════════════════════════════════════════════


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mostaql-hub",
        description="Mostaql new-listing detector with push fan-out.",
    )
    parser.add_argument("mode", choices=MODES, help="serve, poll or listen")
    parser.add_argument("--config", type=Path, default=None, help="Path to settings.yaml")
    parser.add_argument("--env", type=Path, default=None, help="Path to .env file")
    parser.add_argument("--interval", type=int, default=None, help="Override scan interval (seconds)")
    parser.add_argument("--url", default=None, help="Override hub URL (listen mode)")
    parser.add_argument("--log-level", default=None, help="Override console log level")
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Return a config with command-line overrides applied."""
    from dataclasses import replace

    if args.interval is not None:
        config = replace(config, scraper=replace(config.scraper, scan_interval_seconds=args.interval))
    if args.url is not None:
        config = replace(config, client=replace(config.client, server_url=args.url))
    if args.log_level is not None:
        config = replace(config, log_level=args.log_level.upper())
    return config


async def _run(config: AppConfig, mode: str) -> None:
    app = MostaqlHubApp(config, mode)
    loop = asyncio.get_running_loop()

    def _signal_handler(sig: int, frame: Any) -> None:
        logger.info("Signal %s received, shutting down...", signal.Signals(sig).name)
        loop.call_soon_threadsafe(app.request_shutdown)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)
    await app.start()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(load_config(args.config, args.env), args)
    except (FileNotFoundError, ValueError) as e:
        logger.error("❌ Configuration error: %s", e)
        return 1

    configure_logging(config.log_level)
    try:
        asyncio.run(_run(config, args.mode))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
