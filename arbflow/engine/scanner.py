"""
Scan scheduler.

Runs one fetch -> detect -> save -> notify -> cleanup cycle per timer
tick. Ticks that land while a cycle is still running are dropped, not
queued, and a failed cycle never stops the timer.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

import structlog

from arbflow.engine.arbitrage import ArbitrageDetector
from arbflow.models.schemas import (
    ArbitrageOpportunity,
    BelowThreshold,
    Duplicate,
    GameOdds,
    Saved,
    SaveResult,
)

logger = structlog.get_logger()


class OddsSource(Protocol):
    async def fetch_all_sports(self) -> list[GameOdds]: ...


class OpportunitySink(Protocol):
    async def save(self, opportunity: ArbitrageOpportunity) -> SaveResult: ...

    async def deactivate_expired(self) -> int: ...


class OpportunityNotifier(Protocol):
    async def notify_new_opportunity(self, opportunity: ArbitrageOpportunity) -> int: ...


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"


@dataclass
class ScanReport:
    """Outcome of one scan cycle."""
    started_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    duration_ms: int = 0
    games: int = 0
    skipped_games: int = 0
    detected: int = 0
    saved: int = 0
    duplicates: int = 0
    below_threshold: int = 0
    notified: int = 0
    deactivated: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ScanScheduler:
    """
    Drives the scan cycle on a fixed interval.

    Usage:
        scheduler = ScanScheduler(feed, detector, store, hub, interval=60, warmup=5)
        task = asyncio.create_task(scheduler.run())
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        source: OddsSource,
        detector: ArbitrageDetector,
        store: OpportunitySink,
        notifier: OpportunityNotifier,
        interval: float = 60.0,
        warmup: float = 5.0,
        shutdown_timeout: float = 30.0,
    ):
        self.source = source
        self.detector = detector
        self.store = store
        self.notifier = notifier
        self.interval = interval
        self.warmup = warmup
        self.shutdown_timeout = shutdown_timeout
        self.logger = logger.bind(component="scan_scheduler")

        self.state = ScanState.IDLE
        self._running = False
        self._cycle_task: Optional[asyncio.Task] = None

        # Stats
        self.cycles_completed = 0
        self.cycles_failed = 0
        self.ticks_skipped = 0
        self.last_report: Optional[ScanReport] = None

    # =========================================================================
    # Timer
    # =========================================================================

    async def run(self) -> None:
        """Tick once after the warm-up, then every interval, until stopped."""
        self._running = True
        self.logger.info("Scan scheduler started", interval=self.interval, warmup=self.warmup)

        await asyncio.sleep(self.warmup)
        while self._running:
            self._spawn_tick()
            await asyncio.sleep(self.interval)

    def _spawn_tick(self) -> None:
        if self.state is ScanState.SCANNING:
            self.ticks_skipped += 1
            self.logger.warning("Previous scan still running, skipping tick")
            return
        self._cycle_task = asyncio.create_task(self.tick())

    async def stop(self) -> None:
        """Stop ticking and let an in-flight cycle finish (bounded)."""
        self._running = False
        task = self._cycle_task
        if task and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Scan cycle still running at shutdown, cancelling")
                task.cancel()
        self.logger.info(
            "Scan scheduler stopped",
            cycles=self.cycles_completed,
            failed=self.cycles_failed,
            skipped=self.ticks_skipped,
        )

    async def tick(self) -> Optional[ScanReport]:
        """Run a cycle if idle. Returns None when the tick was dropped."""
        if self.state is ScanState.SCANNING:
            self.ticks_skipped += 1
            self.logger.warning("Previous scan still running, skipping tick")
            return None

        self.state = ScanState.SCANNING
        try:
            return await self.run_cycle()
        finally:
            self.state = ScanState.IDLE

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self) -> ScanReport:
        """One full scan. Never raises; failures are recorded in the report."""
        report = ScanReport()
        self.logger.info("Starting arbitrage scan")

        try:
            games = await self.source.fetch_all_sports()
            report.games = len(games)

            for game in games:
                try:
                    opportunities = self.detector.detect(game)
                except Exception as e:
                    # One bad snapshot only costs its own game
                    report.skipped_games += 1
                    self.logger.warning("Detection failed for game", event_id=game.event_id, error=str(e))
                    continue

                for opportunity in opportunities:
                    report.detected += 1
                    await self._persist_and_notify(opportunity, report)

            report.deactivated = await self.store.deactivate_expired()
            self.cycles_completed += 1
        except Exception as e:
            report.error = str(e)
            self.cycles_failed += 1
            self.logger.exception("Scan cycle failed", error=str(e))

        report.duration_ms = int(time.time() * 1000) - report.started_ms
        self.last_report = report

        self.logger.info(
            "Scan complete",
            games=report.games,
            skipped_games=report.skipped_games,
            detected=report.detected,
            new=report.saved,
            duplicates=report.duplicates,
            below_threshold=report.below_threshold,
            deactivated=report.deactivated,
            duration_ms=report.duration_ms,
            ok=report.ok,
        )
        return report

    async def _persist_and_notify(self, opportunity: ArbitrageOpportunity, report: ScanReport) -> None:
        result = await self.store.save(opportunity)

        if isinstance(result, Saved):
            report.saved += 1
            stored = opportunity.model_copy(update={"id": result.id})
            self.logger.info("New opportunity", **stored.to_log())
            await self.notifier.notify_new_opportunity(stored)
            report.notified += 1
        elif isinstance(result, Duplicate):
            report.duplicates += 1
        elif isinstance(result, BelowThreshold):
            report.below_threshold += 1

    def get_metrics(self) -> dict:
        return {
            "state": self.state.value,
            "cycles_completed": self.cycles_completed,
            "cycles_failed": self.cycles_failed,
            "ticks_skipped": self.ticks_skipped,
        }
