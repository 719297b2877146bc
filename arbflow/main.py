"""
Arbitrage Scanner - Main Entry Point.

Runs:
1. The scan scheduler (fetch odds -> detect -> store -> notify)
2. The websocket server and its liveness sweep

Usage:
    python -m arbflow.main

Environment Variables:
    ODDS_API_KEY          - Required: The Odds API key
    JWT_SECRET            - Required: secret used to verify client tokens
    DATABASE_URL          - SQLAlchemy async URL (default: local SQLite)
    SCAN_INTERVAL_SECONDS - Seconds between scans (default: 60)
    SCAN_MIN_ROI          - Minimum ROI % worth storing (default: 1.0)
"""

import asyncio
import signal
import sys
from typing import Optional

import structlog

from arbflow.config import Settings, get_settings
from arbflow.engine.arbitrage import ArbitrageDetector, DetectorConfig
from arbflow.engine.scanner import ScanScheduler
from arbflow.feeds.odds_api import OddsAPIFeed
from arbflow.realtime.auth import JWTTokenVerifier
from arbflow.realtime.hub import RealtimeHub
from arbflow.realtime.server import RealtimeServer
from arbflow.storage.opportunities import OpportunityStore
from arbflow.utils.logging import setup_logging

logger = structlog.get_logger()


class ArbitrageService:
    """Builds every component explicitly and runs them until shutdown."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.logger = logger.bind(component="service")

        if not self.settings.odds_api.api_key:
            self.logger.error("ODDS_API_KEY environment variable required")
            raise ValueError("Missing ODDS_API_KEY")

        jwt_settings = self.settings.jwt
        if not jwt_settings.secret:
            self.logger.error("JWT_SECRET environment variable required")
            raise ValueError("Missing JWT_SECRET")

        self.feed = OddsAPIFeed(self.settings.odds_api)
        self.detector = ArbitrageDetector(
            DetectorConfig(opportunity_ttl_seconds=self.settings.scanner.opportunity_ttl_seconds)
        )
        self.store = OpportunityStore.from_url(
            self.settings.database_url,
            min_roi=self.settings.scanner.min_roi,
        )

        realtime = self.settings.realtime
        self.hub = RealtimeHub(
            JWTTokenVerifier(jwt_settings.secret, jwt_settings.algorithm, jwt_settings.user_id_claim),
            heartbeat_interval=realtime.heartbeat_interval_seconds,
            outbox_size=realtime.outbox_size,
            auth_timeout=realtime.auth_timeout_seconds,
        )
        self.server = RealtimeServer(self.hub, realtime.host, realtime.port)

        scanner = self.settings.scanner
        self.scheduler = ScanScheduler(
            self.feed,
            self.detector,
            self.store,
            self.hub,
            interval=scanner.interval_seconds,
            warmup=scanner.warmup_seconds,
            shutdown_timeout=scanner.shutdown_timeout_seconds,
        )

        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start everything and block until shutdown is requested."""
        self.logger.info(
            "Starting arbitrage scanner",
            sports=self.settings.odds_api.sport_keys,
            interval=self.settings.scanner.interval_seconds,
            min_roi=self.settings.scanner.min_roi,
        )

        await self.store.create_schema()
        await self.feed.start()
        await self.hub.start()
        await self.server.start()

        scheduler_task = asyncio.create_task(self.scheduler.run())
        try:
            await self._shutdown_event.wait()
        finally:
            scheduler_task.cancel()
            try:
                await scheduler_task
            except asyncio.CancelledError:
                pass
            await self.stop()

    async def stop(self) -> None:
        """Drain and close every component."""
        self.logger.info("Stopping arbitrage scanner...")
        await self.scheduler.stop()
        await self.server.stop()
        await self.hub.close()
        await self.feed.stop()
        await self.store.close()
        self.logger.info("Arbitrage scanner stopped", **self.scheduler.get_metrics())

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        self._shutdown_event.set()


async def _run(service: ArbitrageService) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.shutdown)
        except NotImplementedError:
            pass
    await service.start()


def main():
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.log_json)

    try:
        service = ArbitrageService(settings)
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    try:
        asyncio.run(_run(service))
    except KeyboardInterrupt:
        print("\nInterrupted")


if __name__ == "__main__":
    main()
