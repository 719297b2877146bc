"""Tests for the scan scheduler."""

import asyncio

import pytest
import structlog

from arbflow.engine.arbitrage import ArbitrageDetector
from arbflow.engine.scanner import ScanScheduler, ScanState
from arbflow.models.schemas import BelowThreshold, Duplicate, Saved
from arbflow.realtime.hub import RealtimeHub
from arbflow.storage.opportunities import OpportunityStore
from arbflow.utils.logging import setup_logging


class FakeSource:
    def __init__(self, games=None, error=None, gate=None):
        self.games = games or []
        self.error = error
        self.gate = gate
        self.calls = 0

    async def fetch_all_sports(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.games


class FakeStore:
    def __init__(self, results=None, error=None):
        self.results = list(results or [])
        self.error = error
        self.saved = []
        self.deactivate_calls = 0

    async def save(self, opportunity):
        if self.error:
            raise self.error
        self.saved.append(opportunity)
        return self.results.pop(0) if self.results else Saved(id=len(self.saved))

    async def deactivate_expired(self):
        self.deactivate_calls += 1
        return 0


class PickyDetector(ArbitrageDetector):
    """Raises for one event id, detects normally otherwise."""

    def __init__(self, bad_event_id):
        super().__init__()
        self.bad_event_id = bad_event_id

    def detect(self, game, now=None):
        if game.event_id == self.bad_event_id:
            raise ValueError("corrupt snapshot")
        return super().detect(game, now)


class FakeNotifier:
    def __init__(self):
        self.notified = []

    async def notify_new_opportunity(self, opportunity):
        self.notified.append(opportunity)
        return 1


@pytest.fixture
def arb_game(game_factory):
    return game_factory({
        "book_a": {
            "h2h": [("Boston Celtics", 120), ("Miami Heat", -150)],
            "totals": [("Over", 125, 220.5), ("Under", -160, 220.5)],
        },
        "book_b": {
            "h2h": [("Boston Celtics", -150), ("Miami Heat", 120)],
            "totals": [("Over", -160, 220.5), ("Under", 125, 220.5)],
        },
    })


def make_scheduler(source, store=None, notifier=None, detector=None, **kwargs):
    return ScanScheduler(
        source,
        detector or ArbitrageDetector(),
        store or FakeStore(),
        notifier or FakeNotifier(),
        **kwargs,
    )


class TestScanCycle:
    """One fetch -> detect -> save -> notify -> cleanup pass."""

    async def test_notifies_only_newly_saved(self, arb_game):
        store = FakeStore(results=[Saved(id=7), Duplicate()])
        notifier = FakeNotifier()
        scheduler = make_scheduler(FakeSource([arb_game]), store, notifier)

        report = await scheduler.run_cycle()

        assert report.ok
        assert report.games == 1
        assert report.detected == 2
        assert report.saved == 1
        assert report.duplicates == 1
        assert report.notified == 1
        assert [o.id for o in notifier.notified] == [7]
        assert store.deactivate_calls == 1

    async def test_below_threshold_not_notified(self, arb_game):
        store = FakeStore(results=[BelowThreshold(roi=0.5, min_roi=1.0)] * 2)
        notifier = FakeNotifier()
        scheduler = make_scheduler(FakeSource([arb_game]), store, notifier)

        report = await scheduler.run_cycle()

        assert report.below_threshold == 2
        assert notifier.notified == []

    async def test_fetch_failure_is_contained(self):
        store = FakeStore()
        scheduler = make_scheduler(FakeSource(error=RuntimeError("provider down")), store)

        report = await scheduler.tick()

        assert report.error == "provider down"
        assert scheduler.state is ScanState.IDLE
        assert scheduler.cycles_failed == 1
        assert store.deactivate_calls == 0

    async def test_store_failure_is_contained(self, arb_game):
        scheduler = make_scheduler(FakeSource([arb_game]), FakeStore(error=ConnectionError("db gone")))

        report = await scheduler.tick()

        assert not report.ok
        assert scheduler.state is ScanState.IDLE

    async def test_next_tick_runs_after_failure(self, arb_game):
        source = FakeSource(error=RuntimeError("boom"))
        notifier = FakeNotifier()
        scheduler = make_scheduler(source, notifier=notifier)

        assert not (await scheduler.tick()).ok

        source.error = None
        source.games = [arb_game]
        report = await scheduler.tick()

        assert report.ok
        assert len(notifier.notified) == 2
        assert scheduler.cycles_completed == 1


    async def test_bad_game_does_not_cost_other_games(self, game_factory, arb_game):
        bad = game_factory({"book_a": {"h2h": []}, "book_b": {"h2h": []}}, event_id="bad")
        notifier = FakeNotifier()
        scheduler = make_scheduler(
            FakeSource([bad, arb_game]), notifier=notifier, detector=PickyDetector("bad"),
        )

        report = await scheduler.run_cycle()

        assert report.ok
        assert report.skipped_games == 1
        assert report.detected == 2
        assert len(notifier.notified) == 2
        assert scheduler.cycles_completed == 1

    async def test_nan_quote_does_not_cost_other_games(self, game_factory, arb_game):
        nan_game = game_factory({
            "book_a": {"h2h": [("Boston Celtics", float("nan")), ("Miami Heat", 120)]},
            "book_b": {"h2h": [("Boston Celtics", 120), ("Miami Heat", -150)]},
        }, event_id="nan")
        notifier = FakeNotifier()
        scheduler = make_scheduler(FakeSource([nan_game, arb_game]), notifier=notifier)

        report = await scheduler.run_cycle()

        assert report.ok
        assert report.games == 2
        assert report.detected == 2
        assert len(notifier.notified) == 2


@pytest.fixture(params=["DEBUG", "INFO"])
def log_level(request):
    setup_logging(request.param)
    # Loggers bound after this point pick up the level above
    structlog.configure(cache_logger_on_first_use=False)
    yield request.param
    structlog.reset_defaults()


class TestLogging:
    """Log calls on the detect -> save -> notify path at every level."""

    async def test_cycle_logs_cleanly(self, log_level, arb_game, tmp_path, capsys):
        store = OpportunityStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'log.db'}", min_roi=1.0)
        await store.create_schema()
        scheduler = make_scheduler(FakeSource([arb_game, arb_game]), store, RealtimeHub(None))

        report = await scheduler.run_cycle()
        await store.close()
        out = capsys.readouterr().out

        assert report.ok, report.error
        assert report.saved == 2
        assert report.duplicates == 2
        assert report.notified == 2
        assert "New opportunity" in out
        assert ("Arbitrage detected" in out) == (log_level == "DEBUG")


class TestScheduling:
    """Single-flight timer behaviour."""

    async def test_tick_while_scanning_is_dropped(self):
        gate = asyncio.Event()
        source = FakeSource(gate=gate)
        scheduler = make_scheduler(source)

        running = asyncio.create_task(scheduler.tick())
        await asyncio.sleep(0)
        assert scheduler.state is ScanState.SCANNING

        assert await scheduler.tick() is None
        assert scheduler.ticks_skipped == 1
        assert source.calls == 1

        gate.set()
        report = await running
        assert report.ok
        assert scheduler.state is ScanState.IDLE

    async def test_run_ticks_on_interval(self):
        source = FakeSource()
        scheduler = make_scheduler(source, interval=0.02, warmup=0)

        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.1)
        await scheduler.stop()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert source.calls >= 2

    async def test_stop_waits_for_in_flight_cycle(self):
        gate = asyncio.Event()
        source = FakeSource(gate=gate)
        scheduler = make_scheduler(source, interval=10, warmup=0)

        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.01)
        assert scheduler.state is ScanState.SCANNING

        asyncio.get_running_loop().call_later(0.02, gate.set)
        await scheduler.stop()

        assert scheduler.state is ScanState.IDLE
        assert scheduler.cycles_completed == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
