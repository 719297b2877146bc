"""Tests for opportunity persistence."""

from datetime import timedelta

import pytest

from arbflow.models.schemas import BelowThreshold, Duplicate, Saved
from arbflow.storage.opportunities import OpportunityStore

from conftest import NOW


@pytest.fixture
async def store(tmp_path):
    store = OpportunityStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", min_roi=1.0)
    await store.create_schema()
    yield store
    await store.close()


class TestSave:
    """Threshold and duplicate handling."""

    async def test_below_threshold_not_written(self, store, opportunity_factory):
        opp = opportunity_factory(price=101)  # 0.5% ROI

        result = await store.save(opp)

        assert result == BelowThreshold(roi=0.5, min_roi=1.0)
        assert await store.list_active(now=NOW) == []

    async def test_at_threshold_is_saved(self, store, opportunity_factory):
        opp = opportunity_factory(price=102)  # 1.0% ROI
        assert isinstance(await store.save(opp), Saved)

    async def test_save_returns_id(self, store, opportunity_factory):
        result = await store.save(opportunity_factory())

        assert isinstance(result, Saved)
        stored = await store.get(result.id)
        assert stored.id == result.id
        assert stored.roi == pytest.approx(10.0)
        assert stored.legs[0].bookmaker == "draftkings"
        assert stored.legs[1].outcome == "Miami Heat"
        assert stored.expires_at == NOW + timedelta(minutes=10)
        assert stored.odds_last_updated == NOW

    async def test_duplicate_is_noop(self, store, opportunity_factory):
        first = await store.save(opportunity_factory())
        second = await store.save(opportunity_factory())

        assert isinstance(first, Saved)
        assert second == Duplicate()
        assert len(await store.list_active(now=NOW)) == 1

    async def test_different_legs_are_distinct(self, store, opportunity_factory):
        first = await store.save(opportunity_factory(books=("draftkings", "fanduel")))
        second = await store.save(opportunity_factory(books=("betmgm", "fanduel")))

        assert isinstance(first, Saved)
        assert isinstance(second, Saved)
        assert first.id != second.id

    async def test_resave_allowed_after_deactivation(self, store, opportunity_factory):
        old = opportunity_factory(detected_at=NOW - timedelta(hours=1))
        assert isinstance(await store.save(old), Saved)
        assert await store.deactivate_expired(now=NOW) == 1

        assert isinstance(await store.save(opportunity_factory()), Saved)


class TestDeactivateExpired:
    """Expiry pass."""

    async def test_deactivates_only_expired(self, store, opportunity_factory):
        await store.save(opportunity_factory(event_id="old", detected_at=NOW - timedelta(hours=1)))
        await store.save(opportunity_factory(event_id="fresh"))

        assert await store.deactivate_expired(now=NOW) == 1

        active = await store.list_active(now=NOW)
        assert [o.event_id for o in active] == ["fresh"]

    async def test_idempotent(self, store, opportunity_factory):
        await store.save(opportunity_factory(detected_at=NOW - timedelta(hours=1)))

        assert await store.deactivate_expired(now=NOW) == 1
        assert await store.deactivate_expired(now=NOW) == 0

    async def test_empty_table(self, store):
        assert await store.deactivate_expired(now=NOW) == 0


class TestReadPath:
    """Queries used by the API layer."""

    async def test_list_active_orders_by_roi(self, store, opportunity_factory):
        await store.save(opportunity_factory(event_id="low", price=105))
        await store.save(opportunity_factory(event_id="high", price=130))
        await store.save(opportunity_factory(event_id="mid", price=115))

        active = await store.list_active(now=NOW)

        assert [o.event_id for o in active] == ["high", "mid", "low"]

    async def test_list_active_filters(self, store, opportunity_factory):
        await store.save(opportunity_factory(event_id="nba", price=130, sport_title="NBA"))
        await store.save(opportunity_factory(event_id="nhl", price=105, sport_title="NHL"))

        assert [o.event_id for o in await store.list_active(sport="NHL", now=NOW)] == ["nhl"]
        assert [o.event_id for o in await store.list_active(min_roi=5, now=NOW)] == ["nba"]
        assert len(await store.list_active(limit=1, now=NOW)) == 1

    async def test_list_active_hides_expired_rows(self, store, opportunity_factory):
        await store.save(opportunity_factory())
        assert await store.list_active(now=NOW + timedelta(minutes=11)) == []

    async def test_counters(self, store, opportunity_factory):
        result = await store.save(opportunity_factory())

        assert await store.record_view(result.id) is True
        assert await store.record_view(result.id) is True
        assert await store.record_save(result.id) is True
        assert await store.record_view(999) is False

        stored = await store.get(result.id)
        assert stored.view_count == 2
        assert stored.save_count == 1

    async def test_get_missing(self, store):
        assert await store.get(12345) is None
