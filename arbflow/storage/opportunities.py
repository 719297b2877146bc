"""
Opportunity persistence.

Saves detected opportunities with duplicate suppression and flips them
inactive once their expiry passes. Also serves the read queries used by
the API layer.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from arbflow.models.schemas import (
    ArbitrageOpportunity,
    BelowThreshold,
    Duplicate,
    Saved,
    SaveResult,
)
from arbflow.storage.models import Base, OpportunityRecord

logger = structlog.get_logger()


class OpportunityStore:
    """
    Stores arbitrage opportunities.

    Usage:
        store = OpportunityStore.from_url("sqlite+aiosqlite:///./arbflow.db", min_roi=1.0)
        await store.create_schema()
        result = await store.save(opportunity)
        if isinstance(result, Saved):
            ...
    """

    def __init__(self, engine: AsyncEngine, min_roi: float = 1.0):
        self.engine = engine
        self.min_roi = min_roi
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self.logger = logger.bind(component="opportunity_store")

    @classmethod
    def from_url(cls, database_url: str, min_roi: float = 1.0) -> "OpportunityStore":
        return cls(create_async_engine(database_url, pool_pre_ping=True), min_roi=min_roi)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # =========================================================================
    # Write path
    # =========================================================================

    async def save(self, opportunity: ArbitrageOpportunity) -> SaveResult:
        """Persist an opportunity unless it is noise or already stored."""
        if opportunity.roi < self.min_roi:
            return BelowThreshold(roi=opportunity.roi, min_roi=self.min_roi)

        record = OpportunityRecord.from_opportunity(opportunity)
        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                self.logger.debug("Duplicate opportunity", key=opportunity.natural_key)
                return Duplicate()

        return Saved(id=record.id)

    async def deactivate_expired(self, now: Optional[datetime] = None) -> int:
        """Mark every active row past its expiry inactive. Returns rows affected."""
        now = now or datetime.now(timezone.utc)
        stmt = (
            update(OpportunityRecord)
            .where(OpportunityRecord.expires_at < now)
            .where(OpportunityRecord.is_active.is_(True))
            .values(is_active=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        count = result.rowcount or 0
        if count:
            self.logger.info("Deactivated expired opportunities", count=count)
        return count

    # =========================================================================
    # Read path
    # =========================================================================

    async def get(self, opportunity_id: int) -> Optional[ArbitrageOpportunity]:
        async with self._session_factory() as session:
            record = await session.get(OpportunityRecord, opportunity_id)
            return record.to_opportunity() if record else None

    async def list_active(
        self,
        sport: Optional[str] = None,
        min_roi: Optional[float] = None,
        limit: int = 50,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> list[ArbitrageOpportunity]:
        """Active, unexpired opportunities, best ROI first."""
        now = now or datetime.now(timezone.utc)
        stmt = (
            select(OpportunityRecord)
            .where(OpportunityRecord.is_active.is_(True))
            .where(OpportunityRecord.expires_at > now)
        )
        if sport:
            stmt = stmt.where(OpportunityRecord.sport == sport)
        if min_roi is not None:
            stmt = stmt.where(OpportunityRecord.roi >= min_roi)
        stmt = (
            stmt.order_by(OpportunityRecord.roi.desc(), OpportunityRecord.detected_at.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [record.to_opportunity() for record in result]

    async def record_view(self, opportunity_id: int) -> bool:
        return await self._increment(opportunity_id, "view_count")

    async def record_save(self, opportunity_id: int) -> bool:
        return await self._increment(opportunity_id, "save_count")

    async def _increment(self, opportunity_id: int, column: str) -> bool:
        counter = getattr(OpportunityRecord, column)
        stmt = (
            update(OpportunityRecord)
            .where(OpportunityRecord.id == opportunity_id)
            .values({column: counter + 1})
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return bool(result.rowcount)
