"""Opportunity table."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from arbflow.models.schemas import ArbitrageOpportunity, OpportunityLeg


class Base(DeclarativeBase):
    pass


def _utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OpportunityRecord(Base):
    """Persisted arbitrage opportunity, one row per detection window."""

    __tablename__ = "opportunities"
    __table_args__ = (
        # Only one active row per natural key
        Index(
            "uq_opportunities_active_key",
            "league", "event_id", "market_key",
            "book1_name", "book1_outcome",
            "book2_name", "book2_outcome",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
        Index("idx_opportunities_active_roi", "is_active", "roi"),
        Index("idx_opportunities_expires", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sport: Mapped[str] = mapped_column(String(100))
    league: Mapped[str] = mapped_column(String(100))
    event_id: Mapped[str] = mapped_column(String(100))
    event_name: Mapped[str] = mapped_column(String(255))
    home_team: Mapped[str] = mapped_column(String(100))
    away_team: Mapped[str] = mapped_column(String(100))

    market_type: Mapped[str] = mapped_column(String(50))
    market_key: Mapped[str] = mapped_column(String(50))

    book1_name: Mapped[str] = mapped_column(String(100))
    book1_outcome: Mapped[str] = mapped_column(String(255))
    book1_odds: Mapped[float] = mapped_column(Float)
    book1_decimal_odds: Mapped[float] = mapped_column(Float)

    book2_name: Mapped[str] = mapped_column(String(100))
    book2_outcome: Mapped[str] = mapped_column(String(255))
    book2_odds: Mapped[float] = mapped_column(Float)
    book2_decimal_odds: Mapped[float] = mapped_column(Float)

    roi: Mapped[float] = mapped_column(Float)
    profit_per_1000: Mapped[float] = mapped_column(Float)
    implied_probability_total: Mapped[float] = mapped_column(Float)

    commence_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    odds_last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    save_count: Mapped[int] = mapped_column(Integer, default=0)

    @classmethod
    def from_opportunity(cls, opp: ArbitrageOpportunity) -> "OpportunityRecord":
        first, second = opp.legs
        return cls(
            sport=opp.sport,
            league=opp.league,
            event_id=opp.event_id,
            event_name=opp.event_name,
            home_team=opp.home_team,
            away_team=opp.away_team,
            market_type=opp.market_type,
            market_key=opp.market_key,
            book1_name=first.bookmaker,
            book1_outcome=first.outcome,
            book1_odds=first.american_odds,
            book1_decimal_odds=first.decimal_odds,
            book2_name=second.bookmaker,
            book2_outcome=second.outcome,
            book2_odds=second.american_odds,
            book2_decimal_odds=second.decimal_odds,
            roi=opp.roi,
            profit_per_1000=opp.profit_per_1000,
            implied_probability_total=opp.implied_probability_total,
            commence_time=opp.commence_time,
            detected_at=opp.detected_at,
            expires_at=opp.expires_at,
            odds_last_updated=opp.odds_last_updated,
            is_active=opp.is_active,
            view_count=opp.view_count,
            save_count=opp.save_count,
        )

    def to_opportunity(self) -> ArbitrageOpportunity:
        return ArbitrageOpportunity(
            id=self.id,
            sport=self.sport,
            league=self.league,
            event_id=self.event_id,
            event_name=self.event_name,
            home_team=self.home_team,
            away_team=self.away_team,
            market_type=self.market_type,
            market_key=self.market_key,
            legs=(
                OpportunityLeg(
                    bookmaker=self.book1_name,
                    outcome=self.book1_outcome,
                    american_odds=self.book1_odds,
                    decimal_odds=self.book1_decimal_odds,
                ),
                OpportunityLeg(
                    bookmaker=self.book2_name,
                    outcome=self.book2_outcome,
                    american_odds=self.book2_odds,
                    decimal_odds=self.book2_decimal_odds,
                ),
            ),
            roi=self.roi,
            profit_per_1000=self.profit_per_1000,
            implied_probability_total=self.implied_probability_total,
            commence_time=_utc(self.commence_time),
            detected_at=_utc(self.detected_at),
            expires_at=_utc(self.expires_at),
            odds_last_updated=_utc(self.odds_last_updated) if self.odds_last_updated else None,
            is_active=self.is_active,
            view_count=self.view_count,
            save_count=self.save_count,
        )
