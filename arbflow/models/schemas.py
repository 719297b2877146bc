"""
Data models for the arbitrage scanner.

Defines:
- Normalized odds snapshots (GameOdds and friends) produced by the feed
- ArbitrageOpportunity, the persisted and broadcast result
- SaveResult variants returned by the opportunity store
- Subscription filters sent by websocket clients
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Odds conversions
# =============================================================================

def american_to_decimal(american: float) -> float:
    """Convert American odds to Decimal. Zero takes the non-negative branch."""
    if american >= 0:
        return (american / 100) + 1
    return (100 / abs(american)) + 1


def decimal_to_probability(decimal: float) -> float:
    """Convert Decimal odds to implied probability."""
    if decimal <= 0:
        return 0.0
    return 1 / decimal


# =============================================================================
# Normalized provider snapshot
# =============================================================================

@dataclass
class OutcomeQuote:
    """A single priced outcome (e.g. "Boston Celtics" at +120)."""
    name: str
    price: float                  # American odds
    point: Optional[float] = None  # Spread/total line

    @property
    def label(self) -> str:
        """Outcome name with its line, e.g. "Over 221.5". A zero line is left off."""
        if not self.point:
            return self.name
        return f"{self.name} {self.point:g}"


@dataclass
class MarketQuote:
    """One bookmaker's market (h2h, spreads, totals)."""
    key: str
    outcomes: list[OutcomeQuote] = field(default_factory=list)

    @property
    def is_two_way(self) -> bool:
        return len(self.outcomes) == 2

    def find_outcome(self, name: str) -> Optional[OutcomeQuote]:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None


@dataclass
class BookmakerOdds:
    """Markets quoted by a single bookmaker for one game."""
    key: str
    title: str = ""
    last_update: Optional[datetime] = None
    markets: list[MarketQuote] = field(default_factory=list)

    def find_market(self, key: str) -> Optional[MarketQuote]:
        for market in self.markets:
            if market.key == key:
                return market
        return None


@dataclass
class GameOdds:
    """
    A single game with odds from every bookmaker that quoted it.

    Bookmaker order is the provider's order and is significant: the
    detector uses the first bookmaker's markets as its reference set and
    breaks price ties in favour of the earlier bookmaker.
    """
    event_id: str
    sport_key: str
    sport_title: str
    home_team: str
    away_team: str
    commence_time: datetime
    bookmakers: list[BookmakerOdds] = field(default_factory=list)

    def get_display_name(self) -> str:
        return f"{self.home_team} vs {self.away_team}"


# =============================================================================
# Arbitrage opportunity
# =============================================================================

class OpportunityLeg(BaseModel):
    """One side of a two-way arbitrage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    bookmaker: str
    outcome: str
    american_odds: float
    decimal_odds: float


class ArbitrageOpportunity(BaseModel):
    """
    A guaranteed-profit pair of bets across two bookmakers.

    Serialized with camelCase aliases for the websocket wire format.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[int] = None

    # Event
    sport: str
    league: str
    event_id: str
    event_name: str
    home_team: str
    away_team: str

    # Market
    market_type: str
    market_key: str
    legs: tuple[OpportunityLeg, OpportunityLeg]

    # The numbers
    roi: float
    profit_per_1000: float
    implied_probability_total: float

    # Timing
    commence_time: datetime
    detected_at: datetime
    expires_at: datetime
    odds_last_updated: Optional[datetime] = None

    # Lifecycle
    is_active: bool = True
    view_count: int = 0
    save_count: int = 0

    @model_validator(mode="after")
    def _check_arbitrage(self) -> "ArbitrageOpportunity":
        total = self.implied_probability_total
        if not 0 < total < 1:
            raise ValueError(f"implied probability total {total} is not an arbitrage")
        expected_roi = round((1 / total - 1) * 100, 2)
        if abs(self.roi - expected_roi) > 0.01:
            raise ValueError(f"roi {self.roi} inconsistent with implied total {total}")
        return self

    @property
    def natural_key(self) -> tuple[str, ...]:
        """Identity used to suppress duplicates across scan cycles."""
        first, second = self.legs
        return (
            self.league,
            self.event_id,
            self.market_key,
            first.bookmaker,
            first.outcome,
            second.bookmaker,
            second.outcome,
        )

    def to_wire(self) -> dict:
        """
        JSON-ready dict in wire (camelCase) form.

        Legs are also flattened into book1*/book2* fields, the shape
        existing dashboard clients read.
        """
        wire = self.model_dump(mode="json", by_alias=True)
        for n, leg in enumerate(self.legs, start=1):
            wire[f"book{n}Name"] = leg.bookmaker
            wire[f"book{n}Outcome"] = leg.outcome
            wire[f"book{n}Odds"] = leg.american_odds
            wire[f"book{n}DecimalOdds"] = leg.decimal_odds
        return wire

    def to_log(self) -> dict:
        """Convert to loggable dict. Keys must not shadow structlog's `event`."""
        first, second = self.legs
        return {
            "id": self.id,
            "event_name": self.event_name,
            "market": self.market_key,
            "book1": f"{first.bookmaker} {first.outcome} {first.american_odds:+g}",
            "book2": f"{second.bookmaker} {second.outcome} {second.american_odds:+g}",
            "roi": self.roi,
        }


# =============================================================================
# Store results
# =============================================================================

@dataclass(frozen=True)
class Saved:
    """Opportunity persisted as a new row."""
    id: int


@dataclass(frozen=True)
class Duplicate:
    """An active row with the same natural key already exists."""


@dataclass(frozen=True)
class BelowThreshold:
    """ROI under the configured minimum; nothing written."""
    roi: float
    min_roi: float


SaveResult = Union[Saved, Duplicate, BelowThreshold]


# =============================================================================
# Client subscriptions
# =============================================================================

class Subscription(BaseModel):
    """Sport/market filter declared by a websocket client."""

    model_config = ConfigDict(extra="forbid")

    sport: Optional[str] = None
    market: Optional[str] = None


class SubscribeRequest(BaseModel):
    """Client SUBSCRIBE payload."""

    subscriptions: list[Subscription] = Field(default_factory=list)
