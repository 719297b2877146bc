"""
Two-way arbitrage detection.

For each binary market the best price per outcome is taken across all
bookmakers. If the implied probabilities of those best prices add up to
less than 1, staking both sides in proportion locks in a profit:

    total = 1/d1 + 1/d2
    roi   = (1/total - 1) * 100
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from arbflow.models.schemas import (
    ArbitrageOpportunity,
    BookmakerOdds,
    GameOdds,
    MarketQuote,
    OpportunityLeg,
    OutcomeQuote,
    american_to_decimal,
    decimal_to_probability,
)

logger = structlog.get_logger()


@dataclass
class DetectorConfig:
    """Configuration for arbitrage detection."""

    # Odds move fast; an opportunity is only shown for this long
    opportunity_ttl_seconds: float = 600.0


@dataclass
class _BestPrice:
    outcome: OutcomeQuote
    bookmaker: str
    last_update: Optional[datetime] = None


class ArbitrageDetector:
    """
    Finds cross-bookmaker arbitrage in a single game's odds.

    Pure: no I/O, and deterministic for a given ``now``.
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self.logger = logger.bind(component="arbitrage_detector")

    def detect(
        self,
        game: GameOdds,
        now: Optional[datetime] = None,
    ) -> list[ArbitrageOpportunity]:
        """
        Detect arbitrage opportunities in every two-way market of a game.

        Args:
            game: Normalized odds for one game
            now: Detection time (defaults to current UTC time)

        Returns:
            One opportunity per qualifying market, possibly empty
        """
        if len(game.bookmakers) < 2:
            return []

        now = now or datetime.now(timezone.utc)
        opportunities = []

        # The first bookmaker's markets are the reference set
        for market in game.bookmakers[0].markets:
            if not market.is_two_way:
                continue

            best = self._best_prices(market, game.bookmakers)
            if best is None:
                continue

            opportunity = self._evaluate(game, market, best, now)
            if opportunity:
                opportunities.append(opportunity)

        return opportunities

    def _best_prices(
        self,
        reference: MarketQuote,
        bookmakers: list[BookmakerOdds],
    ) -> Optional[list[_BestPrice]]:
        """Highest price per reference outcome name; None if any side is unpriced."""
        best: list[Optional[_BestPrice]] = [None] * len(reference.outcomes)

        for bookmaker in bookmakers:
            market = bookmaker.find_market(reference.key)
            if market is None:
                continue
            for i, ref_outcome in enumerate(reference.outcomes):
                quote = market.find_outcome(ref_outcome.name)
                if quote is None:
                    continue
                # Strict comparison: the earlier bookmaker keeps a tie
                if best[i] is None or quote.price > best[i].outcome.price:
                    best[i] = _BestPrice(
                        outcome=quote,
                        bookmaker=bookmaker.key,
                        last_update=bookmaker.last_update,
                    )

        if any(b is None for b in best):
            return None
        return best

    def _evaluate(
        self,
        game: GameOdds,
        market: MarketQuote,
        best: list[_BestPrice],
        now: datetime,
    ) -> Optional[ArbitrageOpportunity]:
        decimals = [american_to_decimal(b.outcome.price) for b in best]
        total = sum(decimal_to_probability(d) for d in decimals)

        # Also rejects NaN
        if not 0 < total < 1:
            return None

        roi = (1 / total - 1) * 100
        profit_per_1000 = 1000 / total - 1000

        # Labels carry the reference bookmaker's line
        legs = tuple(
            OpportunityLeg(
                bookmaker=b.bookmaker,
                outcome=ref.label,
                american_odds=b.outcome.price,
                decimal_odds=d,
            )
            for b, d, ref in zip(best, decimals, market.outcomes)
        )
        updates = [b.last_update for b in best if b.last_update is not None]

        opportunity = ArbitrageOpportunity(
            sport=game.sport_title,
            league=game.sport_key,
            event_id=game.event_id,
            event_name=game.get_display_name(),
            home_team=game.home_team,
            away_team=game.away_team,
            market_type=market.key,
            market_key=market.key,
            legs=legs,
            roi=round(roi, 2),
            profit_per_1000=round(profit_per_1000, 2),
            implied_probability_total=total,
            commence_time=game.commence_time,
            detected_at=now,
            expires_at=now + timedelta(seconds=self.config.opportunity_ttl_seconds),
            odds_last_updated=max(updates) if updates else now,
        )

        self.logger.debug("Arbitrage detected", **opportunity.to_log())
        return opportunity
