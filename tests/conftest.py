"""Shared fixtures: odds snapshots and opportunities."""

from datetime import datetime, timedelta, timezone

import pytest

from arbflow.engine.arbitrage import ArbitrageDetector
from arbflow.models.schemas import BookmakerOdds, GameOdds, MarketQuote, OutcomeQuote

NOW = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)


def build_game(books: dict, event_id: str = "evt-1", sport_title: str = "NBA") -> GameOdds:
    """
    books: {bookmaker_key: {market_key: [(name, price[, point]), ...]}}
    Insertion order is bookmaker order.
    """
    bookmakers = []
    for book_key, markets in books.items():
        bookmakers.append(BookmakerOdds(
            key=book_key,
            title=book_key.title(),
            markets=[
                MarketQuote(
                    key=market_key,
                    outcomes=[OutcomeQuote(*outcome) for outcome in outcomes],
                )
                for market_key, outcomes in markets.items()
            ],
        ))
    return GameOdds(
        event_id=event_id,
        sport_key="basketball_nba",
        sport_title=sport_title,
        home_team="Boston Celtics",
        away_team="Miami Heat",
        commence_time=NOW + timedelta(hours=3),
        bookmakers=bookmakers,
    )


@pytest.fixture
def game_factory():
    return build_game


@pytest.fixture
def detector():
    return ArbitrageDetector()


@pytest.fixture
def opportunity_factory(detector):
    """Build a real h2h opportunity where each side's best price is `price`."""

    def _make(
        price: float = 120,
        event_id: str = "evt-1",
        books: tuple[str, str] = ("draftkings", "fanduel"),
        sport_title: str = "NBA",
        detected_at: datetime = NOW,
    ):
        book_a, book_b = books
        game = build_game(
            {
                book_a: {"h2h": [("Boston Celtics", price), ("Miami Heat", -400)]},
                book_b: {"h2h": [("Boston Celtics", -400), ("Miami Heat", price)]},
            },
            event_id=event_id,
            sport_title=sport_title,
        )
        opportunities = detector.detect(game, now=detected_at)
        assert len(opportunities) == 1
        return opportunities[0]

    return _make
