"""
The Odds API Feed.

Pulls one odds snapshot per sport and normalizes the response into
GameOdds. Prices are requested and kept in American format.

API Docs: https://the-odds-api.com/liveapi/guides/v4/

Endpoint used:
- /sports/{sport}/odds: events with bookmaker markets and prices

Fetching is best-effort per sport: any failure for one sport (timeout,
non-2xx, malformed body) yields no games for that sport and the scan
moves on to the next.
"""

import asyncio
import math
import ssl
import time
from datetime import datetime, timezone
from typing import Any, Optional

import certifi
import httpx
import structlog

from arbflow.config import OddsAPISettings
from arbflow.models.schemas import (
    BookmakerOdds,
    GameOdds,
    MarketQuote,
    OutcomeQuote,
)

logger = structlog.get_logger()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class OddsAPIFeed:
    """
    Snapshot client for The Odds API.

    Usage:
        feed = OddsAPIFeed(OddsAPISettings(api_key="your_key"))
        await feed.start()
        games = await feed.fetch_all_sports()
        await feed.stop()
    """

    def __init__(
        self,
        config: OddsAPISettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.logger = logger.bind(feed="odds_api")

        self._http_client = http_client
        self._owns_client = http_client is None

        # Quota tracking (from response headers)
        self._requests_remaining: Optional[int] = None
        self._requests_used: Optional[int] = None

        # Health
        self._error_count: int = 0
        self._last_success_ms: int = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Open the HTTP client."""
        if self._http_client is not None:
            return
        self.logger.info("Starting Odds API feed", sports=self.config.sport_keys)
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._http_client = httpx.AsyncClient(
            verify=ssl_context,
            timeout=self.config.timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self._owns_client = True

    async def stop(self) -> None:
        """Close the HTTP client if we opened it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    # =========================================================================
    # API Calls
    # =========================================================================

    def _track_quota(self, headers: httpx.Headers) -> None:
        if "x-requests-remaining" in headers:
            try:
                self._requests_remaining = int(float(headers["x-requests-remaining"]))
            except ValueError:
                pass
        if "x-requests-used" in headers:
            try:
                self._requests_used = int(float(headers["x-requests-used"]))
            except ValueError:
                pass

    async def _make_request(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> Optional[Any]:
        """GET an endpoint. Returns decoded JSON or None on any failure."""
        if not self._http_client:
            self.logger.warning("Request before start()", endpoint=endpoint)
            return None

        url = f"{self.config.base_url}{endpoint}"
        full_params = {"apiKey": self.config.api_key}
        if params:
            full_params.update(params)

        try:
            response = await self._http_client.get(
                url,
                params=full_params,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException:
            self.logger.warning("Request timed out", endpoint=endpoint)
            self._error_count += 1
            return None
        except httpx.HTTPError as e:
            self.logger.error("Request failed", endpoint=endpoint, error=str(e))
            self._error_count += 1
            return None

        self._track_quota(response.headers)

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError:
                self.logger.warning("Invalid JSON body", endpoint=endpoint)
                self._error_count += 1
                return None
            self._last_success_ms = int(time.time() * 1000)
            return data
        elif response.status_code == 401:
            self.logger.error("Invalid API key")
        elif response.status_code == 429:
            self.logger.warning("Rate limited by API", endpoint=endpoint)
        else:
            self.logger.warning(
                "API error",
                endpoint=endpoint,
                status=response.status_code,
                body=response.text[:200],
            )
        self._error_count += 1
        return None

    async def fetch_sport(self, sport_key: str) -> list[GameOdds]:
        """Fetch and normalize the odds snapshot for one sport."""
        params = {
            "regions": self.config.regions,
            "markets": self.config.markets,
            "oddsFormat": self.config.odds_format,
        }
        data = await self._make_request(f"/sports/{sport_key}/odds", params)

        if not isinstance(data, list):
            if data is not None:
                self.logger.warning("Unexpected response shape", sport=sport_key)
            return []

        games = []
        for game_data in data:
            game = self._parse_game(game_data, sport_key)
            if game:
                games.append(game)

        self.logger.info(
            "Fetched odds",
            sport=sport_key,
            games=len(games),
            requests_remaining=self._requests_remaining,
            requests_used=self._requests_used,
        )
        return games

    async def fetch_all_sports(self) -> list[GameOdds]:
        """Fetch every configured sport, one at a time, pacing between calls."""
        all_games: list[GameOdds] = []
        sport_keys = self.config.sport_keys

        for i, sport_key in enumerate(sport_keys):
            try:
                all_games.extend(await self.fetch_sport(sport_key))
            except Exception as e:
                self.logger.error("Sport fetch failed", sport=sport_key, error=str(e))
                self._error_count += 1

            # Spread requests to respect the provider's rate limit
            if i < len(sport_keys) - 1 and self.config.request_delay_seconds > 0:
                await asyncio.sleep(self.config.request_delay_seconds)

        return all_games

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_game(self, data: Any, sport_key: str) -> Optional[GameOdds]:
        """Parse one event. Malformed events are skipped."""
        try:
            commence_time = _parse_timestamp(data.get("commence_time"))
            game = GameOdds(
                event_id=str(data["id"]),
                sport_key=data.get("sport_key") or sport_key,
                sport_title=data.get("sport_title") or sport_key,
                home_team=data["home_team"],
                away_team=data["away_team"],
                commence_time=commence_time or datetime.now(timezone.utc),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.debug("Failed to parse event", sport=sport_key, error=str(e))
            return None

        book_list = data.get("bookmakers")
        if not isinstance(book_list, list):
            return game

        for book_data in book_list:
            bookmaker = self._parse_bookmaker(book_data)
            if bookmaker:
                game.bookmakers.append(bookmaker)

        return game

    def _parse_bookmaker(self, data: Any) -> Optional[BookmakerOdds]:
        try:
            bookmaker = BookmakerOdds(
                key=data["key"],
                title=data.get("title", ""),
                last_update=_parse_timestamp(data.get("last_update")),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.debug("Failed to parse bookmaker", error=str(e))
            return None

        market_list = data.get("markets")
        if isinstance(market_list, list):
            for market_data in market_list:
                market = self._parse_market(market_data)
                if market:
                    bookmaker.markets.append(market)

        if not bookmaker.markets:
            return None
        return bookmaker

    def _parse_market(self, data: Any) -> Optional[MarketQuote]:
        try:
            outcomes = []
            for outcome_data in data["outcomes"]:
                point = outcome_data.get("point")
                price = float(outcome_data["price"])
                if not math.isfinite(price):
                    raise ValueError(f"non-finite price {price}")
                outcomes.append(OutcomeQuote(
                    name=outcome_data["name"],
                    price=price,
                    point=float(point) if point is not None else None,
                ))
            return MarketQuote(key=data["key"], outcomes=outcomes)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.debug("Failed to parse market", error=str(e))
            return None

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_metrics(self) -> dict:
        """Get feed health metrics."""
        return {
            "name": "odds_api",
            "requests_remaining": self._requests_remaining,
            "requests_used": self._requests_used,
            "error_count": self._error_count,
            "age_seconds": (int(time.time() * 1000) - self._last_success_ms) / 1000 if self._last_success_ms else 0,
        }
