"""
The Odds API Integration Service
Market quotes (moneyline, run line, total) and fallback final scores
Docs: https://the-odds-api.com/
"""

import threading
import time
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import httpx
from loguru import logger

from canonical_schema import (
    CandidateEvent,
    DateRange,
    MarketQuote,
    MarketType,
    SelectionSide,
    SettlementResult,
)
from core.errors import ExternalFetchFailure
from core.http_retry import get_json_with_retry
from core.time_et import Clock, SystemClock, et_date_str, parse_event_time
from env_config import Config
from identity.event_resolver import EventResolver, get_event_resolver
from identity.name_normalizer import teams_match

PROVIDER = "odds_api"

SPORT_KEYS = {
    "MLB": "baseball_mlb",
}

MARKET_KEYS = {
    "h2h": MarketType.MONEYLINE,
    "spreads": MarketType.SPREAD,
    "totals": MarketType.TOTAL,
}

# Scores endpoint only looks back this many days
MAX_SCORES_DAYS_FROM = 3


class OddsAPIService:
    """
    Integration with The Odds API for sportsbook prices.
    API Key: Set ODDS_API_KEY environment variable

    One odds payload per sport is fetched and reused for CACHE_SECONDS so
    quoting every candidate of a cycle costs a single request.
    """

    # Priority sportsbooks for quoting; the first one carrying a market wins
    PRIORITY_BOOKS = [
        "pinnacle",
        "draftkings",
        "fanduel",
        "betmgm",
        "caesars",
    ]

    CACHE_SECONDS = 300

    def __init__(self, api_key: Optional[str] = None,
                 base_url: Optional[str] = None,
                 resolver: Optional[EventResolver] = None,
                 clock: Optional[Clock] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or Config.ODDS_API_KEY
        self.base_url = (base_url or Config.ODDS_API_BASE).rstrip("/")
        self.resolver = resolver or get_event_resolver()
        self.clock = clock or SystemClock()
        self.transport = transport
        self._odds_cache: Dict[str, Tuple[float, List[Dict]]] = {}
        self._lock = threading.Lock()

        if not self.api_key:
            logger.warning("ODDS_API_KEY not set - quotes unavailable")
        else:
            logger.info("Odds API initialized with live key")

    # ==========================================
    # CORE API METHODS
    # ==========================================

    def _require_key(self):
        if not self.api_key:
            raise ExternalFetchFailure(PROVIDER, "ODDS_API_KEY not set")

    def get_odds(self, sport: str, markets: str = "h2h,spreads,totals") -> List[Dict]:
        """Raw odds payload for a sport (cached briefly)."""
        self._require_key()
        sport_key = SPORT_KEYS.get(sport.upper())
        if not sport_key:
            raise ExternalFetchFailure(PROVIDER, f"unsupported sport {sport}")

        with self._lock:
            cached = self._odds_cache.get(sport_key)
            if cached and time.monotonic() - cached[0] < self.CACHE_SECONDS:
                return cached[1]

        ok, status, data, error = get_json_with_retry(
            f"{self.base_url}/sports/{sport_key}/odds",
            params={
                "apiKey": self.api_key,
                "regions": "us,eu",
                "markets": markets,
                "oddsFormat": "american",
            },
        )
        if not ok:
            logger.error(f"Failed to fetch odds: {error}")
            raise ExternalFetchFailure(PROVIDER, error or f"HTTP {status}")

        with self._lock:
            self._odds_cache[sport_key] = (time.monotonic(), data)
        logger.info(f"Odds API: {len(data)} {sport_key} games")
        return data

    def clear_cache(self):
        with self._lock:
            self._odds_cache.clear()

    # ==========================================
    # QUOTE FEED
    # ==========================================

    def _canonical_id(self, game: Dict[str, Any]) -> str:
        resolved = self.resolver.resolve_event(
            sport=Config.SPORT,
            home_team=game.get("home_team", ""),
            away_team=game.get("away_team", ""),
            commence_time=game.get("commence_time", ""),
            provider=PROVIDER,
            provider_id=game.get("id"),
        )
        return resolved.canonical_event_id

    def _side_for(self, game: Dict[str, Any], market_type: MarketType, name: str) -> Optional[SelectionSide]:
        if market_type == MarketType.TOTAL:
            return {"over": SelectionSide.OVER, "under": SelectionSide.UNDER}.get(name.lower())
        if teams_match(name, game.get("home_team", "")):
            return SelectionSide.HOME
        if teams_match(name, game.get("away_team", "")):
            return SelectionSide.AWAY
        return None

    def extract_quotes(self, game: Dict[str, Any]) -> List[MarketQuote]:
        """One quote per selection from the highest-priority book carrying each market."""
        books = {b.get("key"): b for b in game.get("bookmakers", [])}
        ordered = [books[k] for k in self.PRIORITY_BOOKS if k in books]
        ordered += [b for k, b in books.items() if k not in self.PRIORITY_BOOKS]

        quotes: List[MarketQuote] = []
        seen_markets = set()
        for book in ordered:
            for market in book.get("markets", []):
                market_type = MARKET_KEYS.get(market.get("key"))
                if market_type is None or market_type in seen_markets:
                    continue
                book_quotes = []
                for outcome in market.get("outcomes", []):
                    side = self._side_for(game, market_type, outcome.get("name", ""))
                    price = outcome.get("price")
                    if side is None or price is None:
                        continue
                    try:
                        book_quotes.append(MarketQuote(
                            market_type=market_type,
                            selection=outcome["name"] if market_type != MarketType.TOTAL else outcome["name"].capitalize(),
                            side=side,
                            price=int(price),
                            line=outcome.get("point"),
                            bookmaker=book.get("key"),
                        ))
                    except ValueError as e:
                        logger.debug(f"Skipping outcome {outcome}: {e}")
                if book_quotes:
                    quotes.extend(book_quotes)
                    seen_markets.add(market_type)
        return quotes

    def get_quotes(self, event: CandidateEvent) -> List[MarketQuote]:
        """Quotes for a canonical event; empty when the book has not listed it."""
        for game in self.get_odds(event.sport):
            if self._canonical_id(game) == event.event_ref:
                return self.extract_quotes(game)
        logger.debug(f"No odds listed for {event.event_ref}")
        return []

    # ==========================================
    # RESULT FEED (fallback)
    # ==========================================

    async def get_final_results(self, date_range: DateRange) -> List[SettlementResult]:
        """Completed games from the scores endpoint (max 3 days back)."""
        self._require_key()
        sport_key = SPORT_KEYS[Config.SPORT.upper()]
        today = date.fromisoformat(et_date_str(self.clock.now()))
        days_from = min(MAX_SCORES_DAYS_FROM, max(1, (today - date_range.start).days + 1))

        try:
            async with httpx.AsyncClient(timeout=30, transport=self.transport) as client:
                resp = await client.get(
                    f"{self.base_url}/sports/{sport_key}/scores",
                    params={"apiKey": self.api_key, "daysFrom": days_from},
                )
        except httpx.HTTPError as e:
            raise ExternalFetchFailure(PROVIDER, f"scores request failed: {e}", e)

        if resp.status_code == 401:
            logger.error("Odds API auth failed")
            raise ExternalFetchFailure(PROVIDER, "auth failed")
        if resp.status_code != 200:
            logger.error(f"Odds API scores error: {resp.status_code}")
            raise ExternalFetchFailure(PROVIDER, f"scores HTTP {resp.status_code}")

        results = []
        for game in resp.json():
            if not game.get("completed"):
                continue
            start = parse_event_time(game.get("commence_time"))
            if start is None or not date_range.contains(date.fromisoformat(et_date_str(start))):
                continue

            scores = {s.get("name"): s.get("score") for s in game.get("scores") or []}
            home_score = scores.get(game.get("home_team"))
            away_score = scores.get(game.get("away_team"))
            if home_score is None or away_score is None:
                continue

            results.append(SettlementResult(
                matched_event_id=self._canonical_id(game),
                final_home_score=int(home_score),
                final_away_score=int(away_score),
                home_team=game.get("home_team"),
                away_team=game.get("away_team"),
                start_time=start,
                source=PROVIDER,
            ))

        logger.info(f"Fetched {len(results)} completed {sport_key} games")
        return results
