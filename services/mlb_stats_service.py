"""
MLB Stats API Service
=====================

Event catalog, team form and final scores from the public MLB Stats API
(statsapi.mlb.com, no key required).

    list_upcoming_events()  schedule with probable pitchers, lineups, venue
    get_participant_form()  standings -> 0-100 ratings (cached per ET day)
    get_final_results()     async; finals from the schedule linescore

Every game is passed through the EventResolver at ingestion, so downstream
code only ever sees canonical event IDs (MLB:MLB_STATS:<gamePk>).
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from canonical_schema import CandidateEvent, DateRange, GameStatus, ParticipantForm, SettlementResult
from core.errors import ExternalFetchFailure
from core.http_retry import get_json_with_retry
from core.time_et import Clock, SystemClock, et_date_str, parse_event_time
from env_config import Config
from identity.event_resolver import EventResolver, get_event_resolver
from identity.name_normalizer import normalize_team_name

logger = logging.getLogger("mlb_stats_service")

PROVIDER = "mlb_stats"
MLB_SPORT_ID = 1
AL_NL_LEAGUE_IDS = "103,104"

LEAGUE_RUNS_PER_GAME = 4.5
# Rating points per run/game above or below league average
RATING_PER_RUN = 15.0

# Run environment by park (1.0 = neutral)
PARK_FACTORS: Dict[str, float] = {
    "coors field": 1.15,
    "great american ball park": 1.08,
    "fenway park": 1.06,
    "globe life field": 1.03,
    "citizens bank park": 1.04,
    "yankee stadium": 1.03,
    "wrigley field": 1.02,
    "oracle park": 0.93,
    "petco park": 0.94,
    "t-mobile park": 0.93,
    "loandepot park": 0.95,
    "citi field": 0.96,
    "tropicana field": 0.96,
}

STATUS_MAP = {
    "Preview": GameStatus.SCHEDULED,
    "Live": GameStatus.LIVE,
    "Final": GameStatus.FINAL,
}


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _win_pct(wins: Optional[int], losses: Optional[int]) -> Optional[float]:
    played = (wins or 0) + (losses or 0)
    if not played:
        return None
    return (wins or 0) / played


def _game_status(game: Dict[str, Any]) -> GameStatus:
    status = game.get("status", {})
    if status.get("detailedState") in ("Postponed", "Cancelled"):
        return GameStatus.POSTPONED
    return STATUS_MAP.get(status.get("abstractGameState"), GameStatus.SCHEDULED)


def team_form_from_record(record: Dict[str, Any]) -> ParticipantForm:
    """Convert one standings teamRecord into ratings."""
    team = record.get("team", {}).get("name", "")
    games = record.get("gamesPlayed") or 0

    offense = starter = None
    if games:
        offense = _clamp(50 + (record.get("runsScored", 0) / games - LEAGUE_RUNS_PER_GAME) * RATING_PER_RUN)
        starter = _clamp(50 + (LEAGUE_RUNS_PER_GAME - record.get("runsAllowed", 0) / games) * RATING_PER_RUN)

    splits = {s.get("type"): s for s in record.get("records", {}).get("splitRecords", [])}
    home = splits.get("home", {})
    away = splits.get("away", {})
    last_ten = splits.get("lastTen", {})

    home_pct = _win_pct(home.get("wins"), home.get("losses"))
    away_pct = _win_pct(away.get("wins"), away.get("losses"))
    situational = None
    if home_pct is not None and away_pct is not None:
        situational = _clamp(50 + (home_pct - away_pct) * 100)

    return ParticipantForm(
        team=team,
        offense_rating=offense,
        starter_rating=starter,
        situational_rating=situational,
        last10_win_pct=_win_pct(last_ten.get("wins"), last_ten.get("losses")),
    )


class MLBStatsService:
    """
    Adapter over statsapi.mlb.com.

    Args:
        base_url: API root (Config.MLB_STATS_API_BASE)
        resolver: canonical event resolver (process singleton by default)
        transport: optional httpx transport for the async results client
    """

    def __init__(self, base_url: Optional[str] = None,
                 resolver: Optional[EventResolver] = None,
                 clock: Optional[Clock] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or Config.MLB_STATS_API_BASE).rstrip("/")
        self.resolver = resolver or get_event_resolver()
        self.clock = clock or SystemClock()
        self.transport = transport
        self._form_cache: Dict[str, ParticipantForm] = {}
        self._form_cache_day: Optional[str] = None
        self._lock = threading.Lock()

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        ok, status, data, error = get_json_with_retry(f"{self.base_url}{path}", params=params)
        if not ok:
            raise ExternalFetchFailure(PROVIDER, error or f"HTTP {status}")
        return data

    def _resolve(self, game: Dict[str, Any]):
        teams = game.get("teams", {})
        return self.resolver.resolve_event(
            sport=Config.SPORT,
            home_team=teams.get("home", {}).get("team", {}).get("name", ""),
            away_team=teams.get("away", {}).get("team", {}).get("name", ""),
            commence_time=game.get("gameDate", ""),
            provider=PROVIDER,
            provider_id=game.get("gamePk"),
        )

    # ==========================================
    # EVENT CATALOG
    # ==========================================

    def list_upcoming_events(self, sport: str, start: datetime, end: datetime) -> List[CandidateEvent]:
        """Scheduled MLB games starting in [start, end)."""
        if sport.upper() != "MLB":
            return []

        data = self._get("/schedule", {
            "sportId": MLB_SPORT_ID,
            "startDate": et_date_str(start),
            "endDate": et_date_str(end),
            "hydrate": "team,probablePitcher,lineups,venue",
        })

        events = []
        for day in data.get("dates", []):
            for game in day.get("games", []):
                event = self._to_candidate(game)
                if event is not None and start <= event.start_time < end:
                    events.append(event)

        logger.info("MLB schedule: %d games between %s and %s", len(events), start.isoformat(), end.isoformat())
        return events

    def _to_candidate(self, game: Dict[str, Any]) -> Optional[CandidateEvent]:
        start = parse_event_time(game.get("gameDate"))
        if start is None:
            return None

        teams = game.get("teams", {})
        home = teams.get("home", {})
        away = teams.get("away", {})
        lineups = game.get("lineups", {})
        venue = game.get("venue", {}).get("name", "")

        resolved = self._resolve(game)
        return CandidateEvent(
            event_ref=resolved.canonical_event_id,
            sport=Config.SPORT,
            home_team=home.get("team", {}).get("name", ""),
            away_team=away.get("team", {}).get("name", ""),
            start_time=start,
            venue=venue,
            venue_factor=PARK_FACTORS.get(venue.lower(), 1.0),
            home_starter=home.get("probablePitcher", {}).get("fullName"),
            away_starter=away.get("probablePitcher", {}).get("fullName"),
            lineups_posted=bool(lineups.get("homePlayers")) and bool(lineups.get("awayPlayers")),
            status=_game_status(game),
        )

    # ==========================================
    # ENRICHMENT
    # ==========================================

    def _load_standings(self) -> Dict[str, ParticipantForm]:
        season = self.clock.now().year
        data = self._get("/standings", {
            "leagueId": AL_NL_LEAGUE_IDS,
            "season": season,
            "standingsTypes": "regularSeason",
            "hydrate": "team",
        })
        forms = {}
        for division in data.get("records", []):
            for record in division.get("teamRecords", []):
                form = team_form_from_record(record)
                if form.team:
                    forms[normalize_team_name(form.team)] = form
        logger.info("Loaded standings form for %d teams", len(forms))
        return forms

    def get_participant_form(self, team: str) -> Optional[ParticipantForm]:
        """Ratings for a team; None when standings have nothing for it."""
        today = et_date_str(self.clock.now())
        with self._lock:
            if self._form_cache_day != today:
                self._form_cache = self._load_standings()
                self._form_cache_day = today
            return self._form_cache.get(normalize_team_name(team))

    # ==========================================
    # RESULTS
    # ==========================================

    async def get_final_results(self, date_range: DateRange) -> List[SettlementResult]:
        """Final scores for games on the given ET days."""
        params = {
            "sportId": MLB_SPORT_ID,
            "startDate": date_range.start.isoformat(),
            "endDate": date_range.end.isoformat(),
            "hydrate": "team,linescore",
        }
        try:
            async with httpx.AsyncClient(timeout=30, transport=self.transport) as client:
                resp = await client.get(f"{self.base_url}/schedule", params=params)
        except httpx.HTTPError as e:
            raise ExternalFetchFailure(PROVIDER, f"results request failed: {e}", e)

        if resp.status_code != 200:
            raise ExternalFetchFailure(PROVIDER, f"results HTTP {resp.status_code}")

        results = []
        for day in resp.json().get("dates", []):
            for game in day.get("games", []):
                if _game_status(game) != GameStatus.FINAL:
                    continue
                teams = game.get("teams", {})
                home = teams.get("home", {})
                away = teams.get("away", {})
                if home.get("score") is None or away.get("score") is None:
                    continue

                resolved = self._resolve(game)
                self.resolver.update_event_status(
                    resolved.canonical_event_id, "final", home.get("score"), away.get("score"))
                results.append(SettlementResult(
                    matched_event_id=resolved.canonical_event_id,
                    final_home_score=int(home["score"]),
                    final_away_score=int(away["score"]),
                    home_team=home.get("team", {}).get("name"),
                    away_team=away.get("team", {}).get("name"),
                    start_time=parse_event_time(game.get("gameDate")),
                    source=PROVIDER,
                ))

        logger.info("MLB finals: %d games %s..%s", len(results), date_range.start, date_range.end)
        return results
