"""
Tests for the feed adapters (MLB Stats API, The Odds API)

Synchronous calls are mocked at get_json_with_retry; async result calls go
through httpx.MockTransport.
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import httpx
import pytest

from canonical_schema import DateRange, GameStatus, MarketType, SelectionSide
from core.errors import ExternalFetchFailure
from core.time_et import FixedClock
from feeds import run_sync
from identity.event_resolver import EventResolver
from services.mlb_stats_service import MLBStatsService, team_form_from_record
from services.odds_api_service import OddsAPIService
from conftest import NOW, START, make_event

JULY_18 = DateRange(start=date(2026, 7, 18), end=date(2026, 7, 18))


def _game(game_pk, game_date, state="Preview", home_score=None, away_score=None, lineups=True):
    game = {
        "gamePk": game_pk,
        "gameDate": game_date,
        "status": {"abstractGameState": state, "detailedState": state},
        "venue": {"name": "Citi Field"},
        "teams": {
            "home": {"team": {"name": "New York Mets"}, "probablePitcher": {"fullName": "Kodai Senga"}},
            "away": {"team": {"name": "Cincinnati Reds"}, "probablePitcher": {"fullName": "Hunter Greene"}},
        },
    }
    if lineups:
        game["lineups"] = {"homePlayers": [{"id": 1}], "awayPlayers": [{"id": 2}]}
    if home_score is not None:
        game["teams"]["home"]["score"] = home_score
        game["teams"]["away"]["score"] = away_score
    return game


# ============================================================================
# MLB STATS
# ============================================================================

class TestMLBSchedule:

    def setup_method(self):
        self.resolver = EventResolver()
        self.service = MLBStatsService(base_url="https://mlb.test/api/v1", resolver=self.resolver,
                                       clock=FixedClock(NOW))

    def test_list_upcoming_events(self):
        payload = {"dates": [{"games": [
            _game(777087, "2026-07-18T23:10:00Z"),
            _game(777099, "2026-07-22T23:10:00Z"),
        ]}]}
        with patch("services.mlb_stats_service.get_json_with_retry",
                   return_value=(True, 200, payload, None)) as mock_get:
            events = self.service.list_upcoming_events("MLB", NOW, NOW + timedelta(hours=72))

        assert len(events) == 1
        event = events[0]
        assert event.event_ref == "MLB:MLB_STATS:777087"
        assert event.start_time == START
        assert event.participants_confirmed
        assert event.lineups_posted
        assert event.venue_factor == 0.96
        assert event.status == GameStatus.SCHEDULED
        assert mock_get.call_args.kwargs["params"]["startDate"] == "2026-07-18"

    def test_other_sport_is_empty(self):
        with patch("services.mlb_stats_service.get_json_with_retry") as mock_get:
            assert self.service.list_upcoming_events("NBA", NOW, NOW + timedelta(hours=72)) == []
        mock_get.assert_not_called()

    def test_failure_raises(self):
        with patch("services.mlb_stats_service.get_json_with_retry",
                   return_value=(False, 503, None, "HTTP 503")):
            with pytest.raises(ExternalFetchFailure) as exc:
                self.service.list_upcoming_events("MLB", NOW, NOW + timedelta(hours=72))
        assert exc.value.source == "mlb_stats"


class TestMLBForm:

    RECORD = {
        "team": {"name": "New York Mets"},
        "gamesPlayed": 100,
        "runsScored": 500,
        "runsAllowed": 400,
        "records": {"splitRecords": [
            {"type": "home", "wins": 30, "losses": 20},
            {"type": "away", "wins": 25, "losses": 25},
            {"type": "lastTen", "wins": 7, "losses": 3},
        ]},
    }

    def test_team_form_from_record(self):
        form = team_form_from_record(self.RECORD)
        assert form.offense_rating == pytest.approx(57.5)
        assert form.starter_rating == pytest.approx(57.5)
        assert form.situational_rating == pytest.approx(60.0)
        assert form.last10_win_pct == pytest.approx(0.7)

    def test_no_games_leaves_ratings_missing(self):
        form = team_form_from_record({"team": {"name": "New York Mets"}, "gamesPlayed": 0})
        assert form.missing_fields() == list(form.RATED_FIELDS)

    def test_form_cached_per_et_day(self):
        clock = FixedClock(NOW)
        service = MLBStatsService(base_url="https://mlb.test/api/v1", resolver=EventResolver(), clock=clock)
        payload = {"records": [{"teamRecords": [self.RECORD]}]}

        with patch("services.mlb_stats_service.get_json_with_retry",
                   return_value=(True, 200, payload, None)) as mock_get:
            assert service.get_participant_form("Mets").offense_rating == pytest.approx(57.5)
            assert service.get_participant_form("Cincinnati Reds") is None
            assert mock_get.call_count == 1

            clock.advance(days=1)
            service.get_participant_form("Mets")
            assert mock_get.call_count == 2


class TestMLBResults:

    def test_final_results(self):
        resolver = EventResolver()
        payload = {"dates": [{"games": [
            _game(777087, "2026-07-18T23:10:00Z", state="Final", home_score=5, away_score=3),
            _game(777088, "2026-07-18T17:10:00Z", state="Live", home_score=1, away_score=0),
        ]}]}

        def handler(request):
            assert request.url.path == "/api/v1/schedule"
            assert request.url.params["hydrate"] == "team,linescore"
            return httpx.Response(200, json=payload)

        service = MLBStatsService(base_url="https://mlb.test/api/v1", resolver=resolver,
                                  transport=httpx.MockTransport(handler))
        results = run_sync(service.get_final_results(JULY_18))

        assert len(results) == 1
        assert results[0].matched_event_id == "MLB:MLB_STATS:777087"
        assert (results[0].final_home_score, results[0].final_away_score) == (5, 3)
        assert resolver.get_by_canonical_id("MLB:MLB_STATS:777087").status == "final"

    def test_http_error(self):
        service = MLBStatsService(base_url="https://mlb.test/api/v1", resolver=EventResolver(),
                                  transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        with pytest.raises(ExternalFetchFailure):
            run_sync(service.get_final_results(JULY_18))


# ============================================================================
# ODDS API
# ============================================================================

ODDS_GAME = {
    "id": "abc123",
    "sport_key": "baseball_mlb",
    "commence_time": "2026-07-18T23:05:00Z",
    "home_team": "New York Mets",
    "away_team": "Cincinnati Reds",
    "bookmakers": [
        {"key": "draftkings", "markets": [
            {"key": "h2h", "outcomes": [
                {"name": "New York Mets", "price": -220},
                {"name": "Cincinnati Reds", "price": 185},
            ]},
            {"key": "totals", "outcomes": [
                {"name": "Over", "price": -105, "point": 8.5},
                {"name": "Under", "price": -115, "point": 8.5},
            ]},
        ]},
        {"key": "pinnacle", "markets": [
            {"key": "h2h", "outcomes": [
                {"name": "New York Mets", "price": -215},
                {"name": "Cincinnati Reds", "price": 190},
            ]},
            {"key": "spreads", "outcomes": [
                {"name": "New York Mets", "price": 120, "point": -1.5},
                {"name": "Cincinnati Reds", "price": -140, "point": 1.5},
            ]},
        ]},
    ],
}


class TestOddsQuotes:

    def setup_method(self):
        self.resolver = EventResolver()
        self.service = OddsAPIService(api_key="test-key", base_url="https://odds.test/v4",
                                      resolver=self.resolver, clock=FixedClock(NOW))

    def test_extract_quotes_prefers_priority_books(self):
        quotes = self.service.extract_quotes(ODDS_GAME)
        by_key = {(q.market_type, q.side): q for q in quotes}

        assert len(quotes) == 6
        assert by_key[(MarketType.MONEYLINE, SelectionSide.HOME)].price == -215
        assert by_key[(MarketType.MONEYLINE, SelectionSide.HOME)].bookmaker == "pinnacle"
        assert by_key[(MarketType.SPREAD, SelectionSide.AWAY)].line == 1.5
        over = by_key[(MarketType.TOTAL, SelectionSide.OVER)]
        assert (over.selection, over.line, over.bookmaker) == ("Over", 8.5, "draftkings")

    def test_get_quotes_matches_canonical_event(self):
        resolved = self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds",
                                               "2026-07-18T23:10:00Z", provider="mlb_stats",
                                               provider_id="777087")
        event = make_event(resolved.canonical_event_id, "New York Mets", "Cincinnati Reds", quotes=())

        with patch("services.odds_api_service.get_json_with_retry",
                   return_value=(True, 200, [ODDS_GAME], None)) as mock_get:
            quotes = self.service.get_quotes(event)
            again = self.service.get_quotes(event)

        assert len(quotes) == 6
        assert again == quotes
        assert mock_get.call_count == 1

    def test_unlisted_event_has_no_quotes(self):
        event = make_event("MLB:MLB_STATS:1", "Chicago Cubs", "Milwaukee Brewers", quotes=())
        with patch("services.odds_api_service.get_json_with_retry",
                   return_value=(True, 200, [ODDS_GAME], None)):
            assert self.service.get_quotes(event) == []

    def test_missing_key_fails(self, monkeypatch):
        monkeypatch.setattr("services.odds_api_service.Config.ODDS_API_KEY", None)
        service = OddsAPIService(resolver=EventResolver())
        with pytest.raises(ExternalFetchFailure):
            service.get_odds("MLB")


class TestOddsResults:

    def test_completed_scores(self):
        seen = {}
        payload = [
            {**ODDS_GAME, "completed": True, "scores": [
                {"name": "New York Mets", "score": "5"},
                {"name": "Cincinnati Reds", "score": "3"},
            ]},
            {**ODDS_GAME, "id": "live1", "home_team": "Chicago Cubs", "away_team": "Milwaukee Brewers",
             "completed": False, "scores": None},
        ]

        def handler(request):
            seen["daysFrom"] = request.url.params["daysFrom"]
            return httpx.Response(200, json=payload)

        clock = FixedClock(datetime(2026, 7, 19, 9, 0, tzinfo=timezone.utc))
        service = OddsAPIService(api_key="test-key", base_url="https://odds.test/v4",
                                 resolver=EventResolver(), clock=clock,
                                 transport=httpx.MockTransport(handler))
        results = run_sync(service.get_final_results(JULY_18))

        assert seen["daysFrom"] == "2"
        assert len(results) == 1
        assert results[0].home_team == "New York Mets"
        assert (results[0].final_home_score, results[0].final_away_score) == (5, 3)
        assert results[0].matched_event_id == "MLB:ODDS_API:abc123"

    def test_auth_failure(self):
        service = OddsAPIService(api_key="bad", base_url="https://odds.test/v4", resolver=EventResolver(),
                                 clock=FixedClock(NOW),
                                 transport=httpx.MockTransport(lambda request: httpx.Response(401)))
        with pytest.raises(ExternalFetchFailure):
            run_sync(service.get_final_results(JULY_18))
