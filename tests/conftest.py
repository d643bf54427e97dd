"""
tests/conftest.py - Pytest configuration and fixtures

Keeps the suite environment-agnostic:
- PICK_ENGINE_DATA_DIR points at a temp directory
- Feed retries do not back off
- Feeds are in-process fakes; the clock is a FixedClock
"""

import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from canonical_schema import (
    CandidateEvent,
    GameStatus,
    MarketQuote,
    MarketType,
    ParticipantForm,
    SelectionSide,
    SettlementResult,
)
from core.time_et import FixedClock
from factor_scorer import FactorScorer
from pick_engine import PickEngine
from pick_schema import FactorScoreSet, LockReason, Pick, PickScope, PickStatus
from pick_store import InMemoryPickStore
from stability_guard import InMemoryStabilityStore, StabilityGuard

# 02:00 ET on the first test day; games go off at 19:10 ET
NOW = datetime(2026, 7, 18, 6, 0, tzinfo=timezone.utc)
START = datetime(2026, 7, 18, 23, 10, tzinfo=timezone.utc)
DAY = "2026-07-18"


@pytest.fixture(scope="session", autouse=True)
def set_data_dir(tmp_path_factory):
    """Point PICK_ENGINE_DATA_DIR at a session temp directory."""
    data_dir = tmp_path_factory.mktemp("pick_engine_data")

    old_value = os.environ.get("PICK_ENGINE_DATA_DIR")
    os.environ["PICK_ENGINE_DATA_DIR"] = str(data_dir)

    yield data_dir

    if old_value is not None:
        os.environ["PICK_ENGINE_DATA_DIR"] = old_value
    elif "PICK_ENGINE_DATA_DIR" in os.environ:
        del os.environ["PICK_ENGINE_DATA_DIR"]


@pytest.fixture(autouse=True)
def no_feed_backoff(monkeypatch):
    """Retries in feeds.guarded_call happen back to back."""
    monkeypatch.setattr("feeds.calculate_backoff", lambda attempt: 0)


# =============================================================================
# BUILDERS
# =============================================================================

def make_form(team, offense=50.0, starter=50.0, situational=50.0, last10=0.5) -> ParticipantForm:
    return ParticipantForm(
        team=team,
        offense_rating=offense,
        starter_rating=starter,
        situational_rating=situational,
        last10_win_pct=last10,
    )


def moneyline(team, side=SelectionSide.HOME, price=-110) -> MarketQuote:
    return MarketQuote(market_type=MarketType.MONEYLINE, selection=team, side=side, price=price)


def make_event(event_ref, home, away, price=-110, start=START, lineups=False,
               starters=True, quotes=None, status=GameStatus.SCHEDULED) -> CandidateEvent:
    """Event quoted on the home moneyline unless quotes are given."""
    if quotes is None:
        quotes = (moneyline(home, SelectionSide.HOME, price),)
    return CandidateEvent(
        event_ref=event_ref,
        home_team=home,
        away_team=away,
        start_time=start,
        home_starter="Home Starter" if starters else None,
        away_starter="Away Starter" if starters else None,
        lineups_posted=lineups,
        status=status,
        quotes=tuple(quotes),
    )


def make_pick(pick_id="pick00000001", scope=PickScope.GENERAL, day=DAY,
              event_ref="MLB:MLB_STATS:1", home="New York Mets", away="Cincinnati Reds",
              side=SelectionSide.HOME, market_type=MarketType.MONEYLINE, price=-110,
              line=None, units=1.0, start=START, created_at=NOW,
              status=PickStatus.PENDING, grade="B") -> Pick:
    selection = home if side == SelectionSide.HOME else away
    if market_type == MarketType.TOTAL:
        selection = side.value.capitalize()
    return Pick(
        id=pick_id,
        scope=scope,
        day=day,
        event_ref=event_ref,
        sport="MLB",
        home_team=home,
        away_team=away,
        selection=selection,
        side=side,
        market_type=market_type,
        price=price,
        line=line,
        reference_unit_size=units,
        scores=FactorScoreSet(60, 60, 60, 60, 60, 60),
        grade=grade,
        weighted_sum=60.0,
        confidence_value=60.0,
        rationale="Test pick.",
        lock_reason=LockReason.PARTICIPANTS_CONFIRMED,
        locked_at=created_at,
        event_start_time=start,
        created_at=created_at,
        status=status,
    )


def make_result(event_ref, home_score, away_score, home=None, away=None, start=None, source="test"):
    return SettlementResult(
        matched_event_id=event_ref,
        final_home_score=home_score,
        final_away_score=away_score,
        home_team=home,
        away_team=away,
        start_time=start,
        source=source,
    )


# Team form used by the engine tests (all eight rated fields present)
TEAM_FORMS: Dict[str, ParticipantForm] = {
    "New York Mets": make_form("New York Mets", 80, 80, 70, 0.8),
    "Cincinnati Reds": make_form("Cincinnati Reds"),
    "Colorado Rockies": make_form("Colorado Rockies", 10, 20, 10, 0.1),
    "Los Angeles Dodgers": make_form("Los Angeles Dodgers", 50, 80, 90, 0.5),
    "Chicago Cubs": make_form("Chicago Cubs", 80, 80, 70, 0.8),
    "Milwaukee Brewers": make_form("Milwaukee Brewers"),
    "Pittsburgh Pirates": make_form("Pittsburgh Pirates", 74, 80, 70, 0.8),
}


# =============================================================================
# FAKE FEEDS
# =============================================================================

class FakeCatalog:
    """EventCatalog over a mutable list of events."""

    def __init__(self, events: Optional[List[CandidateEvent]] = None):
        self.events = list(events or [])
        self.fail = False
        self.calls = 0

    def list_upcoming_events(self, sport, start, end):
        self.calls += 1
        if self.fail:
            raise ConnectionError("schedule feed down")
        return [e for e in self.events if start <= e.start_time < end]

    def replace(self, event: CandidateEvent):
        self.events = [event if e.event_ref == event.event_ref else e for e in self.events]


class FakeQuotes:
    """QuoteFeed keyed by event_ref."""

    def __init__(self, quotes: Dict[str, List[MarketQuote]]):
        self.quotes = quotes
        self.fail = False

    def get_quotes(self, event):
        if self.fail:
            raise ConnectionError("odds feed down")
        return list(self.quotes.get(event.event_ref, []))


class FakeEnrichment:
    def __init__(self, forms: Optional[Dict[str, ParticipantForm]] = None):
        self.forms = dict(TEAM_FORMS if forms is None else forms)
        self.fail = False

    def get_participant_form(self, team):
        if self.fail:
            raise TimeoutError("form feed timed out")
        return self.forms.get(team)


class FakeResults:
    def __init__(self, results: Optional[List[SettlementResult]] = None):
        self.results = list(results or [])
        self.fail = False
        self.ranges = []

    def get_final_results(self, date_range):
        self.ranges.append(date_range)
        if self.fail:
            raise ConnectionError("scores feed down")
        return list(self.results)


class AsyncFakeResults(FakeResults):
    async def get_final_results(self, date_range):
        return FakeResults.get_final_results(self, date_range)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def make_engine(clock):
    """Factory for a fully in-memory engine with deterministic scoring."""

    def _make(events=None, catalog=None, store=None, result_feeds=(), **kwargs):
        catalog = catalog or FakeCatalog(events)
        kwargs.setdefault("enrichment", FakeEnrichment())
        kwargs.setdefault("scorer", FactorScorer(jitter=0))
        kwargs.setdefault("guard", StabilityGuard(InMemoryStabilityStore(), clock=clock,
                                                  refresh_hours=4, retention_hours=24))
        kwargs.setdefault("min_grade", "C+")
        kwargs.setdefault("base_unit_size", 1.0)
        kwargs.setdefault("max_manual_rotations", 2)
        return PickEngine(
            catalog=catalog,
            store=store or InMemoryPickStore(),
            result_feeds=result_feeds,
            clock=clock,
            **kwargs
        )

    return _make
