"""
Tests for settlement: grading rules, payouts, result matching and the
settlement cycle (idempotence, misses, feed isolation).
"""

import logging
from datetime import date, timedelta

import pytest

from canonical_schema import DateRange, MarketType, SelectionSide
from core.errors import MatchNotFound
from core.time_et import FixedClock
from pick_schema import PickScope, PickStatus
from pick_store import InMemoryPickStore
from settlement_engine import (
    MATCH_COMBINED,
    MATCH_EXACT,
    MATCH_PAIR,
    SettlementEngine,
    calculate_payout,
    grade_selection,
    match_result,
)
from conftest import START, AsyncFakeResults, FakeResults, make_pick, make_result

REF = "MLB:MLB_STATS:1"


class TestGradeSelection:

    @pytest.mark.parametrize("side,home,away,expected", [
        (SelectionSide.HOME, 5, 3, PickStatus.WIN),
        (SelectionSide.HOME, 2, 3, PickStatus.LOSS),
        (SelectionSide.AWAY, 2, 3, PickStatus.WIN),
        (SelectionSide.AWAY, 4, 4, PickStatus.PUSH),
    ])
    def test_moneyline(self, side, home, away, expected):
        assert grade_selection(MarketType.MONEYLINE, side, None, home, away) == expected

    @pytest.mark.parametrize("side,line,home,away,expected", [
        (SelectionSide.HOME, -1.5, 5, 4, PickStatus.LOSS),
        (SelectionSide.HOME, -1.5, 6, 4, PickStatus.WIN),
        (SelectionSide.AWAY, 1.5, 5, 4, PickStatus.WIN),
        (SelectionSide.AWAY, 1.5, 6, 4, PickStatus.LOSS),
        (SelectionSide.HOME, -1.0, 5, 4, PickStatus.PUSH),
    ])
    def test_spread(self, side, line, home, away, expected):
        assert grade_selection(MarketType.SPREAD, side, line, home, away) == expected

    @pytest.mark.parametrize("side,line,home,away,expected", [
        (SelectionSide.OVER, 8.5, 5, 4, PickStatus.WIN),
        (SelectionSide.UNDER, 8.5, 5, 4, PickStatus.LOSS),
        (SelectionSide.UNDER, 8.5, 3, 2, PickStatus.WIN),
        (SelectionSide.OVER, 9.0, 5, 4, PickStatus.PUSH),
    ])
    def test_total(self, side, line, home, away, expected):
        assert grade_selection(MarketType.TOTAL, side, line, home, away) == expected

    def test_missing_line_is_void(self):
        assert grade_selection(MarketType.SPREAD, SelectionSide.HOME, None, 5, 4) == PickStatus.VOID
        assert grade_selection(MarketType.TOTAL, SelectionSide.OVER, None, 5, 4) == PickStatus.VOID


class TestPayout:

    @pytest.mark.parametrize("price,units,status,expected", [
        (150, 2.0, PickStatus.WIN, 3.0),
        (-110, 1.5, PickStatus.WIN, 1.3636),
        (-110, 1.0, PickStatus.WIN, 0.9091),
        (-200, 1.0, PickStatus.WIN, 0.5),
        (150, 2.0, PickStatus.LOSS, -2.0),
        (-110, 1.0, PickStatus.PUSH, 0.0),
        (-110, 1.0, PickStatus.VOID, 0.0),
    ])
    def test_payout(self, price, units, status, expected):
        assert calculate_payout(price, units, status) == expected


class TestMatchResult:

    def setup_method(self):
        self.pick = make_pick(event_ref=REF)

    def test_exact_id(self):
        match = match_result(self.pick, [make_result("other", 1, 0), make_result(REF, 5, 3)])
        assert match.method == MATCH_EXACT
        assert (match.home_score, match.away_score) == (5, 3)

    def test_pair_on_same_day(self):
        result = make_result("MLB:ODDS_API:zz", 5, 3, home="NY Mets", away="Reds",
                             start=START - timedelta(minutes=5))
        match = match_result(self.pick, [result])
        assert match.method == MATCH_PAIR

    def test_pair_prefers_nearest_start(self):
        opener = make_result("x1", 1, 0, home="New York Mets", away="Cincinnati Reds",
                             start=START - timedelta(hours=6))
        nightcap = make_result("x2", 2, 7, home="New York Mets", away="Cincinnati Reds",
                               start=START + timedelta(minutes=2))
        match = match_result(self.pick, [opener, nightcap])
        assert match.result.matched_event_id == "x2"

    def test_combined_swaps_reversed_listing(self):
        reversed_listing = make_result("x1", 2, 7, home="Cincinnati Reds", away="New York Mets", start=START)
        match = match_result(self.pick, [reversed_listing])
        assert match.method == MATCH_COMBINED
        assert (match.home_score, match.away_score) == (7, 2)

    def test_other_day_not_matched(self):
        tomorrow = make_result("x1", 5, 3, home="New York Mets", away="Cincinnati Reds",
                               start=START + timedelta(days=1))
        with pytest.raises(MatchNotFound):
            match_result(self.pick, [tomorrow])


class TestSettlementEngine:

    def setup_method(self):
        self.clock = FixedClock(START + timedelta(hours=5))
        self.store = InMemoryPickStore()
        self.pick = make_pick("aaaaaaaaaaaa", event_ref=REF, price=-110, units=1.0)
        self.store.publish(self.pick)

    def _engine(self, *feeds, **kwargs):
        return SettlementEngine(self.store, feeds, clock=self.clock, **kwargs)

    def test_settles_win_and_is_idempotent(self):
        feed = FakeResults([make_result(REF, 5, 3)])
        engine = self._engine(feed)

        assert engine.grade_pending() == 1
        settled = self.store.get("aaaaaaaaaaaa")
        assert settled.status == PickStatus.WIN
        assert settled.win_amount == 0.9091
        assert settled.settled_at == self.clock.now()

        assert engine.grade_pending() == 0
        assert self.store.get("aaaaaaaaaaaa").win_amount == 0.9091
        assert engine.get_stats()["total_settled"] == 1

    def test_fetches_the_event_day(self):
        feed = FakeResults([make_result(REF, 5, 3)])
        self._engine(feed).grade_pending()
        assert feed.ranges == [DateRange(start=date(2026, 7, 18), end=date(2026, 7, 18))]

    def test_not_started_pick_untouched(self):
        self.clock.set(START - timedelta(minutes=1))
        feed = FakeResults([make_result(REF, 5, 3)])

        assert self._engine(feed).grade_pending() == 0
        assert feed.ranges == []
        assert self.store.get("aaaaaaaaaaaa").status == PickStatus.PENDING

    def test_tie_pushes(self):
        engine = self._engine(FakeResults([make_result(REF, 4, 4)]))
        engine.grade_pending()
        pick = self.store.get("aaaaaaaaaaaa")
        assert pick.status == PickStatus.PUSH
        assert pick.win_amount == 0.0

    def test_async_feed(self):
        engine = self._engine(AsyncFakeResults([make_result(REF, 2, 3)]))
        assert engine.grade_pending() == 1
        pick = self.store.get("aaaaaaaaaaaa")
        assert pick.status == PickStatus.LOSS
        assert pick.win_amount == -1.0

    def test_failing_feed_isolated(self):
        broken = FakeResults()
        broken.fail = True
        engine = self._engine(broken, FakeResults([make_result(REF, 5, 3)]))

        assert engine.grade_pending() == 1
        assert len(engine.last_summary["errors"]) == 1

    def test_all_feeds_down_keeps_pending_without_miss(self):
        broken = FakeResults()
        broken.fail = True
        engine = self._engine(broken)

        assert engine.grade_pending() == 0
        assert self.store.get("aaaaaaaaaaaa").status == PickStatus.PENDING
        assert self.store.miss_counts() == {}

    def test_unmatched_counts_misses_and_warns(self, caplog):
        engine = self._engine(FakeResults([make_result("other", 1, 0)]), miss_warn_threshold=2)

        with caplog.at_level(logging.WARNING, logger="settlement_engine"):
            engine.grade_pending()
            assert not [r for r in caplog.records if r.levelno == logging.WARNING]
            engine.grade_pending()

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "aaaaaaaaaaaa" in warnings[0].getMessage()
        assert engine.get_stats()["stuck"] == ["aaaaaaaaaaaa"]

        engine.result_feeds.append(FakeResults([make_result(REF, 5, 3)]))
        assert engine.grade_pending() == 1
        assert engine.get_stats()["pending_misses"] == {}

    def test_explicit_zero_settings_are_kept(self, caplog):
        engine = self._engine(FakeResults([make_result("other", 1, 0)]),
                              miss_warn_threshold=0, lookback_days=0)

        assert engine.miss_warn_threshold == 0
        assert engine.lookback_days == 0
        assert engine.default_range() == DateRange(start=date(2026, 7, 19), end=date(2026, 7, 19))

        with caplog.at_level(logging.WARNING, logger="settlement_engine"):
            engine.grade_pending(DateRange(start=date(2026, 7, 18), end=date(2026, 7, 18)))
        assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1

    def test_date_range_filters_pick_days(self):
        engine = self._engine(FakeResults([make_result(REF, 5, 3)]))
        outside = DateRange(start=date(2026, 7, 10), end=date(2026, 7, 12))

        assert engine.grade_pending(outside) == 0
        assert engine.grade_pending(DateRange(start=date(2026, 7, 18), end=date(2026, 7, 18))) == 1

    def test_settles_each_scope(self):
        premium = make_pick("bbbbbbbbbbbb", scope=PickScope.PREMIUM, event_ref="MLB:MLB_STATS:2",
                            home="Chicago Cubs", away="Milwaukee Brewers", side=SelectionSide.AWAY,
                            price=130)
        self.store.publish(premium)
        engine = self._engine(FakeResults([make_result(REF, 5, 3), make_result("MLB:MLB_STATS:2", 1, 4)]))

        assert engine.grade_pending() == 2
        assert self.store.get("bbbbbbbbbbbb").win_amount == 1.3
