"""
SETTLEMENT_ENGINE.PY - Reconcile pending picks against final scores
===================================================================

For every pending pick whose event has started:

1. Fetch final results for the ET days those events were played
   (each result feed isolated via feeds.guarded_call)
2. Match a result, in order:
     exact   result.matched_event_id == pick.event_ref
     pair    same home/away (normalized), same ET day, nearest start
     combined unordered participant key + same ET day (home/away swapped
              listings get their scores swapped back)
3. Grade the selection and compute the payout
4. settle() in the store - conditional on the pick still being pending,
   so re-running a cycle never pays twice

A pick without a match stays pending (MatchNotFound, retried next cycle).
Consecutive misses are counted; from SETTLEMENT_MISS_WARN_THRESHOLD on every
further miss logs a WARNING.

Tie rule: a level final score pushes a moneyline selection. Baseball has no
draw, so a level MLB final only happens on suspended/forfeit edge cases.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from canonical_schema import DateRange, MarketType, SelectionSide, SettlementResult
from core.errors import ExternalFetchFailure, MatchNotFound
from core.time_et import Clock, SystemClock, et_date_str
from env_config import Config
from feeds import ResultFeed, guarded_call
from identity.name_normalizer import normalize_team_name, unordered_pair_key
from pick_schema import Pick, PickStatus
from pick_store import PickStore

logger = logging.getLogger(__name__)

# Scores and lines are compared with this tolerance
EQUALITY_TOLERANCE = 0.01

MATCH_EXACT = "exact"
MATCH_PAIR = "pair"
MATCH_COMBINED = "combined"


# =============================================================================
# GRADING
# =============================================================================

def grade_selection(market_type: MarketType, side: SelectionSide, line: Optional[float],
                    home_score: int, away_score: int) -> PickStatus:
    """
    Outcome of one selection given the final score.

    Spread lines are from the selection's perspective (-1.5 = selection must
    win by 2+). Spread/total selections without a line are void.
    """
    if market_type == MarketType.MONEYLINE:
        if home_score == away_score:
            return PickStatus.PUSH
        home_won = home_score > away_score
        won = home_won if side == SelectionSide.HOME else not home_won
        return PickStatus.WIN if won else PickStatus.LOSS

    if market_type == MarketType.SPREAD:
        if line is None:
            return PickStatus.VOID
        own, opp = (home_score, away_score) if side == SelectionSide.HOME else (away_score, home_score)
        margin = own + line - opp
        if abs(margin) < EQUALITY_TOLERANCE:
            return PickStatus.PUSH
        return PickStatus.WIN if margin > 0 else PickStatus.LOSS

    if market_type == MarketType.TOTAL:
        if line is None:
            return PickStatus.VOID
        diff = (home_score + away_score) - line
        if abs(diff) < EQUALITY_TOLERANCE:
            return PickStatus.PUSH
        over_won = diff > 0
        won = over_won if side == SelectionSide.OVER else not over_won
        return PickStatus.WIN if won else PickStatus.LOSS

    return PickStatus.VOID


def calculate_payout(price: int, units: float, status: PickStatus) -> float:
    """
    Net result in units.

    +150 for 2u wins 3.0; -110 for 1.5u wins 1.3636; a loss is -units;
    push/void return the stake (0).
    """
    if status == PickStatus.WIN:
        if price > 0:
            return round(price / 100.0 * units, 4)
        return round(100.0 / abs(price) * units, 4)
    if status == PickStatus.LOSS:
        return -units
    return 0.0


@dataclass(frozen=True)
class ResultMatch:
    result: SettlementResult
    method: str
    home_score: int
    away_score: int


# =============================================================================
# MATCHING
# =============================================================================

def _same_day(pick: Pick, result: SettlementResult) -> bool:
    if result.start_time is None:
        return True
    return et_date_str(result.start_time) == et_date_str(pick.event_start_time)


def _start_gap(pick: Pick, result: SettlementResult) -> timedelta:
    if result.start_time is None:
        return timedelta(0)
    return abs(result.start_time - pick.event_start_time)


def match_result(pick: Pick, results: Sequence[SettlementResult]) -> ResultMatch:
    """
    Locate the result for a pick.

    Raises:
        MatchNotFound: no strategy produced a match
    """
    for result in results:
        if result.matched_event_id == pick.event_ref:
            return ResultMatch(result, MATCH_EXACT, result.final_home_score, result.final_away_score)

    home = normalize_team_name(pick.home_team)
    away = normalize_team_name(pick.away_team)

    pair_hits = [
        r for r in results
        if r.home_team and r.away_team
        and normalize_team_name(r.home_team) == home
        and normalize_team_name(r.away_team) == away
        and _same_day(pick, r)
    ]
    if pair_hits:
        best = min(pair_hits, key=lambda r: _start_gap(pick, r))
        return ResultMatch(best, MATCH_PAIR, best.final_home_score, best.final_away_score)

    combined = unordered_pair_key(pick.home_team, pick.away_team)
    combined_hits = [
        r for r in results
        if r.home_team and r.away_team
        and unordered_pair_key(r.home_team, r.away_team) == combined
        and _same_day(pick, r)
    ]
    if combined_hits:
        best = min(combined_hits, key=lambda r: _start_gap(pick, r))
        if normalize_team_name(best.home_team) == home:
            return ResultMatch(best, MATCH_COMBINED, best.final_home_score, best.final_away_score)
        # Listed the other way round
        return ResultMatch(best, MATCH_COMBINED, best.final_away_score, best.final_home_score)

    raise MatchNotFound(pick.id, pick.event_ref)


# =============================================================================
# ENGINE
# =============================================================================

class SettlementEngine:
    """Settles pending picks from one or more result feeds."""

    def __init__(self, store: PickStore, result_feeds: Sequence[ResultFeed] = (),
                 clock: Optional[Clock] = None,
                 miss_warn_threshold: Optional[int] = None,
                 lookback_days: Optional[int] = None):
        self.store = store
        self.result_feeds = list(result_feeds)
        self.clock = clock or SystemClock()
        self.miss_warn_threshold = (
            Config.SETTLEMENT_MISS_WARN_THRESHOLD if miss_warn_threshold is None else miss_warn_threshold
        )
        self.lookback_days = Config.SETTLEMENT_LOOKBACK_DAYS if lookback_days is None else lookback_days
        self.last_run: Optional[datetime] = None
        self.last_summary: Dict[str, Any] = {}
        self.total_settled = 0

    def default_range(self) -> DateRange:
        today = date.fromisoformat(et_date_str(self.clock.now()))
        return DateRange.last_days(self.lookback_days, today)

    def _candidates(self, date_range: DateRange) -> List[Pick]:
        now = self.clock.now()
        return [
            p for p in self.store.pending(started_before=now)
            if date_range.contains(date.fromisoformat(p.day))
        ]

    def _fetch_results(self, picks: Sequence[Pick]) -> Tuple[List[SettlementResult], List[str]]:
        """Results covering the ET days the picks' events were played on."""
        event_days = sorted({date.fromisoformat(et_date_str(p.event_start_time)) for p in picks})
        fetch_range = DateRange(start=event_days[0], end=event_days[-1])

        results: List[SettlementResult] = []
        errors: List[str] = []
        for feed in self.result_feeds:
            source = type(feed).__name__
            try:
                results.extend(guarded_call(source, feed.get_final_results, fetch_range))
            except ExternalFetchFailure as e:
                errors.append(str(e))
        return results, errors

    def settle_pick(self, pick: Pick, home_score: int, away_score: int) -> bool:
        """Grade and write one pick. False if it was already settled."""
        status = grade_selection(pick.market_type, pick.side, pick.line, home_score, away_score)
        win_amount = calculate_payout(pick.price, pick.reference_unit_size, status)
        settled = self.store.settle(pick.id, status, win_amount, self.clock.now())
        if settled:
            logger.info("Settled %s %s (%s %s) %d-%d -> %s %+.4f",
                        pick.id, pick.selection, pick.market_type.value, pick.line,
                        away_score, home_score, status.value, win_amount)
        return settled

    def _record_miss(self, pick: Pick) -> int:
        misses = self.store.record_miss(pick.id)
        if misses >= self.miss_warn_threshold:
            logger.warning("No result for pick %s (%s) after %d settlement cycles",
                           pick.id, pick.event_ref, misses)
        else:
            logger.debug("No result yet for pick %s (%s), miss %d", pick.id, pick.event_ref, misses)
        return misses

    def grade_pending(self, date_range: Optional[DateRange] = None) -> int:
        """
        Settle every started pending pick whose pick day falls in date_range
        (default: the last SETTLEMENT_LOOKBACK_DAYS ET days).

        Returns:
            Number of picks transitioned to a terminal status
        """
        date_range = date_range or self.default_range()
        self.last_run = self.clock.now()
        summary: Dict[str, Any] = {
            "range": [date_range.start.isoformat(), date_range.end.isoformat()],
            "candidates": 0,
            "settled": 0,
            "unmatched": 0,
            "by_method": {MATCH_EXACT: 0, MATCH_PAIR: 0, MATCH_COMBINED: 0},
            "errors": [],
        }

        picks = self._candidates(date_range)
        summary["candidates"] = len(picks)
        if not picks:
            self.last_summary = summary
            return 0

        results, errors = self._fetch_results(picks)
        summary["errors"] = errors
        if not results and errors:
            # Nothing to match against; picks stay pending for the next tick
            self.last_summary = summary
            return 0

        for pick in picks:
            try:
                match = match_result(pick, results)
            except MatchNotFound:
                self._record_miss(pick)
                summary["unmatched"] += 1
                continue

            if self.settle_pick(pick, match.home_score, match.away_score):
                summary["settled"] += 1
                summary["by_method"][match.method] += 1

        self.total_settled += summary["settled"]
        self.last_summary = summary
        logger.info("Settlement cycle: %d candidates, %d settled, %d unmatched",
                    summary["candidates"], summary["settled"], summary["unmatched"])
        return summary["settled"]

    def get_stats(self) -> Dict[str, Any]:
        misses = self.store.miss_counts()
        return {
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_summary": self.last_summary,
            "total_settled": self.total_settled,
            "pending_misses": misses,
            "stuck": sorted(pid for pid, n in misses.items() if n >= self.miss_warn_threshold),
        }
