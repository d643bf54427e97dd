"""
FACTOR_SCORER.PY - Six-factor banded scoring
============================================

Converts a candidate selection plus team enrichment into a FactorScoreSet:

    offensive_production   own lineup strength (totals: combined, park-adjusted)
    pitching_matchup       own starter vs opposing starter
    situational_edge       home field, rest/travel splits, park
    recent_momentum        last-10 form
    market_inefficiency    model probability minus price-implied probability
    system_confidence      completeness of the inputs

Each raw metric is quantized into a band (independent table per factor), then
jittered within +/- amplitude so similar inputs do not produce identical
outputs. Band level is reproducible; the jitter comes from an injected
random.Random so tests can seed it or set amplitude 0.

Missing enrichment never fails a call: the metric falls back to NEUTRAL_RAW
and the gap lowers system_confidence.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from canonical_schema import CandidateEvent, MarketQuote, MarketType, ParticipantForm, SelectionSide
from core.errors import DataUnavailable
from env_config import Config
from pick_schema import FactorScoreSet

logger = logging.getLogger(__name__)

# =============================================================================
# BAND TABLES: ((minimum raw, band centre), ...), floor centre
# =============================================================================
BandTable = Tuple[Tuple[Tuple[float, int], ...], int]

BAND_TABLES: Dict[str, BandTable] = {
    "offensive_production": (((85, 88), (75, 78), (65, 68), (50, 58), (35, 48), (20, 40)), 32),
    "pitching_matchup": (((85, 82), (70, 72), (55, 62), (40, 52), (25, 42)), 34),
    "situational_edge": (((80, 75), (65, 68), (50, 60), (35, 52), (20, 44)), 36),
    "recent_momentum": (((85, 80), (70, 70), (55, 60), (40, 50), (25, 42)), 34),
    # Edge in percentage points
    "market_inefficiency": (((6.0, 95), (4.0, 88), (2.5, 80), (1.5, 68), (0.8, 58), (0.3, 48)), 38),
    "system_confidence": (((95, 92), (85, 82), (75, 72), (65, 62), (55, 52), (45, 44)), 36),
}

# Documented neutral default for any missing rating (league average)
NEUTRAL_RAW = 50.0
NEUTRAL_WIN_PCT = 0.5

HOME_FIELD_ADVANTAGE = 4.0
MODEL_PROB_FLOOR = 0.15
MODEL_PROB_CEILING = 0.85
# Run lines are noisier than the straight-up result
SPREAD_PROBABILITY_SHRINK = 0.6
# Park factor 1.10 -> +20 situational points for an over
PARK_SITUATIONAL_SCALE = 200.0

# system_confidence raw = base + completeness share + lineup/starter bonuses
CONFIDENCE_BASE = 40.0
CONFIDENCE_COMPLETENESS_WEIGHT = 45.0
CONFIDENCE_LINEUPS_BONUS = 10.0
CONFIDENCE_STARTERS_BONUS = 5.0


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def implied_probability(price: int) -> float:
    """Price-implied win probability for American odds."""
    if price > 0:
        return 100.0 / (price + 100.0)
    return abs(price) / (abs(price) + 100.0)


def quantize(raw: float, table: BandTable) -> int:
    """Band centre for a raw value. First threshold met wins."""
    bands, floor = table
    for minimum, centre in bands:
        if raw >= minimum:
            return centre
    return floor


@dataclass
class RawMetrics:
    """Continuous inputs before banding, kept on the result for the rationale and debugging."""
    offensive_production: float
    pitching_matchup: float
    situational_edge: float
    recent_momentum: float
    market_inefficiency: float   # edge, percentage points
    system_confidence: float
    model_probability: float
    implied_probability: float
    missing: List[str] = field(default_factory=list)


@dataclass
class ScoredSelection:
    event: CandidateEvent
    quote: MarketQuote
    scores: FactorScoreSet
    raw: RawMetrics


class FactorScorer:
    """
    Banded six-factor scorer.

    Args:
        rng: jitter source; defaults to random.Random(seed)
        jitter: half-width of the in-band jitter (0 disables it)
        seed: used only when rng is not given
    """

    def __init__(self, rng: Optional[random.Random] = None,
                 jitter: Optional[float] = None,
                 seed: Optional[int] = None):
        self.rng = rng or random.Random(seed if seed is not None else Config.SCORE_SEED)
        self.jitter = Config.SCORE_JITTER if jitter is None else jitter

    # -------------------------------------------------------------------------
    # Raw metrics
    # -------------------------------------------------------------------------

    @staticmethod
    def _value(form: Optional[ParticipantForm], name: str, default: float,
               missing: List[str], label: str) -> float:
        value = getattr(form, name) if form is not None else None
        if value is None:
            missing.append(f"{label}.{name}")
            return default
        return float(value)

    def _side_metrics(self, event: CandidateEvent, quote: MarketQuote,
                      home_form: Optional[ParticipantForm],
                      away_form: Optional[ParticipantForm],
                      missing: List[str]) -> Tuple[float, float, float, float]:
        is_home = quote.side == SelectionSide.HOME
        own, opp = (home_form, away_form) if is_home else (away_form, home_form)
        own_label, opp_label = ("home", "away") if is_home else ("away", "home")

        offense = self._value(own, "offense_rating", NEUTRAL_RAW, missing, own_label)
        own_starter = self._value(own, "starter_rating", NEUTRAL_RAW, missing, own_label)
        opp_starter = self._value(opp, "starter_rating", NEUTRAL_RAW, missing, opp_label)
        own_sit = self._value(own, "situational_rating", NEUTRAL_RAW, missing, own_label)
        opp_sit = self._value(opp, "situational_rating", NEUTRAL_RAW, missing, opp_label)
        win_pct = self._value(own, "last10_win_pct", NEUTRAL_WIN_PCT, missing, own_label)
        # opponent form still counts toward completeness
        self._value(opp, "offense_rating", NEUTRAL_RAW, missing, opp_label)
        self._value(opp, "last10_win_pct", NEUTRAL_WIN_PCT, missing, opp_label)

        home_edge = HOME_FIELD_ADVANTAGE if is_home else -HOME_FIELD_ADVANTAGE
        matchup = 50 + (own_starter - opp_starter) / 2
        situational = 50 + (own_sit - opp_sit + home_edge) / 2
        momentum = win_pct * 100
        return _clamp(offense), _clamp(matchup), _clamp(situational), _clamp(momentum)

    def _total_metrics(self, event: CandidateEvent, quote: MarketQuote,
                       home_form: Optional[ParticipantForm],
                       away_form: Optional[ParticipantForm],
                       missing: List[str]) -> Tuple[float, float, float, float]:
        offense = []
        starters = []
        for form, label in ((home_form, "home"), (away_form, "away")):
            offense.append(self._value(form, "offense_rating", NEUTRAL_RAW, missing, label))
            starters.append(self._value(form, "starter_rating", NEUTRAL_RAW, missing, label))
            self._value(form, "situational_rating", NEUTRAL_RAW, missing, label)
            self._value(form, "last10_win_pct", NEUTRAL_WIN_PCT, missing, label)

        over_offense = _clamp(sum(offense) / 2 * event.venue_factor)
        over_matchup = _clamp(100 - sum(starters) / 2)
        over_situational = _clamp(50 + (event.venue_factor - 1.0) * PARK_SITUATIONAL_SCALE)
        # Form has no over/under direction
        momentum = NEUTRAL_RAW

        if quote.side == SelectionSide.OVER:
            return over_offense, over_matchup, over_situational, momentum
        return 100 - over_offense, 100 - over_matchup, 100 - over_situational, momentum

    def _confidence(self, event: CandidateEvent, missing: Sequence[str]) -> float:
        total_fields = 2 * len(ParticipantForm.RATED_FIELDS)
        present = max(total_fields - len(set(missing)), 0)
        raw = CONFIDENCE_BASE + CONFIDENCE_COMPLETENESS_WEIGHT * present / total_fields
        if event.lineups_posted:
            raw += CONFIDENCE_LINEUPS_BONUS
        if event.participants_confirmed:
            raw += CONFIDENCE_STARTERS_BONUS
        return _clamp(raw)

    def raw_metrics(self, event: CandidateEvent, quote: MarketQuote,
                    home_form: Optional[ParticipantForm] = None,
                    away_form: Optional[ParticipantForm] = None) -> RawMetrics:
        """Continuous metrics for one selection. Pure."""
        if quote.market_type in (MarketType.SPREAD, MarketType.TOTAL) and quote.line is None:
            raise DataUnavailable(event.event_ref, f"{quote.market_type.value} line")

        missing: List[str] = []
        if quote.market_type == MarketType.TOTAL:
            offense, matchup, situational, momentum = self._total_metrics(
                event, quote, home_form, away_form, missing)
        else:
            offense, matchup, situational, momentum = self._side_metrics(
                event, quote, home_form, away_form, missing)

        model_prob = _clamp((offense + matchup + situational + momentum) / 400,
                            MODEL_PROB_FLOOR, MODEL_PROB_CEILING)
        if quote.market_type == MarketType.SPREAD:
            model_prob = 0.5 + (model_prob - 0.5) * SPREAD_PROBABILITY_SHRINK

        implied = implied_probability(quote.price)

        return RawMetrics(
            offensive_production=offense,
            pitching_matchup=matchup,
            situational_edge=situational,
            recent_momentum=momentum,
            market_inefficiency=(model_prob - implied) * 100,
            system_confidence=self._confidence(event, missing),
            model_probability=model_prob,
            implied_probability=implied,
            missing=sorted(set(missing)),
        )

    # -------------------------------------------------------------------------
    # Banding
    # -------------------------------------------------------------------------

    def _band(self, factor: str, raw: float) -> int:
        centre = quantize(raw, BAND_TABLES[factor])
        if not self.jitter:
            return centre
        jittered = round(centre + (self.rng.random() - 0.5) * 2 * self.jitter)
        return int(_clamp(jittered))

    def score(self, event: CandidateEvent, quote: MarketQuote,
              home_form: Optional[ParticipantForm] = None,
              away_form: Optional[ParticipantForm] = None) -> ScoredSelection:
        """Score one selection on one event."""
        raw = self.raw_metrics(event, quote, home_form, away_form)
        scores = FactorScoreSet(
            offensive_production=self._band("offensive_production", raw.offensive_production),
            pitching_matchup=self._band("pitching_matchup", raw.pitching_matchup),
            situational_edge=self._band("situational_edge", raw.situational_edge),
            recent_momentum=self._band("recent_momentum", raw.recent_momentum),
            market_inefficiency=self._band("market_inefficiency", raw.market_inefficiency),
            system_confidence=self._band("system_confidence", raw.system_confidence),
        )
        if raw.missing:
            logger.debug("%s %s: neutral defaults for %s", event.event_ref, quote.selection, raw.missing)
        return ScoredSelection(event=event, quote=quote, scores=scores, raw=raw)

    def score_event(self, event: CandidateEvent,
                    home_form: Optional[ParticipantForm] = None,
                    away_form: Optional[ParticipantForm] = None) -> List[ScoredSelection]:
        """
        Score every quoted selection on an event.

        Raises:
            DataUnavailable: starters not confirmed, or no scorable quote
        """
        if not event.participants_confirmed:
            raise DataUnavailable(event.event_ref, "starting pitchers")
        if not event.quotes:
            raise DataUnavailable(event.event_ref, "market quotes")

        results = []
        for quote in event.quotes:
            try:
                results.append(self.score(event, quote, home_form, away_form))
            except DataUnavailable as e:
                logger.debug("Skipping quote: %s", e)

        if not results:
            raise DataUnavailable(event.event_ref, "scorable quotes")
        return results
