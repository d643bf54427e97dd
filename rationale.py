"""
Rationale text for a locked pick.

Built from the three strongest factors that clear STRONG_FACTOR_SCORE,
followed by a confidence qualifier. Written once at lock time and frozen
with the pick.
"""

from typing import List

from canonical_schema import CandidateEvent, MarketQuote, MarketType, SelectionSide
from pick_schema import FactorScoreSet

STRONG_FACTOR_SCORE = 60
HIGH_CONFIDENCE = 65
MODERATE_CONFIDENCE = 55


def describe_selection(quote: MarketQuote) -> str:
    """'Reds on the moneyline', 'Mets -1.5', 'the Over 8.5'."""
    if quote.market_type == MarketType.MONEYLINE:
        return f"{quote.selection} on the moneyline"
    if quote.market_type == MarketType.SPREAD:
        return f"{quote.selection} {quote.line:+g}"
    return f"the {quote.side.value.capitalize()} {quote.line:g}"


def _factor_sentence(factor: str, event: CandidateEvent, quote: MarketQuote) -> str:
    team = quote.selection
    is_total = quote.market_type == MarketType.TOTAL
    if factor == "offensive_production":
        if is_total:
            return "Both lineups project for run production above this number"
        if quote.side == SelectionSide.HOME:
            return f"{team} bring the stronger offense home, with better recent run production"
        return f"{team} carry the more potent offense into this road matchup"
    if factor == "pitching_matchup":
        if is_total:
            return "The starting pitching matchup points the same way as the total"
        return f"The pitching matchup favors {team}'s probable starter"
    if factor == "situational_edge":
        if is_total and event.venue:
            return f"{event.venue} plays to this side of the total"
        return f"{team} hold the situational edge on rest, travel and venue"
    if factor == "recent_momentum":
        return f"{team} arrive in better recent form"
    if factor == "market_inefficiency":
        return "The market price undervalues this outcome relative to our probability"
    return ""


def build_rationale(event: CandidateEvent, quote: MarketQuote, scores: FactorScoreSet) -> str:
    """Plain-language explanation for a pick."""
    parts: List[str] = [f"Take {describe_selection(quote)} in {event.matchup_label()}"]

    ranked = sorted(
        ((name, value) for name, value in scores.items() if name != "system_confidence"),
        key=lambda item: item[1],
        reverse=True,
    )
    for name, value in ranked[:3]:
        if value > STRONG_FACTOR_SCORE:
            parts.append(_factor_sentence(name, event, quote))

    confidence = scores.system_confidence
    if confidence > HIGH_CONFIDENCE:
        parts.append("This is a high-confidence play with complete inputs")
    elif confidence > MODERATE_CONFIDENCE:
        parts.append("Moderate confidence: the edge looks genuine but some inputs were estimated")
    else:
        parts.append("Lower confidence: inputs were incomplete, consider a smaller stake")

    return ". ".join(p for p in parts if p) + "."
