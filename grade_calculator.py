"""
GRADE_CALCULATOR.PY - SINGLE SOURCE OF TRUTH FOR PICK GRADES
============================================================

This module is the ONLY place grade thresholds, factor weights and
grade-based unit sizing are defined. Everything else imports from here:
    from grade_calculator import calculate_grade, grade_meets_minimum

GRADE LADDER (highest to lowest):
    A+ >= 78.5   A >= 76   A- >= 73.5
    B+ >= 70     B >= 66   B- >= 62
    C+ >= 58     C >= 54   C- >= 50
    D+ >= 47     D >= 44   F  <  44

The weighted sum is the only input: grade = f(weighted_sum), monotonic and
non-decreasing. Market edge carries the most weight because it is the only
factor tied directly to expected value.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from pick_schema import FactorScoreSet

# =============================================================================
# FACTOR WEIGHTS
# =============================================================================
FACTOR_WEIGHTS: Dict[str, float] = {
    "offensive_production": 0.15,
    "pitching_matchup": 0.15,
    "situational_edge": 0.15,
    "recent_momentum": 0.15,
    "market_inefficiency": 0.25,
    "system_confidence": 0.15,
}

# =============================================================================
# GRADE CONFIGURATION - SINGLE SOURCE OF TRUTH
# =============================================================================
GRADE_CONFIG: Dict[str, Dict] = {
    "A+": {"threshold": 78.5, "rank": 1, "units": 2.0, "label": "Elite"},
    "A": {"threshold": 76.0, "rank": 2, "units": 1.75, "label": "Elite"},
    "A-": {"threshold": 73.5, "rank": 3, "units": 1.5, "label": "Strong"},
    "B+": {"threshold": 70.0, "rank": 4, "units": 1.25, "label": "Strong"},
    "B": {"threshold": 66.0, "rank": 5, "units": 1.0, "label": "Solid"},
    "B-": {"threshold": 62.0, "rank": 6, "units": 1.0, "label": "Solid"},
    "C+": {"threshold": 58.0, "rank": 7, "units": 0.75, "label": "Playable"},
    "C": {"threshold": 54.0, "rank": 8, "units": 0.5, "label": "Lean"},
    "C-": {"threshold": 50.0, "rank": 9, "units": 0.5, "label": "Lean"},
    "D+": {"threshold": 47.0, "rank": 10, "units": 0.5, "label": "Pass"},
    "D": {"threshold": 44.0, "rank": 11, "units": 0.5, "label": "Pass"},
    "F": {"threshold": None, "rank": 12, "units": 0.5, "label": "Pass"},
}

# Ordered best -> worst
GRADE_ORDER: List[str] = sorted(GRADE_CONFIG, key=lambda g: GRADE_CONFIG[g]["rank"])

# Descending (threshold, grade) pairs, F excluded
_GRADE_THRESHOLDS: List[Tuple[float, str]] = [
    (GRADE_CONFIG[g]["threshold"], g) for g in GRADE_ORDER if GRADE_CONFIG[g]["threshold"] is not None
]

FLOOR_GRADE = "F"
DEFAULT_MIN_GRADE = "C+"


@dataclass(frozen=True)
class GradeResult:
    grade: str
    weighted_sum: float
    units: float


def weighted_sum(scores: FactorScoreSet) -> float:
    """Σ(score_i · weight_i)."""
    return sum(value * FACTOR_WEIGHTS[name] for name, value in scores.items())


def grade_from_weighted_sum(total: float) -> str:
    """Map a weighted sum onto the ladder. First threshold met wins."""
    for threshold, grade in _GRADE_THRESHOLDS:
        if total >= threshold:
            return grade
    return FLOOR_GRADE


def calculate_grade(scores: FactorScoreSet, base_unit_size: float = 1.0) -> GradeResult:
    """
    Grade a factor score set.

    Returns:
        GradeResult with the letter grade, the weighted sum (2 dp) and the
        reference unit size for the grade scaled by base_unit_size.
    """
    total = weighted_sum(scores)
    grade = grade_from_weighted_sum(total)
    return GradeResult(
        grade=grade,
        weighted_sum=round(total, 2),
        units=round(GRADE_CONFIG[grade]["units"] * base_unit_size, 2),
    )


def grade_rank(grade: str) -> int:
    """1 for A+, 12 for F. Unknown grades raise KeyError."""
    return GRADE_CONFIG[grade]["rank"]


def grade_meets_minimum(grade: str, minimum: Optional[str] = None) -> bool:
    """True when grade is at or above minimum (default C+)."""
    return grade_rank(grade) <= grade_rank(minimum or DEFAULT_MIN_GRADE)


def get_grade_config(grade: str) -> Dict:
    """Copy of the configuration for a grade; F for unknown grades."""
    return dict(GRADE_CONFIG.get(grade, GRADE_CONFIG[FLOOR_GRADE]))
