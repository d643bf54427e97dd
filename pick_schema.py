"""
Pick Schema - Engine-side records
=================================

Records the engine creates and persists (as opposed to canonical_schema,
which holds what feeds hand in).

A Pick is frozen at lock time: grade, scores and rationale never change.
Stores move a pick forward with dataclasses.replace, and only ever touch
status, settled_at and win_amount.
"""

from dataclasses import dataclass, field, asdict, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from canonical_schema import MarketType, SelectionSide
from identity.name_normalizer import normalize_team_name


class PickStatus(str, Enum):
    PENDING = "pending"
    WIN = "win"
    LOSS = "loss"
    PUSH = "push"
    VOID = "void"

    @property
    def is_terminal(self) -> bool:
        return self != PickStatus.PENDING


class PickScope(str, Enum):
    GENERAL = "general"
    PREMIUM = "authenticated-premium"


class LockReason(str, Enum):
    PARTICIPANTS_CONFIRMED = "participants-confirmed"
    LINEUPS_POSTED = "lineups-posted"
    MANUAL = "manual"


class RetireReason(str, Enum):
    SUPERSEDED = "superseded"            # same event re-locked with newer inputs
    MANUAL_ROTATION = "manual-rotation"  # operator rotated the pick
    EVENT_STARTED = "event-started"      # rotation poll moved past a started event


# Retired picks with these reasons are voided if their event has not started
VOIDING_RETIRE_REASONS = {RetireReason.SUPERSEDED, RetireReason.MANUAL_ROTATION}


@dataclass(frozen=True)
class FactorScoreSet:
    """Six 0-100 factor scores."""
    offensive_production: int
    pitching_matchup: int
    situational_edge: int
    recent_momentum: int
    market_inefficiency: int
    system_confidence: int

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not 0 <= value <= 100:
                raise ValueError(f"{f.name}={value} outside [0, 100]")

    def items(self) -> Iterator[Tuple[str, int]]:
        for f in fields(self):
            yield f.name, getattr(self, f.name)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FactorScoreSet":
        return cls(**{f.name: int(data[f.name]) for f in fields(cls)})


@dataclass(frozen=True)
class Pick:
    """A published recommendation for one event/selection."""
    id: str
    scope: PickScope
    day: str                       # ET pick day, YYYY-MM-DD
    event_ref: str                 # canonical event ID
    sport: str
    home_team: str
    away_team: str
    selection: str
    side: SelectionSide
    market_type: MarketType
    price: int
    line: Optional[float]
    reference_unit_size: float
    scores: FactorScoreSet
    grade: str
    weighted_sum: float
    confidence_value: float
    rationale: str
    lock_reason: LockReason
    locked_at: datetime
    event_start_time: datetime
    created_at: datetime
    status: PickStatus = PickStatus.PENDING
    low_quality: bool = False
    settled_at: Optional[datetime] = None
    win_amount: Optional[float] = None

    @property
    def selection_key(self) -> str:
        """Identity used by the no-repeat rule: the team backed, or event+side for totals."""
        if self.side == SelectionSide.HOME:
            return normalize_team_name(self.home_team)
        if self.side == SelectionSide.AWAY:
            return normalize_team_name(self.away_team)
        return f"{self.event_ref}:{self.side.value}"

    @property
    def teams(self) -> Tuple[str, str]:
        return self.home_team, self.away_team

    def with_settlement(self, status: PickStatus, settled_at: datetime,
                        win_amount: float) -> "Pick":
        return replace(self, status=status, settled_at=settled_at, win_amount=win_amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scope": self.scope.value,
            "day": self.day,
            "event_ref": self.event_ref,
            "sport": self.sport,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "matchup": f"{self.away_team} @ {self.home_team}",
            "selection": self.selection,
            "side": self.side.value,
            "market_type": self.market_type.value,
            "price": self.price,
            "line": self.line,
            "reference_unit_size": self.reference_unit_size,
            "scores": self.scores.to_dict(),
            "grade": self.grade,
            "weighted_sum": self.weighted_sum,
            "confidence_value": self.confidence_value,
            "rationale": self.rationale,
            "lock_reason": self.lock_reason.value,
            "locked_at": self.locked_at.isoformat(),
            "event_start_time": self.event_start_time.isoformat(),
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "low_quality": self.low_quality,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "win_amount": self.win_amount,
        }


@dataclass
class StabilityRecord:
    """
    Lock state for one event.

    locked_at is the first lock and drives expiry; last_update is the most
    recent (re)lock and drives the refresh interval. version increments on
    every write so the store can compare-and-set.
    """
    event_ref: str
    grade: str
    lock_reason: LockReason
    locked_at: datetime
    last_update: datetime
    pick_id: Optional[str] = None
    version: int = 1

    def age_hours(self, now: datetime) -> float:
        return (now - self.locked_at).total_seconds() / 3600.0

    def hours_since_update(self, now: datetime) -> float:
        return (now - self.last_update).total_seconds() / 3600.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_ref": self.event_ref,
            "grade": self.grade,
            "lock_reason": self.lock_reason.value,
            "locked_at": self.locked_at.isoformat(),
            "last_update": self.last_update.isoformat(),
            "pick_id": self.pick_id,
            "version": self.version,
        }


@dataclass(frozen=True)
class PickChange:
    """Audit entry written whenever the active pick of a scope/day moves."""
    scope: PickScope
    day: str
    new_pick_id: Optional[str]
    previous_pick_id: Optional[str]
    reason: str
    changed_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)
