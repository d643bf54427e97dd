"""
Canonical Ingestion Schema
==========================
Single source of truth for the normalized records feeds hand to the engine.

Every adapter (schedule, odds, scores, team form) converts provider payloads
into these models at ingestion, after canonical event identity resolution.
The engine never sees provider JSON.

Features:
- Pydantic validation (American prices, market/side consistency)
- Aware UTC timestamps everywhere
- Immutable CandidateEvent per cycle
"""

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import ClassVar, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from identity.name_normalizer import normalize_team_name

# =============================================================================
# ENUMS
# =============================================================================

class MarketType(str, Enum):
    MONEYLINE = "moneyline"
    SPREAD = "spread"
    TOTAL = "total"


class SelectionSide(str, Enum):
    HOME = "home"
    AWAY = "away"
    OVER = "over"
    UNDER = "under"


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINAL = "final"
    POSTPONED = "postponed"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# MARKET QUOTES
# =============================================================================

class MarketQuote(BaseModel):
    """One priced selection: 'Mets -1.5 (+135)', 'Over 8.5 (-110)', 'Reds ML (+120)'."""
    model_config = ConfigDict(frozen=True)

    market_type: MarketType
    selection: str
    side: SelectionSide
    price: int = Field(..., description="American odds")
    line: Optional[float] = Field(None, description="Spread from the selection's perspective, or the total")
    bookmaker: Optional[str] = None

    @field_validator('price')
    @classmethod
    def validate_price(cls, v: int) -> int:
        if -100 < v < 100:
            raise ValueError(f"American price must be <= -100 or >= +100, got {v}")
        return v

    @model_validator(mode='after')
    def validate_side(self):
        totals_side = self.side in (SelectionSide.OVER, SelectionSide.UNDER)
        if self.market_type == MarketType.TOTAL and not totals_side:
            raise ValueError("total quotes must select over or under")
        if self.market_type != MarketType.TOTAL and totals_side:
            raise ValueError(f"{self.market_type.value} quotes must select home or away")
        return self


# =============================================================================
# ENRICHMENT
# =============================================================================

class ParticipantForm(BaseModel):
    """
    Recent-form and situational data for one team.

    Ratings are 0-100 (50 = league average). Any field may be None when the
    enrichment feed had nothing; the scorer substitutes neutral values.
    """
    model_config = ConfigDict(frozen=True)

    team: str
    offense_rating: Optional[float] = Field(None, ge=0, le=100)
    starter_rating: Optional[float] = Field(None, ge=0, le=100)
    situational_rating: Optional[float] = Field(None, ge=0, le=100)
    last10_win_pct: Optional[float] = Field(None, ge=0, le=1)

    RATED_FIELDS: ClassVar[Tuple[str, ...]] = ("offense_rating", "starter_rating", "situational_rating", "last10_win_pct")

    def missing_fields(self) -> List[str]:
        return [name for name in self.RATED_FIELDS if getattr(self, name) is None]


# =============================================================================
# CANDIDATE EVENTS
# =============================================================================

class CandidateEvent(BaseModel):
    """A scheduled game as seen by one generation cycle. Immutable."""
    model_config = ConfigDict(frozen=True)

    event_ref: str = Field(..., description="Canonical event ID")
    sport: str = "MLB"
    home_team: str
    away_team: str
    start_time: datetime
    venue: str = ""
    venue_factor: float = Field(1.0, gt=0, description="Run environment; 1.0 = neutral park")
    home_starter: Optional[str] = None
    away_starter: Optional[str] = None
    lineups_posted: bool = False
    status: GameStatus = GameStatus.SCHEDULED
    quotes: Tuple[MarketQuote, ...] = ()

    @field_validator('start_time')
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def participants_confirmed(self) -> bool:
        """Both starting pitchers announced."""
        return bool(self.home_starter and self.away_starter)

    @property
    def participants(self) -> Tuple[str, str]:
        return self.home_team, self.away_team

    def shares_participant(self, teams) -> bool:
        own = {normalize_team_name(self.home_team), normalize_team_name(self.away_team)}
        return any(normalize_team_name(t) in own for t in teams if t)

    def matchup_label(self) -> str:
        return f"{self.away_team} @ {self.home_team}"


# =============================================================================
# SETTLEMENT
# =============================================================================

class SettlementResult(BaseModel):
    """A finalized game score, keyed by canonical event ID."""
    model_config = ConfigDict(frozen=True)

    matched_event_id: str
    final_home_score: int = Field(..., ge=0)
    final_away_score: int = Field(..., ge=0)
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    start_time: Optional[datetime] = None
    source: Optional[str] = None

    @field_validator('start_time')
    @classmethod
    def normalize_start(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else None


class DateRange(BaseModel):
    """Inclusive range of ET pick days."""
    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode='after')
    def validate_order(self):
        if self.end < self.start:
            raise ValueError(f"end {self.end} is before start {self.start}")
        return self

    @classmethod
    def last_days(cls, days: int, today: date) -> "DateRange":
        """The `days` pick days ending with today."""
        return cls(start=today - timedelta(days=max(days - 1, 0)), end=today)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> List[date]:
        span = (self.end - self.start).days
        return [self.start + timedelta(days=i) for i in range(span + 1)]
