"""
Event Resolver - Canonical event identity at ingestion
======================================================

Every feed (schedule, odds, scores) describes the same real-world game with
its own identifier. Resolution happens once, when a record is ingested, and
everything downstream (candidate scoring, stability records, picks,
settlement) only sees the canonical ID.

Canonical Event ID Format:
  {SPORT}:{PROVIDER}:{provider_event_id}   # First provider that reported the game
  {SPORT}:TIME:{away}@{home}:{epoch}       # No provider ID available

Usage:
    from identity.event_resolver import get_event_resolver

    resolver = get_event_resolver()
    resolved = resolver.resolve_event(
        sport="MLB",
        home_team="New York Mets",
        away_team="Cincinnati Reds",
        commence_time="2026-07-18T23:10:00Z",
        provider="mlb_stats",
        provider_id="777087",
    )
    resolved.canonical_event_id   # MLB:MLB_STATS:777087

    # Odds API lists the same game a few minutes off; it joins the same ID
    resolver.resolve_event("MLB", "NY Mets", "Reds", "2026-07-18T23:05:00Z",
                           provider="odds_api", provider_id="e91f...")
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict, Any, List

from core.time_et import parse_event_time, et_date_str
from .name_normalizer import normalize_team_name, pair_key

logger = logging.getLogger(__name__)

# Two listings of the same pair on the same day are one game if starts are this close
TIME_MATCH_TOLERANCE = timedelta(hours=3)


class EventMatchMethod(str, Enum):
    """How the event was matched."""
    EXACT_ID = "exact_id"                # Known provider ID
    TEAM_TIME_MATCH = "team_time_match"  # Same pair, same day, close start
    NEW_EVENT = "new_event"              # First sighting


@dataclass
class ResolvedEvent:
    """Result of event resolution."""
    canonical_event_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: str  # ISO 8601

    # Example: {"mlb_stats": "777087", "odds_api": "e91f..."}
    provider_ids: Dict[str, str] = field(default_factory=dict)

    match_method: EventMatchMethod = EventMatchMethod.NEW_EVENT

    status: str = "scheduled"  # scheduled, in_progress, final
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canonical_event_id": self.canonical_event_id,
            "sport": self.sport,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "commence_time": self.commence_time,
            "provider_ids": dict(self.provider_ids),
            "match_method": self.match_method.value,
            "status": self.status,
            "home_score": self.home_score,
            "away_score": self.away_score,
        }


class EventResolver:
    """
    Cross-provider event ID resolver.

    Thread-safe; the scheduler thread and API threads share one instance.
    """

    def __init__(self, tolerance: timedelta = TIME_MATCH_TOLERANCE):
        self.tolerance = tolerance
        self._lock = threading.RLock()
        # Cache of resolved events by canonical ID
        self._cache: Dict[str, ResolvedEvent] = {}
        # "away@home:YYYY-MM-DD" -> [canonical_id, ...] (doubleheaders share a key)
        self._team_day_index: Dict[str, List[str]] = {}
        # (provider, id) -> canonical_id
        self._provider_index: Dict[tuple, str] = {}

    def _day_key(self, home_team: str, away_team: str, start: Optional[datetime]) -> str:
        day = et_date_str(start) if start else "unknown"
        return f"{pair_key(home_team, away_team)}:{day}"

    def _generate_canonical_id(
        self,
        sport: str,
        home_team: str,
        away_team: str,
        start: Optional[datetime],
        provider: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> str:
        if provider and provider_id:
            return f"{sport}:{provider.upper()}:{provider_id}"

        home_norm = normalize_team_name(home_team).replace(" ", "_")
        away_norm = normalize_team_name(away_team).replace(" ", "_")
        epoch = int(start.timestamp()) if start else 0
        return f"{sport}:TIME:{away_norm}@{home_norm}:{epoch}"

    def _closest_same_day(self, key: str, start: Optional[datetime]) -> Optional[ResolvedEvent]:
        best = None
        best_gap = None
        for canonical_id in self._team_day_index.get(key, []):
            cached = self._cache.get(canonical_id)
            if cached is None:
                continue
            cached_start = parse_event_time(cached.commence_time)
            if start is None or cached_start is None:
                gap = timedelta(0)
            else:
                gap = abs(cached_start - start)
            if gap <= self.tolerance and (best_gap is None or gap < best_gap):
                best, best_gap = cached, gap
        return best

    def resolve_event(
        self,
        sport: str,
        home_team: str,
        away_team: str,
        commence_time: str,
        provider: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> ResolvedEvent:
        """
        Resolve an event to its canonical ID.

        Resolution strategy (in order):
        1. Known (provider, provider_id)
        2. Same participants, same ET day, start within tolerance
        3. New canonical ID (provider-based when an ID is given)
        """
        sport_upper = sport.upper()
        provider_id = str(provider_id) if provider_id is not None else None
        start = parse_event_time(commence_time)

        with self._lock:
            if provider and provider_id:
                canonical_id = self._provider_index.get((provider, provider_id))
                if canonical_id and canonical_id in self._cache:
                    cached = self._cache[canonical_id]
                    cached.match_method = EventMatchMethod.EXACT_ID
                    return cached

            key = self._day_key(home_team, away_team, start)
            cached = self._closest_same_day(key, start)
            if cached is not None:
                if provider and provider_id:
                    cached.provider_ids[provider] = provider_id
                    self._provider_index[(provider, provider_id)] = cached.canonical_event_id
                cached.match_method = EventMatchMethod.TEAM_TIME_MATCH
                logger.debug("Resolved %s@%s via team+time: %s", away_team, home_team, cached.canonical_event_id)
                return cached

            canonical_id = self._generate_canonical_id(
                sport_upper, home_team, away_team, start, provider, provider_id
            )
            resolved = ResolvedEvent(
                canonical_event_id=canonical_id,
                sport=sport_upper,
                home_team=home_team,
                away_team=away_team,
                commence_time=commence_time,
                provider_ids={provider: provider_id} if provider and provider_id else {},
                match_method=EventMatchMethod.NEW_EVENT,
            )

            self._cache[canonical_id] = resolved
            self._team_day_index.setdefault(key, []).append(canonical_id)
            if provider and provider_id:
                self._provider_index[(provider, provider_id)] = canonical_id

            logger.debug("New canonical event: %s", canonical_id)
            return resolved

    def get_by_provider_id(self, provider: str, provider_id: str) -> Optional[ResolvedEvent]:
        with self._lock:
            canonical_id = self._provider_index.get((provider, str(provider_id)))
            return self._cache.get(canonical_id) if canonical_id else None

    def get_by_canonical_id(self, canonical_id: str) -> Optional[ResolvedEvent]:
        with self._lock:
            return self._cache.get(canonical_id)

    def update_event_status(
        self,
        canonical_id: str,
        status: str,
        home_score: Optional[int] = None,
        away_score: Optional[int] = None
    ) -> bool:
        """Record live/final state reported by a scores feed."""
        with self._lock:
            event = self._cache.get(canonical_id)
            if event is None:
                return False
            event.status = status
            if home_score is not None:
                event.home_score = home_score
            if away_score is not None:
                event.away_score = away_score
            return True

    def clear(self):
        with self._lock:
            self._cache.clear()
            self._team_day_index.clear()
            self._provider_index.clear()

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "cached_events": len(self._cache),
                "team_day_index_size": len(self._team_day_index),
                "provider_index_size": len(self._provider_index),
            }


# =============================================================================
# SINGLETON
# =============================================================================

_event_resolver: Optional[EventResolver] = None


def get_event_resolver() -> EventResolver:
    """Get singleton EventResolver instance."""
    global _event_resolver
    if _event_resolver is None:
        _event_resolver = EventResolver()
    return _event_resolver
