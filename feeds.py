"""
FEEDS.PY - Collaborator contracts and guarded fetch
===================================================

The engine consumes four external feeds. Adapters in services/ implement
them; tests pass in fakes. Every call the engine makes to a feed goes through
guarded_call(), which:

  - retries with exponential backoff (core.http_retry.calculate_backoff)
  - runs coroutine-returning feeds on a private event loop
  - converts the final failure to ExternalFetchFailure(source)

so one failing feed is isolated to the call that used it.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol

from canonical_schema import CandidateEvent, DateRange, MarketQuote, ParticipantForm, SettlementResult
from core.errors import ExternalFetchFailure
from core.http_retry import calculate_backoff
from env_config import Config

logger = logging.getLogger(__name__)


# =============================================================================
# CONTRACTS
# =============================================================================

class EventCatalog(Protocol):
    def list_upcoming_events(self, sport: str, start: datetime, end: datetime) -> List[CandidateEvent]:
        """Scheduled events starting in [start, end), canonical IDs resolved."""
        ...


class QuoteFeed(Protocol):
    def get_quotes(self, event: CandidateEvent) -> List[MarketQuote]:
        ...


class ResultFeed(Protocol):
    def get_final_results(self, date_range: DateRange) -> List[SettlementResult]:
        """Finalized scores for games on the given ET days. May be a coroutine."""
        ...


class EnrichmentFeed(Protocol):
    def get_participant_form(self, team: str) -> Optional[ParticipantForm]:
        """Recent form for a team, or None when unavailable."""
        ...


# =============================================================================
# GUARDED CALLS
# =============================================================================

def run_sync(value: Any) -> Any:
    """Resolve a coroutine on a fresh event loop; pass anything else through."""
    if not inspect.isawaitable(value):
        return value
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(value)
    finally:
        loop.close()


def guarded_call(source: str, fn: Callable, *args,
                 attempts: Optional[int] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 **kwargs) -> Any:
    """
    Call a feed with retries.

    Raises:
        ExternalFetchFailure: every attempt failed
    """
    attempts = max(1, attempts or Config.FEED_MAX_ATTEMPTS)
    sleep = sleep or time.sleep
    last_error: Optional[BaseException] = None

    for attempt in range(attempts):
        try:
            return run_sync(fn(*args, **kwargs))
        except ExternalFetchFailure as e:
            last_error = e.cause or e
        except Exception as e:
            last_error = e

        logger.debug("%s attempt %d/%d failed: %s", source, attempt + 1, attempts, last_error)
        if attempt < attempts - 1:
            sleep(calculate_backoff(attempt))

    logger.error("%s failed after %d attempts: %s", source, attempts, last_error)
    raise ExternalFetchFailure(source, f"{type(last_error).__name__}: {last_error}", last_error)
