"""
TIME_ET.PY - Single Source of Truth for Pick-Day Timezone Handling

RULES:
1. Server clock is UTC
2. Pick days are calendar days in ET (America/New_York unless PICK_TIMEZONE overrides)
3. Core functions:
   - now_et(): UTC -> ET conversion
   - et_day_bounds(): Returns [start_et, end_et) plus UTC bounds
   - et_date_str(): Pick-day key ("YYYY-MM-DD") for any instant
   - parse_event_time(): Provider timestamps -> aware ET datetime
4. Engine code never calls datetime.now() directly: it reads a Clock
5. Uses zoneinfo ONLY - no pytz

CANONICAL PICK DAY (HARD RULE):
    Start: 00:00:00 ET (midnight) - inclusive
    End:   00:00:00 ET next day (midnight, exclusive)

Usage:
    from core.time_et import FixedClock, et_date_str

    clock = FixedClock(datetime(2026, 7, 18, 16, 0, tzinfo=timezone.utc))
    et_date_str(clock.now())   # "2026-07-18"
    clock.advance(hours=10)
    et_date_str(clock.now())   # "2026-07-19" (02:00 ET)
"""

import logging
import threading
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo

from env_config import Config

logger = logging.getLogger(__name__)

# Pick-day timezone (single source of truth)
ET = ZoneInfo(Config.TIMEZONE)

ET_DAY_START_TIME = time(0, 0, 0)


def now_et() -> datetime:
    """Current datetime in the pick-day timezone."""
    return datetime.now(timezone.utc).astimezone(ET)


def et_day_bounds(
    now_utc: Optional[datetime] = None,
    date_str: Optional[str] = None
) -> Tuple[datetime, datetime, datetime, datetime]:
    """
    Get ET day bounds [start, end).

    Args:
        now_utc: Optional aware datetime. If None, uses current UTC time.
        date_str: Optional ET date "YYYY-MM-DD". If provided, overrides now_utc.

    Returns:
        Tuple of (start_et, end_et, start_utc, end_utc)
    """
    if date_str:
        day = datetime.strptime(date_str, "%Y-%m-%d").date()
        start_et = datetime.combine(day, ET_DAY_START_TIME, tzinfo=ET)
    else:
        if now_utc is None:
            now_utc = datetime.now(timezone.utc)
        start_et = now_utc.astimezone(ET).replace(hour=0, minute=0, second=0, microsecond=0)

    # Rebuild from the date so DST days keep a midnight end
    end_et = datetime.combine(start_et.date() + timedelta(days=1), ET_DAY_START_TIME, tzinfo=ET)

    return start_et, end_et, start_et.astimezone(timezone.utc), end_et.astimezone(timezone.utc)


def et_date_str(moment: datetime) -> str:
    """Pick-day key for an aware datetime."""
    return moment.astimezone(ET).date().isoformat()


def previous_et_date_str(date_str: str) -> str:
    """The pick day before date_str."""
    day = datetime.strptime(date_str, "%Y-%m-%d").date()
    return (day - timedelta(days=1)).isoformat()


def parse_event_time(event_time: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an event time to a timezone-aware datetime in ET.

    Naive values are assumed to be UTC. Returns None if parsing fails.

    Example:
        >>> parse_event_time("2026-07-18T23:05:00Z")
        datetime(2026, 7, 18, 19, 5, tzinfo=ZoneInfo('America/New_York'))
    """
    if not event_time:
        return None

    try:
        if isinstance(event_time, datetime):
            event_dt = event_time
        else:
            if event_time.endswith('Z'):
                event_time = event_time[:-1] + '+00:00'
            event_dt = datetime.fromisoformat(event_time)

        if event_dt.tzinfo is None:
            event_dt = event_dt.replace(tzinfo=timezone.utc)

        return event_dt.astimezone(ET)

    except (ValueError, AttributeError, TypeError) as e:
        logger.warning("Failed to parse event time '%s': %s", event_time, e)
        return None


def ensure_utc(moment: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# =============================================================================
# CLOCKS
# =============================================================================

class Clock:
    """Source of the current instant. Engine components take one at construction."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Manually driven clock for tests and replays.

    Thread-safe so a scheduler thread and a test thread can share it.
    """

    def __init__(self, start: datetime):
        self._now = ensure_utc(start)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._now = ensure_utc(moment)

    def advance(self, **delta) -> datetime:
        """Move forward by timedelta kwargs (hours=4, minutes=30, ...)."""
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


__all__ = [
    'ET',
    'now_et',
    'et_day_bounds',
    'et_date_str',
    'previous_et_date_str',
    'parse_event_time',
    'ensure_utc',
    'Clock',
    'SystemClock',
    'FixedClock',
]
