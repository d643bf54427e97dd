"""
PICK_STORE.PY - Published picks and the active pointer per scope/day
====================================================================

Holds every pick ever published (never deleted) plus, for each
(scope, ET day), a pointer to the one active pick. Moving the pointer is the
only way a pick is "replaced":

    superseded       same event re-locked with newer inputs; old pick -> void
    manual-rotation  operator rotated; old pick -> void if its event has not started
    event-started    rotation poll moved on; old pick stays pending for settlement

Each pointer move appends a PickChange audit entry.

Settlement writes are conditional on the pick still being pending, so a
second settle() for the same pick is a no-op that returns False.

InMemoryPickStore serves tests and single-process runs;
database.SqlPickStore implements the same API on SQLAlchemy.
"""

import hashlib
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from pick_schema import (
    Pick,
    PickChange,
    PickScope,
    PickStatus,
    RetireReason,
    VOIDING_RETIRE_REASONS,
)

logger = logging.getLogger(__name__)


def generate_pick_id(scope: PickScope, day: str, event_ref: str, market: str,
                     selection: str, created_at: datetime) -> str:
    """Deterministic 12-char pick ID."""
    raw = f"{scope.value}|{day}|{event_ref}|{market}|{selection}|{created_at.isoformat()}"
    return hashlib.sha256(raw.encode()).hexdigest()[:12]


def retired_version(old: Pick, reason: Optional[RetireReason], now: datetime) -> Pick:
    """How a pick looks after being moved off the active pointer."""
    if (
        reason in VOIDING_RETIRE_REASONS
        and old.status == PickStatus.PENDING
        and now < old.event_start_time
    ):
        return old.with_settlement(PickStatus.VOID, now, 0.0)
    return old


class PickStore:
    """Storage contract shared by the in-memory and SQL stores."""

    def publish(self, pick: Pick, replaces: Optional[Pick] = None,
                retire_reason: Optional[RetireReason] = None,
                now: Optional[datetime] = None) -> Pick:
        """Atomically retire `replaces` (if given), save `pick` and point the scope/day at it."""
        raise NotImplementedError

    def get(self, pick_id: str) -> Optional[Pick]:
        raise NotImplementedError

    def current(self, scope: PickScope, day: str) -> Optional[Pick]:
        raise NotImplementedError

    def latest(self, scope: PickScope) -> Optional[Pick]:
        """Active pick of the most recent day that has one."""
        raise NotImplementedError

    def picks_for_day(self, scope: PickScope, day: str) -> List[Pick]:
        raise NotImplementedError

    def pending(self, started_before: datetime) -> List[Pick]:
        raise NotImplementedError

    def settle(self, pick_id: str, status: PickStatus, win_amount: float,
               settled_at: datetime) -> bool:
        raise NotImplementedError

    def record_miss(self, pick_id: str) -> int:
        """Increment and return the consecutive settlement-miss count."""
        raise NotImplementedError

    def clear_misses(self, pick_id: str) -> None:
        raise NotImplementedError

    def miss_counts(self) -> Dict[str, int]:
        raise NotImplementedError

    def changes_for_day(self, scope: PickScope, day: str) -> List[PickChange]:
        raise NotImplementedError

    # Derived queries

    def selections_for_day(self, scope: PickScope, day: str) -> Set[str]:
        """Selection keys of every pick locked for scope on day (retired ones included)."""
        return {p.selection_key for p in self.picks_for_day(scope, day)}

    def manual_rotations(self, scope: PickScope, day: str) -> int:
        return sum(
            1 for change in self.changes_for_day(scope, day)
            if change.reason == RetireReason.MANUAL_ROTATION.value
        )


class InMemoryPickStore(PickStore):
    """Dict-backed store guarded by one lock."""

    def __init__(self):
        self._picks: Dict[str, Pick] = {}
        self._current: Dict[Tuple[PickScope, str], str] = {}
        self._changes: List[PickChange] = []
        self._misses: Dict[str, int] = {}
        self._lock = threading.RLock()

    def publish(self, pick: Pick, replaces: Optional[Pick] = None,
                retire_reason: Optional[RetireReason] = None,
                now: Optional[datetime] = None) -> Pick:
        now = now or pick.created_at
        with self._lock:
            previous_id = self._current.get((pick.scope, pick.day))
            if replaces is not None:
                stored = self._picks.get(replaces.id, replaces)
                self._picks[replaces.id] = retired_version(stored, retire_reason, now)
                previous_id = replaces.id

            self._picks[pick.id] = pick
            self._current[(pick.scope, pick.day)] = pick.id
            self._changes.append(PickChange(
                scope=pick.scope,
                day=pick.day,
                new_pick_id=pick.id,
                previous_pick_id=previous_id,
                reason=retire_reason.value if retire_reason else "published",
                changed_at=now,
                details={"event_ref": pick.event_ref, "grade": pick.grade},
            ))

        logger.info("Published pick %s scope=%s day=%s grade=%s replaces=%s",
                    pick.id, pick.scope.value, pick.day, pick.grade, previous_id)
        return pick

    def get(self, pick_id: str) -> Optional[Pick]:
        with self._lock:
            return self._picks.get(pick_id)

    def current(self, scope: PickScope, day: str) -> Optional[Pick]:
        with self._lock:
            pick_id = self._current.get((scope, day))
            return self._picks.get(pick_id) if pick_id else None

    def latest(self, scope: PickScope) -> Optional[Pick]:
        with self._lock:
            days = sorted((d for s, d in self._current if s == scope), reverse=True)
            return self._picks.get(self._current[(scope, days[0])]) if days else None

    def picks_for_day(self, scope: PickScope, day: str) -> List[Pick]:
        with self._lock:
            picks = [p for p in self._picks.values() if p.scope == scope and p.day == day]
        return sorted(picks, key=lambda p: p.created_at)

    def pending(self, started_before: datetime) -> List[Pick]:
        with self._lock:
            picks = [
                p for p in self._picks.values()
                if p.status == PickStatus.PENDING and p.event_start_time <= started_before
            ]
        return sorted(picks, key=lambda p: p.event_start_time)

    def settle(self, pick_id: str, status: PickStatus, win_amount: float,
               settled_at: datetime) -> bool:
        with self._lock:
            pick = self._picks.get(pick_id)
            if pick is None or pick.status != PickStatus.PENDING:
                return False
            self._picks[pick_id] = pick.with_settlement(status, settled_at, win_amount)
            self._misses.pop(pick_id, None)
            return True

    def record_miss(self, pick_id: str) -> int:
        with self._lock:
            self._misses[pick_id] = self._misses.get(pick_id, 0) + 1
            return self._misses[pick_id]

    def clear_misses(self, pick_id: str) -> None:
        with self._lock:
            self._misses.pop(pick_id, None)

    def miss_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._misses)

    def changes_for_day(self, scope: PickScope, day: str) -> List[PickChange]:
        with self._lock:
            return [c for c in self._changes if c.scope == scope and c.day == day]
