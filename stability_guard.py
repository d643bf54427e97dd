"""
STABILITY_GUARD.PY - Lock policy for published grades
=====================================================

Per event, a StabilityRecord moves through:

    unlocked -> locked(participants-confirmed) -> locked(lineups-posted) -> expired

A recomputation for an event is admitted only when:
  (a) no record exists and both starters are known        -> participants-confirmed
      (lineups-posted directly if lineups are already out)
  (b) record is participants-confirmed and lineups are now posted -> lineups-posted
  (c) more than REFRESH hours since the last (re)lock     -> refresh
  (d) a manual override is requested                       -> manual

Anything else raises RegenerationRejected and the caller keeps the locked
pick. A record held by another scope's active pick is never taken over, not
even by a manual override. Records older than RETENTION hours (measured from the first lock) are
evicted and treated as absent.

Check-then-lock is a compare-and-set on the record version, so two writers
racing on the same event cannot both win. The store is injected: in-memory
for a single process, database.SqlStabilityStore when state must outlive it.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import AbstractSet, Dict, List, Optional

import numpy as np

from canonical_schema import CandidateEvent
from core.errors import DataUnavailable, RegenerationRejected
from core.time_et import Clock, SystemClock
from env_config import Config
from pick_schema import LockReason, StabilityRecord

logger = logging.getLogger(__name__)

TRIGGER_NEW = "new"
TRIGGER_LINEUPS = "lineups-posted"
TRIGGER_REFRESH = "refresh"
TRIGGER_MANUAL = "manual"


# =============================================================================
# STORES
# =============================================================================

class StabilityStore:
    """Keyed by event_ref. Implementations must make compare_and_set atomic."""

    def get(self, event_ref: str) -> Optional[StabilityRecord]:
        raise NotImplementedError

    def compare_and_set(self, event_ref: str, expected_version: Optional[int],
                        record: StabilityRecord) -> bool:
        """
        Write record iff the stored version equals expected_version
        (None = no record may exist). Returns False on conflict.
        """
        raise NotImplementedError

    def delete(self, event_ref: str) -> bool:
        raise NotImplementedError

    def all(self) -> List[StabilityRecord]:
        raise NotImplementedError

    def evict_older_than(self, cutoff: datetime) -> int:
        """Delete records first locked before cutoff. Returns the count."""
        raise NotImplementedError


class InMemoryStabilityStore(StabilityStore):
    """Process-local store. Returns copies so callers cannot mutate shared state."""

    def __init__(self):
        self._records: Dict[str, StabilityRecord] = {}
        self._lock = threading.Lock()

    def get(self, event_ref: str) -> Optional[StabilityRecord]:
        with self._lock:
            record = self._records.get(event_ref)
            return replace(record) if record else None

    def compare_and_set(self, event_ref: str, expected_version: Optional[int],
                        record: StabilityRecord) -> bool:
        with self._lock:
            current = self._records.get(event_ref)
            current_version = current.version if current else None
            if current_version != expected_version:
                return False
            self._records[event_ref] = replace(record)
            return True

    def delete(self, event_ref: str) -> bool:
        with self._lock:
            return self._records.pop(event_ref, None) is not None

    def all(self) -> List[StabilityRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values()]

    def evict_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [ref for ref, r in self._records.items() if r.locked_at < cutoff]
            for ref in stale:
                del self._records[ref]
            return len(stale)


# =============================================================================
# GUARD
# =============================================================================

@dataclass(frozen=True)
class LockDecision:
    """An admitted recomputation, to be committed with StabilityGuard.lock()."""
    event_ref: str
    lock_reason: LockReason
    trigger: str
    previous: Optional[StabilityRecord] = None


class StabilityGuard:
    """Decides whether a locked grade may be recomputed, and records locks."""

    def __init__(self, store: Optional[StabilityStore] = None,
                 clock: Optional[Clock] = None,
                 refresh_hours: Optional[float] = None,
                 retention_hours: Optional[float] = None):
        self.store = store or InMemoryStabilityStore()
        self.clock = clock or SystemClock()
        self.refresh = timedelta(hours=Config.STABILITY_REFRESH_HOURS if refresh_hours is None else refresh_hours)
        self.retention = timedelta(hours=Config.STABILITY_RETENTION_HOURS if retention_hours is None else retention_hours)

    def _expired(self, record: StabilityRecord, now: datetime) -> bool:
        return now - record.locked_at > self.retention

    def current(self, event_ref: str) -> Optional[StabilityRecord]:
        """Live record for an event; expired records are evicted on read."""
        record = self.store.get(event_ref)
        if record and self._expired(record, self.clock.now()):
            logger.info("Stability record expired for %s (locked %s)", event_ref, record.locked_at.isoformat())
            self.store.delete(event_ref)
            return None
        return record

    def evaluate(self, event: CandidateEvent, manual: bool = False,
                 foreign_pick_ids: AbstractSet[str] = frozenset()) -> LockDecision:
        """
        Admit or reject a recomputation for event.

        foreign_pick_ids are active picks the caller must not replace (other
        scopes); lock() compares versions, so the owner checked here is still
        the owner when the decision is committed.

        Raises:
            DataUnavailable: no record yet and starters are not confirmed
            RegenerationRejected: record is live and no admission rule applies,
                or it belongs to a foreign pick
        """
        now = self.clock.now()
        record = self.current(event.event_ref)

        if record is not None and record.pick_id in foreign_pick_ids:
            raise RegenerationRejected(event.event_ref, f"held by pick {record.pick_id}", record)

        if record is None:
            if not event.participants_confirmed:
                raise DataUnavailable(event.event_ref, "starting pitchers")
            if manual:
                reason = LockReason.MANUAL
            elif event.lineups_posted:
                reason = LockReason.LINEUPS_POSTED
            else:
                reason = LockReason.PARTICIPANTS_CONFIRMED
            return LockDecision(event.event_ref, reason, TRIGGER_NEW)

        if manual:
            return LockDecision(event.event_ref, LockReason.MANUAL, TRIGGER_MANUAL, record)

        if record.lock_reason == LockReason.PARTICIPANTS_CONFIRMED and event.lineups_posted:
            return LockDecision(event.event_ref, LockReason.LINEUPS_POSTED, TRIGGER_LINEUPS, record)

        if now - record.last_update > self.refresh:
            reason = LockReason.LINEUPS_POSTED if event.lineups_posted else LockReason.PARTICIPANTS_CONFIRMED
            return LockDecision(event.event_ref, reason, TRIGGER_REFRESH, record)

        raise RegenerationRejected(event.event_ref, "locked within refresh interval", record)

    def lock(self, decision: LockDecision, grade: str, pick_id: Optional[str]) -> StabilityRecord:
        """
        Commit an admitted decision.

        Raises:
            RegenerationRejected: another writer changed the record since evaluate()
        """
        now = self.clock.now()
        previous = decision.previous

        if previous is None:
            record = StabilityRecord(
                event_ref=decision.event_ref,
                grade=grade,
                lock_reason=decision.lock_reason,
                locked_at=now,
                last_update=now,
                pick_id=pick_id,
            )
            expected = None
        else:
            record = replace(
                previous,
                grade=grade,
                lock_reason=decision.lock_reason,
                last_update=now,
                pick_id=pick_id,
                version=previous.version + 1,
            )
            expected = previous.version

        if not self.store.compare_and_set(decision.event_ref, expected, record):
            raise RegenerationRejected(decision.event_ref, "concurrent lock", self.store.get(decision.event_ref))

        logger.info("Locked %s grade=%s reason=%s trigger=%s",
                    decision.event_ref, grade, decision.lock_reason.value, decision.trigger)
        return record

    def release(self, event_ref: str, pick_id: Optional[str] = None) -> bool:
        """
        Drop the record when its pick stops being active.

        With pick_id, the record is only dropped while that pick owns it.
        """
        if pick_id is not None:
            record = self.store.get(event_ref)
            if record is None or record.pick_id != pick_id:
                logger.debug("Not releasing %s: owned by %s, not %s",
                             event_ref, record.pick_id if record else None, pick_id)
                return False
        return self.store.delete(event_ref)

    def evict_expired(self) -> int:
        cutoff = self.clock.now() - self.retention
        evicted = self.store.evict_older_than(cutoff)
        if evicted:
            logger.info("Evicted %d expired stability records", evicted)
        return evicted

    def get_cache_stats(self) -> Dict:
        """{count, by_reason, age_distribution (hours)} over live records."""
        now = self.clock.now()
        records = [r for r in self.store.all() if not self._expired(r, now)]

        by_reason: Dict[str, int] = {reason.value: 0 for reason in LockReason}
        for record in records:
            by_reason[record.lock_reason.value] += 1

        if records:
            ages = np.array([r.age_hours(now) for r in records])
            distribution = {
                "min": round(float(ages.min()), 2),
                "p50": round(float(np.percentile(ages, 50)), 2),
                "p90": round(float(np.percentile(ages, 90)), 2),
                "max": round(float(ages.max()), 2),
                "mean": round(float(ages.mean()), 2),
            }
        else:
            distribution = {"min": 0.0, "p50": 0.0, "p90": 0.0, "max": 0.0, "mean": 0.0}

        return {
            "count": len(records),
            "by_reason": by_reason,
            "age_distribution": distribution,
        }
