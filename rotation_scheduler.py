"""
ROTATION_SCHEDULER.PY - Time-driven pick rotation
=================================================

APScheduler BackgroundScheduler (ET timezone) owning four jobs:

    daily_checkpoint    cron DAILY_CHECKPOINT_HOUR:MINUTE ET
                        generate/refresh every scope's pick for the new day
    event_start_poll    every EVENT_POLL_MINUTES
                        rotate off picks whose event started; settle when a
                        locked event looks finished
    settlement_poll     every SETTLEMENT_POLL_MINUTES
    stability_eviction  every EVICTION_POLL_MINUTES

Jobs never overlap themselves (max_instances=1) and missed runs collapse into
one (coalesce). Scopes run in order, general first, so the premium scope
always sees the general pick it must avoid. A failing scope is logged and
does not stop the others. stop() waits for a running tick to finish, so
shutdown never leaves a half-written pick.

The tick methods are plain callables: tests drive them directly with a
FixedClock instead of waiting on timers.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.structured_logging import cycle_context
from env_config import Config
from pick_engine import PickEngine
from pick_schema import PickScope

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = (PickScope.GENERAL, PickScope.PREMIUM)


class RotationScheduler:
    """
    Owns the timers. start()/stop() are idempotent.
    """

    def __init__(self, engine: PickEngine, scopes: Sequence[PickScope] = DEFAULT_SCOPES):
        self.engine = engine
        self.scopes = list(scopes)
        self.scheduler: Optional[BackgroundScheduler] = None
        self.running = False
        self.last_runs: Dict[str, Optional[datetime]] = {}
        self.last_results: Dict[str, Any] = {}
        self._state_lock = threading.Lock()

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    def start(self):
        """Start the scheduler."""
        with self._state_lock:
            if self.running:
                logger.warning("Rotation scheduler already running")
                return

            self.scheduler = BackgroundScheduler(timezone=Config.TIMEZONE)
            job_defaults = {"max_instances": 1, "coalesce": True}

            self.scheduler.add_job(
                self.run_daily_checkpoint,
                CronTrigger(hour=Config.DAILY_CHECKPOINT_HOUR, minute=Config.DAILY_CHECKPOINT_MINUTE,
                            timezone=Config.TIMEZONE),
                id="daily_checkpoint",
                name="Daily Pick Checkpoint",
                **job_defaults
            )
            self.scheduler.add_job(
                self.run_event_poll,
                IntervalTrigger(minutes=Config.EVENT_POLL_MINUTES),
                id="event_start_poll",
                name="Event Start Poll",
                **job_defaults
            )
            self.scheduler.add_job(
                self.run_settlement,
                IntervalTrigger(minutes=Config.SETTLEMENT_POLL_MINUTES),
                id="settlement_poll",
                name="Settlement Poll",
                **job_defaults
            )
            self.scheduler.add_job(
                self.run_eviction,
                IntervalTrigger(minutes=Config.EVICTION_POLL_MINUTES),
                id="stability_eviction",
                name="Stability Eviction",
                **job_defaults
            )

            self.scheduler.start()
            self.running = True
            logger.info("Rotation scheduler started: checkpoint %02d:%02d ET, event poll every %d min",
                        Config.DAILY_CHECKPOINT_HOUR, Config.DAILY_CHECKPOINT_MINUTE, Config.EVENT_POLL_MINUTES)

    def stop(self):
        """Cancel timers and wait for a running tick to finish."""
        with self._state_lock:
            if self.scheduler is not None:
                self.scheduler.shutdown(wait=True)
                self.scheduler = None
            if self.running:
                logger.info("Rotation scheduler stopped")
            self.running = False

    # ==========================================================================
    # TICKS
    # ==========================================================================

    def _record(self, job: str, result: Any):
        self.last_runs[job] = self.engine.clock.now()
        self.last_results[job] = result

    def run_daily_checkpoint(self) -> Dict[str, Optional[str]]:
        """Generate or refresh each scope's pick for the current ET day."""
        results: Dict[str, Optional[str]] = {}
        with cycle_context("checkpoint"):
            for scope in self.scopes:
                try:
                    pick = self.engine.generate_today(scope)
                    results[scope.value] = pick.id if pick else None
                except Exception as e:
                    logger.error("Checkpoint failed for %s: %s", scope.value, e)
                    results[scope.value] = f"error: {e}"
        self._record("daily_checkpoint", results)
        return results

    def run_event_poll(self) -> Dict[str, Any]:
        """Rotate started picks; settle when a locked event should be over."""
        results: Dict[str, Any] = {"rotated": {}, "settled": 0}
        with cycle_context("event-poll"):
            for scope in self.scopes:
                try:
                    before = self.engine.get_current_pick(scope)
                    after = self.engine.rotate_started(scope)
                    if before and after and after.id != before.id:
                        results["rotated"][scope.value] = {"from": before.id, "to": after.id}
                except Exception as e:
                    logger.error("Event poll failed for %s: %s", scope.value, e)
                    results["rotated"][scope.value] = f"error: {e}"

            try:
                if self.engine.completed_pending():
                    results["settled"] = self.engine.grade_pending()
            except Exception as e:
                logger.error("Event poll settlement failed: %s", e)
        self._record("event_start_poll", results)
        return results

    def run_settlement(self) -> int:
        settled = 0
        with cycle_context("settlement"):
            try:
                settled = self.engine.grade_pending()
            except Exception as e:
                logger.error("Settlement poll failed: %s", e)
        self._record("settlement_poll", settled)
        return settled

    def run_eviction(self) -> int:
        evicted = 0
        with cycle_context("eviction"):
            try:
                evicted = self.engine.evict_expired()
            except Exception as e:
                logger.error("Stability eviction failed: %s", e)
        self._record("stability_eviction", evicted)
        return evicted

    # ==========================================================================
    # STATUS
    # ==========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        status: Dict[str, Any] = {
            "running": self.running,
            "timezone": Config.TIMEZONE,
            "scopes": [s.value for s in self.scopes],
            "checkpoint": f"{Config.DAILY_CHECKPOINT_HOUR:02d}:{Config.DAILY_CHECKPOINT_MINUTE:02d} ET daily",
            "last_runs": {k: v.isoformat() if v else None for k, v in self.last_runs.items()},
            "last_results": self.last_results,
        }

        jobs: List[Dict[str, Any]] = []
        if self.scheduler is not None:
            for job in self.scheduler.get_jobs():
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                })
        status["scheduled_jobs"] = jobs
        return status


# Global scheduler instance (initialized in main app)
_scheduler: Optional[RotationScheduler] = None


def init_scheduler(engine: PickEngine, scopes: Sequence[PickScope] = DEFAULT_SCOPES) -> RotationScheduler:
    """Initialize the global scheduler."""
    global _scheduler
    _scheduler = RotationScheduler(engine, scopes)
    return _scheduler


def get_scheduler() -> Optional[RotationScheduler]:
    """Get the global scheduler instance."""
    return _scheduler
