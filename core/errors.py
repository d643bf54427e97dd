"""
Pick engine error taxonomy.

Only RegenerationRejected and ExternalFetchFailure normally escape a component;
the rest are raised and caught inside the engine to steer control flow
(skip a candidate, defer a settlement, fall back to the best candidate).
"""

from typing import Optional


class PickEngineError(Exception):
    """Base class for pick lifecycle errors."""


class DataUnavailable(PickEngineError):
    """A candidate lacks the minimum inputs (confirmed participants, quotes)."""

    def __init__(self, event_ref: str, missing: str):
        self.event_ref = event_ref
        self.missing = missing
        super().__init__(f"{event_ref}: {missing} unavailable")


class RegenerationRejected(PickEngineError):
    """The stability guard declined a recomputation; reuse the locked pick."""

    def __init__(self, event_ref: str, reason: str, record=None):
        self.event_ref = event_ref
        self.reason = reason
        self.record = record
        super().__init__(f"{event_ref}: regeneration rejected ({reason})")


class MatchNotFound(PickEngineError):
    """No finalized result matched a pending pick in this cycle."""

    def __init__(self, pick_id: str, event_ref: str):
        self.pick_id = pick_id
        self.event_ref = event_ref
        super().__init__(f"{pick_id}: no result for {event_ref}")


class ExternalFetchFailure(PickEngineError):
    """A collaborator feed call failed after retries."""

    def __init__(self, source: str, message: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        super().__init__(f"{source}: {message}")


class NoEligibleCandidate(PickEngineError):
    """No candidate could be scored at all for a scope/day."""

    def __init__(self, scope: str, day: str, skipped: int = 0):
        self.scope = scope
        self.day = day
        self.skipped = skipped
        super().__init__(f"No eligible candidate for {scope} on {day} ({skipped} skipped)")
