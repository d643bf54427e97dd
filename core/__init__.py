"""
Core module - time, errors, logging and HTTP plumbing shared by the engine
"""

from .errors import (
    PickEngineError,
    DataUnavailable,
    RegenerationRejected,
    MatchNotFound,
    ExternalFetchFailure,
    NoEligibleCandidate,
)
from .time_et import (
    ET,
    Clock,
    SystemClock,
    FixedClock,
    et_date_str,
)

__all__ = [
    'PickEngineError',
    'DataUnavailable',
    'RegenerationRejected',
    'MatchNotFound',
    'ExternalFetchFailure',
    'NoEligibleCandidate',
    'ET',
    'Clock',
    'SystemClock',
    'FixedClock',
    'et_date_str',
]
