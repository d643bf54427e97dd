"""
Environment Configuration Helper
================================
Centralized env var loading for the pick lifecycle engine.
Every tunable (schedule, stability windows, grade floor, feeds) is read once here.
"""

import os
import logging
from typing import Optional, Any

logger = logging.getLogger(__name__)


def get_env(*names: str, default: Any = None) -> Optional[str]:
    """
    Get environment variable with fallback names.

    Tries each name in order, returns first non-empty value.

    Example:
        get_env("ODDS_API_KEY", "THE_ODDS_API_KEY")
    """
    for name in names:
        value = os.getenv(name)
        if value and str(value).strip():
            return value.strip()
    return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean env var (true/false/1/0)."""
    value = os.getenv(name, "").lower().strip()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get integer env var; malformed values fall back to default."""
    value = get_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %s", name, value, default)
        return default


def get_env_float(name: str, default: float) -> float:
    """Get float env var; malformed values fall back to default."""
    value = get_env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid float for %s=%r, using %s", name, value, default)
        return default


# ============================================================================
# CENTRALIZED CONFIG (loaded once at import)
# ============================================================================

class Config:
    """Centralized configuration from env vars."""

    ENGINE_VERSION = "1.4"
    TIMEZONE = get_env("PICK_TIMEZONE", default="America/New_York")

    # ============================================================================
    # Rotation schedule
    # ============================================================================
    DAILY_CHECKPOINT_HOUR = get_env_int("DAILY_CHECKPOINT_HOUR", 2)
    DAILY_CHECKPOINT_MINUTE = get_env_int("DAILY_CHECKPOINT_MINUTE", 0)
    EVENT_POLL_MINUTES = get_env_int("EVENT_POLL_MINUTES", 30)
    SETTLEMENT_POLL_MINUTES = get_env_int("SETTLEMENT_POLL_MINUTES", 30)
    EVICTION_POLL_MINUTES = get_env_int("EVICTION_POLL_MINUTES", 60)

    # ============================================================================
    # Stability guard
    # ============================================================================
    STABILITY_REFRESH_HOURS = get_env_float("STABILITY_REFRESH_HOURS", 4.0)
    STABILITY_RETENTION_HOURS = get_env_float("STABILITY_RETENTION_HOURS", 24.0)
    MAX_MANUAL_ROTATIONS_PER_DAY = get_env_int("MAX_MANUAL_ROTATIONS_PER_DAY", 2)

    # ============================================================================
    # Candidate selection
    # ============================================================================
    SPORT = get_env("PICK_SPORT", default="MLB")
    MIN_PICK_GRADE = get_env("MIN_PICK_GRADE", default="C+")
    CANDIDATE_LEAD_MINUTES = get_env_int("CANDIDATE_LEAD_MINUTES", 60)
    CANDIDATE_LOOKAHEAD_HOURS = get_env_int("CANDIDATE_LOOKAHEAD_HOURS", 72)
    BASE_UNIT_SIZE = get_env_float("BASE_UNIT_SIZE", 1.0)
    SCORE_JITTER = get_env_float("SCORE_JITTER", 3.0)
    SCORE_SEED = get_env_int("SCORE_SEED")

    # ============================================================================
    # Settlement
    # ============================================================================
    SETTLEMENT_LOOKBACK_DAYS = get_env_int("SETTLEMENT_LOOKBACK_DAYS", 7)
    SETTLEMENT_MISS_WARN_THRESHOLD = get_env_int("SETTLEMENT_MISS_WARN_THRESHOLD", 5)
    EVENT_COMPLETE_AFTER_HOURS = get_env_float("EVENT_COMPLETE_AFTER_HOURS", 4.0)

    # Feed retries
    FEED_MAX_ATTEMPTS = get_env_int("FEED_MAX_ATTEMPTS", 3)

    # Database
    DATABASE_URL = get_env("DATABASE_URL")

    # External feeds
    ODDS_API_KEY = get_env("ODDS_API_KEY", "THE_ODDS_API_KEY")
    ODDS_API_BASE = get_env("ODDS_API_BASE", default="https://api.the-odds-api.com/v4")
    MLB_STATS_API_BASE = get_env("MLB_STATS_API_BASE", default="https://statsapi.mlb.com/api/v1")

    # Scheduler
    ENABLE_SCHEDULER = get_env_bool("ENABLE_SCHEDULER", True)

    @classmethod
    def log_status(cls):
        """Log config status at boot (no secrets, just availability)."""
        status = {
            "db": bool(cls.DATABASE_URL),
            "odds": bool(cls.ODDS_API_KEY),
            "mlb_stats": bool(cls.MLB_STATS_API_BASE),
            "scheduler": cls.ENABLE_SCHEDULER,
            "tz": cls.TIMEZONE,
            "min_grade": cls.MIN_PICK_GRADE,
        }

        status_str = " ".join(f"{k}={v}" for k, v in status.items())
        logger.info(f"ENV OK: {status_str}")

        return status

    @classmethod
    def validate_required(cls):
        """Check recommended vars are set."""
        missing = []

        if not cls.DATABASE_URL:
            missing.append("DATABASE_URL")
        if not cls.ODDS_API_KEY:
            missing.append("ODDS_API_KEY")

        if missing:
            logger.warning(f"Missing recommended env vars: {missing}")

        return len(missing) == 0
