"""
Structured Logging with Cycle Correlation
=========================================

Provides JSON-structured logging where every line emitted during one
scheduler tick (or one facade call) carries the same cycle_id.

Usage:
    from core.structured_logging import configure_structured_logging, cycle_context

    configure_structured_logging()

    with cycle_context("checkpoint"):
        logger.info("Generating pick", extra={"scope": "general"})
    # {"timestamp": "...", "level": "INFO", "message": "Generating pick",
    #  "cycle_id": "checkpoint-3f2a9c1d04be", "scope": "general", ...}
"""

import json
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

_cycle_id_ctx: ContextVar[Optional[str]] = ContextVar("cycle_id", default=None)

LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # "json" or "text"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Extra keys whose values never reach the log stream
SENSITIVE_KEYS = {"api_key", "apikey", "token", "password", "authorization", "secret"}
REDACTED = "[REDACTED]"


def get_cycle_id() -> Optional[str]:
    """Get the current cycle ID from context."""
    return _cycle_id_ctx.get()


def generate_cycle_id(prefix: str = "cycle") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@contextmanager
def cycle_context(prefix: str = "cycle", cycle_id: Optional[str] = None) -> Iterator[str]:
    """Bind a cycle ID for the duration of the block; nested blocks keep the outer one."""
    existing = _cycle_id_ctx.get()
    if existing and cycle_id is None:
        yield existing
        return

    token = _cycle_id_ctx.set(cycle_id or generate_cycle_id(prefix))
    try:
        yield _cycle_id_ctx.get()
    finally:
        _cycle_id_ctx.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    if key.lower() in SENSITIVE_KEYS:
        return REDACTED
    if isinstance(value, dict):
        return {k: REDACTED if str(k).lower() in SENSITIVE_KEYS else v for k, v in value.items()}
    return value


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with cycle correlation and secret redaction.

    Output format:
    {
        "timestamp": "2026-07-18T06:00:00.123456+00:00",
        "level": "INFO",
        "logger": "pick_engine",
        "message": "Published pick",
        "cycle_id": "checkpoint-abc123def456",
        "module": "pick_engine",
        "function": "_publish",
        "line": 412,
        ... extra fields ...
    }
    """

    # Fields to exclude from extra (already handled or internal)
    EXCLUDE_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cycle_id = get_cycle_id()
        if cycle_id:
            log_entry["cycle_id"] = cycle_id

        log_entry["module"] = record.module
        log_entry["function"] = record.funcName
        log_entry["line"] = record.lineno

        for key, value in record.__dict__.items():
            if key not in self.EXCLUDE_FIELDS and not key.startswith("_"):
                log_entry[key] = _sanitize_value(key, value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """
    Human-readable text formatter with cycle correlation.

    2026-07-18 06:00:00.123 [INFO] [checkpoint-abc123] pick_engine:_publish:412 - Published pick
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        cycle_id = get_cycle_id() or "-"

        base = f"{timestamp} [{record.levelname}] [{cycle_id}] {record.name}:{record.funcName}:{record.lineno} - {record.getMessage()}"

        if record.exc_info:
            base += f"\n{self.formatException(record.exc_info)}"

        return base


def configure_structured_logging(level: str = None, format_type: str = None) -> None:
    """
    Configure the root logger. Call once at application startup.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var.
        format_type: "json" or "text". Defaults to LOG_FORMAT env var.
    """
    level = level or LOG_LEVEL
    format_type = format_type or LOG_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if format_type.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    for noisy_logger in ["httpx", "httpcore", "urllib3", "apscheduler"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def log_with_context(logger: logging.Logger, level: int, message: str, **extra: Any) -> None:
    """
    Log a message with additional context fields.

    Example:
        log_with_context(logger, logging.INFO, "Pick locked",
                         pick_id="a1b2c3d4e5f6", grade="B+", scope="general")
    """
    logger.log(level, message, extra=extra)
