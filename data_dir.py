"""
DATA_DIR - Single source of truth for persistent storage paths

STORAGE RULES:
- Use PICK_ENGINE_DATA_DIR env var (volume mount)
- Default: /data/pick_engine
- Fail fast on startup if not writable
- Log resolved path
"""

import os
import logging

logger = logging.getLogger("data_dir")


def get_data_dir() -> str:
    """Resolve the storage root at call time so tests can repoint it."""
    return os.getenv("PICK_ENGINE_DATA_DIR", "/data/pick_engine")


def get_default_database_url() -> str:
    """SQLite file under the data dir, used when DATABASE_URL is unset."""
    return f"sqlite:///{os.path.join(get_data_dir(), 'picks.db')}"


def ensure_dirs() -> str:
    """
    Create the data directory and verify it is writable. Call once at startup.

    Raises:
        OSError: directory cannot be created or written
    """
    data_dir = get_data_dir()
    logger.info("PICK_ENGINE_DATA_DIR=%s", data_dir)

    try:
        os.makedirs(data_dir, exist_ok=True)
    except OSError as e:
        logger.error("FATAL: Cannot create directory %s: %s", data_dir, e)
        raise

    test_file = os.path.join(data_dir, ".write_test")
    try:
        with open(test_file, 'w') as f:
            f.write("test")
        os.remove(test_file)
        logger.info("Storage writable: %s", data_dir)
    except OSError as e:
        logger.error("FATAL: Storage not writable %s: %s", data_dir, e)
        raise

    return data_dir
