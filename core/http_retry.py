"""
HTTP Retry Wrapper - Single path for synchronous feed calls
Transient statuses and connection errors are retried with backoff;
everything else fails fast with a readable error string.
"""
import time
import random
import requests
from typing import Tuple, Optional, Dict, Any, Callable

# Transient errors that should be retried
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}
RETRYABLE_EXCEPTIONS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    ConnectionResetError,
)

DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_BASE_DELAY = 0.25  # seconds
DEFAULT_MAX_DELAY = 2.5    # seconds
DEFAULT_TIMEOUT = 10       # seconds


def calculate_backoff(attempt: int, base_delay: float = DEFAULT_BASE_DELAY,
                      max_delay: float = DEFAULT_MAX_DELAY) -> float:
    """Exponential backoff with up to 10% jitter."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + random.uniform(0, delay * 0.1)


def get_json_with_retry(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[bool, Optional[int], Any, Optional[str]]:
    """
    GET a JSON document, retrying transient failures.

    Returns:
        (ok, status_code, json_data, error_msg)
    """
    last_error = None

    for attempt in range(max_attempts):
        try:
            response = requests.get(url, params=params, headers=headers, timeout=timeout)

            if response.status_code < 400:
                try:
                    return True, response.status_code, response.json(), None
                except ValueError as e:
                    return False, response.status_code, None, f"Invalid JSON: {e}"

            if response.status_code not in RETRYABLE_STATUS_CODES:
                return (
                    False,
                    response.status_code,
                    None,
                    f"HTTP {response.status_code}: {response.text[:200]}"
                )

            last_error = f"HTTP {response.status_code}"

        except RETRYABLE_EXCEPTIONS as e:
            last_error = f"{type(e).__name__}: {e}"

        except requests.exceptions.RequestException as e:
            return False, None, None, f"Request failed: {type(e).__name__}: {e}"

        if attempt < max_attempts - 1:
            sleep(calculate_backoff(attempt))

    return False, None, None, f"All {max_attempts} attempts failed. Last error: {last_error}"
