"""
Configuration constants for the Letterboxd tracker.

This module centralizes all magic numbers and configurable parameters.
Values marked as tunable can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    if raw.strip().lower() in {"1", "true", "yes", "on"}:
        return True
    if raw.strip().lower() in {"0", "false", "no", "off"}:
        return False
    logger.warning(f"Invalid {key}='{raw}', using default {default}")
    return default


# Database Configuration
DB_PATH = Path(os.environ.get("LETTERBOXD_DB", "data/letterboxd.db"))

# Source site
LETTERBOXD_BASE_URL = "https://letterboxd.com"
USER_AGENT = "Mozilla/5.0 (compatible; letterboxd-tracker/0.1)"

# Politeness interval between outbound requests (seconds). Fixed, not tunable.
POLITENESS_INTERVAL_SECONDS = 0.5

# HTTP client
HTTP_TIMEOUT = _get_float_env("LETTERBOXD_HTTP_TIMEOUT", 30.0, min_val=1.0)
SCRAPER_HTTP2 = _get_bool_env("LETTERBOXD_HTTP2", False)

# Retry and backoff for transient failures (timeouts, 5xx)
MAX_HTTP_RETRIES = _get_int_env("LETTERBOXD_MAX_RETRIES", 3, min_val=1)
RETRY_INITIAL_DELAY = _get_float_env("LETTERBOXD_RETRY_DELAY", 1.0, min_val=0.0)
RETRY_BACKOFF_FACTOR = 2.0

# Detail-page workers per listing page
DEFAULT_MAX_WORKERS = _get_int_env("LETTERBOXD_MAX_WORKERS", 4, min_val=1)

# Parser limits
MAX_CAST = 30
MAX_CREW_PER_ROLE = 5
MAX_SLUG_LENGTH = 200

# Stats
TOP_MOVIES_LIMIT = 10
TOP_PEOPLE_LIMIT = 10
