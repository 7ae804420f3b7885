"""
Settings

Environment-driven configuration for the HTTP layer and the CLI. The engine
itself never reads settings; callers pass units in explicitly.
"""

import logging
import os
from decimal import Decimal, InvalidOperation
from typing import Any

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


# Conservative fallbacks when a variable is unset or malformed
DEFAULT_SETTINGS = {
    "ENVIRONMENT": "development",
    "LOG_LEVEL": "INFO",
    "CURRENCY_CODE": "INR",
    "CURRENCY_MINOR_UNIT": "0.01",
    "POINTS_UNIT": "0.01",
    "POLICY_CACHE_TTL_SECONDS": 300,
    "POLICY_TABLE": "incentive_policies",
    "CONTRIBUTION_TABLE": "research_contributions",
    "AUTHOR_TABLE": "research_contribution_authors",
    "ALLOCATION_TABLE": "incentive_allocations",
}


def get_setting(key: str, fallback: Any = None) -> Any:
    """
    Read a setting from the environment.

    Args:
        key: Variable name (e.g., "CURRENCY_MINOR_UNIT")
        fallback: Value if neither the environment nor the defaults define it
    """
    value = os.environ.get(key)
    if value is not None and value != "":
        return value
    if key in DEFAULT_SETTINGS:
        return DEFAULT_SETTINGS[key]
    return fallback


def _get_decimal(key: str) -> Decimal:
    raw = get_setting(key)
    try:
        value = Decimal(str(raw))
        if value > 0:
            return value
    except InvalidOperation:
        pass
    logger.warning(f"Invalid {key}={raw!r}; using {DEFAULT_SETTINGS[key]}")
    return Decimal(DEFAULT_SETTINGS[key])


def get_currency_unit() -> Decimal:
    return _get_decimal("CURRENCY_MINOR_UNIT")


def get_points_unit() -> Decimal:
    return _get_decimal("POINTS_UNIT")


def get_cache_ttl_seconds() -> int:
    raw = get_setting("POLICY_CACHE_TTL_SECONDS")
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        logger.warning(f"Invalid POLICY_CACHE_TTL_SECONDS={raw!r}; using default")
        return DEFAULT_SETTINGS["POLICY_CACHE_TTL_SECONDS"]


def get_environment() -> str:
    return get_setting("ENVIRONMENT")
