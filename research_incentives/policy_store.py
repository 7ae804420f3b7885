"""
Policy Store

Supabase-backed storage for incentive policy versions with a short in-memory
cache. Writes go through the resolver's write-time contract so an
overlapping or malformed policy never reaches the table.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .incentive_types import IncentivePolicy, PublicationType
from .policy_resolver import check_overlap, validate_policy
from .settings import get_cache_ttl_seconds, get_setting

logger = logging.getLogger(__name__)

# In-memory cache with TTL, keyed by publication type ("*" for all)
_policy_cache: Dict[str, List[IncentivePolicy]] = {}
_cache_timestamps: Dict[str, datetime] = {}

ALL_TYPES = "*"


def policy_table() -> str:
    return get_setting("POLICY_TABLE")


# =============================================================================
# ROW MAPPING
# =============================================================================

def policy_to_row(policy: IncentivePolicy) -> Dict[str, Any]:
    """Flatten a policy into the stored row: indexed columns plus the full definition."""
    definition = policy.model_dump(mode="json")
    return {
        "id": policy.policy_id,
        "policy_name": policy.policy_name,
        "version": policy.version,
        "publication_type": policy.publication_type.value,
        "valid_from": policy.valid_from.isoformat(),
        "valid_to": policy.valid_to.isoformat() if policy.valid_to else None,
        "is_active": policy.is_active,
        "distribution_method": policy.distribution_method.value,
        "definition": definition,
    }


def policy_from_row(row: Dict[str, Any]) -> IncentivePolicy:
    """Rebuild a policy; indexed columns win over the stored definition."""
    data = dict(row.get("definition") or {})
    for column in ("policy_name", "version", "publication_type", "valid_from",
                   "valid_to", "is_active", "distribution_method"):
        if column in row:
            data[column] = row[column]
    if row.get("id"):
        data["policy_id"] = row["id"]
    return IncentivePolicy.model_validate(data)


# =============================================================================
# READS
# =============================================================================

def load_policies(
    supabase,
    publication_type: Optional[PublicationType] = None,
    force_refresh: bool = False,
) -> List[IncentivePolicy]:
    """
    Load policy versions with caching.

    Args:
        supabase: Supabase client
        publication_type: Restrict to one publication type, or None for all
        force_refresh: If True, bypass cache

    Returns:
        Policies in stored order. Rows that fail validation are logged and skipped.
    """
    cache_key = PublicationType(publication_type).value if publication_type else ALL_TYPES
    now = datetime.utcnow()

    if not force_refresh and cache_key in _policy_cache:
        cache_time = _cache_timestamps.get(cache_key)
        if cache_time and (now - cache_time).total_seconds() < get_cache_ttl_seconds():
            return _policy_cache[cache_key]

    try:
        query = supabase.table(policy_table()).select("*")
        if cache_key != ALL_TYPES:
            query = query.eq("publication_type", cache_key)
        result = query.execute()
    except Exception as e:
        logger.error(f"Failed to load incentive policies ({cache_key}): {e}")
        raise

    policies = []
    for row in result.data or []:
        try:
            policies.append(policy_from_row(row))
        except ValidationError as e:
            logger.error(f"Skipping malformed policy row {row.get('id')}: {e}")

    _policy_cache[cache_key] = policies
    _cache_timestamps[cache_key] = now
    return policies


# =============================================================================
# WRITES
# =============================================================================

def save_policy(supabase, policy: IncentivePolicy) -> IncentivePolicy:
    """
    Validate and insert a new policy version.

    Raises:
        PolicyValidationError: malformed tables or an overlapping window
    """
    validate_policy(policy)

    existing = load_policies(supabase, policy.publication_type, force_refresh=True)
    check_overlap(policy, existing)

    next_version = max((p.version for p in existing), default=0) + 1
    stored = policy.model_copy(update={"version": next_version})

    supabase.table(policy_table()).insert(policy_to_row(stored)).execute()
    invalidate_cache(policy.publication_type)

    logger.info(
        f"Stored {stored.publication_type.value} policy '{stored.policy_name}' v{stored.version} "
        f"({stored.valid_from} - {stored.valid_to or 'open'})"
    )
    return stored


def invalidate_cache(publication_type: Optional[PublicationType] = None):
    """
    Invalidate the policy cache.

    Args:
        publication_type: Specific type to invalidate, or None for all
    """
    if publication_type:
        key = PublicationType(publication_type).value
        _policy_cache.pop(key, None)
        _cache_timestamps.pop(key, None)
        # The all-types view includes this type too
        _policy_cache.pop(ALL_TYPES, None)
        _cache_timestamps.pop(ALL_TYPES, None)
    else:
        _policy_cache.clear()
        _cache_timestamps.clear()
