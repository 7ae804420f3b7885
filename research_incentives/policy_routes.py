"""
Incentive Policy Routes
List stored policy versions, create new versions and dry-run validation.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .errors import IncentiveError, PolicyValidationError
from .incentive_types import DistributionMethod, IncentivePolicy, PublicationType
from .policy_resolver import check_overlap, validate_policy
from .policy_store import load_policies, save_policy
from .router_utils import raise_http_error, require_storage, to_api_error, wrap_response
from .schemas import PolicyListResponse, PolicyValidationReport
from .supabase_client import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/incentive-policies", tags=["incentive-policies"])


def policy_warnings(policy: IncentivePolicy) -> list:
    """Configurations that are legal but usually unintended."""
    warnings = []
    if policy.distribution_method == DistributionMethod.ROLE_BASED and policy.role_percentages:
        if policy.role_percentages.co_author_pool_pct == 0:
            warnings.append("Co-author pool is 0%; co-authors will earn nothing")
    if not (policy.tier_table or policy.range_table or policy.flat_award or policy.category_bonus_table):
        warnings.append("Policy defines no base award; every calculation will report incomplete metadata")
    if policy.valid_to is None:
        warnings.append("Policy window is open-ended")
    return warnings


@router.get("")
async def list_policies(
    publication_type: Optional[PublicationType] = Query(None),
    refresh: bool = Query(False),
    supabase=Depends(get_supabase),
):
    policies = load_policies(require_storage(supabase), publication_type, force_refresh=refresh)
    policies = sorted(policies, key=lambda p: (p.publication_type.value, p.valid_from, p.version))

    active = [p for p in policies if p.is_active]
    return wrap_response(PolicyListResponse(
        publication_type=publication_type,
        policies=policies,
        count=len(policies),
        summary={
            "active": len(active),
            "open_ended": sum(1 for p in active if p.valid_to is None),
        },
    ))


@router.post("")
async def create_policy(policy: IncentivePolicy, supabase=Depends(get_supabase)):
    """Store a new policy version. Overlapping windows are rejected with 409."""
    try:
        stored = save_policy(require_storage(supabase), policy)
    except IncentiveError as e:
        logger.warning(f"Rejected policy '{policy.policy_name}': {e.message}")
        raise_http_error(e)
    return wrap_response(stored)


@router.post("/validate")
async def validate_policy_endpoint(policy: IncentivePolicy, supabase=Depends(get_supabase)):
    """
    Dry-run the write-time checks without storing anything.

    The overlap check runs only when storage is configured.
    """
    errors = []
    try:
        validate_policy(policy)
        if supabase is not None:
            check_overlap(policy, load_policies(supabase, policy.publication_type, force_refresh=True))
    except PolicyValidationError as e:
        errors.append(to_api_error(e, target=policy.policy_id))

    return wrap_response(PolicyValidationReport(
        valid=not errors,
        errors=errors,
        warnings=policy_warnings(policy),
    ))
