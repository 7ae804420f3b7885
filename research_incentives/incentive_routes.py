"""
Incentive Routes
Policy resolution, base amount computation, author distribution, the full
calculation pipeline and the reconciliation workbook export.
"""

import io
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from .allocation_export import generate_allocation_workbook
from .base_amount_calculator import compute_base_amount
from .distribution_engine import distribute
from .errors import IncentiveError
from .incentive_engine import calculate_incentive
from .incentive_types import IncentivePolicy, PublicationType
from .policy_resolver import resolve_policy
from .policy_store import load_policies
from .router_utils import raise_http_error, require_storage, wrap_response
from .schemas import (
    BaseAmountRequest,
    CalculateRequest,
    DistributeRequest,
    ExportRequest,
    ResolvePolicyRequest,
)
from .settings import get_currency_unit, get_points_unit
from .supabase_client import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/incentives", tags=["incentives"])


def candidate_policies(
    inline: Optional[List[IncentivePolicy]],
    publication_type: PublicationType,
    supabase,
) -> List[IncentivePolicy]:
    """Inline policies when the caller supplies them, otherwise the stored versions."""
    if inline is not None:
        return inline
    return load_policies(require_storage(supabase), publication_type)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/resolve-policy")
async def resolve_policy_endpoint(request: ResolvePolicyRequest, supabase=Depends(get_supabase)):
    """Return the policy version in force for a publication type on a date."""
    policies = candidate_policies(request.policies, request.publication_type, supabase)
    try:
        policy = resolve_policy(policies, request.publication_type, request.reference_date)
    except IncentiveError as e:
        raise_http_error(e)
    return wrap_response(policy)


@router.post("/base-amount")
async def base_amount_endpoint(request: BaseAmountRequest):
    try:
        base = compute_base_amount(request.contribution, request.policy)
    except IncentiveError as e:
        raise_http_error(e)
    return wrap_response(base)


@router.post("/distribute")
async def distribute_endpoint(request: DistributeRequest):
    """Split a gross total across an author list."""
    try:
        result = distribute(
            request.total_amount,
            request.total_points,
            request.authors,
            request.distribution_method,
            role_percentages=request.role_percentages,
            position_percentages=request.position_percentages,
            currency_unit=get_currency_unit(),
            points_unit=get_points_unit(),
        )
    except IncentiveError as e:
        raise_http_error(e)
    return wrap_response(result)


@router.post("/calculate")
async def calculate_endpoint(request: CalculateRequest, supabase=Depends(get_supabase)):
    """
    Run resolve -> base amount -> distribution for one contribution.

    Non-fatal outcomes (no policy, incomplete metadata, no matching range)
    return 200 with a status and issues. An invalid author set is rejected.
    """
    policies = candidate_policies(request.policies, request.contribution.publication_type, supabase)
    try:
        calculation = calculate_incentive(
            request.contribution,
            policies,
            request.reference_date,
            currency_unit=get_currency_unit(),
            points_unit=get_points_unit(),
        )
    except IncentiveError as e:
        raise_http_error(e)
    return wrap_response(calculation)


@router.post("/export")
async def export_endpoint(request: ExportRequest, supabase=Depends(get_supabase)):
    """Calculate a batch and stream the reconciliation workbook."""
    calculations = []
    for item in request.calculations:
        policies = candidate_policies(item.policies, item.contribution.publication_type, supabase)
        try:
            calculations.append(calculate_incentive(
                item.contribution,
                policies,
                item.reference_date,
                currency_unit=get_currency_unit(),
                points_unit=get_points_unit(),
            ))
        except IncentiveError as e:
            logger.warning(f"Export rejected contribution {item.contribution.contribution_id}: {e.message}")
            raise_http_error(e)

    content = generate_allocation_workbook(calculations)
    filename = f"incentive_allocations_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.xlsx"

    return StreamingResponse(
        io.BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
