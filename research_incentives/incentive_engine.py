"""
Incentive Engine

Runs the full pipeline for one approved contribution:
policy resolution -> base amount -> author distribution.

Non-fatal failures (no policy, incomplete metadata, value outside every
range) come back as a status with issues so the approval can proceed with a
null allocation flagged for manual follow-up. InvalidAuthorSet propagates:
a malformed author list must block the approval.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable

from .base_amount_calculator import compute_base_amount
from .distribution_engine import CENT, distribute
from .errors import IncompleteMetadata, NoMatchingRange, PolicyNotFound
from .incentive_types import (
    CalculationStatus,
    Contribution,
    IncentiveCalculation,
    IncentivePolicy,
)
from .policy_resolver import resolve_policy

logger = logging.getLogger(__name__)


def calculate_incentive(
    contribution: Contribution,
    policies: Iterable[IncentivePolicy],
    reference_date: date,
    currency_unit: Decimal = CENT,
    points_unit: Decimal = CENT,
) -> IncentiveCalculation:
    """
    Compute the incentive allocation for a contribution.

    Args:
        contribution: Approved filing with its ordered author list
        policies: Candidate policy versions (any publication type)
        reference_date: Submission or approval date chosen by the workflow
        currency_unit: Smallest currency unit for money rounding
        points_unit: Precision for points rounding

    Returns:
        IncentiveCalculation; status is COMPUTED only when an allocation exists
    """
    try:
        policy = resolve_policy(policies, contribution.publication_type, reference_date)
    except PolicyNotFound as e:
        logger.warning(f"Contribution {contribution.contribution_id}: {e.message}")
        return IncentiveCalculation(
            contribution_id=contribution.contribution_id,
            status=CalculationStatus.POLICY_NOT_FOUND,
            reference_date=reference_date,
            issues=[e.message],
        )

    return calculate_with_policy(contribution, policy, reference_date, currency_unit, points_unit)


def calculate_with_policy(
    contribution: Contribution,
    policy: IncentivePolicy,
    reference_date: date,
    currency_unit: Decimal = CENT,
    points_unit: Decimal = CENT,
) -> IncentiveCalculation:
    """Compute and distribute against an already resolved policy."""
    calculation = IncentiveCalculation(
        contribution_id=contribution.contribution_id,
        status=CalculationStatus.COMPUTED,
        reference_date=reference_date,
        policy_id=policy.policy_id,
        policy_version=policy.version,
    )

    try:
        base = compute_base_amount(contribution, policy)
    except IncompleteMetadata as e:
        logger.warning(f"Contribution {contribution.contribution_id}: {e.message}")
        return calculation.model_copy(update={
            "status": CalculationStatus.INCOMPLETE_METADATA,
            "issues": [e.message],
        })
    except NoMatchingRange as e:
        logger.warning(f"Contribution {contribution.contribution_id}: {e.message}")
        return calculation.model_copy(update={
            "status": CalculationStatus.NO_MATCHING_RANGE,
            "issues": [e.message],
        })

    allocation = distribute(
        base.total_amount,
        base.total_points,
        contribution.authors,
        policy.distribution_method,
        role_percentages=policy.role_percentages,
        position_percentages=policy.position_percentages,
        currency_unit=currency_unit,
        points_unit=points_unit,
    )

    issues = []
    if allocation.total_forfeited > 0:
        issues.append(
            f"{allocation.total_forfeited} of {allocation.total_computed} forfeited "
            f"(external authors, unassigned shares or rounding)"
        )

    logger.info(
        f"Contribution {contribution.contribution_id}: policy {policy.policy_id} v{policy.version}, "
        f"total {allocation.total_computed}, distributed {allocation.total_distributed}"
    )
    return calculation.model_copy(update={
        "base_amount": base,
        "allocation": allocation,
        "issues": issues,
    })
