"""
Base Amount Calculator

Turns a contribution's quality and impact metadata into a gross incentive
amount and point total using the tables of the resolved policy.

Lookup order for the base award:
1. Range table (SJR / NAAS rating bands) for a declared range category
2. Tier table by journal quartile
3. The policy's flat award

Category bonuses are summed over every declared category. Conditional
bonuses (international, consortium, best paper) add money only, never points.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from .errors import IncompleteMetadata, NoMatchingRange
from .incentive_types import (
    ZERO,
    AmountComponent,
    BaseAmount,
    Contribution,
    IncentivePolicy,
)

logger = logging.getLogger(__name__)


# Filing forms send quartiles in several spellings; tier tables use display labels.
QUARTILE_ALIASES = {
    "top1": "Top 1%",
    "top 1%": "Top 1%",
    "top_1": "Top 1%",
    "top_1_": "Top 1%",
    "top5": "Top 5%",
    "top 5%": "Top 5%",
    "top_5": "Top 5%",
    "top_5_": "Top 5%",
    "q1": "Q1",
    "q2": "Q2",
    "q3": "Q3",
    "q4": "Q4",
}


def normalize_quartile(quartile: Optional[str]) -> Optional[str]:
    """Map a quartile spelling to its tier label ("q1" -> "Q1", "top1" -> "Top 1%")."""
    if quartile is None:
        return None
    cleaned = quartile.strip()
    if not cleaned:
        return None
    return QUARTILE_ALIASES.get(cleaned.lower(), cleaned)


def compute_base_amount(contribution: Contribution, policy: IncentivePolicy) -> BaseAmount:
    """
    Compute the gross total amount and point total for a contribution.

    Args:
        contribution: The approved filing and its metadata
        policy: Policy resolved for the contribution's publication type

    Returns:
        BaseAmount with the audited component lines

    Raises:
        NoMatchingRange: a metric value or quartile falls outside the policy tables
        IncompleteMetadata: neither a base award nor any category bonus applies
    """
    base = _lookup_range(contribution, policy)
    if base is None:
        base = _lookup_tier(contribution, policy)
    if base is None and policy.flat_award is not None:
        base = AmountComponent(
            source="flat",
            label=f"{policy.publication_type.value} base award",
            amount=policy.flat_award.amount,
            points=policy.flat_award.points,
        )

    category_components = _category_bonuses(contribution, policy)

    if base is None and not category_components:
        raise IncompleteMetadata(
            f"Contribution {contribution.contribution_id} has no quartile, metric value "
            f"or indexing category the policy can price",
            details={
                "contribution_id": contribution.contribution_id,
                "policy_id": policy.policy_id,
                "indexing_categories": sorted(contribution.indexing_categories),
            },
        )

    components: List[AmountComponent] = []
    if base is not None:
        components.append(base)
    components.extend(category_components)
    components.extend(_conditional_bonuses(contribution, policy))

    total_amount = sum((c.amount for c in components), ZERO)
    # Conditional bonuses carry zero points, so this sums base + categories only
    total_points = sum((c.points for c in components), ZERO)

    logger.debug(
        f"Base amount for {contribution.contribution_id}: {total_amount} / {total_points} points "
        f"from {[c.label for c in components]}"
    )
    return BaseAmount(total_amount=total_amount, total_points=total_points, components=components)


# =============================================================================
# LOOKUPS
# =============================================================================

def _lookup_range(contribution: Contribution, policy: IncentivePolicy) -> Optional[AmountComponent]:
    categories_in_order = []
    for band in policy.range_table:
        if band.category not in categories_in_order:
            categories_in_order.append(band.category)

    for category in categories_in_order:
        if category not in contribution.indexing_categories:
            continue

        bands = [b for b in policy.range_table if b.category == category]
        metric = bands[0].metric
        value = contribution.metric_value(metric)
        if value is None:
            logger.info(
                f"{contribution.contribution_id} declares '{category}' without {metric.value}; "
                f"falling back to tier lookup"
            )
            continue

        for band in bands:
            if band.contains(value):
                upper = band.max_value if band.max_value is not None else "+"
                return AmountComponent(
                    source="range",
                    label=f"{category} {metric.value} {band.min_value}-{upper}",
                    amount=band.amount,
                    points=band.points,
                )

        raise NoMatchingRange(
            f"{metric.value} {value} is outside every '{category}' range",
            details={"category": category, "metric": metric.value, "value": str(value)},
        )

    return None


def _lookup_tier(contribution: Contribution, policy: IncentivePolicy) -> Optional[AmountComponent]:
    tier = normalize_quartile(contribution.quartile)
    if tier is None or not policy.tier_table:
        return None

    for entry in policy.tier_table:
        if entry.tier.strip().lower() == tier.lower():
            return AmountComponent(
                source="tier",
                label=entry.tier,
                amount=entry.amount,
                points=entry.points,
            )

    raise NoMatchingRange(
        f"Quartile '{contribution.quartile}' has no tier in policy {policy.policy_id}",
        details={"quartile": contribution.quartile, "tiers": [e.tier for e in policy.tier_table]},
    )


def _category_bonuses(contribution: Contribution, policy: IncentivePolicy) -> List[AmountComponent]:
    components = []
    for category in sorted(contribution.indexing_categories):
        bonus = policy.category_bonus(category)
        if bonus is None:
            continue
        components.append(AmountComponent(
            source="category_bonus",
            label=category,
            amount=bonus.amount,
            points=bonus.points,
        ))
    return components


def _conditional_bonuses(contribution: Contribution, policy: IncentivePolicy) -> List[AmountComponent]:
    bonuses = policy.conditional_bonuses
    components = []

    if contribution.is_international and bonuses.international:
        components.append(AmountComponent(
            source="international",
            label="International bonus",
            amount=bonuses.international,
        ))

    if contribution.number_of_consortium_orgs > 0 and bonuses.per_consortium_org:
        count = contribution.number_of_consortium_orgs
        components.append(AmountComponent(
            source="consortium",
            label=f"Consortium bonus x {count}",
            amount=bonuses.per_consortium_org * Decimal(count),
        ))

    if contribution.has_best_paper_award and bonuses.best_paper_award:
        components.append(AmountComponent(
            source="best_paper_award",
            label="Best paper award",
            amount=bonuses.best_paper_award,
        ))

    return components
