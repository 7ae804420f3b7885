"""
Policy Resolver

Selects the single policy version that applies to a publication type on a
reference date, and enforces the write-time contract for policy authoring:
validity windows of the same publication type never overlap and percentage
and range tables are well-formed.

Windows are half-open: [valid_from, valid_to). A null valid_to is open-ended.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import (
    InvalidPercentageTable,
    InvalidRangeTable,
    OverlappingPolicyWindow,
    PolicyNotFound,
    PolicyValidationError,
)
from .incentive_types import (
    HUNDRED,
    DistributionMethod,
    IncentivePolicy,
    PublicationType,
    RangeBand,
)

logger = logging.getLogger(__name__)


# =============================================================================
# RESOLUTION
# =============================================================================

def resolve_policy(
    policies: Iterable[IncentivePolicy],
    publication_type: PublicationType,
    reference_date: date,
) -> IncentivePolicy:
    """
    Return the unique active policy covering `reference_date`.

    Raises:
        PolicyNotFound: no active policy of that type covers the date
        OverlappingPolicyWindow: stored policies violate the non-overlap invariant
    """
    publication_type = PublicationType(publication_type)
    matches = [
        p for p in policies
        if p.is_active and p.publication_type == publication_type and p.covers(reference_date)
    ]

    if not matches:
        raise PolicyNotFound(
            f"No active {publication_type.value} policy on {reference_date.isoformat()}",
            details={"publication_type": publication_type.value, "reference_date": reference_date.isoformat()},
        )

    if len(matches) > 1:
        logger.error(
            f"Ambiguous policies for {publication_type.value} on {reference_date}: "
            f"{[p.policy_id for p in matches]}"
        )
        raise OverlappingPolicyWindow(
            f"{len(matches)} active {publication_type.value} policies cover {reference_date.isoformat()}",
            details={"policy_ids": [p.policy_id for p in matches]},
        )

    policy = matches[0]
    logger.debug(f"Resolved {publication_type.value} on {reference_date} -> {policy.policy_id} v{policy.version}")
    return policy


# =============================================================================
# WRITE-TIME CONTRACT
# =============================================================================

def windows_overlap(
    a_from: date, a_to: Optional[date],
    b_from: date, b_to: Optional[date],
) -> bool:
    """Half-open interval overlap; None as an end date means open-ended."""
    a_starts_before_b_ends = b_to is None or a_from < b_to
    b_starts_before_a_ends = a_to is None or b_from < a_to
    return a_starts_before_b_ends and b_starts_before_a_ends


def check_overlap(
    candidate: IncentivePolicy,
    existing: Iterable[IncentivePolicy],
    replacing: Optional[str] = None,
) -> None:
    """
    Reject a candidate whose window overlaps another active policy of the
    same publication type.

    Args:
        candidate: Policy about to be stored
        existing: Policies already stored
        replacing: policy_id excluded from the check (the version being closed)
    """
    if not candidate.is_active:
        return

    for other in existing:
        if other.policy_id in (candidate.policy_id, replacing):
            continue
        if not other.is_active or other.publication_type != candidate.publication_type:
            continue
        if windows_overlap(candidate.valid_from, candidate.valid_to, other.valid_from, other.valid_to):
            raise OverlappingPolicyWindow(
                f"Window {_describe_window(candidate)} overlaps policy "
                f"'{other.policy_name or other.policy_id}' ({_describe_window(other)})",
                details={
                    "publication_type": candidate.publication_type.value,
                    "conflicting_policy_id": other.policy_id,
                },
            )


def validate_policy(policy: IncentivePolicy) -> None:
    """Validate invariants the model shape alone does not express."""
    if policy.valid_to is not None and policy.valid_to <= policy.valid_from:
        raise PolicyValidationError(
            f"valid_to ({policy.valid_to}) must be after valid_from ({policy.valid_from})"
        )

    if policy.distribution_method == DistributionMethod.ROLE_BASED:
        rp = policy.role_percentages
        primary_total = rp.first_author_pct + rp.corresponding_author_pct
        if primary_total > HUNDRED:
            raise InvalidPercentageTable(
                f"First ({rp.first_author_pct}%) + corresponding ({rp.corresponding_author_pct}%) "
                f"exceeds 100%",
                details={"total": str(primary_total)},
            )

    if policy.distribution_method == DistributionMethod.POSITION_BASED:
        total = sum(policy.position_percentages.percentages, Decimal("0"))
        if total != HUNDRED:
            raise InvalidPercentageTable(
                f"Position percentages must total 100%. Current total: {total}%",
                details={"total": str(total)},
            )

    seen_tiers = set()
    for entry in policy.tier_table:
        key = entry.tier.strip().lower()
        if key in seen_tiers:
            raise PolicyValidationError(f"Duplicate tier '{entry.tier}'")
        seen_tiers.add(key)

    seen_categories = set()
    for bonus in policy.category_bonus_table:
        if bonus.category in seen_categories:
            raise PolicyValidationError(f"Duplicate category bonus '{bonus.category}'")
        seen_categories.add(bonus.category)

    _validate_range_table(policy.range_table)


def _validate_range_table(bands: Sequence[RangeBand]) -> None:
    by_category: Dict[str, List[RangeBand]] = {}
    for band in bands:
        if band.max_value is not None and band.max_value <= band.min_value:
            raise InvalidRangeTable(
                f"Range for '{band.category}' has max {band.max_value} <= min {band.min_value}"
            )
        by_category.setdefault(band.category, []).append(band)

    for category, group in by_category.items():
        metrics = {b.metric for b in group}
        if len(metrics) > 1:
            raise InvalidRangeTable(
                f"Category '{category}' mixes metrics {sorted(m.value for m in metrics)}"
            )
        ordered = sorted(group, key=lambda b: b.min_value)
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.max_value is None or lower.max_value > upper.min_value:
                raise InvalidRangeTable(
                    f"Ranges for '{category}' overlap at {upper.min_value}",
                    details={"category": category},
                )


def _describe_window(policy: IncentivePolicy) -> str:
    end = policy.valid_to.isoformat() if policy.valid_to else "open"
    return f"[{policy.valid_from.isoformat()}, {end})"


# =============================================================================
# REGISTRY
# =============================================================================

class PolicyRegistry:
    """
    Append-only, in-memory set of policy versions.

    Every write goes through validate_policy and check_overlap; policies are
    frozen models, so an edit is always a new version.
    """

    def __init__(self, policies: Optional[Iterable[IncentivePolicy]] = None):
        self._policies: List[IncentivePolicy] = []
        for policy in policies or []:
            self.register(policy)

    def register(self, policy: IncentivePolicy) -> IncentivePolicy:
        validate_policy(policy)
        check_overlap(policy, self._policies)

        if any(p.policy_id == policy.policy_id for p in self._policies):
            raise PolicyValidationError(f"Policy {policy.policy_id} is already registered")

        stored = policy.model_copy(update={"version": self._next_version(policy.publication_type)})
        self._policies.append(stored)
        logger.info(
            f"Registered {stored.publication_type.value} policy '{stored.policy_name}' "
            f"v{stored.version} {_describe_window(stored)}"
        )
        return stored

    def revise(self, policy_id: str, effective_from: date, **changes) -> IncentivePolicy:
        """
        Create a new version of `policy_id` that takes effect on `effective_from`.

        The previous version keeps its tables; its window is closed at
        `effective_from` so earlier reference dates still resolve to it.
        """
        current = self.get(policy_id)
        if not current.covers(effective_from) or effective_from == current.valid_from:
            raise PolicyValidationError(
                f"Revision date {effective_from} must fall strictly inside {_describe_window(current)}"
            )

        forbidden = {"policy_id", "version", "publication_type", "valid_from"} & set(changes)
        if forbidden:
            raise PolicyValidationError(f"Cannot revise fields: {sorted(forbidden)}")

        data = current.model_dump()
        data.update(changes)
        data.update({
            "policy_id": str(uuid.uuid4()),
            "valid_from": effective_from,
            "valid_to": changes.get("valid_to", current.valid_to),
        })
        replacement = IncentivePolicy.model_validate(data)

        validate_policy(replacement)
        check_overlap(replacement, self._policies, replacing=current.policy_id)

        closed = current.model_copy(update={"valid_to": effective_from})
        stored = replacement.model_copy(update={"version": self._next_version(current.publication_type)})

        index = self._policies.index(current)
        self._policies[index] = closed
        self._policies.append(stored)
        logger.info(
            f"Revised {current.publication_type.value} policy {current.policy_id} -> "
            f"{stored.policy_id} v{stored.version} from {effective_from}"
        )
        return stored

    def resolve(self, publication_type: PublicationType, reference_date: date) -> IncentivePolicy:
        return resolve_policy(self._policies, publication_type, reference_date)

    def get(self, policy_id: str) -> IncentivePolicy:
        for policy in self._policies:
            if policy.policy_id == policy_id:
                return policy
        raise PolicyNotFound(f"Unknown policy {policy_id}", details={"policy_id": policy_id})

    def versions(self, publication_type: PublicationType) -> List[IncentivePolicy]:
        publication_type = PublicationType(publication_type)
        return sorted(
            (p for p in self._policies if p.publication_type == publication_type),
            key=lambda p: p.version,
        )

    def all(self) -> List[IncentivePolicy]:
        return list(self._policies)

    def _next_version(self, publication_type: PublicationType) -> int:
        return max((p.version for p in self._policies if p.publication_type == publication_type), default=0) + 1
