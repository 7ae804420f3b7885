"""
Author Distribution Engine

Splits a gross incentive (money and points) across the authors of a
contribution under the policy's distribution method.

Rules:
- Only internal authors are paid. An external author's share is forfeited.
- Points go to internal, non-student authors only. Withheld points are
  forfeited, never redistributed.
- role_based: first and corresponding percentages are forfeited outright
  when held by an external author; the co-author pool is shared among
  internal co-authors only, so an external co-author's notional share is
  redistributed to them.
- Two authors holding first and corresponding (no co-authors) split 50/50.
- position_based: ranks 1..5 use the policy table, rank 6+ earns nothing.
- equal: every author holds 100 / n percent.
- Money is rounded half-up to the currency unit; rounding residue is
  reported as forfeiture rather than given to anyone.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence, Tuple

from .errors import InvalidAuthorSet
from .incentive_types import (
    HUNDRED,
    PRIMARY_ROLES,
    ZERO,
    AllocationResult,
    Author,
    AuthorAllocation,
    AuthorRole,
    DistributionMethod,
    Forfeiture,
    PositionPercentages,
    RolePercentages,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TWO_AUTHOR_SPLIT_PCT = Decimal("50")
PERCENT_DISPLAY = Decimal("0.0001")


@dataclass
class _Share:
    """An author's percentage of the gross total, before eligibility."""
    author: Author
    percentage: Decimal
    note: str


@dataclass
class _Unassigned:
    """A percentage nobody holds (missing role, empty rank, unclaimed pool)."""
    reason: str
    percentage: Decimal


# =============================================================================
# PUBLIC API
# =============================================================================

def distribute(
    total_amount,
    total_points,
    authors: Sequence[Author],
    distribution_method: DistributionMethod,
    role_percentages: Optional[RolePercentages] = None,
    position_percentages: Optional[PositionPercentages] = None,
    currency_unit: Decimal = CENT,
    points_unit: Decimal = CENT,
) -> AllocationResult:
    """
    Allocate a gross total across authors.

    Args:
        total_amount: Gross money from the base amount calculator
        total_points: Gross points from the base amount calculator
        authors: Ordered, non-empty author list
        distribution_method: role_based | position_based | equal
        role_percentages: Required for role_based
        position_percentages: Required for position_based
        currency_unit: Smallest currency unit money is rounded to
        points_unit: Precision points are rounded to

    Returns:
        AllocationResult with one entry per author in input order

    Raises:
        InvalidAuthorSet: malformed author list; nothing is allocated
    """
    total_amount = Decimal(str(total_amount))
    total_points = Decimal(str(total_points))
    if total_amount < 0 or total_points < 0:
        raise ValueError("Totals must be non-negative")

    method = DistributionMethod(distribution_method)
    authors = list(authors)
    validate_author_set(authors, method, role_percentages, position_percentages)

    unassigned: List[_Unassigned] = []
    if len(authors) == 1:
        shares = [_sole_author_share(authors[0])]
    elif method == DistributionMethod.ROLE_BASED:
        if _is_first_corresponding_pair(authors):
            shares = _two_author_split(authors)
        else:
            shares, unassigned = _role_based_shares(authors, role_percentages)
    elif method == DistributionMethod.POSITION_BASED:
        shares, unassigned = _position_based_shares(authors, position_percentages)
    else:
        shares = _equal_shares(authors)

    return _assemble(method, shares, unassigned, total_amount, total_points, currency_unit, points_unit)


def validate_author_set(
    authors: Sequence[Author],
    method: DistributionMethod,
    role_percentages: Optional[RolePercentages] = None,
    position_percentages: Optional[PositionPercentages] = None,
) -> None:
    """Reject malformed author lists before any arithmetic runs."""
    if not authors:
        raise InvalidAuthorSet("Author list is empty")

    seen_ids = set()
    seen_positions = set()
    for author in authors:
        if author.position <= 0:
            raise InvalidAuthorSet(
                f"Author {author.author_id} has invalid position {author.position}",
                details={"author_id": author.author_id, "position": author.position},
            )
        if author.position in seen_positions:
            raise InvalidAuthorSet(
                f"Position {author.position} is assigned to more than one author",
                details={"position": author.position},
            )
        if author.author_id in seen_ids:
            raise InvalidAuthorSet(
                f"Author {author.author_id} appears more than once",
                details={"author_id": author.author_id},
            )
        seen_ids.add(author.author_id)
        seen_positions.add(author.position)

    if method == DistributionMethod.ROLE_BASED:
        if role_percentages is None:
            raise InvalidAuthorSet("Authors claim roles but the policy defines no role percentages")
        for author in authors:
            if not author.roles:
                raise InvalidAuthorSet(
                    f"Author {author.author_id} has no role",
                    details={"author_id": author.author_id},
                )
            if author.has_role(AuthorRole.CO_AUTHOR) and any(author.has_role(r) for r in PRIMARY_ROLES):
                raise InvalidAuthorSet(
                    f"Author {author.author_id} cannot be both co-author and first/corresponding author",
                    details={"author_id": author.author_id},
                )
        for role in PRIMARY_ROLES:
            holders = [a.author_id for a in authors if a.has_role(role)]
            if len(holders) > 1:
                raise InvalidAuthorSet(
                    f"Role '{role.value}' is claimed by {len(holders)} authors",
                    details={"role": role.value, "author_ids": holders},
                )

    elif method == DistributionMethod.POSITION_BASED and position_percentages is None:
        raise InvalidAuthorSet("Authors are ranked but the policy defines no position percentages")


# =============================================================================
# SHARE RULES
# =============================================================================

def _sole_author_share(author: Author) -> _Share:
    return _Share(author, HUNDRED, "Sole author: 100%")


def _is_first_corresponding_pair(authors: List[Author]) -> bool:
    # Product rule: two authors and no co-author split evenly whatever the table says
    return len(authors) == 2 and not any(a.has_role(AuthorRole.CO_AUTHOR) for a in authors)


def _two_author_split(authors: List[Author]) -> List[_Share]:
    return [
        _Share(a, TWO_AUTHOR_SPLIT_PCT, "Two authors (first + corresponding): 50% each")
        for a in authors
    ]


def _role_based_shares(
    authors: List[Author],
    role_percentages: RolePercentages,
) -> Tuple[List[_Share], List[_Unassigned]]:
    primary_pct, primary_notes = _primary_role_percentages(authors, role_percentages)
    pool_pct, pool_notes, pool_unassigned = _co_author_pool_percentages(
        authors, role_percentages.co_author_pool_pct
    )

    unassigned = []
    for role in PRIMARY_ROLES:
        if not any(a.has_role(role) for a in authors) and role_percentages.for_role(role) > 0:
            unassigned.append(_Unassigned(f"unassigned_{role.value}_role", role_percentages.for_role(role)))
    if pool_unassigned is not None:
        unassigned.append(pool_unassigned)

    shares = []
    for author in authors:
        if author.has_role(AuthorRole.CO_AUTHOR):
            shares.append(_Share(author, pool_pct[author.author_id], pool_notes[author.author_id]))
        else:
            shares.append(_Share(author, primary_pct[author.author_id], primary_notes[author.author_id]))
    return shares, unassigned


def _primary_role_percentages(authors: List[Author], role_percentages: RolePercentages):
    """
    First/corresponding percentages, added together for an author holding both.

    These are never redistributed: if the holder is external the share is
    forfeited when the allocation is assembled.
    """
    percentages = {}
    notes = {}
    for author in authors:
        held = [r for r in PRIMARY_ROLES if author.has_role(r)]
        if not held:
            continue
        pct = sum((role_percentages.for_role(r) for r in held), ZERO)
        percentages[author.author_id] = pct
        if len(held) == 2:
            notes[author.author_id] = (
                f"First + corresponding: {_pct_text(role_percentages.first_author_pct)}% + "
                f"{_pct_text(role_percentages.corresponding_author_pct)}% = {_pct_text(pct)}%"
            )
        else:
            label = "First author" if held[0] == AuthorRole.FIRST else "Corresponding author"
            notes[author.author_id] = f"{label}: {_pct_text(pct)}%"
    return percentages, notes


def _co_author_pool_percentages(authors: List[Author], pool_pct: Decimal):
    """
    Share the co-author pool equally among internal co-authors.

    External co-authors add no weight to the denominator, so their notional
    share goes to the remaining internal co-authors. With no internal
    co-author left the whole pool is unassigned.
    """
    co_authors = [a for a in authors if a.has_role(AuthorRole.CO_AUTHOR)]
    internal = [a for a in co_authors if a.is_internal]

    percentages = {}
    notes = {}
    unassigned = None

    if not internal and pool_pct > 0:
        unassigned = _Unassigned("co_author_pool_unclaimed", pool_pct)

    each = pool_pct / len(internal) if internal else ZERO
    for author in co_authors:
        if author.is_internal:
            percentages[author.author_id] = each
            notes[author.author_id] = (
                f"Co-author: {_pct_text(pool_pct)}% / {len(internal)} internal co-authors = {_pct_text(each)}%"
            )
        elif internal:
            percentages[author.author_id] = ZERO
            notes[author.author_id] = "External co-author: share redistributed to internal co-authors"
        else:
            percentages[author.author_id] = ZERO
            notes[author.author_id] = "External co-author: no internal co-author, pool forfeited"
    return percentages, notes, unassigned


def _position_based_shares(
    authors: List[Author],
    position_percentages: PositionPercentages,
) -> Tuple[List[_Share], List[_Unassigned]]:
    shares = []
    for author in authors:
        pct = position_percentages.for_position(author.position)
        if pct > 0:
            note = f"Position {author.position}: {_pct_text(pct)}%"
        elif author.position > len(position_percentages.percentages):
            note = f"Position {author.position}: 0% (beyond ranked positions)"
        else:
            note = f"Position {author.position}: 0%"
        shares.append(_Share(author, pct, note))

    held = {a.position for a in authors}
    unassigned = [
        _Unassigned(f"unfilled_position_{rank}", pct)
        for rank, pct in enumerate(position_percentages.percentages, start=1)
        if rank not in held and pct > 0
    ]
    return shares, unassigned


def _equal_shares(authors: List[Author]) -> List[_Share]:
    count = len(authors)
    pct = HUNDRED / count
    return [_Share(a, pct, f"Equal split: 100% / {count} = {_pct_text(pct)}%") for a in authors]


# =============================================================================
# ASSEMBLY
# =============================================================================

def _assemble(
    method: DistributionMethod,
    shares: List[_Share],
    unassigned: List[_Unassigned],
    total_amount: Decimal,
    total_points: Decimal,
    currency_unit: Decimal,
    points_unit: Decimal,
) -> AllocationResult:
    raw_amounts = [total_amount * s.percentage / HUNDRED for s in shares]
    raw_points = [total_points * s.percentage / HUNDRED for s in shares]

    paid = [s.author.is_internal for s in shares]
    earns_points = [s.author.is_internal and not s.author.is_student for s in shares]

    amounts = [_round(raw, currency_unit) if ok else ZERO for raw, ok in zip(raw_amounts, paid)]
    points = [_round(raw, points_unit) if ok else ZERO for raw, ok in zip(raw_points, earns_points)]
    amounts = _trim_overshoot(amounts, raw_amounts, total_amount, currency_unit)
    points = _trim_overshoot(points, raw_points, total_points, points_unit)

    allocations = []
    for i, share in enumerate(shares):
        note = share.note
        if not paid[i] and share.percentage > 0:
            note += "; forfeited (external author)"
        elif paid[i] and not earns_points[i] and share.percentage > 0:
            note += "; points withheld (student)"
        allocations.append(AuthorAllocation(
            author_id=share.author.author_id,
            percentage=share.percentage.quantize(PERCENT_DISPLAY, rounding=ROUND_HALF_UP),
            incentive_amount=amounts[i],
            points=points[i],
            forfeited_amount=ZERO if paid[i] else _round(raw_amounts[i], currency_unit),
            forfeited_points=ZERO if earns_points[i] else _round(raw_points[i], points_unit),
            note=note,
        ))

    forfeitures = [
        Forfeiture(
            reason=u.reason,
            percentage=u.percentage.quantize(PERCENT_DISPLAY, rounding=ROUND_HALF_UP),
            amount=_round(total_amount * u.percentage / HUNDRED, currency_unit),
            points=_round(total_points * u.percentage / HUNDRED, points_unit),
        )
        for u in unassigned
    ]

    total_distributed = sum(amounts, ZERO)
    points_distributed = sum(points, ZERO)
    total_forfeited = total_amount - total_distributed
    itemized = sum((a.forfeited_amount for a in allocations), ZERO) + sum((f.amount for f in forfeitures), ZERO)

    result = AllocationResult(
        distribution_method=method,
        allocations=allocations,
        total_computed=total_amount,
        total_distributed=total_distributed,
        total_forfeited=total_forfeited,
        total_points_computed=total_points,
        total_points_distributed=points_distributed,
        total_points_forfeited=total_points - points_distributed,
        forfeitures=forfeitures,
        rounding_residue=total_forfeited - itemized,
    )
    logger.debug(
        f"{method.value} allocation over {len(shares)} authors: distributed {total_distributed}, "
        f"forfeited {total_forfeited} (residue {result.rounding_residue})"
    )
    return result


def _round(value: Decimal, unit: Decimal) -> Decimal:
    return value.quantize(unit, rounding=ROUND_HALF_UP)


def _trim_overshoot(
    rounded: List[Decimal],
    raw: List[Decimal],
    total: Decimal,
    unit: Decimal,
) -> List[Decimal]:
    """
    Keep the rounded sum within the total.

    Half-up rounding of several shares can overshoot by a few units; those
    units are taken back from the shares with the largest rounding gain,
    later entries first on ties.
    """
    overshoot = sum(rounded, ZERO) - total
    if overshoot <= 0:
        return rounded

    adjusted = list(rounded)
    candidates = sorted(
        (i for i, value in enumerate(adjusted) if value > 0),
        key=lambda i: (adjusted[i] - raw[i], i),
        reverse=True,
    )
    index = 0
    while overshoot > 0 and candidates:
        i = candidates[index % len(candidates)]
        adjusted[i] -= unit
        overshoot -= unit
        index += 1
    return adjusted


def _pct_text(value: Decimal) -> str:
    return format(value.quantize(CENT, rounding=ROUND_HALF_UP).normalize(), "f")
