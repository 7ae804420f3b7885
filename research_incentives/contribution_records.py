"""
Contribution Records

Maps stored research contribution rows (and their author rows) into the
engine's Contribution / Author models, and allocation results back into rows.

Stored author rows describe people with portal vocabulary:
- author_type: internal_faculty | internal_student | external_academic |
  external_industry | external_other
- author_role: first_author | corresponding_author |
  first_and_corresponding_author | co_author
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .incentive_types import (
    AuthorRole,
    Author,
    CalculationStatus,
    Contribution,
    IncentiveCalculation,
    PublicationType,
)
from .settings import get_setting

logger = logging.getLogger(__name__)


ROLE_ALIASES: Dict[str, FrozenSet[AuthorRole]] = {
    "first_author": frozenset({AuthorRole.FIRST}),
    "first": frozenset({AuthorRole.FIRST}),
    "corresponding_author": frozenset({AuthorRole.CORRESPONDING}),
    "corresponding": frozenset({AuthorRole.CORRESPONDING}),
    "first_and_corresponding_author": frozenset({AuthorRole.FIRST, AuthorRole.CORRESPONDING}),
    "first_and_corresponding": frozenset({AuthorRole.FIRST, AuthorRole.CORRESPONDING}),
    "co_author": frozenset({AuthorRole.CO_AUTHOR}),
    "coauthor": frozenset({AuthorRole.CO_AUTHOR}),
    "co-author": frozenset({AuthorRole.CO_AUTHOR}),
}

PUBLICATION_TYPE_ALIASES = {
    "research_paper": PublicationType.RESEARCH_PAPER,
    "research": PublicationType.RESEARCH_PAPER,
    "journal_article": PublicationType.RESEARCH_PAPER,
    "book": PublicationType.BOOK,
    "book_chapter": PublicationType.BOOK_CHAPTER,
    "conference_paper": PublicationType.CONFERENCE_PAPER,
    "conference": PublicationType.CONFERENCE_PAPER,
    "grant": PublicationType.GRANT,
    "ipr": PublicationType.IPR,
    "patent": PublicationType.IPR,
}


def parse_roles(value: Any) -> FrozenSet[AuthorRole]:
    """Parse a role string (or list of strings) into a role set. Unknown values yield an empty set."""
    if value is None:
        return frozenset()
    if isinstance(value, (list, tuple, set, frozenset)):
        roles = frozenset()
        for item in value:
            roles = roles | parse_roles(item)
        return roles

    key = str(value).strip().lower().replace(" ", "_")
    roles = ROLE_ALIASES.get(key)
    if roles is None:
        logger.warning(f"Unknown author role '{value}'")
        return frozenset()
    return roles


def parse_author_type(value: Optional[str]) -> Dict[str, bool]:
    """Derive is_internal / is_student from an author_type string."""
    author_type = (value or "internal_faculty").strip().lower()
    return {
        "is_internal": not author_type.startswith("external"),
        "is_student": author_type.endswith("student"),
    }


def parse_publication_type(value: Any) -> PublicationType:
    key = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
    if key in PUBLICATION_TYPE_ALIASES:
        return PUBLICATION_TYPE_ALIASES[key]
    raise ValueError(f"Unknown publication type '{value}'")


def parse_categories(value: Any) -> FrozenSet[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(str(v).strip().lower() for v in value if str(v).strip())


def author_from_row(row: Dict[str, Any]) -> Author:
    position = row.get("author_position")
    if position is None:
        position = row.get("author_order")

    flags = parse_author_type(row.get("author_type"))
    # Explicit flags win over the type string
    if row.get("is_internal") is not None:
        flags["is_internal"] = bool(row["is_internal"])
    if row.get("is_student") is not None:
        flags["is_student"] = bool(row["is_student"])

    return Author(
        author_id=str(row.get("author_id") or row.get("user_id") or row.get("id")),
        name=row.get("name") or row.get("author_name"),
        roles=parse_roles(row.get("author_role") or row.get("roles")),
        position=int(position) if position is not None else 0,
        **flags,
    )


def contribution_from_row(row: Dict[str, Any], author_rows: Optional[Iterable[Dict[str, Any]]] = None) -> Contribution:
    """
    Build a Contribution from a stored row.

    Args:
        row: Contribution row
        author_rows: Author rows; defaults to row["authors"] when embedded
    """
    if author_rows is None:
        author_rows = row.get("authors") or []

    # Stored order is not guaranteed; the engine expects ordered authors
    authors = sorted((author_from_row(a) for a in author_rows), key=lambda a: a.position)

    return Contribution(
        contribution_id=str(row["id"]),
        publication_type=parse_publication_type(row.get("publication_type")),
        title=row.get("title"),
        quartile=row.get("quartile") or None,
        sjr=row.get("sjr"),
        naas_rating=row.get("naas_rating"),
        indexing_categories=parse_categories(row.get("indexing_categories")),
        is_international=bool(row.get("is_international")),
        number_of_consortium_orgs=int(row.get("number_of_consortium_orgs") or 0),
        has_best_paper_award=bool(row.get("has_best_paper_award")),
        authors=authors,
    )


def allocation_rows(calculation: IncentiveCalculation) -> List[Dict[str, Any]]:
    """Flatten a computed calculation into one row per author for the allocation table."""
    if calculation.allocation is None:
        return []

    rows = []
    for allocation in calculation.allocation.allocations:
        rows.append({
            "contribution_id": calculation.contribution_id,
            "author_id": allocation.author_id,
            "policy_id": calculation.policy_id,
            "policy_version": calculation.policy_version,
            "reference_date": calculation.reference_date.isoformat(),
            "percentage": str(allocation.percentage),
            "incentive_amount": str(allocation.incentive_amount),
            "points": str(allocation.points),
            "forfeited_amount": str(allocation.forfeited_amount),
            "forfeited_points": str(allocation.forfeited_points),
            "calculation_note": allocation.note,
        })
    return rows


# =============================================================================
# STORAGE ACCESS
# =============================================================================

def reference_date_from_row(row: Dict[str, Any], date_field: str = "approved_at") -> Optional[date]:
    """Date part of a stored timestamp column, falling back to submitted_at."""
    value = row.get(date_field) or row.get("submitted_at")
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()


def load_contributions(
    supabase,
    status: Optional[str] = "approved",
    limit: Optional[int] = None,
    date_field: str = "approved_at",
) -> List[Tuple[Contribution, Optional[date]]]:
    """
    Load stored contributions with their authors.

    Returns:
        (contribution, reference_date) pairs. Malformed rows are logged and skipped.
    """
    query = supabase.table(get_setting("CONTRIBUTION_TABLE")).select(
        f"*, authors:{get_setting('AUTHOR_TABLE')}(*)"
    )
    if status:
        query = query.eq("status", status)
    if limit:
        query = query.limit(limit)
    result = query.execute()

    records = []
    for row in result.data or []:
        try:
            records.append((contribution_from_row(row), reference_date_from_row(row, date_field)))
        except (KeyError, ValueError) as e:
            logger.error(f"Skipping contribution {row.get('id')}: {e}")
    return records


def save_allocations(supabase, calculation: IncentiveCalculation) -> int:
    """
    Store the allocation rows for one contribution. Returns rows written.

    New rows are upserted before stale author rows are pruned, so a failed
    write leaves the previous allocation in place. Calculations that did not
    compute are not written and never clear what is stored.
    """
    if calculation.status != CalculationStatus.COMPUTED or calculation.allocation is None:
        logger.warning(
            f"Contribution {calculation.contribution_id}: {calculation.status.value}, "
            f"stored allocation left unchanged"
        )
        return 0

    rows = allocation_rows(calculation)
    if not rows:
        return 0
    table = get_setting("ALLOCATION_TABLE")

    supabase.table(table)\
        .upsert(rows, on_conflict="contribution_id,author_id")\
        .execute()

    stored = supabase.table(table)\
        .select("author_id")\
        .eq("contribution_id", calculation.contribution_id)\
        .execute()
    current = {row["author_id"] for row in rows}
    stale = sorted({r["author_id"] for r in stored.data or []} - current)
    if stale:
        supabase.table(table)\
            .delete()\
            .eq("contribution_id", calculation.contribution_id)\
            .in_("author_id", stale)\
            .execute()
        logger.info(f"Contribution {calculation.contribution_id}: removed allocations for {stale}")

    return len(rows)
