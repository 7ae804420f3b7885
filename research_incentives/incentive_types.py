"""
Incentive Types and Schemas

Enums and Pydantic models for incentive policies, contributions, authors and
the results produced by the incentive engine. Inputs are frozen; money and
points are Decimal throughout.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator


ZERO = Decimal("0")
HUNDRED = Decimal("100")
MAX_RANKED_POSITIONS = 5


class PublicationType(str, Enum):
    """Kinds of research output that earn incentives."""
    RESEARCH_PAPER = "research_paper"
    BOOK = "book"
    BOOK_CHAPTER = "book_chapter"
    CONFERENCE_PAPER = "conference_paper"
    GRANT = "grant"
    IPR = "ipr"


class AuthorRole(str, Enum):
    FIRST = "first"
    CORRESPONDING = "corresponding"
    CO_AUTHOR = "co_author"


PRIMARY_ROLES = (AuthorRole.FIRST, AuthorRole.CORRESPONDING)


class DistributionMethod(str, Enum):
    """How the gross total is split across authors."""
    ROLE_BASED = "role_based"
    POSITION_BASED = "position_based"
    EQUAL = "equal"


class RangeMetric(str, Enum):
    """Continuous quality metrics usable for range lookups."""
    SJR = "sjr"
    NAAS_RATING = "naas_rating"


class CalculationStatus(str, Enum):
    COMPUTED = "computed"
    POLICY_NOT_FOUND = "policy_not_found"
    INCOMPLETE_METADATA = "incomplete_metadata"
    NO_MATCHING_RANGE = "no_matching_range"


def normalize_category(value: str) -> str:
    """Indexing categories compare case-insensitively ("Scopus" == "scopus")."""
    return str(value).strip().lower()


# =============================================================================
# POLICY TABLES
# =============================================================================

class Award(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal = Field(default=ZERO, ge=0)
    points: Decimal = Field(default=ZERO, ge=0)


class TierEntry(Award):
    tier: str = Field(..., min_length=1)


class RangeBand(Award):
    """Half-open band [min_value, max_value); max_value None is open-ended."""
    category: str = Field(..., min_length=1)
    metric: RangeMetric
    min_value: Decimal
    max_value: Optional[Decimal] = None

    @field_validator("category")
    @classmethod
    def normalize(cls, v):
        return normalize_category(v)

    def contains(self, value: Decimal) -> bool:
        if value < self.min_value:
            return False
        return self.max_value is None or value < self.max_value


class CategoryBonus(Award):
    """Additive award for one indexing category."""
    category: str = Field(..., min_length=1)

    @field_validator("category")
    @classmethod
    def normalize(cls, v):
        return normalize_category(v)


class ConditionalBonuses(BaseModel):
    """Flat money-only add-ons."""
    model_config = ConfigDict(frozen=True)

    international: Optional[Decimal] = Field(default=None, ge=0)
    per_consortium_org: Optional[Decimal] = Field(default=None, ge=0)
    best_paper_award: Optional[Decimal] = Field(default=None, ge=0)


class RolePercentages(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_author_pct: Decimal = Field(..., ge=0, le=100)
    corresponding_author_pct: Decimal = Field(..., ge=0, le=100)

    @property
    def co_author_pool_pct(self) -> Decimal:
        # Derived, never stored. A negative pool is rejected at authoring time.
        return max(ZERO, HUNDRED - self.first_author_pct - self.corresponding_author_pct)

    def for_role(self, role: AuthorRole) -> Decimal:
        if role == AuthorRole.FIRST:
            return self.first_author_pct
        if role == AuthorRole.CORRESPONDING:
            return self.corresponding_author_pct
        raise KeyError(role)


class PositionPercentages(BaseModel):
    """Percentages for ranks 1..5 (index 0 is rank 1). Rank 6+ earns nothing."""
    model_config = ConfigDict(frozen=True)

    percentages: Tuple[Decimal, ...] = Field(..., min_length=1, max_length=MAX_RANKED_POSITIONS)

    @field_validator("percentages")
    @classmethod
    def validate_non_negative(cls, v):
        if any(p < 0 for p in v):
            raise ValueError("Position percentages must be non-negative")
        return v

    def for_position(self, position: int) -> Decimal:
        if 1 <= position <= len(self.percentages):
            return self.percentages[position - 1]
        return ZERO


# =============================================================================
# POLICY
# =============================================================================

class IncentivePolicy(BaseModel):
    """One immutable version of an incentive policy."""
    model_config = ConfigDict(frozen=True)

    policy_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    policy_name: str = ""
    version: int = Field(default=1, ge=1)
    publication_type: PublicationType
    valid_from: date
    valid_to: Optional[date] = None
    is_active: bool = True

    distribution_method: DistributionMethod
    # Tables are tuples so a referenced version cannot be edited in place
    tier_table: Tuple[TierEntry, ...] = ()
    range_table: Tuple[RangeBand, ...] = ()
    category_bonus_table: Tuple[CategoryBonus, ...] = ()
    conditional_bonuses: ConditionalBonuses = Field(default_factory=ConditionalBonuses)
    flat_award: Optional[Award] = None

    role_percentages: Optional[RolePercentages] = None
    position_percentages: Optional[PositionPercentages] = None

    @field_validator("category_bonus_table", mode="before")
    @classmethod
    def category_bonus_mapping(cls, v: Any):
        """Accept the {category: award} authoring shape."""
        if not isinstance(v, dict):
            return v
        entries = []
        for category, award in v.items():
            if isinstance(award, BaseModel):
                award = award.model_dump()
            entries.append({**award, "category": category})
        return entries

    @model_validator(mode="after")
    def validate_distribution_tables(self):
        method = self.distribution_method
        if method == DistributionMethod.ROLE_BASED:
            if self.role_percentages is None:
                raise ValueError("role_based policies require role_percentages")
            if self.position_percentages is not None:
                raise ValueError("role_based policies cannot carry position_percentages")
        elif method == DistributionMethod.POSITION_BASED:
            if self.position_percentages is None:
                raise ValueError("position_based policies require position_percentages")
            if self.role_percentages is not None:
                raise ValueError("position_based policies cannot carry role_percentages")
        elif self.role_percentages is not None or self.position_percentages is not None:
            raise ValueError("equal policies carry no percentage table")
        return self

    def covers(self, on: date) -> bool:
        """True when `on` falls inside [valid_from, valid_to)."""
        if on < self.valid_from:
            return False
        return self.valid_to is None or on < self.valid_to

    def category_bonus(self, category: str) -> Optional[CategoryBonus]:
        key = normalize_category(category)
        for bonus in self.category_bonus_table:
            if bonus.category == key:
                return bonus
        return None


# =============================================================================
# CONTRIBUTION / AUTHORS
# =============================================================================

class Author(BaseModel):
    model_config = ConfigDict(frozen=True)

    author_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    roles: FrozenSet[AuthorRole] = frozenset()
    position: int
    is_internal: bool = True
    is_student: bool = False

    @field_serializer("roles")
    def serialize_roles(self, roles):
        return sorted(r.value for r in roles)

    def has_role(self, role: AuthorRole) -> bool:
        return role in self.roles


class Contribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    contribution_id: str = Field(..., min_length=1)
    publication_type: PublicationType
    title: Optional[str] = None

    quartile: Optional[str] = None
    sjr: Optional[Decimal] = Field(default=None, ge=0)
    naas_rating: Optional[Decimal] = Field(default=None, ge=0)
    indexing_categories: FrozenSet[str] = frozenset()

    is_international: bool = False
    number_of_consortium_orgs: int = Field(default=0, ge=0)
    has_best_paper_award: bool = False

    authors: List[Author] = Field(default_factory=list)

    @field_validator("indexing_categories")
    @classmethod
    def normalize_categories(cls, v):
        return frozenset(normalize_category(c) for c in v if str(c).strip())

    @field_serializer("indexing_categories")
    def serialize_categories(self, categories):
        return sorted(categories)

    def metric_value(self, metric: RangeMetric) -> Optional[Decimal]:
        if metric == RangeMetric.SJR:
            return self.sjr
        return self.naas_rating


# =============================================================================
# RESULTS
# =============================================================================

class AmountComponent(BaseModel):
    """One audited line of the gross amount computation."""
    source: str  # range | tier | flat | category_bonus | international | consortium | best_paper_award
    label: str
    amount: Decimal = ZERO
    points: Decimal = ZERO


class BaseAmount(BaseModel):
    total_amount: Decimal
    total_points: Decimal
    components: List[AmountComponent] = Field(default_factory=list)


class AuthorAllocation(BaseModel):
    author_id: str
    percentage: Decimal
    incentive_amount: Decimal
    points: Decimal
    forfeited_amount: Decimal = ZERO
    forfeited_points: Decimal = ZERO
    note: str = ""


class Forfeiture(BaseModel):
    """A share held by nobody (unassigned role, unfilled rank, unclaimed pool)."""
    reason: str
    percentage: Decimal
    amount: Decimal
    points: Decimal


class AllocationResult(BaseModel):
    distribution_method: DistributionMethod
    allocations: List[AuthorAllocation]

    total_computed: Decimal
    total_distributed: Decimal
    total_forfeited: Decimal

    total_points_computed: Decimal
    total_points_distributed: Decimal
    total_points_forfeited: Decimal

    forfeitures: List[Forfeiture] = Field(default_factory=list)
    rounding_residue: Decimal = ZERO

    def for_author(self, author_id: str) -> AuthorAllocation:
        for allocation in self.allocations:
            if allocation.author_id == author_id:
                return allocation
        raise KeyError(author_id)


class IncentiveCalculation(BaseModel):
    """Outcome of the full resolve -> compute -> distribute pipeline."""
    contribution_id: str
    status: CalculationStatus
    reference_date: date
    policy_id: Optional[str] = None
    policy_version: Optional[int] = None
    base_amount: Optional[BaseAmount] = None
    allocation: Optional[AllocationResult] = None
    issues: List[str] = Field(default_factory=list)

    @property
    def requires_manual_follow_up(self) -> bool:
        return self.status != CalculationStatus.COMPUTED
