from typing import List, Dict, Any, Optional, Generic, TypeVar
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal

from .incentive_types import (
    Author,
    Contribution,
    DistributionMethod,
    IncentivePolicy,
    PositionPercentages,
    PublicationType,
    RolePercentages,
)

T = TypeVar('T')

# =============================================================================
# API ENVELOPE
# =============================================================================

class ApiMeta(BaseModel):
    version: int = 1
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    currency: Optional[str] = None

class ApiError(BaseModel):
    code: str
    message: str
    target: Optional[str] = None # Field name or entity ID
    details: Optional[Any] = None

class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    meta: ApiMeta = Field(default_factory=ApiMeta)
    errors: Optional[List[ApiError]] = None

# =============================================================================
# INCENTIVE REQUESTS
# =============================================================================

class ResolvePolicyRequest(BaseModel):
    publication_type: PublicationType
    reference_date: date
    # Inline candidates; when omitted the stored policies are used
    policies: Optional[List[IncentivePolicy]] = None

class BaseAmountRequest(BaseModel):
    contribution: Contribution
    policy: IncentivePolicy

class DistributeRequest(BaseModel):
    total_amount: Decimal = Field(..., ge=0)
    total_points: Decimal = Field(default=Decimal("0"), ge=0)
    authors: List[Author]
    distribution_method: DistributionMethod
    role_percentages: Optional[RolePercentages] = None
    position_percentages: Optional[PositionPercentages] = None

class CalculateRequest(BaseModel):
    contribution: Contribution
    reference_date: date
    policies: Optional[List[IncentivePolicy]] = None

class ExportRequest(BaseModel):
    calculations: List[CalculateRequest] = Field(..., min_length=1)

# =============================================================================
# POLICY REQUESTS
# =============================================================================

class PolicyValidationReport(BaseModel):
    valid: bool
    errors: List[ApiError] = []
    warnings: List[str] = []

class PolicyListResponse(BaseModel):
    publication_type: Optional[PublicationType] = None
    policies: List[IncentivePolicy]
    count: int
    summary: Dict[str, Any] = {}
