"""
Incentive Engine Errors

Failure taxonomy shared by the resolver, the base amount calculator and the
distribution engine. Non-fatal errors let the approval workflow proceed with a
null allocation flagged for manual follow-up; fatal errors must block it.
"""

from typing import Any, Dict, Optional


class IncentiveError(Exception):
    """Base class for every incentive engine failure."""

    code: str = "INCENTIVE_ERROR"
    fatal: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "fatal": self.fatal,
            "details": self.details,
        }


# =============================================================================
# RESOLUTION / CALCULATION (non-fatal)
# =============================================================================

class PolicyNotFound(IncentiveError):
    """No active policy covers the publication type on the reference date."""
    code = "POLICY_NOT_FOUND"


class IncompleteMetadata(IncentiveError):
    """The contribution lacks the metadata the policy lookup needs."""
    code = "INCOMPLETE_METADATA"


class NoMatchingRange(IncentiveError):
    """A metric value (or quartile) falls outside every configured band."""
    code = "NO_MATCHING_RANGE"


# =============================================================================
# DISTRIBUTION (fatal)
# =============================================================================

class InvalidAuthorSet(IncentiveError):
    """Malformed author list; rejected before any arithmetic runs."""
    code = "INVALID_AUTHOR_SET"
    fatal = True


# =============================================================================
# POLICY AUTHORING (fatal at the administrative boundary)
# =============================================================================

class PolicyValidationError(IncentiveError):
    code = "POLICY_INVALID"
    fatal = True


class OverlappingPolicyWindow(PolicyValidationError):
    code = "POLICY_WINDOW_OVERLAP"


class InvalidPercentageTable(PolicyValidationError):
    code = "POLICY_PERCENTAGES_INVALID"


class InvalidRangeTable(PolicyValidationError):
    code = "POLICY_RANGES_INVALID"
