from fastapi import HTTPException
from typing import Any, List, Optional
from datetime import datetime

from .errors import IncentiveError, OverlappingPolicyWindow, PolicyNotFound
from .schemas import ApiResponse, ApiMeta, ApiError
from .settings import get_setting

def wrap_response(data: Any, errors: Optional[List[ApiError]] = None) -> ApiResponse:
    """Wraps data in the standardized API envelope."""
    return ApiResponse(
        data=data,
        meta=ApiMeta(
            timestamp=datetime.utcnow(),
            currency=get_setting("CURRENCY_CODE"),
        ),
        errors=errors
    )

def to_api_error(error: IncentiveError, target: Optional[str] = None) -> ApiError:
    return ApiError(code=error.code, message=error.message, target=target, details=error.details or None)

def status_code_for(error: IncentiveError) -> int:
    if isinstance(error, PolicyNotFound):
        return 404
    if isinstance(error, OverlappingPolicyWindow):
        return 409
    return 422

def raise_http_error(error: IncentiveError):
    """Maps an engine error to an HTTPException carrying the error envelope."""
    raise HTTPException(
        status_code=status_code_for(error),
        detail=error.to_dict()
    )

def require_storage(supabase):
    if supabase is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "STORAGE_UNAVAILABLE", "message": "Policy storage is not configured"}
        )
    return supabase
