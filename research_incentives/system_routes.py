"""
System Routes - Health

Health check for deployment probes and monitoring.
"""

import logging
from datetime import datetime
from typing import Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from . import __version__
from .settings import get_environment, get_setting
from .supabase_client import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/system", tags=["system"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check(supabase=Depends(get_supabase)):
    """
    Basic health check endpoint.
    The engine itself needs no storage; an unconfigured database reports "unavailable".
    """
    services = {"engine": "healthy"}

    if supabase:
        try:
            supabase.table(get_setting("POLICY_TABLE")).select("id").limit(1).execute()
            services["database"] = "healthy"
        except Exception as e:
            logger.warning(f"Health check database probe failed: {e}")
            services["database"] = f"error: {str(e)[:50]}"
    else:
        services["database"] = "unavailable"

    status = "healthy" if all(v == "healthy" for v in services.values()) else "degraded"

    return HealthResponse(
        status=status,
        timestamp=datetime.utcnow().isoformat(),
        version=__version__,
        environment=get_environment(),
        services=services
    )
