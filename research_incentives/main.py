from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
import logging

from . import __version__
from .incentive_routes import router as incentive_router
from .policy_routes import router as policy_router
from .settings import get_environment, get_setting
from .supabase_client import is_configured
from .system_routes import router as system_router

# Configure logging
logging.basicConfig(
    level=str(get_setting("LOG_LEVEL")).upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Research Incentive API",
    description="Incentive policy resolution, base amount calculation and author distribution",
    version=__version__
)

allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

# Get additional allowed origins from environment
extra_origins = os.environ.get("CORS_ORIGINS", "")
if extra_origins:
    allowed_origins.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    port = os.environ.get("PORT", "8000")
    logger.info(f"Research Incentive API starting on port {port} ({get_environment()})")
    logger.info(f"Policy storage configured: {is_configured()}")
    logger.info(f"Currency: {get_setting('CURRENCY_CODE')}, minor unit {get_setting('CURRENCY_MINOR_UNIT')}")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Research Incentive API",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/system/health"
    }


# Register Routers
app.include_router(incentive_router)
app.include_router(policy_router)
app.include_router(system_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
