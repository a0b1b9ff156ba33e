"""
API Routes for Service Health

Provides liveness and readiness information for load balancers.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import logging

from csos import __version__
from csos.common.config import get_settings
from csos.utils.error_handling import ConfigurationError

# Create router
router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """
    Simple health check endpoint for load balancers.

    Returns:
        Simple OK status
    """
    return JSONResponse(content={"ok": True, "status": "healthy", "version": __version__})


@router.get("/ready")
async def readiness_check():
    """Check if the service is configured to handle requests."""
    try:
        settings = get_settings()
    except ConfigurationError as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"ok": False, "error": str(e)})

    return JSONResponse(content={
        "ok": True,
        "rules_storage": settings.rules_storage,
        "rules_bucket": settings.rules_bucket,
        "version": __version__,
    })
