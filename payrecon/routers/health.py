# payrecon/routers/health.py

import logging
from fastapi import APIRouter

from payrecon.config import get_settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "payrecon-api",
    }


@router.get("/ready")
async def readiness_check():
    """Readiness check: required configuration is present."""
    settings = get_settings()
    checks = {
        "database": "ok" if settings.supabase_url and settings.supabase_service_role_key else "missing",
        "stripe_webhooks": "ok" if settings.stripe_webhook_secret else "disabled",
    }
    ready = checks["database"] == "ok"
    if not ready:
        logger.warning("Not ready: %s", checks)

    return {
        "status": "ready" if ready else "not_ready",
        "checks": checks,
    }
