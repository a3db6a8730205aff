"""Service-level routes."""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter

from chat_backend.config import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Status, timestamp in ISO8601 format, and database/redis status
    """
    health_status = {
        "status": "healthy",
        "service": get_settings().service_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    # Check database health
    try:
        from chat_backend.database import health_check as db_health_check
        db_healthy = await db_health_check()
        health_status["database"] = "healthy" if db_healthy else "unhealthy"
    except Exception as e:
        logger.warning("health_database_check_failed", error=str(e))
        health_status["database"] = "unavailable"

    # Redis is optional; rate limiting fails open without it
    try:
        from chat_backend.services.redis_service import get_redis
        redis_client = await get_redis()
        health_status["redis"] = "healthy" if redis_client else "unavailable"
    except Exception as e:
        logger.warning("health_redis_check_failed", error=str(e))
        health_status["redis"] = "unavailable"

    if health_status["database"] != "healthy":
        health_status["status"] = "degraded"

    return health_status
