"""
Health and Monitoring Router.

Public, unauthenticated endpoints for uptime checks and operators.

Endpoints Provided:
- `/healthcheck`: Lightweight liveness check.
- `/monitoring/ping`: Connectivity test.
- `/monitoring/detailed`: Component status (database, metrics). Reports
  "degraded" instead of failing when one component is unhealthy.
- `/monitoring/metrics`: Aggregated request and operation metrics.
"""

from fastapi import APIRouter, Query
from datetime import datetime
from typing import Dict, Any

from core.logging_config import get_logger
from core.performance import get_metrics_collector
from core.database import get_database_info

logger = get_logger("api.health")

SERVICE_NAME = "Pet Avatar Gallery API"
SERVICE_VERSION = "1.0.0"

health_router = APIRouter(tags=["Health & Monitoring"])
monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint (no authentication required)"""
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": SERVICE_VERSION,
        "service": SERVICE_NAME,
    }


@monitoring_router.get("/ping")
async def ping() -> Dict[str, str]:
    """Simple ping endpoint for connectivity testing"""
    return {
        "message": "pong",
        "timestamp": datetime.utcnow().isoformat(),
        "version": SERVICE_VERSION,
    }


@monitoring_router.get("/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """Detailed health check with component status"""
    logger.info("Detailed health check requested")

    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": SERVICE_VERSION,
        "service": SERVICE_NAME,
        "components": {},
    }

    db_info = await get_database_info()
    db_healthy = db_info.get("connection_healthy", False)
    health_status["components"]["database"] = {
        "status": "healthy" if db_healthy else "unhealthy",
        "info": db_info,
    }
    if not db_healthy:
        health_status["status"] = "degraded"

    try:
        stats = get_metrics_collector().get_stats(time_window_minutes=1)
        health_status["components"]["metrics"] = {
            "status": "healthy",
            "stats": {
                "requests_last_minute": stats["requests"]["total"],
                "avg_response_time_ms": stats["requests"]["avg_duration_ms"],
            },
        }
    except Exception as e:
        logger.warning(f"Metrics health check failed (non-critical): {e}")
        health_status["components"]["metrics"] = {
            "status": "unavailable",
            "error": str(e),
        }

    return health_status


@monitoring_router.get("/metrics")
async def get_metrics(time_window: int = Query(5, ge=1, le=1440)) -> Dict[str, Any]:
    """Get performance metrics (no authentication required for monitoring)"""
    stats = get_metrics_collector().get_stats(time_window_minutes=time_window)
    return {"metrics": stats, "timestamp": datetime.utcnow().isoformat()}
