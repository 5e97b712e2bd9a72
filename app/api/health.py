"""
Health check and readiness probe endpoints.
Provides liveness and readiness checks for orchestration and monitoring.
"""
import logging
from typing import Dict, Any
from fastapi import APIRouter, HTTPException, status, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.dependencies import get_db
from api.websocket_manager import ConnectionRegistry, get_connection_registry
from core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


def check_database(db: Session) -> Dict[str, Any]:
    """
    Check database connectivity.

    Args:
        db: Database session

    Returns:
        Status dict with healthy=True/False and details
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"healthy": True, "message": "Database connection OK"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"healthy": False, "message": f"Database connection failed: {str(e)}"}


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(registry: ConnectionRegistry = Depends(get_connection_registry)):
    """
    Liveness probe endpoint.

    Returns basic service status without checking dependencies.

    Example Response:
        {
            "status": "healthy",
            "service": "social-realtime-api",
            "websocket_connections": 3
        }
    """
    return {
        "status": "healthy",
        "service": settings.service_name,
        "websocket_connections": registry.connection_count()
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe endpoint.

    Returns 200 only if the database answers, 503 otherwise.

    Example Response:
        {
            "status": "ready",
            "checks": {
                "database": {"healthy": true, "message": "Database connection OK"}
            }
        }
    """
    checks = {"database": check_database(db)}

    if all(check["healthy"] for check in checks.values()):
        return {"status": "ready", "checks": checks}

    unhealthy_services = [name for name, check in checks.items() if not check["healthy"]]
    logger.warning(f"Readiness check failed for services: {', '.join(unhealthy_services)}")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"status": "not_ready", "checks": checks}
    )
