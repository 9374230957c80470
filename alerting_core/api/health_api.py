"""
Health API Router - Health check endpoints for monitoring service status
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session
from datetime import datetime, timezone
import os

from alerting_core.database import get_db
from alerting_core.models import Alert, EscalationState, EscalationStatus

router = APIRouter(tags=["Health"])


# These will be injected from main.py during router registration
_redis_client = None
_scheduler = None


def configure(redis_client, scheduler):
    """Configure router with shared dependencies from main.py"""
    global _redis_client, _scheduler
    _redis_client = redis_client
    _scheduler = scheduler


@router.get("/")
async def root():
    """Root endpoint - service info"""
    return {
        "status": "operational",
        "service": "Alerting Core",
        "features": [
            "Suppression decisions (maintenance, duplicates, rate limits, custom rules)",
            "Alert grouping",
            "Severity routing and on-call resolution",
            "Assignment tracking and escalation",
        ]
    }


@router.get("/health")
async def health(db: Session = Depends(get_db)):
    """Comprehensive health check"""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {}
    }

    # Check Redis
    try:
        if _redis_client:
            _redis_client.ping()
            health_status["components"]["redis"] = "healthy"
        else:
            health_status["components"]["redis"] = "not configured"
    except Exception as e:
        health_status["components"]["redis"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    # Check Database
    try:
        db.execute(text("SELECT 1"))
        health_status["components"]["database"] = "healthy"
    except Exception as e:
        health_status["components"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    # Check Scheduler
    if _scheduler is not None:
        sweep_scheduled = _scheduler.get_job("escalation_sweep") is not None
        health_status["components"]["escalation_sweep"] = "healthy" if sweep_scheduled else "not scheduled"
    else:
        health_status["components"]["escalation_sweep"] = "not configured"

    health_status["components"]["authentication"] = "healthy" if os.getenv("JWT_SECRET_KEY") else "warning: using temporary secret"

    return health_status


@router.get("/health/database")
async def health_database(db: Session = Depends(get_db)):
    """Detailed database health check"""
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "connection": "active",
            "statistics": {
                "alerts": db.query(Alert).count(),
                "open_escalations": db.query(EscalationState).filter(
                    EscalationState.status.in_([EscalationStatus.PENDING, EscalationStatus.ACTIVE])
                ).count(),
            }
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
