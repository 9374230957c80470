"""
Suppression API
Dry-run suppression decisions, maintenance window scheduling and suppression
statistics per team.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import Dict, List, Optional
from datetime import datetime

from alerting_core.alerts.maintenance import active_windows, create_maintenance_window
from alerting_core.alerts.suppression import SuppressionEngine, suppression_stats
from alerting_core.api.dependencies import to_http_exception
from alerting_core.auth import (
    MembershipResolver, Principal, TeamRole, ensure_team_role,
    get_current_user, get_membership_resolver, require_team_role
)
from alerting_core.database import get_db
from alerting_core.errors import AlertingError
from alerting_core.models import AlertSeverity, MaintenanceWindow
from alerting_core.rate_limiting import ADMIN_RATE_LIMIT, limiter

router = APIRouter(prefix="/api/suppression", tags=["Suppression"])


# ============================================================================
# Models
# ============================================================================

class EvaluateRequest(BaseModel):
    """Alert facts for a dry-run suppression decision"""
    alert_id: str
    rule_id: Optional[str] = None
    metric_name: str
    severity: AlertSeverity
    team_id: str
    dimensions: Dict[str, str] = {}


class MaintenanceWindowCreate(BaseModel):
    name: str
    team_id: str
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    affected_systems: List[str] = []
    affected_severities: List[str] = []
    suppress_all: bool = False
    priority: int = 0
    timezone: str = "UTC"
    recurrence: Optional[Dict] = Field(default=None, description='{"frequency": "daily"|"weekly", "interval": 1, "until": ISO-8601}')


class MaintenanceWindowResponse(BaseModel):
    id: str
    name: str
    team_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    affected_systems: List[str] = []
    affected_severities: List[str] = []
    suppress_all: bool
    priority: int
    recurring: bool
    recurrence_config: Dict = {}


def _window_response(window: MaintenanceWindow) -> MaintenanceWindowResponse:
    return MaintenanceWindowResponse(
        id=window.id,
        name=window.name,
        team_id=window.team_id,
        start_time=window.start_time,
        end_time=window.end_time,
        affected_systems=window.affected_systems or [],
        affected_severities=window.affected_severities or [],
        suppress_all=window.suppress_all,
        priority=window.priority,
        recurring=window.recurring,
        recurrence_config=window.recurrence_config or {},
    )


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/evaluate")
async def evaluate_suppression(
    payload: EvaluateRequest,
    principal: Principal = Depends(get_current_user),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    db: Session = Depends(get_db),
):
    """What the engine would decide for this alert right now; nothing is recorded"""
    ensure_team_role(principal, resolver, payload.team_id, TeamRole.MEMBER)
    try:
        decision = SuppressionEngine(db).evaluate(
            alert_id=payload.alert_id,
            rule_id=payload.rule_id,
            metric_name=payload.metric_name,
            severity=payload.severity,
            team_id=payload.team_id,
            dimensions=payload.dimensions,
        )
    except AlertingError as e:
        raise to_http_exception(e)
    return decision.to_dict()


@router.post("/maintenance", response_model=MaintenanceWindowResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(ADMIN_RATE_LIMIT)
async def schedule_maintenance(
    request: Request,
    payload: MaintenanceWindowCreate,
    principal: Principal = Depends(get_current_user),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    db: Session = Depends(get_db),
):
    """Schedule a maintenance window for a team (team admins only)"""
    ensure_team_role(principal, resolver, payload.team_id, TeamRole.ADMIN)
    try:
        window = create_maintenance_window(
            db,
            payload.name,
            payload.start_time,
            payload.end_time,
            affected_systems=payload.affected_systems,
            affected_severities=payload.affected_severities,
            suppress_all=payload.suppress_all,
            team_id=payload.team_id,
            priority=payload.priority,
            timezone_name=payload.timezone,
            recurrence=payload.recurrence,
            description=payload.description,
            created_by=principal.user_id,
        )
        db.commit()
    except AlertingError as e:
        db.rollback()
        raise to_http_exception(e)
    return _window_response(window)


@router.get("/maintenance/active", response_model=List[MaintenanceWindowResponse])
async def list_active_maintenance(
    team_id: str = Query(...),
    principal: Principal = Depends(require_team_role(TeamRole.VIEWER)),
    db: Session = Depends(get_db),
):
    """Maintenance windows active right now for the team (including global ones)"""
    return [_window_response(w) for w in active_windows(db, team_id)]


@router.get("/stats")
async def get_suppression_stats(
    team_id: str = Query(...),
    hours: int = Query(24, ge=1, le=24 * 30),
    principal: Principal = Depends(require_team_role(TeamRole.VIEWER)),
    db: Session = Depends(get_db),
):
    """Suppression decision counts by reason over the trailing window"""
    return suppression_stats(db, team_id=team_id, hours=hours)
