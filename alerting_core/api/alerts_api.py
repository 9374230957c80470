"""
Alert Lifecycle API
Process stored alerts through the decision pipeline, acknowledge them and
read their assignment and suppression history.
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker
from typing import Dict, List, Optional
from datetime import datetime, timezone
import logging

from alerting_core.api.dependencies import get_redis_client, get_session_factory, to_http_exception
from alerting_core.auth import (
    MembershipResolver, Principal, TeamRole, ensure_team_role,
    get_current_user, get_membership_resolver
)
from alerting_core.database import get_db, get_db_context
from alerting_core.errors import AlertNotFoundError, AlertingError
from alerting_core.escalation.assignments import AssignmentTracker, HistoryEvent, record_history
from alerting_core.models import Alert, AlertAssignment, SuppressionLog
from alerting_core.pipeline import AlertProcessor
from alerting_core.rate_limiting import PROCESS_RATE_LIMIT, limiter
from alerting_core.resilience.retry import retry_on_conflict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


# ============================================================================
# Models
# ============================================================================

class AssignmentResponse(BaseModel):
    id: str
    alert_id: str
    assigned_to: str
    assigned_by: Optional[str] = None
    assignment_reason: str
    assignment_level: int
    expected_response_time: int
    acknowledged_at: Optional[datetime] = None
    response_time_minutes: Optional[int] = None
    created_at: datetime


class SuppressionLogResponse(BaseModel):
    id: str
    alert_id: str
    suppressed: bool
    reason: str
    suppression_rule_id: Optional[str] = None
    maintenance_window_id: Optional[str] = None
    suppress_until: Optional[datetime] = None
    metadata: Dict = {}
    created_at: datetime


def _assignment_response(assignment: AlertAssignment) -> AssignmentResponse:
    return AssignmentResponse(
        id=assignment.id,
        alert_id=assignment.alert_id,
        assigned_to=assignment.assigned_to,
        assigned_by=assignment.assigned_by,
        assignment_reason=assignment.assignment_reason.value,
        assignment_level=assignment.assignment_level,
        expected_response_time=assignment.expected_response_time,
        acknowledged_at=assignment.acknowledged_at,
        response_time_minutes=assignment.response_time_minutes,
        created_at=assignment.created_at,
    )


def _load_alert(db: Session, alert_id: str) -> Alert:
    alert = db.get(Alert, alert_id)
    if alert is None:
        raise to_http_exception(AlertNotFoundError(alert_id))
    return alert


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/{alert_id}/process")
@limiter.limit(PROCESS_RATE_LIMIT)
async def process_alert(
    request: Request,
    alert_id: str,
    principal: Principal = Depends(get_current_user),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    session_factory: sessionmaker = Depends(get_session_factory),
    redis_client=Depends(get_redis_client),
):
    """Run suppression, grouping, routing and assignment for one alert"""
    with get_db_context(session_factory) as db:
        team_id = _load_alert(db, alert_id).team_id
    ensure_team_role(principal, resolver, team_id, TeamRole.MEMBER)

    try:
        result = AlertProcessor(session_factory, redis_client).process(alert_id)
    except AlertingError as e:
        raise to_http_exception(e)
    return result.to_dict()


@router.post("/{alert_id}/acknowledge", response_model=Optional[AssignmentResponse])
async def acknowledge_alert(
    alert_id: str,
    principal: Principal = Depends(get_current_user),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """Acknowledge an alert as the calling user; halts further escalation"""
    now = datetime.now(timezone.utc)

    @retry_on_conflict("acknowledge")
    def acknowledge():
        with get_db_context(session_factory) as db:
            alert = _load_alert(db, alert_id)
            ensure_team_role(principal, resolver, alert.team_id, TeamRole.MEMBER)
            assignment = AssignmentTracker(db).acknowledge(alert_id, principal.user_id, now)
            return _assignment_response(assignment) if assignment is not None else None

    try:
        response = acknowledge()
    except AlertingError as e:
        raise to_http_exception(e)

    record_history([HistoryEvent(
        alert_id, "acknowledged", f"Acknowledged by {principal.user_id}", principal.user_id,
        {"response_time_minutes": response.response_time_minutes if response else None},
    )], session_factory, now)
    return response


@router.get("/{alert_id}/assignments")
async def get_assignments(
    alert_id: str,
    principal: Principal = Depends(get_current_user),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    db: Session = Depends(get_db),
):
    """Assignment history and the current responder"""
    alert = _load_alert(db, alert_id)
    ensure_team_role(principal, resolver, alert.team_id, TeamRole.VIEWER)

    tracker = AssignmentTracker(db)
    current = tracker.current_responder(alert_id)
    return {
        "alert_id": alert_id,
        "status": alert.status.value,
        "current_responder": current.assigned_to if current else None,
        "assignments": [_assignment_response(a) for a in tracker.assignments_for(alert_id)],
    }


@router.get("/{alert_id}/suppression-log", response_model=List[SuppressionLogResponse])
async def get_suppression_log(
    alert_id: str,
    principal: Principal = Depends(get_current_user),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    db: Session = Depends(get_db),
):
    """Suppression decisions recorded for an alert, oldest first"""
    alert = _load_alert(db, alert_id)
    ensure_team_role(principal, resolver, alert.team_id, TeamRole.VIEWER)

    entries = db.query(SuppressionLog).filter(
        SuppressionLog.alert_id == alert_id
    ).order_by(SuppressionLog.created_at.asc()).all()

    return [
        SuppressionLogResponse(
            id=e.id,
            alert_id=e.alert_id,
            suppressed=e.suppressed,
            reason=e.reason,
            suppression_rule_id=e.suppression_rule_id,
            maintenance_window_id=e.maintenance_window_id,
            suppress_until=e.suppress_until,
            metadata=e.details or {},
            created_at=e.created_at,
        )
        for e in entries
    ]
