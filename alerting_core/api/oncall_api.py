"""
On-Call & Routing API
Who is on call for a team right now, and the routing policy per severity.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from alerting_core.api.dependencies import to_http_exception
from alerting_core.auth import Principal, TeamRole, require_team_role
from alerting_core.database import get_db
from alerting_core.errors import AlertingError
from alerting_core.escalation.oncall import OnCallResolver
from alerting_core.escalation.routing import SeverityRouter, routing_statistics
from alerting_core.models import AlertSeverity

router = APIRouter(prefix="/api/oncall", tags=["On-Call"])


@router.get("/{team_id}")
async def get_current_on_call(
    team_id: str,
    severity: AlertSeverity = Query(AlertSeverity.MEDIUM),
    principal: Principal = Depends(require_team_role(TeamRole.VIEWER)),
    db: Session = Depends(get_db),
):
    """Current on-call responder; on_call is null when no entry covers now"""
    result = OnCallResolver(db).current_on_call(team_id, severity.value)
    return {
        "team_id": team_id,
        "severity": severity.value,
        "on_call": result.to_dict() if result else None,
    }


@router.get("/{team_id}/routing/{severity}")
async def get_routing_policy(
    team_id: str,
    severity: AlertSeverity,
    principal: Principal = Depends(require_team_role(TeamRole.VIEWER)),
    db: Session = Depends(get_db),
):
    try:
        return SeverityRouter(db).resolve_routing(team_id, severity.value).to_dict()
    except AlertingError as e:
        raise to_http_exception(e)


@router.get("/{team_id}/stats")
async def get_routing_stats(
    team_id: str,
    hours: int = Query(24, ge=1, le=24 * 30),
    principal: Principal = Depends(require_team_role(TeamRole.VIEWER)),
    db: Session = Depends(get_db),
):
    """Assignments by reason and severity over the trailing window"""
    return routing_statistics(db, team_id, hours=hours)
