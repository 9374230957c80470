"""
Severity Routing
================
Per-team, per-severity routing policy and responder selection.

Level 0 goes to the current on-call user, then the routing row's static
users, then the team's primary contacts. Level k >= 1 goes to the k-th
escalation chain entry, then the on-call backup, then the escalation
contacts. When every source is empty a RoutingGapError is raised; the alert
is never silently dropped.
"""

from sqlalchemy.orm import Session
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from alerting_core.errors import ConfigurationError, RoutingGapError
from alerting_core.escalation.config import EscalationPolicy
from alerting_core.escalation.oncall import OnCallResolver
from alerting_core.models import (
    Alert, AlertAssignment, AlertSeverity, AlertStatus, SeverityRouting
)

logger = logging.getLogger(__name__)


@dataclass
class RoutingPolicy:
    team_id: str
    severity: str
    assigned_users: List[str] = field(default_factory=list)
    assigned_channels: List[str] = field(default_factory=list)
    initial_delay_minutes: int = 0
    escalation_interval_minutes: int = 30
    max_escalation_level: int = 3
    business_hours_only: bool = False
    weekend_escalation: bool = True
    auto_acknowledge_minutes: Optional[int] = None
    auto_resolve_minutes: Optional[int] = None

    @classmethod
    def from_row(cls, row: SeverityRouting) -> "RoutingPolicy":
        return cls(
            team_id=row.team_id,
            severity=row.severity.value,
            assigned_users=list(row.assigned_users or []),
            assigned_channels=list(row.assigned_channels or []),
            initial_delay_minutes=row.initial_delay_minutes,
            escalation_interval_minutes=row.escalation_interval_minutes,
            max_escalation_level=row.max_escalation_level,
            business_hours_only=row.business_hours_only,
            weekend_escalation=row.weekend_escalation,
            auto_acknowledge_minutes=row.auto_acknowledge_minutes,
            auto_resolve_minutes=row.auto_resolve_minutes,
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class Responder:
    user_id: str
    source: str  # on_call, routing, primary_contact, escalation_chain, on_call_backup, escalation_contact


def escalation_paused(routing: RoutingPolicy, policy: EscalationPolicy, now: datetime) -> bool:
    """True outside business hours for business-hours-only routing (weekends exempt with weekend_escalation)"""
    if not routing.business_hours_only:
        return False
    hours = policy.business_hours
    if hours.is_business_hours(now):
        return False
    if hours.is_weekend(now) and routing.weekend_escalation:
        return False
    return True


def level_due_at(
    alert: Alert,
    current_level: int,
    routing: RoutingPolicy,
    last_escalated_at: Optional[datetime] = None,
) -> Optional[datetime]:
    """When the next level becomes due, or None once the maximum level is reached"""
    if current_level < 0:
        return alert.created_at + timedelta(minutes=routing.initial_delay_minutes)
    if current_level >= routing.max_escalation_level:
        return None
    last = last_escalated_at or alert.created_at
    return last + timedelta(minutes=routing.escalation_interval_minutes)


class SeverityRouter:
    """Routing lookups for one database session"""

    def __init__(self, db: Session):
        self.db = db
        self.on_call = OnCallResolver(db)

    def resolve_routing(self, team_id: str, severity: str) -> RoutingPolicy:
        """Lowest-priority-number enabled row for the team and severity"""
        severity = AlertSeverity(severity)
        row = self.db.query(SeverityRouting).filter(
            SeverityRouting.team_id == team_id,
            SeverityRouting.severity == severity,
            SeverityRouting.enabled.is_(True),
        ).order_by(SeverityRouting.priority.asc(), SeverityRouting.id.asc()).first()

        if row is None:
            raise ConfigurationError(f"No enabled severity routing for team {team_id} severity {severity.value}")
        if row.escalation_interval_minutes <= 0 or row.max_escalation_level < 0 or row.initial_delay_minutes < 0:
            raise ConfigurationError(f"Invalid timing on severity routing {row.id}")
        return RoutingPolicy.from_row(row)

    def select_responder(
        self,
        team_id: str,
        severity: str,
        level: int,
        routing: RoutingPolicy,
        policy: EscalationPolicy,
        now: Optional[datetime] = None,
    ) -> Responder:
        now = now or datetime.now(timezone.utc)
        severity = getattr(severity, "value", severity)
        on_call = self.on_call.current_on_call(team_id, severity, now)

        if level <= 0:
            if on_call is not None:
                return Responder(on_call.user_id, "on_call")
            if routing.assigned_users:
                logger.info(f"[ROUTING] Falling back to static routing users for {team_id}/{severity}")
                return Responder(routing.assigned_users[0], "routing")
            if policy.primary_contacts:
                logger.warning(f"[ROUTING] Falling back to team catch-all contact for {team_id}/{severity}")
                return Responder(policy.primary_contacts[0], "primary_contact")
        else:
            target = policy.chain_target(severity, level)
            if target:
                return Responder(target, "escalation_chain")
            if on_call is not None and on_call.backup_user_id:
                return Responder(on_call.backup_user_id, "on_call_backup")
            if policy.escalation_contacts:
                contacts = policy.escalation_contacts
                return Responder(contacts[min(level, len(contacts)) - 1], "escalation_contact")
            if routing.assigned_users:
                # Level 0 took the first routing user; later levels walk down the list
                users = routing.assigned_users
                return Responder(users[min(level, len(users) - 1)], "routing")

        raise RoutingGapError(team_id, severity, level)

    def should_escalate(
        self,
        alert: Alert,
        current_level: int,
        routing: RoutingPolicy,
        policy: EscalationPolicy,
        now: Optional[datetime] = None,
        last_escalated_at: Optional[datetime] = None,
    ) -> bool:
        """Whether the next level is due now for an unacknowledged alert"""
        now = now or datetime.now(timezone.utc)
        if alert.status != AlertStatus.ACTIVE or alert.acknowledged_at is not None:
            return False
        due = level_due_at(alert, current_level, routing, last_escalated_at)
        if due is None or now < due:
            return False
        return not escalation_paused(routing, policy, now)


def routing_statistics(db: Session, team_id: str, hours: int = 24, now: Optional[datetime] = None) -> Dict:
    """Assignment counts by reason and by alert severity over the trailing window"""
    now = now or datetime.now(timezone.utc)
    rows = db.query(AlertAssignment, Alert).join(
        Alert, Alert.id == AlertAssignment.alert_id
    ).filter(
        Alert.team_id == team_id,
        AlertAssignment.created_at >= now - timedelta(hours=hours),
    ).all()

    by_reason: Dict[str, int] = {}
    by_severity: Dict[str, int] = {}
    acknowledged = 0
    for assignment, alert in rows:
        reason = assignment.assignment_reason.value
        by_reason[reason] = by_reason.get(reason, 0) + 1
        by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1
        if assignment.acknowledged_at is not None:
            acknowledged += 1

    return {
        "total_assignments": len(rows),
        "acknowledged": acknowledged,
        "by_reason": by_reason,
        "by_severity": by_severity,
        "window_hours": hours,
    }
