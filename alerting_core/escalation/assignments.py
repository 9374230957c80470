"""
Assignment Tracker
Records who an alert was handed to, the severity-derived response expectation,
and the observed acknowledgement latency.
"""

from sqlalchemy.orm import Session, sessionmaker
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from alerting_core import constants
from alerting_core.database import get_db_context
from alerting_core.errors import AlertNotFoundError, InvalidTransitionError
from alerting_core.metrics import AUDIT_LOG_FAILURES, increment_counter
from alerting_core.models import (
    Alert, AlertAssignment, AlertHistory, AlertStatus, AssignmentReason,
    EscalationState, EscalationStatus
)

logger = logging.getLogger(__name__)


def expected_response_minutes(severity) -> int:
    severity = getattr(severity, "value", severity)
    return constants.EXPECTED_RESPONSE_MINUTES.get(severity, constants.DEFAULT_EXPECTED_RESPONSE_MINUTES)


@dataclass
class HistoryEvent:
    alert_id: str
    event_type: str
    description: str
    performed_by: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


def record_history(
    events: List[HistoryEvent],
    session_factory: Optional[sessionmaker] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Append audit events in their own transaction; failures are logged, never raised"""
    if not events:
        return True
    try:
        with get_db_context(session_factory) as db:
            for event in events:
                db.add(AlertHistory(
                    alert_id=event.alert_id,
                    event_type=event.event_type,
                    description=event.description,
                    performed_by=event.performed_by,
                    details=event.details,
                    created_at=now or datetime.now(timezone.utc),
                ))
        return True
    except Exception:
        increment_counter(AUDIT_LOG_FAILURES, {"log": "alert_history"}, len(events))
        logger.error(
            f"[ESCALATION] Failed to write {len(events)} alert history event(s) "
            f"for alert {events[0].alert_id}",
            exc_info=True,
        )
        return False


class AssignmentTracker:
    """Assignment records for one database session"""

    def __init__(self, db: Session):
        self.db = db

    def _alert(self, alert_id: str) -> Alert:
        alert = self.db.get(Alert, alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def assign(
        self,
        alert_id: str,
        assignee: str,
        assigned_by: Optional[str] = None,
        reason: AssignmentReason = AssignmentReason.MANUAL,
        level: int = 0,
        now: Optional[datetime] = None,
    ) -> AlertAssignment:
        now = now or datetime.now(timezone.utc)
        alert = self._alert(alert_id)
        if alert.status == AlertStatus.RESOLVED:
            raise InvalidTransitionError(f"Alert {alert_id} is resolved and cannot be reassigned")

        assignment = AlertAssignment(
            alert_id=alert_id,
            assigned_to=assignee,
            assigned_by=assigned_by,
            assignment_reason=AssignmentReason(reason),
            assignment_level=level,
            expected_response_time=expected_response_minutes(alert.severity),
            created_at=now,
        )
        self.db.add(assignment)
        self.db.flush()

        logger.info(
            f"[ESCALATION] Alert {alert_id} assigned to {assignee} "
            f"(level={level}, reason={assignment.assignment_reason.value}, "
            f"expect={assignment.expected_response_time}m)"
        )
        return assignment

    def assignments_for(self, alert_id: str) -> List[AlertAssignment]:
        return self.db.query(AlertAssignment).filter(
            AlertAssignment.alert_id == alert_id
        ).order_by(
            AlertAssignment.created_at.asc(),
            AlertAssignment.assignment_level.asc(),
        ).all()

    def current_responder(self, alert_id: str) -> Optional[AlertAssignment]:
        """First acknowledging assignment if any, else the latest unacknowledged one"""
        assignments = self.assignments_for(alert_id)
        acknowledged = [a for a in assignments if a.acknowledged_at is not None]
        if acknowledged:
            return min(acknowledged, key=lambda a: a.acknowledged_at)
        return assignments[-1] if assignments else None

    def acknowledge(self, alert_id: str, user_id: str, now: Optional[datetime] = None) -> Optional[AlertAssignment]:
        """
        Acknowledge an alert and halt its escalation.

        Stamps the acknowledging user's open assignment (or the latest open one),
        marks the alert acknowledged and moves the escalation state to
        acknowledged in the same transaction. Acknowledging twice is a no-op.
        """
        now = now or datetime.now(timezone.utc)
        alert = self._alert(alert_id)

        if alert.status == AlertStatus.RESOLVED:
            raise InvalidTransitionError(f"Alert {alert_id} is already resolved")
        if alert.status == AlertStatus.ACKNOWLEDGED:
            return self.current_responder(alert_id)

        open_assignments = [a for a in self.assignments_for(alert_id) if a.acknowledged_at is None]
        own = [a for a in open_assignments if a.assigned_to == user_id]
        assignment = (own or open_assignments or [None])[-1]

        if assignment is not None:
            assignment.acknowledged_at = now
            assignment.response_time_minutes = max(0, int((now - assignment.created_at).total_seconds() // 60))

        alert.status = AlertStatus.ACKNOWLEDGED
        alert.acknowledged_at = now
        alert.acknowledged_by = user_id

        state = self.db.query(EscalationState).filter(EscalationState.alert_id == alert_id).one_or_none()
        if state is not None and state.status not in (EscalationStatus.RESOLVED, EscalationStatus.ACKNOWLEDGED):
            state.status = EscalationStatus.ACKNOWLEDGED
            state.next_escalation_at = None

        self.db.flush()
        logger.info(f"[ESCALATION] Alert {alert_id} acknowledged by {user_id}")
        return assignment
