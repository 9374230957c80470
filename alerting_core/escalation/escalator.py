"""
Escalation State Machine
========================
Moves one alert's escalation cursor forward.

    pending --(initial delay)--> active L0 --(interval)--> active L1 ... --> exhausted
       any open state --(ack)--> acknowledged
       any open state --(auto-resolve timeout)--> resolved   (terminal)

Each call advances at most one level. The cursor row carries a version column,
so a concurrent acknowledgement and sweep cannot both win.
"""

from sqlalchemy.orm import Session
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging

from alerting_core.dispatch import DispatchRequest
from alerting_core.errors import RoutingGapError
from alerting_core.escalation.assignments import AssignmentTracker, HistoryEvent
from alerting_core.escalation.config import EscalationPolicy, load_policy
from alerting_core.escalation.routing import (
    RoutingPolicy, SeverityRouter, escalation_paused, level_due_at
)
from alerting_core.metrics import AUTO_TRANSITIONS, ESCALATIONS, ROUTING_GAPS, increment_counter
from alerting_core.models import (
    Alert, AlertStatus, AssignmentReason, EscalationState, EscalationStatus
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

OPEN_STATUSES = (EscalationStatus.PENDING, EscalationStatus.ACTIVE, EscalationStatus.EXHAUSTED)


@dataclass
class EscalationOutcome:
    alert_id: str
    action: str  # assigned, escalated, waiting, paused, routing_gap, acknowledged, resolved, auto_acknowledged, auto_resolved, skipped
    level: Optional[int] = None
    assignment_id: Optional[str] = None
    assignee: Optional[str] = None
    dispatch: Optional[DispatchRequest] = None
    events: List[HistoryEvent] = field(default_factory=list)
    routing_gap: Optional[RoutingGapError] = None


def _earliest(*candidates: Optional[datetime]) -> Optional[datetime]:
    present = [c for c in candidates if c is not None]
    return min(present) if present else None


class Escalator:
    """Escalation transitions for one database session"""

    def __init__(self, db: Session):
        self.db = db
        self.router = SeverityRouter(db)
        self.tracker = AssignmentTracker(db)

    def state_for(self, alert_id: str) -> Optional[EscalationState]:
        return self.db.query(EscalationState).filter(EscalationState.alert_id == alert_id).one_or_none()

    def open(self, alert: Alert, now: Optional[datetime] = None) -> EscalationOutcome:
        """Create the alert's escalation cursor and make the level 0 assignment if already due"""
        now = now or datetime.now(timezone.utc)
        if self.state_for(alert.id) is not None:
            return EscalationOutcome(alert.id, "skipped")

        routing = self.router.resolve_routing(alert.team_id, alert.severity)
        policy = load_policy(self.db, alert.team_id)

        state = EscalationState(
            alert_id=alert.id,
            team_id=alert.team_id,
            severity=alert.severity,
            level=-1,
            status=EscalationStatus.PENDING,
            created_at=now,
        )
        self.db.add(state)
        self.db.flush()
        return self.advance(state, alert, routing, policy, now)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    @staticmethod
    def _auto_resolve_at(alert: Alert, routing: RoutingPolicy, policy: EscalationPolicy) -> Optional[datetime]:
        minutes = policy.auto_resolve_minutes(alert.severity.value, routing)
        if minutes is None:
            return None
        return alert.created_at + timedelta(minutes=minutes)

    @staticmethod
    def _auto_acknowledge_at(alert: Alert, routing: RoutingPolicy) -> Optional[datetime]:
        if not routing.auto_acknowledge_minutes:
            return None
        return alert.created_at + timedelta(minutes=routing.auto_acknowledge_minutes)

    def _next_wakeup(self, state, alert, routing, policy, escalation_at=None) -> Optional[datetime]:
        if escalation_at is None:
            escalation_at = level_due_at(alert, state.level, routing, state.last_escalated_at)
        return _earliest(
            escalation_at,
            self._auto_resolve_at(alert, routing, policy),
            self._auto_acknowledge_at(alert, routing),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(
        self,
        state: EscalationState,
        alert: Alert,
        routing: RoutingPolicy,
        policy: EscalationPolicy,
        now: Optional[datetime] = None,
    ) -> EscalationOutcome:
        now = now or datetime.now(timezone.utc)

        if alert.status == AlertStatus.RESOLVED:
            state.status = EscalationStatus.RESOLVED
            state.next_escalation_at = None
            return EscalationOutcome(alert.id, "resolved", level=state.level)
        if alert.status == AlertStatus.ACKNOWLEDGED:
            state.status = EscalationStatus.ACKNOWLEDGED
            state.next_escalation_at = None
            return EscalationOutcome(alert.id, "acknowledged", level=state.level)

        # Whichever automatic timer expired first wins
        timers = [
            (at, kind) for at, kind in (
                (self._auto_resolve_at(alert, routing, policy), "resolve"),
                (self._auto_acknowledge_at(alert, routing), "acknowledge"),
            )
            if at is not None and now >= at
        ]
        if timers:
            _, kind = min(timers, key=lambda t: t[0])
            if kind == "resolve":
                return self._auto_resolve(state, alert, now)
            return self._auto_acknowledge(state, alert, now)

        due = level_due_at(alert, state.level, routing, state.last_escalated_at)
        if due is None or now < due:
            state.next_escalation_at = self._next_wakeup(state, alert, routing, policy, due)
            return EscalationOutcome(alert.id, "waiting", level=state.level)

        if escalation_paused(routing, policy, now):
            resume = policy.business_hours.next_start(now, weekend_open=routing.weekend_escalation)
            state.next_escalation_at = self._next_wakeup(state, alert, routing, policy, resume)
            logger.info(
                f"[ESCALATION] Alert {alert.id} paused outside business hours until {resume.isoformat()}"
            )
            return EscalationOutcome(alert.id, "paused", level=state.level)

        return self._fire(state, alert, routing, policy, now)

    def _fire(self, state, alert, routing: RoutingPolicy, policy: EscalationPolicy, now: datetime) -> EscalationOutcome:
        level = state.level + 1
        severity = alert.severity.value

        try:
            responder = self.router.select_responder(alert.team_id, severity, level, routing, policy, now)
        except RoutingGapError as gap:
            increment_counter(ROUTING_GAPS, {"severity": severity})
            logger.error(f"[ROUTING] {gap} (alert {alert.id}); retrying in {routing.escalation_interval_minutes}m")
            state.next_escalation_at = self._next_wakeup(
                state, alert, routing, policy,
                now + timedelta(minutes=routing.escalation_interval_minutes),
            )
            return EscalationOutcome(
                alert.id, "routing_gap", level=state.level, routing_gap=gap,
                events=[HistoryEvent(alert.id, "routing_gap", str(gap), SYSTEM_ACTOR, {"level": level})],
            )

        reason = AssignmentReason.AUTO_SEVERITY if level == 0 else AssignmentReason.ESCALATION
        assignment = self.tracker.assign(alert.id, responder.user_id, SYSTEM_ACTOR, reason, level, now)

        state.level = level
        state.last_escalated_at = now
        state.status = EscalationStatus.EXHAUSTED if level >= routing.max_escalation_level else EscalationStatus.ACTIVE
        state.next_escalation_at = self._next_wakeup(state, alert, routing, policy)
        increment_counter(ESCALATIONS, {"severity": severity, "level": str(level)})

        if level > 0:
            logger.warning(f"[ESCALATION] Alert {alert.id} escalated to level {level}: {responder.user_id}")

        action = "assigned" if level == 0 else "escalated"
        return EscalationOutcome(
            alert.id,
            action,
            level=level,
            assignment_id=assignment.id,
            assignee=responder.user_id,
            dispatch=DispatchRequest(
                alert_id=alert.id,
                assignee=responder.user_id,
                channel_set=policy.channels_for(severity, level, routing.assigned_channels),
                expected_response_time=assignment.expected_response_time,
                assignment_level=level,
                severity=severity,
                team_id=alert.team_id,
            ),
            events=[HistoryEvent(
                alert.id,
                action,
                f"Assigned to {responder.user_id} at level {level}",
                SYSTEM_ACTOR,
                {"assignee": responder.user_id, "level": level, "source": responder.source,
                 "assignment_id": assignment.id},
            )],
        )

    def _auto_resolve(self, state, alert, now: datetime) -> EscalationOutcome:
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = now
        alert.resolution_reason = "auto_resolved"
        state.status = EscalationStatus.RESOLVED
        state.next_escalation_at = None
        increment_counter(AUTO_TRANSITIONS, {"transition": "resolved", "severity": alert.severity.value})
        logger.info(f"[ESCALATION] Alert {alert.id} auto-resolved after timeout")
        return EscalationOutcome(
            alert.id, "auto_resolved", level=state.level,
            events=[HistoryEvent(alert.id, "auto_resolved", "Resolved automatically after timeout", SYSTEM_ACTOR)],
        )

    def _auto_acknowledge(self, state, alert, now: datetime) -> EscalationOutcome:
        self.tracker.acknowledge(alert.id, SYSTEM_ACTOR, now)
        state.status = EscalationStatus.ACKNOWLEDGED
        state.next_escalation_at = None
        increment_counter(AUTO_TRANSITIONS, {"transition": "acknowledged", "severity": alert.severity.value})
        logger.info(f"[ESCALATION] Alert {alert.id} auto-acknowledged")
        return EscalationOutcome(
            alert.id, "auto_acknowledged", level=state.level,
            events=[HistoryEvent(alert.id, "auto_acknowledged", "Acknowledged automatically", SYSTEM_ACTOR)],
        )
