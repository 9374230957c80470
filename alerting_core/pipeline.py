"""
Alert Processing Pipeline
=========================
One incoming alert, end to end:

1. Evaluate suppression, count the alert against its rate-limit windows (when
   allowed) and attach it to its group. These three commit together or not at
   all, and the unit is retried on optimistic-lock conflicts.
2. Log the decision (best-effort).
3. For allowed alerts: resolve routing, open the escalation cursor and make
   the level 0 assignment when it is already due.
4. Record history (best-effort) and queue the dispatch request.
"""

from sqlalchemy.orm import sessionmaker
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from alerting_core.alerts.context import AlertContext
from alerting_core.alerts.grouping import AlertGrouper
from alerting_core.alerts.rate_limiter import RateLimitTracker
from alerting_core.alerts.suppression import SuppressionDecision, SuppressionEngine, log_decision
from alerting_core.database import get_db_context
from alerting_core.dispatch import DispatchQueue
from alerting_core.errors import AlertNotFoundError, InvalidTransitionError
from alerting_core.escalation.assignments import record_history
from alerting_core.escalation.escalator import EscalationOutcome, Escalator
from alerting_core.models import Alert, AlertGroupMember
from alerting_core.resilience.retry import retry_on_conflict

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    alert_id: str
    decision: SuppressionDecision
    group_id: str
    group_key: str
    group_alert_count: int
    escalation_action: Optional[str] = None
    assignment_id: Optional[str] = None
    assignee: Optional[str] = None
    dispatched: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "suppression": self.decision.to_dict(),
            "group": {
                "group_id": self.group_id,
                "group_key": self.group_key,
                "alert_count": self.group_alert_count,
            },
            "escalation_action": self.escalation_action,
            "assignment_id": self.assignment_id,
            "assignee": self.assignee,
            "dispatched": self.dispatched,
        }


class AlertProcessor:
    """Runs the decision pipeline for alerts already stored by the detection side"""

    def __init__(self, session_factory: Optional[sessionmaker] = None, redis_client=None):
        self.session_factory = session_factory
        self.dispatch = DispatchQueue(redis_client) if redis_client is not None else None

    def _evaluate_and_group(self, alert_id: str, now: datetime):
        with get_db_context(self.session_factory) as db:
            alert = db.get(Alert, alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)

            already = db.query(AlertGroupMember).filter(AlertGroupMember.alert_id == alert_id).first()
            if already is not None:
                raise InvalidTransitionError(f"Alert {alert_id} has already been processed")

            context = AlertContext.from_alert(alert)
            decision = SuppressionEngine(db).evaluate_context(context, now)
            if not decision.suppressed:
                RateLimitTracker(db).record(context, now)

            group = AlertGrouper(db).attach(
                context,
                suppressed=decision.suppressed,
                suppress_all=decision.suppress_all,
                now=now,
            )
            return context, decision, (group.id, group.group_key, group.alert_count)

    def _open_escalation(self, alert_id: str, now: datetime) -> EscalationOutcome:
        with get_db_context(self.session_factory) as db:
            alert = db.get(Alert, alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            return Escalator(db).open(alert, now)

    def process(self, alert_id: str, now: Optional[datetime] = None) -> ProcessResult:
        """
        Process one alert.

        Raises ConfigurationError for missing rules or routing, and
        RoutingGapError when nobody could be assigned. In the gap case the
        decision, grouping and escalation cursor are already committed so the
        sweeper keeps retrying the assignment.
        """
        now = now or datetime.now(timezone.utc)

        context, decision, (group_id, key, count) = retry_on_conflict("evaluate_and_group")(
            self._evaluate_and_group
        )(alert_id, now)

        log_decision(context, decision, self.session_factory, now)

        result = ProcessResult(
            alert_id=alert_id,
            decision=decision,
            group_id=group_id,
            group_key=key,
            group_alert_count=count,
        )
        if decision.suppressed:
            return result

        outcome = retry_on_conflict("open_escalation")(self._open_escalation)(alert_id, now)
        result.escalation_action = outcome.action
        result.assignment_id = outcome.assignment_id
        result.assignee = outcome.assignee

        record_history(outcome.events, self.session_factory, now)
        if outcome.dispatch is not None:
            if self.dispatch is not None:
                result.dispatched = self.dispatch.push(outcome.dispatch)
            else:
                logger.warning(f"[DISPATCH] No queue configured; alert {alert_id} assignment not dispatched")

        if outcome.routing_gap is not None:
            raise outcome.routing_gap
        return result
