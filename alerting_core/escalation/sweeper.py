"""
Escalation Sweeper
Runs on a fixed interval and advances every escalation cursor whose next
wake-up time has passed. Each cursor is advanced in its own transaction with
compare-and-swap, so a cursor moves at most one step per sweep and an
acknowledgement committed mid-sweep always wins.
"""

from sqlalchemy.orm import sessionmaker
from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging

from alerting_core.database import get_db_context
from alerting_core.dispatch import DispatchQueue
from alerting_core.errors import AlertingError, ConcurrencyConflictError
from alerting_core.escalation.assignments import record_history
from alerting_core.escalation.config import load_policy
from alerting_core.escalation.escalator import OPEN_STATUSES, EscalationOutcome, Escalator
from alerting_core.models import Alert, EscalationState, EscalationStatus
from alerting_core.resilience.retry import retry_on_conflict

logger = logging.getLogger(__name__)


class EscalationSweeper:
    """Advances due escalations; one instance per scheduler job"""

    def __init__(self, session_factory: Optional[sessionmaker] = None, redis_client=None):
        self.session_factory = session_factory
        self.dispatch = DispatchQueue(redis_client) if redis_client is not None else None

    def due_state_ids(self, now: datetime) -> List[str]:
        with get_db_context(self.session_factory) as db:
            rows = db.query(EscalationState.id).filter(
                EscalationState.status.in_(OPEN_STATUSES),
                EscalationState.next_escalation_at.isnot(None),
                EscalationState.next_escalation_at <= now,
            ).order_by(EscalationState.next_escalation_at.asc()).all()
            return [state_id for (state_id,) in rows]

    def _advance_one(self, state_id: str, now: datetime) -> Optional[EscalationOutcome]:
        with get_db_context(self.session_factory) as db:
            state = db.get(EscalationState, state_id)
            # Re-check inside the transaction; another worker may have moved it
            if (
                state is None
                or state.status not in OPEN_STATUSES
                or state.next_escalation_at is None
                or state.next_escalation_at > now
            ):
                return None

            alert = db.get(Alert, state.alert_id)
            if alert is None:
                logger.warning(f"[ESCALATION] Alert {state.alert_id} vanished; closing its escalation")
                state.status = EscalationStatus.EXHAUSTED
                state.next_escalation_at = None
                return None

            escalator = Escalator(db)
            routing = escalator.router.resolve_routing(state.team_id, state.severity)
            policy = load_policy(db, state.team_id)
            return escalator.advance(state, alert, routing, policy, now)

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Advance every due escalation once; returns counts per outcome"""
        now = now or datetime.now(timezone.utc)
        advance = retry_on_conflict("escalation_sweep")(self._advance_one)
        report: Dict[str, int] = {}

        for state_id in self.due_state_ids(now):
            try:
                outcome = advance(state_id, now)
            except ConcurrencyConflictError:
                report["conflicts"] = report.get("conflicts", 0) + 1
                logger.warning(f"[ESCALATION] Gave up on escalation {state_id} this sweep after repeated conflicts")
                continue
            except AlertingError as e:
                report["errors"] = report.get("errors", 0) + 1
                logger.error(f"[ESCALATION] Escalation {state_id} skipped: {e}")
                continue

            if outcome is None:
                continue

            report[outcome.action] = report.get(outcome.action, 0) + 1
            record_history(outcome.events, self.session_factory, now)
            if outcome.dispatch is not None and self.dispatch is not None:
                self.dispatch.push(outcome.dispatch)

        if report:
            logger.info(f"[ESCALATION] Sweep complete: {report}")
        return report
