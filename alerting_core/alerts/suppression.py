"""
Alert Suppression Decision Engine
=================================
Decides whether an incoming alert should be withheld from responders.

Checks run in a fixed precedence and stop at the first match:

1. Maintenance windows (team-scoped or global)
2. Duplicate detection (same rule, still open, within 30 minutes)
3. Rate limits (rule's hourly cap, then team/metric/severity/global windows)
4. Custom suppression rules, highest priority first

Evaluation only reads state. Persisting the decision to the suppression log is
a separate best-effort step (log_decision) so a failing audit write never
changes or blocks the decision itself.
"""

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, sessionmaker
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from alerting_core import constants
from alerting_core.alerts.conditions import parse_conditions
from alerting_core.alerts.context import AlertContext
from alerting_core.alerts.maintenance import find_matching_window
from alerting_core.alerts.rate_limiter import RateLimitTracker
from alerting_core.database import get_db_context
from alerting_core.errors import ConfigurationError
from alerting_core.metrics import AUDIT_LOG_FAILURES, SUPPRESSION_DECISIONS, increment_counter
from alerting_core.models import (
    Alert, AlertRule, AlertStatus, SuppressionLog, SuppressionReason,
    SuppressionRule, SuppressionRuleType
)

logger = logging.getLogger("alert_suppression")

# Rule types that configure other components and never suppress on their own
NON_SUPPRESSING_RULE_TYPES = (SuppressionRuleType.GROUPING,)


@dataclass
class SuppressionDecision:
    """Verdict for one alert"""
    suppressed: bool
    reason: str
    suppress_until: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    suppression_rule_id: Optional[str] = None
    maintenance_window_id: Optional[str] = None

    @property
    def suppress_all(self) -> bool:
        """Whether a suppress-all maintenance window produced this verdict"""
        return bool(self.metadata.get("suppress_all"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suppressed": self.suppressed,
            "reason": self.reason,
            "suppress_until": self.suppress_until.isoformat() if self.suppress_until else None,
            "metadata": self.metadata,
        }


ALLOW = SuppressionReason.NO_SUPPRESSION.value


def _arrived_before(context: AlertContext, now: datetime):
    """Alerts stored ahead of this one; (created_at, id) orders equal timestamps"""
    arrived = min(context.created_at or now, now)
    return or_(
        Alert.created_at < arrived,
        and_(Alert.created_at == arrived, Alert.id < context.alert_id),
    )


class SuppressionEngine:
    """
    Suppression decisions over the current state of one session.

    Any lookup failure (unknown rule, malformed condition document) raises
    ConfigurationError instead of defaulting to either outcome.
    """

    def __init__(self, db: Session):
        self.db = db
        self.rate_limits = RateLimitTracker(db)

    def evaluate(
        self,
        alert_id: str,
        rule_id: Optional[str],
        metric_name: str,
        severity: str,
        team_id: Optional[str],
        now: Optional[datetime] = None,
        dimensions: Optional[Dict[str, str]] = None,
    ) -> SuppressionDecision:
        context = AlertContext(
            alert_id=alert_id,
            rule_id=rule_id,
            metric_name=metric_name,
            severity=severity,
            team_id=team_id,
            dimensions=dimensions or {},
        )
        return self.evaluate_context(context, now=now)

    def evaluate_context(self, context: AlertContext, now: Optional[datetime] = None) -> SuppressionDecision:
        now = now or datetime.now(timezone.utc)

        for check in (
            self._check_maintenance,
            self._check_duplicate,
            self._check_rate_limit,
            self._check_custom_rules,
        ):
            decision = check(context, now)
            if decision is not None:
                logger.info(
                    f"[SUPPRESSION] Alert {context.alert_id} suppressed: {decision.reason}"
                )
                return decision

        return SuppressionDecision(suppressed=False, reason=ALLOW)

    # ------------------------------------------------------------------
    # 1. Maintenance windows
    # ------------------------------------------------------------------

    def _check_maintenance(self, context: AlertContext, now: datetime) -> Optional[SuppressionDecision]:
        match = find_matching_window(
            self.db, context.team_id, context.metric_name, context.severity.value, now
        )
        if match is None:
            return None

        window, occurrence_end = match
        return SuppressionDecision(
            suppressed=True,
            reason=SuppressionReason.MAINTENANCE_WINDOW.value,
            suppress_until=occurrence_end,
            metadata={
                "maintenance_window_id": window.id,
                "window_name": window.name,
                "suppress_all": window.suppress_all,
            },
            maintenance_window_id=window.id,
        )

    # ------------------------------------------------------------------
    # 2. Duplicates
    # ------------------------------------------------------------------

    def _check_duplicate(self, context: AlertContext, now: datetime) -> Optional[SuppressionDecision]:
        if not context.rule_id:
            return None

        cutoff = now - timedelta(minutes=constants.DUPLICATE_WINDOW_MINUTES)
        duplicates = self.db.query(Alert).filter(
            Alert.alert_rule_id == context.rule_id,
            Alert.status.in_([AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED]),
            Alert.created_at >= cutoff,
            _arrived_before(context, now),
        ).count()

        if duplicates == 0:
            return None

        return SuppressionDecision(
            suppressed=True,
            reason=SuppressionReason.DUPLICATE_ALERT.value,
            suppress_until=now + timedelta(minutes=constants.DUPLICATE_WINDOW_MINUTES),
            metadata={"duplicate_count": duplicates},
        )

    # ------------------------------------------------------------------
    # 3. Rate limits
    # ------------------------------------------------------------------

    def _load_rule(self, rule_id: str) -> AlertRule:
        rule = self.db.get(AlertRule, rule_id)
        if rule is None:
            raise ConfigurationError(f"Alert rule {rule_id} not found")
        if rule.max_alerts_per_hour is None or rule.max_alerts_per_hour < 0:
            raise ConfigurationError(f"Alert rule {rule_id} has no valid max_alerts_per_hour")
        return rule

    def _check_rate_limit(self, context: AlertContext, now: datetime) -> Optional[SuppressionDecision]:
        if context.rule_id:
            rule = self._load_rule(context.rule_id)
            window_start = now - timedelta(minutes=constants.RATE_LIMIT_WINDOW_MINUTES)
            count = self.db.query(Alert).filter(
                Alert.alert_rule_id == context.rule_id,
                Alert.created_at >= window_start,
                _arrived_before(context, now),
            ).count()

            if count >= rule.max_alerts_per_hour:
                return SuppressionDecision(
                    suppressed=True,
                    reason=SuppressionReason.RATE_LIMIT_EXCEEDED.value,
                    suppress_until=now + timedelta(minutes=constants.RATE_LIMIT_WINDOW_MINUTES),
                    metadata={
                        "limit_type": "rule",
                        "current_count": count,
                        "max_alerts": rule.max_alerts_per_hour,
                    },
                )

        hit = self.rate_limits.check(context, now)
        if hit is None:
            return None

        return SuppressionDecision(
            suppressed=True,
            reason=SuppressionReason.RATE_LIMIT_EXCEEDED.value,
            suppress_until=hit.reset_at,
            metadata=hit.to_metadata(),
        )

    # ------------------------------------------------------------------
    # 4. Custom rules
    # ------------------------------------------------------------------

    def custom_rules(self, team_id: Optional[str]) -> List[SuppressionRule]:
        """Enabled team and global rules, highest priority first"""
        scope = SuppressionRule.team_id.is_(None)
        if team_id is not None:
            scope = or_(SuppressionRule.team_id == team_id, scope)

        return self.db.query(SuppressionRule).filter(
            SuppressionRule.enabled.is_(True),
            scope,
            SuppressionRule.rule_type.notin_(NON_SUPPRESSING_RULE_TYPES),
        ).order_by(
            SuppressionRule.priority.desc(),
            SuppressionRule.created_at.asc(),
            SuppressionRule.id.asc(),
        ).all()

    def _window_count(self, rule: SuppressionRule, condition, context: AlertContext, now: datetime) -> int:
        """Recent alerts in the rule's scope that satisfy its conditions"""
        query = self.db.query(Alert).filter(
            Alert.created_at >= now - timedelta(minutes=rule.window_size_minutes),
            _arrived_before(context, now),
        )
        if rule.team_id is not None:
            query = query.filter(Alert.team_id == rule.team_id)
        return sum(1 for alert in query.all() if condition.matches(AlertContext.from_alert(alert)))

    def _check_custom_rules(self, context: AlertContext, now: datetime) -> Optional[SuppressionDecision]:
        for rule in self.custom_rules(context.team_id):
            try:
                condition = parse_conditions(rule.conditions)
            except ConfigurationError as e:
                raise ConfigurationError(f"Suppression rule '{rule.name}' ({rule.id}): {e}") from e

            if not condition.matches(context):
                continue

            metadata = {
                "rule_id": rule.id,
                "rule_name": rule.name,
                "rule_type": rule.rule_type.value,
            }

            if rule.rule_type == SuppressionRuleType.RATE_LIMIT:
                recent = self._window_count(rule, condition, context, now)
                if recent < rule.max_alerts_per_window:
                    continue
                metadata["window_count"] = recent

            return SuppressionDecision(
                suppressed=True,
                reason=SuppressionReason.CUSTOM_RULE.value,
                suppress_until=now + timedelta(minutes=rule.suppression_duration_minutes),
                metadata=metadata,
                suppression_rule_id=rule.id,
            )
        return None


# ============================================================================
# Audit log
# ============================================================================

def log_decision(
    context: AlertContext,
    decision: SuppressionDecision,
    session_factory: Optional[sessionmaker] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Persist one decision to the suppression log in its own transaction.

    Best-effort: a failure is logged and counted, and the decision stands.
    """
    increment_counter(SUPPRESSION_DECISIONS, {"reason": decision.reason})
    try:
        with get_db_context(session_factory) as db:
            db.add(SuppressionLog(
                alert_id=context.alert_id,
                suppressed=decision.suppressed,
                reason=decision.reason,
                suppression_rule_id=decision.suppression_rule_id,
                maintenance_window_id=decision.maintenance_window_id,
                suppress_until=decision.suppress_until,
                details=decision.metadata,
                team_id=context.team_id,
                created_at=now or datetime.now(timezone.utc),
            ))
        return True
    except Exception:
        increment_counter(AUDIT_LOG_FAILURES, {"log": "suppression_log"})
        logger.error(
            f"[SUPPRESSION] Failed to write suppression log for alert {context.alert_id}",
            exc_info=True,
        )
        return False


def suppression_stats(db: Session, team_id: Optional[str] = None, hours: int = 24,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    """Decision counts by reason over the trailing window"""
    now = now or datetime.now(timezone.utc)
    query = db.query(SuppressionLog).filter(SuppressionLog.created_at >= now - timedelta(hours=hours))
    if team_id is not None:
        query = query.filter(SuppressionLog.team_id == team_id)

    by_reason: Dict[str, int] = {}
    suppressed = 0
    total = 0
    for entry in query.all():
        total += 1
        by_reason[entry.reason] = by_reason.get(entry.reason, 0) + 1
        if entry.suppressed:
            suppressed += 1

    return {
        "total_evaluated": total,
        "total_suppressed": suppressed,
        "suppression_rate": suppressed / total if total > 0 else 0,
        "by_reason": by_reason,
        "window_hours": hours,
    }
