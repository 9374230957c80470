"""
Alert Grouper
=============
Collapses bursts of related alerts into rolling groups keyed by metric name
plus a stable signature of selected dimensions.

A group stays open while its last alert is within the grouping window. The
window and the dimension names come from the highest-priority enabled
`grouping` suppression rule for the team (or a global one); without such a
rule the default window applies and the key is the metric name alone.
"""

from sqlalchemy import or_
from sqlalchemy.orm import Session
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional, Tuple
import logging

from alerting_core import constants
from alerting_core.alerts.context import AlertContext
from alerting_core.errors import ConfigurationError
from alerting_core.models import AlertGroup, AlertGroupMember, SuppressionRule, SuppressionRuleType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupingConfig:
    window_minutes: int = constants.DEFAULT_GROUPING_WINDOW_MINUTES
    group_by: Tuple[str, ...] = ()


def group_key(context: AlertContext, group_by: Iterable[str] = ()) -> str:
    """
    Deterministic key: "metric" or "metric|name=value,..." with names sorted.

    Dimensions missing from the alert are left out of the signature.
    """
    dimensions = context.dimensions or {}
    pairs = [f"{name}={dimensions[name]}" for name in sorted(set(group_by)) if name in dimensions]
    if not pairs:
        return context.metric_name
    return f"{context.metric_name}|{','.join(pairs)}"


class AlertGrouper:
    """Rolling alert groups for one database session"""

    def __init__(self, db: Session):
        self.db = db

    def grouping_config(self, team_id: Optional[str]) -> GroupingConfig:
        scope = SuppressionRule.team_id.is_(None)
        if team_id is not None:
            scope = or_(SuppressionRule.team_id == team_id, scope)

        rule = self.db.query(SuppressionRule).filter(
            SuppressionRule.enabled.is_(True),
            SuppressionRule.rule_type == SuppressionRuleType.GROUPING,
            scope,
        ).order_by(
            SuppressionRule.priority.desc(),
            SuppressionRule.created_at.asc(),
            SuppressionRule.id.asc(),
        ).first()

        if rule is None:
            return GroupingConfig()

        group_by = (rule.conditions or {}).get("group_by", [])
        if isinstance(group_by, str):
            group_by = [group_by]
        if not isinstance(group_by, list) or not all(isinstance(name, str) for name in group_by):
            raise ConfigurationError(f"Grouping rule '{rule.name}': group_by must be a list of dimension names")
        if rule.window_size_minutes <= 0:
            raise ConfigurationError(f"Grouping rule '{rule.name}': window_size_minutes must be positive")

        return GroupingConfig(window_minutes=rule.window_size_minutes, group_by=tuple(group_by))

    def _open_group(self, key: str, team_id: Optional[str], since: datetime) -> Optional[AlertGroup]:
        team_filter = AlertGroup.team_id.is_(None) if team_id is None else AlertGroup.team_id == team_id
        return self.db.query(AlertGroup).filter(
            AlertGroup.group_key == key,
            team_filter,
            AlertGroup.last_alert_at >= since,
        ).order_by(AlertGroup.last_alert_at.desc()).first()

    def attach(
        self,
        context: AlertContext,
        suppressed: bool = False,
        suppress_all: bool = False,
        now: Optional[datetime] = None,
    ) -> AlertGroup:
        """
        Append the alert to its open group or start a new one.

        Attaching an alert that is already a member returns its group
        unchanged, so reprocessing an alert never double-counts it.
        """
        now = now or datetime.now(timezone.utc)
        seen_at = context.created_at or now

        existing = self.db.query(AlertGroupMember).filter(
            AlertGroupMember.alert_id == context.alert_id
        ).first()
        if existing is not None:
            return existing.group

        config = self.grouping_config(context.team_id)
        key = group_key(context, config.group_by)
        severity = context.severity.value

        group = self._open_group(key, context.team_id, now - timedelta(minutes=config.window_minutes))
        if group is None:
            group = AlertGroup(
                group_key=key,
                team_id=context.team_id,
                first_alert_id=context.alert_id,
                last_alert_id=context.alert_id,
                alert_count=1,
                metric_name=context.metric_name,
                severities=[severity],
                first_alert_at=seen_at,
                last_alert_at=seen_at,
            )
            self.db.add(group)
            logger.info(f"[GROUPING] New group {key} (team={context.team_id}) from alert {context.alert_id}")
        else:
            group.alert_count += 1
            group.last_alert_id = context.alert_id
            if seen_at > group.last_alert_at:
                group.last_alert_at = seen_at
            if severity not in (group.severities or []):
                # Reassign so the JSON column is flagged dirty
                group.severities = list(group.severities or []) + [severity]
            logger.info(f"[GROUPING] Alert {context.alert_id} joined group {key} (count={group.alert_count})")

        if suppress_all and not group.suppression_applied:
            group.suppression_applied = True
            group.suppressed_at = now

        group.members.append(AlertGroupMember(
            alert_id=context.alert_id,
            suppressed=suppressed,
            joined_at=now,
        ))
        self.db.flush()
        return group

    def summary(self, group: AlertGroup) -> Dict:
        return {
            "group_id": group.id,
            "group_key": group.group_key,
            "alert_count": group.alert_count,
            "severities": list(group.severities or []),
            "first_alert_at": group.first_alert_at.isoformat(),
            "last_alert_at": group.last_alert_at.isoformat(),
            "time_span_minutes": group.time_span_minutes,
            "suppression_applied": group.suppression_applied,
        }

    def purge_stale(self, now: Optional[datetime] = None) -> int:
        """Delete groups idle past the retention horizon, members first"""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=constants.GROUP_RETENTION_HOURS)

        stale_ids = [
            group_id for (group_id,) in
            self.db.query(AlertGroup.id).filter(AlertGroup.last_alert_at < cutoff).all()
        ]
        if not stale_ids:
            return 0

        self.db.query(AlertGroupMember).filter(
            AlertGroupMember.group_id.in_(stale_ids)
        ).delete(synchronize_session=False)
        deleted = self.db.query(AlertGroup).filter(
            AlertGroup.id.in_(stale_ids)
        ).delete(synchronize_session=False)

        logger.info(f"[HOUSEKEEPING] Removed {deleted} stale alert groups")
        return deleted
