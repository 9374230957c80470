"""Alert facts the decision engine evaluates"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from alerting_core.models import Alert, AlertSeverity


@dataclass
class AlertContext:
    """Read-only view of one incoming alert"""
    alert_id: str
    rule_id: Optional[str]
    metric_name: str
    severity: AlertSeverity
    team_id: Optional[str]
    dimensions: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.severity = AlertSeverity(self.severity)

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertContext":
        return cls(
            alert_id=alert.id,
            rule_id=alert.alert_rule_id,
            metric_name=alert.metric_name,
            severity=alert.severity,
            team_id=alert.team_id,
            dimensions=dict(alert.dimensions or {}),
            created_at=alert.created_at,
        )
