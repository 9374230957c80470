"""
Alerting error taxonomy.

Configuration and routing problems are surfaced to the caller rather than being
resolved to "suppress" or "allow"; concurrency conflicts are retried internally
and only escape as ConcurrencyConflictError once the bounded retries are exhausted.
"""


class AlertingError(Exception):
    """Base class for every error raised by the decision engine"""


class ConfigurationError(AlertingError):
    """A rule, routing row or condition document is missing or invalid"""


class ConditionError(ConfigurationError):
    """A suppression condition document could not be parsed"""


class AlertNotFoundError(AlertingError):
    """Referenced alert does not exist"""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class RoutingGapError(AlertingError):
    """Nobody could be resolved to receive an alert"""

    def __init__(self, team_id: str, severity: str, level: int = 0):
        super().__init__(
            f"No responder for team {team_id} severity {severity} at level {level}"
        )
        self.team_id = team_id
        self.severity = severity
        self.level = level


class TimingInvariantError(AlertingError, ValueError):
    """A time range with end <= start was submitted"""


class ConcurrencyConflictError(AlertingError):
    """Optimistic-lock conflicts persisted after all retries"""


class InvalidTransitionError(AlertingError):
    """Requested lifecycle change is not allowed from the alert's current status"""
