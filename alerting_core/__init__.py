"""
alerting_core package initialization
"""

# Import database components
from .database import SessionLocal, configure_engine, get_db, get_db_context, init_db

# Import models
from .models import (
    Base, Alert, AlertRule, AlertSeverity, AlertStatus, MaintenanceWindow, SuppressionRule,
    AlertGroup, SeverityRouting, OnCallSchedule, OnCallScheduleEntry, AlertAssignment, EscalationConfig
)

# Import errors
from .errors import (
    AlertingError,
    ConfigurationError,
    AlertNotFoundError,
    RoutingGapError,
    TimingInvariantError,
    ConcurrencyConflictError,
    InvalidTransitionError
)

__all__ = [
    # Database
    'SessionLocal',
    'configure_engine',
    'get_db',
    'get_db_context',
    'init_db',

    # Models
    'Base',
    'Alert',
    'AlertRule',
    'AlertSeverity',
    'AlertStatus',
    'MaintenanceWindow',
    'SuppressionRule',
    'AlertGroup',
    'SeverityRouting',
    'OnCallSchedule',
    'OnCallScheduleEntry',
    'AlertAssignment',
    'EscalationConfig',

    # Errors
    'AlertingError',
    'ConfigurationError',
    'AlertNotFoundError',
    'RoutingGapError',
    'TimingInvariantError',
    'ConcurrencyConflictError',
    'InvalidTransitionError',
]
