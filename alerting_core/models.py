"""
Database Models - Alert Decision Engine Schema
Core tables: alerts and rules (mirrored), suppression, grouping, routing,
on-call schedules, assignments and escalation state
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Text, JSON,
    Enum as SQLEnum, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
import enum
import uuid

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)"""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _enum_column(enum_cls, **kwargs):
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
        **kwargs
    )


# ============================================================================
# Enums
# ============================================================================

class AlertSeverity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        """0 is the most urgent"""
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [
    AlertSeverity.CRITICAL,
    AlertSeverity.HIGH,
    AlertSeverity.MEDIUM,
    AlertSeverity.LOW,
    AlertSeverity.INFO,
]
ALL_SEVERITIES = [s.value for s in _SEVERITY_ORDER]


class AlertStatus(str, enum.Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class SuppressionRuleType(str, enum.Enum):
    DUPLICATE = "duplicate"
    RATE_LIMIT = "rate_limit"
    MAINTENANCE = "maintenance"
    GROUPING = "grouping"
    THRESHOLD = "threshold"
    CUSTOM = "custom"


class SuppressionReason(str, enum.Enum):
    MAINTENANCE_WINDOW = "maintenance_window"
    DUPLICATE_ALERT = "duplicate_alert"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CUSTOM_RULE = "custom_rule"
    NO_SUPPRESSION = "no_suppression"


class RateLimitScope(str, enum.Enum):
    RULE = "rule"
    TEAM = "team"
    METRIC = "metric"
    SEVERITY = "severity"
    GLOBAL = "global"


class ScheduleType(str, enum.Enum):
    ROTATION = "rotation"
    FIXED = "fixed"
    FOLLOW_THE_SUN = "follow_the_sun"


class AssignmentReason(str, enum.Enum):
    MANUAL = "manual"
    AUTO_SEVERITY = "auto_severity"
    ESCALATION = "escalation"
    ROTATION = "rotation"


class EscalationStatus(str, enum.Enum):
    PENDING = "pending"            # waiting for initial delay
    ACTIVE = "active"              # level 0 or higher assigned, unacknowledged
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"          # terminal, never re-opened
    EXHAUSTED = "exhausted"        # max level reached, nothing left to fire


# ============================================================================
# Mirrored external entities
# ============================================================================

class AlertRule(Base):
    """Detector rule that produces alerts (owned by the detection pipeline)"""
    __tablename__ = "alert_rules"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    metric_name = Column(String(255), nullable=False)
    team_id = Column(String(64), index=True)
    max_alerts_per_hour = Column(Integer, nullable=False, default=5)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<AlertRule {self.name}>"


class Alert(Base):
    """Raw alert produced by the detection pipeline"""
    __tablename__ = "alerts"

    id = Column(String(64), primary_key=True, default=new_id)
    alert_rule_id = Column(String(64), ForeignKey("alert_rules.id"), index=True)
    metric_name = Column(String(255), nullable=False)
    severity = Column(_enum_column(AlertSeverity), nullable=False)
    status = Column(_enum_column(AlertStatus), nullable=False, default=AlertStatus.ACTIVE)
    team_id = Column(String(64), index=True)

    # Label set the grouping key can be derived from
    dimensions = Column(JSON, default=dict)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    acknowledged_at = Column(UTCDateTime)
    acknowledged_by = Column(String(64))
    resolved_at = Column(UTCDateTime)
    resolution_reason = Column(String(100))

    rule = relationship("AlertRule")

    __table_args__ = (
        Index('idx_alert_rule_status_created', 'alert_rule_id', 'status', 'created_at'),
        Index('idx_alert_team_created', 'team_id', 'created_at'),
    )

    def __repr__(self):
        return f"<Alert {self.id} {self.metric_name} - {self.severity.value}>"


# ============================================================================
# Suppression
# ============================================================================

class MaintenanceWindow(Base):
    """Scheduled suppression window"""
    __tablename__ = "maintenance_windows"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(100), default="UTC")

    # Metric names; empty means nothing targeted specifically
    affected_systems = Column(JSON, default=list)
    # Empty means no severity targeted; suppress_all overrides both filters
    affected_severities = Column(JSON, default=list)
    suppress_all = Column(Boolean, default=False, nullable=False)

    # Higher wins when several windows match the same alert
    priority = Column(Integer, default=0, nullable=False)

    enabled = Column(Boolean, default=True, nullable=False)
    recurring = Column(Boolean, default=False, nullable=False)
    recurrence_config = Column(JSON, default=dict)

    team_id = Column(String(64), index=True)
    created_by = Column(String(64))
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('end_time > start_time', name='ck_maintenance_window_range'),
        Index('idx_maintenance_windows_time_range', 'start_time', 'end_time'),
    )

    def __repr__(self):
        return f"<MaintenanceWindow {self.name}>"


class SuppressionRule(Base):
    """Team-defined (or global) suppression rule"""
    __tablename__ = "alert_suppression_rules"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)

    rule_type = Column(_enum_column(SuppressionRuleType), nullable=False)
    conditions = Column(JSON, nullable=False, default=dict)

    suppression_duration_minutes = Column(Integer, nullable=False, default=60)
    max_alerts_per_window = Column(Integer, nullable=False, default=5)
    window_size_minutes = Column(Integer, nullable=False, default=60)

    # Higher number = evaluated first
    priority = Column(Integer, nullable=False, default=1)
    enabled = Column(Boolean, default=True, nullable=False)

    team_id = Column(String(64), index=True)  # NULL = global
    created_by = Column(String(64))
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_suppression_rules_priority', 'priority'),
    )

    def __repr__(self):
        return f"<SuppressionRule {self.name} ({self.rule_type.value})>"


class SuppressionLog(Base):
    """Immutable audit record of one suppression decision"""
    __tablename__ = "alert_suppression_log"

    id = Column(String(64), primary_key=True, default=new_id)
    alert_id = Column(String(64), nullable=False, index=True)

    suppressed = Column(Boolean, nullable=False)
    reason = Column(String(100), nullable=False, index=True)
    suppression_rule_id = Column(String(64))
    maintenance_window_id = Column(String(64))
    suppress_until = Column(UTCDateTime)
    details = Column("metadata", JSON, default=dict)

    team_id = Column(String(64), index=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)


class RateLimitWindow(Base):
    """Independently addressable counter for one rate-limit scope"""
    __tablename__ = "alert_rate_limits"

    id = Column(String(64), primary_key=True, default=new_id)
    limit_type = Column(_enum_column(RateLimitScope), nullable=False)
    scope_id = Column(String(255), nullable=False)

    max_alerts = Column(Integer, nullable=False)
    window_minutes = Column(Integer, nullable=False)

    current_count = Column(Integer, nullable=False, default=0)
    window_start = Column(UTCDateTime, nullable=False, default=utcnow)
    next_reset_at = Column(UTCDateTime, nullable=False)
    last_alert_at = Column(UTCDateTime)

    # Admin-configured windows are reset by housekeeping, defaults are deleted
    configured = Column(Boolean, default=False, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint('limit_type', 'scope_id', name='uq_rate_limit_scope'),
        Index('idx_rate_limits_reset', 'next_reset_at'),
    )

    def __repr__(self):
        return f"<RateLimitWindow {self.limit_type.value}:{self.scope_id} {self.current_count}/{self.max_alerts}>"


# ============================================================================
# Grouping
# ============================================================================

class AlertGroup(Base):
    """Burst of related alerts collapsed under one key"""
    __tablename__ = "alert_groups"

    id = Column(String(64), primary_key=True, default=new_id)
    group_key = Column(String(500), nullable=False, index=True)
    team_id = Column(String(64), index=True)

    first_alert_id = Column(String(64), nullable=False)
    last_alert_id = Column(String(64), nullable=False)
    alert_count = Column(Integer, nullable=False, default=1)

    metric_name = Column(String(255), nullable=False)
    severities = Column(JSON, default=list)

    first_alert_at = Column(UTCDateTime, nullable=False)
    last_alert_at = Column(UTCDateTime, nullable=False)

    suppression_applied = Column(Boolean, default=False, nullable=False)
    suppressed_at = Column(UTCDateTime)

    version = Column(Integer, nullable=False)

    members = relationship(
        "AlertGroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint('team_id', 'group_key', 'first_alert_at', name='uq_group_key_first_alert'),
        Index('idx_alert_groups_key_team_last', 'group_key', 'team_id', 'last_alert_at'),
    )

    @property
    def time_span_minutes(self) -> int:
        """Computed at read time from the first/last timestamps"""
        return int((self.last_alert_at - self.first_alert_at).total_seconds() // 60)

    def __repr__(self):
        return f"<AlertGroup {self.group_key} x{self.alert_count}>"


class AlertGroupMember(Base):
    __tablename__ = "alert_group_members"

    id = Column(String(64), primary_key=True, default=new_id)
    group_id = Column(String(64), ForeignKey("alert_groups.id", ondelete="CASCADE"), nullable=False, index=True)
    alert_id = Column(String(64), nullable=False, index=True)
    suppressed = Column(Boolean, default=False, nullable=False)
    joined_at = Column(UTCDateTime, default=utcnow, nullable=False)

    group = relationship("AlertGroup", back_populates="members")

    __table_args__ = (
        UniqueConstraint('group_id', 'alert_id', name='uq_group_member'),
    )


# ============================================================================
# Escalation configuration and routing
# ============================================================================

DEFAULT_BUSINESS_HOURS = {
    "timezone": "UTC",
    "weekdays": {"start": "09:00", "end": "17:00"},
    "weekends": {"enabled": False},
}

DEFAULT_NOTIFICATION_PREFERENCES = {
    "critical": {"immediate_channels": ["push", "sms", "in_app"], "escalation_channels": ["email", "slack", "webhook"]},
    "high": {"immediate_channels": ["push", "in_app"], "escalation_channels": ["email", "slack"]},
    "medium": {"immediate_channels": ["in_app"], "escalation_channels": ["email"]},
    "low": {"immediate_channels": ["in_app"], "escalation_channels": []},
    "info": {"immediate_channels": ["in_app"], "escalation_channels": []},
}

DEFAULT_AUTO_RESOLUTION = {
    "critical": {"enabled": False},
    "high": {"enabled": False},
    "medium": {"enabled": True, "timeout_hours": 8},
    "low": {"enabled": True, "timeout_hours": 24},
    "info": {"enabled": True, "timeout_hours": 48},
}


class EscalationConfig(Base):
    """Per-team business hours, channels and auto-resolution policy"""
    __tablename__ = "team_escalation_configs"

    id = Column(String(64), primary_key=True, default=new_id)
    team_id = Column(String(64), nullable=False, unique=True)

    business_hours = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_BUSINESS_HOURS))
    escalation_chain = Column(JSON, nullable=False, default=list)
    severity_overrides = Column(JSON, default=dict)
    primary_contacts = Column(JSON, default=list)
    escalation_contacts = Column(JSON, default=list)
    notification_preferences = Column(JSON, default=lambda: dict(DEFAULT_NOTIFICATION_PREFERENCES))
    auto_resolution = Column(JSON, default=lambda: dict(DEFAULT_AUTO_RESOLUTION))

    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class SeverityRouting(Base):
    """Routing policy for one team and severity"""
    __tablename__ = "alert_severity_routing"

    id = Column(String(64), primary_key=True, default=new_id)
    team_id = Column(String(64), nullable=False)
    severity = Column(_enum_column(AlertSeverity), nullable=False)

    assigned_users = Column(JSON, default=list)
    assigned_channels = Column(JSON, default=list)

    initial_delay_minutes = Column(Integer, nullable=False, default=0)
    escalation_interval_minutes = Column(Integer, nullable=False, default=30)
    max_escalation_level = Column(Integer, nullable=False, default=3)

    business_hours_only = Column(Boolean, default=False, nullable=False)
    weekend_escalation = Column(Boolean, default=True, nullable=False)

    auto_acknowledge_minutes = Column(Integer)
    auto_resolve_minutes = Column(Integer)

    enabled = Column(Boolean, default=True, nullable=False)
    # 1 = highest priority for routing conflicts
    priority = Column(Integer, nullable=False, default=1)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('team_id', 'severity', name='uq_severity_routing_team_severity'),
    )

    def __repr__(self):
        return f"<SeverityRouting {self.team_id}/{self.severity.value}>"


class OnCallSchedule(Base):
    __tablename__ = "on_call_schedules"

    id = Column(String(64), primary_key=True, default=new_id)
    team_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)

    schedule_type = Column(_enum_column(ScheduleType), nullable=False, default=ScheduleType.ROTATION)
    rotation_config = Column(JSON, default=dict)
    timezone = Column(String(100), default="UTC")
    effective_from = Column(UTCDateTime, nullable=False, default=utcnow)
    effective_until = Column(UTCDateTime)
    applicable_severities = Column(JSON, default=lambda: list(ALL_SEVERITIES))

    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    entries = relationship("OnCallScheduleEntry", back_populates="schedule", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('team_id', 'name', name='uq_on_call_schedule_name'),
    )

    def __repr__(self):
        return f"<OnCallSchedule {self.name}>"


class OnCallScheduleEntry(Base):
    __tablename__ = "on_call_schedule_entries"

    id = Column(String(64), primary_key=True, default=new_id)
    schedule_id = Column(String(64), ForeignKey("on_call_schedules.id", ondelete="CASCADE"), nullable=False, index=True)

    user_id = Column(String(64), nullable=False, index=True)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)

    is_primary = Column(Boolean, default=True, nullable=False)
    backup_user_id = Column(String(64))

    is_override = Column(Boolean, default=False, nullable=False)
    override_reason = Column(Text)
    original_user_id = Column(String(64))

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    schedule = relationship("OnCallSchedule", back_populates="entries")

    __table_args__ = (
        CheckConstraint('end_time > start_time', name='ck_on_call_entry_range'),
        Index('idx_on_call_entries_time_range', 'start_time', 'end_time'),
    )


# ============================================================================
# Assignment and escalation tracking
# ============================================================================

class AlertAssignment(Base):
    """Who an alert was handed to; immutable apart from the ack stamp"""
    __tablename__ = "alert_assignments"

    id = Column(String(64), primary_key=True, default=new_id)
    alert_id = Column(String(64), nullable=False, index=True)

    assigned_to = Column(String(64), nullable=False, index=True)
    assigned_by = Column(String(64))
    assignment_reason = Column(_enum_column(AssignmentReason), nullable=False)
    assignment_level = Column(Integer, nullable=False, default=0)
    expected_response_time = Column(Integer, nullable=False)

    acknowledged_at = Column(UTCDateTime)
    response_time_minutes = Column(Integer)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_alert_assignments_alert_created', 'alert_id', 'created_at'),
    )

    def __repr__(self):
        return f"<AlertAssignment {self.alert_id} -> {self.assigned_to} L{self.assignment_level}>"


class EscalationState(Base):
    """Per-alert escalation cursor advanced by the sweeper"""
    __tablename__ = "alert_escalation_state"

    id = Column(String(64), primary_key=True, default=new_id)
    alert_id = Column(String(64), nullable=False, unique=True)
    team_id = Column(String(64), nullable=False)
    severity = Column(_enum_column(AlertSeverity), nullable=False)

    # -1 until the level 0 assignment has been made
    level = Column(Integer, nullable=False, default=-1)
    status = Column(_enum_column(EscalationStatus), nullable=False, default=EscalationStatus.PENDING)
    next_escalation_at = Column(UTCDateTime)
    last_escalated_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index('idx_escalation_state_due', 'status', 'next_escalation_at'),
    )


class AlertHistory(Base):
    """Audit trail for assignments, escalations and resolutions"""
    __tablename__ = "alert_history"

    log_id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(String(64), nullable=False, index=True)

    event_type = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    performed_by = Column(String(64))
    details = Column("metadata", JSON, default=dict)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AlertHistory {self.event_type} {self.alert_id}>"
