"""
Shared fixtures: in-memory database, mock redis and row factories
"""

import os
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from alerting_core.alerts.maintenance import create_maintenance_window
from alerting_core.database import init_db
from alerting_core.escalation.oncall import add_schedule_entry, create_schedule
from alerting_core.models import (
    Alert, AlertRule, AlertSeverity, AlertStatus, EscalationConfig,
    SeverityRouting, SuppressionRule, SuppressionRuleType
)

# Monday, inside default business hours (09:00-17:00 UTC)
NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
TEAM = "team-platform"


class MockRedis:
    """In-memory stand-in for the redis commands the engine uses"""

    def __init__(self):
        self.data = {}
        self.lists = {}

    def ping(self):
        return True

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            if self.lists.pop(key, None) is not None:
                removed += 1
        return removed

    def lpush(self, key, *values):
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def ltrim(self, key, start, end):
        items = self.lists.get(key, [])
        self.lists[key] = items[start:] if end == -1 else items[start:end + 1]
        return True

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]


class Factory:
    """Creates rows with sensible defaults; every helper flushes"""

    def __init__(self, db):
        self.db = db

    def _add(self, row):
        self.db.add(row)
        self.db.flush()
        return row

    def rule(self, metric_name="cpu_high", team_id=TEAM, max_alerts_per_hour=5, **kwargs):
        return self._add(AlertRule(
            name=kwargs.pop("name", f"{metric_name} detector"),
            metric_name=metric_name,
            team_id=team_id,
            max_alerts_per_hour=max_alerts_per_hour,
            **kwargs
        ))

    def alert(self, rule=None, severity="high", created_at=NOW, team_id=TEAM,
              metric_name=None, dimensions=None, status=AlertStatus.ACTIVE):
        return self._add(Alert(
            alert_rule_id=rule.id if rule is not None else None,
            metric_name=metric_name or (rule.metric_name if rule is not None else "cpu_high"),
            severity=AlertSeverity(severity),
            status=status,
            team_id=team_id,
            dimensions=dimensions or {},
            created_at=created_at,
        ))

    def routing(self, severity="high", team_id=TEAM, assigned_users=None, **kwargs):
        kwargs.setdefault("initial_delay_minutes", 0)
        kwargs.setdefault("escalation_interval_minutes", 30)
        kwargs.setdefault("max_escalation_level", 3)
        return self._add(SeverityRouting(
            team_id=team_id,
            severity=AlertSeverity(severity),
            assigned_users=assigned_users or [],
            **kwargs
        ))

    def escalation_config(self, team_id=TEAM, **kwargs):
        return self._add(EscalationConfig(team_id=team_id, **kwargs))

    def suppression_rule(self, rule_type=SuppressionRuleType.CUSTOM, conditions=None,
                         team_id=TEAM, priority=1, **kwargs):
        return self._add(SuppressionRule(
            name=kwargs.pop("name", f"{rule_type.value} rule p{priority}"),
            rule_type=rule_type,
            conditions=conditions or {},
            team_id=team_id,
            priority=priority,
            **kwargs
        ))

    def maintenance(self, start=NOW - timedelta(minutes=30), end=NOW + timedelta(hours=1), **kwargs):
        kwargs.setdefault("team_id", TEAM)
        return create_maintenance_window(self.db, kwargs.pop("name", "planned maintenance"), start, end, **kwargs)

    def on_call(self, user_id, team_id=TEAM, start=NOW - timedelta(hours=1), end=NOW + timedelta(hours=8),
                name=None, applicable_severities=None, **entry_kwargs):
        schedule = create_schedule(
            self.db,
            team_id,
            name or f"{user_id} rotation",
            effective_from=NOW - timedelta(days=30),
            applicable_severities=applicable_severities,
        )
        add_schedule_entry(self.db, schedule, user_id, start, end, **entry_kwargs)
        return schedule


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def redis_client():
    return MockRedis()
