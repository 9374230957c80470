"""
Housekeeping Tests
Tests for retention cleanup and the scheduler wiring
"""

from datetime import timedelta
from unittest.mock import patch

from conftest import NOW, TEAM
from alerting_core.alerts.context import AlertContext
from alerting_core.alerts.grouping import AlertGrouper
from alerting_core.alerts.rate_limiter import RateLimitTracker
from alerting_core.alerts.suppression import SuppressionDecision, log_decision
from alerting_core.housekeeping import run_housekeeping
from alerting_core.models import AlertGroup, MaintenanceWindow, RateLimitWindow, SuppressionLog
from alerting_core.scheduler.jobs import build_scheduler


class TestHousekeeping:
    """Test suite for periodic retention cleanup"""

    def test_run_housekeeping(self, db, factory, session_factory):
        old = AlertContext("old", None, "cpu_high", "high", TEAM)
        recent = AlertContext("recent", None, "cpu_high", "high", TEAM)
        log_decision(old, SuppressionDecision(False, "no_suppression"), session_factory, NOW - timedelta(days=31))
        log_decision(recent, SuppressionDecision(False, "no_suppression"), session_factory, NOW - timedelta(days=1))

        AlertGrouper(db).attach(AlertContext.from_alert(factory.alert(created_at=NOW - timedelta(hours=30))),
                                now=NOW - timedelta(hours=30))
        RateLimitTracker(db).record(recent, NOW - timedelta(hours=3))
        factory.maintenance(start=NOW - timedelta(hours=3), end=NOW - timedelta(hours=2))
        db.commit()

        results = run_housekeeping(session_factory, NOW)

        assert results == {
            "suppression_logs": 1,
            "alert_groups": 1,
            "rate_limit_windows": 4,
            "maintenance_windows": 1,
        }

        db.expire_all()
        assert [e.alert_id for e in db.query(SuppressionLog).all()] == ["recent"]
        assert db.query(AlertGroup).count() == 0
        assert db.query(RateLimitWindow).count() == 0
        assert db.query(MaintenanceWindow).one().enabled is False

    def test_nothing_to_clean(self, session_factory):
        assert run_housekeeping(session_factory, NOW) == {
            "suppression_logs": 0,
            "alert_groups": 0,
            "rate_limit_windows": 0,
            "maintenance_windows": 0,
        }

    def test_failing_task_does_not_block_others(self, session_factory):
        with patch("alerting_core.housekeeping.disable_expired_windows", side_effect=RuntimeError("boom")):
            results = run_housekeeping(session_factory, NOW)

        assert results["maintenance_windows"] == -1
        assert results["suppression_logs"] == 0


class TestScheduler:
    """Test suite for background job registration"""

    def test_jobs_registered(self, redis_client, session_factory):
        scheduler = build_scheduler(redis_client, session_factory)
        job_ids = sorted(job.id for job in scheduler.get_jobs())
        assert job_ids == ["escalation_sweep", "housekeeping"]

    def test_housekeeping_can_be_disabled(self, monkeypatch, redis_client):
        monkeypatch.setenv("HOUSEKEEPING_ENABLED", "false")
        scheduler = build_scheduler(redis_client)
        assert [job.id for job in scheduler.get_jobs()] == ["escalation_sweep"]
