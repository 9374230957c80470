"""
Alert Pipeline Tests
End-to-end tests: suppression, grouping, routing and assignment for one alert
"""

import pytest
from datetime import timedelta

from conftest import NOW, TEAM
from alerting_core.dispatch import DispatchQueue
from alerting_core.errors import (
    AlertNotFoundError, ConfigurationError, InvalidTransitionError, RoutingGapError
)
from alerting_core.models import (
    AlertAssignment, AlertGroup, AlertGroupMember, AlertHistory, AlertStatus,
    EscalationState, EscalationStatus, RateLimitScope, RateLimitWindow, SuppressionLog
)
from alerting_core.pipeline import AlertProcessor


class TestAlertPipeline:
    """Test suite for the complete alert workflow"""

    @pytest.fixture
    def processor(self, session_factory, redis_client):
        return AlertProcessor(session_factory, redis_client)

    @pytest.fixture
    def rule(self, db, factory):
        """cpu_high rule with two resolved alerts in the last hour, routed to alice"""
        rule = factory.rule(max_alerts_per_hour=5)
        for minutes in (40, 50):
            factory.alert(rule, created_at=NOW - timedelta(minutes=minutes), status=AlertStatus.RESOLVED)
        factory.routing("high", initial_delay_minutes=0, escalation_interval_minutes=30)
        factory.on_call("alice")
        db.commit()
        return rule

    def test_first_alert_is_assigned(self, db, factory, processor, redis_client, rule):
        alert = factory.alert(rule)
        db.commit()

        result = processor.process(alert.id, NOW)

        assert result.decision.suppressed is False
        assert result.decision.reason == "no_suppression"
        assert result.group_key == "cpu_high"
        assert result.group_alert_count == 1
        assert result.escalation_action == "assigned"
        assert result.assignee == "alice"
        assert result.dispatched is True

        db.expire_all()
        assignment = db.query(AlertAssignment).filter(AlertAssignment.alert_id == alert.id).one()
        assert assignment.assigned_to == "alice"
        assert assignment.expected_response_time == 30
        assert assignment.assignment_level == 0

        state = db.query(EscalationState).filter(EscalationState.alert_id == alert.id).one()
        assert state.status == EscalationStatus.ACTIVE
        assert state.next_escalation_at == NOW + timedelta(minutes=30)

        queued = DispatchQueue(redis_client).pending()
        assert queued[0]["assignee"] == "alice"
        assert queued[0]["expected_response_time"] == 30

        assert db.query(SuppressionLog).filter(SuppressionLog.alert_id == alert.id).count() == 1
        assert [h.event_type for h in db.query(AlertHistory).all()] == ["assigned"]

        result_dict = result.to_dict()
        assert result_dict["suppression"]["suppressed"] is False
        assert result_dict["group"]["alert_count"] == 1

    def test_second_alert_is_duplicate(self, db, factory, processor, rule):
        first = factory.alert(rule)
        db.commit()
        processor.process(first.id, NOW)

        later = NOW + timedelta(minutes=5)
        second = factory.alert(rule, created_at=later)
        db.commit()

        result = processor.process(second.id, later)

        assert result.decision.suppressed is True
        assert result.decision.reason == "duplicate_alert"
        assert result.decision.suppress_until == later + timedelta(minutes=30)
        assert result.group_alert_count == 2
        assert result.escalation_action is None
        assert result.assignee is None

        db.expire_all()
        group = db.query(AlertGroup).one()
        assert group.alert_count == 2
        assert group.last_alert_id == second.id
        member = db.query(AlertGroupMember).filter(AlertGroupMember.alert_id == second.id).one()
        assert member.suppressed is True

        assert db.query(AlertAssignment).filter(AlertAssignment.alert_id == second.id).count() == 0
        assert db.query(EscalationState).count() == 1

        # Suppressed alerts are not counted against the scoped windows
        team_window = db.query(RateLimitWindow).filter(
            RateLimitWindow.limit_type == RateLimitScope.TEAM,
            RateLimitWindow.scope_id == TEAM,
        ).one()
        assert team_window.current_count == 1

    def test_burst_stored_before_processing(self, db, factory, processor, rule):
        """The first alert of a stored burst is still assigned"""
        first = factory.alert(rule)
        second = factory.alert(rule, created_at=NOW + timedelta(minutes=5))
        db.commit()
        later = NOW + timedelta(minutes=6)

        first_result = processor.process(first.id, later)
        second_result = processor.process(second.id, later)

        assert first_result.decision.suppressed is False
        assert first_result.assignee == "alice"
        assert second_result.decision.reason == "duplicate_alert"
        assert second_result.group_alert_count == 2

    def test_reprocessing_rejected(self, db, factory, processor, rule):
        alert = factory.alert(rule)
        db.commit()
        processor.process(alert.id, NOW)

        with pytest.raises(InvalidTransitionError):
            processor.process(alert.id, NOW + timedelta(minutes=1))

        db.expire_all()
        assert db.query(AlertAssignment).count() == 1

    def test_unknown_alert(self, processor):
        with pytest.raises(AlertNotFoundError):
            processor.process("missing", NOW)

    def test_suppress_all_maintenance_flags_group(self, db, factory, processor, rule):
        factory.maintenance(suppress_all=True)
        alert = factory.alert(rule)
        db.commit()

        result = processor.process(alert.id, NOW)

        assert result.decision.reason == "maintenance_window"
        db.expire_all()
        assert db.query(AlertGroup).one().suppression_applied is True

    def test_missing_routing_surfaces_configuration_error(self, db, factory, processor):
        alert = factory.alert(factory.rule(), severity="critical")
        db.commit()

        with pytest.raises(ConfigurationError):
            processor.process(alert.id, NOW)

        db.expire_all()
        assert db.query(AlertGroupMember).filter(AlertGroupMember.alert_id == alert.id).count() == 1
        assert db.query(EscalationState).count() == 0

    def test_routing_gap_raised_after_commit(self, db, factory, processor):
        factory.routing("high")
        alert = factory.alert(factory.rule())
        db.commit()

        with pytest.raises(RoutingGapError):
            processor.process(alert.id, NOW)

        db.expire_all()
        state = db.query(EscalationState).filter(EscalationState.alert_id == alert.id).one()
        assert state.status == EscalationStatus.PENDING
        assert state.next_escalation_at == NOW + timedelta(minutes=30)
        assert [h.event_type for h in db.query(AlertHistory).all()] == ["routing_gap"]

    def test_without_dispatch_queue(self, db, factory, session_factory, rule):
        alert = factory.alert(rule)
        db.commit()

        result = AlertProcessor(session_factory).process(alert.id, NOW)

        assert result.assignee == "alice"
        assert result.dispatched is False
