"""
Severity Routing Tests
Tests for routing lookup, business hours, responder selection and escalation timing
"""

import pytest
from datetime import datetime, timedelta, timezone

from conftest import NOW, TEAM
from alerting_core.errors import ConfigurationError, RoutingGapError
from alerting_core.escalation.config import BusinessHours, EscalationPolicy, load_policy
from alerting_core.escalation.routing import (
    RoutingPolicy, SeverityRouter, escalation_paused, level_due_at, routing_statistics
)
from alerting_core.escalation.assignments import AssignmentTracker
from alerting_core.models import AlertStatus, AssignmentReason


class TestBusinessHours:
    """Test suite for business-hours windows"""

    @pytest.fixture
    def hours(self):
        return BusinessHours.from_config({
            "timezone": "America/New_York",
            "weekdays": {"start": "09:00", "end": "17:00"},
            "weekends": {"enabled": False},
        })

    def test_inside_and_outside(self, hours):
        # 2026-03-02 is a Monday; New York is UTC-5 until the March DST switch
        assert hours.is_business_hours(datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc))
        assert not hours.is_business_hours(datetime(2026, 3, 2, 13, 59, tzinfo=timezone.utc))
        assert not hours.is_business_hours(datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc))

    def test_weekend_closed(self, hours):
        saturday_noon = datetime(2026, 3, 7, 17, 0, tzinfo=timezone.utc)
        assert hours.is_weekend(saturday_noon)
        assert not hours.is_business_hours(saturday_noon)

    def test_next_start(self, hours):
        friday_evening = datetime(2026, 2, 27, 23, 0, tzinfo=timezone.utc)
        assert hours.next_start(friday_evening) == datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)

        inside = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
        assert hours.next_start(inside) == inside

    def test_next_start_with_open_weekend(self, hours):
        friday_evening = datetime(2026, 2, 27, 23, 0, tzinfo=timezone.utc)
        # Saturday 00:00 in New York
        assert hours.next_start(friday_evening, weekend_open=True) == datetime(2026, 2, 28, 5, 0, tzinfo=timezone.utc)

        sunday = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert hours.next_start(sunday, weekend_open=True) == sunday

    def test_weekend_window(self):
        hours = BusinessHours.from_config({
            "timezone": "UTC",
            "weekdays": {"start": "08:00", "end": "18:00"},
            "weekends": {"enabled": True, "start": "10:00", "end": "14:00"},
        })
        assert hours.is_business_hours(datetime(2026, 3, 7, 11, 0, tzinfo=timezone.utc))
        assert not hours.is_business_hours(datetime(2026, 3, 7, 9, 0, tzinfo=timezone.utc))

    @pytest.mark.parametrize("document", [
        {"timezone": "Nowhere/Land"},
        {"weekdays": {"start": "17:00", "end": "09:00"}},
        {"weekdays": {"start": "nine", "end": "17:00"}},
    ])
    def test_invalid_config(self, document):
        with pytest.raises(ConfigurationError):
            BusinessHours.from_config(document)


class TestEscalationPolicy:
    """Test suite for team escalation configuration"""

    def test_defaults_without_config(self, db):
        policy = load_policy(db, TEAM)

        assert policy.escalation_chain == []
        assert policy.channels_for("critical", 0) == ["push", "sms", "in_app"]
        assert policy.channels_for("critical", 1, ["pagerduty", "email"]) == ["email", "slack", "webhook", "pagerduty"]
        assert policy.auto_resolve_minutes("critical") is None
        assert policy.auto_resolve_minutes("medium") == 8 * 60

    def test_stored_config(self, db, factory):
        factory.escalation_config(
            escalation_chain=["lead", {"user_id": "manager"}, {"users": ["director", "vp"]}],
            severity_overrides={"critical": {"escalation_chain": ["cto"]}},
            primary_contacts=["catch-all"],
        )
        policy = load_policy(db, TEAM)

        assert policy.chain_target("high", 1) == "lead"
        assert policy.chain_target("high", 2) == "manager"
        assert policy.chain_target("high", 3) == "director"
        assert policy.chain_target("high", 4) is None
        assert policy.chain_target("critical", 1) == "cto"
        assert policy.primary_contacts == ["catch-all"]

    def test_chain_entries_with_levels(self, db, factory):
        factory.escalation_config(escalation_chain=[
            {"level": 2, "contacts": ["manager"], "channels": ["sms"]},
            {"level": 1, "contacts": ["lead", "backup-lead"], "channels": ["slack"]},
        ])
        policy = load_policy(db, TEAM)

        assert policy.chain_target("high", 1) == "lead"
        assert policy.chain_target("high", 2) == "manager"
        assert policy.chain_target("high", 3) is None

    def test_disabled_config_falls_back_to_defaults(self, db, factory):
        factory.escalation_config(primary_contacts=["catch-all"], enabled=False)
        assert load_policy(db, TEAM).primary_contacts == []

    def test_routing_overrides_auto_resolve_timeout(self, db):
        policy = load_policy(db, TEAM)
        routing = RoutingPolicy(TEAM, "low", auto_resolve_minutes=45)
        assert policy.auto_resolve_minutes("low", routing) == 45
        assert policy.auto_resolve_minutes("high", routing) is None


class TestSeverityRouter:
    """Test suite for routing lookup and responder selection"""

    @pytest.fixture
    def router(self, db):
        return SeverityRouter(db)

    def test_resolve_routing(self, router, factory):
        factory.routing("high", assigned_users=["static-user"], assigned_channels=["slack"])

        routing = router.resolve_routing(TEAM, "high")
        assert routing.assigned_users == ["static-user"]
        assert routing.escalation_interval_minutes == 30
        assert routing.to_dict()["severity"] == "high"

    def test_missing_routing_raises(self, router):
        with pytest.raises(ConfigurationError):
            router.resolve_routing(TEAM, "high")

    def test_disabled_routing_raises(self, router, factory):
        factory.routing("high", enabled=False)
        with pytest.raises(ConfigurationError):
            router.resolve_routing(TEAM, "high")

    def test_invalid_timing_raises(self, router, factory):
        factory.routing("high", escalation_interval_minutes=0)
        with pytest.raises(ConfigurationError):
            router.resolve_routing(TEAM, "high")

    def test_level_zero_prefers_on_call(self, db, router, factory):
        factory.routing("high", assigned_users=["static-user"])
        factory.on_call("alice")
        routing = router.resolve_routing(TEAM, "high")

        responder = router.select_responder(TEAM, "high", 0, routing, load_policy(db, TEAM), NOW)
        assert (responder.user_id, responder.source) == ("alice", "on_call")

    def test_level_zero_fallbacks(self, db, router, factory):
        factory.escalation_config(primary_contacts=["catch-all"])
        policy = load_policy(db, TEAM)

        with_users = RoutingPolicy(TEAM, "high", assigned_users=["static-user"])
        assert router.select_responder(TEAM, "high", 0, with_users, policy, NOW).user_id == "static-user"

        without_users = RoutingPolicy(TEAM, "high")
        responder = router.select_responder(TEAM, "high", 0, without_users, policy, NOW)
        assert (responder.user_id, responder.source) == ("catch-all", "primary_contact")

    def test_level_zero_gap(self, db, router):
        with pytest.raises(RoutingGapError) as exc_info:
            router.select_responder(TEAM, "high", 0, RoutingPolicy(TEAM, "high"), load_policy(db, TEAM), NOW)
        assert exc_info.value.level == 0

    def test_higher_levels(self, db, router, factory):
        factory.escalation_config(escalation_chain=["lead"], escalation_contacts=["esc-1", "esc-2"])
        factory.on_call("alice", backup_user_id="bob")
        policy = load_policy(db, TEAM)
        routing = RoutingPolicy(TEAM, "high")

        assert router.select_responder(TEAM, "high", 1, routing, policy, NOW).user_id == "lead"
        second = router.select_responder(TEAM, "high", 2, routing, policy, NOW)
        assert (second.user_id, second.source) == ("bob", "on_call_backup")

    def test_escalation_contacts_clamp(self, db, router, factory):
        factory.escalation_config(escalation_contacts=["esc-1", "esc-2"])
        policy = load_policy(db, TEAM)
        routing = RoutingPolicy(TEAM, "high")

        assert router.select_responder(TEAM, "high", 1, routing, policy, NOW).user_id == "esc-1"
        assert router.select_responder(TEAM, "high", 2, routing, policy, NOW).user_id == "esc-2"
        assert router.select_responder(TEAM, "high", 5, routing, policy, NOW).user_id == "esc-2"

    def test_higher_levels_walk_routing_users(self, db, router):
        routing = RoutingPolicy(TEAM, "high", assigned_users=["alice", "bob"])
        policy = load_policy(db, TEAM)

        first = router.select_responder(TEAM, "high", 1, routing, policy, NOW)
        assert (first.user_id, first.source) == ("bob", "routing")
        assert router.select_responder(TEAM, "high", 3, routing, policy, NOW).user_id == "bob"

    def test_higher_level_gap(self, db, router):
        with pytest.raises(RoutingGapError):
            router.select_responder(TEAM, "high", 1, RoutingPolicy(TEAM, "high"), load_policy(db, TEAM), NOW)


class TestEscalationTiming:
    """Test suite for due times and business-hours pauses"""

    @pytest.fixture
    def routing(self):
        return RoutingPolicy(TEAM, "high", initial_delay_minutes=5, escalation_interval_minutes=30,
                             max_escalation_level=2)

    def test_level_due_at(self, factory, routing):
        alert = factory.alert(created_at=NOW)

        assert level_due_at(alert, -1, routing) == NOW + timedelta(minutes=5)
        assert level_due_at(alert, 0, routing, NOW + timedelta(minutes=5)) == NOW + timedelta(minutes=35)
        assert level_due_at(alert, 2, routing, NOW) is None

    def test_should_escalate(self, db, factory, routing):
        router = SeverityRouter(db)
        policy = load_policy(db, TEAM)
        alert = factory.alert(created_at=NOW)

        assert not router.should_escalate(alert, -1, routing, policy, NOW + timedelta(minutes=4))
        assert router.should_escalate(alert, -1, routing, policy, NOW + timedelta(minutes=5))
        assert router.should_escalate(alert, 0, routing, policy, NOW + timedelta(minutes=35),
                                      last_escalated_at=NOW + timedelta(minutes=5))

        alert.status = AlertStatus.ACKNOWLEDGED
        assert not router.should_escalate(alert, -1, routing, policy, NOW + timedelta(minutes=5))

    def test_business_hours_pause(self, db):
        policy = load_policy(db, TEAM)
        routing = RoutingPolicy(TEAM, "low", business_hours_only=True, weekend_escalation=False)
        night = datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc)
        saturday = datetime(2026, 3, 7, 12, 0, tzinfo=timezone.utc)

        assert not escalation_paused(routing, policy, NOW)
        assert escalation_paused(routing, policy, night)
        assert escalation_paused(routing, policy, saturday)

        routing.weekend_escalation = True
        assert not escalation_paused(routing, policy, saturday)
        assert escalation_paused(routing, policy, night)

    def test_round_the_clock_never_pauses(self, db):
        policy = load_policy(db, TEAM)
        night = datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc)
        assert not escalation_paused(RoutingPolicy(TEAM, "critical"), policy, night)


class TestRoutingStatistics:
    """Test suite for assignment statistics"""

    def test_counts_by_reason_and_severity(self, db, factory):
        tracker = AssignmentTracker(db)
        high = factory.alert(severity="high")
        low = factory.alert(severity="low")
        tracker.assign(high.id, "alice", "system", AssignmentReason.AUTO_SEVERITY, 0, NOW)
        tracker.assign(high.id, "lead", "system", AssignmentReason.ESCALATION, 1, NOW + timedelta(minutes=30))
        tracker.assign(low.id, "bob", "carol", AssignmentReason.MANUAL, 0, NOW)
        tracker.acknowledge(low.id, "bob", NOW + timedelta(minutes=10))

        stats = routing_statistics(db, TEAM, hours=24, now=NOW + timedelta(hours=1))

        assert stats["total_assignments"] == 3
        assert stats["acknowledged"] == 1
        assert stats["by_reason"] == {"auto_severity": 1, "escalation": 1, "manual": 1}
        assert stats["by_severity"] == {"high": 2, "low": 1}
