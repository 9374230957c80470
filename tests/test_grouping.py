"""
Alert Grouping Tests
Tests for group keys, rolling windows and grouping rules
"""

import pytest
from datetime import timedelta

from conftest import NOW, TEAM
from alerting_core.alerts.context import AlertContext
from alerting_core.alerts.grouping import AlertGrouper, GroupingConfig, group_key
from alerting_core.errors import ConfigurationError
from alerting_core.models import AlertGroup, AlertGroupMember, SuppressionRuleType


def _context(alert):
    return AlertContext.from_alert(alert)


class TestGroupKey:
    """Test suite for deterministic group keys"""

    def test_metric_only_without_dimensions(self):
        context = AlertContext("a-1", None, "cpu_high", "high", TEAM, {"host": "web-1"})
        assert group_key(context) == "cpu_high"

    def test_sorted_dimension_signature(self):
        context = AlertContext("a-1", None, "cpu_high", "high", TEAM, {"region": "eu", "host": "web-1"})
        assert group_key(context, ["region", "host"]) == "cpu_high|host=web-1,region=eu"
        assert group_key(context, ["host", "region"]) == group_key(context, ["region", "host"])

    def test_missing_dimension_left_out(self):
        context = AlertContext("a-1", None, "cpu_high", "high", TEAM, {"host": "web-1"})
        assert group_key(context, ["host", "cluster"]) == "cpu_high|host=web-1"
        assert group_key(context, ["cluster"]) == "cpu_high"


class TestAlertGrouper:
    """Test suite for attaching alerts to rolling groups"""

    @pytest.fixture
    def grouper(self, db):
        return AlertGrouper(db)

    def test_first_alert_opens_group(self, grouper, factory):
        alert = factory.alert()
        group = grouper.attach(_context(alert), now=NOW)

        assert group.group_key == "cpu_high"
        assert group.alert_count == 1
        assert group.first_alert_id == alert.id
        assert group.last_alert_id == alert.id
        assert group.severities == ["high"]
        assert group.time_span_minutes == 0
        assert group.suppression_applied is False

    def test_alerts_within_window_share_group(self, grouper, factory):
        first = factory.alert(created_at=NOW)
        second = factory.alert(severity="critical", created_at=NOW + timedelta(minutes=20))

        group = grouper.attach(_context(first), now=NOW)
        same = grouper.attach(_context(second), suppressed=True, now=NOW + timedelta(minutes=20))

        assert same.id == group.id
        assert same.alert_count == 2
        assert same.last_alert_id == second.id
        assert same.severities == ["high", "critical"]
        assert same.time_span_minutes == 20

        members = {m.alert_id: m.suppressed for m in same.members}
        assert members == {first.id: False, second.id: True}

    def test_window_expiry_opens_new_group(self, db, grouper, factory):
        first = factory.alert(created_at=NOW)
        later = NOW + timedelta(minutes=61)
        second = factory.alert(created_at=later)

        group = grouper.attach(_context(first), now=NOW)
        fresh = grouper.attach(_context(second), now=later)

        assert fresh.id != group.id
        assert fresh.alert_count == 1
        assert db.query(AlertGroup).count() == 2

    def test_groups_are_team_scoped(self, grouper, factory):
        ours = grouper.attach(_context(factory.alert()), now=NOW)
        theirs = grouper.attach(_context(factory.alert(team_id="team-other")), now=NOW)
        assert ours.id != theirs.id

    def test_reattach_is_idempotent(self, db, grouper, factory):
        alert = factory.alert()
        group = grouper.attach(_context(alert), now=NOW)
        again = grouper.attach(_context(alert), now=NOW + timedelta(minutes=1))

        assert again.id == group.id
        assert again.alert_count == 1
        assert db.query(AlertGroupMember).count() == 1

    def test_suppress_all_flags_group(self, grouper, factory):
        group = grouper.attach(_context(factory.alert()), suppressed=True, suppress_all=True, now=NOW)
        assert group.suppression_applied is True
        assert group.suppressed_at == NOW

    def test_grouping_rule_sets_window_and_dimensions(self, grouper, factory):
        factory.suppression_rule(
            rule_type=SuppressionRuleType.GROUPING,
            conditions={"group_by": ["host"]},
            window_size_minutes=10,
        )
        web1 = factory.alert(dimensions={"host": "web-1"})
        web2 = factory.alert(dimensions={"host": "web-2"})

        g1 = grouper.attach(_context(web1), now=NOW)
        g2 = grouper.attach(_context(web2), now=NOW)

        assert g1.group_key == "cpu_high|host=web-1"
        assert g2.group_key == "cpu_high|host=web-2"
        assert grouper.grouping_config(TEAM) == GroupingConfig(window_minutes=10, group_by=("host",))

        later = factory.alert(dimensions={"host": "web-1"}, created_at=NOW + timedelta(minutes=11))
        assert grouper.attach(_context(later), now=NOW + timedelta(minutes=11)).id != g1.id

    def test_invalid_grouping_rule(self, grouper, factory):
        factory.suppression_rule(rule_type=SuppressionRuleType.GROUPING, conditions={"group_by": [1, 2]})
        with pytest.raises(ConfigurationError):
            grouper.grouping_config(TEAM)

    def test_summary(self, grouper, factory):
        group = grouper.attach(_context(factory.alert()), now=NOW)
        summary = grouper.summary(group)
        assert summary["alert_count"] == 1
        assert summary["first_alert_at"] == NOW.isoformat()

    def test_purge_stale(self, db, grouper, factory):
        grouper.attach(_context(factory.alert(created_at=NOW)), now=NOW)
        recent = factory.alert(metric_name="disk_full", created_at=NOW + timedelta(hours=20))
        grouper.attach(_context(recent), now=NOW + timedelta(hours=20))

        assert grouper.purge_stale(NOW + timedelta(hours=25)) == 1
        assert db.query(AlertGroup).count() == 1
        assert db.query(AlertGroupMember).count() == 1
