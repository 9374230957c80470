"""
Condition Parsing Tests
Tests for suppression rule condition documents
"""

import pytest

from alerting_core.alerts.conditions import And, Equals, InSet, MATCH_ALL, Or, parse_conditions
from alerting_core.alerts.context import AlertContext
from alerting_core.errors import ConditionError, ConfigurationError


class TestConditionParsing:
    """Test suite for condition document parsing and matching"""

    @pytest.fixture
    def context(self):
        return AlertContext(
            alert_id="a-1",
            rule_id="r-1",
            metric_name="cpu_high",
            severity="high",
            team_id="team-1",
            dimensions={"host": "web-1", "region": "eu"},
        )

    def test_missing_document_matches_everything(self, context):
        assert parse_conditions(None) is MATCH_ALL
        assert parse_conditions({}).matches(context)

    def test_flat_document(self, context):
        condition = parse_conditions({"metric_name": "cpu_high", "severity": ["high", "critical"]})

        assert isinstance(condition, And)
        assert condition.matches(context)
        assert not parse_conditions({"severity": ["high", "critical"]}).matches(
            AlertContext("a-2", None, "cpu_high", "low", "team-1")
        )

    def test_flat_document_ignores_grouping_keys(self, context):
        condition = parse_conditions({"metric_name": "cpu_high", "group_by": ["host"]})
        assert condition == And((Equals("metric_name", "cpu_high"),))

    def test_tagged_document(self, context):
        condition = parse_conditions({
            "op": "or",
            "conditions": [
                {"op": "eq", "field": "metric_name", "value": "disk_full"},
                {"op": "and", "conditions": [
                    {"op": "in", "field": "severity", "values": ["high"]},
                    {"op": "eq", "field": "dimensions.region", "value": "eu"},
                ]},
            ],
        })

        assert isinstance(condition, Or)
        assert condition.matches(context)

    def test_dimension_field_missing_on_alert(self, context):
        condition = parse_conditions({"dimensions.cluster": "prod"})
        assert not condition.matches(context)

    def test_enum_values_compare_by_value(self, context):
        assert Equals("severity", "high").matches(context)
        assert InSet("severity", ("critical", "high")).matches(context)

    @pytest.mark.parametrize("document", [
        {"op": "xor", "conditions": []},
        {"op": "eq", "field": "metric_name"},
        {"op": "in", "field": "severity", "values": "high"},
        {"op": "and", "conditions": "nope"},
        {"unknown_field": "x"},
        {"metric_name": {"nested": True}},
        {"metric_name": True},
        ["metric_name"],
    ])
    def test_malformed_documents_raise(self, document):
        with pytest.raises(ConditionError):
            parse_conditions(document)

    def test_condition_errors_are_configuration_errors(self):
        with pytest.raises(ConfigurationError):
            parse_conditions({"dimensions.": "x"})
