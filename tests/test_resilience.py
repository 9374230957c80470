"""
Resilience Tests
Tests for conflict retries and dispatch queue failure handling
"""

import json
import pytest
from unittest.mock import MagicMock

import redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from alerting_core.dispatch import DispatchQueue, DispatchRequest
from alerting_core.errors import ConcurrencyConflictError
from alerting_core.resilience.retry import retry_on_conflict


class TestRetryOnConflict:
    """Test suite for bounded optimistic-lock retries"""

    def test_succeeds_after_conflicts(self):
        calls = []

        @retry_on_conflict("test_operation", max_attempts=3)
        def unit_of_work():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "done"

        assert unit_of_work() == "done"
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self):
        calls = []

        @retry_on_conflict("test_operation", max_attempts=2)
        def unit_of_work():
            calls.append(1)
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            unit_of_work()

        assert len(calls) == 2
        assert isinstance(exc_info.value.__cause__, IntegrityError)

    def test_other_errors_propagate_immediately(self):
        calls = []

        @retry_on_conflict("test_operation")
        def unit_of_work():
            calls.append(1)
            raise ValueError("not a conflict")

        with pytest.raises(ValueError):
            unit_of_work()
        assert len(calls) == 1


class TestDispatchQueue:
    """Test suite for the bounded dispatch request list"""

    @pytest.fixture
    def request_(self):
        return DispatchRequest(
            alert_id="a-1",
            assignee="alice",
            channel_set=["push", "in_app"],
            expected_response_time=30,
            severity="high",
            team_id="team-platform",
        )

    def test_push_and_pending(self, redis_client, request_):
        queue = DispatchQueue(redis_client)

        assert queue.push(request_) is True

        pending = queue.pending()
        assert pending == [json.loads(request_.to_json())]
        assert pending[0]["channel_set"] == ["push", "in_app"]

    def test_queue_is_trimmed(self, redis_client, request_):
        queue = DispatchQueue(redis_client, key="test:dispatch", max_length=2)
        for assignee in ("alice", "bob", "carol"):
            request_.assignee = assignee
            queue.push(request_)

        assert [r["assignee"] for r in queue.pending()] == ["carol", "bob"]

    def test_redis_failure_is_reported_not_raised(self, request_):
        broken = MagicMock()
        broken.lpush.side_effect = redis.exceptions.ConnectionError("connection refused")

        assert DispatchQueue(broken).push(request_) is False
