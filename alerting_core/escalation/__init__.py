"""
Escalation Module
=================
Severity routing, on-call resolution, assignment tracking and the
escalation sweep.
"""

from .assignments import AssignmentTracker, expected_response_minutes
from .oncall import OnCallResolver, OnCallResult
from .routing import RoutingPolicy, SeverityRouter
from .escalator import Escalator, EscalationOutcome
from .sweeper import EscalationSweeper

__all__ = [
    "AssignmentTracker",
    "expected_response_minutes",
    "OnCallResolver",
    "OnCallResult",
    "RoutingPolicy",
    "SeverityRouter",
    "Escalator",
    "EscalationOutcome",
    "EscalationSweeper",
]
