"""
Resilience Module - Bounded retries for optimistic-lock conflicts
"""

from alerting_core.resilience.retry import CONFLICT_ERRORS, retry_on_conflict

__all__ = [
    "CONFLICT_ERRORS",
    "retry_on_conflict",
]
