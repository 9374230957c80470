"""
Bounded Retry for Optimistic-Lock Conflicts

Counters, groups and escalation cursors are updated with compare-and-swap
(version columns). A lost race surfaces as StaleDataError at flush, and two
writers lazily creating the same row as IntegrityError. Either way the whole
unit of work is re-run from a fresh session.

Usage:
    from alerting_core.resilience.retry import retry_on_conflict

    @retry_on_conflict("process_alert")
    def _evaluate_and_group(alert_id, now):
        with get_db_context(session_factory) as db:
            ...
"""

from functools import wraps
from typing import Callable, Optional, Tuple, Type
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from alerting_core import constants
from alerting_core.errors import ConcurrencyConflictError
from alerting_core.metrics import CONCURRENCY_RETRIES, increment_counter

logger = logging.getLogger(__name__)

CONFLICT_ERRORS: Tuple[Type[Exception], ...] = (StaleDataError, IntegrityError)


def retry_on_conflict(operation: str, max_attempts: Optional[int] = None) -> Callable:
    """
    Re-run the wrapped unit of work when it loses a concurrent update.

    The wrapped callable must open and commit its own transaction, so every
    attempt starts from current state. After max_attempts conflicts a
    ConcurrencyConflictError is raised.
    """
    attempts = max_attempts or constants.MAX_CONFLICT_RETRIES

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_error = None
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except CONFLICT_ERRORS as e:
                    last_error = e
                    increment_counter(CONCURRENCY_RETRIES, {"operation": operation})
                    logger.warning(
                        f"[CONCURRENCY] {operation} conflict on attempt {attempt}/{attempts}: "
                        f"{type(e).__name__}"
                    )
            raise ConcurrencyConflictError(
                f"{operation} failed after {attempts} attempts"
            ) from last_error
        return wrapper
    return decorator
