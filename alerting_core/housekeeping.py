"""
Retention Housekeeping
Deletes or resets records that have already expired. Every task is idempotent
and only touches rows past their horizon, so it can run alongside live
evaluation without changing any in-flight decision.
"""

from sqlalchemy.orm import sessionmaker
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
import logging

from alerting_core import constants
from alerting_core.alerts.grouping import AlertGrouper
from alerting_core.alerts.maintenance import disable_expired_windows
from alerting_core.alerts.rate_limiter import RateLimitTracker
from alerting_core.database import get_db_context
from alerting_core.models import SuppressionLog

logger = logging.getLogger(__name__)


def purge_suppression_logs(db, now: datetime) -> int:
    cutoff = now - timedelta(days=constants.SUPPRESSION_LOG_RETENTION_DAYS)
    deleted = db.query(SuppressionLog).filter(
        SuppressionLog.created_at < cutoff
    ).delete(synchronize_session=False)
    if deleted:
        logger.info(f"[HOUSEKEEPING] Removed {deleted} suppression log entries older than {cutoff.isoformat()}")
    return deleted


def run_housekeeping(session_factory: Optional[sessionmaker] = None, now: Optional[datetime] = None) -> Dict[str, int]:
    """Run each cleanup task in its own transaction; one failing task does not block the others"""
    now = now or datetime.now(timezone.utc)
    tasks = {
        "suppression_logs": purge_suppression_logs,
        "alert_groups": lambda db, at: AlertGrouper(db).purge_stale(at),
        "rate_limit_windows": lambda db, at: RateLimitTracker(db).purge_spent(at),
        "maintenance_windows": disable_expired_windows,
    }

    results: Dict[str, int] = {}
    for name, task in tasks.items():
        try:
            with get_db_context(session_factory) as db:
                results[name] = task(db, now)
        except Exception:
            logger.error(f"[HOUSEKEEPING] Task {name} failed", exc_info=True)
            results[name] = -1
    return results
