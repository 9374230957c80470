"""
Scheduled Jobs
Escalation sweep (every minute) and retention housekeeping, run by an
APScheduler AsyncIOScheduler started in the application lifespan.
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

import redis
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from alerting_core import constants
from alerting_core.escalation.sweeper import EscalationSweeper
from alerting_core.housekeeping import run_housekeeping

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "alerting:escalation_sweep_lock"


def run_escalation_sweep(redis_client, session_factory=None, now: Optional[datetime] = None) -> Optional[Dict[str, int]]:
    """
    Sweep due escalations while holding a short redis lock, so only one
    instance sweeps per interval. Returns None when another instance holds it.
    """
    now = now or datetime.now(timezone.utc)
    token = f"{now.isoformat()}:{uuid.uuid4().hex}"

    try:
        acquired = redis_client.set(SWEEP_LOCK_KEY, token, nx=True, ex=constants.SWEEP_LOCK_TIMEOUT_SECONDS)
    except redis.exceptions.RedisError as e:
        logger.error(f"[SCHEDULER] Could not take sweep lock: {e}")
        return None
    if not acquired:
        logger.debug("[SCHEDULER] Escalation sweep already running elsewhere")
        return None

    try:
        return EscalationSweeper(session_factory, redis_client).sweep(now)
    finally:
        _release_lock(redis_client, token)


def _release_lock(redis_client, token: str) -> None:
    """Delete the sweep lock only while it still holds this sweep's token"""
    try:
        held = redis_client.get(SWEEP_LOCK_KEY)
        if isinstance(held, bytes):
            held = held.decode()
        if held != token:
            logger.warning("[SCHEDULER] Sweep lock no longer holds this sweep's token, leaving it")
            return
        redis_client.delete(SWEEP_LOCK_KEY)
    except redis.exceptions.RedisError as e:
        logger.warning(f"[SCHEDULER] Sweep lock release failed, expires in {constants.SWEEP_LOCK_TIMEOUT_SECONDS}s: {e}")


def run_scheduled_housekeeping(session_factory=None) -> Dict[str, int]:
    results = run_housekeeping(session_factory)
    logger.info(f"[SCHEDULER] Housekeeping complete: {results}")
    return results


def build_scheduler(redis_client, session_factory=None) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        run_escalation_sweep,
        IntervalTrigger(seconds=constants.ESCALATION_SWEEP_INTERVAL_SECONDS),
        args=[redis_client, session_factory],
        id="escalation_sweep",
        name="Escalation Sweep",
        max_instances=1,
        coalesce=True,
    )

    if os.getenv("HOUSEKEEPING_ENABLED", "true").lower() == "true":
        scheduler.add_job(
            run_scheduled_housekeeping,
            IntervalTrigger(minutes=constants.HOUSEKEEPING_INTERVAL_MINUTES),
            args=[session_factory],
            id="housekeeping",
            name="Retention Housekeeping",
            max_instances=1,
            coalesce=True,
        )

    return scheduler
