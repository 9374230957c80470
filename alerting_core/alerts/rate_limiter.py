"""
Rate Limit Tracker
==================
Counts alerts per team, metric, severity and globally (plus explicitly
configured rule windows) inside fixed windows that reset on expiry.

Each window is its own row with an optimistic version column, so increments
from concurrent workers are compare-and-swap updates: a lost race raises
StaleDataError at flush and the surrounding unit of work is retried.
"""

from sqlalchemy.orm import Session
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
import logging

from alerting_core import constants
from alerting_core.alerts.context import AlertContext
from alerting_core.models import RateLimitScope, RateLimitWindow

logger = logging.getLogger(__name__)


@dataclass
class RateLimitHit:
    """A scope whose cap has been reached"""
    limit_type: str
    scope_id: str
    current_count: int
    max_alerts: int
    window_minutes: int
    reset_at: datetime

    def to_metadata(self) -> Dict:
        data = asdict(self)
        data["reset_at"] = self.reset_at.isoformat()
        return data


class RateLimitTracker:
    """Scoped rate-limit windows for one database session"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def _scopes(self, context: AlertContext) -> List[Tuple[RateLimitScope, str, Optional[int]]]:
        """(scope, scope_id, default cap) in order of specificity; None = configured only"""
        scopes = []
        if context.rule_id:
            scopes.append((RateLimitScope.RULE, context.rule_id, None))
        if context.team_id:
            scopes.append((RateLimitScope.TEAM, context.team_id, constants.TEAM_RATE_LIMIT))
        scopes.append((RateLimitScope.METRIC, context.metric_name, constants.METRIC_RATE_LIMIT))
        scopes.append((
            RateLimitScope.SEVERITY,
            context.severity.value,
            constants.SEVERITY_RATE_LIMITS.get(context.severity.value),
        ))
        scopes.append((RateLimitScope.GLOBAL, "global", constants.GLOBAL_RATE_LIMIT))
        return scopes

    def _load(self, scope: RateLimitScope, scope_id: str) -> Optional[RateLimitWindow]:
        return self.db.query(RateLimitWindow).filter(
            RateLimitWindow.limit_type == scope,
            RateLimitWindow.scope_id == scope_id,
        ).one_or_none()

    @staticmethod
    def _effective_count(window: RateLimitWindow, now: datetime) -> int:
        if now >= window.next_reset_at:
            return 0
        return window.current_count

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def check(self, context: AlertContext, now: Optional[datetime] = None) -> Optional[RateLimitHit]:
        """First scope at or over its cap, without touching any counter"""
        now = now or datetime.now(timezone.utc)

        for scope, scope_id, default_cap in self._scopes(context):
            window = self._load(scope, scope_id)
            if window is None:
                if default_cap is not None and default_cap <= 0:
                    return RateLimitHit(
                        scope.value, scope_id, 0, default_cap,
                        constants.SCOPED_WINDOW_MINUTES,
                        now + timedelta(minutes=constants.SCOPED_WINDOW_MINUTES),
                    )
                continue

            count = self._effective_count(window, now)
            if count >= window.max_alerts:
                logger.info(
                    f"[SUPPRESSION] Rate limit hit for {scope.value}:{scope_id} "
                    f"({count}/{window.max_alerts})"
                )
                return RateLimitHit(
                    limit_type=scope.value,
                    scope_id=scope_id,
                    current_count=count,
                    max_alerts=window.max_alerts,
                    window_minutes=window.window_minutes,
                    reset_at=window.next_reset_at,
                )
        return None

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record(self, context: AlertContext, now: Optional[datetime] = None) -> List[RateLimitWindow]:
        """Count an allowed alert against every applicable scope"""
        now = now or datetime.now(timezone.utc)
        touched = []

        for scope, scope_id, default_cap in self._scopes(context):
            window = self._load(scope, scope_id)
            if window is None:
                if default_cap is None:
                    continue
                window = RateLimitWindow(
                    limit_type=scope,
                    scope_id=scope_id,
                    max_alerts=default_cap,
                    window_minutes=constants.SCOPED_WINDOW_MINUTES,
                    current_count=0,
                    window_start=now,
                    next_reset_at=now + timedelta(minutes=constants.SCOPED_WINDOW_MINUTES),
                )
                self.db.add(window)
            elif now >= window.next_reset_at:
                self._reset(window, now)

            window.current_count += 1
            window.last_alert_at = now
            touched.append(window)

        self.db.flush()
        return touched

    @staticmethod
    def _reset(window: RateLimitWindow, now: datetime):
        window.current_count = 0
        window.window_start = now
        window.next_reset_at = now + timedelta(minutes=window.window_minutes)

    def configure_limit(
        self,
        scope: RateLimitScope,
        scope_id: str,
        max_alerts: int,
        window_minutes: int,
        now: Optional[datetime] = None,
    ) -> RateLimitWindow:
        """Create or update an explicit window for a scope"""
        now = now or datetime.now(timezone.utc)
        scope = RateLimitScope(scope)
        if max_alerts < 0 or window_minutes <= 0:
            raise ValueError("max_alerts must be >= 0 and window_minutes > 0")

        window = self._load(scope, scope_id)
        if window is None:
            window = RateLimitWindow(
                limit_type=scope,
                scope_id=scope_id,
                current_count=0,
                window_start=now,
                next_reset_at=now + timedelta(minutes=window_minutes),
            )
            self.db.add(window)
        window.max_alerts = max_alerts
        window.window_minutes = window_minutes
        window.configured = True
        self.db.flush()
        return window

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_spent(self, now: Optional[datetime] = None) -> int:
        """Drop default windows spent for longer than the grace period; reset configured ones"""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=constants.RATE_LIMIT_GRACE_HOURS)

        deleted = self.db.query(RateLimitWindow).filter(
            RateLimitWindow.configured.is_(False),
            RateLimitWindow.next_reset_at < cutoff,
        ).delete(synchronize_session=False)

        for window in self.db.query(RateLimitWindow).filter(
            RateLimitWindow.configured.is_(True),
            RateLimitWindow.next_reset_at < cutoff,
        ).all():
            self._reset(window, now)

        if deleted:
            logger.info(f"[HOUSEKEEPING] Removed {deleted} spent rate-limit windows")
        return deleted

    def statistics(self, now: Optional[datetime] = None) -> Dict:
        now = now or datetime.now(timezone.utc)
        windows = self.db.query(RateLimitWindow).all()
        live = [w for w in windows if now < w.next_reset_at]
        return {
            "total_limits": len(windows),
            "active_limits": sum(1 for w in live if w.current_count > 0),
            "saturated_limits": [
                f"{w.limit_type.value}:{w.scope_id}"
                for w in live if w.current_count >= w.max_alerts
            ],
        }
