"""
Maintenance Window Store
Scheduled suppression windows: write-time validation, active-window lookup
and recurrence expansion
"""

from sqlalchemy import or_, and_
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from alerting_core.errors import ConfigurationError, TimingInvariantError
from alerting_core.models import ALL_SEVERITIES, MaintenanceWindow

logger = logging.getLogger(__name__)

RECURRENCE_PERIOD_DAYS = {
    "daily": 1,
    "weekly": 7,
}


# ============================================================================
# Validation
# ============================================================================

def _zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown timezone: {name}")


def _parse_until(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        until = value
    else:
        try:
            until = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ConfigurationError(f"Invalid recurrence 'until': {value!r}")
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    return until


def validate_recurrence(recurrence: Optional[Dict]) -> Dict:
    """Normalise a recurrence descriptor: {"frequency", "interval", "until"}"""
    if not recurrence:
        return {}

    frequency = recurrence.get("frequency")
    if frequency not in RECURRENCE_PERIOD_DAYS:
        raise ConfigurationError(
            f"Recurrence frequency must be one of {sorted(RECURRENCE_PERIOD_DAYS)}, got {frequency!r}"
        )

    interval = recurrence.get("interval", 1)
    if not isinstance(interval, int) or isinstance(interval, bool) or interval < 1:
        raise ConfigurationError(f"Recurrence interval must be a positive integer, got {interval!r}")

    normalised = {"frequency": frequency, "interval": interval}
    until = _parse_until(recurrence.get("until"))
    if until is not None:
        normalised["until"] = until.isoformat()
    return normalised


def validate_severities(severities: Optional[List[str]]) -> List[str]:
    result = []
    for severity in severities or []:
        value = getattr(severity, "value", severity)
        if value not in ALL_SEVERITIES:
            raise ConfigurationError(f"Unknown severity: {severity!r}")
        result.append(value)
    return result


def create_maintenance_window(
    db: Session,
    name: str,
    start_time: datetime,
    end_time: datetime,
    *,
    affected_systems: Optional[List[str]] = None,
    affected_severities: Optional[List[str]] = None,
    suppress_all: bool = False,
    team_id: Optional[str] = None,
    priority: int = 0,
    timezone_name: str = "UTC",
    recurrence: Optional[Dict] = None,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
) -> MaintenanceWindow:
    """
    Schedule a maintenance window.

    A window whose end is not after its start is rejected here, never
    tolerated at read time.
    """
    if start_time.tzinfo is None or end_time.tzinfo is None:
        raise TimingInvariantError("Maintenance window times must be timezone-aware")
    if end_time <= start_time:
        raise TimingInvariantError(
            f"Maintenance window '{name}' ends at {end_time.isoformat()}, "
            f"not after its start {start_time.isoformat()}"
        )

    _zone(timezone_name)
    recurrence_config = validate_recurrence(recurrence)

    window = MaintenanceWindow(
        name=name,
        description=description,
        start_time=start_time,
        end_time=end_time,
        timezone=timezone_name,
        affected_systems=list(affected_systems or []),
        affected_severities=validate_severities(affected_severities),
        suppress_all=suppress_all,
        priority=priority,
        recurring=bool(recurrence_config),
        recurrence_config=recurrence_config,
        team_id=team_id,
        created_by=created_by,
    )
    db.add(window)
    db.flush()

    logger.info(
        f"[SUPPRESSION] Maintenance window '{name}' scheduled "
        f"{start_time.isoformat()} -> {end_time.isoformat()} (team={team_id or 'global'})"
    )
    return window


# ============================================================================
# Matching
# ============================================================================

def current_occurrence(window: MaintenanceWindow, now: datetime) -> Optional[Tuple[datetime, datetime]]:
    """Return the (start, end) occurrence containing now, if any"""
    start, end = window.start_time, window.end_time

    if not window.recurring:
        if start <= now <= end:
            return start, end
        return None

    config = window.recurrence_config or {}
    period_days = RECURRENCE_PERIOD_DAYS[config["frequency"]] * config.get("interval", 1)
    until = _parse_until(config.get("until"))
    duration = end - start

    if now < start:
        return None

    # Step in the window's own wall-clock so DST shifts keep the local time
    local_start = start.astimezone(_zone(window.timezone))
    k = int((now - start) / timedelta(days=period_days))
    for step in (k, k - 1, k + 1):
        if step < 0:
            continue
        occ_start = (local_start + timedelta(days=step * period_days)).astimezone(timezone.utc)
        if until is not None and occ_start > until:
            continue
        occ_end = occ_start + duration
        if occ_start <= now <= occ_end:
            return occ_start, occ_end
    return None


def window_matches(window: MaintenanceWindow, metric_name: str, severity: str) -> bool:
    if window.suppress_all:
        return True
    if metric_name in (window.affected_systems or []):
        return True
    return getattr(severity, "value", severity) in (window.affected_severities or [])


def _candidate_query(db: Session, team_id: Optional[str], now: datetime):
    scope = MaintenanceWindow.team_id.is_(None)
    if team_id is not None:
        scope = or_(MaintenanceWindow.team_id == team_id, scope)

    return db.query(MaintenanceWindow).filter(
        MaintenanceWindow.enabled.is_(True),
        scope,
        MaintenanceWindow.start_time <= now,
        or_(
            MaintenanceWindow.recurring.is_(True),
            and_(MaintenanceWindow.recurring.is_(False), MaintenanceWindow.end_time >= now),
        ),
    )


def _precedence(window: MaintenanceWindow):
    # Explicit priority first, then most recently created
    return (-window.priority, -window.created_at.timestamp(), window.id)


def find_matching_window(
    db: Session,
    team_id: Optional[str],
    metric_name: str,
    severity: str,
    now: datetime,
) -> Optional[Tuple[MaintenanceWindow, datetime]]:
    """Highest-precedence active window matching the alert and its occurrence end"""
    matches = []
    for window in _candidate_query(db, team_id, now).all():
        occurrence = current_occurrence(window, now)
        if occurrence and window_matches(window, metric_name, severity):
            matches.append((window, occurrence[1]))

    if not matches:
        return None
    matches.sort(key=lambda pair: _precedence(pair[0]))
    return matches[0]


def active_windows(db: Session, team_id: Optional[str] = None, now: Optional[datetime] = None) -> List[MaintenanceWindow]:
    now = now or datetime.now(timezone.utc)
    windows = [w for w in _candidate_query(db, team_id, now).all() if current_occurrence(w, now)]
    windows.sort(key=_precedence)
    return windows


def disable_expired_windows(db: Session, now: Optional[datetime] = None) -> int:
    """Disable finished one-off windows and recurring ones past their 'until'"""
    now = now or datetime.now(timezone.utc)
    disabled = 0

    expired = db.query(MaintenanceWindow).filter(
        MaintenanceWindow.enabled.is_(True),
        MaintenanceWindow.recurring.is_(False),
        MaintenanceWindow.end_time < now,
    ).all()
    for window in expired:
        window.enabled = False
        disabled += 1

    recurring = db.query(MaintenanceWindow).filter(
        MaintenanceWindow.enabled.is_(True),
        MaintenanceWindow.recurring.is_(True),
    ).all()
    for window in recurring:
        until = _parse_until((window.recurrence_config or {}).get("until"))
        if until is not None and until + (window.end_time - window.start_time) < now:
            window.enabled = False
            disabled += 1

    if disabled:
        logger.info(f"[HOUSEKEEPING] Disabled {disabled} expired maintenance windows")
    return disabled
