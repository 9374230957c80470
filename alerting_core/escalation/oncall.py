"""
On-Call Schedule Resolver
=========================
Finds who is on call for a team and severity right now.

An entry is current when now falls in [start_time, end_time) and its schedule
is enabled, applicable to the severity and effective at now. Override entries
stand in for their original user's entries over the same instant; the original
rows are kept for audit.
"""

from sqlalchemy.orm import Session
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging

from alerting_core.errors import ConfigurationError, TimingInvariantError
from alerting_core.models import ALL_SEVERITIES, OnCallSchedule, OnCallScheduleEntry, ScheduleType

logger = logging.getLogger(__name__)


@dataclass
class OnCallResult:
    user_id: str
    is_primary: bool
    schedule_id: str
    schedule_name: str
    backup_user_id: Optional[str] = None
    is_override: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


class OnCallResolver:
    """Current on-call lookup for one database session"""

    def __init__(self, db: Session):
        self.db = db

    def _schedules(self, team_id: str, severity: str, now: datetime) -> List[OnCallSchedule]:
        schedules = self.db.query(OnCallSchedule).filter(
            OnCallSchedule.team_id == team_id,
            OnCallSchedule.enabled.is_(True),
            OnCallSchedule.effective_from <= now,
        ).all()
        return [
            s for s in schedules
            if (s.effective_until is None or now < s.effective_until)
            and severity in (s.applicable_severities or [])
        ]

    def current_entries(self, team_id: str, severity: str, now: Optional[datetime] = None) -> List[OnCallScheduleEntry]:
        """Every entry covering now after overrides, best candidate first"""
        now = now or datetime.now(timezone.utc)
        severity = getattr(severity, "value", severity)

        schedules = {s.id: s for s in self._schedules(team_id, severity, now)}
        if not schedules:
            return []

        entries = self.db.query(OnCallScheduleEntry).filter(
            OnCallScheduleEntry.schedule_id.in_(list(schedules)),
            OnCallScheduleEntry.start_time <= now,
            OnCallScheduleEntry.end_time > now,
        ).all()

        replaced = {
            (e.schedule_id, e.original_user_id)
            for e in entries if e.is_override and e.original_user_id
        }
        entries = [
            e for e in entries
            if e.is_override or (e.schedule_id, e.user_id) not in replaced
        ]

        entries.sort(key=lambda e: (
            not e.is_primary,
            schedules[e.schedule_id].created_at,
            not e.is_override,
            e.created_at,
            e.id,
        ))
        return entries

    def current_on_call(self, team_id: str, severity: str, now: Optional[datetime] = None) -> Optional[OnCallResult]:
        entries = self.current_entries(team_id, severity, now)
        if not entries:
            logger.info(f"[ONCALL] No on-call entry for team {team_id} severity {getattr(severity, 'value', severity)}")
            return None

        entry = entries[0]
        schedule = entry.schedule
        return OnCallResult(
            user_id=entry.user_id,
            is_primary=entry.is_primary,
            schedule_id=schedule.id,
            schedule_name=schedule.name,
            backup_user_id=entry.backup_user_id,
            is_override=entry.is_override,
        )


# ============================================================================
# Write-time validation
# ============================================================================

def create_schedule(
    db: Session,
    team_id: str,
    name: str,
    *,
    schedule_type: ScheduleType = ScheduleType.ROTATION,
    timezone_name: str = "UTC",
    effective_from: Optional[datetime] = None,
    effective_until: Optional[datetime] = None,
    applicable_severities: Optional[List[str]] = None,
    rotation_config: Optional[Dict] = None,
    description: Optional[str] = None,
) -> OnCallSchedule:
    effective_from = effective_from or datetime.now(timezone.utc)
    if effective_until is not None and effective_until <= effective_from:
        raise TimingInvariantError(f"Schedule '{name}' effective range ends before it starts")

    severities = list(ALL_SEVERITIES if applicable_severities is None else applicable_severities)
    unknown = [s for s in severities if s not in ALL_SEVERITIES]
    if unknown:
        raise ConfigurationError(f"Unknown severities for schedule '{name}': {unknown}")

    schedule = OnCallSchedule(
        team_id=team_id,
        name=name,
        description=description,
        schedule_type=ScheduleType(schedule_type),
        rotation_config=rotation_config or {},
        timezone=timezone_name,
        effective_from=effective_from,
        effective_until=effective_until,
        applicable_severities=severities,
    )
    db.add(schedule)
    db.flush()
    return schedule


def add_schedule_entry(
    db: Session,
    schedule: OnCallSchedule,
    user_id: str,
    start_time: datetime,
    end_time: datetime,
    *,
    is_primary: bool = True,
    backup_user_id: Optional[str] = None,
    is_override: bool = False,
    original_user_id: Optional[str] = None,
    override_reason: Optional[str] = None,
) -> OnCallScheduleEntry:
    """Add an on-call shift; ranges with end <= start are rejected"""
    if end_time <= start_time:
        raise TimingInvariantError(
            f"On-call entry for {user_id} ends at {end_time.isoformat()}, "
            f"not after its start {start_time.isoformat()}"
        )
    if is_override and not original_user_id:
        raise ConfigurationError("Override entries must name the original user they replace")

    entry = OnCallScheduleEntry(
        schedule=schedule,
        user_id=user_id,
        start_time=start_time,
        end_time=end_time,
        is_primary=is_primary,
        backup_user_id=backup_user_id,
        is_override=is_override,
        original_user_id=original_user_id if is_override else None,
        override_reason=override_reason,
    )
    db.add(entry)
    db.flush()

    if is_override:
        logger.info(
            f"[ONCALL] Override: {user_id} covers {original_user_id} "
            f"{start_time.isoformat()} -> {end_time.isoformat()} on '{schedule.name}'"
        )
    return entry
