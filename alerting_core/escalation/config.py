"""
Escalation Configuration Store
Per-team business hours, notification channels, contacts and auto-resolution
policy. Teams without a stored (or with a disabled) configuration get the
defaults.
"""

from sqlalchemy.orm import Session
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from alerting_core.errors import ConfigurationError
from alerting_core.models import (
    DEFAULT_AUTO_RESOLUTION, DEFAULT_BUSINESS_HOURS, DEFAULT_NOTIFICATION_PREFERENCES,
    EscalationConfig
)

logger = logging.getLogger(__name__)


def _parse_clock(value: str, label: str) -> time:
    try:
        hours, minutes = str(value).split(":")
        return time(int(hours), int(minutes))
    except (TypeError, ValueError):
        raise ConfigurationError(f"Business hours {label} must be HH:MM, got {value!r}")


def _parse_range(document: Dict, label: str) -> Tuple[time, time]:
    start = _parse_clock(document.get("start", "09:00"), f"{label} start")
    end = _parse_clock(document.get("end", "17:00"), f"{label} end")
    if end <= start:
        raise ConfigurationError(f"Business hours {label} end {end} is not after start {start}")
    return start, end


@dataclass(frozen=True)
class BusinessHours:
    """Weekday window plus an optional weekend window in the team's timezone"""
    tz: ZoneInfo
    weekday: Tuple[time, time]
    weekend: Optional[Tuple[time, time]] = None

    @classmethod
    def from_config(cls, document: Optional[Dict]) -> "BusinessHours":
        document = document or DEFAULT_BUSINESS_HOURS
        try:
            tz = ZoneInfo(document.get("timezone") or "UTC")
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown business hours timezone: {document.get('timezone')!r}")

        weekday = _parse_range(document.get("weekdays") or {}, "weekday")
        weekends = document.get("weekends") or {}
        weekend = _parse_range(weekends, "weekend") if weekends.get("enabled") else None
        return cls(tz=tz, weekday=weekday, weekend=weekend)

    def is_weekend(self, now: datetime) -> bool:
        return now.astimezone(self.tz).weekday() >= 5

    def _window(self, day) -> Optional[Tuple[time, time]]:
        return self.weekend if day.weekday() >= 5 else self.weekday

    def is_business_hours(self, now: datetime) -> bool:
        local = now.astimezone(self.tz)
        window = self._window(local)
        if window is None:
            return False
        return window[0] <= local.time() < window[1]

    def next_start(self, now: datetime, weekend_open: bool = False) -> datetime:
        """
        Start of the next business-hours window at or after now (UTC).

        With weekend_open, weekend days count as open from local midnight.
        """
        if self.is_business_hours(now) or (weekend_open and self.is_weekend(now)):
            return now

        local = now.astimezone(self.tz)
        for offset in range(8):
            day = local.date() + timedelta(days=offset)
            if weekend_open and day.weekday() >= 5:
                start = datetime.combine(day, time(0, 0), tzinfo=self.tz)
                if start > now:
                    return start.astimezone(timezone.utc)
                continue
            window = self._window(day)
            if window is None:
                continue
            start = datetime.combine(day, window[0], tzinfo=self.tz)
            if start > now:
                return start.astimezone(timezone.utc)

        # Unreachable: the weekday window always recurs within a week
        raise ConfigurationError("Business hours never resume")


@dataclass
class EscalationPolicy:
    """Resolved team policy used by routing, the pipeline and the sweeper"""
    team_id: str
    business_hours: BusinessHours
    escalation_chain: List[Any] = field(default_factory=list)
    severity_overrides: Dict[str, Dict] = field(default_factory=dict)
    primary_contacts: List[str] = field(default_factory=list)
    escalation_contacts: List[str] = field(default_factory=list)
    notification_preferences: Dict[str, Dict] = field(default_factory=dict)
    auto_resolution: Dict[str, Dict] = field(default_factory=dict)

    def chain_for(self, severity: str) -> List[Any]:
        override = (self.severity_overrides or {}).get(severity) or {}
        return list(override.get("escalation_chain") or self.escalation_chain or [])

    def chain_target(self, severity: str, level: int) -> Optional[str]:
        """
        Responder for escalation level >= 1 from the chain.

        Chain entries are user ids, {"user_id": ...}, {"users": [...]} or
        {"level": n, "contacts": [...], "channels": [...]}.
        """
        chain = self.chain_for(severity)
        if level < 1:
            return None
        entry = next((e for e in chain if isinstance(e, dict) and e.get("level") == level), None)
        if entry is None:
            if level > len(chain):
                return None
            entry = chain[level - 1]
        if isinstance(entry, str):
            return entry
        if isinstance(entry, dict):
            if entry.get("user_id"):
                return entry["user_id"]
            users = entry.get("users") or entry.get("contacts") or []
            if users:
                return users[0]
        return None

    def channels_for(self, severity: str, level: int, extra: Optional[List[str]] = None) -> List[str]:
        """Immediate channels for level 0, escalation channels after, plus routing channels"""
        prefs = (self.notification_preferences or {}).get(severity) or {}
        key = "immediate_channels" if level <= 0 else "escalation_channels"
        channels = []
        for channel in list(prefs.get(key) or []) + list(extra or []):
            if channel not in channels:
                channels.append(channel)
        return channels

    def auto_resolve_minutes(self, severity: str, routing=None) -> Optional[int]:
        """Minutes until auto-resolution, or None when disabled for the severity"""
        policy = (self.auto_resolution or {}).get(severity) or {}
        if not policy.get("enabled"):
            return None
        if routing is not None and routing.auto_resolve_minutes:
            return routing.auto_resolve_minutes
        if policy.get("timeout_hours"):
            return int(float(policy["timeout_hours"]) * 60)
        return None


def load_policy(db: Session, team_id: str) -> EscalationPolicy:
    config = db.query(EscalationConfig).filter(EscalationConfig.team_id == team_id).one_or_none()

    if config is None or not config.enabled:
        return EscalationPolicy(
            team_id=team_id,
            business_hours=BusinessHours.from_config(DEFAULT_BUSINESS_HOURS),
            notification_preferences=dict(DEFAULT_NOTIFICATION_PREFERENCES),
            auto_resolution=dict(DEFAULT_AUTO_RESOLUTION),
        )

    return EscalationPolicy(
        team_id=team_id,
        business_hours=BusinessHours.from_config(config.business_hours),
        escalation_chain=list(config.escalation_chain or []),
        severity_overrides=dict(config.severity_overrides or {}),
        primary_contacts=list(config.primary_contacts or []),
        escalation_contacts=list(config.escalation_contacts or []),
        notification_preferences=config.notification_preferences or dict(DEFAULT_NOTIFICATION_PREFERENCES),
        auto_resolution=config.auto_resolution or dict(DEFAULT_AUTO_RESOLUTION),
    )
