"""Typed business settings backed by the ``settings`` key/value table.

Each known key has its own small struct with an explicit default, a parser
for the stored JSON blob and a serializer back to it. Settings are read at
request time; nothing is cached.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from .availability import DAYS, TimeRange, format_hhmm, parse_hhmm
from .errors import ValidationError
from .extensions import db
from .models import Setting

logger = logging.getLogger(__name__)

BUSINESS_HOURS = "business_hours"
MAX_CONCURRENT_SESSIONS = "max_concurrent_sessions"
PROOF_REQUIRED = "proof_required"
AUTO_ARCHIVE_DAYS = "auto_archive_days"


@dataclass(frozen=True)
class DayHours:
    enabled: bool
    start_minutes: int
    end_minutes: int

    @property
    def window(self) -> TimeRange:
        return TimeRange(self.start_minutes, self.end_minutes)

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "start": format_hhmm(self.start_minutes),
            "end": format_hhmm(self.end_minutes),
        }


DEFAULT_DAY_HOURS = DayHours(enabled=True, start_minutes=14 * 60, end_minutes=22 * 60)


@dataclass(frozen=True)
class BusinessHours:
    """Weekly operating hours; every day key is always present."""

    days: Mapping[str, DayHours] = field(
        default_factory=lambda: {day: DEFAULT_DAY_HOURS for day in DAYS}
    )

    @classmethod
    def from_value(cls, value: object) -> "BusinessHours":
        if not isinstance(value, Mapping):
            raise ValidationError("business_hours must be an object keyed by day of week")
        unknown = set(value) - set(DAYS)
        if unknown:
            raise ValidationError(f"Unknown day(s) in business_hours: {', '.join(sorted(unknown))}")

        days: dict[str, DayHours] = {}
        for day in DAYS:
            raw = value.get(day)
            if raw is None:
                days[day] = DEFAULT_DAY_HOURS
                continue
            if not isinstance(raw, Mapping):
                raise ValidationError(f"business_hours.{day} must be an object")
            start = parse_hhmm(raw.get("start", format_hhmm(DEFAULT_DAY_HOURS.start_minutes)))
            end = parse_hhmm(
                raw.get("end", format_hhmm(DEFAULT_DAY_HOURS.end_minutes)),
                allow_end_of_day=True,
            )
            if start > end:
                raise ValidationError(f"business_hours.{day}: start is after end")
            days[day] = DayHours(enabled=bool(raw.get("enabled", True)), start_minutes=start, end_minutes=end)
        return cls(days=days)

    def for_day(self, day: str) -> DayHours:
        return self.days[day]

    def enabled_days(self) -> list[str]:
        return [day for day in DAYS if self.days[day].enabled]

    def to_value(self) -> dict[str, dict[str, object]]:
        return {day: self.days[day].to_dict() for day in DAYS}


@dataclass(frozen=True)
class MaxConcurrentSessions:
    count: int = 3

    @classmethod
    def from_value(cls, value: object) -> "MaxConcurrentSessions":
        count = value.get("count") if isinstance(value, Mapping) else value
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError("max_concurrent_sessions.count must be a positive integer")
        return cls(count=count)

    def to_value(self) -> dict[str, int]:
        return {"count": self.count}


@dataclass(frozen=True)
class ProofRequired:
    enabled: bool = True

    @classmethod
    def from_value(cls, value: object) -> "ProofRequired":
        enabled = value.get("enabled") if isinstance(value, Mapping) else value
        if not isinstance(enabled, bool):
            raise ValidationError("proof_required.enabled must be a boolean")
        return cls(enabled=enabled)

    def to_value(self) -> dict[str, bool]:
        return {"enabled": self.enabled}


@dataclass(frozen=True)
class AutoArchiveDays:
    days: int = 7

    @classmethod
    def from_value(cls, value: object) -> "AutoArchiveDays":
        days = value.get("days") if isinstance(value, Mapping) else value
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValidationError("auto_archive_days.days must be a positive integer")
        return cls(days=days)

    def to_value(self) -> dict[str, int]:
        return {"days": self.days}


SETTING_TYPES: dict[str, type] = {
    BUSINESS_HOURS: BusinessHours,
    MAX_CONCURRENT_SESSIONS: MaxConcurrentSessions,
    PROOF_REQUIRED: ProofRequired,
    AUTO_ARCHIVE_DAYS: AutoArchiveDays,
}


def _load(key: str):
    setting_type = SETTING_TYPES[key]
    row = db.session.get(Setting, key)
    if row is None or row.value is None:
        return setting_type()
    try:
        return setting_type.from_value(row.value)
    except ValidationError as exc:
        logger.warning("Stored setting %s is invalid, using default: %s", key, exc.message)
        return setting_type()


def get_business_hours() -> BusinessHours:
    return _load(BUSINESS_HOURS)


def get_max_concurrent_sessions() -> int:
    return _load(MAX_CONCURRENT_SESSIONS).count


def get_proof_required() -> bool:
    return _load(PROOF_REQUIRED).enabled


def get_auto_archive_days() -> int:
    return _load(AUTO_ARCHIVE_DAYS).days


def load_all() -> dict[str, object]:
    """Return every known setting as its stored JSON shape, defaults filled in."""
    return {key: _load(key).to_value() for key in SETTING_TYPES}


def save_settings(payload: Mapping[str, object]) -> dict[str, object]:
    """Validate and upsert settings; does not commit.

    Every key is validated before anything is written, so one bad value
    leaves all settings untouched.
    """
    unknown = set(payload) - set(SETTING_TYPES)
    if unknown:
        raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

    parsed = {key: SETTING_TYPES[key].from_value(value) for key, value in payload.items()}
    for key, setting in parsed.items():
        row = db.session.get(Setting, key)
        if row is None:
            db.session.add(Setting(key=key, value=setting.to_value()))
        else:
            row.value = setting.to_value()
    return {key: setting.to_value() for key, setting in parsed.items()}


def lock_capacity_row() -> None:
    """Take a row lock on the concurrency setting for the rest of the transaction.

    The row is created with its default value if it does not exist yet, so
    there is always something to lock.
    """
    row = (
        db.session.query(Setting)
        .filter(Setting.key == MAX_CONCURRENT_SESSIONS)
        .with_for_update()
        .one_or_none()
    )
    if row is None:
        db.session.add(Setting(key=MAX_CONCURRENT_SESSIONS, value=MaxConcurrentSessions().to_value()))
        db.session.flush()
