"""Weekly availability model.

Customer availability and business hours share the same building block: a
``TimeRange`` of ``"HH:MM"`` boundaries inside a single day. Availability is
a mapping of day key to ranges; it is normalized (sorted, overlapping and
adjacent ranges merged, empty days dropped) before it is persisted.
"""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Mapping

from .errors import ValidationError

# Canonical ordering: Monday first, matching ``date.weekday()``.
DAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

MINUTES_PER_DAY = 24 * 60

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value: object, *, allow_end_of_day: bool = False) -> int:
    """Return minutes since midnight for an ``"HH:MM"`` string."""
    if not isinstance(value, str):
        raise ValidationError(f"Time must be an 'HH:MM' string, got {value!r}")
    match = _HHMM.match(value.strip())
    if not match:
        raise ValidationError(f"Time must be in 'HH:MM' format, got {value!r}")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if allow_end_of_day and hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if hours > 23 or minutes > 59:
        raise ValidationError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_key(moment: date | datetime) -> str:
    """Map a date to its canonical day key."""
    return DAYS[moment.weekday()]


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


@dataclass(frozen=True)
class TimeRange:
    """A same-day span of wall-clock time, stored as minutes since midnight."""

    start_minutes: int
    end_minutes: int

    def __post_init__(self) -> None:
        if self.start_minutes > self.end_minutes:
            raise ValidationError(
                f"Range start {format_hhmm(self.start_minutes)} is after end "
                f"{format_hhmm(self.end_minutes)}"
            )

    @classmethod
    def from_strings(cls, start: str, end: str) -> "TimeRange":
        return cls(parse_hhmm(start), parse_hhmm(end, allow_end_of_day=True))

    @classmethod
    def from_dict(cls, raw: object) -> "TimeRange":
        if isinstance(raw, TimeRange):
            return raw
        if not isinstance(raw, Mapping) or "start" not in raw or "end" not in raw:
            raise ValidationError("Each time range needs 'start' and 'end'")
        return cls.from_strings(raw["start"], raw["end"])

    @property
    def start(self) -> str:
        return format_hhmm(self.start_minutes)

    @property
    def end(self) -> str:
        return format_hhmm(self.end_minutes)

    def contains(self, minute: int) -> bool:
        """Point membership, inclusive at both ends."""
        return self.start_minutes <= minute <= self.end_minutes

    def covers_slot(self, slot_start: int) -> bool:
        """True when a slot starting at ``slot_start`` begins inside the range."""
        return self.start_minutes <= slot_start < self.end_minutes

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


def normalize_ranges(ranges: Iterable[object]) -> list[TimeRange]:
    """Sort ranges by start and merge any that overlap or touch."""
    parsed = sorted(
        (TimeRange.from_dict(item) for item in ranges),
        key=lambda item: (item.start_minutes, item.end_minutes),
    )

    merged: list[TimeRange] = []
    for candidate in parsed:
        if merged and merged[-1].end_minutes >= candidate.start_minutes:
            last = merged[-1]
            merged[-1] = TimeRange(last.start_minutes, max(last.end_minutes, candidate.end_minutes))
        else:
            merged.append(candidate)
    return merged


def parse_availability(raw: object) -> dict[str, list[TimeRange]]:
    """Parse a JSON availability blob without normalizing it."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("Availability must be an object keyed by day of week")

    parsed: dict[str, list[TimeRange]] = {}
    for day, ranges in raw.items():
        if day not in DAYS:
            raise ValidationError(f"Unknown day of week: {day!r}")
        if ranges is None:
            continue
        if not isinstance(ranges, (list, tuple)):
            raise ValidationError(f"Ranges for {day} must be a list")
        parsed[day] = [TimeRange.from_dict(item) for item in ranges]
    return parsed


def normalize_availability(raw: object) -> dict[str, list[TimeRange]]:
    """Normalize every day independently; days left empty are omitted."""
    parsed = parse_availability(raw)
    normalized: dict[str, list[TimeRange]] = {}
    for day in DAYS:
        ranges = parsed.get(day)
        if ranges:
            normalized[day] = normalize_ranges(ranges)
    return normalized


def dump_availability(availability: Mapping[str, Iterable[TimeRange]]) -> dict[str, list[dict[str, str]]]:
    return {
        day: [item.to_dict() for item in availability[day]]
        for day in DAYS
        if day in availability
    }


def copy_day(availability: Mapping[str, list], source: str, targets: Iterable[str]) -> dict[str, list]:
    """Deep-clone ``source``'s ranges into each target day.

    The copy is not normalized; that happens uniformly when the availability
    is saved. Copying an empty or missing day clears the targets.
    """
    if source not in DAYS:
        raise ValidationError(f"Unknown day of week: {source!r}")

    result = {day: copy.deepcopy(list(ranges)) for day, ranges in availability.items()}
    source_ranges = list(availability.get(source) or [])
    for target in targets:
        if target not in DAYS:
            raise ValidationError(f"Unknown day of week: {target!r}")
        if target == source:
            continue
        if source_ranges:
            result[target] = copy.deepcopy(source_ranges)
        else:
            result.pop(target, None)
    return result


def is_within(availability: Mapping[str, Iterable[TimeRange]], moment: datetime) -> bool:
    """Whether a slot starting at ``moment`` falls inside the customer's availability.

    An empty mapping means the customer accepts any time.
    """
    if not availability:
        return True
    ranges = availability.get(day_key(moment)) or []
    slot_start = minute_of_day(moment)
    return any(item.covers_slot(slot_start) for item in ranges)
