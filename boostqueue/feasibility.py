"""Slot feasibility engine.

Classifies every 30-minute slot of a 7-day window into exactly one
``SlotStatus``. The scan window covers the union of all enabled days'
business hours plus an hour of padding on each side, so the grid has the
same rows for every day.

Checks run in a fixed order and the first failing check wins:

1. ``closed``: the day is not enabled in business hours.
2. ``outside_business_hours``: the slot starts outside that day's window.
3. ``past``: the slot starts before ``now``.
4. ``outside_customer_availability``: the customer did not mark the slot.
5. capacity: ``full``, ``partially_booked`` or ``available``.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Mapping, Sequence

from .availability import MINUTES_PER_DAY, TimeRange, day_key, is_within, minute_of_day
from .business_settings import BusinessHours
from .capacity import Occurrence, is_at_capacity, overlapping

SLOT_MINUTES = 30
WINDOW_PADDING_MINUTES = 60
DAYS_IN_WEEK = 7


class SlotStatus(str, enum.Enum):
    closed = "closed"
    outside_business_hours = "outside_business_hours"
    outside_customer_availability = "outside_customer_availability"
    available = "available"
    partially_booked = "partially_booked"
    full = "full"
    past = "past"


SELECTABLE_STATUSES = frozenset({SlotStatus.available, SlotStatus.partially_booked})


@dataclass(frozen=True)
class SlotVerdict:
    starts_at: datetime
    status: SlotStatus
    session_count: int = 0

    @property
    def selectable(self) -> bool:
        return self.status in SELECTABLE_STATUSES

    def to_dict(self) -> dict[str, object]:
        return {
            "starts_at": self.starts_at.isoformat(),
            "status": self.status.value,
            "session_count": self.session_count,
            "selectable": self.selectable,
        }


@dataclass(frozen=True)
class DayColumn:
    day: date
    open: bool
    slots: list[SlotVerdict] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "date": self.day.isoformat(),
            "day": day_key(self.day),
            "open": self.open,
            "slots": [slot.to_dict() for slot in self.slots],
        }


def scan_window(business_hours: BusinessHours) -> tuple[int, int]:
    """Minutes ``[start, end)`` covered by the grid for every day of the week."""
    enabled = [business_hours.for_day(day) for day in business_hours.enabled_days()]
    if not enabled:
        return 0, MINUTES_PER_DAY

    earliest = min(hours.start_minutes for hours in enabled)
    latest = max(hours.end_minutes for hours in enabled)
    start = max(0, earliest - WINDOW_PADDING_MINUTES)
    end = min(MINUTES_PER_DAY, latest + WINDOW_PADDING_MINUTES)
    return start, end


def slot_starts(business_hours: BusinessHours) -> list[int]:
    start, end = scan_window(business_hours)
    return list(range(start, end, SLOT_MINUTES))


def week_start_for(moment: date | datetime) -> date:
    """The Monday on or before ``moment``."""
    day = moment.date() if isinstance(moment, datetime) else moment
    return day - timedelta(days=day.weekday())


@dataclass
class FeasibilityContext:
    """Everything needed to classify slots, gathered once per request."""

    business_hours: BusinessHours
    max_concurrent_sessions: int
    availability: Mapping[str, Sequence[TimeRange]]
    occurrences: Sequence[Occurrence]
    now: datetime

    def classify(
        self,
        starts_at: datetime,
        duration_minutes: int = SLOT_MINUTES,
        exclude_key: str | None = None,
    ) -> SlotVerdict:
        hours = self.business_hours.for_day(day_key(starts_at))
        if not hours.enabled:
            return SlotVerdict(starts_at, SlotStatus.closed)

        if not hours.window.covers_slot(minute_of_day(starts_at)):
            return SlotVerdict(starts_at, SlotStatus.outside_business_hours)

        if starts_at < self.now:
            return SlotVerdict(starts_at, SlotStatus.past)

        if not is_within(self.availability, starts_at):
            return SlotVerdict(starts_at, SlotStatus.outside_customer_availability)

        count = len(overlapping(starts_at, duration_minutes, self.occurrences, exclude_key))
        if is_at_capacity(starts_at, duration_minutes, self.occurrences, self.max_concurrent_sessions, exclude_key):
            return SlotVerdict(starts_at, SlotStatus.full, count)
        if count:
            return SlotVerdict(starts_at, SlotStatus.partially_booked, count)
        return SlotVerdict(starts_at, SlotStatus.available, count)

    def build_week(
        self,
        week_start: date,
        duration_minutes: int = SLOT_MINUTES,
        exclude_key: str | None = None,
    ) -> list[DayColumn]:
        minutes = slot_starts(self.business_hours)
        columns = []
        for offset in range(DAYS_IN_WEEK):
            day = week_start + timedelta(days=offset)
            midnight = datetime.combine(day, datetime.min.time())
            slots = [
                self.classify(midnight + timedelta(minutes=minute), duration_minutes, exclude_key)
                for minute in minutes
            ]
            columns.append(DayColumn(day=day, open=self.business_hours.for_day(day_key(day)).enabled, slots=slots))
        return columns


def week_bounds(week_start: date) -> tuple[datetime, datetime]:
    start = datetime.combine(week_start, datetime.min.time())
    return start, start + timedelta(days=DAYS_IN_WEEK)
