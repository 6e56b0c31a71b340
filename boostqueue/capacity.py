"""Concurrent-session capacity calculator.

Both appointment representations (a queue item's single appointment and
its individual sessions) are seen here as ``Occurrence`` values, so the
overlap counting never cares where a booking came from.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from .errors import InvalidArgument
from .models import DEFAULT_DURATION_MINUTES


@dataclass(frozen=True)
class Occurrence:
    """A scheduled block of staff time: ``[starts_at, starts_at + duration)``."""

    key: str
    queue_item_id: int
    source: str
    starts_at: datetime
    duration_minutes: int | None = None
    status: str | None = None
    package_name: str | None = None
    customer_name: str | None = None
    session_number: int | None = None

    @property
    def effective_duration(self) -> int:
        return self.duration_minutes or DEFAULT_DURATION_MINUTES

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.effective_duration)

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "queue_id": self.queue_item_id,
            "source": self.source,
            "appointment_time": self.starts_at.isoformat(),
            "ends_at": self.ends_at.isoformat(),
            "estimated_duration": self.effective_duration,
            "status": self.status,
            "package_name": self.package_name,
            "customer_name": self.customer_name,
            "session_number": self.session_number,
        }


def _require_positive_duration(duration_minutes: int) -> None:
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise InvalidArgument(f"Duration must be a positive number of minutes, got {duration_minutes!r}")


def intervals_overlap(start_a: datetime, minutes_a: int, start_b: datetime, minutes_b: int) -> bool:
    """Half-open overlap test: touching intervals do not overlap."""
    end_a = start_a + timedelta(minutes=minutes_a)
    end_b = start_b + timedelta(minutes=minutes_b)
    return start_a < end_b and start_b < end_a


def overlapping(
    candidate_start: datetime,
    candidate_duration: int,
    existing: Iterable[Occurrence],
    exclude_key: str | None = None,
) -> list[Occurrence]:
    """Occurrences that would run at the same time as the candidate booking."""
    _require_positive_duration(candidate_duration)
    return [
        occurrence
        for occurrence in existing
        if occurrence.key != exclude_key
        and intervals_overlap(
            candidate_start,
            candidate_duration,
            occurrence.starts_at,
            occurrence.effective_duration,
        )
    ]


def overlapping_count(
    candidate_start: datetime,
    candidate_duration: int,
    existing: Iterable[Occurrence],
    exclude_key: str | None = None,
) -> int:
    return len(overlapping(candidate_start, candidate_duration, existing, exclude_key))


def is_at_capacity(
    candidate_start: datetime,
    candidate_duration: int,
    existing: Iterable[Occurrence],
    max_concurrent_sessions: int,
    exclude_key: str | None = None,
) -> bool:
    """True when adding the candidate would exceed ``max_concurrent_sessions``."""
    if isinstance(max_concurrent_sessions, bool) or not isinstance(max_concurrent_sessions, int) \
            or max_concurrent_sessions < 1:
        raise InvalidArgument(
            f"max_concurrent_sessions must be a positive integer, got {max_concurrent_sessions!r}"
        )
    count = overlapping_count(candidate_start, candidate_duration, existing, exclude_key)
    return count >= max_concurrent_sessions
