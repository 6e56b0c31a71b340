"""Tests for the concurrent-session capacity calculator."""
from __future__ import annotations

from datetime import datetime

import pytest

from boostqueue.capacity import Occurrence, intervals_overlap, is_at_capacity, overlapping, overlapping_count
from boostqueue.errors import InvalidArgument


def _occurrence(key: str, hour: int, minute: int = 0, duration: int | None = 60) -> Occurrence:
    return Occurrence(
        key=key,
        queue_item_id=1,
        source="queue",
        starts_at=datetime(2026, 3, 2, hour, minute),
        duration_minutes=duration,
    )


EXISTING = [_occurrence("queue-1", 10, 0), _occurrence("queue-2", 10, 30)]


def test_three_way_overlap_is_full() -> None:
    candidate = datetime(2026, 3, 2, 10, 45)

    assert overlapping_count(candidate, 60, EXISTING) == 2
    assert is_at_capacity(candidate, 60, EXISTING, max_concurrent_sessions=2)


def test_after_last_booking_ends_is_free() -> None:
    candidate = datetime(2026, 3, 2, 11, 35)

    assert overlapping_count(candidate, 60, EXISTING) == 0
    assert not is_at_capacity(candidate, 60, EXISTING, max_concurrent_sessions=2)


def test_touching_intervals_do_not_overlap() -> None:
    assert not intervals_overlap(datetime(2026, 3, 2, 10), 60, datetime(2026, 3, 2, 11), 60)
    assert intervals_overlap(datetime(2026, 3, 2, 10), 61, datetime(2026, 3, 2, 11), 60)


def test_excluded_occurrence_is_not_counted() -> None:
    candidate = datetime(2026, 3, 2, 10, 45)

    found = overlapping(candidate, 60, EXISTING, exclude_key="queue-2")

    assert [occurrence.key for occurrence in found] == ["queue-1"]
    assert not is_at_capacity(candidate, 60, EXISTING, 2, exclude_key="queue-2")


def test_missing_duration_counts_as_an_hour() -> None:
    existing = [_occurrence("session-7", 10, 0, duration=None)]

    assert existing[0].ends_at == datetime(2026, 3, 2, 11, 0)
    assert overlapping_count(datetime(2026, 3, 2, 10, 59), 1, existing) == 1


def test_below_capacity_with_one_overlap() -> None:
    assert not is_at_capacity(datetime(2026, 3, 2, 10, 15), 30, EXISTING[:1], max_concurrent_sessions=2)


@pytest.mark.parametrize("duration", [0, -30])
def test_non_positive_duration_is_rejected(duration: int) -> None:
    with pytest.raises(InvalidArgument):
        overlapping(datetime(2026, 3, 2, 10), duration, EXISTING)


def test_non_positive_capacity_is_rejected() -> None:
    with pytest.raises(InvalidArgument):
        is_at_capacity(datetime(2026, 3, 2, 10), 60, EXISTING, max_concurrent_sessions=0)
