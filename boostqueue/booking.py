"""Booking commit path.

A slot picked from the feasibility grid is re-validated at commit time,
inside a critical section, against freshly read occurrences. The capacity
check and the write happen in the same transaction: the process-wide lock
serializes commits inside one worker and the row lock on the concurrency
setting serializes them across workers on databases that honour
``SELECT ... FOR UPDATE``.

Either the appointment, the status transition, the order mirror and the
outbox event are all committed, or none of them are.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta

from . import business_settings
from .availability import parse_availability
from .capacity import Occurrence
from .errors import (
    InvalidArgument,
    InvariantViolation,
    OutsideBusinessHours,
    OutsideCustomerAvailability,
    SlotNoLongerAvailable,
)
from .extensions import db
from .feasibility import FeasibilityContext, SlotStatus
from .models import QueueItem
from .queue_state import FINISHED, SCHEDULABLE_STATUSES, mark_scheduled, mark_session_scheduled
from .repository import fetch_occurrences, find_item_session, get_queue_item, item_occurrence, session_occurrence

logger = logging.getLogger(__name__)

_commit_lock = threading.Lock()

SCHEDULABLE_SESSION_STATUSES = ("pending", "scheduled")


def _resolve_duration(item: QueueItem, duration_minutes: int | None) -> int:
    if duration_minutes is None:
        return item.duration_minutes
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise InvalidArgument(f"Duration must be a positive number of minutes, got {duration_minutes!r}")
    return duration_minutes


def _raise_for(status: SlotStatus, candidate_time: datetime) -> None:
    when = candidate_time.isoformat()
    if status in (SlotStatus.full, SlotStatus.past):
        raise SlotNoLongerAvailable(f"The slot at {when} is no longer available ({status.value})")
    if status in (SlotStatus.closed, SlotStatus.outside_business_hours):
        raise OutsideBusinessHours(f"The slot at {when} is outside business hours")
    if status is SlotStatus.outside_customer_availability:
        raise OutsideCustomerAvailability(f"The slot at {when} is outside the customer's availability")


def check_slot(
    item: QueueItem,
    candidate_time: datetime,
    duration_minutes: int,
    *,
    now: datetime,
    exclude_key: str | None = None,
    allow_outside_availability: bool = False,
) -> SlotStatus:
    """Classify the candidate slot against current data; raise if it cannot be booked."""
    occurrences = fetch_occurrences(candidate_time, candidate_time + timedelta(minutes=duration_minutes))
    context = FeasibilityContext(
        business_hours=business_settings.get_business_hours(),
        max_concurrent_sessions=business_settings.get_max_concurrent_sessions(),
        availability={} if allow_outside_availability else parse_availability(item.availability),
        occurrences=occurrences,
        now=now,
    )
    verdict = context.classify(candidate_time, duration_minutes, exclude_key)
    if not verdict.selectable:
        _raise_for(verdict.status, candidate_time)
    return verdict.status


def commit_booking(
    queue_id: int,
    candidate_time: datetime,
    duration_minutes: int | None = None,
    *,
    now: datetime,
    session_id: int | None = None,
    allow_outside_availability: bool = False,
) -> Occurrence:
    """Book ``candidate_time`` for a queue item (or one of its sessions) and commit.

    Raises ``NotFoundError``, ``InvalidArgument``, ``InvariantViolation``,
    ``SlotNoLongerAvailable``, ``OutsideBusinessHours`` or
    ``OutsideCustomerAvailability``; on any error nothing is written.
    """
    candidate_time = candidate_time.replace(second=0, microsecond=0)
    with _commit_lock:
        try:
            business_settings.lock_capacity_row()
            item = get_queue_item(queue_id, for_update=True)
            duration = _resolve_duration(item, duration_minutes)

            if session_id is None:
                if item.status not in SCHEDULABLE_STATUSES:
                    raise InvariantViolation(
                        f"Cannot schedule a queue item with status '{item.status}'",
                        reason_code="not_schedulable",
                    )
                exclude_key = item.occurrence_key
            else:
                if item.status == FINISHED:
                    raise InvariantViolation(
                        "Cannot schedule sessions for a finished queue item",
                        reason_code="not_schedulable",
                    )
                session = find_item_session(item, session_id)
                if session.status not in SCHEDULABLE_SESSION_STATUSES:
                    raise InvariantViolation(
                        f"Cannot schedule a session with status '{session.status}'",
                        reason_code="not_schedulable",
                    )
                exclude_key = session.occurrence_key

            check_slot(
                item,
                candidate_time,
                duration,
                now=now,
                exclude_key=exclude_key,
                allow_outside_availability=allow_outside_availability,
            )

            if session_id is None:
                mark_scheduled(item, candidate_time)
                db.session.flush()
                occurrence = item_occurrence(item)
            else:
                mark_session_scheduled(session, candidate_time)
                db.session.flush()
                occurrence = session_occurrence(session)

            occurrence = replace(occurrence, duration_minutes=duration)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Booked %s at %s for %s minutes",
        occurrence.key,
        candidate_time.isoformat(),
        duration,
    )
    return occurrence
