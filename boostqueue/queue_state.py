"""Queue state machine.

Queue statuses form a line, ``new → scheduled → in_progress → review →
finished``. Whether a move is forward or backward is decided by index in
that line, not by an explicit graph. Forward moves carry a required payload
per target; backward moves require a reason, which is appended to the
item's notes.

Functions here mutate the ORM objects and record outbox events but never
commit; the caller owns the transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime

from .errors import InvariantViolation, ValidationError
from .models import QueueItem, QueueSession
from .notifications import (
    EVENT_COMPLETED,
    EVENT_IN_PROGRESS,
    EVENT_MISSED,
    EVENT_MOVED_BACK,
    EVENT_RESCHEDULED,
    EVENT_REVIEW,
    EVENT_SCHEDULED,
    record_event,
)

logger = logging.getLogger(__name__)

NEW = "new"
SCHEDULED = "scheduled"
IN_PROGRESS = "in_progress"
REVIEW = "review"
FINISHED = "finished"

QUEUE_STATUS_ORDER = (NEW, SCHEDULED, IN_PROGRESS, REVIEW, FINISHED)

ORDER_STATUS_FOR_QUEUE = {
    NEW: "in_queue",
    SCHEDULED: "scheduled",
    IN_PROGRESS: "in_progress",
    REVIEW: "review",
    FINISHED: "completed",
}

SCHEDULABLE_STATUSES = (NEW, SCHEDULED)

FORWARD = "forward"
BACKWARD = "backward"
UNCHANGED = "unchanged"


def status_index(status: str) -> int:
    try:
        return QUEUE_STATUS_ORDER.index(status)
    except ValueError:
        raise ValidationError(
            f"Status must be one of: {', '.join(QUEUE_STATUS_ORDER)}", code="invalid_status"
        ) from None


def transition_direction(current: str, target: str) -> str:
    current_index, target_index = status_index(current), status_index(target)
    if target_index > current_index:
        return FORWARD
    if target_index < current_index:
        return BACKWARD
    return UNCHANGED


def append_note(item: QueueItem, text: str, now: datetime) -> None:
    """Append a timestamped line to the notes log; earlier notes are kept."""
    line = f"[{now.strftime('%Y-%m-%d %H:%M')}] {text}"
    item.notes = f"{item.notes}\n{line}" if item.notes else line


def _set_status(item: QueueItem, status: str) -> None:
    item.status = status
    if item.order is not None:
        item.order.status = ORDER_STATUS_FOR_QUEUE[status]


def transition(
    item: QueueItem,
    target: str,
    *,
    now: datetime,
    reason: str | None = None,
    room_code: str | None = None,
    notes: str | None = None,
    proof_confirmed: bool = False,
    override_proof: bool = False,
    proof_required: bool = True,
) -> str:
    """Move ``item`` to ``target`` and return the direction of the move."""
    direction = transition_direction(item.status, target)
    notes = (notes or "").strip() or None

    if direction == UNCHANGED:
        if notes:
            append_note(item, notes, now)
        return direction

    if direction == BACKWARD:
        _move_backward(item, target, now=now, reason=reason)
        return direction

    if target == SCHEDULED:
        raise InvariantViolation(
            "Scheduling must go through the booking commit path",
            reason_code="booking_required",
        )

    if target == IN_PROGRESS:
        code = (room_code or "").strip().upper()
        if not code:
            raise ValidationError("room_code is required to start a session", code="room_code_required")
        item.room_code = code
        if item.appointment_time is None:
            item.appointment_time = now
        _set_status(item, IN_PROGRESS)
        record_event(item, EVENT_IN_PROGRESS, room_code=code)

    elif target == REVIEW:
        _set_status(item, REVIEW)
        record_event(item, EVENT_REVIEW)

    elif target == FINISHED:
        if proof_confirmed:
            item.proof_added = True
        if proof_required and not (item.proof_added or override_proof):
            raise InvariantViolation(
                "Proof of completion is required before finishing",
                reason_code="proof_required",
            )
        if override_proof and not item.proof_added:
            append_note(item, "Finished without proof (operator override)", now)
        item.finished_at = now
        _set_status(item, FINISHED)
        record_event(item, EVENT_COMPLETED)

    if notes:
        append_note(item, notes, now)

    logger.info("Queue item %s moved forward to %s", item.queue_id, target)
    return direction


def _move_backward(item: QueueItem, target: str, *, now: datetime, reason: str | None) -> None:
    reason = (reason or "").strip()
    if not reason:
        raise InvariantViolation(
            "A reason is required to move an item back to an earlier stage",
            reason_code="reason_required",
        )

    previous = item.status
    append_note(item, f"Moved back from {previous} to {target}: {reason}", now)
    if target == NEW:
        item.appointment_time = None
    if previous == FINISHED:
        item.finished_at = None
    _set_status(item, target)
    record_event(item, EVENT_MOVED_BACK, reason=reason)
    logger.info("Queue item %s moved back from %s to %s", item.queue_id, previous, target)


def mark_scheduled(item: QueueItem, appointment_time: datetime) -> None:
    """Record a committed booking on the item. Only the booking path calls this."""
    first_booking = item.status == NEW or item.appointment_time is None
    item.appointment_time = appointment_time
    if item.status == NEW:
        _set_status(item, SCHEDULED)
    event = EVENT_SCHEDULED if first_booking else EVENT_RESCHEDULED
    record_event(item, event, appointment_time=appointment_time)


def mark_session_scheduled(session: QueueSession, appointment_time: datetime) -> None:
    item = session.queue_item
    rescheduled = session.status == "scheduled"
    session.appointment_time = appointment_time
    session.status = "scheduled"
    if item.status == NEW:
        _set_status(item, SCHEDULED)
    record_event(item, EVENT_RESCHEDULED if rescheduled else EVENT_SCHEDULED, appointment_time=appointment_time)


def record_missed(item: QueueItem, now: datetime, notes: str | None = None) -> None:
    """The customer missed the appointment: count it and park the item in review."""
    if item.status in (NEW, FINISHED):
        raise InvariantViolation(
            f"Cannot mark a {item.status} item as missed",
            reason_code="invalid_transition",
        )
    item.missed_count = (item.missed_count or 0) + 1
    _set_status(item, REVIEW)
    line = f"Missed appointment #{item.missed_count}"
    if notes and notes.strip():
        line = f"{line}: {notes.strip()}"
    append_note(item, line, now)
    record_event(item, EVENT_MISSED)
    logger.info("Queue item %s marked missed (%s total)", item.queue_id, item.missed_count)


SESSION_TRANSITIONS = {
    "start": ("scheduled",),
    "complete": ("in_progress",),
    "miss": ("scheduled", "in_progress"),
}


def _check_session_action(session: QueueSession, action: str) -> None:
    allowed = SESSION_TRANSITIONS.get(action)
    if allowed is None:
        raise ValidationError(
            f"action must be one of: {', '.join(SESSION_TRANSITIONS)}", code="invalid_action"
        )
    if session.status not in allowed:
        raise InvariantViolation(
            f"Cannot {action} a session with status '{session.status}'",
            reason_code="invalid_session_transition",
        )


def start_session(session: QueueSession, room_code: str | None, now: datetime) -> None:
    _check_session_action(session, "start")
    code = (room_code or "").strip().upper()
    if not code:
        raise ValidationError("room_code is required to start a session", code="room_code_required")
    session.room_code = code
    session.status = "in_progress"
    if session.appointment_time is None:
        session.appointment_time = now
    record_event(session.queue_item, EVENT_IN_PROGRESS, room_code=code)


def complete_session(session: QueueSession) -> None:
    _check_session_action(session, "complete")
    session.status = "completed"
    session.proof_added = True


def miss_session(session: QueueSession) -> None:
    _check_session_action(session, "miss")
    session.status = "missed"
    session.missed = True
    item = session.queue_item
    item.missed_count = (item.missed_count or 0) + 1
    record_event(item, EVENT_MISSED)
