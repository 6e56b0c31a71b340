"""Database reads shared by the feasibility engine and the booking path."""
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import joinedload

from .capacity import Occurrence
from .errors import NotFoundError
from .extensions import db
from .models import Order, QueueItem, QueueSession

# Occurrences are looked up by start time; anything starting this long before
# a window can no longer reach into it.
LOOKBACK = timedelta(days=1)

ACTIVE_SESSION_STATUSES = ("scheduled", "in_progress")


def get_queue_item(queue_id: int, *, for_update: bool = False) -> QueueItem:
    query = db.session.query(QueueItem).filter(QueueItem.queue_id == queue_id)
    if for_update:
        query = query.with_for_update()
    item = query.one_or_none()
    if item is None:
        raise NotFoundError("Queue item not found")
    return item


def get_session(session_id: int) -> QueueSession:
    session = db.session.get(QueueSession, session_id)
    if session is None:
        raise NotFoundError("Session not found")
    return session


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def find_item_session(item: QueueItem, session_id: int) -> QueueSession:
    """The session ``session_id`` of ``item``; sessions of other items are not found."""
    for session in item.sessions:
        if session.session_id == session_id:
            return session
    raise NotFoundError("Session not found")


def item_occurrence(item: QueueItem) -> Occurrence | None:
    if item.appointment_time is None:
        return None
    return Occurrence(
        key=item.occurrence_key,
        queue_item_id=item.queue_id,
        source="queue",
        starts_at=item.appointment_time,
        duration_minutes=item.duration_minutes,
        status=item.status,
        package_name=item.package_name,
        customer_name=item.customer_name,
    )


def session_occurrence(session: QueueSession) -> Occurrence | None:
    if session.appointment_time is None:
        return None
    item = session.queue_item
    return Occurrence(
        key=session.occurrence_key,
        queue_item_id=session.queue_id,
        source="session",
        starts_at=session.appointment_time,
        duration_minutes=item.duration_minutes if item else None,
        status=session.status,
        package_name=item.package_name if item else None,
        customer_name=item.customer_name if item else None,
        session_number=session.session_number,
    )


def occurrences_for_item(item: QueueItem) -> list[Occurrence]:
    """The item's scheduled occurrences: its sessions when it has any, else its single appointment."""
    if item.sessions:
        found = [session_occurrence(session) for session in item.sessions]
    else:
        found = [item_occurrence(item)]
    return [occurrence for occurrence in found if occurrence is not None]


def fetch_occurrences(start: datetime, end: datetime) -> list[Occurrence]:
    """Every live occurrence whose interval intersects ``[start, end)``, sorted by start."""
    queue_rows = (
        QueueItem.query.options(joinedload(QueueItem.package))
        .filter(
            QueueItem.appointment_time.isnot(None),
            QueueItem.status != "finished",
            QueueItem.appointment_time >= start - LOOKBACK,
            QueueItem.appointment_time < end,
        )
        .all()
    )
    session_rows = (
        QueueSession.query.options(joinedload(QueueSession.queue_item).joinedload(QueueItem.package))
        .filter(
            QueueSession.appointment_time.isnot(None),
            QueueSession.status.in_(ACTIVE_SESSION_STATUSES),
            QueueSession.appointment_time >= start - LOOKBACK,
            QueueSession.appointment_time < end,
        )
        .all()
    )

    occurrences = [item_occurrence(row) for row in queue_rows]
    occurrences += [session_occurrence(row) for row in session_rows]
    return sorted(
        (occ for occ in occurrences if occ is not None and occ.ends_at > start),
        key=lambda occ: (occ.starts_at, occ.key),
    )
