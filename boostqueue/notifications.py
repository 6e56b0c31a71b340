"""Queue events and their delivery outbox.

State changes record a ``Notification`` row in the same transaction as the
change itself. After the transaction commits, pending rows are handed to
the notifier registered on the app (the external messaging collaborator).
The core picks the event type and parameters only; wording is up to the
notifier.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from flask import current_app

from .extensions import NOTIFIER_KEY, db
from .models import Notification, QueueItem

logger = logging.getLogger(__name__)

EVENT_SCHEDULED = "scheduled"
EVENT_RESCHEDULED = "rescheduled"
EVENT_IN_PROGRESS = "in_progress"
EVENT_REVIEW = "review"
EVENT_COMPLETED = "completed"
EVENT_MISSED = "missed"
EVENT_MOVED_BACK = "moved_back"


@dataclass(frozen=True)
class QueueEvent:
    event_type: str
    queue_id: int
    customer_id: str | None
    package_name: str
    appointment_time: datetime | None = None
    room_code: str | None = None
    reason: str | None = None

    @classmethod
    def from_notification(cls, row: Notification) -> "QueueEvent":
        return cls(
            event_type=row.event_type,
            queue_id=row.queue_id,
            customer_id=row.customer_id,
            package_name=row.package_name,
            appointment_time=row.appointment_time,
            room_code=row.room_code,
            reason=row.reason,
        )


Notifier = Callable[[QueueEvent], None]


def log_notifier(event: QueueEvent) -> None:
    """Default notifier: write the event to the log and nothing else."""
    logger.info(
        "Queue event %s for queue item %s (%s)",
        event.event_type,
        event.queue_id,
        event.package_name,
    )


def record_event(
    item: QueueItem,
    event_type: str,
    *,
    appointment_time: datetime | None = None,
    room_code: str | None = None,
    reason: str | None = None,
) -> Notification:
    """Add an outbox row for ``item``; the caller owns the transaction."""
    row = Notification(
        queue_id=item.queue_id,
        customer_id=item.customer_id,
        event_type=event_type,
        package_name=item.package_name,
        appointment_time=appointment_time,
        room_code=room_code,
        reason=reason,
    )
    db.session.add(row)
    return row


def dispatch_pending(now: datetime, limit: int = 100) -> int:
    """Deliver committed, undelivered events. Returns how many were delivered.

    A failing notifier leaves its row pending for the next dispatch.
    """
    notifier: Notifier = current_app.extensions.get(NOTIFIER_KEY, log_notifier)
    pending = (
        Notification.query.filter(Notification.dispatched_at.is_(None))
        .order_by(Notification.notification_id)
        .limit(limit)
        .all()
    )

    delivered = 0
    for row in pending:
        try:
            notifier(QueueEvent.from_notification(row))
        except Exception:  # the notifier is an external collaborator
            logger.exception("Failed to deliver notification %s", row.notification_id)
            continue
        row.dispatched_at = now
        delivered += 1

    if delivered:
        db.session.commit()
    return delivered
