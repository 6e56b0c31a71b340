"""Order-side operations around the queue.

Creating a queue item when payment confirms, customer edits of their
availability, staff-created sessions, and package display ordering.
None of these commit; request handlers and scripts own the transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import func

from .availability import dump_availability, normalize_availability
from .errors import InvariantViolation, NotFoundError, ValidationError
from .extensions import db
from .models import Order, Package, QueueItem, QueueSession
from .queue_state import NEW, ORDER_STATUS_FOR_QUEUE

logger = logging.getLogger(__name__)

# Orders whose availability the customer may still change.
EDITABLE_ORDER_STATUSES = ("in_queue", "scheduled")


def enqueue_order(order: Order, now: datetime) -> QueueItem:
    """Place a paid order at the back of the queue.

    The availability captured at purchase is normalized once here; the order
    and the queue item keep identical copies.
    """
    if order.queue_item is not None:
        return order.queue_item
    if order.status not in ("pending_payment", "paid"):
        raise InvariantViolation(
            f"Cannot enqueue an order with status '{order.status}'",
            reason_code="invalid_transition",
        )

    availability = dump_availability(normalize_availability(order.availability))
    last_position = db.session.query(func.max(QueueItem.position)).scalar() or 0
    item = QueueItem(
        order=order,
        customer_id=order.customer_id,
        customer_name=order.customer_name,
        package_id=order.package_id,
        package_name=order.package_name,
        status=NEW,
        availability=availability,
        position=last_position + 1,
    )
    order.availability = availability
    order.status = ORDER_STATUS_FOR_QUEUE[NEW]
    if order.paid_at is None:
        order.paid_at = now
    db.session.add(item)
    logger.info("Order %s enqueued at position %s", order.order_id, item.position)
    return item


def update_order_availability(order: Order, raw_availability: object, customer_id: str | None = None) -> dict:
    """Replace the customer's availability on both the order and its queue item."""
    if customer_id is not None and order.customer_id != customer_id:
        raise NotFoundError("Order not found")
    if order.status not in EDITABLE_ORDER_STATUSES:
        raise InvariantViolation(
            "Cannot update availability for orders that have already started",
            reason_code="availability_locked",
        )

    availability = dump_availability(normalize_availability(raw_availability))
    order.availability = availability
    if order.queue_item is not None:
        order.queue_item.availability = availability
    return availability


def create_session(item: QueueItem) -> QueueSession:
    """Append an unscheduled session numbered after the item's last one."""
    if item.status == "finished":
        raise InvariantViolation(
            "Cannot add sessions to a finished queue item",
            reason_code="not_schedulable",
        )
    last_number = (
        db.session.query(func.max(QueueSession.session_number))
        .filter(QueueSession.queue_id == item.queue_id)
        .scalar()
        or 0
    )
    session = QueueSession(queue_item=item, session_number=last_number + 1, status="pending")
    db.session.add(session)
    return session


def reorder_packages(package_ids: Iterable[object]) -> list[Package]:
    """Assign positions 0..n-1 following ``package_ids``."""
    ids = list(package_ids)
    if not ids or any(isinstance(value, bool) or not isinstance(value, int) for value in ids):
        raise ValidationError("ids must be a non-empty list of package ids")
    if len(set(ids)) != len(ids):
        raise ValidationError("ids must not contain duplicates")

    packages = {package.package_id: package for package in Package.query.filter(Package.package_id.in_(ids)).all()}
    missing = [value for value in ids if value not in packages]
    if missing:
        raise NotFoundError(f"Package(s) not found: {', '.join(str(value) for value in missing)}")

    for position, package_id in enumerate(ids):
        packages[package_id].position = position
    return [packages[package_id] for package_id in ids]
