"""Database models for the BoostQueue backend."""
from __future__ import annotations

from datetime import datetime

from .extensions import db

DEFAULT_DURATION_MINUTES = 60


def local_now() -> datetime:
    """Return the current wall-clock time as a naive datetime."""
    return datetime.now()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Package(db.Model):
    """A purchasable boosting package."""

    __tablename__ = "packages"

    package_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    estimated_duration = db.Column(db.Integer, nullable=False, default=DEFAULT_DURATION_MINUTES)
    active = db.Column(db.Boolean, nullable=False, default=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=local_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=local_now, onupdate=local_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.package_id,
            "name": self.name,
            "description": self.description,
            "price": float(self.price) if self.price is not None else None,
            "estimated_duration": self.estimated_duration,
            "active": bool(self.active),
            "position": self.position,
        }


class Order(db.Model):
    """A customer purchase. Its status mirrors the linked queue item."""

    __tablename__ = "orders"

    order_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.String(64), nullable=False, index=True)
    customer_name = db.Column(db.String(100))
    package_id = db.Column(db.Integer, db.ForeignKey("packages.package_id"), nullable=False)
    package_name = db.Column(db.String(150), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(
            "pending_payment",
            "paid",
            "in_queue",
            "scheduled",
            "in_progress",
            "review",
            "completed",
            "missed",
            "dispute",
            "refunded",
            name="order_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending_payment",
    )
    availability = db.Column(db.JSON, nullable=True, default=dict)
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=local_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=local_now, onupdate=local_now)

    package = db.relationship("Package")
    queue_item = db.relationship("QueueItem", back_populates="order", uselist=False)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.order_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "package_id": self.package_id,
            "package_name": self.package_name,
            "amount": float(self.amount) if self.amount is not None else None,
            "status": self.status,
            "availability": self.availability or {},
            "paid_at": _iso(self.paid_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class QueueItem(db.Model):
    """One fulfillment in the staff queue."""

    __tablename__ = "queue"

    queue_id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.order_id"), nullable=False, unique=True)
    customer_id = db.Column(db.String(64), nullable=False, index=True)
    customer_name = db.Column(db.String(100))
    package_id = db.Column(db.Integer, db.ForeignKey("packages.package_id"), nullable=False)
    package_name = db.Column(db.String(150), nullable=False)
    status = db.Column(
        db.Enum(
            "new",
            "scheduled",
            "in_progress",
            "review",
            "finished",
            name="queue_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="new",
    )
    availability = db.Column(db.JSON, nullable=True, default=dict)
    appointment_time = db.Column(db.DateTime, nullable=True, index=True)
    room_code = db.Column(db.String(32))
    notes = db.Column(db.Text)
    proof_added = db.Column(db.Boolean, nullable=False, default=False)
    missed_count = db.Column(db.Integer, nullable=False, default=0)
    position = db.Column(db.Integer, nullable=False, default=0)
    finished_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=local_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=local_now, onupdate=local_now)

    order = db.relationship("Order", back_populates="queue_item")
    package = db.relationship("Package")
    sessions = db.relationship(
        "QueueSession",
        back_populates="queue_item",
        order_by="QueueSession.session_number",
        cascade="all, delete-orphan",
    )

    @property
    def duration_minutes(self) -> int:
        if self.package and self.package.estimated_duration:
            return self.package.estimated_duration
        return DEFAULT_DURATION_MINUTES

    @property
    def occurrence_key(self) -> str:
        return f"queue-{self.queue_id}"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.queue_id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "package_id": self.package_id,
            "package_name": self.package_name,
            "status": self.status,
            "availability": self.availability or {},
            "appointment_time": _iso(self.appointment_time),
            "room_code": self.room_code,
            "notes": self.notes,
            "proof_added": bool(self.proof_added),
            "missed_count": self.missed_count,
            "position": self.position,
            "session_count": len(self.sessions),
            "finished_at": _iso(self.finished_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class QueueSession(db.Model):
    """One of several scheduled sessions for a multi-session fulfillment."""

    __tablename__ = "sessions"
    __table_args__ = (db.UniqueConstraint("queue_id", "session_number", name="uq_session_number"),)

    session_id = db.Column(db.Integer, primary_key=True)
    queue_id = db.Column(db.Integer, db.ForeignKey("queue.queue_id"), nullable=False)
    session_number = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum(
            "pending",
            "scheduled",
            "in_progress",
            "completed",
            "missed",
            name="session_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    appointment_time = db.Column(db.DateTime, nullable=True, index=True)
    room_code = db.Column(db.String(32))
    proof_added = db.Column(db.Boolean, nullable=False, default=False)
    missed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=local_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=local_now, onupdate=local_now)

    queue_item = db.relationship("QueueItem", back_populates="sessions")

    @property
    def occurrence_key(self) -> str:
        return f"session-{self.session_id}"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.session_id,
            "queue_id": self.queue_id,
            "session_number": self.session_number,
            "status": self.status,
            "appointment_time": _iso(self.appointment_time),
            "room_code": self.room_code,
            "proof_added": bool(self.proof_added),
            "missed": bool(self.missed),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Setting(db.Model):
    """Process-wide business setting stored as a JSON blob under ``key``."""

    __tablename__ = "settings"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=local_now, onupdate=local_now)


class Notification(db.Model):
    """Outbox row for a queue event awaiting delivery by the messaging collaborator."""

    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    queue_id = db.Column(db.Integer, nullable=True, index=True)
    customer_id = db.Column(db.String(64), nullable=True)
    event_type = db.Column(
        db.Enum(
            "scheduled",
            "rescheduled",
            "in_progress",
            "review",
            "completed",
            "missed",
            "moved_back",
            name="notification_event_type",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    package_name = db.Column(db.String(150), nullable=False)
    appointment_time = db.Column(db.DateTime)
    room_code = db.Column(db.String(32))
    reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=local_now)
    dispatched_at = db.Column(db.DateTime)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.notification_id,
            "queue_id": self.queue_id,
            "customer_id": self.customer_id,
            "event_type": self.event_type,
            "package_name": self.package_name,
            "appointment_time": _iso(self.appointment_time),
            "room_code": self.room_code,
            "reason": self.reason,
            "created_at": _iso(self.created_at),
            "dispatched_at": _iso(self.dispatched_at),
        }
