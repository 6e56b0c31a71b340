"""HTTP routes for the BoostQueue backend."""
from __future__ import annotations

import hmac
from datetime import datetime, timedelta

from flask import Blueprint, Flask, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from . import business_settings
from .availability import parse_availability
from .booking import commit_booking
from .clock import get_clock
from .errors import SchedulingError
from .extensions import db
from .feasibility import SLOT_MINUTES, FeasibilityContext, week_bounds, week_start_for
from .maintenance import run_maintenance
from .models import Package, QueueItem
from .notifications import dispatch_pending
from .orders import create_session, enqueue_order, reorder_packages, update_order_availability
from .queue_state import (
    QUEUE_STATUS_ORDER,
    complete_session,
    miss_session,
    record_missed,
    start_session,
    transition,
)
from .repository import (
    fetch_occurrences,
    find_item_session,
    get_order,
    get_queue_item,
    get_session,
    occurrences_for_item,
)

bp = Blueprint("api", __name__)


def register_routes(app: Flask) -> None:
    app.register_blueprint(bp)


@bp.errorhandler(SchedulingError)
def handle_scheduling_error(exc: SchedulingError):
    db.session.rollback()
    current_app.logger.info("Rejected %s %s: %s", request.method, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def _database_error(exc: SQLAlchemyError, message: str):
    db.session.rollback()
    current_app.logger.exception(message, exc_info=exc)
    return jsonify({"error": "database_error"}), 500


def _invalid(message: str):
    return jsonify({"error": "invalid_payload", "message": message}), 400


def _json_object() -> dict | None:
    """The request body as a JSON object: ``{}`` when absent, ``None`` when it is not an object."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def _parse_local_datetime(value: object) -> datetime | None:
    """Parse an ISO datetime in business-local wall time; offsets are refused."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        return None
    return parsed


def _discard_session(session_id: int) -> None:
    """Remove a session whose initial booking was rejected."""
    try:
        db.session.delete(get_session(session_id))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to discard session %s", session_id, exc_info=exc)


def _dispatch_notifications() -> None:
    """Hand committed events to the notifier; delivery problems never fail the request."""
    try:
        dispatch_pending(get_clock().now())
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to dispatch notifications", exc_info=exc)


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# ============================================================================
# Settings
# ============================================================================

@bp.get("/business-hours")
def get_business_hours() -> tuple[dict[str, object], int]:
    """Public business hours and concurrency ceiling, defaults filled in.
    ---
    tags:
      - Settings
    responses:
      200:
        description: businessHours keyed by day and maxConcurrentSessions
    """
    try:
        hours = business_settings.get_business_hours()
        max_sessions = business_settings.get_max_concurrent_sessions()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to read business hours, serving defaults", exc_info=exc)
        hours = business_settings.BusinessHours()
        max_sessions = business_settings.MaxConcurrentSessions().count

    return jsonify({"business_hours": hours.to_value(), "max_concurrent_sessions": max_sessions}), 200


@bp.get("/settings")
def list_settings() -> tuple[dict[str, object], int]:
    """Return every business setting.
    ---
    tags:
      - Settings
    responses:
      200:
        description: Settings keyed by name
      500:
        description: Database error
    """
    try:
        return jsonify({"settings": business_settings.load_all()}), 200
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to load settings")


@bp.post("/settings")
def update_settings() -> tuple[dict[str, object], int]:
    """Validate and upsert one or more settings.
    ---
    tags:
      - Settings
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            business_hours:
              type: object
            max_concurrent_sessions:
              type: object
            proof_required:
              type: object
            auto_archive_days:
              type: object
    responses:
      200:
        description: Settings saved
      400:
        description: Unknown key or invalid value
      500:
        description: Database error
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not payload:
        return _invalid("Body must be a non-empty object of settings")

    try:
        saved = business_settings.save_settings(payload)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to save settings")

    current_app.logger.info("Settings updated: %s", ", ".join(sorted(saved)))
    return jsonify({"settings": saved}), 200


# ============================================================================
# Packages
# ============================================================================

@bp.get("/packages")
def list_packages() -> tuple[dict[str, object], int]:
    """Active packages in display order.
    ---
    tags:
      - Packages
    responses:
      200:
        description: List of packages
    """
    try:
        packages = (
            Package.query.filter(Package.active.is_(True))
            .order_by(Package.position.asc(), Package.package_id.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to list packages")

    return jsonify({"packages": [package.to_dict() for package in packages]}), 200


@bp.post("/packages/reorder")
def reorder_packages_route() -> tuple[dict[str, object], int]:
    """Set package display positions from an ordered id list.
    ---
    tags:
      - Packages
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            ids:
              type: array
              items:
                type: integer
    responses:
      200:
        description: Packages reordered
      400:
        description: Invalid id list
      404:
        description: Unknown package id
    """
    payload = _json_object()
    if payload is None:
        return _invalid("Body must be a JSON object")
    try:
        packages = reorder_packages(payload.get("ids") or [])
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to reorder packages")

    return jsonify({"packages": [package.to_dict() for package in packages]}), 200


# ============================================================================
# Appointments & feasibility
# ============================================================================

@bp.get("/appointments")
def list_appointments() -> tuple[dict[str, object], int]:
    """Occurrences (queue appointments and sessions) intersecting a window.
    ---
    tags:
      - Appointments
    parameters:
      - name: start
        in: query
        type: string
        required: true
      - name: end
        in: query
        type: string
        required: true
    responses:
      200:
        description: Occurrences sorted by start time
      400:
        description: Missing or invalid window
    """
    start = _parse_local_datetime(request.args.get("start"))
    end = _parse_local_datetime(request.args.get("end"))
    if start is None or end is None:
        return _invalid("start and end are required as local ISO datetimes (no offset)")
    if end <= start:
        return _invalid("end must be after start")

    try:
        occurrences = fetch_occurrences(start, end)
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to fetch appointments")

    return jsonify({"appointments": [occ.to_dict() for occ in occurrences]}), 200


@bp.get("/queue/<int:queue_id>/slots")
def get_queue_item_slots(queue_id: int) -> tuple[dict[str, object], int]:
    """Seven-day feasibility grid for scheduling one queue item.
    ---
    tags:
      - Queue
    parameters:
      - in: path
        name: queue_id
        required: true
        type: integer
      - name: week_start
        in: query
        type: string
        description: YYYY-MM-DD; snapped back to Monday. Defaults to the current week.
      - name: duration
        in: query
        type: integer
        description: Booking length in minutes. Defaults to the package duration.
      - name: session_id
        in: query
        type: integer
        description: Exclude this session (instead of the item's own appointment) from conflicts.
    responses:
      200:
        description: Grid of slot verdicts per day
      400:
        description: Invalid parameters
      404:
        description: Queue item not found
    """
    now = get_clock().now()
    week_param = request.args.get("week_start")
    if week_param:
        try:
            week_start = week_start_for(datetime.strptime(week_param, "%Y-%m-%d").date())
        except ValueError:
            return _invalid("week_start must be in YYYY-MM-DD format")
    else:
        week_start = week_start_for(now)

    duration = request.args.get("duration", type=int)
    if duration is not None and duration <= 0:
        return _invalid("duration must be a positive number of minutes")
    session_id = request.args.get("session_id", type=int)

    try:
        item = get_queue_item(queue_id)
        duration = duration if duration is not None else item.duration_minutes
        exclude_key = find_item_session(item, session_id).occurrence_key if session_id else item.occurrence_key

        window_start, window_end = week_bounds(week_start)
        context = FeasibilityContext(
            business_hours=business_settings.get_business_hours(),
            max_concurrent_sessions=business_settings.get_max_concurrent_sessions(),
            availability=parse_availability(item.availability),
            occurrences=fetch_occurrences(window_start, window_end + timedelta(minutes=max(duration, SLOT_MINUTES))),
            now=now,
        )
        days = context.build_week(week_start, duration, exclude_key)
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to build feasibility grid")

    return jsonify({
        "queue_id": item.queue_id,
        "week_start": week_start.isoformat(),
        "slot_minutes": SLOT_MINUTES,
        "duration_minutes": duration,
        "max_concurrent_sessions": context.max_concurrent_sessions,
        "days": [day.to_dict() for day in days],
    }), 200


@bp.post("/queue/<int:queue_id>/schedule")
def schedule_queue_item(queue_id: int) -> tuple[dict[str, object], int]:
    """Commit a booking for a queue item or one of its sessions.
    ---
    tags:
      - Queue
    parameters:
      - in: path
        name: queue_id
        required: true
        type: integer
      - in: body
        name: body
        required: true
        schema:
          properties:
            appointment_time:
              type: string
              format: date-time
            duration:
              type: integer
            session_id:
              type: integer
            allow_outside_availability:
              type: boolean
          required:
            - appointment_time
    responses:
      200:
        description: Booking committed
      400:
        description: Invalid payload
      404:
        description: Queue item or session not found
      409:
        description: Slot no longer bookable
      422:
        description: Item cannot be scheduled in its current state
    """
    payload = _json_object()
    if payload is None:
        return _invalid("Body must be a JSON object")
    appointment_time = _parse_local_datetime(payload.get("appointment_time"))
    if appointment_time is None:
        return _invalid("appointment_time is required as a local ISO datetime (no offset)")

    try:
        occurrence = commit_booking(
            queue_id,
            appointment_time,
            payload.get("duration"),
            now=get_clock().now(),
            session_id=payload.get("session_id"),
            allow_outside_availability=bool(payload.get("allow_outside_availability", False)),
        )
        item = get_queue_item(queue_id)
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to commit booking")

    _dispatch_notifications()
    return jsonify({"appointment": occurrence.to_dict(), "item": item.to_dict()}), 200


# ============================================================================
# Queue lifecycle
# ============================================================================

@bp.get("/queue")
def list_queue() -> tuple[dict[str, object], int]:
    """Queue items grouped by status column.
    ---
    tags:
      - Queue
    responses:
      200:
        description: Items per status, ordered by position
    """
    try:
        items = (
            QueueItem.query.options(joinedload(QueueItem.sessions))
            .order_by(QueueItem.position.asc(), QueueItem.queue_id.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to list queue")

    columns = {status: [] for status in QUEUE_STATUS_ORDER}
    for item in items:
        columns[item.status].append(item.to_dict())
    return jsonify({"columns": columns}), 200


@bp.post("/queue/<int:queue_id>/status")
def update_queue_status(queue_id: int) -> tuple[dict[str, object], int]:
    """Move a queue item to another status.
    ---
    tags:
      - Queue
    parameters:
      - in: path
        name: queue_id
        required: true
        type: integer
      - in: body
        name: body
        required: true
        schema:
          properties:
            status:
              type: string
              enum: [new, scheduled, in_progress, review, finished]
            reason:
              type: string
              description: Required when moving backward
            room_code:
              type: string
              description: Required when moving to in_progress
            notes:
              type: string
            proof_added:
              type: boolean
            override_proof:
              type: boolean
    responses:
      200:
        description: Status updated
      400:
        description: Invalid status or missing room code
      404:
        description: Queue item not found
      422:
        description: Missing reason, missing proof, or scheduling outside the booking path
    """
    payload = _json_object()
    if payload is None:
        return _invalid("Body must be a JSON object")
    target = payload.get("status")
    if not target:
        return _invalid("status is required")

    now = get_clock().now()
    try:
        item = get_queue_item(queue_id)
        direction = transition(
            item,
            target,
            now=now,
            reason=payload.get("reason"),
            room_code=payload.get("room_code"),
            notes=payload.get("notes"),
            proof_confirmed=bool(payload.get("proof_added", False)),
            override_proof=bool(payload.get("override_proof", False)),
            proof_required=business_settings.get_proof_required(),
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to update queue status")

    _dispatch_notifications()
    return jsonify({"item": item.to_dict(), "direction": direction}), 200


@bp.post("/queue/<int:queue_id>/missed")
def mark_queue_item_missed(queue_id: int) -> tuple[dict[str, object], int]:
    """Record that the customer missed their appointment.
    ---
    tags:
      - Queue
    responses:
      200:
        description: Missed count incremented, item moved to review
      404:
        description: Queue item not found
      422:
        description: Item has not been scheduled or is finished
    """
    payload = _json_object()
    if payload is None:
        return _invalid("Body must be a JSON object")
    try:
        item = get_queue_item(queue_id)
        record_missed(item, get_clock().now(), payload.get("notes"))
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to record missed appointment")

    _dispatch_notifications()
    return jsonify({"item": item.to_dict()}), 200


# ============================================================================
# Sessions
# ============================================================================

@bp.get("/queue/<int:queue_id>/sessions")
def list_sessions(queue_id: int) -> tuple[dict[str, object], int]:
    """All sessions of a queue item in session-number order.
    ---
    tags:
      - Sessions
    responses:
      200:
        description: Sessions
      404:
        description: Queue item not found
    """
    try:
        item = get_queue_item(queue_id)
        sessions = [session.to_dict() for session in item.sessions]
        occurrences = [occurrence.to_dict() for occurrence in occurrences_for_item(item)]
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to list sessions")

    return jsonify({"sessions": sessions, "occurrences": occurrences}), 200


@bp.post("/queue/<int:queue_id>/sessions")
def create_session_route(queue_id: int) -> tuple[dict[str, object], int]:
    """Add a session, optionally booking it straight away.
    ---
    tags:
      - Sessions
    parameters:
      - in: body
        name: body
        schema:
          properties:
            appointment_time:
              type: string
              format: date-time
            allow_outside_availability:
              type: boolean
    responses:
      201:
        description: Session created
      404:
        description: Queue item not found
      409:
        description: Requested time is not bookable; no session is created
    """
    payload = _json_object()
    if payload is None:
        return _invalid("Body must be a JSON object")
    appointment_time = None
    if payload.get("appointment_time") is not None:
        appointment_time = _parse_local_datetime(payload["appointment_time"])
        if appointment_time is None:
            return _invalid("appointment_time must be a local ISO datetime (no offset)")

    try:
        item = get_queue_item(queue_id)
        session = create_session(item)
        db.session.commit()
        session_id = session.session_id
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to create session")

    if appointment_time is not None:
        try:
            commit_booking(
                queue_id,
                appointment_time,
                now=get_clock().now(),
                session_id=session_id,
                allow_outside_availability=bool(payload.get("allow_outside_availability", False)),
            )
        except SchedulingError:
            _discard_session(session_id)
            raise
        except SQLAlchemyError as exc:
            response = _database_error(exc, "Failed to book new session")
            _discard_session(session_id)
            return response
        _dispatch_notifications()

    return jsonify({"session": get_session(session_id).to_dict()}), 201


@bp.put("/sessions/<int:session_id>")
def update_session(session_id: int) -> tuple[dict[str, object], int]:
    """Run a session action: start (with room code), complete, or miss.
    ---
    tags:
      - Sessions
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            action:
              type: string
              enum: [start, complete, miss]
            room_code:
              type: string
    responses:
      200:
        description: Session updated
      400:
        description: Unknown action or missing room code
      404:
        description: Session not found
      422:
        description: Action not allowed from the session's current status
    """
    payload = _json_object()
    if payload is None:
        return _invalid("Body must be a JSON object")
    action = payload.get("action")
    now = get_clock().now()

    try:
        session = get_session(session_id)
        if action == "start":
            start_session(session, payload.get("room_code"), now)
        elif action == "complete":
            complete_session(session)
        elif action == "miss":
            miss_session(session)
        else:
            return _invalid("action must be one of: start, complete, miss")
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to update session")

    _dispatch_notifications()
    return jsonify({"session": session.to_dict()}), 200


@bp.delete("/sessions/<int:session_id>")
def delete_session(session_id: int) -> tuple[dict[str, object], int]:
    """Delete a session.
    ---
    tags:
      - Sessions
    responses:
      200:
        description: Session deleted
      404:
        description: Session not found
    """
    try:
        db.session.delete(get_session(session_id))
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to delete session")

    return jsonify({"message": "Session deleted"}), 200


# ============================================================================
# Orders
# ============================================================================

@bp.post("/orders/<int:order_id>/enqueue")
def enqueue_paid_order(order_id: int) -> tuple[dict[str, object], int]:
    """Place an order whose payment was confirmed into the staff queue.
    ---
    tags:
      - Orders
    parameters:
      - in: path
        name: order_id
        required: true
        type: integer
    responses:
      201:
        description: Queue item created
      200:
        description: Order was already queued; the existing item is returned
      404:
        description: Order not found
      422:
        description: Order is not awaiting fulfillment
    """
    try:
        order = get_order(order_id)
        already_queued = order.queue_item is not None
        item = enqueue_order(order, get_clock().now())
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to enqueue order")

    return jsonify({"item": item.to_dict()}), 200 if already_queued else 201


@bp.patch("/orders/<int:order_id>/availability")
def update_availability(order_id: int) -> tuple[dict[str, object], int]:
    """Replace a customer's weekly availability while the order has not started.
    ---
    tags:
      - Orders
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            availability:
              type: object
            customer_id:
              type: string
    responses:
      200:
        description: Normalized availability saved on the order and its queue item
      400:
        description: Malformed availability
      404:
        description: Order not found
      422:
        description: Order has already started
    """
    payload = _json_object()
    if payload is None:
        return _invalid("Body must be a JSON object")
    if "availability" not in payload:
        return _invalid("availability is required")

    try:
        order = get_order(order_id)
        availability = update_order_availability(order, payload["availability"], payload.get("customer_id"))
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "Failed to update availability")

    return jsonify({"availability": availability}), 200


# ============================================================================
# Maintenance
# ============================================================================

@bp.post("/cron/maintenance")
def cron_maintenance() -> tuple[dict[str, object], int]:
    """Advance stale in-progress items and archive old finished ones.
    ---
    tags:
      - Maintenance
    responses:
      200:
        description: Sweep counts
      401:
        description: Missing or wrong bearer token
    """
    secret = current_app.config.get("CRON_SECRET")
    if secret:
        supplied = request.headers.get("Authorization", "")
        if not hmac.compare_digest(supplied, f"Bearer {secret}"):
            return jsonify({"error": "unauthorized", "message": "Invalid or missing token"}), 401

    now = get_clock().now()
    try:
        counts = run_maintenance(now)
    except SQLAlchemyError as exc:
        return _database_error(exc, "Maintenance sweep failed")

    _dispatch_notifications()
    return jsonify({**counts, "timestamp": now.isoformat()}), 200
