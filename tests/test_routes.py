"""HTTP-level tests for the queue, booking, settings and maintenance endpoints."""
from __future__ import annotations

from datetime import timedelta

from decimal import Decimal

from flask import json
from sqlalchemy.exc import OperationalError

from boostqueue import business_settings
from boostqueue.extensions import db
from boostqueue.models import Order, QueueItem, QueueSession


def _post(client, url: str, payload: dict):
    return client.post(url, data=json.dumps(payload), content_type="application/json")


def _schedule(client, item, when: str = "2026-03-02T15:00:00", **extra):
    return _post(client, f"/queue/{item.queue_id}/schedule", {"appointment_time": when, **extra})


# ---------------------------------------------------------------------------
# Settings and packages
# ---------------------------------------------------------------------------

def test_settings_round_trip(client) -> None:
    response = _post(client, "/settings", {
        "max_concurrent_sessions": {"count": 2},
        "business_hours": {"sunday": {"enabled": False, "start": "14:00", "end": "22:00"}},
    })

    assert response.status_code == 200
    listed = client.get("/settings").get_json()["settings"]
    assert listed["max_concurrent_sessions"] == {"count": 2}
    assert listed["business_hours"]["sunday"]["enabled"] is False
    assert listed["proof_required"] == {"enabled": True}
    assert listed["auto_archive_days"] == {"days": 7}


def test_invalid_setting_leaves_everything_untouched(client) -> None:
    response = _post(client, "/settings", {
        "max_concurrent_sessions": {"count": 5},
        "auto_archive_days": {"days": 0},
    })

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"
    assert client.get("/settings").get_json()["settings"]["max_concurrent_sessions"] == {"count": 3}


def test_unknown_setting_is_rejected(client) -> None:
    response = _post(client, "/settings", {"theme": "dark"})

    assert response.status_code == 400


def test_packages_listed_in_display_order(client, make_package) -> None:
    first = make_package(name="Placement Matches")
    second = make_package(name="Rank Boost")

    response = _post(client, "/packages/reorder", {"ids": [second.package_id, first.package_id]})
    listed = client.get("/packages").get_json()["packages"]

    assert response.status_code == 200
    assert [package["name"] for package in listed] == ["Rank Boost", "Placement Matches"]


# ---------------------------------------------------------------------------
# Slots and booking
# ---------------------------------------------------------------------------

def test_slot_grid_for_queue_item(client, make_item) -> None:
    item = make_item(availability={"monday": [{"start": "18:00", "end": "21:00"}]})

    response = client.get(f"/queue/{item.queue_id}/slots?week_start=2026-03-04")
    data = response.get_json()

    assert response.status_code == 200
    assert data["week_start"] == "2026-03-02"
    assert data["duration_minutes"] == 60
    assert len(data["days"]) == 7
    monday = {slot["starts_at"]: slot["status"] for slot in data["days"][0]["slots"]}
    assert monday["2026-03-02T13:00:00"] == "outside_business_hours"
    assert monday["2026-03-02T15:00:00"] == "outside_customer_availability"
    assert monday["2026-03-02T19:00:00"] == "available"


def test_slot_grid_rejects_bad_week_start(client, make_item) -> None:
    item = make_item()

    response = client.get(f"/queue/{item.queue_id}/slots?week_start=03/04/2026")

    assert response.status_code == 400


def test_slot_grid_for_missing_item(client) -> None:
    response = client.get("/queue/999/slots")

    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_schedule_commits_and_notifies(client, make_item, sent) -> None:
    item = make_item()

    response = _schedule(client, item)
    data = response.get_json()

    assert response.status_code == 200
    assert data["item"]["status"] == "scheduled"
    assert data["appointment"]["appointment_time"] == "2026-03-02T15:00:00"
    assert data["appointment"]["estimated_duration"] == 60
    assert [event.event_type for event in sent] == ["scheduled"]
    assert sent[0].appointment_time.isoformat() == "2026-03-02T15:00:00"


def test_schedule_conflict_returns_409(client, make_item, sent) -> None:
    _post(client, "/settings", {"max_concurrent_sessions": {"count": 1}})
    first = make_item(customer_id="cust-1")
    second = make_item(customer_id="cust-2")
    _schedule(client, first)

    response = _schedule(client, second, "2026-03-02T15:30:00")

    assert response.status_code == 409
    assert response.get_json()["error"] == "slot_no_longer_available"
    assert db.session.get(QueueItem, second.queue_id).status == "new"
    assert len(sent) == 1


def test_schedule_outside_customer_availability_is_overridable(client, make_item) -> None:
    item = make_item(availability={"monday": [{"start": "18:00", "end": "21:00"}]})

    refused = _schedule(client, item)
    accepted = _schedule(client, item, allow_outside_availability=True)

    assert refused.status_code == 409
    assert refused.get_json() == {
        "error": "outside_customer_availability",
        "message": refused.get_json()["message"],
        "overridable": True,
    }
    assert accepted.status_code == 200


def test_schedule_requires_local_time(client, make_item) -> None:
    item = make_item()

    missing = _post(client, f"/queue/{item.queue_id}/schedule", {})
    with_offset = _schedule(client, item, "2026-03-02T15:00:00+00:00")

    assert missing.status_code == 400
    assert with_offset.status_code == 400


def test_appointments_window(client, make_item) -> None:
    first = make_item(customer_id="cust-1")
    second = make_item(customer_id="cust-2")
    _schedule(client, first, "2026-03-02T15:00:00")
    _schedule(client, second, "2026-03-03T15:00:00")

    response = client.get("/appointments?start=2026-03-02T00:00:00&end=2026-03-03T00:00:00")
    appointments = response.get_json()["appointments"]

    assert response.status_code == 200
    assert [appointment["queue_id"] for appointment in appointments] == [first.queue_id]
    assert client.get("/appointments?start=2026-03-02T00:00:00").status_code == 400


# ---------------------------------------------------------------------------
# Queue lifecycle
# ---------------------------------------------------------------------------

def test_queue_grouped_by_status(client, make_item) -> None:
    waiting = make_item(customer_id="cust-1")
    booked = make_item(customer_id="cust-2")
    _schedule(client, booked)

    columns = client.get("/queue").get_json()["columns"]

    assert set(columns) == {"new", "scheduled", "in_progress", "review", "finished"}
    assert [entry["id"] for entry in columns["new"]] == [waiting.queue_id]
    assert [entry["id"] for entry in columns["scheduled"]] == [booked.queue_id]


def test_status_workflow(client, make_item, sent) -> None:
    item = make_item()
    _schedule(client, item)
    url = f"/queue/{item.queue_id}/status"

    no_room = _post(client, url, {"status": "in_progress"})
    started = _post(client, url, {"status": "in_progress", "room_code": "xk42"})
    no_proof = _post(client, url, {"status": "finished"})
    finished = _post(client, url, {"status": "finished", "proof_added": True})

    assert no_room.status_code == 400
    assert no_room.get_json()["error"] == "room_code_required"
    assert started.status_code == 200
    assert started.get_json()["item"]["room_code"] == "XK42"
    assert no_proof.status_code == 422
    assert no_proof.get_json()["reason_code"] == "proof_required"
    assert finished.status_code == 200
    assert finished.get_json()["direction"] == "forward"
    assert [event.event_type for event in sent] == ["scheduled", "in_progress", "completed"]


def test_moving_back_needs_a_reason(client, make_item) -> None:
    item = make_item()
    _schedule(client, item)
    url = f"/queue/{item.queue_id}/status"

    refused = _post(client, url, {"status": "new"})
    moved = _post(client, url, {"status": "new", "reason": "Customer rescheduling"})

    assert refused.status_code == 422
    assert refused.get_json()["reason_code"] == "reason_required"
    assert moved.status_code == 200
    assert moved.get_json()["direction"] == "backward"
    assert moved.get_json()["item"]["appointment_time"] is None


def test_scheduled_status_only_through_booking(client, make_item) -> None:
    item = make_item()

    response = _post(client, f"/queue/{item.queue_id}/status", {"status": "scheduled"})

    assert response.status_code == 422
    assert response.get_json()["reason_code"] == "booking_required"


def test_invalid_status_value(client, make_item) -> None:
    item = make_item()

    response = _post(client, f"/queue/{item.queue_id}/status", {"status": "archived"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_status"


def test_mark_missed(client, make_item) -> None:
    item = make_item()
    _schedule(client, item)

    response = _post(client, f"/queue/{item.queue_id}/missed", {"notes": "No show"})

    assert response.status_code == 200
    assert response.get_json()["item"]["status"] == "review"
    assert response.get_json()["item"]["missed_count"] == 1


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def test_session_endpoints(client, make_item) -> None:
    item = make_item()

    created = _post(client, f"/queue/{item.queue_id}/sessions", {})
    booked = _post(client, f"/queue/{item.queue_id}/sessions", {"appointment_time": "2026-03-02T16:00:00"})
    listed = client.get(f"/queue/{item.queue_id}/sessions").get_json()["sessions"]

    assert created.status_code == 201
    assert created.get_json()["session"]["session_number"] == 1
    assert booked.status_code == 201
    assert booked.get_json()["session"]["status"] == "scheduled"
    assert [session["session_number"] for session in listed] == [1, 2]

    session_id = booked.get_json()["session"]["id"]
    started = client.put(
        f"/sessions/{session_id}",
        data=json.dumps({"action": "start", "room_code": "r9"}),
        content_type="application/json",
    )
    assert started.status_code == 200
    assert started.get_json()["session"]["room_code"] == "R9"

    deleted = client.delete(f"/sessions/{created.get_json()['session']['id']}")
    assert deleted.status_code == 200
    assert QueueSession.query.filter_by(queue_id=item.queue_id).count() == 1


def test_rejected_session_booking_creates_nothing(client, make_item) -> None:
    item = make_item()

    response = _post(client, f"/queue/{item.queue_id}/sessions", {"appointment_time": "2026-03-02T10:00:00"})

    assert response.status_code == 409
    assert response.get_json()["error"] == "outside_business_hours"
    assert QueueSession.query.filter_by(queue_id=item.queue_id).count() == 0


def test_session_action_validation(client, make_item) -> None:
    item = make_item()
    session_id = _post(client, f"/queue/{item.queue_id}/sessions", {}).get_json()["session"]["id"]
    url = f"/sessions/{session_id}"

    unknown = client.put(url, data=json.dumps({"action": "pause"}), content_type="application/json")
    too_early = client.put(url, data=json.dumps({"action": "complete"}), content_type="application/json")

    assert unknown.status_code == 400
    assert too_early.status_code == 422
    assert client.put("/sessions/999", data=json.dumps({"action": "start"}),
                      content_type="application/json").status_code == 404


# ---------------------------------------------------------------------------
# Orders and maintenance
# ---------------------------------------------------------------------------

def test_availability_update_until_started(client, make_item) -> None:
    item = make_item()
    url = f"/orders/{item.order_id}/availability"

    updated = client.patch(
        url,
        data=json.dumps({"availability": {"monday": [{"start": "18:00", "end": "19:00"},
                                                     {"start": "19:00", "end": "21:00"}]}}),
        content_type="application/json",
    )
    _schedule(client, item, "2026-03-02T18:00:00")
    _post(client, f"/queue/{item.queue_id}/status", {"status": "in_progress", "room_code": "A1"})
    locked = client.patch(url, data=json.dumps({"availability": {}}), content_type="application/json")

    assert updated.status_code == 200
    assert updated.get_json()["availability"] == {"monday": [{"start": "18:00", "end": "21:00"}]}
    assert locked.status_code == 422
    assert locked.get_json()["reason_code"] == "availability_locked"


def test_cron_requires_secret_when_configured(app, client, make_item, clock) -> None:
    app.config["CRON_SECRET"] = "s3cret"
    item = make_item()
    item.status = "in_progress"
    item.appointment_time = clock.now() - timedelta(hours=3)
    db.session.commit()

    denied = client.post("/cron/maintenance")
    allowed = client.post("/cron/maintenance", headers={"Authorization": "Bearer s3cret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.get_json()["moved_to_review"] == 1
    assert allowed.get_json()["archived"] == 0


def test_enqueue_paid_order(client, make_package) -> None:
    package = make_package(name="Rank Boost", duration=90)
    order = Order(
        customer_id="cust-9",
        customer_name="New Customer",
        package_id=package.package_id,
        package_name=package.name,
        amount=Decimal("24.99"),
        status="paid",
        availability={"friday": [{"start": "19:00", "end": "20:00"}, {"start": "18:00", "end": "19:00"}]},
    )
    db.session.add(order)
    db.session.commit()

    created = client.post(f"/orders/{order.order_id}/enqueue")
    repeated = client.post(f"/orders/{order.order_id}/enqueue")

    assert created.status_code == 201
    item = created.get_json()["item"]
    assert item["status"] == "new"
    assert item["availability"] == {"friday": [{"start": "18:00", "end": "20:00"}]}
    assert repeated.status_code == 200
    assert repeated.get_json()["item"]["id"] == item["id"]
    assert db.session.get(Order, order.order_id).status == "in_queue"
    assert client.get(f"/queue/{item['id']}/slots").get_json()["duration_minutes"] == 90


def test_enqueue_refuses_unpaid_states(client, make_package) -> None:
    package = make_package()
    order = Order(
        customer_id="cust-9",
        customer_name="Refunded Customer",
        package_id=package.package_id,
        package_name=package.name,
        amount=package.price,
        status="refunded",
    )
    db.session.add(order)
    db.session.commit()

    refused = client.post(f"/orders/{order.order_id}/enqueue")

    assert refused.status_code == 422
    assert client.post("/orders/999/enqueue").status_code == 404


def test_sessions_listing_includes_scheduled_occurrences(client, make_item) -> None:
    item = make_item()
    _post(client, f"/queue/{item.queue_id}/sessions", {})
    booked = _post(client, f"/queue/{item.queue_id}/sessions", {"appointment_time": "2026-03-02T16:00:00"})

    data = client.get(f"/queue/{item.queue_id}/sessions").get_json()

    assert len(data["sessions"]) == 2
    assert [occurrence["key"] for occurrence in data["occurrences"]] == [
        f"session-{booked.get_json()['session']['id']}"
    ]
    assert data["occurrences"][0]["session_number"] == 2


def test_non_object_json_body_is_rejected(client, make_item) -> None:
    item = make_item()
    array_body = {"data": json.dumps([1, 2]), "content_type": "application/json"}

    responses = [
        client.post("/packages/reorder", **array_body),
        client.post(f"/queue/{item.queue_id}/schedule", **array_body),
        client.post(f"/queue/{item.queue_id}/status", **array_body),
        client.post(f"/queue/{item.queue_id}/sessions", **array_body),
        client.patch(f"/orders/{item.order_id}/availability", **array_body),
    ]

    assert [response.status_code for response in responses] == [400] * 5
    assert all(response.get_json()["error"] == "invalid_payload" for response in responses)


def test_business_hours_defaults_when_database_fails(client, monkeypatch) -> None:
    rollbacks = []

    def broken():
        raise OperationalError("SELECT value FROM settings", {}, Exception("database is gone"))

    monkeypatch.setattr(business_settings, "get_business_hours", broken)
    monkeypatch.setattr(db.session, "rollback", lambda: rollbacks.append(True))

    response = client.get("/business-hours")

    assert response.status_code == 200
    assert response.get_json()["business_hours"]["monday"]["start"] == "14:00"
    assert rollbacks == [True]


def test_slot_grid_rejects_session_of_another_item(client, make_item) -> None:
    _post(client, "/settings", {"max_concurrent_sessions": {"count": 1}})
    owner = make_item(customer_id="cust-1")
    other = make_item(customer_id="cust-2")
    booked = _post(client, f"/queue/{owner.queue_id}/sessions", {"appointment_time": "2026-03-02T16:00:00"})
    session_id = booked.get_json()["session"]["id"]

    foreign = client.get(f"/queue/{other.queue_id}/slots?session_id={session_id}")
    own = client.get(f"/queue/{owner.queue_id}/slots?session_id={session_id}")

    assert foreign.status_code == 404
    assert own.status_code == 200
    monday = {slot["starts_at"]: slot["status"] for slot in own.get_json()["days"][0]["slots"]}
    assert monday["2026-03-02T16:00:00"] == "available"
