"""pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from boostqueue import create_app  # noqa: E402
from boostqueue.clock import FixedClock  # noqa: E402
from boostqueue.extensions import db  # noqa: E402
from boostqueue.models import Order, Package  # noqa: E402
from boostqueue.orders import enqueue_order  # noqa: E402

# A Monday morning, before the default 14:00 opening.
NOW = datetime(2026, 3, 2, 9, 0)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def sent() -> list:
    """Events handed to the notifier, in delivery order."""
    return []


@pytest.fixture
def app(clock, sent):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "CRON_SECRET": None,
        },
        clock=clock,
        notifier=sent.append,
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_package(app):
    def _make(name: str = "Rank Boost", duration: int = 60, price: str = "49.99", position: int = 0) -> Package:
        package = Package(name=name, price=Decimal(price), estimated_duration=duration, position=position)
        db.session.add(package)
        db.session.commit()
        return package

    return _make


@pytest.fixture
def make_item(app, clock, make_package):
    """Create a paid order and enqueue it; returns the queue item."""

    def _make(availability=None, duration: int = 60, customer_id: str = "cust-1", package: Package | None = None):
        package = package or make_package(duration=duration)
        order = Order(
            customer_id=customer_id,
            customer_name="Test Customer",
            package_id=package.package_id,
            package_name=package.name,
            amount=package.price,
            status="paid",
            availability=availability or {},
        )
        db.session.add(order)
        item = enqueue_order(order, clock.now())
        db.session.commit()
        return item

    return _make
