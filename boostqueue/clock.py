"""Injectable clocks.

Feasibility and booking never call ``datetime.now()`` directly; they ask the
clock registered on the application so tests can pin "now".
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from .extensions import CLOCK_KEY


class SystemClock:
    """Wall-clock time in the business's local zone, as naive datetimes."""

    def now(self) -> datetime:
        return datetime.now().replace(microsecond=0)


class FixedClock:
    """A clock frozen at ``instant`` until moved with :meth:`set`."""

    def __init__(self, instant: datetime) -> None:
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant


def get_clock() -> SystemClock | FixedClock:
    return current_app.extensions[CLOCK_KEY]
