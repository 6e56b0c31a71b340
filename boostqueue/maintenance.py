"""Periodic queue maintenance.

Two sweeps, both safe to run repeatedly and alongside live bookings:

* in-progress items whose appointment started over an hour ago and still
  have no proof are moved to review;
* finished items older than the ``auto_archive_days`` retention window are
  deleted together with their sessions.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from . import business_settings
from .extensions import db
from .models import QueueItem
from .queue_state import FINISHED, IN_PROGRESS, REVIEW, transition

logger = logging.getLogger(__name__)

STALE_SESSION_AFTER = timedelta(hours=1)


def advance_stale_sessions(now: datetime) -> int:
    cutoff = now - STALE_SESSION_AFTER
    stale = QueueItem.query.filter(
        QueueItem.status == IN_PROGRESS,
        QueueItem.appointment_time.isnot(None),
        QueueItem.appointment_time <= cutoff,
        QueueItem.proof_added.is_(False),
    ).all()
    for item in stale:
        transition(item, REVIEW, now=now)
    return len(stale)


def archive_finished(now: datetime) -> int:
    days = business_settings.get_auto_archive_days()
    cutoff = now - timedelta(days=days)
    expired = QueueItem.query.filter(
        QueueItem.status == FINISHED,
        QueueItem.finished_at.isnot(None),
        QueueItem.finished_at <= cutoff,
    ).all()
    for item in expired:
        db.session.delete(item)
    return len(expired)


def run_maintenance(now: datetime) -> dict[str, int]:
    """Run both sweeps in one transaction and commit."""
    try:
        moved = advance_stale_sessions(now)
        archived = archive_finished(now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Maintenance complete: moved %s to review, archived %s", moved, archived)
    return {"moved_to_review": moved, "archived": archived}
