"""Shared Flask extensions and collaborator slots for the application."""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy database instance shared across the app.
db = SQLAlchemy()

# Keys under ``app.extensions`` for the injectable collaborators.
CLOCK_KEY = "boostqueue.clock"
NOTIFIER_KEY = "boostqueue.notifier"
