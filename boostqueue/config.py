"""Application configuration read from the environment."""
from __future__ import annotations

import os


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///boostqueue.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    # Bearer token required by the maintenance endpoint; unset disables the check (development).
    CRON_SECRET = os.environ.get("CRON_SECRET")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
