# backend/fulfillment/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fulfillment.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fulfillment.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for one multi-line pick; partial reservations are released on expiry
    ALLOCATION_TIMEOUT_SECONDS = float(os.environ.get("ALLOCATION_TIMEOUT_SECONDS", "10"))

    # run_with_retry attempts for lock / optimistic-version conflicts
    CONCURRENCY_RETRY_ATTEMPTS = int(os.environ.get("CONCURRENCY_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
