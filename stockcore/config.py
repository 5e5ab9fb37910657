# stockcore/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL points at Postgres
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockcore.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bounded wait for the per-(variant, location) serialization lock
    STOCK_LOCK_TIMEOUT_SECONDS = float(os.environ.get("STOCK_LOCK_TIMEOUT_SECONDS", "5"))

    # Default lifetime of a stock reservation
    RESERVATION_TTL_SECONDS = int(os.environ.get("RESERVATION_TTL_SECONDS", "3600"))

    # The auth gateway in front of the API injects X-Tenant-Id / X-Actor-Id / X-Actor-Role
    TRUST_IDENTITY_HEADERS = os.environ.get("TRUST_IDENTITY_HEADERS", "true").lower() == "true"
