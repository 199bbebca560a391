# backend/repairdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/repairdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///repairdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Cost estimate (KVA) defaults
    KVA_DEFAULT_FEE = os.environ.get("KVA_DEFAULT_FEE", "35.00")
    KVA_VALIDITY_DAYS = int(os.environ.get("KVA_VALIDITY_DAYS", "14"))
    KVA_REMINDER_WINDOW_DAYS = int(os.environ.get("KVA_REMINDER_WINDOW_DAYS", "3"))

    # Injected collaborators. None means: utcnow() / log-only notifications.
    CLOCK = None
    NOTIFICATION_SINK = None
