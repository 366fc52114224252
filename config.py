"""
Configuration objects for the Event Planning Office.

Config holds the development defaults (SQLite file, local upload and backup folders,
VAT rate, calendar and push credentials). Every value that differs between machines
is read from an environment variable. TestConfig swaps in an in-memory database and
disables CSRF.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Defaults for local development; production overrides come from the environment."""

    # Sessions and CSRF tokens are signed with this; set SECRET_KEY outside development
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # DATABASE_URL may point at PostgreSQL; a local SQLite file otherwise
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'events.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Flask-WTF checks a token on every HTML form POST
    WTF_CSRF_ENABLED = True

    # App UI name (used in templates when AppSettings has no company_name)
    APP_NAME = "Event Planning Office"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # VAT percent used when AppSettings has no vat_rate row
    DEFAULT_VAT_RATE = os.environ.get("DEFAULT_VAT_RATE", "18")

    # Local replacements for the hosted file store
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
    ALLOWED_UPLOAD_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "pdf"}
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024

    BACKUP_DIR = os.environ.get("BACKUP_DIR", str(BASE_DIR / "backups"))
    MAX_BACKUPS = int(os.environ.get("MAX_BACKUPS", "30"))

    # Scheduled reminders (send-event-reminders / check-pending-assignments)
    EVENT_REMINDER_DAYS = int(os.environ.get("EVENT_REMINDER_DAYS", "1"))
    PENDING_REMINDER_AFTER_HOURS = int(os.environ.get("PENDING_REMINDER_AFTER_HOURS", "24"))
    PENDING_REMINDER_INTERVAL_HOURS = int(os.environ.get("PENDING_REMINDER_INTERVAL_HOURS", "24"))
    MAX_PENDING_REMINDERS = int(os.environ.get("MAX_PENDING_REMINDERS", "3"))

    # Calendar OAuth (optional)
    GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID")
    GOOGLE_REDIRECT_URI = os.environ.get("GOOGLE_REDIRECT_URI", "http://localhost:5000/settings/calendar/callback")


class TestConfig(Config):
    """Configuration used by the test-suite (in-memory DB, no CSRF)."""

    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = "WARNING"
