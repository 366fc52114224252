"""
Utility functions shared across the app. This includes:
- form parsing helpers (decimal, int, date, bool, email lists)
- AppSettings access (get_setting, get_settings_map, set_setting, current_vat_rate)
- placeholder replacement for quote/notification templates
- safe_next_url for post-action redirects
- status labels / CSS classes used by the templates
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from urllib.parse import urlparse

from flask import current_app, request, url_for

from .extensions import db
from .financials import percent_to_fraction
from .models import AppSettings


STATUS_LABELS = {
    "quote": "Quote",
    "confirmed": "Confirmed",
    "in_progress": "In progress",
    "completed": "Completed",
    "cancelled": "Cancelled",
}

EVENT_TYPE_LABELS = {
    "wedding": "Wedding",
    "bar_mitzvah": "Bar Mitzvah",
    "bat_mitzvah": "Bat Mitzvah",
    "other": "Event",
}

PAYMENT_METHOD_LABELS = {
    "cash": "Cash",
    "bank_transfer": "Bank transfer",
    "check": "Check",
    "credit_card": "Credit card",
    "other": "Other",
}

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def parse_decimal(value: str | None) -> Decimal | None:
    """Parse decimal from user input (accepts comma or dot)."""
    if value is None:
        return None
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        result = Decimal(raw)
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def parse_optional_int(value: str | None) -> int | None:
    """Parse optional int from form/query."""
    if value is None:
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_date(value: str | None) -> date | None:
    """ISO date (YYYY-MM-DD) from a form field."""
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_time(value: str | None) -> str | None:
    """HH:MM from a form field (normalized), None if invalid/empty."""
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw[:5], "%H:%M").strftime("%H:%M")
    except ValueError:
        return None


def parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "on", "yes"}
    return bool(value)


def parse_email_list(value: str | None) -> list[str]:
    """Split comma/semicolon/newline separated emails, lowercased, de-duplicated."""
    emails: list[str] = []
    for part in re.split(r"[,;\s]+", value or ""):
        email = part.strip().lower()
        if email and email not in emails:
            emails.append(email)
    return emails


def form_text(name: str) -> str | None:
    """Stripped form value or None."""
    return (request.form.get(name) or "").strip() or None


# ---------------------------------------------------------------------
# Redirect helpers
# ---------------------------------------------------------------------
def safe_next_url(raw_next: str | None, fallback_endpoint: str, **values) -> str:
    """
    Return a safe local next URL.

    Rules:
    - Only allow relative URLs (no scheme/netloc).
    - Fall back to an internal endpoint if invalid/empty.
    """
    if not raw_next:
        return url_for(fallback_endpoint, **values)

    parsed = urlparse(raw_next)

    # Disallow external redirects
    if parsed.scheme or parsed.netloc:
        return url_for(fallback_endpoint, **values)

    # Must start with a single /
    if not raw_next.startswith("/") or raw_next.startswith("//"):
        return url_for(fallback_endpoint, **values)

    return raw_next


# ---------------------------------------------------------------------
# AppSettings
# ---------------------------------------------------------------------
def get_settings_map() -> dict[str, str]:
    return {row.setting_key: row.setting_value for row in AppSettings.query.all()}


def get_setting(key: str, default: str | None = None) -> str | None:
    row = AppSettings.query.filter_by(setting_key=key).first()
    if row is None or row.setting_value is None:
        return default
    return row.setting_value


def set_setting(key: str, value: str | None) -> AppSettings:
    """Upsert a settings row (caller commits)."""
    row = AppSettings.query.filter_by(setting_key=key).first()
    if row is None:
        row = AppSettings(setting_key=key, setting_value=value)
        db.session.add(row)
    else:
        row.setting_value = value
    return row


def current_vat_rate() -> Decimal:
    """VAT fraction from AppSettings.vat_rate, which is always a percent (1 means 1%)."""
    raw = get_setting("vat_rate", current_app.config.get("DEFAULT_VAT_RATE"))
    return percent_to_fraction(raw)


def get_concept_defaults() -> dict:
    """concept -> {"service_ids": [...], "package_ids": [...]} (empty on bad data)."""
    raw = get_setting("concept_defaults")
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        current_app.logger.warning("AppSettings.concept_defaults is not valid JSON")
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------
def replace_placeholders(template: str | None, data: dict) -> str:
    """
    Replace {{key}} placeholders with values from data.

    Unknown keys (or None values) keep the original placeholder text.
    """
    if not template:
        return ""

    def _sub(match: re.Match) -> str:
        value = data.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER_RE.sub(_sub, template)


def format_money(value) -> str:
    if value is None:
        return "0.00"
    return f"{Decimal(value):,.2f}"


def format_percent(fraction) -> str:
    """0.18 -> "18", 0.175 -> "17.5"."""
    integral, _, decimals = f"{(Decimal(fraction) * 100).quantize(Decimal('0.01')):f}".partition(".")
    decimals = decimals.rstrip("0")
    return f"{integral}.{decimals}" if decimals else integral


def event_row_class(event) -> str:
    """CSS class for event rows/cards by status."""
    return {
        "quote": "row-quote",
        "confirmed": "row-confirmed",
        "in_progress": "row-progress",
        "completed": "row-complete",
        "cancelled": "row-cancelled",
    }.get(event.status or "", "")
