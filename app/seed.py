"""
app/seed.py

Seed default settings and templates.

Rules:
- Safe to run multiple times (idempotent).
- Existing rows are never overwritten; admins may have edited them.
"""

from __future__ import annotations

from flask import current_app

from .extensions import db
from .models import AppSettings, NotificationTemplate, QuoteTemplate


DEFAULT_SETTINGS = [
    ("vat_rate", None),  # filled from config DEFAULT_VAT_RATE
    ("company_name", None),  # filled from config APP_NAME
    ("company_phone", ""),
    ("company_email", ""),
    ("company_logo_url", ""),
    ("quote_show_footer", "false"),
    ("quote_footer_text", ""),
    ("concept_defaults", "{}"),
]


DEFAULT_NOTIFICATION_TEMPLATES = [
    # template_type, title, body, link_page
    (
        "supplier_assignment",
        "New assignment: {{service_name}}",
        "You were assigned to {{service_name}} for {{event_name}} on {{event_date}}. Please confirm.",
        "supplier_dashboard",
    ),
    (
        "supplier_status_changed",
        "{{supplier_name}} answered: {{status}}",
        "{{supplier_name}} set {{service_name}} for {{event_name}} ({{event_date}}) to {{status}}.",
        "event_details",
    ),
    (
        "event_reminder",
        "Reminder: {{event_name}}",
        "{{event_name}} takes place on {{event_date}} at {{location}}.",
        "event_details",
    ),
    (
        "supplier_pending_reminder",
        "Waiting for your answer: {{service_name}}",
        "{{service_name}} for {{event_name}} on {{event_date}} is still pending. Please confirm or reject.",
        "supplier_dashboard",
    ),
    (
        "payment_received",
        "Payment received",
        "A payment of {{amount}} was recorded for {{event_name}}.",
        "event_details",
    ),
]


DEFAULT_PAYMENT_TERMS = (
    "<p>A deposit of 30% confirms the booking.</p>"
    "<p>The balance of {{final_total}} is due no later than one week before {{event_date}}.</p>"
)


def seed_defaults() -> dict:
    """
    Create default AppSettings, NotificationTemplate and QuoteTemplate rows.

    Returns the number of rows created per kind.
    """
    created = {"settings": 0, "notification_templates": 0, "quote_templates": 0}

    fallbacks = {
        "vat_rate": str(current_app.config.get("DEFAULT_VAT_RATE", "18")),
        "company_name": current_app.config.get("APP_NAME", ""),
    }
    for key, value in DEFAULT_SETTINGS:
        if AppSettings.query.filter_by(setting_key=key).first():
            continue
        db.session.add(AppSettings(setting_key=key, setting_value=value if value is not None else fallbacks[key]))
        created["settings"] += 1

    for template_type, title, body, link_page in DEFAULT_NOTIFICATION_TEMPLATES:
        if NotificationTemplate.query.filter_by(template_type=template_type).first():
            continue
        db.session.add(
            NotificationTemplate(
                template_type=template_type,
                title=title,
                body=body,
                link_page=link_page,
                is_active=True,
            )
        )
        created["notification_templates"] += 1

    if not QuoteTemplate.query.filter_by(template_type="payment_terms").first():
        db.session.add(
            QuoteTemplate(
                template_type="payment_terms",
                title="Payment terms",
                content=DEFAULT_PAYMENT_TERMS,
                is_active=True,
            )
        )
        created["quote_templates"] += 1

    db.session.commit()
    return created
