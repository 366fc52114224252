"""
app/exports.py

Event list exports (CSV download and printable HTML report).

Both exports use the same rows: event columns plus the financial summary from
calculate_event_financials, so the numbers match EventDetails exactly.
"""

from __future__ import annotations

import csv
import io
from typing import Iterable

from flask import render_template

from .models import Event
from .quotes import format_date
from .utils import EVENT_TYPE_LABELS, STATUS_LABELS, current_vat_rate, format_money

EXPORT_COLUMNS = [
    ("event_date", "Date"),
    ("event_name", "Event"),
    ("event_type", "Type"),
    ("family_name", "Family"),
    ("city", "City"),
    ("status", "Status"),
    ("guest_count", "Guests"),
    ("total_without_vat", "Before VAT"),
    ("vat_amount", "VAT"),
    ("discount_amount", "Discount"),
    ("final_total", "Total"),
    ("total_paid", "Paid"),
    ("balance", "Balance"),
]


def export_rows(events: Iterable[Event]) -> list[dict]:
    vat_rate = current_vat_rate()
    rows = []
    for event in events:
        fin = event.financials(vat_rate)
        rows.append(
            {
                "event_date": format_date(event.event_date),
                "event_name": event.display_name,
                "event_type": EVENT_TYPE_LABELS.get(event.event_type or "", ""),
                "family_name": event.family_name or "",
                "city": event.city or "",
                "status": STATUS_LABELS.get(event.status, event.status),
                "guest_count": event.guest_count if event.guest_count is not None else "",
                "total_without_vat": format_money(fin.total_without_vat),
                "vat_amount": format_money(fin.vat_amount),
                "discount_amount": format_money(fin.discount_amount),
                "final_total": format_money(fin.final_total),
                "total_paid": format_money(fin.total_paid),
                "balance": format_money(fin.balance),
            }
        )
    return rows


def events_csv(events: Iterable[Event]) -> str:
    """CSV text with a header row (UTF-8 BOM so spreadsheets detect the encoding)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([label for _, label in EXPORT_COLUMNS])
    for row in export_rows(events):
        writer.writerow([row[key] for key, _ in EXPORT_COLUMNS])
    return "﻿" + buffer.getvalue()


def events_report_html(events: Iterable[Event], title: str = "Events report") -> str:
    rows = export_rows(events)
    return render_template("events/report.html", title=title, columns=EXPORT_COLUMNS, rows=rows)
