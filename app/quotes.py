"""
app/quotes.py

Quote documents for an event (HTML preview and PDF download).

Content, in order:
- company header (AppSettings: company_name, company_phone, company_email, company_logo_url)
- event details
- concept intro (QuoteTemplate type concept_intro, identifier == event.concept)
- line items (package children listed under their main item)
- financial summary (calculate_event_financials)
- payment terms (QuoteTemplate type payment_terms)
- optional footer (quote_show_footer / quote_footer_text)

Template content may contain {{placeholders}} (see quote_placeholders()).
"""

from __future__ import annotations

import io
import re
from xml.sax.saxutils import escape

from flask import render_template
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .models import Event, QuoteTemplate
from .utils import (
    EVENT_TYPE_LABELS,
    current_vat_rate,
    format_money,
    format_percent,
    get_settings_map,
    parse_bool,
    replace_placeholders,
)

_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_RE = re.compile(r"<\s*(br|/p|/div|/li)\s*/?>", re.IGNORECASE)


def format_date(value) -> str:
    return value.strftime("%d.%m.%Y") if value else ""


def html_to_text(html: str | None) -> str:
    """Rich-text template content -> plain text lines (for PDF)."""
    if not html:
        return ""
    text = _BREAK_RE.sub("\n", html)
    text = _TAG_RE.sub("", text)
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _intro_template(event: Event) -> QuoteTemplate | None:
    if not event.concept:
        return None
    return QuoteTemplate.query.filter_by(
        template_type="concept_intro", identifier=event.concept, is_active=True
    ).first()


def _payment_terms_template() -> QuoteTemplate | None:
    return (
        QuoteTemplate.query.filter_by(template_type="payment_terms", is_active=True)
        .order_by(QuoteTemplate.id.asc())
        .first()
    )


def quote_placeholders(event: Event, financials, settings: dict) -> dict:
    return {
        "company_name": settings.get("company_name") or "",
        "event_name": event.display_name,
        "event_type": EVENT_TYPE_LABELS.get(event.event_type or "", "Event"),
        "family_name": event.family_name or "",
        "child_name": event.child_name or "",
        "event_date": format_date(event.event_date),
        "event_time": event.event_time or "",
        "location": event.location or "",
        "city": event.city or "",
        "concept": event.concept or "",
        "guest_count": event.guest_count if event.guest_count is not None else "",
        "final_total": format_money(financials.final_total),
        "total_paid": format_money(financials.total_paid),
        "balance": format_money(financials.balance),
    }


def _quote_lines(event: Event) -> list[dict]:
    lines = []
    for item in event.top_level_services:
        lines.append(
            {
                "name": item.display_name,
                "quantity": item.quantity or 1,
                "price": item.custom_price,
                "includes_vat": item.includes_vat,
                "notes": item.notes,
                "children": [child.display_name for child in item.package_children],
            }
        )
    return lines


def build_quote_context(event: Event, include_intro: bool = True, include_payment_terms: bool = True) -> dict:
    settings = get_settings_map()
    financials = event.financials(current_vat_rate())
    data = quote_placeholders(event, financials, settings)

    intro = _intro_template(event) if include_intro else None
    terms = _payment_terms_template() if include_payment_terms else None

    return {
        "event": event,
        "settings": settings,
        "event_type_label": data["event_type"],
        "event_date": data["event_date"],
        "intro_html": replace_placeholders(intro.content, data) if intro else "",
        "terms_html": replace_placeholders(terms.content, data) if terms else "",
        "lines": _quote_lines(event),
        "financials": financials,
        "show_footer": parse_bool(settings.get("quote_show_footer")),
        "footer_text": settings.get("quote_footer_text") or "",
    }


def render_quote_html(event: Event, include_intro: bool = True, include_payment_terms: bool = True) -> str:
    context = build_quote_context(event, include_intro, include_payment_terms)
    return render_template("quotes/quote.html", **context)


def render_quote_pdf(event: Event, include_intro: bool = True, include_payment_terms: bool = True) -> bytes:
    """Same content as the HTML quote, laid out with ReportLab."""
    context = build_quote_context(event, include_intro, include_payment_terms)
    settings = context["settings"]
    financials = context["financials"]

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Quote - {event.display_name}")
    styles = getSampleStyleSheet()
    story = []

    company = settings.get("company_name") or "Quote"
    story.append(Paragraph(escape(company), styles["Title"]))
    contact = " | ".join(v for v in (settings.get("company_phone"), settings.get("company_email")) if v)
    if contact:
        story.append(Paragraph(escape(contact), styles["Normal"]))
    story.append(Spacer(1, 12))

    details = [
        f"{context['event_type_label']}: {event.display_name}",
        f"Date: {context['event_date']} {event.event_time or ''}".strip(),
    ]
    if event.location or event.city:
        details.append("Location: " + ", ".join(v for v in (event.location, event.city) if v))
    if event.guest_count:
        details.append(f"Guests: {event.guest_count}")
    for line in details:
        story.append(Paragraph(escape(line), styles["Normal"]))
    story.append(Spacer(1, 12))

    for paragraph in html_to_text(context["intro_html"]).splitlines():
        story.append(Paragraph(escape(paragraph), styles["BodyText"]))
    if context["intro_html"]:
        story.append(Spacer(1, 12))

    rows = [["Item", "Qty", "Price"]]
    for line in context["lines"]:
        name = line["name"]
        if line["children"]:
            name += " (" + ", ".join(line["children"]) + ")"
        rows.append([Paragraph(escape(name), styles["BodyText"]), str(line["quantity"]), format_money(line["price"])])

    table = Table(rows, colWidths=[300, 50, 100], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    story.append(table)
    story.append(Spacer(1, 12))

    summary = [
        ["Total before VAT", format_money(financials.total_without_vat)],
        [f"VAT ({format_percent(financials.vat_rate)}%)", format_money(financials.vat_amount)],
    ]
    if financials.discount_amount:
        summary.append(["Discount", "-" + format_money(financials.discount_amount)])
    summary.append(["Total", format_money(financials.final_total)])
    summary_table = Table(summary, colWidths=[350, 100])
    summary_table.setStyle(
        TableStyle(
            [
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LINEABOVE", (0, -1), (-1, -1), 1, colors.black),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
            ]
        )
    )
    story.append(summary_table)
    story.append(Spacer(1, 12))

    for paragraph in html_to_text(context["terms_html"]).splitlines():
        story.append(Paragraph(escape(paragraph), styles["BodyText"]))

    if context["show_footer"] and context["footer_text"]:
        story.append(Spacer(1, 18))
        story.append(Paragraph(escape(context["footer_text"]), styles["Italic"]))

    doc.build(story)
    return buffer.getvalue()
