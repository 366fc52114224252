"""
app/blueprints/dashboard/routes.py

Role landing pages.

- AdminDashboard: upcoming events, open quotes, outstanding balances, understaffed items
- ClientDashboard: the client's own events (matched through event parents) with totals
- SupplierDashboard: the supplier's assignments, with confirm/reject answers

SECURITY:
- Each page is gated with role_required. Admins may open every dashboard.
- supplier_respond is in the self-service allow-list; the supplier/assignment check
  happens inside the updateSupplierStatus operation.
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required

from ...functions import FunctionError, invoke
from ...models import (
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_SUPPLIER,
    Event,
    EventService,
    SupplierAssignment,
    upcoming_cutoff,
)
from ...security import role_required
from ...utils import current_vat_rate

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/dashboard")


# ----------------------------------------------------------------------
# ADMIN
# ----------------------------------------------------------------------
@dashboard_bp.route("/admin")
@login_required
@role_required(ROLE_ADMIN)
def admin_dashboard():
    """Admin overview."""
    today = date.today()
    vat_rate = current_vat_rate()

    upcoming = (
        Event.query.filter(
            Event.event_date >= today,
            Event.event_date <= upcoming_cutoff(30),
            Event.status.notin_(("cancelled", "completed")),
        )
        .order_by(Event.event_date.asc())
        .all()
    )

    open_quotes = Event.query.filter_by(status="quote").order_by(Event.event_date.asc()).all()

    active = Event.query.filter(Event.status.in_(("confirmed", "in_progress"))).order_by(Event.event_date.asc()).all()

    outstanding = []
    for event in active:
        fin = event.financials(vat_rate)
        if fin.balance > 0:
            outstanding.append((event, fin))

    understaffed = [
        item
        for event in active
        for item in event.services
        if not item.is_staffed()
    ]

    status_counts = {
        status: Event.query.filter_by(status=status).count()
        for status in ("quote", "confirmed", "in_progress", "completed", "cancelled")
    }

    return render_template(
        "dashboard/admin.html",
        upcoming=upcoming,
        open_quotes=open_quotes,
        outstanding=outstanding,
        understaffed=understaffed,
        status_counts=status_counts,
        vat_rate=vat_rate,
    )


# ----------------------------------------------------------------------
# CLIENT
# ----------------------------------------------------------------------
@dashboard_bp.route("/client")
@login_required
@role_required(ROLE_CLIENT)
def client_dashboard():
    """Events where the logged-in client is one of the parents."""
    vat_rate = current_vat_rate()
    events = [
        e
        for e in Event.query.order_by(Event.event_date.asc()).all()
        if e.matches_client(current_user.email, current_user.phone)
    ]
    rows = [(event, event.financials(vat_rate)) for event in events]
    return render_template("dashboard/client.html", rows=rows)


# ----------------------------------------------------------------------
# SUPPLIER
# ----------------------------------------------------------------------
@dashboard_bp.route("/supplier")
@login_required
@role_required(ROLE_SUPPLIER)
def supplier_dashboard():
    """Assignments of the supplier matched to the logged-in user."""
    supplier = current_user.matched_supplier()
    assignments = []
    if supplier is not None:
        assignments = (
            SupplierAssignment.query.join(EventService)
            .join(Event)
            .filter(SupplierAssignment.supplier_id == supplier.id)
            .filter(Event.status != "cancelled")
            .order_by(Event.event_date.asc())
            .all()
        )

    today = date.today()
    upcoming = [a for a in assignments if a.event_service.event.event_date >= today]
    past = [a for a in assignments if a.event_service.event.event_date < today]

    return render_template(
        "dashboard/supplier.html",
        supplier=supplier,
        upcoming=upcoming,
        past=past,
    )


@dashboard_bp.route("/supplier/respond/<int:event_service_id>", methods=["POST"])
@login_required
@role_required(ROLE_SUPPLIER)
def supplier_respond(event_service_id: int):
    """Supplier confirms / rejects (or resets) an assignment."""
    new_status = (request.form.get("status") or "").strip()
    try:
        result = invoke(
            "updateSupplierStatus",
            {"eventServiceId": event_service_id, "newStatus": new_status},
            current_user,
        )
    except FunctionError as exc:
        flash(exc.message, "danger")
        return redirect(url_for("dashboard.supplier_dashboard"))

    flash(f"Your answer was saved ({result['status']}).", "success")
    return redirect(url_for("dashboard.supplier_dashboard"))
