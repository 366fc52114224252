"""
app/blueprints/events/routes.py

Event routes.

Includes:
- list (filters: status, type, free text, date range) and board (grouped by status)
- CSV / printable HTML export of the filtered list
- create / edit / delete (concept defaults added on create)
- EventDetails: line items, packages, supplier assignments, payments, financial summary
- line item add / update / delete / reorder
- supplier assignment (notifies new assignees, re-checks event status)
- payments add / delete
- quote preview (HTML) and PDF download, calendar sync

IMPORTANT:
- UI is never trusted. Access control and validations are server-side.
- Every mutation is one transaction: flush -> audit -> commit, rollback on failure.
"""

from __future__ import annotations

import io
from datetime import date

from flask import Blueprint, Response, current_app, flash, redirect, render_template, request, send_file, url_for
from flask_login import current_user, login_required
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ...audit import log_action, serialize_model
from ...exports import events_csv, events_report_html
from ...extensions import db
from ...functions import FunctionError, apply_event_status_rules, invoke
from ...models import (
    EVENT_STATUSES,
    EVENT_TYPES,
    PAYMENT_METHODS,
    ROLE_ADMIN,
    ROLE_CLIENT,
    Event,
    EventService,
    Package,
    Payment,
    Service,
    Supplier,
    SupplierAssignment,
    User,
)
from ...notifications import notify_users
from ...quotes import format_date
from ...security import admin_required, event_access_required, role_required
from ...utils import (
    current_vat_rate,
    format_money,
    form_text,
    get_concept_defaults,
    parse_bool,
    parse_date,
    parse_decimal,
    parse_optional_int,
    parse_time,
)

events_bp = Blueprint("events", __name__, url_prefix="/events")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _load_event(event_id: int, **_: object) -> Event:
    """Loader for decorator factories."""
    return Event.query.get_or_404(event_id)


def _item_for_event(event: Event, item_id: int) -> EventService:
    return EventService.query.filter_by(id=item_id, event_id=event.id).first_or_404()


def _details_url(event: Event) -> str:
    return url_for("events.event_details", event_id=event.id)


def _filtered_events_query():
    """Event query filtered by request.args (status, event_type, q, date_from, date_to)."""
    query = Event.query

    status = (request.args.get("status") or "").strip()
    if status in EVENT_STATUSES:
        query = query.filter(Event.status == status)

    event_type = (request.args.get("event_type") or "").strip()
    if event_type in EVENT_TYPES:
        query = query.filter(Event.event_type == event_type)

    text = (request.args.get("q") or "").strip()
    if text:
        like = f"%{text}%"
        query = query.filter(
            or_(
                Event.event_name.ilike(like),
                Event.family_name.ilike(like),
                Event.child_name.ilike(like),
                Event.city.ilike(like),
                Event.location.ilike(like),
            )
        )

    date_from = parse_date(request.args.get("date_from"))
    if date_from:
        query = query.filter(Event.event_date >= date_from)
    date_to = parse_date(request.args.get("date_to"))
    if date_to:
        query = query.filter(Event.event_date <= date_to)

    return query.order_by(Event.event_date.asc(), Event.id.asc())


def _parents_from_form() -> list[dict]:
    names = request.form.getlist("parent_name")
    emails = request.form.getlist("parent_email")
    phones = request.form.getlist("parent_phone")
    parents = []
    for idx in range(max(len(names), len(emails), len(phones))):
        name = (names[idx] if idx < len(names) else "").strip()
        email = (emails[idx] if idx < len(emails) else "").strip().lower()
        phone = (phones[idx] if idx < len(phones) else "").strip()
        if name or email or phone:
            parents.append({"name": name, "email": email, "phone": phone})
    return parents


def _apply_event_form(event: Event) -> str | None:
    """Copy validated form values onto event; returns an error message or None."""
    event_date = parse_date(request.form.get("event_date"))
    if event_date is None:
        return "Event date is required (YYYY-MM-DD)."

    raw_time = request.form.get("event_time")
    event_time = parse_time(raw_time)
    if (raw_time or "").strip() and event_time is None:
        return "Invalid time (HH:MM)."

    status = (request.form.get("status") or event.status or "quote").strip()
    if status not in EVENT_STATUSES:
        return "Invalid status."

    event_type = (request.form.get("event_type") or "").strip() or None
    if event_type and event_type not in EVENT_TYPES:
        return "Invalid event type."

    raw_guests = request.form.get("guest_count")
    guest_count = parse_optional_int(raw_guests)
    if (raw_guests or "").strip() and (guest_count is None or guest_count < 0):
        return "Guest count must be a non-negative number."

    money = {}
    for field in ("all_inclusive_price", "discount_amount", "total_override"):
        raw = request.form.get(field)
        value = parse_decimal(raw)
        if (raw or "").strip() and value is None:
            return f"Invalid amount in {field.replace('_', ' ')}."
        if value is not None and value < 0:
            return f"{field.replace('_', ' ').capitalize()} cannot be negative."
        money[field] = value

    event.event_name = form_text("event_name")
    event.event_type = event_type
    event.event_date = event_date
    event.event_time = event_time
    event.location = form_text("location")
    event.city = form_text("city")
    event.concept = form_text("concept")
    event.family_name = form_text("family_name")
    event.child_name = form_text("child_name")
    event.guest_count = guest_count
    event.parents = _parents_from_form()
    event.notes = form_text("notes")
    event.status = status

    event.all_inclusive = parse_bool(request.form.get("all_inclusive"))
    event.all_inclusive_price = money["all_inclusive_price"]
    event.all_inclusive_includes_vat = parse_bool(request.form.get("all_inclusive_includes_vat"))
    event.discount_amount = money["discount_amount"]
    event.discount_before_vat = parse_bool(request.form.get("discount_before_vat"))
    event.total_override = money["total_override"]
    event.total_override_includes_vat = parse_bool(request.form.get("total_override_includes_vat"))
    return None


def _next_order_index(event: Event) -> int:
    return max((s.order_index for s in event.services), default=-1) + 1


def _add_service_item(event: Event, service: Service, order_index: int) -> EventService:
    item = EventService(
        event=event,
        service=service,
        custom_price=service.default_price or 0,
        includes_vat=service.includes_vat,
        quantity=1,
        order_index=order_index,
    )
    db.session.add(item)
    return item


def _add_package_items(event: Event, package: Package, order_index: int) -> EventService:
    """Main item carries the package price; one zero-priced child per package service."""
    main = EventService(
        event=event,
        package=package,
        custom_price=package.price or 0,
        includes_vat=package.includes_vat,
        quantity=1,
        order_index=order_index,
        is_package_main_item=True,
    )
    db.session.add(main)
    for idx, service in enumerate(package.services):
        main.package_children.append(
            EventService(
                event=event,
                service=service,
                custom_price=0,
                includes_vat=package.includes_vat,
                quantity=1,
                order_index=idx,
            )
        )
    return main


def _apply_concept_defaults(event: Event) -> int:
    """Add the concept's default services/packages to a new event."""
    defaults = get_concept_defaults().get(event.concept or "") or {}
    added = 0
    order_index = 0
    for service_id in defaults.get("service_ids") or []:
        service = db.session.get(Service, parse_optional_int(str(service_id)) or 0)
        if service is None or not service.is_active:
            continue
        _add_service_item(event, service, order_index)
        order_index += 1
        added += 1
    for package_id in defaults.get("package_ids") or []:
        package = db.session.get(Package, parse_optional_int(str(package_id)) or 0)
        if package is None or not package.is_active:
            continue
        _add_package_items(event, package, order_index)
        order_index += 1
        added += 1
    return added


def _client_users(event: Event) -> list[User]:
    return [
        u
        for u in User.query.filter_by(role=ROLE_CLIENT, is_active=True).all()
        if event.matches_client(u.email, u.phone)
    ]


def _commit_or_flash(message: str) -> bool:
    """Commit; on DB error roll back, log, flash. Returns True on success."""
    try:
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(message)
        flash(message, "danger")
        return False


# ---------------------------------------------------------------------
# LIST / BOARD / EXPORT
# ---------------------------------------------------------------------
@events_bp.route("/")
@login_required
@admin_required
def list_events():
    """EventManagement list view."""
    vat_rate = current_vat_rate()
    events = _filtered_events_query().all()
    rows = [(event, event.financials(vat_rate)) for event in events]
    return render_template(
        "events/list.html",
        rows=rows,
        filters=request.args,
        statuses=EVENT_STATUSES,
        event_types=EVENT_TYPES,
    )


@events_bp.route("/board")
@login_required
@admin_required
def board():
    """Events grouped by status (one column per status)."""
    columns = {status: [] for status in EVENT_STATUSES}
    for event in _filtered_events_query().all():
        columns.setdefault(event.status, []).append(event)
    return render_template("events/board.html", columns=columns, filters=request.args)


@events_bp.route("/export.csv")
@login_required
@admin_required
def export_csv():
    """CSV of the filtered event list with financial columns."""
    body = events_csv(_filtered_events_query().all())
    filename = f"events-{date.today().isoformat()}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@events_bp.route("/report")
@login_required
@admin_required
def export_html():
    """Printable HTML report of the filtered event list."""
    return events_report_html(_filtered_events_query().all())


# ---------------------------------------------------------------------
# CREATE / EDIT / DELETE
# ---------------------------------------------------------------------
@events_bp.route("/new", methods=["GET", "POST"])
@login_required
@admin_required
def create_event():
    """Create an event (admin)."""
    if request.method == "POST":
        event = Event(status="quote")
        error = _apply_event_form(event)
        if error:
            flash(error, "danger")
            return redirect(url_for("events.create_event"))

        db.session.add(event)
        added = _apply_concept_defaults(event)
        db.session.flush()

        log_action(event, "CREATE", after=serialize_model(event))
        if not _commit_or_flash("The event could not be saved."):
            return redirect(url_for("events.create_event"))

        if added:
            flash(f"Event created with {added} default item(s) for concept '{event.concept}'.", "success")
        else:
            flash("Event created.", "success")
        return redirect(_details_url(event))

    return render_template(
        "events/form.html",
        event=None,
        statuses=EVENT_STATUSES,
        event_types=EVENT_TYPES,
    )


@events_bp.route("/<int:event_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def edit_event(event_id: int):
    """Edit an event (admin)."""
    event = Event.query.get_or_404(event_id)

    if request.method == "POST":
        before = serialize_model(event)
        error = _apply_event_form(event)
        if error:
            db.session.rollback()
            flash(error, "danger")
            return redirect(url_for("events.edit_event", event_id=event_id))

        db.session.flush()
        log_action(event, "UPDATE", before=before, after=serialize_model(event))
        if _commit_or_flash("The event could not be saved."):
            flash("Event updated.", "success")
        return redirect(_details_url(event))

    return render_template(
        "events/form.html",
        event=event,
        statuses=EVENT_STATUSES,
        event_types=EVENT_TYPES,
    )


@events_bp.route("/<int:event_id>/delete", methods=["POST"])
@login_required
@admin_required
def delete_event(event_id: int):
    """Delete an event with its line items, assignments and payments."""
    event = Event.query.get_or_404(event_id)
    before = serialize_model(event)

    db.session.delete(event)
    db.session.flush()

    log_action(event, "DELETE", before=before)
    if _commit_or_flash("The event could not be deleted."):
        flash("Event deleted.", "success")
    return redirect(url_for("events.list_events"))


# ---------------------------------------------------------------------
# DETAILS
# ---------------------------------------------------------------------
@events_bp.route("/<int:event_id>")
@login_required
@event_access_required(_load_event)
def event_details(event_id: int):
    """EventDetails (admin: everything; client/supplier: read-only)."""
    event = Event.query.get_or_404(event_id)
    financials = event.financials(current_vat_rate())

    supplier = current_user.matched_supplier() if current_user.is_supplier else None
    items = event.top_level_services
    if supplier is not None:
        # suppliers only see the items they are assigned to
        items = [
            item
            for item in event.services
            if item.assignment_for(supplier.id)
        ]

    context = {
        "event": event,
        "items": items,
        "financials": financials,
        "supplier": supplier,
        "payment_methods": PAYMENT_METHODS,
        "show_financials": not current_user.is_supplier,
    }
    if current_user.is_admin:
        context.update(
            services=Service.query.filter_by(is_active=True).order_by(Service.sort_order.asc()).all(),
            packages=Package.query.filter_by(is_active=True).order_by(Package.sort_order.asc()).all(),
            suppliers=Supplier.query.filter_by(is_active=True).order_by(Supplier.name.asc()).all(),
        )
    return render_template("events/details.html", **context)


# ---------------------------------------------------------------------
# LINE ITEMS
# ---------------------------------------------------------------------
@events_bp.route("/<int:event_id>/services", methods=["POST"])
@login_required
@admin_required
def add_service(event_id: int):
    """Add one catalog service as a line item."""
    event = Event.query.get_or_404(event_id)
    service_id = parse_optional_int(request.form.get("service_id"))
    service = db.session.get(Service, service_id) if service_id else None
    if service is None or not service.is_active:
        flash("Select a valid service.", "danger")
        return redirect(_details_url(event))

    item = _add_service_item(event, service, _next_order_index(event))
    db.session.flush()

    log_action(item, "CREATE", after=serialize_model(item))
    if _commit_or_flash("The service could not be added."):
        flash(f"'{service.name}' added.", "success")
    return redirect(_details_url(event))


@events_bp.route("/<int:event_id>/packages", methods=["POST"])
@login_required
@admin_required
def add_package(event_id: int):
    """Add a package: main item + one child per package service."""
    event = Event.query.get_or_404(event_id)
    package_id = parse_optional_int(request.form.get("package_id"))
    package = db.session.get(Package, package_id) if package_id else None
    if package is None or not package.is_active:
        flash("Select a valid package.", "danger")
        return redirect(_details_url(event))

    main = _add_package_items(event, package, _next_order_index(event))
    db.session.flush()

    log_action(main, "CREATE", after=serialize_model(main))
    if _commit_or_flash("The package could not be added."):
        flash(f"Package '{package.name}' added.", "success")
    return redirect(_details_url(event))


@events_bp.route("/<int:event_id>/items/<int:item_id>", methods=["POST"])
@login_required
@admin_required
def update_item(event_id: int, item_id: int):
    """Update price / quantity / VAT flag / notes / min suppliers / pickup point."""
    event = Event.query.get_or_404(event_id)
    item = _item_for_event(event, item_id)
    before = serialize_model(item)

    raw_price = request.form.get("custom_price")
    price = parse_decimal(raw_price)
    if price is None or price < 0:
        flash("Price must be a non-negative amount.", "danger")
        return redirect(_details_url(event))

    quantity = parse_optional_int(request.form.get("quantity")) or 1
    if quantity < 1:
        flash("Quantity must be at least 1.", "danger")
        return redirect(_details_url(event))

    raw_min = request.form.get("min_suppliers")
    min_suppliers = parse_optional_int(raw_min)
    if (raw_min or "").strip() and (min_suppliers is None or min_suppliers < 0):
        flash("Minimum suppliers must be a non-negative number.", "danger")
        return redirect(_details_url(event))

    pickup = {
        "address": form_text("pickup_address"),
        "time": parse_time(request.form.get("pickup_time")),
        "contact": form_text("pickup_contact"),
    }

    item.custom_price = price
    item.quantity = quantity
    item.includes_vat = parse_bool(request.form.get("includes_vat"))
    item.notes = form_text("notes")
    item.min_suppliers = min_suppliers
    item.pickup_point = pickup if any(pickup.values()) else None

    apply_event_status_rules(event)
    db.session.flush()

    log_action(item, "UPDATE", before=before, after=serialize_model(item))
    if _commit_or_flash("The item could not be saved."):
        flash("Item updated.", "success")
    return redirect(_details_url(event))


@events_bp.route("/<int:event_id>/items/<int:item_id>/delete", methods=["POST"])
@login_required
@admin_required
def delete_item(event_id: int, item_id: int):
    """Delete a line item (a package main item takes its children with it)."""
    event = Event.query.get_or_404(event_id)
    item = _item_for_event(event, item_id)
    before = serialize_model(item)

    db.session.delete(item)
    db.session.flush()

    log_action(item, "DELETE", before=before)
    db.session.expire(event, ["services"])
    apply_event_status_rules(event)
    if _commit_or_flash("The item could not be deleted."):
        flash("Item removed.", "success")
    return redirect(_details_url(event))


@events_bp.route("/<int:event_id>/items/reorder", methods=["POST"])
@login_required
@admin_required
def reorder_items(event_id: int):
    """
    Persist a new item order.

    Body: item_ids (repeated) or order="3,1,2". All order_index values change in one
    transaction; an unknown id or a DB error rolls everything back.
    """
    event = Event.query.get_or_404(event_id)

    raw_ids = request.form.getlist("item_ids")
    if not raw_ids and request.form.get("order"):
        raw_ids = request.form["order"].split(",")

    items_by_id = {item.id: item for item in event.services}
    try:
        ids = [int(str(raw).strip()) for raw in raw_ids if str(raw).strip()]
        if not ids:
            raise ValueError("empty order")
        for index, item_id in enumerate(ids):
            item = items_by_id.get(item_id)
            if item is None:
                raise ValueError(f"item {item_id} does not belong to event {event.id}")
            item.order_index = index
        db.session.flush()
        log_action(event, "REORDER", after={"order": ids})
        db.session.commit()
    except (ValueError, SQLAlchemyError) as exc:
        db.session.rollback()
        current_app.logger.warning("Reorder of event %s failed: %s", event_id, exc)
        flash("The new order could not be saved. The previous order was kept.", "danger")
        return redirect(_details_url(event))

    flash("Order saved.", "success")
    return redirect(_details_url(event))


# ---------------------------------------------------------------------
# SUPPLIER ASSIGNMENT
# ---------------------------------------------------------------------
@events_bp.route("/<int:event_id>/items/<int:item_id>/suppliers", methods=["POST"])
@login_required
@admin_required
def assign_suppliers(event_id: int, item_id: int):
    """
    Replace the supplier set of a line item.

    - new assignees start as pending and are notified
    - removed assignees are deleted
    - notes are stored per supplier (notes_<supplier_id>)
    """
    event = Event.query.get_or_404(event_id)
    item = _item_for_event(event, item_id)

    requested = []
    for raw in request.form.getlist("supplier_ids"):
        sid = parse_optional_int(raw)
        if sid is not None and sid not in requested:
            requested.append(sid)

    valid_ids = {s.id for s in Supplier.query.filter(Supplier.id.in_(requested)).all()} if requested else set()
    if len(valid_ids) != len(requested):
        flash("Invalid supplier selection.", "danger")
        return redirect(_details_url(event))

    current = {a.supplier_id: a for a in item.assignments}
    added = [sid for sid in requested if sid not in current]
    removed = [a for sid, a in current.items() if sid not in valid_ids]

    for assignment in removed:
        log_action(assignment, "DELETE", before=serialize_model(assignment))
        item.assignments.remove(assignment)

    for sid in requested:
        notes = form_text(f"notes_{sid}")
        if sid in current:
            current[sid].notes = notes
        else:
            item.assignments.append(SupplierAssignment(supplier_id=sid, status="pending", notes=notes))

    db.session.flush()
    for assignment in item.assignments:
        if assignment.supplier_id in added:
            log_action(assignment, "CREATE", after=serialize_model(assignment))

    apply_event_status_rules(event)
    if not _commit_or_flash("The assignment could not be saved."):
        return redirect(_details_url(event))

    if added:
        try:
            invoke(
                "notifySupplierAssignment",
                {"supplierIds": added, "eventId": event.id, "serviceName": item.display_name},
                current_user,
            )
        except FunctionError as exc:
            flash(f"Suppliers assigned, but notification failed: {exc.message}", "warning")
            return redirect(_details_url(event))

    flash("Suppliers updated.", "success")
    return redirect(_details_url(event))


# ---------------------------------------------------------------------
# PAYMENTS
# ---------------------------------------------------------------------
@events_bp.route("/<int:event_id>/payments", methods=["POST"])
@login_required
@admin_required
def add_payment(event_id: int):
    """Record a payment (amount > 0, date required, method from the list)."""
    event = Event.query.get_or_404(event_id)

    amount = parse_decimal(request.form.get("amount"))
    if amount is None or amount <= 0:
        flash("Amount must be greater than zero.", "danger")
        return redirect(_details_url(event))

    payment_date = parse_date(request.form.get("payment_date"))
    if payment_date is None:
        flash("Payment date is required.", "danger")
        return redirect(_details_url(event))

    method = (request.form.get("payment_method") or "").strip() or None
    if method and method not in PAYMENT_METHODS:
        flash("Invalid payment method.", "danger")
        return redirect(_details_url(event))

    payment = Payment(
        event=event,
        amount=amount,
        payment_date=payment_date,
        payment_method=method,
        notes=form_text("notes"),
    )
    db.session.add(payment)
    db.session.flush()

    log_action(payment, "CREATE", after=serialize_model(payment))
    notify_users(
        _client_users(event),
        "payment_received",
        {
            "event_id": event.id,
            "event_name": event.display_name,
            "event_date": format_date(event.event_date),
            "amount": format_money(amount),
        },
    )
    if _commit_or_flash("The payment could not be saved."):
        flash("Payment recorded.", "success")
    return redirect(_details_url(event))


@events_bp.route("/<int:event_id>/payments/<int:payment_id>/delete", methods=["POST"])
@login_required
@admin_required
def delete_payment(event_id: int, payment_id: int):
    event = Event.query.get_or_404(event_id)
    payment = Payment.query.filter_by(id=payment_id, event_id=event.id).first_or_404()
    before = serialize_model(payment)

    db.session.delete(payment)
    db.session.flush()

    log_action(payment, "DELETE", before=before)
    if _commit_or_flash("The payment could not be deleted."):
        flash("Payment deleted.", "success")
    return redirect(_details_url(event))


# ---------------------------------------------------------------------
# QUOTE / CALENDAR
# ---------------------------------------------------------------------
@events_bp.route("/<int:event_id>/quote")
@login_required
@role_required(ROLE_ADMIN, ROLE_CLIENT)
@event_access_required(_load_event)
def quote(event_id: int):
    """HTML quote preview (printable)."""
    try:
        result = invoke(
            "generateQuote",
            {
                "eventId": event_id,
                "includeIntro": request.args.get("intro", "1") != "0",
                "includePaymentTerms": request.args.get("terms", "1") != "0",
            },
            current_user,
        )
    except FunctionError as exc:
        flash(exc.message, "danger")
        return redirect(url_for("events.event_details", event_id=event_id))
    return result["html"]


@events_bp.route("/<int:event_id>/quote.pdf")
@login_required
@role_required(ROLE_ADMIN, ROLE_CLIENT)
@event_access_required(_load_event)
def quote_pdf(event_id: int):
    """PDF quote download."""
    try:
        result = invoke("generateQuotePdf", {"eventId": event_id}, current_user)
    except FunctionError as exc:
        flash(exc.message, "danger")
        return redirect(url_for("events.event_details", event_id=event_id))
    return send_file(
        io.BytesIO(result["pdf"]),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=result["filename"],
    )


@events_bp.route("/<int:event_id>/calendar-sync", methods=["POST"])
@login_required
@admin_required
def sync_calendar(event_id: int):
    try:
        invoke("syncGoogleCalendar", {"eventId": event_id}, current_user)
    except FunctionError as exc:
        flash(exc.message, "danger")
    else:
        flash("Event synced to the calendar.", "success")
    return redirect(url_for("events.event_details", event_id=event_id))
