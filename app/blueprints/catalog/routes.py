"""
app/blueprints/catalog/routes.py

ServiceManagement (admin only).

- Services CRUD + reorder
- Packages CRUD (with service membership) + reorder

AUDIT:
- CREATE/UPDATE/DELETE are audited via app/audit.py.
"""

from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for
from flask_login import login_required
from sqlalchemy.exc import SQLAlchemyError

from ...audit import log_action, serialize_model
from ...extensions import db
from ...models import Package, Service
from ...security import admin_required
from ...utils import form_text, parse_bool, parse_decimal, parse_optional_int

catalog_bp = Blueprint("catalog", __name__, url_prefix="/catalog")


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _price_from_form(field: str):
    price = parse_decimal(request.form.get(field))
    if price is None or price < 0:
        return None
    return price


def _reorder(model, endpoint: str):
    """Apply posted item_ids order to model.sort_order in one transaction."""
    raw_ids = request.form.getlist("item_ids")
    try:
        ids = [int(raw) for raw in raw_ids]
        rows = {row.id: row for row in model.query.filter(model.id.in_(ids)).all()} if ids else {}
        if not ids or len(rows) != len(set(ids)):
            raise ValueError("unknown id in order")
        for index, row_id in enumerate(ids):
            rows[row_id].sort_order = index
        db.session.commit()
    except (ValueError, SQLAlchemyError) as exc:
        db.session.rollback()
        current_app.logger.warning("Reorder of %s failed: %s", model.__name__, exc)
        flash("The new order could not be saved.", "danger")
        return redirect(url_for(endpoint))

    flash("Order saved.", "success")
    return redirect(url_for(endpoint))


# ----------------------------------------------------------------------
# SERVICES
# ----------------------------------------------------------------------
@catalog_bp.route("/services")
@login_required
@admin_required
def list_services():
    """Services and packages, in display order."""
    services = Service.query.order_by(Service.sort_order.asc(), Service.name.asc()).all()
    packages = Package.query.order_by(Package.sort_order.asc(), Package.name.asc()).all()
    return render_template("catalog/list.html", services=services, packages=packages)


def _apply_service_form(service: Service) -> str | None:
    name = (request.form.get("name") or "").strip()
    if not name:
        return "Name is required."

    price = _price_from_form("default_price")
    if price is None:
        return "Default price must be a non-negative amount."

    min_suppliers = parse_optional_int(request.form.get("default_min_suppliers")) or 0
    if min_suppliers < 0:
        return "Minimum suppliers cannot be negative."

    service.name = name
    service.description = form_text("description")
    service.category = form_text("category")
    service.default_price = price
    service.includes_vat = parse_bool(request.form.get("includes_vat"))
    service.default_min_suppliers = min_suppliers
    service.is_active = parse_bool(request.form.get("is_active"))
    return None


@catalog_bp.route("/services/new", methods=["GET", "POST"])
@login_required
@admin_required
def service_create():
    if request.method == "POST":
        service = Service(sort_order=Service.query.count())
        error = _apply_service_form(service)
        if error:
            flash(error, "danger")
            return redirect(url_for("catalog.service_create"))

        db.session.add(service)
        db.session.flush()

        log_action(service, "CREATE", after=serialize_model(service))
        db.session.commit()

        flash("Service created.", "success")
        return redirect(url_for("catalog.list_services"))

    return render_template("catalog/service_form.html", service=None)


@catalog_bp.route("/services/<int:service_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def service_edit(service_id: int):
    service = Service.query.get_or_404(service_id)

    if request.method == "POST":
        before = serialize_model(service)
        error = _apply_service_form(service)
        if error:
            flash(error, "danger")
            return redirect(url_for("catalog.service_edit", service_id=service_id))

        db.session.flush()
        log_action(service, "UPDATE", before=before, after=serialize_model(service))
        db.session.commit()

        flash("Service updated.", "success")
        return redirect(url_for("catalog.list_services"))

    return render_template("catalog/service_form.html", service=service)


@catalog_bp.route("/services/<int:service_id>/delete", methods=["POST"])
@login_required
@admin_required
def service_delete(service_id: int):
    """Delete a service. Existing line items keep their price and lose the link."""
    service = Service.query.get_or_404(service_id)
    before = serialize_model(service)

    db.session.delete(service)
    db.session.flush()

    log_action(service, "DELETE", before=before)
    db.session.commit()

    flash("Service deleted.", "success")
    return redirect(url_for("catalog.list_services"))


@catalog_bp.route("/services/reorder", methods=["POST"])
@login_required
@admin_required
def services_reorder():
    return _reorder(Service, "catalog.list_services")


# ----------------------------------------------------------------------
# PACKAGES
# ----------------------------------------------------------------------
def _apply_package_form(package: Package) -> str | None:
    name = (request.form.get("name") or "").strip()
    if not name:
        return "Name is required."

    price = _price_from_form("price")
    if price is None:
        return "Price must be a non-negative amount."

    service_ids = {parse_optional_int(raw) for raw in request.form.getlist("service_ids")}
    service_ids.discard(None)
    services = Service.query.filter(Service.id.in_(service_ids)).all() if service_ids else []
    if len(services) != len(service_ids):
        return "Invalid service selection."

    package.name = name
    package.description = form_text("description")
    package.price = price
    package.includes_vat = parse_bool(request.form.get("includes_vat"))
    package.is_active = parse_bool(request.form.get("is_active"))
    package.services = services
    return None


@catalog_bp.route("/packages/new", methods=["GET", "POST"])
@login_required
@admin_required
def package_create():
    services = Service.query.order_by(Service.sort_order.asc()).all()

    if request.method == "POST":
        package = Package(sort_order=Package.query.count())
        error = _apply_package_form(package)
        if error:
            flash(error, "danger")
            return redirect(url_for("catalog.package_create"))

        db.session.add(package)
        db.session.flush()

        log_action(package, "CREATE", after=serialize_model(package))
        db.session.commit()

        flash("Package created.", "success")
        return redirect(url_for("catalog.list_services"))

    return render_template("catalog/package_form.html", package=None, services=services)


@catalog_bp.route("/packages/<int:package_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def package_edit(package_id: int):
    package = Package.query.get_or_404(package_id)
    services = Service.query.order_by(Service.sort_order.asc()).all()

    if request.method == "POST":
        before = serialize_model(package)
        error = _apply_package_form(package)
        if error:
            db.session.rollback()
            flash(error, "danger")
            return redirect(url_for("catalog.package_edit", package_id=package_id))

        db.session.flush()
        log_action(package, "UPDATE", before=before, after=serialize_model(package))
        db.session.commit()

        flash("Package updated.", "success")
        return redirect(url_for("catalog.list_services"))

    return render_template("catalog/package_form.html", package=package, services=services)


@catalog_bp.route("/packages/<int:package_id>/delete", methods=["POST"])
@login_required
@admin_required
def package_delete(package_id: int):
    package = Package.query.get_or_404(package_id)
    before = serialize_model(package)

    db.session.delete(package)
    db.session.flush()

    log_action(package, "DELETE", before=before)
    db.session.commit()

    flash("Package deleted.", "success")
    return redirect(url_for("catalog.list_services"))


@catalog_bp.route("/packages/reorder", methods=["POST"])
@login_required
@admin_required
def packages_reorder():
    return _reorder(Package, "catalog.list_services")
