"""
app/blueprints/suppliers/routes.py

SupplierManagement (admin only).

Contact emails are entered comma/newline separated and stored as a JSON list; they
are what links a supplier to a login user (see User.matched_supplier).
"""

from __future__ import annotations

from flask import Blueprint, flash, redirect, render_template, request, url_for
from flask_login import login_required

from ...audit import log_action, serialize_model
from ...extensions import db
from ...models import Supplier, SupplierAssignment
from ...security import admin_required
from ...utils import form_text, parse_bool, parse_email_list

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/suppliers")


def _apply_supplier_form(supplier: Supplier) -> str | None:
    name = (request.form.get("name") or "").strip()
    if not name:
        return "Name is required."

    emails = parse_email_list(request.form.get("contact_emails"))
    bad = [e for e in emails if "@" not in e]
    if bad:
        return f"Invalid email: {bad[0]}"

    supplier.name = name
    supplier.contact_person = form_text("contact_person")
    supplier.phone = form_text("phone")
    supplier.contact_emails = emails
    supplier.category = form_text("category")
    supplier.notes = form_text("notes")
    supplier.is_active = parse_bool(request.form.get("is_active"))
    return None


@suppliers_bp.route("/")
@login_required
@admin_required
def list_suppliers():
    """List suppliers with their open assignment counts."""
    category = (request.args.get("category") or "").strip()
    query = Supplier.query.order_by(Supplier.name.asc())
    if category:
        query = query.filter(Supplier.category == category)
    suppliers = query.all()

    pending = {
        s.id: SupplierAssignment.query.filter_by(supplier_id=s.id, status="pending").count()
        for s in suppliers
    }
    categories = sorted({c for (c,) in db.session.query(Supplier.category).distinct() if c})
    return render_template(
        "suppliers/list.html",
        suppliers=suppliers,
        pending=pending,
        categories=categories,
        category=category,
    )


@suppliers_bp.route("/new", methods=["GET", "POST"])
@login_required
@admin_required
def supplier_create():
    """Create supplier (admin-only)."""
    if request.method == "POST":
        supplier = Supplier()
        error = _apply_supplier_form(supplier)
        if error:
            flash(error, "danger")
            return redirect(url_for("suppliers.supplier_create"))

        db.session.add(supplier)
        db.session.flush()

        log_action(supplier, "CREATE", after=serialize_model(supplier))
        db.session.commit()

        flash("Supplier created.", "success")
        return redirect(url_for("suppliers.list_suppliers"))

    return render_template("suppliers/form.html", supplier=None)


@suppliers_bp.route("/<int:supplier_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def supplier_edit(supplier_id: int):
    """Edit supplier (admin-only)."""
    supplier = Supplier.query.get_or_404(supplier_id)

    if request.method == "POST":
        before = serialize_model(supplier)
        error = _apply_supplier_form(supplier)
        if error:
            flash(error, "danger")
            return redirect(url_for("suppliers.supplier_edit", supplier_id=supplier_id))

        db.session.flush()
        log_action(supplier, "UPDATE", before=before, after=serialize_model(supplier))
        db.session.commit()

        flash("Supplier updated.", "success")
        return redirect(url_for("suppliers.list_suppliers"))

    return render_template("suppliers/form.html", supplier=supplier)


@suppliers_bp.route("/<int:supplier_id>/delete", methods=["POST"])
@login_required
@admin_required
def supplier_delete(supplier_id: int):
    """Delete supplier (its assignments go with it)."""
    supplier = Supplier.query.get_or_404(supplier_id)
    before = serialize_model(supplier)

    db.session.delete(supplier)
    db.session.flush()

    log_action(supplier, "DELETE", before=before)
    db.session.commit()

    flash("Supplier deleted.", "success")
    return redirect(url_for("suppliers.list_suppliers"))
