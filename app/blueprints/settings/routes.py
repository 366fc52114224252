"""
app/blueprints/settings/routes.py

Settings routes.

Scope:
- SettingsPage: AppSettings (VAT, company info, quote footer, concept defaults, logo) (admin)
- QuoteTemplateManagement: concept intros / payment terms CRUD (admin)
- NotificationSettings: notification templates (admin)
- Backup manager: create / list / restore / download spreadsheet (admin)
- MyNotificationSettings: per-user preferences (all users)
- Notification inbox + mark all read (all users)
- Calendar connection (all users)

SECURITY:
- UI is never trusted. All permissions are enforced here server-side.
- A global read-only guard also blocks unexpected POSTs (see app/security.py);
  the self-service pages here are on its allow-list.

AUDIT:
- CREATE/UPDATE/DELETE for settings and templates is audited via app/audit.py.
"""

from __future__ import annotations

import json

from flask import Blueprint, current_app, flash, redirect, render_template, request, send_file, url_for
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from ...audit import log_action, serialize_model
from ...backups import BackupError, spreadsheet_path
from ...extensions import db
from ...functions import FunctionError, invoke, save_upload
from ...models import Notification, NotificationTemplate, QuoteTemplate
from ...notifications import mark_all_read
from ...security import admin_required
from ...utils import form_text, get_settings_map, parse_bool, parse_decimal, set_setting

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")

TEXT_SETTINGS = (
    "company_name",
    "company_phone",
    "company_email",
    "company_logo_url",
    "quote_footer_text",
)

QUOTE_TEMPLATE_TYPES = {
    "concept_intro": "Concept intro",
    "payment_terms": "Payment terms",
}


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _validate_concept_defaults(raw: str) -> tuple[str | None, str | None]:
    """(normalized_json, error)."""
    raw = (raw or "").strip() or "{}"
    try:
        data = json.loads(raw)
    except ValueError:
        return None, "Concept defaults must be valid JSON."
    if not isinstance(data, dict):
        return None, "Concept defaults must be an object: {concept: {service_ids, package_ids}}."
    for concept, value in data.items():
        if not isinstance(value, dict):
            return None, f"Concept '{concept}' must map to an object."
        for key in ("service_ids", "package_ids"):
            ids = value.get(key, [])
            if not isinstance(ids, list) or not all(isinstance(i, int) for i in ids):
                return None, f"Concept '{concept}': {key} must be a list of ids."
    return json.dumps(data, ensure_ascii=False), None


# ----------------------------------------------------------------------
# APP SETTINGS (admin only)
# ----------------------------------------------------------------------
@settings_bp.route("/", methods=["GET", "POST"])
@login_required
@admin_required
def app_settings():
    """Edit AppSettings rows."""
    if request.method == "POST":
        before = get_settings_map()

        vat = parse_decimal(request.form.get("vat_rate"))
        if vat is None or vat < 0 or vat > 100:
            flash("VAT must be a percentage between 0 and 100.", "danger")
            return redirect(url_for("settings.app_settings"))

        concept_defaults, error = _validate_concept_defaults(request.form.get("concept_defaults"))
        if error:
            flash(error, "danger")
            return redirect(url_for("settings.app_settings"))

        logo = request.files.get("logo")
        if logo is not None and logo.filename:
            try:
                uploaded = save_upload(logo)
            except FunctionError as exc:
                flash(exc.message, "danger")
                return redirect(url_for("settings.app_settings"))
            set_setting("company_logo_url", uploaded["file_url"])
        else:
            set_setting("company_logo_url", (request.form.get("company_logo_url") or "").strip())

        set_setting("vat_rate", format(vat.normalize(), "f"))
        for key in TEXT_SETTINGS:
            if key == "company_logo_url":
                continue
            set_setting(key, (request.form.get(key) or "").strip())
        set_setting("quote_show_footer", "true" if parse_bool(request.form.get("quote_show_footer")) else "false")
        set_setting("concept_defaults", concept_defaults)
        db.session.flush()

        after = get_settings_map()
        row = set_setting("vat_rate", after["vat_rate"])
        log_action(row, "UPDATE", before=before, after=after)
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Saving AppSettings failed")
            flash("Settings could not be saved.", "danger")
            return redirect(url_for("settings.app_settings"))

        flash("Settings saved.", "success")
        return redirect(url_for("settings.app_settings"))

    return render_template("settings/app_settings.html", settings=get_settings_map())


# ----------------------------------------------------------------------
# QUOTE TEMPLATES (admin only)
# ----------------------------------------------------------------------
@settings_bp.route("/quote-templates")
@login_required
@admin_required
def quote_templates():
    templates = QuoteTemplate.query.order_by(QuoteTemplate.template_type.asc(), QuoteTemplate.identifier.asc()).all()
    return render_template("settings/quote_templates.html", templates=templates, types=QUOTE_TEMPLATE_TYPES)


def _apply_quote_template_form(template: QuoteTemplate) -> str | None:
    template_type = (request.form.get("template_type") or "").strip()
    if template_type not in QUOTE_TEMPLATE_TYPES:
        return "Invalid template type."

    identifier = form_text("identifier")
    if template_type == "concept_intro" and not identifier:
        return "A concept intro needs the concept name."

    content = (request.form.get("content") or "").strip()
    if not content:
        return "Content is required."

    template.template_type = template_type
    template.identifier = identifier
    template.title = form_text("title")
    template.content = content
    template.is_active = parse_bool(request.form.get("is_active"))
    return None


@settings_bp.route("/quote-templates/new", methods=["GET", "POST"])
@login_required
@admin_required
def quote_template_create():
    if request.method == "POST":
        template = QuoteTemplate()
        error = _apply_quote_template_form(template)
        if error:
            flash(error, "danger")
            return redirect(url_for("settings.quote_template_create"))

        db.session.add(template)
        db.session.flush()

        log_action(template, "CREATE", after=serialize_model(template))
        db.session.commit()

        flash("Template created.", "success")
        return redirect(url_for("settings.quote_templates"))

    return render_template("settings/quote_template_form.html", template=None, types=QUOTE_TEMPLATE_TYPES)


@settings_bp.route("/quote-templates/<int:template_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def quote_template_edit(template_id: int):
    template = QuoteTemplate.query.get_or_404(template_id)

    if request.method == "POST":
        before = serialize_model(template)
        error = _apply_quote_template_form(template)
        if error:
            flash(error, "danger")
            return redirect(url_for("settings.quote_template_edit", template_id=template_id))

        db.session.flush()
        log_action(template, "UPDATE", before=before, after=serialize_model(template))
        db.session.commit()

        flash("Template updated.", "success")
        return redirect(url_for("settings.quote_templates"))

    return render_template("settings/quote_template_form.html", template=template, types=QUOTE_TEMPLATE_TYPES)


@settings_bp.route("/quote-templates/<int:template_id>/delete", methods=["POST"])
@login_required
@admin_required
def quote_template_delete(template_id: int):
    template = QuoteTemplate.query.get_or_404(template_id)
    before = serialize_model(template)

    db.session.delete(template)
    db.session.flush()

    log_action(template, "DELETE", before=before)
    db.session.commit()

    flash("Template deleted.", "success")
    return redirect(url_for("settings.quote_templates"))


# ----------------------------------------------------------------------
# NOTIFICATION TEMPLATES (admin only)
# ----------------------------------------------------------------------
@settings_bp.route("/notification-templates", methods=["GET", "POST"])
@login_required
@admin_required
def notification_templates():
    """
    List + edit notification templates.

    Pattern (one page):
    - GET: list
    - POST: action in {create, update}
    """
    if request.method == "POST":
        action = (request.form.get("action") or "").strip()

        title = (request.form.get("title") or "").strip()
        body = (request.form.get("body") or "").strip()
        if not title or not body:
            flash("Title and body are required.", "danger")
            return redirect(request.path)

        if action == "create":
            template_type = (request.form.get("template_type") or "").strip()
            if not template_type:
                flash("Template type is required.", "danger")
                return redirect(request.path)
            if NotificationTemplate.query.filter_by(template_type=template_type).first():
                flash("A template of this type already exists.", "danger")
                return redirect(request.path)

            template = NotificationTemplate(
                template_type=template_type,
                title=title,
                body=body,
                link_page=form_text("link_page"),
                is_active=parse_bool(request.form.get("is_active")),
            )
            db.session.add(template)
            db.session.flush()

            log_action(template, "CREATE", after=serialize_model(template))
            db.session.commit()

            flash("Template created.", "success")
            return redirect(request.path)

        if action == "update":
            template = NotificationTemplate.query.get_or_404(request.form.get("id", type=int))
            before = serialize_model(template)

            template.title = title
            template.body = body
            template.link_page = form_text("link_page")
            template.is_active = parse_bool(request.form.get("is_active"))

            db.session.flush()
            log_action(template, "UPDATE", before=before, after=serialize_model(template))
            db.session.commit()

            flash("Template updated.", "success")
            return redirect(request.path)

        flash("Invalid action.", "danger")
        return redirect(request.path)

    templates = NotificationTemplate.query.order_by(NotificationTemplate.template_type.asc()).all()
    return render_template("settings/notification_templates.html", templates=templates)


# ----------------------------------------------------------------------
# MY NOTIFICATION PREFERENCES (all users)
# ----------------------------------------------------------------------
@settings_bp.route("/my-notifications", methods=["GET", "POST"])
@login_required
def my_notifications():
    """Each user toggles every notification type on or off."""
    templates = (
        NotificationTemplate.query.filter_by(is_active=True)
        .order_by(NotificationTemplate.template_type.asc())
        .all()
    )

    if request.method == "POST":
        enabled = set(request.form.getlist("enabled"))
        # assign a new dict so the JSON column is flagged dirty
        current_user.notification_preferences = {
            t.template_type: t.template_type in enabled for t in templates
        }
        db.session.commit()
        flash("Preferences saved.", "success")
        return redirect(url_for("settings.my_notifications"))

    return render_template("settings/my_notifications.html", templates=templates)


# ----------------------------------------------------------------------
# INBOX (all users)
# ----------------------------------------------------------------------
@settings_bp.route("/notifications")
@login_required
def notifications():
    items = current_user.notifications.order_by(Notification.created_at.desc()).limit(100).all()
    return render_template("settings/notifications.html", items=items)


@settings_bp.route("/notifications/mark-read", methods=["POST"])
@login_required
def notifications_mark_read():
    count = mark_all_read(current_user)
    db.session.commit()
    flash(f"{count} notification(s) marked as read.", "info")
    return redirect(url_for("settings.notifications"))


# ----------------------------------------------------------------------
# BACKUPS (admin only)
# ----------------------------------------------------------------------
@settings_bp.route("/backups")
@login_required
@admin_required
def backups():
    result = invoke("listBackups", {}, current_user)
    return render_template("settings/backups.html", backups=result["backups"])


@settings_bp.route("/backups/create", methods=["POST"])
@login_required
@admin_required
def backup_create():
    name = "createGoogleSheetBackup" if parse_bool(request.form.get("spreadsheet")) else "createBackup"
    try:
        result = invoke(name, {}, current_user)
    except FunctionError as exc:
        flash(exc.message, "danger")
        return redirect(url_for("settings.backups"))

    flash(f"Backup {result['name']} created.", "success")
    return redirect(url_for("settings.backups"))


@settings_bp.route("/backups/<name>/restore", methods=["POST"])
@login_required
@admin_required
def backup_restore(name: str):
    """Replace all business data with the backup (requires the confirm checkbox)."""
    try:
        result = invoke(
            "restoreFromBackup",
            {"backup_folder_name": name, "confirm_restore": parse_bool(request.form.get("confirm_restore"))},
            current_user,
        )
    except FunctionError as exc:
        flash(exc.message, "danger")
        return redirect(url_for("settings.backups"))

    total = sum(result["restored"].values())
    flash(f"Backup {name} restored ({total} records).", "success")
    return redirect(url_for("settings.backups"))


@settings_bp.route("/backups/<name>/spreadsheet")
@login_required
@admin_required
def backup_download(name: str):
    try:
        path = spreadsheet_path(name)
    except BackupError as exc:
        flash(str(exc), "danger")
        return redirect(url_for("settings.backups"))
    return send_file(str(path), as_attachment=True, download_name=f"backup-{name}.xlsx")


# ----------------------------------------------------------------------
# CALENDAR (all users)
# ----------------------------------------------------------------------
@settings_bp.route("/calendar", methods=["GET", "POST"])
@login_required
def calendar():
    """Connection status, connect link and a re-check button."""
    result = invoke("checkGoogleCalendarConnection", {}, current_user)

    if request.method == "POST":
        flash("Calendar connected." if result["connected"] else "Calendar not connected.", "info")
        return redirect(url_for("settings.calendar"))

    auth_url = None
    if not result["connected"]:
        try:
            auth_url = invoke("getGoogleOAuthUrl", {}, current_user)["authUrl"]
        except FunctionError:
            auth_url = None

    return render_template("settings/calendar.html", connected=result["connected"], auth_url=auth_url)
