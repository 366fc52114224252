"""
app/functions.py

Named server operations ("functions.invoke(name, payload)").

Each operation is a plain function registered under its public name with the roles
allowed to call it. invoke() enforces the roles, runs the handler, and returns a
JSON-able dict. Failures raise FunctionError(message, status); the API blueprint maps
it to a JSON error response, page routes map it to a flash message.

Handlers add to the current SQLAlchemy session and commit on success.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional
from urllib.parse import urlencode

from flask import current_app, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from . import backups
from .audit import log_action, serialize_model
from .extensions import db
from .integrations import IntegrationError, calendar_provider
from .models import (
    ASSIGNMENT_STATUSES,
    Event,
    EventService,
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_SUPPLIER,
    ROLES,
    Supplier,
    SupplierAssignment,
    User,
)
from .notifications import active_admins, already_notified, notify_admins, notify_users
from .quotes import format_date, render_quote_html, render_quote_pdf, html_to_text

logger = logging.getLogger(__name__)

OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
OAUTH_SCOPES = "https://www.googleapis.com/auth/calendar.events https://www.googleapis.com/auth/userinfo.email"


class FunctionError(Exception):
    """Operation failed; status is the HTTP status to report."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


Handler = Callable[[dict, User], Dict[str, Any]]

FUNCTIONS: Dict[str, tuple[Handler, tuple[str, ...]]] = {}


def register(name: str, roles: Iterable[str] = ROLES) -> Callable[[Handler], Handler]:
    def decorator(func: Handler) -> Handler:
        FUNCTIONS[name] = (func, tuple(roles))
        return func

    return decorator


def invoke(name: str, payload: Optional[dict], user: Optional[User]) -> Dict[str, Any]:
    """Run a named operation as user."""
    if name not in FUNCTIONS:
        raise FunctionError(f"Unknown function '{name}'.", 404)
    if user is None or not user.is_authenticated:
        raise FunctionError("Unauthorized", 401)

    handler, roles = FUNCTIONS[name]
    # Unclassified users may only classify themselves.
    if not user.is_admin and user.role not in roles and not (user.role is None and name == "syncUserIdentity"):
        raise FunctionError("Forbidden", 403)

    logger.info("invoke %s by user %s", name, user.id)
    try:
        return handler(payload or {}, user)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Function %s failed", name)
        raise FunctionError(f"Database error: {exc.__class__.__name__}", 500) from exc


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _require(payload: dict, *keys: str) -> None:
    missing = [k for k in keys if payload.get(k) in (None, "", [])]
    if missing:
        raise FunctionError(f"Missing required fields: {', '.join(missing)}", 400)


def _int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FunctionError(f"Invalid {field}", 400) from None


def _get_event(event_id: Any) -> Event:
    event = db.session.get(Event, _int(event_id, "eventId"))
    if event is None:
        raise FunctionError("Event not found", 404)
    return event


def _users_for_suppliers(suppliers: Iterable[Supplier]) -> list[User]:
    suppliers = list(suppliers)
    matched = []
    for user in User.query.filter_by(is_active=True).all():
        if any(s.matches(email=user.email, phone=user.phone) for s in suppliers):
            matched.append(user)
    return matched


def _event_placeholders(event: Event) -> dict:
    return {
        "event_id": event.id,
        "event_name": event.display_name,
        "family_name": event.family_name or "",
        "event_date": format_date(event.event_date),
        "location": event.location or "",
    }


def _require_event_access(event: Event, user: User) -> None:
    from .security import can_view_event

    if not can_view_event(user, event):
        raise FunctionError("Forbidden", 403)


def apply_event_status_rules(event: Event) -> Optional[str]:
    """
    confirmed <-> in_progress depending on supplier staffing.

    Returns the new status when it changed, else None. Caller commits.
    """
    if event.status not in ("confirmed", "in_progress"):
        return None
    staffed = all(item.is_staffed() for item in event.services)
    new_status = "in_progress" if staffed else "confirmed"
    if new_status == event.status:
        return None
    event.status = new_status
    return new_status


# ---------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------
@register("syncUserIdentity")
def sync_user_identity(payload: dict, user: User) -> Dict[str, Any]:
    """
    Classify a user as supplier/client and fill missing contact data.

    Admins may pass userId to sync another user.
    """
    target = user
    if payload.get("userId") and user.is_admin:
        target = db.session.get(User, _int(payload["userId"], "userId"))
        if target is None:
            raise FunctionError("User not found", 404)

    before = serialize_model(target)
    supplier = target.matched_supplier()

    if supplier:
        if target.role != ROLE_ADMIN:
            target.role = ROLE_SUPPLIER
        if not target.phone and supplier.phone:
            target.phone = supplier.phone
        if not target.full_name and supplier.contact_person:
            target.full_name = supplier.contact_person
        if not supplier.phone and target.phone:
            supplier.phone = target.phone
    else:
        if target.role is None:
            target.role = ROLE_CLIENT
        for event in Event.query.filter(Event.status != "cancelled").order_by(Event.event_date.desc()).all():
            if not event.matches_client(target.email):
                continue
            parent = next(
                (
                    p
                    for p in event.parents or []
                    if isinstance(p, dict) and (p.get("email") or "").strip().lower() == target.email.lower()
                ),
                {},
            )
            if not target.phone and parent.get("phone"):
                target.phone = parent["phone"]
            if not target.full_name and parent.get("name"):
                target.full_name = parent["name"]
            break

    after = serialize_model(target)
    if after != before:
        log_action(target, "UPDATE", before=before, after=after, user=user)
    db.session.commit()

    return {
        "success": True,
        "user_id": target.id,
        "role": target.role,
        "supplier_id": supplier.id if supplier else None,
        "updated": after != before,
    }


# ---------------------------------------------------------------------
# Event status automation
# ---------------------------------------------------------------------
@register("updateExpiredEvents")
def update_expired_events(payload: dict, user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Past quotes -> cancelled; other past open events -> completed."""
    now = now or datetime.now()
    cancelled, completed = [], []

    open_events = Event.query.filter(Event.status.notin_(("completed", "cancelled"))).all()
    for event in open_events:
        if not event.is_past(now):
            continue
        before = serialize_model(event)
        if event.status == "quote":
            event.status = "cancelled"
            cancelled.append(event.id)
        else:
            event.status = "completed"
            completed.append(event.id)
        log_action(event, "UPDATE", before=before, after=serialize_model(event), user=user)

    db.session.commit()
    if cancelled or completed:
        logger.info("Expired events: %d cancelled, %d completed", len(cancelled), len(completed))

    return {
        "success": True,
        "updated_count": len(cancelled) + len(completed),
        "cancelled": cancelled,
        "completed": completed,
    }


@register("checkEventStatus", roles=(ROLE_ADMIN,))
def check_event_status(payload: dict, user: User) -> Dict[str, Any]:
    _require(payload, "eventId")
    event = _get_event(payload["eventId"])

    new_status = apply_event_status_rules(event)
    if new_status:
        db.session.commit()
        return {"success": True, "statusChanged": True, "newStatus": new_status}
    return {"success": True, "statusChanged": False, "newStatus": event.status}


# ---------------------------------------------------------------------
# Scheduled reminders
# ---------------------------------------------------------------------
@register("sendEventReminders", roles=(ROLE_ADMIN,))
def send_event_reminders(payload: dict, user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Remind confirmed suppliers and the admins of events starting within
    EVENT_REMINDER_DAYS. Each user gets one reminder per event; later runs skip them.
    """
    now = now or datetime.now()
    window = timedelta(days=current_app.config.get("EVENT_REMINDER_DAYS", 1))
    admins = active_admins()
    sent = skipped = 0

    open_events = Event.query.filter(Event.status.notin_(("completed", "cancelled"))).all()
    for event in open_events:
        starts = event.starts_at()
        if starts < now or now < starts - window:
            continue

        confirmed = {a.supplier for item in event.services for a in item.assignments if a.status == "confirmed"}
        recipients = {u.id: u for u in _users_for_suppliers(confirmed)}
        for admin in admins:
            recipients.setdefault(admin.id, admin)

        data = _event_placeholders(event)
        for recipient in recipients.values():
            if already_notified(recipient, "event_reminder", event_id=event.id):
                skipped += 1
                continue
            sent += len(notify_users([recipient], "event_reminder", data, event_id=event.id))

    db.session.commit()
    logger.info("Event reminders: %d sent, %d skipped", sent, skipped)
    return {"success": True, "sent": sent, "skipped": skipped}


@register("checkPendingAssignments", roles=(ROLE_ADMIN,))
def check_pending_assignments(payload: dict, user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Remind suppliers who have not answered an assignment of an upcoming event.

    The first reminder goes out once the assignment is PENDING_REMINDER_AFTER_HOURS old,
    the next ones every PENDING_REMINDER_INTERVAL_HOURS, at most MAX_PENDING_REMINDERS
    per assignment. Times are UTC like the created_at columns.
    """
    now = now or datetime.utcnow()
    config = current_app.config
    first_after = timedelta(hours=config.get("PENDING_REMINDER_AFTER_HOURS", 24))
    interval = timedelta(hours=config.get("PENDING_REMINDER_INTERVAL_HOURS", 24))
    max_reminders = config.get("MAX_PENDING_REMINDERS", 3)
    sent = skipped = 0

    pending = (
        SupplierAssignment.query.join(EventService, SupplierAssignment.event_service_id == EventService.id)
        .join(Event, EventService.event_id == Event.id)
        .filter(
            SupplierAssignment.status == "pending",
            Event.status.notin_(("completed", "cancelled")),
            Event.event_date >= now.date(),
        )
        .order_by(SupplierAssignment.id.asc())
        .all()
    )
    for assignment in pending:
        if assignment.created_at and assignment.created_at > now - first_after:
            continue

        item = assignment.event_service
        data = {
            **_event_placeholders(item.event),
            "service_name": item.display_name,
            "supplier_name": assignment.supplier.name,
        }
        for recipient in _users_for_suppliers([assignment.supplier]):
            earlier = already_notified(recipient, "supplier_pending_reminder", event_service_id=item.id)
            if len(earlier) >= max_reminders or (earlier and earlier[0].created_at > now - interval):
                skipped += 1
                continue
            sent += len(
                notify_users(
                    [recipient],
                    "supplier_pending_reminder",
                    data,
                    event_id=item.event_id,
                    event_service_id=item.id,
                )
            )

    db.session.commit()
    logger.info("Pending assignment reminders: %d sent, %d skipped", sent, skipped)
    return {"success": True, "sent": sent, "skipped": skipped}


# ---------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------
def _quote_event(payload: dict, user: User) -> Event:
    if user.is_supplier:
        raise FunctionError("Suppliers cannot generate quotes", 403)
    _require(payload, "eventId")
    event = _get_event(payload["eventId"])
    _require_event_access(event, user)
    return event


@register("generateQuote", roles=(ROLE_ADMIN, ROLE_CLIENT))
def generate_quote(payload: dict, user: User) -> Dict[str, Any]:
    event = _quote_event(payload, user)
    html = render_quote_html(
        event,
        include_intro=payload.get("includeIntro", True) is not False,
        include_payment_terms=payload.get("includePaymentTerms", True) is not False,
    )
    return {"success": True, "html": html, "text": html_to_text(html)}


@register("generateQuotePdf", roles=(ROLE_ADMIN, ROLE_CLIENT))
def generate_quote_pdf(payload: dict, user: User) -> Dict[str, Any]:
    event = _quote_event(payload, user)
    pdf = render_quote_pdf(
        event,
        include_intro=payload.get("includeIntro", True) is not False,
        include_payment_terms=payload.get("includePaymentTerms", True) is not False,
    )
    filename = f"quote-{event.id}-{event.event_date.isoformat()}.pdf"
    return {"success": True, "pdf": pdf, "filename": filename}


# ---------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------
def _backup_call(func: Callable[..., Any], *args, **kwargs) -> Any:
    try:
        return func(*args, **kwargs)
    except backups.BackupError as exc:
        raise FunctionError(str(exc), 400) from exc


@register("createBackup", roles=(ROLE_ADMIN,))
def create_backup(payload: dict, user: User) -> Dict[str, Any]:
    result = _backup_call(backups.create_backup, created_by=user.email)
    return {"success": True, **result}


@register("createGoogleSheetBackup", roles=(ROLE_ADMIN,))
def create_sheet_backup(payload: dict, user: User) -> Dict[str, Any]:
    result = _backup_call(backups.create_spreadsheet_backup, created_by=user.email)
    return {"success": True, **result}


@register("listBackups", roles=(ROLE_ADMIN,))
def list_backups(payload: dict, user: User) -> Dict[str, Any]:
    return {"success": True, "backups": backups.list_backups()}


@register("restoreFromBackup", roles=(ROLE_ADMIN,))
def restore_from_backup(payload: dict, user: User) -> Dict[str, Any]:
    name = payload.get("backup_folder_name") or payload.get("name")
    if not name:
        raise FunctionError("Missing required parameter: backup_folder_name", 400)
    restored = _backup_call(backups.restore_from_backup, name, confirm=payload.get("confirm_restore") is True)
    logger.warning("Data restored from backup %s by %s", name, user.email)
    return {"success": True, "restored": restored}


# ---------------------------------------------------------------------
# Supplier assignments
# ---------------------------------------------------------------------
@register("notifySupplierAssignment", roles=(ROLE_ADMIN,))
def notify_supplier_assignment(payload: dict, user: User) -> Dict[str, Any]:
    supplier_ids = payload.get("supplierIds")
    if not isinstance(supplier_ids, list) or not supplier_ids:
        raise FunctionError("Missing required parameters: supplierIds, eventId, serviceName.", 400)
    _require(payload, "eventId", "serviceName")
    event = _get_event(payload["eventId"])

    ids = [_int(sid, "supplierIds") for sid in supplier_ids]
    suppliers = Supplier.query.filter(Supplier.id.in_(ids)).all()
    targets = _users_for_suppliers(suppliers)
    if not targets:
        return {"success": True, "notified": 0, "message": "No user accounts found for the given suppliers."}

    data = {**_event_placeholders(event), "service_name": payload["serviceName"]}
    created = notify_users(targets, "supplier_assignment", data)
    db.session.commit()
    return {"success": True, "notified": len(created)}


@register("updateSupplierStatus", roles=(ROLE_SUPPLIER,))
def update_supplier_status(payload: dict, user: User) -> Dict[str, Any]:
    _require(payload, "eventServiceId", "newStatus")
    new_status = payload["newStatus"]
    if new_status not in ASSIGNMENT_STATUSES:
        raise FunctionError("Invalid status value", 400)

    supplier = user.matched_supplier()
    if supplier is None:
        raise FunctionError("No supplier profile found for this user", 403)

    item = db.session.get(EventService, _int(payload["eventServiceId"], "eventServiceId"))
    if item is None:
        raise FunctionError("Event service not found", 404)

    assignment = item.assignment_for(supplier.id)
    if assignment is None:
        raise FunctionError("Supplier not assigned to this service", 403)

    previous = assignment.status
    before = serialize_model(assignment)
    assignment.status = new_status
    db.session.flush()
    log_action(assignment, "UPDATE", before=before, after=serialize_model(assignment), user=user)

    event = item.event
    status_changed = apply_event_status_rules(event)

    if previous != new_status:
        notify_admins(
            "supplier_status_changed",
            {
                **_event_placeholders(event),
                "supplier_name": supplier.name,
                "service_name": item.display_name,
                "status": new_status,
            },
        )

    db.session.commit()
    return {"success": True, "status": new_status, "eventStatus": event.status, "eventStatusChanged": bool(status_changed)}


# ---------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------
def build_calendar_entry(event: Event) -> Dict[str, Any]:
    """Calendar payload: timed 4h block when a time is known, else all-day."""
    description = []
    if event.concept:
        description.append(f"Concept: {event.concept}")
    if event.notes:
        description.append(f"Notes: {event.notes}")
    if event.location:
        description.append(f"Location: {event.location}")

    entry: Dict[str, Any] = {
        "summary": event.display_name,
        "description": "\n".join(description),
        "location": ", ".join(v for v in (event.location, event.city) if v),
    }

    if event.event_time:
        start = event.ends_at()
        entry["start"] = {"dateTime": start.isoformat()}
        entry["end"] = {"dateTime": (start + timedelta(hours=4)).isoformat()}
    else:
        entry["start"] = {"date": event.event_date.isoformat()}
        entry["end"] = {"date": (event.event_date + timedelta(days=1)).isoformat()}
    return entry


@register("syncGoogleCalendar")
def sync_calendar(payload: dict, user: User) -> Dict[str, Any]:
    _require(payload, "eventId")
    event = _get_event(payload["eventId"])
    _require_event_access(event, user)

    provider = calendar_provider()
    try:
        calendar_id = provider.upsert_event(user, build_calendar_entry(event), existing_id=event.calendar_event_id)
    except IntegrationError as exc:
        raise FunctionError(str(exc), 400) from exc

    if user.is_admin and calendar_id != event.calendar_event_id:
        event.calendar_event_id = calendar_id
        db.session.commit()
    return {"success": True, "calendarEventId": calendar_id}


@register("getGoogleOAuthUrl")
def get_oauth_url(payload: dict, user: User) -> Dict[str, Any]:
    client_id = current_app.config.get("GOOGLE_CLIENT_ID")
    if not client_id:
        raise FunctionError("Calendar OAuth credentials not configured", 500)
    params = {
        "client_id": client_id,
        "redirect_uri": current_app.config.get("GOOGLE_REDIRECT_URI"),
        "response_type": "code",
        "scope": OAUTH_SCOPES,
        "access_type": "offline",
        "prompt": "consent",
        "state": str(user.id),
    }
    return {"authUrl": f"{OAUTH_AUTHORIZE_URL}?{urlencode(params)}"}


@register("checkGoogleCalendarConnection")
def check_calendar_connection(payload: dict, user: User) -> Dict[str, Any]:
    connected = bool(calendar_provider().is_connected(user))
    if connected != user.calendar_connected:
        user.calendar_connected = connected
        db.session.commit()
    return {"connected": connected}


# ---------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------
def allowed_upload(filename: str) -> bool:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return ext in current_app.config.get("ALLOWED_UPLOAD_EXTENSIONS", set())


def save_upload(file: FileStorage) -> Dict[str, Any]:
    """
    Store an uploaded file under UPLOAD_FOLDER with a unique safe name.

    Returns {"file_url": ...} pointing at the api.uploaded_file route.
    """
    if file is None or not file.filename:
        raise FunctionError("No file uploaded", 400)

    filename = secure_filename(file.filename)
    if not filename or not allowed_upload(filename):
        raise FunctionError("File type not allowed", 400)

    ext = filename.rsplit(".", 1)[-1].lower()
    stored_name = f"{uuid.uuid4().hex}.{ext}"
    folder = Path(current_app.config["UPLOAD_FOLDER"])
    folder.mkdir(parents=True, exist_ok=True)
    file.save(str(folder / stored_name))

    logger.info("Stored upload %s as %s", filename, stored_name)
    return {"file_url": url_for("api.uploaded_file", filename=stored_name), "filename": stored_name}
