"""
app/notifications.py

In-app notifications built from NotificationTemplate rows.

Rules:
- A user who disabled a template type receives nothing for it.
- {{placeholders}} are replaced from the data dict; unknown ones stay verbatim.
- Every stored notification is also forwarded to the push provider, but only once the
  session commits. A rolled back notification is never pushed.
- Rows are added to the current session; the caller commits.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from flask import url_for
from sqlalchemy import event
from sqlalchemy.orm import Session

from .extensions import db
from .integrations import IntegrationError, push_provider
from .models import Notification, NotificationTemplate, ROLE_ADMIN, User
from .utils import replace_placeholders

logger = logging.getLogger(__name__)

# Session.info key holding pushes that wait for the commit
PENDING_PUSHES = "pending_pushes"


def _template_for(template_type: str | None) -> NotificationTemplate | None:
    if not template_type:
        return None
    return NotificationTemplate.query.filter_by(template_type=template_type, is_active=True).first()


def _build_link(template: NotificationTemplate | None, data: dict, link: str | None) -> str | None:
    if link:
        return link
    if template and template.link_page == "event_details" and data.get("event_id"):
        return url_for("events.event_details", event_id=data["event_id"])
    if template and template.link_page == "supplier_dashboard":
        return url_for("dashboard.supplier_dashboard")
    return None


def create_notification(
    user: User,
    template_type: str | None,
    data: Optional[dict] = None,
    *,
    title: str | None = None,
    message: str | None = None,
    link: str | None = None,
    event_id: int | None = None,
    event_service_id: int | None = None,
) -> Notification | None:
    """
    Create one notification for one user.

    Explicit title/message win over the template. Returns None when the user opted
    out or there is nothing to say.
    """
    data = data or {}

    if not user.wants_notification(template_type):
        logger.info("User %s has disabled %s notifications", user.id, template_type)
        return None

    template = _template_for(template_type)
    title = title or (replace_placeholders(template.title, data) if template else None)
    message = message or (replace_placeholders(template.body, data) if template else None)
    if not title or not message:
        logger.warning("No active template %r and no explicit text; nothing sent", template_type)
        return None

    notification = Notification(
        user_id=user.id,
        template_type=template_type or "custom",
        title=title,
        message=message,
        link=_build_link(template, data, link),
        event_id=event_id,
        event_service_id=event_service_id,
    )
    db.session.add(notification)

    db.session().info.setdefault(PENDING_PUSHES, []).append(
        ([user.id], title, message, {"link": notification.link, "type": template_type})
    )

    return notification


def notify_users(
    users: Iterable[User],
    template_type: str,
    data: Optional[dict] = None,
    **refs: Any,
) -> list[Notification]:
    """Notify each user; refs (event_id, event_service_id) are stored on every row."""
    created = []
    for user in users:
        notification = create_notification(user, template_type, data, **refs)
        if notification is not None:
            created.append(notification)
    return created


def active_admins() -> list[User]:
    return User.query.filter_by(role=ROLE_ADMIN, is_active=True).all()


def notify_admins(template_type: str, data: Optional[dict] = None, **refs: Any) -> list[Notification]:
    return notify_users(active_admins(), template_type, data, **refs)


def already_notified(user: User, template_type: str, **refs: Any) -> list[Notification]:
    """Earlier notifications of this type to this user about the same event/line item, newest first."""
    return (
        Notification.query.filter_by(user_id=user.id, template_type=template_type, **refs)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .all()
    )


def mark_all_read(user: User) -> int:
    """Mark the user's unread notifications as read; returns the count."""
    count = 0
    for notification in user.notifications.filter_by(is_read=False).all():
        notification.is_read = True
        count += 1
    return count


def unread_count(user: User) -> int:
    return user.notifications.filter_by(is_read=False).count()


# ---------------------------------------------------------------------
# Push delivery, after commit
# ---------------------------------------------------------------------
@event.listens_for(Session, "after_commit")
def _send_pending_pushes(session) -> None:
    pending = session.info.pop(PENDING_PUSHES, None)
    if not pending:
        return
    provider = push_provider()
    for user_ids, title, message, data in pending:
        try:
            provider.send(user_ids, title, message, data)
        except IntegrationError as exc:
            logger.warning("Push delivery failed for users %s: %s", user_ids, exc)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending_pushes(session, previous_transaction) -> None:
    session.info.pop(PENDING_PUSHES, None)
