"""
app/audit.py

Audit trail for back-office changes.

Each entry records the acting user, the entity touched and the column values
before and after the change. The user's email is copied onto the entry so the
trail stays readable after an account is deleted.

IMPORTANT:
- log_action only stages an AuditLog row in the session. Committing or rolling
  back is the caller's decision, so the entry lands with the change it describes.
- Outside a request (CLI, named operations run from a script) IP and user are empty.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog


def _safe_value(value: Any) -> Any:
    """
    Convert a column value to something json.dumps accepts.

    - JSON columns (list/dict) and plain scalars are kept.
    - Decimal/date/datetime/etc: str(value).
    """
    if value is None or isinstance(value, (bool, int, float, str, list, dict)):
        return value
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Any]:
    """
    Snapshot the table columns of a model instance as a plain dict.

    NOTES:
    - Relationships are left out; JSON columns come through as lists or dicts.
    """
    return {
        column.name: _safe_value(getattr(instance, column.name))
        for column in instance.__table__.columns
    }


def _actor():
    if has_request_context() and current_user and current_user.is_authenticated:
        return current_user
    return None


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    user: Any = None,
) -> None:
    """
    Stage an AuditLog row for `entity` in the current session.

    Parameters:
        entity: SQLAlchemy model instance with .id (after flush)
        action: CREATE / UPDATE / DELETE / RESTORE ...
        before: serialize_model() result taken before the change
        after: serialize_model() result taken after the change
        user: acting user when not the request's current_user (optional)
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError(f"{entity.__class__.__name__} has no id yet; flush before logging.")

    actor = user or _actor()

    entry = AuditLog(
        user_id=actor.id if actor else None,
        email_snapshot=actor.email if actor else None,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
