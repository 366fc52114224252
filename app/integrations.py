"""
app/integrations.py

Third-party collaborators behind small interfaces:
- CalendarProvider: create/update calendar entries for events
- PushProvider: deliver push notifications to users

The app factory installs the null implementations (nothing connected). A deployment
(or a test) swaps in a real/recording provider:

    app.extensions["calendar_provider"] = MyCalendarProvider(...)
    app.extensions["push_provider"] = MyPushProvider(...)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    """A provider call failed or the provider is not connected."""


class CalendarProvider:
    """Interface for a calendar backend."""

    def is_connected(self, user) -> bool:
        raise NotImplementedError

    def upsert_event(self, user, entry: Dict[str, Any], existing_id: Optional[str] = None) -> str:
        """Create (or update when existing_id is given) an entry; return its provider id."""
        raise NotImplementedError

    def delete_event(self, user, event_id: str) -> None:
        raise NotImplementedError


class PushProvider:
    """Interface for a push-notification backend."""

    def send(self, user_ids: Iterable[int], title: str, body: str, data: Optional[dict] = None) -> dict:
        raise NotImplementedError


class NullCalendarProvider(CalendarProvider):
    def is_connected(self, user) -> bool:
        return False

    def upsert_event(self, user, entry, existing_id=None) -> str:
        raise IntegrationError("Calendar not connected. Please connect your calendar first.")

    def delete_event(self, user, event_id) -> None:
        raise IntegrationError("Calendar not connected. Please connect your calendar first.")


class NullPushProvider(PushProvider):
    def send(self, user_ids, title, body, data=None) -> dict:
        user_ids = list(user_ids)
        logger.debug("Push disabled; skipped %d recipient(s): %s", len(user_ids), title)
        return {"sent": 0, "skipped": len(user_ids)}


class RecordingPushProvider(PushProvider):
    """Keeps sent messages in memory (development console, tests)."""

    def __init__(self) -> None:
        self.sent: List[dict] = []

    def send(self, user_ids, title, body, data=None) -> dict:
        user_ids = list(user_ids)
        self.sent.append({"user_ids": user_ids, "title": title, "body": body, "data": data or {}})
        return {"sent": len(user_ids), "skipped": 0}


class RecordingCalendarProvider(CalendarProvider):
    """In-memory calendar (development console, tests)."""

    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.entries: Dict[str, Dict[str, Any]] = {}

    def is_connected(self, user) -> bool:
        return self.connected

    def upsert_event(self, user, entry, existing_id=None) -> str:
        if not self.connected:
            raise IntegrationError("Calendar not connected. Please connect your calendar first.")
        event_id = existing_id or f"cal-{len(self.entries) + 1}"
        self.entries[event_id] = dict(entry)
        return event_id

    def delete_event(self, user, event_id) -> None:
        self.entries.pop(event_id, None)


def init_integrations(app) -> None:
    app.extensions.setdefault("calendar_provider", NullCalendarProvider())
    app.extensions.setdefault("push_provider", NullPushProvider())


def calendar_provider() -> CalendarProvider:
    return current_app.extensions["calendar_provider"]


def push_provider() -> PushProvider:
    return current_app.extensions["push_provider"]
