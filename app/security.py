"""
app/security.py

Access control helpers for the Event Planning Office.

Key rules:
- Templates hide what a role cannot use, but every check below runs on the server.
- Admin: everything, including the back-office pages.
- Client: read-only access to events where one of the parents is the client
  (email or normalized phone match).
- Supplier: read-only access to events with a line item assigned to the supplier,
  plus answering their own assignments.

readonly_guard() is the second line of defence:
- readonly_guard() blocks POST/PUT/PATCH/DELETE for non-admin users outside an
  allow-list of self-service endpoints. Wire it via app.before_request in app factory.

IMPORTANT:
- Flask derives endpoint names from view functions, so every decorator here
  wraps the view with functools.wraps.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Optional, Tuple

from flask import render_template, request
from flask_login import current_user

from .models import ROLE_ADMIN, ROLE_CLIENT, ROLE_SUPPLIER

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Mutations any logged-in user may perform on their own data.
SELF_SERVICE_ENDPOINTS = {
    "auth.logout",
    "dashboard.supplier_respond",
    "settings.my_notifications",
    "settings.notifications_mark_read",
    "settings.calendar",
    "api.invoke_function",
}

LANDING_ENDPOINTS = {
    ROLE_ADMIN: "dashboard.admin_dashboard",
    ROLE_CLIENT: "dashboard.client_dashboard",
    ROLE_SUPPLIER: "dashboard.supplier_dashboard",
}


def _forbidden() -> Tuple[str, int]:
    """403 response shared by the decorators and the guard."""
    return render_template("errors/403.html"), 403


def is_admin() -> bool:
    """True for a logged-in user whose role is admin."""
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def landing_endpoint(user) -> str:
    """Role-appropriate landing page (clients by default)."""
    return LANDING_ENDPOINTS.get(getattr(user, "role", None), LANDING_ENDPOINTS[ROLE_CLIENT])


def can_view_event(user, event) -> bool:
    """Server-side truth for event visibility."""
    if not user or not user.is_authenticated or event is None:
        return False
    if user.is_admin:
        return True
    if user.is_client:
        return event.matches_client(user.email, user.phone)
    if user.is_supplier:
        supplier = user.matched_supplier()
        return bool(supplier and event.has_supplier(supplier.id))
    return False


def readonly_guard() -> Optional[Tuple[str, int]]:
    """
    Global guard: only admins mutate business data.

    Allow-list: SELF_SERVICE_ENDPOINTS (each enforces its own checks).
    """
    if request.method not in MUTATING_METHODS:
        return None

    if not current_user.is_authenticated:
        return None

    if is_admin():
        return None

    endpoint = (request.endpoint or "").strip()
    if endpoint in SELF_SERVICE_ENDPOINTS:
        return None

    return _forbidden()


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Reject anyone who is not an admin with the 403 page."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def role_required(*roles: str) -> Callable[..., Any]:
    """
    Decorator factory: allow the listed roles (admin is always allowed).

    Usage:
        @role_required("client")
        def client_dashboard(): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            if not current_user.is_authenticated:
                return _forbidden()
            if not (is_admin() or current_user.role in roles):
                return _forbidden()
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def event_access_required(get_event_func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator factory: VIEW permission for an event.

    Usage:
        @event_access_required(lambda event_id, **_: Event.query.get_or_404(event_id))
        def details(event_id): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            event = get_event_func(**kwargs)
            if not can_view_event(current_user, event):
                return _forbidden()
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
