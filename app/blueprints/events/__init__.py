"""Events blueprint package (routes live in routes.py)."""

from .routes import events_bp  # noqa: F401
