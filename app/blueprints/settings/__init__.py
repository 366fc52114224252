"""Settings blueprint package (routes live in routes.py)."""

from .routes import settings_bp  # noqa: F401
