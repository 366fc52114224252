"""Api blueprint package (routes live in routes.py)."""

from .routes import api_bp  # noqa: F401
