"""Login, self-registration and logout (routes.py)."""

from .routes import auth_bp  # noqa: F401
