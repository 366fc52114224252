"""Suppliers blueprint package (routes live in routes.py)."""

from .routes import suppliers_bp  # noqa: F401
