"""Catalog blueprint package (routes live in routes.py)."""

from .routes import catalog_bp  # noqa: F401
