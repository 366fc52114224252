"""
app/__init__.py

Flask application factory for the Event Planning Office.

Requirements:
- Clear architecture, stable imports, server-side access control.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev.
- UI is never trusted; every route enforces its own role checks and a global
  read-only guard blocks non-admin mutations (see app/security.py).

Navigation:
- One sidebar section per role. Items are filtered for visibility only.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, redirect, render_template, url_for
from flask_login import current_user

from .extensions import csrf, db, login_manager, migrate
from .integrations import init_integrations
from .models import ROLE_ADMIN, ROLE_CLIENT, ROLE_SUPPLIER, User
from .security import landing_endpoint, readonly_guard


# -------------------------------------------------------------------
# NAVIGATION STRUCTURE (UI visibility only; security enforced in routes)
# -------------------------------------------------------------------

NAV_ITEMS = [
    {"label": "Dashboard", "endpoint": "dashboard.admin_dashboard", "roles": (ROLE_ADMIN,)},
    {"label": "Events", "endpoint": "events.list_events", "roles": (ROLE_ADMIN,)},
    {"label": "Board", "endpoint": "events.board", "roles": (ROLE_ADMIN,)},
    {"label": "Services & packages", "endpoint": "catalog.list_services", "roles": (ROLE_ADMIN,)},
    {"label": "Suppliers", "endpoint": "suppliers.list_suppliers", "roles": (ROLE_ADMIN,)},
    {"label": "Clients", "endpoint": "users.list_clients", "roles": (ROLE_ADMIN,)},
    {"label": "Users", "endpoint": "users.list_users", "roles": (ROLE_ADMIN,)},
    {"label": "Settings", "endpoint": "settings.app_settings", "roles": (ROLE_ADMIN,)},
    {"label": "Quote templates", "endpoint": "settings.quote_templates", "roles": (ROLE_ADMIN,)},
    {"label": "Notification templates", "endpoint": "settings.notification_templates", "roles": (ROLE_ADMIN,)},
    {"label": "Backups", "endpoint": "settings.backups", "roles": (ROLE_ADMIN,)},
    {"label": "My events", "endpoint": "dashboard.client_dashboard", "roles": (ROLE_CLIENT,)},
    {"label": "My assignments", "endpoint": "dashboard.supplier_dashboard", "roles": (ROLE_SUPPLIER,)},
    {"label": "Notifications", "endpoint": "settings.notifications", "roles": None},
    {"label": "Notification preferences", "endpoint": "settings.my_notifications", "roles": None},
    {"label": "Calendar", "endpoint": "settings.calendar", "roles": None},
]


def _configure_logging(app: Flask) -> None:
    """Route the package loggers through one stream handler at LOG_LEVEL."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logger = logging.getLogger(__name__)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        logger.addHandler(handler)
    app.logger.setLevel(level)


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    init_integrations(app)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: non-admin read-only guard (server-side).
    # ----------------------------------------------------------------------
    @app.before_request
    def _readonly_guard_hook():
        """
        Non-admin mutations are blocked outside the self-service allow-list.

        This is a safety net. Each route must still enforce its own permissions.
        """
        return readonly_guard()

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.api import api_bp
    from .blueprints.auth import auth_bp
    from .blueprints.catalog import catalog_bp
    from .blueprints.dashboard import dashboard_bp
    from .blueprints.events import events_bp
    from .blueprints.settings import settings_bp
    from .blueprints.suppliers import suppliers_bp
    from .blueprints.users import users_bp

    # JSON API authenticates by session and checks roles per operation
    csrf.exempt(api_bp)

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(api_bp)

    # ----------------------------------------------------------------------
    # Context globals (navigation, labels, unread count)
    # ----------------------------------------------------------------------
    @app.context_processor
    def inject_globals():
        """
        Inject navigation filtered by role plus shared template helpers.

        SECURITY NOTE:
        - This only filters visibility. Routes enforce permissions.
        """
        from .notifications import unread_count
        from .utils import (
            EVENT_TYPE_LABELS,
            PAYMENT_METHOD_LABELS,
            STATUS_LABELS,
            event_row_class,
            format_money,
        )

        nav_items = []
        unread = 0
        if current_user.is_authenticated:
            for item in NAV_ITEMS:
                roles = item["roles"]
                if roles is None or current_user.role in roles:
                    nav_items.append(item)
            unread = unread_count(current_user)

        return {
            "config": app.config,
            "nav_items": nav_items,
            "unread_notifications": unread,
            "status_labels": STATUS_LABELS,
            "event_type_labels": EVENT_TYPE_LABELS,
            "payment_method_labels": PAYMENT_METHOD_LABELS,
            "format_money": format_money,
            "event_row_class": event_row_class,
        }

    # ----------------------------------------------------------------------
    # Error pages
    # ----------------------------------------------------------------------
    @app.errorhandler(403)
    def forbidden(_error):
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found(_error):
        return render_template("errors/404.html"), 404

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (development; use `flask db upgrade` in production)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-defaults")
    def seed_defaults_command():
        """Seed default settings and templates."""
        from .seed import seed_defaults

        created = seed_defaults()
        click.echo(f"Defaults seeded: {created}")

    @app.cli.command("update-expired-events")
    def update_expired_events_command():
        """Close events whose date has passed (quote -> cancelled, others -> completed)."""
        from .functions import update_expired_events

        result = update_expired_events({}, None)
        click.echo(f"Updated {result['updated_count']} event(s).")

    @app.cli.command("send-event-reminders")
    def send_event_reminders_command():
        """Remind confirmed suppliers and admins of events starting soon."""
        from .functions import send_event_reminders

        result = send_event_reminders({}, None)
        click.echo(f"Reminders sent: {result['sent']}, skipped: {result['skipped']}.")

    @app.cli.command("check-pending-assignments")
    def check_pending_assignments_command():
        """Remind suppliers who have not answered their assignments."""
        from .functions import check_pending_assignments

        result = check_pending_assignments({}, None)
        click.echo(f"Reminders sent: {result['sent']}, skipped: {result['skipped']}.")

    @app.cli.command("create-backup")
    @click.option("--spreadsheet", is_flag=True, help="Also write backup.xlsx.")
    def create_backup_command(spreadsheet: bool):
        """Write a JSON (and optionally xlsx) backup to BACKUP_DIR."""
        from .backups import create_backup, create_spreadsheet_backup

        if spreadsheet:
            result = create_spreadsheet_backup(created_by="cli")
        else:
            result = create_backup(created_by="cli")
        click.echo(f"Backup {result['name']} created.")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """Home: redirect to the role landing page or login."""
        if current_user.is_authenticated:
            return redirect(url_for(landing_endpoint(current_user)))
        return redirect(url_for("auth.login"))

    return app
