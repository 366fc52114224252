"""
app/extensions.py

Flask extension singletons for the Event Planning Office.

- db: SQLAlchemy session/models (app/models.py); one session per app context
- migrate: `flask db ...` schema migrations (PostgreSQL in production)
- login_manager: session login for admin / client / supplier accounts
- csrf: protects the HTML forms; the JSON API blueprint is exempted in create_app()

Bound to the application in create_app(), so models and blueprints can import
them without circular imports.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()

login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message = "Please log in to continue."
login_manager.login_message_category = "info"
