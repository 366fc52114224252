"""
Authentication Routes

Provides:
- /auth/login
- /auth/logout
- /auth/seed-admin (creates the first admin while the user table is empty)
- /auth/register (self sign-up for clients and suppliers)

Rules:
- Only active users may log in. Self-registered accounts stay inactive until an admin
  approves them.
- Unclassified users are classified on login (supplier if a supplier lists their
  email, client otherwise) through the syncUserIdentity operation.
- After login users land on their role page unless a safe local ?next= is given.
"""

from flask import (
    Blueprint,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import (
    current_user,
    login_required,
    login_user,
    logout_user,
)

from ...audit import log_action, serialize_model
from ...extensions import db
from ...functions import FunctionError, invoke
from ...models import ROLE_ADMIN, User
from ...security import landing_endpoint
from ...utils import safe_next_url


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    """
    Check email and password, then start the session.

    Logic:
    - Only active users may log in
    - Credentials validated via password hash
    - Unclassified users get a role before landing
    """

    if current_user.is_authenticated:
        return redirect(url_for(landing_endpoint(current_user)))

    if request.method == "POST":
        email = _normalize_email(request.form.get("email"))
        password = request.form.get("password", "")

        user = User.query.filter_by(email=email).first()

        if not user or not user.check_password(password):
            flash("Wrong email or password.", "danger")
            return render_template("auth/login.html", email=email), 401

        if not user.is_active:
            flash("This account is not active. New accounts need administrator approval.", "danger")
            return render_template("auth/login.html", email=email), 403

        login_user(user)

        if user.role is None:
            try:
                invoke("syncUserIdentity", {}, user)
            except FunctionError as exc:
                current_app.logger.warning("Identity sync failed for %s: %s", user.email, exc.message)

        flash("Welcome!", "success")

        next_url = safe_next_url(request.args.get("next"), landing_endpoint(user))
        return redirect(next_url)

    return render_template("auth/login.html", email="")


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["GET", "POST"])
@login_required
def logout():
    """End the session and return to the login page."""
    logout_user()
    flash("You have been logged out.", "info")
    return redirect(url_for("auth.login"))


# ============================================================
# SELF REGISTRATION
# ============================================================

@auth_bp.route("/register", methods=["GET", "POST"])
def register():
    """
    Create an account for a client or supplier.

    SECURITY:
    - Event access is derived from the email and phone on the account, and neither is
      verified here. New accounts therefore start inactive; an admin switches them on
      in UserManagement after checking who they are.
    - The role is never taken from the form; it is derived on first login.
    """
    if current_user.is_authenticated:
        return redirect(url_for(landing_endpoint(current_user)))

    if request.method == "POST":
        email = _normalize_email(request.form.get("email"))
        password = request.form.get("password", "")
        full_name = (request.form.get("full_name") or "").strip()
        phone = (request.form.get("phone") or "").strip()

        if not email or "@" not in email:
            flash("A valid email is required.", "danger")
            return redirect(url_for("auth.register"))

        if len(password) < 8:
            flash("The password must have at least 8 characters.", "danger")
            return redirect(url_for("auth.register"))

        if User.query.filter_by(email=email).first():
            flash("An account with this email already exists.", "danger")
            return redirect(url_for("auth.register"))

        user = User(
            email=email,
            full_name=full_name or None,
            phone=phone or None,
            role=None,
            is_active=False,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.flush()

        log_action(user, "CREATE", after=serialize_model(user), user=user)
        db.session.commit()

        flash("Account created. You can log in once an administrator approves it.", "success")
        return redirect(url_for("auth.login"))

    return render_template("auth/register.html")


# ============================================================
# FIRST ADMIN
# ============================================================

@auth_bp.route("/seed-admin", methods=["GET", "POST"])
def seed_admin():
    """
    Create the first admin account on an empty installation.

    Safety Rules:
    - If ANY user already exists -> block
    """

    if User.query.count() > 0:
        flash("A user already exists.", "warning")
        return redirect(url_for("auth.login"))

    if request.method == "POST":
        email = _normalize_email(request.form.get("email"))
        password = request.form.get("password", "")

        if not email or not password:
            flash("Email and password are required.", "danger")
            return render_template("auth/seed_admin.html")

        user = User(
            email=email,
            full_name="Administrator",
            role=ROLE_ADMIN,
            is_active=True,
        )
        user.set_password(password)

        db.session.add(user)
        db.session.flush()

        log_action(user, "CREATE", after=serialize_model(user), user=user)
        db.session.commit()

        flash("Admin created. Please log in.", "success")
        return redirect(url_for("auth.login"))

    return render_template("auth/seed_admin.html")
