"""
User Management (Admin Only).

Rules enforced:
- Email is the login and is unique (stored lowercase).
- Role is one of admin / client / supplier (or unclassified until first login).
- An admin cannot remove their own admin role or deactivate themselves.
- Every field is re-validated here regardless of what the form allowed.

ClientManagement lists client users together with the events they are matched to.

Audit:
- every create and update writes an AuditLog entry
"""

from flask import (
    Blueprint,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...extensions import db
from ...functions import FunctionError, invoke
from ...models import ROLE_ADMIN, ROLE_CLIENT, ROLES, Event, User
from ...security import admin_required


users_bp = Blueprint(
    "users",
    __name__,
    url_prefix="/users",
)


def _role_from_form() -> tuple[bool, str | None]:
    """(valid, role). Empty means unclassified."""
    role = (request.form.get("role") or "").strip() or None
    return (role is None or role in ROLES), role


# ---------------------------------------------------------------------
# LIST USERS
# ---------------------------------------------------------------------

@users_bp.route("/")
@login_required
@admin_required
def list_users():
    """Admin view: list all users."""
    role = (request.args.get("role") or "").strip()
    query = User.query.order_by(User.email.asc())
    if role in ROLES:
        query = query.filter(User.role == role)
    users = query.all()

    return render_template(
        "users/list.html",
        users=users,
        roles=ROLES,
        role=role,
    )


# ---------------------------------------------------------------------
# CREATE USER
# ---------------------------------------------------------------------

@users_bp.route("/new", methods=["GET", "POST"])
@login_required
@admin_required
def create_user():
    """
    Create a login account with an optional role.

    Required:
    - email
    - password
    """
    if request.method == "POST":
        email = (request.form.get("email") or "").strip().lower()
        password = (request.form.get("password") or "").strip()
        valid_role, role = _role_from_form()

        if not email or not password:
            flash("Email and password are required.", "danger")
            return redirect(url_for("users.create_user"))

        if not valid_role:
            flash("Invalid role.", "danger")
            return redirect(url_for("users.create_user"))

        if User.query.filter_by(email=email).first():
            flash("This email is already registered.", "danger")
            return redirect(url_for("users.create_user"))

        user = User(
            email=email,
            full_name=(request.form.get("full_name") or "").strip() or None,
            phone=(request.form.get("phone") or "").strip() or None,
            role=role,
            is_active=True,
        )
        user.set_password(password)

        db.session.add(user)
        db.session.flush()

        log_action(
            user,
            "CREATE",
            before=None,
            after=serialize_model(user),
        )
        db.session.commit()

        flash("User created.", "success")
        return redirect(url_for("users.list_users"))

    return render_template("users/form.html", user=None, roles=ROLES)


# ---------------------------------------------------------------------
# EDIT USER
# ---------------------------------------------------------------------

@users_bp.route("/<int:user_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def edit_user(user_id):
    """
    Update role, status, contact details or password of an account.

    Admin can:
    - change role
    - switch the account on or off
    - edit name / phone
    - set a new password
    """
    user = User.query.get_or_404(user_id)

    if request.method == "POST":
        before_snapshot = serialize_model(user)

        valid_role, role = _role_from_form()
        if not valid_role:
            flash("Invalid role.", "danger")
            return redirect(url_for("users.edit_user", user_id=user.id))

        is_active = bool(request.form.get("is_active"))
        if user.id == current_user.id and (role != ROLE_ADMIN or not is_active):
            flash("You cannot remove your own admin access.", "danger")
            return redirect(url_for("users.edit_user", user_id=user.id))

        user.role = role
        user.is_active = is_active
        user.full_name = (request.form.get("full_name") or "").strip() or None
        user.phone = (request.form.get("phone") or "").strip() or None

        new_password = (request.form.get("password") or "").strip()
        if new_password:
            user.set_password(new_password)

        db.session.flush()

        log_action(
            user,
            "UPDATE",
            before=before_snapshot,
            after=serialize_model(user),
        )
        db.session.commit()

        flash("User updated.", "success")
        return redirect(url_for("users.list_users"))

    return render_template("users/form.html", user=user, roles=ROLES)


@users_bp.route("/<int:user_id>/sync", methods=["POST"])
@login_required
@admin_required
def sync_user(user_id):
    """Re-run identity classification for one user."""
    user = User.query.get_or_404(user_id)
    try:
        result = invoke("syncUserIdentity", {"userId": user.id}, current_user)
    except FunctionError as exc:
        flash(exc.message, "danger")
        return redirect(url_for("users.list_users"))

    flash(f"{user.email}: role {result['role'] or '-'}.", "success")
    return redirect(url_for("users.list_users"))


# ---------------------------------------------------------------------
# CLIENTS
# ---------------------------------------------------------------------

@users_bp.route("/clients")
@login_required
@admin_required
def list_clients():
    """ClientManagement: client users and the events each is matched to."""
    clients = User.query.filter_by(role=ROLE_CLIENT).order_by(User.email.asc()).all()
    events = Event.query.order_by(Event.event_date.desc()).all()

    rows = [
        (client, [e for e in events if e.matches_client(client.email, client.phone)])
        for client in clients
    ]
    return render_template("users/clients.html", rows=rows)
