from app.extensions import db
from app.models import AuditLog, User

from conftest import PASSWORD, login, make_user


def test_login_lands_on_role_page(client, data):
    resp = login(client, "admin@example.com")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/dashboard/admin")


def test_client_and_supplier_landing(app, data):
    resp = login(app.test_client(), "dana@example.com")
    assert resp.headers["Location"].endswith("/dashboard/client")

    resp = login(app.test_client(), "dj@example.com")
    assert resp.headers["Location"].endswith("/dashboard/supplier")


def test_wrong_password_is_rejected(client, data):
    resp = login(client, "admin@example.com", password="nope")
    assert resp.status_code == 401
    assert b"Wrong email or password" in resp.data


def test_inactive_user_cannot_log_in(app, client, data):
    with app.app_context():
        make_user("gone@example.com", "client", is_active=False)
        db.session.commit()

    resp = login(client, "gone@example.com")
    assert resp.status_code == 403


def test_safe_next_redirect(client, data):
    resp = login(client, "admin@example.com", query_string={"next": "/events/"})
    assert resp.headers["Location"].endswith("/events/")


def test_external_next_is_ignored(client, data):
    resp = login(client, "admin@example.com", query_string={"next": "https://evil.example.com/"})
    assert resp.headers["Location"].endswith("/dashboard/admin")


def _approve(app, email, **form):
    admin = app.test_client()
    login(admin, "admin@example.com")
    with app.app_context():
        user_id = User.query.filter_by(email=email).one().id
    form.setdefault("role", "")
    form["is_active"] = "1"
    admin.post(f"/users/{user_id}/edit", data=form)


def test_registered_account_waits_for_approval(app, client, data):
    resp = client.post(
        "/auth/register",
        data={"email": "Dana2@Example.com", "password": PASSWORD, "full_name": "", "phone": ""},
    )
    assert resp.status_code == 302

    with app.app_context():
        user = User.query.filter_by(email="dana2@example.com").one()
        assert user.role is None
        assert user.is_active is False

    assert login(client, "dana2@example.com").status_code == 403

    _approve(app, "dana2@example.com")
    resp = login(client, "dana2@example.com")
    assert resp.headers["Location"].endswith("/dashboard/client")

    with app.app_context():
        assert User.query.filter_by(email="dana2@example.com").one().role == "client"


def test_registering_a_parents_phone_does_not_open_their_event(app, client, data):
    client.post(
        "/auth/register",
        data={"email": "stranger@evil.test", "password": PASSWORD, "phone": "0501234567"},
    )

    assert login(client, "stranger@evil.test").status_code == 403
    resp = client.get(f"/events/{data.event_id}")
    assert resp.status_code == 302
    assert b"Garden Hall" not in resp.data


def test_registering_a_supplier_email_grants_nothing_before_approval(app, client, data):
    client.post("/auth/register", data={"email": "photo@example.com", "password": PASSWORD})

    assert login(client, "photo@example.com").status_code == 403
    assert client.get("/dashboard/supplier").status_code == 302
    with app.app_context():
        assert User.query.filter_by(email="photo@example.com").one().role is None

    _approve(app, "photo@example.com")
    resp = login(client, "photo@example.com")
    assert resp.headers["Location"].endswith("/dashboard/supplier")


def test_register_rejects_short_password(app, client, data):
    client.post("/auth/register", data={"email": "short@example.com", "password": "123"})

    with app.app_context():
        assert User.query.filter_by(email="short@example.com").first() is None


def test_seed_admin_only_on_empty_database(app, client):
    resp = client.post("/auth/seed-admin", data={"email": "boss@example.com", "password": PASSWORD})
    assert resp.status_code == 302

    with app.app_context():
        boss = User.query.filter_by(email="boss@example.com").one()
        assert boss.role == "admin"
        assert AuditLog.query.filter_by(entity_type="User", entity_id=boss.id, action="CREATE").count() == 1

    client.post("/auth/seed-admin", data={"email": "second@example.com", "password": PASSWORD})
    with app.app_context():
        assert User.query.filter_by(email="second@example.com").first() is None


def test_logout(admin_client):
    resp = admin_client.post("/auth/logout")
    assert resp.status_code == 302

    resp = admin_client.get("/events/")
    assert resp.status_code == 302
    assert "/auth/login" in resp.headers["Location"]


def test_home_redirects(client, data):
    assert "/auth/login" in client.get("/").headers["Location"]

    login(client, "dana@example.com")
    assert client.get("/").headers["Location"].endswith("/dashboard/client")
