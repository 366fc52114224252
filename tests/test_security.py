from app.extensions import db
from app.models import Event


def test_anonymous_is_sent_to_login(client, data):
    resp = client.get("/events/")
    assert resp.status_code == 302
    assert "/auth/login" in resp.headers["Location"]


def test_admin_pages_are_forbidden_for_clients(client_client):
    for url in ("/events/", "/catalog/services", "/suppliers/", "/users/", "/settings/", "/settings/backups"):
        assert client_client.get(url).status_code == 403, url


def test_admin_dashboard_forbidden_for_supplier(supplier_client):
    assert supplier_client.get("/dashboard/admin").status_code == 403


def test_readonly_guard_blocks_non_admin_mutations(supplier_client, data):
    resp = supplier_client.post("/events/new", data={"event_date": "2030-01-01"})
    assert resp.status_code == 403

    resp = supplier_client.post(f"/events/{data.event_id}/payments", data={"amount": "10"})
    assert resp.status_code == 403


def test_client_sees_only_own_events(client_client, data):
    assert client_client.get(f"/events/{data.event_id}").status_code == 200
    assert client_client.get(f"/events/{data.other_event_id}").status_code == 403


def test_client_matched_by_phone(app, client_client, data):
    with app.app_context():
        event = db.session.get(Event, data.other_event_id)
        event.parents = [{"name": "Dana", "email": "", "phone": "+972 50 123 4567"}]
        db.session.commit()

    assert client_client.get(f"/events/{data.other_event_id}").status_code == 200


def test_supplier_sees_assigned_events_without_financials(supplier_client, data):
    resp = supplier_client.get(f"/events/{data.event_id}")
    assert resp.status_code == 200
    assert b"DJ" in resp.data
    assert b"Financial summary" not in resp.data

    assert supplier_client.get(f"/events/{data.other_event_id}").status_code == 403


def test_supplier_cannot_get_quotes(supplier_client, data):
    assert supplier_client.get(f"/events/{data.event_id}/quote").status_code == 403


def test_unknown_event_is_404(admin_client):
    assert admin_client.get("/events/9999").status_code == 404


def test_dashboards_render(app, data):
    from conftest import login

    for email, url in (
        ("admin@example.com", "/dashboard/admin"),
        ("dana@example.com", "/dashboard/client"),
        ("dj@example.com", "/dashboard/supplier"),
    ):
        client = app.test_client()
        login(client, email)
        resp = client.get(url)
        assert resp.status_code == 200, url

    client = app.test_client()
    login(client, "dana@example.com")
    assert b"Noa&#39;s Bat Mitzvah" in client.get("/dashboard/client").data
