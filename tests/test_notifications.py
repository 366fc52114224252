from app.extensions import db
from app.models import Notification, NotificationTemplate, User
from app.notifications import create_notification, mark_all_read, notify_admins, unread_count
from app.utils import replace_placeholders


def test_replace_placeholders_keeps_unknown_keys():
    text = replace_placeholders("Hi {{ name }}, see {{link}} on {{missing}}", {"name": "Dana", "link": "/x"})
    assert text == "Hi Dana, see /x on {{missing}}"
    assert replace_placeholders(None, {"a": 1}) == ""


def test_notification_from_template(app, data, ctx):
    user = db.session.get(User, data.client_id)

    notification = create_notification(
        user,
        "event_reminder",
        {"event_id": data.event_id, "event_name": "Noa", "event_date": "01.01.2030"},
    )
    db.session.commit()

    assert notification.title == "Reminder: Noa"
    # location was not provided and stays as a placeholder
    assert notification.message == "Noa takes place on 01.01.2030 at {{location}}."
    assert notification.link == f"/events/{data.event_id}"

    sent = app.extensions["push_provider"].sent[-1]
    assert sent["user_ids"] == [user.id]
    assert sent["title"] == "Reminder: Noa"


def test_push_waits_for_commit(app, data, ctx):
    user = db.session.get(User, data.client_id)
    pushed = app.extensions["push_provider"].sent
    payload = {"event_id": data.event_id, "event_name": "Noa", "event_date": "01.01.2030"}

    create_notification(user, "event_reminder", payload)
    assert pushed == []

    db.session.rollback()
    assert pushed == []
    assert Notification.query.count() == 0

    # a later unrelated commit must not deliver the rolled back push
    db.session.commit()
    assert pushed == []

    create_notification(user, "event_reminder", payload)
    db.session.commit()
    assert [p["title"] for p in pushed] == ["Reminder: Noa"]


def test_disabled_preference_suppresses_notification(app, data, ctx):
    user = db.session.get(User, data.client_id)
    user.notification_preferences = {"event_reminder": False}
    db.session.commit()

    assert create_notification(user, "event_reminder", {"event_name": "Noa"}) is None
    assert app.extensions["push_provider"].sent == []


def test_inactive_template_sends_nothing_without_text(data, ctx):
    template = NotificationTemplate.query.filter_by(template_type="event_reminder").one()
    template.is_active = False
    db.session.commit()

    user = db.session.get(User, data.client_id)
    assert create_notification(user, "event_reminder", {}) is None
    assert create_notification(user, "event_reminder", {}, title="Hello", message="Plain text") is not None


def test_notify_admins_and_mark_read(data, ctx):
    created = notify_admins("supplier_status_changed", {"supplier_name": "DJ Beats", "status": "confirmed"})
    db.session.commit()

    admin = db.session.get(User, data.admin_id)
    assert [n.user_id for n in created] == [admin.id]
    assert unread_count(admin) == 1

    assert mark_all_read(admin) == 1
    db.session.commit()
    assert unread_count(admin) == 0


def test_preferences_page_for_supplier(app, supplier_client, data):
    assert supplier_client.get("/settings/my-notifications").status_code == 200

    resp = supplier_client.post("/settings/my-notifications", data={"enabled": ["payment_received"]})
    assert resp.status_code == 302

    with app.app_context():
        prefs = db.session.get(User, data.supplier_user_id).notification_preferences
        assert prefs["payment_received"] is True
        assert prefs["supplier_assignment"] is False


def test_inbox_and_mark_read_pages(app, client_client, data):
    with app.test_request_context():
        create_notification(db.session.get(User, data.client_id), None, title="Hello", message="World")
        db.session.commit()

    resp = client_client.get("/settings/notifications")
    assert resp.status_code == 200
    assert b"Hello" in resp.data

    client_client.post("/settings/notifications/mark-read")
    with app.app_context():
        assert Notification.query.filter_by(is_read=False).count() == 0


def test_supplier_responds_from_dashboard(app, supplier_client, data):
    resp = supplier_client.get("/dashboard/supplier")
    assert b"DJ" in resp.data

    resp = supplier_client.post(f"/dashboard/supplier/respond/{data.item_id}", data={"status": "confirmed"})
    assert resp.status_code == 302

    with app.app_context():
        from app.models import SupplierAssignment

        assert SupplierAssignment.query.one().status == "confirmed"
        assert Notification.query.filter_by(user_id=data.admin_id).count() == 1
