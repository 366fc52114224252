from datetime import date, datetime, timedelta

import pytest

from app.extensions import db
from app.functions import (
    FUNCTIONS,
    FunctionError,
    apply_event_status_rules,
    build_calendar_entry,
    check_pending_assignments,
    invoke,
    send_event_reminders,
    update_expired_events,
)
from app.models import Event, EventService, Notification, SupplierAssignment, User

from conftest import make_user


def _user(user_id):
    return db.session.get(User, user_id)


def test_every_operation_is_registered():
    assert {
        "syncUserIdentity",
        "updateExpiredEvents",
        "checkEventStatus",
        "generateQuote",
        "generateQuotePdf",
        "createBackup",
        "createGoogleSheetBackup",
        "listBackups",
        "restoreFromBackup",
        "notifySupplierAssignment",
        "updateSupplierStatus",
        "syncGoogleCalendar",
        "getGoogleOAuthUrl",
        "checkGoogleCalendarConnection",
    } <= set(FUNCTIONS)


def test_unknown_operation(data, ctx):
    with pytest.raises(FunctionError) as exc:
        invoke("doesNotExist", {}, _user(data.admin_id))
    assert exc.value.status == 404


def test_role_is_enforced(data, ctx):
    with pytest.raises(FunctionError) as exc:
        invoke("checkEventStatus", {"eventId": data.event_id}, _user(data.client_id))
    assert exc.value.status == 403

    with pytest.raises(FunctionError) as exc:
        invoke("generateQuote", {"eventId": data.event_id}, _user(data.supplier_user_id))
    assert exc.value.status == 403


def test_unclassified_user_may_only_sync_identity(data, ctx):
    user = make_user("new@example.com", None)
    db.session.commit()

    with pytest.raises(FunctionError) as exc:
        invoke("checkGoogleCalendarConnection", {}, user)
    assert exc.value.status == 403

    result = invoke("syncUserIdentity", {}, user)
    assert result["role"] == "client"


def test_sync_identity_fills_contact_from_event_parent(data, ctx):
    user = make_user("dana@example.org", None)
    event = db.session.get(Event, data.event_id)
    event.parents = event.parents + [{"name": "Dana Too", "email": "Dana@Example.org", "phone": "0509998877"}]
    db.session.commit()

    result = invoke("syncUserIdentity", {}, user)

    assert result["role"] == "client"
    assert result["updated"] is True
    assert user.full_name == "Dana Too"
    assert user.phone == "0509998877"


def test_sync_identity_links_supplier(data, ctx):
    user = make_user("photo@example.com", None)
    db.session.commit()

    result = invoke("syncUserIdentity", {}, user)

    assert result["role"] == "supplier"
    assert result["supplier_id"] == data.other_supplier_id


def test_admin_can_sync_another_user(data, ctx):
    result = invoke("syncUserIdentity", {"userId": data.supplier_user_id}, _user(data.admin_id))

    assert result["user_id"] == data.supplier_user_id
    assert result["role"] == "supplier"
    # supplier phone copied to the user
    assert _user(data.supplier_user_id).phone == "0521112222"


def test_update_expired_events(data, ctx):
    past_quote = Event(event_date=date(2020, 1, 1), status="quote", parents=[])
    past_confirmed = Event(event_date=date(2020, 1, 1), event_time="20:00", status="confirmed", parents=[])
    later_today = Event(event_date=date(2021, 1, 1), event_time="22:00", status="confirmed", parents=[])
    all_day = Event(event_date=date(2021, 1, 1), status="quote", parents=[])
    db.session.add_all([past_quote, past_confirmed, later_today, all_day])
    db.session.commit()

    result = update_expired_events({}, _user(data.admin_id), now=datetime(2021, 1, 1, 21, 0))

    assert result["cancelled"] == [past_quote.id]
    assert result["completed"] == [past_confirmed.id]
    assert result["updated_count"] == 2
    assert later_today.status == "confirmed"
    assert all_day.status == "quote"


def test_update_expired_events_without_user(data, ctx):
    db.session.add(Event(event_date=date(2020, 1, 1), status="in_progress", parents=[]))
    db.session.commit()

    result = invoke("updateExpiredEvents", {}, _user(data.admin_id))
    assert result["completed"]
    assert update_expired_events({}, None)["updated_count"] == 0


def test_supplier_confirmation_moves_event_to_in_progress(app, data, ctx):
    supplier_user = _user(data.supplier_user_id)

    result = invoke(
        "updateSupplierStatus",
        {"eventServiceId": data.item_id, "newStatus": "confirmed"},
        supplier_user,
    )

    assert result == {"success": True, "status": "confirmed", "eventStatus": "in_progress", "eventStatusChanged": True}
    assignment = SupplierAssignment.query.filter_by(event_service_id=data.item_id).one()
    assert assignment.status == "confirmed"

    notice = Notification.query.filter_by(template_type="supplier_status_changed").one()
    assert notice.user_id == data.admin_id
    assert notice.title == "DJ Beats answered: confirmed"

    result = invoke("updateSupplierStatus", {"eventServiceId": data.item_id, "newStatus": "rejected"}, supplier_user)
    assert result["eventStatus"] == "confirmed"
    assert result["eventStatusChanged"] is True


def test_supplier_status_validation(data, ctx):
    supplier_user = _user(data.supplier_user_id)

    with pytest.raises(FunctionError) as exc:
        invoke("updateSupplierStatus", {"eventServiceId": data.item_id, "newStatus": "maybe"}, supplier_user)
    assert exc.value.status == 400

    with pytest.raises(FunctionError) as exc:
        invoke("updateSupplierStatus", {"eventServiceId": 9999, "newStatus": "confirmed"}, supplier_user)
    assert exc.value.status == 404

    other = make_user("photo@example.com", "supplier")
    db.session.commit()
    with pytest.raises(FunctionError) as exc:
        invoke("updateSupplierStatus", {"eventServiceId": data.item_id, "newStatus": "confirmed"}, other)
    assert exc.value.status == 403


def test_same_status_does_not_notify(data, ctx):
    invoke(
        "updateSupplierStatus",
        {"eventServiceId": data.item_id, "newStatus": "pending"},
        _user(data.supplier_user_id),
    )
    assert Notification.query.count() == 0


def test_check_event_status(data, ctx):
    admin = _user(data.admin_id)
    item = db.session.get(EventService, data.item_id)
    item.min_suppliers = 0
    db.session.commit()

    assert invoke("checkEventStatus", {"eventId": data.event_id}, admin) == {
        "success": True,
        "statusChanged": True,
        "newStatus": "in_progress",
    }
    assert invoke("checkEventStatus", {"eventId": data.event_id}, admin)["statusChanged"] is False


def test_check_event_status_ignores_quotes(data, ctx):
    result = invoke("checkEventStatus", {"eventId": data.other_event_id}, _user(data.admin_id))
    assert result == {"success": True, "statusChanged": False, "newStatus": "quote"}


def test_event_is_staffed_only_when_every_assignee_confirmed(data, ctx):
    event = db.session.get(Event, data.event_id)
    item = db.session.get(EventService, data.item_id)
    item.min_suppliers = 1
    item.assignments[0].status = "confirmed"
    item.assignments.append(SupplierAssignment(supplier_id=data.other_supplier_id, status="rejected"))
    db.session.commit()

    # one confirmed is enough by count, but the rejected assignee still blocks
    assert apply_event_status_rules(event) is None
    assert event.status == "confirmed"

    item.assignments[1].status = "pending"
    assert apply_event_status_rules(event) is None

    item.assignments[1].status = "confirmed"
    assert apply_event_status_rules(event) == "in_progress"

    item.min_suppliers = 3
    assert apply_event_status_rules(event) == "confirmed"


def test_event_reminders_go_to_confirmed_suppliers_and_admins_once(app, data, ctx):
    admin = _user(data.admin_id)
    event = db.session.get(Event, data.event_id)
    item = db.session.get(EventService, data.item_id)
    item.assignments[0].status = "confirmed"
    db.session.commit()

    far_away = invoke("sendEventReminders", {}, admin)
    assert far_away == {"success": True, "sent": 0, "skipped": 0}

    soon = event.starts_at() - timedelta(hours=12)
    result = send_event_reminders({}, admin, now=soon)
    assert result == {"success": True, "sent": 2, "skipped": 0}

    reminders = Notification.query.filter_by(template_type="event_reminder", event_id=event.id).all()
    assert {n.user_id for n in reminders} == {data.admin_id, data.supplier_user_id}
    assert reminders[0].title == "Reminder: Noa's Bat Mitzvah"
    pushed = [p["title"] for p in app.extensions["push_provider"].sent]
    assert pushed.count("Reminder: Noa's Bat Mitzvah") == 2

    # second run the same day: nobody is reminded twice
    assert send_event_reminders({}, admin, now=soon + timedelta(hours=1)) == {
        "success": True,
        "sent": 0,
        "skipped": 2,
    }


def test_event_reminders_skip_unconfirmed_suppliers_and_cancelled_events(data, ctx):
    admin = _user(data.admin_id)
    event = db.session.get(Event, data.event_id)
    soon = event.starts_at() - timedelta(hours=2)

    # DJ Beats is still pending: only the admin hears about it
    assert send_event_reminders({}, admin, now=soon)["sent"] == 1

    event.status = "cancelled"
    db.session.commit()
    Notification.query.delete()
    db.session.commit()
    assert send_event_reminders({}, admin, now=soon)["sent"] == 0


def test_pending_assignment_reminders(app, data, ctx):
    admin = _user(data.admin_id)
    assignment = SupplierAssignment.query.filter_by(event_service_id=data.item_id).one()

    # a fresh assignment gets time to be answered
    assert invoke("checkPendingAssignments", {}, admin) == {"success": True, "sent": 0, "skipped": 0}

    assignment.created_at = datetime.utcnow() - timedelta(hours=30)
    db.session.commit()

    assert check_pending_assignments({}, admin)["sent"] == 1
    reminder = Notification.query.filter_by(template_type="supplier_pending_reminder").one()
    assert reminder.user_id == data.supplier_user_id
    assert reminder.event_service_id == data.item_id
    assert reminder.title == "Waiting for your answer: DJ"
    assert reminder.link == "/dashboard/supplier"

    # within the interval: skipped
    assert check_pending_assignments({}, admin) == {"success": True, "sent": 0, "skipped": 1}

    # interval passed: reminded again, until the cap is reached
    app.config["MAX_PENDING_REMINDERS"] = 2
    reminder.created_at = datetime.utcnow() - timedelta(hours=25)
    db.session.commit()
    assert check_pending_assignments({}, admin)["sent"] == 1

    Notification.query.update({Notification.created_at: datetime.utcnow() - timedelta(hours=48)})
    db.session.commit()
    assert check_pending_assignments({}, admin) == {"success": True, "sent": 0, "skipped": 1}

    # answered assignments are left alone
    Notification.query.delete()
    assignment.status = "confirmed"
    db.session.commit()
    assert check_pending_assignments({}, admin)["sent"] == 0


def test_reminder_operations_are_admin_only(data, ctx):
    for name in ("sendEventReminders", "checkPendingAssignments"):
        with pytest.raises(FunctionError) as exc:
            invoke(name, {}, _user(data.supplier_user_id))
        assert exc.value.status == 403


def test_notify_supplier_assignment_without_accounts(data, ctx):
    result = invoke(
        "notifySupplierAssignment",
        {"supplierIds": [data.other_supplier_id], "eventId": data.event_id, "serviceName": "Photos"},
        _user(data.admin_id),
    )
    assert result["notified"] == 0

    with pytest.raises(FunctionError) as exc:
        invoke("notifySupplierAssignment", {"eventId": data.event_id}, _user(data.admin_id))
    assert exc.value.status == 400


def test_generate_quote_for_client(data, ctx):
    result = invoke("generateQuote", {"eventId": data.event_id}, _user(data.client_id))

    assert "Noa" in result["html"]
    assert "1,180.00" in result["text"]

    with pytest.raises(FunctionError) as exc:
        invoke("generateQuote", {"eventId": data.other_event_id}, _user(data.client_id))
    assert exc.value.status == 403


def test_quote_intro_from_concept_template(data, ctx):
    from app.models import QuoteTemplate

    db.session.add(
        QuoteTemplate(template_type="concept_intro", identifier="garden", content="<p>Welcome {{family_name}} family</p>")
    )
    db.session.commit()

    html = invoke("generateQuote", {"eventId": data.event_id}, _user(data.admin_id))["html"]
    assert "Welcome Levi family" in html

    html = invoke("generateQuote", {"eventId": data.event_id, "includeIntro": False}, _user(data.admin_id))["html"]
    assert "Welcome Levi family" not in html


def test_generate_quote_pdf(data, ctx):
    result = invoke("generateQuotePdf", {"eventId": data.event_id}, _user(data.admin_id))

    assert result["pdf"].startswith(b"%PDF")
    assert result["filename"].startswith(f"quote-{data.event_id}-")


def test_calendar_entry_shapes(data, ctx):
    event = db.session.get(Event, data.event_id)
    entry = build_calendar_entry(event)
    start = datetime.fromisoformat(entry["start"]["dateTime"])
    end = datetime.fromisoformat(entry["end"]["dateTime"])
    assert end - start == timedelta(hours=4)
    assert start.strftime("%H:%M") == "19:30"

    event.event_time = None
    entry = build_calendar_entry(event)
    assert entry["start"] == {"date": event.event_date.isoformat()}
    assert entry["end"] == {"date": (event.event_date + timedelta(days=1)).isoformat()}


def test_sync_calendar_stores_id_for_admin_only(app, data, ctx):
    client_result = invoke("syncGoogleCalendar", {"eventId": data.event_id}, _user(data.client_id))
    assert client_result["calendarEventId"] == "cal-1"
    assert db.session.get(Event, data.event_id).calendar_event_id is None

    admin_result = invoke("syncGoogleCalendar", {"eventId": data.event_id}, _user(data.admin_id))
    assert db.session.get(Event, data.event_id).calendar_event_id == admin_result["calendarEventId"]

    again = invoke("syncGoogleCalendar", {"eventId": data.event_id}, _user(data.admin_id))
    assert again["calendarEventId"] == admin_result["calendarEventId"]


def test_sync_calendar_not_connected(app, data, ctx):
    app.extensions["calendar_provider"].connected = False

    with pytest.raises(FunctionError) as exc:
        invoke("syncGoogleCalendar", {"eventId": data.event_id}, _user(data.admin_id))
    assert exc.value.status == 400

    assert invoke("checkGoogleCalendarConnection", {}, _user(data.admin_id)) == {"connected": False}


def test_check_calendar_connection_updates_user(data, ctx):
    admin = _user(data.admin_id)

    assert invoke("checkGoogleCalendarConnection", {}, admin) == {"connected": True}
    assert admin.calendar_connected is True


def test_oauth_url(app, data, ctx):
    with pytest.raises(FunctionError) as exc:
        invoke("getGoogleOAuthUrl", {}, _user(data.admin_id))
    assert exc.value.status == 500

    app.config["GOOGLE_CLIENT_ID"] = "client-123"
    url = invoke("getGoogleOAuthUrl", {}, _user(data.admin_id))["authUrl"]
    assert "client_id=client-123" in url
    assert f"state={data.admin_id}" in url
