"""
Shared fixtures.

- `app` builds the application on an in-memory SQLite database with recording
  calendar/push providers and temp upload/backup folders.
- `data` seeds one admin, one client, one supplier (with its login user), a small
  catalog and one confirmed event that belongs to the client.
- `ctx` pushes a request context for tests that call services directly.

Page tests log in through /auth/login with a fresh test client.
"""

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from app.extensions import db
from app.integrations import RecordingCalendarProvider, RecordingPushProvider
from app.models import (
    Event,
    EventService,
    Package,
    Service,
    Supplier,
    SupplierAssignment,
    User,
)
from app.seed import seed_defaults

PASSWORD = "secret-pass"


@pytest.fixture
def app(tmp_path):
    app = create_app("config.TestConfig")
    app.config.update(
        BACKUP_DIR=str(tmp_path / "backups"),
        UPLOAD_FOLDER=str(tmp_path / "uploads"),
    )
    app.extensions["calendar_provider"] = RecordingCalendarProvider()
    app.extensions["push_provider"] = RecordingPushProvider()

    with app.app_context():
        db.create_all()
        seed_defaults()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    with app.test_request_context():
        yield


def make_user(email, role, *, phone=None, full_name=None, is_active=True):
    user = User(email=email, role=role, phone=phone, full_name=full_name, is_active=is_active)
    user.set_password(PASSWORD)
    db.session.add(user)
    return user


@pytest.fixture
def data(app):
    """Seed the standard scenario and return the ids."""
    with app.app_context():
        admin = make_user("admin@example.com", "admin", full_name="Office Admin")
        client_user = make_user("dana@example.com", "client", phone="050-1234567")
        supplier_user = make_user("dj@example.com", "supplier")

        supplier = Supplier(name="DJ Beats", contact_emails=["dj@example.com"], phone="0521112222", category="music")
        other_supplier = Supplier(name="Flash Photo", contact_emails=["photo@example.com"], category="photo")

        dj = Service(name="DJ", default_price=Decimal("1000"), default_min_suppliers=1, sort_order=0)
        photo = Service(name="Photographer", default_price=Decimal("500"), sort_order=1)
        package = Package(name="Party", price=Decimal("2000"), services=[dj, photo])

        event = Event(
            event_name="Noa's Bat Mitzvah",
            event_type="bat_mitzvah",
            event_date=date.today() + timedelta(days=20),
            event_time="19:30",
            location="Garden Hall",
            city="Haifa",
            concept="garden",
            family_name="Levi",
            child_name="Noa",
            parents=[{"name": "Dana Levi", "email": "dana@example.com", "phone": "0501234567"}],
            status="confirmed",
        )
        item = EventService(event=event, service=dj, custom_price=Decimal("1000"), quantity=1, order_index=0)
        item.assignments.append(SupplierAssignment(supplier=supplier, status="pending"))

        other_event = Event(
            event_name="Other family",
            event_date=date.today() + timedelta(days=40),
            parents=[{"name": "Someone", "email": "someone@example.com"}],
            status="quote",
        )

        db.session.add_all([supplier, other_supplier, dj, photo, package, event, item, other_event])
        db.session.commit()

        return SimpleNamespace(
            admin_id=admin.id,
            client_id=client_user.id,
            supplier_user_id=supplier_user.id,
            supplier_id=supplier.id,
            other_supplier_id=other_supplier.id,
            dj_id=dj.id,
            photo_id=photo.id,
            package_id=package.id,
            event_id=event.id,
            item_id=item.id,
            other_event_id=other_event.id,
        )


def login(client, email, password=PASSWORD, **kwargs):
    return client.post("/auth/login", data={"email": email, "password": password}, **kwargs)


@pytest.fixture
def admin_client(client, data):
    login(client, "admin@example.com")
    return client


@pytest.fixture
def client_client(client, data):
    login(client, "dana@example.com")
    return client


@pytest.fixture
def supplier_client(client, data):
    login(client, "dj@example.com")
    return client
