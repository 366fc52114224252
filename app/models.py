"""
Event Planning Office – Domain Models

Entities:
- User (admin / client / supplier login)
- Supplier, Service, Package (catalog & vendors)
- Event, EventService (line items), SupplierAssignment, Payment
- AppSettings, QuoteTemplate, NotificationTemplate, Notification
- AuditLog

Line item grouping:
- Current packages: a main item (is_package_main_item) carries the bundle price,
  its children point to it via parent_package_event_service_id.
- Legacy packages: members share package_id and carry package_price.

Supplier assignment is a real table (one row per line item / supplier pair with its
own status and notes) instead of JSON-encoded id/status/note strings.

IMPORTANT:
- UI is never trusted. Any selection must be validated server-side in routes.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db
from .financials import EventFinancials, calculate_event_financials


ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"
ROLE_SUPPLIER = "supplier"
ROLES = (ROLE_ADMIN, ROLE_CLIENT, ROLE_SUPPLIER)

EVENT_STATUSES = ("quote", "confirmed", "in_progress", "completed", "cancelled")
EVENT_TYPES = ("wedding", "bar_mitzvah", "bat_mitzvah", "other")
ASSIGNMENT_STATUSES = ("pending", "confirmed", "rejected")
PAYMENT_METHODS = ("cash", "bank_transfer", "check", "credit_card", "other")


def normalize_phone(phone: str | None) -> str:
    """
    Normalize a local/international phone number for matching:
    - keep digits only
    - +972 / 972 prefix -> leading 0
    - 9-digit mobile without leading 0 -> add it
    """
    if not phone:
        return ""
    digits = "".join(ch for ch in str(phone) if ch.isdigit())
    if digits.startswith("972"):
        digits = "0" + digits[3:]
    if len(digits) == 9 and digits.startswith("5"):
        digits = "0" + digits
    return digits


def _norm_email(email: str | None) -> str:
    return (email or "").strip().lower()


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user. Role decides the landing page and permissions."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    full_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)

    # None until classified (see functions.sync_user_identity)
    role = db.Column(db.String(20), nullable=True, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # template_type -> bool (missing key means enabled)
    notification_preferences = db.Column(db.JSON, nullable=True, default=dict)

    calendar_connected = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_client(self) -> bool:
        return self.role == ROLE_CLIENT

    @property
    def is_supplier(self) -> bool:
        return self.role == ROLE_SUPPLIER

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def wants_notification(self, template_type: str | None) -> bool:
        """Preferences default to enabled."""
        if not template_type:
            return True
        prefs = self.notification_preferences or {}
        pref = prefs.get(template_type)
        if isinstance(pref, dict):
            return pref.get("enabled") is not False
        return pref is not False

    def matched_supplier(self) -> "Supplier | None":
        """Supplier whose contact emails (or phone) match this user."""
        email = _norm_email(self.email)
        phone = normalize_phone(self.phone)
        for supplier in Supplier.query.filter_by(is_active=True).order_by(Supplier.id.asc()).all():
            if supplier.matches(email=email, phone=phone):
                return supplier
        return None

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------------------------------------------------------------
# Catalog & vendors
# ---------------------------------------------------------------------
class Supplier(db.Model):
    __tablename__ = "suppliers"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    contact_person = db.Column(db.String(255))
    phone = db.Column(db.String(50), index=True)
    contact_emails = db.Column(db.JSON, nullable=False, default=list)
    category = db.Column(db.String(120), index=True)
    notes = db.Column(db.Text)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    assignments = db.relationship(
        "SupplierAssignment",
        back_populates="supplier",
        cascade="all, delete-orphan",
    )

    def matches(self, email: str | None = None, phone: str | None = None) -> bool:
        email = _norm_email(email)
        if email and any(_norm_email(e) == email for e in (self.contact_emails or [])):
            return True
        phone = normalize_phone(phone)
        return bool(phone and normalize_phone(self.phone) == phone)

    def __repr__(self):
        return f"<Supplier {self.name}>"


package_services = db.Table(
    "package_services",
    db.Column("package_id", db.Integer, db.ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True),
    db.Column("service_id", db.Integer, db.ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
)


class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text)
    category = db.Column(db.String(120), index=True)

    default_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    includes_vat = db.Column(db.Boolean, default=False, nullable=False)
    default_min_suppliers = db.Column(db.Integer, default=0, nullable=False)

    sort_order = db.Column(db.Integer, default=0, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Service {self.name}>"


class Package(db.Model):
    __tablename__ = "packages"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    includes_vat = db.Column(db.Boolean, default=False, nullable=False)

    sort_order = db.Column(db.Integer, default=0, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    services = db.relationship(
        "Service",
        secondary=package_services,
        order_by="Service.sort_order",
        backref=db.backref("packages", lazy=True),
    )

    def __repr__(self):
        return f"<Package {self.name}>"


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------
class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)

    event_name = db.Column(db.String(255), nullable=True)
    event_type = db.Column(db.String(40), nullable=True, index=True)

    event_date = db.Column(db.Date, nullable=False, index=True)
    event_time = db.Column(db.String(5), nullable=True)  # "HH:MM"

    location = db.Column(db.String(255))
    city = db.Column(db.String(120), index=True)
    concept = db.Column(db.String(120), index=True)

    family_name = db.Column(db.String(255), index=True)
    child_name = db.Column(db.String(255))
    guest_count = db.Column(db.Integer)

    # [{"name": ..., "email": ..., "phone": ...}]
    parents = db.Column(db.JSON, nullable=False, default=list)

    notes = db.Column(db.Text)

    status = db.Column(db.String(20), nullable=False, default="quote", index=True)

    all_inclusive = db.Column(db.Boolean, default=False, nullable=False)
    all_inclusive_price = db.Column(db.Numeric(12, 2))
    all_inclusive_includes_vat = db.Column(db.Boolean, default=True, nullable=False)

    discount_amount = db.Column(db.Numeric(12, 2))
    discount_before_vat = db.Column(db.Boolean, default=False, nullable=False)

    total_override = db.Column(db.Numeric(12, 2))
    total_override_includes_vat = db.Column(db.Boolean, default=True, nullable=False)

    calendar_event_id = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    services = db.relationship(
        "EventService",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventService.order_index",
    )

    payments = db.relationship(
        "Payment",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="Payment.payment_date",
    )

    @property
    def display_name(self) -> str:
        if self.event_name:
            return self.event_name
        if self.family_name:
            return f"{self.family_name} family"
        return f"Event #{self.id}"

    @property
    def top_level_services(self) -> list["EventService"]:
        """Line items excluding package children (rendered under their main item)."""
        return [s for s in self.services if not s.parent_package_event_service_id]

    def _parsed_time(self) -> time | None:
        if not self.event_time:
            return None
        try:
            hours, minutes = (int(p) for p in self.event_time.split(":")[:2])
            return time(hours, minutes)
        except ValueError:
            return None

    def starts_at(self) -> datetime:
        """Event date + time, or the start of the day when no time was given."""
        return datetime.combine(self.event_date, self._parsed_time() or time.min)

    def ends_at(self) -> datetime:
        """Event date + time, or end of day when no time was given."""
        return datetime.combine(self.event_date, self._parsed_time() or time.max)

    def is_past(self, now: datetime | None = None) -> bool:
        return self.ends_at() < (now or datetime.now())

    def matches_client(self, email: str | None, phone: str | None = None) -> bool:
        """True if one of the event parents is this client (email or phone)."""
        email = _norm_email(email)
        phone = normalize_phone(phone)
        for parent in self.parents or []:
            if not isinstance(parent, dict):
                continue
            if email and _norm_email(parent.get("email")) == email:
                return True
            if phone and normalize_phone(parent.get("phone")) == phone:
                return True
        return False

    def has_supplier(self, supplier_id: int) -> bool:
        return any(item.assignment_for(supplier_id) for item in self.services)

    def financials(self, vat_rate) -> EventFinancials:
        return calculate_event_financials(self, self.services, self.payments, vat_rate)

    def __repr__(self):
        return f"<Event {self.id} {self.event_date}>"


class EventService(db.Model):
    """Line item: one service instance attached to an event."""

    __tablename__ = "event_services"

    id = db.Column(db.Integer, primary_key=True)

    event_id = db.Column(
        db.Integer,
        db.ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id = db.Column(
        db.Integer,
        db.ForeignKey("services.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    custom_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    includes_vat = db.Column(db.Boolean, default=False, nullable=False)

    notes = db.Column(db.Text)
    order_index = db.Column(db.Integer, default=0, nullable=False, index=True)

    # Overrides Service.default_min_suppliers when set
    min_suppliers = db.Column(db.Integer, nullable=True)

    # {"address": ..., "time": ..., "contact": ...}
    pickup_point = db.Column(db.JSON, nullable=True)

    # Legacy package grouping
    package_id = db.Column(
        db.Integer,
        db.ForeignKey("packages.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    package_price = db.Column(db.Numeric(12, 2))
    package_includes_vat = db.Column(db.Boolean, default=False, nullable=False)

    # Current package grouping
    parent_package_event_service_id = db.Column(
        db.Integer,
        db.ForeignKey("event_services.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    is_package_main_item = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    event = db.relationship("Event", back_populates="services")
    service = db.relationship("Service")
    package = db.relationship("Package")

    package_children = db.relationship(
        "EventService",
        backref=db.backref("package_parent", remote_side=[id]),
        cascade="all, delete-orphan",
        order_by="EventService.order_index",
    )

    assignments = db.relationship(
        "SupplierAssignment",
        back_populates="event_service",
        cascade="all, delete-orphan",
        order_by="SupplierAssignment.id",
    )

    @property
    def display_name(self) -> str:
        if self.is_package_main_item and self.package:
            return self.package.name
        if self.service:
            return self.service.name
        if self.package:
            return self.package.name
        return f"Item #{self.id}"

    @property
    def required_suppliers(self) -> int:
        if self.min_suppliers is not None:
            return self.min_suppliers
        if self.service and self.service.default_min_suppliers is not None:
            return self.service.default_min_suppliers
        return 0

    @property
    def supplier_ids(self) -> set[int]:
        return {a.supplier_id for a in self.assignments}

    @property
    def confirmed_count(self) -> int:
        return sum(1 for a in self.assignments if a.status == "confirmed")

    def is_staffed(self) -> bool:
        """Enough suppliers assigned and every one of them has confirmed."""
        required = self.required_suppliers
        if required <= 0:
            return True
        return len(self.assignments) >= required and all(
            a.status == "confirmed" for a in self.assignments
        )

    def assignment_for(self, supplier_id: int) -> "SupplierAssignment | None":
        for assignment in self.assignments:
            if assignment.supplier_id == supplier_id:
                return assignment
        return None

    def __repr__(self):
        return f"<EventService {self.id} event={self.event_id}>"


class SupplierAssignment(db.Model):
    __tablename__ = "supplier_assignments"

    id = db.Column(db.Integer, primary_key=True)

    event_service_id = db.Column(
        db.Integer,
        db.ForeignKey("event_services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey("suppliers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    event_service = db.relationship("EventService", back_populates="assignments")
    supplier = db.relationship("Supplier", back_populates="assignments")

    __table_args__ = (
        db.UniqueConstraint("event_service_id", "supplier_id", name="uq_assignment_item_supplier"),
    )


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)

    event_id = db.Column(
        db.Integer,
        db.ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False, default=date.today)
    payment_method = db.Column(db.String(40), nullable=True)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    event = db.relationship("Event", back_populates="payments")


# ---------------------------------------------------------------------
# Settings & templates
# ---------------------------------------------------------------------
class AppSettings(db.Model):
    """Key/value settings row (vat_rate, company_name, concept_defaults, ...)."""

    __tablename__ = "app_settings"

    id = db.Column(db.Integer, primary_key=True)
    setting_key = db.Column(db.String(120), unique=True, nullable=False, index=True)
    setting_value = db.Column(db.Text, nullable=True)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class QuoteTemplate(db.Model):
    """
    Quote building blocks:
    - concept_intro: intro text for events of a given concept (identifier = concept)
    - payment_terms: closing terms block
    """

    __tablename__ = "quote_templates"

    id = db.Column(db.Integer, primary_key=True)

    template_type = db.Column(db.String(40), nullable=False, index=True)
    identifier = db.Column(db.String(120), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=True)
    content = db.Column(db.Text, nullable=False, default="")

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class NotificationTemplate(db.Model):
    __tablename__ = "notification_templates"

    id = db.Column(db.Integer, primary_key=True)

    template_type = db.Column(db.String(80), unique=True, nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=False)
    link_page = db.Column(db.String(120), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Notification(db.Model):
    """In-app inbox entry."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    template_type = db.Column(db.String(80), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255))

    # What a reminder is about; scheduled reminders use these to skip repeats
    event_id = db.Column(
        db.Integer,
        db.ForeignKey("events.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    event_service_id = db.Column(
        db.Integer,
        db.ForeignKey("event_services.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship(
        "User",
        backref=db.backref("notifications", lazy="dynamic", cascade="all, delete-orphan"),
    )


class AuditLog(db.Model):
    """Audit trail of mutations."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    email_snapshot = db.Column(db.String(255), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))


# Entities included in backups, in dependency order (parents first).
BACKUP_MODELS = (
    Supplier,
    Service,
    Package,
    Event,
    EventService,
    SupplierAssignment,
    Payment,
    AppSettings,
    QuoteTemplate,
    NotificationTemplate,
)


def upcoming_cutoff(days: int = 30) -> date:
    return date.today() + timedelta(days=days)
