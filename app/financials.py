"""
app/financials.py

Event financial calculation (pre-VAT total, VAT, discount, final total, paid, balance).

This is the one calculation every screen shares (admin event page, client dashboard,
supplier-free quotes, CSV export). It is a pure function over the event, its line items
and its payments:

- Records may be SQLAlchemy model instances or plain mappings (JSON rows, backups, tests).
- Arithmetic is Decimal end-to-end; outputs are quantized to cents (ROUND_HALF_UP).
- Garbage numeric input (None, "", "abc") counts as zero.

Pricing precedence:
1) all_inclusive (with a positive price)
2) total_override (non-zero)
3) line items (package main items, legacy package groups, standalone items)

Discount policy (single, explicit):
- discount_before_vat -> subtracted from the pre-VAT base, VAT computed on the remainder.
- otherwise          -> subtracted from the VAT-inclusive total.
Both sides are clamped at zero. The same policy applies to all three pricing paths.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

ZERO = Decimal("0")
CENT = Decimal("0.01")

# 18% unless AppSettings says otherwise
DEFAULT_VAT_RATE = Decimal("0.18")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _to_decimal(value: Any) -> Decimal:
    """Convert Numeric/str/None to Decimal safely (invalid -> 0)."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    raw = str(value).strip()
    if raw == "":
        return ZERO
    try:
        result = Decimal(raw)
    except (InvalidOperation, ValueError):
        return ZERO
    return result if result.is_finite() else ZERO


def _money(x: Decimal) -> Decimal:
    return x.quantize(CENT, rounding=ROUND_HALF_UP)


def _flag(value: Any) -> bool:
    """Truthiness that also understands the string booleans found in imported data."""
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    return bool(value)


def _field(record: Any, name: str, default: Any = None) -> Any:
    """Read a field from a model instance or a mapping."""
    if record is None:
        return default
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def percent_to_fraction(percent: Any) -> Decimal:
    """
    Convert a value that is ALWAYS a percent to a fraction:
      18   => 0.18
      1    => 0.01
      0.5  => 0.005

    AppSettings.vat_rate is stored this way. Use this for it, never
    normalize_vat_rate(), which would read 1 as 100%.
    None/blank/negative => DEFAULT_VAT_RATE.
    """
    if percent is None or (isinstance(percent, str) and not percent.strip()):
        return DEFAULT_VAT_RATE
    value = _to_decimal(percent)
    if value < ZERO:
        return DEFAULT_VAT_RATE
    return value / Decimal("100")


def normalize_vat_rate(rate: Any) -> Decimal:
    """
    Normalize a VAT rate passed by a caller that may send either form:
    - 18   => 0.18
    - 0.18 => 0.18
    - None/invalid => DEFAULT_VAT_RATE
    """
    if rate is None or (isinstance(rate, str) and not rate.strip()):
        return DEFAULT_VAT_RATE
    value = _to_decimal(rate)
    if value < ZERO:
        return DEFAULT_VAT_RATE
    if value > Decimal("1"):
        return value / Decimal("100")
    return value


def _pre_vat(amount: Decimal, includes_vat: bool, rate: Decimal) -> Decimal:
    """VAT normalization: strip VAT from a VAT-inclusive amount."""
    if includes_vat:
        return amount / (Decimal("1") + rate)
    return amount


# ---------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class EventFinancials:
    total_without_vat: Decimal = ZERO
    vat_amount: Decimal = ZERO
    total_with_vat: Decimal = ZERO
    discount_amount: Decimal = ZERO
    final_total: Decimal = ZERO
    total_paid: Decimal = ZERO
    balance: Decimal = ZERO
    vat_rate: Decimal = DEFAULT_VAT_RATE

    @property
    def is_paid_in_full(self) -> bool:
        return self.final_total > ZERO and self.balance <= ZERO

    def as_dict(self) -> dict:
        """JSON-safe snapshot (Decimals as strings, no float drift)."""
        return {key: str(value) for key, value in asdict(self).items()}


# ---------------------------------------------------------------------
# Line item aggregation
# ---------------------------------------------------------------------
def line_items_base(services: Iterable[Any], rate: Decimal) -> Decimal:
    """
    Sum of line items, each normalized to pre-VAT on its own flag (unrounded).

    - Package main item: custom_price x quantity (the bundle price).
    - Package child item: skipped (priced by its main item).
    - Legacy package member: package_price counted once per package_id.
    - Standalone item: custom_price x quantity.
    """
    total = ZERO
    seen_legacy_packages: set = set()

    for item in services or ():
        quantity = _to_decimal(_field(item, "quantity")) or Decimal("1")

        if _flag(_field(item, "is_package_main_item")):
            amount = _to_decimal(_field(item, "custom_price")) * quantity
            total += _pre_vat(amount, _flag(_field(item, "includes_vat")), rate)
            continue

        if _field(item, "parent_package_event_service_id"):
            continue

        package_id = _field(item, "package_id")
        if package_id:
            if package_id in seen_legacy_packages:
                continue
            seen_legacy_packages.add(package_id)
            amount = _to_decimal(_field(item, "package_price"))
            total += _pre_vat(amount, _flag(_field(item, "package_includes_vat")), rate)
            continue

        amount = _to_decimal(_field(item, "custom_price")) * quantity
        total += _pre_vat(amount, _flag(_field(item, "includes_vat")), rate)

    return total


def _event_base(event: Any, services: Iterable[Any], rate: Decimal) -> Decimal:
    all_inclusive_price = _to_decimal(_field(event, "all_inclusive_price"))
    if _flag(_field(event, "all_inclusive")) and all_inclusive_price > ZERO:
        return _pre_vat(all_inclusive_price, _flag(_field(event, "all_inclusive_includes_vat")), rate)

    total_override = _to_decimal(_field(event, "total_override"))
    if total_override != ZERO:
        # Override is VAT-inclusive unless explicitly flagged otherwise.
        includes_vat = _field(event, "total_override_includes_vat")
        includes_vat = True if includes_vat is None else _flag(includes_vat)
        return _pre_vat(total_override, includes_vat, rate)

    return line_items_base(services, rate)


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------
def calculate_event_financials(
    event: Any,
    services: Iterable[Any] = (),
    payments: Iterable[Any] = (),
    vat_rate: Any = DEFAULT_VAT_RATE,
) -> EventFinancials:
    """
    Compute the financial snapshot of an event.

    Invariants:
    - final_total = total_with_vat - discount (after-VAT policy) or
      (base - discount) + VAT (before-VAT policy), never negative.
    - balance = final_total - total_paid, exactly.
    """
    rate = normalize_vat_rate(vat_rate)

    if event is None:
        return EventFinancials(vat_rate=rate)

    base = _event_base(event, services, rate)
    discount = _money(_to_decimal(_field(event, "discount_amount")))
    discount_before_vat = _flag(_field(event, "discount_before_vat"))

    vat_base = max(ZERO, base - discount) if discount_before_vat else base
    vat = vat_base * rate
    total_with_vat = _money(vat_base + vat)

    if discount_before_vat:
        final_total = total_with_vat
    else:
        final_total = max(ZERO, total_with_vat - discount)

    total_paid = sum((_money(_to_decimal(_field(p, "amount"))) for p in payments or ()), ZERO)

    return EventFinancials(
        total_without_vat=_money(base),
        vat_amount=_money(vat),
        total_with_vat=total_with_vat,
        discount_amount=discount,
        final_total=_money(final_total),
        total_paid=_money(total_paid),
        balance=_money(final_total) - _money(total_paid),
        vat_rate=rate,
    )
