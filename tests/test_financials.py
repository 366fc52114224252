import copy
import itertools
from decimal import Decimal

from app.financials import DEFAULT_VAT_RATE, calculate_event_financials, normalize_vat_rate, percent_to_fraction


def _event(**overrides):
    event = {
        "all_inclusive": False,
        "all_inclusive_price": None,
        "total_override": None,
        "discount_amount": None,
        "discount_before_vat": False,
    }
    event.update(overrides)
    return event


def test_normalize_vat_rate():
    assert normalize_vat_rate(18) == Decimal("0.18")
    assert normalize_vat_rate("17") == Decimal("0.17")
    assert normalize_vat_rate("0.17") == Decimal("0.17")
    assert normalize_vat_rate(None) == DEFAULT_VAT_RATE
    assert normalize_vat_rate("") == DEFAULT_VAT_RATE
    assert normalize_vat_rate(-5) == DEFAULT_VAT_RATE


def test_standalone_items_respect_their_vat_flag():
    services = [
        {"custom_price": "100", "quantity": 2, "includes_vat": False},
        {"custom_price": "118", "quantity": 1, "includes_vat": True},
    ]
    fin = calculate_event_financials(_event(), services, [], 18)

    assert fin.total_without_vat == Decimal("300.00")
    assert fin.vat_amount == Decimal("54.00")
    assert fin.total_with_vat == Decimal("354.00")
    assert fin.final_total == Decimal("354.00")


def test_package_children_are_priced_by_their_main_item():
    services = [
        {"id": 1, "custom_price": "1180", "quantity": 1, "includes_vat": True, "is_package_main_item": True},
        {"id": 2, "custom_price": "500", "parent_package_event_service_id": 1},
        {"id": 3, "custom_price": "700", "parent_package_event_service_id": 1},
    ]
    fin = calculate_event_financials(_event(), services, [], 18)

    assert fin.total_without_vat == Decimal("1000.00")
    assert fin.final_total == Decimal("1180.00")


def test_legacy_package_price_counted_once():
    services = [
        {"package_id": 7, "package_price": "500", "custom_price": "0"},
        {"package_id": 7, "package_price": "500", "custom_price": "0"},
        {"custom_price": "100"},
    ]
    fin = calculate_event_financials(_event(), services, [], 18)

    assert fin.total_without_vat == Decimal("600.00")


def test_all_inclusive_price_wins_over_items():
    event = _event(all_inclusive=True, all_inclusive_price="1180", all_inclusive_includes_vat=True)
    fin = calculate_event_financials(event, [{"custom_price": "99999"}], [], 18)

    assert fin.total_without_vat == Decimal("1000.00")
    assert fin.final_total == Decimal("1180.00")


def test_total_override_defaults_to_vat_inclusive():
    event = _event(total_override="590")
    fin = calculate_event_financials(event, [{"custom_price": "99999"}], [], 18)

    assert fin.total_without_vat == Decimal("500.00")
    assert fin.final_total == Decimal("590.00")


def test_total_override_before_vat():
    event = _event(total_override="500", total_override_includes_vat=False)
    fin = calculate_event_financials(event, [], [], 18)

    assert fin.final_total == Decimal("590.00")


def test_discount_after_vat():
    fin = calculate_event_financials(_event(discount_amount="18"), [{"custom_price": "100"}], [], 18)

    assert fin.total_with_vat == Decimal("118.00")
    assert fin.discount_amount == Decimal("18.00")
    assert fin.final_total == Decimal("100.00")


def test_discount_before_vat_reduces_the_vat_base():
    event = _event(discount_amount="10", discount_before_vat=True)
    fin = calculate_event_financials(event, [{"custom_price": "100"}], [], 18)

    assert fin.vat_amount == Decimal("16.20")
    assert fin.final_total == Decimal("106.20")


def test_discount_never_makes_total_negative():
    fin = calculate_event_financials(_event(discount_amount="5000"), [{"custom_price": "100"}], [], 18)

    assert fin.final_total == Decimal("0.00")


def test_payments_and_balance():
    payments = [{"amount": "50"}, {"amount": "18.5"}]
    fin = calculate_event_financials(_event(), [{"custom_price": "100"}], payments, 18)

    assert fin.total_paid == Decimal("68.50")
    assert fin.balance == Decimal("49.50")
    assert fin.balance == fin.final_total - fin.total_paid
    assert not fin.is_paid_in_full


def test_garbage_amounts_count_as_zero():
    services = [{"custom_price": "abc"}, {"custom_price": None}, {"custom_price": "", "quantity": "x"}]
    fin = calculate_event_financials(_event(discount_amount="n/a"), services, [{"amount": "oops"}], 18)

    assert fin.final_total == Decimal("0.00")
    assert fin.balance == Decimal("0.00")


def test_missing_event_gives_zero_snapshot():
    fin = calculate_event_financials(None, [], [], 18)

    assert fin.final_total == Decimal("0")
    assert fin.as_dict()["vat_rate"] == "0.18"


def test_percent_to_fraction_never_guesses():
    assert percent_to_fraction("18") == Decimal("0.18")
    assert percent_to_fraction("1") == Decimal("0.01")
    assert percent_to_fraction("0.5") == Decimal("0.005")
    assert percent_to_fraction("0") == Decimal("0")
    assert percent_to_fraction(None) == DEFAULT_VAT_RATE
    assert percent_to_fraction("-3") == DEFAULT_VAT_RATE


def test_reference_example_with_and_without_discount():
    items = [{"custom_price": 100, "quantity": 2, "includes_vat": False}]

    fin = calculate_event_financials(_event(), items, [], Decimal("0.18"))
    assert fin.total_without_vat == Decimal("200.00")
    assert fin.vat_amount == Decimal("36.00")
    assert fin.total_with_vat == Decimal("236.00")
    assert fin.final_total == Decimal("236.00")
    assert fin.balance == Decimal("236.00")

    discounted = calculate_event_financials(
        _event(discount_amount=20, discount_before_vat=False), items, [], Decimal("0.18")
    )
    assert discounted.final_total == Decimal("216.00")


def test_calculation_is_idempotent_and_leaves_inputs_alone():
    event = _event(discount_amount="15", total_override=None)
    services = [
        {"id": 1, "custom_price": "1180", "includes_vat": True, "is_package_main_item": True},
        {"id": 2, "custom_price": "300", "parent_package_event_service_id": 1},
        {"custom_price": "99.99", "quantity": 3},
    ]
    payments = [{"amount": "100"}, {"amount": "250.10"}]
    snapshot = copy.deepcopy((event, services, payments))

    first = calculate_event_financials(event, services, payments, 18)
    second = calculate_event_financials(event, services, payments, 18)

    assert first == second
    assert first.as_dict() == second.as_dict()
    assert (event, services, payments) == snapshot


def test_balance_does_not_depend_on_payment_order():
    payments = [{"amount": "33.335"}, {"amount": "10.005"}, {"amount": "0.1"}, {"amount": "250"}]
    items = [{"custom_price": "1000"}]

    balances = {
        calculate_event_financials(_event(), items, list(order), 18).balance
        for order in itertools.permutations(payments)
    }

    assert len(balances) == 1
    fin = calculate_event_financials(_event(), items, payments, 18)
    assert fin.balance == fin.final_total - fin.total_paid
