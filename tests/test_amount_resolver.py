from __future__ import annotations

from decimal import Decimal

from receipt_intake.modules.extraction.amounts import parse_amount, resolve_amount


def test_resolve_amount_sums_items_when_total_missing():
    assert resolve_amount(None, [{"price": 10, "quantity": 2}, {"price": 5}]) == 25


def test_resolve_amount_garbage_degrades_to_zero():
    assert resolve_amount("$,,garbage", []) == 0


def test_resolve_amount_strips_currency_symbols_and_commas():
    assert resolve_amount("$1,234.50", None) == Decimal("1234.50")
    assert resolve_amount("42.5 USD", None) == Decimal("42.50")
    assert resolve_amount(19.99, None) == Decimal("19.99")


def test_explicit_total_wins_over_items():
    assert resolve_amount("30", [{"price": 10, "quantity": 2}]) == Decimal("30.00")


def test_zero_or_negative_total_falls_back_to_items():
    items = [{"price": "3.50", "quantity": "2"}]
    assert resolve_amount(0, items) == Decimal("7.00")
    assert resolve_amount("-12", items) == Decimal("7.00")
    assert resolve_amount("-12", []) == 0


def test_bad_item_fields_are_tolerated():
    items = [
        {"price": "abc", "quantity": 3},
        {"price": 4, "quantity": 0},
        {"price": 2, "quantity": "x"},
        {"name": "no price"},
    ]
    assert resolve_amount(None, items) == Decimal("6.00")


def test_resolve_amount_never_raises_on_odd_input():
    assert resolve_amount("n/a", "not-a-list") == 0
    assert resolve_amount(float("nan"), None) == 0
    assert resolve_amount(True, None) == 0
    assert resolve_amount(float("inf"), [{"price": 1}]) == Decimal("1.00")


def test_parse_amount_returns_none_without_digits():
    assert parse_amount("$") is None
    assert parse_amount("1.2.3") is None
    assert parse_amount(None) is None


def test_parse_amount_uses_first_number_only():
    assert parse_amount("12.5 x 2") == Decimal("12.5")
    assert parse_amount("1e5") == Decimal("1")
    assert parse_amount("Total: 12.") == Decimal("12")
    assert parse_amount("-3.25 refund") == Decimal("-3.25")
    assert parse_amount(".75") == Decimal(".75")
