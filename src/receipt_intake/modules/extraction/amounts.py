from __future__ import annotations

import re
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import Any

_ZERO = Decimal("0.00")
_CENTS = Decimal("0.01")
# First standalone number; "1.2.3"-style runs are rejected rather than split.
_NUMBER_RE = re.compile(r"(?<![\d.])-?(?:\d+(?:\.\d+)?|\.\d+)(?!\.?\d)")


def parse_amount(raw: Any) -> Decimal | None:
    """Coerce a loosely formatted amount ("$1,234.50", 12, "12.5 USD") to a Decimal.

    Thousands separators are dropped and the first number in the string is
    used. Returns None when no number is found.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    else:
        m = _NUMBER_RE.search(str(raw).replace(",", ""))
        if not m:
            return None
        try:
            value = Decimal(m.group(0))
        except (InvalidOperation, ValueError):
            return None
    if not value.is_finite():
        return None
    return value


def _to_cents(value: Decimal) -> Decimal:
    try:
        return value.quantize(_CENTS)
    except InvalidOperation:
        return _ZERO


def _item_field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def sum_line_items(items: Iterable[Any]) -> Decimal:
    total = Decimal("0")
    for item in items:
        price = parse_amount(_item_field(item, "price"))
        if price is None or price < 0:
            continue
        quantity = parse_amount(_item_field(item, "quantity"))
        if quantity is None or quantity <= 0:
            quantity = Decimal("1")
        total += price * quantity
    return total


def resolve_amount(candidate_amount: Any, items: Iterable[Any] | None = None) -> Decimal:
    """Best numeric amount for an expense; never negative and never raises.

    An explicit positive total wins. Without one, line items are summed
    (quantity defaults to 1). A result of zero means "amount unknown".
    """
    amount = parse_amount(candidate_amount)
    if amount is not None and amount > 0:
        return _to_cents(amount)

    if items is None or isinstance(items, (str, bytes, dict)):
        return _ZERO
    try:
        item_list = list(items)
    except TypeError:
        return _ZERO
    if not item_list:
        return _ZERO

    total = sum_line_items(item_list)
    if total <= 0:
        return _ZERO
    return _to_cents(total)
