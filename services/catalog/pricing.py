"""Authoritative pricing for settlement and server-side quotes.

A line's unit price is the item's base price plus the contribution of each
selected modifier, every contribution computed from the base price (no
compounding). Lines for unknown items and unknown modifier ids are skipped.
"""

from decimal import Decimal
from typing import Mapping


def modifier_contribution(base_price: Decimal, kind: str, value: Decimal) -> Decimal:
    if kind == "PERCENTAGE":
        return base_price * value
    if kind == "FIXED_ADD":
        return value
    raise ValueError("UNKNOWN_MODIFIER_KIND")


def price_lines(lines: list[dict], items: Mapping[int, object], modifiers: Mapping[int, object]) -> Decimal:
    """Sum of ``unit_price * quantity`` over ``lines``.

    Args:
        lines: Dicts with ``item_id``, ``quantity`` and ``modifier_ids``.
        items: Rows with ``base_price``, indexed by id.
        modifiers: Rows with ``kind`` and ``value``, indexed by id.
    """
    total = Decimal("0")
    for line in lines:
        item = items.get(line["item_id"])
        if item is None:
            continue
        base = Decimal(item.base_price)
        unit = base
        for mid in set(line.get("modifier_ids", [])):
            m = modifiers.get(mid)
            if m is not None:
                unit += modifier_contribution(base, m.kind, Decimal(m.value))
        total += unit * line["quantity"]
    return total
