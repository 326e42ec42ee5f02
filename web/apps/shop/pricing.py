"""Pricing and stock pre-check for cart lines.

Every function here is pure: it takes the cart lines and a catalog snapshot
and returns a value, without touching the network or mutating its inputs.

Modifiers are evaluated against the item's original base price and summed,
so the order in which they are selected never changes the result. Lines or
modifiers whose ids are missing from the snapshot are skipped instead of
failing the whole quotation, because admin edits may race with an open cart.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from .domain import (
    CartLine,
    CatalogSnapshot,
    InsufficientStock,
    InvalidQuantity,
    Modifier,
    ModifierKind,
    UnknownModifierKind,
    UnresolvedReference,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class LinePrice:
    unit_price: Decimal
    line_total: Decimal


def apply_modifier(base_price: Decimal, modifier: Modifier) -> Decimal:
    """Return the contribution of one modifier to a unit price.

    Args:
        base_price: The item's base price.
        modifier: Modifier to evaluate.

    Returns:
        Decimal: ``base_price * value`` for PERCENTAGE modifiers, ``value``
        for FIXED_ADD modifiers.

    Raises:
        UnknownModifierKind: If the modifier kind is not recognised.
    """
    if modifier.kind == ModifierKind.PERCENTAGE:
        return base_price * modifier.value
    if modifier.kind == ModifierKind.FIXED_ADD:
        return modifier.value
    raise UnknownModifierKind()


def price_line(line: CartLine, snapshot: CatalogSnapshot) -> LinePrice | None:
    """Price a single cart line.

    Returns:
        LinePrice, or None when the line's item is not in the snapshot (the
        line then contributes nothing to the quotation).
    """
    item = snapshot.items.get(line.item_id)
    if item is None:
        return None

    unit_price = item.base_price
    for modifier_id in line.modifier_ids:
        modifier = snapshot.modifiers.get(modifier_id)
        if modifier is None:
            continue
        unit_price += apply_modifier(item.base_price, modifier)
    return LinePrice(unit_price=unit_price, line_total=unit_price * line.quantity)


def quote(lines: Sequence[CartLine], snapshot: CatalogSnapshot) -> Decimal:
    """Total price of the cart under the given snapshot. Empty cart is 0."""
    total = ZERO
    for line in lines:
        priced = price_line(line, snapshot)
        if priced is not None:
            total += priced.line_total
    return total


def display_total(total: Decimal) -> int:
    """Round a total to whole currency units, halves rounding up."""
    return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def quantity_in_cart(lines: Sequence[CartLine], item_id: int) -> int:
    return sum(line.quantity for line in lines if line.item_id == item_id)


def check_add(
    lines: Sequence[CartLine], item_id: int, requested: int, snapshot: CatalogSnapshot
) -> None:
    """Check that ``requested`` more units of an item fit in its stock.

    The quantity already in the cart is summed across every line that
    references the item, so several lines for the same item are checked
    together. The check is advisory: the settlement service re-validates
    stock when the sale is committed.

    Raises:
        InvalidQuantity: If ``requested`` is not a positive integer.
        UnresolvedReference: If the item is not in the snapshot or is not
            ACTIVE; inactive items are not offered to customers.
        InsufficientStock: If cart quantity plus ``requested`` exceeds stock.
    """
    if requested <= 0:
        raise InvalidQuantity()
    item = snapshot.items.get(item_id)
    if item is None or not item.is_active:
        raise UnresolvedReference(item_id)

    in_cart = quantity_in_cart(lines, item_id)
    if in_cart + requested > item.stock:
        raise InsufficientStock(in_cart=in_cart, requested=requested, available=item.stock)
