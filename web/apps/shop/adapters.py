"""In-process stub adapters for the shop ports.

``InMemoryCatalog`` implements both ``CatalogPort`` and ``SettlementPort``
without network calls. It keeps items and modifiers in dictionaries and
settles sales under a lock, all or nothing, using the same pricing rules as
the cart session. It is intended for unit tests and local development where
the catalog service is not running.
"""

import threading
from dataclasses import replace
from decimal import Decimal
from typing import Sequence

from .domain import (
    CartLine,
    CatalogPort,
    CatalogSnapshot,
    Item,
    ItemSize,
    ItemStatus,
    Modifier,
    ModifierKind,
    SaleReceipt,
    SettlementPort,
    SettlementRejected,
    UnresolvedReference,
)
from .pricing import quote


class InMemoryCatalog(CatalogPort, SettlementPort):
    """Catalog store and settlement service backed by process memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: dict[int, Item] = {}
        self._modifiers: dict[int, Modifier] = {}
        self._next_id = 1
        self.sales: list[SaleReceipt] = []

    def _new_id(self) -> int:
        nid = self._next_id
        self._next_id += 1
        return nid

    def health(self) -> bool:
        return True

    def list_items(self) -> list[Item]:
        with self._lock:
            return list(self._items.values())

    def list_modifiers(self) -> list[Modifier]:
        with self._lock:
            return list(self._modifiers.values())

    def create_item(
        self,
        name: str,
        base_price: Decimal,
        stock: int,
        kind: str | None = None,
        material: str | None = None,
        size: ItemSize = ItemSize.MEDIUM,
    ) -> Item:
        with self._lock:
            item = Item(
                id=self._new_id(),
                name=name,
                base_price=Decimal(base_price),
                stock=stock,
                kind=kind,
                material=material,
                size=size,
            )
            self._items[item.id] = item
            return item

    def create_modifier(self, name: str, kind: ModifierKind, value: Decimal) -> Modifier:
        with self._lock:
            modifier = Modifier(id=self._new_id(), name=name, kind=kind, value=Decimal(value))
            self._modifiers[modifier.id] = modifier
            return modifier

    def set_item_status(self, item_id: int, status: ItemStatus) -> Item:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise UnresolvedReference(item_id)
            item = replace(item, status=status)
            self._items[item_id] = item
            return item

    def settle(self, lines: Sequence[CartLine], idempotency_key: str | None = None) -> SaleReceipt:
        """Decrement stock for every line, or for none of them.

        Quantities are summed per item before comparing with stock, so two
        lines for the same item are checked together.
        """
        with self._lock:
            wanted: dict[int, int] = {}
            for line in lines:
                wanted[line.item_id] = wanted.get(line.item_id, 0) + line.quantity

            for item_id, qty in wanted.items():
                item = self._items.get(item_id)
                available = item.stock if item else 0
                if available < qty:
                    name = item.name if item else f"item {item_id}"
                    raise SettlementRejected(f"Insufficient stock for {name}: requested {qty}, available {available}")

            snapshot = CatalogSnapshot(items=dict(self._items), modifiers=dict(self._modifiers))
            total = quote(lines, snapshot)
            for item_id, qty in wanted.items():
                item = self._items[item_id]
                self._items[item_id] = replace(item, stock=item.stock - qty)

            receipt = SaleReceipt(message=f"Sale #{len(self.sales) + 1} recorded", total_paid=total)
            self.sales.append(receipt)
            return receipt
