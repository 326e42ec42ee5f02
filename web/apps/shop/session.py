"""Cart session: one customer's cart plus the catalog snapshot it is priced against.

The session is the only owner of the cart. After every mutation (add, clear,
catalog reload, settlement) it recomputes the quotation synchronously from
the current lines and snapshot; nothing is tracked incrementally.

Stock checks made here are advisory. The settlement service is the only
party that mutates stock, and it re-validates every line when the sale is
committed.
"""

import logging
import uuid
from decimal import Decimal
from typing import Iterable

from .domain import (
    CartLine,
    CatalogLoadFailure,
    CatalogPort,
    CatalogSnapshot,
    EmptyCart,
    Item,
    SaleReceipt,
    SettlementInProgress,
    SettlementPort,
    SettlementRejected,
)
from .pricing import LinePrice, check_add, price_line, quote

logger = logging.getLogger(__name__)


class CartSession:
    """Owns a cart and recomputes its quotation after each change.

    Attributes:
        lines: Current cart lines, in the order they were added.
        snapshot: Catalog snapshot the cart is priced against.
        quotation: Estimated total for ``lines`` under ``snapshot``. It is
            never treated as the amount paid.
        loaded: Whether a catalog read has succeeded in this session.
        checkout_key: Idempotency key of a settlement whose outcome is not
            known yet. It is reused by the next checkout of the same cart so
            a sale that did commit is replayed instead of charged twice.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        settlement: SettlementPort,
        lines: Iterable[CartLine] = (),
        snapshot: CatalogSnapshot | None = None,
        checkout_key: str | None = None,
    ):
        self.catalog = catalog
        self.settlement = settlement
        self.lines: list[CartLine] = list(lines)
        self.snapshot = snapshot or CatalogSnapshot()
        self.quotation = Decimal("0")
        self.loaded = False
        self.checkout_key = checkout_key
        self._settling = False
        self._recompute()

    def _recompute(self) -> None:
        self.quotation = quote(self.lines, self.snapshot)

    # ---- Catalog ----
    def reload(self) -> bool:
        """Replace the snapshot with a fresh full read of the catalog.

        On failure the previous snapshot is kept (empty on first load) and
        the error is logged.

        Returns:
            bool: True when the snapshot was refreshed.
        """
        try:
            snapshot = CatalogSnapshot.build(self.catalog.list_items(), self.catalog.list_modifiers())
        except CatalogLoadFailure:
            logger.warning("catalog reload failed, keeping previous snapshot", exc_info=True)
            return False
        self.snapshot = snapshot
        self.loaded = True
        self._recompute()
        return True

    def catalog_items(self, admin: bool = False) -> list[Item]:
        """Items offered by the current snapshot; customers see only ACTIVE ones."""
        if admin:
            return list(self.snapshot.items.values())
        return self.snapshot.active_items()

    # ---- Cart ----
    def add(self, item_id: int, quantity: int, modifier_ids: Iterable[int] = ()) -> CartLine:
        """Append a line after checking it against the snapshot's stock.

        Raises:
            InvalidQuantity, UnresolvedReference, InsufficientStock: Raised by
                ``check_add``; the cart is left unchanged.
        """
        check_add(self.lines, item_id, quantity, self.snapshot)
        line = CartLine(
            item_id=item_id,
            quantity=quantity,
            modifier_ids=frozenset(modifier_ids),
            name=self.snapshot.items[item_id].name,
        )
        self.lines.append(line)
        self.checkout_key = None
        self._recompute()
        return line

    def clear(self) -> None:
        self.lines = []
        self.checkout_key = None
        self._recompute()

    def priced_lines(self) -> list[tuple[CartLine, LinePrice | None]]:
        return [(line, price_line(line, self.snapshot)) for line in self.lines]

    # ---- Settlement ----
    def checkout(self, idempotency_key: str | None = None) -> SaleReceipt:
        """Settle the cart with the settlement service.

        The cart is cleared and the catalog reloaded only once the service
        confirms the sale. Any failure leaves the cart exactly as it was.

        Args:
            idempotency_key: Key sent with the settlement request. When
                omitted, the pending ``checkout_key`` is reused or a new one
                is generated.

        Returns:
            SaleReceipt: Message and authoritative total paid.

        Raises:
            EmptyCart: If there is nothing to settle.
            SettlementInProgress: If another checkout on this session has not
                resolved yet.
            SettlementRejected: If the service declined the sale.
            SettlementPending: If an earlier attempt with the same key is
                still being committed; the key is kept.
        """
        if not self.lines:
            raise EmptyCart()
        if self._settling:
            raise SettlementInProgress()

        self._settling = True
        self.checkout_key = idempotency_key or self.checkout_key or str(uuid.uuid4())
        try:
            receipt = self.settlement.settle(list(self.lines), idempotency_key=self.checkout_key)
        except SettlementRejected as e:
            logger.info("sale rejected", extra={"reason": e.reason, "lines": len(self.lines)})
            self.checkout_key = None
            raise
        except Exception:
            logger.warning("sale outcome unknown, keeping checkout key", extra={"checkout_key": self.checkout_key})
            raise
        finally:
            self._settling = False

        logger.info(
            "sale settled",
            extra={"total_paid": str(receipt.total_paid), "estimate": str(self.quotation)},
        )
        self.clear()
        self.reload()
        return receipt

    # ---- Persistence of the ephemeral cart ----
    def dump_lines(self) -> list[dict]:
        """JSON-friendly form of the cart, for storage in the web session."""
        return [{**line.to_payload(), "name": line.name} for line in self.lines]

    @staticmethod
    def load_lines(raw: Iterable[dict]) -> list[CartLine]:
        return [
            CartLine(
                item_id=int(r["item_id"]),
                quantity=int(r["quantity"]),
                modifier_ids=frozenset(int(m) for m in r.get("modifier_ids", [])),
                name=r.get("name", ""),
            )
            for r in raw
        ]
