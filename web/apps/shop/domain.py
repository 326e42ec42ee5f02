"""Domain models, errors and ports for the shop.

This module contains the immutable catalog records (items and modifiers),
the cart line type, the error taxonomy raised by the pricing and settlement
core, and the protocol definitions (ports) for the external catalog store
and sale settlement service.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping, Protocol, Sequence


# ---- Enums ----
class ItemStatus(str, Enum):
    """Offer status of a catalog item.

    Only ACTIVE items are shown to customers; INACTIVE items remain visible
    in the admin panel."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ModifierKind(str, Enum):
    """How a modifier contributes to the unit price of a line."""

    FIXED_ADD = "FIXED_ADD"
    PERCENTAGE = "PERCENTAGE"


class ItemSize(str, Enum):
    LARGE = "LARGE"
    MEDIUM = "MEDIUM"
    SMALL = "SMALL"


# ---- Errors ----
class ShopError(ValueError):
    """Base class for shop errors.

    The message of every error is a short upper-case code (for example
    ``INSUFFICIENT_STOCK``) so views can map it to an HTTP status.
    """

    code = "SHOP_ERROR"

    def __init__(self, code: str | None = None):
        super().__init__(code or self.code)


class InvalidQuantity(ShopError):
    code = "INVALID_QUANTITY"


class UnresolvedReference(ShopError):
    """An item or modifier id is not present in the current snapshot."""

    code = "UNRESOLVED_REFERENCE"

    def __init__(self, ref: int):
        super().__init__()
        self.ref = ref


class UnknownModifierKind(ShopError):
    code = "UNKNOWN_MODIFIER_KIND"


class InsufficientStock(ShopError):
    """Requested quantity plus what is already in the cart exceeds stock.

    Attributes:
        in_cart: Units of the item already present across all cart lines.
        requested: Units the caller tried to add.
        available: Stock of the item in the snapshot used for the check.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(self, in_cart: int, requested: int, available: int):
        super().__init__()
        self.in_cart = in_cart
        self.requested = requested
        self.available = available


class EmptyCart(ShopError):
    code = "EMPTY_CART"


class SettlementRejected(ShopError):
    """The settlement service declined to commit the sale.

    Attributes:
        reason: Human readable reason, shown to the user verbatim.
    """

    code = "SETTLEMENT_REJECTED"
    default_reason = "Insufficient stock"

    def __init__(self, reason: str | None = None):
        super().__init__()
        self.reason = reason or self.default_reason


class SettlementInProgress(ShopError):
    code = "SETTLEMENT_IN_PROGRESS"


class SettlementPending(ShopError):
    """The settlement service is still processing an earlier attempt with
    the same idempotency key; the sale may or may not commit.

    Not a rejection: the cart and its key must be kept for a later retry.
    """

    code = "SETTLEMENT_PENDING"


class CatalogLoadFailure(ShopError):
    code = "CATALOG_UNAVAILABLE"


class CircuitOpen(RuntimeError):
    """A downstream circuit breaker refused the call without sending it."""

    def __init__(self, code: str = "CIRCUIT_OPEN"):
        super().__init__(code)


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Item:
    """A furniture item as seen in a catalog snapshot.

    Attributes:
        id: Catalog identifier.
        name: Display name.
        base_price: Non-negative unit price before modifiers.
        stock: Non-negative count of currently sellable units.
        status: ItemStatus; only ACTIVE items are offered to customers.
        kind: Free-text furniture type (e.g. 'Chair').
        material: Free-text material description.
        size: ItemSize.
    """

    id: int
    name: str
    base_price: Decimal
    stock: int
    status: ItemStatus = ItemStatus.ACTIVE
    kind: str | None = None
    material: str | None = None
    size: ItemSize = ItemSize.MEDIUM

    def __post_init__(self):
        if self.base_price < 0:
            raise ValueError("NEGATIVE_PRICE")
        if self.stock < 0:
            raise ValueError("NEGATIVE_STOCK")

    @property
    def is_active(self) -> bool:
        return self.status == ItemStatus.ACTIVE

    @property
    def sold_out(self) -> bool:
        return self.stock == 0


@dataclass(frozen=True)
class Modifier:
    """An optional extra applicable to any item.

    Attributes:
        id: Catalog identifier.
        name: Display name (e.g. 'Varnish').
        kind: ModifierKind.
        value: Non-negative amount. For PERCENTAGE it is a fraction of the
            base price (0.15 means +15%), never a whole percent.
    """

    id: int
    name: str
    kind: ModifierKind
    value: Decimal

    def __post_init__(self):
        if self.value < 0:
            raise ValueError("NEGATIVE_MODIFIER_VALUE")

    @property
    def label(self) -> str:
        """Short label shown next to the modifier name, e.g. '+15%'."""
        if self.kind == ModifierKind.PERCENTAGE:
            return f"+{(self.value * 100).normalize():f}%"
        return f"+${self.value.normalize():f}"


@dataclass(frozen=True)
class CartLine:
    """A single line of the cart.

    Attributes:
        item_id: Weak reference to an Item in the catalog.
        quantity: Positive number of units.
        modifier_ids: Selected modifiers; each applies once.
        name: Item name captured when the line was added, for display only.
    """

    item_id: int
    quantity: int
    modifier_ids: frozenset[int] = field(default_factory=frozenset)
    name: str = ""

    def __post_init__(self):
        if self.quantity < 1:
            raise InvalidQuantity()

    def to_payload(self) -> dict:
        """Wire representation sent to the settlement service."""
        return {
            "item_id": self.item_id,
            "quantity": self.quantity,
            "modifier_ids": sorted(self.modifier_ids),
        }


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable read snapshot of the catalog, indexed by id."""

    items: Mapping[int, Item] = field(default_factory=dict)
    modifiers: Mapping[int, Modifier] = field(default_factory=dict)

    @classmethod
    def build(cls, items: Iterable[Item], modifiers: Iterable[Modifier]) -> "CatalogSnapshot":
        return cls(
            items={it.id: it for it in items},
            modifiers={m.id: m for m in modifiers},
        )

    def active_items(self) -> list[Item]:
        return [it for it in self.items.values() if it.is_active]


@dataclass(frozen=True)
class SaleReceipt:
    """Authoritative result of a committed sale.

    Attributes:
        message: Confirmation message from the settlement service.
        total_paid: Server-computed total for the whole cart.
    """

    message: str
    total_paid: Decimal


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog store.

    Reads return full lists so callers can replace their snapshot in place.
    Write operations are pass-through admin actions.
    """

    def health(self) -> bool:
        raise NotImplementedError()

    def list_items(self) -> list[Item]:
        """Return every item, active or not.

        Raises:
            CatalogLoadFailure: When the store cannot be read.
        """
        raise NotImplementedError()

    def list_modifiers(self) -> list[Modifier]:
        raise NotImplementedError()

    def create_item(
        self,
        name: str,
        base_price: Decimal,
        stock: int,
        kind: str | None = None,
        material: str | None = None,
        size: ItemSize = ItemSize.MEDIUM,
    ) -> Item:
        raise NotImplementedError()

    def create_modifier(self, name: str, kind: ModifierKind, value: Decimal) -> Modifier:
        raise NotImplementedError()

    def set_item_status(self, item_id: int, status: ItemStatus) -> Item:
        """Change the status of an item.

        Raises:
            UnresolvedReference: If the item does not exist.
        """
        raise NotImplementedError()


class SettlementPort(Protocol):
    """Port describing the sale settlement service.

    Implementers decrement stock for every line atomically (all or nothing)
    and return the authoritative total.
    """

    def settle(self, lines: Sequence[CartLine], idempotency_key: str | None = None) -> SaleReceipt:
        """Commit a sale for the given cart lines.

        Args:
            lines: Cart lines to settle, in cart order.
            idempotency_key: Optional key making retries of the same sale safe.

        Returns:
            SaleReceipt with the message and total paid.

        Raises:
            SettlementRejected: When any line exceeds the stock available at
                commit time. No stock is decremented in that case.
        """
        raise NotImplementedError()
