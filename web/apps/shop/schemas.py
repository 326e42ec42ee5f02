"""Pydantic schemas for the shop API.

Input schemas validate admin forms and cart requests at the HTTP boundary.
Output schemas shape catalog and cart responses; decimals are serialized as
strings.
"""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from .domain import Item, ItemSize, ItemStatus, Modifier, ModifierKind

PERCENT = Decimal("100")


class ItemIn(BaseModel):
    """Admin form for creating an item.

    Attributes:
        name: Display name, required.
        base_price: Non-negative price with at most two decimals.
        stock: Non-negative initial stock.
        kind: Optional furniture type.
        material: Optional material.
        size: ItemSize, MEDIUM when omitted.
    """

    name: str = Field(min_length=1, max_length=120)
    base_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    stock: int = Field(ge=0)
    kind: str | None = Field(default=None, max_length=60)
    material: str | None = Field(default=None, max_length=60)
    size: ItemSize = ItemSize.MEDIUM

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("Name must not be blank")
        return v2


class ModifierIn(BaseModel):
    """Admin form for creating a modifier.

    The form takes what a person types: a PERCENTAGE value is a whole
    percent ("15" for +15%) and is converted to a fraction once, here.
    After validation ``value`` always holds the stored representation.

    Attributes:
        name: Display name, required.
        kind: ModifierKind, FIXED_ADD when omitted.
        value: Non-negative amount or whole percent, at most two decimals so
            the stored fraction keeps four.
    """

    name: str = Field(min_length=1, max_length=120)
    kind: ModifierKind = ModifierKind.FIXED_ADD
    value: Decimal = Field(ge=0, max_digits=10, decimal_places=2)

    @model_validator(mode="after")
    def normalize_percentage(self) -> "ModifierIn":
        if self.kind == ModifierKind.PERCENTAGE:
            self.value = self.value / PERCENT
        return self


class CartLineIn(BaseModel):
    """Request to add a line to the cart.

    ``quantity`` is range-checked by the cart session so the caller gets an
    ``INVALID_QUANTITY`` code rather than a schema error.
    """

    item_id: int
    quantity: int
    modifier_ids: list[int] = Field(default_factory=list)


class ItemOut(BaseModel):
    id: int
    name: str
    base_price: Decimal
    stock: int
    status: ItemStatus
    kind: str | None = None
    material: str | None = None
    size: ItemSize
    sold_out: bool

    @classmethod
    def from_domain(cls, item: Item) -> "ItemOut":
        return cls(
            id=item.id,
            name=item.name,
            base_price=item.base_price,
            stock=item.stock,
            status=item.status,
            kind=item.kind,
            material=item.material,
            size=item.size,
            sold_out=item.sold_out,
        )


class ModifierOut(BaseModel):
    id: int
    name: str
    kind: ModifierKind
    value: Decimal
    label: str

    @classmethod
    def from_domain(cls, modifier: Modifier) -> "ModifierOut":
        return cls(
            id=modifier.id,
            name=modifier.name,
            kind=modifier.kind,
            value=modifier.value,
            label=modifier.label,
        )


class CartLineOut(BaseModel):
    """A cart line with its current prices.

    ``unit_price`` and ``line_total`` are None when the item is no longer in
    the catalog; such a line adds nothing to the total.
    """

    index: int
    item_id: int
    name: str
    quantity: int
    modifier_ids: list[int]
    unit_price: Decimal | None = None
    line_total: Decimal | None = None


class CartOut(BaseModel):
    lines: list[CartLineOut]
    count: int
    total: Decimal
    total_display: int


class SaleReceiptOut(BaseModel):
    message: str
    total_paid: Decimal
    total_paid_display: int
