"""SQLAlchemy repository for the furniture catalog and sale settlement.

This module provides persistence for items, modifiers, recorded sales and
idempotency keys. Settling a sale locks every referenced item row
(SELECT ... FOR UPDATE), checks the aggregated quantity of each item against
its stock and either decrements all of them or none.

Database connection parameters are read from ``DATABASE_URL`` or, when it is
unset, from the ``DB_*`` environment variables.
"""

import hashlib
import json
import os
from contextlib import contextmanager
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String, create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import JSON

from pricing import price_lines

DB_HOST = os.getenv("DB_HOST", "catalog-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "catalog")
DB_USER = os.getenv("DB_USER", "catalog_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "catalog-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)


def _engine_options(url: str) -> dict:
    # in-memory SQLite must share one connection across threads
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


class Base(DeclarativeBase):
    pass


class ItemRow(Base):
    """A furniture item.

    Attributes:
        id: Autoincrement primary key.
        name: Display name.
        base_price: Non-negative unit price before modifiers.
        stock: Non-negative count of sellable units.
        status: 'ACTIVE' or 'INACTIVE'.
        kind: Optional furniture type.
        material: Optional material.
        size: 'LARGE', 'MEDIUM' or 'SMALL'.
    """

    __tablename__ = "items"
    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    name = mapped_column(String(120), nullable=False)
    base_price = mapped_column(Numeric(12, 2), nullable=False)
    stock = mapped_column(Integer, nullable=False, default=0)
    status = mapped_column(String(16), nullable=False, default="ACTIVE")
    kind = mapped_column(String(60), nullable=True)
    material = mapped_column(String(60), nullable=True)
    size = mapped_column(String(16), nullable=False, default="MEDIUM")


class ModifierRow(Base):
    """A price modifier. PERCENTAGE values are stored as fractions."""

    __tablename__ = "modifiers"
    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    name = mapped_column(String(120), nullable=False)
    kind = mapped_column(String(16), nullable=False)
    value = mapped_column(Numeric(12, 4), nullable=False)


class SaleRow(Base):
    __tablename__ = "sales"
    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    total_paid = mapped_column(Numeric(14, 2), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())


class IdempotencyKey(Base):
    """Stored outcome of a settlement request, keyed by ``Idempotency-Key``.

    Attributes:
        key: Client-provided idempotency key.
        request_hash: Canonical SHA-256 hex digest of the original request.
        response_status: HTTP status of the stored response, 0 until final.
        response_body: JSON body of the stored response.
    """

    __tablename__ = "idempotency_keys"
    key = mapped_column(String(200), primary_key=True)
    request_hash = mapped_column(String(64), nullable=False)
    response_status = mapped_column(Integer, nullable=False, default=0)
    response_body = mapped_column(JSON, nullable=False, default=dict)


class InsufficientStockError(Exception):
    """Raised when an item's aggregated quantity exceeds its stock.

    Attributes:
        item_id: Offending item.
        name: Item name, or None when the item does not exist.
        requested: Units requested across all lines.
        available: Units in stock (0 for unknown items).
    """

    def __init__(self, item_id: int, name: str | None, requested: int, available: int):
        super().__init__("INSUFFICIENT_STOCK")
        self.item_id = item_id
        self.name = name
        self.requested = requested
        self.available = available

    @property
    def message(self) -> str:
        label = self.name or f"item {self.item_id}"
        return f"Insufficient stock for {label}: requested {self.requested}, available {self.available}"


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    """Yield a SQLAlchemy session bound to the configured engine."""
    with Session(engine, expire_on_commit=False) as s:
        yield s


def canonical_hash(payload: dict) -> str:
    """Deterministic SHA-256 of a JSON payload (sorted keys, compact)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def get_or_create_idempotent(key: str, payload: dict) -> tuple[bool, IdempotencyKey]:
    """Register an idempotency key or return the existing record.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``; ``existing`` is True
        when the key was already stored for the same payload.

    Raises:
        ValueError: "IDEMPOTENCY_CONFLICT" when the key was used with a
            different payload.
    """
    h = canonical_hash(payload)
    with get_session() as s:
        try:
            rec = IdempotencyKey(key=key, request_hash=h, response_status=0, response_body={})
            s.add(rec)
            s.commit()
            return False, rec
        except IntegrityError:
            s.rollback()
            rec = s.execute(
                select(IdempotencyKey).where(IdempotencyKey.key == key).with_for_update()
            ).scalars().one()
            if rec.request_hash != h:
                raise ValueError("IDEMPOTENCY_CONFLICT")
            return True, rec


def release(key: str) -> None:
    """Drop a pending idempotency record so the key can be retried."""
    with get_session() as s:
        rec = s.get(IdempotencyKey, key)
        if rec is not None and not rec.response_status:
            s.delete(rec)
            s.commit()


def finalize(key: str, status_code: int, body: dict) -> None:
    """Persist the final response for an idempotent request."""
    with get_session() as s:
        rec = s.get(IdempotencyKey, key)
        rec.response_status = status_code
        rec.response_body = body
        s.commit()


class CatalogRepo:
    """Repository for catalog reads, admin writes and sale settlement."""

    def list_items(self) -> list[ItemRow]:
        with get_session() as s:
            return list(s.scalars(select(ItemRow).order_by(ItemRow.id)))

    def list_modifiers(self) -> list[ModifierRow]:
        with get_session() as s:
            return list(s.scalars(select(ModifierRow).order_by(ModifierRow.id)))

    def create_item(self, **fields) -> ItemRow:
        with get_session() as s:
            obj = ItemRow(status="ACTIVE", **fields)
            s.add(obj)
            s.commit()
            s.refresh(obj)
            return obj

    def create_modifier(self, name: str, kind: str, value: Decimal) -> ModifierRow:
        with get_session() as s:
            obj = ModifierRow(name=name, kind=kind, value=value)
            s.add(obj)
            s.commit()
            s.refresh(obj)
            return obj

    def set_status(self, item_id: int, status: str) -> ItemRow | None:
        """Set an item's status; returns None when the item does not exist."""
        with get_session() as s:
            obj = s.get(ItemRow, item_id)
            if obj is None:
                return None
            obj.status = status
            s.commit()
            s.refresh(obj)
            return obj

    def quote(self, lines: list[dict]) -> Decimal:
        with get_session() as s:
            items = {r.id: r for r in s.scalars(select(ItemRow))}
            modifiers = {m.id: m for m in s.scalars(select(ModifierRow))}
        return price_lines(lines, items, modifiers)

    def settle(self, lines: list[dict]) -> SaleRow:
        """Atomically decrement stock for every line and record the sale.

        Quantities are aggregated per item first. Every referenced item row is
        locked; if any aggregated quantity exceeds stock the transaction is
        rolled back and nothing changes.

        Args:
            lines: Dicts with ``item_id``, ``quantity`` and ``modifier_ids``.

        Returns:
            SaleRow: The recorded sale with its authoritative total.

        Raises:
            InsufficientStockError: For the first item that cannot be covered.
        """
        wanted: dict[int, int] = {}
        for line in lines:
            wanted[line["item_id"]] = wanted.get(line["item_id"], 0) + line["quantity"]

        with get_session() as s:
            rows = s.scalars(
                select(ItemRow).where(ItemRow.id.in_(list(wanted))).order_by(ItemRow.id).with_for_update()
            ).all()
            current = {r.id: r for r in rows}
            for item_id, qty in wanted.items():
                row = current.get(item_id)
                available = row.stock if row else 0
                if available < qty:
                    s.rollback()
                    raise InsufficientStockError(item_id, row.name if row else None, qty, available)

            modifiers = {m.id: m for m in s.scalars(select(ModifierRow))}
            total = price_lines(lines, current, modifiers)
            for item_id, qty in wanted.items():
                current[item_id].stock -= qty

            sale = SaleRow(total_paid=total)
            s.add(sale)
            s.commit()
            s.refresh(sale)
            return sale
