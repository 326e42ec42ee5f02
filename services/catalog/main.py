"""Catalog and settlement service API built with FastAPI.

This module exposes the furniture catalog (items and modifiers), admin
writes (create, activate/deactivate), an authoritative quote and the sale
settlement endpoint. Validation is performed with Pydantic models, while
persistence, locking and pricing are delegated to ``repo.CatalogRepo``.
"""

import logging
import time
import uuid
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import (
    CatalogRepo,
    InsufficientStockError,
    engine,
    finalize,
    get_or_create_idempotent,
    init_db,
    release,
)

app = FastAPI(title="Catalog Service")

logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class ItemStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ItemSize(str, Enum):
    LARGE = "LARGE"
    MEDIUM = "MEDIUM"
    SMALL = "SMALL"


class ModifierKind(str, Enum):
    FIXED_ADD = "FIXED_ADD"
    PERCENTAGE = "PERCENTAGE"


class ItemCreate(BaseModel):
    """Request body for creating an item.

    Attributes:
        name: Display name.
        base_price: Non-negative unit price, at most two decimals.
        stock: Non-negative initial stock.
        kind: Optional furniture type.
        material: Optional material.
        size: Item size, MEDIUM by default.
    """

    name: str = Field(min_length=1, max_length=120)
    base_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    stock: int = Field(ge=0)
    kind: Optional[str] = Field(default=None, max_length=60)
    material: Optional[str] = Field(default=None, max_length=60)
    size: ItemSize = ItemSize.MEDIUM


class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    base_price: Decimal
    stock: int
    status: ItemStatus
    kind: Optional[str] = None
    material: Optional[str] = None
    size: ItemSize


class ModifierCreate(BaseModel):
    """Request body for creating a modifier.

    Attributes:
        name: Display name.
        kind: FIXED_ADD or PERCENTAGE.
        value: Non-negative amount; for PERCENTAGE a fraction (0.15 = +15%).
            At most four decimals, the stored precision.
    """

    name: str = Field(min_length=1, max_length=120)
    kind: ModifierKind
    value: Decimal = Field(ge=0, max_digits=12, decimal_places=4)


class ModifierOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: ModifierKind
    value: Decimal


class Line(BaseModel):
    """One cart line: item, positive quantity and selected modifiers."""

    item_id: int
    quantity: int = Field(gt=0)
    modifier_ids: List[int] = Field(default_factory=list)


class LinesRequest(BaseModel):
    lines: List[Line]


class QuoteResponse(BaseModel):
    total: Decimal


class SaleResponse(BaseModel):
    """Response body for a committed sale.

    Attributes:
        message: Confirmation message including the sale number.
        total_paid: Authoritative total computed at commit time.
    """

    message: str
    total_paid: Decimal


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.get("/items", response_model=List[ItemOut])
def list_items():
    return CatalogRepo().list_items()


@app.post("/items", response_model=ItemOut, status_code=201)
def create_item(req: ItemCreate):
    fields = req.model_dump()
    fields["size"] = req.size.value
    return CatalogRepo().create_item(**fields)


def _set_status(item_id: int, status: ItemStatus):
    obj = CatalogRepo().set_status(item_id, status.value)
    if obj is None:
        raise HTTPException(status_code=404, detail="ITEM_NOT_FOUND")
    return obj


@app.post("/items/{item_id}/activate", response_model=ItemOut)
def activate_item(item_id: int):
    return _set_status(item_id, ItemStatus.ACTIVE)


@app.post("/items/{item_id}/deactivate", response_model=ItemOut)
def deactivate_item(item_id: int):
    return _set_status(item_id, ItemStatus.INACTIVE)


@app.get("/modifiers", response_model=List[ModifierOut])
def list_modifiers():
    return CatalogRepo().list_modifiers()


@app.post("/modifiers", response_model=ModifierOut, status_code=201)
def create_modifier(req: ModifierCreate):
    return CatalogRepo().create_modifier(name=req.name, kind=req.kind.value, value=req.value)


@app.post("/quote", response_model=QuoteResponse)
def quote(req: LinesRequest):
    """Price a cart against the current catalog without touching stock."""
    lines = [ln.model_dump() for ln in req.lines]
    return QuoteResponse(total=CatalogRepo().quote(lines))


@app.post("/sales", response_model=SaleResponse)
def settle(
    req: LinesRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Commit a sale: decrement stock for every line, all or nothing.

    When an ``Idempotency-Key`` header is provided, the outcome of the first
    request is stored and replayed for retries with the same payload (with
    header ``Idempotent-Replay: true``). Reusing a key with a different
    payload returns 409, as does a retry that arrives while the first request
    is still being processed. If the sale fails unexpectedly the pending key
    is released so a retry can run again.

    Returns:
        SaleResponse: Message and authoritative total paid.

    Raises:
        HTTPException: 400 for an empty cart, 409 for idempotency conflicts.
            Insufficient stock is answered with 422 and a ``message``.
    """
    if not req.lines:
        raise HTTPException(status_code=400, detail="EMPTY_CART")
    lines = [ln.model_dump() for ln in req.lines]

    if idempotency_key:
        try:
            existing, rec = get_or_create_idempotent(idempotency_key, req.model_dump())
        except ValueError:
            raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
        if existing:
            if not rec.response_status:
                raise HTTPException(status_code=409, detail="IDEMPOTENCY_IN_PROGRESS")
            return JSONResponse(
                rec.response_body, status_code=rec.response_status, headers={"Idempotent-Replay": "true"}
            )

    try:
        sale = CatalogRepo().settle(lines)
    except InsufficientStockError as e:
        body = {"message": e.message, "item_id": e.item_id, "requested": e.requested, "available": e.available}
        logger.info("sale rejected", extra={"item_id": e.item_id, "requested": e.requested, "available": e.available})
        if idempotency_key:
            finalize(idempotency_key, 422, body)
        return JSONResponse(body, status_code=422)
    except Exception:
        logger.exception("sale failed", extra={"idempotency_key": idempotency_key})
        if idempotency_key:
            release(idempotency_key)
        raise

    out = SaleResponse(message=f"Sale #{sale.id} recorded", total_paid=sale.total_paid)
    logger.info("sale settled", extra={"sale_id": sale.id, "total_paid": str(sale.total_paid)})
    if idempotency_key:
        finalize(idempotency_key, 200, out.model_dump(mode="json"))
    return out


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
