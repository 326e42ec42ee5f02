"""HTTP views for the shop app.

Views are kept small: they validate requests (via Pydantic), rebuild the
customer's ``CartSession`` from the Django session, delegate to it, and
store the cart back. The cart never leaves the web session until checkout.

The views obtain their ports from ``providers``, which returns HTTP adapter
clients (``HttpCatalogClient``, ``HttpSettlementClient``) or the in-process
``InMemoryCatalog`` depending on runtime settings.

Checkout: only one settlement per web session may be outstanding at a time;
a concurrent attempt gets HTTP 409. The cart is cleared only when the
settlement service confirms the sale.
"""

import logging
from contextlib import contextmanager

import httpx
from django.conf import settings
from django.core.cache import cache
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    CircuitOpen,
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    ItemStatus,
    SettlementInProgress,
    SettlementPending,
    SettlementRejected,
    UnresolvedReference,
)
from .pricing import display_total
from .schemas import (
    CartLineIn,
    CartLineOut,
    CartOut,
    ItemIn,
    ItemOut,
    ModifierIn,
    ModifierOut,
    SaleReceiptOut,
)
from .session import CartSession

logger = logging.getLogger(__name__)

CART_KEY = "cart"
CHECKOUT_KEY = "checkout_key"


def _open(request) -> CartSession:
    return providers.open_session(
        CartSession.load_lines(request.session.get(CART_KEY, [])),
        checkout_key=request.session.get(CHECKOUT_KEY),
    )


def _store(request, session: CartSession) -> None:
    request.session[CART_KEY] = session.dump_lines()
    request.session[CHECKOUT_KEY] = session.checkout_key


def _catalog_body(session: CartSession, admin: bool) -> dict:
    return {
        "available": session.loaded,
        "items": [ItemOut.from_domain(it).model_dump(mode="json") for it in session.catalog_items(admin)],
        "modifiers": [ModifierOut.from_domain(m).model_dump(mode="json") for m in session.snapshot.modifiers.values()],
    }


def _cart_body(session: CartSession) -> dict:
    lines = []
    for idx, (line, priced) in enumerate(session.priced_lines()):
        lines.append(
            CartLineOut(
                index=idx,
                item_id=line.item_id,
                name=line.name,
                quantity=line.quantity,
                modifier_ids=sorted(line.modifier_ids),
                unit_price=priced.unit_price if priced else None,
                line_total=priced.line_total if priced else None,
            )
        )
    out = CartOut(
        lines=lines,
        count=len(lines),
        total=session.quotation,
        total_display=display_total(session.quotation),
    )
    return out.model_dump(mode="json")


def _upstream_unavailable() -> Response:
    return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)


@contextmanager
def _checkout_lock(request):
    """Hold a per-web-session lock for the duration of a settlement.

    Raises:
        SettlementInProgress: If another request already holds the lock.
    """
    if request.session.session_key is None:
        request.session.save()
    key = f"shop:checkout:{request.session.session_key}"
    if not cache.add(key, True, timeout=getattr(settings, "CHECKOUT_LOCK_SECS", 60)):
        raise SettlementInProgress()
    try:
        yield
    finally:
        cache.delete(key)


class ShopPingView(APIView):
    """Simple health-check endpoint for the shop module."""

    def get(self, request):
        return Response({"ok": True})


class CatalogView(APIView):
    """Customer catalog: ACTIVE items and every modifier.

    When the catalog cannot be read the response is still 200 with empty
    lists and ``available: false``.
    """

    def get(self, request):
        return Response(_catalog_body(_open(request), admin=False))


class AdminCatalogView(APIView):
    """Admin catalog: every item regardless of status."""

    def get(self, request):
        return Response(_catalog_body(_open(request), admin=True))


class AdminItemsView(APIView):
    def post(self, request):
        """Create an item from the admin form.

        Returns:
            Response: 201 with the created item, 400 on validation errors
            (including negative price or stock), 503 when the catalog
            service is unavailable.
        """
        try:
            dto = ItemIn.model_validate(request.data)
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            item = providers.get_catalog().create_item(**dto.model_dump())
        except (httpx.HTTPError, CircuitOpen):
            logger.exception("item creation failed")
            return _upstream_unavailable()
        return Response(ItemOut.from_domain(item).model_dump(mode="json"), status=status.HTTP_201_CREATED)


class AdminModifiersView(APIView):
    def post(self, request):
        """Create a modifier from the admin form.

        A PERCENTAGE value is entered as a whole percent and stored as a
        fraction (``{"kind": "PERCENTAGE", "value": "15"}`` stores 0.15).
        """
        try:
            dto = ModifierIn.model_validate(request.data)
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            modifier = providers.get_catalog().create_modifier(dto.name, dto.kind, dto.value)
        except (httpx.HTTPError, CircuitOpen):
            logger.exception("modifier creation failed")
            return _upstream_unavailable()
        return Response(ModifierOut.from_domain(modifier).model_dump(mode="json"), status=status.HTTP_201_CREATED)


class AdminItemToggleView(APIView):
    def post(self, request, item_id: int):
        """Flip an item between ACTIVE and INACTIVE."""
        session = _open(request)
        item = session.snapshot.items.get(item_id)
        if item is None:
            return Response({"detail": UnresolvedReference.code}, status=status.HTTP_404_NOT_FOUND)

        new_status = ItemStatus.INACTIVE if item.is_active else ItemStatus.ACTIVE
        try:
            updated = session.catalog.set_item_status(item_id, new_status)
        except UnresolvedReference:
            return Response({"detail": UnresolvedReference.code}, status=status.HTTP_404_NOT_FOUND)
        except (httpx.HTTPError, CircuitOpen):
            logger.exception("status change failed", extra={"item_id": item_id})
            return _upstream_unavailable()
        return Response(ItemOut.from_domain(updated).model_dump(mode="json"))


class CartView(APIView):
    """Read, extend or clear the session cart."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "shop_cart"

    def get(self, request):
        return Response(_cart_body(_open(request)))

    def post(self, request):
        """Add a line to the cart after the advisory stock check.

        Returns:
            Response: One of the following responses.
            - 201 with the updated cart.
            - 400 with {detail: "INVALID_QUANTITY"} or a schema error.
            - 404 with {detail: "UNRESOLVED_REFERENCE"} for an unknown item.
            - 422 with {detail: "INSUFFICIENT_STOCK", in_cart, requested,
              available} when the cart would exceed stock.
        """
        try:
            dto = CartLineIn.model_validate(request.data)
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        session = _open(request)
        try:
            session.add(dto.item_id, dto.quantity, dto.modifier_ids)
        except InvalidQuantity as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except UnresolvedReference as e:
            return Response({"detail": str(e), "item_id": e.ref}, status=status.HTTP_404_NOT_FOUND)
        except InsufficientStock as e:
            body = {"detail": str(e), "in_cart": e.in_cart, "requested": e.requested, "available": e.available}
            return Response(body, status=status.HTTP_422_UNPROCESSABLE_ENTITY)

        _store(request, session)
        return Response(_cart_body(session), status=status.HTTP_201_CREATED)

    def delete(self, request):
        request.session[CART_KEY] = []
        request.session.pop(CHECKOUT_KEY, None)
        return Response(_cart_body(_open(request)))


class CheckoutView(APIView):
    """Settle the session cart with the settlement service."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "shop_checkout"

    def post(self, request):
        """Submit the cart for settlement.

        An ``Idempotency-Key`` header is forwarded to the settlement service
        when present. Otherwise the key of an earlier attempt whose outcome
        is unknown is reused, or a fresh key is generated. The key is kept in
        the web session until the sale is confirmed or rejected.

        Returns:
            Response: One of the following responses.
            - 200 with {message, total_paid, total_paid_display}; the cart
              is now empty.
            - 400 with {detail: "EMPTY_CART"}.
            - 409 with {detail: "SETTLEMENT_IN_PROGRESS"}.
            - 422 with {detail: "SETTLEMENT_REJECTED", reason}; the cart is
              unchanged.
            - 503 with {detail: "SETTLEMENT_PENDING"} while an earlier attempt
              is still being committed, or {detail: "UPSTREAM_UNAVAILABLE"};
              the cart and its checkout key are kept.
        """
        idem_key = request.headers.get("Idempotency-Key")
        session = _open(request)

        try:
            with _checkout_lock(request):
                receipt = session.checkout(idempotency_key=idem_key)
        except EmptyCart as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except SettlementInProgress as e:
            return Response({"detail": str(e)}, status=status.HTTP_409_CONFLICT)
        except SettlementRejected as e:
            _store(request, session)
            return Response({"detail": str(e), "reason": e.reason}, status=status.HTTP_422_UNPROCESSABLE_ENTITY)
        except SettlementPending as e:
            _store(request, session)
            return Response({"detail": str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        except (httpx.HTTPError, CircuitOpen):
            logger.exception("settlement unavailable")
            _store(request, session)
            return _upstream_unavailable()

        _store(request, session)
        body = SaleReceiptOut(
            message=receipt.message,
            total_paid=receipt.total_paid,
            total_paid_display=display_total(receipt.total_paid),
        )
        return Response(body.model_dump(mode="json"))
