"""API tests for the checkout endpoint.

Settlement is served by the in-process catalog stub unless a test swaps the
settlement port. The cart must be emptied only after a confirmed sale.
"""

from decimal import Decimal

import httpx
import pytest
from django.core.cache import cache

from apps.shop import providers
from apps.shop.domain import CartLine, ModifierKind, SettlementPending, SettlementRejected

CART_URL = "/api/shop/cart/"
CHECKOUT_URL = "/api/shop/cart/checkout/"


@pytest.fixture
def seeded(catalog):
    catalog.create_item("Sofa", Decimal("10000"), 2)  # id 1
    catalog.create_item("Lamp", Decimal("90"), 1)  # id 2
    catalog.create_modifier("Varnish", ModifierKind.PERCENTAGE, Decimal("0.15"))  # id 3
    return catalog


def add(client, item_id, quantity, modifier_ids=()):
    payload = {"item_id": item_id, "quantity": quantity, "modifier_ids": list(modifier_ids)}
    return client.post(CART_URL, data=payload, content_type="application/json")


def test_checkout_success_returns_receipt_and_clears_cart(client, seeded):
    add(client, 1, 2, [3])
    r = client.post(CHECKOUT_URL)
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Sale #1 recorded"
    assert Decimal(body["total_paid"]) == Decimal("23000")
    assert body["total_paid_display"] == 23000
    assert client.get(CART_URL).json()["count"] == 0
    assert seeded.list_items()[0].stock == 0


def test_checkout_empty_cart_returns_400(client, seeded):
    r = client.post(CHECKOUT_URL)
    assert r.status_code == 400
    assert r.json()["detail"] == "EMPTY_CART"


def test_checkout_rejected_keeps_cart(client, seeded):
    add(client, 1, 2)
    # stock drops after the line was added
    seeded.settle([CartLine(1, 1)])
    r = client.post(CHECKOUT_URL)
    assert r.status_code == 422
    body = r.json()
    assert body["detail"] == "SETTLEMENT_REJECTED"
    assert body["reason"] == "Insufficient stock for Sofa: requested 2, available 1"
    cart = client.get(CART_URL).json()
    assert [(ln["item_id"], ln["quantity"]) for ln in cart["lines"]] == [(1, 2)]
    assert seeded.list_items()[0].stock == 1


def test_checkout_upstream_failure_returns_503_and_keeps_cart(client, seeded, monkeypatch):
    class DownSettlement:
        def settle(self, lines, idempotency_key=None):
            raise httpx.ConnectError("boom")

    monkeypatch.setattr(providers, "get_settlement", lambda: DownSettlement())
    add(client, 1, 1)
    r = client.post(CHECKOUT_URL)
    assert r.status_code == 503
    assert r.json()["detail"] == "UPSTREAM_UNAVAILABLE"
    assert client.get(CART_URL).json()["count"] == 1


def test_checkout_generic_rejection_reason(client, seeded, monkeypatch):
    class Rejecting:
        def settle(self, lines, idempotency_key=None):
            raise SettlementRejected()

    monkeypatch.setattr(providers, "get_settlement", lambda: Rejecting())
    add(client, 1, 1)
    r = client.post(CHECKOUT_URL)
    assert r.status_code == 422
    assert r.json()["reason"] == "Insufficient stock"


def test_checkout_forwards_idempotency_key(client, seeded, monkeypatch):
    seen = {}
    real = providers.get_settlement()

    class Recording:
        def settle(self, lines, idempotency_key=None):
            seen["key"] = idempotency_key
            return real.settle(lines, idempotency_key)

    monkeypatch.setattr(providers, "get_settlement", lambda: Recording())
    add(client, 2, 1)
    r = client.post(CHECKOUT_URL, HTTP_IDEMPOTENCY_KEY="checkout-1")
    assert r.status_code == 200
    assert seen["key"] == "checkout-1"


def test_checkout_generates_idempotency_key_when_missing(client, seeded, monkeypatch):
    seen = {}
    real = providers.get_settlement()

    class Recording:
        def settle(self, lines, idempotency_key=None):
            seen["key"] = idempotency_key
            return real.settle(lines, idempotency_key)

    monkeypatch.setattr(providers, "get_settlement", lambda: Recording())
    add(client, 2, 1)
    client.post(CHECKOUT_URL)
    assert seen["key"]


def test_concurrent_checkout_in_same_session_returns_409(client, seeded):
    add(client, 1, 1)
    key = f"shop:checkout:{client.session.session_key}"
    cache.add(key, True)
    r = client.post(CHECKOUT_URL)
    assert r.status_code == 409
    assert r.json()["detail"] == "SETTLEMENT_IN_PROGRESS"
    assert client.get(CART_URL).json()["count"] == 1


def test_checkout_lock_is_released_after_failure(client, seeded):
    add(client, 1, 2)
    add(client, 2, 1)
    seeded.settle([CartLine(2, 1)])
    assert client.post(CHECKOUT_URL).status_code == 422
    client.delete(CART_URL)
    add(client, 1, 1)
    assert client.post(CHECKOUT_URL).status_code == 200


def test_pending_settlement_returns_503_and_retry_reuses_key(client, seeded, monkeypatch):
    keys = []
    real = providers.get_settlement()

    class SlowCommit:
        def settle(self, lines, idempotency_key=None):
            keys.append(idempotency_key)
            if len(keys) == 1:
                raise SettlementPending()
            return real.settle(lines, idempotency_key)

    monkeypatch.setattr(providers, "get_settlement", lambda: SlowCommit())
    add(client, 1, 1)
    r = client.post(CHECKOUT_URL)
    assert r.status_code == 503
    assert r.json()["detail"] == "SETTLEMENT_PENDING"
    assert client.get(CART_URL).json()["count"] == 1

    assert client.post(CHECKOUT_URL).status_code == 200
    assert keys[0] and keys[0] == keys[1]
    assert seeded.list_items()[0].stock == 1


def test_upstream_failure_keeps_key_for_next_attempt(client, seeded, monkeypatch):
    keys = []

    class Down:
        def settle(self, lines, idempotency_key=None):
            keys.append(idempotency_key)
            raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(providers, "get_settlement", lambda: Down())
    add(client, 1, 1)
    client.post(CHECKOUT_URL)
    client.post(CHECKOUT_URL)
    assert len(keys) == 2 and keys[0] == keys[1]


def test_rejection_starts_a_fresh_key(client, seeded, monkeypatch):
    keys = []

    class Rejecting:
        def settle(self, lines, idempotency_key=None):
            keys.append(idempotency_key)
            raise SettlementRejected()

    monkeypatch.setattr(providers, "get_settlement", lambda: Rejecting())
    add(client, 1, 1)
    client.post(CHECKOUT_URL)
    client.post(CHECKOUT_URL)
    assert keys[0] != keys[1]


def test_programming_errors_are_not_reported_as_upstream_outage(client, seeded, monkeypatch):
    class Buggy:
        def settle(self, lines, idempotency_key=None):
            raise RuntimeError("bug")

    monkeypatch.setattr(providers, "get_settlement", lambda: Buggy())
    add(client, 1, 1)
    with pytest.raises(RuntimeError, match="bug"):
        client.post(CHECKOUT_URL)
