"""Unit tests for the HTTP adapters to the catalog and settlement endpoints.

These tests verify that the HTTP clients map success, business failures and
network errors correctly by monkeypatching ``httpx.Client.request``.
"""
from decimal import Decimal

import httpx
import pytest

from apps.shop.domain import (
    CartLine,
    CatalogLoadFailure,
    ItemStatus,
    ModifierKind,
    SettlementRejected,
    UnresolvedReference,
)
from apps.shop.http_adapters import HttpCatalogClient, HttpSettlementClient
from gateway.middleware import REQUEST_ID_CTX


class DummyResp:
    """Minimal httpx-like response stub for adapter tests."""

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)

    def json(self):
        if self._json is None:
            raise ValueError("no body")
        return self._json


ITEM = {"id": 1, "name": "Sofa", "base_price": "10000.00", "stock": 2, "status": "ACTIVE",
        "kind": None, "material": "Oak", "size": "LARGE"}


def route(responses, calls=None):
    def fake_request(self, method, url, json=None, headers=None, **kw):
        if calls is not None:
            calls.append({"method": method, "url": url, "json": json, "headers": headers})
        return responses[(method, url.split("://", 1)[1].split("/", 1)[1])]
    return fake_request


def test_list_items_maps_wire_records(monkeypatch):
    monkeypatch.setattr(httpx.Client, "request", route({("GET", "items"): DummyResp(200, [ITEM])}))
    items = HttpCatalogClient(base_url="http://catalog:9002").list_items()
    assert len(items) == 1
    assert items[0].base_price == Decimal("10000.00")
    assert items[0].status == ItemStatus.ACTIVE
    assert items[0].material == "Oak"


def test_list_modifiers_accepts_numeric_values(monkeypatch):
    body = [{"id": 3, "name": "Varnish", "kind": "PERCENTAGE", "value": 0.15}]
    monkeypatch.setattr(httpx.Client, "request", route({("GET", "modifiers"): DummyResp(200, body)}))
    (mod,) = HttpCatalogClient(base_url="http://catalog:9002").list_modifiers()
    assert mod.kind == ModifierKind.PERCENTAGE
    assert mod.value == Decimal("0.15")


def test_list_items_network_error_is_catalog_load_failure(monkeypatch):
    def fake_request(self, method, url, **kw):
        raise httpx.ConnectError("boom")
    monkeypatch.setattr(httpx.Client, "request", fake_request)
    with pytest.raises(CatalogLoadFailure):
        HttpCatalogClient(base_url="http://catalog:9002").list_items()


def test_list_items_malformed_body_is_catalog_load_failure(monkeypatch):
    bad = [{**ITEM, "stock": -4}]
    monkeypatch.setattr(httpx.Client, "request", route({("GET", "items"): DummyResp(200, bad)}))
    with pytest.raises(CatalogLoadFailure):
        HttpCatalogClient(base_url="http://catalog:9002").list_items()


def test_set_item_status_uses_action_routes(monkeypatch):
    calls = []
    responses = {
        ("POST", "items/1/deactivate"): DummyResp(200, {**ITEM, "status": "INACTIVE"}),
        ("POST", "items/2/activate"): DummyResp(404, {"detail": "ITEM_NOT_FOUND"}),
    }
    monkeypatch.setattr(httpx.Client, "request", route(responses, calls))
    client = HttpCatalogClient(base_url="http://catalog:9002")
    assert client.set_item_status(1, ItemStatus.INACTIVE).status == ItemStatus.INACTIVE
    with pytest.raises(UnresolvedReference):
        client.set_item_status(2, ItemStatus.ACTIVE)


def test_create_modifier_sends_stored_fraction(monkeypatch):
    calls = []
    resp = DummyResp(201, {"id": 4, "name": "Varnish", "kind": "PERCENTAGE", "value": "0.1500"})
    monkeypatch.setattr(httpx.Client, "request", route({("POST", "modifiers"): resp}, calls))
    mod = HttpCatalogClient(base_url="http://catalog:9002").create_modifier(
        "Varnish", ModifierKind.PERCENTAGE, Decimal("0.15")
    )
    assert calls[0]["json"] == {"name": "Varnish", "kind": "PERCENTAGE", "value": "0.15"}
    assert mod.value == Decimal("0.15")


def test_settle_ok_returns_receipt_and_sends_key(monkeypatch):
    calls = []
    resp = DummyResp(200, {"message": "Sale #7 recorded", "total_paid": "23000.00"})
    monkeypatch.setattr(httpx.Client, "request", route({("POST", "sales"): resp}, calls))
    receipt = HttpSettlementClient(base_url="http://catalog:9002").settle(
        [CartLine(1, 2, frozenset({3}), "Sofa")], idempotency_key="k-1"
    )
    assert receipt.message == "Sale #7 recorded"
    assert receipt.total_paid == Decimal("23000.00")
    assert calls[0]["json"] == {"lines": [{"item_id": 1, "quantity": 2, "modifier_ids": [3]}]}
    assert calls[0]["headers"]["Idempotency-Key"] == "k-1"


def test_settle_422_surfaces_service_message(monkeypatch):
    resp = DummyResp(422, {"message": "Insufficient stock for Sofa: requested 3, available 2"})
    monkeypatch.setattr(httpx.Client, "request", route({("POST", "sales"): resp}))
    with pytest.raises(SettlementRejected) as e:
        HttpSettlementClient(base_url="http://catalog:9002").settle([CartLine(1, 3)])
    assert e.value.reason == "Insufficient stock for Sofa: requested 3, available 2"


def test_settle_rejection_without_message_uses_default_reason(monkeypatch):
    monkeypatch.setattr(httpx.Client, "request", route({("POST", "sales"): DummyResp(422)}))
    with pytest.raises(SettlementRejected) as e:
        HttpSettlementClient(base_url="http://catalog:9002").settle([CartLine(1, 3)])
    assert e.value.reason == "Insufficient stock"


def test_settle_network_error_propagates(monkeypatch):
    def fake_request(self, method, url, **kw):
        raise httpx.ConnectError("boom")
    monkeypatch.setattr(httpx.Client, "request", fake_request)
    with pytest.raises(httpx.ConnectError):
        HttpSettlementClient(base_url="http://catalog:9002").settle([CartLine(1, 1)])


def test_request_id_is_propagated(monkeypatch):
    calls = []
    monkeypatch.setattr(httpx.Client, "request", route({("GET", "items"): DummyResp(200, [])}, calls))
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        HttpCatalogClient(base_url="http://catalog:9002").list_items()
    finally:
        REQUEST_ID_CTX.reset(token)
    assert calls[0]["headers"]["X-Request-ID"] == "rid-42"
