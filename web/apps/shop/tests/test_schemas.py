"""Tests for boundary validation of admin forms and cart requests."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from apps.shop.domain import ItemSize, ModifierKind
from apps.shop.schemas import CartLineIn, ItemIn, ModifierIn


def test_percentage_input_is_stored_as_fraction():
    dto = ModifierIn.model_validate({"name": "Varnish", "kind": "PERCENTAGE", "value": "15"})
    assert dto.kind == ModifierKind.PERCENTAGE
    assert dto.value == Decimal("0.15")


def test_fixed_add_input_is_stored_as_is():
    dto = ModifierIn.model_validate({"name": "Cushion", "kind": "FIXED_ADD", "value": 5000})
    assert dto.value == Decimal("5000")


def test_modifier_kind_defaults_to_fixed_add():
    assert ModifierIn.model_validate({"name": "Legs", "value": "10"}).kind == ModifierKind.FIXED_ADD


@pytest.mark.parametrize("kind", ["FIXED_ADD", "PERCENTAGE"])
def test_negative_modifier_value_is_rejected(kind):
    with pytest.raises(ValidationError):
        ModifierIn.model_validate({"name": "Discount", "kind": kind, "value": "-5"})


def test_percent_with_two_decimals_fits_stored_precision():
    dto = ModifierIn.model_validate({"name": "Varnish", "kind": "PERCENTAGE", "value": "12.34"})
    assert dto.value == Decimal("0.1234")


@pytest.mark.parametrize("kind,value", [("PERCENTAGE", "12.345"), ("FIXED_ADD", "0.001")])
def test_modifier_value_beyond_stored_precision_is_rejected(kind, value):
    with pytest.raises(ValidationError):
        ModifierIn.model_validate({"name": "Varnish", "kind": kind, "value": value})


def test_unknown_modifier_kind_is_rejected():
    with pytest.raises(ValidationError):
        ModifierIn.model_validate({"name": "Coupon", "kind": "DISCOUNT", "value": "5"})


def test_item_form_defaults_and_strips_name():
    dto = ItemIn.model_validate({"name": "  Armchair ", "base_price": "4990.50", "stock": 3})
    assert dto.name == "Armchair"
    assert dto.base_price == Decimal("4990.50")
    assert dto.size == ItemSize.MEDIUM
    assert dto.kind is None and dto.material is None


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "Chair", "base_price": "-1", "stock": 1},
        {"name": "Chair", "base_price": "10", "stock": -1},
        {"name": "   ", "base_price": "10", "stock": 1},
        {"name": "Chair", "base_price": "10", "stock": 1, "size": "HUGE"},
        {"name": "Chair", "base_price": "10.005", "stock": 1},
    ],
)
def test_invalid_item_forms_are_rejected(payload):
    with pytest.raises(ValidationError):
        ItemIn.model_validate(payload)


def test_cart_line_defaults_to_no_modifiers():
    dto = CartLineIn.model_validate({"item_id": 1, "quantity": 2})
    assert dto.modifier_ids == []
