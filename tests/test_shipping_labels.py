"""Shipping label and return label flows."""
from unittest.mock import patch

import pytest

import db
from exceptions import CarrierApiError, OrderNotFound, ValidationError
from models import ParcelDetails
from services import shipping_labels

RETURN_FROM = {"line1": "Damrak 1", "city": "Amsterdam", "postal_code": "1012LG", "country": "NL"}
RETURN_TO = {"line1": "Warehouse 5", "city": "Utrecht", "postal_code": "3511AA", "country": "NL"}


class TestParseShippingAddress:

    def test_full_address(self):
        assert shipping_labels.parse_shipping_address("Damrak 1, Amsterdam, 1012LG, BE") == {
            "address": "Damrak 1", "city": "Amsterdam", "postal_code": "1012LG", "country": "BE",
        }

    def test_country_defaults_to_nl(self):
        assert shipping_labels.parse_shipping_address("Damrak 1, Amsterdam")["country"] == "NL"

    def test_empty(self):
        assert shipping_labels.parse_shipping_address(None) == {
            "address": "", "city": "", "postal_code": "", "country": "NL",
        }


class TestCreateShippingLabel:

    def test_creates_parcel_and_stores_tracking(self, make_order):
        order = make_order(phone="+31600000000")
        parcel = ParcelDetails(
            parcel_id="555",
            tracking_number="3STB",
            tracking_url="https://tracking.sendcloud.sc/forward?code=3STB",
            label_url="https://panel.sendcloud.sc/label/555",
        )
        with patch.object(shipping_labels, "create_parcel", return_value=parcel) as create:
            updated = shipping_labels.create_shipping_label(order.id)

        payload = create.call_args.args[0]
        assert payload["name"] == "Jane Doe"
        assert payload["postal_code"] == "1012LG"
        assert payload["order_number"] == str(order.id)
        assert payload["request_label"] is True

        assert updated.shipping_id == "555"
        assert updated.tracking_link.startswith("https://")
        assert updated.instruction == "NO ACTION REQUIRED"

    def test_requires_address(self, make_order):
        order = make_order(shipping_address="  ")
        with patch.object(shipping_labels, "create_parcel") as create:
            with pytest.raises(ValidationError):
                shipping_labels.create_shipping_label(order.id)
        create.assert_not_called()

    def test_unknown_order(self):
        with pytest.raises(OrderNotFound):
            shipping_labels.create_shipping_label(404)


def test_remove_shipping(make_order):
    order = make_order(shipping_id="555", tracking_link="https://t", tracking_number="3STB", delivery_status="In transit")
    assert order.instruction == "SHIPPED"

    updated = shipping_labels.remove_shipping(order.id)

    assert updated.shipping_id is None and updated.tracking_link is None
    assert updated.instruction == "TO BE SHIPPED BUT NO STICKER"
    assert db.list_activities(order.id)[0]["action_type"] == "shipping_removed"


class TestReturnLabel:

    def test_creates_return_and_stores_ids(self, make_order):
        order = make_order()
        with patch.object(shipping_labels, "create_return", return_value={"return_id": 11, "parcel_id": 22}) as create, \
             patch.object(shipping_labels, "fetch_parcel", return_value=ParcelDetails(parcel_id="22", label_url="https://l/22")):
            result = shipping_labels.create_return_label(order.id, RETURN_FROM, RETURN_TO, "1.500")

        payload = create.call_args.args[0]
        assert payload["weight"] == {"value": 1.5, "unit": "kg"}
        assert payload["from_address"]["name"] == "Jane Doe"
        assert payload["to_address"]["name"] == "Warehouse"
        assert result == {"sendcloud_return_id": "11", "sendcloud_return_parcel_id": "22", "label_url": "https://l/22"}

        stored = db.get_order(order.id)
        assert stored.sendcloud_return_id == "11"
        assert stored.sendcloud_return_parcel_id == "22"

    def test_label_lookup_failure_is_not_fatal(self, make_order):
        order = make_order()
        with patch.object(shipping_labels, "create_return", return_value={"return_id": 11, "parcel_id": 22}), \
             patch.object(shipping_labels, "fetch_parcel", side_effect=CarrierApiError("later")):
            result = shipping_labels.create_return_label(order.id, RETURN_FROM, RETURN_TO, "1")
        assert result["label_url"] is None

    @pytest.mark.parametrize("weight", [None, "", "abc", "0", "-1", 2.0, "1.2.3"])
    def test_invalid_weight(self, make_order, weight):
        order = make_order()
        with pytest.raises(ValidationError):
            shipping_labels.create_return_label(order.id, RETURN_FROM, RETURN_TO, weight)

    @pytest.mark.parametrize("missing", ["line1", "city", "postal_code", "country"])
    def test_incomplete_address(self, make_order, missing):
        order = make_order()
        bad = dict(RETURN_FROM, **{missing: ""})
        with pytest.raises(ValidationError):
            shipping_labels.create_return_label(order.id, bad, RETURN_TO, "1.0")
