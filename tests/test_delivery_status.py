"""Delivery status refresh for one order and for a batch."""
from unittest.mock import patch

import db
from exceptions import CarrierApiError
from models import DeliveryStatusResult, ParcelDetails
from services import delivery_status

TRACKING = "https://tracking.sendcloud.sc/forward?carrier=postnl&code=3STB"


class TestSingleOrder:

    def test_skips_manual_no_action_required(self, make_order):
        order = make_order(tracking_link=TRACKING, manual_instruction="NO ACTION REQUIRED")
        with patch.object(delivery_status, "fetch_parcel") as fetch:
            result = delivery_status.update_order_delivery_status(order)
        assert result["success"] and result["skipped"]
        fetch.assert_not_called()

    def test_status_via_shipping_id(self, make_order):
        order = make_order(tracking_link=TRACKING, shipping_id="555")
        parcel = ParcelDetails(parcel_id="555", status_message="Delivered")
        with patch.object(delivery_status, "fetch_parcel", return_value=parcel) as fetch, \
             patch.object(delivery_status, "fetch_delivery_status") as by_tracking:
            result = delivery_status.update_order_delivery_status(order)

        fetch.assert_called_once_with("555")
        by_tracking.assert_not_called()
        assert result == {
            "success": True,
            "delivery_status": "Delivered",
            "instruction": "DELIVERED",
            "message": "Status updated",
        }
        stored = db.get_order(order.id)
        assert stored.delivery_status == "Delivered"
        assert stored.last_delivery_status_check

    def test_404_on_parcel_falls_back_to_tracking_number(self, make_order):
        order = make_order(tracking_link=TRACKING, shipping_id="gone")
        status = DeliveryStatusResult(status="In transit", expected_delivery_date="2026-10-20")
        with patch.object(delivery_status, "fetch_parcel", side_effect=CarrierApiError("nope", api_status=404)), \
             patch.object(delivery_status, "fetch_delivery_status", return_value=status) as by_tracking:
            result = delivery_status.update_order_delivery_status(order)

        by_tracking.assert_called_once_with("3STB")
        assert result["success"]
        assert result["instruction"] == "SHIPPED"
        assert db.get_order(order.id).expected_delivery_date == "2026-10-20"

    def test_other_parcel_errors_stop(self, make_order):
        order = make_order(tracking_link=TRACKING, shipping_id="555")
        with patch.object(delivery_status, "fetch_parcel", side_effect=CarrierApiError("boom", api_status=500)), \
             patch.object(delivery_status, "fetch_delivery_status") as by_tracking:
            result = delivery_status.update_order_delivery_status(order)

        assert result["success"] is False
        by_tracking.assert_not_called()
        assert db.get_order(order.id).last_delivery_status_check

    def test_stored_tracking_number_wins_over_link(self, make_order):
        order = make_order(tracking_link=TRACKING, tracking_number="OWN123")
        status = DeliveryStatusResult(status="In transit")
        with patch.object(delivery_status, "fetch_delivery_status", return_value=status) as by_tracking:
            delivery_status.update_order_delivery_status(order)
        by_tracking.assert_called_once_with("OWN123")

    def test_unchanged_status(self, make_order):
        order = make_order(tracking_link=TRACKING, delivery_status="In transit")
        status = DeliveryStatusResult(status="In transit")
        with patch.object(delivery_status, "fetch_delivery_status", return_value=status):
            result = delivery_status.update_order_delivery_status(order)
        assert result["message"] == "Status unchanged, details updated"

    def test_empty_label_has_no_tracking_number(self, make_order):
        order = make_order(tracking_link="Empty label")
        with patch.object(delivery_status, "fetch_delivery_status") as by_tracking:
            result = delivery_status.update_order_delivery_status(order)
        by_tracking.assert_not_called()
        assert result == {"success": False, "error": "Could not fetch status from SendCloud"}
        assert db.get_order(order.id).last_delivery_status_check

    def test_status_missing_from_tracking_response(self, make_order):
        order = make_order(tracking_link=TRACKING)
        status = DeliveryStatusResult(status=None, error="Status not found in response")
        with patch.object(delivery_status, "fetch_delivery_status", return_value=status):
            result = delivery_status.update_order_delivery_status(order)
        assert result["success"] is False
        assert "Status not found" in result["error"]


class TestBatch:

    def test_batch_counts_and_survives_crashes(self, make_order):
        ok = make_order(tracking_link=TRACKING + "1")
        bad = make_order(tracking_link=TRACKING + "2")
        crash = make_order(tracking_link=TRACKING + "3")

        def fake_update(order):
            if order.id == ok.id:
                return {"success": True}
            if order.id == bad.id:
                return {"success": False, "error": "x"}
            raise RuntimeError("unexpected")

        assert crash.id
        with patch.object(delivery_status, "update_order_delivery_status", side_effect=fake_update):
            counts = delivery_status.batch_update_delivery_status(10)

        assert counts == {"checked": 3, "updated": 1, "failed": 2, "skipped": 0}

    def test_batch_respects_limit(self, make_order):
        for i in range(3):
            make_order(tracking_link=f"{TRACKING}{i}")
        with patch.object(delivery_status, "update_order_delivery_status", return_value={"success": True, "skipped": True}):
            counts = delivery_status.batch_update_delivery_status(2)
        assert counts == {"checked": 2, "updated": 0, "failed": 0, "skipped": 2}
