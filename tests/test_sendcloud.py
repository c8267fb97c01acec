"""SendCloud client against canned HTTP responses."""
import pytest

from conftest import make_response
from exceptions import CarrierApiError
from services import sendcloud


class TestExtractTrackingNumber:

    def test_code_query_parameter(self):
        link = "https://tracking.sendcloud.sc/forward?carrier=postnl&code=3STBJK587162538&destination=NL&lang=en"
        assert sendcloud.extract_tracking_number(link) == "3STBJK587162538"

    @pytest.mark.parametrize("link", [None, "", "   ", "Empty label", "not a url", "https://t.example/no-code"])
    def test_no_tracking_number(self, link):
        assert sendcloud.extract_tracking_number(link) is None


class TestFetchDeliveryStatus:

    def test_latest_status_uses_carrier_message(self, http):
        http.return_value = make_response(json_body={
            "carrier": "postnl",
            "expected_delivery_date": "2026-10-20",
            "statuses": [
                {"carrier_message": "Ready to send", "parent_status": "ready-to-send"},
                {"carrier_message": "", "parent_status": "in-transit"},
            ],
        })

        result = sendcloud.fetch_delivery_status("3STB")

        assert result.status == "in-transit"
        assert result.expected_delivery_date == "2026-10-20"
        assert len(result.statuses) == 2
        method, url = http.call_args.args
        assert method == "GET"
        assert url.endswith("/v2/tracking/3STB")
        assert http.call_args.kwargs["auth"] == ("sc_key", "sc_secret")

    def test_no_statuses(self, http):
        http.return_value = make_response(json_body={"statuses": []})
        result = sendcloud.fetch_delivery_status("3STB")
        assert result.status is None
        assert result.error

    def test_missing_tracking_number_skips_http(self, http):
        assert sendcloud.fetch_delivery_status("").status is None
        http.assert_not_called()

    def test_http_error_raises(self, http):
        http.return_value = make_response(404, json_body={"error": {"message": "Not found", "code": 404}})
        with pytest.raises(CarrierApiError) as exc:
            sendcloud.fetch_delivery_status("3STB")
        assert exc.value.api_status == 404
        assert exc.value.api_messages == ["Not found"]


class TestParcels:

    def test_fetch_parcel(self, http):
        http.return_value = make_response(json_body={"parcel": {
            "id": 555,
            "status": {"id": 3, "message": "En route to sorting center"},
            "tracking_number": "3STB",
            "tracking_url": "https://tracking.sendcloud.sc/forward?code=3STB",
            "label": {"label_printer": "https://panel.sendcloud.sc/api/v2/labels/label_printer/555"},
        }})

        parcel = sendcloud.fetch_parcel("555")

        assert parcel.parcel_id == "555"
        assert parcel.status_message == "En route to sorting center"
        assert parcel.tracking_number == "3STB"
        assert parcel.label_url.endswith("/555")

    def test_create_parcel_wraps_payload(self, http):
        http.return_value = make_response(json_body={"parcel": {"id": 9, "tracking_number": "T9"}})
        parcel = sendcloud.create_parcel({"name": "Jane"})
        assert parcel.parcel_id == "9"
        assert http.call_args.kwargs["json"] == {"parcel": {"name": "Jane"}}

    def test_validation_errors_are_collected(self, http):
        http.return_value = make_response(400, json_body={"errors": [
            {"field": "postal_code", "message": "required"},
            {"field": "city", "message": "required"},
        ]})
        with pytest.raises(CarrierApiError) as exc:
            sendcloud.create_parcel({"name": "Jane"})
        assert exc.value.api_messages == ["postal_code: required", "city: required"]


class TestLabels:

    def test_download_label_returns_pdf_bytes(self, http):
        http.return_value = make_response(content=b"%PDF-1.4 ...", content_type="application/pdf")
        assert sendcloud.download_label("555") == b"%PDF-1.4 ..."
        assert http.call_args.kwargs["params"] == {"start_from": 0}

    def test_non_pdf_label_is_rejected(self, http):
        http.return_value = make_response(json_body={"ok": True})
        with pytest.raises(CarrierApiError) as exc:
            sendcloud.download_label("555")
        assert exc.value.api_status == 502


class TestReturns:

    def test_create_return(self, http):
        http.return_value = make_response(json_body={"return_id": 11, "parcel_id": 22})
        assert sendcloud.create_return({"weight": {"value": 1.0}}) == {"return_id": 11, "parcel_id": 22}
        assert http.call_args.args[1].endswith("/v3/returns")

    def test_create_return_without_ids(self, http):
        http.return_value = make_response(json_body={"return_id": 11})
        with pytest.raises(CarrierApiError):
            sendcloud.create_return({})


def test_missing_credentials(http, monkeypatch):
    monkeypatch.setattr(sendcloud, "SENDCLOUD_API_KEY", "")
    with pytest.raises(CarrierApiError):
        sendcloud.fetch_parcel("1")
    http.assert_not_called()
