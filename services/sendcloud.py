# services/sendcloud.py
"""SendCloud REST calls: tracking, parcels, labels and returns."""
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs

from api import send_request, json_or_raise, error_messages
from config import SENDCLOUD_API_URL, SENDCLOUD_API_KEY, SENDCLOUD_API_SECRET
from exceptions import CarrierApiError
from logger import get_logger
from models import DeliveryStatusResult, ParcelDetails

log = get_logger("sendcloud")

EMPTY_LABEL = "Empty label"


def _auth():
    if not SENDCLOUD_API_KEY or not SENDCLOUD_API_SECRET:
        raise CarrierApiError("SendCloud API credentials not configured")
    return (SENDCLOUD_API_KEY, SENDCLOUD_API_SECRET)


def extract_tracking_number(tracking_link: Optional[str]) -> Optional[str]:
    """
    Tracking number from a SendCloud tracking URL, e.g.
    https://tracking.sendcloud.sc/forward?carrier=postnl&code=3STBJK587162538
    """
    if not tracking_link or not tracking_link.strip() or tracking_link == EMPTY_LABEL:
        return None
    parsed = urlparse(tracking_link.strip())
    if not parsed.scheme or not parsed.netloc:
        return None
    codes = parse_qs(parsed.query).get("code")
    return codes[0] if codes else None


def fetch_delivery_status(tracking_number: str) -> DeliveryStatusResult:
    if not tracking_number:
        return DeliveryStatusResult(status=None, error="No tracking number provided")

    resp = send_request("GET", f"{SENDCLOUD_API_URL}/v2/tracking/{tracking_number}", auth=_auth(), logger=log)
    data = json_or_raise(resp, f"Tracking lookup {tracking_number}")

    statuses = data.get("statuses") or []
    latest = None
    if isinstance(statuses, list) and statuses:
        last = statuses[-1]
        latest = last.get("carrier_message") or last.get("parent_status") or None

    log.info(f"Tracking {tracking_number}: latest status={latest!r}")
    return DeliveryStatusResult(
        status=latest,
        error=None if latest else "Status not found in response",
        last_update=data.get("last_update"),
        carrier=data.get("carrier"),
        expected_delivery_date=data.get("expected_delivery_date"),
        statuses=statuses if isinstance(statuses, list) else [],
    )


def _parcel_details(parcel: Dict[str, Any]) -> ParcelDetails:
    label = parcel.get("label") or {}
    label_url = label.get("label_printer") or label.get("normal_printer")
    if isinstance(label_url, list):
        label_url = label_url[0] if label_url else None
    status = parcel.get("status") or {}
    return ParcelDetails(
        parcel_id=str(parcel.get("id")),
        status_message=status.get("message") if isinstance(status, dict) else None,
        tracking_number=parcel.get("tracking_number") or None,
        tracking_url=parcel.get("tracking_url") or None,
        label_url=label_url,
        raw=parcel,
    )


def fetch_parcel(parcel_id: str) -> ParcelDetails:
    resp = send_request("GET", f"{SENDCLOUD_API_URL}/v2/parcels/{parcel_id}", auth=_auth(), logger=log)
    data = json_or_raise(resp, f"Parcel lookup {parcel_id}")
    parcel = data.get("parcel")
    if not parcel:
        raise CarrierApiError(f"Parcel {parcel_id}: response has no parcel", api_status=resp.status_code)
    return _parcel_details(parcel)


def create_parcel(payload: Dict[str, Any]) -> ParcelDetails:
    resp = send_request("POST", f"{SENDCLOUD_API_URL}/v2/parcels", auth=_auth(), json_body={"parcel": payload}, logger=log)
    data = json_or_raise(resp, "Create parcel")
    parcel = data.get("parcel")
    if not parcel:
        raise CarrierApiError("Create parcel: response has no parcel", api_status=resp.status_code)
    details = _parcel_details(parcel)
    log.info(f"Parcel {details.parcel_id} created (tracking={details.tracking_number})")
    return details


def download_label(parcel_id: str) -> bytes:
    """A4 label PDF for one parcel."""
    resp = send_request(
        "GET",
        f"{SENDCLOUD_API_URL}/v2/labels/normal_printer/{parcel_id}",
        auth=_auth(),
        params={"start_from": 0},
        headers={"Accept": "application/pdf"},
        logger=log,
    )
    if not resp.ok:
        msgs = error_messages(resp)
        raise CarrierApiError(
            f"Label fetch {parcel_id} failed: {resp.status_code} {'; '.join(msgs)}",
            api_status=resp.status_code,
            api_messages=msgs,
        )
    content_type = resp.headers.get("Content-Type") or ""
    if "application/pdf" not in content_type:
        raise CarrierApiError(
            f"SendCloud did not return a PDF label (Content-Type={content_type!r})",
            api_status=502,
        )
    return resp.content


def create_return(payload: Dict[str, Any]) -> Dict[str, Any]:
    resp = send_request("POST", f"{SENDCLOUD_API_URL}/v3/returns", auth=_auth(), json_body=payload, logger=log)
    data = json_or_raise(resp, "Create return")
    if not data.get("return_id") or not data.get("parcel_id"):
        raise CarrierApiError("SendCloud response missing return_id or parcel_id", api_status=resp.status_code)
    log.info(f"Return {data['return_id']} created (parcel={data['parcel_id']})")
    return data
