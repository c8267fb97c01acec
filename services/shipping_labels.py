# services/shipping_labels.py
import re
from typing import Dict, Any, Optional

from config import (
    DEFAULT_SHIPMENT_METHOD_ID,
    DEFAULT_PARCEL_WEIGHT,
    RETURN_SHIPPING_PRODUCT,
    RETURN_CONTRACT_ID,
    DEFAULT_WAREHOUSE_EMAIL,
)
from db import require_order, update_order
from exceptions import CarrierApiError, ValidationError
from logger import get_logger
from models import Order
from services.sendcloud import create_parcel, create_return, fetch_parcel

log = get_logger("shipping_labels")

DEFAULT_COUNTRY = "NL"
REQUIRED_ADDRESS_KEYS = ("line1", "city", "postal_code", "country")
WEIGHT_RE = re.compile(r"^\d*\.?\d+$")


def parse_shipping_address(text: Optional[str]) -> Dict[str, str]:
    # stored as "street, city, postal_code, country"
    parts = [p.strip() for p in (text or "").split(",")]
    parts += [""] * (4 - len(parts))
    return {
        "address": parts[0],
        "city": parts[1],
        "postal_code": parts[2],
        "country": parts[3] or DEFAULT_COUNTRY,
    }


def build_parcel_payload(order: Order) -> Dict[str, Any]:
    addr = parse_shipping_address(order.shipping_address)
    return {
        "name": order.name,
        "address": addr["address"],
        "city": addr["city"],
        "postal_code": addr["postal_code"],
        "country": addr["country"],
        "email": order.email or "",
        "telephone": order.phone or "",
        "order_number": str(order.id),
        "weight": DEFAULT_PARCEL_WEIGHT,
        "request_label": True,
        "shipment": {"id": DEFAULT_SHIPMENT_METHOD_ID},
    }


def create_shipping_label(order_id: int) -> Order:
    order = require_order(order_id)

    if not (order.name or "").strip() or not (order.shipping_address or "").strip():
        raise ValidationError("Order is missing required shipping information (name or address)")

    parcel = create_parcel(build_parcel_payload(order))

    updated = update_order(order_id, {
        "shipping_id": parcel.parcel_id,
        "tracking_number": parcel.tracking_number,
        "tracking_link": parcel.tracking_url,
        "label_url": parcel.label_url,
    }, action_type="shipping_label_created")

    log.info(f"Order {order_id}: shipping label created (parcel={parcel.parcel_id}, instruction={updated.instruction})")
    return updated


def remove_shipping(order_id: int) -> Order:
    require_order(order_id)
    updated = update_order(order_id, {
        "shipping_id": None,
        "tracking_number": None,
        "tracking_link": None,
        "label_url": None,
        "delivery_status": None,
    }, action_type="shipping_removed")
    log.info(f"Order {order_id}: shipping details removed")
    return updated


# ---------------- Returns ----------------
def _validate_address(addr, label: str) -> None:
    if not isinstance(addr, dict) or any(not str(addr.get(k) or "").strip() for k in REQUIRED_ADDRESS_KEYS):
        raise ValidationError(f"Valid {label} address is required")


def _validate_weight(weight) -> float:
    if not isinstance(weight, str) or not WEIGHT_RE.match(weight.strip()) or float(weight) <= 0:
        raise ValidationError("Valid parcel weight (e.g., 1.000) is required")
    return float(weight)


def _address_payload(addr: Dict[str, Any], default_name: str, default_email: str = "") -> Dict[str, Any]:
    return {
        "name": addr.get("name") or default_name,
        "company_name": addr.get("company_name") or "",
        "address_line_1": addr["line1"],
        "address_line_2": addr.get("line2") or "",
        "house_number": addr.get("house_number") or "",
        "city": addr["city"],
        "postal_code": addr["postal_code"],
        "country_code": addr["country"],
        "phone_number": addr.get("phone") or "",
        "email": addr.get("email") or default_email,
    }


def build_return_payload(order: Order, return_from: dict, return_to: dict, weight: float) -> Dict[str, Any]:
    return {
        "from_address": _address_payload(return_from, order.name or ""),
        "to_address": _address_payload(return_to, "Warehouse", DEFAULT_WAREHOUSE_EMAIL),
        "weight": {"value": weight, "unit": "kg"},
        "ship_with": {
            "shipping_product_code": RETURN_SHIPPING_PRODUCT,
            "functionalities": {
                "carrier_insurance": False,
                "labelless": False,
                "direct_contract_only": True,
                "first_mile": "pickup_dropoff",
            },
            "contract": RETURN_CONTRACT_ID,
        },
    }


def create_return_label(order_id: int, return_from, return_to, parcel_weight) -> Dict[str, Any]:
    _validate_address(return_from, "customer return (Return From)")
    _validate_address(return_to, "warehouse return (Return To)")
    weight = _validate_weight(parcel_weight)

    order = require_order(order_id)
    data = create_return(build_return_payload(order, return_from, return_to, weight))

    return_id = str(data["return_id"])
    parcel_id = str(data["parcel_id"])

    update_order(order_id, {
        "sendcloud_return_id": return_id,
        "sendcloud_return_parcel_id": parcel_id,
    }, action_type="return_created")

    # label may not be ready yet; the caller can fetch it later
    label_url = None
    try:
        label_url = fetch_parcel(parcel_id).label_url
    except CarrierApiError as e:
        log.warning(f"Order {order_id}: could not fetch return label URL for parcel {parcel_id}: {e}")

    return {
        "sendcloud_return_id": return_id,
        "sendcloud_return_parcel_id": parcel_id,
        "label_url": label_url,
    }
