# services/stripe_billing.py
"""
Stripe calls used by the back office: subscription / trial lookup for the
customer panel, and webhook handling that keeps ``paid`` and
``stripe_customer_id`` in sync on the orders table.
"""
import hashlib
import hmac
import json
import time
from typing import Dict, Any, Optional

from api import send_request, error_messages
from config import STRIPE_API_URL, STRIPE_SECRET_KEY
from db import insert_order, update_order, find_orders_by_customer
from exceptions import PaymentsApiError, WebhookSignatureError
from logger import get_logger
from models import SubscriptionInfo

log = get_logger("stripe_billing")

DASHBOARD_SUBSCRIPTION_URL = "https://dashboard.stripe.com/subscriptions/{}"


def _stripe_get(path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if not STRIPE_SECRET_KEY:
        raise PaymentsApiError("Stripe secret key not configured")
    resp = send_request("GET", f"{STRIPE_API_URL}{path}", auth=(STRIPE_SECRET_KEY, ""), params=params, logger=log)
    if not resp.ok:
        raise PaymentsApiError(f"Stripe GET {path} failed: {'; '.join(error_messages(resp))}", api_status=resp.status_code)
    return resp.json()


def get_trial_end(customer_id: Optional[str]) -> SubscriptionInfo:
    """Latest subscription for a customer. Never raises."""
    if not customer_id or not customer_id.strip():
        return SubscriptionInfo(trial_end=None, status=None, message="No customer ID provided")

    customer_id = customer_id.strip()

    try:
        customer = _stripe_get(f"/customers/{customer_id}")
    except PaymentsApiError as e:
        # unknown customer or test/live key mismatch
        log.info(f"Stripe customer {customer_id} lookup failed: {e}")
        return SubscriptionInfo(trial_end=None, status=None, message="Customer not found or invalid mode")

    if customer.get("deleted"):
        return SubscriptionInfo(trial_end=None, status=None, message="Customer not found or invalid mode")

    try:
        subs = _stripe_get("/subscriptions", {"customer": customer_id, "limit": 1, "status": "all"})
    except PaymentsApiError as e:
        log.error(f"Stripe subscriptions lookup for {customer_id} failed: {e}")
        return SubscriptionInfo(trial_end=None, status=None, message="Failed to fetch subscription data")

    data = subs.get("data") or []
    if not data:
        return SubscriptionInfo(trial_end=None, status=None, message="No subscription found")

    sub = data[0]
    return SubscriptionInfo(
        trial_end=sub.get("trial_end"),
        status=sub.get("status"),
        message="Subscription found",
        subscription_id=sub.get("id"),
        link=DASHBOARD_SUBSCRIPTION_URL.format(sub.get("id")),
    )


# ---------------- Webhooks ----------------
def verify_webhook(payload: bytes, sig_header: Optional[str], secret: str, tolerance: int = 300) -> Dict[str, Any]:
    """
    Check a Stripe-Signature header (``t=<ts>,v1=<hex>[,v1=...]``) and return
    the decoded event. HMAC-SHA256 over ``"<ts>.<payload>"`` with the
    endpoint secret.
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    if not sig_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    timestamp = None
    signatures = []
    for item in sig_header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed Stripe-Signature header")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise WebhookSignatureError("Malformed Stripe-Signature timestamp") from e

    if tolerance and abs(time.time() - ts) > tolerance:
        raise WebhookSignatureError("Timestamp outside the tolerance zone")

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, s) for s in signatures):
        raise WebhookSignatureError("No signatures found matching the expected signature")

    try:
        return json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError(f"Invalid JSON payload: {e}") from e


def _set_paid_for_customer(customer_id: str, paid: bool, event_type: str) -> int:
    orders = find_orders_by_customer(customer_id)
    for order in orders:
        if order.paid is not paid:
            update_order(order.id, {"paid": paid}, action_type=f"stripe:{event_type}")
    return len(orders)


def handle_webhook_event(event: Dict[str, Any]) -> str:
    """Apply one Stripe event to the orders table. Returns a short outcome text."""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    log.info(f"Stripe event {event.get('id')} type={event_type}")

    if event_type == "customer.created":
        customer_id = obj.get("id")
        if not customer_id:
            return "ignored: customer without id"
        if find_orders_by_customer(customer_id):
            return f"customer {customer_id} already has orders"
        address = obj.get("shipping", {}).get("address") if isinstance(obj.get("shipping"), dict) else None
        order_id = insert_order({
            "name": obj.get("name"),
            "email": obj.get("email"),
            "phone": obj.get("phone"),
            "shipping_address": _format_address(address),
            "stripe_customer_id": customer_id,
        })
        return f"order {order_id} created for customer {customer_id}"

    if event_type in ("invoice.paid", "invoice.payment_failed"):
        customer_id = obj.get("customer")
        if not customer_id:
            return "ignored: invoice without customer"
        paid = event_type == "invoice.paid"
        touched = _set_paid_for_customer(customer_id, paid, event_type)
        if touched == 0 and paid:
            order_id = insert_order({
                "name": obj.get("customer_name"),
                "email": obj.get("customer_email"),
                "stripe_customer_id": customer_id,
                "paid": True,
            })
            return f"order {order_id} created from paid invoice {obj.get('id')}"
        return f"{touched} order(s) marked paid={paid} for customer {customer_id}"

    return f"ignored: {event_type}"


def _format_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    if not address:
        return None
    street = " ".join(p for p in (address.get("line1"), address.get("line2")) if p)
    parts = [street, address.get("city") or "", address.get("postal_code") or "", address.get("country") or ""]
    return ", ".join(parts)
