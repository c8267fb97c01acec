# services/delivery_status.py
from typing import Dict, Any, Optional

from config import utc_now_iso
from db import update_order, list_orders_for_status_check
from exceptions import CarrierApiError
from logger import get_logger
from models import Order
from services.instructions import InstructionLabel
from services.sendcloud import (
    fetch_parcel,
    fetch_delivery_status,
    extract_tracking_number,
)

log = get_logger("delivery_status")


def _touch_last_check(order_id: int) -> None:
    update_order(order_id, {"last_delivery_status_check": utc_now_iso()}, action_type="status_check")


def update_order_delivery_status(order: Order) -> Dict[str, Any]:
    """
    Refresh one order's carrier status: parcel by shipping_id first, then the
    tracking number. Always stamps last_delivery_status_check.
    """
    order_id = order.id

    if order.manual_instruction == InstructionLabel.NO_ACTION_REQUIRED.value:
        log.info(f"Order {order_id} skipped: manual instruction is NO ACTION REQUIRED")
        return {"success": True, "skipped": True,
                "message": "Status check skipped: manual instruction is NO ACTION REQUIRED"}

    fetched: Optional[str] = None
    expected_date: Optional[str] = None

    # --- Attempt 1: parcel by shipping_id ---
    if order.shipping_id and order.shipping_id.strip():
        try:
            parcel = fetch_parcel(order.shipping_id.strip())
            fetched = parcel.status_message
            log.info(f"Order {order_id}: status via shipping_id {order.shipping_id}: {fetched!r}")
        except CarrierApiError as e:
            if e.api_status != 404:
                log.error(f"Order {order_id}: parcel lookup failed: {e}")
                _touch_last_check(order_id)
                return {"success": False, "error": f"Failed to fetch details: {e}"}
            log.warning(f"Order {order_id}: shipping_id {order.shipping_id} not found (404), trying tracking number")

    # --- Attempt 2: tracking number ---
    if not fetched:
        tracking_number = order.tracking_number or extract_tracking_number(order.tracking_link)
        if not tracking_number:
            log.info(f"Order {order_id}: could not determine tracking number")
        else:
            try:
                result = fetch_delivery_status(tracking_number)
            except CarrierApiError as e:
                log.error(f"Order {order_id}: tracking lookup {tracking_number} failed: {e}")
                _touch_last_check(order_id)
                return {"success": False, "error": f"Failed to fetch status via tracking number: {e}"}

            if not result.status:
                _touch_last_check(order_id)
                return {"success": False,
                        "error": f"Failed to fetch status via tracking number: {result.error}"}
            fetched = result.status
            expected_date = result.expected_delivery_date

    if not fetched:
        _touch_last_check(order_id)
        return {"success": False, "error": "Could not fetch status from SendCloud"}

    changes: Dict[str, Any] = {"last_delivery_status_check": utc_now_iso()}
    if expected_date:
        changes["expected_delivery_date"] = expected_date

    changed = fetched != order.delivery_status
    if changed:
        log.info(f"Order {order_id}: status changed ({order.delivery_status!r} -> {fetched!r})")
        changes["delivery_status"] = fetched

    updated = update_order(order_id, changes, action_type="delivery_status_update")

    return {
        "success": True,
        "delivery_status": fetched,
        "instruction": updated.instruction,
        "message": "Status updated" if changed else "Status unchanged, details updated",
    }


def batch_update_delivery_status(limit: int = 50) -> Dict[str, int]:
    orders = list_orders_for_status_check(limit)
    log.info(f"Batch status check: {len(orders)} orders (limit={limit})")

    counts = {"checked": 0, "updated": 0, "failed": 0, "skipped": 0}

    for order in orders:
        counts["checked"] += 1
        try:
            result = update_order_delivery_status(order)
        except Exception as e:
            # one bad order must not stop the batch
            log.exception(f"Order {order.id}: status check crashed: {e}")
            counts["failed"] += 1
            continue

        if result.get("skipped"):
            counts["skipped"] += 1
        elif result.get("success"):
            counts["updated"] += 1
        else:
            counts["failed"] += 1

    log.info(
        "Batch status check done | "
        f"checked={counts['checked']}, updated={counts['updated']}, "
        f"failed={counts['failed']}, skipped={counts['skipped']}"
    )
    return counts
