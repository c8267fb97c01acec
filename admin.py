import hmac
from datetime import datetime, timezone
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

from flask import Flask, Response, jsonify, redirect, render_template, request, session, url_for
from werkzeug.exceptions import HTTPException

from config import (
    APP_PASSWORD,
    CRON_SECRET,
    DISPLAY_TIMEZONE,
    FLASK_SECRET_KEY,
    STATUS_CHECK_LIMIT,
    STRIPE_WEBHOOK_SECRET,
)
from db import (
    WRITABLE_COLUMNS,
    init_db,
    insert_order,
    delete_order,
    delete_orders,
    instruction_counts,
    list_activities,
    list_orders,
    require_order,
    update_order,
)
from exceptions import (
    CarrierApiError,
    OrderNotFound,
    ValidationError,
    WebhookSignatureError,
)
from logger import get_logger
from services.delivery_status import batch_update_delivery_status, update_order_delivery_status
from services.instructions import (
    InstructionLabel,
    derive_display_status,
    derive_instruction,
    is_empty,
)
from services.sendcloud import download_label
from services.shipping_labels import create_return_label, create_shipping_label, remove_shipping
from services.stripe_billing import get_trial_end, handle_webhook_event, verify_webhook

log = get_logger("admin")

app = Flask(__name__)
app.secret_key = FLASK_SECRET_KEY

# IMPORTANT: waitress imports the module; it does NOT run __main__
# So we initialize schema + indexes at import time.
init_db()

PUBLIC_ENDPOINTS = {"login", "api_auth", "stripe_webhook", "cron_check_sendcloud_status", "static"}

DISPLAY_TZ = ZoneInfo(DISPLAY_TIMEZONE)


def _to_dt_utc(value):
    # value can be ISO string or datetime
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if not s:
            return None
        # handles "2025-12-22T03:35:00Z" and "2025-12-22T03:35:00"
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def format_local(value, fmt="%b %d, %Y · %H:%M"):
    try:
        dt_utc = _to_dt_utc(value)
    except ValueError:
        return str(value)
    if not dt_utc:
        return ""
    return dt_utc.astimezone(DISPLAY_TZ).strftime(fmt)

app.jinja_env.filters["local_ts"] = format_local
app.jinja_env.filters["display_status"] = derive_display_status


# ---------------- Auth ----------------
def _password_ok(password) -> bool:
    return isinstance(password, str) and hmac.compare_digest(password.encode(), APP_PASSWORD.encode())


def _local_path(nxt):
    # same-site paths only; browsers treat //host and /\host as another site
    if not nxt or not nxt.startswith("/") or nxt.startswith(("//", "/\\")):
        return None
    if urlparse(nxt).netloc:
        return None
    return nxt


@app.before_request
def require_login():
    if request.endpoint in PUBLIC_ENDPOINTS or session.get("authenticated"):
        return None
    if request.path.startswith("/api/"):
        return jsonify({"success": False, "error": "Unauthorized"}), 401
    return redirect(url_for("login", next=request.path))


@app.route("/login", methods=["GET", "POST"])
def login():
    error = None
    if request.method == "POST":
        if not APP_PASSWORD:
            error = "Server configuration error"
        elif _password_ok(request.form.get("password")):
            session["authenticated"] = True
            return redirect(_local_path(request.args.get("next")) or url_for("dashboard"))
        else:
            error = "Invalid password"
    return render_template("login.html", error=error)


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("login"))


@app.route("/api/auth", methods=["POST"])
def api_auth():
    body = request.get_json(silent=True) or {}
    if not APP_PASSWORD:
        log.error("APP_PASSWORD environment variable is not set")
        return jsonify({"error": "Server configuration error"}), 500
    if _password_ok(body.get("password")):
        session["authenticated"] = True
        return jsonify({"success": True})
    return jsonify({"error": "Invalid password"}), 401


# ---------------- Error handling ----------------
@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"success": False, "error": str(e)}), 400


@app.errorhandler(OrderNotFound)
def handle_not_found(e):
    if request.path.startswith("/api/"):
        return jsonify({"success": False, "error": str(e)}), 404
    return render_template("order_detail.html", order=None, activities=[]), 404


@app.errorhandler(CarrierApiError)
def handle_carrier_error(e):
    log.error(f"{request.method} {request.path}: carrier error: {e}")
    status = e.api_status if e.api_status and 400 <= e.api_status < 500 and e.api_status != 401 else 502
    return jsonify({"success": False, "error": str(e), "details": e.api_messages}), status


@app.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return e
    log.exception(f"{request.method} {request.path} failed: {e}")
    if request.path.startswith("/api/"):
        return jsonify({"success": False, "error": "Internal server error"}), 500
    return Response("Internal server error", status=500)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _order_id(body: dict, key: str = "orderId") -> int:
    raw = body.get(key)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Order ID is required") from None


def _order_payload(order) -> dict:
    data = order.to_dict()
    data["display_status"] = derive_display_status(order)
    data["derived_instruction"] = derive_instruction(order).value
    return data


# Fields on the dashboard create / edit forms
FORM_FIELDS = (
    "name", "email", "phone", "shipping_address", "paid", "stripe_customer_id",
    "delivery_status", "tracking_link", "tracking_number", "shipping_id",
)
REQUIRED_ON_CREATE = ("name", "email")

PAID_CHOICES = {
    "true": True, "yes": True, "1": True, "paid": True,
    "false": False, "no": False, "0": False, "unpaid": False,
    "": None, "unknown": None,
}


def _paid_value(raw):
    if raw is None or isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str) and raw.strip().lower() in PAID_CHOICES:
        return PAID_CHOICES[raw.strip().lower()]
    raise ValidationError(f"Invalid paid value: {raw!r}")


def _order_changes(data: dict) -> dict:
    """Validate staff input against the writable order columns."""
    unknown = sorted(set(data) - WRITABLE_COLUMNS)
    if unknown:
        raise ValidationError(f"Unknown or read-only fields: {', '.join(unknown)}")

    changes = {}
    for key, value in data.items():
        if key == "paid":
            changes[key] = _paid_value(value)
        elif key == "important":
            if not isinstance(value, bool):
                raise ValidationError("important must be true or false")
            changes[key] = value
        elif value is None or isinstance(value, str):
            # blank clears the field
            changes[key] = (value or "").strip() or None
        elif isinstance(value, int) and not isinstance(value, bool):
            changes[key] = str(value)
        else:
            raise ValidationError(f"{key} must be a string")
    return changes


def _create_order(data: dict) -> int:
    fields = _order_changes(data)
    missing = [f for f in REQUIRED_ON_CREATE if not fields.get(f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return insert_order(fields)


def _form_fields() -> dict:
    return {k: request.form.get(k, "") for k in FORM_FIELDS}


def _order_form_values(order) -> dict:
    values = {k: getattr(order, k) or "" for k in FORM_FIELDS}
    values["paid"] = {True: "yes", False: "no"}.get(order.paid, "")
    return values


# ---------------- Dashboard ----------------
@app.route("/")
def dashboard():
    q = (request.args.get("q") or "").strip()
    instruction = (request.args.get("instruction") or "").strip()

    orders = list_orders(instruction=instruction or None, search=q or None)

    return render_template(
        "dashboard.html",
        orders=orders,
        q=q,
        instruction=instruction,
        labels=[label.value for label in InstructionLabel],
        counts=instruction_counts(),
    )


@app.route("/orders/<int:order_id>")
def order_detail(order_id):
    order = require_order(order_id)
    return render_template("order_detail.html", order=order, activities=list_activities(order_id))


@app.route("/orders/new", methods=["GET", "POST"])
def order_new():
    error = None
    values = {k: "" for k in FORM_FIELDS}
    if request.method == "POST":
        values = _form_fields()
        try:
            order_id = _create_order(values)
            return redirect(url_for("order_detail", order_id=order_id))
        except ValidationError as e:
            error = str(e)
    return render_template("order_form.html", order=None, values=values, error=error), (400 if error else 200)


@app.route("/orders/<int:order_id>/edit", methods=["GET", "POST"])
def order_edit(order_id):
    order = require_order(order_id)
    error = None
    values = _order_form_values(order)
    if request.method == "POST":
        values = _form_fields()
        try:
            update_order(order_id, _order_changes(values), action_type="order_edit")
            return redirect(url_for("order_detail", order_id=order_id))
        except ValidationError as e:
            error = str(e)
    return render_template("order_form.html", order=order, values=values, error=error), (400 if error else 200)


# ---------------- Order API ----------------
@app.route("/api/orders/<int:order_id>")
def api_get_order(order_id):
    return jsonify(_order_payload(require_order(order_id)))


@app.route("/api/orders", methods=["POST"])
def api_create_order():
    order = require_order(_create_order(_json_body()))
    return jsonify({"success": True, "order": _order_payload(order)}), 201


@app.route("/api/orders/<int:order_id>", methods=["POST"])
def api_update_order(order_id):
    changes = _order_changes(_json_body())
    if not changes:
        raise ValidationError("No fields to update")
    order = update_order(order_id, changes, action_type="order_edit")
    return jsonify({"success": True, "updatedOrder": _order_payload(order)})


@app.route("/api/orders/<int:order_id>/set-instruction", methods=["POST"])
def api_set_instruction(order_id):
    manual = _json_body().get("manual_instruction")
    if is_empty(manual):
        raise ValidationError("Manual instruction is required")

    changes = {"manual_instruction": manual.strip()}
    if manual.strip().lower() == "delivered":
        changes["delivery_status"] = "Delivered"

    order = update_order(order_id, changes, action_type="manual_instruction")
    return jsonify({"success": True, "updatedOrder": _order_payload(order)})


@app.route("/api/orders/<int:order_id>/mark-manual-delivered", methods=["POST"])
def api_mark_manual_delivered(order_id):
    update_order(order_id, {"manual_instruction": InstructionLabel.DELIVERED.value}, action_type="manual_instruction")
    log.info(f"Order {order_id} manually marked as delivered")
    return jsonify({"success": True, "message": f"Order {order_id} marked as delivered."})


@app.route("/api/orders/<int:order_id>/delete", methods=["POST"])
def api_delete_order(order_id):
    delete_order(order_id)
    return jsonify({"success": True})


@app.route("/api/orders/bulk-delete", methods=["POST"])
def api_bulk_delete():
    ids = _json_body().get("orderIds")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("orderIds must be a non-empty list")
    try:
        deleted = delete_orders(ids)
    except (TypeError, ValueError):
        raise ValidationError("orderIds must contain order ids") from None
    return jsonify({"success": True, "deleted": deleted})


@app.route("/api/orders/toggle-important", methods=["POST"])
def api_toggle_important():
    order_id = _order_id(_json_body())
    order = require_order(order_id)
    order = update_order(order_id, {"important": not order.important}, action_type="toggle_important")
    return jsonify({"success": True, "important": order.important})


@app.route("/api/orders/update-delivery-status", methods=["POST"])
def api_update_delivery_status():
    order = require_order(_order_id(_json_body()))
    result = update_order_delivery_status(order)
    return jsonify(result), (200 if result.get("success") else 502)


@app.route("/api/orders/create-shipping-label", methods=["POST"])
def api_create_shipping_label():
    order = create_shipping_label(_order_id(_json_body()))
    return jsonify({"success": True, "message": "Shipping label created successfully", "order": _order_payload(order)})


@app.route("/api/orders/remove-shipping-id", methods=["POST"])
def api_remove_shipping_id():
    order = remove_shipping(_order_id(_json_body()))
    return jsonify({"success": True, "order": _order_payload(order)})


@app.route("/api/labels/<parcel_id>")
def api_label_pdf(parcel_id):
    log.info(f"Proxying label for parcel {parcel_id}")
    pdf = download_label(parcel_id)
    return Response(
        pdf,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'inline; filename="label-{parcel_id}.pdf"'},
    )


@app.route("/api/returns/create-label", methods=["POST"])
def api_create_return_label():
    body = _json_body()
    result = create_return_label(
        _order_id(body),
        body.get("returnFromAddress"),
        body.get("returnToAddress"),
        body.get("parcelWeight"),
    )
    return jsonify({"message": "Sendcloud return initiated successfully.", **result})


# ---------------- Payments ----------------
@app.route("/api/stripe/trial-end/<customer_id>")
def api_trial_end(customer_id):
    return jsonify(get_trial_end(customer_id).to_dict())


@app.route("/api/webhook/stripe", methods=["POST"])
def stripe_webhook():
    try:
        event = verify_webhook(request.get_data(), request.headers.get("Stripe-Signature"), STRIPE_WEBHOOK_SECRET)
    except WebhookSignatureError as e:
        log.warning(f"Stripe webhook rejected: {e}")
        return jsonify({"error": f"Webhook Error: {e}"}), 400

    outcome = handle_webhook_event(event)
    log.info(f"Stripe webhook {event.get('type')}: {outcome}")
    return jsonify({"received": True, "result": outcome})


# ---------------- Cron ----------------
@app.route("/api/cron/check-sendcloud-status")
def cron_check_sendcloud_status():
    expected = f"Bearer {CRON_SECRET}"
    got = request.headers.get("Authorization") or ""
    if not CRON_SECRET or not hmac.compare_digest(got.encode(), expected.encode()):
        return Response("Unauthorized", status=401)

    result = batch_update_delivery_status(STATUS_CHECK_LIMIT)
    return jsonify({"success": True, "message": "SendCloud status check completed successfully", "result": result})


if __name__ == "__main__":
    # For local dev only. Waitress uses admin:app
    init_db()
    app.run(host="0.0.0.0", port=5050, debug=True)
