import hashlib
import hmac
import json
import os
import tempfile
import time

# Configure before any project module is imported: config reads env at import.
_TMP = tempfile.mkdtemp(prefix="backoffice-tests-")
os.environ["ORDERS_DB_PATH"] = os.path.join(_TMP, "orders.db")
os.environ["LOG_DIR"] = os.path.join(_TMP, "logs")
os.environ["SENDCLOUD_API_KEY"] = "sc_key"
os.environ["SENDCLOUD_API_SECRET"] = "sc_secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["APP_PASSWORD"] = "letmein"
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["SEND_ACTION_SUMMARY"] = "0"
os.environ["STAFF_EMAILS"] = ""
os.environ["ADMIN_EMAILS"] = ""

import pytest
import requests
from unittest.mock import MagicMock

import config
import db


def make_response(status=200, json_body=None, content=None, content_type="application/json"):
    """A real requests.Response with a canned body."""
    resp = requests.Response()
    resp.status_code = status
    resp.encoding = "utf-8"
    if json_body is not None:
        resp._content = json.dumps(json_body).encode()
    else:
        resp._content = content or b""
    resp.headers["Content-Type"] = content_type
    resp.url = "https://example.test/"
    return resp


def stripe_signature(payload: bytes, secret: str = "whsec_test", ts=None) -> str:
    """A Stripe-Signature header value for payload."""
    ts = int(time.time()) if ts is None else ts
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    """Every test gets its own empty orders database."""
    monkeypatch.setattr(db, "ORDERS_DB_PATH", str(tmp_path / "orders.db"))
    db.init_db()
    yield


@pytest.fixture
def http(monkeypatch):
    """Replace the shared HTTP session; set .return_value or .side_effect per test."""
    mock = MagicMock(name="SESSION.request")
    monkeypatch.setattr(config.SESSION, "request", mock)
    return mock


@pytest.fixture
def make_order():
    def _make(**fields):
        data = {
            "name": "Jane Doe",
            "email": "jane@example.com",
            "shipping_address": "Damrak 1, Amsterdam, 1012LG, NL",
            "paid": True,
            "stripe_customer_id": "cus_1",
        }
        data.update(fields)
        order_id = db.insert_order(data)
        return db.get_order(order_id)
    return _make
