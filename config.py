import os
from datetime import datetime, timezone
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

ENV = os.getenv("ENV", "TEST").upper()

DEFAULTS = {
    "TEST": {
        "SENDCLOUD_API_URL": "https://panel.sendcloud.sc/api",
        "STRIPE_API_URL": "https://api.stripe.com/v1",
        "DB_FILE": "orders_test.db",
    },
    "LIVE": {
        "SENDCLOUD_API_URL": "https://panel.sendcloud.sc/api",
        "STRIPE_API_URL": "https://api.stripe.com/v1",
        "DB_FILE": "orders.db",
    }
}

cfg = DEFAULTS["LIVE"] if ENV == "LIVE" else DEFAULTS["TEST"]

# Carrier (SendCloud)
SENDCLOUD_API_URL    = os.getenv("SENDCLOUD_API_URL", cfg["SENDCLOUD_API_URL"]).rstrip("/")
SENDCLOUD_API_KEY    = os.getenv("SENDCLOUD_API_KEY", "")
SENDCLOUD_API_SECRET = os.getenv("SENDCLOUD_API_SECRET", "")

DEFAULT_SHIPMENT_METHOD_ID = int(os.getenv("DEFAULT_SHIPMENT_METHOD_ID", "8"))
DEFAULT_PARCEL_WEIGHT = os.getenv("DEFAULT_PARCEL_WEIGHT", "1.000")
RETURN_SHIPPING_PRODUCT = os.getenv("RETURN_SHIPPING_PRODUCT", "ups:standard/return")
RETURN_CONTRACT_ID = int(os.getenv("RETURN_CONTRACT_ID", "28575"))
DEFAULT_WAREHOUSE_EMAIL = os.getenv("DEFAULT_WAREHOUSE_EMAIL", "")

# Payments (Stripe)
STRIPE_API_URL        = os.getenv("STRIPE_API_URL", cfg["STRIPE_API_URL"]).rstrip("/")
STRIPE_SECRET_KEY     = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

# Dashboard
APP_PASSWORD     = os.getenv("APP_PASSWORD", "")
FLASK_SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "change-me")
CRON_SECRET      = os.getenv("CRON_SECRET", "")
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "Europe/Amsterdam")

# Scheduled run behavior
STATUS_CHECK_LIMIT = int(os.getenv("STATUS_CHECK_LIMIT", "50"))
SEND_ACTION_SUMMARY = os.getenv("SEND_ACTION_SUMMARY", "1").strip().lower() in ("1", "true", "yes")


# Email recipients
STAFF_EMAILS = [e.strip() for e in os.getenv(
    "STAFF_EMAILS",
    ""
).split(",") if e.strip()]

ADMIN_EMAILS = [e.strip() for e in os.getenv(
    "ADMIN_EMAILS",
    ""
).split(",") if e.strip()]

EMAIL_CONFIG = {
    "smtp_server": os.getenv("SMTP_SERVER", "smtp.office365.com"),
    "smtp_port": int(os.getenv("SMTP_PORT", 587)),
    "smtp_username": os.getenv("SMTP_USERNAME", ""),
    "smtp_password": os.getenv("SMTP_PASSWORD", ""),  # set via ENV
    "from_addr": os.getenv("FROM_EMAIL", ""),
}

# ---------------- Paths (stable, absolute) ----------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Logging
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_FILE = os.getenv("LOG_FILE", "order_backoffice.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()

# Orders DB (SQLite) - defaults to the project folder
ORDERS_DB_PATH = os.getenv("ORDERS_DB_PATH", os.path.join(BASE_DIR, cfg["DB_FILE"]))


# -------------- HTTP Session --------------
SESSION = requests.Session()
retries = Retry(
    total=3,
    backoff_factor=2.0,
    status_forcelist=[502, 503, 504],
    allowed_methods=["GET", "POST"],
)
SESSION.mount("http://", HTTPAdapter(max_retries=retries))
SESSION.mount("https://", HTTPAdapter(max_retries=retries))

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
