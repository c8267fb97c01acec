# scripts/serve_admin.py
import os, sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from waitress import serve

from admin import app
from logger import get_logger

log = get_logger("serve_admin")

HOST = os.getenv("ADMIN_HOST", "0.0.0.0")
PORT = int(os.getenv("ADMIN_PORT", "5050"))


if __name__ == "__main__":
    log.info(f"===== ADMIN START: {HOST}:{PORT}")
    try:
        serve(app, host=HOST, port=PORT)
    finally:
        log.info("===== ADMIN EXIT")
