# scripts/daily_action_summary_email.py
import os, sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from db import init_db, refresh_all_instructions
from services.action_summary import send_action_summary
from logger import get_logger
log = get_logger("daily_action_summary")


def main():
    log.info("===== SUMMARY START")
    init_db()
    # cached labels may be stale if rows were edited outside the dashboard
    refresh_all_instructions()
    sent_for = send_action_summary()
    log.info(f"===== SUMMARY END: {sent_for} orders listed")


if __name__ == "__main__":
    main()
