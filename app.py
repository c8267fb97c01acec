# app.py

import traceback
import uuid
from datetime import datetime, timezone
from html import escape

# ---------------- CONFIG / CORE ----------------
from config import (
    ENV,
    STATUS_CHECK_LIMIT,
    SEND_ACTION_SUMMARY,
    ADMIN_EMAILS,
)

from logger import get_logger
from emailer import send_email

# ---------------- ORDERS DB ----------------
from db import (
    init_db,
    refresh_all_instructions,
    instruction_counts,
)

# ---------------- SERVICES ----------------
from services.delivery_status import batch_update_delivery_status
from services.action_summary import send_action_summary


log = get_logger("app")


def notify_run_failure(run_id: str, step: str, err: Exception) -> None:
    html = f"""
    <div style="font-family:Segoe UI,Arial,sans-serif; max-width:900px;">
      <h2 style="color:#b00020;">Order Back Office Run Failure</h2>
      <p><b>Run:</b> {run_id} ({ENV})</p>
      <p><b>Failed Step:</b> {step}</p>
      <p><b>Error:</b> {escape(str(err))}</p>
      <pre style="background:#f5f5f5;padding:8px;">{escape(traceback.format_exc())}</pre>
    </div>
    """
    send_email(ADMIN_EMAILS, f"Order Back Office run FAILED ({step})", html)


# ------------------------------------------------------------
# RUN ONCE (called by the scheduler)
# ------------------------------------------------------------
def run_once(limit: int = STATUS_CHECK_LIMIT, send_summary: bool = SEND_ACTION_SUMMARY) -> dict:
    run_id = str(uuid.uuid4())
    start_ts = datetime.now(timezone.utc).isoformat()
    log.info(f"===== RUN START: {run_id} env={ENV} at {start_ts}")

    summary = {"run_id": run_id, "status_check": None, "instructions_changed": 0, "summary_orders": 0}
    step = "INIT_DB"

    try:
        init_db()

        step = "STATUS_CHECK"
        summary["status_check"] = batch_update_delivery_status(limit)

        step = "INSTRUCTION_REFRESH"
        summary["instructions_changed"] = refresh_all_instructions()

        if send_summary:
            step = "ACTION_SUMMARY"
            summary["summary_orders"] = send_action_summary()

    except Exception as e:
        log.exception(f"Run {run_id} FAILED at {step}: {e}")
        notify_run_failure(run_id, step, e)
        raise

    finally:
        log.info(f"===== RUN END: {run_id} at {datetime.now(timezone.utc).isoformat()}")

    counts = summary["status_check"] or {}
    log.info(
        f"Run {run_id} finished | "
        f"checked={counts.get('checked', 0)}, updated={counts.get('updated', 0)}, "
        f"failed={counts.get('failed', 0)}, instructions_changed={summary['instructions_changed']} | "
        f"by instruction: {instruction_counts()}"
    )
    return summary



if __name__ == "__main__":
    run_once()
