# services/action_summary.py

from datetime import datetime, timezone
from html import escape
from typing import Dict, List

from config import STAFF_EMAILS
from db import list_orders_with_instructions
from emailer import send_email
from logger import get_logger
from models import Order
from services.instructions import InstructionLabel, derive_display_status

log = get_logger("action_summary")

# Labels that ask staff to do something, in the order they appear in the email
SUMMARY_LABELS = (
    InstructionLabel.ACTION_REQUIRED,
    InstructionLabel.TO_BE_SHIPPED_BUT_NO_STICKER,
    InstructionLabel.TO_SHIP,
    InstructionLabel.DO_NOT_SHIP,
)

CELL = "padding:8px;border:1px solid #ddd;"


def group_orders(orders: List[Order]) -> Dict[InstructionLabel, List[Order]]:
    groups: Dict[InstructionLabel, List[Order]] = {label: [] for label in SUMMARY_LABELS}
    for order in orders:
        for label in SUMMARY_LABELS:
            if order.instruction == label.value:
                groups[label].append(order)
                break
    return groups


def build_summary_html(groups: Dict[InstructionLabel, List[Order]]) -> str:
    generated = datetime.now(timezone.utc).strftime("%b %d, %Y %I:%M %p (UTC)")

    def table_block(label: InstructionLabel, items: List[Order]) -> str:
        if not items:
            return f"""
            <h3 style="margin-top:20px;">{label.value}</h3>
            <p style="color:#4caf50;"><b>No orders.</b></p>
            """

        rows_html = ""
        for o in items:
            rows_html += f"""
            <tr>
              <td style="{CELL}">{o.id}</td>
              <td style="{CELL}">{escape(o.name or "—")}</td>
              <td style="{CELL}">{escape(o.email or "—")}</td>
              <td style="{CELL}">{escape(derive_display_status(o))}</td>
              <td style="{CELL}">{escape(o.updated_at or "")}</td>
            </tr>
            """

        return f"""
        <h3 style="margin-top:20px;">{label.value} ({len(items)})</h3>
        <table style="border-collapse:collapse;width:100%;font-size:14px;margin-top:8px;">
          <thead>
            <tr style="background:#f5f5f5;">
              <th style="{CELL}">Order</th>
              <th style="{CELL}">Customer</th>
              <th style="{CELL}">Email</th>
              <th style="{CELL}">Status</th>
              <th style="{CELL}">Last Updated</th>
            </tr>
          </thead>
          <tbody>
            {rows_html}
          </tbody>
        </table>
        """

    blocks = "".join(table_block(label, groups.get(label, [])) for label in SUMMARY_LABELS)

    return f"""
    <div style="font-family:Segoe UI,Arial,sans-serif;max-width:900px;margin:auto;">
      <h2 style="color:#0b57d0;">Orders Needing Action</h2>
      <p><b>Generated:</b> {generated}</p>
      {blocks}
    </div>
    """


def send_action_summary() -> int:
    """Email the summary when at least one order needs action. Returns that count."""
    orders = list_orders_with_instructions(label.value for label in SUMMARY_LABELS)
    if not orders:
        log.info("No orders need action. Summary email not sent.")
        return 0

    groups = group_orders(orders)
    counts = ", ".join(f"{label.value}={len(groups[label])}" for label in SUMMARY_LABELS if groups[label])
    send_email(STAFF_EMAILS, f"Order Back Office – {len(orders)} orders need action ({counts})", build_summary_html(groups))
    log.info(f"Action summary prepared for {len(orders)} orders: {counts}")
    return len(orders)
