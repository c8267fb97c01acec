"""Scheduled run orchestration."""
from unittest.mock import patch

import pytest

import app
import db

COUNTS = {"checked": 1, "updated": 1, "failed": 0, "skipped": 0}


def test_run_once_refreshes_and_reports(make_order):
    order = make_order()
    # stale cached label, as if written before the rules changed
    conn = db.orders_conn()
    conn.execute("UPDATE orders SET instruction = 'SHIPPED' WHERE id = ?", (order.id,))
    conn.commit()
    conn.close()

    with patch.object(app, "batch_update_delivery_status", return_value=COUNTS) as batch, \
         patch.object(app, "send_action_summary") as summary:
        result = app.run_once(limit=7, send_summary=False)

    batch.assert_called_once_with(7)
    summary.assert_not_called()
    assert result["status_check"] == COUNTS
    assert result["instructions_changed"] == 1
    assert result["summary_orders"] == 0
    assert db.get_order(order.id).instruction == "TO BE SHIPPED BUT NO STICKER"


def test_run_once_sends_summary():
    with patch.object(app, "batch_update_delivery_status", return_value=COUNTS), \
         patch.object(app, "send_action_summary", return_value=3) as summary:
        result = app.run_once(send_summary=True)
    summary.assert_called_once_with()
    assert result["summary_orders"] == 3


def test_run_once_failure_notifies_and_reraises():
    with patch.object(app, "batch_update_delivery_status", side_effect=RuntimeError("carrier down")), \
         patch.object(app, "send_email") as send:
        with pytest.raises(RuntimeError):
            app.run_once(send_summary=False)

    send.assert_called_once()
    subject, html = send.call_args.args[1], send.call_args.args[2]
    assert "STATUS_CHECK" in subject
    assert "carrier down" in html
