# db.py

import json
import sqlite3
from typing import Any, Dict, Iterable, List, Optional

from config import ORDERS_DB_PATH, utc_now_iso
from exceptions import OrderNotFound
from logger import get_logger
from models import Order
from services.instructions import effective_instruction


log = get_logger("db")

ORDER_COLUMNS = {
    "name": "TEXT",
    "email": "TEXT",
    "phone": "TEXT",
    "shipping_address": "TEXT",
    "paid": "INTEGER",
    "stripe_customer_id": "TEXT",
    "delivery_status": "TEXT",
    "tracking_link": "TEXT",
    "tracking_number": "TEXT",
    "shipping_id": "TEXT",
    "label_url": "TEXT",
    "manual_instruction": "TEXT",
    "instruction": "TEXT",
    "important": "INTEGER DEFAULT 0",
    "expected_delivery_date": "TEXT",
    "last_delivery_status_check": "TEXT",
    "sendcloud_return_id": "TEXT",
    "sendcloud_return_parcel_id": "TEXT",
    "created_at": "TEXT",
    "updated_at": "TEXT",
}

# Columns staff or services may write; id and timestamps are managed here.
WRITABLE_COLUMNS = set(ORDER_COLUMNS) - {"instruction", "created_at", "updated_at"}


def _table_columns(cur: sqlite3.Cursor, table: str) -> set[str]:
    cur.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}

def _ensure_column(cur: sqlite3.Cursor, table: str, column: str, col_type: str) -> None:
    cols = _table_columns(cur, table)
    if column not in cols:
        log.info(f"DB MIGRATION: adding column {table}.{column} {col_type}")
        cur.execute(f'ALTER TABLE {table} ADD COLUMN "{column}" {col_type}')

def _check_columns(changes: Dict[str, Any]) -> None:
    unknown = set(changes) - WRITABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown or read-only order columns: {sorted(unknown)}")


# ---------- Connection / Schema ----------
def orders_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(ORDERS_DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn

def init_db() -> None:
    conn = orders_conn()
    cur = conn.cursor()

    cur.execute("""
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT,
        email TEXT,
        paid INTEGER,
        stripe_customer_id TEXT,
        delivery_status TEXT,
        tracking_link TEXT,
        shipping_id TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS order_activities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER,
        action_type TEXT,
        changes TEXT,
        created_at TEXT
    )
    """)

    # ---- MIGRATIONS / SAFE UPGRADES ----
    for column, col_type in ORDER_COLUMNS.items():
        _ensure_column(cur, "orders", column, col_type)

    conn.commit()
    conn.close()

    ensure_indexes()

def ensure_indexes() -> None:
    conn = orders_conn()
    conn.executescript("""
    CREATE INDEX IF NOT EXISTS idx_orders_instruction ON orders(instruction);
    CREATE INDEX IF NOT EXISTS idx_orders_stripe_customer_id ON orders(stripe_customer_id);
    CREATE INDEX IF NOT EXISTS idx_orders_shipping_id ON orders(shipping_id);
    CREATE INDEX IF NOT EXISTS idx_orders_last_check ON orders(last_delivery_status_check);
    CREATE INDEX IF NOT EXISTS idx_order_activities_order_id ON order_activities(order_id);
    """)
    conn.commit()
    conn.close()


# ---------- Activity log ----------
def log_activity(conn: sqlite3.Connection, order_id: int, action_type: str, changes: Dict[str, Any]) -> None:
    conn.execute("""
    INSERT INTO order_activities (order_id, action_type, changes, created_at)
    VALUES (?, ?, ?, ?)
    """, (order_id, action_type, json.dumps(changes, default=str), utc_now_iso()))

def list_activities(order_id: int) -> List[Dict[str, Any]]:
    conn = orders_conn()
    rows = conn.execute(
        "SELECT * FROM order_activities WHERE order_id=? ORDER BY id DESC",
        (order_id,)
    ).fetchall()
    conn.close()
    out = []
    for r in rows:
        d = dict(r)
        d["changes"] = json.loads(d["changes"]) if d["changes"] else {}
        out.append(d)
    return out


# ---------- Orders ----------
def _fetch_order(conn: sqlite3.Connection, order_id: int) -> Optional[Order]:
    row = conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone()
    return Order.from_row(row) if row else None

def get_order(order_id: int) -> Optional[Order]:
    conn = orders_conn()
    order = _fetch_order(conn, order_id)
    conn.close()
    return order

def require_order(order_id: int) -> Order:
    order = get_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order

def insert_order(fields: Dict[str, Any]) -> int:
    _check_columns(fields)
    now = utc_now_iso()
    data = dict(fields)
    # normalize 1/0 paid the same way rows read back
    data["instruction"] = effective_instruction(Order.from_row(data))
    data["created_at"] = now
    data["updated_at"] = now

    cols = list(data)
    placeholders = ", ".join("?" for _ in cols)
    col_sql = ", ".join(f'"{c}"' for c in cols)

    conn = orders_conn()
    cur = conn.execute(
        f"INSERT INTO orders ({col_sql}) VALUES ({placeholders})",
        tuple(data[c] for c in cols),
    )
    order_id = cur.lastrowid
    log_activity(conn, order_id, "order_created", {k: {"old_value": None, "new_value": v} for k, v in fields.items()})
    conn.commit()
    conn.close()

    log.info(f"Order {order_id} created (instruction={data['instruction']})")
    return order_id

def update_order(order_id: int, changes: Dict[str, Any], action_type: str = "order_update") -> Order:
    """
    Apply ``changes`` to one order, refresh its cached instruction and
    record an activity row with the old/new value of every changed field.
    """
    _check_columns(changes)
    conn = orders_conn()
    try:
        current = _fetch_order(conn, order_id)
        if current is None:
            raise OrderNotFound(order_id)

        merged = current.to_dict()
        merged.update(changes)
        instruction = effective_instruction(Order.from_row(merged))

        data = dict(changes)
        data["instruction"] = instruction
        data["updated_at"] = utc_now_iso()

        set_sql = ", ".join(f'"{c}"=?' for c in data)
        conn.execute(
            f"UPDATE orders SET {set_sql} WHERE id=?",
            tuple(data.values()) + (order_id,),
        )

        diff = {
            k: {"old_value": getattr(current, k), "new_value": v}
            for k, v in changes.items()
            if getattr(current, k) != v
        }
        if current.instruction != instruction:
            diff["instruction"] = {"old_value": current.instruction, "new_value": instruction}
        if diff:
            log_activity(conn, order_id, action_type, diff)

        conn.commit()
        updated = _fetch_order(conn, order_id)
    finally:
        conn.close()

    log.debug(f"Order {order_id} updated ({action_type}): {sorted(changes)}")
    return updated

def delete_order(order_id: int) -> None:
    conn = orders_conn()
    cur = conn.execute("DELETE FROM orders WHERE id=?", (order_id,))
    if cur.rowcount == 0:
        conn.close()
        raise OrderNotFound(order_id)
    conn.execute("DELETE FROM order_activities WHERE order_id=?", (order_id,))
    conn.commit()
    conn.close()
    log.info(f"Order {order_id} deleted")

def delete_orders(order_ids: Iterable[int]) -> int:
    ids = [int(i) for i in order_ids]
    if not ids:
        return 0
    placeholders = ",".join("?" for _ in ids)
    conn = orders_conn()
    cur = conn.execute(f"DELETE FROM orders WHERE id IN ({placeholders})", ids)
    deleted = cur.rowcount
    conn.execute(f"DELETE FROM order_activities WHERE order_id IN ({placeholders})", ids)
    conn.commit()
    conn.close()
    log.info(f"Bulk delete: {deleted} of {len(ids)} orders removed")
    return deleted

def list_orders(instruction: Optional[str] = None, search: Optional[str] = None, limit: int = 500) -> List[Order]:
    where_parts = []
    params: list = []

    if instruction:
        where_parts.append("instruction = ?")
        params.append(instruction)

    q = (search or "").strip()
    if q:
        like = f"%{q}%"
        where_parts.append("""(
            name LIKE ? OR email LIKE ? OR tracking_number LIKE ?
            OR shipping_id LIKE ? OR CAST(id AS TEXT) LIKE ?
        )""")
        params.extend([like] * 5)

    where_sql = " AND ".join(where_parts) if where_parts else "1=1"

    conn = orders_conn()
    rows = conn.execute(f"""
        SELECT * FROM orders
        WHERE {where_sql}
        ORDER BY important DESC, id DESC
        LIMIT ?
    """, params + [limit]).fetchall()
    conn.close()
    return [Order.from_row(r) for r in rows]

def list_orders_with_instructions(instructions: Iterable[str]) -> List[Order]:
    """Every order whose cached instruction is one of ``instructions``, oldest first."""
    labels = list(instructions)
    if not labels:
        return []
    placeholders = ",".join("?" for _ in labels)
    conn = orders_conn()
    rows = conn.execute(
        f"SELECT * FROM orders WHERE instruction IN ({placeholders}) ORDER BY id",
        labels,
    ).fetchall()
    conn.close()
    return [Order.from_row(r) for r in rows]

def find_orders_by_customer(stripe_customer_id: str) -> List[Order]:
    conn = orders_conn()
    rows = conn.execute(
        "SELECT * FROM orders WHERE stripe_customer_id=? ORDER BY id",
        (stripe_customer_id,)
    ).fetchall()
    conn.close()
    return [Order.from_row(r) for r in rows]

def list_orders_for_status_check(limit: int) -> List[Order]:
    conn = orders_conn()
    rows = conn.execute("""
        SELECT * FROM orders
        WHERE (TRIM(COALESCE(tracking_link, '')) != '' OR TRIM(COALESCE(shipping_id, '')) != '')
          AND COALESCE(instruction, '') != 'DELIVERED'
          AND COALESCE(manual_instruction, '') != 'NO ACTION REQUIRED'
        ORDER BY last_delivery_status_check IS NOT NULL, last_delivery_status_check ASC, id ASC
        LIMIT ?
    """, (limit,)).fetchall()
    conn.close()
    return [Order.from_row(r) for r in rows]

def instruction_counts() -> Dict[str, int]:
    conn = orders_conn()
    rows = conn.execute("""
        SELECT COALESCE(instruction, '') AS instruction, COUNT(*) AS cnt
        FROM orders GROUP BY instruction
    """).fetchall()
    conn.close()
    return {r["instruction"]: r["cnt"] for r in rows}


# ---------- Cached instruction ----------
def refresh_instruction(order_id: int) -> str:
    conn = orders_conn()
    order = _fetch_order(conn, order_id)
    if order is None:
        conn.close()
        raise OrderNotFound(order_id)
    instruction = effective_instruction(order)
    if instruction != order.instruction:
        conn.execute("UPDATE orders SET instruction=? WHERE id=?", (instruction, order_id))
        log_activity(conn, order_id, "instruction_refresh",
                     {"instruction": {"old_value": order.instruction, "new_value": instruction}})
        conn.commit()
    conn.close()
    return instruction

def refresh_all_instructions() -> int:
    """Recompute every cached instruction. Returns how many changed."""
    conn = orders_conn()
    rows = conn.execute("SELECT * FROM orders").fetchall()
    changed = 0
    for row in rows:
        order = Order.from_row(row)
        instruction = effective_instruction(order)
        if instruction != order.instruction:
            conn.execute("UPDATE orders SET instruction=? WHERE id=?", (instruction, order.id))
            log_activity(conn, order.id, "instruction_refresh",
                         {"instruction": {"old_value": order.instruction, "new_value": instruction}})
            changed += 1
    conn.commit()
    conn.close()
    log.info(f"Instruction refresh: {changed} of {len(rows)} orders changed")
    return changed
