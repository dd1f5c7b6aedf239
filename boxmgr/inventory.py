"""Boxes, categories and items.

Plain data access; every function takes an open connection from `boxmgr.db.connect`.
Access control happens in the API layer.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from boxmgr.util.time import utcnow_iso


class NotFoundError(LookupError):
    """A referenced row does not exist (message is a stable code, e.g. 'category_not_found')."""


def _row(row: Any) -> Optional[Dict[str, Any]]:
    return dict(row) if row is not None else None


# -----------------------------
# Categories
# -----------------------------


def list_categories(conn: Any) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM categories ORDER BY name").fetchall()
    return [dict(r) for r in rows]


def get_category(conn: Any, category_id: int) -> Optional[Dict[str, Any]]:
    return _row(conn.execute("SELECT * FROM categories WHERE id=?", (int(category_id),)).fetchone())


def create_category(conn: Any, *, name: str, color: str | None = None) -> Dict[str, Any]:
    n = (name or "").strip()
    if not n:
        raise ValueError("name_blank")
    try:
        row = conn.execute(
            "INSERT INTO categories (name, color, created_at) VALUES (?,?,?) RETURNING *",
            (n, color, utcnow_iso()),
        ).fetchone()
    except sqlite3.IntegrityError as e:
        raise ValueError("category_exists") from e
    return dict(row)


def update_category(
    conn: Any,
    category_id: int,
    *,
    name: str | None = None,
    color: str | None = None,
) -> Optional[Dict[str, Any]]:
    fields: list[tuple[str, Any]] = []
    if name is not None:
        if not name.strip():
            raise ValueError("name_blank")
        fields.append(("name", name.strip()))
    if color is not None:
        fields.append(("color", color))
    if not fields:
        raise ValueError("no_update_fields")

    sets = ", ".join([f"{k}=?" for k, _ in fields])
    params = [v for _, v in fields] + [int(category_id)]
    try:
        conn.execute(f"UPDATE categories SET {sets} WHERE id=?", params)
    except sqlite3.IntegrityError as e:
        raise ValueError("category_exists") from e
    return get_category(conn, category_id)


def delete_category(conn: Any, category_id: int) -> bool:
    # Boxes (and their items) cascade.
    return conn.execute("DELETE FROM categories WHERE id=?", (int(category_id),)).rowcount == 1


# -----------------------------
# Boxes
# -----------------------------

_BOX_SELECT = """
    SELECT b.*, c.name AS category_name, c.color AS category_color
    FROM boxes b
    LEFT JOIN categories c ON c.id = b.category_id
"""


def list_boxes(conn: Any, *, category_id: int | None = None) -> List[Dict[str, Any]]:
    if category_id is not None:
        rows = conn.execute(
            _BOX_SELECT + " WHERE b.category_id=? ORDER BY b.number",
            (int(category_id),),
        ).fetchall()
    else:
        rows = conn.execute(_BOX_SELECT + " ORDER BY b.category_id, b.number").fetchall()
    return [dict(r) for r in rows]


def get_box(conn: Any, box_id: int, *, with_items: bool = False) -> Optional[Dict[str, Any]]:
    box = _row(conn.execute(_BOX_SELECT + " WHERE b.id=?", (int(box_id),)).fetchone())
    if box is not None and with_items:
        box["items"] = list_box_items(conn, box_id)
    return box


def _require_category(conn: Any, category_id: int) -> None:
    if get_category(conn, category_id) is None:
        raise NotFoundError("category_not_found")


def create_box(
    conn: Any,
    *,
    number: int,
    name: str,
    category_id: int,
    notes: str | None = None,
) -> Dict[str, Any]:
    n = (name or "").strip()
    if not n:
        raise ValueError("name_blank")
    _require_category(conn, category_id)

    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO boxes (number, name, category_id, notes, created_at, updated_at)
        VALUES (?,?,?,?,?,?)
        RETURNING id
        """,
        (int(number), n, int(category_id), notes, now, now),
    ).fetchone()
    box = get_box(conn, int(row["id"]))
    assert box is not None
    return box


def update_box(
    conn: Any,
    box_id: int,
    *,
    number: int | None = None,
    name: str | None = None,
    category_id: int | None = None,
    notes: str | None = None,
) -> Optional[Dict[str, Any]]:
    fields: list[tuple[str, Any]] = []
    if number is not None:
        fields.append(("number", int(number)))
    if name is not None:
        if not name.strip():
            raise ValueError("name_blank")
        fields.append(("name", name.strip()))
    if category_id is not None:
        _require_category(conn, category_id)
        fields.append(("category_id", int(category_id)))
    if notes is not None:
        fields.append(("notes", notes))
    if not fields:
        raise ValueError("no_update_fields")

    fields.append(("updated_at", utcnow_iso()))
    sets = ", ".join([f"{k}=?" for k, _ in fields])
    params = [v for _, v in fields] + [int(box_id)]
    conn.execute(f"UPDATE boxes SET {sets} WHERE id=?", params)
    return get_box(conn, box_id)


def delete_box(conn: Any, box_id: int) -> bool:
    return conn.execute("DELETE FROM boxes WHERE id=?", (int(box_id),)).rowcount == 1


# -----------------------------
# Items
# -----------------------------


def list_box_items(conn: Any, box_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM items WHERE box_id=? ORDER BY name", (int(box_id),)).fetchall()
    return [dict(r) for r in rows]


def get_item(conn: Any, item_id: int) -> Optional[Dict[str, Any]]:
    return _row(conn.execute("SELECT * FROM items WHERE id=?", (int(item_id),)).fetchone())


def create_item(conn: Any, *, box_id: int, name: str) -> Dict[str, Any]:
    n = (name or "").strip()
    if not n:
        raise ValueError("name_blank")
    if get_box(conn, box_id) is None:
        raise NotFoundError("box_not_found")
    row = conn.execute(
        "INSERT INTO items (name, box_id, created_at) VALUES (?,?,?) RETURNING *",
        (n, int(box_id), utcnow_iso()),
    ).fetchone()
    return dict(row)


def update_item(conn: Any, item_id: int, *, name: str, box_id: int | None = None) -> Optional[Dict[str, Any]]:
    n = (name or "").strip()
    if not n:
        raise ValueError("name_blank")
    if box_id is not None:
        if get_box(conn, box_id) is None:
            raise NotFoundError("box_not_found")
        conn.execute("UPDATE items SET name=?, box_id=? WHERE id=?", (n, int(box_id), int(item_id)))
    else:
        conn.execute("UPDATE items SET name=? WHERE id=?", (n, int(item_id)))
    return get_item(conn, item_id)


def delete_item(conn: Any, item_id: int) -> bool:
    return conn.execute("DELETE FROM items WHERE id=?", (int(item_id),)).rowcount == 1


# -----------------------------
# Search
# -----------------------------


def _like_escape(q: str) -> str:
    return q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_items(conn: Any, q: str) -> List[Dict[str, Any]]:
    """Case-insensitive substring match on item names, with box and category context."""
    term = (q or "").strip()
    if not term:
        return []
    rows = conn.execute(
        r"""
        SELECT
            i.id AS item_id,
            i.name AS item_name,
            b.id AS box_id,
            b.name AS box_name,
            b.number AS box_number,
            c.id AS category_id,
            c.name AS category_name,
            c.color AS category_color
        FROM items i
        JOIN boxes b ON b.id = i.box_id
        JOIN categories c ON c.id = b.category_id
        WHERE i.name LIKE ? ESCAPE '\'
        ORDER BY c.name, b.number, i.name
        """,
        (f"%{_like_escape(term)}%",),
    ).fetchall()
    return [dict(r) for r in rows]
