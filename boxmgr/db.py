from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional

from boxmgr.schema import get_schema_sql
from boxmgr.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def _sqlite_path(db_dsn: str) -> str:
    dsn = (db_dsn or "").strip()
    # Support sqlite:///path style
    if dsn.lower().startswith("sqlite:///"):
        dsn = dsn[len("sqlite:///") :]
    if not dsn:
        raise ValueError("db_dsn_blank")
    return dsn


@contextmanager
def connect(db_dsn: str) -> Iterator[sqlite3.Connection]:
    """Open a SQLite connection for one unit of work.

    Commits on clean exit, rolls back on any exception. Rows are sqlite3.Row so they
    behave like read-only dicts.
    """
    path = _sqlite_path(db_dsn)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    # Concurrent requests each open their own connection; WAL lets readers proceed
    # while one writer holds the lock.
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")  # 5s
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_dsn: str) -> None:
    """Create all tables and run lightweight migrations."""
    _debug(f"Initializing DB at {db_dsn}")
    with connect(db_dsn) as conn:
        conn.executescript(get_schema_sql())
        _migrate(conn)


def _table_columns(conn: Any, table: str) -> List[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return [str(r["name"]) for r in rows]


def _has_column(conn: Any, table: str, col: str) -> bool:
    return col in _table_columns(conn, table)


def _migrate(conn: Any) -> None:
    """Forward-only migrations for databases created by earlier releases."""
    # users: the first releases had no admin flag and no bookkeeping timestamps.
    for col, ddl in (
        ("is_admin", "INTEGER NOT NULL DEFAULT 0"),
        ("updated_at", "TEXT"),
        ("last_login_at", "TEXT"),
    ):
        if not _has_column(conn, "users", col):
            _debug(f"Adding users.{col}")
            conn.execute(f"ALTER TABLE users ADD COLUMN {col} {ddl}")

    conn.execute("CREATE INDEX IF NOT EXISTS idx_users_is_admin ON users (is_admin)")

    _repair_missing_admin(conn)


def _repair_missing_admin(conn: Any) -> int:
    """Promote every user to admin when users exist but none of them is an admin.

    This only happens once per database: pre-admin-flag databases upgraded above end up
    with zero admins and nobody able to manage users. After the first run the outcome is
    recorded in app_config and the check is never repeated, so demoting everyone later
    is not silently undone.
    """
    if get_app_config(conn, "admin_repair_done") is not None:
        return 0

    total = int(conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"])
    admins = int(conn.execute("SELECT COUNT(*) AS n FROM users WHERE is_admin=1").fetchone()["n"])

    promoted = 0
    if total > 0 and admins == 0:
        promoted = conn.execute("UPDATE users SET is_admin=1, updated_at=?", (utcnow_iso(),)).rowcount
        _debug(f"WARNING: no admin user found; promoted all {promoted} existing users to admin")

    # Only mark done once users exist; a fresh database still goes through /setup.
    if total > 0:
        upsert_app_config(
            conn,
            "admin_repair_done",
            utcnow_iso(),
            description=f"one-time admin repair (promoted={promoted})",
        )
    return promoted


def upsert_app_config(conn: Any, key: str, value: str, *, description: str | None = None) -> None:
    """Upsert a simple key/value config entry."""
    conn.execute(
        """
        INSERT INTO app_config (key, value, description, updated_at) VALUES (?, ?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value=excluded.value,
            description=COALESCE(excluded.description, app_config.description),
            updated_at=excluded.updated_at
        """,
        (key, value, description, utcnow_iso()),
    )


def get_app_config(conn: Any, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM app_config WHERE key=?", (key,)).fetchone()
    if row is None:
        return None
    return str(row["value"])


def list_app_config(conn: Any) -> List[dict]:
    rows = conn.execute("SELECT key, value, description, updated_at FROM app_config ORDER BY key").fetchall()
    return [dict(r) for r in rows]
