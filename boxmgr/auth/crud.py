from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from boxmgr.config import Config
from boxmgr.db import connect, get_app_config, upsert_app_config
from boxmgr.util.time import utcnow_iso

from .identity import Identity
from .security import (
    generate_secret,
    hash_password,
    is_password_hash,
    password_needs_rehash,
    verify_legacy_plaintext,
    verify_password,
)


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


class UsernameExistsError(ValueError):
    def __init__(self, msg: str = "username_exists"):
        super().__init__(msg)


class LastAdminError(ValueError):
    """Refused because it would leave users without any admin."""

    def __init__(self, msg: str = "last_admin"):
        super().__init__(msg)


# Deleting or demoting an admin only succeeds while another admin remains.
_KEEPS_AN_ADMIN = "(is_admin=0 OR (SELECT COUNT(*) FROM users WHERE is_admin=1) > 1)"


def normalize_username(username: str) -> str:
    return (username or "").strip().lower()


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    return {
        "id": int(d["id"]),
        "username": str(d["username"]),
        "isAdmin": bool(d.get("is_admin")),
        "created_at": d.get("created_at"),
    }


def identity_from_row(row: Any) -> Identity:
    return Identity(id=int(row["id"]), username=str(row["username"]), is_admin=bool(row["is_admin"]))


def _begin_immediate(conn: Any) -> None:
    # Take the write lock before reading the admin count so two concurrent
    # admin removals serialize instead of both seeing "2 admins".
    if not conn.in_transaction:
        conn.execute("BEGIN IMMEDIATE")


def get_user_by_username(conn: Any, username: str) -> Optional[Any]:
    u = normalize_username(username)
    if not u:
        return None
    # Explicit NOCASE: tables from older releases lack the column collation.
    return conn.execute(
        "SELECT * FROM users WHERE username=? COLLATE NOCASE",
        (u,),
    ).fetchone()


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE id=?",
        (int(user_id),),
    ).fetchone()


def list_users(conn: Any) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
    return [public_user(r) for r in rows]


def count_users(conn: Any) -> int:
    return int(conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"])


def count_admins(conn: Any) -> int:
    return int(conn.execute("SELECT COUNT(*) AS n FROM users WHERE is_admin=1").fetchone()["n"])


def has_users(conn: Any) -> bool:
    return conn.execute("SELECT 1 FROM users LIMIT 1").fetchone() is not None


def verify_user_credentials(conn: Any, username: str, password: str) -> Optional[Any]:
    """Return the user row when username/password match, else None.

    Unknown username and wrong password are indistinguishable to the caller.
    A row still holding a plaintext password is upgraded to a hash on success.
    """
    row = get_user_by_username(conn, username)
    if row is None:
        return None

    stored = str(row["password"] or "")
    if is_password_hash(stored):
        if not verify_password(password, stored):
            return None
        if password_needs_rehash(stored):
            _set_password(conn, int(row["id"]), password)
        return row

    if not verify_legacy_plaintext(password, stored):
        return None

    _set_password(conn, int(row["id"]), password)
    _debug(f"Upgraded plaintext password to hash for user_id={row['id']}")
    return row


def _set_password(conn: Any, user_id: int, password: str) -> None:
    conn.execute(
        "UPDATE users SET password=?, updated_at=? WHERE id=?",
        (hash_password(password), utcnow_iso(), int(user_id)),
    )


def create_user(
    conn: Any,
    *,
    username: str,
    password: str,
    is_admin: bool = False,
) -> Dict[str, Any]:
    u = normalize_username(username)
    if not u:
        raise ValueError("username_blank")
    if not password:
        raise ValueError("password_blank")

    if get_user_by_username(conn, u) is not None:
        raise UsernameExistsError()

    now = utcnow_iso()
    try:
        row = conn.execute(
            """
            INSERT INTO users (username, password, is_admin, created_at, updated_at)
            VALUES (?,?,?,?,?)
            RETURNING *
            """,
            (u, hash_password(password), 1 if is_admin else 0, now, now),
        ).fetchone()
    except sqlite3.IntegrityError as e:
        # Lost a race with a concurrent insert of the same name.
        raise UsernameExistsError() from e
    return public_user(row)


def create_first_admin(conn: Any, *, username: str, password: str) -> Optional[Dict[str, Any]]:
    """Create an admin only if the users table is empty. Returns None otherwise.

    The emptiness check and the insert are one statement, so two simultaneous
    setup requests cannot both succeed.
    """
    u = normalize_username(username)
    if not u:
        raise ValueError("username_blank")
    if not password:
        raise ValueError("password_blank")

    _begin_immediate(conn)
    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO users (username, password, is_admin, created_at, updated_at)
        SELECT ?, ?, 1, ?, ?
        WHERE NOT EXISTS (SELECT 1 FROM users)
        RETURNING *
        """,
        (u, hash_password(password), now, now),
    ).fetchone()
    if row is None:
        return None
    return public_user(row)


def update_user(
    conn: Any,
    user_id: int,
    *,
    username: str | None = None,
    password: str | None = None,
    is_admin: bool | None = None,
) -> bool:
    """Apply only the provided fields.

    Returns False if the user does not exist or nothing was provided.
    Raises UsernameExistsError on a case-insensitive name clash and LastAdminError
    when demoting the only admin.
    """
    fields: list[tuple[str, Any]] = []
    if username is not None:
        u = normalize_username(username)
        if not u:
            raise ValueError("username_blank")
        clash = conn.execute(
            "SELECT 1 FROM users WHERE username=? COLLATE NOCASE AND id<>?",
            (u, int(user_id)),
        ).fetchone()
        if clash is not None:
            raise UsernameExistsError()
        fields.append(("username", u))
    if password is not None:
        fields.append(("password", hash_password(password)))
    if is_admin is not None:
        fields.append(("is_admin", 1 if is_admin else 0))

    if not fields:
        return False

    fields.append(("updated_at", utcnow_iso()))
    sets = ", ".join([f"{k}=?" for k, _ in fields])
    params = [v for _, v in fields] + [int(user_id)]

    where = "id=?"
    if is_admin is False:
        _begin_immediate(conn)
        where += f" AND {_KEEPS_AN_ADMIN}"

    try:
        cur = conn.execute(f"UPDATE users SET {sets} WHERE {where}", params)
    except sqlite3.IntegrityError as e:
        raise UsernameExistsError() from e

    if cur.rowcount == 1:
        return True
    if is_admin is False and get_user_by_id(conn, user_id) is not None:
        raise LastAdminError()
    return False


def delete_user(conn: Any, user_id: int) -> bool:
    """Delete a user unless it is the last admin. False means nothing was removed."""
    _begin_immediate(conn)
    cur = conn.execute(
        f"DELETE FROM users WHERE id=? AND {_KEEPS_AN_ADMIN}",
        (int(user_id),),
    )
    return cur.rowcount == 1


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=? WHERE id=?",
        (now, int(user_id)),
    )


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin from the environment if the users table is empty.

    - AUTH_BOOTSTRAP_ADMIN_USERNAME
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD

    Both default to empty, in which case the first admin comes from POST /setup.
    """
    username = normalize_username(cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME)
    password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD or ""
    if not username or not password:
        return None

    with connect(cfg.DB_DSN) as conn:
        return create_first_admin(conn, username=username, password=password)


def ensure_auth_secret(cfg: Config) -> str:
    """Return the token signing secret.

    AUTH_SECRET wins. Otherwise a secret is generated on first start and kept in
    app_config so tokens survive restarts.
    """
    if cfg.AUTH_SECRET:
        return cfg.AUTH_SECRET

    with connect(cfg.DB_DSN) as conn:
        secret = get_app_config(conn, "auth_secret")
        if secret:
            return secret
        secret = generate_secret()
        upsert_app_config(conn, "auth_secret", secret, description="token signing secret (generated)")
        _debug("Generated a new token signing secret")
        return secret
