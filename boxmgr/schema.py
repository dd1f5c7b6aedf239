"""Database schema for the box manager.

Timestamps are ISO-8601 TEXT (UTC, with 'Z'); they sort lexicographically in time order.

Usernames are stored lowercased and the column is COLLATE NOCASE, so the database itself
rejects case-only duplicates even if two requests race past the application check.
"""

from __future__ import annotations


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    description TEXT,
    updated_at TEXT
);

-- Users / Auth
-- `password` holds a passlib hash. Rows written before hashing existed may still hold
-- plaintext; those are upgraded on the next successful login.
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password TEXT NOT NULL,
    is_admin INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    last_login_at TEXT
);

-- Inventory
CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    color TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS boxes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    number INTEGER NOT NULL,
    name TEXT NOT NULL,
    category_id INTEGER NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_boxes_category_number ON boxes (category_id, number);

CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    box_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (box_id) REFERENCES boxes(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_items_box ON items (box_id);
"""


def get_schema_sql() -> str:
    return SCHEMA_SQLITE
