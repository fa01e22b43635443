"""SQLite helpers for schema introspection and upserts.

These utilities provide a small set of convenience functions used by the
stores: listing a table's live columns, checking for tables and indexes,
and performing simple UPSERTs by unique key.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Iterable, Mapping, Set


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cur = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name = ?", (table,)
    )
    return cur.fetchone() is not None


def index_exists(conn: sqlite3.Connection, index: str) -> bool:
    cur = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='index' AND name = ?", (index,)
    )
    return cur.fetchone() is not None


def table_columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    """Return the set of column names currently present on ``table``."""
    cur = conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}


def upsert(
    conn: sqlite3.Connection,
    table: str,
    key_columns: Iterable[str],
    values: Mapping[str, Any],
) -> None:
    """Perform a simple UPSERT by `key_columns`.

    The function constructs an INSERT ... ON CONFLICT (...) DO UPDATE SET ...
    statement. Callers are responsible for ensuring a UNIQUE constraint exists
    on the key columns.
    """
    keys = list(key_columns)
    cols = list(values.keys())
    placeholders = ", ".join(["?" for _ in cols])
    # Never update primary key 'id' in upsert to avoid FK churn
    update_cols = [c for c in cols if c not in keys and c != "id"]
    assignments = ", ".join([f"{c}=excluded.{c}" for c in update_cols])
    conflict = ", ".join(keys)
    sql = (
        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders}) "
        f"ON CONFLICT({conflict}) DO UPDATE SET {assignments};"
    )
    conn.execute(sql, [values[c] for c in cols])


__all__ = [
    "index_exists",
    "table_columns",
    "table_exists",
    "upsert",
]
