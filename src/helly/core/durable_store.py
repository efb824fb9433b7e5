"""SQLite row store backing idempotency records and user sessions."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS telegram_updates (
    update_id INTEGER NOT NULL UNIQUE,
    telegram_user_id INTEGER NOT NULL,
    received_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS user_states (
    telegram_user_id INTEGER PRIMARY KEY,
    state TEXT NOT NULL,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_telegram_updates_user ON telegram_updates(telegram_user_id);
"""

# table -> allowed columns; identifiers are never taken from callers unchecked
TABLE_COLUMNS: dict[str, frozenset[str]] = {
    "telegram_updates": frozenset({"update_id", "telegram_user_id", "received_at"}),
    "user_states": frozenset({"telegram_user_id", "state", "payload", "updated_at"}),
}


class DuplicateRowError(Exception):
    """Insert rejected by a uniqueness constraint."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_row_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {key: row[key] for key in row.keys()}


class DurableStore:
    """Small insert/select/upsert facade over one SQLite file."""

    def __init__(self, *, db_path: str | Path, busy_timeout_ms: int = 5000) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout_ms = int(busy_timeout_ms) if int(busy_timeout_ms) > 0 else 5000
        self._schema_lock = Lock()
        self._schema_ready = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout_ms / 1000.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute(f"PRAGMA busy_timeout = {self._busy_timeout_ms:d};")
        return conn

    def ensure_schema(self) -> None:
        with self._schema_lock:
            if self._schema_ready:
                return
            with self._connect() as conn:
                conn.executescript(SCHEMA_SQL)
            self._schema_ready = True

    @staticmethod
    def _checked_columns(table: str, columns: list[str]) -> list[str]:
        allowed = TABLE_COLUMNS.get(table)
        if allowed is None:
            raise ValueError(f"Unknown table: {table}")
        unknown = [col for col in columns if col not in allowed]
        if unknown:
            raise ValueError(f"Unknown columns for {table}: {', '.join(unknown)}")
        return columns

    def insert(self, table: str, row: dict[str, Any]) -> None:
        """Insert one row; raises `DuplicateRowError` on a unique violation."""
        self.ensure_schema()
        columns = self._checked_columns(table, list(row.keys()))
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        try:
            with self._connect() as conn:
                conn.execute(sql, [row[col] for col in columns])
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower() or "primary key" in str(exc).lower():
                raise DuplicateRowError(str(exc)) from exc
            raise

    def select(self, table: str, filters: dict[str, Any] | None = None, *, limit: int | None = None) -> list[dict[str, Any]]:
        self.ensure_schema()
        filters = filters or {}
        columns = self._checked_columns(table, list(filters.keys()))
        sql = f"SELECT * FROM {table}"
        if columns:
            sql += " WHERE " + " AND ".join(f"{col} = ?" for col in columns)
        params: list[Any] = [filters[col] for col in columns]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(1, int(limit)))
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_as_row_dict(row) for row in rows]

    def upsert(self, table: str, row: dict[str, Any], *, conflict_key: str) -> None:
        self.ensure_schema()
        columns = self._checked_columns(table, list(row.keys()))
        if conflict_key not in columns:
            raise ValueError(f"conflict_key '{conflict_key}' must be part of the row.")
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{col} = excluded.{col}" for col in columns if col != conflict_key)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({conflict_key}) DO "
            + (f"UPDATE SET {updates}" if updates else "NOTHING")
        )
        with self._connect() as conn:
            conn.execute(sql, [row[col] for col in columns])

    def load_user_state(self, user_id: int) -> dict[str, Any] | None:
        rows = self.select("user_states", {"telegram_user_id": int(user_id)}, limit=1)
        if not rows:
            return None
        payload = json.loads(rows[0]["payload"])
        return payload if isinstance(payload, dict) else None

    def save_user_state(self, user_id: int, state: str, payload: dict[str, Any]) -> None:
        self.upsert(
            "user_states",
            {
                "telegram_user_id": int(user_id),
                "state": state,
                "payload": json.dumps(payload, ensure_ascii=False),
                "updated_at": utc_now_iso(),
            },
            conflict_key="telegram_user_id",
        )
