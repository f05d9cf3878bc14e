"""Read-only access to Cursor's state.vscdb key-value stores.

Each store holds two tables: `ItemTable` (workspace and UI state) and
`cursorDiskKV` (composer bodies and bubbles). Every request opens its own
connection in read-only mode and closes it on the way out.
"""

import logging
import sqlite3
from pathlib import Path

from .core import RawRecord
from .exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

BUBBLE_PREFIX = "bubbleId"


class RecordStore:
    """A read-only connection to one state.vscdb, used as a context manager."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> "RecordStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        if not self.db_path.is_file():
            raise StoreUnavailable(f"Store not found: {self.db_path}", path=str(self.db_path))
        try:
            self._conn = sqlite3.connect(f"{self.db_path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open store {self.db_path}: {e}", path=str(self.db_path)) from e

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── cursorDiskKV ─────────────────────────────────────────────

    def list_recent_by_prefix(self, prefix: str, limit: int) -> list[RawRecord]:
        """Return up to `limit` records under `prefix:`, newest row first."""
        rows = self._fetch(
            "SELECT rowid, key, value FROM cursorDiskKV "
            "WHERE substr(key, 1, ?) = ? ORDER BY rowid DESC LIMIT ?",
            (len(prefix) + 1, f"{prefix}:", limit),
        )
        return [_to_record(row) for row in rows]

    def list_by_prefix(self, prefix: str) -> list[RawRecord]:
        """Return every record under `prefix:`, oldest row first."""
        rows = self._fetch(
            "SELECT rowid, key, value FROM cursorDiskKV WHERE substr(key, 1, ?) = ? ORDER BY rowid ASC",
            (len(prefix) + 1, f"{prefix}:"),
        )
        return [_to_record(row) for row in rows]

    def get_by_key(self, key: str) -> RawRecord | None:
        rows = self._fetch("SELECT rowid, key, value FROM cursorDiskKV WHERE key = ?", (key,))
        return _to_record(rows[0]) if rows else None

    def list_by_keys(self, keys: list[str]) -> list[RawRecord]:
        """Return the records for `keys` that exist, in row order."""
        if not keys:
            return []
        placeholders = ",".join("?" for _ in keys)
        rows = self._fetch(
            f"SELECT rowid, key, value FROM cursorDiskKV WHERE key IN ({placeholders}) ORDER BY rowid ASC",
            tuple(keys),
        )
        return [_to_record(row) for row in rows]

    # ── ItemTable ────────────────────────────────────────────────

    def get_item(self, key: str) -> str | None:
        """Read a single key from the ItemTable."""
        rows = self._fetch("SELECT value FROM ItemTable WHERE key = ?", (key,))
        return _decode(rows[0][0]) if rows else None

    def _fetch(self, sql: str, params: tuple) -> list[tuple]:
        if self._conn is None:
            raise StoreUnavailable("Store is not open", path=str(self.db_path))
        try:
            cur = self._conn.execute(sql, params)
            return cur.fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Query failed on {self.db_path}: {e}", path=str(self.db_path)) from e


def _to_record(row: tuple) -> RawRecord:
    rowid, key, value = row
    return RawRecord(key=key, row_ordinal=int(rowid), value_json=_decode(value))


def _decode(value) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")
