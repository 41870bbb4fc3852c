"""
SQLite storage backend.

Zero-dependency backend built on the standard library ``sqlite3`` module.
Column metadata comes from ``PRAGMA table_info``; declared types are reported
verbatim, so custom type names such as ``dollar`` or ``phone`` survive.
"""

from __future__ import annotations

import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from adminkit.runtime.errors import NotFoundError, TransportError
from adminkit.runtime.logging import get_logger
from adminkit.runtime.query_builder import quote_identifier
from adminkit.runtime.storage import Storage
from adminkit.specs.column import ColumnDescriptor

if TYPE_CHECKING:
    from adminkit.runtime.query_builder import QueryBuilder

logger = get_logger("storage")

_INT_LITERAL_RE = re.compile(r"^[-+]?\d+$")
_FLOAT_LITERAL_RE = re.compile(r"^[-+]?(\d+\.\d*|\.\d+)([eE][-+]?\d+)?$")


def parse_default_literal(literal: str | None) -> Any:
    """Convert an SQL default literal (``'abc'``, ``0``, ``NULL``) to a Python value."""
    if literal is None:
        return None
    text = literal.strip()
    if text.upper() == "NULL":
        return None
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1].replace(text[0] * 2, text[0])
    if _INT_LITERAL_RE.match(text):
        return int(text)
    if _FLOAT_LITERAL_RE.match(text):
        return float(text)
    # Expressions such as CURRENT_TIMESTAMP are evaluated by the database.
    return None


class SQLiteStorage(Storage):
    """
    Storage backed by an SQLite database file.

    File databases open a connection per operation; ``":memory:"`` keeps one
    persistent connection so the schema survives between calls.
    """

    def __init__(self, db_path: str | Path = ".adminkit/data.db"):
        """
        Initialize the SQLite storage.

        Args:
            db_path: Path to the database file, or ":memory:"
        """
        self._in_memory = str(db_path) == ":memory:"
        self.db_path = Path(db_path) if not self._in_memory else None
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._persistent: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return f"sqlite:{self.db_path}" if self.db_path else super().name

    @property
    def placeholder(self) -> str:
        return "?"

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            ":memory:" if self._in_memory else str(self.db_path),
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection context manager.

        Commits on success, rolls back and raises TransportError on failure.

        Yields:
            SQLite connection
        """
        with self._lock:
            if self._in_memory:
                if self._persistent is None:
                    self._persistent = self._connect()
                conn = self._persistent
            else:
                conn = self._connect()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise TransportError(f"SQLite error: {e}") from e
            finally:
                if not self._in_memory:
                    conn.close()

    def execute_script(self, sql: str) -> None:
        """Execute a multi-statement SQL script (schema setup)."""
        with self.connection() as conn:
            conn.executescript(sql)

    def close(self) -> None:
        with self._lock:
            if self._persistent is not None:
                self._persistent.close()
                self._persistent = None

    # -------------------------------------------------------------------------
    # Storage interface
    # -------------------------------------------------------------------------

    def has_table(self, table: str) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=? COLLATE NOCASE",
                (table,),
            )
            return cursor.fetchone() is not None

    def columns_of(self, table: str) -> dict[str, ColumnDescriptor]:
        with self.connection() as conn:
            rows = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()

        if not rows:
            raise NotFoundError(f"Table does not exist: {table}")

        columns: dict[str, ColumnDescriptor] = {}
        for row in rows:
            columns[row["name"]] = ColumnDescriptor(
                name=row["name"],
                type=row["type"] or "",
                default=parse_default_literal(row["dflt_value"]),
                nullable=not row["notnull"] and not row["pk"],
                primary_key=bool(row["pk"]),
            )
        return columns

    def load(self, table: str, id_column: str, record_id: Any) -> dict[str, Any] | None:
        sql = (
            f"SELECT * FROM {quote_identifier(table)} "
            f"WHERE {quote_identifier(id_column)} = ? LIMIT 1"
        )
        with self.connection() as conn:
            row = conn.execute(sql, (record_id,)).fetchone()
        return dict(row) if row is not None else None

    def insert(self, table: str, data: dict[str, Any], id_column: str | None = None) -> Any:
        if data:
            columns = ", ".join(quote_identifier(name) for name in data)
            placeholders = ", ".join("?" for _ in data)
            sql = f"INSERT INTO {quote_identifier(table)} ({columns}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {quote_identifier(table)} DEFAULT VALUES"

        with self.connection() as conn:
            cursor = conn.execute(sql, tuple(data.values()))
            new_id = cursor.lastrowid
        logger.debug("Inserted %s row %s", table, new_id)
        return new_id

    def update(self, table: str, id_column: str, record_id: Any, data: dict[str, Any]) -> int:
        values = {name: value for name, value in data.items() if name != id_column}
        if not values:
            return 0
        assignments = ", ".join(f"{quote_identifier(name)} = ?" for name in values)
        sql = (
            f"UPDATE {quote_identifier(table)} SET {assignments} "
            f"WHERE {quote_identifier(id_column)} = ?"
        )
        with self.connection() as conn:
            cursor = conn.execute(sql, (*values.values(), record_id))
            return cursor.rowcount

    def delete(self, table: str, id_column: str, record_id: Any) -> bool:
        sql = f"DELETE FROM {quote_identifier(table)} WHERE {quote_identifier(id_column)} = ?"
        with self.connection() as conn:
            cursor = conn.execute(sql, (record_id,))
            return cursor.rowcount > 0

    def search(self, query: QueryBuilder) -> list[dict[str, Any]]:
        sql, params = query.build_select(self.placeholder)
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]
