"""
Storage collaborator interface and the in-memory backend.

The record layer reaches the database only through :class:`Storage`. Each
operation is independently atomic; the core performs no multi-statement
transactions. Backends:

- :class:`MemoryStorage` (this module): process-local tables, for tests and demos
- :class:`~adminkit.runtime.sqlite_backend.SQLiteStorage`: stdlib sqlite3
- :class:`~adminkit.runtime.pg_backend.PostgresStorage`: psycopg 3
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from adminkit.runtime.coercion import filter_value, to_int
from adminkit.runtime.errors import NotFoundError, TransportError
from adminkit.specs.column import ColumnDescriptor

if TYPE_CHECKING:
    from adminkit.runtime.config import AdminConfig
    from adminkit.runtime.query_builder import QueryBuilder

logger = logging.getLogger(__name__)

_memory_ids = itertools.count(1)


# =============================================================================
# Storage Interface
# =============================================================================


class Storage(ABC):
    """Abstract storage collaborator used by records and the schema cache."""

    @property
    def name(self) -> str:
        """Identifier of this storage, used to key the schema cache."""
        return f"{type(self).__name__}:{id(self)}"

    @abstractmethod
    def has_table(self, table: str) -> bool:
        """Check whether ``table`` exists."""

    @abstractmethod
    def columns_of(self, table: str) -> dict[str, ColumnDescriptor]:
        """Return the ordered column descriptors of ``table``.

        Raises:
            NotFoundError: If the table does not exist
        """

    @abstractmethod
    def load(self, table: str, id_column: str, record_id: Any) -> dict[str, Any] | None:
        """Return the row whose ``id_column`` equals ``record_id``, or None."""

    @abstractmethod
    def insert(self, table: str, data: dict[str, Any], id_column: str | None = None) -> Any:
        """Insert a row and return its generated identity (falsy when none was produced)."""

    @abstractmethod
    def update(self, table: str, id_column: str, record_id: Any, data: dict[str, Any]) -> int:
        """Update the row identified by ``record_id``; returns affected row count."""

    @abstractmethod
    def delete(self, table: str, id_column: str, record_id: Any) -> bool:
        """Delete the row identified by ``record_id``; returns True if one was removed."""

    @abstractmethod
    def search(self, query: QueryBuilder) -> list[dict[str, Any]]:
        """Run a search statement and return the matching rows in order."""

    def value_filter(self, declared_type: str, value: Any) -> Any:
        """Cast ``value`` to the storage representation of ``declared_type``."""
        return filter_value(declared_type, value)

    def close(self) -> None:
        """Release any held resources."""


# =============================================================================
# Memory Backend
# =============================================================================


@dataclass
class _MemoryTable:
    columns: dict[str, ColumnDescriptor]
    id_column: str | None
    rows: dict[int, dict[str, Any]] = field(default_factory=dict)
    next_id: int = 1


class MemoryStorage(Storage):
    """
    In-process storage backed by dictionaries.

    Tables are declared up front with :meth:`create_table`; the identity
    column is the primary-key descriptor, or the column named ``id``
    (case-insensitive), and is auto-incremented on insert.
    """

    def __init__(self) -> None:
        self._name = f"memory:{next(_memory_ids)}"
        self._tables: dict[str, _MemoryTable] = {}
        self._lock = threading.RLock()

    def create_table(self, table: str, columns: Iterable[ColumnDescriptor]) -> None:
        """Declare a table. Re-declaring an existing table replaces it."""
        column_map = {column.name: column for column in columns}
        id_column = next((c.name for c in column_map.values() if c.primary_key), None)
        if id_column is None:
            id_column = next((name for name in column_map if name.lower() == "id"), None)
        with self._lock:
            self._tables[table] = _MemoryTable(columns=column_map, id_column=id_column)
        logger.debug("Declared memory table %s (%d columns)", table, len(column_map))

    @property
    def name(self) -> str:
        return self._name

    def _table(self, table: str) -> _MemoryTable:
        try:
            return self._tables[table]
        except KeyError:
            raise NotFoundError(f"Table does not exist: {table}") from None

    def _canonical(self, mem: _MemoryTable, data: dict[str, Any]) -> dict[str, Any]:
        return {name: value for name, value in data.items() if name in mem.columns}

    def has_table(self, table: str) -> bool:
        return table in self._tables

    def columns_of(self, table: str) -> dict[str, ColumnDescriptor]:
        return dict(self._table(table).columns)

    def load(self, table: str, id_column: str, record_id: Any) -> dict[str, Any] | None:
        mem = self._table(table)
        with self._lock:
            if id_column == mem.id_column:
                row = mem.rows.get(to_int(record_id))
            else:
                row = next((r for r in mem.rows.values() if r.get(id_column) == record_id), None)
            return copy.deepcopy(row) if row is not None else None

    def insert(self, table: str, data: dict[str, Any], id_column: str | None = None) -> Any:
        mem = self._table(table)
        id_column = id_column or mem.id_column
        if id_column is None:
            raise TransportError(f"Table {table} has no identity column")

        with self._lock:
            row = {name: column.default for name, column in mem.columns.items()}
            row.update(self._canonical(mem, data))
            new_id = to_int(row.get(id_column)) or mem.next_id
            if new_id in mem.rows:
                raise TransportError(f"Duplicate {id_column} {new_id} in {table}")
            row[id_column] = new_id
            mem.rows[new_id] = row
            mem.next_id = max(mem.next_id, new_id + 1)
        return new_id

    def update(self, table: str, id_column: str, record_id: Any, data: dict[str, Any]) -> int:
        mem = self._table(table)
        with self._lock:
            row = mem.rows.get(to_int(record_id))
            if row is None:
                return 0
            values = self._canonical(mem, data)
            values.pop(id_column, None)
            row.update(values)
        return 1

    def delete(self, table: str, id_column: str, record_id: Any) -> bool:
        mem = self._table(table)
        with self._lock:
            return mem.rows.pop(to_int(record_id), None) is not None

    def search(self, query: QueryBuilder) -> list[dict[str, Any]]:
        mem = self._table(query.table_name)
        with self._lock:
            rows = [copy.deepcopy(row) for _, row in sorted(mem.rows.items())]
        return query.apply(rows)


# =============================================================================
# Factory
# =============================================================================


def create_storage(config: AdminConfig | None = None) -> Storage:
    """
    Create the configured storage backend.

    PostgreSQL is used when a database URL is configured, SQLite otherwise.
    """
    if config is None:
        from adminkit.runtime.config import get_config

        config = get_config()

    if config.uses_postgres:
        from adminkit.runtime.pg_backend import PostgresStorage

        assert config.database_url is not None
        return PostgresStorage(config.database_url)

    from adminkit.runtime.sqlite_backend import SQLiteStorage

    return SQLiteStorage(config.db_path)
