"""
Process-wide table metadata cache.

Column descriptors are read from the storage once per table and shared
read-only by every record of that table. First population of each table is
guarded by its own lock so concurrent first requests load the schema once.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from adminkit.runtime.storage import Storage
    from adminkit.specs.column import ColumnDescriptor

logger = logging.getLogger(__name__)


def alias_columns(columns: Mapping[str, ColumnDescriptor] | list[str]) -> dict[str, str]:
    """Build the lower-cased name → canonical name alias table."""
    return {name.lower(): name for name in columns}


class SchemaCache:
    """
    Column metadata for the tables of one storage.

    Use :func:`get_schema_cache` to obtain the shared instance for a storage.
    The cache refers to its storage weakly so it never keeps one alive.
    """

    def __init__(self, storage: Storage):
        self._storage_ref = weakref.ref(storage)
        self._columns: dict[str, Mapping[str, ColumnDescriptor]] = {}
        self._aliases: dict[str, dict[str, str]] = {}
        self._table_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @property
    def storage(self) -> Storage:
        storage = self._storage_ref()
        if storage is None:
            raise ReferenceError("The storage of this schema cache no longer exists")
        return storage

    def _lock_for(self, table: str) -> threading.Lock:
        with self._guard:
            lock = self._table_locks.get(table)
            if lock is None:
                lock = self._table_locks[table] = threading.Lock()
            return lock

    def columns_of(self, table: str) -> Mapping[str, ColumnDescriptor]:
        """
        Ordered column descriptors of ``table``, loaded on first use.

        Raises:
            NotFoundError: If the table does not exist
        """
        columns = self._columns.get(table)
        if columns is not None:
            return columns

        with self._lock_for(table):
            columns = self._columns.get(table)
            if columns is None:
                loaded = self.storage.columns_of(table)
                columns = MappingProxyType(dict(loaded))
                self._aliases[table] = alias_columns(columns)
                self._columns[table] = columns
                logger.debug("Loaded schema for %s (%d columns)", table, len(columns))
        return columns

    def aliases_of(self, table: str) -> Mapping[str, str]:
        self.columns_of(table)
        return self._aliases[table]

    def alias_of(self, table: str, name: str) -> str | None:
        """Canonical column name for ``name`` (case-insensitive), or None."""
        if not name:
            return None
        return self.aliases_of(table).get(name.lower())

    def defaults_of(self, table: str) -> dict[str, Any]:
        """Fresh mapping of every column to its default value."""
        return {name: column.default for name, column in self.columns_of(table).items()}

    def is_loaded(self, table: str) -> bool:
        return table in self._columns

    def clear(self, table: str | None = None) -> None:
        """Forget cached metadata for ``table``, or for every table."""
        with self._guard:
            if table is None:
                self._columns.clear()
                self._aliases.clear()
            else:
                self._columns.pop(table, None)
                self._aliases.pop(table, None)


# =============================================================================
# Global Schema Caches
# =============================================================================


# Entries disappear with their storage.
_schema_caches: weakref.WeakKeyDictionary[Storage, SchemaCache] = weakref.WeakKeyDictionary()
_schema_caches_lock = threading.Lock()


def get_schema_cache(storage: Storage) -> SchemaCache:
    """Get the process-wide schema cache for ``storage``."""
    with _schema_caches_lock:
        cache = _schema_caches.get(storage)
        if cache is None:
            cache = _schema_caches[storage] = SchemaCache(storage)
        return cache


def reset_schema_caches() -> None:
    """Drop every schema cache (mainly for testing)."""
    with _schema_caches_lock:
        _schema_caches.clear()
