"""
Record class registry and factories.

Table-specific :class:`~adminkit.runtime.record.Record` subclasses register
themselves with :func:`register_record`; the factories fall back to the
generic record bound to the table when no subclass is registered.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from adminkit.runtime.record import Record, RecordCollection

if TYPE_CHECKING:
    from adminkit.runtime.storage import Storage

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=type[Record])

_record_classes: dict[str, type[Record]] = {}


def register_record(table: str) -> Callable[[R], R]:
    """
    Class decorator binding a Record subclass to ``table``.

    Example:
        @register_record("Widget")
        class Widget(Record):
            auto_expand = {"Owner": "User"}
    """

    def decorator(cls: R) -> R:
        cls.table_name = table
        _record_classes[table.lower()] = cls
        logger.debug("Registered record class %s for %s", cls.__name__, table)
        return cls

    return decorator


def unregister_record(table: str) -> None:
    _record_classes.pop(table.lower(), None)


def get_record_class(table: str) -> type[Record] | None:
    return _record_classes.get(table.lower())


def record_factory(table: str, storage: Storage) -> Record:
    """
    Create an empty record for ``table``.

    Raises:
        NotFoundError: If the table does not exist
    """
    record_class = get_record_class(table)
    if record_class is not None:
        return record_class(storage, record_class.table_name or table)
    return Record(storage, table)


def record_from_id(table: str, record_id: Any, storage: Storage) -> Record:
    """Create a record for ``table`` and load the row ``record_id``."""
    record = record_factory(table, storage)
    record.load(record_id)
    return record


def record_from_dict(table: str, data: Mapping[str, Any], storage: Storage) -> Record:
    """Create a record for ``table`` filled with ``data`` (see :meth:`Record.set_all`)."""
    record = record_factory(table, storage)
    record.set_all(data)
    return record


def search_records(
    table: str,
    storage: Storage,
    criteria: Mapping[str, Any] | None = None,
    order: str | Sequence[str] | None = None,
) -> RecordCollection:
    """
    Search ``table`` and wrap the matching rows in a collection.

    Criteria and ordering names are matched case-insensitively against the
    table's columns.
    """
    prototype = record_factory(table, storage)
    query = prototype.make_search_query(criteria, order)
    rows = storage.search(query)

    def make_record(row: dict[str, Any]) -> Record:
        record = record_factory(table, storage)
        record.set_all(row, trusted=True)
        return record

    return RecordCollection(rows, make_record)
