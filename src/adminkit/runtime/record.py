"""
Active-record access to table rows.

A :class:`Record` is a mutable bag of column values bound to one table's
schema. Field access goes through an explicit rule chain rather than
attribute reflection:

1. built-in accessors (``all``, ``columns``, ``columnlist``, ``idcolumn``, ``table``)
2. relations: ``name`` is a relation when ``name + "ID"`` is a column; the
   related record is loaded lazily and cached
3. columns, the synthetic ``title`` → ``name`` alias and ``<Name>List``
   option lists, returned through :func:`format_output`
4. anything else is absent

Writes to unknown names are ignored; writes to identity columns of a created
record are ignored; every other write is coerced with :func:`format_input`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from adminkit.runtime.coercion import (
    format_input,
    format_output,
    format_time_interval,
    is_numeric,
    to_float,
    to_int,
)
from adminkit.runtime.errors import (
    AdminKitError,
    ConflictError,
    NotFoundError,
    OutOfBoundsError,
    TransportError,
)
from adminkit.runtime.query_builder import QueryBuilder, make_search_query
from adminkit.runtime.schema_cache import get_schema_cache
from adminkit.specs.column import ColumnType

if TYPE_CHECKING:
    from adminkit.runtime.storage import Storage
    from adminkit.specs.column import ColumnDescriptor

logger = logging.getLogger(__name__)

__all__ = [
    "MISSING",
    "Record",
    "RecordCollection",
    "field_setter",
    "format_time_interval",
]

_LIST_NAME_RE = re.compile(r"^(.+?)List$")


class _Missing:
    """Marker for a name that resolves to nothing."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def field_setter(column: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Register a method as the custom setter of ``column``.

    The setter runs after the coerced value has been stored and receives that
    coerced value; it may store something else with :meth:`Record.set_raw`.

    Example:
        @field_setter("Password")
        def set_password(self, value):
            self.set_raw("Password", hash_password(value))
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        func._field_setter = column  # type: ignore[attr-defined]
        return func

    return decorator


def _same_identity(left: Any, right: Any) -> bool:
    if is_numeric(left) and is_numeric(right):
        return to_float(left) == to_float(right)
    return str(left) == str(right)


# =============================================================================
# Record
# =============================================================================


class Record:
    """
    One row of a table, exposed as a dynamically typed field bag.

    Subclasses bind a table with ``table_name`` (and are usually registered
    with :func:`~adminkit.runtime.record_registry.register_record`); the
    generic class is bound by passing ``table``.

    Class attributes:
        table_name: Table of a subclass
        id_column_name: Identity column, when it is not the ``id`` column
        no_update: Extra columns that may not change once the record is created
        auto_expand: Relation name → related table, when they differ
    """

    table_name: ClassVar[str] = ""
    id_column_name: ClassVar[str | None] = None
    no_update: ClassVar[frozenset[str]] = frozenset()
    auto_expand: ClassVar[Mapping[str, str]] = {}

    _setters: ClassVar[dict[str, str]] = {}

    _AUTO_GETTERS: ClassVar[dict[str, str]] = {
        "all": "get_all",
        "columns": "get_columns",
        "columnlist": "get_column_names",
        "idcolumn": "get_id_column",
        "table": "get_table",
    }

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        setters = dict(cls._setters)
        for attr_name, attr in cls.__dict__.items():
            column = getattr(attr, "_field_setter", None)
            if column:
                setters[column.lower()] = attr_name
        cls._setters = setters
        cls.auto_expand = {name.lower(): table for name, table in cls.auto_expand.items()}

    def __init__(self, storage: Storage, table: str | None = None):
        """
        Create an empty record with every column set to its default.

        Args:
            storage: Storage holding the table
            table: Table name; defaults to the class's ``table_name``

        Raises:
            AdminKitError: If no table is given
            NotFoundError: If the table does not exist
        """
        table = table or type(self).table_name
        if not table:
            raise AdminKitError("Table not specified")

        schema = get_schema_cache(storage)
        if not schema.is_loaded(table) and not storage.has_table(table):
            raise NotFoundError(f"Table does not exist: {table}")

        self._storage = storage
        self._table = table
        self._schema = schema
        self._columns = schema.columns_of(table)
        self._id_column = self._find_id_column()
        self._no_update = {
            real for real in (self.has_column(name) for name in type(self).no_update) if real
        }
        if self._id_column:
            self._no_update.add(self._id_column)
        self._data: dict[str, Any] = schema.defaults_of(table)
        self._relations: dict[str, Record] = {}
        self._position = 0

    def _find_id_column(self) -> str | None:
        if type(self).id_column_name:
            return self.has_column(type(self).id_column_name)
        real = self.has_column("id")
        if real:
            return real
        return next((c.name for c in self._columns.values() if c.primary_key), None)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._table} {self._id_column}={self.id!r}>"

    def __str__(self) -> str:
        return str(self.get_all())

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    @property
    def storage(self) -> Storage:
        return self._storage

    @property
    def table(self) -> str:
        return self._table

    @property
    def id_column(self) -> str | None:
        return self._id_column

    @property
    def id(self) -> Any:
        return self._data.get(self._id_column) if self._id_column else None

    def get_table(self) -> str:
        return self._table

    def get_id_column(self) -> str | None:
        return self._id_column

    def get_columns(self) -> dict[str, ColumnDescriptor]:
        return dict(self._columns)

    def get_column_names(self) -> list[str]:
        return list(self._columns)

    def get_column(self, name: str) -> ColumnDescriptor | None:
        real = self.has_column(name)
        return self._columns[real] if real else None

    def has_column(self, name: str) -> str | None:
        """Canonical name of column ``name`` (case-insensitive), or None."""
        return self._schema.alias_of(self._table, name)

    def get_column_type(self, name: str) -> str:
        column = self.get_column(name)
        return column.type.lower() if column else ""

    def is_created(self) -> bool:
        """Whether the identity column holds a positive number."""
        value = self.id
        return value is not None and is_numeric(value) and to_float(value) > 0

    # -------------------------------------------------------------------------
    # Field resolution
    # -------------------------------------------------------------------------

    def resolve(self, name: str) -> Any:
        """Resolve ``name`` through the rule chain; :data:`MISSING` when nothing matches."""
        lower = name.lower()

        getter = self._AUTO_GETTERS.get(lower)
        if getter:
            return getattr(self, getter)()

        id_name = self.has_column(f"{name}id")
        if id_name:
            return self._related(lower, id_name)

        if self.has(name):
            return self._format_output(name)

        return MISSING

    def get(self, name: str, default: Any = None) -> Any:
        value = self.resolve(name)
        return default if value is MISSING else value

    def has(self, name: str) -> bool:
        """Whether ``get(name)`` resolves to something."""
        if self.has_column(name):
            return True

        lower = name.lower()
        if lower == "title" and self.has_column("name"):
            return True

        if lower in self._AUTO_GETTERS:
            return True

        if self.has_column(f"{name}id"):
            return True

        match = _LIST_NAME_RE.match(name)
        if match:
            return self.has(match.group(1))

        return False

    def _related(self, key: str, id_name: str) -> Record:
        related = self._relations.get(key)
        if related is None:
            from adminkit.runtime.record_registry import record_factory, record_from_id

            related_table = self.auto_expand.get(key, id_name[:-2])
            try:
                related = record_from_id(related_table, self._data[id_name], self._storage)
            except AdminKitError as e:
                logger.debug("Relation %s.%s not loaded: %s", self._table, key, e)
                related = record_factory(related_table, self._storage)
            self._relations[key] = related
        return related

    def _format_output(self, name: str) -> Any:
        match = _LIST_NAME_RE.match(name)
        if match:
            column = self.get_column(match.group(1))
            if column is not None and column.base_type in (ColumnType.SET, ColumnType.ENUM):
                return column.options

        real = self.has_column(name)
        if not real and name.lower() == "title":
            real = self.has_column("name")

        if not real:
            return ""
        return format_output(self._columns[real].type, self._data[real])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(self, name: str, value: Any) -> None:
        """
        Assign a column through type coercion.

        Unknown names are ignored, as are identity-designated columns once the
        record is created. A custom setter for the column runs afterwards with
        the coerced value.
        """
        real = self.has_column(name)
        if not real:
            return

        if real in self._no_update and self.is_created():
            return

        coerced = format_input(self._columns[real].type, value, self._storage.value_filter)
        self._data[real] = coerced

        self._forget_relation(real)

        setter = self._setters.get(real.lower())
        if setter:
            getattr(self, setter)(coerced)

    def set_raw(self, name: str, value: Any) -> None:
        """Store ``value`` verbatim in column ``name`` (no coercion, no setter)."""
        real = self.has_column(name)
        if real:
            self._data[real] = value

    def unset(self, name: str) -> None:
        """Reset a column, or the ``<Name>ID`` column of a relation, to its default."""
        real = self.has_column(name) or self.has_column(f"{name}id")
        if real:
            self._data[real] = self._columns[real].default
            self._forget_relation(real)

    def _forget_relation(self, column: str) -> None:
        lower = column.lower()
        if lower.endswith("id"):
            self._relations.pop(lower[:-2], None)

    def set_all(self, data: Mapping[str, Any], trusted: bool | None = None) -> dict[str, Any]:
        """
        Bulk-assign column values.

        The identity column is handled first: changing the identity of a
        created record raises ConflictError.

        Args:
            data: Column → value mapping (column names are case-insensitive)
            trusted: True stores values verbatim (rows read from storage);
                False routes them through :meth:`set`; None treats the data as
                trusted when it carries the identity column

        Returns:
            The entries that did not match any column
        """
        remaining = dict(data)

        for key in list(remaining):
            if self._id_column and self.has_column(key) == self._id_column:
                if trusted is None:
                    trusted = True

                new_id = remaining.pop(key)
                current_id = self._data.get(self._id_column)
                if self.is_created() and not _same_identity(new_id, current_id):
                    raise ConflictError(
                        f"The existing {self._table} already has an ID of {current_id} "
                        f"so it can't be changed to {new_id}"
                    )
                self.set(self._id_column, new_id)
                break

        for key in list(remaining):
            real = self.has_column(key)
            if real:
                if trusted:
                    self._data[real] = remaining.pop(key)
                    self._forget_relation(real)
                else:
                    self.set(real, remaining.pop(key))

        return remaining

    def get_all(self, formatted: bool = False) -> dict[str, Any]:
        """Column values, raw or passed through output formatting."""
        if not formatted:
            return dict(self._data)
        return {name: self._format_output(name) for name in self._data}

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _require_id_column(self) -> str:
        if not self._id_column:
            raise NotFoundError(f"The table {self._table} has no identity column")
        return self._id_column

    def load(self, record_id: Any) -> Record:
        """
        Fill the record from the row with identity ``record_id``.

        Raises:
            NotFoundError: If no such row exists
            TransportError: If the storage fails
        """
        id_column = self._require_id_column()
        record_id = to_int(record_id)
        row = self._storage.load(self._table, id_column, record_id)
        if row is None:
            raise NotFoundError(
                f"The table {self._table} does not contain the {id_column} {record_id}!"
            )
        self.set_all(row, trusted=True)
        return self

    def insert(self) -> Any:
        """Insert a new row and store the generated identity."""
        id_column = self._require_id_column()
        payload = {name: value for name, value in self._data.items() if name != id_column}
        new_id = self._storage.insert(self._table, payload, id_column)
        if not new_id:
            raise TransportError(f"Failed to create a new {self._table} record")
        self._data[id_column] = new_id
        logger.info("Created %s %s=%s", self._table, id_column, new_id)
        return new_id

    def update(self) -> int:
        """
        Persist the current values of a created record.

        Raises:
            NotFoundError: If the record is not created or its row is gone
        """
        id_column = self._require_id_column()
        if not self.is_created():
            raise NotFoundError(f"The {self._table} record has no {id_column} to update")
        values = {name: value for name, value in self._data.items() if name != id_column}
        count = self._storage.update(self._table, id_column, self.id, dict(self._data))
        if values and not count:
            raise NotFoundError(
                f"The table {self._table} does not contain the {id_column} {self.id}!"
            )
        logger.info("Updated %s %s=%s", self._table, id_column, self.id)
        return count

    def save(self) -> Any:
        """Update when created, insert otherwise; returns the identity."""
        if self.is_created():
            self.update()
        else:
            self.insert()
        return self.id

    def delete(self) -> bool:
        """Delete the row; a record that was never created succeeds trivially."""
        if not self.is_created():
            return True
        deleted = self._storage.delete(self._table, self._require_id_column(), self.id)
        logger.info("Deleted %s %s=%s", self._table, self._id_column, self.id)
        return deleted

    def make_search_query(
        self, criteria: Mapping[str, Any] | None = None, order: Any = None
    ) -> QueryBuilder:
        """Search statement against this record's table with canonical column names."""
        query = make_search_query(self._table, criteria, order)
        return query.rename_fields(self.has_column)

    # -------------------------------------------------------------------------
    # Container protocol
    # -------------------------------------------------------------------------

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __delitem__(self, name: str) -> None:
        self.unset(name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        value = self.resolve(name)
        if value is MISSING:
            raise AttributeError(f"{type(self).__name__} has no field {name!r}")
        return value

    # Cursor over the column names, in schema order.

    def count(self) -> int:
        return len(self._data)

    def key(self) -> str | None:
        names = list(self._data)
        return names[self._position] if self._position < len(names) else None

    def current(self) -> Any:
        name = self.key()
        return self.get(name) if name is not None else None

    def next(self) -> None:
        self._position += 1

    def rewind(self) -> None:
        self._position = 0

    def valid(self) -> bool:
        return self.key() is not None

    def seek(self, name: str) -> None:
        """Move the cursor to column ``name``; OutOfBoundsError if there is none."""
        self.rewind()
        while self.valid() and self.key() != name:
            self.next()
        if self.key() != name:
            raise OutOfBoundsError(name)


# =============================================================================
# Record Collection
# =============================================================================


class RecordCollection:
    """
    Ordered, positionable cursor over the records a search produced.

    Rows are materialized into records on first access.
    """

    def __init__(self, rows: list[dict[str, Any]], make_record: Callable[[dict[str, Any]], Record]):
        self._rows = rows
        self._make_record = make_record
        self._records: dict[int, Record] = {}
        self._position = 0

    def __repr__(self) -> str:
        return f"<RecordCollection of {len(self._rows)}>"

    def _record_at(self, position: int) -> Record:
        record = self._records.get(position)
        if record is None:
            record = self._records[position] = self._make_record(self._rows[position])
        return record

    def count(self) -> int:
        return len(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __getitem__(self, position: int) -> Record:
        if not isinstance(position, int) or not 0 <= position < len(self._rows):
            raise OutOfBoundsError(position)
        return self._record_at(position)

    def __iter__(self) -> Iterator[Record]:
        for position in range(len(self._rows)):
            yield self._record_at(position)

    # Cursor

    def key(self) -> int | None:
        return self._position if self._position < len(self._rows) else None

    def current(self) -> Record | None:
        return self._record_at(self._position) if self.valid() else None

    def next(self) -> None:
        self._position += 1

    def rewind(self) -> None:
        self._position = 0

    def valid(self) -> bool:
        return self.key() is not None

    def seek(self, position: int) -> None:
        """Move the cursor to ``position``; OutOfBoundsError if there is none."""
        self.rewind()
        while self.valid() and self.key() != position:
            self.next()
        if self.key() != position:
            raise OutOfBoundsError(position)

    # Column access on the current record

    def _current_or_raise(self) -> Record:
        record = self.current()
        if record is None:
            raise OutOfBoundsError(self._position)
        return record

    def get(self, name: str, default: Any = None) -> Any:
        return self._current_or_raise().get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._current_or_raise().set(name, value)

    def unset(self, name: str) -> None:
        self._current_or_raise().unset(name)

    def has(self, name: str) -> bool:
        record = self.current()
        return record is not None and record.has(name)

    def get_all(self, formatted: bool = False) -> list[dict[str, Any]]:
        """Every record's data, in order."""
        return [record.get_all(formatted) for record in self]
