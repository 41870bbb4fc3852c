"""
Search query construction for record tables.

Turns a criteria mapping and an ordering specification into a
:class:`QueryBuilder` scoped to one table. The builder renders parameterised
SQL for the SQL backends and evaluates the same predicate in memory for
:class:`~adminkit.runtime.storage.MemoryStorage`.

Criteria keys are column names with an optional ``__<operator>`` suffix::

    {"Name__contains": "bolt", "Price__gte": 5, "Status": ["open", "held"]}
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence, Sized
from dataclasses import dataclass, field
from enum import StrEnum
from functools import cmp_to_key
from typing import Any

from adminkit.runtime.coercion import is_numeric, is_truthy

logger = logging.getLogger(__name__)

# =============================================================================
# Identifiers
# =============================================================================


def quote_identifier(name: str) -> str:
    """Quote an SQL identifier, doubling embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


# =============================================================================
# Filter Operators
# =============================================================================


class FilterOperator(StrEnum):
    """Supported criteria operators (the ``__op`` key suffix)."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    ICONTAINS = "icontains"
    STARTSWITH = "startswith"
    ENDSWITH = "endswith"
    IN = "in"
    NOT_IN = "not_in"
    ISNULL = "isnull"


_OPERATOR_NAMES = frozenset(op.value for op in FilterOperator)

_COMPARISON_SQL: dict[FilterOperator, str] = {
    FilterOperator.EQ: "=",
    FilterOperator.NE: "!=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}


def is_empty_criterion(value: Any) -> bool:
    """Whether a criteria value means "no constraint on this field"."""
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value in ("", "0")
    if isinstance(value, int | float):
        return value == 0
    if isinstance(value, Sized):
        return len(value) == 0
    return False


_FALSE_WORDS = frozenset({"false", "no", "off", "n", "f"})


def _as_flag(value: Any) -> bool:
    """Boolean meaning of a flag value; strings such as ``"false"`` or ``"no"`` are false."""
    if isinstance(value, str):
        word = value.strip().lower()
        return is_truthy(word) and word not in _FALSE_WORDS
    return bool(value)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, Iterable) and not isinstance(value, str | bytes):
        return list(value)
    return [value]


def _loose_equal(left: Any, right: Any) -> bool:
    if left == right:
        return True
    if is_numeric(left) and is_numeric(right):
        return float(left) == float(right)
    if left is None or right is None:
        return False
    return str(left) == str(right)


def _compare(left: Any, right: Any) -> int:
    if is_numeric(left) and is_numeric(right):
        left, right = float(left), float(right)
    elif type(left) is not type(right):
        left, right = str(left), str(right)
    return (left > right) - (left < right)


# =============================================================================
# Filter Conditions
# =============================================================================


@dataclass
class FilterCondition:
    """One predicate of a search: ``field <operator> value``."""

    field: str
    operator: FilterOperator = FilterOperator.EQ
    value: Any = None

    @classmethod
    def parse(cls, key: str, value: Any) -> FilterCondition:
        """
        Parse a criteria key into a condition.

        A list value on a bare key becomes an ``IN`` condition. Unknown
        suffixes are treated as part of the field name.

        Args:
            key: Column name with optional ``__op`` suffix
            value: Criteria value
        """
        field_name = key
        operator = FilterOperator.EQ
        if "__" in key:
            head, _, suffix = key.rpartition("__")
            if head and suffix.lower() in _OPERATOR_NAMES:
                field_name = head
                operator = FilterOperator(suffix.lower())

        if operator == FilterOperator.EQ and isinstance(value, list | tuple | set | frozenset):
            operator = FilterOperator.IN
        elif operator == FilterOperator.ISNULL:
            value = _as_flag(value)

        return cls(field=field_name, operator=operator, value=value)

    def to_sql(
        self, placeholder: str = "?", table_alias: str | None = None
    ) -> tuple[str, list[Any]]:
        """
        Render this condition as an SQL fragment.

        Args:
            placeholder: Parameter placeholder of the target driver
            table_alias: Optional table alias prefix

        Returns:
            (sql fragment, parameters)
        """
        column = quote_identifier(self.field)
        if table_alias:
            column = f"{table_alias}.{column}"

        op = self.operator
        if op in _COMPARISON_SQL:
            if self.value is None and op in (FilterOperator.EQ, FilterOperator.NE):
                return f"{column} IS {'NOT ' if op == FilterOperator.NE else ''}NULL", []
            return f"{column} {_COMPARISON_SQL[op]} {placeholder}", [self.value]

        if op == FilterOperator.CONTAINS:
            return f"{column} LIKE {placeholder}", [f"%{self.value}%"]

        if op == FilterOperator.ICONTAINS:
            return f"LOWER({column}) LIKE {placeholder}", [f"%{str(self.value).lower()}%"]

        if op == FilterOperator.STARTSWITH:
            return f"{column} LIKE {placeholder}", [f"{self.value}%"]

        if op == FilterOperator.ENDSWITH:
            return f"{column} LIKE {placeholder}", [f"%{self.value}"]

        if op in (FilterOperator.IN, FilterOperator.NOT_IN):
            values = _as_list(self.value)
            if not values:
                return ("1 = 0" if op == FilterOperator.IN else "1 = 1"), []
            placeholders = ", ".join([placeholder] * len(values))
            keyword = "IN" if op == FilterOperator.IN else "NOT IN"
            return f"{column} {keyword} ({placeholders})", values

        if op == FilterOperator.ISNULL:
            return f"{column} IS {'' if self.value else 'NOT '}NULL", []

        raise ValueError(f"Unsupported operator: {op}")

    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate this condition against an in-memory row."""
        actual = row.get(self.field)
        op = self.operator
        expected = self.value

        if op == FilterOperator.EQ:
            return _loose_equal(actual, expected)
        if op == FilterOperator.NE:
            return not _loose_equal(actual, expected)
        if op == FilterOperator.ISNULL:
            return (actual is None) == bool(expected)
        if op in (FilterOperator.IN, FilterOperator.NOT_IN):
            found = any(_loose_equal(actual, v) for v in _as_list(expected))
            return found if op == FilterOperator.IN else not found

        if actual is None:
            return False

        if op in (FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE):
            try:
                result = _compare(actual, expected)
            except TypeError:
                return False
            return {
                FilterOperator.GT: result > 0,
                FilterOperator.GTE: result >= 0,
                FilterOperator.LT: result < 0,
                FilterOperator.LTE: result <= 0,
            }[op]

        text = str(actual)
        needle = str(expected)
        if op == FilterOperator.CONTAINS:
            return needle in text
        if op == FilterOperator.ICONTAINS:
            return needle.lower() in text.lower()
        if op == FilterOperator.STARTSWITH:
            return text.startswith(needle)
        if op == FilterOperator.ENDSWITH:
            return text.endswith(needle)
        return False


# =============================================================================
# Sorting
# =============================================================================


@dataclass
class SortField:
    """One ordering term; a leading ``-`` means descending."""

    field: str
    descending: bool = False

    @classmethod
    def parse(cls, spec: str) -> SortField:
        spec = spec.strip()
        if spec.startswith("-"):
            return cls(field=spec[1:], descending=True)
        parts = spec.split()
        if len(parts) == 2 and parts[1].lower() in ("asc", "desc"):
            return cls(field=parts[0], descending=parts[1].lower() == "desc")
        return cls(field=spec)

    def to_sql(self, table_alias: str | None = None) -> str:
        column = quote_identifier(self.field)
        if table_alias:
            column = f"{table_alias}.{column}"
        return f"{column} {'DESC' if self.descending else 'ASC'}"


def parse_sort_string(sort: str | None) -> list[str]:
    """Split a comma separated ordering string (``"Name,-ID"``)."""
    if not sort:
        return []
    return [part.strip() for part in sort.split(",") if part.strip()]


# =============================================================================
# Query Builder
# =============================================================================


@dataclass
class QueryBuilder:
    """
    A search statement against one table.

    Holds the filter conditions (joined with AND) and the ordering; renders
    SQL on demand and can evaluate itself against in-memory rows.
    """

    table_name: str
    conditions: list[FilterCondition] = field(default_factory=list)
    sorts: list[SortField] = field(default_factory=list)
    limit: int | None = None

    def add_filter(self, key: str, value: Any) -> QueryBuilder:
        self.conditions.append(FilterCondition.parse(key, value))
        return self

    def add_filters(self, criteria: Mapping[str, Any]) -> QueryBuilder:
        for key, value in criteria.items():
            self.add_filter(key, value)
        return self

    def add_sort(self, spec: str) -> QueryBuilder:
        self.sorts.append(SortField.parse(spec))
        return self

    def add_sorts(self, order: str | Sequence[str] | None) -> QueryBuilder:
        if order is None:
            return self
        specs = parse_sort_string(order) if isinstance(order, str) else list(order)
        for spec in specs:
            self.add_sort(spec)
        return self

    def rename_fields(self, resolve: Callable[[str], str | None]) -> QueryBuilder:
        """
        Replace field names with their canonical form.

        Conditions and sorts on names ``resolve`` does not know are dropped,
        so stray request keys (such as an ajax ``_`` cache-buster) never reach
        the storage as columns.
        """
        kept_conditions: list[FilterCondition] = []
        for condition in self.conditions:
            canonical = resolve(condition.field)
            if canonical:
                condition.field = canonical
                kept_conditions.append(condition)
            else:
                logger.debug("Ignoring criterion on unknown column %s", condition.field)
        self.conditions = kept_conditions

        kept_sorts: list[SortField] = []
        for sort in self.sorts:
            canonical = resolve(sort.field)
            if canonical:
                sort.field = canonical
                kept_sorts.append(sort)
            else:
                logger.debug("Ignoring sort on unknown column %s", sort.field)
        self.sorts = kept_sorts
        return self

    def build_where_clause(self, placeholder: str = "?") -> tuple[str, list[Any]]:
        if not self.conditions:
            return "", []
        fragments: list[str] = []
        params: list[Any] = []
        for condition in self.conditions:
            sql, cond_params = condition.to_sql(placeholder)
            fragments.append(sql)
            params.extend(cond_params)
        return "WHERE " + " AND ".join(fragments), params

    def build_order_clause(self) -> str:
        if not self.sorts:
            return ""
        return "ORDER BY " + ", ".join(sort.to_sql() for sort in self.sorts)

    def build_select(self, placeholder: str = "?") -> tuple[str, list[Any]]:
        """Render ``SELECT * FROM <table> [WHERE ...] [ORDER BY ...] [LIMIT ...]``."""
        where, params = self.build_where_clause(placeholder)
        parts = [f"SELECT * FROM {quote_identifier(self.table_name)}"]
        if where:
            parts.append(where)
        order = self.build_order_clause()
        if order:
            parts.append(order)
        if self.limit is not None:
            parts.append(f"LIMIT {placeholder}")
            params.append(self.limit)
        return " ".join(parts), params

    def build_count(self, placeholder: str = "?") -> tuple[str, list[Any]]:
        where, params = self.build_where_clause(placeholder)
        sql = f"SELECT COUNT(*) FROM {quote_identifier(self.table_name)}"
        return (f"{sql} {where}" if where else sql), params

    def matches(self, row: Mapping[str, Any]) -> bool:
        return all(condition.matches(row) for condition in self.conditions)

    def apply(self, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Filter, order and limit in-memory rows."""
        result = [dict(row) for row in rows if self.matches(row)]
        # Stable sorts applied from the last key to the first.
        for sort in reversed(self.sorts):
            result.sort(
                key=cmp_to_key(lambda a, b, f=sort.field: _compare_nullable(a.get(f), b.get(f))),
                reverse=sort.descending,
            )
        if self.limit is not None:
            result = result[: self.limit]
        return result


def _compare_nullable(left: Any, right: Any) -> int:
    if left is None or right is None:
        return (left is not None) - (right is not None)
    return _compare(left, right)


def make_search_query(
    table: str,
    criteria: Mapping[str, Any] | None = None,
    order: str | Sequence[str] | None = None,
) -> QueryBuilder:
    """
    Build the search statement for ``table``.

    Empty criteria values (``""``, ``"0"``, ``0``, ``None``, ``False``, empty
    collections) are dropped before building, except for ``__isnull`` keys
    where ``False`` is meaningful.

    Args:
        table: Table to search
        criteria: Column → value mapping, keys may carry ``__op`` suffixes
        order: Column name, comma separated string, or list; ``-`` for descending

    Returns:
        QueryBuilder for the search
    """
    builder = QueryBuilder(table_name=table)
    for key, value in (criteria or {}).items():
        if key.lower().endswith("__isnull"):
            if value is not None:
                builder.add_filter(key, value)
            continue
        if is_empty_criterion(value):
            continue
        builder.add_filter(key, value)
    builder.add_sorts(order)
    return builder
