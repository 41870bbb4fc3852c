"""
Value coercion between caller input, storage and display.

``format_input`` normalises untrusted values before they are stored on a
record; ``format_output`` turns stored values into their display form on
every read. Both are keyed by the column's declared type.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from typing import Any

from adminkit.specs.column import ColumnType, parse_column_type

ValueFilter = Callable[[str, Any], Any]

_LEADING_NUMBER_RE = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_CURRENCY_PUNCTUATION_RE = re.compile(r"[$,]")
_NON_DIGIT_RE = re.compile(r"\D")
_PHONE_GROUP_RE = re.compile(r"(\d\d\d)(\d\d\d)")

INTEGER_TYPES = frozenset(
    {"int", "integer", "tinyint", "smallint", "mediumint", "bigint", "serial", "bigserial"}
)
FLOAT_TYPES = frozenset({"float", "double", "decimal", "numeric", "real"})
STRING_TYPES = frozenset(
    {
        "char",
        "varchar",
        "text",
        "tinytext",
        "mediumtext",
        "longtext",
        "enum",
        "set",
        "date",
        "datetime",
        "timestamp",
        "time",
        "character",
    }
)


# =============================================================================
# Scalar helpers
# =============================================================================


def is_truthy(value: Any) -> bool:
    """Truthiness of a submitted value; ``"0"`` counts as false like an empty string."""
    if isinstance(value, str):
        return value not in ("", "0")
    return bool(value)


def to_float(value: Any) -> float:
    """Cast to float using the leading numeric part of strings (``"12abc"`` → 12.0)."""
    if value is None or isinstance(value, bool):
        return float(bool(value))
    if isinstance(value, int | float):
        return float(value)
    match = _LEADING_NUMBER_RE.match(str(value))
    return float(match.group(0)) if match else 0.0


def to_int(value: Any) -> int:
    """Cast to int, truncating floats and numeric strings; unparsable or non-finite → 0."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = to_float(value)
    return int(number) if math.isfinite(number) else 0


def is_numeric(value: Any) -> bool:
    """Whether the value is a number or a string holding one."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


# =============================================================================
# Storage value filter
# =============================================================================


def filter_value(declared_type: str, value: Any) -> Any:
    """
    Generic storage-side value filter keyed by declared type.

    Args:
        declared_type: Declared column type (e.g. ``int(10)``, ``varchar(40)``)
        value: Raw value

    Returns:
        The value cast to the storage representation of the type; unknown
        types and ``None`` pass through unchanged.
    """
    if value is None:
        return None

    base, _ = parse_column_type(declared_type)
    if base in INTEGER_TYPES:
        return to_int(value)
    if base in FLOAT_TYPES:
        return to_float(value)
    if base in STRING_TYPES:
        if isinstance(value, list | tuple | set | frozenset):
            return ",".join(str(v) for v in value)
        return str(value)
    return value


# =============================================================================
# Input / Output formatting
# =============================================================================


def format_input(declared_type: str, value: Any, value_filter: ValueFilter = filter_value) -> Any:
    """
    Coerce an untrusted value for storage.

    | type    | stored                                  |
    |---------|-----------------------------------------|
    | boolean | 0 or 1                                  |
    | dollar  | float, with ``$`` and ``,`` removed     |
    | phone   | digits only, as a string                |
    | other   | ``value_filter(declared_type, value)``  |
    """
    base, _ = parse_column_type(declared_type)

    if base == ColumnType.BOOLEAN:
        return int(is_truthy(value))

    if base == ColumnType.DOLLAR:
        return to_float(_CURRENCY_PUNCTUATION_RE.sub("", "" if value is None else str(value)))

    if base == ColumnType.PHONE:
        return _NON_DIGIT_RE.sub("", "" if value is None else str(value))

    return value_filter(declared_type.lower(), value)


def format_output(declared_type: str, value: Any) -> Any:
    """
    Format a stored value for display.

    | type    | formatted                                    |
    |---------|----------------------------------------------|
    | set     | list of lower-cased comma separated tokens   |
    | boolean | bool                                         |
    | dollar  | ``"$1234.50"``                               |
    | phone   | ``"555-123-4567"``                           |
    | other   | unchanged                                    |
    """
    base, _ = parse_column_type(declared_type)

    if base == ColumnType.SET:
        if isinstance(value, list | tuple):
            return [str(v).lower() for v in value]
        return str(value or "").lower().split(",") if value else []

    if base == ColumnType.BOOLEAN:
        return is_truthy(value)

    if base == ColumnType.DOLLAR:
        return f"${to_float(value):.2f}"

    if base == ColumnType.PHONE:
        # Only the first six digits are grouped; longer numbers keep their tail as-is.
        return _PHONE_GROUP_RE.sub(r"\1-\2-", "" if value is None else str(value), count=1)

    return value


def format_time_interval(minutes: int) -> str:
    """Describe a number of minutes, e.g. ``"2 hours and 5 minutes"``."""
    output = f"{minutes} minute" + ("s" if minutes > 1 else "")

    if minutes > 59:
        hours = minutes // 60
        output = f"{hours} hour" + ("s" if hours > 1 else "")
        remainder = minutes % 60
        if remainder > 0:
            output += f" and {remainder} minute" + ("s" if remainder > 1 else "")

    return output
