"""
adminkit specification types.

This module exports the static schema types shared by the runtime.
"""

from adminkit.specs.column import (
    ColumnDescriptor,
    ColumnType,
    parse_column_type,
    parse_type_options,
)

__all__ = [
    "ColumnDescriptor",
    "ColumnType",
    "parse_column_type",
    "parse_type_options",
]
