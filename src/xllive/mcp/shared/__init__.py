from __future__ import annotations

from .a1 import (
    CellAddress,
    RangeAddress,
    column_index_to_label,
    column_label_to_index,
    parse_cell_address,
    parse_range,
    parse_reference,
    resolve_column,
)
from .backup import backup_path_for, create_backup

__all__ = [
    "CellAddress",
    "RangeAddress",
    "backup_path_for",
    "column_index_to_label",
    "column_label_to_index",
    "create_backup",
    "parse_cell_address",
    "parse_range",
    "parse_reference",
    "resolve_column",
]
