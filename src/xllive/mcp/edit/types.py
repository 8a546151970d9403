from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field

EditOpType = Literal[
    "update_cell",
    "write_range",
    "add_row",
    "set_formula",
    "format_cell",
    "set_column_width",
    "set_row_height",
    "merge_cells",
    "unmerge_cells",
    "insert_rows",
    "insert_columns",
    "delete_rows",
    "delete_columns",
    "create_sheet",
    "delete_sheet",
    "rename_sheet",
    "write_workbook",
    "copy_range",
    "duplicate_sheet",
    "create_table",
]
ExecutionMethod = Literal["live", "file"]
# NaN and infinity have no cell representation.
FiniteFloat = Annotated[float, Field(allow_inf_nan=False)]
CellScalar = str | int | FiniteFloat | bool | None

HorizontalAlignType = Literal["left", "center", "right"]
VerticalAlignType = Literal["top", "center", "middle", "bottom"]
BorderStyleType = Literal[
    "thin",
    "medium",
    "thick",
    "dashed",
    "dotted",
    "double",
    "hair",
]
FillPatternType = Literal["solid", "darkGray", "mediumGray", "lightGray", "gray125"]

# Operations that the live channel has no translator for.
FILE_ONLY_OPS: frozenset[str] = frozenset(
    {"write_workbook", "copy_range", "duplicate_sheet", "create_table"}
)
