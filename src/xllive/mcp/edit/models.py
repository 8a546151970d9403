from __future__ import annotations

from pathlib import Path
import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ..shared.a1 import (
    parse_reference,
    resolve_column,
    validate_cell_address,
    validate_range,
)
from .escaping import normalize_formula
from .types import (
    BorderStyleType,
    CellScalar,
    EditOpType,
    ExecutionMethod,
    FillPatternType,
    HorizontalAlignType,
    VerticalAlignType,
)

_HEX_COLOR_PATTERN = re.compile(r"^#?(?:[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")
_MAX_SHEET_NAME_LENGTH = 31
_MAX_COLUMN_WIDTH = 255.0
_MAX_ROW_HEIGHT = 409.0
_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_\\][A-Za-z0-9_.\\]*$")
_CELL_LIKE_NAME = re.compile(r"^(?:[A-Za-z]{1,3}[0-9]+|[RrCc]|[Rr][0-9]*[Cc][0-9]*)$")
_MAX_TABLE_NAME_LENGTH = 255
_MAX_COLUMNS = 16_384


def _normalize_hex_input(value: str, *, field_name: str) -> str:
    """Normalize HEX input into #RRGGBB or #AARRGGBB form."""
    text = value.strip().upper()
    if not _HEX_COLOR_PATTERN.match(text):
        raise ValueError(
            f"Invalid {field_name} format. Use 'RRGGBB', 'AARRGGBB', "
            "'#RRGGBB', or '#AARRGGBB'."
        )
    return text if text.startswith("#") else f"#{text}"


def _validate_new_sheet_name(value: str) -> str:
    """Apply Excel's sheet naming rules to a name that is about to be created."""
    if not value.strip():
        raise ValueError("Sheet name must not be blank.")
    if len(value) > _MAX_SHEET_NAME_LENGTH:
        raise ValueError(
            f"Sheet name must be at most {_MAX_SHEET_NAME_LENGTH} characters: {value!r}"
        )
    if _INVALID_SHEET_CHARS.search(value):
        raise ValueError(
            f"Sheet name must not contain any of []:*?/\\ characters: {value!r}"
        )
    if value.startswith("'") or value.endswith("'"):
        raise ValueError(f"Sheet name must not start or end with an apostrophe: {value!r}")
    return value


def _validate_table_name(value: str) -> str:
    """Apply Excel's naming rules for tables (ListObjects)."""
    if len(value) > _MAX_TABLE_NAME_LENGTH:
        raise ValueError(
            f"Table name must be at most {_MAX_TABLE_NAME_LENGTH} characters: {value!r}"
        )
    if not _TABLE_NAME_PATTERN.match(value):
        raise ValueError(
            "Table name must start with a letter, underscore or backslash and contain "
            f"only letters, digits, underscores and periods: {value!r}"
        )
    if _CELL_LIKE_NAME.match(value):
        raise ValueError(f"Table name must not look like a cell reference: {value!r}")
    return value


class RetryPolicy(BaseModel):
    """Retry settings for one class of live-channel commands."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=0.5, ge=0.0, description="Seconds; scaled by attempt.")
    timeout: float = Field(default=10.0, gt=0.0, description="Per-attempt timeout in seconds.")


class LiveSettings(BaseModel):
    """Settings for the AppleScript live channel."""

    enabled: bool = True
    application: str = Field(default="Microsoft Excel", min_length=1)
    process_name: str = Field(default="Microsoft Excel", min_length=1)
    osascript: str = Field(default="osascript", min_length=1)
    command_retry: RetryPolicy = Field(default_factory=RetryPolicy)
    probe_retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(max_attempts=2, base_delay=0.5, timeout=5.0)
    )
    use_shell: bool = Field(
        default=False,
        description="Launch osascript through /bin/sh instead of an argument vector.",
    )


class EditConfig(BaseModel):
    """Configuration passed explicitly into the execution router."""

    live: LiveSettings = Field(default_factory=LiveSettings)
    create_backup: bool = False
    fallback_to_file: bool = True


class FontFormat(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    size: float | None = Field(default=None, gt=0, le=409)
    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None
    color: str | None = None

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_hex_input(value, field_name="font color")


class FillFormat(BaseModel):
    pattern: FillPatternType = "solid"
    fg_color: str | None = None
    bg_color: str | None = None

    @field_validator("fg_color", "bg_color")
    @classmethod
    def _validate_color(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_hex_input(value, field_name="fill color")


class AlignmentFormat(BaseModel):
    horizontal: HorizontalAlignType | None = None
    vertical: VerticalAlignType | None = None
    wrap_text: bool | None = None


class BorderSide(BaseModel):
    style: BorderStyleType = "thin"
    color: str | None = None

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_hex_input(value, field_name="border color")


class BorderFormat(BaseModel):
    top: BorderSide | None = None
    left: BorderSide | None = None
    bottom: BorderSide | None = None
    right: BorderSide | None = None


class CellFormat(BaseModel):
    """Formatting to apply to a single cell."""

    font: FontFormat | None = None
    fill: FillFormat | None = None
    alignment: AlignmentFormat | None = None
    border: BorderFormat | None = None
    number_format: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _require_any(self) -> CellFormat:
        if not self.applied_sections():
            raise ValueError(
                "format requires at least one of font, fill, alignment, border, number_format."
            )
        return self

    def applied_sections(self) -> list[str]:
        """Return the names of the format sections that are set."""
        return [
            name
            for name in ("font", "fill", "alignment", "border", "number_format")
            if getattr(self, name) is not None
        ]

    def live_unsupported(self) -> list[str]:
        """Return properties the live channel cannot express."""
        unsupported: list[str] = []
        if self.border is not None:
            unsupported.append("border")
        if self.font is not None and self.font.underline is not None:
            unsupported.append("font.underline")
        if self.fill is not None and self.fill.bg_color is not None:
            unsupported.append("fill.bg_color")
        if self.fill is not None and self.fill.pattern != "solid":
            unsupported.append("fill.pattern")
        return unsupported


class _SheetOp(BaseModel):
    sheet: str = Field(..., min_length=1, description="Target worksheet name.")


class UpdateCellOp(_SheetOp):
    op: Literal["update_cell"] = "update_cell"
    cell: str
    value: CellScalar = None

    @field_validator("cell")
    @classmethod
    def _validate_cell(cls, value: str) -> str:
        return validate_cell_address(value)


class WriteRangeOp(_SheetOp):
    op: Literal["write_range"] = "write_range"
    range: str = Field(..., description="Top-left cell (A1) or range (A1:D10).")
    data: list[list[CellScalar]] = Field(..., min_length=1)

    @field_validator("range")
    @classmethod
    def _validate_range(cls, value: str) -> str:
        parse_reference(value)
        return value


class AddRowOp(_SheetOp):
    op: Literal["add_row"] = "add_row"
    values: list[CellScalar] = Field(..., min_length=1, max_length=_MAX_COLUMNS)


class SetFormulaOp(_SheetOp):
    op: Literal["set_formula"] = "set_formula"
    cell: str
    formula: str = Field(..., min_length=1)

    @field_validator("cell")
    @classmethod
    def _validate_cell(cls, value: str) -> str:
        return validate_cell_address(value)

    @field_validator("formula")
    @classmethod
    def _validate_formula(cls, value: str) -> str:
        normalize_formula(value)
        return value


class FormatCellOp(_SheetOp):
    op: Literal["format_cell"] = "format_cell"
    cell: str
    format: CellFormat  # noqa: A003

    @field_validator("cell")
    @classmethod
    def _validate_cell(cls, value: str) -> str:
        return validate_cell_address(value)


class SetColumnWidthOp(_SheetOp):
    op: Literal["set_column_width"] = "set_column_width"
    column: str | int
    width: float = Field(..., gt=0, le=_MAX_COLUMN_WIDTH)

    @field_validator("column")
    @classmethod
    def _validate_column(cls, value: str | int) -> str | int:
        resolve_column(value)
        return value


class SetRowHeightOp(_SheetOp):
    op: Literal["set_row_height"] = "set_row_height"
    row: int = Field(..., ge=1, le=1_048_576)
    height: float = Field(..., gt=0, le=_MAX_ROW_HEIGHT)


class MergeCellsOp(_SheetOp):
    op: Literal["merge_cells"] = "merge_cells"
    range: str

    @field_validator("range")
    @classmethod
    def _validate_range(cls, value: str) -> str:
        return validate_range(value)


class UnmergeCellsOp(_SheetOp):
    op: Literal["unmerge_cells"] = "unmerge_cells"
    range: str

    @field_validator("range")
    @classmethod
    def _validate_range(cls, value: str) -> str:
        return validate_range(value)


class InsertRowsOp(_SheetOp):
    op: Literal["insert_rows"] = "insert_rows"
    start_row: int = Field(..., ge=1, le=1_048_576)
    count: int = Field(default=1, ge=1, le=10_000)


class DeleteRowsOp(_SheetOp):
    op: Literal["delete_rows"] = "delete_rows"
    start_row: int = Field(..., ge=1, le=1_048_576)
    count: int = Field(default=1, ge=1, le=10_000)


class InsertColumnsOp(_SheetOp):
    op: Literal["insert_columns"] = "insert_columns"
    start_column: str | int
    count: int = Field(default=1, ge=1, le=16_384)

    @field_validator("start_column")
    @classmethod
    def _validate_column(cls, value: str | int) -> str | int:
        resolve_column(value)
        return value


class DeleteColumnsOp(_SheetOp):
    op: Literal["delete_columns"] = "delete_columns"
    start_column: str | int
    count: int = Field(default=1, ge=1, le=16_384)

    @field_validator("start_column")
    @classmethod
    def _validate_column(cls, value: str | int) -> str | int:
        resolve_column(value)
        return value


class CreateSheetOp(_SheetOp):
    op: Literal["create_sheet"] = "create_sheet"

    @field_validator("sheet")
    @classmethod
    def _validate_sheet(cls, value: str) -> str:
        return _validate_new_sheet_name(value)


class DeleteSheetOp(_SheetOp):
    op: Literal["delete_sheet"] = "delete_sheet"


class RenameSheetOp(_SheetOp):
    op: Literal["rename_sheet"] = "rename_sheet"
    new_name: str

    @field_validator("new_name")
    @classmethod
    def _validate_new_name(cls, value: str) -> str:
        return _validate_new_sheet_name(value)


class WriteWorkbookOp(_SheetOp):
    op: Literal["write_workbook"] = "write_workbook"
    data: list[list[CellScalar]] = Field(default_factory=list)

    @field_validator("sheet")
    @classmethod
    def _validate_sheet(cls, value: str) -> str:
        return _validate_new_sheet_name(value)


class CopyRangeOp(_SheetOp):
    op: Literal["copy_range"] = "copy_range"
    range: str
    target_sheet: str = Field(..., min_length=1)
    target_cell: str

    @field_validator("range")
    @classmethod
    def _validate_range(cls, value: str) -> str:
        return validate_range(value)

    @field_validator("target_cell")
    @classmethod
    def _validate_target(cls, value: str) -> str:
        return validate_cell_address(value)


class DuplicateSheetOp(_SheetOp):
    op: Literal["duplicate_sheet"] = "duplicate_sheet"
    new_name: str

    @field_validator("new_name")
    @classmethod
    def _validate_new_name(cls, value: str) -> str:
        return _validate_new_sheet_name(value)


class CreateTableOp(_SheetOp):
    op: Literal["create_table"] = "create_table"
    range: str = Field(..., description="Header row plus data, e.g. A1:D20.")
    table_name: str = Field(..., min_length=1)
    style: str = Field(default="TableStyleMedium2", min_length=1)
    show_first_column: bool = False
    show_last_column: bool = False
    show_row_stripes: bool = True
    show_column_stripes: bool = False

    @field_validator("range")
    @classmethod
    def _validate_range(cls, value: str) -> str:
        return validate_range(value)

    @field_validator("table_name")
    @classmethod
    def _validate_table_name(cls, value: str) -> str:
        return _validate_table_name(value)


EditOp = Annotated[
    UpdateCellOp
    | WriteRangeOp
    | AddRowOp
    | SetFormulaOp
    | FormatCellOp
    | SetColumnWidthOp
    | SetRowHeightOp
    | MergeCellsOp
    | UnmergeCellsOp
    | InsertRowsOp
    | InsertColumnsOp
    | DeleteRowsOp
    | DeleteColumnsOp
    | CreateSheetOp
    | DeleteSheetOp
    | RenameSheetOp
    | WriteWorkbookOp
    | CopyRangeOp
    | DuplicateSheetOp
    | CreateTableOp,
    Field(discriminator="op"),
]


class EditRequest(BaseModel):
    """One validated edit against one workbook."""

    file_path: Path
    op: EditOp
    create_backup: bool | None = Field(
        default=None, description="Copy the workbook to <name>.backup before writing."
    )


class EditOutcome(BaseModel):
    """Engine-level outcome before the router records the channel used."""

    message: str
    target: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class OperationResult(BaseModel):
    """Outcome of one edit, including which channel carried it out."""

    success: bool = True
    op: EditOpType
    method: ExecutionMethod
    message: str
    note: str | None = None
    file_path: str
    sheet: str | None = None
    target: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


__all__ = [
    "AddRowOp",
    "AlignmentFormat",
    "BorderFormat",
    "BorderSide",
    "CellFormat",
    "CopyRangeOp",
    "CreateSheetOp",
    "CreateTableOp",
    "DeleteColumnsOp",
    "DeleteRowsOp",
    "DeleteSheetOp",
    "DuplicateSheetOp",
    "EditConfig",
    "EditOp",
    "EditOutcome",
    "EditRequest",
    "FillFormat",
    "FontFormat",
    "FormatCellOp",
    "InsertColumnsOp",
    "InsertRowsOp",
    "LiveSettings",
    "MergeCellsOp",
    "OperationResult",
    "RenameSheetOp",
    "RetryPolicy",
    "SetColumnWidthOp",
    "SetFormulaOp",
    "SetRowHeightOp",
    "UnmergeCellsOp",
    "UpdateCellOp",
    "WriteRangeOp",
    "WriteWorkbookOp",
]
