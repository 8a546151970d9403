from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import Literal, TypeAlias, cast

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet
from pydantic import BaseModel, Field, field_validator, model_validator

from .edit import runtime
from .edit.engine.openpyxl_engine import load_document
from .errors import SheetNotFoundError
from .io import PathPolicy
from .shared.a1 import (
    CellAddress,
    RangeAddress,
    column_index_to_label,
    parse_cell_address,
    parse_range,
    resolve_column,
)

JsonScalar: TypeAlias = str | int | float | bool | None


class SheetSummary(BaseModel):
    """Shape of one worksheet."""

    name: str
    max_row: int
    max_column: int
    dimensions: str


class ReadWorkbookRequest(BaseModel):
    """Input model for workbook overview."""

    file_path: Path


class ReadWorkbookResult(BaseModel):
    """Output model for workbook overview."""

    file_path: str
    active_sheet: str | None = None
    sheets: list[SheetSummary] = Field(default_factory=list)


class ReadSheetRequest(BaseModel):
    """Input model for reading sheet values."""

    file_path: Path
    sheet: str = Field(..., min_length=1)
    range: str | None = None
    max_rows: int = Field(default=1_000, ge=1, le=100_000)


class ReadSheetResult(BaseModel):
    """Output model for reading sheet values."""

    sheet: str
    range: str | None = None
    rows: list[list[JsonScalar]] = Field(default_factory=list)
    truncated: bool = False
    warnings: list[str] = Field(default_factory=list)


class GetCellRequest(BaseModel):
    """Input model for single cell reading."""

    file_path: Path
    sheet: str = Field(..., min_length=1)
    cell: str


class CellReadItem(BaseModel):
    """Cell read result item."""

    sheet: str
    cell: str
    value: JsonScalar = None
    formula: str | None = None
    number_format: str | None = None


class GetMergedCellsRequest(BaseModel):
    """Input model for merged range listing."""

    file_path: Path
    sheet: str = Field(..., min_length=1)


class MergedCellsResult(BaseModel):
    """Output model for merged range listing."""

    sheet: str
    ranges: list[str] = Field(default_factory=list)


class SearchValuesRequest(BaseModel):
    """Input model for substring search over cell values."""

    file_path: Path
    sheet: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)
    range: str | None = None
    case_sensitive: bool = False
    max_results: int = Field(default=1_000, ge=1, le=100_000)


class SearchMatch(BaseModel):
    """One cell whose displayed text contains the query."""

    cell: str
    row: int
    column: int
    value: JsonScalar = None


class SearchValuesResult(BaseModel):
    """Output model for substring search."""

    sheet: str
    query: str
    range: str | None = None
    matches: list[SearchMatch] = Field(default_factory=list)
    truncated: bool = False


FilterCondition = Literal["equals", "contains", "greater_than", "less_than", "not_empty"]


class FilterRowsRequest(BaseModel):
    """Input model for selecting rows by one column's value."""

    file_path: Path
    sheet: str = Field(..., min_length=1)
    column: str | int
    condition: FilterCondition
    value: str | int | float | None = None
    max_rows: int = Field(default=1_000, ge=1, le=100_000)

    @field_validator("column")
    @classmethod
    def _validate_column(cls, value: str | int) -> str | int:
        resolve_column(value)
        return value

    @model_validator(mode="after")
    def _validate_value(self) -> FilterRowsRequest:
        if self.condition == "not_empty":
            return self
        if self.value is None:
            raise ValueError(f"condition {self.condition!r} requires a value.")
        if self.condition in ("greater_than", "less_than"):
            if _as_number(self.value) is None:
                raise ValueError(
                    f"condition {self.condition!r} requires a numeric value: {self.value!r}"
                )
        return self


class FilterRowsResult(BaseModel):
    """Output model for row filtering."""

    sheet: str
    column: str
    condition: FilterCondition
    value: str | int | float | None = None
    row_numbers: list[int] = Field(default_factory=list)
    rows: list[list[JsonScalar]] = Field(default_factory=list)
    truncated: bool = False


class GetDataValidationRequest(BaseModel):
    """Input model for reading the data validation rule on one cell."""

    file_path: Path
    sheet: str = Field(..., min_length=1)
    cell: str


class DataValidationInfo(BaseModel):
    """Data validation rule covering one cell, if any."""

    sheet: str
    cell: str
    has_validation: bool = False
    type: str | None = None  # noqa: A003
    operator: str | None = None
    formula1: str | None = None
    formula2: str | None = None
    allow_blank: bool | None = None
    show_error_message: bool | None = None
    error_title: str | None = None
    error: str | None = None
    prompt_title: str | None = None
    prompt: str | None = None
    applies_to: str | None = None


def read_workbook(
    request: ReadWorkbookRequest, *, policy: PathPolicy | None = None
) -> ReadWorkbookResult:
    """List the worksheets of a workbook with their used extents."""
    resolved = runtime.resolve_input_path(request.file_path, policy=policy)
    workbook = load_document(resolved)
    try:
        sheets = [
            SheetSummary(
                name=sheet.title,
                max_row=sheet.max_row,
                max_column=sheet.max_column,
                dimensions=sheet.dimensions,
            )
            for sheet in cast(list[Worksheet], workbook.worksheets)
        ]
        active = workbook.active
        active_title = active.title if active is not None else None
    finally:
        workbook.close()
    return ReadWorkbookResult(
        file_path=str(resolved), active_sheet=active_title, sheets=sheets
    )


def read_sheet(
    request: ReadSheetRequest, *, policy: PathPolicy | None = None
) -> ReadSheetResult:
    """Read cell values of a sheet, or of one range on it.

    Args:
        request: Sheet read request.
        policy: Optional path policy for access control.

    Returns:
        Row-major values; formulas are returned as their ``=...`` text.
    """
    resolved = runtime.resolve_input_path(request.file_path, policy=policy)
    bounds = parse_range(request.range).normalized() if request.range else None
    workbook = load_document(resolved)
    try:
        sheet = _sheet(workbook, request.sheet)
        if bounds is None:
            if sheet.max_row == 1 and sheet.max_column == 1 and sheet["A1"].value is None:
                return ReadSheetResult(sheet=request.sheet, range=None)
            bounds = parse_range(
                f"A1:{sheet.cell(row=sheet.max_row, column=sheet.max_column).coordinate}"
            )
        rows, truncated = _read_values(sheet, bounds, request.max_rows)
    finally:
        workbook.close()
    warnings: list[str] = []
    if truncated:
        warnings.append(
            f"Output truncated to {request.max_rows} rows; pass a range to read the rest."
        )
    return ReadSheetResult(
        sheet=request.sheet,
        range=bounds.label,
        rows=rows,
        truncated=truncated,
        warnings=warnings,
    )


def get_cell(request: GetCellRequest, *, policy: PathPolicy | None = None) -> CellReadItem:
    """Read one cell's value, formula and number format."""
    resolved = runtime.resolve_input_path(request.file_path, policy=policy)
    address = parse_cell_address(request.cell)
    workbook = load_document(resolved)
    try:
        cell = _sheet(workbook, request.sheet).cell(row=address.row, column=address.column)
        raw = cell.value
        number_format = cell.number_format
    finally:
        workbook.close()
    if isinstance(raw, str) and raw.startswith("="):
        return CellReadItem(
            sheet=request.sheet,
            cell=address.label,
            value=_cached_value(resolved, request.sheet, address.row, address.column),
            formula=raw,
            number_format=number_format,
        )
    return CellReadItem(
        sheet=request.sheet,
        cell=address.label,
        value=_normalize_scalar(raw),
        number_format=number_format,
    )


def get_merged_cells(
    request: GetMergedCellsRequest, *, policy: PathPolicy | None = None
) -> MergedCellsResult:
    """List merged ranges on a sheet."""
    resolved = runtime.resolve_input_path(request.file_path, policy=policy)
    workbook = load_document(resolved)
    try:
        sheet = _sheet(workbook, request.sheet)
        ranges = sorted(str(item) for item in sheet.merged_cells.ranges)
    finally:
        workbook.close()
    return MergedCellsResult(sheet=request.sheet, ranges=ranges)


def search_values(
    request: SearchValuesRequest, *, policy: PathPolicy | None = None
) -> SearchValuesResult:
    """Find cells whose text contains ``request.query``.

    Numbers and dates are matched on their displayed text (``5.0`` as ``5``,
    dates in ISO form). Formula cells are matched on their formula text.
    """
    resolved = runtime.resolve_input_path(request.file_path, policy=policy)
    bounds = parse_range(request.range).normalized() if request.range else None
    needle = request.query if request.case_sensitive else request.query.casefold()
    matches: list[SearchMatch] = []
    truncated = False
    workbook = load_document(resolved)
    try:
        sheet = _sheet(workbook, request.sheet)
        if bounds is None:
            bounds = _used_bounds(sheet)
        for row in sheet.iter_rows(
            min_row=bounds.start.row,
            max_row=bounds.end.row,
            min_col=bounds.start.column,
            max_col=bounds.end.column,
        ):
            for cell in row:
                text = _cell_text(cell.value)
                haystack = text if request.case_sensitive else text.casefold()
                if not text or needle not in haystack:
                    continue
                if len(matches) == request.max_results:
                    truncated = True
                    break
                matches.append(
                    SearchMatch(
                        cell=cell.coordinate,
                        row=cell.row,
                        column=cell.column,
                        value=_normalize_scalar(cell.value),
                    )
                )
            if truncated:
                break
    finally:
        workbook.close()
    return SearchValuesResult(
        sheet=request.sheet,
        query=request.query,
        range=request.range,
        matches=matches,
        truncated=truncated,
    )


def filter_rows(
    request: FilterRowsRequest, *, policy: PathPolicy | None = None
) -> FilterRowsResult:
    """Return the rows whose value in one column meets a condition.

    ``equals`` compares displayed text exactly; ``contains`` ignores case;
    ``greater_than`` and ``less_than`` skip cells that are not numeric.
    Every row of the used area is tested, header row included.
    """
    resolved = runtime.resolve_input_path(request.file_path, policy=policy)
    column = resolve_column(request.column)
    row_numbers: list[int] = []
    rows: list[list[JsonScalar]] = []
    truncated = False
    workbook = load_document(resolved)
    try:
        sheet = _sheet(workbook, request.sheet)
        width = max(sheet.max_column, column)
        for row_number, values in enumerate(
            sheet.iter_rows(min_row=1, max_col=width, values_only=True), start=1
        ):
            if not _matches(values[column - 1], request.condition, request.value):
                continue
            if len(rows) == request.max_rows:
                truncated = True
                break
            row_numbers.append(row_number)
            rows.append([_normalize_scalar(value) for value in values])
    finally:
        workbook.close()
    return FilterRowsResult(
        sheet=request.sheet,
        column=column_index_to_label(column),
        condition=request.condition,
        value=request.value,
        row_numbers=row_numbers,
        rows=rows,
        truncated=truncated,
    )


def get_data_validation(
    request: GetDataValidationRequest, *, policy: PathPolicy | None = None
) -> DataValidationInfo:
    """Read the data validation rule that covers one cell."""
    resolved = runtime.resolve_input_path(request.file_path, policy=policy)
    address = parse_cell_address(request.cell)
    workbook = load_document(resolved)
    try:
        sheet = _sheet(workbook, request.sheet)
        rule = next(
            (
                item
                for item in sheet.data_validations.dataValidation
                if address.label in item.sqref
            ),
            None,
        )
    finally:
        workbook.close()
    if rule is None:
        return DataValidationInfo(sheet=request.sheet, cell=address.label)
    return DataValidationInfo(
        sheet=request.sheet,
        cell=address.label,
        has_validation=True,
        type=rule.type or "any",
        operator=rule.operator,
        formula1=rule.formula1,
        formula2=rule.formula2,
        allow_blank=rule.allow_blank,
        show_error_message=rule.showErrorMessage,
        error_title=rule.errorTitle,
        error=rule.error,
        prompt_title=rule.promptTitle,
        prompt=rule.prompt,
        applies_to=str(rule.sqref),
    )


def _sheet(workbook: Workbook, name: str) -> Worksheet:
    if name not in workbook.sheetnames:
        raise SheetNotFoundError(f"Sheet not found: {name}")
    return cast(Worksheet, workbook[name])


def _read_values(
    sheet: Worksheet, bounds: RangeAddress, max_rows: int
) -> tuple[list[list[JsonScalar]], bool]:
    end_row = min(bounds.end.row, bounds.start.row + max_rows - 1)
    rows = [
        [_normalize_scalar(value) for value in row]
        for row in sheet.iter_rows(
            min_row=bounds.start.row,
            max_row=end_row,
            min_col=bounds.start.column,
            max_col=bounds.end.column,
            values_only=True,
        )
    ]
    return rows, end_row < bounds.end.row


def _used_bounds(sheet: Worksheet) -> RangeAddress:
    end = CellAddress(column=sheet.max_column, row=sheet.max_row)
    return RangeAddress(start=CellAddress(column=1, row=1), end=end)


def _cell_text(value: object) -> str:
    """Text of a cell value as Excel would display it, without number formats."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    return str(value)


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _matches(
    value: object, condition: FilterCondition, target: str | int | float | None
) -> bool:
    if condition == "not_empty":
        return bool(_cell_text(value).strip())
    if condition == "equals":
        return _cell_text(value) == _cell_text(target)
    if condition == "contains":
        return _cell_text(target).casefold() in _cell_text(value).casefold()
    number = _as_number(value)
    bound = _as_number(target)
    if number is None or bound is None:
        return False
    if condition == "greater_than":
        return number > bound
    return number < bound


def _cached_value(path: Path, sheet: str, row: int, column: int) -> JsonScalar:
    """Return the value Excel last calculated for a formula cell, if saved."""
    workbook = load_workbook(path, data_only=True)
    try:
        return _normalize_scalar(workbook[sheet].cell(row=row, column=column).value)
    finally:
        workbook.close()


def _normalize_scalar(value: object) -> JsonScalar:
    """Normalize a cell value to a JSON scalar."""
    if isinstance(value, str | int | float | bool) or value is None:
        return value
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    return str(value)


__all__ = [
    "CellReadItem",
    "DataValidationInfo",
    "FilterCondition",
    "FilterRowsRequest",
    "FilterRowsResult",
    "GetCellRequest",
    "GetDataValidationRequest",
    "GetMergedCellsRequest",
    "MergedCellsResult",
    "ReadSheetRequest",
    "ReadSheetResult",
    "ReadWorkbookRequest",
    "ReadWorkbookResult",
    "SearchMatch",
    "SearchValuesRequest",
    "SearchValuesResult",
    "SheetSummary",
    "filter_rows",
    "get_cell",
    "get_data_validation",
    "get_merged_cells",
    "read_sheet",
    "read_workbook",
    "search_values",
]
