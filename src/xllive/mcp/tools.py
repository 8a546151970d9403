from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .edit.models import EditOp, EditRequest, OperationResult
from .edit.service import ExecutionRouter
from .edit.types import EditOpType, ExecutionMethod
from .io import PathPolicy
from .sheet_reader import (
    CellReadItem,
    DataValidationInfo,
    FilterCondition,
    FilterRowsRequest,
    FilterRowsResult,
    GetCellRequest,
    GetDataValidationRequest,
    GetMergedCellsRequest,
    MergedCellsResult,
    ReadSheetRequest,
    ReadSheetResult,
    ReadWorkbookRequest,
    ReadWorkbookResult,
    SearchValuesRequest,
    SearchValuesResult,
    filter_rows,
    get_cell,
    get_data_validation,
    get_merged_cells,
    read_sheet,
    read_workbook,
    search_values,
)


class EditToolInput(BaseModel):
    """MCP tool input for editing a workbook."""

    file_path: str
    op: EditOp
    create_backup: bool | None = None


class EditToolOutput(BaseModel):
    """MCP tool output for editing a workbook."""

    success: bool = True
    op: EditOpType
    method: ExecutionMethod
    message: str
    note: str | None = None
    file_path: str
    target: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class ReadWorkbookToolInput(BaseModel):
    """MCP tool input for listing workbook sheets."""

    file_path: str


class ReadSheetToolInput(BaseModel):
    """MCP tool input for reading sheet values."""

    file_path: str
    sheet: str
    range: str | None = None
    max_rows: int = Field(default=1_000, ge=1, le=100_000)


class GetCellToolInput(BaseModel):
    """MCP tool input for reading one cell."""

    file_path: str
    sheet: str
    cell: str


class GetMergedCellsToolInput(BaseModel):
    """MCP tool input for listing merged ranges."""

    file_path: str
    sheet: str


class SearchValuesToolInput(BaseModel):
    """MCP tool input for searching cell text."""

    file_path: str
    sheet: str
    query: str
    range: str | None = None
    case_sensitive: bool = False
    max_results: int = Field(default=1_000, ge=1, le=100_000)


class FilterRowsToolInput(BaseModel):
    """MCP tool input for filtering rows by one column."""

    file_path: str
    sheet: str
    column: str | int
    condition: FilterCondition
    value: str | int | float | None = None
    max_rows: int = Field(default=1_000, ge=1, le=100_000)


class GetDataValidationToolInput(BaseModel):
    """MCP tool input for reading a cell's data validation rule."""

    file_path: str
    sheet: str
    cell: str


def run_edit_tool(payload: EditToolInput, *, router: ExecutionRouter) -> EditToolOutput:
    """Run the edit tool handler.

    Args:
        payload: Tool input payload.
        router: Router that owns the path policy and live-channel settings.

    Returns:
        Tool output payload.
    """
    request = EditRequest(
        file_path=Path(payload.file_path),
        op=payload.op,
        create_backup=payload.create_backup,
    )
    result = router.execute(request)
    return _to_edit_tool_output(result)


def run_read_workbook_tool(
    payload: ReadWorkbookToolInput, *, policy: PathPolicy | None = None
) -> ReadWorkbookResult:
    """Run the workbook overview tool handler."""
    request = ReadWorkbookRequest(file_path=Path(payload.file_path))
    return read_workbook(request, policy=policy)


def run_read_sheet_tool(
    payload: ReadSheetToolInput, *, policy: PathPolicy | None = None
) -> ReadSheetResult:
    """Run the sheet read tool handler."""
    request = ReadSheetRequest(
        file_path=Path(payload.file_path),
        sheet=payload.sheet,
        range=payload.range,
        max_rows=payload.max_rows,
    )
    return read_sheet(request, policy=policy)


def run_get_cell_tool(
    payload: GetCellToolInput, *, policy: PathPolicy | None = None
) -> CellReadItem:
    """Run the single cell read tool handler."""
    request = GetCellRequest(
        file_path=Path(payload.file_path), sheet=payload.sheet, cell=payload.cell
    )
    return get_cell(request, policy=policy)


def run_get_merged_cells_tool(
    payload: GetMergedCellsToolInput, *, policy: PathPolicy | None = None
) -> MergedCellsResult:
    """Run the merged range listing tool handler."""
    request = GetMergedCellsRequest(
        file_path=Path(payload.file_path), sheet=payload.sheet
    )
    return get_merged_cells(request, policy=policy)


def run_search_values_tool(
    payload: SearchValuesToolInput, *, policy: PathPolicy | None = None
) -> SearchValuesResult:
    """Run the cell text search tool handler."""
    request = SearchValuesRequest(
        file_path=Path(payload.file_path),
        sheet=payload.sheet,
        query=payload.query,
        range=payload.range,
        case_sensitive=payload.case_sensitive,
        max_results=payload.max_results,
    )
    return search_values(request, policy=policy)


def run_filter_rows_tool(
    payload: FilterRowsToolInput, *, policy: PathPolicy | None = None
) -> FilterRowsResult:
    """Run the row filter tool handler."""
    request = FilterRowsRequest(
        file_path=Path(payload.file_path),
        sheet=payload.sheet,
        column=payload.column,
        condition=payload.condition,
        value=payload.value,
        max_rows=payload.max_rows,
    )
    return filter_rows(request, policy=policy)


def run_get_data_validation_tool(
    payload: GetDataValidationToolInput, *, policy: PathPolicy | None = None
) -> DataValidationInfo:
    """Run the data validation read tool handler."""
    request = GetDataValidationRequest(
        file_path=Path(payload.file_path), sheet=payload.sheet, cell=payload.cell
    )
    return get_data_validation(request, policy=policy)


def _to_edit_tool_output(result: OperationResult) -> EditToolOutput:
    """Convert the router result to the edit tool output.

    Args:
        result: Router result.

    Returns:
        Tool output payload.
    """
    return EditToolOutput(
        success=result.success,
        op=result.op,
        method=result.method,
        message=result.message,
        note=result.note,
        file_path=result.file_path,
        target=result.target,
        details=result.details,
        warnings=result.warnings,
    )


__all__ = [
    "EditToolInput",
    "EditToolOutput",
    "FilterRowsToolInput",
    "GetCellToolInput",
    "GetDataValidationToolInput",
    "GetMergedCellsToolInput",
    "ReadSheetToolInput",
    "ReadWorkbookToolInput",
    "SearchValuesToolInput",
    "run_edit_tool",
    "run_filter_rows_tool",
    "run_get_cell_tool",
    "run_get_data_validation_tool",
    "run_get_merged_cells_tool",
    "run_read_sheet_tool",
    "run_read_workbook_tool",
    "run_search_values_tool",
]
