from __future__ import annotations

import argparse
import functools
import importlib
import logging
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, cast

import anyio
from pydantic import BaseModel, Field

from .edit.models import EditConfig, EditOp, LiveSettings, RetryPolicy
from .edit.service import ExecutionRouter
from .io import PathPolicy
from .sheet_reader import (
    CellReadItem,
    DataValidationInfo,
    FilterCondition,
    FilterRowsResult,
    MergedCellsResult,
    ReadSheetResult,
    ReadWorkbookResult,
    SearchValuesResult,
)
from .tools import (
    EditToolInput,
    EditToolOutput,
    FilterRowsToolInput,
    GetCellToolInput,
    GetDataValidationToolInput,
    GetMergedCellsToolInput,
    ReadSheetToolInput,
    ReadWorkbookToolInput,
    SearchValuesToolInput,
    run_edit_tool,
    run_filter_rows_tool,
    run_get_cell_tool,
    run_get_data_validation_tool,
    run_get_merged_cells_tool,
    run_read_sheet_tool,
    run_read_workbook_tool,
    run_search_values_tool,
)
from .validation import (
    FormulaCheckResult,
    RangeCheckResult,
    validate_formula,
    validate_range,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from mcp.server.fastmcp import FastMCP

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Configuration for the MCP server process."""

    root: Path = Field(..., description="Root directory for file access.")
    extra_roots: list[Path] = Field(
        default_factory=list, description="Additional allowed directories."
    )
    deny_globs: list[str] = Field(default_factory=list, description="Denied glob list.")
    log_level: str = Field(default="INFO", description="Logging level.")
    log_file: Path | None = Field(default=None, description="Optional log file path.")
    live: bool = Field(default=True, description="Use the live Excel channel.")
    backup: bool = Field(default=False, description="Back up workbooks before edits.")
    command_timeout: float = Field(
        default=10.0, gt=0.0, description="Per-attempt live command timeout."
    )
    command_retries: int = Field(
        default=3, ge=1, le=10, description="Attempts per live command."
    )

    def to_edit_config(self) -> EditConfig:
        """Build the router configuration from server flags."""
        return EditConfig(
            live=LiveSettings(
                enabled=self.live,
                command_retry=RetryPolicy(
                    max_attempts=self.command_retries, timeout=self.command_timeout
                ),
            ),
            create_backup=self.backup,
        )


def main(argv: list[str] | None = None) -> int:
    """Run the MCP server entrypoint.

    Args:
        argv: Optional CLI arguments for testing.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    config = _parse_args(argv)
    _configure_logging(config)
    try:
        run_server(config)
    except Exception as exc:  # pragma: no cover - surface runtime errors
        logger.error("MCP server failed: %s", exc)
        return 1
    return 0


def run_server(config: ServerConfig) -> None:
    """Start the MCP server.

    Args:
        config: Server configuration.
    """
    _import_mcp()
    policy = PathPolicy(
        root=config.root, extra_roots=config.extra_roots, deny_globs=config.deny_globs
    )
    logger.info("MCP root: %s", policy.normalize_root())
    for extra in policy.allowed_roots()[1:]:
        logger.info("Also allowed: %s", extra)
    edit_config = config.to_edit_config()
    if not edit_config.live.enabled:
        logger.info("Live Excel channel disabled; edits go to files only.")
    router = ExecutionRouter(edit_config, policy=policy)
    app = _create_app(policy, router)
    app.run()


def _parse_args(argv: list[str] | None) -> ServerConfig:
    """Parse CLI arguments into server config.

    Args:
        argv: Optional CLI argument list.

    Returns:
        Parsed server configuration.
    """
    parser = argparse.ArgumentParser(description="xllive MCP server (stdio).")
    parser.add_argument("--root", type=Path, required=True, help="Workspace root.")
    parser.add_argument(
        "--allow-dir",
        type=Path,
        action="append",
        default=[],
        help="Additional directory to allow (can be specified multiple times).",
    )
    parser.add_argument(
        "--deny-glob",
        action="append",
        default=[],
        help="Glob pattern to deny (can be specified multiple times).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    parser.add_argument("--log-file", type=Path, help="Optional log file path.")
    parser.add_argument(
        "--no-live",
        action="store_true",
        help="Never drive a running Excel; always edit the file on disk.",
    )
    parser.add_argument(
        "--backup",
        action="store_true",
        help="Copy each workbook to <name>.backup before editing it.",
    )
    parser.add_argument(
        "--command-timeout",
        type=float,
        default=10.0,
        help="Seconds before a live Excel command is killed (default: 10).",
    )
    parser.add_argument(
        "--command-retries",
        type=int,
        default=3,
        help="Attempts per live Excel command (default: 3).",
    )
    args = parser.parse_args(argv)
    return ServerConfig(
        root=args.root,
        extra_roots=list(args.allow_dir),
        deny_globs=list(args.deny_glob),
        log_level=args.log_level,
        log_file=args.log_file,
        live=not args.no_live,
        backup=bool(args.backup),
        command_timeout=args.command_timeout,
        command_retries=args.command_retries,
    )


def _configure_logging(config: ServerConfig) -> None:
    """Configure logging for the server process.

    Args:
        config: Server configuration.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file is not None:
        handlers.append(logging.FileHandler(config.log_file))
    logging.basicConfig(
        level=config.log_level.upper(),
        handlers=handlers,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _import_mcp() -> ModuleType:
    """Import the MCP SDK module or raise a helpful error.

    Returns:
        Imported MCP module.
    """
    try:
        return importlib.import_module("mcp")
    except ModuleNotFoundError as exc:
        raise RuntimeError(
            "MCP SDK is not installed. Install with `pip install xllive[mcp]`."
        ) from exc


def _create_app(policy: PathPolicy, router: ExecutionRouter) -> FastMCP:
    """Create the MCP FastMCP application.

    Args:
        policy: Path policy for filesystem access.
        router: Edit router shared by all edit tool calls.

    Returns:
        FastMCP application instance.
    """
    from mcp.server.fastmcp import FastMCP

    app = FastMCP("xllive MCP", json_response=True)
    _register_tools(app, policy, router)
    return app


def _register_tools(app: FastMCP, policy: PathPolicy, router: ExecutionRouter) -> None:
    """Register MCP tools for the server.

    Args:
        app: FastMCP application instance.
        policy: Path policy for filesystem access.
        router: Edit router shared by all edit tool calls.
    """

    async def _edit_tool(
        file_path: str,
        op: EditOp,
        create_backup: bool | None = None,
    ) -> EditToolOutput:
        """Edit an Excel workbook, live in Excel when it is open there.

        When Excel is running and a workbook with the same file name is open,
        the edit is sent to Excel and shows up immediately. Otherwise, or when
        Excel does not respond, the file on disk is rewritten instead. The
        result's 'method' field says which one happened ('live' or 'file').

        Args:
            file_path: Path to the .xlsx/.xlsm workbook.
            op: Operation to apply. The 'op' field selects the type:
                'update_cell', 'write_range', 'add_row', 'set_formula',
                'format_cell', 'set_column_width', 'set_row_height',
                'merge_cells', 'unmerge_cells', 'insert_rows',
                'insert_columns', 'delete_rows', 'delete_columns',
                'create_sheet', 'delete_sheet', 'rename_sheet',
                'write_workbook', 'copy_range', 'duplicate_sheet',
                'create_table'. The last four always edit the file.
            create_backup: Copy the workbook to '<name>.backup' first.
                Defaults to the server --backup setting.

        Returns:
            Edit result with method, message, and any warnings.
        """
        payload = EditToolInput(file_path=file_path, op=op, create_backup=create_backup)
        work = functools.partial(run_edit_tool, payload, router=router)
        result = cast(EditToolOutput, await anyio.to_thread.run_sync(work))
        return result

    edit_tool = app.tool(name="xllive_edit")
    edit_tool(_edit_tool)

    async def _read_workbook_tool(file_path: str) -> ReadWorkbookResult:
        """List the sheets of a workbook with their used extents.

        Args:
            file_path: Path to the workbook.

        Returns:
            Sheet names, sizes, and the active sheet.
        """
        payload = ReadWorkbookToolInput(file_path=file_path)
        work = functools.partial(run_read_workbook_tool, payload, policy=policy)
        result = cast(ReadWorkbookResult, await anyio.to_thread.run_sync(work))
        return result

    read_workbook_tool = app.tool(name="xllive_read_workbook")
    read_workbook_tool(_read_workbook_tool)

    async def _read_sheet_tool(
        file_path: str,
        sheet: str,
        range: str | None = None,  # noqa: A002
        max_rows: int = 1_000,
    ) -> ReadSheetResult:
        """Read cell values from a sheet as rows.

        Reads the saved file, so unsaved changes in Excel are not visible.

        Args:
            file_path: Path to the workbook.
            sheet: Sheet name.
            range: Optional A1 range (e.g. 'A1:D10'). Defaults to the used area.
            max_rows: Maximum number of rows to return.

        Returns:
            Row-major values and a truncation flag.
        """
        payload = ReadSheetToolInput(
            file_path=file_path, sheet=sheet, range=range, max_rows=max_rows
        )
        work = functools.partial(run_read_sheet_tool, payload, policy=policy)
        result = cast(ReadSheetResult, await anyio.to_thread.run_sync(work))
        return result

    read_sheet_tool = app.tool(name="xllive_read_sheet")
    read_sheet_tool(_read_sheet_tool)

    async def _get_cell_tool(file_path: str, sheet: str, cell: str) -> CellReadItem:
        """Read one cell's value, formula, and number format.

        Args:
            file_path: Path to the workbook.
            sheet: Sheet name.
            cell: A1 cell address.

        Returns:
            Cell value payload.
        """
        payload = GetCellToolInput(file_path=file_path, sheet=sheet, cell=cell)
        work = functools.partial(run_get_cell_tool, payload, policy=policy)
        result = cast(CellReadItem, await anyio.to_thread.run_sync(work))
        return result

    get_cell_tool = app.tool(name="xllive_get_cell")
    get_cell_tool(_get_cell_tool)

    async def _get_merged_cells_tool(file_path: str, sheet: str) -> MergedCellsResult:
        """List merged ranges on a sheet.

        Args:
            file_path: Path to the workbook.
            sheet: Sheet name.

        Returns:
            Merged range references.
        """
        payload = GetMergedCellsToolInput(file_path=file_path, sheet=sheet)
        work = functools.partial(run_get_merged_cells_tool, payload, policy=policy)
        result = cast(MergedCellsResult, await anyio.to_thread.run_sync(work))
        return result

    merged_tool = app.tool(name="xllive_get_merged_cells")
    merged_tool(_get_merged_cells_tool)

    async def _search_values_tool(
        file_path: str,
        sheet: str,
        query: str,
        range: str | None = None,  # noqa: A002
        case_sensitive: bool = False,
        max_results: int = 1_000,
    ) -> SearchValuesResult:
        """Find cells whose text contains a query.

        Args:
            file_path: Path to the workbook.
            sheet: Sheet name.
            query: Text to look for; numbers match their displayed digits.
            range: Optional A1 range to search. Defaults to the used area.
            case_sensitive: Match letter case exactly.
            max_results: Maximum number of matches to return.

        Returns:
            Matching cells with their values.
        """
        payload = SearchValuesToolInput(
            file_path=file_path,
            sheet=sheet,
            query=query,
            range=range,
            case_sensitive=case_sensitive,
            max_results=max_results,
        )
        work = functools.partial(run_search_values_tool, payload, policy=policy)
        result = cast(SearchValuesResult, await anyio.to_thread.run_sync(work))
        return result

    search_tool = app.tool(name="xllive_search_values")
    search_tool(_search_values_tool)

    async def _filter_rows_tool(
        file_path: str,
        sheet: str,
        column: str | int,
        condition: FilterCondition,
        value: str | int | float | None = None,
        max_rows: int = 1_000,
    ) -> FilterRowsResult:
        """Return the rows whose value in one column meets a condition.

        Args:
            file_path: Path to the workbook.
            sheet: Sheet name.
            column: Column letter (e.g. 'C') or 1-based index.
            condition: 'equals', 'contains', 'greater_than', 'less_than',
                or 'not_empty'.
            value: Value to compare with; not used by 'not_empty'.
            max_rows: Maximum number of rows to return.

        Returns:
            Matching row numbers and their values.
        """
        payload = FilterRowsToolInput(
            file_path=file_path,
            sheet=sheet,
            column=column,
            condition=condition,
            value=value,
            max_rows=max_rows,
        )
        work = functools.partial(run_filter_rows_tool, payload, policy=policy)
        result = cast(FilterRowsResult, await anyio.to_thread.run_sync(work))
        return result

    filter_tool = app.tool(name="xllive_filter_rows")
    filter_tool(_filter_rows_tool)

    async def _get_data_validation_tool(
        file_path: str, sheet: str, cell: str
    ) -> DataValidationInfo:
        """Read the data validation rule (dropdown list, number limits) on a cell.

        Args:
            file_path: Path to the workbook.
            sheet: Sheet name.
            cell: A1 cell address.

        Returns:
            Rule type, operator, formulas, and messages, or has_validation=false.
        """
        payload = GetDataValidationToolInput(file_path=file_path, sheet=sheet, cell=cell)
        work = functools.partial(run_get_data_validation_tool, payload, policy=policy)
        result = cast(DataValidationInfo, await anyio.to_thread.run_sync(work))
        return result

    validation_tool = app.tool(name="xllive_get_data_validation")
    validation_tool(_get_data_validation_tool)

    async def _validate_range_tool(range: str) -> RangeCheckResult:  # noqa: A002
        """Check an A1 range reference such as 'A1:D10' without opening a file.

        Args:
            range: Range reference to check.

        Returns:
            Validity, normalized form, size, and any errors.
        """
        return validate_range(range)

    range_tool = app.tool(name="xllive_validate_range")
    range_tool(_validate_range_tool)

    async def _validate_formula_tool(formula: str) -> FormulaCheckResult:
        """Check a formula for structural mistakes before writing it.

        Args:
            formula: Formula text, with or without the leading '='.

        Returns:
            Validity, errors, and warnings for unknown function names.
        """
        return validate_formula(formula)

    formula_tool = app.tool(name="xllive_validate_formula")
    formula_tool(_validate_formula_tool)
