from __future__ import annotations

from collections.abc import Sequence
import logging
from pathlib import Path

from xllive.mcp.errors import (
    LiveChannelUnavailable,
    LiveCommandFailed,
    LiveSaveFailed,
)
from xllive.mcp.io import PathPolicy
from xllive.mcp.shared.backup import create_backup as backup_workbook

from . import runtime
from .engine.applescript_engine import AppleScriptEngine
from .engine.base import FileEditEngine, LiveEditEngine
from .engine.openpyxl_engine import OpenpyxlEngine
from .executor import CommandExecutor
from .models import (
    AddRowOp,
    CellFormat,
    CopyRangeOp,
    CreateSheetOp,
    CreateTableOp,
    DeleteColumnsOp,
    DeleteRowsOp,
    DeleteSheetOp,
    DuplicateSheetOp,
    EditConfig,
    EditOp,
    EditOutcome,
    EditRequest,
    FormatCellOp,
    InsertColumnsOp,
    InsertRowsOp,
    MergeCellsOp,
    OperationResult,
    RenameSheetOp,
    SetColumnWidthOp,
    SetFormulaOp,
    SetRowHeightOp,
    UnmergeCellsOp,
    UpdateCellOp,
    WriteRangeOp,
    WriteWorkbookOp,
)
from .probe import LiveSessionProbe
from .types import FILE_ONLY_OPS, CellScalar, ExecutionMethod

logger = logging.getLogger(__name__)

LIVE_NOTE = "Changes are visible immediately in Excel."
FILE_NOTE = "File updated. Open in Excel to see changes."
FILE_NOTE_WHILE_OPEN = (
    "File updated while the workbook is open in Excel. Reload it in Excel, "
    "and avoid saving the open copy over these changes."
)


class ExecutionRouter:
    """Route each edit to the live Excel session or to the workbook file.

    The live channel is tried only when Excel is running and a workbook with
    the same file name is open. Live-channel failures fall back to the file
    channel; invalid input and document errors are raised to the caller.
    Both probes are re-run on every call.
    """

    def __init__(
        self,
        config: EditConfig | None = None,
        *,
        policy: PathPolicy | None = None,
        executor: CommandExecutor | None = None,
        probe: LiveSessionProbe | None = None,
        live_engine: LiveEditEngine | None = None,
        file_engine: FileEditEngine | None = None,
    ) -> None:
        self._config = config or EditConfig()
        self._policy = policy
        self._executor = executor or CommandExecutor(self._config.live)
        self._probe = probe or LiveSessionProbe(self._executor)
        self._live = live_engine or AppleScriptEngine(self._executor)
        self._file = file_engine or OpenpyxlEngine()

    @property
    def config(self) -> EditConfig:
        return self._config

    def execute(self, request: EditRequest) -> OperationResult:
        """Run one validated edit request.

        Args:
            request: Edit request with a typed operation.

        Returns:
            Result naming the channel that carried out the edit.

        Raises:
            EditError: If the input is invalid, the document cannot be reached,
                or the live channel failed with fallback disabled.
        """
        op = request.op
        create_backup = (
            self._config.create_backup
            if request.create_backup is None
            else request.create_backup
        )
        if op.op == "write_workbook":
            path = runtime.resolve_output_path(request.file_path, policy=self._policy)
            runtime.ensure_output_dir(path)
        else:
            path = runtime.resolve_input_path(request.file_path, policy=self._policy)
        with runtime.document_lock(path):
            return self._execute_locked(path, op, create_backup=create_backup)

    def select_method(self, path: Path, op_name: str) -> ExecutionMethod:
        """Decide which channel should carry out an operation right now."""
        if op_name in FILE_ONLY_OPS or not self._live.supports(op_name):
            return "file"
        if not self._config.live.enabled:
            return "file"
        running = self._probe.is_application_running()
        is_open = self._probe.is_document_open(path) if running else False
        method: ExecutionMethod = "live" if is_open else "file"
        logger.info(
            "Routing %s for %s: excel_running=%s workbook_open=%s -> %s",
            op_name,
            path.name,
            running,
            is_open,
            method,
        )
        return method

    def _execute_locked(
        self, path: Path, op: EditOp, *, create_backup: bool
    ) -> OperationResult:
        warnings: list[str] = []
        method = self.select_method(path, op.op)
        if method == "live":
            try:
                outcome = self._apply_live(path, op, create_backup, warnings)
            except (LiveCommandFailed, LiveChannelUnavailable) as exc:
                if not self._config.fallback_to_file:
                    raise
                logger.warning(
                    "Live %s on %s failed; falling back to file: %s",
                    op.op,
                    path.name,
                    exc.message,
                )
                if isinstance(exc, LiveSaveFailed):
                    warnings.append(
                        "Live save failed; the edit was also written to the file. "
                        f"({exc.message})"
                    )
                    warnings.append(
                        "Excel holds the complete edit unsaved. Close the open copy "
                        "without saving, or reload it, to keep the file version."
                    )
                else:
                    warnings.append(
                        "Live edit failed; completed through the file instead. "
                        f"({exc.message})"
                    )
                    if isinstance(exc, LiveCommandFailed) and exc.applied:
                        warnings.append(
                            "Partially applied in Excel before the failure: "
                            + ", ".join(exc.applied)
                        )
            else:
                return _build_result(path, op, "live", outcome, warnings, LIVE_NOTE)
        outcome = self._file.apply(path, op, create_backup=create_backup)
        note = FILE_NOTE_WHILE_OPEN if method == "live" else FILE_NOTE
        return _build_result(path, op, "file", outcome, warnings, note)

    def _apply_live(
        self, path: Path, op: EditOp, create_backup: bool, warnings: list[str]
    ) -> EditOutcome:
        outcome = self._live.apply(path, op)
        if create_backup:
            try:
                backup_workbook(path)
            except OSError as exc:
                logger.warning("Backup of %s failed: %s", path.name, exc)
                warnings.append(f"Backup was not created: {exc}")
        try:
            self._live.save(path)
        except LiveCommandFailed as exc:
            raise LiveSaveFailed(
                f"{op.op} was applied in Excel but the workbook could not be saved; "
                f"Excel holds the complete edit unsaved. ({exc.message})",
                attempts=exc.attempts,
                timed_out=exc.timed_out,
                returncode=exc.returncode,
                applied=[op.op],
            ) from exc
        return outcome

    # One method per operation.

    def update_cell(
        self,
        file_path: Path,
        sheet: str,
        cell: str,
        value: CellScalar,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path, UpdateCellOp(sheet=sheet, cell=cell, value=value), create_backup
        )

    def write_range(
        self,
        file_path: Path,
        sheet: str,
        range_ref: str,
        data: Sequence[Sequence[CellScalar]],
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        op = WriteRangeOp(sheet=sheet, range=range_ref, data=[list(row) for row in data])
        return self._run(file_path, op, create_backup)

    def add_row(
        self,
        file_path: Path,
        sheet: str,
        values: Sequence[CellScalar],
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path, AddRowOp(sheet=sheet, values=list(values)), create_backup
        )

    def set_formula(
        self,
        file_path: Path,
        sheet: str,
        cell: str,
        formula: str,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path,
            SetFormulaOp(sheet=sheet, cell=cell, formula=formula),
            create_backup,
        )

    def format_cell(
        self,
        file_path: Path,
        sheet: str,
        cell: str,
        cell_format: CellFormat,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path,
            FormatCellOp(sheet=sheet, cell=cell, format=cell_format),
            create_backup,
        )

    def set_column_width(
        self,
        file_path: Path,
        sheet: str,
        column: str | int,
        width: float,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path,
            SetColumnWidthOp(sheet=sheet, column=column, width=width),
            create_backup,
        )

    def set_row_height(
        self,
        file_path: Path,
        sheet: str,
        row: int,
        height: float,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path, SetRowHeightOp(sheet=sheet, row=row, height=height), create_backup
        )

    def merge_cells(
        self,
        file_path: Path,
        sheet: str,
        range_ref: str,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path, MergeCellsOp(sheet=sheet, range=range_ref), create_backup
        )

    def unmerge_cells(
        self,
        file_path: Path,
        sheet: str,
        range_ref: str,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path, UnmergeCellsOp(sheet=sheet, range=range_ref), create_backup
        )

    def insert_rows(
        self,
        file_path: Path,
        sheet: str,
        start_row: int,
        count: int = 1,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path,
            InsertRowsOp(sheet=sheet, start_row=start_row, count=count),
            create_backup,
        )

    def insert_columns(
        self,
        file_path: Path,
        sheet: str,
        start_column: str | int,
        count: int = 1,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path,
            InsertColumnsOp(sheet=sheet, start_column=start_column, count=count),
            create_backup,
        )

    def delete_rows(
        self,
        file_path: Path,
        sheet: str,
        start_row: int,
        count: int = 1,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path,
            DeleteRowsOp(sheet=sheet, start_row=start_row, count=count),
            create_backup,
        )

    def delete_columns(
        self,
        file_path: Path,
        sheet: str,
        start_column: str | int,
        count: int = 1,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path,
            DeleteColumnsOp(sheet=sheet, start_column=start_column, count=count),
            create_backup,
        )

    def create_sheet(
        self, file_path: Path, sheet: str, *, create_backup: bool | None = None
    ) -> OperationResult:
        return self._run(file_path, CreateSheetOp(sheet=sheet), create_backup)

    def delete_sheet(
        self, file_path: Path, sheet: str, *, create_backup: bool | None = None
    ) -> OperationResult:
        return self._run(file_path, DeleteSheetOp(sheet=sheet), create_backup)

    def rename_sheet(
        self,
        file_path: Path,
        sheet: str,
        new_name: str,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path, RenameSheetOp(sheet=sheet, new_name=new_name), create_backup
        )

    def write_workbook(
        self,
        file_path: Path,
        sheet: str,
        data: Sequence[Sequence[CellScalar]],
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        op = WriteWorkbookOp(sheet=sheet, data=[list(row) for row in data])
        return self._run(file_path, op, create_backup)

    def copy_range(
        self,
        file_path: Path,
        sheet: str,
        range_ref: str,
        target_sheet: str,
        target_cell: str,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        op = CopyRangeOp(
            sheet=sheet,
            range=range_ref,
            target_sheet=target_sheet,
            target_cell=target_cell,
        )
        return self._run(file_path, op, create_backup)

    def duplicate_sheet(
        self,
        file_path: Path,
        sheet: str,
        new_name: str,
        *,
        create_backup: bool | None = None,
    ) -> OperationResult:
        return self._run(
            file_path, DuplicateSheetOp(sheet=sheet, new_name=new_name), create_backup
        )

    def create_table(
        self,
        file_path: Path,
        sheet: str,
        range_ref: str,
        table_name: str,
        *,
        style: str = "TableStyleMedium2",
        create_backup: bool | None = None,
    ) -> OperationResult:
        op = CreateTableOp(
            sheet=sheet, range=range_ref, table_name=table_name, style=style
        )
        return self._run(file_path, op, create_backup)

    def _run(
        self, file_path: Path, op: EditOp, create_backup: bool | None
    ) -> OperationResult:
        return self.execute(
            EditRequest(file_path=file_path, op=op, create_backup=create_backup)
        )


def _build_result(
    path: Path,
    op: EditOp,
    method: ExecutionMethod,
    outcome: EditOutcome,
    warnings: list[str],
    note: str,
) -> OperationResult:
    return OperationResult(
        op=op.op,
        method=method,
        message=outcome.message,
        note=note,
        file_path=str(path),
        sheet=op.sheet,
        target=outcome.target,
        details=outcome.details,
        warnings=[*warnings, *outcome.warnings],
    )


__all__ = [
    "FILE_NOTE",
    "FILE_NOTE_WHILE_OPEN",
    "LIVE_NOTE",
    "ExecutionRouter",
]
