from __future__ import annotations

from collections.abc import Callable, Sequence
from copy import copy
import itertools
import logging
from pathlib import Path
from typing import Any, TypeVar, cast
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.styles.colors import Color
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.table import Table, TableStyleInfo
from openpyxl.worksheet.worksheet import Worksheet

from ...errors import (
    DocumentNotFoundError,
    DocumentUnreadableError,
    EditError,
    FileWriteFailedError,
    InvalidRangeError,
    InvalidValueError,
    SheetExistsError,
    SheetNotFoundError,
)
from ...shared.a1 import (
    CellAddress,
    RangeAddress,
    column_index_to_label,
    parse_cell_address,
    parse_range,
    parse_reference,
    resolve_column,
    validate_row,
)
from ...shared.backup import create_backup as backup_workbook
from ..escaping import normalize_formula
from ..models import (
    AddRowOp,
    BorderSide,
    CellFormat,
    CopyRangeOp,
    CreateSheetOp,
    CreateTableOp,
    DeleteColumnsOp,
    DeleteRowsOp,
    DeleteSheetOp,
    DuplicateSheetOp,
    EditOutcome,
    FormatCellOp,
    InsertColumnsOp,
    InsertRowsOp,
    MergeCellsOp,
    RenameSheetOp,
    SetColumnWidthOp,
    SetFormulaOp,
    SetRowHeightOp,
    UnmergeCellsOp,
    UpdateCellOp,
    WriteRangeOp,
    WriteWorkbookOp,
)
from ..types import CellScalar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_VERTICAL_ALIGN_VALUES = {
    "top": "top",
    "center": "center",
    "middle": "center",
    "bottom": "bottom",
}
_SHIFT_WARNING = (
    "Merged ranges on {sheet} were not moved; the file engine does not shift "
    "merges or rewrite formulas when rows or columns move."
)


class OpenpyxlEngine:
    """Apply edit operations by rewriting the workbook file with openpyxl.

    Each call loads the workbook, mutates it in memory and saves it back to the
    same path. There is no retry and no fallback below this engine.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[Workbook, Any], EditOutcome]] = {
            "update_cell": self._apply_update_cell,
            "write_range": self._apply_write_range,
            "add_row": self._apply_add_row,
            "set_formula": self._apply_set_formula,
            "format_cell": self._apply_format_cell,
            "set_column_width": self._apply_set_column_width,
            "set_row_height": self._apply_set_row_height,
            "merge_cells": self._apply_merge_cells,
            "unmerge_cells": self._apply_unmerge_cells,
            "insert_rows": self._apply_insert_rows,
            "insert_columns": self._apply_insert_columns,
            "delete_rows": self._apply_delete_rows,
            "delete_columns": self._apply_delete_columns,
            "create_sheet": self._apply_create_sheet,
            "delete_sheet": self._apply_delete_sheet,
            "rename_sheet": self._apply_rename_sheet,
            "copy_range": self._apply_copy_range,
            "duplicate_sheet": self._apply_duplicate_sheet,
            "create_table": self._apply_create_table,
        }

    def apply(
        self, path: Path, op: object, *, create_backup: bool = False
    ) -> EditOutcome:
        """Apply one edit operation to the workbook file at ``path``."""
        op_name = cast(str, getattr(op, "op"))
        if op_name == "write_workbook":
            return self.write_workbook(
                path, cast(WriteWorkbookOp, op), create_backup=create_backup
            )
        handler = self._handlers.get(op_name)
        if handler is None:
            raise ValueError(f"Unsupported op: {op_name}")
        warnings: list[str] = []
        outcome = self.with_document(
            path,
            lambda workbook: handler(workbook, op),
            create_backup=create_backup,
            warnings=warnings,
        )
        outcome.warnings.extend(warnings)
        return outcome

    def with_document(
        self,
        path: Path,
        mutate: Callable[[Workbook], T],
        *,
        create_backup: bool = False,
        warnings: list[str] | None = None,
    ) -> T:
        """Load a workbook, run ``mutate`` on it and save it back in place.

        The save happens even when the optional backup copy fails; the failure
        is logged and appended to ``warnings``.

        Raises:
            DocumentNotFoundError: If ``path`` is not an existing file.
            DocumentUnreadableError: If openpyxl cannot parse the file.
            FileWriteFailedError: If the workbook cannot be written back.
        """
        workbook = load_document(path)
        try:
            result = mutate(workbook)
            if create_backup:
                try:
                    backup_workbook(path)
                except OSError as exc:
                    logger.warning("Backup of %s failed: %s", path.name, exc)
                    if warnings is not None:
                        warnings.append(f"Backup was not created: {exc}")
            _save(workbook, path)
        finally:
            workbook.close()
        logger.info("Saved %s via file engine", path.name)
        return result

    def write_workbook(
        self, path: Path, op: WriteWorkbookOp, *, create_backup: bool = False
    ) -> EditOutcome:
        """Create (or replace) a workbook holding one sheet of data."""
        warnings: list[str] = []
        if create_backup and path.is_file():
            try:
                backup_workbook(path)
            except OSError as exc:
                logger.warning("Backup of %s failed: %s", path.name, exc)
                warnings.append(f"Backup was not created: {exc}")
        workbook = Workbook()
        try:
            sheet = cast(Worksheet, workbook.active)
            sheet.title = op.sheet
            for row in op.data:
                sheet.append(list(row))
            _save(workbook, path)
        finally:
            workbook.close()
        return EditOutcome(
            message=f"Workbook written with sheet \"{op.sheet}\"",
            target=op.sheet,
            details={"rows_written": len(op.data)},
            warnings=warnings,
        )

    # Operation handlers

    def _apply_update_cell(self, workbook: Workbook, op: UpdateCellOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        address = parse_cell_address(op.cell)
        sheet.cell(row=address.row, column=address.column).value = op.value
        return EditOutcome(
            message=f"Cell {op.cell} updated",
            target=op.cell,
            details={"new_value": op.value},
        )

    def _apply_write_range(self, workbook: Workbook, op: WriteRangeOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        origin = parse_reference(op.range).normalized().start
        written = _write_block(sheet, origin, op.data)
        return EditOutcome(
            message=f"Range {op.range} updated",
            target=op.range,
            details={
                "rows_written": len(op.data),
                "columns_written": max(len(row) for row in op.data),
                "cells_written": written,
            },
        )

    def _apply_add_row(self, workbook: Workbook, op: AddRowOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        row_number = validate_row(last_used_row(sheet) + 1)
        _write_block(sheet, CellAddress(column=1, row=row_number), [op.values])
        return EditOutcome(
            message=f"Row added at position {row_number}",
            target=str(row_number),
            details={"row_number": row_number, "cells_written": len(op.values)},
        )

    def _apply_set_formula(self, workbook: Workbook, op: SetFormulaOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        address = parse_cell_address(op.cell)
        formula = normalize_formula(op.formula)
        sheet.cell(row=address.row, column=address.column).value = formula
        return EditOutcome(
            message=f"Formula set in cell {op.cell}",
            target=op.cell,
            details={"formula": formula},
        )

    def _apply_format_cell(self, workbook: Workbook, op: FormatCellOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        address = parse_cell_address(op.cell)
        cell = sheet.cell(row=address.row, column=address.column)
        _apply_cell_format(cell, op.format)
        return EditOutcome(
            message=f"Cell {op.cell} formatted",
            target=op.cell,
            details={"applied_formats": op.format.applied_sections()},
        )

    def _apply_set_column_width(
        self, workbook: Workbook, op: SetColumnWidthOp
    ) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        letter = column_index_to_label(resolve_column(op.column))
        sheet.column_dimensions[letter].width = op.width
        return EditOutcome(
            message=f"Column {letter} width set to {op.width:g}",
            target=letter,
            details={"column": letter, "width": op.width},
        )

    def _apply_set_row_height(
        self, workbook: Workbook, op: SetRowHeightOp
    ) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        sheet.row_dimensions[validate_row(op.row)].height = op.height
        return EditOutcome(
            message=f"Row {op.row} height set to {op.height:g}",
            target=str(op.row),
            details={"row": op.row, "height": op.height},
        )

    def _apply_merge_cells(self, workbook: Workbook, op: MergeCellsOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        label = parse_range(op.range).normalized().label
        sheet.merge_cells(label)
        return EditOutcome(message=f"Cells merged in range {label}", target=label)

    def _apply_unmerge_cells(
        self, workbook: Workbook, op: UnmergeCellsOp
    ) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        label = parse_range(op.range).normalized().label
        try:
            sheet.unmerge_cells(label)
        except ValueError as exc:
            raise InvalidRangeError(f"Range {label} is not merged.") from exc
        return EditOutcome(message=f"Cells unmerged in range {label}", target=label)

    def _apply_insert_rows(self, workbook: Workbook, op: InsertRowsOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        validate_row(op.start_row + op.count - 1)
        sheet.insert_rows(op.start_row, amount=op.count)
        return EditOutcome(
            message=f"Inserted {op.count} row(s) at row {op.start_row}",
            target=f"{op.start_row}:{op.start_row + op.count - 1}",
            details={"start_row": op.start_row, "count": op.count},
            warnings=_shift_warnings(sheet, op.sheet),
        )

    def _apply_delete_rows(self, workbook: Workbook, op: DeleteRowsOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        validate_row(op.start_row + op.count - 1)
        sheet.delete_rows(op.start_row, amount=op.count)
        return EditOutcome(
            message=f"Deleted {op.count} row(s) starting from row {op.start_row}",
            target=f"{op.start_row}:{op.start_row + op.count - 1}",
            details={"start_row": op.start_row, "count": op.count},
            warnings=_shift_warnings(sheet, op.sheet),
        )

    def _apply_insert_columns(
        self, workbook: Workbook, op: InsertColumnsOp
    ) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        first, last = _column_bounds(op.start_column, op.count)
        sheet.insert_cols(resolve_column(op.start_column), amount=op.count)
        return EditOutcome(
            message=f"Inserted {op.count} column(s) at column {first}",
            target=f"{first}:{last}",
            details={"start_column": first, "count": op.count},
            warnings=_shift_warnings(sheet, op.sheet),
        )

    def _apply_delete_columns(
        self, workbook: Workbook, op: DeleteColumnsOp
    ) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        first, last = _column_bounds(op.start_column, op.count)
        sheet.delete_cols(resolve_column(op.start_column), amount=op.count)
        return EditOutcome(
            message=f"Deleted {op.count} column(s) starting from column {first}",
            target=f"{first}:{last}",
            details={"start_column": first, "count": op.count},
            warnings=_shift_warnings(sheet, op.sheet),
        )

    def _apply_create_sheet(self, workbook: Workbook, op: CreateSheetOp) -> EditOutcome:
        _ensure_sheet_name_free(workbook, op.sheet)
        workbook.create_sheet(title=op.sheet)
        return EditOutcome(message=f'Sheet "{op.sheet}" created', target=op.sheet)

    def _apply_delete_sheet(self, workbook: Workbook, op: DeleteSheetOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        if len(workbook.sheetnames) == 1:
            raise EditError(f'Cannot delete "{op.sheet}": a workbook needs one sheet.')
        workbook.remove(sheet)
        return EditOutcome(message=f'Sheet "{op.sheet}" deleted', target=op.sheet)

    def _apply_rename_sheet(self, workbook: Workbook, op: RenameSheetOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        _ensure_sheet_name_free(workbook, op.new_name, excluding=sheet)
        _retitle(workbook, sheet, op.new_name)
        return EditOutcome(
            message=f'Sheet renamed from "{op.sheet}" to "{op.new_name}"',
            target=op.new_name,
            details={"old_name": op.sheet, "new_name": op.new_name},
        )

    def _apply_copy_range(self, workbook: Workbook, op: CopyRangeOp) -> EditOutcome:
        source = _sheet(workbook, op.sheet)
        target = _sheet(workbook, op.target_sheet)
        bounds = parse_range(op.range).normalized()
        origin = parse_cell_address(op.target_cell)
        snapshot = [
            [
                (
                    source.cell(row=address.row, column=address.column).value,
                    copy(source.cell(row=address.row, column=address.column)._style),
                )
                for address in row
            ]
            for row in bounds.iter_rows()
        ]
        # Validate every destination before touching the target sheet.
        destinations = [
            [
                _checked(origin.offset(row_offset, column_offset))
                for column_offset in range(len(row))
            ]
            for row_offset, row in enumerate(snapshot)
        ]
        for row, targets in zip(snapshot, destinations):
            for (value, style), address in zip(row, targets):
                cell = target.cell(row=address.row, column=address.column)
                cell.value = value
                cell._style = copy(style)
        end = destinations[-1][-1]
        target_label = f"{origin.label}:{end.label}"
        return EditOutcome(
            message=f"Range {bounds.label} copied to {op.target_sheet}!{target_label}",
            target=target_label,
            details={
                "source_range": bounds.label,
                "target_sheet": op.target_sheet,
                "cells_copied": bounds.row_count * bounds.column_count,
            },
        )

    def _apply_duplicate_sheet(
        self, workbook: Workbook, op: DuplicateSheetOp
    ) -> EditOutcome:
        source = _sheet(workbook, op.sheet)
        _ensure_sheet_name_free(workbook, op.new_name)
        duplicate = workbook.copy_worksheet(source)
        _retitle(workbook, duplicate, op.new_name)
        return EditOutcome(
            message=f'Sheet "{op.sheet}" duplicated as "{op.new_name}"',
            target=op.new_name,
            details={"source_sheet": op.sheet, "new_name": op.new_name},
        )

    def _apply_create_table(self, workbook: Workbook, op: CreateTableOp) -> EditOutcome:
        sheet = _sheet(workbook, op.sheet)
        bounds = parse_range(op.range).normalized()
        label = bounds.label
        for other in workbook.worksheets:
            for name in other.tables:
                if name.casefold() == op.table_name.casefold():
                    raise InvalidValueError(f"Table name already exists: {name}")
        for name, ref in sheet.tables.items():
            if _ranges_overlap(bounds, parse_range(ref).normalized()):
                raise InvalidRangeError(
                    f"Range {label} intersects existing table '{name}' ({ref})."
                )
        warnings: list[str] = []
        headers: list[str] = []
        for offset, column in enumerate(
            range(bounds.start.column, bounds.end.column + 1), start=1
        ):
            cell = sheet.cell(row=bounds.start.row, column=column)
            if cell.value is None or not str(cell.value).strip():
                cell.value = f"Column{offset}"
                warnings.append(f"Empty header {cell.coordinate} named {cell.value}")
            elif not isinstance(cell.value, str):
                cell.value = str(cell.value)
            headers.append(cell.value)
        _check_unique_headers(headers, label)
        table = Table(displayName=op.table_name, ref=label)
        table.tableStyleInfo = TableStyleInfo(
            name=op.style,
            showFirstColumn=op.show_first_column,
            showLastColumn=op.show_last_column,
            showRowStripes=op.show_row_stripes,
            showColumnStripes=op.show_column_stripes,
        )
        sheet.add_table(table)
        return EditOutcome(
            message=f'Table "{op.table_name}" created on {label}',
            target=label,
            details={
                "table_name": op.table_name,
                "style": op.style,
                "columns": headers,
                "data_rows": bounds.row_count - 1,
            },
            warnings=warnings,
        )


def load_document(path: Path) -> Workbook:
    """Load a workbook, mapping openpyxl failures onto document errors."""
    if not path.is_file():
        raise DocumentNotFoundError(f"Workbook not found: {path}")
    try:
        if path.suffix.lower() == ".xlsm":
            return load_workbook(path, keep_vba=True)
        return load_workbook(path)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise DocumentUnreadableError(f"Cannot read {path.name}: {exc}") from exc


def last_used_row(sheet: Worksheet) -> int:
    """Return the last row holding a value, 0 for an empty sheet.

    ``max_row`` also counts rows that only carry styles, so trailing rows are
    checked for values.
    """
    for row_number in range(sheet.max_row, 0, -1):
        if any(cell.value is not None for cell in sheet[row_number]):
            return row_number
    return 0


def _save(workbook: Workbook, path: Path) -> None:
    try:
        workbook.save(path)
    except OSError as exc:
        raise FileWriteFailedError(f"Cannot write {path}: {exc}") from exc


def _sheet(workbook: Workbook, name: str) -> Worksheet:
    if name not in workbook.sheetnames:
        raise SheetNotFoundError(f"Sheet not found: {name}")
    return cast(Worksheet, workbook[name])


def _ensure_sheet_name_free(
    workbook: Workbook, name: str, *, excluding: Worksheet | None = None
) -> None:
    """Reject ``name`` when another sheet already uses it, ignoring case."""
    folded = name.casefold()
    for sheet in workbook.worksheets:
        if sheet is not excluding and sheet.title.casefold() == folded:
            raise SheetExistsError(f'Sheet "{sheet.title}" already exists')


def _retitle(workbook: Workbook, sheet: Worksheet, title: str) -> None:
    """Set ``sheet.title`` to exactly ``title``.

    openpyxl appends digits when a new title matches any sheet name without
    regard to case, including the sheet's own, so the sheet passes through a
    placeholder title first. Callers check for real clashes beforehand.
    """
    taken = {name.casefold() for name in workbook.sheetnames}
    placeholder = next(
        f"~xllive{index}" for index in itertools.count() if f"~xllive{index}" not in taken
    )
    sheet.title = placeholder
    sheet.title = title


def _ranges_overlap(first: RangeAddress, second: RangeAddress) -> bool:
    return not (
        first.end.row < second.start.row
        or second.end.row < first.start.row
        or first.end.column < second.start.column
        or second.end.column < first.start.column
    )


def _check_unique_headers(headers: list[str], label: str) -> None:
    seen: set[str] = set()
    for header in headers:
        folded = header.casefold()
        if folded in seen:
            raise InvalidValueError(
                f"Table range {label} has a duplicate header: {header!r}"
            )
        seen.add(folded)


def _checked(address: CellAddress) -> CellAddress:
    column_index_to_label(address.column)
    validate_row(address.row)
    return address


def _write_block(
    sheet: Worksheet, origin: CellAddress, data: Sequence[Sequence[CellScalar]]
) -> int:
    """Write a 2D block from ``origin``; all targets are validated first."""
    targets = [
        (_checked(origin.offset(row_offset, column_offset)), value)
        for row_offset, row in enumerate(data)
        for column_offset, value in enumerate(row)
    ]
    for address, value in targets:
        sheet.cell(row=address.row, column=address.column).value = value
    return len(targets)


def _column_bounds(start_column: str | int, count: int) -> tuple[str, str]:
    start = resolve_column(start_column)
    return column_index_to_label(start), column_index_to_label(start + count - 1)


def _shift_warnings(sheet: Worksheet, name: str) -> list[str]:
    if sheet.merged_cells.ranges:
        return [_SHIFT_WARNING.format(sheet=name)]
    return []


def _openpyxl_color(value: str) -> str:
    """Convert #RRGGBB / #AARRGGBB into openpyxl's ARGB form."""
    digits = value.lstrip("#").upper()
    return digits if len(digits) == 8 else f"FF{digits}"


def _side(spec: BorderSide | None, current: Side) -> Side:
    if spec is None:
        return current
    color = Color(rgb=_openpyxl_color(spec.color)) if spec.color else None
    return Side(style=spec.style, color=color)


def _apply_cell_format(cell: Any, cell_format: CellFormat) -> None:
    if cell_format.font is not None:
        spec = cell_format.font
        font = copy(cell.font)
        if spec.name is not None:
            font.name = spec.name
        if spec.size is not None:
            font.size = spec.size
        if spec.bold is not None:
            font.bold = spec.bold
        if spec.italic is not None:
            font.italic = spec.italic
        if spec.underline is not None:
            font.underline = "single" if spec.underline else None
        if spec.color is not None:
            font.color = Color(rgb=_openpyxl_color(spec.color))
        cell.font = cast(Font, font)
    if cell_format.fill is not None:
        fill = cell_format.fill
        start = _openpyxl_color(fill.fg_color) if fill.fg_color else None
        end = _openpyxl_color(fill.bg_color) if fill.bg_color else start
        cell.fill = PatternFill(fill_type=fill.pattern, start_color=start, end_color=end)
    if cell_format.alignment is not None:
        spec_alignment = cell_format.alignment
        alignment = copy(cell.alignment)
        if spec_alignment.horizontal is not None:
            alignment.horizontal = spec_alignment.horizontal
        if spec_alignment.vertical is not None:
            alignment.vertical = _VERTICAL_ALIGN_VALUES[spec_alignment.vertical]
        if spec_alignment.wrap_text is not None:
            alignment.wrap_text = spec_alignment.wrap_text
        cell.alignment = cast(Alignment, alignment)
    if cell_format.border is not None:
        spec_border = cell_format.border
        current = cell.border
        cell.border = Border(
            left=_side(spec_border.left, current.left),
            right=_side(spec_border.right, current.right),
            top=_side(spec_border.top, current.top),
            bottom=_side(spec_border.bottom, current.bottom),
        )
    if cell_format.number_format is not None:
        cell.number_format = cell_format.number_format


__all__ = ["OpenpyxlEngine", "last_used_row", "load_document"]
