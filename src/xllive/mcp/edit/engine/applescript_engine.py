from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
from pathlib import Path
from typing import Any, cast

from ...errors import (
    InvalidAddressError,
    LiveChannelUnavailable,
    LiveCommandFailed,
    SheetExistsError,
    SheetNotFoundError,
)
from ...shared.a1 import (
    CellAddress,
    column_index_to_label,
    parse_cell_address,
    parse_range,
    parse_reference,
    resolve_column,
    validate_row,
)
from ..escaping import (
    format_value_for_command,
    normalize_formula,
    quote_applescript_string,
)
from ..executor import CommandExecutor
from ..models import (
    AddRowOp,
    CellFormat,
    CreateSheetOp,
    DeleteColumnsOp,
    DeleteRowsOp,
    DeleteSheetOp,
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
)
from ..types import CellScalar

logger = logging.getLogger(__name__)

_HORIZONTAL_ALIGN_CONSTANTS = {
    "left": "horizontal align left",
    "center": "horizontal align center",
    "right": "horizontal align right",
}
_VERTICAL_ALIGN_CONSTANTS = {
    "top": "vertical alignment top",
    "center": "vertical alignment center",
    "middle": "vertical alignment center",
    "bottom": "vertical alignment bottom",
}

Step = tuple[str, str]


class AppleScriptEngine:
    """Translate edit operations into AppleScript for a workbook open in Excel.

    Every method validates its addresses before any script text is built, and
    every string placed in a script goes through the AppleScript escaper.
    Commands run one at a time through the shared :class:`CommandExecutor`.
    """

    def __init__(self, executor: CommandExecutor) -> None:
        self._executor = executor
        self._handlers: dict[str, Callable[[Path, Any], EditOutcome]] = {
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
        }

    def supports(self, op_name: str) -> bool:
        """Return True when ``op_name`` has a live translation."""
        return op_name in self._handlers

    def apply(self, path: Path, op: object) -> EditOutcome:
        """Apply one edit operation to the open workbook named like ``path``."""
        op_name = cast(str, getattr(op, "op"))
        handler = self._handlers.get(op_name)
        if handler is None:
            raise LiveChannelUnavailable(f"{op_name} has no live translation.")
        return handler(path, op)

    # Commands

    def save(self, path: Path) -> None:
        """Save the open workbook in place through Excel."""
        logger.info("Saving %s via Excel", path.name)
        self._run(self._workbook_script(path, ["save"]))

    def list_sheets(self, path: Path) -> list[str]:
        """Return the worksheet names of the open workbook, in tab order."""
        output = self._run(
            self._workbook_script(
                path,
                [
                    "set sheetNames to name of every worksheet",
                    "set AppleScript's text item delimiters to linefeed",
                    "return sheetNames as text",
                ],
            )
        )
        return [name for name in output.splitlines() if name]

    def last_used_row(self, path: Path, sheet: str) -> int:
        """Return the last row of the used range, 0 for an empty sheet."""
        output = self._run(
            self._sheet_script(
                path,
                sheet,
                [
                    "set usedArea to used range",
                    "set lastRow to (first row index of usedArea) + (count of rows of usedArea) - 1",
                    'if lastRow is 1 and (count of cells of usedArea) is 1 and ((value of usedArea) as string) is "" then return 0',
                    "return lastRow",
                ],
            )
        )
        try:
            return int(output)
        except ValueError as exc:
            raise LiveCommandFailed(
                f"Unexpected used range response from Excel: {output!r}"
            ) from exc

    def update_cell(self, path: Path, sheet: str, cell: str, value: CellScalar) -> None:
        """Set one cell value; ``None`` clears the cell."""
        address = parse_cell_address(cell)
        line = f'set value of range "{address.label}" to {format_value_for_command(value)}'
        self._run(self._sheet_script(path, sheet, [line]))

    def write_range(
        self,
        path: Path,
        sheet: str,
        reference: str,
        data: Sequence[Sequence[CellScalar]],
    ) -> list[str]:
        """Write a 2D block cell by cell from the reference's top-left corner."""
        origin = parse_reference(reference).normalized().start
        steps: list[Step] = []
        for row_offset, row in enumerate(data):
            for column_offset, value in enumerate(row):
                target = _checked(origin.offset(row_offset, column_offset))
                steps.append(
                    (
                        target.label,
                        self._sheet_script(
                            path,
                            sheet,
                            [
                                f'set value of range "{target.label}" to '
                                f"{format_value_for_command(value)}"
                            ],
                        ),
                    )
                )
        return self._run_steps(steps)

    def add_row(self, path: Path, sheet: str, values: Sequence[CellScalar]) -> int:
        """Append values below the used range and return the row written."""
        if len(values) > 16_384:
            raise InvalidAddressError(
                f"Row has {len(values)} values; Excel allows 16384 columns."
            )
        target_row = validate_row(self.last_used_row(path, sheet) + 1)
        logger.info("Adding row %d to %s/%s", target_row, path.name, sheet)
        steps: list[Step] = []
        for index, value in enumerate(values, start=1):
            label = f"{column_index_to_label(index)}{target_row}"
            steps.append(
                (
                    label,
                    self._sheet_script(
                        path,
                        sheet,
                        [f'set value of range "{label}" to {format_value_for_command(value)}'],
                    ),
                )
            )
        self._run_steps(steps)
        return target_row

    def set_formula(self, path: Path, sheet: str, cell: str, formula: str) -> str:
        """Set a formula and return it with its leading ``=``."""
        address = parse_cell_address(cell)
        normalized = normalize_formula(formula)
        line = (
            f'set formula of range "{address.label}" to '
            f"{quote_applescript_string(normalized)}"
        )
        self._run(self._sheet_script(path, sheet, [line]))
        return normalized

    def format_cell(
        self, path: Path, sheet: str, cell: str, cell_format: CellFormat
    ) -> list[str]:
        """Apply each format property with its own command.

        Raises:
            LiveCommandFailed: With ``applied`` listing the properties set
                before the failing command.
        """
        address = parse_cell_address(cell)
        unsupported = cell_format.live_unsupported()
        if unsupported:
            raise LiveChannelUnavailable(
                f"Live formatting cannot apply: {', '.join(unsupported)}"
            )
        target = f'range "{address.label}"'
        lines = _format_commands(target, cell_format)
        return self._run_steps(
            [(name, self._sheet_script(path, sheet, [line])) for name, line in lines]
        )

    def set_column_width(
        self, path: Path, sheet: str, column: str | int, width: float
    ) -> str:
        """Set a column width in character units and return the column letter."""
        letter = column_index_to_label(resolve_column(column))
        line = (
            f'set column width of range "{letter}:{letter}" to '
            f"{format_value_for_command(float(width))}"
        )
        self._run(self._sheet_script(path, sheet, [line]))
        return letter

    def set_row_height(self, path: Path, sheet: str, row: int, height: float) -> None:
        """Set a row height in points."""
        validate_row(row)
        line = (
            f'set row height of range "{row}:{row}" to '
            f"{format_value_for_command(float(height))}"
        )
        self._run(self._sheet_script(path, sheet, [line]))

    def merge_cells(self, path: Path, sheet: str, range_ref: str) -> str:
        """Merge a range and return its normalized label."""
        label = parse_range(range_ref).normalized().label
        self._run(self._sheet_script(path, sheet, [f'merge range "{label}"']))
        return label

    def unmerge_cells(self, path: Path, sheet: str, range_ref: str) -> str:
        """Unmerge a range and return its normalized label."""
        label = parse_range(range_ref).normalized().label
        self._run(self._sheet_script(path, sheet, [f'unmerge range "{label}"']))
        return label

    def insert_rows(self, path: Path, sheet: str, start_row: int, count: int) -> str:
        """Insert whole rows, shifting existing rows down; returns the span."""
        span = _row_span(start_row, count)
        self._run(
            self._sheet_script(
                path, sheet, [f'insert into range "{span}" shift shift down']
            )
        )
        return span

    def delete_rows(self, path: Path, sheet: str, start_row: int, count: int) -> str:
        """Delete whole rows, shifting rows below up; returns the span."""
        span = _row_span(start_row, count)
        self._run(
            self._sheet_script(path, sheet, [f'delete range "{span}" shift shift up'])
        )
        return span

    def insert_columns(
        self, path: Path, sheet: str, start_column: str | int, count: int
    ) -> str:
        """Insert whole columns, shifting existing columns right; returns the span."""
        span = _column_span(start_column, count)
        self._run(
            self._sheet_script(
                path, sheet, [f'insert into range "{span}" shift shift to right']
            )
        )
        return span

    def delete_columns(
        self, path: Path, sheet: str, start_column: str | int, count: int
    ) -> str:
        """Delete whole columns, shifting columns to the left; returns the span."""
        span = _column_span(start_column, count)
        self._run(
            self._sheet_script(
                path, sheet, [f'delete range "{span}" shift shift to left']
            )
        )
        return span

    def create_sheet(self, path: Path, sheet: str) -> None:
        """Add a worksheet at the end of the workbook.

        Raises:
            SheetExistsError: If any sheet already has the name, ignoring case.
        """
        clash = _find_sheet(self.list_sheets(path), sheet)
        if clash is not None:
            raise SheetExistsError(f'Sheet "{clash}" already exists')
        line = (
            "make new worksheet at end with properties "
            f"{{name:{quote_applescript_string(sheet)}}}"
        )
        self._run(self._workbook_script(path, [line]))

    def delete_sheet(self, path: Path, sheet: str) -> None:
        """Delete a worksheet with Excel's confirmation alert suppressed."""
        if _find_sheet(self.list_sheets(path), sheet) is None:
            raise SheetNotFoundError(f"Sheet not found: {sheet}")
        self._run(
            self._application_script(
                [
                    "set display alerts to false",
                    f"tell workbook {quote_applescript_string(path.name)}",
                    f"  delete worksheet {quote_applescript_string(sheet)}",
                    "end tell",
                    "set display alerts to true",
                ]
            )
        )

    def rename_sheet(self, path: Path, sheet: str, new_name: str) -> None:
        """Rename a worksheet; a change of case alone is allowed."""
        existing = self.list_sheets(path)
        current = _find_sheet(existing, sheet)
        if current is None:
            raise SheetNotFoundError(f"Sheet not found: {sheet}")
        clash = _find_sheet([name for name in existing if name != current], new_name)
        if clash is not None:
            raise SheetExistsError(f'Sheet "{clash}" already exists')
        line = (
            f"set name of worksheet {quote_applescript_string(sheet)} to "
            f"{quote_applescript_string(new_name)}"
        )
        self._run(self._workbook_script(path, [line]))

    # Operation handlers

    def _apply_update_cell(self, path: Path, op: UpdateCellOp) -> EditOutcome:
        self.update_cell(path, op.sheet, op.cell, op.value)
        return EditOutcome(
            message=f"Cell {op.cell} updated",
            target=op.cell,
            details={"new_value": op.value},
        )

    def _apply_write_range(self, path: Path, op: WriteRangeOp) -> EditOutcome:
        written = self.write_range(path, op.sheet, op.range, op.data)
        return EditOutcome(
            message=f"Range {op.range} updated",
            target=op.range,
            details={
                "rows_written": len(op.data),
                "columns_written": max(len(row) for row in op.data),
                "cells_written": len(written),
            },
        )

    def _apply_add_row(self, path: Path, op: AddRowOp) -> EditOutcome:
        row_number = self.add_row(path, op.sheet, op.values)
        return EditOutcome(
            message=f"Row added at position {row_number}",
            target=str(row_number),
            details={"row_number": row_number, "cells_written": len(op.values)},
        )

    def _apply_set_formula(self, path: Path, op: SetFormulaOp) -> EditOutcome:
        formula = self.set_formula(path, op.sheet, op.cell, op.formula)
        return EditOutcome(
            message=f"Formula set in cell {op.cell}",
            target=op.cell,
            details={"formula": formula},
        )

    def _apply_format_cell(self, path: Path, op: FormatCellOp) -> EditOutcome:
        applied = self.format_cell(path, op.sheet, op.cell, op.format)
        return EditOutcome(
            message=f"Cell {op.cell} formatted",
            target=op.cell,
            details={
                "applied_formats": op.format.applied_sections(),
                "applied_properties": applied,
            },
        )

    def _apply_set_column_width(self, path: Path, op: SetColumnWidthOp) -> EditOutcome:
        letter = self.set_column_width(path, op.sheet, op.column, op.width)
        return EditOutcome(
            message=f"Column {letter} width set to {op.width:g}",
            target=letter,
            details={"column": letter, "width": op.width},
        )

    def _apply_set_row_height(self, path: Path, op: SetRowHeightOp) -> EditOutcome:
        self.set_row_height(path, op.sheet, op.row, op.height)
        return EditOutcome(
            message=f"Row {op.row} height set to {op.height:g}",
            target=str(op.row),
            details={"row": op.row, "height": op.height},
        )

    def _apply_merge_cells(self, path: Path, op: MergeCellsOp) -> EditOutcome:
        label = self.merge_cells(path, op.sheet, op.range)
        return EditOutcome(message=f"Cells merged in range {label}", target=label)

    def _apply_unmerge_cells(self, path: Path, op: UnmergeCellsOp) -> EditOutcome:
        label = self.unmerge_cells(path, op.sheet, op.range)
        return EditOutcome(message=f"Cells unmerged in range {label}", target=label)

    def _apply_insert_rows(self, path: Path, op: InsertRowsOp) -> EditOutcome:
        span = self.insert_rows(path, op.sheet, op.start_row, op.count)
        return EditOutcome(
            message=f"Inserted {op.count} row(s) at row {op.start_row}",
            target=span,
            details={"start_row": op.start_row, "count": op.count},
        )

    def _apply_delete_rows(self, path: Path, op: DeleteRowsOp) -> EditOutcome:
        span = self.delete_rows(path, op.sheet, op.start_row, op.count)
        return EditOutcome(
            message=f"Deleted {op.count} row(s) starting from row {op.start_row}",
            target=span,
            details={"start_row": op.start_row, "count": op.count},
        )

    def _apply_insert_columns(self, path: Path, op: InsertColumnsOp) -> EditOutcome:
        span = self.insert_columns(path, op.sheet, op.start_column, op.count)
        return EditOutcome(
            message=f"Inserted {op.count} column(s) at column {span.split(':')[0]}",
            target=span,
            details={"start_column": span.split(":")[0], "count": op.count},
        )

    def _apply_delete_columns(self, path: Path, op: DeleteColumnsOp) -> EditOutcome:
        span = self.delete_columns(path, op.sheet, op.start_column, op.count)
        return EditOutcome(
            message=f"Deleted {op.count} column(s) starting from column {span.split(':')[0]}",
            target=span,
            details={"start_column": span.split(":")[0], "count": op.count},
        )

    def _apply_create_sheet(self, path: Path, op: CreateSheetOp) -> EditOutcome:
        self.create_sheet(path, op.sheet)
        return EditOutcome(message=f'Sheet "{op.sheet}" created', target=op.sheet)

    def _apply_delete_sheet(self, path: Path, op: DeleteSheetOp) -> EditOutcome:
        self.delete_sheet(path, op.sheet)
        return EditOutcome(message=f'Sheet "{op.sheet}" deleted', target=op.sheet)

    def _apply_rename_sheet(self, path: Path, op: RenameSheetOp) -> EditOutcome:
        self.rename_sheet(path, op.sheet, op.new_name)
        return EditOutcome(
            message=f'Sheet renamed from "{op.sheet}" to "{op.new_name}"',
            target=op.new_name,
            details={"old_name": op.sheet, "new_name": op.new_name},
        )

    # Script assembly

    def _application_script(self, body: list[str]) -> str:
        application = quote_applescript_string(self._executor.settings.application)
        return "\n".join(
            [f"tell application {application}", *_indent(body), "end tell"]
        )

    def _workbook_script(self, path: Path, body: list[str]) -> str:
        return self._application_script(
            [
                f"tell workbook {quote_applescript_string(path.name)}",
                *_indent(body),
                "end tell",
            ]
        )

    def _sheet_script(self, path: Path, sheet: str, body: list[str]) -> str:
        return self._workbook_script(
            path,
            [
                f"tell worksheet {quote_applescript_string(sheet)}",
                *_indent(body),
                "end tell",
            ],
        )

    def _run(self, script: str) -> str:
        return self._executor.execute(script)

    def _run_steps(self, steps: list[Step]) -> list[str]:
        """Run independent commands in order, reporting partial progress on failure."""
        applied: list[str] = []
        for name, script in steps:
            try:
                self._run(script)
            except LiveCommandFailed as exc:
                raise LiveCommandFailed(
                    f"{exc.message} (failed at {name}; "
                    f"{len(applied)} of {len(steps)} step(s) already applied)",
                    attempts=exc.attempts,
                    timed_out=exc.timed_out,
                    returncode=exc.returncode,
                    applied=applied,
                ) from exc
            applied.append(name)
        return applied


def _indent(lines: list[str]) -> list[str]:
    return [f"  {line}" for line in lines]


def _find_sheet(names: list[str], name: str) -> str | None:
    """Return the sheet Excel would match for ``name``; lookups ignore case."""
    folded = name.casefold()
    return next((candidate for candidate in names if candidate.casefold() == folded), None)


def _checked(address: CellAddress) -> CellAddress:
    """Reject addresses pushed past the grid by an offset."""
    column_index_to_label(address.column)
    validate_row(address.row)
    return address


def _row_span(start_row: int, count: int) -> str:
    validate_row(start_row)
    end_row = validate_row(start_row + count - 1)
    return f"{start_row}:{end_row}"


def _column_span(start_column: str | int, count: int) -> str:
    start = resolve_column(start_column)
    first = column_index_to_label(start)
    last = column_index_to_label(start + count - 1)
    return f"{first}:{last}"


def _rgb_list(color: str) -> str:
    """Convert #RRGGBB or #AARRGGBB into an AppleScript ``{r, g, b}`` list."""
    digits = color.lstrip("#")[-6:]
    red, green, blue = (int(digits[index : index + 2], 16) for index in (0, 2, 4))
    return f"{{{red}, {green}, {blue}}}"


def _format_commands(target: str, cell_format: CellFormat) -> list[Step]:
    commands: list[Step] = []
    font = cell_format.font
    if font is not None:
        if font.name is not None:
            commands.append(
                (
                    "font.name",
                    f"set name of font object of {target} to "
                    f"{quote_applescript_string(font.name)}",
                )
            )
        if font.size is not None:
            commands.append(
                (
                    "font.size",
                    f"set font size of font object of {target} to "
                    f"{format_value_for_command(float(font.size))}",
                )
            )
        if font.bold is not None:
            commands.append(
                (
                    "font.bold",
                    f"set bold of font object of {target} to "
                    f"{format_value_for_command(font.bold)}",
                )
            )
        if font.italic is not None:
            commands.append(
                (
                    "font.italic",
                    f"set italic of font object of {target} to "
                    f"{format_value_for_command(font.italic)}",
                )
            )
        if font.color is not None:
            commands.append(
                (
                    "font.color",
                    f"set color of font object of {target} to {_rgb_list(font.color)}",
                )
            )
    fill = cell_format.fill
    if fill is not None and fill.fg_color is not None:
        commands.append(
            (
                "fill.fg_color",
                f"set color of interior object of {target} to {_rgb_list(fill.fg_color)}",
            )
        )
    alignment = cell_format.alignment
    if alignment is not None:
        if alignment.horizontal is not None:
            commands.append(
                (
                    "alignment.horizontal",
                    f"set horizontal alignment of {target} to "
                    f"{_HORIZONTAL_ALIGN_CONSTANTS[alignment.horizontal]}",
                )
            )
        if alignment.vertical is not None:
            commands.append(
                (
                    "alignment.vertical",
                    f"set vertical alignment of {target} to "
                    f"{_VERTICAL_ALIGN_CONSTANTS[alignment.vertical]}",
                )
            )
        if alignment.wrap_text is not None:
            commands.append(
                (
                    "alignment.wrap_text",
                    f"set wrap text of {target} to "
                    f"{format_value_for_command(alignment.wrap_text)}",
                )
            )
    if cell_format.number_format is not None:
        commands.append(
            (
                "number_format",
                f"set number format of {target} to "
                f"{quote_applescript_string(cell_format.number_format)}",
            )
        )
    return commands


__all__ = ["AppleScriptEngine"]
