from __future__ import annotations

from collections.abc import Iterator
import re
from typing import NamedTuple

from xllive.mcp.errors import InvalidAddressError, InvalidRangeError

MAX_COLUMNS = 16_384
MAX_ROWS = 1_048_576

_A1_PATTERN = re.compile(r"^([A-Z]+)(\d+)$")
_A1_RANGE_PATTERN = re.compile(r"^([A-Z]+\d+):([A-Z]+\d+)$")
_COLUMN_LABEL_PATTERN = re.compile(r"^[A-Z]{1,3}$")


class CellAddress(NamedTuple):
    """1-based cell coordinate."""

    column: int
    row: int

    @property
    def label(self) -> str:
        """Return the A1 form of this address."""
        return f"{column_index_to_label(self.column)}{self.row}"

    def offset(self, rows: int, columns: int) -> CellAddress:
        """Return the address shifted by the given row/column deltas."""
        return CellAddress(column=self.column + columns, row=self.row + rows)


class RangeAddress(NamedTuple):
    """Rectangular range between two cell addresses, as written by the caller."""

    start: CellAddress
    end: CellAddress

    def normalized(self) -> RangeAddress:
        """Return the range with start at top-left and end at bottom-right."""
        return RangeAddress(
            start=CellAddress(
                column=min(self.start.column, self.end.column),
                row=min(self.start.row, self.end.row),
            ),
            end=CellAddress(
                column=max(self.start.column, self.end.column),
                row=max(self.start.row, self.end.row),
            ),
        )

    @property
    def label(self) -> str:
        return f"{self.start.label}:{self.end.label}"

    @property
    def row_count(self) -> int:
        return abs(self.end.row - self.start.row) + 1

    @property
    def column_count(self) -> int:
        return abs(self.end.column - self.start.column) + 1

    def iter_rows(self) -> Iterator[list[CellAddress]]:
        """Yield the cell addresses of the normalized range row by row."""
        bounds = self.normalized()
        for row in range(bounds.start.row, bounds.end.row + 1):
            yield [
                CellAddress(column=column, row=row)
                for column in range(bounds.start.column, bounds.end.column + 1)
            ]


def column_label_to_index(label: str) -> int:
    """Convert Excel-style column label (A/AA) to 1-based index.

    Column letters are bijective base-26: there is no zero digit, so each
    letter contributes ``ord(char) - ord("A") + 1``.
    """
    if not _COLUMN_LABEL_PATTERN.match(label):
        raise InvalidAddressError(
            f"Invalid column label: {label!r}. Expected 1-3 uppercase letters (A..XFD)."
        )
    index = 0
    for char in label:
        index = index * 26 + (ord(char) - ord("A") + 1)
    if index > MAX_COLUMNS:
        raise InvalidAddressError(
            f"Column {label} exceeds Excel's maximum column (XFD)."
        )
    return index


def column_index_to_label(index: int) -> str:
    """Convert 1-based column index to Excel-style column label."""
    if index < 1 or index > MAX_COLUMNS:
        raise InvalidAddressError(
            f"Column index {index} must be between 1 and {MAX_COLUMNS}."
        )
    chunks: list[str] = []
    current = index
    while current > 0:
        current -= 1
        chunks.append(chr(ord("A") + (current % 26)))
        current //= 26
    return "".join(reversed(chunks))


def parse_cell_address(value: str) -> CellAddress:
    """Parse an A1 cell address such as ``"AA27"``.

    Raises:
        InvalidAddressError: If the text is not exactly ``LETTERS DIGITS`` in
            uppercase, or the coordinate is outside the worksheet grid.
    """
    match = _A1_PATTERN.match(value)
    if match is None:
        raise InvalidAddressError(
            f"Invalid cell address format: {value!r}. "
            'Expected format like "A1" or "AA100".'
        )
    letters, digits = match.groups()
    if len(letters) > 3:
        raise InvalidAddressError(
            f"Column {letters} exceeds Excel's maximum column (XFD)."
        )
    column = column_label_to_index(letters)
    row = int(digits)
    validate_row(row)
    return CellAddress(column=column, row=row)


def parse_range(value: str) -> RangeAddress:
    """Parse an ``A1:D10`` range reference.

    Reversed ranges such as ``D10:A1`` are accepted as written; use
    :meth:`RangeAddress.normalized` to get top-left/bottom-right order.
    """
    match = _A1_RANGE_PATTERN.match(value)
    if match is None:
        raise InvalidRangeError(
            f"Invalid range format: {value!r}. Expected format like \"A1:B10\"."
        )
    start_text, end_text = match.groups()
    try:
        start = parse_cell_address(start_text)
        end = parse_cell_address(end_text)
    except InvalidAddressError as exc:
        raise InvalidRangeError(f"Invalid range {value!r}: {exc.message}") from exc
    return RangeAddress(start=start, end=end)


def parse_reference(value: str) -> RangeAddress:
    """Parse either a single cell or a range into a range address."""
    if ":" in value:
        return parse_range(value)
    cell = parse_cell_address(value)
    return RangeAddress(start=cell, end=cell)


def validate_cell_address(value: str) -> str:
    """Validate an A1 address and return it unchanged."""
    parse_cell_address(value)
    return value


def validate_range(value: str) -> str:
    """Validate an A1 range and return it in normalized order."""
    return parse_range(value).normalized().label


def validate_row(row: int) -> int:
    """Validate a 1-based worksheet row number."""
    if row < 1 or row > MAX_ROWS:
        raise InvalidAddressError(f"Row {row} must be between 1 and {MAX_ROWS}.")
    return row


def resolve_column(value: str | int) -> int:
    """Resolve a column given as letters or 1-based index into an index."""
    if isinstance(value, bool):
        raise InvalidAddressError(f"Invalid column: {value!r}")
    if isinstance(value, int):
        column_index_to_label(value)
        return value
    return column_label_to_index(value)


__all__ = [
    "MAX_COLUMNS",
    "MAX_ROWS",
    "CellAddress",
    "RangeAddress",
    "column_index_to_label",
    "column_label_to_index",
    "parse_cell_address",
    "parse_range",
    "parse_reference",
    "resolve_column",
    "validate_cell_address",
    "validate_range",
    "validate_row",
]
