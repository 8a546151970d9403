from __future__ import annotations

import pytest

from xllive.mcp.errors import InvalidAddressError, InvalidRangeError
from xllive.mcp.shared.a1 import (
    CellAddress,
    column_index_to_label,
    column_label_to_index,
    parse_cell_address,
    parse_range,
    parse_reference,
    resolve_column,
    validate_range,
    validate_row,
)


@pytest.mark.parametrize(
    ("index", "label"),
    [(1, "A"), (26, "Z"), (27, "AA"), (52, "AZ"), (53, "BA"), (702, "ZZ"), (703, "AAA"), (16384, "XFD")],
)
def test_column_conversion_known_values(index: int, label: str) -> None:
    assert column_index_to_label(index) == label
    assert column_label_to_index(label) == index


def test_column_roundtrip_full_grid() -> None:
    for index in range(1, 16385):
        assert column_label_to_index(column_index_to_label(index)) == index


@pytest.mark.parametrize("index", [0, -1, 16385])
def test_column_index_out_of_bounds(index: int) -> None:
    with pytest.raises(InvalidAddressError):
        column_index_to_label(index)


@pytest.mark.parametrize("label", ["XFE", "ZZZ", "AAAA", "a", "", "A1"])
def test_column_label_rejects_invalid(label: str) -> None:
    with pytest.raises(InvalidAddressError):
        column_label_to_index(label)


def test_parse_cell_address() -> None:
    assert parse_cell_address("A1") == CellAddress(column=1, row=1)
    assert parse_cell_address("AA27") == CellAddress(column=27, row=27)
    assert parse_cell_address("XFD1048576") == CellAddress(column=16384, row=1048576)


@pytest.mark.parametrize(
    "text", ["a1", "A1:B2", "A0", "1A", "A", "A1 ", " A1", "XFE1", "A1048577", "AAAA1"]
)
def test_parse_cell_address_rejects(text: str) -> None:
    with pytest.raises(InvalidAddressError):
        parse_cell_address(text)


def test_invalid_address_is_value_error_with_category() -> None:
    with pytest.raises(ValueError) as excinfo:
        parse_cell_address("a1")
    assert str(excinfo.value).startswith("Invalid input:")


def test_parse_range_and_normalize_reversed() -> None:
    parsed = parse_range("D10:A1")
    assert parsed.start == CellAddress(column=4, row=10)
    normalized = parsed.normalized()
    assert normalized.label == "A1:D10"
    assert parsed.row_count == 10
    assert parsed.column_count == 4


@pytest.mark.parametrize("text", ["A1", "a1:b2", "A1:B", "A1-B2", "A1:B2:C3", "A0:B2"])
def test_parse_range_rejects(text: str) -> None:
    with pytest.raises(InvalidRangeError):
        parse_range(text)


def test_parse_reference_accepts_single_cell() -> None:
    reference = parse_reference("C3")
    assert reference.start == reference.end == CellAddress(column=3, row=3)


def test_iter_rows_covers_normalized_range() -> None:
    rows = list(parse_range("B2:A1").iter_rows())
    assert [[cell.label for cell in row] for row in rows] == [["A1", "B1"], ["A2", "B2"]]


def test_offset_and_label() -> None:
    assert parse_cell_address("Z1").offset(1, 1).label == "AA2"


def test_validate_range_returns_normalized_label() -> None:
    assert validate_range("C3:A1") == "A1:C3"


def test_validate_row_bounds() -> None:
    assert validate_row(1) == 1
    with pytest.raises(InvalidAddressError):
        validate_row(0)
    with pytest.raises(InvalidAddressError):
        validate_row(1048577)


def test_resolve_column() -> None:
    assert resolve_column("AA") == 27
    assert resolve_column(5) == 5
    with pytest.raises(InvalidAddressError):
        resolve_column(True)
    with pytest.raises(InvalidAddressError):
        resolve_column(0)
