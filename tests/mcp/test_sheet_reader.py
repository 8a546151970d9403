from __future__ import annotations

from datetime import datetime
from pathlib import Path

from openpyxl import Workbook
from openpyxl.worksheet.datavalidation import DataValidation
from pydantic import ValidationError
import pytest

from xllive.mcp.errors import DocumentNotFoundError, EditError, SheetNotFoundError
from xllive.mcp.io import PathPolicy
from xllive.mcp.sheet_reader import (
    FilterRowsRequest,
    GetCellRequest,
    GetDataValidationRequest,
    GetMergedCellsRequest,
    ReadSheetRequest,
    ReadWorkbookRequest,
    SearchValuesRequest,
    filter_rows,
    get_cell,
    get_data_validation,
    get_merged_cells,
    read_sheet,
    read_workbook,
    search_values,
)


def _create_workbook(path: Path) -> None:
    workbook = Workbook()
    sheet = workbook.active
    assert sheet is not None
    sheet.title = "Data"
    sheet["A1"] = "name"
    sheet["B1"] = "amount"
    sheet["A2"] = "apple"
    sheet["B2"] = 3
    sheet["A3"] = "pear"
    sheet["B3"] = 5
    sheet["B4"] = "=SUM(B2:B3)"
    sheet["C1"] = datetime(2024, 4, 1, 9, 30)
    sheet["B2"].number_format = "0.00"
    workbook.create_sheet("Empty")
    layout = workbook.create_sheet("Layout")
    layout.merge_cells("D1:E2")
    workbook.save(path)
    workbook.close()


def test_read_workbook_lists_sheets(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = read_workbook(ReadWorkbookRequest(file_path=path))
    assert result.active_sheet == "Data"
    assert [sheet.name for sheet in result.sheets] == ["Data", "Empty", "Layout"]
    assert result.sheets[0].max_row == 4


def test_read_sheet_whole_used_area(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = read_sheet(ReadSheetRequest(file_path=path, sheet="Data"))
    assert result.range == "A1:C4"
    assert result.rows[0][:3] == ["name", "amount", "2024-04-01T09:30:00"]
    assert result.rows[3][1] == "=SUM(B2:B3)"
    assert result.truncated is False


def test_read_sheet_range_and_truncation(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = read_sheet(
        ReadSheetRequest(file_path=path, sheet="Data", range="B3:A1", max_rows=2)
    )
    assert result.range == "A1:B3"
    assert result.rows == [["name", "amount"], ["apple", 3]]
    assert result.truncated is True
    assert result.warnings


def test_read_sheet_empty(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = read_sheet(ReadSheetRequest(file_path=path, sheet="Empty"))
    assert result.rows == []
    assert result.range is None


def test_get_cell_reports_format_and_formula(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    plain = get_cell(GetCellRequest(file_path=path, sheet="Data", cell="B2"))
    assert plain.value == 3
    assert plain.formula is None
    assert plain.number_format == "0.00"
    formula = get_cell(GetCellRequest(file_path=path, sheet="Data", cell="B4"))
    assert formula.formula == "=SUM(B2:B3)"
    # openpyxl never calculates, so a file it wrote has no cached result.
    assert formula.value is None


def test_get_merged_cells(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = get_merged_cells(GetMergedCellsRequest(file_path=path, sheet="Layout"))
    assert result.ranges == ["D1:E2"]


def test_reader_errors(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    with pytest.raises(SheetNotFoundError):
        read_sheet(ReadSheetRequest(file_path=path, sheet="Nope"))
    with pytest.raises(DocumentNotFoundError):
        read_workbook(ReadWorkbookRequest(file_path=tmp_path / "missing.xlsx"))


def test_reader_respects_policy(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    with pytest.raises(EditError):
        read_workbook(ReadWorkbookRequest(file_path=path), policy=PathPolicy(root=root))


def test_search_values_ignores_case_by_default(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = search_values(SearchValuesRequest(file_path=path, sheet="Data", query="P"))
    assert [match.cell for match in result.matches] == ["A2", "A3"]
    assert result.matches[0].value == "apple"
    assert result.matches[1].row == 3
    assert result.matches[1].column == 1

    strict = search_values(
        SearchValuesRequest(file_path=path, sheet="Data", query="P", case_sensitive=True)
    )
    assert strict.matches == []


def test_search_values_within_range(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = search_values(
        SearchValuesRequest(file_path=path, sheet="Data", query="a", range="A1:A4")
    )
    assert [match.cell for match in result.matches] == ["A1", "A2", "A3"]


def test_search_values_matches_numbers_and_truncates(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = search_values(
        SearchValuesRequest(file_path=path, sheet="Data", query="3", max_results=2)
    )
    # C1 holds a datetime (09:30), B2 the number 3, B4 a formula naming B3.
    assert [match.cell for match in result.matches] == ["C1", "B2"]
    assert result.matches[1].value == 3
    assert result.truncated is True


def test_filter_rows_numeric_conditions(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)
    result = filter_rows(
        FilterRowsRequest(
            file_path=path, sheet="Data", column="B", condition="greater_than", value=3
        )
    )
    assert result.column == "B"
    assert result.row_numbers == [3]
    assert result.rows == [["pear", 5, None]]

    below = filter_rows(
        FilterRowsRequest(
            file_path=path, sheet="Data", column=2, condition="less_than", value="4"
        )
    )
    assert below.row_numbers == [2]


def test_filter_rows_text_conditions(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    _create_workbook(path)

    def _rows(condition: str, column: str, value: object = None) -> list[int]:
        request = FilterRowsRequest.model_validate(
            {
                "file_path": path,
                "sheet": "Data",
                "column": column,
                "condition": condition,
                "value": value,
            }
        )
        return filter_rows(request).row_numbers

    assert _rows("contains", "A", "AP") == [2]
    assert _rows("equals", "B", 5) == [3]
    assert _rows("equals", "B", "5") == [3]
    assert _rows("not_empty", "C") == [1]


def test_filter_rows_request_requires_usable_value(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    with pytest.raises(ValidationError):
        FilterRowsRequest(file_path=path, sheet="Data", column="B", condition="equals")
    with pytest.raises(ValidationError):
        FilterRowsRequest(
            file_path=path, sheet="Data", column="B", condition="greater_than", value="x"
        )
    with pytest.raises(ValidationError):
        FilterRowsRequest(
            file_path=path, sheet="Data", column="XFE", condition="not_empty"
        )


def test_get_data_validation_reads_list_rule(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    workbook = Workbook()
    sheet = workbook.active
    assert sheet is not None
    sheet.title = "Form"
    rule = DataValidation(
        type="list",
        formula1='"Yes,No"',
        allow_blank=True,
        showErrorMessage=True,
        error="Pick Yes or No",
    )
    sheet.add_data_validation(rule)
    rule.add("B2:B5")
    workbook.save(path)
    workbook.close()

    covered = get_data_validation(
        GetDataValidationRequest(file_path=path, sheet="Form", cell="B3")
    )
    assert covered.has_validation is True
    assert covered.type == "list"
    assert covered.formula1 == '"Yes,No"'
    assert covered.allow_blank is True
    assert covered.error == "Pick Yes or No"
    assert covered.applies_to == "B2:B5"

    outside = get_data_validation(
        GetDataValidationRequest(file_path=path, sheet="Form", cell="A1")
    )
    assert outside.has_validation is False
    assert outside.type is None
