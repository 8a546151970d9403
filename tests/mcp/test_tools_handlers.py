from __future__ import annotations

from pathlib import Path

from openpyxl import Workbook, load_workbook
import pytest

from xllive.mcp import tools
from xllive.mcp.edit.models import EditConfig, EditRequest, LiveSettings, OperationResult
from xllive.mcp.edit.service import ExecutionRouter
from xllive.mcp.io import PathPolicy
from xllive.mcp.sheet_reader import ReadSheetRequest, ReadSheetResult


class _RecordingRouter:
    def __init__(self) -> None:
        self.requests: list[EditRequest] = []

    def execute(self, request: EditRequest) -> OperationResult:
        self.requests.append(request)
        return OperationResult(
            op=request.op.op,
            method="live",
            message="Cell A1 updated",
            note="Changes are visible immediately in Excel.",
            file_path=str(request.file_path),
            sheet=request.op.sheet,
            target="A1",
            details={"new_value": 1},
            warnings=["w"],
        )


def test_run_edit_tool_builds_request_and_maps_result() -> None:
    router = _RecordingRouter()
    payload = tools.EditToolInput.model_validate(
        {
            "file_path": "reports/book.xlsx",
            "op": {"op": "update_cell", "sheet": "Sheet1", "cell": "A1", "value": 1},
            "create_backup": True,
        }
    )
    output = tools.run_edit_tool(payload, router=router)  # type: ignore[arg-type]
    request = router.requests[0]
    assert request.file_path == Path("reports/book.xlsx")
    assert request.create_backup is True
    assert output.method == "live"
    assert output.target == "A1"
    assert output.details == {"new_value": 1}
    assert output.warnings == ["w"]


def test_edit_tool_input_rejects_unknown_op() -> None:
    with pytest.raises(ValueError):
        tools.EditToolInput.model_validate(
            {"file_path": "book.xlsx", "op": {"op": "explode", "sheet": "Sheet1"}}
        )


def test_run_edit_tool_end_to_end(tmp_path: Path) -> None:
    workbook = Workbook()
    sheet = workbook.active
    assert sheet is not None
    sheet.title = "Sheet1"
    workbook.save(tmp_path / "book.xlsx")
    workbook.close()
    policy = PathPolicy(root=tmp_path)
    router = ExecutionRouter(
        EditConfig(live=LiveSettings(enabled=False)), policy=policy
    )
    payload = tools.EditToolInput.model_validate(
        {
            "file_path": "book.xlsx",
            "op": {"op": "set_formula", "sheet": "Sheet1", "cell": "B2", "formula": "SUM(A1:A3)"},
        }
    )
    output = tools.run_edit_tool(payload, router=router)
    assert output.method == "file"
    assert output.details["formula"] == "=SUM(A1:A3)"
    saved = load_workbook(tmp_path / "book.xlsx")
    assert saved["Sheet1"]["B2"].value == "=SUM(A1:A3)"
    saved.close()


def test_run_read_sheet_tool_builds_request(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _fake_read_sheet(
        request: ReadSheetRequest, *, policy: PathPolicy | None = None
    ) -> ReadSheetResult:
        captured["request"] = request
        captured["policy"] = policy
        return ReadSheetResult(sheet=request.sheet)

    monkeypatch.setattr(tools, "read_sheet", _fake_read_sheet)
    payload = tools.ReadSheetToolInput(
        file_path="book.xlsx", sheet="Data", range="B2:C4", max_rows=10
    )
    tools.run_read_sheet_tool(payload)
    request = captured["request"]
    assert isinstance(request, ReadSheetRequest)
    assert request.file_path == Path("book.xlsx")
    assert request.range == "B2:C4"
    assert request.max_rows == 10
    assert captured["policy"] is None


def test_query_tools_run_against_policy_root(tmp_path: Path) -> None:
    workbook = Workbook()
    sheet = workbook.active
    assert sheet is not None
    sheet.title = "Orders"
    sheet.append(["customer", "total"])
    sheet.append(["Acme", 120])
    sheet.append(["Globex", 80])
    workbook.save(tmp_path / "orders.xlsx")
    workbook.close()
    policy = PathPolicy(root=tmp_path)

    found = tools.run_search_values_tool(
        tools.SearchValuesToolInput(file_path="orders.xlsx", sheet="Orders", query="acme"),
        policy=policy,
    )
    assert [match.cell for match in found.matches] == ["A2"]

    filtered = tools.run_filter_rows_tool(
        tools.FilterRowsToolInput(
            file_path="orders.xlsx",
            sheet="Orders",
            column="B",
            condition="greater_than",
            value=100,
        ),
        policy=policy,
    )
    assert filtered.row_numbers == [2]
    assert filtered.rows == [["Acme", 120]]

    info = tools.run_get_data_validation_tool(
        tools.GetDataValidationToolInput(file_path="orders.xlsx", sheet="Orders", cell="A1"),
        policy=policy,
    )
    assert info.has_validation is False
