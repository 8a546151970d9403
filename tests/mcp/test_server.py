from __future__ import annotations

from collections.abc import Awaitable, Callable
import importlib
from pathlib import Path
from typing import Any, cast

import pytest

from xllive.mcp import server
from xllive.mcp.edit.service import ExecutionRouter
from xllive.mcp.io import PathPolicy
from xllive.mcp.sheet_reader import (
    CellReadItem,
    DataValidationInfo,
    FilterRowsResult,
    MergedCellsResult,
    ReadSheetResult,
    ReadWorkbookResult,
    SearchValuesResult,
)
from xllive.mcp.tools import (
    EditToolInput,
    EditToolOutput,
    FilterRowsToolInput,
    GetCellToolInput,
    GetDataValidationToolInput,
    GetMergedCellsToolInput,
    ReadSheetToolInput,
    ReadWorkbookToolInput,
    SearchValuesToolInput,
)
from xllive.mcp.validation import FormulaCheckResult, RangeCheckResult

anyio: Any = pytest.importorskip("anyio")

ToolFunc = Callable[..., object] | Callable[..., Awaitable[object]]


class DummyApp:
    def __init__(self) -> None:
        self.tools: dict[str, ToolFunc] = {}

    def tool(self, *, name: str) -> Callable[[ToolFunc], ToolFunc]:
        def decorator(func: ToolFunc) -> ToolFunc:
            self.tools[name] = func
            return func

        return decorator


async def _call_async(
    func: Callable[..., Awaitable[object]],
    kwargs: dict[str, object],
) -> object:
    return await func(**kwargs)


async def _fake_run_sync(func: Callable[[], object]) -> object:
    return func()


def test_parse_args_defaults(tmp_path: Path) -> None:
    config = server._parse_args(["--root", str(tmp_path)])
    assert config.root == tmp_path
    assert config.deny_globs == []
    assert config.extra_roots == []
    assert config.log_level == "INFO"
    assert config.log_file is None
    assert config.live is True
    assert config.backup is False
    assert config.command_timeout == 10.0
    assert config.command_retries == 3


def test_parse_args_with_options(tmp_path: Path) -> None:
    log_file = tmp_path / "log.txt"
    config = server._parse_args(
        [
            "--root",
            str(tmp_path),
            "--deny-glob",
            "**/*.tmp",
            "--deny-glob",
            "secret/**",
            "--allow-dir",
            str(tmp_path / "shared"),
            "--allow-dir",
            str(tmp_path / "archive"),
            "--log-level",
            "DEBUG",
            "--log-file",
            str(log_file),
            "--no-live",
            "--backup",
            "--command-timeout",
            "4.5",
            "--command-retries",
            "5",
        ]
    )
    assert config.deny_globs == ["**/*.tmp", "secret/**"]
    assert config.extra_roots == [tmp_path / "shared", tmp_path / "archive"]
    assert config.log_level == "DEBUG"
    assert config.log_file == log_file
    assert config.live is False
    assert config.backup is True
    assert config.command_timeout == 4.5
    assert config.command_retries == 5


def test_server_config_to_edit_config(tmp_path: Path) -> None:
    config = server.ServerConfig(
        root=tmp_path, live=False, backup=True, command_timeout=2.0, command_retries=1
    )
    edit_config = config.to_edit_config()
    assert edit_config.live.enabled is False
    assert edit_config.create_backup is True
    assert edit_config.live.command_retry.timeout == 2.0
    assert edit_config.live.command_retry.max_attempts == 1
    assert edit_config.fallback_to_file is True


def test_import_mcp_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    def _raise(_: str) -> None:
        raise ModuleNotFoundError("mcp")

    monkeypatch.setattr(importlib, "import_module", _raise)
    with pytest.raises(RuntimeError, match=r"xllive\[mcp\]"):
        server._import_mcp()


def test_register_tools_names(tmp_path: Path) -> None:
    app = DummyApp()
    policy = PathPolicy(root=tmp_path)
    server._register_tools(app, policy, ExecutionRouter(policy=policy))  # type: ignore[arg-type]
    assert sorted(app.tools) == [
        "xllive_edit",
        "xllive_filter_rows",
        "xllive_get_cell",
        "xllive_get_data_validation",
        "xllive_get_merged_cells",
        "xllive_read_sheet",
        "xllive_read_workbook",
        "xllive_search_values",
        "xllive_validate_formula",
        "xllive_validate_range",
    ]


def test_edit_tool_passes_router_and_parses_op(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    app = DummyApp()
    policy = PathPolicy(root=tmp_path)
    router = ExecutionRouter(policy=policy)
    calls: dict[str, tuple[object, ...]] = {}

    def fake_run_edit_tool(
        payload: EditToolInput, *, router: ExecutionRouter
    ) -> EditToolOutput:
        calls["edit"] = (payload, router)
        return EditToolOutput(
            op=payload.op.op,
            method="file",
            message="ok",
            file_path=payload.file_path,
        )

    monkeypatch.setattr(server, "run_edit_tool", fake_run_edit_tool)
    monkeypatch.setattr(anyio.to_thread, "run_sync", _fake_run_sync)

    server._register_tools(app, policy, router)  # type: ignore[arg-type]
    edit_tool = cast(Callable[..., Awaitable[object]], app.tools["xllive_edit"])
    result = anyio.run(
        _call_async,
        edit_tool,
        {
            "file_path": "book.xlsx",
            "op": {"op": "update_cell", "sheet": "Sheet1", "cell": "A1", "value": 3},
        },
    )

    assert isinstance(result, EditToolOutput)
    payload, used_router = cast(tuple[EditToolInput, ExecutionRouter], calls["edit"])
    assert used_router is router
    assert payload.op.op == "update_cell"
    assert payload.create_backup is None


def test_read_tools_pass_arguments(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    app = DummyApp()
    policy = PathPolicy(root=tmp_path)
    calls: dict[str, tuple[object, ...]] = {}

    def fake_read_workbook(
        payload: ReadWorkbookToolInput, *, policy: PathPolicy
    ) -> ReadWorkbookResult:
        calls["workbook"] = (payload, policy)
        return ReadWorkbookResult(file_path=payload.file_path)

    def fake_read_sheet(
        payload: ReadSheetToolInput, *, policy: PathPolicy
    ) -> ReadSheetResult:
        calls["sheet"] = (payload, policy)
        return ReadSheetResult(sheet=payload.sheet)

    def fake_get_cell(payload: GetCellToolInput, *, policy: PathPolicy) -> CellReadItem:
        calls["cell"] = (payload, policy)
        return CellReadItem(sheet=payload.sheet, cell=payload.cell)

    def fake_get_merged(
        payload: GetMergedCellsToolInput, *, policy: PathPolicy
    ) -> MergedCellsResult:
        calls["merged"] = (payload, policy)
        return MergedCellsResult(sheet=payload.sheet)

    monkeypatch.setattr(server, "run_read_workbook_tool", fake_read_workbook)
    monkeypatch.setattr(server, "run_read_sheet_tool", fake_read_sheet)
    monkeypatch.setattr(server, "run_get_cell_tool", fake_get_cell)
    monkeypatch.setattr(server, "run_get_merged_cells_tool", fake_get_merged)
    monkeypatch.setattr(anyio.to_thread, "run_sync", _fake_run_sync)

    server._register_tools(app, policy, ExecutionRouter(policy=policy))  # type: ignore[arg-type]

    def _tool(name: str) -> Callable[..., Awaitable[object]]:
        return cast(Callable[..., Awaitable[object]], app.tools[name])

    anyio.run(_call_async, _tool("xllive_read_workbook"), {"file_path": "book.xlsx"})
    anyio.run(
        _call_async,
        _tool("xllive_read_sheet"),
        {"file_path": "book.xlsx", "sheet": "Data", "range": "A1:B2", "max_rows": 5},
    )
    anyio.run(
        _call_async,
        _tool("xllive_get_cell"),
        {"file_path": "book.xlsx", "sheet": "Data", "cell": "C3"},
    )
    anyio.run(
        _call_async,
        _tool("xllive_get_merged_cells"),
        {"file_path": "book.xlsx", "sheet": "Data"},
    )

    sheet_payload = cast(ReadSheetToolInput, calls["sheet"][0])
    assert sheet_payload.range == "A1:B2"
    assert sheet_payload.max_rows == 5
    assert cast(GetCellToolInput, calls["cell"][0]).cell == "C3"
    assert all(call[1] is policy for call in calls.values())


def test_query_tools_pass_arguments(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    app = DummyApp()
    policy = PathPolicy(root=tmp_path)
    calls: dict[str, tuple[object, ...]] = {}

    def fake_search(
        payload: SearchValuesToolInput, *, policy: PathPolicy
    ) -> SearchValuesResult:
        calls["search"] = (payload, policy)
        return SearchValuesResult(sheet=payload.sheet, query=payload.query)

    def fake_filter(
        payload: FilterRowsToolInput, *, policy: PathPolicy
    ) -> FilterRowsResult:
        calls["filter"] = (payload, policy)
        return FilterRowsResult(
            sheet=payload.sheet, column="B", condition=payload.condition
        )

    def fake_validation(
        payload: GetDataValidationToolInput, *, policy: PathPolicy
    ) -> DataValidationInfo:
        calls["validation"] = (payload, policy)
        return DataValidationInfo(sheet=payload.sheet, cell=payload.cell)

    monkeypatch.setattr(server, "run_search_values_tool", fake_search)
    monkeypatch.setattr(server, "run_filter_rows_tool", fake_filter)
    monkeypatch.setattr(server, "run_get_data_validation_tool", fake_validation)
    monkeypatch.setattr(anyio.to_thread, "run_sync", _fake_run_sync)

    server._register_tools(app, policy, ExecutionRouter(policy=policy))  # type: ignore[arg-type]

    def _tool(name: str) -> Callable[..., Awaitable[object]]:
        return cast(Callable[..., Awaitable[object]], app.tools[name])

    anyio.run(
        _call_async,
        _tool("xllive_search_values"),
        {
            "file_path": "book.xlsx",
            "sheet": "Data",
            "query": "acme",
            "case_sensitive": True,
        },
    )
    anyio.run(
        _call_async,
        _tool("xllive_filter_rows"),
        {
            "file_path": "book.xlsx",
            "sheet": "Data",
            "column": "B",
            "condition": "greater_than",
            "value": 10,
        },
    )
    anyio.run(
        _call_async,
        _tool("xllive_get_data_validation"),
        {"file_path": "book.xlsx", "sheet": "Data", "cell": "D4"},
    )

    assert cast(SearchValuesToolInput, calls["search"][0]).case_sensitive is True
    filter_payload = cast(FilterRowsToolInput, calls["filter"][0])
    assert filter_payload.condition == "greater_than"
    assert filter_payload.value == 10
    assert cast(GetDataValidationToolInput, calls["validation"][0]).cell == "D4"
    assert all(call[1] is policy for call in calls.values())


def test_validation_tools_need_no_workbook(tmp_path: Path) -> None:
    app = DummyApp()
    policy = PathPolicy(root=tmp_path)
    server._register_tools(app, policy, ExecutionRouter(policy=policy))  # type: ignore[arg-type]

    range_tool = cast(Callable[..., Awaitable[object]], app.tools["xllive_validate_range"])
    formula_tool = cast(
        Callable[..., Awaitable[object]], app.tools["xllive_validate_formula"]
    )
    range_result = anyio.run(_call_async, range_tool, {"range": "D10:A1"})
    formula_result = anyio.run(_call_async, formula_tool, {"formula": "=SUM(A1:A3"})

    assert isinstance(range_result, RangeCheckResult)
    assert range_result.normalized == "A1:D10"
    assert isinstance(formula_result, FormulaCheckResult)
    assert formula_result.valid is False


def test_run_server_builds_router_with_policy(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    created: dict[str, object] = {}

    class _App:
        def run(self) -> None:
            created["ran"] = True

    def fake_create_app(policy: PathPolicy, router: ExecutionRouter) -> _App:
        created["policy"] = policy
        created["router"] = router
        return _App()

    monkeypatch.setattr(server, "_import_mcp", lambda: None)
    monkeypatch.setattr(server, "_create_app", fake_create_app)
    extra = tmp_path / "shared"
    server.run_server(
        server.ServerConfig(
            root=tmp_path, extra_roots=[extra], deny_globs=["*.tmp"], live=False
        )
    )

    assert created["ran"] is True
    policy = cast(PathPolicy, created["policy"])
    assert policy.deny_globs == ["*.tmp"]
    assert policy.extra_roots == [extra]
    router = cast(ExecutionRouter, created["router"])
    assert router.config.live.enabled is False


def test_main_runs_server(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    seen: list[server.ServerConfig] = []
    monkeypatch.setattr(server, "_configure_logging", lambda config: None)
    monkeypatch.setattr(server, "run_server", seen.append)
    assert server.main(["--root", str(tmp_path), "--no-live"]) == 0
    assert seen[0].live is False
