"""MCP server integration for xllive."""

from __future__ import annotations

from .edit import EditConfig, EditRequest, ExecutionRouter, OperationResult
from .io import PathPolicy
from .tools import EditToolInput, EditToolOutput, run_edit_tool

__all__ = [
    "EditConfig",
    "EditRequest",
    "EditToolInput",
    "EditToolOutput",
    "ExecutionRouter",
    "OperationResult",
    "PathPolicy",
    "run_edit_tool",
]
