from __future__ import annotations

from .models import EditConfig, EditOp, EditRequest, LiveSettings, OperationResult, RetryPolicy
from .service import ExecutionRouter
from .types import EditOpType, ExecutionMethod

__all__ = [
    "EditConfig",
    "EditOp",
    "EditOpType",
    "EditRequest",
    "ExecutionMethod",
    "ExecutionRouter",
    "LiveSettings",
    "OperationResult",
    "RetryPolicy",
]
