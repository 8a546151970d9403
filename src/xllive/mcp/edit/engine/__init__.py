from __future__ import annotations

from .applescript_engine import AppleScriptEngine
from .openpyxl_engine import OpenpyxlEngine

__all__ = ["AppleScriptEngine", "OpenpyxlEngine"]
