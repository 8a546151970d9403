"""Edit Excel workbooks live in a running Excel, or on disk when it is not open."""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
