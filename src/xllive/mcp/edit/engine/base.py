from __future__ import annotations

from pathlib import Path
from typing import Protocol

from xllive.mcp.edit.models import EditOutcome


class LiveEditEngine(Protocol):
    """Protocol for engines that edit a workbook open in the running application."""

    def supports(self, op_name: str) -> bool:
        """Return whether the engine has a translation for an operation."""

    def apply(self, path: Path, op: object) -> EditOutcome:
        """Apply one operation to the open workbook."""

    def save(self, path: Path) -> None:
        """Persist the open workbook through the application itself."""


class FileEditEngine(Protocol):
    """Protocol for engines that rewrite the workbook file on disk."""

    def apply(
        self, path: Path, op: object, *, create_backup: bool = False
    ) -> EditOutcome:
        """Load, mutate and save the workbook at ``path``."""


__all__ = ["FileEditEngine", "LiveEditEngine"]
