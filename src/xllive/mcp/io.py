from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class PathPolicy(BaseModel):
    """Directory allow-list for workbook paths received over MCP."""

    root: Path = Field(..., description="Primary directory; relative paths resolve here.")
    extra_roots: list[Path] = Field(
        default_factory=list, description="Additional allowed directories."
    )
    deny_globs: list[str] = Field(
        default_factory=list, description="Glob patterns to deny."
    )

    def normalize_root(self) -> Path:
        """Return the resolved primary root path."""
        return self.root.resolve()

    def allowed_roots(self) -> list[Path]:
        """Return every resolved allowed directory, primary root first."""
        return [self.normalize_root(), *(item.resolve() for item in self.extra_roots)]

    def ensure_allowed(self, path: Path) -> Path:
        """Validate that a path sits inside an allowed directory.

        Args:
            path: Candidate path; relative paths are taken from the primary root.

        Returns:
            Resolved path if allowed.

        Raises:
            ValueError: If the path is outside every root or denied by glob.
        """
        candidate = path if path.is_absolute() else self.normalize_root() / path
        resolved = candidate.resolve()
        owner = self._owning_root(resolved)
        if owner is None:
            roots = ", ".join(str(item) for item in self.allowed_roots())
            raise ValueError(
                f"Path is outside the allowed directories. resolved={resolved}, "
                f"allowed=[{roots}]. Use a path relative to the root, "
                "e.g. 'reports/book.xlsx'."
            )
        if self._is_denied(resolved, owner):
            raise ValueError(f"Path is denied by policy: {resolved}")
        return resolved

    def _owning_root(self, path: Path) -> Path | None:
        for root in self.allowed_roots():
            if path == root or root in path.parents:
                return root
        return None

    def _is_denied(self, path: Path, root: Path) -> bool:
        rel = path.relative_to(root)
        for pattern in self.deny_globs:
            if rel.match(pattern) or path.match(pattern):
                return True
        return False
