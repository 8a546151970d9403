from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
import threading

from xllive.mcp.errors import DocumentNotFoundError, EditError
from xllive.mcp.io import PathPolicy

_ALLOWED_EXTENSIONS = {".xlsx", ".xlsm"}


class _LockEntry:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


_locks_guard = threading.Lock()
_document_locks: dict[Path, _LockEntry] = {}


def resolve_input_path(path: Path, *, policy: PathPolicy | None) -> Path:
    """Resolve and validate the path of an existing workbook."""
    resolved = resolve_path(path, policy=policy)
    if not resolved.exists():
        raise DocumentNotFoundError(f"Workbook not found: {resolved}")
    if not resolved.is_file():
        raise DocumentNotFoundError(f"Workbook path is not a file: {resolved}")
    return resolved


def resolve_output_path(path: Path, *, policy: PathPolicy | None) -> Path:
    """Resolve and validate the path of a workbook that may not exist yet."""
    resolved = resolve_path(path, policy=policy)
    if resolved.exists() and resolved.is_dir():
        raise EditError(f"Output path is a directory: {resolved}")
    return resolved


def resolve_path(path: Path, *, policy: PathPolicy | None) -> Path:
    """Apply the directory policy and extension check to a workbook path."""
    try:
        resolved = policy.ensure_allowed(path) if policy else path.resolve()
    except ValueError as exc:
        raise EditError(str(exc)) from exc
    ensure_supported_extension(resolved)
    return resolved


def ensure_supported_extension(path: Path) -> None:
    """Validate that the workbook extension can be rewritten on disk."""
    if path.suffix.lower() not in _ALLOWED_EXTENSIONS:
        raise EditError(
            f"Unsupported file extension: {path.suffix or '(none)'}. "
            "Use .xlsx or .xlsm."
        )


def ensure_output_dir(path: Path) -> None:
    """Ensure the output directory exists before writing."""
    path.parent.mkdir(parents=True, exist_ok=True)


@contextmanager
def document_lock(path: Path) -> Iterator[None]:
    """Serialize edits to one resolved workbook path.

    Entries are reference counted and dropped once no caller holds or waits
    on them, so the table only holds paths with edits in flight.
    """
    with _locks_guard:
        entry = _document_locks.get(path)
        if entry is None:
            entry = _LockEntry()
            _document_locks[path] = entry
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _document_locks[path]


__all__ = [
    "document_lock",
    "ensure_output_dir",
    "ensure_supported_extension",
    "resolve_input_path",
    "resolve_output_path",
    "resolve_path",
]
