from __future__ import annotations

import logging
from pathlib import Path
import shutil

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


def backup_path_for(path: Path) -> Path:
    """Return the sibling backup path for a workbook (``book.xlsx.backup``)."""
    return path.with_name(f"{path.name}{BACKUP_SUFFIX}")


def create_backup(path: Path) -> Path | None:
    """Copy a workbook to its backup path, replacing any previous backup.

    Args:
        path: Workbook to back up.

    Returns:
        Backup path, or None when the workbook does not exist yet.
    """
    if not path.is_file():
        return None
    target = backup_path_for(path)
    shutil.copy2(path, target)
    logger.debug("Backed up %s to %s", path.name, target.name)
    return target


__all__ = ["BACKUP_SUFFIX", "backup_path_for", "create_backup"]
