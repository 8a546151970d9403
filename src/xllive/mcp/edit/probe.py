from __future__ import annotations

import logging
from pathlib import Path

from ..errors import EditError
from .escaping import quote_applescript_string
from .executor import CommandExecutor

logger = logging.getLogger(__name__)


class LiveSessionProbe:
    """Answer whether Excel is running and whether a workbook is open in it.

    Both probes treat any failure as "no": a missing live channel is an
    expected state. Documents are matched by file name only, so two open
    workbooks with the same name in different folders cannot be told apart.
    """

    def __init__(self, executor: CommandExecutor) -> None:
        """Create a probe that shares the live command executor."""
        self._executor = executor

    def is_application_running(self) -> bool:
        """Return True when the Excel process shows up in System Events."""
        settings = self._executor.settings
        script = (
            'tell application "System Events"\n'
            f"  return (name of processes) contains {quote_applescript_string(settings.process_name)}\n"
            "end tell"
        )
        try:
            result = self._executor.execute(script, retry=settings.probe_retry)
        except EditError as exc:
            logger.info("Excel running check failed: %s", exc.message)
            return False
        running = result == "true"
        logger.debug("Excel running: %s", running)
        return running

    def is_document_open(self, path: Path) -> bool:
        """Return True when Excel has a workbook open under ``path.name``."""
        settings = self._executor.settings
        script = (
            f"tell application {quote_applescript_string(settings.application)}\n"
            "  set openWorkbooks to name of every workbook\n"
            f"  return openWorkbooks contains {quote_applescript_string(path.name)}\n"
            "end tell"
        )
        try:
            result = self._executor.execute(script, retry=settings.probe_retry)
        except EditError as exc:
            logger.info("Open workbook check failed for %s: %s", path.name, exc.message)
            return False
        is_open = result == "true"
        logger.debug("Workbook %s open in Excel: %s", path.name, is_open)
        return is_open


__all__ = ["LiveSessionProbe"]
