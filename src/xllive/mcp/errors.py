from __future__ import annotations

from typing import Literal

ErrorCategory = Literal["invalid_input", "document", "live_channel"]

_CATEGORY_PREFIX: dict[ErrorCategory, str] = {
    "invalid_input": "Invalid input",
    "document": "Document could not be reached",
    "live_channel": "Excel could not be reached",
}


class EditError(Exception):
    """Base error for spreadsheet edit operations.

    Every subclass carries a category so callers can tell bad input apart
    from an unreachable document or an unreachable Excel application.
    """

    category: ErrorCategory = "invalid_input"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{_CATEGORY_PREFIX[self.category]}: {self.message}"


class InvalidAddressError(EditError, ValueError):
    """Malformed or out-of-bounds cell address."""


class InvalidRangeError(EditError, ValueError):
    """Malformed or out-of-bounds range reference."""


class InvalidValueError(EditError, ValueError):
    """Cell value or formula that Excel cannot store."""


class SheetNotFoundError(EditError):
    """Requested worksheet does not exist."""


class SheetExistsError(EditError):
    """Worksheet name is already taken."""


class DocumentNotFoundError(EditError):
    """Workbook file does not exist."""

    category: ErrorCategory = "document"


class DocumentUnreadableError(EditError):
    """Workbook file exists but cannot be parsed."""

    category: ErrorCategory = "document"


class FileWriteFailedError(EditError):
    """Workbook could not be written back to disk."""

    category: ErrorCategory = "document"


class LiveChannelUnavailable(EditError):
    """The scripting channel to Excel cannot be used in this environment."""

    category: ErrorCategory = "live_channel"


class LiveCommandFailed(EditError):
    """A live command exhausted its retries.

    Attributes:
        attempts: Number of attempts made.
        timed_out: Whether the final attempt was killed on timeout.
        returncode: Exit status of the final attempt, if it exited.
        applied: Steps that completed before the failing command.
    """

    category: ErrorCategory = "live_channel"

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        timed_out: bool = False,
        returncode: int | None = None,
        applied: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.timed_out = timed_out
        self.returncode = returncode
        self.applied = list(applied or [])


class LiveSaveFailed(LiveCommandFailed):
    """Every edit step ran in Excel but saving the workbook failed.

    The open workbook holds the complete edit, unsaved.
    """


__all__ = [
    "DocumentNotFoundError",
    "DocumentUnreadableError",
    "EditError",
    "ErrorCategory",
    "FileWriteFailedError",
    "InvalidAddressError",
    "InvalidRangeError",
    "InvalidValueError",
    "LiveChannelUnavailable",
    "LiveCommandFailed",
    "LiveSaveFailed",
    "SheetExistsError",
    "SheetNotFoundError",
]
