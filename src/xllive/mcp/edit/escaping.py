"""Escaping helpers for text embedded into generated AppleScript.

Two separate layers exist. :func:`escape_applescript_string` protects a value
placed inside an AppleScript string literal. :func:`quote_for_shell` protects
the whole assembled script when it is wrapped in single quotes for ``/bin/sh``.
A value containing an apostrophe must pass through both before it reaches a
shell, otherwise it can close the outer quoting early.
"""

from __future__ import annotations

import math

from ..errors import InvalidValueError
from .types import CellScalar

FORMULA_PREFIX = "="


def escape_applescript_string(text: str) -> str:
    """Escape text for use inside a double-quoted AppleScript literal.

    Backslashes are escaped first so the backslashes inserted for quotes are
    not doubled afterwards.
    """
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("'", "\\'")


def quote_applescript_string(text: str) -> str:
    """Return text as a complete, escaped AppleScript string literal."""
    return f'"{escape_applescript_string(text)}"'


def quote_for_shell(command: str) -> str:
    """Neutralize single quotes in a command that will sit inside ``'...'``.

    Each ``'`` becomes ``'\\''``: close the quote, emit a literal quote,
    reopen the quote.
    """
    return command.replace("'", "'\\''")


def format_value_for_command(value: CellScalar) -> str:
    """Render a cell value as an AppleScript token.

    Numbers are emitted bare so Excel stores them as numbers; text is escaped
    and quoted. ``42`` and ``"42"`` therefore produce different tokens.
    """
    if value is None:
        return '""'
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidValueError(f"Non-finite numbers cannot be stored: {value!r}")
        return repr(value)
    return quote_applescript_string(value)


def normalize_formula(formula: str) -> str:
    """Ensure a formula starts with exactly one ``=`` marker.

    Excel stores an unprefixed formula as plain text without raising, so the
    marker is added here instead of trusting the caller.
    """
    text = formula.strip()
    if not text or text == FORMULA_PREFIX:
        raise InvalidValueError("Formula must not be empty.")
    if text.startswith(FORMULA_PREFIX):
        return text
    return f"{FORMULA_PREFIX}{text}"


__all__ = [
    "FORMULA_PREFIX",
    "escape_applescript_string",
    "format_value_for_command",
    "normalize_formula",
    "quote_applescript_string",
    "quote_for_shell",
]
