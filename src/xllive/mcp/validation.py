from __future__ import annotations

import re

from pydantic import BaseModel, Field

from .edit.escaping import FORMULA_PREFIX
from .errors import EditError
from .shared.a1 import parse_range

_FUNCTION_CALL = re.compile(r"\b([A-Z][A-Z0-9.]*)\(")
_STRING_LITERAL = re.compile(r'"(?:[^"]|"")*"')
_LEADING_OPERATOR = re.compile(r"^\s*[*/^&=<>]")
_CONSECUTIVE_OPERATORS = re.compile(r"[+\-*/^&]\s*[*/^&]")

# Functions recognised without a warning. Anything else is reported, not rejected.
KNOWN_FUNCTIONS = frozenset(
    """
    ABS AND AVERAGE AVERAGEIF AVERAGEIFS CEILING CHOOSE
    CONCAT CONCATENATE COUNT COUNTA COUNTBLANK COUNTIF
    COUNTIFS DATE DATEDIF DAY EDATE EOMONTH FILTER
    FIND FLOOR HLOOKUP HOUR IF IFERROR IFNA IFS
    INDEX INDIRECT INT ISBLANK ISERROR ISNUMBER ISTEXT
    LEFT LEN LOOKUP LOWER MATCH MAX MEDIAN MID
    MIN MINUTE MOD MONTH NETWORKDAYS NOT NOW OFFSET
    OR POWER PRODUCT PROPER RANK REPLACE RIGHT ROUND
    ROUNDDOWN ROUNDUP ROW ROWS SEARCH SECOND SORT
    SQRT STDEV SUBSTITUTE SUBTOTAL SUM SUMIF SUMIFS
    SUMPRODUCT TEXT TEXTJOIN TODAY TRIM UNIQUE UPPER
    VALUE VLOOKUP WEEKDAY WORKDAY XLOOKUP YEAR
    """.split()
)


class RangeCheckResult(BaseModel):
    """Outcome of checking an A1 range reference without touching a workbook."""

    valid: bool
    range: str
    normalized: str | None = None
    start_cell: str | None = None
    end_cell: str | None = None
    rows: int | None = None
    columns: int | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class FormulaCheckResult(BaseModel):
    """Outcome of a static formula check.

    ``valid`` only reflects structural problems; unknown function names are
    warnings because add-ins and newer Excel versions define more functions.
    """

    valid: bool
    formula: str
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    functions: list[str] = Field(default_factory=list)


def validate_range(text: str) -> RangeCheckResult:
    """Check an ``A1:D10`` reference against the worksheet grid."""
    try:
        parsed = parse_range(text)
    except EditError as exc:
        return RangeCheckResult(valid=False, range=text, errors=[exc.message])
    bounds = parsed.normalized()
    warnings: list[str] = []
    if bounds != parsed:
        warnings.append(f"Corners are reversed; Excel reads this as {bounds.label}.")
    return RangeCheckResult(
        valid=True,
        range=text,
        normalized=bounds.label,
        start_cell=bounds.start.label,
        end_cell=bounds.end.label,
        rows=bounds.row_count,
        columns=bounds.column_count,
        warnings=warnings,
    )


def validate_formula(formula: str) -> FormulaCheckResult:
    """Run cheap structural checks on a formula before it is sent to Excel.

    Checks cover emptiness, parenthesis balance, leading and doubled
    operators, and unterminated string literals. Excel remains the final
    judge; a formula that passes here can still evaluate to an error.
    """
    text = formula.strip()
    if text.startswith(FORMULA_PREFIX):
        text = text[len(FORMULA_PREFIX) :]
    display = f"{FORMULA_PREFIX}{text}"
    errors: list[str] = []
    if not text.strip():
        return FormulaCheckResult(valid=False, formula=display, errors=["Formula is empty."])
    if text.count('"') % 2:
        errors.append("Unterminated string literal.")
    # String contents are not syntax.
    code = _STRING_LITERAL.sub('""', text)
    depth = 0
    for char in code:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                break
    if depth != 0:
        errors.append("Mismatched parentheses.")
    if _LEADING_OPERATOR.match(code):
        errors.append("Formula cannot start with an operator.")
    if _CONSECUTIVE_OPERATORS.search(code):
        errors.append("Invalid consecutive operators.")
    functions = sorted(set(_FUNCTION_CALL.findall(code.upper())))
    warnings = [
        f"Unknown function: {name}"
        for name in functions
        if name not in KNOWN_FUNCTIONS
    ]
    return FormulaCheckResult(
        valid=not errors,
        formula=display,
        errors=errors,
        warnings=warnings,
        functions=functions,
    )


__all__ = [
    "KNOWN_FUNCTIONS",
    "FormulaCheckResult",
    "RangeCheckResult",
    "validate_formula",
    "validate_range",
]
