from __future__ import annotations

import pytest

from xllive.mcp.validation import validate_formula, validate_range


def test_validate_range_reports_shape() -> None:
    result = validate_range("B2:D10")
    assert result.valid is True
    assert result.normalized == "B2:D10"
    assert result.start_cell == "B2"
    assert result.end_cell == "D10"
    assert result.rows == 9
    assert result.columns == 3
    assert result.errors == []
    assert result.warnings == []


def test_validate_range_reversed_corners_warn() -> None:
    result = validate_range("D10:A1")
    assert result.valid is True
    assert result.normalized == "A1:D10"
    assert result.warnings


@pytest.mark.parametrize("text", ["A1", "a1:b2", "A0:B2", "A1:XFE2", "A1:B1048577", ""])
def test_validate_range_rejects(text: str) -> None:
    result = validate_range(text)
    assert result.valid is False
    assert result.normalized is None
    assert result.errors


def test_validate_formula_accepts_common_formula() -> None:
    result = validate_formula("SUM(A1:A10)*2")
    assert result.valid is True
    assert result.formula == "=SUM(A1:A10)*2"
    assert result.functions == ["SUM"]
    assert result.warnings == []


@pytest.mark.parametrize(
    ("formula", "error"),
    [
        ("=", "Formula is empty."),
        ("   ", "Formula is empty."),
        ("=SUM(A1:A3", "Mismatched parentheses."),
        ("=A1)+(B1", "Mismatched parentheses."),
        ("=*A1", "Formula cannot start with an operator."),
        ("=A1**2", "Invalid consecutive operators."),
        ('=CONCAT("a, "b")', "Unterminated string literal."),
    ],
)
def test_validate_formula_errors(formula: str, error: str) -> None:
    result = validate_formula(formula)
    assert result.valid is False
    assert error in result.errors


def test_validate_formula_allows_unary_minus_and_text_operators() -> None:
    result = validate_formula('=IF(A1>=-1,"(ok**)","")')
    assert result.valid is True
    assert result.errors == []


def test_validate_formula_warns_on_unknown_function() -> None:
    result = validate_formula("=MYADDIN(A1)+sum(B1:B2)")
    assert result.valid is True
    assert result.functions == ["MYADDIN", "SUM"]
    assert result.warnings == ["Unknown function: MYADDIN"]
