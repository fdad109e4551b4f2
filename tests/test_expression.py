"""Tests for the band-algebra expression language.

This module checks:
    - operator precedence and associativity (``^`` binds tighter and is
      right-associative),
    - signed literals versus binary minus,
    - the function table and its arities,
    - division by zero yielding 0 for scalars and arrays,
    - compile-time syntax errors with positions,
    - whole-array evaluation with non-finite results recorded as 0.
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from spectral_tiler.core import errors
from spectral_tiler.utils import expression


def test_ndvi_single_pixel() -> None:
    """Test NDVI for one pixel."""
    value = expression.evaluate("(nir-red)/(nir+red)", {"nir": 0.5, "red": 0.1})
    assert value == pytest.approx(0.6666666, rel=1e-6)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2 + 3 * 4", 14.0),
        ("(2 + 3) * 4", 20.0),
        ("2 ^ 3 ^ 2", 512.0),
        ("2 * 3 ^ 2", 18.0),
        ("10 - 4 - 3", 3.0),
        ("12 / 3 / 2", 2.0),
        ("-2 * 3", -6.0),
        ("4 * -1.5", -6.0),
        ("sqrt(16) + abs(-3)", 7.0),
        ("min(2, 3) + max(2, 3)", 5.0),
        ("max(1, min(5, 4))", 4.0),
        ("exp(0) + log(1) + log10(100)", 3.0),
        (".5 * 4", 2.0),
    ],
)
def test_constant_expressions(text: str, expected: float) -> None:
    """Test precedence, associativity and functions on constants."""
    assert expression.evaluate(text, {}) == pytest.approx(expected)


def test_binary_minus_before_digit() -> None:
    """Test that ``a-1`` is a subtraction, not ``a`` followed by -1."""
    assert expression.evaluate("a-1", {"a": 3.0}) == pytest.approx(2.0)
    assert expression.evaluate("a - -1", {"a": 3.0}) == pytest.approx(4.0)
    assert expression.evaluate("(a)-2", {"a": 3.0}) == pytest.approx(1.0)


def test_division_by_zero_yields_zero() -> None:
    """Test that a zero denominator yields 0, never NaN or inf."""
    assert expression.evaluate("a / (b - b)", {"a": 1.0, "b": 2.0}) == 0.0
    assert expression.evaluate("0 / 0", {}) == 0.0


def test_division_by_zero_in_arrays() -> None:
    """Test per-element division by zero on arrays."""
    nir = np.array([0.5, 0.0, 0.3])
    red = np.array([0.1, 0.0, 0.3])
    result = expression.evaluate("(nir-red)/(nir+red)", {"nir": nir, "red": red})
    assert np.all(np.isfinite(result))
    np.testing.assert_allclose(result, [0.4 / 0.6, 0.0, 0.0])


def test_variables_are_lowercased() -> None:
    """Test that variable names are case-insensitive."""
    compiled = expression.compile_expression("(NIR - Red) / (nir + RED)")
    assert compiled.variables == frozenset({"nir", "red"})


def test_compile_exposes_program() -> None:
    """Test that compilation produces a postfix program."""
    compiled = expression.compile_expression("a + b * c")
    assert [t.value for t in compiled.program] == ["a", "b", "c", "*", "+"]


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "(a + b",
        "a + b)",
        "a +",
        "* a",
        "a b",
        "min(1)",
        "sqrt()",
        "a $ b",
        "1..2",
    ],
)
def test_syntax_errors(text: str) -> None:
    """Test that malformed formulas fail at compile time."""
    with pytest.raises(errors.ExpressionSyntaxError):
        expression.compile_expression(text)


def test_unexpected_character_reports_position() -> None:
    """Test that tokenizer errors carry the offending position."""
    with pytest.raises(errors.ExpressionSyntaxError) as exc_info:
        expression.compile_expression("nir # red")
    assert exc_info.value.details["position"] == 4
    assert exc_info.value.status_code == 400


def test_validate_expression() -> None:
    """Test the boolean validation helper."""
    assert expression.validate_expression("(nir - red) / 2") == (True, None)
    valid, message = expression.validate_expression("(nir - red")
    assert valid is False
    assert message == "Mismatched parentheses"


def test_undefined_variable_raises_evaluation_error() -> None:
    """Test that an unbound variable fails evaluation, not compilation."""
    compiled = expression.compile_expression("nir + 1")
    with pytest.raises(errors.ExpressionEvaluationError):
        compiled.evaluate({"red": 1.0})


def test_evaluate_bands_replaces_non_finite() -> None:
    """Test that NaN results from functions are recorded as 0."""
    compiled = expression.compile_expression("sqrt(a) + log(a)")
    a = np.array([[4.0, -1.0], [1.0, 0.0]])
    result = expression.evaluate_bands(compiled, {"a": a}, a.shape)
    assert result.dtype == np.float64
    np.testing.assert_allclose(result, [[2.0 + np.log(4.0), 0.0], [1.0, 0.0]])


def test_evaluate_bands_broadcasts_constants() -> None:
    """Test that constant formulas fill the whole window."""
    compiled = expression.compile_expression("0.25 * 2")
    result = expression.evaluate_bands(compiled, {}, (3, 2))
    assert result.shape == (3, 2)
    assert np.all(result == 0.5)


def test_evaluate_bands_failure_zeroes_window(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test that an evaluation failure records every pixel as 0."""
    compiled = expression.compile_expression("nir * 2")
    with caplog.at_level(logging.WARNING, logger="spectral_tiler"):
        result = expression.evaluate_bands(compiled, {}, (2, 2))
    assert np.all(result == 0.0)
    assert "Evaluation of 'nir * 2' failed" in caplog.text


def test_evaluate_bands_keeps_double_precision() -> None:
    """Test that results beyond the float32 range are kept."""
    compiled = expression.compile_expression("exp(a)")
    a = np.array([[100.0]])
    result = expression.evaluate_bands(compiled, {"a": a}, a.shape)
    assert result[0, 0] == pytest.approx(np.exp(100.0))


@pytest.mark.parametrize("text", ["sqrt nir", "abs", "max 1, 2", "log - 1"])
def test_function_requires_call_parentheses(text: str) -> None:
    """Test that a function name must be followed by an argument list."""
    with pytest.raises(errors.ExpressionSyntaxError) as exc_info:
        expression.compile_expression(text)
    assert "must be followed by '('" in exc_info.value.message
