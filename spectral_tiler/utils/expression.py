"""Band-algebra expression language.

Formulas such as ``(nir - red) / (nir + red)`` are compiled once per
request into a postfix (RPN) program and then evaluated against band
values. Compilation and evaluation are separate phases: the tokenizer and
the shunting-yard parser run once, while Expression.evaluate() is the hot
path and only walks the compiled program.

The evaluator works on plain floats (one pixel) and on numpy arrays (a
whole window at once) with the same semantics:
    - division by zero yields 0,
    - ``^`` is exponentiation and binds tighter than ``*`` and ``/``,
    - ``sqrt abs log log10 exp sin cos tan`` take one argument,
      ``min`` and ``max`` take two.

Example:
    Compile and evaluate NDVI for one pixel:
        >>> from spectral_tiler.utils import expression
        >>> ndvi = expression.compile_expression("(nir-red)/(nir+red)")
        >>> sorted(ndvi.variables)
        ['nir', 'red']
        >>> round(ndvi.evaluate({"nir": 0.5, "red": 0.1}), 4)
        0.6667
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from collections.abc import Callable, Mapping
from typing import NamedTuple

import numpy as np

from spectral_tiler.core import errors

logger = logging.getLogger(__name__)

Operand = float | np.ndarray


class TokenKind(enum.Enum):
    NUMBER = "number"
    VARIABLE = "variable"
    OPERATOR = "operator"
    FUNCTION = "function"
    LPAREN = "lparen"
    RPAREN = "rparen"
    COMMA = "comma"


class Token(NamedTuple):
    kind: TokenKind
    value: float | str
    position: int = 0


def _divide(a: Operand, b: Operand) -> Operand:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    zero = b == 0
    return np.where(zero, 0.0, a / np.where(zero, 1.0, b))


OPERATORS: dict[str, Callable[[Operand, Operand], Operand]] = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": _divide,
    "^": np.power,
}
PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2, "^": 3}
RIGHT_ASSOCIATIVE = frozenset({"^"})

UNARY_FUNCTIONS: dict[str, Callable[[Operand], Operand]] = {
    "sqrt": np.sqrt,
    "abs": np.abs,
    "log": np.log,
    "log10": np.log10,
    "exp": np.exp,
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
}
BINARY_FUNCTIONS: dict[str, Callable[[Operand, Operand], Operand]] = {
    "min": np.minimum,
    "max": np.maximum,
}
FUNCTIONS = frozenset(UNARY_FUNCTIONS) | frozenset(BINARY_FUNCTIONS)

_NUMBER_START = frozenset("0123456789.")
_IDENT_START = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_"
)
_IDENT_CHARS = _IDENT_START | frozenset("0123456789")
_SIGN_CONTEXT = frozenset(
    {TokenKind.OPERATOR, TokenKind.LPAREN, TokenKind.COMMA}
)


def tokenize(text: str) -> list[Token]:
    """Split a formula into tokens.

    A ``-`` directly followed by a digit is read as part of a negative
    number when it cannot be a binary minus (start of input, after an
    operator, an opening parenthesis or a comma).

    Raises:
        ExpressionSyntaxError: On unexpected characters or malformed numbers.
    """
    tokens: list[Token] = []
    i = 0
    length = len(text)

    while i < length:
        char = text[i]

        if char.isspace():
            i += 1
            continue

        previous = tokens[-1].kind if tokens else None
        signed = (
            char == "-"
            and i + 1 < length
            and text[i + 1] in _NUMBER_START
            and (previous is None or previous in _SIGN_CONTEXT)
        )
        if char in _NUMBER_START or signed:
            start = i
            i += 1
            while i < length and text[i] in _NUMBER_START:
                i += 1
            literal = text[start:i]
            try:
                value = float(literal)
            except ValueError:
                raise errors.ExpressionSyntaxError(
                    f"Invalid number '{literal}' at position {start}",
                    details={"expression": text, "position": start},
                ) from None
            tokens.append(Token(TokenKind.NUMBER, value, start))
            continue

        if char in OPERATORS:
            tokens.append(Token(TokenKind.OPERATOR, char, i))
        elif char == "(":
            tokens.append(Token(TokenKind.LPAREN, char, i))
        elif char == ")":
            tokens.append(Token(TokenKind.RPAREN, char, i))
        elif char == ",":
            tokens.append(Token(TokenKind.COMMA, char, i))
        elif char in _IDENT_START:
            start = i
            while i < length and text[i] in _IDENT_CHARS:
                i += 1
            name = text[start:i].lower()
            kind = TokenKind.FUNCTION if name in FUNCTIONS else TokenKind.VARIABLE
            tokens.append(Token(kind, name, start))
            continue
        else:
            raise errors.ExpressionSyntaxError(
                f"Unexpected character at position {i}: {char}",
                details={"expression": text, "position": i},
            )
        i += 1

    return tokens


def _mismatched(text: str) -> errors.ExpressionSyntaxError:
    return errors.ExpressionSyntaxError(
        "Mismatched parentheses", details={"expression": text}
    )


def to_postfix(tokens: list[Token], text: str = "") -> tuple[Token, ...]:
    """Shunting-yard conversion of tokens to a postfix program.

    Raises:
        ExpressionSyntaxError: On mismatched parentheses or a function name
            not followed by ``(``.
    """
    output: list[Token] = []
    stack: list[Token] = []

    for i, token in enumerate(tokens):
        kind = token.kind
        if kind in (TokenKind.NUMBER, TokenKind.VARIABLE):
            output.append(token)
        elif kind is TokenKind.FUNCTION:
            following = tokens[i + 1] if i + 1 < len(tokens) else None
            if following is None or following.kind is not TokenKind.LPAREN:
                raise errors.ExpressionSyntaxError(
                    f"Function '{token.value}' at position {token.position} "
                    "must be followed by '('",
                    details={"expression": text, "position": token.position},
                )
            stack.append(token)
        elif kind is TokenKind.LPAREN:
            stack.append(token)
        elif kind is TokenKind.COMMA:
            while stack and stack[-1].kind is not TokenKind.LPAREN:
                output.append(stack.pop())
        elif kind is TokenKind.OPERATOR:
            op = str(token.value)
            while stack and stack[-1].kind is TokenKind.OPERATOR:
                top = str(stack[-1].value)
                if PRECEDENCE[top] > PRECEDENCE[op] or (
                    PRECEDENCE[top] == PRECEDENCE[op]
                    and op not in RIGHT_ASSOCIATIVE
                ):
                    output.append(stack.pop())
                else:
                    break
            stack.append(token)
        elif kind is TokenKind.RPAREN:
            while stack and stack[-1].kind is not TokenKind.LPAREN:
                output.append(stack.pop())
            if not stack:
                raise _mismatched(text)
            stack.pop()
            if stack and stack[-1].kind is TokenKind.FUNCTION:
                output.append(stack.pop())

    while stack:
        token = stack.pop()
        if token.kind in (TokenKind.LPAREN, TokenKind.RPAREN):
            raise _mismatched(text)
        output.append(token)

    return tuple(output)


def _arity(token: Token) -> int:
    if token.kind is TokenKind.OPERATOR:
        return 2
    if token.kind is TokenKind.FUNCTION:
        return 2 if token.value in BINARY_FUNCTIONS else 1
    return 0


def _check_arity(program: tuple[Token, ...], text: str) -> None:
    """Reject programs that would under- or overflow the operand stack."""
    depth = 0
    for token in program:
        arity = _arity(token)
        if depth < arity:
            raise errors.ExpressionSyntaxError(
                f"Missing operand for '{token.value}' at position "
                f"{token.position}",
                details={"expression": text, "position": token.position},
            )
        depth = depth - arity + 1

    if depth != 1:
        raise errors.ExpressionSyntaxError(
            "Expression must reduce to a single value",
            details={"expression": text},
        )


@dataclasses.dataclass(frozen=True)
class Expression:
    """A compiled band-algebra formula.

    Attributes:
        source: Original formula text.
        tokens: Token stream produced by the tokenizer.
        program: Postfix instruction sequence.
        variables: Lower-cased variable names the formula reads.
    """

    source: str
    tokens: tuple[Token, ...]
    program: tuple[Token, ...]
    variables: frozenset[str]

    def evaluate(self, env: Mapping[str, Operand]) -> Operand:
        """Run the postfix program against a variable binding.

        Args:
            env: Variable name -> value. Values may be floats (one pixel) or
                numpy arrays of a common shape (a window of pixels).

        Returns:
            A float for scalar inputs, otherwise a float64 array.

        Raises:
            ExpressionEvaluationError: If a variable is unbound or the
                program does not reduce to exactly one value.
        """
        stack: list[Operand] = []
        with np.errstate(all="ignore"):
            for token in self.program:
                kind = token.kind
                if kind is TokenKind.NUMBER:
                    stack.append(float(token.value))
                elif kind is TokenKind.VARIABLE:
                    try:
                        stack.append(env[str(token.value)])
                    except KeyError:
                        raise errors.ExpressionEvaluationError(
                            f"Undefined variable: {token.value}"
                        ) from None
                elif kind is TokenKind.OPERATOR or token.value in BINARY_FUNCTIONS:
                    if len(stack) < 2:
                        raise errors.ExpressionEvaluationError(
                            f"Not enough operands for '{token.value}'"
                        )
                    b = stack.pop()
                    a = stack.pop()
                    func = OPERATORS.get(str(token.value)) or BINARY_FUNCTIONS[
                        str(token.value)
                    ]
                    stack.append(func(a, b))
                else:
                    if not stack:
                        raise errors.ExpressionEvaluationError(
                            f"Function {token.value} requires 1 argument"
                        )
                    stack.append(UNARY_FUNCTIONS[str(token.value)](stack.pop()))

        if len(stack) != 1:
            raise errors.ExpressionEvaluationError(
                "Invalid expression: result stack should have exactly 1 value"
            )

        result = np.asarray(stack[0], dtype=np.float64)
        if result.ndim == 0:
            return float(result)

        return result


def compile_expression(text: str) -> Expression:
    """Tokenize, parse and check a formula.

    Args:
        text: Formula over band aliases, e.g. ``"(nir - red) / (nir + red)"``.

    Returns:
        Compiled Expression ready for repeated evaluation.

    Raises:
        ExpressionSyntaxError: If the formula is empty, contains unknown
            characters, has mismatched parentheses or wrong operand counts.
    """
    if not text or not text.strip():
        raise errors.ExpressionSyntaxError("Expression is empty")

    tokens = tokenize(text)
    program = to_postfix(tokens, text)
    _check_arity(program, text)
    variables = frozenset(
        str(t.value) for t in tokens if t.kind is TokenKind.VARIABLE
    )
    return Expression(
        source=text,
        tokens=tuple(tokens),
        program=program,
        variables=variables,
    )


def evaluate(text: str, env: Mapping[str, Operand]) -> Operand:
    """Compile and evaluate a formula in one go (convenience for one-offs)."""
    return compile_expression(text).evaluate(env)


def validate_expression(text: str) -> tuple[bool, str | None]:
    """Check whether a formula compiles.

    Returns:
        (True, None) for a valid formula, otherwise (False, message).
    """
    try:
        compile_expression(text)
    except errors.ExpressionSyntaxError as exc:
        return False, exc.message

    return True, None


def evaluate_bands(
    expr: Expression,
    env: Mapping[str, np.ndarray],
    shape: tuple[int, ...],
) -> np.ndarray:
    """Evaluate a compiled expression over whole band arrays.

    Non-finite results (e.g. ``log`` of a negative value) are recorded as 0.
    Evaluation errors depend only on the program and the bindings, which
    are the same for every pixel, so a failure records the whole window as
    0 rather than aborting the tile.

    Args:
        expr: Compiled expression.
        env: Variable name -> band array shaped ``shape``.
        shape: Output shape.

    Returns:
        float64 array shaped ``shape``.
    """
    try:
        result = expr.evaluate(env)
    except errors.ExpressionEvaluationError as exc:
        logger.warning("Evaluation of '%s' failed: %s", expr.source, exc)
        return np.zeros(shape, dtype=np.float64)

    values = np.broadcast_to(np.asarray(result, dtype=np.float64), shape)
    return np.where(np.isfinite(values), values, 0.0)
