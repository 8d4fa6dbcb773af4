"""Rate, formula and condition evaluation.

Rates and formulas are short texts authored on nodes and connections::

    3          fixed amount
    &3         all-or-nothing: move 3 or nothing
    /4         one unit every 4th step
    2D6+1      dice notation
    {Gold}*2   value of the node named ``Gold``
    self / 2   value of the context node

After substitution the text is handed to a small recursive-descent parser
supporting numeric literals, arithmetic, comparisons, logical operators and a
whitelist of functions. Nothing is passed to :func:`eval`. Evaluation never
raises to the caller; failures fall back to documented defaults.
"""

from __future__ import annotations

import logging
import math
import re
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List

import numpy as np

from ..config import Config
from .logging.logger import log_record

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..graph.model import Graph, Node

logger = logging.getLogger(__name__)

RATE_FALLBACK = 1
FORMULA_FALLBACK = 0

_DICE_RE = re.compile(r"(\d*)D(\d+)", re.IGNORECASE)
_NODE_REF_RE = re.compile(r"\{([^}]+)\}")
_SELF_RE = re.compile(r"\bself\b")
_VALUE_RE = re.compile(r"\bvalue\b")
_INTERVAL_RE = re.compile(r"^/(\d+)$")
_BARE_COMPARISON_RE = re.compile(r"^[><=!]+\s*[\d.]+$")

# Integers beyond this magnitude cannot be represented as floats.
_FLOAT_LIMIT = int(sys.float_info.max)

CONSTANTS: Dict[str, float] = {
    "Infinity": math.inf,
    "inf": math.inf,
    "NaN": math.nan,
}

_TOKEN_RE = re.compile(
    r"""
    (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    |(?P<name>[A-Za-z_][A-Za-z_0-9]*(?:\.[A-Za-z_][A-Za-z_0-9]*)?)
    |(?P<op>===|!==|==|!=|<=|>=|&&|\|\||[-+*/%()<>!,])
    """,
    re.VERBOSE,
)


class ExpressionError(ValueError):
    """Raised by :func:`evaluate_expression` for malformed input."""


def round_half_up(x: float) -> float:
    """Round halves towards positive infinity."""
    return math.floor(x + 0.5)


def _min(*args: float) -> float:
    return min(args) if args else math.inf


def _max(*args: float) -> float:
    return max(args) if args else -math.inf


FUNCTIONS: Dict[str, Callable[..., float]] = {
    "round": round_half_up,
    "floor": math.floor,
    "ceil": math.ceil,
    "abs": abs,
    "min": _min,
    "max": _max,
    "sqrt": math.sqrt,
    "pow": math.pow,
}


def _tokenize(text: str) -> List[tuple[str, str]]:
    tokens: List[tuple[str, str]] = []
    pos = 0
    length = len(text)
    while pos < length:
        if text[pos].isspace():
            pos += 1
            continue
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ExpressionError(f"unexpected character {text[pos]!r} at {pos}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a)
    return a / b


def _modulo(a: float, b: float) -> float:
    if b == 0:
        return math.nan
    return math.fmod(a, b)


_COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "==": lambda a, b: a == b,
    "===": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "!==": lambda a, b: a != b,
}


class _Parser:
    """Recursive-descent evaluator over a token list."""

    def __init__(self, tokens: List[tuple[str, str]]) -> None:
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> tuple[str, str] | None:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _accept(self, *values: str) -> str | None:
        tok = self._peek()
        if tok is not None and tok[0] in ("op", "name") and tok[1] in values:
            self.pos += 1
            return tok[1]
        return None

    def _expect(self, value: str) -> None:
        if self._accept(value) is None:
            raise ExpressionError(f"expected {value!r}")

    def parse(self) -> Any:
        if not self.tokens:
            raise ExpressionError("empty expression")
        result = self._or()
        if self.pos != len(self.tokens):
            raise ExpressionError(f"unexpected token {self.tokens[self.pos][1]!r}")
        return result

    def _or(self) -> Any:
        left = self._and()
        while self._accept("||", "or"):
            right = self._and()
            left = left or right
        return left

    def _and(self) -> Any:
        left = self._comparison()
        while self._accept("&&", "and"):
            right = self._comparison()
            left = left and right
        return left

    def _comparison(self) -> Any:
        left = self._additive()
        while True:
            op = self._accept(*_COMPARISONS)
            if op is None:
                return left
            right = self._additive()
            left = _COMPARISONS[op](left, right)

    def _additive(self) -> Any:
        left = self._term()
        while True:
            op = self._accept("+", "-")
            if op is None:
                return left
            right = self._term()
            left = left + right if op == "+" else left - right

    def _term(self) -> Any:
        left = self._unary()
        while True:
            op = self._accept("*", "/", "%")
            if op is None:
                return left
            right = self._unary()
            if op == "*":
                left = left * right
            elif op == "/":
                left = _divide(left, right)
            else:
                left = _modulo(left, right)

    def _unary(self) -> Any:
        op = self._accept("-", "+", "!", "not")
        if op is None:
            return self._primary()
        operand = self._unary()
        if op == "-":
            return -operand
        if op == "+":
            return +operand
        return not operand

    def _primary(self) -> Any:
        tok = self._peek()
        if tok is None:
            raise ExpressionError("unexpected end of expression")
        kind, text = tok
        if kind == "number":
            self.pos += 1
            number = float(text)
            return int(number) if number.is_integer() and "e" not in text.lower() else number
        if kind == "op" and text == "(":
            self.pos += 1
            value = self._or()
            self._expect(")")
            return value
        if kind == "name":
            self.pos += 1
            if text in ("true", "false"):
                return text == "true"
            if text in CONSTANTS:
                return CONSTANTS[text]
            name = text[5:] if text.startswith("Math.") else text
            func = FUNCTIONS.get(name)
            if func is None:
                raise ExpressionError(f"unknown name {text!r}")
            self._expect("(")
            args = []
            if self._accept(")") is None:
                args.append(self._or())
                while self._accept(","):
                    args.append(self._or())
                self._expect(")")
            try:
                return func(*args)
            except (TypeError, ValueError, OverflowError) as exc:
                raise ExpressionError(f"{name}() failed: {exc}") from exc
        raise ExpressionError(f"unexpected token {text!r}")


def evaluate_expression(text: str) -> Any:
    """Evaluate ``text`` with the restricted grammar.

    Raises
    ------
    ExpressionError
        If ``text`` cannot be parsed.
    """

    try:
        return _Parser(_tokenize(text)).parse()
    except (ArithmeticError, RecursionError) as exc:
        raise ExpressionError(str(exc)) from exc


def _clamp_int(value: int) -> float:
    if abs(value) > _FLOAT_LIMIT:
        return math.copysign(math.inf, value)
    return value


def _fmt(value: Any) -> str:
    """Render ``value`` as text the expression grammar reads back."""

    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    number = float(value)
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "(-Infinity)"
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _to_number(result: Any) -> float | None:
    if isinstance(result, bool):
        return int(result)
    if isinstance(result, int):
        return _clamp_int(result)
    if isinstance(result, float):
        if math.isnan(result):
            return None
        return result
    return None


@dataclass(frozen=True)
class ParsedRate:
    """Outcome of :meth:`Evaluator.parse_rate`."""

    value: float
    all_or_nothing: bool = False
    interval: int = 0


class IntervalCounters:
    """Per-node step counters backing ``/N`` interval notation."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}

    def check(self, node_id: str, interval: int) -> bool:
        """Advance the counter for ``node_id`` and report whether it fires."""

        if interval <= 0:
            return True
        count = self._counters.get(node_id, 0) + 1
        if count >= interval:
            self._counters[node_id] = 0
            return True
        self._counters[node_id] = count
        return False

    def get(self, node_id: str) -> int:
        return self._counters.get(node_id, 0)

    def clear(self) -> None:
        self._counters.clear()


class Evaluator:
    """Evaluate rates and formulas against the nodes of ``graph``."""

    def __init__(self, graph: "Graph", rng: np.random.Generator | None = None) -> None:
        self.graph = graph
        self.rng = rng if rng is not None else np.random.default_rng()

    # ---- Substitution ----------------------------------------------------

    def roll_dice(self, text: str) -> str:
        """Replace every ``{count}D{sides}`` with a fresh dice total."""

        def _roll(match: re.Match[str]) -> str:
            count = int(match.group(1) or 1)
            sides = max(int(match.group(2)), 1)
            if count <= 0:
                return "0"
            return str(int(self.rng.integers(1, sides + 1, size=count).sum()))

        return _DICE_RE.sub(_roll, text)

    def _substitute(self, text: str, context: "Node | None") -> str:
        expr = self.roll_dice(text)

        def _node_value(match: re.Match[str]) -> str:
            node = self.graph.find_node_by_name(match.group(1))
            if node is None:
                return "0"
            return _fmt(node.resources or 0)

        expr = _NODE_REF_RE.sub(_node_value, expr)
        if context is not None:
            expr = _SELF_RE.sub(_fmt(context.resources or 0), expr)
        return expr

    def _fallback(self, kind: str, text: Any, reason: str, value: Any) -> Any:
        logger.debug("%s %r fell back to %r: %s", kind, text, value, reason)
        if Config.is_log_enabled("event", "expression_fallback"):
            log_record(
                "event",
                "expression_fallback",
                value={"kind": kind, "text": str(text), "reason": reason},
            )
        return value

    # ---- Public API --------------------------------------------------------

    def parse_rate(self, rate: Any, context: "Node | None" = None) -> ParsedRate:
        """Parse ``rate`` into an amount plus all-or-nothing and interval flags."""

        if isinstance(rate, (bool, np.integer)):
            return ParsedRate(int(rate))
        if isinstance(rate, np.floating):
            return ParsedRate(float(rate))
        if isinstance(rate, (int, float)):
            return ParsedRate(rate)
        text = str(rate if rate is not None else "").strip()
        if not text:
            return ParsedRate(RATE_FALLBACK)

        all_or_nothing = False
        if text.startswith("&"):
            all_or_nothing = True
            text = text[1:].strip()

        interval_match = _INTERVAL_RE.match(text)
        if interval_match:
            return ParsedRate(1, all_or_nothing, int(interval_match.group(1)))

        try:
            value = _to_number(evaluate_expression(self._substitute(text, context)))
        except (ExpressionError, ArithmeticError) as exc:
            value = self._fallback("rate", rate, str(exc), RATE_FALLBACK)
        if value is None:
            value = self._fallback("rate", rate, "not a number", RATE_FALLBACK)
        return ParsedRate(value, all_or_nothing)

    def evaluate_formula(self, formula: Any, context: "Node | None" = None) -> float:
        """Evaluate ``formula`` and return a number, ``0`` on failure."""

        if isinstance(formula, bool):
            return int(formula)
        if isinstance(formula, (int, float)):
            return formula
        try:
            expr = self._substitute(str(formula or ""), context)
            value = _to_number(evaluate_expression(expr))
        except (ExpressionError, ArithmeticError) as exc:
            return self._fallback("formula", formula, str(exc), FORMULA_FALLBACK)
        if value is None:
            return self._fallback("formula", formula, "not a number", FORMULA_FALLBACK)
        return value

    def evaluate_condition(self, condition: Any, value: float) -> bool:
        """Evaluate ``condition`` with ``value`` substituted.

        A bare comparison such as ``>0`` is applied to ``value``. Failures
        fall back to ``value > 0``.
        """

        text = str(condition if condition is not None else "")
        try:
            if _BARE_COMPARISON_RE.match(text.strip()):
                expr = _fmt(value) + text
            else:
                expr = _VALUE_RE.sub(_fmt(value), text)
            return bool(evaluate_expression(expr))
        except (ExpressionError, ArithmeticError, TypeError, ValueError) as exc:
            return self._fallback("condition", condition, str(exc), value > 0)
