"""A small formula evaluator for workbooks held in memory.

Supports numbers, strings, booleans, cell and range references, the
operators ``+ - * / ^ & = <> < > <= >=`` and a handful of common worksheet
functions. Errors evaluate to Excel-style codes ("#VALUE!", "#DIV/0!", ...)
rather than raising.
"""

import math
import re
import statistics
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from ..errors import FormulaParseError
from ..sheets.models import DEFAULT_SHEET, RangeRef

Scalar = Union[float, str, bool, None]

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>"(?:[^"]|"")*")
  | (?P<number>\d+(?:\.\d*)?(?:[eE][+-]?\d+)?%?|\.\d+(?:[eE][+-]?\d+)?%?)
  | (?P<ref>(?:(?:'(?:[^']|'')+'|[A-Za-z_][A-Za-z0-9_.]*)!)?\$?[A-Za-z]{1,3}\$?\d+(?::\$?[A-Za-z]{1,3}\$?\d+)?(?![A-Za-z0-9_(]))
  | (?P<func>[A-Za-z_][A-Za-z0-9_.]*(?=\s*\())
  | (?P<bool>(?i:TRUE|FALSE)(?![A-Za-z0-9_(]))
  | (?P<op><>|<=|>=|[-+*/^&=<>])
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<comma>,)
    """,
    re.VERBOSE,
)

_COMPARISONS = {
    "=": lambda a, b: a == b,
    "<>": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    ">=": lambda a, b: a >= b,
}


class FormulaError(Exception):
    """An Excel-style error value produced during evaluation."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


ERROR_CODES = ("#VALUE!", "#DIV/0!", "#NAME?", "#REF!", "#NUM!", "#N/A", "#CYCLE!")


@dataclass(frozen=True)
class Expr:
    """A compiled formula expression node."""

    kind: str  # "num", "str", "bool", "ref", "func", "binop", "neg"
    value: Any = None
    args: tuple = ()


def is_error(value: Any) -> bool:
    return isinstance(value, str) and value in ERROR_CODES


def coerce_text(text: Optional[str]) -> Scalar:
    """Interpret user-entered cell text the way a spreadsheet would."""
    if text is None:
        return None
    stripped = text.strip()
    if stripped == "":
        return None
    upper = stripped.upper()
    if upper in ("TRUE", "FALSE"):
        return upper == "TRUE"
    try:
        return float(stripped)
    except ValueError:
        return text


def format_value(value: Scalar) -> str:
    """Render an evaluated value as display text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return format(value, ".15g")
    return str(value)


class _Compiler:
    """Recursive-descent parser from tokens to an Expr tree."""

    def __init__(self, formula: str, sheet: str):
        self.formula = formula
        self.sheet = sheet
        self.tokens = self._tokenize(formula[1:])
        self.pos = 0

    def _tokenize(self, body: str) -> list[tuple[str, str]]:
        tokens = []
        pos = 0
        while pos < len(body):
            match = _TOKEN_PATTERN.match(body, pos)
            if not match:
                raise FormulaParseError(self.formula, f"unexpected character {body[pos]!r}")
            kind = match.lastgroup
            if kind != "ws":
                tokens.append((kind, match.group(0)))
            pos = match.end()
        return tokens

    def _peek(self) -> Optional[tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> tuple[str, str]:
        token = self._peek()
        if token is None:
            raise FormulaParseError(self.formula, "unexpected end of formula")
        self.pos += 1
        return token

    def _expect(self, kind: str):
        token = self._take()
        if token[0] != kind:
            raise FormulaParseError(self.formula, f"expected {kind}, found {token[1]!r}")

    def compile(self) -> Expr:
        if not self.tokens:
            raise FormulaParseError(self.formula, "empty formula")
        expr = self._comparison()
        if self._peek() is not None:
            raise FormulaParseError(self.formula, f"unexpected {self._peek()[1]!r}")
        return expr

    def _binary(self, operators: tuple[str, ...], operand: Callable[[], Expr]) -> Expr:
        left = operand()
        while True:
            token = self._peek()
            if token is None or token[0] != "op" or token[1] not in operators:
                return left
            self._take()
            left = Expr("binop", token[1], (left, operand()))

    def _comparison(self) -> Expr:
        return self._binary(tuple(_COMPARISONS), self._concat)

    def _concat(self) -> Expr:
        return self._binary(("&",), self._additive)

    def _additive(self) -> Expr:
        return self._binary(("+", "-"), self._term)

    def _term(self) -> Expr:
        return self._binary(("*", "/"), self._power)

    def _power(self) -> Expr:
        return self._binary(("^",), self._unary)

    def _unary(self) -> Expr:
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] in ("-", "+"):
            self._take()
            operand = self._unary()
            return Expr("neg", None, (operand,)) if token[1] == "-" else operand
        return self._primary()

    def _primary(self) -> Expr:
        kind, text = self._take()
        if kind == "number":
            if text.endswith("%"):
                return Expr("num", float(text[:-1]) / 100.0)
            return Expr("num", float(text))
        if kind == "string":
            return Expr("str", text[1:-1].replace('""', '"'))
        if kind == "bool":
            return Expr("bool", text.upper() == "TRUE")
        if kind == "ref":
            try:
                return Expr("ref", RangeRef.parse(text, self.sheet))
            except ValueError as e:
                raise FormulaParseError(self.formula, str(e))
        if kind == "func":
            self._expect("lparen")
            args = []
            if self._peek() is not None and self._peek()[0] == "rparen":
                self._take()
            else:
                while True:
                    args.append(self._comparison())
                    sep = self._take()
                    if sep[0] == "rparen":
                        break
                    if sep[0] != "comma":
                        raise FormulaParseError(self.formula, f"expected ',' or ')', found {sep[1]!r}")
            return Expr("func", text.upper(), tuple(args))
        if kind == "lparen":
            inner = self._comparison()
            self._expect("rparen")
            return inner
        raise FormulaParseError(self.formula, f"unexpected {text!r}")


def compile_formula(formula: str, sheet: str = DEFAULT_SHEET) -> Expr:
    """Compile formula text into an expression tree.

    Raises:
        FormulaParseError: If the formula cannot be parsed
    """
    if not formula.startswith("="):
        raise FormulaParseError(formula, "formula must start with '='")
    return _Compiler(formula, sheet).compile()


def expression_references(expr: Expr) -> list[RangeRef]:
    """All references appearing in an expression tree."""
    if expr.kind == "ref":
        return [expr.value]
    refs = []
    for arg in expr.args:
        refs.extend(expression_references(arg))
    return refs


def _to_number(value: Any) -> float:
    if is_error(value):
        raise FormulaError(value)
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, float):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FormulaError("#VALUE!")


def _to_text(value: Any) -> str:
    if is_error(value):
        raise FormulaError(value)
    return format_value(value)


def _to_bool(value: Any) -> bool:
    if is_error(value):
        raise FormulaError(value)
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, float):
        return value != 0.0
    upper = str(value).upper()
    if upper in ("TRUE", "FALSE"):
        return upper == "TRUE"
    raise FormulaError("#VALUE!")


class FormulaEvaluator:
    """Evaluates compiled expressions against a cell resolver.

    Args:
        resolve: Callback returning the current value of a cell address
    """

    def __init__(self, resolve: Callable[[Any], Scalar]):
        self.resolve = resolve

    def evaluate(self, expr: Expr) -> Scalar:
        """Evaluate an expression; errors come back as error-code strings."""
        try:
            value = self._eval(expr)
            if isinstance(value, list):
                # a bare range outside a function only makes sense as one cell
                if len(value) != 1:
                    return "#VALUE!"
                value = value[0]
            if isinstance(value, float) and not math.isfinite(value):
                return "#NUM!"
            return value
        except FormulaError as e:
            return e.code
        except OverflowError:
            return "#NUM!"

    def _eval(self, expr: Expr) -> Any:
        if expr.kind in ("num", "str", "bool"):
            return expr.value
        if expr.kind == "ref":
            values = [self.resolve(address) for address in expr.value.addresses()]
            return values[0] if expr.value.is_single_cell else values
        if expr.kind == "neg":
            return -_to_number(self._scalar(expr.args[0]))
        if expr.kind == "binop":
            return self._binop(expr.value, self._scalar(expr.args[0]), self._scalar(expr.args[1]))
        if expr.kind == "func":
            handler = _FUNCTIONS.get(expr.value)
            if handler is None:
                raise FormulaError("#NAME?")
            return handler(self, expr.args)
        raise FormulaError("#VALUE!")

    def _scalar(self, expr: Expr) -> Scalar:
        value = self._eval(expr)
        if isinstance(value, list):
            if len(value) != 1:
                raise FormulaError("#VALUE!")
            value = value[0]
        if is_error(value):
            raise FormulaError(value)
        return value

    def _binop(self, op: str, left: Scalar, right: Scalar) -> Scalar:
        if op == "&":
            return _to_text(left) + _to_text(right)
        if op in _COMPARISONS:
            if isinstance(left, str) or isinstance(right, str):
                return _COMPARISONS[op](_to_text(left).upper(), _to_text(right).upper())
            return _COMPARISONS[op](_to_number(left), _to_number(right))
        a, b = _to_number(left), _to_number(right)
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            if b == 0:
                raise FormulaError("#DIV/0!")
            return a / b
        if op == "^":
            try:
                result = a ** b
            except ZeroDivisionError:
                raise FormulaError("#DIV/0!")
            if isinstance(result, complex):
                raise FormulaError("#NUM!")
            return float(result)
        raise FormulaError("#VALUE!")

    def numbers(self, args: tuple) -> list[float]:
        """Numeric arguments: numbers inside ranges, coercible scalars elsewhere."""
        result = []
        for arg in args:
            value = self._eval(arg)
            if isinstance(value, list):
                for item in value:
                    if is_error(item):
                        raise FormulaError(item)
                    if isinstance(item, float):
                        result.append(item)
            else:
                result.append(_to_number(value))
        return result

    def values(self, args: tuple) -> list[Scalar]:
        """All argument values with ranges flattened."""
        result = []
        for arg in args:
            value = self._eval(arg)
            if isinstance(value, list):
                result.extend(value)
            else:
                result.append(value)
        return result


def _sum(ev: FormulaEvaluator, args: tuple) -> float:
    return math.fsum(ev.numbers(args))


def _average(ev: FormulaEvaluator, args: tuple) -> float:
    nums = ev.numbers(args)
    if not nums:
        raise FormulaError("#DIV/0!")
    return math.fsum(nums) / len(nums)


def _min(ev: FormulaEvaluator, args: tuple) -> float:
    nums = ev.numbers(args)
    return min(nums) if nums else 0.0


def _max(ev: FormulaEvaluator, args: tuple) -> float:
    nums = ev.numbers(args)
    return max(nums) if nums else 0.0


def _median(ev: FormulaEvaluator, args: tuple) -> float:
    nums = ev.numbers(args)
    if not nums:
        raise FormulaError("#NUM!")
    return float(statistics.median(nums))


def _product(ev: FormulaEvaluator, args: tuple) -> float:
    return float(math.prod(ev.numbers(args))) if args else 0.0


def _count(ev: FormulaEvaluator, args: tuple) -> float:
    return float(sum(1 for v in ev.values(args) if isinstance(v, float)))


def _counta(ev: FormulaEvaluator, args: tuple) -> float:
    return float(sum(1 for v in ev.values(args) if v is not None and v != ""))


def _abs(ev: FormulaEvaluator, args: tuple) -> float:
    if len(args) != 1:
        raise FormulaError("#VALUE!")
    return abs(_to_number(ev._scalar(args[0])))


def _sqrt(ev: FormulaEvaluator, args: tuple) -> float:
    if len(args) != 1:
        raise FormulaError("#VALUE!")
    x = _to_number(ev._scalar(args[0]))
    if x < 0:
        raise FormulaError("#NUM!")
    return math.sqrt(x)


def _round(ev: FormulaEvaluator, args: tuple) -> float:
    if len(args) not in (1, 2):
        raise FormulaError("#VALUE!")
    x = _to_number(ev._scalar(args[0]))
    digits = int(_to_number(ev._scalar(args[1]))) if len(args) == 2 else 0
    # spreadsheets round half away from zero
    factor = 10.0 ** digits
    return math.copysign(math.floor(abs(x) * factor + 0.5) / factor, x)


def _if(ev: FormulaEvaluator, args: tuple) -> Scalar:
    if len(args) not in (2, 3):
        raise FormulaError("#VALUE!")
    if _to_bool(ev._scalar(args[0])):
        return ev._scalar(args[1])
    return ev._scalar(args[2]) if len(args) == 3 else False


def _and(ev: FormulaEvaluator, args: tuple) -> bool:
    return all(_to_bool(v) for v in ev.values(args) if v is not None)


def _or(ev: FormulaEvaluator, args: tuple) -> bool:
    return any(_to_bool(v) for v in ev.values(args) if v is not None)


def _not(ev: FormulaEvaluator, args: tuple) -> bool:
    if len(args) != 1:
        raise FormulaError("#VALUE!")
    return not _to_bool(ev._scalar(args[0]))


def _concat(ev: FormulaEvaluator, args: tuple) -> str:
    return "".join(_to_text(v) for v in ev.values(args))


def _len(ev: FormulaEvaluator, args: tuple) -> float:
    if len(args) != 1:
        raise FormulaError("#VALUE!")
    return float(len(_to_text(ev._scalar(args[0]))))


def _upper(ev: FormulaEvaluator, args: tuple) -> str:
    if len(args) != 1:
        raise FormulaError("#VALUE!")
    return _to_text(ev._scalar(args[0])).upper()


def _lower(ev: FormulaEvaluator, args: tuple) -> str:
    if len(args) != 1:
        raise FormulaError("#VALUE!")
    return _to_text(ev._scalar(args[0])).lower()


_FUNCTIONS: dict[str, Callable[[FormulaEvaluator, tuple], Any]] = {
    "SUM": _sum,
    "AVERAGE": _average,
    "MIN": _min,
    "MAX": _max,
    "MEDIAN": _median,
    "PRODUCT": _product,
    "COUNT": _count,
    "COUNTA": _counta,
    "ABS": _abs,
    "SQRT": _sqrt,
    "ROUND": _round,
    "IF": _if,
    "AND": _and,
    "OR": _or,
    "NOT": _not,
    "CONCAT": _concat,
    "CONCATENATE": _concat,
    "LEN": _len,
    "UPPER": _upper,
    "LOWER": _lower,
}
