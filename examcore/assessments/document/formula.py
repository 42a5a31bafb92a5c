"""
Formula Interpreter

Grading rules and outcome rules are written as small boolean/arithmetic
expressions over named variables (subtest scores, earlier rule results, and
session flags such as ``proctored``). This module parses those expressions
once and evaluates them against an explicit variable environment; evaluation
has no side effects and keeps no global state.

Supported syntax::

    score >= 8 && !proctored
    (part1 + part2 * 2) / 3 > 4.5 or passed
    not (score == 0)

Values are either booleans or numbers (always floats). Mixing types in an
operator, referencing an unknown variable, or dividing by zero raises
FormulaError.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Set, Tuple, Union

from examcore.common.exceptions import FormulaError

Value = Union[bool, float]

_TOKEN_RE = re.compile(r"""
    \s*(?:
        (?P<number>\d+(?:\.\d*)?|\.\d+)
      | (?P<name>[A-Za-z_][A-Za-z0-9_.]*)
      | (?P<op>&&|\|\||<=|>=|==|!=|[<>!+\-*/()])
    )""", re.VERBOSE)

_KEYWORD_OPS = {"and": "&&", "or": "||", "not": "!"}


# ---------------------------------------------------------------------------
# Syntax tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    value: Value


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: object


@dataclass(frozen=True)
class Binary:
    op: str
    left: object
    right: object


Token = Tuple[str, str]


def tokenize(source: str) -> List[Token]:
    """
    Split formula source into (kind, text) tokens.

    Raises:
        FormulaError: If the source contains a character that starts no token
    """
    tokens: List[Token] = []
    pos = 0
    length = len(source)
    while pos < length:
        if source[pos:].strip() == "":
            break
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            stripped = len(source[pos:]) - len(source[pos:].lstrip())
            bad = pos + stripped
            raise FormulaError(f"Unexpected character {source[bad]!r} at position {bad}", source)
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "name" and text in _KEYWORD_OPS:
            kind, text = "op", _KEYWORD_OPS[text]
        tokens.append((kind, text))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser producing the syntax tree for one formula."""

    def __init__(self, tokens: List[Token], source: str):
        self.tokens = tokens
        self.source = source
        self.index = 0

    def parse(self):
        if not self.tokens:
            raise FormulaError("Empty formula", self.source)
        node = self._or()
        if self.index != len(self.tokens):
            raise FormulaError(f"Unexpected token {self.tokens[self.index][1]!r}", self.source)
        return node

    def _peek(self) -> Token:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return ("end", "")

    def _accept(self, *ops: str) -> str:
        kind, text = self._peek()
        if kind == "op" and text in ops:
            self.index += 1
            return text
        return ""

    def _or(self):
        node = self._and()
        while self._accept("||"):
            node = Binary("||", node, self._and())
        return node

    def _and(self):
        node = self._not()
        while self._accept("&&"):
            node = Binary("&&", node, self._not())
        return node

    def _not(self):
        if self._accept("!"):
            return Unary("!", self._not())
        return self._comparison()

    def _comparison(self):
        node = self._sum()
        op = self._accept("<", "<=", ">", ">=", "==", "!=")
        if op:
            node = Binary(op, node, self._sum())
        return node

    def _sum(self):
        node = self._term()
        while True:
            op = self._accept("+", "-")
            if not op:
                return node
            node = Binary(op, node, self._term())

    def _term(self):
        node = self._unary()
        while True:
            op = self._accept("*", "/")
            if not op:
                return node
            node = Binary(op, node, self._unary())

    def _unary(self):
        if self._accept("-"):
            return Unary("-", self._unary())
        return self._primary()

    def _primary(self):
        kind, text = self._peek()
        if kind == "number":
            self.index += 1
            return Literal(float(text))
        if kind == "name":
            self.index += 1
            if text == "true":
                return Literal(True)
            if text == "false":
                return Literal(False)
            return Variable(text)
        if self._accept("("):
            node = self._or()
            if not self._accept(")"):
                raise FormulaError("Missing closing parenthesis", self.source)
            return node
        if kind == "end":
            raise FormulaError("Unexpected end of formula", self.source)
        raise FormulaError(f"Unexpected token {text!r}", self.source)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _numeric(op: str, fn: Callable[[float, float], Value]) -> Callable[[Value, Value, str], Value]:
    def apply(left: Value, right: Value, source: str) -> Value:
        if not (_is_number(left) and _is_number(right)):
            raise FormulaError(f"Operator '{op}' requires numbers", source)
        return fn(float(left), float(right))
    return apply


def _divide(left: Value, right: Value, source: str) -> Value:
    if not (_is_number(left) and _is_number(right)):
        raise FormulaError("Operator '/' requires numbers", source)
    if right == 0:
        raise FormulaError("Division by zero", source)
    return float(left) / float(right)


def _equality(negate: bool) -> Callable[[Value, Value, str], Value]:
    def apply(left: Value, right: Value, source: str) -> Value:
        if isinstance(left, bool) != isinstance(right, bool):
            raise FormulaError("Cannot compare a boolean with a number", source)
        return (left != right) if negate else (left == right)
    return apply


_BINARY_OPS: Dict[str, Callable[[Value, Value, str], Value]] = {
    "+": _numeric("+", lambda a, b: a + b),
    "-": _numeric("-", lambda a, b: a - b),
    "*": _numeric("*", lambda a, b: a * b),
    "/": _divide,
    "<": _numeric("<", lambda a, b: a < b),
    "<=": _numeric("<=", lambda a, b: a <= b),
    ">": _numeric(">", lambda a, b: a > b),
    ">=": _numeric(">=", lambda a, b: a >= b),
    "==": _equality(False),
    "!=": _equality(True),
}


def _evaluate(node, env: Mapping[str, Value], source: str) -> Value:
    if isinstance(node, Literal):
        return node.value

    if isinstance(node, Variable):
        if node.name not in env:
            raise FormulaError(f"Unknown variable '{node.name}'", source)
        value = env[node.name]
        if isinstance(value, bool):
            return value
        if _is_number(value):
            return float(value)
        raise FormulaError(f"Variable '{node.name}' has unsupported type {type(value).__name__}", source)

    if isinstance(node, Unary):
        operand = _evaluate(node.operand, env, source)
        if node.op == "!":
            if not isinstance(operand, bool):
                raise FormulaError("Operator '!' requires a boolean", source)
            return not operand
        if not _is_number(operand):
            raise FormulaError("Unary '-' requires a number", source)
        return -operand

    # Binary: logical operators short-circuit
    if node.op in ("&&", "||"):
        left = _evaluate(node.left, env, source)
        if not isinstance(left, bool):
            raise FormulaError(f"Operator '{node.op}' requires booleans", source)
        if node.op == "&&" and not left:
            return False
        if node.op == "||" and left:
            return True
        right = _evaluate(node.right, env, source)
        if not isinstance(right, bool):
            raise FormulaError(f"Operator '{node.op}' requires booleans", source)
        return right

    left = _evaluate(node.left, env, source)
    right = _evaluate(node.right, env, source)
    return _BINARY_OPS[node.op](left, right, source)


def _collect_variables(node, names: Set[str]) -> None:
    if isinstance(node, Variable):
        names.add(node.name)
    elif isinstance(node, Unary):
        _collect_variables(node.operand, names)
    elif isinstance(node, Binary):
        _collect_variables(node.left, names)
        _collect_variables(node.right, names)


class Formula:
    """
    A parsed, immutable formula.

    Formulas compare equal when their source text matches, so documents that
    are dumped and reloaded keep equal rules.
    """

    __slots__ = ("source", "_tree")

    def __init__(self, source: str):
        self.source = source.strip()
        self._tree = _Parser(tokenize(self.source), self.source).parse()

    def evaluate(self, env: Mapping[str, Value]) -> Value:
        """
        Evaluate the formula against a variable environment.

        Raises:
            FormulaError: On unknown variables, type mismatches, or division by zero
        """
        return _evaluate(self._tree, env, self.source)

    def evaluate_bool(self, env: Mapping[str, Value]) -> bool:
        """Evaluate and require a boolean result."""
        result = self.evaluate(env)
        if not isinstance(result, bool):
            raise FormulaError(f"Formula did not evaluate to a boolean (got {result!r})", self.source)
        return result

    def variables(self) -> Set[str]:
        """Names of all variables the formula references."""
        names: Set[str] = set()
        _collect_variables(self._tree, names)
        return names

    def __eq__(self, other) -> bool:
        return isinstance(other, Formula) and other.source == self.source

    def __hash__(self) -> int:
        return hash(self.source)

    def __str__(self) -> str:
        return self.source

    def __repr__(self) -> str:
        return f"Formula({self.source!r})"
