"""
fab_engines.formula -- Arithmetic formula parser and evaluator.

Responsibility:
    Parse user-authored cutting formulas such as ``(W - 4.75) / 2`` into an
    immutable expression tree and evaluate them against named Decimal
    bindings.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import fab_kernel.exceptions and fab_kernel.domain.values.
    Consumed by fab_engines.glass and fab_services.boundary.

Grammar:
    expression := term (("+" | "-") term)*
    term       := unary (("*" | "/") unary)*
    unary      := ("+" | "-") unary | primary
    primary    := NUMBER | NAME | NAME "(" arguments ")" | "(" expression ")"
    arguments  := expression ("," expression)*

    NUMBER is a decimal literal (``12``, ``4.75``, ``.5``).  NAME is an
    identifier; function names may carry a ``Math.`` prefix
    (``Math.max(W, H)``).  Supported functions: ``min``, ``max``, ``abs``.

Invariants enforced:
    - Standard precedence, left associativity, unary minus binds tighter
      than ``*`` and ``/``.
    - Every intermediate value is a Decimal; floats never appear.
    - Parsed trees are immutable and cached per expression text, so one
      evaluator is safe to share between threads.

Failure modes:
    - FormulaSyntaxError: empty expression, invalid token, unbalanced
      parentheses, trailing input, unknown function or wrong arity,
      more than _MAX_TOKENS tokens or nesting deeper than _MAX_NESTING.
    - UnknownVariableError: a NAME absent from the bindings.
    - DivisionByZeroError: a divisor evaluating to zero.
    - ValidationError: a binding value that is not a finite number.

Usage:
    from fab_engines.formula import evaluate

    evaluate("(W - 4.75) / 2", {"W": 48})   # Decimal("21.625")
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

from fab_kernel.domain.values import to_decimal
from fab_kernel.exceptions import (
    DivisionByZeroError,
    FormulaSyntaxError,
    UnknownVariableError,
    ValidationError,
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d*)?|\.\d+)
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)
  | (?P<op>[-+*/(),])
    """,
    re.VERBOSE,
)

# Bounds keep parsing and evaluation well inside the interpreter stack.
_MAX_TOKENS = 500
_MAX_NESTING = 50

_FUNCTION_ARITY: dict[str, tuple[int, int | None]] = {
    "min": (1, None),
    "max": (1, None),
    "abs": (1, 1),
}


@dataclass(frozen=True, slots=True)
class Token:
    kind: str  # "number", "name", "op", "end"
    text: str
    position: int


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Number:
    value: Decimal


@dataclass(frozen=True, slots=True)
class Name:
    name: str


@dataclass(frozen=True, slots=True)
class UnaryOp:
    op: str
    operand: Node


@dataclass(frozen=True, slots=True)
class BinaryOp:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class Call:
    function: str
    arguments: tuple[Node, ...]


Node = Number | Name | UnaryOp | BinaryOp | Call


# ---------------------------------------------------------------------------
# Tokenizer and parser
# ---------------------------------------------------------------------------


def tokenize(expression: str) -> list[Token]:
    """Split ``expression`` into tokens, ending with an ``end`` token."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise FormulaSyntaxError(
                expression,
                f"invalid character {expression[pos]!r}",
                position=pos,
            )
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
            if len(tokens) > _MAX_TOKENS:
                raise FormulaSyntaxError(
                    expression,
                    f"expression is too long (more than {_MAX_TOKENS} tokens)",
                    position=pos,
                )
        pos = match.end()
    tokens.append(Token("end", "", len(expression)))
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, expression: str):
        self._expression = expression
        self._tokens = tokenize(expression)
        self._index = 0
        self._depth = 0

    def parse(self) -> Node:
        if self._peek().kind == "end":
            raise FormulaSyntaxError(self._expression, "expression is empty")
        node = self._expression_rule()
        token = self._peek()
        if token.kind != "end":
            if token.text == ")":
                reason = "unbalanced parentheses: unexpected ')'"
            else:
                reason = f"unexpected {token.text!r}"
            raise FormulaSyntaxError(self._expression, reason, position=token.position)
        return node

    def _peek(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept(self, text: str) -> bool:
        token = self._peek()
        if token.kind == "op" and token.text == text:
            self._index += 1
            return True
        return False

    def _expression_rule(self) -> Node:
        node = self._term()
        while self._peek().text in ("+", "-") and self._peek().kind == "op":
            op = self._advance().text
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._peek().text in ("*", "/") and self._peek().kind == "op":
            op = self._advance().text
            node = BinaryOp(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        # A run of signs folds into at most one UnaryOp.
        signs = 0
        negative = False
        while self._peek().kind == "op" and self._peek().text in ("+", "-"):
            negative ^= self._advance().text == "-"
            signs += 1
        operand = self._primary()
        if not signs:
            return operand
        return UnaryOp("-" if negative else "+", operand)

    def _nested(self, rule, position: int):
        if self._depth >= _MAX_NESTING:
            raise FormulaSyntaxError(
                self._expression,
                f"expression is nested too deeply (more than {_MAX_NESTING} levels)",
                position=position,
            )
        self._depth += 1
        try:
            return rule()
        finally:
            self._depth -= 1

    def _primary(self) -> Node:
        token = self._advance()
        if token.kind == "number":
            return Number(Decimal(token.text))
        if token.kind == "name":
            if self._accept("("):
                return self._nested(lambda: self._call(token), token.position)
            if "." in token.text:
                raise FormulaSyntaxError(
                    self._expression,
                    f"invalid name {token.text!r}",
                    position=token.position,
                )
            return Name(token.text)
        if token.kind == "op" and token.text == "(":
            node = self._nested(self._expression_rule, token.position)
            if not self._accept(")"):
                raise FormulaSyntaxError(
                    self._expression,
                    "unbalanced parentheses: missing ')'",
                    position=self._peek().position,
                )
            return node
        if token.kind == "end":
            raise FormulaSyntaxError(
                self._expression,
                "unexpected end of expression",
                position=token.position,
            )
        raise FormulaSyntaxError(
            self._expression,
            f"unexpected {token.text!r}",
            position=token.position,
        )

    def _call(self, name_token: Token) -> Call:
        function = _function_name(name_token.text)
        if function not in _FUNCTION_ARITY:
            raise FormulaSyntaxError(
                self._expression,
                f"unknown function {name_token.text!r}",
                position=name_token.position,
            )
        arguments: list[Node] = []
        if not self._accept(")"):
            arguments.append(self._expression_rule())
            while self._accept(","):
                arguments.append(self._expression_rule())
            if not self._accept(")"):
                raise FormulaSyntaxError(
                    self._expression,
                    "unbalanced parentheses: missing ')'",
                    position=self._peek().position,
                )
        low, high = _FUNCTION_ARITY[function]
        if len(arguments) < low or (high is not None and len(arguments) > high):
            raise FormulaSyntaxError(
                self._expression,
                f"{function}() takes {_arity_text(low, high)}, got {len(arguments)}",
                position=name_token.position,
            )
        return Call(function, tuple(arguments))


def _function_name(text: str) -> str:
    lowered = text.lower()
    if lowered.startswith("math."):
        lowered = lowered[len("math."):]
    return lowered


def _arity_text(low: int, high: int | None) -> str:
    if high is None:
        return f"at least {low} argument{'s' if low != 1 else ''}"
    return f"exactly {low} argument{'s' if low != 1 else ''}"


@lru_cache(maxsize=512)
def parse(expression: str) -> Node:
    """Parse ``expression`` into an immutable tree.  Results are cached."""
    if not isinstance(expression, str):
        raise FormulaSyntaxError(str(expression), "expression must be text")
    return _Parser(expression).parse()


def _walk_names(node: Node) -> Iterable[str]:
    if isinstance(node, Name):
        yield node.name
    elif isinstance(node, UnaryOp):
        yield from _walk_names(node.operand)
    elif isinstance(node, BinaryOp):
        yield from _walk_names(node.left)
        yield from _walk_names(node.right)
    elif isinstance(node, Call):
        for argument in node.arguments:
            yield from _walk_names(argument)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class FormulaEvaluator:
    """
    Evaluates formulas against Decimal bindings.

    Contract:
        ``evaluate(expression, bindings)`` returns the exact Decimal value of
        the expression.  With ``case_insensitive=True`` identifiers resolve
        regardless of case (``w`` binds to ``W``).

    Guarantees:
        - Stateless between calls; the only shared state is the parse cache,
          which holds immutable trees.

    Non-goals:
        - Does NOT support exponentiation, comparison or assignment.
    """

    def __init__(self, case_insensitive: bool = False):
        self.case_insensitive = case_insensitive

    def evaluate(self, expression: str, bindings: Mapping[str, object]) -> Decimal:
        tree = parse(expression)
        values = self._normalise_bindings(bindings)
        return self._eval(tree, values, expression)

    def variables(self, expression: str) -> frozenset[str]:
        """Names referenced by ``expression`` (upper-cased when case-insensitive)."""
        names = _walk_names(parse(expression))
        if self.case_insensitive:
            return frozenset(name.upper() for name in names)
        return frozenset(names)

    def validate(self, expression: str, allowed: Iterable[str]) -> frozenset[str]:
        """
        Check syntax and that every referenced name is in ``allowed``.

        Returns the referenced names.  Raises FormulaSyntaxError or
        UnknownVariableError (for the first disallowed name, alphabetically).
        """
        permitted = {self._key(name) for name in allowed}
        referenced = self.variables(expression)
        for name in sorted(referenced):
            if self._key(name) not in permitted:
                raise UnknownVariableError(expression, name)
        return referenced

    def _key(self, name: str) -> str:
        return name.upper() if self.case_insensitive else name

    def _normalise_bindings(self, bindings: Mapping[str, object]) -> dict[str, Decimal]:
        values: dict[str, Decimal] = {}
        for name, raw in bindings.items():
            key = self._key(name)
            if key in values:
                raise ValidationError(
                    "bindings",
                    f"variable {name!r} is bound more than once ignoring case",
                )
            values[key] = to_decimal(raw, f"bindings[{name}]")
        return values

    def _eval(self, node: Node, values: dict[str, Decimal], expression: str) -> Decimal:
        if isinstance(node, Number):
            return node.value
        if isinstance(node, Name):
            try:
                return values[self._key(node.name)]
            except KeyError:
                raise UnknownVariableError(expression, node.name) from None
        if isinstance(node, UnaryOp):
            operand = self._eval(node.operand, values, expression)
            return -operand if node.op == "-" else operand
        if isinstance(node, BinaryOp):
            left = self._eval(node.left, values, expression)
            right = self._eval(node.right, values, expression)
            if node.op == "+":
                return left + right
            if node.op == "-":
                return left - right
            if node.op == "*":
                return left * right
            if right == 0:
                raise DivisionByZeroError(expression)
            return left / right
        arguments = [self._eval(arg, values, expression) for arg in node.arguments]
        if node.function == "min":
            return min(arguments)
        if node.function == "max":
            return max(arguments)
        return abs(arguments[0])


_default = FormulaEvaluator()


def evaluate(expression: str, bindings: Mapping[str, object]) -> Decimal:
    """Evaluate with the default, case-sensitive evaluator."""
    return _default.evaluate(expression, bindings)


def variables(expression: str) -> frozenset[str]:
    return _default.variables(expression)


def validate(expression: str, allowed: Iterable[str]) -> frozenset[str]:
    return _default.validate(expression, allowed)
