"""
conditions.py - Sandboxed boolean expressions for Conditional commands.

Conditions are short expressions written by the server, for example:

    user.is_admin
    isLoggedIn && !isEmpty(user.nickname)
    state.settings.theme == 'dark' || user.level >= 3

They are evaluated against a fixed, read-only ConditionContext. The evaluator
is a small recursive-descent parser; it never compiles or executes host code,
and the only names an expression can see are:

- user: snapshot of the current user (mapping or null)
- state: snapshot of the other data kinds (settings, cache, ...)
- isLoggedIn / is_logged_in, isAdmin / is_admin: zero-argument predicates,
  usable bare or called with ()
- isEmpty(value) / is_empty(value)

Supported syntax:
- Boolean logic: ||, &&, ! (and the words or, and, not)
- Comparisons: ==, !=, ===, !==, <, <=, >, >=
- Literals: 'single' or "double" quoted strings, ints, floats,
  true/false/null (True/False/None also accepted)
- Property access with dots, on mappings only; names starting with _ are
  rejected
- Parentheses for grouping

Evaluation fails closed: any error yields (False, message) and the caller
logs it. Nothing here raises into command execution.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from routekit.runtime.errors import ConditionError

logger = logging.getLogger(__name__)


# =============================================================================
# Context
# =============================================================================


def _freeze(value: Any) -> Any:
    """Recursively wrap mappings and lists in read-only views."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class ConditionContext:
    """Read-only snapshot that condition expressions are evaluated against.

    Attributes:
        user: Current user snapshot, or None when nobody is logged in.
        state: Other client state kinds keyed by data type (settings, cache...).
    """

    user: Optional[Mapping[str, Any]] = None
    state: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "user", _freeze(self.user))
        object.__setattr__(self, "state", _freeze(self.state))

    @property
    def is_logged_in(self) -> bool:
        return bool(self.user)

    @property
    def is_admin(self) -> bool:
        if not isinstance(self.user, Mapping):
            return False
        return bool(self.user.get("is_admin", False))


def _is_empty(value: Any) -> bool:
    return not value


# name -> (arity, implementation)
_PREDICATES: Dict[str, Tuple[int, Callable[..., bool]]] = {
    "isLoggedIn": (0, lambda ctx: ctx.is_logged_in),
    "is_logged_in": (0, lambda ctx: ctx.is_logged_in),
    "isAdmin": (0, lambda ctx: ctx.is_admin),
    "is_admin": (0, lambda ctx: ctx.is_admin),
    "isEmpty": (1, lambda ctx, value: _is_empty(value)),
    "is_empty": (1, lambda ctx, value: _is_empty(value)),
}

_BINDINGS = ("user", "state")

_LITERALS: Dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "True": True,
    "False": False,
    "None": None,
}


# =============================================================================
# Tokenizer
# =============================================================================

_TOKEN_RE = re.compile(
    r"""
    (?P<number>\d+\.\d+|\d+)
    |(?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
    |(?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!().,])
    |(?P<name>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_COMPARISON_OPS = {"==", "!=", "===", "!==", "<", "<=", ">", ">="}

Token = Tuple[str, str]


def _tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    length = len(expression)
    while pos < length:
        if expression[pos].isspace():
            pos += 1
            continue
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise ConditionError(expression, f"unexpected character {expression[pos]!r} at {pos}")
        kind = match.lastgroup or ""
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


# =============================================================================
# Parser
# =============================================================================
# AST nodes are plain tuples so parsed expressions can be cached and shared:
#   ("lit", value) ("name", ident) ("attr", node, key) ("call", ident, [args])
#   ("not", node) ("and", left, right) ("or", left, right) ("cmp", op, left, right)


class _Parser:
    def __init__(self, expression: str) -> None:
        self._expression = expression
        self._tokens = _tokenize(expression)
        self._pos = 0

    def _peek(self) -> Optional[Token]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise ConditionError(self._expression, "unexpected end of expression")
        self._pos += 1
        return token

    def _accept(self, *values: str) -> Optional[str]:
        token = self._peek()
        if token is not None and token[0] in ("op", "name") and token[1] in values:
            self._pos += 1
            return token[1]
        return None

    def _expect(self, value: str) -> None:
        if self._accept(value) is None:
            found = self._peek()
            raise ConditionError(
                self._expression,
                f"expected {value!r}, found {found[1] if found else 'end of expression'!r}",
            )

    def parse(self) -> tuple:
        if not self._tokens:
            raise ConditionError(self._expression, "empty expression")
        node = self._parse_or()
        if self._peek() is not None:
            raise ConditionError(self._expression, f"unexpected token {self._peek()[1]!r}")
        return node

    def _parse_or(self) -> tuple:
        node = self._parse_and()
        while self._accept("||", "or"):
            node = ("or", node, self._parse_and())
        return node

    def _parse_and(self) -> tuple:
        node = self._parse_unary()
        while self._accept("&&", "and"):
            node = ("and", node, self._parse_unary())
        return node

    def _parse_unary(self) -> tuple:
        if self._accept("!", "not"):
            return ("not", self._parse_unary())
        return self._parse_comparison()

    def _parse_comparison(self) -> tuple:
        left = self._parse_primary()
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] in _COMPARISON_OPS:
            self._pos += 1
            return ("cmp", token[1], left, self._parse_primary())
        return left

    def _parse_primary(self) -> tuple:
        kind, value = self._advance()

        if kind == "number":
            try:
                return ("lit", float(value) if "." in value else int(value))
            except ValueError as e:
                raise ConditionError(self._expression, f"invalid number literal: {e}") from e
        if kind == "string":
            return ("lit", _unquote(value))
        if kind == "op" and value == "(":
            node = self._parse_or()
            self._expect(")")
            return node
        if kind != "name":
            raise ConditionError(self._expression, f"unexpected token {value!r}")

        if value in _LITERALS:
            return ("lit", _LITERALS[value])
        if value in ("and", "or", "not"):
            raise ConditionError(self._expression, f"unexpected keyword {value!r}")
        self._check_name(value)

        if self._accept("("):
            args: List[tuple] = []
            if not self._accept(")"):
                args.append(self._parse_or())
                while self._accept(","):
                    args.append(self._parse_or())
                self._expect(")")
            return ("call", value, args)

        node: tuple = ("name", value)
        while self._accept("."):
            key_kind, key = self._advance()
            if key_kind != "name":
                raise ConditionError(self._expression, f"invalid property name {key!r}")
            self._check_name(key)
            node = ("attr", node, key)
        return node

    def _check_name(self, name: str) -> None:
        if name.startswith("_"):
            raise ConditionError(self._expression, f"access to {name!r} is not allowed")


@functools.lru_cache(maxsize=256)
def parse_condition(expression: str) -> tuple:
    """Parse an expression into a cached, context-independent tree.

    Raises:
        ConditionError: If the expression is not valid syntax.
    """
    return _Parser(expression).parse()


# =============================================================================
# Evaluator
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(expression: str, op: str, left: Any, right: Any) -> bool:
    if op in ("==", "==="):
        return left == right
    if op in ("!=", "!=="):
        return left != right

    orderable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not orderable:
        raise ConditionError(
            expression,
            f"cannot compare {type(left).__name__} {op} {type(right).__name__}",
        )
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


class ConditionEvaluator:
    """Evaluate condition expressions against a ConditionContext.

    Example:
        >>> evaluator = ConditionEvaluator()
        >>> ctx = ConditionContext(user={"is_admin": True})
        >>> evaluator.evaluate("user.is_admin", ctx)
        (True, None)
        >>> evaluator.evaluate("user.missing > 3", ctx)[0]
        False
    """

    def evaluate(self, expression: str, context: ConditionContext) -> Tuple[bool, Optional[str]]:
        """Evaluate an expression, failing closed.

        Args:
            expression: The condition string from a Conditional command.
            context: Read-only bindings the expression may reference.

        Returns:
            Tuple of (result, error_message or None). On any failure the
            result is False and the message describes the problem.
        """
        try:
            if not isinstance(expression, str):
                raise ConditionError(repr(expression), "condition must be a string")
            tree = parse_condition(expression)
            return bool(self._eval(expression, tree, context)), None
        except ConditionError as err:
            logger.debug("Condition evaluation error: %s", err)
            return False, err.detail
        except RecursionError:
            return False, "expression nested too deeply"
        except Exception as err:
            logger.warning("Condition %r failed unexpectedly, treating as false: %s", expression, err)
            return False, str(err)

    def _eval(self, expression: str, node: tuple, context: ConditionContext) -> Any:
        kind = node[0]

        if kind == "lit":
            return node[1]

        if kind == "name":
            name = node[1]
            if name in _BINDINGS:
                return getattr(context, name)
            predicate = _PREDICATES.get(name)
            if predicate is not None and predicate[0] == 0:
                return predicate[1](context)
            raise ConditionError(expression, f"unknown identifier {name!r}")

        if kind == "attr":
            base = self._eval(expression, node[1], context)
            key = node[2]
            if base is None:
                raise ConditionError(expression, f"cannot read property {key!r} of null")
            if not isinstance(base, Mapping):
                raise ConditionError(
                    expression, f"cannot read property {key!r} of {type(base).__name__}"
                )
            if key not in base:
                raise ConditionError(expression, f"unknown property {key!r}")
            return base[key]

        if kind == "call":
            name, arg_nodes = node[1], node[2]
            predicate = _PREDICATES.get(name)
            if predicate is None:
                raise ConditionError(expression, f"unknown function {name!r}")
            arity, impl = predicate
            if len(arg_nodes) != arity:
                raise ConditionError(
                    expression, f"{name}() takes {arity} argument(s), got {len(arg_nodes)}"
                )
            args = [self._eval(expression, arg, context) for arg in arg_nodes]
            return impl(context, *args)

        if kind == "not":
            return not self._eval(expression, node[1], context)

        if kind == "and":
            return bool(self._eval(expression, node[1], context)) and bool(
                self._eval(expression, node[2], context)
            )

        if kind == "or":
            return bool(self._eval(expression, node[1], context)) or bool(
                self._eval(expression, node[2], context)
            )

        if kind == "cmp":
            left = self._eval(expression, node[2], context)
            right = self._eval(expression, node[3], context)
            return _compare(expression, node[1], left, right)

        raise ConditionError(expression, f"unsupported node {kind!r}")
