"""Tagged expression tree for net-flux and isotope-stream formulas.

Variants:
- Constant: a number
- Parameter: a named scenario parameter (``net``, ``f_CH4``, ``eps_CH4``)
- ComponentState: a pool size (``isotope=None``) or a pool's delta value
- BinaryOp: ``+ - * / **``
- Call: one of a small set of functions (exp, log, sqrt, abs, min, max)

Expressions are immutable and hashable. They can be
- evaluated by a reference interpreter against a flat key -> value mapping,
- compiled once into closures over ``(constants, state)`` vectors, which is
  what the integrators call,
- converted to sympy for display.

Formula strings are parsed with sympy and converted into the tree, so
``"X.C + eps_CH4"`` and ``delta("X", "C") + param("eps_CH4")`` are the
same expression.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from fractions import Fraction
from functools import reduce
from tokenize import TokenError
from typing import Callable, Collection, Iterator, Mapping, Union

import numpy as np
import sympy as sp
from numpy.typing import NDArray
from sympy.parsing.sympy_parser import parse_expr

from .exceptions import ConfigurationError, MissingParameterError
from .utils import split_key, state_key

Compiled = Callable[[NDArray[np.float64], NDArray[np.float64]], float]
Locator = Callable[[str], "tuple[str, int]"]

_OPS: dict[str, Callable[[float, float], float]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "**": operator.pow,
}

# name -> (numeric implementation, sympy counterpart, arity or None for variadic)
_FUNCTIONS: dict[str, tuple[Callable[..., float], Callable[..., sp.Expr], int | None]] = {
    "exp": (np.exp, sp.exp, 1),
    "log": (np.log, sp.log, 1),
    "sqrt": (np.sqrt, sp.sqrt, 1),
    "abs": (np.abs, sp.Abs, 1),
    "min": (min, sp.Min, None),
    "max": (max, sp.Max, None),
}


class Expr:
    """Base class of all expression nodes."""

    __slots__ = ()

    def __add__(self, other):
        return add(self, other)

    def __radd__(self, other):
        return add(other, self)

    def __sub__(self, other):
        return sub(self, other)

    def __rsub__(self, other):
        return sub(other, self)

    def __mul__(self, other):
        return mul(self, other)

    def __rmul__(self, other):
        return mul(other, self)

    def __truediv__(self, other):
        return div(self, other)

    def __rtruediv__(self, other):
        return div(other, self)

    def __pow__(self, other):
        return power(self, other)

    def __neg__(self):
        return mul(-1.0, self)

    def children(self) -> tuple["Expr", ...]:
        return ()

    def walk(self) -> Iterator["Expr"]:
        """Depth-first iteration over this node and all of its descendants."""
        yield self
        for child in self.children():
            yield from child.walk()

    def parameters(self) -> frozenset[str]:
        return frozenset(n.name for n in self.walk() if isinstance(n, Parameter))

    def states(self) -> frozenset["ComponentState"]:
        return frozenset(n for n in self.walk() if isinstance(n, ComponentState))

    def keys(self) -> frozenset[str]:
        """Every flat key (parameter name or state key) this expression reads."""
        return self.parameters() | frozenset(s.key for s in self.states())

    def evaluate(self, env: Mapping[str, float]) -> float:
        raise NotImplementedError

    def compile(self, locate: Locator) -> Compiled:
        raise NotImplementedError

    def to_sympy(self) -> sp.Expr:
        raise NotImplementedError

    def __str__(self) -> str:
        return str(self.to_sympy())


def _lookup(env: Mapping[str, float], key: str) -> np.float64:
    try:
        return np.float64(env[key])
    except KeyError:
        raise MissingParameterError(key) from None


def _reader(locate: Locator, key: str) -> Compiled:
    kind, idx = locate(key)
    if kind == "constant":
        return lambda c, y: c[idx]
    if kind == "state":
        return lambda c, y: y[idx]
    raise ValueError(f"locate() returned unknown kind {kind!r} for '{key}'")


@dataclass(frozen=True)
class Constant(Expr):
    value: float

    def evaluate(self, env):
        return np.float64(self.value)

    def compile(self, locate):
        v = np.float64(self.value)
        return lambda c, y: v

    def to_sympy(self):
        return _sympy_number(self.value)


@dataclass(frozen=True)
class Parameter(Expr):
    name: str

    def evaluate(self, env):
        return _lookup(env, self.name)

    def compile(self, locate):
        return _reader(locate, self.name)

    def to_sympy(self):
        return sp.Symbol(self.name)


@dataclass(frozen=True)
class ComponentState(Expr):
    """Pool size of ``component`` (isotope=None) or its delta for ``isotope``."""

    component: str
    isotope: str | None = None

    @property
    def key(self) -> str:
        return state_key(self.component, self.isotope)

    def evaluate(self, env):
        return _lookup(env, self.key)

    def compile(self, locate):
        return _reader(locate, self.key)

    def to_sympy(self):
        return sp.Symbol(self.key)


@dataclass(frozen=True)
class BinaryOp(Expr):
    op: str
    left: Expr
    right: Expr

    def __post_init__(self):
        if self.op not in _OPS:
            raise ValueError(f"unknown operator {self.op!r}")

    def children(self):
        return (self.left, self.right)

    def evaluate(self, env):
        return _OPS[self.op](self.left.evaluate(env), self.right.evaluate(env))

    def compile(self, locate):
        fn = _OPS[self.op]
        lhs = self.left.compile(locate)
        rhs = self.right.compile(locate)
        return lambda c, y: fn(lhs(c, y), rhs(c, y))

    def to_sympy(self):
        a, b = self.left.to_sympy(), self.right.to_sympy()
        if self.op == "+":
            return a + b
        if self.op == "-":
            return a - b
        if self.op == "*":
            return a * b
        if self.op == "/":
            return a / b
        return a**b


@dataclass(frozen=True)
class Call(Expr):
    func: str
    args: tuple[Expr, ...]

    def __post_init__(self):
        if self.func not in _FUNCTIONS:
            raise ValueError(f"unknown function {self.func!r}")
        arity = _FUNCTIONS[self.func][2]
        if arity is not None and len(self.args) != arity:
            raise ValueError(f"{self.func}() takes {arity} argument(s), got {len(self.args)}")
        if arity is None and len(self.args) < 2:
            raise ValueError(f"{self.func}() needs at least two arguments")

    def children(self):
        return self.args

    def evaluate(self, env):
        fn = _FUNCTIONS[self.func][0]
        return np.float64(fn(*(a.evaluate(env) for a in self.args)))

    def compile(self, locate):
        fn = _FUNCTIONS[self.func][0]
        parts = tuple(a.compile(locate) for a in self.args)
        if len(parts) == 1:
            (only,) = parts
            return lambda c, y: fn(only(c, y))
        return lambda c, y: fn(*(p(c, y) for p in parts))

    def to_sympy(self):
        return _FUNCTIONS[self.func][1](*(a.to_sympy() for a in self.args))


ExprLike = Union[Expr, int, float]


# =============================================================================
# Constructors (with trivial simplification)
# =============================================================================
def const(value: float) -> Constant:
    return Constant(float(value))


def param(name: str) -> Parameter:
    return Parameter(name)


def mass(component: str) -> ComponentState:
    return ComponentState(component)


def delta(component: str, isotope: str) -> ComponentState:
    return ComponentState(component, isotope)


def as_expr(value: ExprLike) -> Expr:
    if isinstance(value, Expr):
        return value
    if isinstance(value, (bool, str)):
        raise TypeError(f"cannot use {value!r} as an expression; use parse_expression() for formulas")
    if isinstance(value, (int, float, np.number)):
        return Constant(float(value))
    raise TypeError(f"cannot use {type(value).__name__} as an expression")


def _is_const(e: Expr, value: float) -> bool:
    return isinstance(e, Constant) and e.value == value


def _fold(op: str, a: Expr, b: Expr) -> Expr:
    if isinstance(a, Constant) and isinstance(b, Constant):
        try:
            return Constant(float(_OPS[op](a.value, b.value)))
        except (ZeroDivisionError, OverflowError):
            pass
    return BinaryOp(op, a, b)


def add(a: ExprLike, b: ExprLike) -> Expr:
    a, b = as_expr(a), as_expr(b)
    if _is_const(a, 0.0):
        return b
    if _is_const(b, 0.0):
        return a
    return _fold("+", a, b)


def sub(a: ExprLike, b: ExprLike) -> Expr:
    a, b = as_expr(a), as_expr(b)
    if _is_const(b, 0.0):
        return a
    if _is_const(a, 0.0):
        return mul(-1.0, b)
    return _fold("-", a, b)


def mul(a: ExprLike, b: ExprLike) -> Expr:
    a, b = as_expr(a), as_expr(b)
    if _is_const(a, 0.0) or _is_const(b, 0.0):
        return Constant(0.0)
    if _is_const(a, 1.0):
        return b
    if _is_const(b, 1.0):
        return a
    return _fold("*", a, b)


def div(a: ExprLike, b: ExprLike) -> Expr:
    a, b = as_expr(a), as_expr(b)
    if _is_const(b, 1.0):
        return a
    if _is_const(a, 0.0) and not _is_const(b, 0.0):
        return Constant(0.0)
    return _fold("/", a, b)


def power(a: ExprLike, b: ExprLike) -> Expr:
    a, b = as_expr(a), as_expr(b)
    if _is_const(b, 1.0):
        return a
    if _is_const(b, 0.0):
        return Constant(1.0)
    return _fold("**", a, b)


def call(func: str, *args: ExprLike) -> Call:
    return Call(func, tuple(as_expr(a) for a in args))


def total(terms: list[Expr]) -> Expr:
    """Sum of a list of expressions (0 for an empty list)."""
    return reduce(add, terms, Constant(0.0))


def _sympy_number(value: float) -> sp.Expr:
    if float(value).is_integer():
        return sp.Integer(int(value))
    f = Fraction(value).limit_denominator(1000)
    if f.denominator <= 12 and abs(float(f) - value) < 1e-12 * max(1.0, abs(value)):
        return sp.Rational(f.numerator, f.denominator)
    return sp.Float(value)


# =============================================================================
# Parsing
# =============================================================================
_IDENT = re.compile(r"[A-Za-z_][A-Za-z_0-9]*(?:\.[A-Za-z_][A-Za-z_0-9]*)?")
_DOT = "__dot__"


def parse_expression(
    text: str | ExprLike,
    *,
    components: Collection[str] = (),
    isotopes: Collection[str] = (),
) -> Expr:
    """Parse a formula string into an expression tree.

    ``<component>.<isotope>`` is the delta of a pool, a bare component name is
    its pool size and every other identifier is a parameter. Expression
    objects and numbers are passed through unchanged.
    """
    if not isinstance(text, str):
        return as_expr(text)

    local: dict[str, object] = {name: entry[1] for name, entry in _FUNCTIONS.items()}

    def _symbolize(match: re.Match) -> str:
        token = match.group(0)
        if token in _FUNCTIONS:
            return token
        safe = token.replace(".", _DOT)
        local[safe] = sp.Symbol(safe)
        return safe

    source = _IDENT.sub(_symbolize, text)
    try:
        parsed = parse_expr(source, local_dict=local)
    except (SyntaxError, TokenError, TypeError, ValueError, AttributeError) as exc:
        raise ConfigurationError(f"cannot parse expression {text!r}: {exc}") from exc

    return _from_sympy(sp.sympify(parsed), text, frozenset(components), frozenset(isotopes))


def resolve_name(name: str, components: Collection[str], isotopes: Collection[str]) -> Expr:
    component, isotope = split_key(name)
    if isotope is not None:
        if component not in components:
            raise ConfigurationError(f"unknown component '{component}' in reference '{name}'")
        if isotope not in isotopes:
            raise ConfigurationError(f"isotope '{isotope}' in reference '{name}' is not declared")
        return ComponentState(component, isotope)
    if name in components:
        return ComponentState(name)
    return Parameter(name)


def _from_sympy(node: sp.Basic, text: str, components: frozenset[str], isotopes: frozenset[str]) -> Expr:
    def conv(n: sp.Basic) -> Expr:
        if n.is_Number:
            return Constant(float(n))
        if n.is_Symbol:
            return resolve_name(n.name.replace(_DOT, "."), components, isotopes)
        if n.is_Add:
            result: Expr | None = None
            for term in n.as_ordered_terms():
                coeff, _ = term.as_coeff_Mul()
                if result is not None and coeff.is_negative:
                    result = sub(result, conv(-term))
                else:
                    result = conv(term) if result is None else add(result, conv(term))
            return result if result is not None else Constant(0.0)
        if n.is_Mul:
            num: list[Expr] = []
            den: list[Expr] = []
            for arg in n.as_ordered_factors():
                if arg.is_Pow and arg.exp.is_Number and arg.exp.is_negative:
                    den.append(conv(arg.base ** (-arg.exp)))
                else:
                    num.append(conv(arg))
            numerator = reduce(mul, num, Constant(1.0))
            return div(numerator, reduce(mul, den)) if den else numerator
        if n.is_Pow:
            if n.exp == sp.Rational(1, 2):
                return call("sqrt", conv(n.base))
            if n.exp == -1:
                return div(1.0, conv(n.base))
            if n.base == sp.E:
                return call("exp", conv(n.exp))
            return power(conv(n.base), conv(n.exp))
        for name, entry in _FUNCTIONS.items():
            if n.func == entry[1]:
                return call(name, *(conv(a) for a in n.args))
        raise ConfigurationError(f"unsupported construct {n} in expression {text!r}")

    return conv(node)
