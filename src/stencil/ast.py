"""AST node types for parsed templates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from stencil.tokens import Span

# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Literal:
    """String, number, boolean or none literal."""

    value: str | int | float | bool | None
    span: Span


@dataclass(frozen=True, slots=True)
class Variable:
    name: str
    span: Span


@dataclass(frozen=True, slots=True)
class BinaryOp:
    op: str
    left: Expr
    right: Expr
    span: Span


@dataclass(frozen=True, slots=True)
class UnaryOp:
    op: str
    operand: Expr
    span: Span


@dataclass(frozen=True, slots=True)
class FilterApply:
    """value | name(args), an opaque named operation."""

    name: str
    value: Expr
    args: tuple[Expr, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class Index:
    value: Expr
    index: Expr
    span: Span


@dataclass(frozen=True, slots=True)
class Attribute:
    value: Expr
    name: str
    span: Span


@dataclass(frozen=True, slots=True)
class NamedArg:
    """Named argument: name=value."""

    name: str
    value: Expr
    name_span: Span
    span: Span


@dataclass(frozen=True, slots=True)
class Call:
    """func(args): a macro call when func names a macro, otherwise a host call."""

    func: Expr
    args: tuple[Expr, ...]
    kwargs: tuple[NamedArg, ...]
    args_span: Span
    span: Span


Expr = Union[Literal, Variable, BinaryOp, UnaryOp, FilterApply, Index, Attribute, Call]

# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Text:
    """Literal template text, already trimmed by whitespace control."""

    value: str
    span: Span


@dataclass(frozen=True, slots=True)
class Output:
    """{{ expr }}"""

    expr: Expr
    span: Span


@dataclass(frozen=True, slots=True)
class Arm:
    """One if/elif/else arm; condition is None for else."""

    condition: Expr | None
    body: tuple[Node, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class If:
    arms: tuple[Arm, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class For:
    targets: tuple[str, ...]
    iterable: Expr
    body: tuple[Node, ...]
    otherwise: tuple[Node, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class Param:
    """Macro parameter with optional default expression."""

    name: str
    default: Expr | None
    span: Span


@dataclass(frozen=True, slots=True)
class Macro:
    """{% macro name(params) %} body {% endmacro %}"""

    name: str
    params: tuple[Param, ...]
    body: tuple[Node, ...]
    name_span: Span
    span: Span


@dataclass(frozen=True, slots=True)
class MacroCall:
    """A call site of a macro, by name.

    ``args_span`` covers the parenthesized argument list and is where
    list-level problems (arity, missing arguments) are reported.
    """

    name: str
    args: tuple[Expr, ...]
    kwargs: tuple[NamedArg, ...]
    args_span: Span
    span: Span


@dataclass(frozen=True, slots=True)
class CallBlock:
    """{% call name(args) %} caller body {% endcall %}"""

    call: MacroCall
    body: tuple[Node, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class Include:
    path: str
    span: Span


@dataclass(frozen=True, slots=True)
class Assign:
    """{% set name = expr %}"""

    name: str
    value: Expr
    span: Span


Node = Union[Text, Output, If, For, Macro, CallBlock, Include, Assign]


@dataclass(frozen=True, slots=True)
class Template:
    """Root node of one source unit."""

    body: tuple[Node, ...]
    span: Span
