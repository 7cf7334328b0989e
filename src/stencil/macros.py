"""Macro table construction and call-site argument binding."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from stencil.ast import (
    Assign,
    Attribute,
    BinaryOp,
    Call,
    CallBlock,
    Expr,
    FilterApply,
    For,
    If,
    Index,
    Macro,
    MacroCall,
    Node,
    Output,
    Param,
    Template,
    UnaryOp,
    Variable,
)
from stencil.errors import BindError, Diagnostic
from stencil.tokens import Span

logger = logging.getLogger(__name__)


@dataclass
class MacroTable:
    """Name-keyed macro definitions of one compilation unit."""

    macros: dict[str, Macro] = field(default_factory=dict)

    def define(self, macro: Macro) -> None:
        # Later definitions shadow earlier ones
        if macro.name in self.macros:
            logger.debug(
                "macro %s at %d:%d shadows the definition at %d:%d",
                macro.name,
                macro.name_span.start.line,
                macro.name_span.start.column,
                self.macros[macro.name].name_span.start.line,
                self.macros[macro.name].name_span.start.column,
            )
        self.macros[macro.name] = macro

    def lookup(self, name: str) -> Macro | None:
        return self.macros.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.macros

    def __len__(self) -> int:
        return len(self.macros)


def build_macro_table(template: Template) -> MacroTable:
    """Collect every macro definition, including nested ones, in one pass."""
    table = MacroTable()
    for node in walk_nodes(template.body):
        if isinstance(node, Macro):
            table.define(node)
    return table


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BoundArgument:
    """A parameter and the expression it receives.

    When ``is_default`` is set, ``value`` is the parameter's default
    expression, evaluated at render time in the macro's own scope.
    """

    param: Param
    value: Expr
    is_default: bool = False


@dataclass(frozen=True, slots=True)
class BoundArguments:
    """Arguments of one call site, in macro parameter order."""

    macro: str
    arguments: tuple[BoundArgument, ...]

    def __len__(self) -> int:
        return len(self.arguments)

    def __iter__(self) -> Iterator[BoundArgument]:
        return iter(self.arguments)


def bind(call: MacroCall, table: MacroTable, source: str) -> BoundArguments:
    """Bind a call site's arguments to its macro's parameters.

    Raises BindError for the first rule the call violates.
    """
    macro = table.lookup(call.name)
    if macro is None:
        raise BindError(f"undefined macro `{call.name}`", call.span, source)

    params = macro.params
    if len(call.args) > len(params):
        raise BindError(
            f"macro `{call.name}` expected {len(params)} argument, found {len(call.args)}",
            call.args_span,
            source,
        )

    assigned: dict[str, Expr] = {}
    for param, value in zip(params, call.args):
        assigned[param.name] = value

    names = {p.name for p in params}
    for arg in call.kwargs:
        if arg.name not in names:
            raise BindError(
                f"no argument named `{arg.name}` in macro `{call.name}`", arg.span, source
            )
        if arg.name in assigned:
            raise BindError(
                f"argument `{arg.name}` was passed more than once when calling macro `{call.name}`",
                arg.span,
                source,
            )
        assigned[arg.name] = arg.value

    missing = [p.name for p in params if p.name not in assigned and p.default is None]
    if len(missing) == 1:
        raise BindError(
            f"missing argument when calling macro `{call.name}`: `{missing[0]}`",
            call.args_span,
            source,
        )
    if missing:
        raise BindError(
            f"missing arguments when calling macro `{call.name}`: {_join_names(missing)}",
            call.args_span,
            source,
        )

    bound = []
    for param in params:
        value = assigned.get(param.name)
        if value is None:
            bound.append(BoundArgument(param, param.default, is_default=True))
        else:
            bound.append(BoundArgument(param, value))
    return BoundArguments(call.name, tuple(bound))


def _join_names(names: list[str]) -> str:
    quoted = [f"`{n}`" for n in names]
    return ", ".join(quoted[:-1]) + f" and {quoted[-1]}"


def bind_all(
    template: Template, table: MacroTable, source: str
) -> tuple[dict[Span, BoundArguments], list[Diagnostic]]:
    """Bind every call site; failures are collected, never partial.

    Returns the successful bindings keyed by call span, and one diagnostic
    per failing call site.
    """
    bindings: dict[Span, BoundArguments] = {}
    diagnostics: list[Diagnostic] = []
    for call in call_sites(template, table):
        try:
            bindings[call.span] = bind(call, table, source)
        except BindError as exc:
            diagnostics.append(exc.diagnostic)
    return bindings, diagnostics


def as_macro_call(expr: Expr, table: MacroTable) -> MacroCall | None:
    """View a call expression as a macro call site when its callee names a macro."""
    if isinstance(expr, Call) and isinstance(expr.func, Variable) and expr.func.name in table:
        return MacroCall(expr.func.name, expr.args, expr.kwargs, expr.args_span, expr.span)
    return None


def call_sites(template: Template, table: MacroTable) -> Iterator[MacroCall]:
    """Yield every macro call site of the template in source order."""
    for node in walk_nodes(template.body):
        if isinstance(node, CallBlock):
            yield node.call
            exprs = [*node.call.args, *(a.value for a in node.call.kwargs)]
        else:
            exprs = _node_exprs(node)
        for root in exprs:
            for expr in _walk_expr(root):
                call = as_macro_call(expr, table)
                if call is not None:
                    yield call


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


def walk_nodes(nodes: tuple[Node, ...]) -> Iterator[Node]:
    for node in nodes:
        yield node
        if isinstance(node, If):
            for arm in node.arms:
                yield from walk_nodes(arm.body)
        elif isinstance(node, For):
            yield from walk_nodes(node.body)
            yield from walk_nodes(node.otherwise)
        elif isinstance(node, (Macro, CallBlock)):
            yield from walk_nodes(node.body)


def _node_exprs(node: Node) -> list[Expr]:
    if isinstance(node, Output):
        return [node.expr]
    if isinstance(node, If):
        return [arm.condition for arm in node.arms if arm.condition is not None]
    if isinstance(node, For):
        return [node.iterable]
    if isinstance(node, Assign):
        return [node.value]
    if isinstance(node, Macro):
        return [p.default for p in node.params if p.default is not None]
    return []


def _walk_expr(expr: Expr) -> Iterator[Expr]:
    yield expr
    if isinstance(expr, BinaryOp):
        yield from _walk_expr(expr.left)
        yield from _walk_expr(expr.right)
    elif isinstance(expr, UnaryOp):
        yield from _walk_expr(expr.operand)
    elif isinstance(expr, FilterApply):
        yield from _walk_expr(expr.value)
        for arg in expr.args:
            yield from _walk_expr(arg)
    elif isinstance(expr, Index):
        yield from _walk_expr(expr.value)
        yield from _walk_expr(expr.index)
    elif isinstance(expr, Attribute):
        yield from _walk_expr(expr.value)
    elif isinstance(expr, Call):
        yield from _walk_expr(expr.func)
        for arg in expr.args:
            yield from _walk_expr(arg)
        for kwarg in expr.kwargs:
            yield from _walk_expr(kwarg.value)
