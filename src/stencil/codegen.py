"""Abstract render-program generation from a bound AST."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Union

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
    Include,
    Index,
    Macro,
    MacroCall,
    Node,
    Output,
    Param,
    Template,
    Text,
    UnaryOp,
)
from stencil.errors import StencilError
from stencil.macros import BoundArguments, MacroTable, as_macro_call
from stencil.tokens import Span

# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EmitLiteral:
    text: str
    span: Span


@dataclass(frozen=True, slots=True)
class EmitExpr:
    """Evaluate an expression and write it through the named escaper."""

    expr: Expr
    escaper: str
    span: Span


@dataclass(frozen=True, slots=True)
class InvokeMacro:
    """Call a macro; ``caller`` is the body of a call block, if any."""

    name: str
    arguments: BoundArguments
    caller: tuple[Op, ...] | None
    span: Span


@dataclass(frozen=True, slots=True)
class BranchArm:
    condition: Expr | None
    ops: tuple[Op, ...]


@dataclass(frozen=True, slots=True)
class Branch:
    arms: tuple[BranchArm, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class Loop:
    targets: tuple[str, ...]
    iterable: Expr
    body: tuple[Op, ...]
    otherwise: tuple[Op, ...]
    span: Span


@dataclass(frozen=True, slots=True)
class Store:
    name: str
    expr: Expr
    span: Span


@dataclass(frozen=True, slots=True)
class IncludeTemplate:
    name: str
    program: RenderProgram
    span: Span


@dataclass(frozen=True, slots=True)
class BoundCall:
    """A macro call nested inside an expression, with its arguments bound.

    Replaces the macro's ``Call`` node wherever it appears in an operation's
    expressions or a parameter default.
    """

    name: str
    arguments: BoundArguments
    span: Span


Op = Union[EmitLiteral, EmitExpr, InvokeMacro, Branch, Loop, Store, IncludeTemplate]


@dataclass(frozen=True, slots=True)
class MacroProgram:
    name: str
    params: tuple[Param, ...]
    body: tuple[Op, ...]


@dataclass(frozen=True, slots=True)
class RenderProgram:
    """Backend-independent operations of one compiled template."""

    unit: str
    ops: tuple[Op, ...]
    macros: dict[str, MacroProgram] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class Generator:
    """Walk statements and emit operations.

    Every macro call site must already be bound; generation never runs for
    a template that produced diagnostics.
    """

    def __init__(
        self,
        table: MacroTable,
        bindings: Mapping[Span, BoundArguments],
        escaper: str,
        includes: Mapping[Span, RenderProgram],
    ) -> None:
        self._table = table
        self._bindings = bindings
        self._escaper = escaper
        self._includes = includes

    def generate(self, template: Template, unit: str) -> RenderProgram:
        macros = {
            name: MacroProgram(name, self._params(macro.params), self._ops(macro.body))
            for name, macro in self._table.macros.items()
        }
        return RenderProgram(unit, self._ops(template.body), macros)

    def _ops(self, nodes: tuple[Node, ...]) -> tuple[Op, ...]:
        ops: list[Op] = []
        for node in nodes:
            op = self._op(node)
            if op is None:
                continue
            if isinstance(op, EmitLiteral) and ops and isinstance(ops[-1], EmitLiteral):
                prev = ops[-1]
                ops[-1] = EmitLiteral(prev.text + op.text, prev.span.to(op.span))
            else:
                ops.append(op)
        return tuple(ops)

    def _op(self, node: Node) -> Op | None:
        if isinstance(node, Text):
            return EmitLiteral(node.value, node.span) if node.value else None

        if isinstance(node, Output):
            call = as_macro_call(node.expr, self._table)
            if call is not None:
                return InvokeMacro(call.name, self._bound(call), None, node.span)
            return EmitExpr(self._expr(node.expr), self._escaper, node.span)

        if isinstance(node, If):
            arms = tuple(
                BranchArm(
                    None if arm.condition is None else self._expr(arm.condition),
                    self._ops(arm.body),
                )
                for arm in node.arms
            )
            return Branch(arms, node.span)

        if isinstance(node, For):
            return Loop(
                node.targets,
                self._expr(node.iterable),
                self._ops(node.body),
                self._ops(node.otherwise),
                node.span,
            )

        if isinstance(node, CallBlock):
            return InvokeMacro(
                node.call.name, self._bound(node.call), self._ops(node.body), node.span
            )

        if isinstance(node, Assign):
            return Store(node.name, self._expr(node.value), node.span)

        if isinstance(node, Include):
            return IncludeTemplate(node.path, self._includes[node.span], node.span)

        if isinstance(node, Macro):
            # Definitions live in RenderProgram.macros
            return None

        raise StencilError(f"cannot generate code for {type(node).__name__}")

    def _bound(self, call: MacroCall) -> BoundArguments:
        """Look up a call site's binding and bind the calls inside its arguments.

        Default values are left as declared; ``MacroProgram.params`` holds
        their bound form.
        """
        try:
            bound = self._bindings[call.span]
        except KeyError:
            raise StencilError(f"call to macro `{call.name}` was not bound") from None
        arguments = tuple(
            arg if arg.is_default else replace(arg, value=self._expr(arg.value))
            for arg in bound
        )
        return replace(bound, arguments=arguments)

    def _params(self, params: tuple[Param, ...]) -> tuple[Param, ...]:
        return tuple(
            p if p.default is None else replace(p, default=self._expr(p.default))
            for p in params
        )

    def _expr(self, expr: Expr) -> Expr:
        call = as_macro_call(expr, self._table)
        if call is not None:
            return BoundCall(call.name, self._bound(call), expr.span)
        if isinstance(expr, BinaryOp):
            return replace(expr, left=self._expr(expr.left), right=self._expr(expr.right))
        if isinstance(expr, UnaryOp):
            return replace(expr, operand=self._expr(expr.operand))
        if isinstance(expr, FilterApply):
            return replace(
                expr,
                value=self._expr(expr.value),
                args=tuple(self._expr(a) for a in expr.args),
            )
        if isinstance(expr, Index):
            return replace(expr, value=self._expr(expr.value), index=self._expr(expr.index))
        if isinstance(expr, Attribute):
            return replace(expr, value=self._expr(expr.value))
        if isinstance(expr, Call):
            return replace(
                expr,
                func=self._expr(expr.func),
                args=tuple(self._expr(a) for a in expr.args),
                kwargs=tuple(replace(k, value=self._expr(k.value)) for k in expr.kwargs),
            )
        return expr


def generate(
    template: Template,
    table: MacroTable,
    bindings: Mapping[Span, BoundArguments],
    *,
    unit: str = "<input>",
    escaper: str = "text",
    includes: Mapping[Span, RenderProgram] | None = None,
) -> RenderProgram:
    """Convenience function: generate the render program of a bound template."""
    return Generator(table, bindings, escaper, includes or {}).generate(template, unit)
