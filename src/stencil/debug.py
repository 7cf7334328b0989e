"""--dump render-program and AST trees."""

from __future__ import annotations

import sys
from typing import TextIO

from stencil.ast import (
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
    Literal,
    Macro,
    Node,
    Output,
    Template,
    Text,
    UnaryOp,
    Variable,
)
from stencil.ast import Assign as AssignNode
from stencil.codegen import (
    BoundCall,
    Branch,
    EmitExpr,
    EmitLiteral,
    IncludeTemplate,
    InvokeMacro,
    Loop,
    Op,
    RenderProgram,
    Store,
)
from stencil.macros import BoundArguments


def dump_program(program: RenderProgram, *, file: TextIO = sys.stderr) -> None:
    """Print a human-readable render-program tree to *file*."""
    file.write(f"RenderProgram {program.unit}\n")
    for macro in program.macros.values():
        params = ", ".join(_param(p.name, p.default) for p in macro.params)
        file.write(f"{_indent(1)}Macro {macro.name}({params})\n")
        _dump_ops(macro.body, 2, file)
    _dump_ops(program.ops, 1, file)


def dump_ast(template: Template, *, file: TextIO = sys.stderr) -> None:
    """Print a human-readable AST tree to *file*."""
    file.write("Template\n")
    _dump_nodes(template.body, 1, file)


def _indent(depth: int) -> str:
    return "  " * depth


def _param(name: str, default: Expr | None) -> str:
    return name if default is None else f"{name}={format_expr(default)}"


def _arguments(arguments: BoundArguments) -> str:
    return ", ".join(
        f"{a.param.name}={format_expr(a.value)}{' (default)' if a.is_default else ''}"
        for a in arguments
    )


def _dump_ops(ops: tuple[Op, ...], depth: int, f: TextIO) -> None:
    for op in ops:
        _dump_op(op, depth, f)


def _dump_op(op: Op, depth: int, f: TextIO) -> None:
    pad = _indent(depth)
    if isinstance(op, EmitLiteral):
        f.write(f"{pad}EmitLiteral({op.text!r})\n")
    elif isinstance(op, EmitExpr):
        f.write(f"{pad}EmitExpr[{op.escaper}] {format_expr(op.expr)}\n")
    elif isinstance(op, InvokeMacro):
        f.write(f"{pad}InvokeMacro {op.name}({_arguments(op.arguments)})\n")
        if op.caller is not None:
            f.write(f"{_indent(depth + 1)}Caller\n")
            _dump_ops(op.caller, depth + 2, f)
    elif isinstance(op, Branch):
        f.write(f"{pad}Branch\n")
        for arm in op.arms:
            label = "else" if arm.condition is None else format_expr(arm.condition)
            f.write(f"{_indent(depth + 1)}Arm {label}\n")
            _dump_ops(arm.ops, depth + 2, f)
    elif isinstance(op, Loop):
        f.write(f"{pad}Loop {', '.join(op.targets)} in {format_expr(op.iterable)}\n")
        _dump_ops(op.body, depth + 1, f)
        if op.otherwise:
            f.write(f"{_indent(depth + 1)}Else\n")
            _dump_ops(op.otherwise, depth + 2, f)
    elif isinstance(op, Store):
        f.write(f"{pad}Store {op.name} = {format_expr(op.expr)}\n")
    elif isinstance(op, IncludeTemplate):
        f.write(f"{pad}IncludeTemplate {op.name!r} -> {op.program.unit}\n")


def _dump_nodes(nodes: tuple[Node, ...], depth: int, f: TextIO) -> None:
    for node in nodes:
        _dump_node(node, depth, f)


def _dump_node(node: Node, depth: int, f: TextIO) -> None:
    pad = _indent(depth)
    if isinstance(node, Text):
        f.write(f"{pad}Text({node.value!r})\n")
    elif isinstance(node, Output):
        f.write(f"{pad}Output {format_expr(node.expr)}\n")
    elif isinstance(node, If):
        f.write(f"{pad}If\n")
        for arm in node.arms:
            label = "else" if arm.condition is None else format_expr(arm.condition)
            f.write(f"{_indent(depth + 1)}Arm {label}\n")
            _dump_nodes(arm.body, depth + 2, f)
    elif isinstance(node, For):
        f.write(f"{pad}For {', '.join(node.targets)} in {format_expr(node.iterable)}\n")
        _dump_nodes(node.body, depth + 1, f)
        if node.otherwise:
            f.write(f"{_indent(depth + 1)}Else\n")
            _dump_nodes(node.otherwise, depth + 2, f)
    elif isinstance(node, Macro):
        params = ", ".join(_param(p.name, p.default) for p in node.params)
        f.write(f"{pad}Macro {node.name}({params})\n")
        _dump_nodes(node.body, depth + 1, f)
    elif isinstance(node, CallBlock):
        f.write(f"{pad}CallBlock {node.call.name}\n")
        _dump_nodes(node.body, depth + 1, f)
    elif isinstance(node, Include):
        f.write(f"{pad}Include {node.path!r}\n")
    elif isinstance(node, AssignNode):
        f.write(f"{pad}Assign {node.name} = {format_expr(node.value)}\n")


def format_expr(expr: Expr) -> str:
    """Render an expression back to compact template syntax."""
    if isinstance(expr, Literal):
        if isinstance(expr.value, str):
            return repr(expr.value)
        if expr.value is None:
            return "none"
        if isinstance(expr.value, bool):
            return "true" if expr.value else "false"
        return str(expr.value)
    if isinstance(expr, Variable):
        return expr.name
    if isinstance(expr, BinaryOp):
        return f"({format_expr(expr.left)} {expr.op} {format_expr(expr.right)})"
    if isinstance(expr, UnaryOp):
        sep = " " if expr.op == "not" else ""
        return f"{expr.op}{sep}{format_expr(expr.operand)}"
    if isinstance(expr, FilterApply):
        args = f"({', '.join(format_expr(a) for a in expr.args)})" if expr.args else ""
        return f"{format_expr(expr.value)}|{expr.name}{args}"
    if isinstance(expr, Index):
        return f"{format_expr(expr.value)}[{format_expr(expr.index)}]"
    if isinstance(expr, Attribute):
        return f"{format_expr(expr.value)}.{expr.name}"
    if isinstance(expr, BoundCall):
        return f"{expr.name}({_arguments(expr.arguments)})"
    if isinstance(expr, Call):
        parts = [format_expr(a) for a in expr.args]
        parts.extend(f"{k.name}={format_expr(k.value)}" for k in expr.kwargs)
        return f"{format_expr(expr.func)}({', '.join(parts)})"
    raise TypeError(f"unknown expression {type(expr).__name__}")
