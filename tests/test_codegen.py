"""Tests for render-program generation."""

from __future__ import annotations

import pytest

from stencil.codegen import (
    BoundCall,
    Branch,
    EmitExpr,
    EmitLiteral,
    InvokeMacro,
    Loop,
    Store,
    generate,
)
from stencil.errors import StencilError
from stencil.macros import build_macro_table
from stencil.parser import parse


def program_of(compile_source, source: str, name: str = "test.html"):
    result = compile_source(source, name)
    assert result.diagnostics == (), result.report()
    return result.program


class TestOperations:
    def test_literal_and_expression(self, compile_source):
        program = program_of(compile_source, "Hello {{ name }}!")
        assert [type(op) for op in program.ops] == [EmitLiteral, EmitExpr, EmitLiteral]
        assert program.ops[0].text == "Hello "
        assert program.ops[1].expr.name == "name"
        assert program.ops[1].escaper == "html"

    def test_escaper_follows_extension(self, compile_source):
        program = program_of(compile_source, "{{ x }}", "notes.txt")
        assert program.ops[0].escaper == "text"

    def test_consecutive_literals_are_merged(self, compile_source):
        program = program_of(compile_source, "a{# note #}b{% macro m() %}{% endmacro %}c")
        assert program.ops == (EmitLiteral("abc", program.ops[0].span),)

    def test_empty_template(self, compile_source):
        assert program_of(compile_source, "").ops == ()

    def test_branch(self, compile_source):
        program = program_of(compile_source, "{% if a %}1{% elif b %}2{% else %}3{% endif %}")
        (branch,) = program.ops
        assert isinstance(branch, Branch)
        assert [arm.condition is None for arm in branch.arms] == [False, False, True]
        assert [arm.ops[0].text for arm in branch.arms] == ["1", "2", "3"]

    def test_loop(self, compile_source):
        program = program_of(compile_source, "{% for x in xs %}{{ x }}{% else %}-{% endfor %}")
        (loop,) = program.ops
        assert isinstance(loop, Loop)
        assert loop.targets == ("x",)
        assert isinstance(loop.body[0], EmitExpr)
        assert loop.otherwise[0].text == "-"

    def test_store(self, compile_source):
        program = program_of(compile_source, "{% set total = a + b %}")
        (store,) = program.ops
        assert isinstance(store, Store)
        assert store.name == "total"
        assert store.expr.op == "+"


class TestMacros:
    SOURCE = "{% macro card(title, body=none) %}<h1>{{ title }}</h1>{% endmacro %}"

    def test_definitions_live_in_program(self, compile_source):
        program = program_of(compile_source, self.SOURCE)
        assert program.ops == ()
        card = program.macros["card"]
        assert [p.name for p in card.params] == ["title", "body"]
        assert [type(op) for op in card.body] == [EmitLiteral, EmitExpr, EmitLiteral]

    def test_expression_call_invokes_macro(self, compile_source):
        program = program_of(compile_source, self.SOURCE + '{{ card("x") }}')
        (invoke,) = program.ops
        assert isinstance(invoke, InvokeMacro)
        assert invoke.name == "card"
        assert invoke.caller is None
        assert len(invoke.arguments) == 2
        assert [a.is_default for a in invoke.arguments] == [False, True]

    def test_call_block_has_caller(self, compile_source):
        program = program_of(
            compile_source, self.SOURCE + '{% call card(title="x") %}inner{% endcall %}'
        )
        (invoke,) = program.ops
        assert isinstance(invoke, InvokeMacro)
        assert invoke.caller == (EmitLiteral("inner", invoke.caller[0].span),)

    def test_host_call_is_an_expression(self, compile_source):
        program = program_of(compile_source, "{{ range(3) }}")
        assert isinstance(program.ops[0], EmitExpr)

    def test_shadowed_macro_uses_last_definition(self, compile_source):
        program = program_of(
            compile_source,
            "{% macro m() %}first{% endmacro %}{% macro m() %}second{% endmacro %}",
        )
        assert program.macros["m"].body[0].text == "second"


class TestNestedMacroCalls:
    MACRO = "{% macro m(a, b=2) %}{{ a }}{% endmacro %}"

    def test_call_inside_output_expression(self, compile_source):
        program = program_of(compile_source, self.MACRO + '{{ "x" ~ m(b=1, a=3) }}')
        (emit,) = program.ops
        assert isinstance(emit, EmitExpr)
        call = emit.expr.right
        assert isinstance(call, BoundCall)
        assert call.name == "m"
        assert [(a.param.name, a.value.value) for a in call.arguments] == [("a", 3), ("b", 1)]

    def test_call_in_store_gets_default(self, compile_source):
        program = program_of(compile_source, self.MACRO + "{% set y = m(1) %}")
        (store,) = program.ops
        assert isinstance(store.expr, BoundCall)
        assert [a.is_default for a in store.expr.arguments] == [False, True]
        assert store.expr.arguments.arguments[1].value.value == 2

    def test_call_in_condition_and_iterable(self, compile_source):
        program = program_of(
            compile_source,
            self.MACRO + "{% if m(1) %}{% for x in m(2) %}{% endfor %}{% endif %}",
        )
        (branch,) = program.ops
        assert isinstance(branch.arms[0].condition, BoundCall)
        assert isinstance(branch.arms[0].ops[0].iterable, BoundCall)

    def test_call_as_macro_argument(self, compile_source):
        program = program_of(compile_source, self.MACRO + "{{ m(m(1)) }}")
        (invoke,) = program.ops
        assert isinstance(invoke, InvokeMacro)
        inner = invoke.arguments.arguments[0].value
        assert isinstance(inner, BoundCall)
        assert len(inner.arguments) == 2

    def test_call_in_parameter_default(self, compile_source):
        program = program_of(
            compile_source,
            "{% macro inner() %}{% endmacro %}{% macro outer(x=inner()) %}{% endmacro %}",
        )
        (param,) = program.macros["outer"].params
        assert isinstance(param.default, BoundCall)
        assert param.default.name == "inner"

    def test_host_call_arguments_are_bound(self, compile_source):
        program = program_of(compile_source, self.MACRO + "{{ range(m(1)) }}")
        (emit,) = program.ops
        assert emit.expr.func.name == "range"
        assert isinstance(emit.expr.args[0], BoundCall)

class TestGenerate:
    def test_unbound_call_is_rejected(self):
        source = "{% macro m() %}{% endmacro %}{{ m() }}"
        template, _ = parse(source, "t.html")
        table = build_macro_table(template)
        with pytest.raises(StencilError, match="call to macro `m` was not bound"):
            generate(template, table, {}, unit="t.html")

    def test_default_unit_and_escaper(self):
        template, _ = parse("{{ x }}")
        program = generate(template, build_macro_table(template), {})
        assert program.unit == "<input>"
        assert program.ops[0].escaper == "text"
