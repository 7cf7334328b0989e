"""Test compiler-style diagnostic rendering."""

from __future__ import annotations

from stencil.errors import Diagnostic, Severity
from stencil.report import render, render_all
from stencil.tokens import Position, Span

SOURCE = "{% macro thrice(param) %}{% endmacro %}\n{{ thrice(2, 3) }}\n"


def span(line: int, col: int, end_col: int, unit: str = "t.html", end_line: int | None = None) -> Span:
    end_line = end_line if end_line is not None else line
    # Offsets only need to be ordered for these tests
    return Span(Position(line, col, col), Position(end_line, end_col, end_col + 100 * end_line), unit)


class TestRender:
    def test_primary_excerpt(self):
        diag = Diagnostic("macro `thrice` expected 1 argument, found 2", span(2, 10, 16))
        assert render(diag, {"t.html": SOURCE}) == "\n".join(
            [
                "error: macro `thrice` expected 1 argument, found 2",
                "  --> t.html:2:10",
                "  |",
                "2 | {{ thrice(2, 3) }}",
                "  |          ^^^^^^",
            ]
        )

    def test_secondary_spans_innermost_first(self):
        sources = {
            "part.html": "{{ m() }}\n",
            "page.html": 'x\n{% include "part.html" %}\n',
        }
        diag = Diagnostic(
            "missing argument when calling macro `m`: `a`",
            span(1, 5, 7, "part.html"),
            (span(2, 1, 26, "page.html"), span(12, 5, 9, "host.py")),
        )
        assert render(diag, sources) == "\n".join(
            [
                "error: missing argument when calling macro `m`: `a`",
                "  --> part.html:1:5",
                "  |",
                "1 | {{ m() }}",
                "  |     ^^",
                "  --> page.html:2:1",
                "  |",
                '2 | {% include "part.html" %}',
                "  | ^^^^^^^^^^^^^^^^^^^^^^^^^",
                "   --> host.py:12:5",
            ]
        )

    def test_multiline_span_underlines_to_end_of_line(self):
        diag = Diagnostic("expected `{% endif %}` to close `if` block", span(1, 4, 3, end_line=2))
        text = render(diag, {"t.html": "ab cdef\nxyz"})
        assert text.splitlines()[-1] == "  |    ^^^^"

    def test_empty_span_gets_one_caret(self):
        diag = Diagnostic("expected expression", span(1, 4, 4))
        assert render(diag, {"t.html": "{{ }}"}).splitlines()[-1] == "  |    ^"

    def test_warning_severity(self):
        diag = Diagnostic("note this", span(1, 1, 2), severity=Severity.WARNING)
        assert render(diag, {"t.html": "x"}).startswith("warning: note this\n")

    def test_wide_gutter(self):
        source = "\n" * 11 + "{{ x }}"
        diag = Diagnostic("bad", span(12, 4, 5))
        lines = render(diag, {"t.html": source}).splitlines()
        assert lines[1] == "   --> t.html:12:4"
        assert lines[3] == "12 | {{ x }}"


class TestStability:
    def test_byte_identical(self):
        diag = Diagnostic("bad", span(2, 10, 16), (span(1, 1, 3),))
        first = render(diag, {"t.html": SOURCE})
        second = render(diag, {"t.html": SOURCE})
        assert first == second

    def test_render_all_separates_with_blank_line(self):
        a = Diagnostic("first", span(1, 1, 2))
        b = Diagnostic("second", span(2, 1, 2))
        text = render_all([a, b], {"t.html": SOURCE})
        assert "\n\nerror: second" in text
        assert text.startswith("error: first")

    def test_through_appends_outer_site(self):
        diag = Diagnostic("bad", span(1, 1, 2))
        site = span(3, 1, 2, "outer.html")
        outer = span(9, 1, 2, "host.py")
        wrapped = diag.through(site).through(outer)
        assert wrapped.secondary == (site, outer)
        assert diag.secondary == ()
