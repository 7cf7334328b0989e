"""Compiler-style rendering of diagnostics with source excerpts."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from stencil.errors import Diagnostic
from stencil.tokens import Span


def render(diagnostic: Diagnostic, sources: Mapping[str, str]) -> str:
    """Render one diagnostic: primary excerpt, then each enclosing site, innermost first.

    ``sources`` maps unit names to their text. Sites whose unit is not in
    ``sources`` are reported by location only.
    """
    lines = [f"{diagnostic.severity.value}: {diagnostic.message}"]
    lines.extend(_excerpt(diagnostic.span, sources.get(diagnostic.span.unit)))
    for site in diagnostic.secondary:
        lines.extend(_excerpt(site, sources.get(site.unit)))
    return "\n".join(lines)


def render_all(diagnostics: Iterable[Diagnostic], sources: Mapping[str, str]) -> str:
    """Render several diagnostics separated by blank lines."""
    return "\n\n".join(render(d, sources) for d in diagnostics)


def _excerpt(span: Span, source: str | None) -> list[str]:
    line_num = str(span.start.line)
    gutter_width = len(line_num) + 1
    location = f"{' ' * gutter_width}--> {span.unit}:{span.start.line}:{span.start.column}"
    if source is None:
        return [location]

    # Only \n counts as a line break for the lexer, so split the same way
    source_lines = source.split("\n")
    line_idx = span.start.line - 1
    if 0 <= line_idx < len(source_lines):
        source_line = source_lines[line_idx].rstrip("\r")
    else:
        source_line = ""

    col = span.start.column
    # Underline the full span when on one line, otherwise to end of line
    if span.end.line == span.start.line:
        underline_len = max(1, span.end.column - col)
    else:
        underline_len = max(1, len(source_line) - col + 1)

    pad = " " * (col - 1)
    carets = "^" * underline_len

    blank_gutter = " " * gutter_width + "|"
    line_gutter = f"{line_num:>{gutter_width - 1}} |"

    return [
        location,
        blank_gutter,
        f"{line_gutter} {source_line}",
        f"{blank_gutter} {pad}{carets}",
    ]
