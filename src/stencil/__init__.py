"""Stencil: compile-time template engine with macro binding diagnostics."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stencil.codegen import RenderProgram
    from stencil.config import Config

__version__ = "0.1.0"


def compile_template(
    source: str,
    name: str = "<input>",
    config: Config | None = None,
) -> RenderProgram:
    """Lex, parse, bind and generate the render program of a template source.

    Raises TemplateError carrying every diagnostic when compilation fails.
    """
    from stencil.compiler import compile_template as _compile

    return _compile(source, name, config)
