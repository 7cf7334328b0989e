"""Diagnostics and the error types that carry them."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from stencil.tokens import Span


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A located compile problem.

    ``secondary`` holds the enclosing include/declaration sites, innermost
    first and outermost last.
    """

    message: str
    span: Span
    secondary: tuple[Span, ...] = ()
    severity: Severity = Severity.ERROR

    @property
    def unit(self) -> str:
        return self.span.unit

    def through(self, site: Span) -> Diagnostic:
        """Return a copy seen through one more enclosing site."""
        return Diagnostic(self.message, self.span, (*self.secondary, site), self.severity)


class StencilError(Exception):
    """Base class for every error raised by the compiler."""


class _LocatedError(StencilError):
    def __init__(self, message: str, span: Span, source: str) -> None:
        self.message = message
        self.span = span
        self.source = source
        self.diagnostic = Diagnostic(message, span)
        super().__init__(self.format())

    def format(self, sources: Mapping[str, str] | None = None) -> str:
        from stencil.report import render

        return render(self.diagnostic, sources or {self.span.unit: self.source})


class LexError(_LocatedError):
    """Raised on the first lexing error; aborts the rest of the unit."""


class ParseError(_LocatedError):
    """Raised on a grammar violation; the parser records it and resynchronizes."""


class BindError(_LocatedError):
    """Raised when a call site cannot be bound to its macro."""


class ConfigError(StencilError):
    """Raised for an invalid configuration file or syntax definition."""


class TemplateError(StencilError):
    """Raised when a compilation finished with one or more diagnostics."""

    def __init__(self, diagnostics: Sequence[Diagnostic], sources: Mapping[str, str]) -> None:
        self.diagnostics = tuple(diagnostics)
        self.sources = dict(sources)
        super().__init__(self.format())

    def format(self) -> str:
        from stencil.report import render_all

        return render_all(self.diagnostics, self.sources)
