"""Minimal LSP server for Stencil: diagnostics only."""

from __future__ import annotations

from pathlib import Path

from lsprotocol.types import (
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    Diagnostic,
    DiagnosticRelatedInformation,
    DiagnosticSeverity,
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    Location,
    Position,
    PublishDiagnosticsParams,
    Range,
    TextDocumentSyncKind,
)
from pygls.lsp.server import LanguageServer

from stencil import errors
from stencil.compiler import Compiler
from stencil.config import load_config
from stencil.errors import ConfigError, Severity
from stencil.tokens import Span

server = LanguageServer("stencil-lsp", "0.1.0", text_document_sync_kind=TextDocumentSyncKind.Full)

_SEVERITIES = {
    Severity.ERROR: DiagnosticSeverity.Error,
    Severity.WARNING: DiagnosticSeverity.Warning,
}


def _range(span: Span) -> Range:
    return Range(
        start=Position(line=span.start.line - 1, character=span.start.column - 1),
        end=Position(line=span.end.line - 1, character=span.end.column - 1),
    )


def _unit_uri(unit: str, uri: str, name: str) -> str:
    if unit == name or unit.startswith("<"):
        return uri
    return Path(unit).absolute().as_uri()


def _to_lsp(diag: errors.Diagnostic, uri: str, name: str) -> Diagnostic:
    """Convert a diagnostic, anchoring it in this document.

    A problem inside an included template is shown on the include site
    that leads to it; every other span becomes related information.
    """
    spans = [diag.span, *diag.secondary]
    anchor = next((s for s in spans if s.unit == name), diag.span)
    related = [
        DiagnosticRelatedInformation(
            location=Location(uri=_unit_uri(s.unit, uri, name), range=_range(s)),
            message=diag.message if s is diag.span else "required from here",
        )
        for s in spans
        if s is not anchor
    ]
    return Diagnostic(
        range=_range(anchor),
        message=diag.message,
        severity=_SEVERITIES[diag.severity],
        source="stencil",
        related_information=related or None,
    )


def _validate(ls: LanguageServer, uri: str) -> None:
    """Run the Stencil pipeline and publish diagnostics."""
    doc = ls.workspace.get_text_document(uri)
    source = doc.source
    path = Path(doc.path) if doc.path else None
    name = str(path) if path is not None else uri
    diagnostics: list[Diagnostic] = []

    try:
        config = load_config(None, path.parent if path is not None else Path("."))
    except ConfigError as exc:
        diagnostics.append(
            Diagnostic(
                range=Range(
                    start=Position(line=0, character=0),
                    end=Position(line=0, character=0),
                ),
                message=str(exc),
                severity=DiagnosticSeverity.Error,
                source="stencil",
            )
        )
    else:
        result = Compiler(config).compile_source(source, name, path=path)
        diagnostics.extend(_to_lsp(d, uri, name) for d in result.diagnostics)

    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params: DidOpenTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params: DidChangeTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


def main() -> None:
    server.start_io()
