"""Shared test fixtures and helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from stencil.ast import Template
from stencil.compiler import Compilation, Compiler
from stencil.config import Config
from stencil.errors import Diagnostic
from stencil.lexer import tokenize
from stencil.parser import parse
from stencil.tokens import Token, TokenType


@pytest.fixture
def lex():
    """Return a helper that tokenizes source and returns tokens (excluding EOF)."""

    def _lex(source: str) -> list[Token]:
        tokens = tokenize(source, "test.html")
        # Strip trailing EOF for convenience
        return [t for t in tokens if t.type != TokenType.EOF]

    return _lex


@pytest.fixture
def parse_source():
    """Return a helper that parses source and returns (Template, diagnostics)."""

    def _parse(source: str, unit: str = "test.html") -> tuple[Template, list[Diagnostic]]:
        return parse(source, unit)

    return _parse


@pytest.fixture
def parse_ok():
    """Return a helper that parses source and asserts it has no diagnostics."""

    def _parse(source: str) -> Template:
        template, diagnostics = parse(source, "test.html")
        assert diagnostics == [], [d.message for d in diagnostics]
        return template

    return _parse


@pytest.fixture
def compile_source():
    """Return a helper that compiles inline source with a fresh Compiler."""

    def _compile(source: str, name: str = "test.html") -> Compilation:
        return Compiler(Config(dirs=[])).compile_source(source, name)

    return _compile


@pytest.fixture
def template_dir(tmp_path: Path):
    """Return a helper that writes templates under tmp_path and a Compiler rooted there."""

    def _write(files: dict[str, str]) -> Compiler:
        for name, text in files.items():
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return Compiler(Config(dirs=[tmp_path]))

    return _write


def assert_types(tokens: list[Token], expected: list[TokenType]) -> None:
    """Assert that the token types match the expected list."""
    actual = [t.type for t in tokens]
    assert actual == expected, f"Expected {expected}, got {actual}"


def assert_values(tokens: list[Token], expected: list[str]) -> None:
    """Assert that the token values match the expected list."""
    actual = [t.value for t in tokens]
    assert actual == expected, f"Expected {expected}, got {actual}"


def messages(diagnostics) -> list[str]:
    """Return the messages of a diagnostic sequence."""
    return [d.message for d in diagnostics]
