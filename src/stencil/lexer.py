"""Stencil lexer: converts template text into a lazy token stream."""

from __future__ import annotations

from collections.abc import Iterator

from stencil.config import Syntax
from stencil.errors import LexError
from stencil.tokens import (
    KEYWORDS,
    OPERATORS,
    SINGLE_CHAR_TOKENS,
    TRIM_MARKERS,
    Position,
    Span,
    Token,
    TokenType,
    is_ident_char,
    is_ident_start,
)

_STRING_ESCAPES = {"\\": "\\", '"': '"', "'": "'", "n": "\n", "t": "\t", "r": "\r"}


class Lexer:
    """Tokenize template source text into a stream of Token objects.

    Tokens are produced on demand. Each ``tokens()`` call starts from the
    beginning of the source with its own cursor, so several streams over
    one Lexer may be consumed side by side.
    """

    def __init__(self, source: str, unit: str = "<input>", syntax: Syntax | None = None) -> None:
        self._source = source
        self._unit = unit
        self._syntax = syntax or Syntax()
        self._pos = 0
        self._line = 1
        self._col = 1

    def tokens(self) -> Iterator[Token]:
        """Return a fresh token stream, up to and including EOF."""
        return Lexer(self._source, self._unit, self._syntax)._scan()

    def _scan(self) -> Iterator[Token]:
        syntax = self._syntax

        while self._pos < len(self._source):
            opener = self._next_opener()
            if opener is None:
                yield self._text(len(self._source))
                break

            idx, delim = opener
            if idx > self._pos:
                yield self._text(idx)

            if delim == syntax.comment_start:
                yield from self._comment()
            elif delim == syntax.block_start:
                yield self._open(TokenType.BLOCK_START, delim)
                yield from self._tag()
            else:
                yield self._open(TokenType.EXPR_START, delim)
                yield from self._tag()

        yield self._token(TokenType.EOF, "", "", self._current_pos())

    # ------------------------------------------------------------------
    # Position helpers
    # ------------------------------------------------------------------

    def _current_pos(self) -> Position:
        return Position(self._line, self._col, self._pos)

    def _peek(self, offset: int = 0) -> str:
        idx = self._pos + offset
        if idx < len(self._source):
            return self._source[idx]
        return ""

    def _startswith(self, s: str) -> bool:
        return self._source.startswith(s, self._pos)

    def _advance(self) -> str:
        ch = self._source[self._pos]
        self._pos += 1
        if ch == "\n":
            self._line += 1
            self._col = 1
        else:
            self._col += 1
        return ch

    def _advance_by(self, count: int) -> str:
        start = self._pos
        for _ in range(count):
            self._advance()
        return self._source[start : self._pos]

    def _token(self, tt: TokenType, value: str, raw: str, start: Position) -> Token:
        return Token(tt, value, raw, Span(start, self._current_pos(), self._unit))

    def _error(self, message: str, start: Position | None = None) -> LexError:
        if start is None:
            start = self._current_pos()
        end = self._current_pos() if start.offset < self._pos else start
        return LexError(message, Span(start, end, self._unit), self._source)

    # ------------------------------------------------------------------
    # Text mode
    # ------------------------------------------------------------------

    def _next_opener(self) -> tuple[int, str] | None:
        syntax = self._syntax
        best: tuple[int, str] | None = None
        for delim in (syntax.block_start, syntax.expr_start, syntax.comment_start):
            idx = self._source.find(delim, self._pos)
            if idx != -1 and (best is None or idx < best[0]):
                best = (idx, delim)
        return best

    def _text(self, end: int) -> Token:
        nul = self._source.find("\0", self._pos, end)
        if nul != -1:
            self._advance_by(nul - self._pos)
            raise self._error("NUL character in source")
        start = self._current_pos()
        text = self._advance_by(end - self._pos)
        return self._token(TokenType.TEXT, text, text, start)

    def _open(self, tt: TokenType, delim: str) -> Token:
        start = self._current_pos()
        raw = self._advance_by(len(delim))
        marker = ""
        if self._peek() in TRIM_MARKERS:
            marker = self._advance()
            raw += marker
        return self._token(tt, marker, raw, start)

    def _comment(self) -> Iterator[Token]:
        syntax = self._syntax
        start = self._current_pos()
        yield self._open(TokenType.COMMENT_START, syntax.comment_start)

        end = self._source.find(syntax.comment_end, self._pos)
        if end == -1:
            raise self._error("unterminated comment", start)

        marker = ""
        body_end = end
        if body_end > self._pos and self._source[body_end - 1] in TRIM_MARKERS:
            marker = self._source[body_end - 1]
            body_end -= 1

        body_start = self._current_pos()
        body = self._advance_by(body_end - self._pos)
        yield self._token(TokenType.COMMENT, body, body, body_start)

        close_start = self._current_pos()
        raw = self._advance_by(len(marker) + len(syntax.comment_end))
        yield self._token(TokenType.COMMENT_END, marker, raw, close_start)

    # ------------------------------------------------------------------
    # Tag mode (inside block and expression delimiters)
    # ------------------------------------------------------------------

    def _tag(self) -> Iterator[Token]:
        syntax = self._syntax
        closers = ((syntax.block_end, TokenType.BLOCK_END), (syntax.expr_end, TokenType.EXPR_END))

        while self._pos < len(self._source):
            ch = self._peek()

            if ch in " \t\r\n":
                self._advance()
                continue

            if ch in TRIM_MARKERS:
                for delim, tt in closers:
                    if self._source.startswith(delim, self._pos + 1):
                        start = self._current_pos()
                        raw = self._advance_by(1 + len(delim))
                        yield self._token(tt, ch, raw, start)
                        return

            for delim, tt in closers:
                if self._startswith(delim):
                    start = self._current_pos()
                    raw = self._advance_by(len(delim))
                    yield self._token(tt, "", raw, start)
                    return

            if ch == "\0":
                raise self._error("NUL character in source")

            if is_ident_start(ch):
                yield self._identifier()
            elif ch.isdigit():
                yield self._number()
            elif ch in "\"'":
                yield self._string()
            else:
                yield self._punct()

    def _identifier(self) -> Token:
        start = self._current_pos()
        chars = []
        while self._pos < len(self._source) and is_ident_char(self._peek()):
            chars.append(self._advance())
        text = "".join(chars)
        tt = TokenType.KEYWORD if text in KEYWORDS else TokenType.IDENTIFIER
        return self._token(tt, text, text, start)

    def _number(self) -> Token:
        start = self._current_pos()
        chars = []
        while self._peek().isdigit() or self._peek() == "_":
            chars.append(self._advance())
        if self._peek() == "." and self._peek(1).isdigit():
            chars.append(self._advance())
            while self._peek().isdigit() or self._peek() == "_":
                chars.append(self._advance())
        text = "".join(chars)
        return self._token(TokenType.NUMBER, text.replace("_", ""), text, start)

    def _string(self) -> Token:
        start = self._current_pos()
        quote = self._advance()
        chars = []
        while True:
            if self._pos >= len(self._source):
                raise self._error("unterminated string literal", start)
            ch = self._peek()
            if ch == quote:
                self._advance()
                break
            if ch == "\\":
                esc_start = self._current_pos()
                self._advance()
                if self._pos >= len(self._source):
                    raise self._error("unterminated string literal", start)
                esc = self._advance()
                if esc not in _STRING_ESCAPES:
                    raise self._error(f"unknown escape sequence `\\{esc}`", esc_start)
                chars.append(_STRING_ESCAPES[esc])
                continue
            if ch == "\0":
                raise self._error("NUL character in source")
            chars.append(self._advance())
        raw = self._source[start.offset : self._pos]
        return self._token(TokenType.STRING, "".join(chars), raw, start)

    def _punct(self) -> Token:
        start = self._current_pos()
        ch = self._peek()

        for op in OPERATORS:
            if self._startswith(op):
                raw = self._advance_by(len(op))
                return self._token(TokenType.OPERATOR, op, raw, start)

        if ch == "=":
            self._advance()
            return self._token(TokenType.EQUALS, "=", "=", start)

        if ch in SINGLE_CHAR_TOKENS:
            self._advance()
            return self._token(SINGLE_CHAR_TOKENS[ch], ch, ch, start)

        self._advance()
        raise self._error(f"invalid character `{ch}`", start)


def tokenize(source: str, unit: str = "<input>", syntax: Syntax | None = None) -> Iterator[Token]:
    """Convenience function: return a lazy token stream for source text."""
    return Lexer(source, unit, syntax).tokens()
