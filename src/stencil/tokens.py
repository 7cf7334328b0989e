"""Token types, data structures, and character classification helpers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto


class TokenType(Enum):
    # Template level
    TEXT = auto()  # literal text between tags
    # Delimiter tokens carry their trim marker ("-", "~", "+" or "") as value
    BLOCK_START = auto()  # {%
    BLOCK_END = auto()  # %}
    EXPR_START = auto()  # {{
    EXPR_END = auto()  # }}
    COMMENT_START = auto()  # {#
    COMMENT = auto()  # comment body
    COMMENT_END = auto()  # #}

    # Inside tags
    IDENTIFIER = auto()
    KEYWORD = auto()  # if, for, macro, and, or, not, ...
    OPERATOR = auto()  # == != < <= > >= + - * / // % ~
    STRING = auto()  # value is the decoded string
    NUMBER = auto()
    COMMA = auto()
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    EQUALS = auto()
    DOT = auto()
    PIPE = auto()
    COLON = auto()

    EOF = auto()


@dataclass(frozen=True, slots=True)
class Position:
    """Source position, 1-based line and column, 0-based character offset."""

    line: int
    column: int
    offset: int


@dataclass(frozen=True, slots=True)
class Span:
    """Half-open source range within one named source unit."""

    start: Position
    end: Position
    unit: str = "<input>"

    def __post_init__(self) -> None:
        if self.end.offset < self.start.offset:
            raise ValueError(f"span ends before it starts: {self.start} > {self.end}")

    def to(self, other: Span) -> Span:
        """Return the span covering from the start of self to the end of other."""
        return Span(self.start, other.end, self.unit)


@dataclass(frozen=True, slots=True)
class Token:
    """A single lexer token with decoded value and original source text."""

    type: TokenType
    value: str
    raw: str
    span: Span


# Whitespace-control markers allowed next to delimiters
TRIM_MARKERS = frozenset("-~+")

KEYWORDS = frozenset(
    {
        "if",
        "elif",
        "else",
        "endif",
        "for",
        "in",
        "endfor",
        "macro",
        "endmacro",
        "call",
        "endcall",
        "include",
        "set",
        "let",
        "and",
        "or",
        "not",
        "true",
        "false",
        "none",
        "True",
        "False",
        "None",
    }
)

# Longest first so that "//" wins over "/"
OPERATORS = ("==", "!=", "<=", ">=", "//", "<", ">", "+", "-", "*", "/", "%", "~")

SINGLE_CHAR_TOKENS: dict[str, TokenType] = {
    ",": TokenType.COMMA,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ".": TokenType.DOT,
    "|": TokenType.PIPE,
    ":": TokenType.COLON,
}


def is_ident_start(ch: str) -> bool:
    """Return True if ch may start an identifier."""
    return ch.isalpha() or ch == "_"


def is_ident_char(ch: str) -> bool:
    """Return True if ch is a valid identifier character."""
    return ch.isalnum() or ch == "_"
