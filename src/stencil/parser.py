"""Stencil parser: converts a token stream into an AST plus diagnostics."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import TypeVar

from stencil.ast import (
    Arm,
    Assign,
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
    MacroCall,
    NamedArg,
    Node,
    Output,
    Param,
    Template,
    Text,
    UnaryOp,
    Variable,
)
from stencil.config import Syntax, Whitespace
from stencil.errors import Diagnostic, LexError, ParseError
from stencil.lexer import tokenize
from stencil.tokens import Position, Span, Token, TokenType

UNCLOSED_PARAMS = "expected `)` to close macro argument list"
UNCLOSED_ARGS = "expected `)` to close call argument list"

T = TypeVar("T")


class Parser:
    """Recursive descent parser for template token streams.

    A syntax error is recorded as a diagnostic and parsing resumes at the
    end of the offending tag, so one pass can report several independent
    errors. A lexical error ends the pass.
    """

    def __init__(
        self,
        tokens: Iterable[Token],
        source: str,
        unit: str = "<input>",
        syntax: Syntax | None = None,
        whitespace: Whitespace = Whitespace.PRESERVE,
    ) -> None:
        self._tokens: Iterator[Token] = iter(tokens)
        self._buffer: list[Token] = []
        self._source = source
        self._unit = unit
        self._syntax = syntax or Syntax()
        self._whitespace = whitespace
        self._diagnostics: list[Diagnostic] = []
        self._prev: Token | None = None
        # Trim marker of the last closing delimiter, None when no tag precedes
        self._left_marker: str | None = None

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return self._diagnostics

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        while len(self._buffer) <= offset:
            if self._buffer and self._buffer[-1].type == TokenType.EOF:
                return self._buffer[-1]
            self._buffer.append(next(self._tokens))
        return self._buffer[offset]

    def _at(self, *types: TokenType) -> bool:
        return self._peek().type in types

    def _at_keyword(self, *words: str) -> bool:
        tok = self._peek()
        return tok.type == TokenType.KEYWORD and tok.value in words

    def _advance(self) -> Token:
        tok = self._peek()
        if tok.type != TokenType.EOF:
            self._buffer.pop(0)
        if tok.type in _CLOSERS:
            self._left_marker = tok.value
        self._prev = tok
        return tok

    def _expect(self, tt: TokenType, message: str) -> Token:
        tok = self._peek()
        if tok.type != tt:
            raise self._error(message, tok.span)
        return self._advance()

    def _expect_keyword(self, word: str) -> Token:
        if not self._at_keyword(word):
            raise self._error(f"expected `{word}`", self._peek().span)
        return self._advance()

    def _expect_block_end(self) -> Token:
        return self._expect(TokenType.BLOCK_END, f"expected `{self._syntax.block_end}`")

    def _prev_end(self) -> Position:
        """End position of the previously consumed token."""
        if self._prev is not None:
            return self._prev.span.end
        return self._peek().span.start

    def _span_from(self, start: Position) -> Span:
        return Span(start, self._prev_end(), self._unit)

    # ------------------------------------------------------------------
    # Errors and recovery
    # ------------------------------------------------------------------

    def _error(self, message: str, span: Span | None = None) -> ParseError:
        if span is None:
            span = self._peek().span
        return ParseError(message, span, self._source)

    def _report(self, message: str, span: Span) -> None:
        self._diagnostics.append(Diagnostic(message, span))

    def _recover(self, exc: ParseError) -> None:
        """Record a syntax error and skip to the end of the current tag."""
        self._diagnostics.append(exc.diagnostic)
        while not self._at(TokenType.EOF):
            tok = self._advance()
            if tok.type in _CLOSERS:
                break

    # ------------------------------------------------------------------
    # Template level
    # ------------------------------------------------------------------

    def parse(self) -> Template:
        start = Position(1, 1, 0)
        try:
            body, _ = self._parse_nodes(frozenset())
        except LexError as exc:
            self._diagnostics.append(exc.diagnostic)
            body = []
        end = self._prev_end()
        return Template(tuple(body), Span(start, end, self._unit))

    def _parse_nodes(self, until: frozenset[str]) -> tuple[list[Node], str | None]:
        """Parse nodes until a block tag whose keyword is in ``until``.

        The terminating tag is left unconsumed; its keyword is returned, or
        None when the input ended first.
        """
        nodes: list[Node] = []
        while True:
            tok = self._peek()
            if tok.type == TokenType.EOF:
                return nodes, None

            if tok.type == TokenType.TEXT:
                text = self._parse_text()
                if text.value:
                    nodes.append(text)
                continue

            if tok.type == TokenType.COMMENT_START:
                self._parse_comment()
                continue

            if tok.type == TokenType.BLOCK_START:
                kw = self._peek(1)
                if kw.type == TokenType.KEYWORD and kw.value in until:
                    return nodes, kw.value

            try:
                node = self._parse_tag()
            except ParseError as exc:
                self._recover(exc)
                continue
            if node is not None:
                nodes.append(node)

    def _parse_text(self) -> Text:
        tok = self._advance()
        following = self._peek()
        right_marker = following.value if following.type in _OPENERS else None
        value = _trim_left(tok.value, self._effective(self._left_marker))
        value = _trim_right(value, self._effective(right_marker))
        self._left_marker = None
        return Text(value, tok.span)

    def _effective(self, marker: str | None) -> Whitespace:
        if marker is None:
            return Whitespace.PRESERVE
        return Whitespace.from_marker(marker) or self._whitespace

    def _parse_comment(self) -> None:
        self._advance()  # COMMENT_START
        self._expect(TokenType.COMMENT, "expected comment body")
        self._expect(TokenType.COMMENT_END, f"expected `{self._syntax.comment_end}`")

    def _parse_tag(self) -> Node | None:
        if self._at(TokenType.EXPR_START):
            return self._parse_output()
        if self._at(TokenType.BLOCK_START):
            return self._parse_statement()
        tok = self._advance()
        raise self._error(f"unexpected `{tok.raw}`", tok.span)

    def _parse_output(self) -> Output:
        start = self._advance().span.start  # EXPR_START
        expr = self._parse_expression()
        self._expect(TokenType.EXPR_END, f"expected `{self._syntax.expr_end}`")
        return Output(expr, self._span_from(start))

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _parse_statement(self) -> Node | None:
        open_tok = self._advance()  # BLOCK_START
        kw = self._peek()
        if kw.type == TokenType.KEYWORD:
            handler = _STATEMENTS.get(kw.value)
            if handler is not None:
                return handler(self, open_tok)
            if kw.value in _END_KEYWORDS:
                raise self._error(f"unexpected `{self._tag_text(kw.value)}`", kw.span)
        if kw.type in (TokenType.IDENTIFIER, TokenType.KEYWORD):
            raise self._error(f"unknown statement `{kw.value}`", kw.span)
        raise self._error("expected statement", kw.span)

    def _tag_text(self, word: str) -> str:
        return f"{self._syntax.block_start} {word} {self._syntax.block_end}"

    def _parse_body(self, open_tok: Token, construct: str, until: frozenset[str]) -> tuple[list[Node], str]:
        body, end = self._parse_nodes(until)
        if end is None:
            closer = self._tag_text(f"end{construct}")
            raise self._error(f"expected `{closer}` to close `{construct}` block", open_tok.span)
        return body, end

    def _parse_end_tag(self, word: str) -> None:
        self._advance()  # BLOCK_START
        self._expect_keyword(word)
        self._expect_block_end()

    def _parse_header(self, parse: Callable[[], T]) -> T | None:
        """Parse a block header; on failure record it and keep going with the body."""
        try:
            return parse()
        except ParseError as exc:
            self._recover(exc)
            return None

    def _parse_if(self, open_tok: Token) -> If | None:
        start = open_tok.span.start
        arms: list[Arm] = []
        condition = self._parse_header(self._parse_condition)
        broken = condition is None
        arm_start = start
        seen_else = False
        while True:
            body, end = self._parse_body(open_tok, "if", _IF_ENDS)
            arms.append(Arm(condition, tuple(body), Span(arm_start, self._prev_end(), self._unit)))
            if end == "endif":
                self._parse_end_tag("endif")
                break

            arm_start = self._advance().span.start  # BLOCK_START
            if seen_else:
                # No arm may follow else; report it and skip the stray tag
                bad = self._peek()
                self._recover(self._error(f"unexpected `{self._tag_text(bad.value)}`", bad.span))
                broken = True
            elif self._at_keyword("else"):
                self._advance()
                seen_else = True
                condition = None
                self._parse_header(self._expect_block_end)
            else:
                condition = self._parse_header(self._parse_condition)
                broken = broken or condition is None

        if broken:
            return None
        return If(tuple(arms), self._span_from(start))

    def _parse_condition(self) -> Expr:
        self._advance()  # if / elif
        expr = self._parse_expression()
        self._expect_block_end()
        return expr

    def _parse_for(self, open_tok: Token) -> For | None:
        start = open_tok.span.start
        header = self._parse_header(self._parse_for_header)
        body, end = self._parse_body(open_tok, "for", _FOR_ENDS)
        otherwise: list[Node] = []
        if end == "else":
            self._parse_end_tag("else")
            otherwise, _ = self._parse_body(open_tok, "for", _ENDFOR)
        self._parse_end_tag("endfor")
        if header is None:
            return None
        targets, iterable = header
        return For(targets, iterable, tuple(body), tuple(otherwise), self._span_from(start))

    def _parse_for_header(self) -> tuple[tuple[str, ...], Expr]:
        self._advance()  # for
        targets = [self._expect(TokenType.IDENTIFIER, "expected identifier").value]
        while self._at(TokenType.COMMA):
            self._advance()
            targets.append(self._expect(TokenType.IDENTIFIER, "expected identifier").value)
        self._expect_keyword("in")
        iterable = self._parse_expression()
        self._expect_block_end()
        return tuple(targets), iterable

    def _parse_macro(self, open_tok: Token) -> Macro | None:
        start = open_tok.span.start
        header = self._parse_header(self._parse_macro_header)
        body, _ = self._parse_body(open_tok, "macro", _ENDMACRO)
        self._parse_end_tag("endmacro")
        if header is None:
            return None
        name_tok, params = header
        return Macro(name_tok.value, params, tuple(body), name_tok.span, self._span_from(start))

    def _parse_macro_header(self) -> tuple[Token, tuple[Param, ...]]:
        self._advance()  # macro
        name_tok = self._expect(TokenType.IDENTIFIER, "expected identifier")
        self._expect(TokenType.LPAREN, "expected `(` after macro name")

        params: list[Param] = []
        seen: set[str] = set()
        while True:
            tok = self._peek()
            if tok.type == TokenType.RPAREN:
                self._advance()
                break
            if tok.type != TokenType.IDENTIFIER:
                raise self._error(UNCLOSED_PARAMS, tok.span)

            self._advance()
            default: Expr | None = None
            if self._at(TokenType.EQUALS):
                equals = self._advance()
                if not _starts_expression(self._peek()):
                    raise self._error(UNCLOSED_PARAMS, equals.span)
                default = self._parse_expression()

            if tok.value in seen:
                self._report(
                    f"duplicate parameter `{tok.value}` in macro `{name_tok.value}`", tok.span
                )
            else:
                seen.add(tok.value)
                params.append(Param(tok.value, default, self._span_from(tok.span.start)))

            if self._at(TokenType.COMMA):
                self._advance()
                continue
            if self._at(TokenType.RPAREN):
                self._advance()
                break
            raise self._error(UNCLOSED_PARAMS, self._peek().span)

        self._expect_block_end()
        return name_tok, tuple(params)

    def _parse_call(self, open_tok: Token) -> CallBlock | None:
        start = open_tok.span.start
        call = self._parse_header(self._parse_call_header)
        body, _ = self._parse_body(open_tok, "call", _ENDCALL)
        self._parse_end_tag("endcall")
        if call is None:
            return None
        return CallBlock(call, tuple(body), self._span_from(start))

    def _parse_call_header(self) -> MacroCall:
        self._advance()  # call
        name_tok = self._expect(TokenType.IDENTIFIER, "expected identifier")
        lparen = self._expect(TokenType.LPAREN, "expected `(` after macro name")
        args, kwargs = self._parse_call_args()
        args_span = lparen.span.to(self._prev.span)
        call = MacroCall(
            name_tok.value, args, kwargs, args_span, name_tok.span.to(self._prev.span)
        )
        self._expect_block_end()
        return call

    def _parse_include(self, open_tok: Token) -> Include:
        self._advance()  # include
        path = self._expect(TokenType.STRING, "expected string literal after `include`")
        self._expect_block_end()
        return Include(path.value, self._span_from(open_tok.span.start))

    def _parse_assign(self, open_tok: Token) -> Assign:
        self._advance()  # set / let
        name = self._expect(TokenType.IDENTIFIER, "expected identifier")
        self._expect(TokenType.EQUALS, "expected `=` after variable name")
        value = self._parse_expression()
        self._expect_block_end()
        return Assign(name.value, value, self._span_from(open_tok.span.start))

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _parse_expression(self) -> Expr:
        return self._parse_or()

    def _parse_or(self) -> Expr:
        left = self._parse_and()
        while self._at_keyword("or"):
            self._advance()
            right = self._parse_and()
            left = BinaryOp("or", left, right, left.span.to(right.span))
        return left

    def _parse_and(self) -> Expr:
        left = self._parse_not()
        while self._at_keyword("and"):
            self._advance()
            right = self._parse_not()
            left = BinaryOp("and", left, right, left.span.to(right.span))
        return left

    def _parse_not(self) -> Expr:
        if self._at_keyword("not"):
            tok = self._advance()
            operand = self._parse_not()
            return UnaryOp("not", operand, tok.span.to(operand.span))
        return self._parse_comparison()

    def _parse_comparison(self) -> Expr:
        left = self._parse_concat()
        while True:
            tok = self._peek()
            if tok.type == TokenType.OPERATOR and tok.value in _COMPARISONS:
                op = self._advance().value
            elif self._at_keyword("in"):
                self._advance()
                op = "in"
            elif self._at_keyword("not") and _is_keyword(self._peek(1), "in"):
                self._advance()
                self._advance()
                op = "not in"
            else:
                return left
            right = self._parse_concat()
            left = BinaryOp(op, left, right, left.span.to(right.span))

    def _parse_concat(self) -> Expr:
        return self._parse_binary(self._parse_additive, frozenset({"~"}))

    def _parse_additive(self) -> Expr:
        return self._parse_binary(self._parse_multiplicative, frozenset({"+", "-"}))

    def _parse_multiplicative(self) -> Expr:
        return self._parse_binary(self._parse_unary, frozenset({"*", "/", "//", "%"}))

    def _parse_binary(self, operand, ops: frozenset[str]) -> Expr:
        left = operand()
        while self._at(TokenType.OPERATOR) and self._peek().value in ops:
            op = self._advance().value
            right = operand()
            left = BinaryOp(op, left, right, left.span.to(right.span))
        return left

    def _parse_unary(self) -> Expr:
        tok = self._peek()
        if tok.type == TokenType.OPERATOR and tok.value in ("-", "+"):
            self._advance()
            operand = self._parse_unary()
            return UnaryOp(tok.value, operand, tok.span.to(operand.span))
        return self._parse_postfix()

    def _parse_postfix(self) -> Expr:
        expr = self._parse_primary()
        while True:
            if self._at(TokenType.DOT):
                self._advance()
                name = self._expect(TokenType.IDENTIFIER, "expected identifier")
                expr = Attribute(expr, name.value, expr.span.to(name.span))
            elif self._at(TokenType.LBRACKET):
                self._advance()
                index = self._parse_expression()
                end = self._expect(TokenType.RBRACKET, "expected `]`")
                expr = Index(expr, index, expr.span.to(end.span))
            elif self._at(TokenType.LPAREN):
                lparen = self._advance()
                args, kwargs = self._parse_call_args()
                args_span = lparen.span.to(self._prev.span)
                expr = Call(expr, args, kwargs, args_span, expr.span.to(self._prev.span))
            elif self._at(TokenType.PIPE):
                self._advance()
                name = self._expect(TokenType.IDENTIFIER, "expected filter name")
                args: tuple[Expr, ...] = ()
                if self._at(TokenType.LPAREN):
                    self._advance()
                    args = self._parse_filter_args()
                expr = FilterApply(name.value, expr, args, expr.span.to(self._prev.span))
            else:
                return expr

    def _parse_primary(self) -> Expr:
        tok = self._peek()

        if tok.type == TokenType.IDENTIFIER:
            self._advance()
            return Variable(tok.value, tok.span)

        if tok.type == TokenType.STRING:
            self._advance()
            return Literal(tok.value, tok.span)

        if tok.type == TokenType.NUMBER:
            self._advance()
            if "." in tok.value:
                return Literal(float(tok.value), tok.span)
            return Literal(int(tok.value), tok.span)

        if tok.type == TokenType.KEYWORD and tok.value in _CONSTANTS:
            self._advance()
            return Literal(_CONSTANTS[tok.value], tok.span)

        if tok.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_expression()
            self._expect(TokenType.RPAREN, "expected `)`")
            return expr

        raise self._error("expected expression", tok.span)

    def _parse_call_args(self) -> tuple[tuple[Expr, ...], tuple[NamedArg, ...]]:
        """Parse arguments after an opening paren, through the closing paren.

        Positional and named arguments may appear in any order; ordering
        problems are left to binding.
        """
        args: list[Expr] = []
        kwargs: list[NamedArg] = []
        while True:
            if self._at(TokenType.RPAREN):
                self._advance()
                break

            tok = self._peek()
            if tok.type == TokenType.IDENTIFIER and self._peek(1).type == TokenType.EQUALS:
                self._advance()
                self._advance()  # =
                value = self._parse_expression()
                kwargs.append(NamedArg(tok.value, value, tok.span, tok.span.to(value.span)))
            else:
                args.append(self._parse_expression())

            if self._at(TokenType.COMMA):
                self._advance()
                continue
            if self._at(TokenType.RPAREN):
                self._advance()
                break
            raise self._error(UNCLOSED_ARGS, self._peek().span)
        return tuple(args), tuple(kwargs)

    def _parse_filter_args(self) -> tuple[Expr, ...]:
        args: list[Expr] = []
        while not self._at(TokenType.RPAREN):
            args.append(self._parse_expression())
            if not self._at(TokenType.COMMA):
                break
            self._advance()
        self._expect(TokenType.RPAREN, UNCLOSED_ARGS)
        return tuple(args)


# Module-level constants
_OPENERS: frozenset[TokenType] = frozenset(
    {TokenType.BLOCK_START, TokenType.EXPR_START, TokenType.COMMENT_START}
)
_CLOSERS: frozenset[TokenType] = frozenset(
    {TokenType.BLOCK_END, TokenType.EXPR_END, TokenType.COMMENT_END}
)
_COMPARISONS = frozenset({"==", "!=", "<", "<=", ">", ">="})
_CONSTANTS = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "none": None,
    "None": None,
}
_EXPRESSION_STARTS = frozenset(
    {TokenType.IDENTIFIER, TokenType.STRING, TokenType.NUMBER, TokenType.LPAREN}
)
_IF_ENDS = frozenset({"elif", "else", "endif"})
_FOR_ENDS = frozenset({"else", "endfor"})
_ENDFOR = frozenset({"endfor"})
_ENDMACRO = frozenset({"endmacro"})
_ENDCALL = frozenset({"endcall"})
_END_KEYWORDS = frozenset({"elif", "else", "endif", "endfor", "endmacro", "endcall"})
_STATEMENTS = {
    "if": Parser._parse_if,
    "for": Parser._parse_for,
    "macro": Parser._parse_macro,
    "call": Parser._parse_call,
    "include": Parser._parse_include,
    "set": Parser._parse_assign,
    "let": Parser._parse_assign,
}


def _is_keyword(tok: Token, word: str) -> bool:
    return tok.type == TokenType.KEYWORD and tok.value == word


def _starts_expression(tok: Token) -> bool:
    if tok.type in _EXPRESSION_STARTS:
        return True
    if tok.type == TokenType.KEYWORD:
        return tok.value in _CONSTANTS or tok.value == "not"
    return tok.type == TokenType.OPERATOR and tok.value in ("-", "+")


def _trim_left(text: str, ws: Whitespace) -> str:
    if ws == Whitespace.PRESERVE:
        return text
    stripped = text.lstrip()
    if ws == Whitespace.MINIMIZE and len(stripped) < len(text):
        removed = text[: len(text) - len(stripped)]
        return ("\n" if "\n" in removed else " ") + stripped
    return stripped


def _trim_right(text: str, ws: Whitespace) -> str:
    if ws == Whitespace.PRESERVE:
        return text
    stripped = text.rstrip()
    if ws == Whitespace.MINIMIZE and len(stripped) < len(text):
        removed = text[len(stripped) :]
        return stripped + ("\n" if "\n" in removed else " ")
    return stripped


def parse_tokens(
    tokens: Iterable[Token],
    source: str,
    unit: str = "<input>",
    syntax: Syntax | None = None,
    whitespace: Whitespace = Whitespace.PRESERVE,
) -> tuple[Template, list[Diagnostic]]:
    """Parse a token stream and return the AST with any syntax diagnostics."""
    parser = Parser(tokens, source, unit, syntax, whitespace)
    template = parser.parse()
    return template, parser.diagnostics


def parse(
    source: str,
    unit: str = "<input>",
    syntax: Syntax | None = None,
    whitespace: Whitespace = Whitespace.PRESERVE,
) -> tuple[Template, list[Diagnostic]]:
    """Convenience function: tokenize and parse source text."""
    return parse_tokens(tokenize(source, unit, syntax), source, unit, syntax, whitespace)
