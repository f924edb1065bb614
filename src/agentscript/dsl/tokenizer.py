"""
AgentScript tokenizer.
Character-level lexer producing positioned tokens for the declarative
dialect and for quoted values in the terse dialect.
"""

from typing import List, Optional

from loguru import logger

from .types import KEYWORDS, Diagnostic, ParseError, Token, TokenType, ValidationLevel


PUNCTUATION = {
    ":": TokenType.COLON,
    "-": TokenType.DASH,
    "|": TokenType.PIPE,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "/": TokenType.SLASH,
    "=": TokenType.EQUALS,
    ",": TokenType.COMMA,
}

ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}

# Characters that may sit inside an identifier when an alphanumeric follows,
# so ``vendor/model-name:tag`` and ``input.user.name`` stay single tokens.
JOINERS = ":/.-"


class DSLTokenizer:
    """
    Lexer for AgentScript source:
    - Quoted strings with escape sequences
    - Compound identifiers (model names, dotted paths)
    - Keyword promotion and NEWLINE tokens
    - Comment skipping and positioned error reporting
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.line = 1
        self.column = 1
        self.diagnostics: List[Diagnostic] = []

    def tokenize(self) -> List[Token]:
        """
        Tokenize the whole input.

        Returns:
            List of tokens terminated by an EOF token

        Raises:
            ParseError: On an unrecognized character or unterminated string
        """
        tokens: List[Token] = []

        while self.pos < len(self.text):
            start = self.pos
            char = self.text[self.pos]

            if char in " \t\r":
                self._advance()
            elif char == "#":
                while self.pos < len(self.text) and self.text[self.pos] != "\n":
                    self._advance()
            elif char == "\n":
                tokens.append(Token(TokenType.NEWLINE, "\n", self.line, self.column))
                self._advance()
            elif char in "\"'":
                tokens.append(self._read_string(char))
            elif char.isdigit():
                tokens.append(self._read_number())
            elif char.isalpha() or char in "_@":
                tokens.append(self._read_identifier())
            elif char in PUNCTUATION:
                tokens.append(Token(PUNCTUATION[char], char, self.line, self.column))
                self._advance()
            else:
                raise ParseError(
                    f"Unexpected character '{char}'",
                    line_number=self.line,
                    position=self.column,
                    context=self._current_line(),
                    suggestion="Check for typos or missing quotes around string values",
                )

            if self.pos == start:
                self.diagnostics.append(Diagnostic(
                    ValidationLevel.WARNING,
                    f"Tokenizer made no progress at '{char}', skipping it",
                    line=self.line,
                    column=self.column,
                ))
                self._advance()

        tokens.append(Token(TokenType.EOF, "", self.line, self.column))
        logger.debug(f"Tokenized {len(tokens)} tokens from {self.line} lines")
        return tokens

    def _advance(self) -> None:
        if self.text[self.pos] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.pos += 1

    def _peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.text[index] if index < len(self.text) else ""

    def _current_line(self) -> str:
        start = self.text.rfind("\n", 0, self.pos) + 1
        end = self.text.find("\n", self.pos)
        return self.text[start:end if end != -1 else len(self.text)]

    def _read_string(self, quote: str) -> Token:
        line, column = self.line, self.column
        self._advance()
        chars = []

        while True:
            char = self._peek()
            if char == "" or char == "\n":
                raise ParseError(
                    "Unterminated string",
                    line_number=line,
                    position=column,
                    context=self._current_line(),
                    suggestion="Make sure to close all quoted strings with matching quotes",
                )
            if char == "\\":
                escaped = self._peek(1)
                if escaped in ESCAPES:
                    chars.append(ESCAPES[escaped])
                    self._advance()
                    self._advance()
                    continue
                chars.append(char)
                self._advance()
                continue
            if char == quote:
                self._advance()
                break
            chars.append(char)
            self._advance()

        return Token(TokenType.STRING, "".join(chars), line, column)

    def _read_number(self) -> Token:
        line, column = self.line, self.column
        start = self.pos
        while self._peek().isdigit():
            self._advance()
        if self._peek() == "." and self._peek(1).isdigit():
            self._advance()
            while self._peek().isdigit():
                self._advance()
        # 2.5-coder style suffixes turn the number into an identifier
        if self._peek().isalpha() or self._peek() == "_":
            return self._read_identifier(start, line, column)
        return Token(TokenType.NUMBER, self.text[start:self.pos], line, column)

    def _read_identifier(self, start: Optional[int] = None, line: Optional[int] = None,
                         column: Optional[int] = None) -> Token:
        if start is None:
            start, line, column = self.pos, self.line, self.column
            self._advance()

        while self.pos < len(self.text):
            char = self._peek()
            if char.isalnum() or char == "_":
                self._advance()
            elif char in JOINERS and self._peek(1).isalnum():
                self._advance()
            else:
                break

        value = self.text[start:self.pos]
        kind = KEYWORDS.get(value, TokenType.IDENTIFIER)
        return Token(kind, value, line, column)


class TokenStream:
    """Token stream for parsing with look-ahead."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.position = 0

    def current(self) -> Token:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return self.tokens[-1]

    def peek(self, offset: int = 1) -> Token:
        index = self.position + offset
        if index < len(self.tokens):
            return self.tokens[index]
        return self.tokens[-1]

    def advance(self) -> Token:
        token = self.current()
        if self.position < len(self.tokens) - 1:
            self.position += 1
        return token

    def at(self, *kinds: TokenType) -> bool:
        return self.current().kind in kinds

    def at_end(self) -> bool:
        return self.current().kind == TokenType.EOF

    def skip_newlines(self) -> None:
        while self.current().kind == TokenType.NEWLINE:
            self.advance()

    def skip_line(self) -> None:
        """Advance past the next NEWLINE (statement boundary)."""
        while not self.at(TokenType.NEWLINE, TokenType.EOF):
            self.advance()
        if self.at(TokenType.NEWLINE):
            self.advance()

    def save_position(self) -> int:
        return self.position

    def restore_position(self, position: int) -> None:
        self.position = position


def tokenize(text: str) -> List[Token]:
    return DSLTokenizer(text).tokenize()


def decode_string_literal(text: str) -> Optional[str]:
    """
    Decode ``text`` if it is exactly one quoted string literal.

    Returns:
        The unescaped value, or None when ``text`` is not a single literal
    """
    text = text.strip()
    if len(text) < 2 or text[0] not in "\"'":
        return None
    try:
        tokens = DSLTokenizer(text).tokenize()
    except ParseError:
        return None
    if len(tokens) == 2 and tokens[0].kind == TokenType.STRING:
        return tokens[0].value
    return None


def quote_string(value: str) -> str:
    """Render ``value`` as a double-quoted literal the tokenizer reads back unchanged."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'
