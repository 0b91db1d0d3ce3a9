"""
lexer.py -- Tokenize C headers using libclang's raw lexer.

WHY LIBCLANG:
Annotated headers are not valid C until jsgen.h is on the include path, and
we never want the preprocessor to expand our markers away.  libclang's
tokenizer works on the raw source range of a translation unit, whether or
not the parse itself succeeded, so we get real C tokens (string literals,
comments, punctuators) without writing a lexer by hand.

The extractor only needs three token kinds, so clang's KEYWORD and
IDENTIFIER are folded into a single IDENTIFIER kind.
"""

from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Iterator, Optional

from clang.cindex import Index, TranslationUnit
from clang.cindex import TokenKind as ClangTokenKind


class TokenKind(Enum):
    """Token categories seen by the schema extractor."""

    IDENTIFIER = auto()  # identifiers and C keywords
    PUNCTUATION = auto()
    LITERAL = auto()


_KIND_MAP = {
    ClangTokenKind.IDENTIFIER: TokenKind.IDENTIFIER,
    ClangTokenKind.KEYWORD: TokenKind.IDENTIFIER,
    ClangTokenKind.PUNCTUATION: TokenKind.PUNCTUATION,
    ClangTokenKind.LITERAL: TokenKind.LITERAL,
}

# Only parse as far as needed; we read tokens, not the AST.
_PARSE_OPTIONS = (
    TranslationUnit.PARSE_INCOMPLETE | TranslationUnit.PARSE_SKIP_FUNCTION_BODIES
)


class ScanError(Exception):
    """An input could not be read as a stream of annotated declarations."""

    def __init__(self, message: str, filename: str = "<input>", line: int = 0):
        super().__init__(f"{filename}:{line}: {message}" if line else f"{filename}: {message}")
        self.filename = filename
        self.line = line


@dataclass(frozen=True)
class Token:
    """A single lexical token."""

    kind: TokenKind
    spelling: str  # exactly as written, quotes included for strings
    line: int
    column: int

    @property
    def text(self) -> str:
        """The unquoted value of a string literal, else the spelling."""
        s = self.spelling
        if self.kind == TokenKind.LITERAL and len(s) >= 2 and s[0] == s[-1] == '"':
            return s[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        return s

    def is_id(self, *names: str) -> bool:
        return self.kind == TokenKind.IDENTIFIER and (
            not names or self.spelling in names
        )

    def is_punct(self, spelling: str) -> bool:
        return self.kind == TokenKind.PUNCTUATION and self.spelling == spelling


class TokenStream:
    """
    Cursor over a token list.

    The extractor needs to rewind after draining an array declarator, so
    this is a plain index rather than a generator.
    """

    def __init__(self, tokens: list[Token]):
        self._tokens = tokens
        self._pos = 0

    def __iter__(self) -> Iterator[Token]:
        return self

    def __next__(self) -> Token:
        tok = self.next()
        if tok is None:
            raise StopIteration
        return tok

    def next(self) -> Optional[Token]:
        """Consume and return the next token, or None at end of stream."""
        if self._pos >= len(self._tokens):
            return None
        tok = self._tokens[self._pos]
        self._pos += 1
        return tok

    @property
    def position(self) -> int:
        return self._pos

    def rewind(self, position: int) -> None:
        self._pos = position


def _directive_lines(text: str) -> set[int]:
    """1-based line numbers that belong to preprocessor directives."""
    lines: set[int] = set()
    continued = False
    for lineno, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if continued or stripped.startswith("#"):
            lines.add(lineno)
            continued = stripped.endswith("\\")
        else:
            continued = False
    return lines


def tokenize_source(
    text: str, filename: str = "input.h", clang_args: list[str] | None = None
) -> list[Token]:
    """
    Tokenize C source text held in memory.

    Parameters
    ----------
    text       : the header contents
    filename   : name the text is registered under (shows up in errors)
    clang_args : optional extra clang arguments, e.g. ["-I", "include/"]

    Returns
    -------
    Tokens in source order, without comments or preprocessor directives.

    Raises clang's TranslationUnitLoadError if libclang cannot load the text.
    """
    index = Index.create()
    args = ["-x", "c", "-std=c11"] + (clang_args or [])
    tu = index.parse(
        filename,
        args=args,
        unsaved_files=[(filename, text)],
        options=_PARSE_OPTIONS,
    )

    # The translation unit cursor spans the whole main file.
    skip = _directive_lines(text)

    tokens: list[Token] = []
    for ct in tu.get_tokens(extent=tu.cursor.extent):
        kind = _KIND_MAP.get(ct.kind)
        if kind is None:  # comments
            continue
        loc = ct.location
        if loc.line in skip:
            continue
        tokens.append(Token(kind, ct.spelling, loc.line, loc.column))
    return tokens


def tokenize_file(
    path: str | Path, clang_args: list[str] | None = None
) -> list[Token]:
    """Tokenize a header file on disk."""
    path = Path(path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"Header not found: {path}")
    return tokenize_source(
        path.read_text(encoding="utf-8"), filename=str(path), clang_args=clang_args
    )
