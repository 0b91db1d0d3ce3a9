"""
annotations.py -- Field annotations inside an annotated struct body.

    char *name alias("full_name");
    float *values sized_by("value_count");
    void *handle ignore();
    char *extra json_literal;

Every annotation applies to the field declared just before it.  The
processor gets first refusal on each identifier inside a struct body: if it
claims the token it also consumes the annotation's arguments.
"""

import logging
from typing import Callable, Optional

from .lexer import ScanError, Token, TokenKind, TokenStream
from .model import Field, Model

logger = logging.getLogger(__name__)


def _keywords(name: str) -> tuple[str, str]:
    """Short form and its `jsgen_` prefixed spelling."""
    return (name, f"jsgen_{name}")


ALIAS = _keywords("alias")
SIZED_BY = _keywords("sized_by")
IGNORE = _keywords("ignore")
JSON_LITERAL = _keywords("json_literal")

ANNOTATION_KEYWORDS = frozenset(ALIAS + SIZED_BY + IGNORE + JSON_LITERAL)


class AnnotationProcessor:
    """Recognizes annotation keywords and applies them to the current model."""

    def __init__(self, filename: str = "<input>"):
        self.filename = filename
        self._handlers: dict[str, Callable[[Token, TokenStream, Model], None]] = {}
        for kw in ALIAS:
            self._handlers[kw] = self._alias
        for kw in SIZED_BY:
            self._handlers[kw] = self._sized_by
        for kw in IGNORE:
            self._handlers[kw] = self._ignore
        for kw in JSON_LITERAL:
            self._handlers[kw] = self._json_literal

    def process(self, tok: Token, stream: TokenStream, model: Model) -> bool:
        """
        Apply `tok` if it is an annotation keyword.

        Returns True when the token (and its arguments) were consumed.
        """
        handler = self._handlers.get(tok.spelling)
        if handler is None or tok.kind != TokenKind.IDENTIFIER:
            return False
        handler(tok, stream, model)
        return True

    # -- handlers -----------------------------------------------------------

    def _alias(self, tok: Token, stream: TokenStream, model: Model) -> None:
        value = self._string_argument(tok, stream)
        target = self._target(tok, model)
        if target is not None:
            target.alias = value

    def _sized_by(self, tok: Token, stream: TokenStream, model: Model) -> None:
        value = self._string_argument(tok, stream)
        target = self._target(tok, model)
        if target is not None:
            target.counter_field = value
            target.is_array = True
            target.is_pointer = True

    def _ignore(self, tok: Token, stream: TokenStream, model: Model) -> None:
        self._optional_empty_parens(stream)
        if self._target(tok, model) is not None:
            removed = model.fields.pop()
            logger.debug("%s: ignoring field %r", model.name or "<anonymous>", removed.name)

    def _json_literal(self, tok: Token, stream: TokenStream, model: Model) -> None:
        self._optional_empty_parens(stream)
        target = self._target(tok, model)
        if target is not None:
            target.is_json_literal = True

    # -- helpers ------------------------------------------------------------

    def _target(self, tok: Token, model: Model) -> Optional[Field]:
        if not model.fields:
            logger.warning(
                "%s:%d: %s() before any field of %s; ignored",
                self.filename,
                tok.line,
                tok.spelling,
                model.name or "<anonymous struct>",
            )
            return None
        return model.fields[-1]

    def _expect(self, stream: TokenStream, spelling: str, after: Token) -> Token:
        nxt = stream.next()
        if nxt is None or not nxt.is_punct(spelling):
            found = nxt.spelling if nxt else "end of input"
            raise ScanError(
                f"expected '{spelling}' in {after.spelling}(...), found {found!r}",
                self.filename,
                nxt.line if nxt else after.line,
            )
        return nxt

    def _string_argument(self, tok: Token, stream: TokenStream) -> str:
        self._expect(stream, "(", tok)
        arg = stream.next()
        if arg is None or arg.kind == TokenKind.PUNCTUATION:
            raise ScanError(
                f"{tok.spelling}() needs a string argument", self.filename, tok.line
            )
        self._expect(stream, ")", tok)
        return arg.text

    @staticmethod
    def _optional_empty_parens(stream: TokenStream) -> None:
        start = stream.position
        first = stream.next()
        second = stream.next()
        if first is not None and first.is_punct("(") and second is not None and second.is_punct(")"):
            return
        stream.rewind(start)
