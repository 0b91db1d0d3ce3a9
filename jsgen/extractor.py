"""
extractor.py -- Read annotated struct declarations out of C source.

This is deliberately not a C parser.  It is a small state machine fed one
token at a time that only understands the shape of an annotated struct:

    JSON struct role {            JSONS typedef struct {
        int id;                       int id;
        char *name;                   struct role *role;
    };                            } User;

Nothing happens until one of the generation keywords (JSON, JSONS, JSONP or
their JSGEN_ spellings) is seen.  From there the extractor tracks brace
depth: the identifier at depth 0 names the model, every declaration at
depth 1 becomes a Field, and the `;` that closes the declaration at depth 0
finalizes the model.
"""

import logging
from pathlib import Path
from typing import Optional

from clang.cindex import TranslationUnitLoadError

from .annotations import AnnotationProcessor
from .lexer import ScanError, Token, TokenKind, TokenStream, tokenize_source
from .model import Field, Model, finalize_model

logger = logging.getLogger(__name__)


# keyword -> (parse, stringify)
GENERATION_KEYWORDS: dict[str, tuple[bool, bool]] = {
    "JSON": (True, True),
    "JSGEN_JSON": (True, True),
    "JSONS": (False, True),
    "JSGEN_JSONS": (False, True),
    "JSONP": (True, False),
    "JSGEN_JSONP": (True, False),
}

RECORD_KEYWORD = "struct"


class SchemaExtractor:
    """
    Token-driven scanner that builds Models.

    State
    -----
    level              : brace depth relative to the declaration
    enabled            : a generation keyword was seen for the upcoming struct
    in_typedef         : `typedef` seen
    in_record          : `struct` seen for the model itself
    in_nested_record   : `struct` seen again, tagging a field's type
    """

    def __init__(self, filename: str = "<input>"):
        self.filename = filename
        self.models: list[Model] = []
        self.annotations = AnnotationProcessor(filename)
        self._reset()
        self.level = 0

    def _reset(self) -> None:
        self.model = Model(source_file=self.filename)
        self.enabled = False
        self.in_typedef = False
        self.in_record = False
        self.in_nested_record = False

    def extract(self, tokens: list[Token]) -> list[Model]:
        """Scan a whole token stream and return the models finalized in it."""
        stream = TokenStream(tokens)
        for tok in stream:
            if not self.enabled and tok.kind != TokenKind.IDENTIFIER:
                continue

            if tok.kind == TokenKind.IDENTIFIER:
                self._handle_identifier(tok, stream)
            elif tok.is_punct("{"):
                self.level += 1
            elif tok.is_punct("}"):
                self.level -= 1
            elif tok.is_punct(";"):
                self._handle_semicolon()

        if self.in_record:
            logger.debug(
                "%s: unterminated declaration of %s dropped",
                self.filename,
                self.model.name or "<anonymous struct>",
            )
        return self.models

    # -- token handlers -----------------------------------------------------

    def _handle_identifier(self, tok: Token, stream: TokenStream) -> None:
        flags = GENERATION_KEYWORDS.get(tok.spelling)
        if flags is not None:
            self.enabled = True
            self.model.parse, self.model.stringify = flags
            return

        if not self.enabled:
            return

        if tok.spelling == "const":
            nxt = stream.next()
            if nxt is None or nxt.kind != TokenKind.IDENTIFIER:
                # nothing left to qualify; let the main loop see the token
                if nxt is not None:
                    stream.rewind(stream.position - 1)
                return
            tok = nxt

        if tok.spelling == "typedef":
            self.in_typedef = True
        elif tok.spelling == RECORD_KEYWORD:
            if self.in_record:
                self.in_nested_record = True
            else:
                self.in_record = True
        elif self.in_record and self.level >= 1 and self.annotations.process(
            tok, stream, self.model
        ):
            pass
        elif self.in_record and self.level == 0:
            self._name_model(tok)
        elif self.in_record and self.level == 1:
            prefix = f"{RECORD_KEYWORD} " if self.in_nested_record else ""
            self.in_nested_record = False
            self._parse_field(tok, stream, prefix)

    def _handle_semicolon(self) -> None:
        self.in_nested_record = False
        if self.level == 0 and self.in_record:
            model = finalize_model(self.model)
            logger.debug(
                "%s: model %s with %d field(s)",
                self.filename,
                model.name,
                len(model.fields),
            )
            self.models.append(model)
            self._reset()

    # -- declarations -------------------------------------------------------

    def _name_model(self, tok: Token) -> None:
        if self.in_typedef:
            self.model.name = tok.spelling
        else:
            self.model.name = f"{RECORD_KEYWORD} {tok.spelling}"
        self.model.simple_name = tok.spelling

    def _parse_field(self, type_tok: Token, stream: TokenStream, prefix: str) -> None:
        """
        Read `type [*] name [ '[' ... ']' ]` starting at the type token.

        The stream is left just after the field name so that annotations and
        the closing `;` are still seen by the main loop.
        """
        base_type = prefix + type_tok.spelling
        declared_type = base_type
        is_pointer = False

        tok = stream.next()
        if tok is not None and tok.is_punct("*"):
            is_pointer = True
            declared_type += "*"
            tok = stream.next()

        if tok is None or tok.kind != TokenKind.IDENTIFIER:
            if tok is not None:
                stream.rewind(stream.position - 1)
            return

        fld = Field(
            name=tok.spelling,
            declared_type=declared_type,
            base_type=base_type,
            is_pointer=is_pointer,
        )
        self.model.fields.append(fld)

        after_name = stream.position
        nxt = stream.next()
        if nxt is not None and nxt.is_punct("["):
            fld.is_array = True
            fld.is_pointer = True
            fld.is_fixed_array = True
            size_tokens = self._drain_brackets(stream, nxt)
            fld.array_size = " ".join(t.spelling for t in size_tokens) or None
        stream.rewind(after_name)

    def _drain_brackets(self, stream: TokenStream, open_tok: Token) -> list[Token]:
        inner: list[Token] = []
        depth = 1
        while True:
            tok = stream.next()
            if tok is None:
                raise ScanError("unterminated '['", self.filename, open_tok.line)
            if tok.is_punct("["):
                depth += 1
            elif tok.is_punct("]"):
                depth -= 1
                if depth == 0:
                    return inner
            inner.append(tok)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def scan_source(
    text: str, filename: str = "input.h", clang_args: Optional[list[str]] = None
) -> list[Model]:
    """
    Extract every annotated model from C source text.

    Raises ScanError if the text cannot be tokenized or an annotation is
    malformed.
    """
    try:
        tokens = tokenize_source(text, filename=filename, clang_args=clang_args)
    except TranslationUnitLoadError as exc:
        raise ScanError(f"libclang could not load input ({exc})", filename) from exc
    return SchemaExtractor(filename).extract(tokens)


def scan_file(
    path: str | Path, clang_args: Optional[list[str]] = None
) -> list[Model]:
    """Extract every annotated model from a header file."""
    path = Path(path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"Header not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ScanError(f"not valid UTF-8 ({exc.reason})", str(path)) from exc
    return scan_source(text, filename=str(path), clang_args=clang_args)
