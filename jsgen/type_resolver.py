"""
type_resolver.py -- Map C field types to JSON representations.

Every field type either maps to one of the JSON primitives the parser and
builder collaborators know how to read and write, or it is assumed to be
another annotated struct with its own generated `_parse_X` / `_stringify_X`
pair (a NESTED type).  Nested types are never checked for existence; the C
compiler will complain if the pair was not generated.

Keeping the table in one place means new primitive types only need a new
row here, not changes in the extractor or the emitter.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Optional

from .model import Field


class JsonKind(Enum):
    """How a C value is represented in JSON."""

    NUMBER = auto()  # floating point, written with fixed precision
    INTEGER = auto()
    BOOLEAN = auto()
    STRING = auto()
    NESTED = auto()  # another generated struct


@dataclass
class JsonTypeInfo:
    """
    How a C type is read and written.

    Fields
    ------
    kind           : JSON representation
    parse_accessor : member of the parser's value union, e.g. "number" for jsp->number
    writer         : builder function suffix, e.g. "int" for jsb_int
    precision      : fractional digits passed to jsb_number, floats only
    """

    kind: JsonKind
    parse_accessor: Optional[str] = None
    writer: Optional[str] = None
    precision: Optional[int] = None

    @property
    def is_nested(self) -> bool:
        return self.kind == JsonKind.NESTED

    @property
    def is_scalar(self) -> bool:
        return self.kind in (JsonKind.NUMBER, JsonKind.INTEGER, JsonKind.BOOLEAN)


# ---------------------------------------------------------------------------
# The mapping table
# ---------------------------------------------------------------------------
# Keys are type spellings as they appear in the declaration.  Integers are
# read back through the parser's generic numeric value, so they share the
# "number" accessor with floats but are written with jsb_int.

_INTEGER = (JsonKind.INTEGER, "number", "int")
_FLOAT = (JsonKind.NUMBER, "number", "number")

TYPE_MAP: dict[str, tuple[JsonKind, str, str]] = {
    # --- integers ---
    "int": _INTEGER,
    "long": _INTEGER,
    "short": _INTEGER,
    "size_t": _INTEGER,
    "ssize_t": _INTEGER,
    "int8_t": _INTEGER,
    "int16_t": _INTEGER,
    "int32_t": _INTEGER,
    "int64_t": _INTEGER,
    "uint8_t": _INTEGER,
    "uint16_t": _INTEGER,
    "uint32_t": _INTEGER,
    "uint64_t": _INTEGER,
    # --- floating point ---
    "float": _FLOAT,
    "double": _FLOAT,
    # --- other primitives ---
    "bool": (JsonKind.BOOLEAN, "boolean", "bool"),
    "char*": (JsonKind.STRING, "string", "string"),
}

DEFAULT_NUMBER_PRECISION = 5


class TypeResolver:
    """
    Resolves type spellings to JsonTypeInfo.

    Results are cached per spelling; a spelling with no table entry
    resolves to NESTED.
    """

    def __init__(self, number_precision: int = DEFAULT_NUMBER_PRECISION):
        self.number_precision = number_precision
        self._cache: Dict[str, JsonTypeInfo] = {}

    def resolve(self, type_spelling: str) -> JsonTypeInfo:
        """
        Map a type spelling such as "int", "char*" or "struct role".

        One trailing pointer marker is stripped before a second lookup, so
        `int*` resolves like `int`.  Deeper pointer levels are not modeled.
        """
        if type_spelling in self._cache:
            return self._cache[type_spelling]

        entry = TYPE_MAP.get(type_spelling)
        if entry is None and type_spelling.endswith("*"):
            entry = TYPE_MAP.get(type_spelling[:-1])

        if entry is None:
            info = JsonTypeInfo(kind=JsonKind.NESTED)
        else:
            kind, accessor, writer = entry
            info = JsonTypeInfo(
                kind=kind,
                parse_accessor=accessor,
                writer=writer,
                precision=self.number_precision if kind == JsonKind.NUMBER else None,
            )

        self._cache[type_spelling] = info
        return info

    def resolve_field(self, fld: Field) -> JsonTypeInfo:
        """Resolve a field's value type, treating `char x[N]` as a string."""
        if is_char_buffer(fld):
            return self.resolve("char*")
        return self.resolve(fld.declared_type)

    def resolve_element(self, fld: Field) -> JsonTypeInfo:
        """Resolve the element type of an array field."""
        return self.resolve(fld.base_type)


def is_char_buffer(fld: Field) -> bool:
    """True for a fixed-size character buffer such as `char name[64]`."""
    return fld.base_type == "char" and fld.is_fixed_array and fld.declared_type == "char"
