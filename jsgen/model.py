"""
model.py -- The extracted schema: one Model per annotated struct.

A Model is built field by field while the extractor walks a struct body,
then frozen by `finalize_model`, which links `sized_by` counters to the
fields they name.  The emitter only ever reads Models.

Models can be dumped as JSON for debugging (`--dump-models`).
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class Field:
    """One member of an annotated struct."""

    name: str  # e.g. "role_count"
    declared_type: str  # e.g. "struct role*"
    base_type: str  # e.g. "struct role" (pointer stripped)
    alias: Optional[str] = None  # JSON key override
    is_pointer: bool = False
    is_array: bool = False
    is_fixed_array: bool = False  # declared with brackets, e.g. char name[32]
    array_size: Optional[str] = None  # bracket contents as written
    counter_field: Optional[str] = None  # sibling holding the element count
    is_counter_field: bool = False  # set by finalize_model
    is_json_literal: bool = False

    @property
    def json_key(self) -> str:
        return self.alias if self.alias is not None else self.name

    @property
    def type_name(self) -> str:
        """Base type without a struct tag, used to name generated functions."""
        return self.base_type.removeprefix("struct ")

    @property
    def has_counter(self) -> bool:
        return self.counter_field is not None


@dataclass
class Model:
    """One annotated struct declaration."""

    name: str = ""  # e.g. "User" or "struct role"
    simple_name: str = ""  # e.g. "User" or "role"
    stringify: bool = False
    parse: bool = False
    fields: list[Field] = field(default_factory=list)
    source_file: Optional[str] = None

    def find_field(self, name: str) -> Optional[Field]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class GeneratorConfig:
    """Configuration for one generation run."""

    output_name: str = "models.g.h"
    include_headers: tuple[str, ...] = ("jsb.h", "jsp.h")
    number_precision: int = 5  # fractional digits for float/double
    header_extension: str = ".h"
    clang_args: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------


def finalize_model(model: Model) -> Model:
    """
    Resolve every `sized_by` reference against the model's own fields.

    The referenced field is flagged as a counter field and drops out of the
    JSON object.  A reference to a field that does not exist is left alone,
    as is one to a field that is itself an array with a counter.
    """
    for f in model.fields:
        if not f.has_counter:
            continue
        counter = model.find_field(f.counter_field)
        if counter is None:
            logger.warning(
                "%s.%s: sized_by(%r) names no field of %s",
                model.name,
                f.name,
                f.counter_field,
                model.name,
            )
            continue
        if counter.has_counter:
            # an array keeps its key; it cannot double as a counter
            logger.warning(
                "%s.%s: counter field %r is itself sized_by %r; kept as an array",
                model.name,
                f.name,
                counter.name,
                counter.counter_field,
            )
            continue
        counter.is_counter_field = True
    return model


# ---------------------------------------------------------------------------
# JSON serialisation (intermediate file for debugging)
# ---------------------------------------------------------------------------


def models_to_json(models: list[Model], pretty: bool = True) -> str:
    """Serialize extracted models to JSON."""
    return json.dumps([asdict(m) for m in models], indent=2 if pretty else None)


def dump_models_json(models: list[Model], out_path: str | Path) -> Path:
    """Write the models JSON to a file and return the path."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(models_to_json(models))
    return out_path
