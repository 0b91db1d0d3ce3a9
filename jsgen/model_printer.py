"""
model_printer.py -- Pretty-print extracted models for debugging.

Backs the `--print-models` flag.  Output format:

  struct role  [parse, stringify]  (models.h)
    id          int
    name        char*         -> "role_name"
    values      float*        sized_by value_count
    value_count size_t        (counter)
"""

from typing import List

from .model import Field, Model


class ModelPrinter:
    """Pretty-prints a list of models to text."""

    def __init__(self, models: List[Model]):
        self.models = models

    def print_all(self) -> str:
        """Print every model to a string."""
        lines: List[str] = []

        lines.append("=" * 70)
        lines.append(f"{len(self.models)} model(s)")
        lines.append("=" * 70)
        lines.append("")

        for model in self.models:
            lines.append(self._format_model(model))
            if not model.fields:
                lines.append("    (no fields)")
            width = max((len(f.name) for f in model.fields), default=0)
            for fld in model.fields:
                lines.append(self._format_field(fld, width))
            lines.append("")

        return "\n".join(lines)

    def _format_model(self, model: Model) -> str:
        modes = [m for m, on in (("parse", model.parse), ("stringify", model.stringify)) if on]
        source = f"  ({model.source_file})" if model.source_file else ""
        return f"  {model.name}  [{', '.join(modes)}]{source}"

    def _format_field(self, fld: Field, width: int) -> str:
        ctype = fld.declared_type
        if fld.is_fixed_array:
            ctype += f"[{fld.array_size or ''}]"
        notes = []
        if fld.alias is not None:
            notes.append(f'-> "{fld.alias}"')
        if fld.has_counter:
            notes.append(f"sized_by {fld.counter_field}")
        elif fld.is_array:
            notes.append("array")
        if fld.is_counter_field:
            notes.append("(counter)")
        if fld.is_json_literal:
            notes.append("(json literal)")
        return f"    {fld.name.ljust(width)}  {ctype:<14}{' '.join(notes)}".rstrip()


def print_models(models: List[Model]) -> str:
    """Convenience function to print a list of models."""
    printer = ModelPrinter(models)
    return printer.print_all()
