"""
__main__.py -- CLI entry point for jsgen.

Usage:
    python -m jsgen models.h [more.h | include_dir ...] [-o models.g.h]

This is the single command that does everything:
  1. Scans every input header for annotated structs
  2. Optionally dumps / prints the extracted models (for debugging)
  3. Generates one C source unit with parse/stringify functions
"""

import argparse
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from .codegen import CodeGenerator, write_output
from .extractor import scan_file
from .lexer import ScanError
from .model import GeneratorConfig, Model, dump_models_json
from .model_printer import print_models
from .type_resolver import TypeResolver

RUNTIME_HEADER = Path(__file__).resolve().parent / "include" / "jsgen.h"


def _collect_headers(directory: Path, extension: str) -> List[Path]:
    """Regular files in `directory` (not recursive) with the given extension."""
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.suffix == extension
    )


def _scan_inputs(inputs: List[Path], config: GeneratorConfig) -> Optional[List[Model]]:
    """
    Scan every input and return all models in input order.

    A file named on the command line that fails to scan aborts the run
    (returns None); a file found inside a directory is reported and skipped.
    """
    models: List[Model] = []
    for item in inputs:
        if item.is_dir():
            for header in _collect_headers(item, config.header_extension):
                try:
                    models.extend(scan_file(header, clang_args=config.clang_args))
                except ScanError as exc:
                    print(f"\tFailed to parse file: {header} ({exc})", file=sys.stderr)
            continue

        try:
            models.extend(scan_file(item, clang_args=config.clang_args))
        except (ScanError, FileNotFoundError) as exc:
            print(f"Failed to parse file: {item} ({exc})", file=sys.stderr)
            return None
    return models


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="jsgen",
        description="Generate C JSON parse/stringify functions from annotated structs.",
    )
    parser.add_argument(
        "inputs",
        type=Path,
        nargs="+",
        help="Header files (.h) or directories containing them",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output file (default: models.g.h)",
    )
    parser.add_argument(
        "--dump-models",
        type=Path,
        default=None,
        metavar="PATH",
        help="Write the extracted models as JSON to PATH",
    )
    parser.add_argument(
        "--print-models",
        action="store_true",
        help="Print the extracted models",
    )
    parser.add_argument(
        "--runtime-dir",
        type=Path,
        default=None,
        metavar="DIR",
        help="Copy the jsgen.h runtime header into DIR",
    )
    parser.add_argument(
        "-I",
        action="append",
        default=[],
        dest="includes",
        help="Additional include directories for the C tokenizer",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every model and field decision",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    clang_args = []
    for inc in args.includes:
        clang_args.extend(["-I", inc])
    config = GeneratorConfig(clang_args=clang_args)
    output = args.output or Path(config.output_name)

    # Step 1: SCAN
    print(f"[1/3] Scanning {len(args.inputs)} input(s) ...")
    models = _scan_inputs(args.inputs, config)
    if models is None:
        return 1
    print(f"\tFound {len(models)} annotated struct(s)")

    # Step 2: DEBUG OUTPUT
    if args.dump_models:
        json_path = dump_models_json(models, args.dump_models)
        print(f"[2/3] Models written to {json_path}")
    else:
        print("[2/3] Skipping model dump")
    if args.print_models:
        print(print_models(models))

    # Step 3: CODEGEN
    print("[3/3] Generating code ...")
    codegen = CodeGenerator(models, TypeResolver(config.number_precision), config)
    out_path = write_output(codegen.generate(), output)
    print(f"\tC code → {out_path}")

    if args.runtime_dir:
        args.runtime_dir.mkdir(parents=True, exist_ok=True)
        runtime_path = shutil.copy(RUNTIME_HEADER, args.runtime_dir / RUNTIME_HEADER.name)
        print(f"\tRuntime header → {runtime_path}")

    parse_count = sum(1 for m in models if m.parse)
    stringify_count = sum(1 for m in models if m.stringify)
    print()
    print(f"Done! {parse_count} parser(s), {stringify_count} stringifier(s).")

    return 0


if __name__ == "__main__":
    sys.exit(main())
