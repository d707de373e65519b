"""Command-line entry point

Usage:
    ffigen model.json --output-dir generated/
    ffigen model.json --backend python --backend kotlin --kotlin-package com.example.arith
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from .config import load_config
from .errors import GenerationError
from .generator import BACKENDS, BindingGenerator
from .loader import ModelLoader

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ffigen", description="Generate FFI bindings from an interface model")
    parser.add_argument("model_file", help="Path to the JSON interface model")
    parser.add_argument("--output-dir", "-o", default=None, help="Output directory")
    parser.add_argument("--backend", action="append", choices=sorted(BACKENDS), dest="backends",
                        help="Backend to generate (repeatable, default: all)")
    parser.add_argument("--namespace", "-n", default=None, help="Override the model namespace")
    parser.add_argument("--library-name", default=None, help="Shared library base name")
    parser.add_argument("--api-macro", default=None, help="C API export macro name")
    parser.add_argument("--kotlin-package", default=None, help="Kotlin package name")
    parser.add_argument("--config", type=Path, default=None, help="TOML configuration file")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Log every derived signature")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    start_time = time.perf_counter()

    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)

    try:
        config = load_config(args.config).with_overrides(
            namespace=args.namespace,
            library_name=args.library_name,
            backends=args.backends,
            out_dir=args.output_dir,
        )
        config = config.with_binding_option("c", "api_macro", args.api_macro)
        config = config.with_binding_option("kotlin", "package_name", args.kotlin_package)

        model_path = Path(args.model_file)
        try:
            content = model_path.read_text()
        except OSError as e:
            logger.error("cannot read %s: %s", model_path, e)
            return 1

        model = ModelLoader(content).load()
        BindingGenerator(model, config).write()
    except GenerationError as e:
        logger.error("%s", e)
        return 1

    elapsed = time.perf_counter() - start_time
    logger.info("Generation completed in %.2f ms", elapsed * 1000)
    return 0


if __name__ == "__main__":
    sys.exit(main())
