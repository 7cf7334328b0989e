"""Command-line interface for Stencil."""

from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from stencil.compiler import Compilation, Compiler
from stencil.config import Config, Whitespace, load_config
from stencil.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CliOptions:
    """Parsed CLI options."""

    templates: list[Path]
    config: Config
    syntax: str | None
    whitespace: Whitespace | None
    jobs: int
    dump: bool
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (separate function for testability)."""
    p = argparse.ArgumentParser(
        prog="stencil",
        description="Compile templates and report macro binding diagnostics",
    )
    p.add_argument("templates", nargs="+", metavar="TEMPLATE", help="Template files to compile")
    p.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Config file (default: auto-discover stencil.toml)",
    )
    p.add_argument("--syntax", metavar="NAME", help="Delimiter syntax to use (default: from config)")
    p.add_argument(
        "--whitespace",
        choices=[w.value for w in Whitespace],
        help="Whitespace handling next to tags (default: from config)",
    )
    p.add_argument(
        "-j",
        "--jobs",
        type=parse_jobs_arg,
        default=1,
        metavar="N",
        help="Compile up to N templates in parallel (default: 1)",
    )
    p.add_argument("--dump", action="store_true", help="Print the render program to stdout")
    p.add_argument("-v", "--verbose", action="store_true", help="Log compiler activity to stderr")
    return p


def parse_jobs_arg(s: str) -> int:
    """Parse a positive worker count."""
    try:
        jobs = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid job count: {s}") from None
    if jobs < 1:
        raise argparse.ArgumentTypeError(f"job count must be at least 1: {s}")
    return jobs


def resolve_options(args: argparse.Namespace) -> CliOptions:
    """Merge config file and CLI args into CliOptions.

    The config file is discovered beside the first template.
    Precedence: config file < CLI flags.
    """
    root = Path(args.templates[0]).parent
    if not root.parts:
        root = Path(".")
    config_path = Path(args.config) if args.config else None
    config = load_config(config_path, root)

    # Raises ConfigError for an unknown syntax name
    config.syntax(args.syntax)

    whitespace = Whitespace(args.whitespace) if args.whitespace else None

    return CliOptions(
        templates=[Path(t) for t in args.templates],
        config=config,
        syntax=args.syntax,
        whitespace=whitespace,
        jobs=args.jobs,
        dump=args.dump,
        verbose=args.verbose,
    )


def compile_templates(options: CliOptions) -> list[Compilation]:
    """Compile every template, sharing one memo; results keep input order."""
    compiler = Compiler(options.config, options.syntax, options.whitespace)
    if options.jobs == 1 or len(options.templates) == 1:
        return [compiler.compile_file(path) for path in options.templates]

    logger.debug("compiling %d templates with %d workers", len(options.templates), options.jobs)
    with ThreadPoolExecutor(max_workers=options.jobs) as pool:
        return list(pool.map(compiler.compile_file, options.templates))


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns exit code (0/1/2). Does not call sys.exit()."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        options = resolve_options(args)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    missing = [p for p in options.templates if not p.is_file()]
    if missing:
        for path in missing:
            print(f"error: template `{path}` does not exist", file=sys.stderr)
        return 2

    try:
        results = compile_templates(options)
    except (OSError, UnicodeDecodeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    failed = 0
    for result in results:
        if result.program is None:
            failed += 1
            print(result.report(), file=sys.stderr)
            continue
        logger.info("compiled %s", result.unit.name)
        if options.dump:
            from stencil.debug import dump_program

            dump_program(result.program, file=sys.stdout)

    if failed:
        print(
            f"error: {failed} of {len(results)} template(s) failed to compile",
            file=sys.stderr,
        )
        return 1
    return 0


def run() -> None:
    """Console-script wrapper around main()."""
    sys.exit(main())
