"""
rule-corpus: compile a directory of rule documents into a manifest.

Usage:
  rule-corpus compile <rules-dir> [--strict] [--format json|table]

Exit codes:
  0  no conflicts and no per-document errors
  1  conflicts or per-document errors (lenient mode)
  2  fatal error, or --strict with any conflict or error
"""

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from rule_corpus import __version__
from rule_corpus.config import discover_config
from rule_corpus.ctx import RuleCorpusContext
from rule_corpus.errors import RuleCorpusError
from rule_corpus.manifest import Manifest, render_table


EXIT_OK = 0
EXIT_ISSUES = 1
EXIT_FATAL = 2

logger = logging.getLogger("rule_corpus")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rule-corpus",
        description="Compile best-practice rule documents into a deterministic manifest.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"rule-corpus {__version__}")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>", required=True)

    p_compile = subparsers.add_parser(
        "compile",
        help="Validate, group and list rule documents.",
        description="Validate, group and list the rule documents of a directory.",
    )
    p_compile.add_argument("rules_dir", type=Path, help="Directory with rule documents.")
    p_compile.add_argument(
        "--strict",
        action="store_true",
        help="Exit with code 2 on any conflict or per-document error.",
    )
    p_compile.add_argument(
        "--format",
        choices=("json", "table"),
        default="table",
        help="Output format (default: table).",
    )
    p_compile.add_argument(
        "--sections",
        metavar="FILE",
        type=Path,
        help=(
            "Section definitions document, relative to the current directory "
            "(default: _sections.md in rules dir)."
        ),
    )
    p_compile.add_argument(
        "--config",
        metavar="FILE",
        type=Path,
        help="YAML config (default: rule-corpus.yaml in rules dir, if present).",
    )
    p_compile.add_argument("--jobs", type=int, metavar="N", help="Parsing workers.")
    p_compile.add_argument(
        "--timeout", type=float, metavar="SECONDS", help="Per-document timeout."
    )
    p_compile.add_argument(
        "--output", "-o", type=Path, metavar="FILE", help="Write output to FILE instead of stdout."
    )
    p_compile.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return parser


def _configure_logging(verbose: bool) -> None:
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
    )
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def exit_code(manifest: Manifest, strict: bool) -> int:
    """Map a finished run to the process exit code."""
    if manifest.clean:
        return EXIT_OK
    return EXIT_FATAL if strict else EXIT_ISSUES


def _write_output(manifest: Manifest, fmt: str, output: Path | None) -> None:
    if fmt == "json":
        text = manifest.to_json()
        if output is not None:
            output.write_text(text, encoding="utf-8")
        else:
            sys.stdout.write(text)
        return

    if output is not None:
        with output.open("w", encoding="utf-8") as fh:
            render_table(manifest, Console(file=fh, width=160, no_color=True))
    else:
        render_table(manifest, Console())


def run_compile(args: argparse.Namespace) -> int:
    err = Console(stderr=True)
    ctx: RuleCorpusContext | None = None
    try:
        config = discover_config(args.rules_dir, args.config)
        ctx = RuleCorpusContext(
            args.rules_dir,
            sections_file=args.sections.resolve() if args.sections else None,
            jobs=args.jobs,
            timeout=args.timeout,
            caching=False,
            config=config,
        )
        manifest = ctx.compile()
    except KeyboardInterrupt:
        if ctx is not None:
            ctx.cancel()
        err.print("[red]Cancelled.[/red]")
        return EXIT_FATAL
    except (RuleCorpusError, NotADirectoryError) as exc:
        err.print(f"[red]Fatal:[/red] {escape(str(exc))}", highlight=False)
        return EXIT_FATAL

    _write_output(manifest, args.format, args.output)
    return exit_code(manifest, args.strict)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "compile":
        return run_compile(args)
    parser.error(f"unknown command: {args.command}")
    return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
