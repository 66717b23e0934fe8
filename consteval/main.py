#!/usr/bin/env python3
"""consteval/main.py — CLI entry-point for the constant-expression evaluator.

Usage examples
--------------
    # Evaluate every #assert of a lowered module
    python -m consteval check pound_assert.cir

    # Supply the global binding snapshot from the propagation pre-pass
    python -m consteval check pound_assert.cir --bindings globals.sexp

    # Lower the instruction ceiling and evaluate on four threads
    python -m consteval check big.cir --instruction-limit 128 -j 4

    # Machine-readable output
    python -m consteval check pound_assert.cir --format json -o diags.jsonl

    # Parse a module and pretty-print it (debugging aid)
    python -m consteval dump pound_assert.cir

Exit codes
----------
    0   Every assertion holds.
    1   One or more diagnostics with severity ERROR were emitted.
    2   Infrastructure failure (missing file, syntax error, malformed IR).

The module doubles as ``python -m consteval`` via the companion
``consteval/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Optional, Sequence, TextIO

from consteval import __version__
from consteval.driver import EvaluationReport, evaluate_module
from consteval.errors import ConstEvalError
from consteval.frames import DEFAULT_INSTRUCTION_LIMIT
from consteval.ir_parser import load_module
from consteval.snapshot import read_bindings_file

_log = logging.getLogger("consteval")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``consteval`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("consteval")
    root.setLevel(level)
    if any(getattr(h, "_consteval_cli", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler._consteval_cli = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _emit_report(report: EvaluationReport, fmt: str, stream: TextIO) -> int:
    """Write the diagnostics of *report* to *stream* in the chosen format.

    Returns the count of ERROR-severity diagnostics.
    """
    if fmt == "json":
        text = report.to_json_lines()
    else:
        text = report.to_gcc_format()
    if text:
        stream.write(text + "\n")
    if fmt == "summary":
        stream.write(f"\n--- {report.summary()} ---\n")
    return report.error_count


# ===========================================================================
# Sub-commands
# ===========================================================================

def cmd_check(args: argparse.Namespace) -> int:
    """Evaluate every assertion of a module and report diagnostics."""
    ir_path = _resolve_path(args.ir_file, "IR file")
    try:
        module = load_module(ir_path)
        bindings = None
        if args.bindings:
            bindings = read_bindings_file(_resolve_path(args.bindings, "bindings file"))
        report = evaluate_module(
            module,
            bindings,
            jobs=args.jobs,
            instruction_limit=args.instruction_limit,
        )
    except ConstEvalError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    stream = _open_output(args.output)
    try:
        error_count = _emit_report(report, args.format, stream)
    finally:
        if stream is not sys.stdout:
            stream.close()

    _log.info(report.summary())
    if report.malformed_count:
        return EXIT_INFRA
    return EXIT_ERROR if error_count > 0 else EXIT_OK


def cmd_dump(args: argparse.Namespace) -> int:
    """Parse a module and pretty-print it back in text form."""
    ir_path = _resolve_path(args.ir_file, "IR file")
    try:
        module = load_module(ir_path)
    except ConstEvalError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    stream = _open_output(args.output)
    try:
        stream.write(module.dump())
    finally:
        if stream is not sys.stdout:
            stream.close()
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""

    # --- Top-level parser --------------------------------------------------
    parser = argparse.ArgumentParser(
        prog="consteval",
        description=(
            "consteval — compile-time evaluator for #assert conditions.\n\n"
            "Interprets lowered condition functions over compile-time\n"
            "constants and reports assertions that fail or cannot be folded."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              consteval check pound_assert.cir
              consteval check pound_assert.cir --bindings globals.sexp -j 4
              consteval dump  pound_assert.cir
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_output_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )

    # --- check -------------------------------------------------------------
    p_check = subparsers.add_parser(
        "check",
        help="Evaluate every #assert in a lowered module.",
    )
    p_check.add_argument("ir_file", metavar="FILE", help="Text IR module.")
    p_check.add_argument(
        "--bindings",
        default=None,
        metavar="SNAPSHOT",
        help="S-expression snapshot of pre-resolved global bindings.",
    )
    g = p_check.add_argument_group("evaluation tuning")
    g.add_argument(
        "--instruction-limit",
        type=int,
        default=DEFAULT_INSTRUCTION_LIMIT,
        metavar="N",
        help=f"Instructions one assertion may execute (default: {DEFAULT_INSTRUCTION_LIMIT}).",
    )
    g.add_argument(
        "-j", "--jobs",
        type=int,
        default=1,
        metavar="N",
        help="Evaluate independent assertions on N threads (default: 1).",
    )
    p_check.add_argument(
        "-f", "--format",
        choices=["gcc", "json", "summary"],
        default="gcc",
        help="Output format (default: gcc).",
    )
    _add_output_arg(p_check)
    p_check.set_defaults(func=cmd_check)

    # --- dump --------------------------------------------------------------
    p_dump = subparsers.add_parser(
        "dump",
        help="Parse a module and pretty-print it.",
    )
    p_dump.add_argument("ir_file", metavar="FILE", help="Text IR module.")
    _add_output_arg(p_dump)
    p_dump.set_defaults(func=cmd_dump)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the consteval CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    # No subcommand given → print help.
    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130  # Standard UNIX convention for SIGINT
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
