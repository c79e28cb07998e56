#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
infallible_alloc/__main__.py
============================

Command-line entry point for the infallible-allocation lint.

Usage
-----
    python -m infallible_alloc <command> [options] <dump-file>

Commands
--------
    check       Analyse a collector dump and emit diagnostics
    taint       Print the units the analysis considers infallible
    graph       Print a call-graph summary, or Graphviz DOT

Exit status
-----------
    0   no diagnostics (or diagnostics without --deny)
    1   diagnostics were emitted and --deny was given
    2   the dump or the configuration could not be loaded
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import textwrap
from typing import Optional, Sequence

from infallible_alloc import __version__
from infallible_alloc.analysis import analyze, emit_diagnostics
from infallible_alloc.callgraph import callgraph_summary
from infallible_alloc.config import load_config
from infallible_alloc.errors import InfallibleAllocError
from infallible_alloc.loader import load_dump
from infallible_alloc.plus_reporter import Reporter

__description__ = "Find call paths from local code into allocations that abort on failure"


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("infallible_alloc").setLevel(level)


def _run_analysis(args: argparse.Namespace):
    config = load_config(args.config)
    dump = load_dump(args.dump, args.format_in)
    return config, analyze(dump.access_map, config)


# ═══════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════

def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' command."""
    config, result = _run_analysis(args)

    stream = sys.stdout if args.output in ("json", "sarif") else sys.stderr
    with Reporter(stream=stream, colour=args.colour, output=args.output,
                  tool_version=__version__) as reporter:
        emitted = emit_diagnostics(result.diagnostics, reporter, config.severity)

    if emitted and args.deny:
        return 1
    return 0


def cmd_taint(args: argparse.Namespace) -> int:
    """Handle the 'taint' command."""
    _config, result = _run_analysis(args)
    units = result.tainted_local_units if args.local_only else result.tainted_units
    for unit in units:
        marker = "local" if unit.is_local else unit.crate or "?"
        sys.stdout.write(f"{unit.display()}\t{marker}\n")
    return 0


def cmd_graph(args: argparse.Namespace) -> int:
    """Handle the 'graph' command."""
    _config, result = _run_analysis(args)
    cg = result.callgraph
    if args.dot:
        taint = result.taint.taint if args.taint else None
        sys.stdout.write(cg.to_dot(title=os.path.basename(args.dump), taint=taint) + "\n")
    else:
        sys.stdout.write(callgraph_summary(cg) + "\n")
        if args.taint:
            sys.stdout.write(f"  Tainted units:        {len(result.taint)}\n")
    return 0


# ═══════════════════════════════════════════════════════════════════════════
# ARGUMENT PARSER
# ═══════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the lint CLI."""

    parser = argparse.ArgumentParser(
        prog="infallible-alloc",
        description=__description__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s check crate.json
              %(prog)s check crate.sexp --output sarif > report.sarif
              %(prog)s check crate.json --deny --config lint.json
              %(prog)s taint crate.json --local-only
              %(prog)s graph crate.json --dot --taint | dot -Tsvg > cg.svg
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "dump",
        help="Collector dump file (.json or .sexp)",
    )
    common.add_argument(
        "--format-in",
        choices=("json", "sexp"),
        default=None,
        help="Dump format (default: from the file extension)",
    )
    common.add_argument(
        "--config",
        default=None,
        help="JSON configuration file (default: $INFALLIBLE_ALLOC_CONFIG)",
    )
    common.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Log progress (-v) or debug details (-vv) to stderr",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="available commands",
        metavar="<command>",
    )

    # ── check ────────────────────────────────────────────────────────────

    p_check = subparsers.add_parser(
        "check",
        parents=[common],
        help="Analyse a dump and emit diagnostics",
        description=(
            "Build the call graph of a collector dump, propagate taint from "
            "allocation primitives and report every call from local code "
            "into an external function that may abort on allocation failure."
        ),
    )
    p_check.add_argument(
        "--output",
        choices=("text", "plain", "json", "sarif"),
        default="text",
        help="Diagnostic format (default: text)",
    )
    p_check.add_argument(
        "--deny",
        action="store_true",
        default=False,
        help="Exit with status 1 when any diagnostic is emitted",
    )
    p_check.add_argument(
        "--color",
        dest="colour",
        action="store_true",
        default=None,
        help="Force coloured output",
    )
    p_check.add_argument(
        "--no-color",
        dest="colour",
        action="store_false",
        default=None,
        help="Disable coloured output",
    )
    p_check.set_defaults(func=cmd_check)

    # ── taint ────────────────────────────────────────────────────────────

    p_taint = subparsers.add_parser(
        "taint",
        parents=[common],
        help="Print the tainted units",
    )
    p_taint.add_argument(
        "--local-only",
        action="store_true",
        default=False,
        help="Only print units of the crate under analysis",
    )
    p_taint.set_defaults(func=cmd_taint)

    # ── graph ────────────────────────────────────────────────────────────

    p_graph = subparsers.add_parser(
        "graph",
        parents=[common],
        help="Print a call-graph summary or DOT",
    )
    p_graph.add_argument(
        "--dot",
        action="store_true",
        default=False,
        help="Emit Graphviz DOT instead of the summary",
    )
    p_graph.add_argument(
        "--taint",
        action="store_true",
        default=False,
        help="Highlight tainted units",
    )
    p_graph.set_defaults(func=cmd_graph)

    return parser


# ═══════════════════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════════════════

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point.

    Parameters
    ----------
    argv : sequence of str, optional
        Command-line arguments. Defaults to sys.argv[1:].

    Returns
    -------
    int
        Exit code.
    """

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    _configure_logging(args.verbose)

    try:
        return args.func(args)
    except InfallibleAllocError as exc:
        sys.stderr.write(f"{exc}\n")
        if exc.hint:
            sys.stderr.write(f"  = help: {exc.hint}\n")
        return 2
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted.\n")
        return 130
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return 0


if __name__ == "__main__":
    sys.exit(main())
