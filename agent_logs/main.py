#!/usr/bin/env python3
"""agent-logs - find, parse and sanitize AI coding assistant logs.

Entry point for the CLI application.
"""

import argparse
import json
import logging
import sys
from collections import defaultdict
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool, console: Console) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _config_from_args(args):
    from .config import ScanConfig

    config = ScanConfig.from_env(args.roots or None)
    if args.workers:
        config.parse_workers = args.workers
        config.discovery_workers = args.workers
    if args.precedence:
        config.tool_precedence = [name.strip() for name in args.precedence.split(",") if name.strip()]
    if args.no_targeted:
        config.targeted = False
    limits = config.limits
    if args.max_lines:
        limits = replace(limits, max_lines=args.max_lines)
    if args.timeout:
        limits = replace(limits, timeout_seconds=args.timeout)
    config.limits = limits
    return config


def _summary_table(report) -> Table:
    per_tool = defaultdict(lambda: {"sessions": 0, "events": 0, "tokens": 0, "cost": None})
    for session in report.sessions:
        row = per_tool[session.tool]
        row["sessions"] += 1
        row["events"] += session.event_count
        row["tokens"] += session.token_estimate
        if session.cost_estimate is not None:
            row["cost"] = (row["cost"] or 0) + session.cost_estimate

    table = Table(title="AI tool sessions")
    table.add_column("Tool")
    table.add_column("Sessions", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Tokens (est.)", justify="right")
    table.add_column("Cost", justify="right")
    for tool, row in sorted(per_tool.items(), key=lambda item: -item[1]["sessions"]):
        cost = f"${row['cost']:.2f}" if row["cost"] is not None else "-"
        table.add_row(tool.display_name, str(row["sessions"]), str(row["events"]), f"{row['tokens']:,}", cost)
    return table


def cmd_scan(args, console: Console) -> int:
    """Discover, parse and sanitize, then summarise or emit JSON lines."""
    from .pipeline import Pipeline

    pipeline = Pipeline(_config_from_args(args))
    sessions = []
    try:
        for session in pipeline.iter_sessions():
            if args.jsonl:
                sys.stdout.write(json.dumps(session.to_dict()) + "\n")
            else:
                sessions.append(session)
    except KeyboardInterrupt:
        pipeline.cancel()
        console.print("[yellow]Interrupted; results are partial[/yellow]")
    report = pipeline.report(sessions)

    summary = report.summary()
    if args.jsonl:
        for diagnostic in report.diagnostics:
            sys.stderr.write(json.dumps({"diagnostic": diagnostic.to_dict()}) + "\n")
        return 0

    console.print(_summary_table(report))
    status = "complete" if summary["complete"] else "partial"
    console.print(
        f"Sources attempted: {summary['attempted']}, parsed: {summary['parsed']}, "
        f"skipped: {summary['skipped']}, truncated: {summary['truncated']}, "
        f"failed: {summary['failed']} ({status})",
        soft_wrap=True,
    )
    if args.verbose:
        for diagnostic in report.diagnostics:
            console.print(
                f"  {diagnostic.kind.value:<9} {diagnostic.path}: {diagnostic.reason}", markup=False, soft_wrap=True
            )
    return 0


def cmd_tools(args, console: Console) -> int:
    """List the tool registry."""
    from .registry import DEFAULT_REGISTRY

    registry = DEFAULT_REGISTRY
    if args.precedence:
        try:
            registry = registry.with_precedence([name for name in args.precedence.split(",") if name.strip()])
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    table = Table(title="Known log locations")
    table.add_column("Tool")
    table.add_column("Kind")
    table.add_column("Pattern")
    for tool, pattern in registry:
        table.add_row(tool.display_name, pattern.kind.value, pattern.glob)
    console.print(table)
    return 0


def cmd_sanitize(args, console: Console) -> int:
    """Sanitize a file, stdin, or the user's shell history."""
    from .sanitizer import DEFAULT_SANITIZER

    if args.shell_history:
        histories = DEFAULT_SANITIZER.sanitize_shell_histories()
        if not histories:
            console.print("No shell history files found")
            return 0
        for name, text in histories:
            if args.output_dir:
                out_dir = Path(args.output_dir)
                out_dir.mkdir(parents=True, exist_ok=True)
                (out_dir / name).write_text(text + "\n")
                console.print(f"Wrote {out_dir / name}")
            else:
                console.rule(name)
                sys.stdout.write(text + "\n")
        return 0

    if args.file and args.file != "-":
        try:
            sys.stdout.write(DEFAULT_SANITIZER.sanitize_file(Path(args.file)) + "\n")
        except OSError as e:
            console.print(f"[red]Cannot read {args.file}: {e.strerror}[/red]")
            return 1
        return 0

    for line in sys.stdin:
        sys.stdout.write(DEFAULT_SANITIZER.sanitize(line.rstrip("\n")) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Find, parse and sanitize AI coding assistant logs",
        prog="agent-logs",
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging and per-source diagnostics")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    scan_parser = subparsers.add_parser("scan", help="Scan for logs and summarise sanitized sessions")
    scan_parser.add_argument("roots", nargs="*", type=Path, help="Root directories (default: home directory)")
    scan_parser.add_argument("--max-lines", type=int, help="Line ceiling per source")
    scan_parser.add_argument("--workers", type=int, help="Worker threads for discovery and parsing")
    scan_parser.add_argument("--timeout", type=float, help="Per-source parse timeout in seconds")
    scan_parser.add_argument("--precedence", help="Comma-separated tools to match first")
    scan_parser.add_argument("--no-targeted", action="store_true", help="Walk whole roots, not just tool directories")
    scan_parser.add_argument("--jsonl", action="store_true", help="Emit sanitized sessions as JSON lines")
    scan_parser.add_argument(
        "--verbose", "-v", action="store_true", default=argparse.SUPPRESS, help="Show per-source diagnostics"
    )

    tools_parser = subparsers.add_parser("tools", help="List known tools and log locations")
    tools_parser.add_argument("--precedence", help="Comma-separated tools to list first")

    sanitize_parser = subparsers.add_parser("sanitize", help="Sanitize a file or stdin")
    sanitize_parser.add_argument("file", nargs="?", help="File to sanitize (default: stdin)")
    sanitize_parser.add_argument("--shell-history", action="store_true", help="Sanitize shell history files")
    sanitize_parser.add_argument("--output-dir", help="Write sanitized shell histories here")
    return parser


def main(argv=None) -> int:
    """Main entry point for agent-logs CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    console = Console()
    _setup_logging(args.verbose, Console(stderr=True))

    if args.version:
        from . import __version__
        console.print(f"agent-logs {__version__}")
        return 0

    commands = {"scan": cmd_scan, "tools": cmd_tools, "sanitize": cmd_sanitize}
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1
    try:
        return command(args, console)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}", highlight=False)
        return 2


if __name__ == "__main__":
    sys.exit(main())
