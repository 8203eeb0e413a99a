# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageIntent CLI: scan, classify, run, repl commands.

Usage:
    pageintent scan URL [--format json|text]
    pageintent classify URL UTTERANCE
    pageintent run URL UTTERANCE [UTTERANCE ...] [--yes]
    pageintent repl URL
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from . import InteractiveElement, __version__
from ._progress import print_outcome, print_step, status_spinner
from .browser_session import BrowserConfig
from .config import AssistantConfig, browser_config_from_env
from .element_catalog import catalog_stats
from .errors import PageIntentError
from .logging_config import configure
from .requests import DetectIntent, ProcessUtterance, ScanPage
from .session import ConfirmCallback, open_session

_REPL_EXIT = ("exit", "quit", ":q")


def _build_config(args: argparse.Namespace) -> AssistantConfig:
    config = AssistantConfig.from_env().replace(model=args.model, base_url=args.base_url)
    if args.no_highlight:
        config = config.replace(highlight=False)
    return config


def _browser_config(args: argparse.Namespace) -> BrowserConfig:
    browser_config = browser_config_from_env()
    if args.headed:
        browser_config.headless = False
    return browser_config


async def _always_confirm(reason: str, element: InteractiveElement | None) -> bool:
    return True


async def _ask_confirm(reason: str, element: InteractiveElement | None) -> bool:
    target = str(element) if element is not None else "page"
    return await asyncio.to_thread(Confirm.ask, f"{reason} ({target}). Proceed?", default=False)


def _print_catalog(elements: list[InteractiveElement], console: Console) -> None:
    table = Table(title=f"{len(elements)} interactive elements")
    table.add_column("#", justify="right")
    table.add_column("kind")
    table.add_column("label")
    table.add_column("id")
    for i, element in enumerate(elements):
        table.add_row(str(i), element.kind.value, element.label, element.dom_id or "")
    console.print(table)


# ── commands ─────────────────────────────────────────────────────


async def _scan(args: argparse.Namespace) -> None:
    async with open_session(args.url, config=_build_config(args), browser_config=_browser_config(args)) as session:
        with status_spinner("Scanning page…"):
            elements = await session.handle(ScanPage())
    if args.format == "json":
        payload = {"stats": catalog_stats(elements), "elements": [e.to_dict() for e in elements]}
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        _print_catalog(elements, Console())


async def _classify(args: argparse.Namespace) -> None:
    async with open_session(args.url, config=_build_config(args), browser_config=_browser_config(args)) as session:
        with status_spinner("Classifying…"):
            intent = await session.handle(DetectIntent(args.utterance))
    print(json.dumps(intent.to_dict(), ensure_ascii=False, indent=2))


async def _run(args: argparse.Namespace) -> None:
    confirm: ConfirmCallback | None = _always_confirm if args.yes else None
    async with open_session(
        args.url,
        config=_build_config(args),
        browser_config=_browser_config(args),
        confirm=confirm,
    ) as session:
        for utterance in args.utterances:
            print_step(f"› {utterance}")
            with status_spinner("Working…"):
                outcome = await session.handle(ProcessUtterance(utterance))
            if args.format == "json":
                print(json.dumps(outcome.to_dict(), ensure_ascii=False))
            else:
                print_outcome(outcome.to_dict())


async def _repl(args: argparse.Namespace) -> None:
    console = Console()
    async with open_session(
        args.url,
        config=_build_config(args),
        browser_config=_browser_config(args),
        confirm=_ask_confirm,
    ) as session:
        console.print(f"PageIntent {__version__}: type an instruction, or 'exit' to quit.")
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold]› [/bold]")
            except EOFError:
                break
            utterance = line.strip()
            if not utterance:
                continue
            if utterance.lower() in _REPL_EXIT:
                break
            with status_spinner("Working…"):
                outcome = await session.process_utterance(utterance)
            print_outcome(outcome.to_dict(), console)


def cmd_scan(args: argparse.Namespace) -> None:
    """List the interactive elements on a page."""
    asyncio.run(_scan(args))


def cmd_classify(args: argparse.Namespace) -> None:
    """Classify one utterance against a page without acting."""
    asyncio.run(_classify(args))


def cmd_run(args: argparse.Namespace) -> None:
    """Run utterances against a page, one turn each."""
    asyncio.run(_run(args))


def cmd_repl(args: argparse.Namespace) -> None:
    """Interactive loop on one page."""
    asyncio.run(_repl(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PageIntent: drive a web page with natural-language instructions",
        prog="pageintent",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging and tracebacks")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")
    parser.add_argument("--log-level", default=None, help="Root log level (default INFO, DEBUG with -v)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--model", default=None, help="Chat model name (env: PAGEINTENT_MODEL)")
    parser.add_argument("--base-url", default=None, help="Chat completions base URL (env: PAGEINTENT_BASE_URL)")
    parser.add_argument("--no-highlight", action="store_true", help="Skip the visual highlight before actions")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_scan = subparsers.add_parser("scan", help="List interactive elements")
    p_scan.add_argument("url", metavar="URL")
    p_scan.add_argument("--format", choices=["json", "text"], default="text")

    p_classify = subparsers.add_parser("classify", help="Classify an utterance (no action taken)")
    p_classify.add_argument("url", metavar="URL")
    p_classify.add_argument("utterance")

    p_run = subparsers.add_parser("run", help="Process utterances against a page")
    p_run.add_argument("url", metavar="URL")
    p_run.add_argument("utterances", nargs="+", metavar="UTTERANCE")
    p_run.add_argument("-y", "--yes", action="store_true", help="Auto-confirm password/submit actions")
    p_run.add_argument("--format", choices=["json", "text"], default="text")

    p_repl = subparsers.add_parser("repl", help="Interactive session on one page")
    p_repl.add_argument("url", metavar="URL")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = args.log_level or ("DEBUG" if args.verbose else "INFO")
    configure(json_output=args.json_logs, level=level)

    commands = {
        "scan": cmd_scan,
        "classify": cmd_classify,
        "run": cmd_run,
        "repl": cmd_repl,
    }
    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except PageIntentError as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
