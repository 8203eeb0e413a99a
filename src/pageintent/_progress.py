# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Progress indicators and turn rendering for CLI output.

Uses ``rich`` on interactive terminals; stays silent on stderr when output
is piped so JSON on stdout remains machine-readable.
"""

from __future__ import annotations

import contextlib
import sys
from collections.abc import Generator

from rich.console import Console
from rich.markup import escape

_stderr = Console(stderr=True)


@contextlib.contextmanager
def status_spinner(msg: str) -> Generator[None, None, None]:
    """Context manager showing a spinner with *msg* while active.

    Silent when stderr is not a TTY (piped output).
    """
    if not sys.stderr.isatty():
        yield
        return
    with _stderr.status(msg):
        yield


def print_step(msg: str) -> None:
    """Print a step message to stderr (only when interactive)."""
    if sys.stderr.isatty():
        _stderr.print(msg, highlight=False)


_KIND_STYLE = {
    "question": "cyan",
    "action": "green",
    "manipulation": "green",
    "unresolved": "yellow",
    "rejected": "yellow",
    "error": "red",
}


def print_outcome(outcome: dict, console: Console | None = None) -> None:
    """Render one turn outcome (``TurnOutcome.to_dict()``) as a single styled line."""
    console = console or Console()
    kind = outcome.get("kind", "")
    style = _KIND_STYLE.get(kind, "white")
    mark = "✓" if outcome.get("success") else "✗"
    message = escape(str(outcome.get("message", "")))
    console.print(f"[{style}]{mark} {kind}[/{style}] {message}", highlight=False)
    if outcome.get("answer"):
        console.print(escape(outcome["answer"]), highlight=False)
