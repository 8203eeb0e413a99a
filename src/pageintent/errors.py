# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageIntent exception hierarchy.

All PageIntent-specific errors inherit from PageIntentError. These are
raised inside components and converted to structured results at the
component boundary, so callers of the pipeline normally never see them.
"""

from __future__ import annotations


class PageIntentError(Exception):
    """Base exception for all PageIntent errors."""


class BrowserError(PageIntentError):
    """Browser session launch, navigation, or interaction failure."""


class ModelError(PageIntentError):
    """Generative-text collaborator failed (transport, HTTP status, or response shape)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseParseError(PageIntentError):
    """Model output did not contain a usable JSON object."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class ConfigError(PageIntentError):
    """Invalid configuration value (env var or CLI flag)."""


_BROWSER_DEAD_PATTERNS = (
    "target closed",
    "target page",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
)


def is_browser_dead_error(exc: BaseException) -> bool:
    """Detect browser crash/disconnect errors."""
    msg = str(exc).lower()
    return any(p in msg for p in _BROWSER_DEAD_PATTERNS)
