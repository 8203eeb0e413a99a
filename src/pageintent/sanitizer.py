# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Sanitization of page-derived text before it enters a model prompt.

Element labels, placeholders and ids come from untrusted pages and are
embedded verbatim in classification and matching prompts. Malicious content
can steer the model via role-prefix injection, hidden Unicode, or by
breaking out of the quoted line it is placed in.

1. sanitize_text(): short fields (labels, placeholders, ids)
2. quote_for_prompt(): one-line, quote-safe rendering for prompt lists
"""

from __future__ import annotations

import re

# Zero-width chars, bidi overrides, C0/C1 controls
_CONTROL_CHAR_RE = re.compile(
    r"[\u200B-\u200F\u202A-\u202E\u2060-\u2069\uFEFF\uFFF9-\uFFFB"
    r"\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]"
)

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

# Matches both line-start and mid-text patterns like "[SYSTEM: ...]"
_ROLE_PREFIX_RE = re.compile(
    r"\[?\s*\b(?:SYSTEM|ASSISTANT|USER|HUMAN|AI|ADMIN|INSTRUCTION|OVERRIDE"
    r"|IMPORTANT|IGNORE|COMMAND)\s*[:\]]\s*",
    re.IGNORECASE,
)

_WHITESPACE_RE = re.compile(r"\s{2,}")


def sanitize_text(text: str | None, max_len: int = 100) -> str:
    """Sanitize a short text field taken from the page.

    - Strips Unicode control characters and ANSI escapes
    - Collapses newlines and runs of whitespace
    - Removes role-prefix patterns that could inject instructions
    - Truncates to max_len
    """
    if not text:
        return ""

    text = _ANSI_ESCAPE_RE.sub("", text)
    text = _CONTROL_CHAR_RE.sub("", text)
    text = text.replace("\n", " ").replace("\r", " ").replace("\t", " ")
    text = _ROLE_PREFIX_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()

    if len(text) > max_len:
        text = text[:max_len]
    return text


def quote_for_prompt(text: str | None, max_len: int = 100) -> str:
    """Render *text* as a double-quoted, single-line prompt literal."""
    cleaned = sanitize_text(text, max_len=max_len)
    cleaned = cleaned.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{cleaned}"'
