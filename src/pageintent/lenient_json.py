# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Lenient JSON extraction for generative-model output.

Models asked for "only the JSON object" still wrap it in markdown fences,
prepend prose, or echo template syntax from the prompt. Rather than
scattering ad hoc regexes through the callers, every repair lives here as a
named rule applied in a fixed order:

  1. strip_code_fences     ```json ... ```  →  inner text
  2. extract_braced_span   first balanced {...} (string/escape aware)
  3. repair_or_null        "click/scroll" OR null  →  null
  4. normalize_literals    True / FALSE / None / NULL  →  true / false / null
  5. drop_trailing_commas  {"a": 1,}  →  {"a": 1}

Rules 3-5 only touch text outside JSON string literals.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

from .errors import ResponseParseError

_FENCE_RE = re.compile(r"```(?:[a-zA-Z0-9_-]+)?\s*\n?(.*?)```", re.DOTALL)

# JSON string literal. Every rule passes these through unchanged.
_STRING_LITERAL = r'"(?:[^"\\]|\\.)*"'

_OR_NULL_RE = re.compile(
    rf"(?<=:)(\s*)(?:{_STRING_LITERAL}|[^,{{}}\[\]\s\"]+)\s+OR\s+null\b|({_STRING_LITERAL})",
    re.IGNORECASE,
)

_LITERAL_RE = re.compile(
    rf"({_STRING_LITERAL})|\b(True|TRUE|False|FALSE|None|NONE|Null|NULL)\b",
)

_TRAILING_COMMA_RE = re.compile(rf"({_STRING_LITERAL})|,(\s*[}}\]])")

_LITERAL_MAP = {
    "true": "true",
    "false": "false",
    "none": "null",
    "null": "null",
}


def strip_code_fences(text: str) -> str:
    """Return the body of the first markdown code fence, or *text* unchanged."""
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    return text.strip()


def extract_braced_span(text: str) -> str | None:
    """Return the first balanced ``{...}`` span, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this opening brace; try the next one.
        start = text.find("{", start + 1)
    return None


def repair_or_null(text: str) -> str:
    """Collapse template-echo values like ``"a/b" OR null`` into ``null``."""

    def _sub(m: re.Match) -> str:
        if m.group(2) is not None:
            return m.group(2)
        return f"{m.group(1) or ' '}null"

    return _OR_NULL_RE.sub(_sub, text)


def normalize_literals(text: str) -> str:
    """Lower-case bare boolean/null tokens written in Python or SQL style."""

    def _sub(m: re.Match) -> str:
        if m.group(1) is not None:
            return m.group(1)
        return _LITERAL_MAP[m.group(2).lower()]

    return _LITERAL_RE.sub(_sub, text)


def drop_trailing_commas(text: str) -> str:
    def _sub(m: re.Match) -> str:
        if m.group(1) is not None:
            return m.group(1)
        return m.group(2)

    return _TRAILING_COMMA_RE.sub(_sub, text)


# Applied in order after fence stripping and brace extraction.
REPAIR_RULES: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("or_null", repair_or_null),
    ("literals", normalize_literals),
    ("trailing_commas", drop_trailing_commas),
)


def extract_json_object(text: str | None) -> dict[str, Any]:
    """Extract and parse the first JSON object from free-form model output.

    Raises:
        ResponseParseError: no object found, or the repaired span still fails to parse.
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty model response", raw=text or "")

    body = strip_code_fences(text)
    span = extract_braced_span(body)
    if span is None and body != text:
        # Fence held prose only; the object may sit outside it.
        span = extract_braced_span(text)
    if span is None:
        raise ResponseParseError("No JSON object found in model response", raw=text)

    try:
        data = json.loads(span)
    except json.JSONDecodeError:
        repaired = span
        for _name, rule in REPAIR_RULES:
            repaired = rule(repaired)
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as exc:
            raise ResponseParseError(f"Malformed JSON in model response: {exc.msg}", raw=text) from exc

    if not isinstance(data, dict):
        raise ResponseParseError("Model response JSON is not an object", raw=text)
    return data
