# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared keyword table for the heuristic intent layers.

Both the override stage (parsed model output) and the fallback stage
(model output unparseable) read the same table, so the two paths cannot
drift apart. Bump KEYWORD_TABLE_VERSION whenever an entry changes.

Precedence is asymmetric: any information keyword wins over any action
keyword. Turning a question into an unwanted click costs more than leaving
an oddly phrased command unanswered.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

KEYWORD_TABLE_VERSION = "3"

# ── Information keywords ───────────────────────────────────────────────

QUESTION_WORDS: tuple[str, ...] = (
    "what",
    "which",
    "who",
    "when",
    "where",
    "how",
    "why",
)

REQUEST_VERBS: tuple[str, ...] = (
    "tell me",
    "explain",
    "describe",
    "summarize",
    "summarise",
    "find the",
    "show me the",
)

DOMAIN_PHRASES: tuple[str, ...] = (
    "about this page",
    "most views",
    "most likes",
    "most popular",
)

INFORMATION_KEYWORDS: tuple[str, ...] = QUESTION_WORDS + REQUEST_VERBS + DOMAIN_PHRASES

# ── Action keywords ────────────────────────────────────────────────────

INTERACTION_VERBS: tuple[str, ...] = (
    "click on",
    "click",
    "press on",
    "tap on",
    "scroll",
    "type",
    "focus on",
    "go back",
    "go forward",
    "reload the page",
    "refresh the page",
)

MANIPULATION_PHRASES: tuple[str, ...] = (
    "make text",
    "make the text",
    "text bigger",
    "text larger",
    "text smaller",
    "dark mode",
    "light mode",
    "hide ads",
    "hide the ads",
    "change background",
    "change the background",
    "zoom in",
    "zoom out",
    "reader mode",
    "focus mode",
    "can you make",
    "can you change",
    "can you hide",
)

ACTION_KEYWORDS: tuple[str, ...] = INTERACTION_VERBS + MANIPULATION_PHRASES


def _compile(keywords: tuple[str, ...]) -> re.Pattern[str]:
    # Word boundaries keep "how" from firing inside "show", "type" inside "prototype".
    alternatives = sorted((re.escape(k) for k in keywords), key=len, reverse=True)
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b")


@dataclass(frozen=True)
class KeywordTable:
    """Versioned information/action keyword sets."""

    version: str = KEYWORD_TABLE_VERSION
    information: tuple[str, ...] = INFORMATION_KEYWORDS
    action: tuple[str, ...] = ACTION_KEYWORDS
    _information_re: re.Pattern[str] = field(init=False, repr=False, compare=False)
    _action_re: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_information_re", _compile(self.information))
        object.__setattr__(self, "_action_re", _compile(self.action))

    def scan(self, utterance: str) -> KeywordScan:
        text = (utterance or "").lower()
        return KeywordScan(
            information=tuple(dict.fromkeys(self._information_re.findall(text))),
            action=tuple(dict.fromkeys(self._action_re.findall(text))),
        )


@dataclass(frozen=True, slots=True)
class KeywordScan:
    """Keywords found in one utterance."""

    information: tuple[str, ...]
    action: tuple[str, ...]

    @property
    def is_information_request(self) -> bool:
        return bool(self.information)

    @property
    def has_action_keyword(self) -> bool:
        return bool(self.action)

    @property
    def is_likely_action(self) -> bool:
        """Action keyword present and no information keyword."""
        return self.has_action_keyword and not self.is_information_request


DEFAULT_TABLE = KeywordTable()


def scan_keywords(utterance: str, table: KeywordTable = DEFAULT_TABLE) -> KeywordScan:
    return table.scan(utterance)
