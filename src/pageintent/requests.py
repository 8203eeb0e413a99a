# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Closed set of requests an AssistantSession can handle.

``AssistantSession.handle`` dispatches on these with an exhaustive ``match``;
adding a variant here without a handler fails type checking at
``assert_never``.
"""

from __future__ import annotations

from dataclasses import dataclass

from . import ActionType


@dataclass(frozen=True, slots=True)
class ScanPage:
    """Return the current element catalog."""


@dataclass(frozen=True, slots=True)
class DetectIntent:
    utterance: str
    action_hint: bool = False


@dataclass(frozen=True, slots=True)
class ResolveTarget:
    description: str
    use_model: bool | None = None  # None: session default


@dataclass(frozen=True, slots=True)
class ExecuteAction:
    """Run one click/type/focus/scroll/navigate without classification."""

    action_type: ActionType
    target_description: str | None = None
    payload: str | None = None


@dataclass(frozen=True, slots=True)
class ManipulatePage:
    """Apply one ``modify_*`` change directly."""

    action_type: ActionType
    payload: str | None = None
    target_description: str | None = None


@dataclass(frozen=True, slots=True)
class ResetPage:
    """Revert every active manipulation."""


@dataclass(frozen=True, slots=True)
class UndoManipulation:
    """Revert the most recent manipulation."""


@dataclass(frozen=True, slots=True)
class ProcessUtterance:
    """Full turn: scan → classify → route."""

    utterance: str


Request = (
    ScanPage
    | DetectIntent
    | ResolveTarget
    | ExecuteAction
    | ManipulatePage
    | ResetPage
    | UndoManipulation
    | ProcessUtterance
)
