# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Intent: voice/text utterance → page action pipeline for browser assistants.

Turns a free-form utterance into a structured decision:
- INFORMATION requests are handed to a question-answering collaborator
- ACTION requests are resolved to a concrete element and executed safely

Pipeline: ElementCatalog.scan() → IntentClassifier.classify() →
ElementResolver.resolve() → ActionExecutor / PageManipulator.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

__version__ = "0.3.0"


class ElementKind(str, Enum):
    """Interactive element category, in catalog priority order."""

    SEARCH = "search"
    BUTTON = "button"
    LINK = "link"
    INPUT = "input"


class ActionType(str, Enum):
    """Every action the classifier may emit."""

    CLICK = "click"
    SCROLL = "scroll"
    NAVIGATE = "navigate"
    TYPE = "type"
    FOCUS = "focus"
    MODIFY_TEXT_SIZE = "modify_text_size"
    MODIFY_THEME = "modify_theme"
    MODIFY_COLOR = "modify_color"
    MODIFY_VISIBILITY = "modify_visibility"
    MODIFY_LAYOUT = "modify_layout"
    MODIFY_FOCUS = "modify_focus"
    MODIFY_ZOOM = "modify_zoom"
    MODIFY_RESET = "modify_reset"

    @property
    def is_manipulation(self) -> bool:
        return self.value.startswith("modify_")

    @property
    def needs_element(self) -> bool:
        return self in (ActionType.CLICK, ActionType.TYPE, ActionType.FOCUS)

    @classmethod
    def parse(cls, raw: Any) -> ActionType | None:
        """Return the member for *raw* (case-insensitive) or None."""
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Viewport-relative geometry captured at scan time."""

    top: float = 0.0
    left: float = 0.0
    bottom: float = 0.0
    right: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2

    @property
    def center_y(self) -> float:
        return self.top + self.height / 2

    def to_dict(self) -> dict[str, float]:
        return {
            "top": self.top,
            "left": self.left,
            "bottom": self.bottom,
            "right": self.right,
            "width": self.width,
            "height": self.height,
            "centerX": self.center_x,
            "centerY": self.center_y,
        }


@dataclass
class InteractiveElement:
    """A single interactive element found by one catalog scan.

    Valid only for the scan that produced it. Any DOM mutation (including
    one of our own actions) requires a fresh scan before reuse.
    """

    kind: ElementKind
    display_text: str  # first non-empty text source, max 100 chars
    unique_key: str
    bounding_box: BoundingBox = field(default_factory=BoundingBox)
    input_type: str | None = None  # Input/Search kinds only
    placeholder: str | None = None
    aria_label: str | None = None
    associated_label: str | None = None
    dom_id: str | None = None
    css_classes: str | None = None
    selector: str = ""  # unique CSS selector (internal, for locating the node)
    tag_name: str = ""
    name: str | None = None  # name attribute
    href: str | None = None
    node_index: int = -1  # DOM node identity within one scan

    @property
    def label(self) -> str:
        """Text used for matching: display text, then label, then placeholder."""
        return self.display_text or self.associated_label or self.placeholder or ""

    def __str__(self) -> str:
        parts = [f"{self.kind.value}:", f'"{self.label or "unnamed"}"']
        if self.dom_id:
            parts.append(f"#{self.dom_id}")
        if self.input_type and self.kind in (ElementKind.INPUT, ElementKind.SEARCH):
            parts.append(f"type={self.input_type}")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "displayText": self.display_text,
            "inputType": self.input_type,
            "placeholder": self.placeholder,
            "ariaLabel": self.aria_label,
            "associatedLabel": self.associated_label,
            "domId": self.dom_id,
            "cssClasses": self.css_classes,
            "boundingBox": self.bounding_box.to_dict(),
            "uniqueKey": self.unique_key,
        }


@dataclass(frozen=True, slots=True)
class Intent:
    """Classifier decision for one utterance. Never mutated after repair."""

    is_action: bool
    confidence: float
    action_type: ActionType | None = None
    target_description: str | None = None
    payload: str | None = None  # "additionalData" on the wire
    reasoning: str = ""

    @property
    def is_weak(self) -> bool:
        """An action signal without slots (heuristic-only classification)."""
        return self.is_action and self.action_type is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isAction": self.is_action,
            "confidence": self.confidence,
            "actionType": self.action_type.value if self.action_type else None,
            "targetDescription": self.target_description,
            "additionalData": self.payload,
            "reasoning": self.reasoning,
        }


# Local scoring must exceed this value to count as a match.
MATCH_ACCEPTANCE_THRESHOLD = 0.3


@dataclass(frozen=True, slots=True)
class ElementMatch:
    """Resolver output. Below-threshold confidence means "no match"."""

    matched_element: InteractiveElement | None
    confidence: float
    reasoning: str = ""

    @property
    def accepted(self) -> bool:
        return self.matched_element is not None and self.confidence > MATCH_ACCEPTANCE_THRESHOLD

    @classmethod
    def none(cls, reasoning: str = "No match") -> ElementMatch:
        return cls(matched_element=None, confidence=0.0, reasoning=reasoning)


@dataclass(frozen=True, slots=True)
class ActiveManipulation:
    """One applied, reversible page-level visual change."""

    id: str
    description: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of one ActionExecutor operation. Check ``success`` before assuming the DOM changed."""

    success: bool
    action: str
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, action: str, error: str) -> ActionResult:
        return cls(success=False, action=action, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "action": self.action}
        if self.error:
            data["error"] = self.error
        data.update(self.details)
        return data
