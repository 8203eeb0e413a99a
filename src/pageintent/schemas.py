# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pydantic contracts for the JSON objects the model is asked to return.

The classifier and the resolver validate lenient-parsed model output against
these models. Validation failure is a parse failure for the caller; every
other field problem (out-of-range confidence, unknown action type, overlong
reasoning) is normalised here rather than rejected.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

from . import ActionType

INTENT_REASONING_MAX = 50
MATCH_REASONING_MAX = 30
_DEFAULT_CONFIDENCE = 0.5


def _clamp_confidence(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(max(number, 0.0), 1.0)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return None
    return text


# ---------------------------------------------------------------------------
# Intent classification
# ---------------------------------------------------------------------------


class IntentResponse(BaseModel):
    """Intent decision as emitted by the model (wire field names)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_action: StrictBool = Field(..., alias="isAction", description="true for page actions, false for questions")
    confidence: float = Field(_DEFAULT_CONFIDENCE, description="0.0-1.0")
    action_type: ActionType | None = Field(None, alias="actionType", description="One of the action types or null")
    target_description: str | None = Field(None, alias="targetDescription", description="Element to act on")
    additional_data: str | None = Field(None, alias="additionalData", description="Text to type, direction, value")
    reasoning: str = Field("", description="Brief explanation, max 50 chars")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        return _clamp_confidence(v, _DEFAULT_CONFIDENCE)

    @field_validator("action_type", mode="before")
    @classmethod
    def _action_type(cls, v: Any) -> ActionType | None:
        # Unknown action names are treated as absent.
        return ActionType.parse(v)

    @field_validator("target_description", "additional_data", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str | None:
        return _optional_text(v)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning(cls, v: Any) -> str:
        return ("" if v is None else str(v).strip())[:INTENT_REASONING_MAX]


# ---------------------------------------------------------------------------
# Model-assisted element matching
# ---------------------------------------------------------------------------


class MatchResponse(BaseModel):
    """Element match decision as emitted by the model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    match_index: int = Field(-1, alias="matchIndex", description="Zero-based index, -1 for no match")
    confidence: float = Field(0.0, description="0.0-1.0")
    reasoning: str = Field("", description="Brief explanation, max 30 chars")

    @field_validator("match_index", mode="before")
    @classmethod
    def _index(cls, v: Any) -> int:
        if v is None or isinstance(v, bool):
            return -1
        try:
            return int(v)
        except (TypeError, ValueError):
            return -1

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        return _clamp_confidence(v, 0.0)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning(cls, v: Any) -> str:
        return ("" if v is None else str(v).strip())[:MATCH_REASONING_MAX]
