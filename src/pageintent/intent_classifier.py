# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Intent classification: question vs. page action, plus action slots.

A single model call is wrapped in deterministic guards, in strict order:

  1. model call         prompt = utterance + up to 20 catalog entries
  2. parse              lenient JSON + IntentResponse validation
  3. consistency repair actionType present ⇒ isAction, confidence ≥ 0.8
  4. override           information keywords force a question, whatever the
                        model said; otherwise an action keyword flips a
                        question to action (≥ 0.7)
  5. fallback           only on parse failure: keyword scan alone, conf 0.3
  6. model failure      collaborator raised: question, conf 0, error text

Stages 4 and 5 share one KeywordTable. Every path returns an Intent; no
exception escapes ``classify``.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence

from pydantic import ValidationError

from . import ActionType, Intent, InteractiveElement
from .errors import ResponseParseError
from .keywords import DEFAULT_TABLE, KeywordTable
from .lenient_json import extract_json_object
from .sanitizer import quote_for_prompt
from .schemas import INTENT_REASONING_MAX, IntentResponse
from .text_generator import TextGenerator

logger = logging.getLogger(__name__)

MAX_CONTEXT_ELEMENTS = 20
MAX_UTTERANCE_CHARS = 500

REPAIR_MIN_CONFIDENCE = 0.8
OVERRIDE_MIN_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.3

_ACTION_GUIDE = """\
ACTION TYPES (use exactly one of these strings for actionType):
- click: click a button or link. targetDescription = the element
- type: type text into a field. targetDescription = the field, additionalData = the text
- focus: focus a field without typing. targetDescription = the field
- scroll: additionalData = up, down, left, right, top or bottom
- navigate: additionalData = back, forward or refresh
- modify_text_size: additionalData = increase, decrease, reset or a scale like 1.5
- modify_theme: additionalData = dark or light
- modify_color: additionalData = background:<color>, text:<color> or contrast:<low|normal|high>
- modify_visibility: additionalData = hide:<ads|sidebar|header|footer|images|videos> or show:<same>
- modify_layout: additionalData = reader, reader-off, narrow, medium, wide, full or center
- modify_focus: additionalData = on or off
- modify_zoom: additionalData = in, out, reset or a percentage like 150%
- modify_reset: additionalData = all or undo"""

_EXAMPLES = """\
ACTION REQUESTS are commands to interact with or change the page, like:
- Click on [element]
- Scroll down/up
- Go back/forward
- Type [text] in [field]
- Make the text larger / Turn on dark mode / Hide ads

QUESTIONS are requests for information, like:
- What is this page about?
- Tell me about [topic]
- Which post has the most views?
- Summarize this"""

_CONTRACT = """\
Respond in this EXACT JSON format:
{
  "isAction": true or false,
  "confidence": number between 0.0 and 1.0,
  "actionType": one of the action types above, or null,
  "targetDescription": "description of target element" or null,
  "additionalData": "extra data such as text to type" or null,
  "reasoning": "brief explanation, max 50 characters"
}

Return ONLY the JSON object, nothing else."""


def build_intent_prompt(
    utterance: str,
    catalog: Sequence[InteractiveElement] = (),
    *,
    action_hint: bool = False,
    max_elements: int = MAX_CONTEXT_ELEMENTS,
) -> str:
    """Render the classification prompt for *utterance*."""
    lines: list[str] = []
    if action_hint:
        lines.append(
            "SLOT EXTRACTION TASK: The user input below is a PAGE ACTION. "
            "Set isAction to true and fill actionType, targetDescription and additionalData."
        )
    else:
        lines.append("CLASSIFICATION TASK: Decide whether this user input is an ACTION REQUEST or a QUESTION.")
    lines.append("")
    lines.append(f"User Input: {quote_for_prompt(utterance, max_len=MAX_UTTERANCE_CHARS)}")

    if catalog:
        lines.append("")
        lines.append("Available interactive elements on the page:")
        for i, el in enumerate(catalog[:max_elements], start=1):
            lines.append(f"{i}. {el.kind.value}: {quote_for_prompt(el.label or 'unnamed')}")

    lines.append("")
    if not action_hint:
        lines.append(_EXAMPLES)
        lines.append("")
    lines.append(_ACTION_GUIDE)
    lines.append("")
    lines.append(_CONTRACT)
    return "\n".join(lines)


def _reason(text: str) -> str:
    return text[:INTENT_REASONING_MAX]


def parse_intent_response(raw: str) -> Intent:
    """Stage 2: lenient parse + field validation.

    Raises:
        ResponseParseError: no JSON object, or ``isAction`` missing/not boolean.
    """
    data = extract_json_object(raw)
    try:
        resp = IntentResponse.model_validate(data)
    except ValidationError as exc:
        raise ResponseParseError(f"Invalid intent format: {exc.error_count()} error(s)", raw=raw) from exc

    return Intent(
        is_action=resp.is_action,
        confidence=resp.confidence,
        action_type=resp.action_type,
        target_description=resp.target_description,
        payload=resp.additional_data,
        reasoning=resp.reasoning,
    )


def repair_consistency(intent: Intent) -> Intent:
    """Stage 3: an action type implies an action."""
    if intent.action_type is None or intent.is_action:
        return intent
    logger.debug("Repairing self-contradictory intent (actionType=%s, isAction=false)", intent.action_type.value)
    return dataclasses.replace(
        intent,
        is_action=True,
        confidence=max(intent.confidence, REPAIR_MIN_CONFIDENCE),
        reasoning=_reason(f"Repaired: {intent.action_type.value} implies action"),
    )


def apply_keyword_override(intent: Intent, utterance: str, table: KeywordTable = DEFAULT_TABLE) -> Intent:
    """Stage 4: keywords overrule the model in both directions.

    Any information keyword turns the intent into a question, whatever the
    model said. Otherwise a question with an action keyword becomes an action.
    """
    scan = table.scan(utterance)
    if scan.is_information_request:
        if not intent.is_action:
            return intent
        logger.info("Information keyword %r → question", scan.information[0])
        return dataclasses.replace(
            intent,
            is_action=False,
            action_type=None,
            target_description=None,
            payload=None,
            reasoning=_reason(f"Information request: '{scan.information[0]}'"),
        )
    if intent.is_action or not scan.has_action_keyword:
        return intent
    logger.info("Heuristic override → action (keyword %r)", scan.action[0])
    return dataclasses.replace(
        intent,
        is_action=True,
        confidence=max(intent.confidence, OVERRIDE_MIN_CONFIDENCE),
        reasoning=_reason(f"Heuristic override: '{scan.action[0]}'"),
    )


def fallback_intent(utterance: str, table: KeywordTable = DEFAULT_TABLE) -> Intent:
    """Stage 5: keyword-only classification when the model output is unusable."""
    scan = table.scan(utterance)
    return Intent(
        is_action=scan.is_likely_action,
        confidence=FALLBACK_CONFIDENCE,
        reasoning="Fallback heuristic (unparseable response)",
    )


class IntentClassifier:
    """Classifies utterances using a TextGenerator and the shared keyword table."""

    def __init__(
        self,
        generator: TextGenerator,
        *,
        keywords: KeywordTable = DEFAULT_TABLE,
        max_context_elements: int = MAX_CONTEXT_ELEMENTS,
    ) -> None:
        self._generator = generator
        self._keywords = keywords
        self._max_context_elements = max_context_elements

    async def classify(
        self,
        utterance: str,
        catalog: Sequence[InteractiveElement] = (),
        *,
        action_hint: bool = False,
    ) -> Intent:
        """Classify *utterance* against the current catalog.

        ``action_hint=True`` is the second, slot-extraction pass the router
        requests after a weak action signal.
        """
        prompt = build_intent_prompt(
            utterance,
            catalog,
            action_hint=action_hint,
            max_elements=self._max_context_elements,
        )

        try:
            raw = await self._generator.generate(prompt)
        except Exception as exc:
            logger.warning("Intent model call failed: %s", exc)
            return Intent(is_action=False, confidence=0.0, reasoning=f"Error: {exc}")

        try:
            intent = parse_intent_response(raw)
        except ResponseParseError as exc:
            logger.warning("Intent parse failed (%s); using keyword fallback", exc)
            intent = fallback_intent(utterance, self._keywords)
            self._log(intent, "fallback")
            return intent

        intent = repair_consistency(intent)
        intent = apply_keyword_override(intent, utterance, self._keywords)
        self._log(intent, "model")
        return intent

    @staticmethod
    def _log(intent: Intent, source: str) -> None:
        logger.info(
            "Intent (%s): action=%s type=%s conf=%.2f target=%r",
            source,
            intent.is_action,
            intent.action_type.value if isinstance(intent.action_type, ActionType) else None,
            intent.confidence,
            intent.target_description,
        )
