# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Element resolution: free-text target description → one catalog element.

Two strategies:
- local scoring (deterministic, free): weighted substring heuristics
- model-assisted matching: the model picks an index from the first 30 entries

``resolve`` runs local scoring first and only asks the model when local
scoring finds nothing and model matching is enabled. Both strategies are
stateless; callers re-resolve against a fresh scan after any DOM mutation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from pydantic import ValidationError

from . import MATCH_ACCEPTANCE_THRESHOLD, ElementKind, ElementMatch, InteractiveElement
from .errors import ResponseParseError
from .lenient_json import extract_json_object
from .sanitizer import quote_for_prompt, sanitize_text
from .schemas import MatchResponse
from .text_generator import TextGenerator

logger = logging.getLogger(__name__)

MAX_MODEL_CANDIDATES = 30
DEFAULT_MODEL_MATCH_THRESHOLD = 0.5


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Local scoring weights. Tunable; the final score is capped at 1.0."""

    kind: float = 0.3
    full_text: float = 0.5
    per_word: float = 0.1
    aria_label: float = 0.4
    placeholder: float = 0.3
    search_bonus: float = 0.4
    min_word_len: int = 3


DEFAULT_WEIGHTS = ScoringWeights()


def score_element(element: InteractiveElement, description: str, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """Score how well *description* names *element* (0.0-1.0)."""
    desc = (description or "").lower()
    if not desc:
        return 0.0

    score = 0.0
    if element.kind.value in desc:
        score += weights.kind

    text = element.label.lower()
    if text:
        word_score = sum(
            weights.per_word for word in desc.split() if len(word) >= weights.min_word_len and word in text
        )
        # A full-text hit never scores below the word overlap it replaces.
        score += max(weights.full_text, word_score) if text in desc else word_score

    aria = (element.aria_label or "").lower()
    if aria and aria in desc:
        score += weights.aria_label

    placeholder = (element.placeholder or "").lower()
    if placeholder and placeholder in desc:
        score += weights.placeholder

    if element.kind is ElementKind.SEARCH and "search" in desc:
        score += weights.search_bonus

    return min(score, 1.0)


def find_element_by_description(
    description: str,
    catalog: Sequence[InteractiveElement],
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> ElementMatch:
    """Local scoring. No match unless the best score exceeds 0.3.

    Ties keep the earlier catalog entry (search, button, link, input order).
    """
    if not description:
        return ElementMatch.none("No target description")

    best: InteractiveElement | None = None
    best_score = 0.0
    for element in catalog:
        score = score_element(element, description, weights)
        if score > best_score:
            best, best_score = element, score

    if best is None or best_score <= MATCH_ACCEPTANCE_THRESHOLD:
        return ElementMatch(
            matched_element=None,
            confidence=best_score,
            reasoning=f"Best local score {best_score:.2f} too low",
        )
    logger.debug("Local match %s (score %.2f) for %r", best, best_score, description)
    return ElementMatch(matched_element=best, confidence=best_score, reasoning=f"Local score {best_score:.2f}")


def build_match_prompt(
    description: str,
    catalog: Sequence[InteractiveElement],
    max_candidates: int = MAX_MODEL_CANDIDATES,
) -> str:
    lines = [
        "ELEMENT MATCHING TASK: Pick the page element that best matches the description.",
        "",
        f"Description: {quote_for_prompt(description, max_len=200)}",
        "",
        "Elements:",
    ]
    for i, el in enumerate(catalog[:max_candidates]):
        entry = f"{i}. {el.kind.value}: {quote_for_prompt(el.label or 'unnamed')}"
        if el.dom_id:
            entry += f" (id: {sanitize_text(el.dom_id, max_len=50)})"
        lines.append(entry)
    lines.extend(
        [
            "",
            "Respond in this EXACT JSON format:",
            "{",
            '  "matchIndex": zero-based index of the best element, or -1 if none match,',
            '  "confidence": number between 0.0 and 1.0,',
            '  "reasoning": "brief explanation, max 30 characters"',
            "}",
            "",
            "Return ONLY the JSON object, nothing else.",
        ]
    )
    return "\n".join(lines)


def parse_match_response(raw: str) -> MatchResponse:
    """Parse model output; any failure yields ``matchIndex=-1, confidence=0``."""
    try:
        data = extract_json_object(raw)
        return MatchResponse.model_validate(data)
    except (ResponseParseError, ValidationError) as exc:
        logger.warning("Match response unparseable: %s", exc)
        return MatchResponse(match_index=-1, confidence=0.0, reasoning="Unparseable response")


class ElementResolver:
    """Resolves target descriptions using local scoring and, optionally, the model."""

    def __init__(
        self,
        generator: TextGenerator | None = None,
        *,
        use_model: bool = True,
        model_match_threshold: float = DEFAULT_MODEL_MATCH_THRESHOLD,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        max_candidates: int = MAX_MODEL_CANDIDATES,
    ) -> None:
        self._generator = generator
        self._use_model = use_model
        self._model_match_threshold = model_match_threshold
        self._weights = weights
        self._max_candidates = max_candidates

    def find_element_by_description(self, description: str, catalog: Sequence[InteractiveElement]) -> ElementMatch:
        return find_element_by_description(description, catalog, self._weights)

    async def find_best_element_match(
        self,
        description: str,
        catalog: Sequence[InteractiveElement],
    ) -> ElementMatch:
        """Model-assisted matching over the first 30 catalog entries."""
        if self._generator is None:
            return ElementMatch.none("No model configured")
        if not description or not catalog:
            return ElementMatch.none("Nothing to match")

        candidates = list(catalog[: self._max_candidates])
        prompt = build_match_prompt(description, candidates, self._max_candidates)
        try:
            raw = await self._generator.generate(prompt)
        except Exception as exc:
            logger.warning("Match model call failed: %s", exc)
            return ElementMatch.none(f"Error: {exc}")

        resp = parse_match_response(raw)
        if resp.match_index < 0:
            return ElementMatch(matched_element=None, confidence=resp.confidence, reasoning=resp.reasoning or "No match")
        if resp.match_index >= len(candidates):
            logger.warning("Model returned out-of-range index %d (%d candidates)", resp.match_index, len(candidates))
            return ElementMatch.none(f"Index {resp.match_index} out of range")

        element = candidates[resp.match_index]
        logger.debug("Model match %s (conf %.2f) for %r", element, resp.confidence, description)
        return ElementMatch(matched_element=element, confidence=resp.confidence, reasoning=resp.reasoning)

    async def resolve(
        self,
        description: str,
        catalog: Sequence[InteractiveElement],
        *,
        use_model: bool | None = None,
    ) -> ElementMatch:
        """Local scoring first; model-assisted matching only when that fails."""
        local = self.find_element_by_description(description, catalog)
        if local.accepted:
            return local

        if use_model is None:
            use_model = self._use_model
        if not use_model or self._generator is None or not description or not catalog:
            return local

        remote = await self.find_best_element_match(description, catalog)
        if remote.accepted and remote.confidence >= self._model_match_threshold:
            logger.info("Resolved %r via model (conf %.2f)", description, remote.confidence)
            return remote
        return ElementMatch(
            matched_element=None,
            confidence=max(local.confidence, remote.confidence),
            reasoning=remote.reasoning or local.reasoning,
        )
