# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AssistantSession: the caller-owned context for one page + one model.

Holds the four pipeline components and routes each utterance:

  scan → classify ─┬─ question        → QuestionAnswerer (if any)
                   ├─ weak action     → one action-hinted reclassification
                   ├─ click/type/focus → resolve → validate → confirm? → execute
                   ├─ scroll/navigate → direction/verb from payload or utterance
                   └─ modify_*        → PageManipulator

The catalog is re-scanned on every turn; no element outlives its turn. A
whole turn runs under ``asyncio.timeout(turn_timeout_s)``. Failures come
back as a TurnOutcome, never as exceptions.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import re
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol, assert_never, runtime_checkable

import structlog
from playwright.async_api import Page

from . import ActionResult, ActionType, ElementMatch, Intent, InteractiveElement
from .action_executor import ActionExecutor
from .browser_session import BrowserConfig, BrowserSession
from .config import AssistantConfig
from .element_catalog import ElementCatalog
from .element_resolver import ElementResolver
from .errors import BrowserError
from .intent_classifier import IntentClassifier
from .keywords import DEFAULT_TABLE, KeywordTable
from .page_manipulator import ManipulationResult, PageManipulator
from .requests import (
    DetectIntent,
    ExecuteAction,
    ManipulatePage,
    ProcessUtterance,
    Request,
    ResetPage,
    ResolveTarget,
    ScanPage,
    UndoManipulation,
)
from .text_generator import ChatCompletionsGenerator, TextGenerator

logger = logging.getLogger(__name__)


@runtime_checkable
class QuestionAnswerer(Protocol):
    """Answers information requests (out of scope here; injected by the host)."""

    async def answer(self, utterance: str) -> str: ...


# Receives the validation reason and the target; returns True to proceed.
ConfirmCallback = Callable[[str, InteractiveElement | None], Awaitable[bool]]


class OutcomeKind(enum.Enum):
    QUESTION = "question"
    ACTION = "action"
    MANIPULATION = "manipulation"
    UNRESOLVED = "unresolved"  # weak intent, no target, or no element match
    REJECTED = "rejected"  # failed validation or confirmation declined
    ERROR = "error"  # timeout or browser failure


@dataclass(frozen=True, slots=True)
class TurnOutcome:
    kind: OutcomeKind
    message: str = ""
    intent: Intent | None = None
    match: ElementMatch | None = None
    result: ActionResult | ManipulationResult | None = None
    answer: str | None = None
    turn_id: str = ""

    @property
    def success(self) -> bool:
        if self.kind is OutcomeKind.QUESTION:
            return True
        return self.result is not None and self.result.success

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "success": self.success, "turnId": self.turn_id}
        if self.message:
            data["message"] = self.message
        if self.intent is not None:
            data["intent"] = self.intent.to_dict()
        if self.match is not None:
            data["match"] = {
                "element": self.match.matched_element.to_dict() if self.match.matched_element else None,
                "confidence": self.match.confidence,
                "reasoning": self.match.reasoning,
            }
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.answer is not None:
            data["answer"] = self.answer
        return data


# ── slot inference from free text ──────────────────────────────────

# Checked in order: "scroll down to the bottom" means bottom.
_SCROLL_SYNONYMS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("bottom", ("bottom", "end")),
    ("top", ("top", "beginning", "start")),
    ("up", ("up", "upward", "upwards")),
    ("down", ("down", "downward", "downwards")),
    ("left", ("left",)),
    ("right", ("right",)),
)
_NAVIGATION_SYNONYMS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("back", ("back", "previous", "backward", "backwards")),
    ("forward", ("forward", "next")),
    ("refresh", ("refresh", "reload")),
)
_WORD_RE = re.compile(r"[a-z]+")


def _infer(table: tuple[tuple[str, tuple[str, ...]], ...], *texts: str | None) -> str | None:
    for text in texts:
        words = set(_WORD_RE.findall((text or "").lower()))
        for canonical, synonyms in table:
            if words.intersection(synonyms):
                return canonical
    return None


def infer_scroll_direction(*texts: str | None) -> str | None:
    return _infer(_SCROLL_SYNONYMS, *texts)


def infer_navigation(*texts: str | None) -> str | None:
    return _infer(_NAVIGATION_SYNONYMS, *texts)


class AssistantSession:
    """Explicit session object: create → use → close (or ``async with``)."""

    def __init__(
        self,
        page: Page,
        generator: TextGenerator,
        *,
        config: AssistantConfig | None = None,
        answerer: QuestionAnswerer | None = None,
        confirm: ConfirmCallback | None = None,
        keywords: KeywordTable = DEFAULT_TABLE,
        owns_generator: bool = False,
    ) -> None:
        self.config = config or AssistantConfig()
        self.page = page
        self._generator = generator
        self._owns_generator = owns_generator
        self._answerer = answerer
        self._confirm = confirm

        self.catalog = ElementCatalog(page)
        self.classifier = IntentClassifier(generator, keywords=keywords)
        self.resolver = ElementResolver(
            generator,
            use_model=self.config.model_matching,
            model_match_threshold=self.config.model_match_threshold,
        )
        self.executor = ActionExecutor(
            page,
            highlight=self.config.highlight,
            highlight_duration_s=self.config.highlight_duration_s,
            settle_delay_s=self.config.settle_delay_s,
            scroll_amount=self.config.scroll_amount,
        )
        self.manipulator = PageManipulator(page)

    async def start(self) -> None:
        """Capture the manipulation baseline for this page."""
        await self.manipulator.capture_baseline()

    async def close(self) -> None:
        await self.executor.aclose()
        if self._owns_generator:
            aclose = getattr(self._generator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def __aenter__(self) -> AssistantSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # ── dispatch ─────────────────────────────────────────────────

    async def handle(
        self, request: Request
    ) -> list[InteractiveElement] | Intent | ElementMatch | ManipulationResult | TurnOutcome:
        match request:
            case ScanPage():
                return await self.catalog.scan()
            case DetectIntent(utterance=utterance, action_hint=action_hint):
                catalog = await self.catalog.scan()
                return await self.classifier.classify(utterance, catalog, action_hint=action_hint)
            case ResolveTarget(description=description, use_model=use_model):
                catalog = await self.catalog.scan()
                return await self.resolver.resolve(description, catalog, use_model=use_model)
            case ExecuteAction(action_type=action_type, target_description=target, payload=payload):
                intent = Intent(
                    is_action=True,
                    confidence=1.0,
                    action_type=action_type,
                    target_description=target,
                    payload=payload,
                    reasoning="Direct request",
                )
                return await self._run_guarded(self._route_direct(intent))
            case ManipulatePage(action_type=action_type, payload=payload, target_description=target):
                intent = Intent(
                    is_action=True,
                    confidence=1.0,
                    action_type=action_type,
                    target_description=target,
                    payload=payload,
                    reasoning="Direct request",
                )
                return await self.manipulator.apply_intent(intent)
            case ResetPage():
                return await self.manipulator.reset_all()
            case UndoManipulation():
                return await self.manipulator.undo_last()
            case ProcessUtterance(utterance=utterance):
                return await self.process_utterance(utterance)
            case _:
                assert_never(request)

    # ── turns ────────────────────────────────────────────────────

    async def process_utterance(self, utterance: str) -> TurnOutcome:
        """Run one full turn for *utterance*."""
        return await self._run_guarded(self._turn(utterance))

    async def _run_guarded(self, turn: Awaitable[TurnOutcome]) -> TurnOutcome:
        turn_id = uuid.uuid4().hex[:12]
        with structlog.contextvars.bound_contextvars(turn_id=turn_id):
            try:
                async with asyncio.timeout(self.config.turn_timeout_s):
                    outcome = await turn
            except TimeoutError:
                logger.warning("Turn timed out after %.1fs", self.config.turn_timeout_s)
                outcome = TurnOutcome(OutcomeKind.ERROR, f"Turn timed out after {self.config.turn_timeout_s:g}s")
            except BrowserError as exc:
                logger.error("Turn failed: %s", exc)
                outcome = TurnOutcome(OutcomeKind.ERROR, str(exc))
            except Exception as exc:
                logger.exception("Turn crashed")
                outcome = TurnOutcome(OutcomeKind.ERROR, f"Unexpected error: {exc}")
            logger.info("Turn finished: %s %s", outcome.kind.value, outcome.message)
        return dataclasses.replace(outcome, turn_id=turn_id)

    async def _route_direct(self, intent: Intent) -> TurnOutcome:
        catalog = await self.catalog.scan() if intent.action_type.needs_element else []
        return await self._route_action(intent, catalog, utterance="")

    async def _turn(self, utterance: str) -> TurnOutcome:
        logger.info("Turn: %r", utterance)
        catalog = await self.catalog.scan()
        intent = await self.classifier.classify(utterance, catalog)

        if not intent.is_action:
            return await self._answer(utterance, intent)

        if intent.is_weak:
            logger.info("Weak action signal; requesting slot extraction pass")
            intent = await self.classifier.classify(utterance, catalog, action_hint=True)
            if not intent.is_action or intent.action_type is None:
                return TurnOutcome(
                    OutcomeKind.UNRESOLVED,
                    "Could not determine which action to perform",
                    intent=intent,
                )

        return await self._route_action(intent, catalog, utterance)

    async def _answer(self, utterance: str, intent: Intent) -> TurnOutcome:
        if self._answerer is None:
            return TurnOutcome(OutcomeKind.QUESTION, "Information request", intent=intent)
        try:
            answer = await self._answerer.answer(utterance)
        except Exception as exc:
            logger.warning("Question answerer failed: %s", exc)
            return TurnOutcome(OutcomeKind.QUESTION, f"Answer failed: {exc}", intent=intent)
        return TurnOutcome(OutcomeKind.QUESTION, "Answered", intent=intent, answer=answer)

    async def _route_action(
        self,
        intent: Intent,
        catalog: Sequence[InteractiveElement],
        utterance: str,
    ) -> TurnOutcome:
        action_type = intent.action_type
        assert action_type is not None

        if action_type.is_manipulation:
            result = await self.manipulator.apply_intent(intent)
            return TurnOutcome(OutcomeKind.MANIPULATION, result.message, intent=intent, result=result)

        if action_type is ActionType.SCROLL:
            direction = infer_scroll_direction(intent.payload, utterance) or intent.payload
            validation = await self.executor.validate_action(ActionType.SCROLL)
            if not validation.safe:
                return TurnOutcome(OutcomeKind.REJECTED, validation.reason, intent=intent)
            result = await self.executor.scroll(direction)
            return TurnOutcome(OutcomeKind.ACTION, result.error or f"Scrolled {direction}", intent=intent, result=result)

        if action_type is ActionType.NAVIGATE:
            verb = infer_navigation(intent.payload, utterance) or intent.payload
            result = await self.executor.navigate(verb)
            return TurnOutcome(OutcomeKind.ACTION, result.error or f"Navigated {verb}", intent=intent, result=result)

        return await self._element_action(intent, catalog)

    async def _element_action(self, intent: Intent, catalog: Sequence[InteractiveElement]) -> TurnOutcome:
        action_type = intent.action_type
        if not intent.target_description:
            return TurnOutcome(OutcomeKind.UNRESOLVED, "No target element described", intent=intent)
        if action_type is ActionType.TYPE and not intent.payload:
            return TurnOutcome(OutcomeKind.UNRESOLVED, "No text to type", intent=intent)

        match = await self.resolver.resolve(intent.target_description, catalog)
        if not match.accepted:
            return TurnOutcome(
                OutcomeKind.UNRESOLVED,
                f"No element matches {intent.target_description!r}",
                intent=intent,
                match=match,
            )
        element = match.matched_element

        validation = await self.executor.validate_action(action_type, element)
        if not validation.safe:
            return TurnOutcome(OutcomeKind.REJECTED, validation.reason, intent=intent, match=match)
        if validation.needs_confirmation:
            confirmed = False
            if self._confirm is not None:
                try:
                    confirmed = await self._confirm(validation.reason, element)
                except Exception as exc:
                    logger.warning("Confirmation prompt failed: %s", exc)
                    return TurnOutcome(
                        OutcomeKind.REJECTED,
                        f"Confirmation failed: {exc}",
                        intent=intent,
                        match=match,
                    )
            if not confirmed:
                logger.info("Confirmation declined: %s", validation.reason)
                return TurnOutcome(
                    OutcomeKind.REJECTED,
                    f"Confirmation required: {validation.reason}",
                    intent=intent,
                    match=match,
                )

        result = await self.executor.execute(action_type, element, intent.payload)
        message = result.error or f"{action_type.value} on {element.label or element.kind.value}"
        return TurnOutcome(OutcomeKind.ACTION, message, intent=intent, match=match, result=result)


@asynccontextmanager
async def open_session(
    url: str | None = None,
    *,
    config: AssistantConfig | None = None,
    browser_config: BrowserConfig | None = None,
    generator: TextGenerator | None = None,
    answerer: QuestionAnswerer | None = None,
    confirm: ConfirmCallback | None = None,
) -> AsyncGenerator[AssistantSession, None]:
    """Launch a browser, optionally navigate to *url*, and yield a ready session."""
    config = config or AssistantConfig()
    owns_generator = generator is None
    if generator is None:
        generator = ChatCompletionsGenerator(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            timeout_s=config.model_timeout_s,
            temperature=config.temperature,
        )
    try:
        async with BrowserSession(browser_config) as browser:
            if url:
                await browser.navigate(url)
            async with AssistantSession(
                browser.page, generator, config=config, answerer=answerer, confirm=confirm
            ) as session:
                yield session
    finally:
        if owns_generator:
            await generator.aclose()
