# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Action execution on resolved elements, with visual feedback and safety checks.

Each element action walks the same phases:
  IDLE → HIGHLIGHTING → SCROLLING → SETTLING → APPLYING → IDLE

Every public operation returns an ActionResult; Playwright failures are
caught here and reported, never raised past the executor. There is no retry:
a second attempt needs a fresh scan and resolution.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from . import ActionResult, ActionType, InteractiveElement
from .errors import is_browser_dead_error

logger = logging.getLogger(__name__)

DEFAULT_HIGHLIGHT_DURATION_S = 1.5
DEFAULT_SETTLE_DELAY_S = 0.3
DEFAULT_SCROLL_AMOUNT = 500
ACTION_TIMEOUT_MS = 5000

SCROLL_DIRECTIONS = ("up", "down", "left", "right", "top", "bottom")
NAVIGATION_ACTIONS = ("back", "forward", "refresh", "reload")

# Actions allowed past validate_action. Navigation is history-only and is
# not element-bound, so the router calls it without validation.
SAFE_ACTIONS = frozenset({ActionType.CLICK, ActionType.SCROLL, ActionType.FOCUS, ActionType.TYPE})

LABEL_CLASS = "pageintent-action-label"
_LABEL_TEXT = {"click": "Clicking", "type": "Typing", "focus": "Focusing"}


class Phase(enum.Enum):
    IDLE = "idle"
    HIGHLIGHTING = "highlighting"
    SCROLLING = "scrolling"
    SETTLING = "settling"
    APPLYING = "applying"


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """validate_action verdict. ``needs_confirmation`` gates on explicit user consent."""

    safe: bool
    needs_confirmation: bool = False
    reason: str = ""


@dataclass(frozen=True, slots=True)
class LastAction:
    type: str
    target: str | None = None
    timestamp: float = field(default_factory=time.time)
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class _Highlight:
    selector: str
    label_id: str
    prior: dict[str, str]


# ── Page JS (parameterized, no interpolation) ──────────────────────

_INSPECT_JS = """(selector) => {
  let el = null;
  try { el = document.querySelector(selector); } catch (e) { return {attached: false}; }
  if (!el) return {attached: false};
  return {
    attached: document.body.contains(el),
    tag: (el.localName || "").toLowerCase(),
    type: (el.type || "").toString().toLowerCase()
  };
}"""

_HIGHLIGHT_JS = """(el, args) => {
  const prior = {
    outline: el.style.outline,
    outlineOffset: el.style.outlineOffset,
    zIndex: el.style.zIndex
  };
  el.style.outline = "3px solid #FFD700";
  el.style.outlineOffset = "2px";
  el.style.zIndex = "999999";

  const label = document.createElement("div");
  label.id = args.labelId;
  label.className = args.labelClass;
  label.textContent = args.text;
  label.style.cssText = "position:absolute;background:#FFD700;color:#000;padding:4px 8px;" +
    "border-radius:4px;font-size:12px;font-weight:bold;z-index:1000000;" +
    "pointer-events:none;box-shadow:0 2px 8px rgba(0,0,0,0.3);";
  const r = el.getBoundingClientRect();
  label.style.top = (window.scrollY + r.top - 30) + "px";
  label.style.left = (window.scrollX + r.left) + "px";
  document.body.appendChild(label);
  return prior;
}"""

_RESTORE_JS = """(args) => {
  let el = null;
  try { el = document.querySelector(args.selector); } catch (e) {}
  if (el) {
    el.style.outline = args.prior.outline;
    el.style.outlineOffset = args.prior.outlineOffset;
    el.style.zIndex = args.prior.zIndex;
  }
  const label = document.getElementById(args.labelId);
  if (label) label.remove();
}"""

_SCROLL_INTO_VIEW_JS = """(el) => el.scrollIntoView({block: "center", inline: "center"})"""

# Native value setter so framework-managed inputs (React value tracker) see the change.
_TYPE_JS = """(el, args) => {
  el.focus();
  const next = args.clear ? args.text : (el.value || "") + args.text;
  const desc = Object.getOwnPropertyDescriptor(Object.getPrototypeOf(el), "value");
  if (desc && desc.set) { desc.set.call(el, next); } else { el.value = next; }
  const fired = [];
  for (const type of ["input", "change"]) {
    el.dispatchEvent(new Event(type, {bubbles: true}));
    fired.push(type);
  }
  return {value: el.value, events: fired};
}"""

_SCROLL_JS = """([direction, amount]) => {
  switch (direction) {
    case "up": window.scrollBy(0, -amount); break;
    case "down": window.scrollBy(0, amount); break;
    case "left": window.scrollBy(-amount, 0); break;
    case "right": window.scrollBy(amount, 0); break;
    case "top": window.scrollTo(0, 0); break;
    case "bottom": window.scrollTo(0, document.body.scrollHeight); break;
  }
  return {scrollX: Math.round(window.scrollX), scrollY: Math.round(window.scrollY)};
}"""


class _ElementMissing(Exception):
    pass


class ActionExecutor:
    """Executes click/type/focus/scroll/navigate on one Playwright page."""

    def __init__(
        self,
        page: Page,
        *,
        highlight: bool = True,
        highlight_duration_s: float = DEFAULT_HIGHLIGHT_DURATION_S,
        settle_delay_s: float = DEFAULT_SETTLE_DELAY_S,
        scroll_amount: int = DEFAULT_SCROLL_AMOUNT,
        action_timeout_ms: int = ACTION_TIMEOUT_MS,
    ) -> None:
        self._page = page
        self.highlight_enabled = highlight
        self.highlight_duration_s = highlight_duration_s
        self.settle_delay_s = settle_delay_s
        self.scroll_amount = scroll_amount
        self.action_timeout_ms = action_timeout_ms
        self.phase = Phase.IDLE
        self.last_action: LastAction | None = None
        self._highlight: _Highlight | None = None
        self._expiry_task: asyncio.Task | None = None
        self._label_ids = itertools.count(1)

    # ── Validation ───────────────────────────────────────────────

    async def validate_action(
        self,
        action_type: ActionType | str | None,
        element: InteractiveElement | None = None,
    ) -> ValidationResult:
        """Check an action before execution.

        File inputs are always blocked. Password inputs and submit buttons are
        allowed but flagged ``needs_confirmation``.
        """
        parsed = action_type if isinstance(action_type, ActionType) else ActionType.parse(action_type)
        if parsed not in SAFE_ACTIONS:
            name = action_type.value if isinstance(action_type, ActionType) else action_type
            return ValidationResult(safe=False, reason=f'Action type "{name}" is not whitelisted')

        if parsed is not ActionType.SCROLL and element is None:
            return ValidationResult(safe=False, reason="Target element not found")
        if element is None:
            return ValidationResult(safe=True)

        try:
            info = await self._page.evaluate(_INSPECT_JS, element.selector)
        except PlaywrightError as exc:
            return ValidationResult(safe=False, reason=f"Element check failed: {exc}")
        if not info or not info.get("attached"):
            return ValidationResult(safe=False, reason="Element is no longer in document")

        tag = info.get("tag", "")
        input_type = info.get("type", "")
        if tag == "input" and input_type == "file":
            return ValidationResult(safe=False, reason="File inputs are not allowed")
        if tag == "input" and input_type == "password":
            return ValidationResult(safe=True, needs_confirmation=True, reason="Action involves password field")
        if tag in ("button", "input") and input_type == "submit":
            return ValidationResult(safe=True, needs_confirmation=True, reason="Action will submit a form")
        return ValidationResult(safe=True)

    # ── Highlight lifecycle ──────────────────────────────────────

    async def highlight_element(self, element: InteractiveElement, action: str = "click") -> None:
        """Outline *element*, attach a label, and schedule automatic removal."""
        await self.remove_highlight()
        label_id = f"pageintent-label-{next(self._label_ids)}"
        locator = self._page.locator(element.selector).first
        prior = await locator.evaluate(
            _HIGHLIGHT_JS,
            {"labelId": label_id, "labelClass": LABEL_CLASS, "text": _LABEL_TEXT.get(action, "Action")},
        )
        self._highlight = _Highlight(selector=element.selector, label_id=label_id, prior=dict(prior or {}))
        self._expiry_task = asyncio.create_task(self._expire_highlight(self.highlight_duration_s))

    async def _expire_highlight(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._expiry_task = None
        await self.remove_highlight()

    async def remove_highlight(self) -> None:
        """Restore the exact prior inline styles. Safe to call with no highlight active."""
        task, self._expiry_task = self._expiry_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        current, self._highlight = self._highlight, None
        if current is None:
            return
        prior = {
            "outline": current.prior.get("outline", ""),
            "outlineOffset": current.prior.get("outlineOffset", ""),
            "zIndex": current.prior.get("zIndex", ""),
        }
        with suppress(PlaywrightError):
            await self._page.evaluate(
                _RESTORE_JS,
                {"selector": current.selector, "labelId": current.label_id, "prior": prior},
            )

    @property
    def highlight_active(self) -> bool:
        return self._highlight is not None

    # ── Element actions ──────────────────────────────────────────

    async def _prepare(self, element: InteractiveElement, action: str, highlight: bool | None) -> Locator:
        """Highlight → scroll into view → settle. Returns the live locator."""
        if not element.selector:
            raise _ElementMissing
        locator = self._page.locator(element.selector).first
        if await locator.count() == 0:
            raise _ElementMissing

        if self.highlight_enabled if highlight is None else highlight:
            self.phase = Phase.HIGHLIGHTING
            await self.highlight_element(element, action)

        self.phase = Phase.SCROLLING
        await locator.evaluate(_SCROLL_INTO_VIEW_JS)

        self.phase = Phase.SETTLING
        await asyncio.sleep(self.settle_delay_s)

        self.phase = Phase.APPLYING
        return locator

    def _failure(self, action: str, exc: Exception) -> ActionResult:
        if is_browser_dead_error(exc):
            logger.error("%s failed: browser connection lost", action)
            return ActionResult.failed(action, f"Browser connection lost: {exc}")
        logger.warning("%s failed: %s", action, exc)
        return ActionResult.failed(action, str(exc))

    async def click(self, element: InteractiveElement | None, *, highlight: bool | None = None) -> ActionResult:
        if element is None:
            return ActionResult.failed("click", "Element not found")
        try:
            locator = await self._prepare(element, "click", highlight)
            await locator.click(timeout=self.action_timeout_ms)
        except _ElementMissing:
            return ActionResult.failed("click", "Element not found")
        except PlaywrightError as exc:
            return self._failure("click", exc)
        finally:
            self.phase = Phase.IDLE

        self.last_action = LastAction(type="click", target=element.label)
        logger.info("Clicked %s", element)
        return ActionResult(success=True, action="click", details={"elementText": element.label or "element"})

    async def type(
        self,
        element: InteractiveElement | None,
        text: str,
        *,
        clear: bool = True,
        highlight: bool | None = None,
    ) -> ActionResult:
        """Set the field value and fire bubbling ``input`` then ``change`` events."""
        if element is None:
            return ActionResult.failed("type", "Element not found")
        try:
            locator = await self._prepare(element, "type", highlight)
            result = await locator.evaluate(_TYPE_JS, {"text": text, "clear": clear})
        except _ElementMissing:
            return ActionResult.failed("type", "Element not found")
        except PlaywrightError as exc:
            return self._failure("type", exc)
        finally:
            self.phase = Phase.IDLE

        events = list((result or {}).get("events", []))
        self.last_action = LastAction(type="type", target=element.label, details={"text": text})
        logger.info("Typed %d chars into %s", len(text), element)
        return ActionResult(success=True, action="type", details={"text": text, "events": events})

    async def focus(self, element: InteractiveElement | None, *, highlight: bool | None = None) -> ActionResult:
        if element is None:
            return ActionResult.failed("focus", "Element not found")
        try:
            locator = await self._prepare(element, "focus", highlight)
            await locator.focus(timeout=self.action_timeout_ms)
        except _ElementMissing:
            return ActionResult.failed("focus", "Element not found")
        except PlaywrightError as exc:
            return self._failure("focus", exc)
        finally:
            self.phase = Phase.IDLE

        self.last_action = LastAction(type="focus", target=element.label)
        logger.info("Focused %s", element)
        return ActionResult(success=True, action="focus")

    # ── Page actions ─────────────────────────────────────────────

    async def scroll(self, direction: str | None, amount: int | None = None) -> ActionResult:
        d = (direction or "").strip().lower()
        if d not in SCROLL_DIRECTIONS:
            return ActionResult.failed("scroll", f"Unknown direction: {direction}")
        px = self.scroll_amount if amount is None else amount
        try:
            self.phase = Phase.APPLYING
            position = await self._page.evaluate(_SCROLL_JS, [d, px])
        except PlaywrightError as exc:
            return self._failure("scroll", exc)
        finally:
            self.phase = Phase.IDLE

        self.last_action = LastAction(type="scroll", details={"direction": d})
        logger.info("Scrolled %s", d)
        return ActionResult(success=True, action="scroll", details={"direction": d, "position": position})

    async def navigate(self, action: str | None) -> ActionResult:
        verb = (action or "").strip().lower()
        if verb not in NAVIGATION_ACTIONS:
            return ActionResult.failed("navigate", f"Unknown navigation: {action}")
        try:
            self.phase = Phase.APPLYING
            if verb == "back":
                await self._page.go_back(wait_until="load")
            elif verb == "forward":
                await self._page.go_forward(wait_until="load")
            else:
                await self._page.reload(wait_until="load")
        except PlaywrightError as exc:
            return self._failure("navigate", exc)
        finally:
            self.phase = Phase.IDLE

        # The highlighted node belonged to the previous document.
        self._highlight = None
        self.last_action = LastAction(type="navigate", details={"action": verb})
        logger.info("Navigated %s → %s", verb, self._page.url)
        return ActionResult(success=True, action="navigate", details={"navigationAction": verb})

    async def execute(
        self,
        action_type: ActionType,
        element: InteractiveElement | None = None,
        payload: str | None = None,
    ) -> ActionResult:
        """Dispatch one non-manipulation action."""
        match action_type:
            case ActionType.CLICK:
                return await self.click(element)
            case ActionType.TYPE:
                return await self.type(element, payload or "")
            case ActionType.FOCUS:
                return await self.focus(element)
            case ActionType.SCROLL:
                return await self.scroll(payload)
            case ActionType.NAVIGATE:
                return await self.navigate(payload)
            case _:
                return ActionResult.failed(action_type.value, f"Not an executor action: {action_type.value}")

    async def aclose(self) -> None:
        """Cancel a pending highlight expiry and restore styles."""
        await self.remove_highlight()
