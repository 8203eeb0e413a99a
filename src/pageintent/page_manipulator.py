# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Reversible page-level visual changes (text size, theme, colors, layout...).

All injected CSS lives in one ``<style id="pageintent-custom-styles">``
element, rebuilt from an ordered ``id → css`` map on every change. Elements
we hide are tagged with data attributes carrying their prior inline
``display`` so they can be restored exactly. Our own UI (ids/classes
prefixed ``pageintent-``) is excluded from every rule.

Every operation returns a ManipulationResult and records or clears an
ActiveManipulation; ``reset_all`` returns the page to the baseline captured
by ``capture_baseline``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from . import ActionType, ActiveManipulation, Intent

logger = logging.getLogger(__name__)

STYLE_ELEMENT_ID = "pageintent-custom-styles"
_OWN_UI = ':not([id^="pageintent-"]):not([class^="pageintent-"])'
_HIDDEN_ATTR = "data-pageintent-hidden"
_FOCUS_HIDDEN_ATTR = "data-pageintent-focus-hidden"

SCALE_MIN = 0.5
SCALE_MAX = 2.0
SCALE_STEP = 0.1

CONTRAST_LEVELS = {"low": 0.8, "medium": 1.0, "normal": 1.0, "high": 1.5}
WIDTH_PRESETS = {"narrow": "600px", "medium": "900px", "normal": "900px", "wide": "1400px", "full": "100%"}

HIDE_TARGETS: dict[str, tuple[str, str]] = {
    "ads": (
        '[class*="ad-"], [id*="ad-"], [class*="advertisement"], '
        'iframe[src*="doubleclick"], iframe[src*="googlesyndication"]',
        "advertisements",
    ),
    "sidebar": ('[class*="sidebar"], [id*="sidebar"], aside', "sidebar"),
    "header": ("header, [role='banner']", "header"),
    "footer": ("footer, [role='contentinfo']", "footer"),
    "images": ("img", "images"),
    "videos": ("video, iframe[src*='youtube'], iframe[src*='vimeo']", "videos"),
}
_HIDE_ALIASES = {
    "ad": "ads",
    "advertisements": "ads",
    "sidebars": "sidebar",
    "headers": "header",
    "footers": "footer",
    "image": "images",
    "pictures": "images",
    "video": "videos",
}

FOCUS_DISTRACTIONS = (
    '[class*="ad-"]',
    '[class*="sidebar"]',
    '[class*="comment"]',
    '[class*="related"]',
    '[class*="recommend"]',
    "aside",
    "nav:not([aria-label='Main'])",
)

_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
_NAMED_COLOR_RE = re.compile(r"^[a-zA-Z]{3,30}$")
_FUNC_COLOR_RE = re.compile(r"^(?:rgba?|hsla?)\(\s*[0-9.,%\s/deg]+\)$", re.IGNORECASE)
_CSS_LENGTH_RE = re.compile(r"^\d+(?:\.\d+)?(?:px|%|em|rem|vw|ch)$")
_PERCENT_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*%?$")


@dataclass(frozen=True, slots=True)
class ManipulationResult:
    success: bool
    message: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.value is not None:
            data["value"] = self.value
        return data


def is_valid_color(color: str) -> bool:
    """Named color, hex, or rgb()/rgba()/hsl()/hsla()."""
    c = (color or "").strip()
    return bool(_HEX_COLOR_RE.match(c) or _NAMED_COLOR_RE.match(c) or _FUNC_COLOR_RE.match(c))


def _clamp_scale(value: float) -> float:
    return round(min(max(value, SCALE_MIN), SCALE_MAX), 2)


def _parse_scale(raw: str) -> float | None:
    """'1.5' → 1.5, '150%' / '150' → 1.5."""
    m = _PERCENT_RE.match(raw.strip())
    if not m:
        return None
    number = float(m.group(1))
    if raw.strip().endswith("%") or number >= 10:
        number /= 100
    return number


# ── Page JS (parameterized) ────────────────────────────────────────

_WRITE_STYLES_JS = """(args) => {
  let s = document.getElementById(args.id);
  if (!s) {
    s = document.createElement("style");
    s.id = args.id;
    (document.head || document.documentElement).appendChild(s);
  }
  s.textContent = args.css;
}"""

_HIDE_JS = """(args) => {
  let nodes;
  try { nodes = Array.from(document.querySelectorAll(args.selector)); }
  catch (e) { return {matched: -1, hidden: 0}; }
  let hidden = 0;
  for (const el of nodes) {
    if (el.closest('[id^="pageintent-"], [class^="pageintent-"]')) continue;
    if (el.hasAttribute(args.attr)) continue;
    el.setAttribute(args.attr, args.tag);
    el.setAttribute("data-pageintent-display", el.style.display || "");
    el.style.display = "none";
    hidden++;
  }
  return {matched: nodes.length, hidden: hidden};
}"""

_SHOW_JS = """(args) => {
  const sel = args.tag === null
    ? "[" + args.attr + "]"
    : "[" + args.attr + '="' + CSS.escape(args.tag) + '"]';
  let count = 0;
  for (const el of document.querySelectorAll(sel)) {
    el.style.display = el.getAttribute("data-pageintent-display") || "";
    el.removeAttribute(args.attr);
    el.removeAttribute("data-pageintent-display");
    count++;
  }
  return count;
}"""

_SET_ZOOM_JS = """(value) => { if (document.body) document.body.style.zoom = value; }"""

_BASELINE_JS = """() => ({zoom: document.body ? document.body.style.zoom : ""})"""

_HAS_MAIN_CONTENT_JS = """() => !!(
  document.querySelector("main") ||
  document.querySelector('[role="main"]') ||
  document.querySelector("article") ||
  document.querySelector("#content") ||
  document.querySelector(".content")
)"""


def _text_size_css(multiplier: float) -> str:
    return (
        f"body *{_OWN_UI} {{\n"
        f"  font-size: calc(1em * {multiplier}) !important;\n"
        f"  line-height: calc(1.5 * {multiplier}) !important;\n"
        "}"
    )


_DARK_MODE_CSS = f"""html {{
  filter: invert(1) hue-rotate(180deg) !important;
  background: #000 !important;
}}
[id^="pageintent-"], [class^="pageintent-"],
img{_OWN_UI}, picture{_OWN_UI}, video{_OWN_UI},
canvas{_OWN_UI}, svg{_OWN_UI}, iframe{_OWN_UI} {{
  filter: invert(1) hue-rotate(180deg) !important;
}}
*{_OWN_UI} {{
  background-color: inherit !important;
  border-color: inherit !important;
}}"""

_READER_MODE_CSS = """body > * {
  display: none !important;
}
main, [role="main"], article, body > [id^="pageintent-"], body > [class^="pageintent-"] {
  display: block !important;
}"""

_CENTER_CSS = """body {
  text-align: center !important;
}
body > * {
  margin-left: auto !important;
  margin-right: auto !important;
}"""

_FOCUS_MODE_CSS = """body {
  line-height: 1.8 !important;
}
main, article {
  padding: 40px !important;
  max-width: 800px !important;
  margin: 0 auto !important;
}"""


class PageManipulator:
    """Applies and reverts ActiveManipulations on one page."""

    def __init__(self, page: Page) -> None:
        self._page = page
        self._css: dict[str, str] = {}
        self._active: dict[str, ActiveManipulation] = {}
        self.text_size = 1.0
        self.dark_mode = False
        self.zoom = 1.0
        self._baseline_zoom = ""

    @property
    def active_manipulations(self) -> list[ActiveManipulation]:
        """Active changes, oldest first."""
        return list(self._active.values())

    async def capture_baseline(self) -> None:
        """Record the pre-manipulation page state that reset_all returns to."""
        try:
            baseline = await self._page.evaluate(_BASELINE_JS)
        except PlaywrightError as exc:
            logger.warning("Baseline capture failed: %s", exc)
            return
        self._baseline_zoom = (baseline or {}).get("zoom", "") or ""

    # ── bookkeeping ──────────────────────────────────────────────

    def _record(self, manipulation_id: str, description: str) -> None:
        self._active.pop(manipulation_id, None)
        self._active[manipulation_id] = ActiveManipulation(id=manipulation_id, description=description)
        logger.info("Manipulation applied: %s (%s)", manipulation_id, description)

    def _forget(self, manipulation_id: str) -> None:
        if self._active.pop(manipulation_id, None) is not None:
            logger.info("Manipulation removed: %s", manipulation_id)

    async def _set_css(self, manipulation_id: str, css: str) -> None:
        self._css.pop(manipulation_id, None)
        if css:
            self._css[manipulation_id] = css
        await self._flush_css()

    async def _flush_css(self) -> None:
        text = "\n".join(f"/* {k} start */\n{v}\n/* {k} end */" for k, v in self._css.items())
        await self._page.evaluate(_WRITE_STYLES_JS, {"id": STYLE_ELEMENT_ID, "css": text})

    # ── text size ────────────────────────────────────────────────

    async def adjust_text_size(self, action: str, value: float | None = None) -> ManipulationResult:
        """increase/larger/bigger, decrease/smaller, reset, or set (with *value*)."""
        verb = (action or "").strip().lower()
        if verb in ("increase", "larger", "bigger"):
            new = _clamp_scale(self.text_size + SCALE_STEP)
        elif verb in ("decrease", "smaller"):
            new = _clamp_scale(self.text_size - SCALE_STEP)
        elif verb == "reset":
            new = 1.0
        elif verb == "set" and value is not None:
            new = _clamp_scale(value)
        else:
            return ManipulationResult(False, f"Unknown text size action: {action}")

        try:
            if new == 1.0:
                await self._set_css("textSize", "")
            else:
                await self._set_css("textSize", _text_size_css(new))
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to adjust text size: {exc}")

        self.text_size = new
        percent = round(new * 100)
        if new == 1.0:
            self._forget("textSize")
        else:
            self._record("textSize", f"Text size: {percent}%")
        return ManipulationResult(True, f"Text size adjusted to {percent}%", new)

    # ── theme / colors ───────────────────────────────────────────

    async def toggle_dark_mode(self, enable: bool | None = None) -> ManipulationResult:
        if enable is None:
            enable = not self.dark_mode
        try:
            await self._set_css("darkMode", _DARK_MODE_CSS if enable else "")
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to toggle dark mode: {exc}")
        self.dark_mode = enable
        if enable:
            self._record("darkMode", "Dark mode enabled")
        else:
            self._forget("darkMode")
        return ManipulationResult(True, "Dark mode enabled" if enable else "Dark mode disabled", enable)

    async def change_background_color(self, color: str) -> ManipulationResult:
        return await self._apply_color("backgroundColor", "body", "background-color", "Background", color)

    async def change_text_color(self, color: str) -> ManipulationResult:
        return await self._apply_color("textColor", "body, body *", "color", "Text color", color)

    async def _apply_color(self, mid: str, selector: str, prop: str, noun: str, color: str) -> ManipulationResult:
        color = (color or "").strip()
        if not is_valid_color(color):
            return ManipulationResult(False, f"Invalid color: {color!r}")
        try:
            await self._set_css(mid, f"{selector} {{\n  {prop}: {color} !important;\n}}")
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to change {noun.lower()}: {exc}")
        self._record(mid, f"{noun}: {color}")
        return ManipulationResult(True, f"{noun} changed to {color}", color)

    async def adjust_contrast(self, level: str) -> ManipulationResult:
        lvl = (level or "").strip().lower()
        if lvl == "reset":
            try:
                await self._set_css("contrast", "")
            except PlaywrightError as exc:
                return ManipulationResult(False, f"Failed to adjust contrast: {exc}")
            self._forget("contrast")
            return ManipulationResult(True, "Contrast reset to normal", 1.0)
        if lvl not in CONTRAST_LEVELS:
            return ManipulationResult(False, f"Unknown contrast level: {level}")

        value = CONTRAST_LEVELS[lvl]
        try:
            await self._set_css("contrast", f"body {{\n  filter: contrast({value}) !important;\n}}")
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to adjust contrast: {exc}")
        self._record("contrast", f"Contrast: {lvl}")
        return ManipulationResult(True, f"Contrast set to {lvl}", value)

    # ── visibility ───────────────────────────────────────────────

    async def hide_elements(self, target: str) -> ManipulationResult:
        """Hide a named group (ads, sidebar, header, footer, images, videos) or a CSS selector."""
        raw = (target or "").strip()
        if not raw:
            return ManipulationResult(False, "Nothing to hide")
        key = _HIDE_ALIASES.get(raw.lower(), raw.lower())
        if key in HIDE_TARGETS:
            selector, description = HIDE_TARGETS[key]
        else:
            key, selector, description = raw, raw, raw

        try:
            result = await self._page.evaluate(
                _HIDE_JS, {"selector": selector, "attr": _HIDDEN_ATTR, "tag": key}
            )
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to hide elements: {exc}")

        matched = int((result or {}).get("matched", 0))
        if matched < 0:
            return ManipulationResult(False, f"Invalid selector: {raw}")
        if matched == 0:
            return ManipulationResult(False, f"No {description} found on this page")

        self._record(f"hide_{key}", f"Hidden: {description} ({matched})")
        return ManipulationResult(True, f"Hidden {matched} {description}", matched)

    async def show_elements(self, target: str | None = None) -> ManipulationResult:
        """Restore elements hidden by hide_elements (one group, or all when *target* is None)."""
        key: str | None = None
        if target:
            raw = target.strip()
            key = _HIDE_ALIASES.get(raw.lower(), raw.lower())
            if key not in HIDE_TARGETS:
                key = raw
        try:
            count = await self._page.evaluate(_SHOW_JS, {"attr": _HIDDEN_ATTR, "tag": key})
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to show elements: {exc}")

        if key is None:
            for mid in [m for m in self._active if m.startswith("hide_")]:
                self._forget(mid)
        else:
            self._forget(f"hide_{key}")
        count = int(count or 0)
        message = f"Showed {count} hidden elements" if count else "No hidden elements found"
        return ManipulationResult(True, message, count)

    # ── reader / layout / focus ──────────────────────────────────

    async def enable_reader_mode(self) -> ManipulationResult:
        try:
            if not await self._page.evaluate(_HAS_MAIN_CONTENT_JS):
                return ManipulationResult(False, "Could not identify main content on this page")
            await self._set_css("readerMode", _READER_MODE_CSS)
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to enable reader mode: {exc}")
        self._record("readerMode", "Reader mode enabled")
        return ManipulationResult(True, "Reader mode enabled")

    async def disable_reader_mode(self) -> ManipulationResult:
        try:
            await self._set_css("readerMode", "")
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to disable reader mode: {exc}")
        self._forget("readerMode")
        return ManipulationResult(True, "Reader mode disabled")

    async def adjust_width(self, width: str) -> ManipulationResult:
        """narrow / medium / wide / full, or an explicit CSS length (e.g. 720px, 80%)."""
        w = (width or "").strip().lower()
        max_width = WIDTH_PRESETS.get(w)
        if max_width is None:
            if not _CSS_LENGTH_RE.match(w):
                return ManipulationResult(False, f"Unknown width: {width}")
            max_width = w
        try:
            await self._set_css("width", f"body {{\n  max-width: {max_width} !important;\n  margin: 0 auto !important;\n}}")
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to adjust width: {exc}")
        self._record("width", f"Width: {w}")
        return ManipulationResult(True, f"Content width set to {w}", max_width)

    async def center_content(self) -> ManipulationResult:
        try:
            await self._set_css("center", _CENTER_CSS)
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to center content: {exc}")
        self._record("center", "Content centered")
        return ManipulationResult(True, "Content centered")

    async def enable_focus_mode(self) -> ManipulationResult:
        try:
            result = await self._page.evaluate(
                _HIDE_JS,
                {"selector": ", ".join(FOCUS_DISTRACTIONS), "attr": _FOCUS_HIDDEN_ATTR, "tag": "focus"},
            )
            await self._set_css("focusMode", _FOCUS_MODE_CSS)
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to enable focus mode: {exc}")
        hidden = int((result or {}).get("hidden", 0))
        self._record("focusMode", "Focus mode enabled")
        return ManipulationResult(True, f"Focus mode enabled (hidden {hidden} distractions)", hidden)

    async def disable_focus_mode(self) -> ManipulationResult:
        try:
            await self._page.evaluate(_SHOW_JS, {"attr": _FOCUS_HIDDEN_ATTR, "tag": None})
            await self._set_css("focusMode", "")
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to disable focus mode: {exc}")
        self._forget("focusMode")
        return ManipulationResult(True, "Focus mode disabled")

    # ── zoom ─────────────────────────────────────────────────────

    async def set_zoom(self, level: str | float) -> ManipulationResult:
        """in / out / reset, a percentage ("150%", "150"), or a factor (1.5)."""
        if isinstance(level, (int, float)):
            new = _clamp_scale(float(level))
        else:
            lvl = (level or "").strip().lower()
            if lvl == "in":
                new = _clamp_scale(self.zoom + SCALE_STEP)
            elif lvl == "out":
                new = _clamp_scale(self.zoom - SCALE_STEP)
            elif lvl == "reset":
                new = 1.0
            else:
                scale = _parse_scale(lvl)
                if scale is None:
                    return ManipulationResult(False, f"Unknown zoom level: {level}")
                new = _clamp_scale(scale)

        try:
            await self._page.evaluate(_SET_ZOOM_JS, self._baseline_zoom if new == 1.0 else str(new))
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to set zoom: {exc}")
        self.zoom = new
        percent = round(new * 100)
        if new == 1.0:
            self._forget("zoom")
        else:
            self._record("zoom", f"Zoom: {percent}%")
        return ManipulationResult(True, f"Zoom set to {percent}%", new)

    # ── reset / undo ─────────────────────────────────────────────

    async def reset_all(self) -> ManipulationResult:
        """Remove every manipulation and restore the captured baseline."""
        try:
            self._css.clear()
            await self._flush_css()
            await self._page.evaluate(_SHOW_JS, {"attr": _HIDDEN_ATTR, "tag": None})
            await self._page.evaluate(_SHOW_JS, {"attr": _FOCUS_HIDDEN_ATTR, "tag": None})
            await self._page.evaluate(_SET_ZOOM_JS, self._baseline_zoom)
        except PlaywrightError as exc:
            return ManipulationResult(False, f"Failed to reset all customizations: {exc}")

        self._active.clear()
        self.text_size = 1.0
        self.dark_mode = False
        self.zoom = 1.0
        logger.info("All manipulations reset")
        return ManipulationResult(True, "All page customizations reset")

    async def undo_last(self) -> ManipulationResult:
        if not self._active:
            return ManipulationResult(False, "No manipulations to undo")
        last = next(reversed(self._active.values()))

        if last.id == "textSize":
            result = await self.adjust_text_size("reset")
        elif last.id == "darkMode":
            result = await self.toggle_dark_mode(False)
        elif last.id == "readerMode":
            result = await self.disable_reader_mode()
        elif last.id == "focusMode":
            result = await self.disable_focus_mode()
        elif last.id == "zoom":
            result = await self.set_zoom("reset")
        elif last.id.startswith("hide_"):
            result = await self.show_elements(last.id[len("hide_") :])
        else:
            try:
                await self._set_css(last.id, "")
            except PlaywrightError as exc:
                return ManipulationResult(False, f"Failed to undo: {exc}")
            self._forget(last.id)
            result = ManipulationResult(True, "")

        if not result.success:
            return result
        return ManipulationResult(True, f"Undone: {last.description}")

    # ── intent mapping ───────────────────────────────────────────

    async def apply_intent(self, intent: Intent) -> ManipulationResult:
        """Map a ``modify_*`` intent and its payload onto one operation."""
        payload = (intent.payload or "").strip()
        target = (intent.target_description or "").strip()
        key, _, value = payload.partition(":")
        key, value = key.strip().lower(), value.strip()
        word = payload.lower()

        match intent.action_type:
            case ActionType.MODIFY_TEXT_SIZE:
                if word in ("increase", "larger", "bigger", "decrease", "smaller", "reset"):
                    return await self.adjust_text_size(word)
                scale = _parse_scale(payload) if payload else None
                if scale is not None:
                    return await self.adjust_text_size("set", scale)
                return ManipulationResult(False, f"Unknown text size action: {payload or '(none)'}")

            case ActionType.MODIFY_THEME:
                if word in ("dark", "on", "enable", "dark mode"):
                    return await self.toggle_dark_mode(True)
                if word in ("light", "off", "disable", "light mode"):
                    return await self.toggle_dark_mode(False)
                return await self.toggle_dark_mode(None)

            case ActionType.MODIFY_COLOR:
                if value and key in ("background", "bg"):
                    return await self.change_background_color(value)
                if value and key in ("text", "font", "foreground"):
                    return await self.change_text_color(value)
                if value and key == "contrast":
                    return await self.adjust_contrast(value)
                if word in CONTRAST_LEVELS:
                    return await self.adjust_contrast(word)
                if "text" in target.lower():
                    return await self.change_text_color(payload)
                return await self.change_background_color(payload)

            case ActionType.MODIFY_VISIBILITY:
                if value and key == "show":
                    return await self.show_elements(value)
                if key == "show":
                    return await self.show_elements(None)
                what = value if value and key == "hide" else (payload or target)
                return await self.hide_elements(what)

            case ActionType.MODIFY_LAYOUT:
                if word in ("reader", "reader mode", "reader-on"):
                    return await self.enable_reader_mode()
                if word in ("reader-off", "reader off", "exit reader"):
                    return await self.disable_reader_mode()
                if word in ("center", "centre"):
                    return await self.center_content()
                return await self.adjust_width(word)

            case ActionType.MODIFY_FOCUS:
                if word in ("off", "disable", "exit"):
                    return await self.disable_focus_mode()
                return await self.enable_focus_mode()

            case ActionType.MODIFY_ZOOM:
                if not payload:
                    return ManipulationResult(False, "No zoom level given")
                return await self.set_zoom(word)

            case ActionType.MODIFY_RESET:
                if word in ("undo", "last", "undo last"):
                    return await self.undo_last()
                return await self.reset_all()

            case _:
                name = intent.action_type.value if intent.action_type else None
                return ManipulationResult(False, f"Not a page manipulation: {name}")
