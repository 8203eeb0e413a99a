# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Interactive element catalog: one typed, deduplicated inventory per turn.

Four detection passes run in a single page.evaluate round-trip, in fixed
priority order:

  1. search   inputs whose type/name/id/placeholder/aria-label says "search",
              or inputs inside a role=search landmark
  2. button   <button>, input[type=button|submit], [role=button]
  3. link     a[href] (decorative anchors under 10x10 px dropped)
  4. input    remaining text-like inputs and textareas

The JS side only reports raw facts (computed style, rect, text sources,
attributes, a unique CSS selector and a per-scan node identity). Visibility
filtering, label derivation and dedupe happen in ``build_catalog`` so they
can be unit tested without a browser. The scan never mutates the DOM and
caches nothing.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from . import BoundingBox, ElementKind, InteractiveElement
from .errors import BrowserError, is_browser_dead_error
from .sanitizer import sanitize_text

logger = logging.getLogger(__name__)

PASS_ORDER: tuple[ElementKind, ...] = (
    ElementKind.SEARCH,
    ElementKind.BUTTON,
    ElementKind.LINK,
    ElementKind.INPUT,
)

MAX_DISPLAY_TEXT = 100
MIN_LINK_SIZE_PX = 10
MAX_PER_PASS = 400
_KEY_TEXT_LEN = 20

_SCAN_JS = """\
(maxPerPass) => {
  const SELECTORS = {
    search: [
      'input[type="search"]',
      'input[name*="search" i]',
      'input[id*="search" i]',
      'input[placeholder*="search" i]',
      'input[aria-label*="search" i]',
      '[role="search"] input'
    ].join(","),
    button: 'button, input[type="button"], input[type="submit"], [role="button"]',
    link: "a[href]",
    input: 'input:not([type="hidden"]):not([type="button"]):not([type="submit"]), textarea'
  };

  const identities = new Map();
  function nodeIndex(el) {
    if (!identities.has(el)) identities.set(el, identities.size);
    return identities.get(el);
  }

  function uniqueSelector(el) {
    if (el.id) return "#" + CSS.escape(el.id);
    const TA = ["data-testid", "data-test-id", "data-cy", "data-test"];
    for (const a of TA) {
      const v = el.getAttribute(a);
      if (v) {
        const s = "[" + a + '="' + CSS.escape(v) + '"]';
        try { if (document.querySelectorAll(s).length === 1) return s; } catch (e) {}
      }
    }
    const na = el.getAttribute("name");
    if (na) {
      const s = el.localName + '[name="' + CSS.escape(na) + '"]';
      try { if (document.querySelectorAll(s).length === 1) return s; } catch (e) {}
    }
    const path = [];
    let cur = el;
    while (cur && cur.nodeType === 1) {
      let seg = cur.localName;
      if (cur.id) { path.unshift("#" + CSS.escape(cur.id)); break; }
      const parent = cur.parentElement;
      if (parent) {
        const sibs = Array.from(parent.children).filter(s => s.localName === cur.localName);
        if (sibs.length > 1) seg += ":nth-of-type(" + (sibs.indexOf(cur) + 1) + ")";
      }
      path.unshift(seg);
      cur = cur.parentElement;
    }
    return path.join(" > ");
  }

  function labelFor(el) {
    if (el.id) {
      try {
        const lab = document.querySelector('label[for="' + CSS.escape(el.id) + '"]');
        if (lab) return (lab.textContent || "").trim();
      } catch (e) {}
    }
    const parent = el.closest("label");
    if (parent) return (parent.textContent || "").replace(el.value || "", "").trim();
    return "";
  }

  function describe(el, ordinal) {
    const style = window.getComputedStyle(el);
    const r = el.getBoundingClientRect();
    return {
      nodeIndex: nodeIndex(el),
      ordinal: ordinal,
      tag: el.localName || "",
      inputType: (el.type || "").toString(),
      textContent: (el.textContent || "").trim(),
      innerText: (el.innerText || "").trim(),
      value: typeof el.value === "string" ? el.value.trim() : "",
      ariaLabel: el.getAttribute("aria-label"),
      title: el.getAttribute("title"),
      alt: el.getAttribute("alt"),
      placeholder: el.getAttribute("placeholder"),
      labelFor: labelFor(el),
      id: el.id || "",
      className: el.getAttribute("class") || "",
      name: el.getAttribute("name"),
      href: el.localName === "a" ? el.href : null,
      display: style.display,
      visibility: style.visibility,
      opacity: style.opacity,
      rect: {top: r.top, left: r.left, bottom: r.bottom, right: r.right, width: r.width, height: r.height},
      selector: uniqueSelector(el)
    };
  }

  const passes = {};
  for (const kind of ["search", "button", "link", "input"]) {
    const out = [];
    let nodes = [];
    try { nodes = Array.from(document.querySelectorAll(SELECTORS[kind])); } catch (e) {}
    nodes.slice(0, maxPerPass).forEach((el, i) => out.push(describe(el, i)));
    passes[kind] = out;
  }
  return {passes: passes};
}
"""


def is_visible(raw: dict[str, Any]) -> bool:
    """Visibility predicate: rendered, not hidden, non-transparent, non-zero box."""
    if raw.get("display") == "none":
        return False
    if raw.get("visibility") == "hidden":
        return False
    try:
        if float(raw.get("opacity", "1")) == 0:
            return False
    except (TypeError, ValueError):
        pass
    rect = raw.get("rect") or {}
    return bool(rect.get("width")) and bool(rect.get("height"))


def _first_non_empty(*values: Any) -> str:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v.strip()
    return ""


def _display_text(raw: dict[str, Any]) -> str:
    text = _first_non_empty(
        raw.get("textContent"),
        raw.get("innerText"),
        raw.get("value"),
        raw.get("ariaLabel"),
        raw.get("title"),
        raw.get("alt"),
    )
    return sanitize_text(text, max_len=MAX_DISPLAY_TEXT)


def _input_label(raw: dict[str, Any]) -> str:
    """Label for a form field: <label>, then placeholder, aria-label, name."""
    text = _first_non_empty(
        raw.get("labelFor"),
        raw.get("placeholder"),
        raw.get("ariaLabel"),
        raw.get("name"),
    )
    return sanitize_text(text, max_len=MAX_DISPLAY_TEXT)


def make_unique_key(kind: ElementKind, dom_id: str, css_classes: str, text: str, ordinal: int) -> str:
    key = f"{kind.value}_{dom_id}_{css_classes}_{text[:_KEY_TEXT_LEN]}_{ordinal}"
    key = re.sub(r"\s+", "_", key)
    return re.sub(r"[^a-zA-Z0-9_]", "", key)


def _bounding_box(raw: dict[str, Any]) -> BoundingBox:
    rect = raw.get("rect") or {}
    return BoundingBox(
        top=float(rect.get("top", 0.0)),
        left=float(rect.get("left", 0.0)),
        bottom=float(rect.get("bottom", 0.0)),
        right=float(rect.get("right", 0.0)),
        width=float(rect.get("width", 0.0)),
        height=float(rect.get("height", 0.0)),
    )


def _to_element(kind: ElementKind, raw: dict[str, Any]) -> InteractiveElement:
    is_field = kind in (ElementKind.INPUT, ElementKind.SEARCH)
    associated = _input_label(raw) if is_field else ""
    if is_field:
        display = associated or ("Search" if kind is ElementKind.SEARCH else "")
    else:
        display = _display_text(raw)

    dom_id = raw.get("id") or ""
    css_classes = raw.get("className") or ""
    ordinal = int(raw.get("ordinal", 0))
    return InteractiveElement(
        kind=kind,
        display_text=display,
        unique_key=make_unique_key(kind, dom_id, css_classes, display, ordinal),
        bounding_box=_bounding_box(raw),
        input_type=(raw.get("inputType") or "text").lower() if is_field else None,
        placeholder=sanitize_text(raw.get("placeholder")) or None,
        aria_label=sanitize_text(raw.get("ariaLabel")) or None,
        associated_label=associated or None,
        dom_id=dom_id or None,
        css_classes=css_classes or None,
        selector=raw.get("selector") or "",
        tag_name=(raw.get("tag") or "").lower(),
        name=raw.get("name") or None,
        href=raw.get("href") or None,
        node_index=int(raw.get("nodeIndex", -1)),
    )


def build_catalog(raw_result: dict[str, Any]) -> list[InteractiveElement]:
    """Turn raw scan passes into the ordered, visible, deduplicated catalog.

    Pure function (no I/O). Passes are concatenated search → button → link →
    input; the first occurrence of a DOM node (or of a unique key) wins.
    """
    passes = (raw_result or {}).get("passes") or {}
    elements: list[InteractiveElement] = []
    seen_nodes: set[int] = set()
    seen_keys: set[str] = set()

    for kind in PASS_ORDER:
        for raw in passes.get(kind.value) or []:
            if not is_visible(raw):
                continue
            if kind is ElementKind.LINK:
                rect = raw.get("rect") or {}
                if rect.get("width", 0) < MIN_LINK_SIZE_PX or rect.get("height", 0) < MIN_LINK_SIZE_PX:
                    continue
            element = _to_element(kind, raw)
            if element.node_index >= 0 and element.node_index in seen_nodes:
                continue
            if element.unique_key in seen_keys:
                continue
            if element.node_index >= 0:
                seen_nodes.add(element.node_index)
            seen_keys.add(element.unique_key)
            elements.append(element)

    return elements


def catalog_stats(elements: list[InteractiveElement]) -> dict[str, Any]:
    counts = Counter(e.kind.value for e in elements)
    return {"total": len(elements), "by_kind": dict(counts)}


class ElementCatalog:
    """Scans a Playwright page for interactive elements."""

    def __init__(self, page: Page, *, max_per_pass: int = MAX_PER_PASS) -> None:
        self._page = page
        self._max_per_pass = max_per_pass

    async def scan(self) -> list[InteractiveElement]:
        """Return the current catalog. Safe to call repeatedly; nothing is cached.

        Raises:
            BrowserError: the browser died mid-scan. Other evaluation failures
                yield an empty catalog with a warning.
        """
        try:
            raw = await self._page.evaluate(_SCAN_JS, self._max_per_pass)
        except PlaywrightError as exc:
            if is_browser_dead_error(exc):
                raise BrowserError(f"Browser connection lost during scan: {exc}") from exc
            logger.warning("Element scan failed: %s", exc)
            return []

        if not isinstance(raw, dict):
            logger.warning("Element scan: unexpected result type %s", type(raw).__name__)
            return []

        elements = build_catalog(raw)
        logger.info(
            "Catalog: %d elements (%s)",
            len(elements),
            ", ".join(f"{k}={v}" for k, v in catalog_stats(elements)["by_kind"].items()) or "empty",
        )
        return elements
