"""End-to-end turns against real Chromium with an offline page.

Run with: PAGEINTENT_BROWSER_TESTS=1 pytest tests/test_integration_browser.py
"""

from __future__ import annotations

import json

import pytest

from pageintent import ElementKind
from pageintent.browser_session import BrowserConfig, BrowserSession
from pageintent.config import AssistantConfig
from pageintent.session import AssistantSession, OutcomeKind
from tests._helpers import FakeGenerator

pytestmark = pytest.mark.browser

_PAGE = """<!doctype html>
<html><body style="height: 3000px">
  <input type="search" id="q" placeholder="Search products">
  <button id="login" onclick="document.title = 'clicked'">Sign in</button>
  <a href="#help">Help center</a>
  <label for="email">Email</label><input id="email" type="email">
  <button style="display:none">Hidden</button>
</body></html>"""


@pytest.fixture
async def browser():
    async with BrowserSession(BrowserConfig()) as session:
        await session.load_html(_PAGE)
        yield session


def _session(browser: BrowserSession, *responses: str) -> AssistantSession:
    config = AssistantConfig(highlight=False, settle_delay_s=0)
    return AssistantSession(browser.page, FakeGenerator(*responses), config=config)


async def test_scan_finds_visible_elements_in_order(browser):
    async with _session(browser) as session:
        elements = await session.catalog.scan()
    kinds = [e.kind for e in elements]
    assert kinds[0] is ElementKind.SEARCH
    assert all(e.label != "Hidden" for e in elements)
    assert any(e.label == "Email" for e in elements)


async def test_click_turn_runs_on_page(browser):
    reply = json.dumps(
        {"isAction": True, "confidence": 0.9, "actionType": "click", "targetDescription": "sign in button"}
    )
    async with _session(browser, reply) as session:
        outcome = await session.process_utterance("click the sign in button")
    assert outcome.kind is OutcomeKind.ACTION
    assert outcome.success
    assert await browser.page.title() == "clicked"


async def test_type_into_search(browser):
    reply = json.dumps(
        {
            "isAction": True,
            "confidence": 0.9,
            "actionType": "type",
            "targetDescription": "search box",
            "additionalData": "red shoes",
        }
    )
    async with _session(browser, reply) as session:
        outcome = await session.process_utterance("type red shoes in the search box")
    assert outcome.success
    assert await browser.page.input_value("#q") == "red shoes"


async def test_dark_mode_and_reset(browser):
    async with _session(browser) as session:
        applied = await session.manipulator.toggle_dark_mode(True)
        assert applied.success
        assert await browser.page.evaluate("document.getElementById('pageintent-custom-styles') !== null")
        await session.manipulator.reset_all()
        assert not session.manipulator.active_manipulations


_TRACK_JS = """() => {
  const el = document.getElementById("q");
  const native = Object.getOwnPropertyDescriptor(HTMLInputElement.prototype, "value");
  window.__events = [];
  window.__changed = [];
  window.__tracked = el.value;
  // Same shape as React's value tracker: an own "value" property that
  // remembers the last value written through it.
  Object.defineProperty(el, "value", {
    configurable: true,
    get() { return native.get.call(this); },
    set(v) { window.__tracked = v; native.set.call(this, v); },
  });
  for (const type of ["input", "change"]) {
    el.addEventListener(type, (e) => {
      window.__events.push(e.type);
      window.__changed.push(e.target.value !== window.__tracked);
    });
  }
}"""


async def test_type_fires_input_then_change_for_tracked_inputs(browser):
    await browser.page.evaluate(_TRACK_JS)
    async with _session(browser) as session:
        search = next(e for e in await session.catalog.scan() if e.kind is ElementKind.SEARCH)
        result = await session.executor.type(search, "red shoes")

    assert result.success
    assert result.details["events"] == ["input", "change"]
    assert await browser.page.evaluate("window.__events") == ["input", "change"]
    # The tracker never saw the write, so a controlled input registers a change.
    assert await browser.page.evaluate("window.__changed") == [True, True]
    assert await browser.page.evaluate("window.__tracked") == ""
    assert await browser.page.input_value("#q") == "red shoes"
