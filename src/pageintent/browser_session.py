# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""The Chromium page an assistant acts on.

One ``BrowserSession`` owns exactly one browser, context and page. The
assistant never opens tabs, so downloads and permission prompts are refused at
the context level. JS dialogs are answered automatically: a dialog left open
blocks every later ``page.evaluate`` call of the turn pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections import deque
from contextlib import suppress
from dataclasses import dataclass
from urllib.parse import urlparse

from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    Page,
    Playwright,
    Route,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from .errors import BrowserError, is_browser_dead_error

logger = logging.getLogger(__name__)

# Internal browser pages must stay unreachable from page scripts; about:blank is fine.
BLOCKED_URL_SCHEMES = ("chrome://", "chrome-extension://", "devtools://", "view-source://")
NAVIGABLE_SCHEMES = frozenset({"http", "https"})

# Dialog types answered with accept(); everything else is dismissed.
_ACCEPTED_DIALOGS = frozenset({"alert", "beforeunload"})
DIALOG_LOG_SIZE = 10

_HARDENING_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-extensions",
    "--disable-plugins",
    "--disable-sync",
    "--disable-background-networking",
    "--disable-component-update",
    "--disable-breakpad",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-prompt-on-repost",
    "--deny-permission-prompts",
    "--no-first-run",
    "--no-pings",
    "--noerrdialogs",
)


@dataclass(frozen=True)
class DialogInfo:
    """A JS dialog the session answered on the page's behalf."""

    kind: str
    message: str
    accepted: bool


@dataclass(frozen=True)
class SettleReport:
    """How long the page took to stop mutating after a navigation."""

    waited_ms: int
    mutations: int
    quiet: bool  # False when the max wait elapsed first


@dataclass
class BrowserConfig:
    headless: bool = True
    locale: str = "en-US"
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    timeout_ms: int = 30000
    settle_quiet_ms: int = 200
    settle_max_ms: int = 3000


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    return [*_HARDENING_ARGS, f"--lang={config.locale}"]


_install_result: bool | None = None
INSTALL_TIMEOUT_S = 300


async def install_chromium() -> bool:
    """``playwright install chromium``, attempted at most once per process."""
    global _install_result  # noqa: PLW0603
    if _install_result is None:
        logger.info("Chromium missing; running 'playwright install chromium'")
        _install_result = await _run_install()
    return _install_result


async def _run_install() -> bool:
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        async with asyncio.timeout(INSTALL_TIMEOUT_S):
            _, stderr = await proc.communicate()
    except TimeoutError:
        logger.warning("Chromium install gave up after %ds", INSTALL_TIMEOUT_S)
        return False
    except OSError as exc:
        logger.warning("Chromium install could not start: %s", exc)
        return False
    if proc.returncode != 0:
        logger.warning("Chromium install exited %d: %.300s", proc.returncode, stderr.decode(errors="replace"))
        return False
    return True


class BrowserSession:
    """Owns one Chromium browser, context and page."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._dialogs: deque[DialogInfo] = deque(maxlen=DIALOG_LOG_SIZE)

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started; use 'async with' or await start()")
        return self._page

    # ── lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._launch()
            await self._open_page(self._browser)
        except BaseException:
            await self.stop()
            raise
        logger.info("Browser started (headless=%s, locale=%s)", self.config.headless, self.config.locale)

    async def _launch(self) -> Browser:
        chromium = self._playwright.chromium
        args = chromium_launch_args(self.config)
        try:
            return await chromium.launch(headless=self.config.headless, args=args)
        except PlaywrightError as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise BrowserError(f"Chromium launch failed: {exc}") from exc
            if not await install_chromium():
                raise BrowserError("Chromium is not installed; run: playwright install chromium") from exc
        return await chromium.launch(headless=self.config.headless, args=args)

    async def _open_page(self, browser: Browser) -> None:
        self._context = await browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            locale=self.config.locale,
            user_agent=self.config.user_agent,
            service_workers="block",
            permissions=[],
            accept_downloads=False,
        )
        self._context.on("dialog", self._answer_dialog)
        await self._context.route("**/*", self._guard_scheme)
        self._page = await self._context.new_page()

    async def stop(self) -> None:
        """Tear everything down. Tolerates a crashed or half-started browser."""
        self._page = None
        self._dialogs.clear()
        for closable in (self._context, self._browser):
            if closable is not None:
                with suppress(Exception):
                    await closable.close()
        self._context = self._browser = None
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        logger.info("Browser stopped")

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def is_alive(self, timeout: float = 5.0) -> bool:
        """True when the browser is connected and the page still runs scripts."""
        if self._page is None or self._browser is None or not self._browser.is_connected():
            return False
        try:
            async with asyncio.timeout(timeout):
                await self._page.evaluate("1")
        except (TimeoutError, PlaywrightError):
            return False
        return True

    # ── page guards ──────────────────────────────────────────────

    async def _guard_scheme(self, route: Route) -> None:
        url = route.request.url
        if url.startswith(BLOCKED_URL_SCHEMES):
            logger.debug("Blocked request to %s", url)
            await route.abort("blockedbyclient")
        else:
            await route.continue_()

    async def _answer_dialog(self, dialog: Dialog) -> None:
        accept = dialog.type in _ACCEPTED_DIALOGS
        try:
            await (dialog.accept() if accept else dialog.dismiss())
        except PlaywrightError:
            logger.warning("Answering %s dialog failed; dismissing", dialog.type, exc_info=True)
            with suppress(PlaywrightError):
                await dialog.dismiss()
            return
        self._dialogs.append(DialogInfo(kind=dialog.type, message=dialog.message, accepted=accept))
        logger.info("%s %s dialog: %.100s", "Accepted" if accept else "Dismissed", dialog.type, dialog.message)

    def drain_dialogs(self) -> list[DialogInfo]:
        """Dialogs answered since the last call, oldest first."""
        dialogs = list(self._dialogs)
        self._dialogs.clear()
        return dialogs

    # ── loading ──────────────────────────────────────────────────

    async def navigate(self, url: str) -> SettleReport | None:
        """Open *url* (http/https only) and wait for the DOM to go quiet.

        Raises:
            BrowserError: the scheme is not navigable, or loading failed.
        """
        scheme = urlparse(url).scheme.lower()
        if scheme not in NAVIGABLE_SCHEMES:
            raise BrowserError(f"Refusing to navigate to {scheme or 'relative'} URL: {url}")
        try:
            await self.page.goto(url, wait_until="load", timeout=self.config.timeout_ms)
        except PlaywrightError as exc:
            if is_browser_dead_error(exc):
                raise BrowserError(f"Browser connection lost: {exc}") from exc
            raise BrowserError(f"Navigation to {url} failed: {exc}") from exc
        return await self.wait_for_dom_settle()

    async def load_html(self, html: str) -> None:
        """Replace the page with *html* (offline pages and tests)."""
        await self.page.set_content(html, wait_until="domcontentloaded")

    async def wait_for_dom_settle(self, quiet_ms: int | None = None, max_ms: int | None = None) -> SettleReport | None:
        """Block until no DOM mutation happened for *quiet_ms*, or *max_ms* passed.

        Returns None when the page could not be evaluated (navigated away, crashed).
        """
        quiet = self.config.settle_quiet_ms if quiet_ms is None else quiet_ms
        limit = self.config.settle_max_ms if max_ms is None else max_ms
        try:
            raw = await self.page.evaluate(_SETTLE_JS, [quiet, limit])
        except PlaywrightError:
            logger.debug("DOM settle skipped", exc_info=True)
            return None
        report = SettleReport(waited_ms=int(raw["waited"]), mutations=int(raw["mutations"]), quiet=bool(raw["quiet"]))
        logger.debug("DOM settled in %dms (%d mutations, quiet=%s)", report.waited_ms, report.mutations, report.quiet)
        return report


_SETTLE_JS = """([quietMs, maxMs]) => new Promise((done) => {
  const t0 = performance.now();
  let count = 0;
  let idle;
  const stop = (quiet) => {
    obs.disconnect();
    clearTimeout(idle);
    clearTimeout(cap);
    done({waited: Math.round(performance.now() - t0), mutations: count, quiet});
  };
  const obs = new MutationObserver((batch) => {
    count += batch.length;
    clearTimeout(idle);
    idle = setTimeout(() => stop(true), quietMs);
  });
  obs.observe(document.documentElement, {subtree: true, childList: true, characterData: true});
  idle = setTimeout(() => stop(true), quietMs);
  const cap = setTimeout(() => stop(false), maxMs);
})"""

