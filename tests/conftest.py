# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pageintent  # noqa: F401
except ImportError:
    raise ImportError("pageintent is not installed. Run: pip install -e '.[test]'") from None

import os

import pytest


def pytest_collection_modifyitems(config, items):
    """Skip browser-marked tests unless PAGEINTENT_BROWSER_TESTS=1."""
    if os.environ.get("PAGEINTENT_BROWSER_TESTS", "").strip().lower() in ("1", "true", "yes"):
        return
    skip_marker = pytest.mark.skip(reason="set PAGEINTENT_BROWSER_TESTS=1 to run real-browser tests")
    for item in items:
        if "browser" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests that forget to mock the page get a clear error instead of silently
    launching a browser. Real-browser tests opt out with ``@pytest.mark.browser``.
    """
    if "browser" in request.keywords:
        return

    async def _no_real_start(self):
        raise RuntimeError("Test tried to start a real browser session. Mock the page instead.")

    monkeypatch.setattr("pageintent.browser_session.BrowserSession.start", _no_real_start)
