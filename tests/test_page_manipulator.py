"""Tests for pageintent.page_manipulator: reversible visual changes."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from pageintent import ActionType, Intent
from pageintent.page_manipulator import (
    STYLE_ELEMENT_ID,
    ManipulationResult,
    PageManipulator,
    _parse_scale,
    is_valid_color,
)


def _page(evaluate_result=None) -> MagicMock:
    page = MagicMock()
    page.evaluate = AsyncMock(return_value=evaluate_result)
    return page


def _written_css(page: MagicMock) -> str:
    """CSS text of the most recent style-element write."""
    for call in reversed(page.evaluate.await_args_list):
        arg = call.args[1] if len(call.args) > 1 else None
        if isinstance(arg, dict) and arg.get("id") == STYLE_ELEMENT_ID:
            return arg["css"]
    raise AssertionError("no style write recorded")


def _intent(action_type: ActionType, payload: str | None = None, target: str | None = None) -> Intent:
    return Intent(True, 0.9, action_type=action_type, payload=payload, target_description=target)


class TestHelpers:
    @pytest.mark.parametrize("color", ["red", "#fff", "#11223344", "rgb(0, 0, 0)", "hsla(120, 50%, 50%, 0.3)"])
    def test_valid_colors(self, color):
        assert is_valid_color(color)

    @pytest.mark.parametrize("color", ["", "red; display:none", "#12", "url(x)", "expression(alert(1))"])
    def test_invalid_colors(self, color):
        assert not is_valid_color(color)

    @pytest.mark.parametrize(("raw", "expected"), [("1.5", 1.5), ("150%", 1.5), ("150", 1.5), ("2", 2.0), ("x", None)])
    def test_parse_scale(self, raw, expected):
        assert _parse_scale(raw) == expected


class TestTextSize:
    async def test_increase_steps(self):
        page = _page()
        m = PageManipulator(page)
        result = await m.adjust_text_size("increase")
        assert result == ManipulationResult(True, "Text size adjusted to 110%", 1.1)
        assert "calc(1em * 1.1)" in _written_css(page)
        assert [a.id for a in m.active_manipulations] == ["textSize"]

    async def test_clamped(self):
        m = PageManipulator(_page())
        result = await m.adjust_text_size("set", 5.0)
        assert result.value == 2.0
        for _ in range(3):
            result = await m.adjust_text_size("increase")
        assert result.value == 2.0

    async def test_reset_clears_record(self):
        page = _page()
        m = PageManipulator(page)
        await m.adjust_text_size("increase")
        await m.adjust_text_size("reset")
        assert m.active_manipulations == []
        assert _written_css(page) == ""

    async def test_unknown(self):
        result = await PageManipulator(_page()).adjust_text_size("huge")
        assert not result.success

    async def test_failure_keeps_state(self):
        page = _page()
        page.evaluate = AsyncMock(side_effect=PlaywrightError("Target closed"))
        m = PageManipulator(page)
        result = await m.adjust_text_size("increase")
        assert not result.success
        assert m.text_size == 1.0
        assert m.active_manipulations == []


class TestThemeAndColors:
    async def test_dark_mode_toggle(self):
        page = _page()
        m = PageManipulator(page)
        assert (await m.toggle_dark_mode()).value is True
        assert "invert(1)" in _written_css(page)
        assert (await m.toggle_dark_mode()).value is False
        assert _written_css(page) == ""

    async def test_background_color(self):
        page = _page()
        result = await PageManipulator(page).change_background_color("lightyellow")
        assert result.success
        assert "background-color: lightyellow !important" in _written_css(page)

    async def test_invalid_color_never_injected(self):
        page = _page()
        result = await PageManipulator(page).change_text_color("red} body{display:none")
        assert not result.success
        page.evaluate.assert_not_awaited()

    async def test_contrast(self):
        page = _page()
        result = await PageManipulator(page).adjust_contrast("high")
        assert result.value == 1.5
        assert "contrast(1.5)" in _written_css(page)

    async def test_unknown_contrast(self):
        assert not (await PageManipulator(_page()).adjust_contrast("extreme")).success

    async def test_css_blocks_coexist(self):
        page = _page()
        m = PageManipulator(page)
        await m.toggle_dark_mode(True)
        await m.change_background_color("#222")
        css = _written_css(page)
        assert "/* darkMode start */" in css
        assert "/* backgroundColor start */" in css


class TestVisibility:
    async def test_hide_named_group(self):
        page = _page({"matched": 4, "hidden": 4})
        m = PageManipulator(page)
        result = await m.hide_elements("ad")
        assert result == ManipulationResult(True, "Hidden 4 advertisements", 4)
        args = page.evaluate.await_args.args[1]
        assert args["tag"] == "ads"
        assert args["attr"] == "data-pageintent-hidden"
        assert [a.id for a in m.active_manipulations] == ["hide_ads"]

    async def test_hide_nothing_found(self):
        result = await PageManipulator(_page({"matched": 0, "hidden": 0})).hide_elements("sidebar")
        assert result.message == "No sidebar found on this page"

    async def test_hide_invalid_selector(self):
        result = await PageManipulator(_page({"matched": -1, "hidden": 0})).hide_elements("div[[")
        assert result.message == "Invalid selector: div[["

    async def test_show_group(self):
        page = _page({"matched": 2, "hidden": 2})
        m = PageManipulator(page)
        await m.hide_elements("images")
        page.evaluate = AsyncMock(return_value=2)
        result = await m.show_elements("image")
        assert result.value == 2
        assert page.evaluate.await_args.args[1] == {"attr": "data-pageintent-hidden", "tag": "images"}
        assert m.active_manipulations == []

    async def test_show_all(self):
        page = _page({"matched": 1, "hidden": 1})
        m = PageManipulator(page)
        await m.hide_elements("header")
        await m.hide_elements("footer")
        page.evaluate = AsyncMock(return_value=0)
        result = await m.show_elements()
        assert result.message == "No hidden elements found"
        assert page.evaluate.await_args.args[1]["tag"] is None
        assert m.active_manipulations == []


class TestLayout:
    async def test_reader_mode_needs_main_content(self):
        result = await PageManipulator(_page(False)).enable_reader_mode()
        assert result.message == "Could not identify main content on this page"

    async def test_reader_mode(self):
        page = _page(True)
        m = PageManipulator(page)
        assert (await m.enable_reader_mode()).success
        assert (await m.disable_reader_mode()).success
        assert m.active_manipulations == []

    @pytest.mark.parametrize(("width", "css"), [("narrow", "600px"), ("720px", "720px"), ("80%", "80%")])
    async def test_width(self, width, css):
        page = _page()
        result = await PageManipulator(page).adjust_width(width)
        assert result.success
        assert f"max-width: {css} !important" in _written_css(page)

    async def test_width_rejects_css(self):
        page = _page()
        result = await PageManipulator(page).adjust_width("1px; background:url(x)")
        assert not result.success
        page.evaluate.assert_not_awaited()

    async def test_focus_mode(self):
        page = _page({"matched": 3, "hidden": 3})
        m = PageManipulator(page)
        result = await m.enable_focus_mode()
        assert result.value == 3
        await m.disable_focus_mode()
        assert m.active_manipulations == []


class TestZoom:
    async def test_in_and_reset_uses_baseline(self):
        page = _page({"zoom": "0.9"})
        m = PageManipulator(page)
        await m.capture_baseline()
        page.evaluate = AsyncMock(return_value=None)

        assert (await m.set_zoom("in")).value == 1.1
        assert page.evaluate.await_args.args[1] == "1.1"
        await m.set_zoom("reset")
        assert page.evaluate.await_args.args[1] == "0.9"
        assert m.active_manipulations == []

    @pytest.mark.parametrize(("level", "expected"), [("150%", 1.5), ("1.25", 1.25), (3.0, 2.0), ("10%", 0.5)])
    async def test_levels(self, level, expected):
        assert (await PageManipulator(_page()).set_zoom(level)).value == expected

    async def test_unknown(self):
        assert not (await PageManipulator(_page()).set_zoom("huge")).success


class TestResetAndUndo:
    async def test_reset_all(self):
        page = _page({"matched": 1, "hidden": 1})
        m = PageManipulator(page)
        await m.toggle_dark_mode(True)
        await m.hide_elements("ads")
        await m.set_zoom("in")
        result = await m.reset_all()
        assert result.success
        assert m.active_manipulations == []
        assert (m.text_size, m.dark_mode, m.zoom) == (1.0, False, 1.0)
        assert _written_css(page) == ""

    async def test_undo_last_reverts_most_recent(self):
        page = _page()
        m = PageManipulator(page)
        await m.toggle_dark_mode(True)
        await m.adjust_text_size("increase")
        result = await m.undo_last()
        assert result.message == "Undone: Text size: 110%"
        assert [a.id for a in m.active_manipulations] == ["darkMode"]
        assert m.text_size == 1.0

    async def test_undo_reapplied_moves_to_end(self):
        m = PageManipulator(_page())
        await m.toggle_dark_mode(True)
        await m.change_background_color("red")
        await m.toggle_dark_mode(True)
        await m.undo_last()
        assert [a.id for a in m.active_manipulations] == ["backgroundColor"]

    async def test_undo_hide(self):
        page = _page({"matched": 2, "hidden": 2})
        m = PageManipulator(page)
        await m.hide_elements("videos")
        page.evaluate = AsyncMock(return_value=2)
        result = await m.undo_last()
        assert result.success
        assert page.evaluate.await_args.args[1]["tag"] == "videos"

    async def test_nothing_to_undo(self):
        assert (await PageManipulator(_page()).undo_last()).message == "No manipulations to undo"


class TestApplyIntent:
    async def test_text_size_increase(self):
        result = await PageManipulator(_page()).apply_intent(_intent(ActionType.MODIFY_TEXT_SIZE, "increase"))
        assert result.value == 1.1

    async def test_text_size_scale(self):
        result = await PageManipulator(_page()).apply_intent(_intent(ActionType.MODIFY_TEXT_SIZE, "150%"))
        assert result.value == 1.5

    async def test_theme(self):
        m = PageManipulator(_page())
        assert (await m.apply_intent(_intent(ActionType.MODIFY_THEME, "dark"))).value is True
        assert (await m.apply_intent(_intent(ActionType.MODIFY_THEME, "light"))).value is False

    @pytest.mark.parametrize(
        ("payload", "target", "css"),
        [
            ("background:navy", None, "background-color: navy"),
            ("text:#333", None, "color: #333"),
            ("contrast:high", None, "contrast(1.5)"),
            ("green", "text", "color: green"),
            ("green", None, "background-color: green"),
        ],
    )
    async def test_color(self, payload, target, css):
        page = _page()
        result = await PageManipulator(page).apply_intent(_intent(ActionType.MODIFY_COLOR, payload, target))
        assert result.success
        assert css in _written_css(page)

    async def test_visibility_hide(self):
        page = _page({"matched": 1, "hidden": 1})
        await PageManipulator(page).apply_intent(_intent(ActionType.MODIFY_VISIBILITY, "hide:sidebar"))
        assert page.evaluate.await_args.args[1]["tag"] == "sidebar"

    async def test_visibility_show(self):
        page = _page(0)
        await PageManipulator(page).apply_intent(_intent(ActionType.MODIFY_VISIBILITY, "show:ads"))
        assert page.evaluate.await_args.args[1]["tag"] == "ads"

    async def test_layout(self):
        page = _page(True)
        m = PageManipulator(page)
        assert (await m.apply_intent(_intent(ActionType.MODIFY_LAYOUT, "reader"))).message == "Reader mode enabled"
        assert (await m.apply_intent(_intent(ActionType.MODIFY_LAYOUT, "center"))).message == "Content centered"
        assert (await m.apply_intent(_intent(ActionType.MODIFY_LAYOUT, "wide"))).value == "1400px"

    async def test_focus(self):
        page = _page({"matched": 0, "hidden": 0})
        m = PageManipulator(page)
        assert (await m.apply_intent(_intent(ActionType.MODIFY_FOCUS, "on"))).success
        assert (await m.apply_intent(_intent(ActionType.MODIFY_FOCUS, "off"))).message == "Focus mode disabled"

    async def test_zoom_requires_payload(self):
        result = await PageManipulator(_page()).apply_intent(_intent(ActionType.MODIFY_ZOOM))
        assert result.message == "No zoom level given"

    async def test_reset_and_undo(self):
        m = PageManipulator(_page())
        await m.toggle_dark_mode(True)
        assert (await m.apply_intent(_intent(ActionType.MODIFY_RESET, "undo"))).success
        assert (await m.apply_intent(_intent(ActionType.MODIFY_RESET, "all"))).message == "All page customizations reset"

    async def test_not_manipulation(self):
        result = await PageManipulator(_page()).apply_intent(_intent(ActionType.CLICK))
        assert result.message == "Not a page manipulation: click"
