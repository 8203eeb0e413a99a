"""Tests for pageintent.element_resolver: local scoring and model-assisted matching."""

from __future__ import annotations

import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from pageintent import ElementKind, ElementMatch
from pageintent.element_resolver import (
    ElementResolver,
    ScoringWeights,
    build_match_prompt,
    find_element_by_description,
    parse_match_response,
    score_element,
)
from pageintent.errors import ModelError
from tests._helpers import FakeGenerator, make_element


def _catalog():
    return [
        make_element(ElementKind.SEARCH, "Search products", placeholder="Search products", index=0),
        make_element(ElementKind.BUTTON, "Sign in", dom_id="signin", index=1),
        make_element(ElementKind.BUTTON, "", aria_label="Close dialog", index=2),
        make_element(ElementKind.LINK, "Pricing", index=3),
        make_element(ElementKind.INPUT, "Email address", placeholder="you@example.com", index=4),
    ]


def _match(index: int, confidence: float = 0.9, reasoning: str = "ok") -> str:
    return json.dumps({"matchIndex": index, "confidence": confidence, "reasoning": reasoning})


class TestScoreElement:
    def test_search_bar(self):
        search = _catalog()[0]
        # kind 0.3 + word "search" 0.1 + search bonus 0.4
        assert score_element(search, "search bar") == pytest.approx(0.8)
        assert score_element(search, "search bar") >= 0.7

    def test_full_text(self):
        assert score_element(_catalog()[3], "the pricing link") == pytest.approx(0.8)

    def test_word_overlap(self):
        assert score_element(_catalog()[1], "sign up") == pytest.approx(0.1)
        assert score_element(_catalog()[4], "email field") == pytest.approx(0.1)

    def test_aria_label(self):
        # kind 0.3 + aria-label 0.4
        assert score_element(_catalog()[2], "close dialog button") == pytest.approx(0.7)

    def test_placeholder(self):
        el = make_element(ElementKind.INPUT, "Contact", placeholder="you@example.com")
        assert score_element(el, "you@example.com") == pytest.approx(0.3)

    def test_capped(self):
        el = make_element(ElementKind.SEARCH, "search", aria_label="search", placeholder="search")
        assert score_element(el, "search") == 1.0

    def test_empty_description(self):
        assert score_element(_catalog()[1], "") == 0.0

    def test_custom_weights(self):
        weights = ScoringWeights(kind=0.0, full_text=0.9)
        assert score_element(_catalog()[3], "pricing link", weights) == pytest.approx(0.9)


class TestFindElementByDescription:
    def test_search_resolved(self):
        match = find_element_by_description("search bar", _catalog())
        assert match.accepted
        assert match.matched_element.kind is ElementKind.SEARCH
        assert match.confidence >= 0.7

    def test_exact_label(self):
        match = find_element_by_description("sign in", _catalog())
        assert match.matched_element.dom_id == "signin"

    def test_threshold_is_strict(self):
        # Kind name alone scores exactly 0.3: not enough.
        match = find_element_by_description("a link", [make_element(ElementKind.LINK, "Pricing")])
        assert match.matched_element is None
        assert match.confidence == pytest.approx(0.3)
        assert not match.accepted

    def test_low_score_no_match(self):
        match = find_element_by_description("shopping basket", _catalog())
        assert match.matched_element is None

    def test_tie_keeps_first(self):
        a = make_element(ElementKind.BUTTON, "Save", index=0)
        b = make_element(ElementKind.BUTTON, "Save", index=1)
        assert find_element_by_description("save", [a, b]).matched_element is a

    def test_empty_description(self):
        assert find_element_by_description("", _catalog()).matched_element is None

    def test_empty_catalog(self):
        assert find_element_by_description("sign in", []).matched_element is None


class TestMatchPrompt:
    def test_lists_candidates(self):
        prompt = build_match_prompt("sign in", _catalog())
        assert '1. button: "Sign in" (id: signin)' in prompt
        assert '0. search: "Search products"' in prompt
        assert '"matchIndex"' in prompt

    def test_caps_candidates(self):
        catalog = [make_element(ElementKind.LINK, f"Item {i}", index=i) for i in range(40)]
        prompt = build_match_prompt("item", catalog)
        assert '29. link: "Item 29"' in prompt
        assert "Item 30" not in prompt


class TestParseMatchResponse:
    def test_fenced(self):
        resp = parse_match_response("```json\n" + _match(2, 0.75, "close button") + "\n```")
        assert (resp.match_index, resp.confidence, resp.reasoning) == (2, 0.75, "close button")

    def test_unparseable(self):
        resp = parse_match_response("I think the second one")
        assert (resp.match_index, resp.confidence) == (-1, 0.0)

    def test_bad_index(self):
        assert parse_match_response('{"matchIndex": "two", "confidence": 0.9}').match_index == -1

    def test_reasoning_truncated(self):
        assert len(parse_match_response(_match(0, reasoning="y" * 80)).reasoning) == 30


class TestElementResolver:
    async def test_local_first(self):
        gen = FakeGenerator()
        match = await ElementResolver(gen).resolve("search bar", _catalog())
        assert match.matched_element.kind is ElementKind.SEARCH
        assert gen.prompts == []

    async def test_model_fallback(self):
        gen = FakeGenerator(_match(3, 0.85, "pricing page"))
        match = await ElementResolver(gen).resolve("how much it costs", _catalog())
        assert match.matched_element.display_text == "Pricing"
        assert match.confidence == 0.85
        assert len(gen.prompts) == 1

    async def test_model_below_threshold(self):
        gen = FakeGenerator(_match(3, 0.4))
        match = await ElementResolver(gen, model_match_threshold=0.5).resolve("costs", _catalog())
        assert match.matched_element is None
        assert match.confidence == 0.4

    async def test_model_disabled(self):
        gen = FakeGenerator(_match(3))
        match = await ElementResolver(gen, use_model=False).resolve("costs", _catalog())
        assert match.matched_element is None
        assert gen.prompts == []

    async def test_per_call_override(self):
        gen = FakeGenerator(_match(3))
        match = await ElementResolver(gen, use_model=False).resolve("costs", _catalog(), use_model=True)
        assert match.matched_element.display_text == "Pricing"

    async def test_no_match_index(self):
        gen = FakeGenerator(_match(-1, 0.2, "nothing fits"))
        match = await ElementResolver(gen).find_best_element_match("basket", _catalog())
        assert match.matched_element is None
        assert match.reasoning == "nothing fits"

    async def test_out_of_range(self):
        gen = FakeGenerator(_match(12))
        match = await ElementResolver(gen).find_best_element_match("basket", _catalog())
        assert match == ElementMatch.none("Index 12 out of range")

    async def test_model_error(self):
        gen = FakeGenerator(ModelError("timeout"))
        match = await ElementResolver(gen).find_best_element_match("basket", _catalog())
        assert match.matched_element is None
        assert match.confidence == 0.0
        assert match.reasoning == "Error: timeout"

    async def test_no_generator(self):
        match = await ElementResolver(None).find_best_element_match("basket", _catalog())
        assert match.reasoning == "No model configured"

    async def test_only_first_thirty_sent(self):
        catalog = [make_element(ElementKind.LINK, f"Item {i}", index=i) for i in range(40)]
        gen = FakeGenerator(_match(35))
        match = await ElementResolver(gen).find_best_element_match("something", catalog)
        assert match.matched_element is None
        assert "Item 30" not in gen.prompts[0]


_words = st.text(alphabet="abcdefghijklmnopqrstuvwxyz ", min_size=0, max_size=40)


@given(label=_words.filter(lambda s: s.strip()), description=_words, kind=st.sampled_from(list(ElementKind)))
def test_appending_full_text_never_lowers_score(label, description, kind):
    element = make_element(kind, label.strip())
    before = score_element(element, description)
    after = score_element(element, f"{description} {label.strip()}")
    assert after >= before


@given(description=_words)
def test_no_match_at_or_below_threshold(description):
    match = find_element_by_description(description, _catalog())
    if match.confidence <= 0.3:
        assert match.matched_element is None
