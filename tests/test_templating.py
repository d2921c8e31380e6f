"""
Tests for {{key}} template rendering.
"""

import pytest

from llm_consensus.ai.templating import placeholders, render


def test_render_substitutes_known_keys():
    assert render("Bearer {{API_KEY}}", {"API_KEY": "sk-1"}) == "Bearer sk-1"


def test_render_trims_whitespace_inside_braces():
    assert render("{{ model }}/{{model}}", {"model": "gpt"}) == "gpt/gpt"


def test_render_missing_key_becomes_empty():
    assert render("x={{missing}};", {}) == "x=;"


def test_render_none_value_becomes_empty():
    assert render("{{a}}", {"a": None}) == ""


def test_render_stringifies_values():
    assert render("{{n}} {{f}}", {"n": 3, "f": 1.5}) == "3 1.5"


def test_render_leaves_non_placeholders_untouched():
    template = '{"prompt": "{single}", "x": "{{ok}}"}'
    assert render(template, {"ok": "y"}) == '{"prompt": "{single}", "x": "y"}'


def test_render_does_not_rescan_substituted_values():
    """A value containing {{...}} is inserted literally."""
    assert render("{{a}}", {"a": "{{b}}", "b": "nope"}) == "{{b}}"


def test_render_without_placeholders_is_identity():
    assert render("plain text", {"a": 1}) == "plain text"


@pytest.mark.parametrize("template,expected", [
    ("{{a}} {{ b }}", ["a", "b"]),
    ("none here", []),
    ("{{x}}{{x}}", ["x", "x"]),
])
def test_placeholders(template, expected):
    assert placeholders(template) == expected
