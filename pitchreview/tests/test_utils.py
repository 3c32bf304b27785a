"""Tests for reply parsing and the small shared helpers."""
from __future__ import annotations

import pytest

from pitchreview.errors import ParseError
from pitchreview.utils import bullet_join, extract_json, json_parse, normalize_name, utcnow


class TestJsonParse:
    def test_valid_json(self):
        assert json_parse('{"a": 1}') == {"a": 1}

    def test_invalid_json_default(self):
        assert json_parse("not json", []) == []

    def test_invalid_json_no_default(self):
        assert json_parse("not json") == {}

    def test_none_input(self):
        assert json_parse(None) == {}


class TestExtractJson:
    def test_bare_object(self):
        assert extract_json('{"problem_score": 80}') == {"problem_score": 80}

    def test_prose_around_object(self):
        reply = 'Here is my assessment:\n{"problem_score": 80, "overall_summary": "ok"}\nHope this helps!'
        assert extract_json(reply) == {"problem_score": 80, "overall_summary": "ok"}

    def test_fenced_block_wins(self):
        reply = 'Draft {"x": 1}\n```json\n{"problem_score": 70}\n```'
        assert extract_json(reply) == {"problem_score": 70}

    def test_fence_without_language(self):
        assert extract_json('```\n{"a": {"b": 2}}\n```') == {"a": {"b": 2}}

    def test_braces_inside_strings(self):
        reply = 'Result: {"feedback": "uses {curly} braces and \\"quotes\\"", "score": 5} trailing }'
        assert extract_json(reply) == {"feedback": 'uses {curly} braces and "quotes"', "score": 5}

    def test_skips_invalid_candidate(self):
        reply = "{not json} then {\"ok\": true}"
        assert extract_json(reply) == {"ok": True}

    def test_no_json_raises_with_raw_text(self):
        with pytest.raises(ParseError) as info:
            extract_json("I cannot evaluate this submission.")
        assert info.value.raw_text == "I cannot evaluate this submission."

    def test_unbalanced_raises(self):
        with pytest.raises(ParseError):
            extract_json('{"problem_score": 80')

    def test_none_raises(self):
        with pytest.raises(ParseError):
            extract_json(None)


class TestBulletJoin:
    def test_list(self):
        assert bullet_join(["Clear pain", " ", "Large market "]) == "• Clear pain\n• Large market"

    def test_string(self):
        assert bullet_join("  plain text ") == "plain text"

    def test_none(self):
        assert bullet_join(None) == ""


class TestNormalizeName:
    def test_case_and_punctuation(self):
        assert normalize_name("  Acme, Inc. ") == normalize_name("acme inc")

    def test_collapses_spaces(self):
        assert normalize_name("Foo   Bar") == "foo bar"

    def test_none(self):
        assert normalize_name(None) == ""

    def test_symbol_only_names_stay_distinct(self):
        assert normalize_name("!!!") == "!!!"
        assert normalize_name("!!!") != normalize_name("???")
        assert normalize_name("🚀🚀") != normalize_name("🌱")
        assert normalize_name(" ?? ") == normalize_name("??")


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
