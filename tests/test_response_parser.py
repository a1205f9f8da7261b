"""
Tests for the response parser - structured parse with pattern fallback.
"""
import json

from core.services.response_parser import extract, extract_field, extract_list, split_lines


class TestExtractField:
    def test_key_string_from_valid_json_uses_structured_strategy(self):
        raw = json.dumps({"done": True, "response": {"keyString": "abc123", "name": "projects/1/keys/k"}})

        parsed = extract_field(raw, ".keyString")

        assert parsed.value == "abc123"
        assert parsed.strategy == "structured"

    def test_key_string_from_broken_json_uses_pattern_strategy(self):
        raw = 'Operation finished.\n{"keyString": "abc123", "name": "projects/1/keys/k"'

        parsed = extract_field(raw, ".keyString")

        assert parsed.value == "abc123"
        assert parsed.strategy == "pattern"

    def test_first_name_of_list(self):
        raw = json.dumps([{"name": "projects/1/keys/a"}, {"name": "projects/1/keys/b"}])

        assert extract(raw, ".[0].name") == "projects/1/keys/a"

    def test_first_name_fallback_on_truncated_list(self):
        raw = '[{"name": "projects/1/keys/a", "displayName": "x"}, {"name": "projects/1/keys/b"'

        assert extract(raw, ".[0].name") == "projects/1/keys/a"

    def test_nested_path_with_index(self):
        raw = json.dumps({"a": {"b": [{"c": "deep"}]}})

        assert extract(raw, "a.b[0].c") == "deep"

    def test_bare_name_found_anywhere_in_document(self):
        raw = json.dumps([{"consumerQuotaLimits": [{"quotaBuckets": [{"effectiveLimit": "50"}]}]}])

        assert extract(raw, "effectiveLimit") == "50"

    def test_booleans_and_numbers_render_as_text(self):
        raw = json.dumps({"open": False, "limit": 12})

        assert extract(raw, ".open") == "false"
        assert extract(raw, ".limit") == "12"

    def test_generic_bare_value_pattern(self):
        raw = 'garbage {"limit": 25, "other": "x"'

        assert extract(raw, ".limit") == "25"

    def test_missing_field_returns_none(self):
        parsed = extract_field(json.dumps({"a": 1}), ".keyString")

        assert parsed.value is None
        assert parsed.ok is False

    def test_empty_input_returns_none(self):
        assert extract("", ".keyString") is None
        assert extract("   \n", "name") is None


def test_extract_list_collects_field_per_item():
    raw = json.dumps([{"name": "k1"}, {"displayName": "no name"}, {"name": "k2"}])

    assert extract_list(raw, "name") == ["k1", "k2"]


def test_extract_list_on_non_list_is_empty():
    assert extract_list("{}", "name") == []
    assert extract_list("not json", "name") == []


def test_split_lines_drops_blank_lines():
    assert split_lines("a\n\n  b  \n") == ["a", "b"]
