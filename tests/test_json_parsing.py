"""Tests for JSON parsing utilities with self-repair."""

from comicgen.graphs.json_parser import (
    _clean_json_text,
    _extract_json_array,
    _extract_json_object,
    _strip_markdown_fences,
    json_from_gemini,
    parse_json_text,
)


class TestStripMarkdownFences:
    def test_strips_json_fence(self):
        assert _strip_markdown_fences('```json\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_handles_no_fence(self):
        assert _strip_markdown_fences('{"key": "value"}') == '{"key": "value"}'

    def test_handles_fence_with_extra_text(self):
        text = 'Here is the script:\n```json\n{"title": "Thor"}\n```\nDone!'
        assert _strip_markdown_fences(text) == '{"title": "Thor"}'

    def test_case_insensitive(self):
        assert _strip_markdown_fences('```JSON\n{"key": "value"}\n```') == '{"key": "value"}'


class TestCleanJsonText:
    def test_removes_trailing_commas(self):
        text = '{"panels": [1, 2, 3,], "title": "test",}'
        assert _clean_json_text(text) == '{"panels": [1, 2, 3], "title": "test"}'

    def test_removes_surrounding_prose(self):
        text = 'Here is the JSON output:\n{"key": "value"}\n\nI hope this helps!'
        assert _clean_json_text(text) == '{"key": "value"}'


class TestExtractBalanced:
    def test_ignores_braces_inside_strings(self):
        text = 'prefix {"dialogue": "Hulk: {smash}!"} suffix'
        assert _extract_json_object(text) == '{"dialogue": "Hulk: {smash}!"}'

    def test_handles_escaped_quotes(self):
        text = '{"narration": "He said \\"share\\""}'
        assert _extract_json_object(text) == text

    def test_extracts_array(self):
        assert _extract_json_array('Output: [1, [2, 3]] end') == "[1, [2, 3]]"

    def test_unbalanced_returns_none(self):
        assert _extract_json_object('{"open": ') is None


class TestParseJsonText:
    def test_empty_returns_none(self):
        assert parse_json_text("") is None

    def test_embedded_object(self):
        text = 'Sure! {"title": "Iron Man Shares"} Hope that works.'
        assert parse_json_text(text) == {"title": "Iron Man Shares"}

    def test_garbage_returns_none(self):
        assert parse_json_text("no json here") is None


class ScriptedGemini:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    def generate_text(self, prompt, model=None, use_fallback=True, json_mode=False):
        self.prompts.append(prompt)
        return self.responses.pop(0)


def test_json_from_gemini_direct():
    gem = ScriptedGemini('{"panels": []}')
    assert json_from_gemini(gem, "Write a script") == {"panels": []}
    assert len(gem.prompts) == 1


def test_json_from_gemini_repairs_once():
    gem = ScriptedGemini("MALFORMED: {panels: [ }", '{"panels": [{"panelId": 1}]}')
    result = json_from_gemini(gem, "Write a script", expected_schema='{"panels": []}')

    assert result == {"panels": [{"panelId": 1}]}
    assert len(gem.prompts) == 2
    assert "ROLE: JSON repair." in gem.prompts[1]


def test_json_from_gemini_gives_up_after_failed_repair():
    gem = ScriptedGemini("MALFORMED: {panels: [ }", "still not json")
    assert json_from_gemini(gem, "Write a script") is None
    assert len(gem.prompts) == 2
