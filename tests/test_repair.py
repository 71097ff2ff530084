"""Unit tests for the response repair parser (ai_agent.repair).

Tests cover:
- Well-formed input is returned untouched
- Fences and surrounding prose are stripped
- Each incremental repair, and the order they are recorded in
- Failure diagnostics (line/column and byte offset)
"""

from __future__ import annotations

import json

import pytest

from ai_agent.repair import (
    close_unterminated_string,
    convert_single_quotes,
    extract_json_block,
    parse,
    remove_comments,
    remove_trailing_commas,
    strip_code_fences,
    truncate_to_valid_prefix,
)


# ---------------------------------------------------------------------------
# parse(): happy paths
# ---------------------------------------------------------------------------


class TestParseWellFormed:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value",
        [
            {"a": 1, "b": [1, 2, {"c": None}]},
            [1, "two", 3.0],
            {"files": [{"path": "README.md", "content": "```bash\nnpm i\n```"}]},
        ],
    )
    def test_strict_json_is_not_repaired(self, value):
        result = parse(json.dumps(value))
        assert result.success is True
        assert result.data == value
        assert result.repaired is False
        assert result.repairs == []

    @pytest.mark.unit
    def test_empty_input(self):
        result = parse("   \n")
        assert result.success is False
        assert result.error == "Empty response"


class TestParseRepairs:
    @pytest.mark.unit
    def test_code_fence(self):
        result = parse('```json\n{"a": 1}\n```')
        assert result.success is True
        assert result.data == {"a": 1}
        assert result.repairs == ["strip_code_fences"]

    @pytest.mark.unit
    def test_leading_and_trailing_prose(self):
        result = parse('Sure!\n{"a": 1}\nLet me know if you need more.')
        assert result.data == {"a": 1}
        assert result.repairs == ["extract_json_block"]

    @pytest.mark.unit
    def test_prose_and_trailing_comma(self):
        raw = (
            "Here is the architecture:\n"
            '{"pages": [{"path": "/dashboard", "name": "Dashboard", "components": []},], '
            '"components": [], "routes": []}'
        )
        result = parse(raw)
        assert result.success is True
        assert result.repaired is True
        assert result.repairs == ["extract_json_block", "remove_trailing_commas"]
        assert result.data["pages"][0]["name"] == "Dashboard"

    @pytest.mark.unit
    def test_fence_prose_and_trailing_commas(self):
        raw = 'Here you go:\n```json\n{"a": [1, 2,],}\n```\nThanks'
        result = parse(raw)
        assert result.data == {"a": [1, 2]}
        assert result.repairs == ["strip_code_fences", "remove_trailing_commas"]

    @pytest.mark.unit
    def test_comments(self):
        result = parse('{\n  // the name\n  "name": "x" /* inline */\n}')
        assert result.data == {"name": "x"}
        assert result.repairs == ["remove_comments"]

    @pytest.mark.unit
    def test_single_quotes(self):
        result = parse("{'name': 'Dashboard', 'path': '/'}")
        assert result.data == {"name": "Dashboard", "path": "/"}
        assert result.repairs == ["convert_single_quotes"]

    @pytest.mark.unit
    def test_prose_before_json_with_fenced_file_content(self):
        files = {"files": [{"path": "README.md", "content": "# App\n```bash\nnpm i\n```\n"}]}
        result = parse("Here are the files:\n" + json.dumps(files))
        assert result.success is True
        assert result.data == files
        assert result.repairs == ["extract_json_block"]

    @pytest.mark.unit
    def test_single_quoted_url_survives(self):
        result = parse("{'homepage': 'https://example.com', 'name': 'x'}")
        assert result.data == {"homepage": "https://example.com", "name": "x"}
        assert result.repairs == ["convert_single_quotes"]

    @pytest.mark.unit
    def test_truncated_inside_string(self):
        raw = '{"files": [{"path": "a.ts", "content": "x"}, {"path": "b.ts", "content": "unfinis'
        result = parse(raw)
        assert result.success is True
        assert result.repairs == ["close_unterminated_string", "truncate_to_valid_prefix"]
        assert [f["path"] for f in result.data["files"]] == ["a.ts", "b.ts"]
        assert result.data["files"][1]["content"] == "unfinis"

    @pytest.mark.unit
    def test_truncated_after_element(self):
        result = parse('{"a": 1, "b": [1, 2')
        assert result.data == {"a": 1, "b": [1, 2]}
        assert result.repairs == ["truncate_to_valid_prefix"]

    @pytest.mark.unit
    def test_truncated_mid_key_drops_partial_member(self):
        result = parse('{"a": 1, "b')
        assert result.data == {"a": 1}
        assert result.repairs == ["close_unterminated_string", "truncate_to_valid_prefix"]

    @pytest.mark.unit
    def test_unmatched_closer(self):
        result = parse('{"a": [1, 2]]}')
        assert result.data == {"a": [1, 2]}
        assert "truncate_to_valid_prefix" in result.repairs

    @pytest.mark.unit
    def test_repairs_name_only_changing_steps(self):
        result = parse('{"a": 1,}')
        assert result.repairs == ["remove_trailing_commas"]


class TestParseFailure:
    @pytest.mark.unit
    def test_no_json_at_all(self):
        result = parse("no json here at all")
        assert result.success is False
        assert "line 1 column 1" in result.error
        assert result.error_offset == 0

    @pytest.mark.unit
    def test_diagnostic_has_position(self):
        result = parse('{"a": 1 "b": 2}')
        assert result.success is False
        assert result.repairs == []
        assert "line 1 column 9" in result.error
        assert result.error_offset == 8


# ---------------------------------------------------------------------------
# Individual steps
# ---------------------------------------------------------------------------


class TestSteps:
    @pytest.mark.unit
    def test_strip_code_fences_without_fence(self):
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    @pytest.mark.unit
    def test_strip_code_fences_unclosed(self):
        assert strip_code_fences('```json\n{"a": 1}') == '{"a": 1}'

    @pytest.mark.unit
    def test_extract_skips_nested_blocks(self):
        text = 'Result: {"pages": [1, 2], "x": 1,} done'
        assert extract_json_block(text) == '{"pages": [1, 2], "x": 1,}'

    @pytest.mark.unit
    def test_extract_prefers_parseable_later_block(self):
        assert extract_json_block('use [brackets like this] {"a": 1}') == '{"a": 1}'

    @pytest.mark.unit
    def test_remove_comments_keeps_urls_in_strings(self):
        text = '{"url": "https://example.com"} // trailing'
        assert remove_comments(text) == '{"url": "https://example.com"} '

    @pytest.mark.unit
    def test_strip_code_fences_ignores_fence_inside_value(self):
        text = 'Files: {"content": "```js\\nx\\n```"}'
        assert strip_code_fences(text) == text

    @pytest.mark.unit
    def test_remove_comments_skips_single_quoted_strings(self):
        assert remove_comments("{'url': 'https://a.io'}") == "{'url': 'https://a.io'}"

    @pytest.mark.unit
    def test_remove_trailing_commas_ignores_strings(self):
        assert remove_trailing_commas('{"a": ",}"}') == '{"a": ",}"}'

    @pytest.mark.unit
    def test_convert_single_quotes_escapes_double_quotes(self):
        assert convert_single_quotes("{'a': 'say \"hi\"'}") == '{"a": "say \\"hi\\""}'

    @pytest.mark.unit
    def test_convert_single_quotes_leaves_apostrophes_in_double_quotes(self):
        text = '{"a": "it\'s fine"}'
        assert convert_single_quotes(text) == text

    @pytest.mark.unit
    def test_close_unterminated_string(self):
        assert close_unterminated_string('{"a": "abc') == '{"a": "abc"'
        assert close_unterminated_string('{"a": "abc"}') == '{"a": "abc"}'

    @pytest.mark.unit
    def test_truncate_drops_text_after_value(self):
        assert truncate_to_valid_prefix('{"a": 1} trailing') == '{"a": 1}'
