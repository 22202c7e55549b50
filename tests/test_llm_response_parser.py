"""Tests for phaseflow/llm/response_parser.py."""

from phaseflow.llm.response_parser import (
    extract_code_blocks,
    extract_file_paths,
    extract_json_block,
    extract_test_counts,
    normalize_error_signature,
    parse_structured_result,
)
from tests.conftest import PASSING_TEXT


class TestCodeBlocks:
    def test_any_language(self):
        text = "```python\nx = 1\n```\nand\n```\nplain\n```"
        assert extract_code_blocks(text) == ["x = 1", "plain"]

    def test_language_filter(self):
        text = "```python\nx = 1\n```\n```json\n{}\n```"
        assert extract_code_blocks(text, "json") == ["{}"]

    def test_none(self):
        assert extract_code_blocks("no code here") == []


class TestJson:
    def test_fenced_block(self):
        assert extract_json_block('Result:\n```json\n{"completed": true}\n```') == {"completed": True}

    def test_raw_text(self):
        assert extract_json_block('  {"a": 1}  ') == {"a": 1}

    def test_list_is_not_an_object(self):
        assert extract_json_block("[1, 2]") is None

    def test_invalid(self):
        assert extract_json_block("{not json") is None


class TestStructuredResult:
    def test_parsed(self):
        result = parse_structured_result('{"completed": true, "files_touched": ["a.py"], "extra": 1}')
        assert result.completed is True
        assert result.files_touched == ["a.py"]

    def test_unrelated_json(self):
        assert parse_structured_result('{"status": "ok"}') is None

    def test_invalid_field_types(self):
        assert parse_structured_result('{"completed": "maybe"}') is None


class TestFilePaths:
    def test_paths_on_change_lines(self):
        assert extract_file_paths(PASSING_TEXT) == ["src/app/login.py", "src/app/routes.py"]

    def test_lines_without_change_verb_ignored(self):
        assert extract_file_paths("See docs/guide.md for details") == []

    def test_deduplicated(self):
        assert extract_file_paths("Updated README.md\nEdited README.md again") == ["README.md"]


class TestTestCounts:
    def test_passed_and_failed(self):
        assert extract_test_counts("5 passed, 1 failed") == (5, 1)

    def test_passed_only(self):
        assert extract_test_counts("3 tests passed") == (3, 0)

    def test_none(self):
        assert extract_test_counts("all good") is None


class TestErrorSignature:
    def test_paths_lines_and_timestamps_stripped(self):
        sig = normalize_error_signature("Error at /tmp/x.py line 12   2026-01-01 10:00:00")
        assert sig == "Error at <PATH> line <N> <TIMESTAMP>"

    def test_same_failure_same_signature(self):
        a = normalize_error_signature("missing completion marker at /a/b.py line 3")
        b = normalize_error_signature("missing completion marker at /c/d.py line 99")
        assert a == b
