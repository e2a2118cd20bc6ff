"""
Tests for the tool invocation normalizer.
"""

import json

import pytest

from trace_extractor.parsers.tool_calls import (
    UNIDENTIFIED_TOOL,
    UNKNOWN_TOOL,
    infer_tool_name_from_parameters,
    infer_tool_name_from_raw,
    is_edit_tool,
    normalize_tool_invocation,
    parse_arguments,
    recover_edit_strings,
)

DIFF_RESULT = {
    "diff": {
        "chunks": [
            {
                "diffString": (
                    "@@ -1,3 +1,3 @@\n"
                    " def login(token):\n"
                    "-    if token:\n"
                    "+    if not token:\n"
                    "\\ No newline at end of file"
                )
            }
        ]
    }
}


class TestParseArguments:
    """Tests for the argument fallback chain."""

    def test_mapping_is_used_as_is(self):
        """Test that an already-decoded mapping is passed through."""
        result = parse_arguments({"command": "ls"})

        assert result.method == "mapping"
        assert result.parameters == {"command": "ls"}
        assert result.is_structured

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_arguments(self, raw):
        """Test that missing arguments yield an empty mapping."""
        result = parse_arguments(raw)

        assert result.method == "empty"
        assert result.parameters == {}
        assert not result.is_structured

    def test_strict_json(self):
        """Test that a JSON object string is decoded."""
        result = parse_arguments('{"target_file": "a.py", "limit": 10}')

        assert result.method == "json"
        assert result.parameters == {"target_file": "a.py", "limit": 10}
        assert result.error is None

    def test_truncated_json_falls_back_to_pairs(self):
        """Test best-effort pair extraction from truncated JSON."""
        raw = '{"file_path": "a.py", "content": "unterminated'
        result = parse_arguments(raw)

        assert result.method == "pairs"
        assert result.parameters == {"file_path": "a.py"}
        assert result.error is not None
        assert result.raw == raw

    def test_pairs_unescape_values(self):
        """Test that escaped characters in recovered pairs are decoded."""
        result = parse_arguments('{"content": "a\\nb", "file_path": "x.py"')

        assert result.method == "pairs"
        assert result.parameters == {"content": "a\nb", "file_path": "x.py"}

    def test_unparseable_string_is_wrapped(self):
        """Test that an unparseable string is wrapped under rawArgs."""
        result = parse_arguments("ls -la /tmp")

        assert result.method == "raw"
        assert result.parameters == {"rawArgs": "ls -la /tmp"}
        assert not result.is_structured

    def test_json_array_is_not_an_object(self):
        """Test that JSON that is not an object is treated as raw."""
        result = parse_arguments("[1, 2, 3]")

        assert result.method == "raw"
        assert result.parameters == {"rawArgs": "[1, 2, 3]"}
        assert "JSON object" in result.error


class TestNameInference:
    """Tests for tool name inference rules."""

    @pytest.mark.parametrize(
        "parameters,expected",
        [
            ({"file_path": "a", "old_string": "x", "new_string": "y"}, "search_replace"),
            ({"target_file": "a", "new_string": "y"}, "search_replace"),
            ({"path": "a", "content": "x"}, "write_file"),
            ({"target_file": "a"}, "read_file"),
            ({"content": "x"}, "write_file"),
            ({"command": "ls"}, "run_terminal_cmd"),
            ({"pattern": "TODO"}, "grep_search"),
            ({"query": "auth"}, "grep_search"),
            ({"relative_workspace_path": "src"}, "list_dir"),
            ({"something": "else"}, None),
            ({}, None),
        ],
    )
    def test_infer_from_parameters(self, parameters, expected):
        """Test inference from parameter shape."""
        assert infer_tool_name_from_parameters(parameters) == expected

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("file_path=a.py old_string=x", "search_replace"),
            ("target_file=a.py", "read_file"),
            ('{"path": "a", "content', "write_file"),
            ("run command ls", "run_terminal_cmd"),
            ("query for auth", "grep_search"),
            ("relative_workspace_path=src", "list_dir"),
            ("nothing useful", None),
        ],
    )
    def test_infer_from_raw(self, raw, expected):
        """Test inference by substring match on raw arguments."""
        assert infer_tool_name_from_raw(raw) == expected

    @pytest.mark.parametrize("name", ["edit", "Edit", "edit_file", "search_replace", "MultiEdit"])
    def test_is_edit_tool(self, name):
        """Test edit tool detection is case-insensitive."""
        assert is_edit_tool(name)

    def test_read_is_not_edit_tool(self):
        assert not is_edit_tool("read_file")


class TestNormalizeToolInvocation:
    """Tests for full normalization of tool records."""

    def test_explicit_name(self):
        """Test that an explicit name wins over inference."""
        call = normalize_tool_invocation(
            {"name": "codebase_search", "rawArgs": '{"target_file": "a.py"}'}
        )

        assert call.tool_name == "codebase_search"
        assert call.name_source == "explicit"
        assert call.parameters == {"target_file": "a.py"}

    @pytest.mark.parametrize("field", ["tool", "toolName", "tool_name"])
    def test_name_aliases(self, field):
        """Test that every name alias is honoured."""
        call = normalize_tool_invocation({field: "list_dir"})

        assert call.tool_name == "list_dir"

    @pytest.mark.parametrize("field", ["raw_args", "arguments", "params", "args"])
    def test_argument_aliases(self, field):
        """Test that every raw argument alias is honoured."""
        call = normalize_tool_invocation({field: '{"command": "pwd"}'})

        assert call.tool_name == "run_terminal_cmd"
        assert call.parameters == {"command": "pwd"}

    def test_sentinel_name_triggers_inference(self):
        """Test that an 'unknown' sentinel does not count as a name."""
        call = normalize_tool_invocation({"name": "unknown", "rawArgs": '{"command": "ls"}'})

        assert call.tool_name == "run_terminal_cmd"
        assert call.name_source == "parameters"

    def test_sentinel_without_evidence_is_unknown(self):
        """Test that an explicit sentinel falls back to unknown_tool."""
        call = normalize_tool_invocation({"name": "unknown_tool"})

        assert call.tool_name == UNKNOWN_TOOL
        assert call.name_source == "fallback"

    def test_no_name_at_all_is_unidentified(self):
        """Test that a record with no name falls back to unidentified_tool."""
        call = normalize_tool_invocation({"status": "completed"})

        assert call.tool_name == UNIDENTIFIED_TOOL

    @pytest.mark.parametrize("record", [None, "read_file", 42, []])
    def test_non_mapping_record(self, record):
        """Test that non-mapping records never raise."""
        call = normalize_tool_invocation(record)

        assert call.tool_name == UNIDENTIFIED_TOOL
        assert call.parameters == {}

    def test_inference_from_raw_string(self):
        """Test inference when arguments could not be parsed at all."""
        call = normalize_tool_invocation({"rawArgs": "target_file=foo.py"})

        assert call.tool_name == "read_file"
        assert call.name_source == "raw_args"
        assert call.parameters == {"rawArgs": "target_file=foo.py"}

    def test_structured_parameters_skip_raw_inference(self):
        """Test that parsed parameters without a known shape stay unidentified."""
        call = normalize_tool_invocation({"rawArgs": '{"foo": "command"}'})

        assert call.tool_name == UNIDENTIFIED_TOOL

    def test_truncated_arguments_still_infer(self):
        """Test inference from pairs recovered out of truncated JSON."""
        call = normalize_tool_invocation(
            {"rawArgs": '{"target_file": "a.py", "old_string": "x", "new_string": "y'}
        )

        assert call.tool_name == "search_replace"
        assert call.parameters["target_file"] == "a.py"
        assert call.parameters["old_string"] == "x"


class TestDiffRecovery:
    """Tests for rebuilding edit strings from diff results."""

    def test_recover_edit_strings(self):
        """Test bucketing removed, added and context lines."""
        assert recover_edit_strings(DIFF_RESULT) == (
            "def login(token):\n   if token:",
            "def login(token):\n   if not token:",
        )

    def test_recover_from_json_string(self):
        """Test that a JSON-encoded result is decoded first."""
        assert recover_edit_strings(json.dumps(DIFF_RESULT)) == recover_edit_strings(
            DIFF_RESULT
        )

    def test_marker_and_one_space_removed(self):
        """Test that only the marker and a single following space are dropped."""
        result = {"diff": {"chunks": [{"diffString": "- a\n+  b"}]}}

        assert recover_edit_strings(result) == ("a", " b")

    def test_blank_context_lines_are_kept(self):
        """Test that empty lines inside a hunk count as context."""
        result = {"diff": {"chunks": [{"diffString": "@@ -1,3 +1,3 @@\n a\n\n-b\n+c\n"}]}}

        assert recover_edit_strings(result) == ("a\n\nb", "a\n\nc")

    @pytest.mark.parametrize(
        "result",
        [None, "not json", {}, {"diff": {}}, {"diff": {"chunks": []}}, {"diff": {"chunks": [{}]}}],
    )
    def test_no_diff_lines(self, result):
        """Test that results without diff lines yield None."""
        assert recover_edit_strings(result) is None

    def test_edit_tool_gets_recovered_strings(self):
        """Test that normalization fills in old/new strings for edit tools."""
        call = normalize_tool_invocation(
            {
                "name": "edit_file",
                "rawArgs": '{"target_file": "auth.py"}',
                "result": json.dumps(DIFF_RESULT),
            }
        )

        assert call.parameters["target_file"] == "auth.py"
        assert call.parameters["old_string"] == "def login(token):\n   if token:"
        assert call.parameters["new_string"] == "def login(token):\n   if not token:"

    def test_existing_strings_are_kept(self):
        """Test that explicit old/new strings are not overwritten."""
        call = normalize_tool_invocation(
            {
                "name": "search_replace",
                "rawArgs": '{"file_path": "a", "old_string": "x", "new_string": "y"}',
                "result": DIFF_RESULT,
            }
        )

        assert call.parameters["old_string"] == "x"
        assert call.parameters["new_string"] == "y"

    def test_non_edit_tool_is_untouched(self):
        """Test that diff recovery only applies to edit tools."""
        call = normalize_tool_invocation({"name": "read_file", "result": DIFF_RESULT})

        assert "old_string" not in call.parameters
