"""
Tool invocation normalizer.

Bubble tool records come in several shapes depending on the model and
client version that produced them: the tool name may live under different
keys or be missing, arguments may be a JSON string, a truncated string or
already a mapping, and edit tools sometimes report only the applied diff.
This module resolves every record to a canonical (tool name, parameters)
pair through an ordered chain of pure inference steps. It never raises.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from trace_extractor.parsers.utils import load_json, safe_get_nested

logger = logging.getLogger(__name__)

TOOL_NAME_FIELDS = ("name", "tool", "toolName", "tool_name")
RAW_ARGUMENT_FIELDS = ("rawArgs", "raw_args", "arguments", "params", "args")

UNKNOWN_TOOL_SENTINELS = frozenset({"unknown_tool", "unknown"})
UNKNOWN_TOOL = "unknown_tool"  # The record explicitly said it did not know
UNIDENTIFIED_TOOL = "unidentified_tool"  # The record carried no name at all

PATH_PARAMETERS = ("file_path", "path", "target_file")
EDIT_TOOL_NAMES = frozenset(
    {"edit", "edit_file", "search_replace", "multiedit", "str_replace"}
)

QUOTED_PAIR_PATTERN = re.compile(r'"([^"\\]+)"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)


@dataclass
class ArgumentsParse:
    """
    Outcome of resolving a tool record's raw arguments.

    Attributes:
        parameters: Resulting parameter mapping (always a dict)
        method: Which tier produced it: 'empty', 'mapping', 'json', 'pairs'
                or 'raw'
        raw: The raw argument string, when there was one
        error: Why strict JSON decoding failed, when it did
    """

    parameters: dict
    method: str
    raw: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_structured(self) -> bool:
        """True when parameters reflect real argument keys."""
        return self.method in ("mapping", "json", "pairs")


@dataclass
class NormalizedToolCall:
    """Canonical view of a tool invocation record."""

    tool_name: str
    parameters: dict
    arguments: ArgumentsParse
    name_source: str  # 'explicit', 'parameters', 'raw_args', 'fallback'


def _parse_json_object(raw: str) -> tuple[Optional[dict], Optional[str]]:
    value, error = load_json(raw)
    if error is not None:
        return None, error
    if not isinstance(value, dict):
        return None, f"expected a JSON object, got {type(value).__name__}"
    return value, None


def _unescape_json_string(value: str) -> str:
    decoded, error = load_json(f'"{value}"')
    return decoded if error is None and isinstance(decoded, str) else value


def _extract_quoted_pairs(raw: str) -> Optional[dict]:
    pairs = {
        match.group(1): _unescape_json_string(match.group(2))
        for match in QUOTED_PAIR_PATTERN.finditer(raw)
    }
    return pairs or None


def parse_arguments(raw_args: Any) -> ArgumentsParse:
    """
    Resolve raw tool arguments to a parameter mapping.

    Tiers, in order:
    1. A mapping is used as-is
    2. Strict JSON object decoding
    3. Best-effort extraction of quoted "key": "value" pairs
    4. The raw string wrapped as {"rawArgs": raw}

    Args:
        raw_args: Raw argument payload from the tool record

    Returns:
        ArgumentsParse describing the parameters and the tier that produced them
    """
    if isinstance(raw_args, Mapping):
        return ArgumentsParse(parameters=dict(raw_args), method="mapping")

    if not isinstance(raw_args, str) or not raw_args.strip():
        return ArgumentsParse(parameters={}, method="empty")

    parameters, error = _parse_json_object(raw_args)
    if parameters is not None:
        return ArgumentsParse(parameters=parameters, method="json", raw=raw_args)

    pairs = _extract_quoted_pairs(raw_args)
    if pairs is not None:
        logger.debug("Recovered %d argument pair(s) from malformed JSON", len(pairs))
        return ArgumentsParse(parameters=pairs, method="pairs", raw=raw_args, error=error)

    return ArgumentsParse(
        parameters={"rawArgs": raw_args}, method="raw", raw=raw_args, error=error
    )


def infer_tool_name_from_parameters(parameters: Mapping[str, Any]) -> Optional[str]:
    """Infer a tool name from the shape of a parameter mapping."""
    has_path = any(name in parameters for name in PATH_PARAMETERS)

    if has_path:
        if "old_string" in parameters or "new_string" in parameters:
            return "search_replace"
        if "content" in parameters:
            return "write_file"
        return "read_file"
    if "content" in parameters:
        return "write_file"
    if "command" in parameters:
        return "run_terminal_cmd"
    if "pattern" in parameters or "query" in parameters:
        return "grep_search"
    if "relative_workspace_path" in parameters:
        return "list_dir"
    return None


def infer_tool_name_from_raw(raw_args: str) -> Optional[str]:
    """Infer a tool name by looking for parameter names inside a raw argument string."""
    has_path = "file_path" in raw_args or "target_file" in raw_args or '"path"' in raw_args

    if has_path:
        if "old_string" in raw_args or "new_string" in raw_args:
            return "search_replace"
        if "content" in raw_args:
            return "write_file"
        return "read_file"
    if '"content"' in raw_args:
        return "write_file"
    if "command" in raw_args:
        return "run_terminal_cmd"
    if "pattern" in raw_args or "query" in raw_args:
        return "grep_search"
    if "relative_workspace_path" in raw_args:
        return "list_dir"
    return None


def _explicit_tool_name(record: Mapping[str, Any]) -> tuple[Optional[str], bool]:
    """Return (explicit name, whether an 'unknown' sentinel was seen)."""
    saw_sentinel = False
    for field_name in TOOL_NAME_FIELDS:
        value = record.get(field_name)
        if not isinstance(value, str) or not value.strip():
            continue
        if value in UNKNOWN_TOOL_SENTINELS:
            saw_sentinel = True
            continue
        return value, saw_sentinel
    return None, saw_sentinel


def _raw_arguments(record: Mapping[str, Any]) -> Any:
    for field_name in RAW_ARGUMENT_FIELDS:
        value = record.get(field_name)
        if value is not None and value != "":
            return value
    return None


def is_edit_tool(tool_name: str) -> bool:
    return tool_name.lower() in EDIT_TOOL_NAMES


def _strip_diff_marker(line: str) -> str:
    stripped = line[1:]
    return stripped[1:] if stripped.startswith(" ") else stripped


def recover_edit_strings(result: Any) -> Optional[tuple[str, str]]:
    """
    Rebuild before/after strings from a diff-chunk tool result.

    Walks `diff.chunks[*].diffString` line by line: removed lines go to the
    old text, added lines to the new text, and context lines to both. The
    marker character and one following space are dropped.

    Args:
        result: Tool result as a mapping or a JSON string

    Returns:
        (old_string, new_string), or None when the result carries no diff lines
    """
    data = result
    if isinstance(result, str):
        data, error = load_json(result)
        if error is not None:
            return None

    chunks = safe_get_nested(data, "diff", "chunks") if isinstance(data, dict) else None
    if not isinstance(chunks, list):
        return None

    old_lines: list[str] = []
    new_lines: list[str] = []

    for chunk in chunks:
        diff_string = chunk.get("diffString") if isinstance(chunk, dict) else None
        if not isinstance(diff_string, str):
            continue

        lines = diff_string.split("\n")
        if lines and lines[-1] == "":
            lines.pop()

        for line in lines:
            if line.startswith("@@") or line.startswith("\\"):
                continue
            if line.startswith("-"):
                old_lines.append(_strip_diff_marker(line))
            elif line.startswith("+"):
                new_lines.append(_strip_diff_marker(line))
            else:
                context = _strip_diff_marker(line) if line.startswith(" ") else line
                old_lines.append(context)
                new_lines.append(context)

    if not old_lines and not new_lines:
        return None

    return "\n".join(old_lines), "\n".join(new_lines)


def normalize_tool_invocation(record: Any) -> NormalizedToolCall:
    """
    Resolve a heterogeneous tool record to a canonical name and parameters.

    Tool name resolution:
    1. Explicit name under any known alias (ignoring 'unknown' sentinels)
    2. Inference from the parsed parameter shape
    3. Inference from the raw argument string, when parameters were unavailable
    4. UNKNOWN_TOOL if a sentinel was seen, else UNIDENTIFIED_TOOL

    Edit-type tools without old/new strings get them rebuilt from a
    diff-chunk result when one is present.

    Args:
        record: Tool invocation record from a bubble (any shape)

    Returns:
        NormalizedToolCall; never raises

    Example:
        >>> call = normalize_tool_invocation(
        ...     {"rawArgs": '{"file_path": "a.ts", "old_string": "x", "new_string": "y"}'}
        ... )
        >>> call.tool_name, call.parameters["new_string"]
        ('search_replace', 'y')
    """
    if not isinstance(record, Mapping):
        record = {}

    arguments = parse_arguments(_raw_arguments(record))
    parameters = dict(arguments.parameters)

    tool_name, saw_sentinel = _explicit_tool_name(record)
    name_source = "explicit"

    if tool_name is None and arguments.is_structured:
        tool_name = infer_tool_name_from_parameters(parameters)
        name_source = "parameters"

    if tool_name is None and not arguments.is_structured and arguments.raw:
        tool_name = infer_tool_name_from_raw(arguments.raw)
        name_source = "raw_args"

    if tool_name is None:
        tool_name = UNKNOWN_TOOL if saw_sentinel else UNIDENTIFIED_TOOL
        name_source = "fallback"
        logger.debug("Could not infer tool name; using %s", tool_name)

    if (
        is_edit_tool(tool_name)
        and "old_string" not in parameters
        and "new_string" not in parameters
    ):
        recovered = recover_edit_strings(record.get("result"))
        if recovered is not None:
            parameters["old_string"], parameters["new_string"] = recovered

    return NormalizedToolCall(
        tool_name=tool_name,
        parameters=parameters,
        arguments=arguments,
        name_source=name_source,
    )
