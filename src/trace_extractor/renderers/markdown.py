"""
Markdown renderer for reconstructed conversations.

Produces a readable transcript: a header with conversation metadata, then
one section per logical message. Assistant sections show thinking in
collapsible blocks, one line per tool call with result details, and the
response text with tool and thinking markup removed.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from trace_extractor.models.parsed import (
    SOURCE_CLINE,
    UNTITLED_CONVERSATION,
    Conversation,
    LogicalMessage,
    ToolCall,
)
from trace_extractor.parsers.content import (
    FUNCTION_CALLS_PATTERN,
    FUNCTION_RESULTS_PATTERN,
    THINKING_PATTERN,
)
from trace_extractor.parsers.timestamps import epoch_ms_to_datetime
from trace_extractor.parsers.tool_calls import UNIDENTIFIED_TOOL, UNKNOWN_TOOL
from trace_extractor.parsers.utils import coerce_epoch_ms, load_json

logger = logging.getLogger(__name__)

GENERATOR_COMMENT = "<!-- Generated by Trace Extractor -->"
MESSAGE_SEPARATOR = "---"

FILE_PREVIEW_LIMIT = 500
SEARCH_MATCH_LIMIT = 10
GENERIC_RESULT_MIN_LENGTH = 50
PLAIN_RESULT_MIN_LENGTH = 10
FILENAME_TITLE_LIMIT = 50
CHECKPOINT_HASH_LENGTH = 8

READ_TOOLS = {"read", "read_file"}
WRITE_TOOLS = {"write", "write_file"}
EDIT_TOOLS = {"edit", "edit_file", "multiedit", "search_replace"}
LIST_TOOLS = {"ls", "list_directory", "list_dir"}
COMMAND_TOOLS = {"bash", "run_terminal_cmd", "terminal"}
SEARCH_TOOLS = {"codebase_search", "search", "grep", "grep_search"}
GLOB_TOOLS = {"glob", "file_search"}

_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def _first_param(params: dict, *names: str) -> Optional[str]:
    for name in names:
        value = params.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def _basename(path: str) -> str:
    return path.rstrip("/").split("/")[-1] or path


def _with_explanation(description: str, params: dict) -> str:
    explanation = params.get("explanation")
    if isinstance(explanation, str) and explanation:
        return f"{description} - {explanation}"
    return description


def _humanize(tool_name: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), tool_name.replace("_", " "))


def format_code_diff(old_string: Any, new_string: Any) -> Optional[str]:
    """
    Render an edit as a fenced diff block, interleaving removed and added lines.

    Returns None unless both strings are non-empty.
    """
    if not isinstance(old_string, str) or not isinstance(new_string, str):
        return None
    if not old_string or not new_string:
        return None

    old_lines = old_string.split("\n")
    new_lines = new_string.split("\n")

    lines = ["---", "```diff"]
    for index in range(max(len(old_lines), len(new_lines))):
        if index < len(old_lines):
            lines.append(f"- {old_lines[index]}")
        if index < len(new_lines):
            lines.append(f"+ {new_lines[index]}")
    lines.extend(["```", "---"])

    return "\n".join(lines)


def _describe_unknown(tool_call: ToolCall) -> str:
    description = "Unknown Tool"
    if tool_call.status:
        return f"{description} ({tool_call.status})"

    record, error = load_json(tool_call.raw_content) if tool_call.raw_content else (None, None)
    if isinstance(record, dict):
        additional = record.get("additionalData")
        if isinstance(additional, dict) and additional.get("status") == "error":
            return f"{description} (execution failed)"
        if record.get("status"):
            return f"{description} ({record['status']})"
    elif error is not None and "error" in tool_call.raw_content:
        return f"{description} (error)"

    return f"{description} (no data available)"


def describe_tool_call(tool_call: ToolCall) -> str:
    """
    One-line description of a tool call.

    Edit calls with both old and new strings are followed by a diff block.

    Example:
        >>> describe_tool_call(ToolCall("run_terminal_cmd", {"command": "ls -la"}))
        'Run command: `ls -la`'
        >>> describe_tool_call(ToolCall("fetch_rules", {}))
        'Fetch Rules'
    """
    tool_name = tool_call.tool_name or ""
    params = tool_call.parameters if isinstance(tool_call.parameters, dict) else {}
    key = tool_name.lower()

    if key in READ_TOOLS:
        path = _first_param(params, "target_file", "file_path", "path")
        if path is None:
            return "Read file"
        return _with_explanation(f"Read file: `{_basename(path)}`", params)

    if key in WRITE_TOOLS:
        path = _first_param(params, "file_path", "path", "target_file")
        if path is None:
            return "Write file"
        return _with_explanation(f"Write file: `{_basename(path)}`", params)

    if key in EDIT_TOOLS:
        path = _first_param(params, "file_path", "path", "target_file")
        if path is None:
            return "Edit file"
        description = _with_explanation(f"Edit file: `{_basename(path)}`", params)
        diff = format_code_diff(params.get("old_string"), params.get("new_string"))
        return f"{description}\n\n{diff}" if diff else description

    if key in LIST_TOOLS:
        path = _first_param(params, "path", "relative_workspace_path")
        if path is None:
            return "List directory"
        return _with_explanation(f"List directory: `{_basename(path)}`", params)

    if key in COMMAND_TOOLS:
        command = _first_param(params, "command")
        if command is None:
            return "Run command"
        return _with_explanation(f"Run command: `{command}`", params)

    if key in SEARCH_TOOLS:
        query = _first_param(params, "query", "pattern", "regex")
        if query is None:
            return "Search"
        description = f"Search: `{query}`"
        include = _first_param(params, "include_pattern", "filePattern", "file_pattern")
        if include:
            description += f" in `{include}`"
        return _with_explanation(description, params)

    if key in GLOB_TOOLS:
        pattern = _first_param(params, "pattern", "query")
        if pattern is None:
            return "Find files"
        return _with_explanation(f"Find files: `{pattern}`", params)

    if key == "task":
        description = _first_param(params, "description")
        return f"Task: {description}" if description else "Execute task"

    if key == "webfetch":
        url = _first_param(params, "url")
        return f"Fetch: {url}" if url else "Web fetch"

    if not tool_name or tool_name in (UNKNOWN_TOOL, UNIDENTIFIED_TOOL):
        return _with_explanation(_describe_unknown(tool_call), params)

    return _with_explanation(_humanize(tool_name), params)


def _details(summary: str, body: str, language: str = "") -> str:
    return f"<details>\n<summary>{summary}</summary>\n\n```{language}\n{body}\n```\n\n</details>"


def format_directory_listing(result: str, params: dict) -> Optional[str]:
    """Render a plain-text directory listing as a collapsible table."""
    items: list[tuple[str, bool]] = []
    for line in result.split("\n"):
        entry = line.strip()
        if not entry or entry.startswith("Listed"):
            continue
        if entry.startswith("- "):
            entry = entry[2:].strip()
        is_directory = entry.endswith("/") or "." not in _basename(entry)
        items.append((_basename(entry), is_directory))

    if not items:
        return None

    path = _first_param(params, "path", "relative_workspace_path")
    if path is None:
        directory = "directory"
    elif path == ".":
        directory = "current directory"
    else:
        directory = path

    lines = [
        "<details>",
        f"<summary>Listed {directory} • **{len(items)}** results</summary>",
        "",
        "| Name |",
        "|-------|",
    ]
    for name, is_directory in items:
        emoji = "📁" if is_directory else "📄"
        lines.append(f"| {emoji} `{name}` |")
    lines.extend(["", "</details>"])

    return "\n".join(lines)


def _decode_result(result: Any) -> tuple[Any, bool]:
    """Return (value, decoded) where decoded is False for plain text results."""
    if isinstance(result, (dict, list)):
        return result, True
    if isinstance(result, str):
        value, error = load_json(result)
        if error is None:
            return value, True
    return result, False


def _file_preview(contents: str) -> str:
    preview = contents
    if len(contents) > FILE_PREVIEW_LIMIT:
        preview = contents[: FILE_PREVIEW_LIMIT - 3] + "..."
    return _details(f"📄 File Content ({len(contents)} chars)", preview)


def format_tool_result(tool_call: ToolCall) -> Optional[str]:
    """
    Render the result attached to a tool call, if any.

    Command output and errors, file previews, search matches and directory
    listings get dedicated layouts; other structured results are shown as
    JSON when they are long enough to be worth showing.
    """
    if not tool_call.result:
        return None

    tool_name = tool_call.tool_name
    params = tool_call.parameters if isinstance(tool_call.parameters, dict) else {}
    result, decoded = _decode_result(tool_call.result)

    if not decoded:
        plain = str(result)
        if not plain.strip() or len(plain) <= PLAIN_RESULT_MIN_LENGTH:
            return None
        if tool_name == "list_dir":
            return format_directory_listing(plain, params)
        if tool_name == "run_terminal_cmd":
            return _details("📤 Command Output", plain)
        if tool_name == "read_file":
            return _file_preview(plain)
        return _details("📋 Result", plain)

    data = result if isinstance(result, dict) else {}

    if tool_name == "run_terminal_cmd":
        output = data.get("contents") or data.get("output")
        if output:
            return _details("📤 Command Output", str(output))
        if data.get("error"):
            return _details("❌ Command Error", str(data["error"]))
        return None

    if tool_name == "read_file":
        contents = data.get("contents")
        if not isinstance(contents, str) or not contents:
            return None
        return _file_preview(contents)

    if tool_name == "grep_search":
        matches = data.get("matches") or data.get("results")
        if not isinstance(matches, list):
            return None
        shown = "\n".join(
            m if isinstance(m, str) else json.dumps(m, ensure_ascii=False)
            for m in matches[:SEARCH_MATCH_LIMIT]
        )
        return _details(f"🔍 Search Results ({len(matches)} matches)", shown)

    rendered = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    if len(rendered) > GENERIC_RESULT_MIN_LENGTH:
        return _details("📋 Result", rendered, language="json")
    return None


def format_thinking_blocks(thinking_blocks: list[str]) -> str:
    sections = [
        "<think>\n<details>\n<summary>🤔 Thinking</summary>\n\n"
        f"{thinking.strip()}\n\n</details>\n</think>"
        for thinking in thinking_blocks
        if thinking and thinking.strip()
    ]
    return "\n\n".join(sections)


def clean_message_text(text: str) -> str:
    """Strip tool markup and thinking segments, collapsing blank runs."""
    text = FUNCTION_CALLS_PATTERN.sub("", text or "")
    text = FUNCTION_RESULTS_PATTERN.sub("", text)
    text = THINKING_PATTERN.sub("", text)
    return _EXCESS_NEWLINES.sub("\n\n", text).strip()


def _render_user_message(message: LogicalMessage) -> list[str]:
    text = FUNCTION_CALLS_PATTERN.sub("", message.text or "")
    text = FUNCTION_RESULTS_PATTERN.sub("", text).strip()
    parts = ["## 👤 User", text] if text else ["## 👤 User"]

    if message.attachments:
        files = "\n".join(f"- {path}" for path in message.attachments)
        parts.append(f"**Files:**\n{files}")

    return parts


def _render_assistant_message(message: LogicalMessage) -> list[str]:
    parts = ["## 🤖 Assistant"]

    thinking = format_thinking_blocks(message.thinking_blocks)
    if thinking:
        parts.append(thinking)

    for tool_call in message.tool_calls:
        description = describe_tool_call(tool_call).strip() or "Tool execution"
        parts.append(f"📋 {description}")

        result = format_tool_result(tool_call)
        if result:
            parts.append(result)

    text = clean_message_text(message.text)
    if text:
        parts.append(text)

    if message.checkpoint_hash:
        parts.append(f"*Checkpoint: {message.checkpoint_hash[:CHECKPOINT_HASH_LENGTH]}*")

    cost = message.usage.get("cost") if isinstance(message.usage, dict) else None
    if cost:
        tokens_in = message.usage.get("tokensIn", 0)
        tokens_out = message.usage.get("tokensOut", 0)
        parts.append(f"*Cost: ${cost} | Tokens: {tokens_in}→{tokens_out}*")

    return parts


def _format_generated_at(generated_at: Optional[datetime]) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    if generated_at.tzinfo is not None:
        generated_at = generated_at.astimezone(timezone.utc)
    return generated_at.strftime("%Y-%m-%dT%H:%M:%SZ")


def _cline_header(conversation: Conversation) -> list[str]:
    metadata = conversation.metadata if isinstance(conversation.metadata, dict) else {}
    lines = [f"**Task ID:** `{conversation.id}`  "]

    if conversation.model:
        lines.append(f"**Model:** {conversation.model}  ")

    started = coerce_epoch_ms(metadata.get("createdAt"))
    if started is not None:
        try:
            started_at = epoch_ms_to_datetime(started)
        except (OverflowError, OSError, ValueError):
            started_at = None
        if started_at is not None:
            lines.append(f"**Started:** {_format_generated_at(started_at)}  ")

    model_usage = metadata.get("model_usage")
    files_in_context = metadata.get("files_in_context")
    if isinstance(model_usage, list) or isinstance(files_in_context, list):
        usage_count = len(model_usage) if isinstance(model_usage, list) else 0
        file_count = len(files_in_context) if isinstance(files_in_context, list) else 0
        lines.append(f"**Model Usage:** {usage_count} requests  ")
        lines.append(f"**Files in Context:** {file_count} files  ")

    return lines


def generate_markdown(
    conversation: Conversation, generated_at: Optional[datetime] = None
) -> str:
    """
    Render a conversation as Markdown.

    Args:
        conversation: Reconstructed conversation
        generated_at: Time shown in the header (defaults to now, UTC)

    Returns:
        Markdown document ending with a newline
    """
    header = [
        f"**Generated:** {_format_generated_at(generated_at)}  ",
        f"**Messages:** {len(conversation.messages)}  ",
    ]
    if conversation.source == SOURCE_CLINE:
        header.extend(_cline_header(conversation))
    elif conversation.title != UNTITLED_CONVERSATION:
        header.append(f"**Conversation ID:** `{conversation.id}`  ")
    if conversation.request_ids:
        # The newest request id is the one the editor shows
        header.append(f"**Request ID:** `{conversation.request_ids[-1]}`  ")

    blocks = [GENERATOR_COMMENT, f"# {conversation.title}", "\n".join(header), MESSAGE_SEPARATOR]

    for index, message in enumerate(conversation.messages):
        if message.role == "user":
            blocks.extend(_render_user_message(message))
        else:
            blocks.extend(_render_assistant_message(message))
        if index < len(conversation.messages) - 1:
            blocks.append(MESSAGE_SEPARATOR)

    logger.debug(
        "Rendered %s as markdown (%d messages)", conversation.id, len(conversation.messages)
    )
    return "\n\n".join(blocks) + "\n"


def conversation_filename(conversation: Conversation, extension: str = "md") -> str:
    """
    File name for an exported conversation: slugified title plus the id.

    Example:
        >>> conversation_filename(Conversation(id="abc", metadata={"name": "Fix the Bug!"}))
        'fix-the-bug_abc.md'
    """
    name = conversation.metadata.get("name") if isinstance(conversation.metadata, dict) else None
    title = name if isinstance(name, str) and name else "untitled"

    slug = re.sub(r"[^\w\s-]", "", title)
    slug = re.sub(r"[-\s]+", "-", slug)
    slug = slug[:FILENAME_TITLE_LIMIT].lower()

    return f"{slug}_{conversation.id}.{extension}"
