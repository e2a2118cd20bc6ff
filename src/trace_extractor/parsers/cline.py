"""
Parser for Cline task transcripts.

A Cline task stores its transcript in two files: `ui_messages.json`, the
event stream shown in the chat panel, and `api_conversation_history.json`,
the messages exchanged with the model. `task_metadata.json` records the
models used and the files that were in context.

UI events are folded into logical messages: each `text` event is a user
turn, each `api_req_started` event opens an assistant turn that collects
the reasoning, tool and output events that follow it. Assistant turns are
then enriched with text and tool uses from the API history. Parsing never
raises; malformed events are skipped.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from trace_extractor.models.parsed import (
    SOURCE_CLINE,
    Conversation,
    LogicalMessage,
    ToolCall,
)
from trace_extractor.parsers.tool_calls import UNIDENTIFIED_TOOL
from trace_extractor.parsers.utils import coerce_epoch_ms, load_json, safe_get_nested

logger = logging.getLogger(__name__)

TITLE_LENGTH = 100
DEFAULT_TITLE = "Cline Conversation"
UNKNOWN_MODEL = "Unknown Model"

# API history entries attach to the assistant turn started within this window
API_MATCH_WINDOW_MS = 5000

# Cline tool names -> canonical names understood by the renderers
CLINE_TOOL_NAMES = {
    "readFile": "read_file",
    "read_file": "read_file",
    "newFileCreated": "write_file",
    "createFile": "write_file",
    "writeFile": "write_file",
    "write_to_file": "write_file",
    "editedExistingFile": "edit_file",
    "editFile": "edit_file",
    "replace_in_file": "edit_file",
    "listFilesTopLevel": "list_dir",
    "listFilesRecursive": "list_dir",
    "listFiles": "list_dir",
    "list_files": "list_dir",
    "searchFiles": "grep_search",
    "search_files": "grep_search",
    "executeCommand": "run_terminal_cmd",
    "execute_command": "run_terminal_cmd",
}


def canonical_tool_name(name: Any) -> str:
    """Map a Cline tool name onto the shared tool vocabulary."""
    if not isinstance(name, str) or not name:
        return UNIDENTIFIED_TOOL
    return CLINE_TOOL_NAMES.get(name, name)


def extract_title(ui_messages: Any) -> str:
    """
    Title from the first user text event.

    Example:
        >>> extract_title([{"say": "text", "text": "Fix the\\nbuild"}])
        'Fix the build'
        >>> extract_title([])
        'Cline Conversation'
    """
    if not isinstance(ui_messages, list):
        return DEFAULT_TITLE

    for event in ui_messages:
        if not isinstance(event, dict) or event.get("say") != "text":
            continue
        text = event.get("text")
        if isinstance(text, str) and text:
            title = text[:TITLE_LENGTH].replace("\n", " ")
            return title + "..." if len(text) > TITLE_LENGTH else title

    return DEFAULT_TITLE


def model_name(task_metadata: Any) -> str:
    """Model id of the first recorded model usage."""
    if not isinstance(task_metadata, dict):
        return UNKNOWN_MODEL
    model_id = safe_get_nested(task_metadata, "model_usage", 0, "model_id")
    return model_id if isinstance(model_id, str) and model_id else UNKNOWN_MODEL


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item]


def _tool_call_from_event(text: str) -> Optional[ToolCall]:
    data, error = load_json(text)
    if error is not None or not isinstance(data, dict):
        return None

    content = data.get("content")
    return ToolCall(
        tool_name=canonical_tool_name(data.get("tool")),
        parameters=data,
        raw_content=text,
        result=content if content else None,
    )


def _tool_call_from_api(block: dict[str, Any]) -> ToolCall:
    tool_input = block.get("input")
    return ToolCall(
        tool_name=canonical_tool_name(block.get("name")),
        parameters=tool_input if isinstance(tool_input, dict) else {},
        raw_content=json.dumps(block, indent=2, ensure_ascii=False, default=str),
    )


@dataclass
class _AssistantTurn:
    """Assistant message under construction."""

    message: LogicalMessage
    thinking: list[str] = field(default_factory=list)
    content: list[str] = field(default_factory=list)

    def finish(self) -> LogicalMessage:
        thinking = "".join(self.thinking).strip()
        self.message.thinking_blocks = [thinking] if thinking else []
        self.message.text = "".join(self.content)
        return self.message


class ClineTaskParser:
    """
    Builds conversations from Cline task files.

    Stateless; one instance can parse any number of tasks.
    """

    def parse(
        self,
        task_id: str,
        ui_messages: Any,
        api_conversation: Any,
        task_metadata: Any,
    ) -> Conversation:
        """
        Parse one task.

        Args:
            task_id: Task directory name (an epoch millis string in practice)
            ui_messages: Decoded ui_messages.json
            api_conversation: Decoded api_conversation_history.json
            task_metadata: Decoded task_metadata.json

        Returns:
            Conversation with source 'cline'
        """
        events = ui_messages if isinstance(ui_messages, list) else []
        messages, checkpoints = self._fold_events(task_id, events)

        if isinstance(api_conversation, list):
            self._merge_api_history(messages, api_conversation)

        for message in messages:
            if message.role == "assistant":
                message.text = message.text.strip()

        metadata = dict(task_metadata) if isinstance(task_metadata, dict) else {}
        metadata["name"] = extract_title(events)
        if task_id.isdigit():
            metadata.setdefault("createdAt", int(task_id))

        logger.debug(
            "Parsed Cline task %s: %d event(s) -> %d message(s)",
            task_id,
            len(events),
            len(messages),
        )

        return Conversation(
            id=task_id,
            metadata=metadata,
            messages=messages,
            checkpoints=checkpoints,
            source=SOURCE_CLINE,
            model=model_name(task_metadata),
        )

    def _fold_events(
        self, task_id: str, events: list[Any]
    ) -> tuple[list[LogicalMessage], dict[str, Any]]:
        messages: list[LogicalMessage] = []
        checkpoints: dict[str, Any] = {}
        current: Optional[_AssistantTurn] = None

        for index, event in enumerate(events):
            if not isinstance(event, dict):
                continue

            say = event.get("say")
            text = event.get("text") if isinstance(event.get("text"), str) else ""
            timestamp = coerce_epoch_ms(event.get("ts")) or 0

            if say == "text":
                if not text:
                    continue
                if current is not None:
                    messages.append(current.finish())
                    current = None
                messages.append(
                    LogicalMessage(
                        id=f"{task_id}-{index}",
                        role="user",
                        timestamp=timestamp,
                        text=text,
                        attachments=_strings(event.get("files")),
                    )
                )

            elif say == "api_req_started":
                if current is not None:
                    messages.append(current.finish())
                usage, _ = load_json(text)
                current = _AssistantTurn(
                    LogicalMessage(
                        id=f"{task_id}-{index}",
                        role="assistant",
                        timestamp=timestamp,
                        usage=usage if isinstance(usage, dict) else {},
                    )
                )

            elif current is None:
                continue

            elif say == "reasoning":
                current.thinking.append(text)

            elif say == "tool":
                tool_call = _tool_call_from_event(text)
                if tool_call is not None:
                    current.message.tool_calls.append(tool_call)
                else:
                    current.content.append(f"\n\n📋 Tool: {text}\n")

            elif say == "checkpoint_created":
                checkpoint_hash = event.get("lastCheckpointHash")
                if isinstance(checkpoint_hash, str) and checkpoint_hash:
                    current.message.checkpoint_hash = checkpoint_hash
                    checkpoints[current.message.id] = {
                        "hash": checkpoint_hash,
                        "isCheckedOut": bool(event.get("isCheckpointCheckedOut")),
                    }

            elif text:
                current.content.append(f"\n{text}")

        if current is not None:
            messages.append(current.finish())

        return messages, checkpoints

    def _merge_api_history(
        self, messages: list[LogicalMessage], api_conversation: list[Any]
    ) -> None:
        assistants = [m for m in messages if m.role == "assistant"]

        for entry in api_conversation:
            if not isinstance(entry, dict) or entry.get("role") != "assistant":
                continue
            content = entry.get("content")
            if not isinstance(content, list):
                continue

            api_timestamp = coerce_epoch_ms(entry.get("timestamp")) or 0
            target = next(
                (
                    m
                    for m in assistants
                    if abs(m.timestamp - api_timestamp) < API_MATCH_WINDOW_MS
                ),
                None,
            )
            if target is None:
                continue

            for block in content:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "text" and isinstance(block.get("text"), str):
                    target.text += block["text"]
                elif block.get("type") == "tool_use":
                    target.tool_calls.append(_tool_call_from_api(block))


_default_parser = ClineTaskParser()


def parse_cline_task(
    task_id: str, ui_messages: Any, api_conversation: Any, task_metadata: Any
) -> Conversation:
    """Parse one Cline task with a shared stateless parser."""
    return _default_parser.parse(task_id, ui_messages, api_conversation, task_metadata)
