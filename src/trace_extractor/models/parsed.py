"""
Parsed conversation data models.

These are Python dataclasses representing raw bubbles read from the store and
the reconstructed conversations built from them. Used by the parsers, the
summary builder and the renderers.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

# Sentinel generation id for a group that absorbed several distinct ids
MIXED_GENERATION_ID = "mixed"

# Shown in place of a thinking payload that exists but carries no text
THINKING_PLACEHOLDER = "_[Assistant thinking...]_"

UNTITLED_CONVERSATION = "Untitled Conversation"

# Where a conversation was read from
SOURCE_CURSOR = "cursor"
SOURCE_CLINE = "cline"

TOOL_INVOCATION_FIELDS = ("toolFormerData", "toolInvocation", "tool_invocation")
GENERATION_ID_FIELDS = ("generationId", "usageUuid")
PLACEHOLDER_GENERATION_PREFIX = "bubble-"


class BubbleRole(str, Enum):
    """Author of a bubble, decoded from the stored `type` discriminant."""

    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "BubbleRole":
        bubble_type = raw.get("type")
        if bubble_type == 1:
            return cls.USER
        if bubble_type == 2:
            return cls.ASSISTANT
        if raw.get("role") == "user":
            return cls.USER
        return cls.ASSISTANT


def _generation_id_from_raw(raw: dict[str, Any]) -> Optional[str]:
    for name in GENERATION_ID_FIELDS:
        value = raw.get(name)
        if isinstance(value, str) and value:
            if value.startswith(PLACEHOLDER_GENERATION_PREFIX):
                return None
            return value
    return None


def _tool_invocation_from_raw(raw: dict[str, Any]) -> Optional[dict[str, Any]]:
    for name in TOOL_INVOCATION_FIELDS:
        value = raw.get(name)
        if isinstance(value, dict):
            return value
    return None


@dataclass(frozen=True)
class Bubble:
    """One stored message fragment."""

    id: str
    conversation_id: str
    role: BubbleRole
    text: Optional[str] = None
    thinking: Optional[dict] = None
    tool_invocation: Optional[dict] = None
    timestamp: int = 0  # Epoch millis, 0 when absent
    generation_id: Optional[str] = None  # None for absent/placeholder ids
    thinking_duration_ms: int = 0
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_raw(
        cls, bubble_id: str, conversation_id: str, raw: dict[str, Any]
    ) -> "Bubble":
        """Build a bubble from its stored JSON record."""
        # Deferred: the parsers package imports this module
        from trace_extractor.parsers.timestamps import bubble_timestamp

        text = raw.get("text")
        thinking = raw.get("thinking")
        duration = raw.get("thinkingDurationMs")

        return cls(
            id=bubble_id,
            conversation_id=conversation_id,
            role=BubbleRole.from_raw(raw),
            text=text if isinstance(text, str) else None,
            thinking=thinking if isinstance(thinking, dict) else None,
            tool_invocation=_tool_invocation_from_raw(raw),
            timestamp=bubble_timestamp(raw),
            generation_id=_generation_id_from_raw(raw),
            thinking_duration_ms=(
                int(duration)
                if isinstance(duration, (int, float))
                and math.isfinite(duration)
                and duration > 0
                else 0
            ),
            raw=raw,
        )

    @property
    def has_content(self) -> bool:
        """False for bubbles with no text, no thinking and no tool invocation."""
        return bool(self.text) or self.thinking is not None or self.tool_invocation is not None

    @property
    def is_user(self) -> bool:
        return self.role is BubbleRole.USER


@dataclass
class ToolCall:
    """Tool invocation by the assistant, from markup or a bubble record."""

    tool_name: str
    parameters: dict
    raw_content: str = ""
    status: Optional[str] = None
    result: Any = None
    error: Any = None


@dataclass
class CodeBlock:
    """Fenced code span found in message text."""

    language: str
    code: str


@dataclass
class FileOperation:
    """File access derived from a Read/Edit/Write tool call."""

    operation: str  # 'read', 'edit', 'write'
    path: str


@dataclass
class ParsedContent:
    """Structured sub-content extracted from one raw message string."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    thinking_blocks: list[str] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)
    file_operations: list[FileOperation] = field(default_factory=list)


@dataclass
class LogicalMessage:
    """Reconstructed conversational turn exposed to renderers."""

    id: str
    role: str  # 'user', 'assistant'
    timestamp: int  # Epoch millis, real or synthetic
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    thinking_blocks: list[str] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)
    file_operations: list[FileOperation] = field(default_factory=list)
    generation_id: Optional[str] = None  # MIXED_GENERATION_ID for merged groups
    thinking_duration_ms: int = 0
    bubble_ids: list[str] = field(default_factory=list)  # Contributing bubbles
    timestamp_inferred: bool = False  # True when backfilled from the anchor
    attachments: list[str] = field(default_factory=list)  # Files attached by the user
    usage: dict = field(default_factory=dict)  # Per-request cost and token counts
    checkpoint_hash: Optional[str] = None


@dataclass
class Conversation:
    """A fully reconstructed conversation."""

    id: str
    metadata: dict
    messages: list[LogicalMessage] = field(default_factory=list)
    code_diffs: dict = field(default_factory=dict)
    checkpoints: dict = field(default_factory=dict)
    request_ids: list[str] = field(default_factory=list)  # Distinct, first-seen order
    source: str = SOURCE_CURSOR
    model: Optional[str] = None

    @property
    def title(self) -> str:
        name = self.metadata.get("name") if isinstance(self.metadata, dict) else None
        return name if isinstance(name, str) and name.strip() else UNTITLED_CONVERSATION


@dataclass
class ConversationSummary:
    """Lightweight projection of a conversation for selection UIs."""

    id: str
    title: str
    preview: str
    message_count: int
    user_messages: int
    assistant_messages: int
    last_message_time: datetime
    conversation: Conversation
    last_message_time_estimated: bool = False  # UI ordering only, not authoritative
    source: str = SOURCE_CURSOR
    model: Optional[str] = None
