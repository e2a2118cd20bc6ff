"""
Conversation reconstructor for the editor's composer key-value store.

A composer conversation is stored as independent bubble records
(`bubbleId:<composerId>:<bubbleId>`) plus a metadata record
(`composerData:<composerId>`). Bubbles arrive unordered, some without
timestamps, and one assistant response is often split across several
bubbles that share a generation id. This module rebuilds the ordered list of
logical messages from those fragments.

Reconstruction is pure and deterministic: it performs no I/O, holds no state
between calls and degrades to fallback values instead of raising.
"""

import json
import logging
from typing import Any, Mapping, Optional

from trace_extractor.models.parsed import (
    THINKING_PLACEHOLDER,
    Bubble,
    Conversation,
    LogicalMessage,
    ToolCall,
)
from trace_extractor.parsers.content import parse_message_content
from trace_extractor.parsers.grouping import BubbleGroup, group_bubbles
from trace_extractor.parsers.timestamps import (
    latest_known_timestamp,
    synthetic_timestamp,
)
from trace_extractor.parsers.tool_calls import normalize_tool_invocation

logger = logging.getLogger(__name__)

ORDER_HINT_FIELD = "fullConversationHeadersOnly"


def _order_hint(
    metadata: Mapping[str, Any], bubble_ids: set[str]
) -> Optional[dict[str, int]]:
    """
    Build a bubble id -> position index from the metadata order hint.

    Only headers naming bubbles that exist are indexed. Returns None when the
    metadata carries no hint at all.
    """
    headers = metadata.get(ORDER_HINT_FIELD)
    if not isinstance(headers, list) or not headers:
        return None

    positions: dict[str, int] = {}
    for index, header in enumerate(headers):
        bubble_id = header.get("bubbleId") if isinstance(header, dict) else None
        if isinstance(bubble_id, str) and bubble_id in bubble_ids:
            positions.setdefault(bubble_id, index)
    return positions


def order_bubbles(
    bubbles: list[Bubble], metadata: Mapping[str, Any]
) -> list[Bubble]:
    """
    Sort bubbles into conversation order.

    With an order hint, hinted bubbles come first by hint position and the
    rest follow by timestamp. Without one, all bubbles sort by timestamp,
    missing timestamps first. Ties always fall back to encounter order.
    """
    positions = _order_hint(metadata, {bubble.id for bubble in bubbles})
    indexed = list(enumerate(bubbles))

    if positions is None:
        indexed.sort(key=lambda item: (item[1].timestamp, item[0]))
    else:
        def hinted_key(item: tuple[int, Bubble]) -> tuple[int, int, int, int]:
            index, bubble = item
            if bubble.id in positions:
                return (0, positions[bubble.id], bubble.timestamp, index)
            return (1, 0, bubble.timestamp, index)

        indexed.sort(key=hinted_key)

    return [bubble for _, bubble in indexed]


def _tool_call_from_invocation(record: dict[str, Any]) -> ToolCall:
    normalized = normalize_tool_invocation(record)
    return ToolCall(
        tool_name=normalized.tool_name,
        parameters=normalized.parameters,
        raw_content=json.dumps(record, indent=2, ensure_ascii=False, default=str),
        status=record.get("status"),
        result=record.get("result"),
        error=record.get("error"),
    )


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class ConversationReconstructor:
    """
    Rebuilds conversations from raw composer bubbles.

    The reconstructor is stateless; one instance can serve any number of
    conversations, including concurrently.
    """

    def reconstruct(
        self,
        conversation_id: str,
        all_bubbles: Mapping[str, Mapping[str, Any]],
        all_checkpoints: Mapping[str, Any],
        all_code_diffs: Mapping[str, Any],
        metadata: Optional[Mapping[str, Any]],
    ) -> Conversation:
        """
        Reconstruct one conversation.

        Args:
            conversation_id: Composer id of the conversation
            all_bubbles: Conversation id -> bubble id -> raw bubble record
            all_checkpoints: Conversation id -> checkpoint side table
            all_code_diffs: Conversation id -> code diff side table
            metadata: The conversation's composer record

        Returns:
            Conversation with ordered logical messages
        """
        metadata = metadata if isinstance(metadata, Mapping) else {}
        raw_bubbles = all_bubbles.get(conversation_id) or {}

        bubbles = [
            Bubble.from_raw(bubble_id, conversation_id, raw)
            for bubble_id, raw in raw_bubbles.items()
            if isinstance(raw, Mapping)
        ]
        ordered = order_bubbles(bubbles, metadata)
        with_content = [bubble for bubble in ordered if bubble.has_content]
        groups = group_bubbles(with_content)

        anchor = latest_known_timestamp(conversation_id, all_bubbles, metadata)

        messages: list[LogicalMessage] = []
        user_count = 0
        assistant_count = 0

        for group in groups:
            if group.role.value == "user":
                message = self._user_message(group)
                index = user_count
                user_count += 1
            else:
                message = self._assistant_message(group)
                index = assistant_count
                assistant_count += 1

            if message.timestamp == 0 and anchor is not None:
                message.timestamp = synthetic_timestamp(anchor, message.role, index)
                message.timestamp_inferred = True

            messages.append(message)

        request_ids = list(
            dict.fromkeys(b.generation_id for b in ordered if b.generation_id)
        )

        logger.debug(
            "Reconstructed %s: %d bubble(s) -> %d message(s)",
            conversation_id,
            len(bubbles),
            len(messages),
        )

        return Conversation(
            id=conversation_id,
            metadata=dict(metadata),
            messages=messages,
            code_diffs=dict(all_code_diffs.get(conversation_id) or {}),
            checkpoints=dict(all_checkpoints.get(conversation_id) or {}),
            request_ids=request_ids,
        )

    def _user_message(self, group: BubbleGroup) -> LogicalMessage:
        bubble = group.bubbles[0]
        parsed = parse_message_content(bubble.text or "")

        return LogicalMessage(
            id=bubble.id,
            role="user",
            timestamp=bubble.timestamp,
            text=parsed.text,
            tool_calls=parsed.tool_calls,
            thinking_blocks=parsed.thinking_blocks,
            code_blocks=parsed.code_blocks,
            file_operations=parsed.file_operations,
            generation_id=bubble.generation_id,
            thinking_duration_ms=bubble.thinking_duration_ms,
            bubble_ids=[bubble.id],
        )

    def _assistant_message(self, group: BubbleGroup) -> LogicalMessage:
        message = LogicalMessage(
            id=group.bubbles[0].id,
            role="assistant",
            timestamp=0,
            generation_id=group.resolved_generation_id,
        )
        text_parts: list[str] = []
        main_bubble_id: Optional[str] = None

        for bubble in group.bubbles:
            message.bubble_ids.append(bubble.id)
            message.timestamp = max(message.timestamp, bubble.timestamp)

            if bubble.text:
                parsed = parse_message_content(bubble.text)
                text_parts.append(parsed.text)
                message.tool_calls.extend(parsed.tool_calls)
                message.thinking_blocks.extend(parsed.thinking_blocks)
                message.code_blocks.extend(parsed.code_blocks)
                message.file_operations.extend(parsed.file_operations)
                main_bubble_id = bubble.id

            if bubble.thinking is not None:
                thinking_text = bubble.thinking.get("text")
                if isinstance(thinking_text, str) and thinking_text.strip():
                    message.thinking_blocks.append(thinking_text.strip())
                else:
                    message.thinking_blocks.append(THINKING_PLACEHOLDER)

            if bubble.tool_invocation is not None:
                message.tool_calls.append(
                    _tool_call_from_invocation(bubble.tool_invocation)
                )

            message.thinking_duration_ms += bubble.thinking_duration_ms

        if main_bubble_id is not None:
            message.id = main_bubble_id
        message.text = "".join(text_parts).strip()
        message.thinking_blocks = _dedupe(message.thinking_blocks)

        return message


_default_reconstructor = ConversationReconstructor()


def reconstruct_conversation(
    conversation_id: str,
    all_bubbles: Mapping[str, Mapping[str, Any]],
    all_checkpoints: Mapping[str, Any],
    all_code_diffs: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]],
) -> Conversation:
    """Reconstruct one conversation with a shared stateless reconstructor."""
    return _default_reconstructor.reconstruct(
        conversation_id, all_bubbles, all_checkpoints, all_code_diffs, metadata
    )
