"""
Conversation reconstruction from the editor's stored composer records.

This package turns raw bubble records into ordered logical messages: content
parsing, tool invocation normalization, timestamp inference, bubble grouping
and the reconstructor that ties them together. Cline task files are parsed
into the same conversation model.
"""

from trace_extractor.parsers.cline import ClineTaskParser, parse_cline_task
from trace_extractor.parsers.content import parse_message_content
from trace_extractor.parsers.cursor import (
    ConversationReconstructor,
    reconstruct_conversation,
)
from trace_extractor.parsers.grouping import BubbleGroup, group_bubbles
from trace_extractor.parsers.timestamps import (
    estimate_recency,
    latest_known_timestamp,
    synthetic_timestamp,
)
from trace_extractor.parsers.tool_calls import (
    NormalizedToolCall,
    normalize_tool_invocation,
    parse_arguments,
)

__all__ = [
    "ClineTaskParser",
    "parse_cline_task",
    "parse_message_content",
    "ConversationReconstructor",
    "reconstruct_conversation",
    "BubbleGroup",
    "group_bubbles",
    "estimate_recency",
    "latest_known_timestamp",
    "synthetic_timestamp",
    "NormalizedToolCall",
    "normalize_tool_invocation",
    "parse_arguments",
]
