"""
Output renderers for reconstructed conversations.

Markdown produces a human-readable transcript; JSON is a direct structural
dump of the conversation.
"""

from trace_extractor.renderers.json_export import conversation_to_dict, export_json
from trace_extractor.renderers.markdown import (
    conversation_filename,
    describe_tool_call,
    generate_markdown,
)

__all__ = [
    "conversation_to_dict",
    "export_json",
    "conversation_filename",
    "describe_tool_call",
    "generate_markdown",
]
