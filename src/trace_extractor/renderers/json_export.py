"""JSON export of reconstructed conversations."""

import json
from dataclasses import asdict

from trace_extractor.models.parsed import Conversation


def conversation_to_dict(conversation: Conversation) -> dict:
    """Structural dictionary of a conversation, with field names unchanged."""
    return asdict(conversation)


def export_json(conversation: Conversation) -> str:
    """
    Serialize a conversation to indented JSON.

    Non-ASCII text is kept as-is; values JSON cannot represent natively
    (raw tool results of unusual types) are stringified.
    """
    return json.dumps(
        conversation_to_dict(conversation), indent=2, ensure_ascii=False, default=str
    )
