"""
Conversation summaries for selection lists.

A summary is a lightweight projection of a reconstructed conversation: title,
a short preview of the first user message, message counts and a "last
activity" time used to sort conversations newest first.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from trace_extractor.models.parsed import Conversation, ConversationSummary
from trace_extractor.parsers.timestamps import (
    COMPOSER_TIMESTAMP_FIELDS,
    MIN_PLAUSIBLE_YEAR,
    epoch_ms_to_datetime,
    estimate_recency,
    first_positive_timestamp,
)

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100
NO_MESSAGES_PREVIEW = "No messages"


def _to_datetime(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return epoch_ms_to_datetime(value)
    except (OverflowError, OSError, ValueError):
        logger.debug("Ignoring out-of-range timestamp %r", value)
        return None


def _metadata_timestamp(metadata: Mapping[str, Any]) -> Optional[datetime]:
    """First timestamp found on the metadata record or its legacy bubble array."""
    found = first_positive_timestamp(metadata, COMPOSER_TIMESTAMP_FIELDS)

    if found is None:
        legacy = metadata.get("conversation")
        if isinstance(legacy, list):
            for entry in legacy:
                found = first_positive_timestamp(entry, COMPOSER_TIMESTAMP_FIELDS)
                if found is not None:
                    break

    candidate = _to_datetime(found)
    if candidate is not None and candidate.year > MIN_PLAUSIBLE_YEAR:
        return candidate
    return None


def build_conversation_summary(
    conversation: Conversation, now: Optional[datetime] = None
) -> ConversationSummary:
    """
    Project a conversation into a summary for selection UIs.

    last_message_time resolution:
    1. Latest positive message timestamp
    2. First metadata timestamp, if it falls after MIN_PLAUSIBLE_YEAR
    3. estimate_recency(), flagged via last_message_time_estimated

    Args:
        conversation: Reconstructed conversation
        now: Reference time for the recency estimate (defaults to now, UTC)

    Returns:
        ConversationSummary
    """
    messages = conversation.messages
    user_messages = [m for m in messages if m.role == "user"]

    if user_messages:
        first_text = user_messages[0].text or ""
        preview = first_text[:PREVIEW_LENGTH].replace("\n", " ") + "..."
    else:
        preview = NO_MESSAGES_PREVIEW

    latest = max((m.timestamp for m in messages if m.timestamp > 0), default=None)
    last_message_time = _to_datetime(latest)
    estimated = False

    if last_message_time is None:
        metadata = conversation.metadata if isinstance(conversation.metadata, dict) else {}
        last_message_time = _metadata_timestamp(metadata)

    if last_message_time is None:
        last_message_time = estimate_recency(conversation.id, len(messages), now=now)
        estimated = True

    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        preview=preview,
        message_count=len(messages),
        user_messages=len(user_messages),
        assistant_messages=sum(1 for m in messages if m.role == "assistant"),
        last_message_time=last_message_time,
        conversation=conversation,
        last_message_time_estimated=estimated,
        source=conversation.source,
        model=conversation.model,
    )


def time_ago(dt: datetime, now: Optional[datetime] = None) -> str:
    """
    Human-readable age of a timestamp.

    Example:
        >>> from datetime import timedelta
        >>> ref = datetime(2025, 1, 10, tzinfo=timezone.utc)
        >>> time_ago(ref - timedelta(minutes=5), ref)
        '5m ago'
        >>> time_ago(ref - timedelta(days=30), ref)
        '2024-12-11'
    """
    now = now or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    seconds = (now - dt).total_seconds()
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days}d ago"
    return dt.date().isoformat()
