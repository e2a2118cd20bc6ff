"""
Timestamp inference for conversations with missing or partial timestamps.

Stored bubbles and composer records carry their times under many historical
field names. This module scans those aliases for an anchor timestamp and
derives synthetic, monotonic timestamps for messages that have none.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional

from trace_extractor.parsers.utils import coerce_epoch_ms

logger = logging.getLogger(__name__)

# Fields read for a bubble's own timestamp, in priority order
BUBBLE_OWN_TIMESTAMP_FIELDS = ("timestamp", "createdAt")

BUBBLE_TIMESTAMP_FIELDS = (
    "timestamp",
    "createdAt",
    "created_at",
    "updatedAt",
    "updated_at",
    "lastModified",
    "last_modified",
)

COMPOSER_TIMESTAMP_FIELDS = (
    "timestamp",
    "createdAt",
    "created_at",
    "lastModified",
    "last_modified",
    "updatedAt",
    "updated_at",
    "lastUpdatedAt",
    "last_updated_at",
)

USER_TIMESTAMP_SPACING_MS = 60_000
ASSISTANT_TIMESTAMP_SPACING_MS = 30_000

# Metadata timestamps in or before this year are not trusted for display
MIN_PLAUSIBLE_YEAR = 2020


def first_positive_timestamp(
    record: Any, fields: Iterable[str]
) -> Optional[int]:
    """Return the first positive timestamp among `fields`, in field order."""
    if not isinstance(record, Mapping):
        return None
    for name in fields:
        value = coerce_epoch_ms(record.get(name))
        if value is not None:
            return value
    return None


def max_positive_timestamp(
    records: Iterable[Any], fields: Iterable[str]
) -> Optional[int]:
    """Return the largest positive timestamp found in any field of any record."""
    fields = tuple(fields)
    latest: Optional[int] = None
    for record in records:
        if not isinstance(record, Mapping):
            continue
        for name in fields:
            value = coerce_epoch_ms(record.get(name))
            if value is not None and (latest is None or value > latest):
                latest = value
    return latest


def bubble_timestamp(raw: Mapping[str, Any]) -> int:
    """A bubble's own timestamp in epoch millis, or 0 when it has none."""
    return first_positive_timestamp(raw, BUBBLE_OWN_TIMESTAMP_FIELDS) or 0


def latest_known_timestamp(
    conversation_id: str,
    all_bubbles: Mapping[str, Mapping[str, Any]],
    metadata: Optional[Mapping[str, Any]],
) -> Optional[int]:
    """
    Find the best-known real timestamp for a conversation.

    Resolution order:
    1. Maximum over every bubble of the conversation, across all bubble
       timestamp aliases
    2. Maximum over the conversation metadata record itself
    3. Maximum over the legacy `conversation` array embedded in the metadata

    Args:
        conversation_id: Conversation (composer) id
        all_bubbles: Mapping of conversation id to mapping of bubble id to record
        metadata: Conversation metadata record

    Returns:
        Epoch millis, or None when nothing plausible was found
    """
    bubbles = all_bubbles.get(conversation_id) or {}
    latest = max_positive_timestamp(bubbles.values(), BUBBLE_TIMESTAMP_FIELDS)
    if latest is not None:
        return latest

    if not isinstance(metadata, Mapping):
        return None

    latest = max_positive_timestamp([metadata], COMPOSER_TIMESTAMP_FIELDS)
    if latest is not None:
        return latest

    legacy = metadata.get("conversation")
    if isinstance(legacy, list):
        latest = max_positive_timestamp(legacy, COMPOSER_TIMESTAMP_FIELDS)
        if latest is not None:
            logger.debug(
                "Anchored %s on legacy conversation array timestamp", conversation_id
            )
            return latest

    return None


def synthetic_timestamp(anchor: int, role: str, index: int) -> int:
    """
    Derive a timestamp for a message that has none.

    Args:
        anchor: Conversation anchor from latest_known_timestamp
        role: 'user' or 'assistant'
        index: Number of messages of this role already placed

    Returns:
        anchor + index * spacing, where spacing depends on the role
    """
    spacing = (
        USER_TIMESTAMP_SPACING_MS if role == "user" else ASSISTANT_TIMESTAMP_SPACING_MS
    )
    return anchor + index * spacing


def _string_hash(value: str) -> int:
    """32-bit signed rolling hash (h * 31 + code point)."""
    h = 0
    for char in value:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def estimate_recency(
    conversation_id: str,
    message_count: int,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Estimate a recency time for a conversation with no usable timestamps.

    The result is deterministic for the same id, message count and `now`,
    and is meant only for ordering selection lists. It must never be shown
    as an authoritative time.

    Args:
        conversation_id: Conversation id; its last 8 characters seed the hash
        message_count: Number of reconstructed messages
        now: Reference time (defaults to the current UTC time)

    Returns:
        Timezone-aware datetime at most 72 hours before `now`
    """
    now = now or datetime.now(timezone.utc)
    count = message_count or 1
    hash_code = _string_hash(conversation_id[-8:])

    base_hours_ago = min(count * 0.5, 48)
    offset_hours = abs(int(math.fmod(hash_code, 24)))

    return now - timedelta(hours=base_hours_ago + offset_hours)


def epoch_ms_to_datetime(value: int) -> datetime:
    """Convert epoch millis to a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
