"""
Utility functions for parsing stored conversation records.

This module provides common utilities used by the parsers, including
timestamp coercion, lenient JSON decoding and nested lookups.
"""

import json
import math
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


def parse_iso_timestamp(timestamp_str: str) -> datetime:
    """
    Parse an ISO 8601 timestamp string to a datetime object.

    Args:
        timestamp_str: ISO 8601 formatted timestamp (e.g., "2025-10-16T19:12:28.024Z")

    Returns:
        Parsed datetime object

    Raises:
        ValueError: If the timestamp string is invalid
    """
    try:
        return date_parser.isoparse(timestamp_str)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid timestamp format: {timestamp_str}") from e


def coerce_epoch_ms(value: Any) -> Optional[int]:
    """
    Convert a stored timestamp value to epoch milliseconds.

    Accepts ints and floats (already epoch millis), numeric strings and
    ISO 8601 strings. Booleans, non-positive numbers and anything that
    cannot be interpreted return None.

    Example:
        >>> coerce_epoch_ms(1700000000000)
        1700000000000
        >>> coerce_epoch_ms("2023-11-14T22:13:20Z")
        1700000000000
        >>> coerce_epoch_ms(0) is None
        True
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return int(value) if value > 0 else None

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            number = float(stripped)
        except ValueError:
            pass
        else:
            if not math.isfinite(number):
                return None
            return int(number) if number > 0 else None

        try:
            parsed = parse_iso_timestamp(stripped)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            # Naive ISO strings are treated as UTC
            parsed = parsed.replace(tzinfo=timezone.utc)
        millis = int(parsed.timestamp() * 1000)
        return millis if millis > 0 else None

    return None


def load_json(raw: Any) -> tuple[Any, Optional[str]]:
    """
    Decode a JSON string without raising.

    Returns:
        Tuple of (decoded value, error message). On failure the value is
        None and the error describes why decoding failed.
    """
    if not isinstance(raw, str):
        return None, f"expected str, got {type(raw).__name__}"
    try:
        return json.loads(raw), None
    except (json.JSONDecodeError, ValueError) as e:
        return None, str(e)


def safe_get_nested(
    data: dict[str, Any], *keys: str | int, default: Any = None
) -> Optional[Any]:
    """
    Safely get a nested dictionary value.

    Args:
        data: The dictionary to search
        *keys: Sequence of keys to traverse
        default: Default value if path doesn't exist

    Returns:
        The value at the nested path, or default if not found

    Example:
        >>> data = {"diff": {"chunks": [{"diffString": "+ x"}]}}
        >>> safe_get_nested(data, "diff", "chunks", 0, "diffString")
        '+ x'
        >>> safe_get_nested(data, "diff", "missing", "key", default="N/A")
        'N/A'
    """
    current: Any = data
    for key in keys:
        if isinstance(current, dict):
            current = current.get(key, default)
        elif isinstance(current, list) and isinstance(key, int):
            try:
                current = current[key]
            except (IndexError, TypeError):
                return default
        else:
            return default

        if current is None:
            return default

    return current
