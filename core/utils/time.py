"""
Time Utilities

This module provides utilities for handling timestamps and interval tokens.

Binance reports times as milliseconds since epoch (e.g., 1704110400000) and
intervals as short tokens such as "1m", "15m", "4h" or "1d". The helpers here
convert both into values the rest of the application can compute with.
"""

import re
from datetime import datetime, timezone
from typing import Union


ONE_MINUTE_MS = 60_000

_INTERVAL_RE = re.compile(r"^(\d+)([mhd])$", re.IGNORECASE)

_UNIT_MS = {
    "m": ONE_MINUTE_MS,
    "h": 60 * ONE_MINUTE_MS,
    "d": 24 * 60 * ONE_MINUTE_MS,
}


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12 (1 trillion): Assumed to be milliseconds
        - Otherwise: Assumed to be seconds

    Args:
        timestamp: Unix timestamp in seconds or milliseconds

    Returns:
        datetime: Timezone-aware datetime object in UTC

    Raises:
        ValueError: If timestamp is negative or invalid

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> to_utc_datetime(1704110400)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def interval_to_ms(interval: str) -> int:
    """
    Convert an interval token into milliseconds.

    Accepts "<integer><unit>" with unit m (minutes), h (hours) or d (days),
    case-insensitive. Anything else (including week/month tokens) is treated
    as one minute.

    Args:
        interval: Interval token (e.g., "1m", "15m", "4h", "1d")

    Returns:
        int: Interval length in milliseconds

    Examples:
        >>> interval_to_ms("15m")
        900000
        >>> interval_to_ms("1h")
        3600000
        >>> interval_to_ms("weird")
        60000
    """
    match = _INTERVAL_RE.match((interval or "").strip())
    if not match:
        return ONE_MINUTE_MS
    count = int(match.group(1))
    if count <= 0:
        return ONE_MINUTE_MS
    return count * _UNIT_MS[match.group(2).lower()]


def current_utc_datetime() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        datetime: Current time as timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)
