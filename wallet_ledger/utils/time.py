"""
UTC timestamp utilities for the wallet ledger.

All timestamps MUST be in UTC with explicit timezone markers.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- parse_timestamp(): Parse ISO 8601 string to datetime

Examples:
    >>> from wallet_ledger.utils.time import utc_timestamp, parse_timestamp
    >>> timestamp = utc_timestamp()
    >>> timestamp
    '2026-10-18T08:30:45Z'
    >>> parse_timestamp(timestamp).year
    2026
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Returns:
        datetime: Current UTC time with tzinfo=timezone.utc

    Note:
        NEVER use datetime.now() without timezone parameter.
        NEVER use datetime.utcnow() (deprecated, returns naive datetime).
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ

    Used for the applied_at column of the applied_migrations table and
    for log records.
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse ISO 8601 timestamp string to timezone-aware datetime.

    Args:
        timestamp_str: ISO 8601 timestamp string ending with 'Z'

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If timestamp doesn't end with 'Z' or has invalid format

    Examples:
        >>> parse_timestamp('2026-10-18T08:30:45Z').hour
        8

        >>> parse_timestamp('2026-10-18T08:30:45')
        Traceback (most recent call last):
        ...
        ValueError: Timestamp must end with 'Z' (UTC): 2026-10-18T08:30:45
    """
    if not timestamp_str.endswith("Z"):
        raise ValueError(f"Timestamp must end with 'Z' (UTC): {timestamp_str}")

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp format: {timestamp_str}") from e
