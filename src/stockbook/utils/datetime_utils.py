"""Datetime utilities for timezone-aware UTC timestamps.

This module provides the timestamp helpers used across models and services.
All ledger timestamps are timezone-aware UTC datetimes; the snapshot format
exchanges them as epoch milliseconds.

Usage:
    from stockbook.utils.datetime_utils import utc_now, to_epoch_ms

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    """Convert a datetime to epoch milliseconds."""
    if value is None:
        return None
    return int(ensure_utc(value).timestamp() * 1000)


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    """Convert epoch milliseconds to a timezone-aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
