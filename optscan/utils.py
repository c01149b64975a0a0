"""
Utility functions for the options scanner.

Provides logging setup, timestamp parsing, batching, and size formatting.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence, TypeVar, Union

from dateutil import parser as date_parser

from . import config

T = TypeVar("T")


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure structured logging with timestamps.

    Args:
        level: Logging level (default: INFO)

    Returns:
        Configured logger instance
    """
    logging.basicConfig(
        level=level,
        format=config.LOG_FORMAT,
        datefmt=config.LOG_DATE_FORMAT,
    )
    logger = logging.getLogger("optscan")
    return logger


def parse_timestamp(ts: Union[str, int, float]) -> datetime:
    """
    Convert ISO dates or unix timestamps to datetime.

    Args:
        ts: Timestamp as ISO string (e.g., "2026-01-16") or unix seconds

    Returns:
        Datetime object (UTC when no zone is given)

    Raises:
        ValueError: If timestamp format is invalid
    """
    if isinstance(ts, (int, float)):
        return datetime.fromtimestamp(ts, tz=timezone.utc)

    if isinstance(ts, str):
        # Try parsing as ISO date first
        try:
            parsed = date_parser.parse(ts)
        except (ValueError, OverflowError) as e:
            # Try parsing as unix timestamp string
            try:
                return datetime.fromtimestamp(float(ts), tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                raise ValueError(f"Invalid timestamp format: {ts}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    raise ValueError(f"Unsupported timestamp type: {type(ts)}")


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD string into a date, or None if it cannot be read."""
    if not value:
        return None
    try:
        return parse_timestamp(value).date()
    except ValueError:
        return None


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def isoformat_utc(dt: Optional[datetime] = None) -> str:
    """ISO-8601 string with millisecond precision and a trailing Z."""
    dt = dt or utc_now()
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    """
    Split a sequence into consecutive lists of at most ``size`` items.

    Args:
        items: Sequence to split
        size: Maximum batch size (values below 1 are treated as 1)

    Returns:
        List of batches in original order
    """
    size = max(1, int(size))
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


async def sleep_ms(ms: float) -> None:
    """Suspend the current task for ``ms`` milliseconds."""
    if ms > 0:
        await asyncio.sleep(ms / 1000.0)


def format_bytes(num_bytes: int) -> str:
    """
    Format a byte count as a short human-readable string.

    Args:
        num_bytes: Size in bytes

    Returns:
        String like "0 B", "12.5 KB" or "3 MB"
    """
    if num_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    value = round(value, 1)
    if value == int(value):
        return f"{int(value)} {units[i]}"
    return f"{value} {units[i]}"


def ensure_directories() -> None:
    """
    Create data directories if they don't exist.

    Creates:
        - data/cache
    """
    config.CACHE_DIR.mkdir(parents=True, exist_ok=True)
