# src/kastrace/core/timeutil.py
"""Block time helpers. The API reports times as unix milliseconds."""

from __future__ import annotations

from datetime import UTC, datetime


def to_block_time(moment: datetime) -> int:
    """Convert an aware datetime to unix milliseconds.

    Raises:
        ValueError: If moment is naive.
    """
    if moment.tzinfo is None:
        raise ValueError("Naive datetimes are ambiguous; pass an aware datetime")
    return int(moment.timestamp() * 1000)


def now_ms() -> int:
    """Current wall-clock time as unix milliseconds."""
    return to_block_time(datetime.now(UTC))
