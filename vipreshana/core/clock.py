"""Clock source shared by the stores and services."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

# Timestamps are naive UTC, matching the DateTime(timezone=False) columns.
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch_ms(value: datetime) -> int:
    """Convert a naive UTC timestamp to milliseconds since the epoch."""

    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)
