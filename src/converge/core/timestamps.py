"""
UTC timestamp utilities.

Condition transition times, deletion timestamps and log records all need
the same notion of "now". Routing every read of the clock through a
``Clock`` keeps them timezone-aware and lets tests substitute a fixed
clock.

Tags:
    timestamps, utc, datetime, stdlib-only

STDLIB ONLY - NO PYDANTIC.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)
