"""Timestamp helpers for epoch-millisecond inputs.

Host code hands start/end times as epoch milliseconds (the unit the replay
format uses); spans need epoch nanoseconds and metrics need seconds.
"""
from __future__ import annotations

from typing import Any, Optional

__all__ = ["ms_to_ns", "elapsed_seconds", "nanos_to_seconds"]


def ms_to_ns(ms: float) -> int:
    return int(round(ms * 1_000_000))


def elapsed_seconds(start_ms: float, end_ms: float) -> float:
    """Return `(end - start)` in seconds, clamped at zero.

    Clock skew between the caller's start and end stamps must not produce a
    negative duration.
    """
    return max(0.0, (end_ms - start_ms) / 1000.0)


def nanos_to_seconds(value: Any) -> Optional[float]:
    """Convert a provider nanosecond counter to seconds; None when absent/invalid."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value <= 0:
        return None
    return value / 1e9
