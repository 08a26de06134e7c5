"""Cardinality guard: bounds events per record and attributes per metric point.

`EventBudget` is a short-lived counter created by `process()` for exactly one
record and passed explicitly to the emission builder. It is never shared
between records, so concurrent records cannot suppress each other's events.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

__all__ = ["EventBudget", "filter_metric_attributes"]


class EventBudget:
    """Per-record span event counter.

    Args:
        limit: Maximum events to materialize; None (or negative) means unbounded
    """

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit if limit is None or limit >= 0 else None
        self.used = 0
        self.dropped = 0

    @property
    def exhausted(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    def try_consume(self) -> bool:
        """Reserve one event slot; False (and counted as dropped) once exhausted."""
        if self.exhausted:
            self.dropped += 1
            return False
        self.used += 1
        return True

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"EventBudget(limit={self.limit!r}, used={self.used}, dropped={self.dropped})"


def filter_metric_attributes(
    attributes: Dict[str, Any],
    allowlist: Optional[Iterable[str]] = None,
    max_attributes: Optional[int] = None,
) -> Dict[str, Any]:
    """Apply the allowlist, then the attribute cap in lexicographic key order.

    Args:
        attributes: Candidate metric attributes
        allowlist: Keys permitted to pass; None disables allowlisting
        max_attributes: Maximum attributes kept; None disables the cap

    Returns:
        New dict; keys are sorted whenever the cap applies so the kept subset
        does not depend on insertion order.
    """
    kept = {k: v for k, v in attributes.items() if v is not None}
    if allowlist is not None:
        allowed = set(allowlist)
        kept = {k: v for k, v in kept.items() if k in allowed}
    if max_attributes is not None and max_attributes >= 0:
        kept = {k: kept[k] for k in sorted(kept)[:max_attributes]}
    return kept
