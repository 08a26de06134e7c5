"""Provider detection and normalization subpackage.

Turns raw provider (request, response) payload pairs into the canonical
record. Everything here is pure: no network calls, no telemetry emission,
deterministic output for identical inputs.

Modules:
    detector: Ordered shape heuristics returning a ProviderTag
    normalizers: One normalization function per ProviderTag
    content: Message / choice / tool-call content field construction
    safety: Provider safety signals reduced to shared span attributes
    id_utils: Deterministic UUIDv5 record ids
    time_utils: Epoch-millisecond conversions

Design Invariants:
    - Detection order is fixed; first match wins
    - Absent optional fields stay absent (never defaulted to 0)
    - Malformed payload pieces degrade to opaque values, never exceptions
"""
from __future__ import annotations

from . import id_utils as id_utils  # noqa: F401
from . import time_utils as time_utils  # noqa: F401
from .detector import detect_provider
from .normalizers import coerce_provider_tag, normalize, normalize_payload

__all__ = [
    "detect_provider",
    "normalize",
    "normalize_payload",
    "coerce_provider_tag",
    "id_utils",
    "time_utils",
]
