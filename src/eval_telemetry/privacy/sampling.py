"""Deterministic record-level content sampling.

The sampling decision for a record must be identical in every process and in
every language implementation that shares the telemetry backend, so the hash
is pinned bit-for-bit rather than delegated to `hash()` (salted per process)
or a cryptographic digest.

Hash (DJB2 over UTF-16 code units, 32-bit unsigned):
    h = 5381
    for each UTF-16 code unit c of record_id:
        h = (h * 33 + c) mod 2**32
    normalized = h / 2**32            # in [0, 1)

Decision:
    rate >= 1.0 -> always sampled (hash not computed)
    rate <= 0.0 -> never sampled  (hash not computed)
    otherwise   -> sampled iff normalized <= rate

Example:
    sampling_hash("abc") == 193485963, normalized ~ 0.0450495
"""
from __future__ import annotations

__all__ = ["sampling_hash", "normalized_hash", "should_sample"]

_SEED = 5381
_MASK = 0xFFFFFFFF
_SPACE = float(2**32)


def _utf16_code_units(value: str):
    data = value.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def sampling_hash(record_id: str) -> int:
    h = _SEED
    for unit in _utf16_code_units(record_id):
        h = (h * 33 + unit) & _MASK
    return h


def normalized_hash(record_id: str) -> float:
    return sampling_hash(record_id) / _SPACE


def should_sample(record_id: str, rate: float) -> bool:
    """Return True when content for `record_id` is sampled at `rate`."""
    if rate >= 1.0:
        return True
    if rate <= 0.0:
        return False
    return normalized_hash(record_id) <= rate
