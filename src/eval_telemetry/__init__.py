"""Package initialization for eval-telemetry.

Public facade:
    detect: Classify a (request, response) payload pair by provider shape
    normalize: Convert a payload pair into a CanonicalRecord for a given tag
    normalize_payload: detect + normalize in one call
    process: Build span, events and metric points for one record (pure)
    emit: Hand a processed record to the host's span and metric sinks
"""
from .emission import EmissionOptions
from .mapping.detector import detect_provider as detect
from .mapping.normalizers import normalize, normalize_payload
from .models.canonical import CanonicalRecord, ProviderTag, RecordValidationError
from .privacy.policy import ContentPolicy
from .processor import emit, process

__all__ = [
    "detect",
    "normalize",
    "normalize_payload",
    "process",
    "emit",
    "CanonicalRecord",
    "ContentPolicy",
    "EmissionOptions",
    "ProviderTag",
    "RecordValidationError",
]
