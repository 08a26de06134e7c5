"""Safety / moderation signal normalization.

Providers report safety outcomes in unrelated shapes (Anthropic `safety`
dicts, Cohere flagged-category lists, Vertex `safetyRatings`, Bedrock
guardrail traces). These helpers reduce each to the shared span attributes:

    gen_ai.safety.flagged            bool
    gen_ai.safety.categories         list[str]
    gen_ai.safety.severity.<cat>     upper-cased probability (Vertex only)

Only signals actually present produce attributes; nothing is defaulted.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List

__all__ = [
    "anthropic_safety_attributes",
    "cohere_safety_attributes",
    "vertex_safety_attributes",
    "compact_json",
]

_HIGH_PROBABILITIES = {"HIGH", "VERY_HIGH"}


def compact_json(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def anthropic_safety_attributes(stop_reason: Any, safety: Any) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    if stop_reason == "safety":
        attrs["gen_ai.safety.flagged"] = True
    if not isinstance(safety, dict):
        return attrs
    cats: List[str] = []
    if isinstance(safety.get("categories"), list):
        cats = [str(c) for c in safety["categories"]]
    else:
        for key, val in safety.items():
            if isinstance(val, dict):
                val = val.get("flagged") or val.get("filtered") or val.get("blocked")
            if val:
                cats.append(str(key))
    if cats:
        attrs["gen_ai.safety.categories"] = cats
    return attrs


def cohere_safety_attributes(safety: Any) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    if not isinstance(safety, dict):
        return attrs
    if isinstance(safety.get("flagged"), bool):
        attrs["gen_ai.safety.flagged"] = safety["flagged"]
    for key in ("categories", "flagged_categories", "reasons"):
        if isinstance(safety.get(key), list):
            cats = [str(c) for c in safety[key]]
            if cats:
                attrs["gen_ai.safety.categories"] = cats
            break
    return attrs


def vertex_safety_attributes(safety_ratings: Any) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    if not isinstance(safety_ratings, list):
        return attrs
    ratings = [r for r in safety_ratings if isinstance(r, dict)]
    attrs["google.vertex.safety_ratings"] = compact_json(safety_ratings)
    attrs["gen_ai.safety.flagged"] = any(
        r.get("blocked") is True or str(r.get("probability") or "").upper() in _HIGH_PROBABILITIES
        for r in ratings
    )
    cats = [str(r["category"]) for r in ratings if r.get("category")]
    if cats:
        attrs["gen_ai.safety.categories"] = cats
    for r in ratings:
        if r.get("category") and r.get("probability"):
            attrs[f"gen_ai.safety.severity.{r['category']}"] = str(r["probability"]).upper()
    return attrs
