"""Combine detection evidence for one file into a probability and risk level.

A confident metadata match is treated as near ground truth and dominates:
the other signals can only push the probability further towards 1.0. Without
one, the remaining signals are blended with ML outweighing style. A file with
no usable evidence is reported as ``"none"`` and flagged for manual review.

``combine_signals`` is pure and synchronous, so files can be scored in parallel.
"""

from __future__ import annotations

from typing import Iterable

from codeguard.detection.classifier import Classifier
from codeguard.detection.metadata import detect_metadata
from codeguard.detection.signals import (
    DetectionResult,
    Evidence,
    MetadataResult,
    StyleResult,
    clamp_unit,
)
from codeguard.detection.style import analyze_code_style
from codeguard.scoring.thresholds import risk_level

METADATA_DOMINANCE_CONFIDENCE = 0.8
METHOD_ORDER = ("metadata", "style", "ml")

BLEND_WEIGHTS: dict[frozenset[str], dict[str, float]] = {
    frozenset({"style", "ml"}): {"style": 0.35, "ml": 0.65},
    frozenset({"metadata", "style"}): {"metadata": 0.45, "style": 0.55},
    frozenset({"metadata", "ml"}): {"metadata": 0.40, "ml": 0.60},
    frozenset({"metadata", "style", "ml"}): {"metadata": 0.40, "style": 0.25, "ml": 0.35},
}


def combine_signals(evidence: Iterable[Evidence | None]) -> DetectionResult:
    """Merge zero to three pieces of evidence. Never raises."""
    by_kind: dict[str, Evidence] = {}
    for item in evidence:
        if item is None:
            continue
        if isinstance(item, StyleResult):
            item = item.clamped()
        by_kind[item.kind] = item

    metadata = by_kind.get("metadata")
    style = by_kind.get("style")
    ml = by_kind.get("ml")
    usable = {kind: item for kind, item in by_kind.items() if item.available}

    if not usable:
        return DetectionResult(
            combined_probability=0.0,
            risk_level="low",
            detection_method="none",
            metadata=metadata,
            style=style,
            ml=ml,
            needs_review=True,
        )

    kinds = [kind for kind in METHOD_ORDER if kind in usable]
    matched = usable.get("metadata")
    if matched is not None and matched.probability >= METADATA_DOMINANCE_CONFIDENCE:
        others = {kind: usable[kind] for kind in kinds if kind != "metadata"}
        rest = _blend(others) if others else 0.0
        combined = matched.probability + (1 - matched.probability) * rest
    else:
        combined = _blend(usable)

    probability = round(clamp_unit(combined), 2)
    return DetectionResult(
        combined_probability=probability,
        risk_level=risk_level(probability),
        detection_method="+".join(kinds),
        metadata=metadata,
        style=style,
        ml=ml,
    )


def _blend(signals: dict[str, Evidence]) -> float:
    if len(signals) == 1:
        return next(iter(signals.values())).probability
    weights = BLEND_WEIGHTS[frozenset(signals)]
    return sum(weights[kind] * item.probability for kind, item in signals.items())


def detect_ai_code(
    code: str,
    language: str,
    commit_message: str,
    pr_title: str = "",
    pr_body: str = "",
    classifier: Classifier | None = None,
) -> DetectionResult:
    """Compute every available signal for one file and combine them."""
    metadata: MetadataResult = detect_metadata(commit_message, pr_title, pr_body)
    style = analyze_code_style(code, language)
    ml = classifier.classify(code, language) if classifier is not None and code.strip() else None
    return combine_signals([metadata, style, ml])
