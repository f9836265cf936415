"""Detection evidence types.

A file is scored from up to three independent pieces of evidence: an AI-tool
metadata match, a stylistic fingerprint, and an optional ML classifier
verdict. All three expose the same small surface (``kind``, ``available``,
``probability``) so the combiner can treat "0 to 3 signals" uniformly.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Union

STYLE_SIGNAL_WEIGHTS: dict[str, float] = {
    "naming_verbosity": 0.20,
    "comment_uniformity": 0.15,
    "typo_absence": 0.10,
    "indent_consistency": 0.10,
    "error_handling_ratio": 0.15,
    "boilerplate_ratio": 0.10,
    "docstring_formality": 0.10,
    "import_organization": 0.10,
}
STYLE_SIGNAL_NAMES = tuple(STYLE_SIGNAL_WEIGHTS)
NEUTRAL_SIGNAL = 0.5  # value used when a sub-signal has too little input to judge


def clamp_unit(value: float, default: float = 0.0) -> float:
    """Force ``value`` into [0, 1]. NaN becomes ``default``."""
    value = float(value)
    if math.isnan(value):
        return default
    return min(max(value, 0.0), 1.0)


@dataclass(frozen=True)
class MetadataResult:
    matched: bool
    confidence: float
    source: str | None = None  # "commit_message" | "pr_description" | "copilot_trailer"
    matched_text: str | None = None

    kind = "metadata"

    @property
    def available(self) -> bool:
        # An unmatched search is not evidence either way.
        return self.matched

    @property
    def probability(self) -> float:
        return clamp_unit(self.confidence)

    @classmethod
    def no_match(cls) -> MetadataResult:
        return cls(matched=False, confidence=0.0)


@dataclass(frozen=True)
class StyleResult:
    score: float
    signals: dict[str, float] = field(default_factory=dict)

    kind = "style"

    @property
    def available(self) -> bool:
        return True

    @property
    def probability(self) -> float:
        return clamp_unit(self.score)

    def clamped(self) -> StyleResult:
        """Return a copy with every sub-signal forced into [0, 1].

        Missing sub-signals are filled with the neutral value and the
        aggregate score is recomputed from the weight table.
        """
        signals = {
            name: clamp_unit(self.signals.get(name, NEUTRAL_SIGNAL), default=NEUTRAL_SIGNAL)
            for name in STYLE_SIGNAL_NAMES
        }
        return StyleResult(score=weighted_style_score(signals), signals=signals)


@dataclass(frozen=True)
class MLResult:
    probability: float
    model_version: str
    features_used: list[str] = field(default_factory=list)

    kind = "ml"

    @property
    def available(self) -> bool:
        return not math.isnan(self.probability)


Evidence = Union[MetadataResult, StyleResult, MLResult]


def weighted_style_score(signals: dict[str, float]) -> float:
    total = sum(signals[name] * weight for name, weight in STYLE_SIGNAL_WEIGHTS.items())
    return min(total, 1.0)


@dataclass(frozen=True)
class DetectionResult:
    combined_probability: float
    risk_level: str  # "high" | "medium" | "low"
    detection_method: str  # e.g. "style", "style+ml", "metadata+style+ml", "none"
    metadata: MetadataResult | None = None
    style: StyleResult | None = None
    ml: MLResult | None = None
    needs_review: bool = False  # no usable evidence, a human has to look

    def to_dict(self) -> dict:
        return {
            "combined_probability": self.combined_probability,
            "risk_level": self.risk_level,
            "detection_method": self.detection_method,
            "metadata": asdict(self.metadata) if self.metadata else None,
            "style": asdict(self.style) if self.style else None,
            "ml": asdict(self.ml) if self.ml else None,
            "needs_review": self.needs_review,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DetectionResult:
        metadata = data.get("metadata")
        style = data.get("style")
        ml = data.get("ml")
        return cls(
            combined_probability=data["combined_probability"],
            risk_level=data["risk_level"],
            detection_method=data["detection_method"],
            metadata=MetadataResult(**metadata) if metadata else None,
            style=StyleResult(**style) if style else None,
            ml=MLResult(**ml) if ml else None,
            needs_review=data.get("needs_review", False),
        )
