"""Shared three-tier classifiers.

Neither function clamps; callers normalize their inputs first.
"""

from __future__ import annotations

import math

HIGH_RISK_PROBABILITY = 0.7
MEDIUM_RISK_PROBABILITY = 0.4

HEALTHY_SCORE = 80
CAUTION_SCORE = 60

RISK_LEVELS = ("high", "medium", "low")
RISK_ZONES = ("healthy", "caution", "critical")


def risk_level(probability: float) -> str:
    """Map an AI-generation probability in [0, 1] to high / medium / low."""
    if probability >= HIGH_RISK_PROBABILITY:
        return "high"
    if probability >= MEDIUM_RISK_PROBABILITY:
        return "medium"
    return "low"


def risk_zone(score: float) -> str:
    """Map a 0-100 governance score to healthy / caution / critical."""
    if score >= HEALTHY_SCORE:
        return "healthy"
    if score >= CAUTION_SCORE:
        return "caution"
    return "critical"


def zone_rank(zone: str) -> int:
    """Order zones from best (0) to worst (2)."""
    return RISK_ZONES.index(zone)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return math.floor(value + 0.5)
