"""Team-wide AI adoption health score."""

from __future__ import annotations

from dataclasses import dataclass

from codeguard.scoring.thresholds import round_half_up

ADOPTION_WEIGHT = 30
GOVERNANCE_WEIGHT = 40
REVIEW_WEIGHT = 30


@dataclass(frozen=True)
class AdoptionMetrics:
    total_team_members: int
    members_using_ai: int
    average_governance_score: float  # 0-100
    review_coverage: float  # 0-1


def calculate_adoption_score(metrics: AdoptionMetrics) -> int:
    adoption_rate = (
        metrics.members_using_ai / metrics.total_team_members
        if metrics.total_team_members > 0
        else 0.0
    )
    score = round_half_up(
        adoption_rate * ADOPTION_WEIGHT
        + (metrics.average_governance_score / 100) * GOVERNANCE_WEIGHT
        + metrics.review_coverage * REVIEW_WEIGHT
    )
    return min(100, max(0, score))
