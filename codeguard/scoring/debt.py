"""AI Debt Score: four governance ratios in, a 0-100 score and risk zone out.

Each input contributes a penalty proportional to how bad it is. Review
coverage is the only "good" ratio, so it is inverted before weighting. The
weight table travels with every result so historical snapshots remain
self-describing after the weights change.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from codeguard.scoring.thresholds import risk_zone, round_half_up

WEIGHTS: dict[str, float] = {
    "ai_loc_ratio": 0.30,
    "review_coverage": 0.30,
    "refactor_backlog_growth": 0.20,
    "prompt_inconsistency": 0.20,
}

# Ratios where a higher value is better; everything else is penalized directly.
INVERTED_INPUTS = frozenset({"review_coverage"})


@dataclass(frozen=True)
class DebtScoreInput:
    ai_loc_ratio: float
    review_coverage: float
    refactor_backlog_growth: float
    prompt_inconsistency: float


@dataclass(frozen=True)
class DebtScoreResult:
    score: int
    risk_zone: str
    breakdown: dict = field(default_factory=dict)


def calculate_ai_debt_score(
    data: DebtScoreInput, weights: dict[str, float] | None = None
) -> DebtScoreResult:
    """Score a set of pre-normalized ratios.

    Inputs outside [0, 1] are not rejected; a total penalty above 100 simply
    clamps the score to 0.
    """
    weights = dict(weights or WEIGHTS)
    inputs = asdict(data)

    total_penalty = 0.0
    for name, weight in weights.items():
        value = inputs[name]
        badness = 1 - value if name in INVERTED_INPUTS else value
        total_penalty += weight * badness * 100

    score = max(0, min(100, round_half_up(100 - total_penalty)))
    return DebtScoreResult(
        score=score,
        risk_zone=risk_zone(score),
        breakdown={**inputs, "weights": weights},
    )
