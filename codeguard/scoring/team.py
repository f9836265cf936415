"""Per-developer governance scoring.

All tier thresholds are strict ``>``: a ratio sitting exactly on a boundary
falls into the lower tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from codeguard.errors import DATA_INCONSISTENCY
from codeguard.scoring.thresholds import round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeamMemberMetrics:
    ai_usage_level: str  # "high" | "medium" | "low"
    review_quality: str  # "strong" | "moderate" | "weak"
    risk_index: str  # "high" | "medium" | "low"
    governance_score: int
    coaching_suggestions: list[dict] = field(default_factory=list)
    inconsistent_input: bool = False


def _tier(ratio: float, upper: float, lower: float, labels: tuple[str, str, str]) -> str:
    if ratio > upper:
        return labels[0]
    if ratio > lower:
        return labels[1]
    return labels[2]


def calculate_team_member_score(
    ai_prs: int,
    total_prs: int,
    reviewed_by_this_person: int,
    ai_prs_with_weak_review: int,
) -> TeamMemberMetrics:
    """Score one developer from their PR counts for a period.

    Counts that violate ``ai_prs <= total_prs`` or
    ``ai_prs_with_weak_review <= ai_prs`` point at an upstream data bug. They
    are logged and clamped so a single bad record cannot abort a scoring run.
    """
    inconsistent = False
    if min(ai_prs, total_prs, reviewed_by_this_person, ai_prs_with_weak_review) < 0:
        logger.warning(f"{DATA_INCONSISTENCY}: negative PR count in team scoring input")
        inconsistent = True
        ai_prs = max(ai_prs, 0)
        total_prs = max(total_prs, 0)
        reviewed_by_this_person = max(reviewed_by_this_person, 0)
        ai_prs_with_weak_review = max(ai_prs_with_weak_review, 0)
    if ai_prs > total_prs:
        logger.warning(
            f"{DATA_INCONSISTENCY}: {ai_prs} AI PRs exceeds {total_prs} total PRs, clamping"
        )
        inconsistent = True
        ai_prs = total_prs
    if ai_prs_with_weak_review > ai_prs:
        logger.warning(
            f"{DATA_INCONSISTENCY}: {ai_prs_with_weak_review} weakly reviewed AI PRs "
            f"exceeds {ai_prs} AI PRs, clamping"
        )
        inconsistent = True
        ai_prs_with_weak_review = ai_prs

    ai_ratio = ai_prs / total_prs if total_prs > 0 else 0.0
    review_ratio = reviewed_by_this_person / total_prs if total_prs > 0 else 0.0
    weak_ratio = ai_prs_with_weak_review / ai_prs if ai_prs > 0 else 0.0

    ai_usage_level = _tier(ai_ratio, 0.6, 0.3, ("high", "medium", "low"))
    review_quality = _tier(review_ratio, 0.5, 0.25, ("strong", "moderate", "weak"))
    risk_index = _tier(weak_ratio, 0.5, 0.25, ("high", "medium", "low"))

    raw_score = (1 - weak_ratio) * 50 + review_ratio * 30 + (1 - ai_ratio * 0.3) * 20
    governance_score = max(0, min(100, round_half_up(raw_score)))

    return TeamMemberMetrics(
        ai_usage_level=ai_usage_level,
        review_quality=review_quality,
        risk_index=risk_index,
        governance_score=governance_score,
        coaching_suggestions=coaching_suggestions(
            ai_usage_level, review_quality, risk_index, governance_score, total_prs
        ),
        inconsistent_input=inconsistent,
    )


def coaching_suggestions(
    ai_usage_level: str,
    review_quality: str,
    risk_index: str,
    governance_score: int,
    total_prs: int,
) -> list[dict]:
    suggestions: list[dict] = []
    if ai_usage_level == "high":
        suggestions.append({
            "type": "ai_usage",
            "priority": "high",
            "message": "High AI code usage detected. Ensure thorough code reviews for all AI-generated contributions.",
        })
    if risk_index == "high":
        suggestions.append({
            "type": "risk",
            "priority": "high",
            "message": "Most AI-generated PRs merged with weak review. Require a human approval before merging.",
        })
    if governance_score < 60:
        suggestions.append({
            "type": "governance",
            "priority": "high",
            "message": "Low governance score. Align with team coding standards and request peer reviews before merging.",
        })
    if ai_usage_level == "medium":
        suggestions.append({
            "type": "ai_usage",
            "priority": "medium",
            "message": "Moderate AI usage. Continue monitoring AI code quality and review coverage.",
        })
    if review_quality == "weak" and total_prs < 5:
        suggestions.append({
            "type": "review_quality",
            "priority": "low",
            "message": "Limited PR activity. Participate in more code reviews.",
        })
    return suggestions


@dataclass
class AuthorPRStats:
    """PR counts for one developer, as fed to :func:`calculate_team_member_score`."""

    github_username: str
    total_prs: int = 0
    ai_prs: int = 0
    prs_reviewed: int = 0  # other people's PRs this developer reviewed
    ai_prs_weak_review: int = 0  # own AI PRs without a human review


def collect_author_stats(pr_results: list) -> dict[str, AuthorPRStats]:
    """Fold a scan's PR results into per-developer counts.

    Developers who only reviewed (and authored nothing) are included with
    ``total_prs == 0``.
    """
    stats: dict[str, AuthorPRStats] = {}

    def entry(username: str) -> AuthorPRStats:
        if username not in stats:
            stats[username] = AuthorPRStats(github_username=username)
        return stats[username]

    for pr in pr_results:
        if pr.author:
            author = entry(pr.author)
            author.total_prs += 1
            if pr.ai_generated:
                author.ai_prs += 1
                if not pr.human_reviewed:
                    author.ai_prs_weak_review += 1
        for reviewer in pr.reviewers:
            if reviewer != pr.author:
                entry(reviewer).prs_reviewed += 1

    return stats
