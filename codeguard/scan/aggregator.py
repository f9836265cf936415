"""Fold one scan's file and PR results into a ScanSummary."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from codeguard.models import FileResult, PRResult, ScanSummary


def aggregate_scan(
    file_results: Sequence[FileResult],
    pr_results: Sequence[PRResult],
    started_at: datetime,
    total_commits: int = 0,
    now: datetime | None = None,
) -> ScanSummary:
    """Build the summary for one scan run.

    Totals depend only on the inputs; the duration is the only field that
    reads the clock, and ``now`` can pin it.
    """
    total_loc = sum(f.total_lines for f in file_results)
    # A file can never attribute more AI lines than it has.
    ai_loc = sum(min(f.ai_lines, f.total_lines) for f in file_results)
    ai_loc_percentage = round(100 * ai_loc / total_loc, 2) if total_loc > 0 else 0.0

    risk_counts = {"high": 0, "medium": 0, "low": 0}
    for f in file_results:
        risk_counts[f.risk_level if f.risk_level in risk_counts else "low"] += 1

    ai_prs = [pr for pr in pr_results if pr.ai_generated]
    reviewed_ai_prs = sum(1 for pr in ai_prs if pr.human_reviewed)
    unreviewed_ai_merges = sum(
        1 for pr in ai_prs if pr.state == "merged" and not pr.human_reviewed
    )

    finished = now or datetime.now()
    return ScanSummary(
        total_commits=total_commits,
        total_prs=len(pr_results),
        total_files=len(file_results),
        total_loc=total_loc,
        ai_loc=ai_loc,
        ai_loc_percentage=ai_loc_percentage,
        ai_prs_detected=len(ai_prs),
        reviewed_ai_prs=reviewed_ai_prs,
        unreviewed_ai_prs=len(ai_prs) - reviewed_ai_prs,
        unreviewed_ai_merges=unreviewed_ai_merges,
        high_risk_files=risk_counts["high"],
        medium_risk_files=risk_counts["medium"],
        low_risk_files=risk_counts["low"],
        files_needing_review=sum(1 for f in file_results if f.detection.needs_review),
        scan_duration_seconds=max((finished - started_at).total_seconds(), 0.0),
        file_results=list(file_results),
        pr_results=list(pr_results),
    )
