"""Scan lifecycle: trigger, claim, analyze, complete or fail, then rescore.

States move ``pending → processing → completed | failed`` and never back.
The claim is a compare-and-swap in the store, so any number of workers can
call :meth:`ScanOrchestrator.process_next_pending` concurrently.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import date, datetime, timedelta
from typing import Callable

from codeguard.alerts.engine import AlertRuleEngine
from codeguard.detection.classifier import Classifier
from codeguard.detection.signals import clamp_unit
from codeguard.errors import INTERNAL_ERROR, INVALID_TRANSITION, CodeGuardError, NotFoundError
from codeguard.models import (
    SCAN_TYPES,
    AIDebtScore,
    Repository,
    Scan,
    ScanRunResult,
    ScanSummary,
    TeamMemberScore,
    TriggerResult,
)
from codeguard.scan.aggregator import aggregate_scan
from codeguard.scan.analyzer import SourceControl, analyze_file, analyze_pull_request
from codeguard.scoring.debt import WEIGHTS, DebtScoreInput, calculate_ai_debt_score
from codeguard.scoring.team import calculate_team_member_score, collect_author_stats
from codeguard.scoring.thresholds import risk_zone, round_half_up
from codeguard.storage.store import Store

logger = logging.getLogger(__name__)

SourceFactory = Callable[[Repository], SourceControl]

DEBT_INPUTS = tuple(WEIGHTS)
PROGRESS_EVERY_FILES = 10
WATCHDOG = "watchdog"


class ScanOrchestrator:
    """Drives scans through their lifecycle and runs the follow-up scoring.

    Usage:
        orchestrator = ScanOrchestrator(store, source_factory=make_fetcher)
        orchestrator.trigger_scans(company_id)
        result = orchestrator.process_next_pending()
    """

    def __init__(
        self,
        store: Store,
        source_factory: SourceFactory,
        classifier: Classifier | None = None,
        alert_engine: AlertRuleEngine | None = None,
        scan_timeout_minutes: int = 10,
        max_files: int = 500,
        max_prs: int = 50,
        requeue_stale_scans: bool = True,
    ) -> None:
        self._store = store
        self._source_factory = source_factory
        self._classifier = classifier
        self._alerts = alert_engine or AlertRuleEngine(store)
        self.scan_timeout_minutes = scan_timeout_minutes
        self.max_files = max_files
        self.max_prs = max_prs
        self.requeue_stale_scans = requeue_stale_scans

    # -- triggers -----------------------------------------------------------

    def trigger_scans(
        self,
        company_id: str,
        repository_id: str | None = None,
        scan_type: str = "full",
        triggered_by: str | None = None,
    ) -> TriggerResult:
        """Queue pending scans for one repository or every active one.

        The result always says how many were requested and how many could
        not be queued.
        """
        if scan_type not in SCAN_TYPES:
            return TriggerResult(
                requested=1, failed=1, message=f"Unknown scan type {scan_type!r}"
            )

        if repository_id:
            repo = self._store.get_repository(company_id, repository_id)
            if repo is None or not repo.is_active:
                return TriggerResult(
                    requested=1, failed=1, message=f"Repository {repository_id} not found"
                )
            repos = [repo]
        else:
            repos = self._store.list_repositories(company_id, active_only=True)
            if not repos:
                return TriggerResult(message="No active repositories to scan")

        result = TriggerResult(requested=len(repos))
        for repo in repos:
            try:
                scan = self._store.create_scan(company_id, repo.id, scan_type, triggered_by)
            except sqlite3.Error as e:
                logger.error(f"Could not queue scan for {repo.full_name}: {e}")
                result.failed += 1
                continue
            result.scan_ids.append(scan.id)
            logger.info(f"Queued {scan_type} scan {scan.id} for {repo.full_name}")

        queued = len(result.scan_ids)
        if result.failed:
            result.message = f"Queued {queued} of {result.requested} scans, {result.failed} failed"
        else:
            result.message = f"Queued {queued} scan{'s' if queued != 1 else ''}"
        return result

    # -- watchdog -----------------------------------------------------------

    def expire_stale_scans(self, now: datetime | None = None) -> list[Scan]:
        """Fail scans stuck in processing past the timeout.

        With ``requeue_stale_scans`` each timed-out scan gets one fresh pending
        scan. A retry that times out again is only failed, so a repository that
        always hangs is not rescanned forever. Returns the newly queued scans.
        Pending scans are never timed out.
        """
        if self.scan_timeout_minutes <= 0:
            return []
        now = now or datetime.now()
        cutoff = now - timedelta(minutes=self.scan_timeout_minutes)

        requeued: list[Scan] = []
        for stale in self._store.find_stale_scans(cutoff):
            message = f"Scan timed out after {self.scan_timeout_minutes} minutes in processing"
            if not self._store.fail_scan(stale.id, message, now):
                continue  # another worker finished or expired it first
            if not self.requeue_stale_scans or stale.triggered_by == WATCHDOG:
                logger.warning(f"Scan {stale.id} timed out, not retrying")
                continue
            logger.warning(f"Scan {stale.id} timed out, queuing a new scan")
            requeued.append(self._store.create_scan(
                stale.company_id, stale.repository_id, stale.scan_type, triggered_by=WATCHDOG
            ))
        return requeued

    # -- processing ---------------------------------------------------------

    def process_next_pending(
        self, company_id: str | None = None, now: datetime | None = None
    ) -> ScanRunResult:
        """Claim and run the oldest pending scan.

        Never raises: fetch and analysis failures fail the scan and come back
        as an unsuccessful result.
        """
        try:
            self.expire_stale_scans(now)
            scan = self._store.claim_next_pending_scan(company_id, now)
        except sqlite3.Error as e:
            logger.error(f"Could not claim a pending scan: {e}")
            return ScanRunResult(
                success=False, message="Could not claim a pending scan",
                error=str(e), error_code=INTERNAL_ERROR,
            )
        if scan is None:
            return ScanRunResult(success=True, message="No pending scans")

        logger.info(f"Started scan {scan.id} ({scan.scan_type})")

        try:
            repo = self._store.get_repository(scan.company_id, scan.repository_id)
            if repo is None:
                raise NotFoundError(f"Repository {scan.repository_id} not found")
            summary = self._analyze(scan, repo)
        except Exception as e:
            error = e.message if isinstance(e, CodeGuardError) else f"{type(e).__name__}: {e}"
            code = e.code if isinstance(e, CodeGuardError) else INTERNAL_ERROR
            logger.error(f"Scan {scan.id} failed: {error}")
            self._record_failure(scan.id, error)
            return ScanRunResult(
                success=False, message=f"Scan {scan.id} failed",
                scan_id=scan.id, error=error, error_code=code,
            )

        try:
            completed = self._store.complete_scan(scan, summary)
        except sqlite3.Error as e:
            error = f"Could not store scan results: {e}"
            logger.error(f"Scan {scan.id} failed: {error}")
            self._record_failure(scan.id, error)
            return ScanRunResult(
                success=False, message=f"Scan {scan.id} failed",
                scan_id=scan.id, error=error, error_code=INTERNAL_ERROR,
            )
        if not completed:
            logger.warning(f"Scan {scan.id} left processing before it could complete")
            return ScanRunResult(
                success=False, message=f"Scan {scan.id} is no longer processing",
                scan_id=scan.id, error_code=INVALID_TRANSITION,
            )
        logger.info(
            f"Completed scan {scan.id}: {summary.total_files} files, "
            f"{summary.ai_loc_percentage}% AI LOC, {summary.total_prs} PRs"
        )

        try:
            self._after_completion(scan, repo, summary)
        except Exception:
            # The scan itself is done; scoring can be rebuilt by the next scan.
            logger.exception(f"Post-scan scoring failed for scan {scan.id}")

        return ScanRunResult(success=True, message=f"Scan {scan.id} completed", scan_id=scan.id)

    def drain(self, company_id: str | None = None, max_scans: int | None = None) -> list[ScanRunResult]:
        """Process pending scans until none are left (or ``max_scans`` ran)."""
        results: list[ScanRunResult] = []
        while max_scans is None or len(results) < max_scans:
            result = self.process_next_pending(company_id)
            if result.scan_id is None:
                if not result.success:
                    results.append(result)
                break
            results.append(result)
        return results

    def _record_failure(self, scan_id: str, error: str) -> None:
        try:
            self._store.fail_scan(scan_id, error)
        except sqlite3.Error as e:
            # Still processing; the watchdog fails it once the timeout passes.
            logger.error(f"Could not mark scan {scan_id} failed: {e}")

    def _analyze(self, scan: Scan, repo: Repository) -> ScanSummary:
        started_at = scan.started_at or datetime.now()
        source = self._source_factory(repo)

        commit_messages = source.fetch_commit_messages()
        self._store.update_scan_progress(scan.id, 10)

        files = source.fetch_code_files(max_files=self.max_files)
        self._store.update_scan_progress(scan.id, 20)

        commit_text = "\n".join(commit_messages)
        file_results = []
        for i, file in enumerate(files, start=1):
            file_results.append(analyze_file(file, commit_text, self._classifier))
            if i % PROGRESS_EVERY_FILES == 0:
                self._store.update_scan_progress(scan.id, 20 + (60 * i) // len(files))
        self._store.update_scan_progress(scan.id, 80)

        prs = source.fetch_pull_requests(limit=self.max_prs)
        pr_results = [analyze_pull_request(pr) for pr in prs]
        self._store.update_scan_progress(scan.id, 90)

        return aggregate_scan(
            file_results, pr_results, started_at, total_commits=len(commit_messages)
        )

    # -- follow-up scoring --------------------------------------------------

    def _after_completion(self, scan: Scan, repo: Repository, summary: ScanSummary) -> None:
        company_id = scan.company_id
        previous_scan = self._store.previous_completed_scan(company_id, repo.id, scan.id)
        previous_summary = previous_scan.summary if previous_scan else None

        previous_repo_score = self._store.latest_debt_score(company_id, repo.id)
        repo_score = self._append_repository_score(scan, repo, summary, previous_summary)

        previous_company_score = self._store.latest_debt_score(company_id)
        company_score = self._append_company_score(scan)

        self._alerts.evaluate(
            company_id, repo.id, repo.full_name, repo_score, previous_repo_score,
            summary, previous_summary,
        )
        if company_score is not None:
            self._alerts.evaluate(
                company_id, None, "company", company_score, previous_company_score
            )

        self._append_team_scores(company_id, summary)

    def _append_repository_score(
        self,
        scan: Scan,
        repo: Repository,
        summary: ScanSummary,
        previous_summary: ScanSummary | None,
    ) -> AIDebtScore:
        result = calculate_ai_debt_score(debt_inputs(summary, previous_summary))
        score = AIDebtScore(
            id=str(uuid.uuid4()),
            company_id=scan.company_id,
            repository_id=repo.id,
            scan_id=scan.id,
            score=result.score,
            risk_zone=result.risk_zone,
            breakdown=result.breakdown,
        )
        self._store.append_debt_score(score)
        logger.info(f"{repo.full_name} AI debt score {score.score} ({score.risk_zone})")
        return score

    def _append_company_score(self, scan: Scan) -> AIDebtScore | None:
        latest = self._store.latest_repository_scores(scan.company_id)
        if not latest:
            return None

        mean_score = round_half_up(sum(s.score for s in latest) / len(latest))
        breakdown: dict = {
            name: round(sum(s.breakdown.get(name, 0.0) for s in latest) / len(latest), 4)
            for name in DEBT_INPUTS
        }
        breakdown["weights"] = dict(WEIGHTS)
        breakdown["repository_count"] = len(latest)

        score = AIDebtScore(
            id=str(uuid.uuid4()),
            company_id=scan.company_id,
            repository_id=None,
            scan_id=scan.id,
            score=mean_score,
            risk_zone=risk_zone(mean_score),
            breakdown=breakdown,
        )
        self._store.append_debt_score(score)
        return score

    def _append_team_scores(self, company_id: str, summary: ScanSummary) -> None:
        period_start, period_end = iso_week_bounds(date.today())
        for stats in collect_author_stats(summary.pr_results).values():
            metrics = calculate_team_member_score(
                stats.ai_prs, stats.total_prs, stats.prs_reviewed, stats.ai_prs_weak_review
            )
            self._store.append_team_member_score(TeamMemberScore(
                id=str(uuid.uuid4()),
                company_id=company_id,
                github_username=stats.github_username,
                period_start=period_start.isoformat(),
                period_end=period_end.isoformat(),
                ai_usage_level=metrics.ai_usage_level,
                review_quality=metrics.review_quality,
                risk_index=metrics.risk_index,
                governance_score=metrics.governance_score,
                ai_prs=stats.ai_prs,
                total_prs=stats.total_prs,
                prs_reviewed=stats.prs_reviewed,
                ai_prs_weak_review=stats.ai_prs_weak_review,
                coaching_suggestions=metrics.coaching_suggestions,
            ))


def debt_inputs(summary: ScanSummary, previous: ScanSummary | None = None) -> DebtScoreInput:
    """Derive the four debt-score ratios from a scan (and the one before it).

    - review coverage: share of AI PRs with a human review, 1.0 with no AI PRs
    - backlog growth: new high-risk files since the previous scan, per file
    - prompt inconsistency: no prompt data is collected, so always 0
    """
    if summary.ai_prs_detected > 0:
        review_coverage = summary.reviewed_ai_prs / summary.ai_prs_detected
    else:
        review_coverage = 1.0

    backlog_growth = 0.0
    if previous is not None and summary.total_files > 0:
        growth = summary.high_risk_files - previous.high_risk_files
        backlog_growth = clamp_unit(growth / summary.total_files)

    return DebtScoreInput(
        ai_loc_ratio=clamp_unit(summary.ai_loc_ratio),
        review_coverage=clamp_unit(review_coverage),
        refactor_backlog_growth=backlog_growth,
        prompt_inconsistency=0.0,
    )


def iso_week_bounds(day: date) -> tuple[date, date]:
    """Monday and Sunday of the ISO week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)
