"""Tests for codeguard.scan.orchestrator."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from conftest import COMPANY_ID, HUMAN_CODE, FakeSource, make_file_result, make_pr_data

from codeguard.errors import INTERNAL_ERROR, INVALID_TRANSITION, SOURCE_CONTROL_ERROR, SourceControlError
from codeguard.github.fetcher import FileData, ReviewData
from codeguard.models import Repository
from codeguard.scan.aggregator import aggregate_scan
from codeguard.scan.orchestrator import ScanOrchestrator, debt_inputs, iso_week_bounds
from codeguard.scoring.thresholds import round_half_up
from codeguard.storage.store import Store

T0 = datetime(2024, 6, 1, 12, 0, 0)

AI_CODE = '''import json
import logging
import os

logger = logging.getLogger(__name__)


def process_incoming_request_payload(request_payload):
    """Process the payload.

    Args:
        request_payload: The payload.

    Returns:
        The result.
    """
    try:
        return json.loads(request_payload)
    except ValueError:
        logger.error("Invalid payload")
        raise ValueError("Invalid payload")
'''


def _second_repo(store: Store) -> Repository:
    repo = Repository(
        id="repo-2",
        company_id=COMPANY_ID,
        github_id=4343,
        full_name="acme/api",
        webhook_secret="other",
    )
    store.save_repository(repo)
    return repo


class TestTriggerScans:
    def test_all_active_repositories(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        _second_repo(store)
        result = orchestrator.trigger_scans(COMPANY_ID, triggered_by="user-1")
        assert result.success is True
        assert result.requested == 2
        assert len(result.scan_ids) == 2
        assert result.message == "Queued 2 scans"
        assert all(
            store.get_scan(COMPANY_ID, scan_id).status == "pending" for scan_id in result.scan_ids
        )

    def test_single_repository(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        result = orchestrator.trigger_scans(COMPANY_ID, connected_repo.id, scan_type="incremental")
        assert result.message == "Queued 1 scan"
        assert store.get_scan(COMPANY_ID, result.scan_ids[0]).scan_type == "incremental"

    def test_skips_inactive_repositories(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        store.deactivate_repository(COMPANY_ID, connected_repo.id)
        result = orchestrator.trigger_scans(COMPANY_ID)
        assert result.requested == 0
        assert result.scan_ids == []
        assert result.success is True

    def test_unknown_repository(self, orchestrator: ScanOrchestrator, connected_repo):
        result = orchestrator.trigger_scans(COMPANY_ID, "missing")
        assert result.success is False
        assert result.failed == 1

    def test_other_company_repository(self, orchestrator: ScanOrchestrator, connected_repo):
        assert orchestrator.trigger_scans("company-other", connected_repo.id).success is False

    def test_unknown_scan_type(self, orchestrator: ScanOrchestrator, connected_repo):
        result = orchestrator.trigger_scans(COMPANY_ID, scan_type="nightly")
        assert result.success is False
        assert "nightly" in result.message

    def test_duplicate_pending_scans_allowed(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        orchestrator.trigger_scans(COMPANY_ID, connected_repo.id)
        orchestrator.trigger_scans(COMPANY_ID, connected_repo.id)
        assert len(store.list_scans(COMPANY_ID, status="pending")) == 2


class TestProcessNextPending:
    def test_nothing_pending(self, orchestrator: ScanOrchestrator):
        result = orchestrator.process_next_pending()
        assert result.success is True
        assert result.scan_id is None

    def test_completes_scan(self, orchestrator: ScanOrchestrator, store: Store, connected_repo, source: FakeSource):
        source.prs = [make_pr_data(1)]
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]

        result = orchestrator.process_next_pending()

        assert result.success is True
        assert result.scan_id == scan_id
        scan = store.get_scan(COMPANY_ID, scan_id)
        assert scan.status == "completed"
        assert scan.progress == 100
        assert scan.summary.total_files == 1
        assert scan.summary.total_prs == 1
        assert scan.summary.total_commits == 1
        assert store.get_repository(COMPANY_ID, connected_repo.id).last_scan_status == "completed"

    def test_scan_claimed_only_once(self, orchestrator: ScanOrchestrator, store: Store, source: FakeSource, connected_repo):
        other = ScanOrchestrator(store, source_factory=lambda repo: source)
        orchestrator.trigger_scans(COMPANY_ID)
        first = orchestrator.process_next_pending()
        second = other.process_next_pending()
        assert first.scan_id is not None
        assert second.scan_id is None

    def test_source_failure_fails_scan(self, store: Store, connected_repo):
        error = SourceControlError("Failed to fetch commits: GitHub token is invalid or revoked")
        orchestrator = ScanOrchestrator(store, source_factory=lambda repo: FakeSource(error=error))
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]

        result = orchestrator.process_next_pending()

        assert result.success is False
        assert result.error_code == SOURCE_CONTROL_ERROR
        assert "revoked" in result.error
        scan = store.get_scan(COMPANY_ID, scan_id)
        assert scan.status == "failed"
        assert scan.error_message == result.error
        assert store.latest_debt_score(COMPANY_ID, connected_repo.id) is None

    def test_unexpected_error_fails_scan(self, store: Store, connected_repo):
        orchestrator = ScanOrchestrator(
            store, source_factory=lambda repo: FakeSource(error=RuntimeError("socket closed"))
        )
        orchestrator.trigger_scans(COMPANY_ID)
        result = orchestrator.process_next_pending()
        assert result.success is False
        assert result.error_code == INTERNAL_ERROR
        assert result.error == "RuntimeError: socket closed"

    def test_scan_failed_elsewhere_is_not_completed(self, store: Store, connected_repo):
        class InterruptedSource(FakeSource):
            def fetch_pull_requests(self, limit: int = 50):
                for stuck in store.find_stale_scans(datetime(9999, 1, 1)):
                    store.fail_scan(stuck.id, "cancelled by operator")
                return []

        orchestrator = ScanOrchestrator(store, source_factory=lambda repo: InterruptedSource())
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]

        result = orchestrator.process_next_pending()

        assert result.success is False
        assert result.error_code == INVALID_TRANSITION
        assert store.get_scan(COMPANY_ID, scan_id).status == "failed"
        assert store.get_file_results(COMPANY_ID, scan_id) == []

    def test_storage_error_on_completion_fails_scan(self, orchestrator: ScanOrchestrator, store: Store, connected_repo, monkeypatch):
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]
        monkeypatch.setattr(
            store, "complete_scan", MagicMock(side_effect=sqlite3.OperationalError("database is locked"))
        )

        result = orchestrator.process_next_pending()

        assert result.success is False
        assert result.error_code == INTERNAL_ERROR
        assert "database is locked" in result.error
        scan = store.get_scan(COMPANY_ID, scan_id)
        assert scan.status == "failed"
        assert scan.error_message == result.error

    def test_storage_error_on_repository_lookup_fails_scan(self, orchestrator: ScanOrchestrator, store: Store, connected_repo, monkeypatch):
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]
        monkeypatch.setattr(
            store, "get_repository", MagicMock(side_effect=sqlite3.OperationalError("disk I/O error"))
        )

        result = orchestrator.process_next_pending()

        assert result.error_code == INTERNAL_ERROR
        assert store.get_scan(COMPANY_ID, scan_id, with_results=False).status == "failed"

    def test_failure_that_cannot_be_recorded_does_not_raise(self, orchestrator: ScanOrchestrator, store: Store, connected_repo, monkeypatch):
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]
        locked = MagicMock(side_effect=sqlite3.OperationalError("database is locked"))
        monkeypatch.setattr(store, "complete_scan", locked)
        monkeypatch.setattr(store, "fail_scan", locked)

        result = orchestrator.process_next_pending()

        assert result.success is False
        assert result.scan_id == scan_id
        assert store.get_scan(COMPANY_ID, scan_id).status == "processing"

    def test_respects_file_cap(self, store: Store, connected_repo):
        files = [FileData(f"src/m{i}.py", HUMAN_CODE) for i in range(25)]
        orchestrator = ScanOrchestrator(
            store, source_factory=lambda repo: FakeSource(files=files), max_files=20
        )
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]
        orchestrator.process_next_pending()
        assert store.get_scan(COMPANY_ID, scan_id).summary.total_files == 20

    def test_drain(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        _second_repo(store)
        orchestrator.trigger_scans(COMPANY_ID)
        results = orchestrator.drain()
        assert len(results) == 2
        assert all(r.success for r in results)
        assert orchestrator.drain() == []

    def test_drain_limit(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        _second_repo(store)
        orchestrator.trigger_scans(COMPANY_ID)
        assert len(orchestrator.drain(max_scans=1)) == 1
        assert len(store.list_scans(COMPANY_ID, status="pending")) == 1


class TestWatchdog:
    def test_stale_scan_failed_and_requeued(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        stuck = store.create_scan(COMPANY_ID, connected_repo.id, "incremental")
        store.claim_scan(stuck.id, now=T0)

        result = orchestrator.process_next_pending(now=T0 + timedelta(minutes=11))

        old = store.get_scan(COMPANY_ID, stuck.id)
        assert old.status == "failed"
        assert "timed out" in old.error_message
        assert result.success is True
        assert result.scan_id != stuck.id
        retry = store.get_scan(COMPANY_ID, result.scan_id)
        assert retry.triggered_by == "watchdog"
        assert retry.scan_type == "incremental"
        assert retry.status == "completed"

    def test_recent_processing_scan_left_alone(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        busy = store.create_scan(COMPANY_ID, connected_repo.id, "full")
        store.claim_scan(busy.id, now=T0)
        assert orchestrator.expire_stale_scans(now=T0 + timedelta(minutes=5)) == []
        assert store.get_scan(COMPANY_ID, busy.id).status == "processing"

    def test_pending_scans_never_expire(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        waiting = store.create_scan(COMPANY_ID, connected_repo.id, "full")
        assert orchestrator.expire_stale_scans(now=datetime.now() + timedelta(days=30)) == []
        assert store.get_scan(COMPANY_ID, waiting.id).status == "pending"

    def test_timed_out_retry_is_not_requeued(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        retry = store.create_scan(COMPANY_ID, connected_repo.id, "full", triggered_by="watchdog")
        store.claim_scan(retry.id, now=T0)

        assert orchestrator.expire_stale_scans(now=T0 + timedelta(minutes=11)) == []
        assert store.get_scan(COMPANY_ID, retry.id).status == "failed"
        assert store.list_scans(COMPANY_ID, status="pending") == []

    def test_requeue_can_be_disabled(self, store: Store, source: FakeSource, connected_repo):
        orchestrator = ScanOrchestrator(store, lambda repo: source, requeue_stale_scans=False)
        stuck = store.create_scan(COMPANY_ID, connected_repo.id, "full")
        store.claim_scan(stuck.id, now=T0)

        assert orchestrator.expire_stale_scans(now=T0 + timedelta(minutes=11)) == []
        assert store.get_scan(COMPANY_ID, stuck.id).status == "failed"
        assert store.list_scans(COMPANY_ID, status="pending") == []

    def test_zero_timeout_disables(self, store: Store, source: FakeSource, connected_repo):
        orchestrator = ScanOrchestrator(store, lambda repo: source, scan_timeout_minutes=0)
        stuck = store.create_scan(COMPANY_ID, connected_repo.id, "full")
        store.claim_scan(stuck.id, now=T0)
        assert orchestrator.expire_stale_scans(now=T0 + timedelta(days=1)) == []
        assert store.get_scan(COMPANY_ID, stuck.id).status == "processing"


class TestFollowUpScoring:
    def test_appends_repository_and_company_scores(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        orchestrator.trigger_scans(COMPANY_ID)
        orchestrator.process_next_pending()

        repo_score = store.latest_debt_score(COMPANY_ID, connected_repo.id)
        company_score = store.latest_debt_score(COMPANY_ID)
        assert 0 <= repo_score.score <= 100
        assert repo_score.breakdown["weights"]["ai_loc_ratio"] == 0.30
        assert company_score.score == repo_score.score
        assert company_score.breakdown["repository_count"] == 1

    def test_history_grows_with_each_scan(self, orchestrator: ScanOrchestrator, store: Store, connected_repo):
        for _ in range(2):
            orchestrator.trigger_scans(COMPANY_ID)
            orchestrator.process_next_pending()
        assert len(store.debt_score_history(COMPANY_ID, connected_repo.id)) == 2
        assert len(store.debt_score_history(COMPANY_ID)) == 2

    def test_company_score_is_mean_of_latest_repository_scores(self, store: Store, connected_repo):
        second = _second_repo(store)
        sources = {
            connected_repo.id: FakeSource(commits=["fix: typo"]),
            second.id: FakeSource(
                files=[FileData("src/handler.py", AI_CODE)], commits=["Generated with Claude"]
            ),
        }
        orchestrator = ScanOrchestrator(store, source_factory=lambda repo: sources[repo.id])
        orchestrator.trigger_scans(COMPANY_ID)
        orchestrator.drain()

        first_score = store.latest_debt_score(COMPANY_ID, connected_repo.id).score
        second_score = store.latest_debt_score(COMPANY_ID, second.id).score
        company = store.latest_debt_score(COMPANY_ID)
        assert first_score > second_score
        assert company.score == round_half_up((first_score + second_score) / 2)
        assert company.breakdown["repository_count"] == 2

    def test_ai_heavy_scan_raises_ai_loc_alert(self, store: Store, connected_repo):
        source = FakeSource(files=[FileData("src/handler.py", AI_CODE)], commits=["Generated with Claude"])
        orchestrator = ScanOrchestrator(store, source_factory=lambda repo: source)
        orchestrator.trigger_scans(COMPANY_ID)
        orchestrator.process_next_pending()

        categories = [a.category for a in store.list_alerts(COMPANY_ID)]
        assert "ai_loc" in categories

    def test_team_scores_for_current_week(self, orchestrator: ScanOrchestrator, store: Store, connected_repo, source: FakeSource):
        source.prs = [
            make_pr_data(1, author="alice", commit_messages=["Generated with Claude"], reviews=[]),
            make_pr_data(2, author="bob", reviews=[ReviewData(reviewer="alice", state="APPROVED")]),
        ]
        orchestrator.trigger_scans(COMPANY_ID)
        orchestrator.process_next_pending()

        members = {m.github_username: m for m in store.current_team_scores(COMPANY_ID)}
        assert set(members) == {"alice", "bob"}
        alice = members["alice"]
        assert (alice.ai_prs, alice.total_prs, alice.ai_prs_weak_review, alice.prs_reviewed) == (1, 1, 1, 1)
        assert alice.ai_usage_level == "high"
        assert alice.period_start == iso_week_bounds(date.today())[0].isoformat()

    def test_scoring_failure_keeps_scan_completed(self, store: Store, source: FakeSource, connected_repo):
        engine = MagicMock()
        engine.evaluate.side_effect = RuntimeError("alert sink down")
        orchestrator = ScanOrchestrator(store, lambda repo: source, alert_engine=engine)
        scan_id = orchestrator.trigger_scans(COMPANY_ID).scan_ids[0]

        result = orchestrator.process_next_pending()

        assert result.success is True
        assert store.get_scan(COMPANY_ID, scan_id).status == "completed"


class TestDebtInputs:
    def test_no_ai_prs_counts_as_full_coverage(self):
        summary = aggregate_scan([], [], T0, now=T0)
        assert debt_inputs(summary).review_coverage == 1.0

    def test_backlog_growth_from_previous_scan(self):
        previous = aggregate_scan([make_file_result("a.py", probability=0.9)] + [
            make_file_result(f"b{i}.py", probability=0.1) for i in range(3)
        ], [], T0, now=T0)
        current = aggregate_scan([make_file_result(f"a{i}.py", probability=0.9) for i in range(3)] + [
            make_file_result("b.py", probability=0.1)
        ], [], T0, now=T0)
        assert debt_inputs(current, previous).refactor_backlog_growth == pytest.approx(0.5)
        assert debt_inputs(previous, current).refactor_backlog_growth == 0.0
        assert debt_inputs(current).refactor_backlog_growth == 0.0

    def test_prompt_inconsistency_is_zero(self):
        assert debt_inputs(aggregate_scan([], [], T0, now=T0)).prompt_inconsistency == 0.0


class TestIsoWeekBounds:
    def test_midweek(self):
        assert iso_week_bounds(date(2024, 6, 5)) == (date(2024, 6, 3), date(2024, 6, 9))

    def test_sunday_belongs_to_previous_monday(self):
        assert iso_week_bounds(date(2024, 6, 9)) == (date(2024, 6, 3), date(2024, 6, 9))
