"""Company-scoped data access for repositories, scans, scores and alerts.

Every read that serves a tenant takes a ``company_id``. The only unscoped
operations are the ones a system worker needs before it knows the tenant:
claiming the next pending scan and resolving a webhook's repository.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime

from codeguard.detection.signals import DetectionResult
from codeguard.errors import InvalidTransitionError, NotFoundError
from codeguard.models import (
    ALERT_TRANSITIONS,
    AIDebtScore,
    Alert,
    FileResult,
    PRResult,
    Repository,
    Scan,
    ScanSummary,
    TeamMemberScore,
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Store:
    """Data access layer for the codeguard SQLite database."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def close(self) -> None:
        self._conn.close()

    # -- repositories -------------------------------------------------------

    def save_repository(self, repo: Repository) -> None:
        """Insert a repository, or refresh its GitHub details and reactivate it."""
        self._conn.execute(
            """INSERT INTO repositories
            (id, company_id, github_id, full_name, default_branch, language, is_active,
             webhook_secret, last_scan_at, last_scan_status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                full_name = excluded.full_name,
                default_branch = excluded.default_branch,
                language = excluded.language,
                is_active = excluded.is_active,
                webhook_secret = excluded.webhook_secret""",
            (
                repo.id,
                repo.company_id,
                repo.github_id,
                repo.full_name,
                repo.default_branch,
                repo.language,
                int(repo.is_active),
                repo.webhook_secret,
                _ts(repo.last_scan_at),
                repo.last_scan_status,
                _ts(repo.created_at),
            ),
        )
        self._conn.commit()

    def get_repository(self, company_id: str, repository_id: str) -> Repository | None:
        row = self._conn.execute(
            "SELECT * FROM repositories WHERE id = ? AND company_id = ?",
            (repository_id, company_id),
        ).fetchone()
        return self._row_to_repository(row) if row else None

    def find_repositories_by_github_id(
        self, github_id: int, company_id: str | None = None, active_only: bool = True
    ) -> list[Repository]:
        """Every connection of one GitHub repository. Several tenants may connect the same one."""
        query = "SELECT * FROM repositories WHERE github_id = ?"
        params: list = [github_id]
        if company_id:
            query += " AND company_id = ?"
            params.append(company_id)
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY is_active DESC, created_at DESC"
        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_repository(row) for row in rows]

    def list_repositories(self, company_id: str, active_only: bool = True) -> list[Repository]:
        query = "SELECT * FROM repositories WHERE company_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY full_name"
        rows = self._conn.execute(query, (company_id,)).fetchall()
        return [self._row_to_repository(row) for row in rows]

    def deactivate_repository(self, company_id: str, repository_id: str) -> bool:
        """Unlink a repository. Its scans and scores are kept."""
        cur = self._conn.execute(
            "UPDATE repositories SET is_active = 0 WHERE id = ? AND company_id = ?",
            (repository_id, company_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def _record_last_scan(self, repository_id: str, status: str, at: datetime) -> None:
        self._conn.execute(
            "UPDATE repositories SET last_scan_at = ?, last_scan_status = ? WHERE id = ?",
            (at.isoformat(), status, repository_id),
        )

    # -- scans --------------------------------------------------------------

    def create_scan(
        self,
        company_id: str,
        repository_id: str,
        scan_type: str,
        triggered_by: str | None = None,
    ) -> Scan:
        scan = Scan(
            id=str(uuid.uuid4()),
            company_id=company_id,
            repository_id=repository_id,
            scan_type=scan_type,
            triggered_by=triggered_by,
        )
        self._conn.execute(
            """INSERT INTO scans (id, company_id, repository_id, scan_type, status, progress,
                                  triggered_by, created_at)
            VALUES (?, ?, ?, ?, 'pending', 0, ?, ?)""",
            (
                scan.id,
                scan.company_id,
                scan.repository_id,
                scan.scan_type,
                scan.triggered_by,
                scan.created_at.isoformat(),
            ),
        )
        self._conn.commit()
        return scan

    def get_scan(self, company_id: str, scan_id: str, with_results: bool = True) -> Scan | None:
        row = self._conn.execute(
            "SELECT * FROM scans WHERE id = ? AND company_id = ?", (scan_id, company_id)
        ).fetchone()
        return self._row_to_scan(row, with_results) if row else None

    def _get_scan_by_id(self, scan_id: str) -> Scan | None:
        row = self._conn.execute("SELECT * FROM scans WHERE id = ?", (scan_id,)).fetchone()
        return self._row_to_scan(row, with_results=False) if row else None

    def list_scans(
        self,
        company_id: str,
        repository_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Scan]:
        query = "SELECT * FROM scans WHERE company_id = ?"
        params: list = [company_id]
        if repository_id:
            query += " AND repository_id = ?"
            params.append(repository_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_scan(row, with_results=False) for row in rows]

    def claim_scan(self, scan_id: str, now: datetime | None = None) -> bool:
        """Atomically move one scan from pending to processing.

        This is a compare-and-swap on ``status``: of any number of concurrent
        callers exactly one sees ``True``; the rest are no-ops.
        """
        cur = self._conn.execute(
            """UPDATE scans SET status = 'processing', started_at = ?, progress = 0
            WHERE id = ? AND status = 'pending'""",
            ((now or datetime.now()).isoformat(), scan_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def claim_next_pending_scan(
        self, company_id: str | None = None, now: datetime | None = None
    ) -> Scan | None:
        """Claim the oldest pending scan, skipping any a concurrent worker won first."""
        query = "SELECT id FROM scans WHERE status = 'pending'"
        params: list = []
        if company_id:
            query += " AND company_id = ?"
            params.append(company_id)
        query += " ORDER BY created_at, rowid LIMIT 20"

        for row in self._conn.execute(query, params).fetchall():
            if self.claim_scan(row["id"], now):
                return self._get_scan_by_id(row["id"])
        return None

    def update_scan_progress(self, scan_id: str, progress: int) -> None:
        self._conn.execute(
            "UPDATE scans SET progress = ? WHERE id = ? AND status = 'processing'",
            (max(0, min(100, progress)), scan_id),
        )
        self._conn.commit()

    def complete_scan(self, scan: Scan, summary: ScanSummary, now: datetime | None = None) -> bool:
        """Persist results and move processing → completed in one transaction.

        Returns False (and writes nothing) if the scan is no longer processing.
        """
        completed_at = now or datetime.now()
        with self._conn:
            cur = self._conn.execute(
                """UPDATE scans SET status = 'completed', progress = 100, summary = ?,
                       completed_at = ?, error_message = NULL
                WHERE id = ? AND status = 'processing'""",
                (json.dumps(summary.totals()), completed_at.isoformat(), scan.id),
            )
            if cur.rowcount != 1:
                return False
            self._insert_file_results(scan, summary.file_results)
            self._insert_pr_results(scan, summary.pr_results)
            self._record_last_scan(scan.repository_id, "completed", completed_at)
        return True

    def fail_scan(self, scan_id: str, error_message: str, now: datetime | None = None) -> bool:
        """Move processing → failed with an error. False if the scan was not processing."""
        failed_at = now or datetime.now()
        with self._conn:
            cur = self._conn.execute(
                """UPDATE scans SET status = 'failed', error_message = ?, completed_at = ?
                WHERE id = ? AND status = 'processing'""",
                (error_message, failed_at.isoformat(), scan_id),
            )
            if cur.rowcount != 1:
                return False
            row = self._conn.execute(
                "SELECT repository_id FROM scans WHERE id = ?", (scan_id,)
            ).fetchone()
            self._record_last_scan(row["repository_id"], "failed", failed_at)
        return True

    def find_stale_scans(self, started_before: datetime) -> list[Scan]:
        rows = self._conn.execute(
            """SELECT * FROM scans WHERE status = 'processing' AND started_at < ?
            ORDER BY started_at""",
            (started_before.isoformat(),),
        ).fetchall()
        return [self._row_to_scan(row, with_results=False) for row in rows]

    def previous_completed_scan(
        self, company_id: str, repository_id: str, before_scan_id: str
    ) -> Scan | None:
        """The last completed scan of a repository other than ``before_scan_id``."""
        row = self._conn.execute(
            """SELECT * FROM scans
            WHERE company_id = ? AND repository_id = ? AND status = 'completed' AND id != ?
            ORDER BY completed_at DESC, rowid DESC LIMIT 1""",
            (company_id, repository_id, before_scan_id),
        ).fetchone()
        return self._row_to_scan(row, with_results=False) if row else None

    # -- file and PR results ------------------------------------------------

    def _insert_file_results(self, scan: Scan, results: list[FileResult]) -> None:
        self._conn.executemany(
            """INSERT INTO file_results
            (scan_id, company_id, repository_id, file_path, language, total_loc, ai_loc,
             ai_probability, risk_level, detection)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    scan.id,
                    scan.company_id,
                    scan.repository_id,
                    r.path,
                    r.language,
                    r.total_lines,
                    r.ai_lines,
                    r.ai_probability,
                    r.risk_level,
                    json.dumps(r.detection.to_dict()),
                )
                for r in results
            ],
        )

    def _insert_pr_results(self, scan: Scan, results: list[PRResult]) -> None:
        self._conn.executemany(
            """INSERT INTO pull_requests
            (scan_id, company_id, repository_id, github_pr_id, number, title, author, state,
             ai_generated, ai_probability, human_reviewed, review_count, reviewers,
             additions, deletions, files_changed, created_at, merged_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    scan.id,
                    scan.company_id,
                    scan.repository_id,
                    r.github_pr_id,
                    r.number,
                    r.title,
                    r.author,
                    r.state,
                    int(r.ai_generated),
                    r.ai_probability,
                    int(r.human_reviewed),
                    r.review_count,
                    json.dumps(r.reviewers),
                    r.additions,
                    r.deletions,
                    r.files_changed,
                    _ts(r.created_at),
                    _ts(r.merged_at),
                )
                for r in results
            ],
        )

    def get_file_results(self, company_id: str, scan_id: str) -> list[FileResult]:
        rows = self._conn.execute(
            "SELECT * FROM file_results WHERE scan_id = ? AND company_id = ? ORDER BY id",
            (scan_id, company_id),
        ).fetchall()
        return [
            FileResult(
                path=row["file_path"],
                language=row["language"],
                total_lines=row["total_loc"],
                ai_lines=row["ai_loc"],
                detection=DetectionResult.from_dict(json.loads(row["detection"])),
            )
            for row in rows
        ]

    def get_pr_results(self, company_id: str, scan_id: str) -> list[PRResult]:
        rows = self._conn.execute(
            "SELECT * FROM pull_requests WHERE scan_id = ? AND company_id = ? ORDER BY id",
            (scan_id, company_id),
        ).fetchall()
        return [self._row_to_pr(row) for row in rows]

    def mark_pr_reviewed(self, repository_id: str, github_pr_id: int) -> int:
        """Record a human review that arrived after the PR was scanned."""
        cur = self._conn.execute(
            """UPDATE pull_requests SET human_reviewed = 1, review_count = review_count + 1
            WHERE repository_id = ? AND github_pr_id = ? AND human_reviewed = 0""",
            (repository_id, github_pr_id),
        )
        self._conn.commit()
        return cur.rowcount

    # -- score history ------------------------------------------------------

    def append_debt_score(self, score: AIDebtScore) -> None:
        self._conn.execute(
            """INSERT INTO ai_debt_scores
            (id, company_id, repository_id, scan_id, score, risk_zone, breakdown, calculated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                score.id,
                score.company_id,
                score.repository_id,
                score.scan_id,
                score.score,
                score.risk_zone,
                json.dumps(score.breakdown),
                score.calculated_at.isoformat(),
            ),
        )
        self._conn.commit()

    def debt_score_history(
        self, company_id: str, repository_id: str | None = None, limit: int = 30
    ) -> list[AIDebtScore]:
        """Snapshots for one scope, newest first. ``repository_id=None`` is the company scope."""
        if repository_id is None:
            scope, params = "repository_id IS NULL", [company_id]
        else:
            scope, params = "repository_id = ?", [company_id, repository_id]
        rows = self._conn.execute(
            f"""SELECT * FROM ai_debt_scores WHERE company_id = ? AND {scope}
            ORDER BY calculated_at DESC, rowid DESC LIMIT ?""",
            [*params, limit],
        ).fetchall()
        return [self._row_to_debt_score(row) for row in rows]

    def latest_debt_score(
        self, company_id: str, repository_id: str | None = None
    ) -> AIDebtScore | None:
        history = self.debt_score_history(company_id, repository_id, limit=1)
        return history[0] if history else None

    def latest_repository_scores(self, company_id: str) -> list[AIDebtScore]:
        """The most recent snapshot of every repository in the company."""
        rows = self._conn.execute(
            """SELECT * FROM ai_debt_scores
            WHERE company_id = ? AND repository_id IS NOT NULL
            ORDER BY calculated_at DESC, rowid DESC""",
            (company_id,),
        ).fetchall()
        latest: dict[str, AIDebtScore] = {}
        for row in rows:
            if row["repository_id"] not in latest:
                latest[row["repository_id"]] = self._row_to_debt_score(row)
        return list(latest.values())

    def append_team_member_score(self, score: TeamMemberScore) -> None:
        self._conn.execute(
            """INSERT INTO team_member_scores
            (id, company_id, github_username, period_start, period_end, ai_usage_level,
             review_quality, risk_index, governance_score, ai_prs, total_prs, prs_reviewed,
             ai_prs_weak_review, coaching_suggestions, calculated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                score.id,
                score.company_id,
                score.github_username,
                score.period_start,
                score.period_end,
                score.ai_usage_level,
                score.review_quality,
                score.risk_index,
                score.governance_score,
                score.ai_prs,
                score.total_prs,
                score.prs_reviewed,
                score.ai_prs_weak_review,
                json.dumps(score.coaching_suggestions),
                score.calculated_at.isoformat(),
            ),
        )
        self._conn.commit()

    def current_team_scores(self, company_id: str) -> list[TeamMemberScore]:
        """Latest snapshot per developer, by period then calculation time."""
        rows = self._conn.execute(
            """SELECT * FROM team_member_scores WHERE company_id = ?
            ORDER BY period_start DESC, calculated_at DESC, rowid DESC""",
            (company_id,),
        ).fetchall()
        current: dict[str, TeamMemberScore] = {}
        for row in rows:
            if row["github_username"] not in current:
                current[row["github_username"]] = self._row_to_team_score(row)
        return sorted(current.values(), key=lambda s: s.github_username)

    # -- alerts -------------------------------------------------------------

    def create_alert(self, alert: Alert) -> None:
        self._conn.execute(
            """INSERT INTO alerts
            (id, company_id, repository_id, severity, category, title, description, status,
             context, created_at, acknowledged_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'active', ?, ?, NULL)""",
            (
                alert.id,
                alert.company_id,
                alert.repository_id,
                alert.severity,
                alert.category,
                alert.title,
                alert.description,
                json.dumps(alert.context, default=str),
                alert.created_at.isoformat(),
            ),
        )
        self._conn.commit()

    def get_alert(self, company_id: str, alert_id: str) -> Alert | None:
        row = self._conn.execute(
            "SELECT * FROM alerts WHERE id = ? AND company_id = ?", (alert_id, company_id)
        ).fetchone()
        return self._row_to_alert(row) if row else None

    def list_alerts(
        self,
        company_id: str,
        status: str | None = None,
        repository_id: str | None = None,
        limit: int = 100,
    ) -> list[Alert]:
        query = "SELECT * FROM alerts WHERE company_id = ?"
        params: list = [company_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        if repository_id:
            query += " AND repository_id = ?"
            params.append(repository_id)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_alert(row) for row in rows]

    def update_alert_status(
        self, company_id: str, alert_id: str, status: str, now: datetime | None = None
    ) -> Alert:
        """Apply a one-way status change made by a person.

        Raises NotFoundError for an unknown alert and InvalidTransitionError
        for a change the workflow does not allow.
        """
        alert = self.get_alert(company_id, alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        if status not in ALERT_TRANSITIONS.get(alert.status, ()):
            raise InvalidTransitionError(f"Cannot move alert from {alert.status} to {status}")

        acknowledged_at = alert.acknowledged_at
        if status == "acknowledged":
            acknowledged_at = now or datetime.now()
        cur = self._conn.execute(
            """UPDATE alerts SET status = ?, acknowledged_at = ?
            WHERE id = ? AND company_id = ? AND status = ?""",
            (status, _ts(acknowledged_at), alert_id, company_id, alert.status),
        )
        self._conn.commit()
        if cur.rowcount != 1:
            raise InvalidTransitionError(f"Alert {alert_id} changed concurrently, retry")
        alert.status = status
        alert.acknowledged_at = acknowledged_at
        return alert

    # -- row mapping --------------------------------------------------------

    def _row_to_repository(self, row: sqlite3.Row) -> Repository:
        return Repository(
            id=row["id"],
            company_id=row["company_id"],
            github_id=row["github_id"],
            full_name=row["full_name"],
            default_branch=row["default_branch"],
            language=row["language"],
            is_active=bool(row["is_active"]),
            webhook_secret=row["webhook_secret"],
            last_scan_at=_parse_ts(row["last_scan_at"]),
            last_scan_status=row["last_scan_status"],
            created_at=_parse_ts(row["created_at"]) or datetime.now(),
        )

    def _row_to_scan(self, row: sqlite3.Row, with_results: bool) -> Scan:
        summary = None
        if row["summary"]:
            totals = json.loads(row["summary"])
            if with_results:
                summary = ScanSummary.from_totals(
                    totals,
                    self.get_file_results(row["company_id"], row["id"]),
                    self.get_pr_results(row["company_id"], row["id"]),
                )
            else:
                summary = ScanSummary.from_totals(totals)
        return Scan(
            id=row["id"],
            company_id=row["company_id"],
            repository_id=row["repository_id"],
            scan_type=row["scan_type"],
            status=row["status"],
            progress=row["progress"],
            summary=summary,
            triggered_by=row["triggered_by"],
            error_message=row["error_message"],
            created_at=_parse_ts(row["created_at"]) or datetime.now(),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )

    def _row_to_pr(self, row: sqlite3.Row) -> PRResult:
        return PRResult(
            github_pr_id=row["github_pr_id"],
            number=row["number"],
            title=row["title"] or "",
            author=row["author"] or "",
            state=row["state"],
            ai_generated=bool(row["ai_generated"]),
            ai_probability=row["ai_probability"],
            human_reviewed=bool(row["human_reviewed"]),
            review_count=row["review_count"],
            reviewers=json.loads(row["reviewers"]) if row["reviewers"] else [],
            additions=row["additions"],
            deletions=row["deletions"],
            files_changed=row["files_changed"],
            created_at=_parse_ts(row["created_at"]),
            merged_at=_parse_ts(row["merged_at"]),
        )

    def _row_to_debt_score(self, row: sqlite3.Row) -> AIDebtScore:
        return AIDebtScore(
            id=row["id"],
            company_id=row["company_id"],
            repository_id=row["repository_id"],
            scan_id=row["scan_id"],
            score=row["score"],
            risk_zone=row["risk_zone"],
            breakdown=json.loads(row["breakdown"]),
            calculated_at=_parse_ts(row["calculated_at"]),
        )

    def _row_to_team_score(self, row: sqlite3.Row) -> TeamMemberScore:
        return TeamMemberScore(
            id=row["id"],
            company_id=row["company_id"],
            github_username=row["github_username"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            ai_usage_level=row["ai_usage_level"],
            review_quality=row["review_quality"],
            risk_index=row["risk_index"],
            governance_score=row["governance_score"],
            ai_prs=row["ai_prs"],
            total_prs=row["total_prs"],
            prs_reviewed=row["prs_reviewed"],
            ai_prs_weak_review=row["ai_prs_weak_review"],
            coaching_suggestions=json.loads(row["coaching_suggestions"] or "[]"),
            calculated_at=_parse_ts(row["calculated_at"]),
        )

    def _row_to_alert(self, row: sqlite3.Row) -> Alert:
        return Alert(
            id=row["id"],
            company_id=row["company_id"],
            repository_id=row["repository_id"],
            severity=row["severity"],
            category=row["category"],
            title=row["title"],
            description=row["description"] or "",
            status=row["status"],
            context=json.loads(row["context"] or "{}"),
            created_at=_parse_ts(row["created_at"]),
            acknowledged_at=_parse_ts(row["acknowledged_at"]),
        )
