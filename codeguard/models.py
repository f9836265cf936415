"""Core data models for codeguard.

Every record is scoped to one company (tenant). Results and score snapshots
are frozen: a scan's file results never change, and scores are appended as
new snapshots rather than updated in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime

from codeguard.detection.signals import DetectionResult

SCAN_TYPES = ("full", "incremental", "pr_scan")
SCAN_STATUSES = ("pending", "processing", "completed", "failed")
TERMINAL_SCAN_STATUSES = ("completed", "failed")

ALERT_SEVERITIES = ("high", "medium", "low")
ALERT_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "active": ("acknowledged", "dismissed", "resolved"),
    "acknowledged": ("resolved", "dismissed"),
    "dismissed": (),
    "resolved": (),
}


@dataclass
class Repository:
    id: str  # UUID
    company_id: str
    github_id: int
    full_name: str  # "owner/repo"
    default_branch: str = "main"
    language: str | None = None
    is_active: bool = True
    webhook_secret: str | None = None
    last_scan_at: datetime | None = None
    last_scan_status: str | None = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Scan:
    id: str  # UUID
    company_id: str
    repository_id: str
    scan_type: str  # "full" | "incremental" | "pr_scan"
    status: str = "pending"
    progress: int = 0  # 0-100
    summary: ScanSummary | None = None
    triggered_by: str | None = None  # user id, "webhook", "schedule" or "watchdog"
    error_message: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SCAN_STATUSES


@dataclass(frozen=True)
class FileResult:
    path: str
    language: str
    total_lines: int
    ai_lines: int
    detection: DetectionResult

    @property
    def risk_level(self) -> str:
        return self.detection.risk_level

    @property
    def ai_probability(self) -> float:
        return self.detection.combined_probability


@dataclass(frozen=True)
class PRResult:
    github_pr_id: int
    number: int
    title: str
    author: str
    state: str  # "open" | "closed" | "merged"
    ai_generated: bool
    ai_probability: float
    human_reviewed: bool
    review_count: int = 0
    reviewers: list[str] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0
    files_changed: int = 0
    created_at: datetime | None = None
    merged_at: datetime | None = None


@dataclass(frozen=True)
class ScanSummary:
    total_commits: int
    total_prs: int
    total_files: int
    total_loc: int
    ai_loc: int
    ai_loc_percentage: float
    ai_prs_detected: int
    reviewed_ai_prs: int
    unreviewed_ai_prs: int
    unreviewed_ai_merges: int
    high_risk_files: int
    medium_risk_files: int
    low_risk_files: int
    files_needing_review: int
    scan_duration_seconds: float
    file_results: list[FileResult] = field(default_factory=list)
    pr_results: list[PRResult] = field(default_factory=list)

    @property
    def ai_loc_ratio(self) -> float:
        return self.ai_loc / self.total_loc if self.total_loc > 0 else 0.0

    def totals(self) -> dict:
        """Summary counters without the per-file and per-PR detail."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("file_results", "pr_results")
        }

    @classmethod
    def from_totals(
        cls,
        data: dict,
        file_results: list[FileResult] | None = None,
        pr_results: list[PRResult] | None = None,
    ) -> ScanSummary:
        return cls(**data, file_results=file_results or [], pr_results=pr_results or [])


@dataclass(frozen=True)
class AIDebtScore:
    id: str  # UUID
    company_id: str
    repository_id: str | None  # None for the company-wide snapshot
    score: int
    risk_zone: str  # "healthy" | "caution" | "critical"
    breakdown: dict
    scan_id: str | None = None
    calculated_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TeamMemberScore:
    id: str  # UUID
    company_id: str
    github_username: str
    period_start: str  # ISO date, Monday
    period_end: str  # ISO date, Sunday
    ai_usage_level: str
    review_quality: str
    risk_index: str
    governance_score: int
    ai_prs: int
    total_prs: int
    prs_reviewed: int
    ai_prs_weak_review: int
    coaching_suggestions: list[dict] = field(default_factory=list)
    calculated_at: datetime = field(default_factory=datetime.now)


@dataclass
class Alert:
    id: str  # UUID
    company_id: str
    severity: str  # "high" | "medium" | "low"
    category: str  # "risk_zone" | "score_drop" | "unreviewed_merges" | "ai_loc" | "debt_score"
    title: str
    description: str
    status: str = "active"
    repository_id: str | None = None
    context: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    acknowledged_at: datetime | None = None


@dataclass
class ScanRunResult:
    """Outcome of one "process next pending scan" call."""

    success: bool
    message: str
    scan_id: str | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass
class TriggerResult:
    scan_ids: list[str] = field(default_factory=list)
    requested: int = 0
    failed: int = 0
    message: str = ""

    @property
    def success(self) -> bool:
        return self.failed == 0
