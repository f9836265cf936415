"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS repositories (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    github_id INTEGER NOT NULL,
    full_name TEXT NOT NULL,
    default_branch TEXT NOT NULL DEFAULT 'main',
    language TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    webhook_secret TEXT,
    last_scan_at TIMESTAMP,
    last_scan_status TEXT,
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS scans (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    repository_id TEXT NOT NULL REFERENCES repositories(id),
    scan_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    progress INTEGER NOT NULL DEFAULT 0,
    summary TEXT,
    triggered_by TEXT,
    error_message TEXT,
    created_at TIMESTAMP,
    started_at TIMESTAMP,
    completed_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS file_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id TEXT NOT NULL REFERENCES scans(id),
    company_id TEXT NOT NULL,
    repository_id TEXT NOT NULL,
    file_path TEXT NOT NULL,
    language TEXT,
    total_loc INTEGER NOT NULL,
    ai_loc INTEGER NOT NULL,
    ai_probability REAL NOT NULL,
    risk_level TEXT NOT NULL,
    detection TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pull_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id TEXT NOT NULL REFERENCES scans(id),
    company_id TEXT NOT NULL,
    repository_id TEXT NOT NULL,
    github_pr_id INTEGER NOT NULL,
    number INTEGER NOT NULL,
    title TEXT,
    author TEXT,
    state TEXT NOT NULL,
    ai_generated INTEGER NOT NULL,
    ai_probability REAL NOT NULL,
    human_reviewed INTEGER NOT NULL,
    review_count INTEGER NOT NULL DEFAULT 0,
    reviewers TEXT,
    additions INTEGER NOT NULL DEFAULT 0,
    deletions INTEGER NOT NULL DEFAULT 0,
    files_changed INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP,
    merged_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS ai_debt_scores (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    repository_id TEXT,
    scan_id TEXT,
    score INTEGER NOT NULL,
    risk_zone TEXT NOT NULL,
    breakdown TEXT NOT NULL,
    calculated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS team_member_scores (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    github_username TEXT NOT NULL,
    period_start TEXT NOT NULL,
    period_end TEXT NOT NULL,
    ai_usage_level TEXT NOT NULL,
    review_quality TEXT NOT NULL,
    risk_index TEXT NOT NULL,
    governance_score INTEGER NOT NULL,
    ai_prs INTEGER NOT NULL,
    total_prs INTEGER NOT NULL,
    prs_reviewed INTEGER NOT NULL,
    ai_prs_weak_review INTEGER NOT NULL,
    coaching_suggestions TEXT,
    calculated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL,
    repository_id TEXT,
    severity TEXT NOT NULL,
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    context TEXT,
    created_at TIMESTAMP NOT NULL,
    acknowledged_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_repositories_company ON repositories(company_id);
CREATE INDEX IF NOT EXISTS idx_repositories_github ON repositories(github_id);
CREATE INDEX IF NOT EXISTS idx_scans_status ON scans(status, created_at);
CREATE INDEX IF NOT EXISTS idx_scans_repository ON scans(repository_id, completed_at);
CREATE INDEX IF NOT EXISTS idx_file_results_scan ON file_results(scan_id);
CREATE INDEX IF NOT EXISTS idx_pull_requests_scan ON pull_requests(scan_id);
CREATE INDEX IF NOT EXISTS idx_pull_requests_github ON pull_requests(repository_id, github_pr_id);
CREATE INDEX IF NOT EXISTS idx_debt_scores_scope ON ai_debt_scores(company_id, repository_id, calculated_at);
CREATE INDEX IF NOT EXISTS idx_team_scores_member ON team_member_scores(company_id, github_username, period_start);
CREATE INDEX IF NOT EXISTS idx_alerts_company ON alerts(company_id, status);
"""

# Score history and scan results are append-only; terminal scans are frozen.
GUARD_SQL = """
CREATE TRIGGER IF NOT EXISTS ai_debt_scores_append_only BEFORE UPDATE ON ai_debt_scores BEGIN
    SELECT RAISE(ABORT, 'ai_debt_scores is append-only');
END;

CREATE TRIGGER IF NOT EXISTS team_member_scores_append_only BEFORE UPDATE ON team_member_scores BEGIN
    SELECT RAISE(ABORT, 'team_member_scores is append-only');
END;

CREATE TRIGGER IF NOT EXISTS file_results_append_only BEFORE UPDATE ON file_results BEGIN
    SELECT RAISE(ABORT, 'file_results is append-only');
END;

CREATE TRIGGER IF NOT EXISTS scans_terminal_frozen BEFORE UPDATE ON scans
WHEN OLD.status IN ('completed', 'failed') BEGIN
    SELECT RAISE(ABORT, 'scan is in a terminal state');
END;
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the codeguard schema."""
    conn = sqlite3.connect(str(db_path), timeout=10.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.executescript(GUARD_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    conn.commit()

    return conn
