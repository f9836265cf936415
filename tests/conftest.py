"""Shared test fixtures for codeguard."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

import pytest

from codeguard.detection.signals import DetectionResult
from codeguard.github.fetcher import FileData, PRData, ReviewData
from codeguard.models import FileResult, PRResult, Repository
from codeguard.scan.orchestrator import ScanOrchestrator
from codeguard.scoring.thresholds import risk_level
from codeguard.storage.db import get_connection
from codeguard.storage.store import Store

COMPANY_ID = "company-acme"

HUMAN_CODE = '''import os
import sys

def load(path):
    # read the file, teh old way
    with open(path) as f:
        return f.read()

def main():
    print(load(sys.argv[1]))
'''


class FakeSource:
    """In-memory source-control collaborator."""

    def __init__(
        self,
        files: list[FileData] | None = None,
        prs: list[PRData] | None = None,
        commits: list[str] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.files = files if files is not None else [FileData("src/app.py", HUMAN_CODE)]
        self.prs = prs or []
        self.commits = commits if commits is not None else ["fix: handle empty input"]
        self.error = error

    def fetch_commit_messages(self, limit: int = 5) -> list[str]:
        if self.error:
            raise self.error
        return self.commits[:limit]

    def fetch_code_files(self, max_files: int = 500) -> list[FileData]:
        return self.files[:max_files]

    def fetch_pull_requests(self, limit: int = 50) -> list[PRData]:
        return self.prs[:limit]


def make_detection(probability: float, needs_review: bool = False) -> DetectionResult:
    return DetectionResult(
        combined_probability=probability,
        risk_level=risk_level(probability),
        detection_method="none" if needs_review else "style",
        needs_review=needs_review,
    )


def make_file_result(path: str = "src/a.py", total: int = 100, probability: float = 0.5, **kwargs) -> FileResult:
    return FileResult(
        path=path,
        language=kwargs.pop("language", "Python"),
        total_lines=total,
        ai_lines=kwargs.pop("ai_lines", round(total * probability)),
        detection=make_detection(probability, kwargs.pop("needs_review", False)),
    )


def make_pr_result(number: int = 1, **kwargs) -> PRResult:
    defaults = dict(
        github_pr_id=1000 + number,
        number=number,
        title=f"PR {number}",
        author="alice",
        state="merged",
        ai_generated=False,
        ai_probability=0.0,
        human_reviewed=True,
        review_count=1,
        reviewers=["bob"],
    )
    defaults.update(kwargs)
    return PRResult(**defaults)


def make_pr_data(number: int = 1, **kwargs) -> PRData:
    defaults = dict(
        github_pr_id=1000 + number,
        number=number,
        title=f"PR {number}",
        body="",
        author="alice",
        state="merged",
        reviews=[ReviewData(reviewer="bob", state="APPROVED")],
        commit_messages=["feat: add endpoint"],
        created_at=datetime(2024, 6, 1, 9, 0, 0),
        merged_at=datetime(2024, 6, 2, 9, 0, 0),
    )
    defaults.update(kwargs)
    return PRData(**defaults)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def store(db_conn: sqlite3.Connection) -> Store:
    return Store(db_conn)


@pytest.fixture
def sample_repo() -> Repository:
    return Repository(
        id="repo-1",
        company_id=COMPANY_ID,
        github_id=4242,
        full_name="acme/webapp",
        language="Python",
        webhook_secret="s3cret",
        created_at=datetime(2024, 6, 1, 9, 0, 0),
    )


@pytest.fixture
def connected_repo(store: Store, sample_repo: Repository) -> Repository:
    store.save_repository(sample_repo)
    return sample_repo


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def orchestrator(store: Store, source: FakeSource) -> ScanOrchestrator:
    return ScanOrchestrator(store, source_factory=lambda repo: source)
