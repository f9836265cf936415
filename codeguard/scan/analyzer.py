"""Turn fetched source-control data into per-file and per-PR results."""

from __future__ import annotations

from typing import Protocol

from codeguard.detection.classifier import Classifier
from codeguard.detection.combiner import detect_ai_code
from codeguard.detection.metadata import detect_metadata
from codeguard.github.fetcher import FileData, PRData, language_for_path
from codeguard.models import FileResult, PRResult
from codeguard.scoring.thresholds import MEDIUM_RISK_PROBABILITY, round_half_up


class SourceControl(Protocol):
    """What a scan needs from the code host for one repository."""

    def fetch_commit_messages(self, limit: int = ...) -> list[str]: ...

    def fetch_code_files(self, max_files: int = ...) -> list[FileData]: ...

    def fetch_pull_requests(self, limit: int = ...) -> list[PRData]: ...


def analyze_file(
    file: FileData, commit_message: str, classifier: Classifier | None = None
) -> FileResult:
    language = language_for_path(file.path)
    total_lines = len(file.content.split("\n")) if file.content else 0
    detection = detect_ai_code(file.content, language, commit_message, classifier=classifier)
    ai_lines = 0 if detection.needs_review else round_half_up(
        total_lines * detection.combined_probability
    )
    return FileResult(
        path=file.path,
        language=language,
        total_lines=total_lines,
        ai_lines=min(ai_lines, total_lines),
        detection=detection,
    )


def analyze_pull_request(pr: PRData) -> PRResult:
    """Metadata detection over the PR text and its commits, plus review accounting.

    A PR counts as human reviewed once anyone other than its author or a bot
    has left a review.
    """
    metadata = detect_metadata("\n".join(pr.commit_messages), pr.title, pr.body)
    human_reviewers = sorted({
        review.reviewer
        for review in pr.reviews
        if not review.is_bot and review.reviewer and review.reviewer != pr.author
    })
    return PRResult(
        github_pr_id=pr.github_pr_id,
        number=pr.number,
        title=pr.title,
        author=pr.author,
        state=pr.state,
        ai_generated=metadata.matched and metadata.probability >= MEDIUM_RISK_PROBABILITY,
        ai_probability=metadata.probability,
        human_reviewed=bool(human_reviewers),
        review_count=len(pr.reviews),
        reviewers=human_reviewers,
        additions=pr.additions,
        deletions=pr.deletions,
        files_changed=pr.changed_files,
        created_at=pr.created_at,
        merged_at=pr.merged_at,
    )
