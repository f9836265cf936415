"""Fetches commits, code files and pull requests from GitHub for one scan."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from github.GithubException import GithubException
from github.PullRequest import PullRequest

from codeguard.errors import SourceControlError
from codeguard.github.client import GitHubClient, describe_github_error

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50_000  # bytes
COMMIT_MESSAGE_LIMIT = 5

CODE_EXTENSIONS = {
    "ts": "TypeScript", "tsx": "TypeScript", "js": "JavaScript", "jsx": "JavaScript",
    "py": "Python", "java": "Java", "go": "Go", "rs": "Rust", "rb": "Ruby",
    "php": "PHP", "cs": "C#", "cpp": "C++", "c": "C", "h": "C", "hpp": "C++",
    "swift": "Swift", "kt": "Kotlin", "scala": "Scala", "vue": "Vue",
    "svelte": "Svelte", "dart": "Dart", "lua": "Lua", "sh": "Shell",
    "bash": "Shell", "sql": "SQL",
}


def file_extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def language_for_path(path: str) -> str:
    return CODE_EXTENSIONS.get(file_extension(path), "Unknown")


def is_code_file(path: str, size: int) -> bool:
    return size <= MAX_FILE_SIZE and file_extension(path) in CODE_EXTENSIONS


@dataclass
class FileData:
    """One source file at the scanned ref."""

    path: str
    content: str
    size: int = 0


@dataclass
class ReviewData:
    reviewer: str
    state: str  # "APPROVED" | "CHANGES_REQUESTED" | "COMMENTED" | ...
    is_bot: bool = False


@dataclass
class PRData:
    """Raw PR data ready for AI detection and review accounting."""

    github_pr_id: int
    number: int
    title: str
    body: str
    author: str
    state: str  # "open" | "closed" | "merged"
    reviews: list[ReviewData] = field(default_factory=list)
    commit_messages: list[str] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    created_at: datetime | None = None
    merged_at: datetime | None = None


class Fetcher:
    """Source-control collaborator backed by the GitHub REST API.

    Any ``GithubException`` is re-raised as ``SourceControlError`` with a
    readable reason so the scan can be failed with it.
    """

    def __init__(self, client: GitHubClient, default_branch: str = "main") -> None:
        self._client = client
        self._branch = default_branch

    def fetch_commit_messages(self, limit: int = COMMIT_MESSAGE_LIMIT) -> list[str]:
        """Most recent commit messages on the default branch (empty repo → [])."""
        repo = self._client.repo
        messages: list[str] = []
        try:
            for commit in repo.get_commits(sha=self._branch):
                if len(messages) >= limit:
                    break
                if commit.commit.message:
                    messages.append(commit.commit.message)
        except GithubException as e:
            if e.status == 409:  # empty repository
                logger.info(f"No commits in {self._client.repo_name}")
                return []
            raise SourceControlError(
                f"Failed to fetch commits: {describe_github_error(e)}"
            ) from e
        return messages

    def fetch_code_files(self, max_files: int = 500) -> list[FileData]:
        """Fetch the decoded content of code files on the default branch."""
        repo = self._client.repo
        try:
            tree = repo.get_git_tree(self._branch, recursive=True)
        except GithubException as e:
            raise SourceControlError(
                f"Failed to fetch file tree: {describe_github_error(e)}"
            ) from e

        candidates = [
            item for item in tree.tree
            if item.type == "blob" and is_code_file(item.path, item.size or 0)
        ]
        if len(candidates) > max_files:
            logger.warning(
                f"{self._client.repo_name} has {len(candidates)} code files, analyzing first {max_files}"
            )
            candidates = candidates[:max_files]

        results: list[FileData] = []
        for item in candidates:
            try:
                content_file = repo.get_contents(item.path, ref=self._branch)
                if isinstance(content_file, list) or content_file.decoded_content is None:
                    continue
                content = content_file.decoded_content.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug(f"Skipping non-UTF-8 file {item.path}")
                continue
            except GithubException as e:
                if e.status in (401, 403):
                    raise SourceControlError(
                        f"Failed to fetch {item.path}: {describe_github_error(e)}"
                    ) from e
                logger.warning(f"Skipping {item.path}: {describe_github_error(e)}")
                continue
            results.append(FileData(path=item.path, content=content, size=item.size or 0))

        return results

    def fetch_pull_requests(self, limit: int = 50) -> list[PRData]:
        """Fetch recently updated PRs (any state) with reviews and commit messages."""
        repo = self._client.repo
        results: list[PRData] = []
        try:
            for pr in repo.get_pulls(state="all", sort="updated", direction="desc"):
                if len(results) >= limit:
                    break
                results.append(self._extract_pr_data(pr))
        except GithubException as e:
            raise SourceControlError(
                f"Failed to fetch pull requests: {describe_github_error(e)}"
            ) from e
        return results

    def _extract_pr_data(self, pr: PullRequest) -> PRData:
        """Extract relevant data from a PyGithub PullRequest object."""
        author = pr.user.login if pr.user else ""

        reviews: list[ReviewData] = []
        for review in pr.get_reviews():
            login = review.user.login if review.user else ""
            is_bot = login.endswith("[bot]") or (
                review.user is not None and review.user.type == "Bot"
            )
            reviews.append(ReviewData(reviewer=login, state=review.state, is_bot=is_bot))

        commit_messages: list[str] = []
        for commit in pr.get_commits():
            if len(commit_messages) >= 20:
                break
            if commit.commit.message:
                commit_messages.append(commit.commit.message)

        state = "merged" if pr.merged_at is not None else pr.state

        return PRData(
            github_pr_id=pr.id,
            number=pr.number,
            title=pr.title or "",
            body=pr.body or "",
            author=author,
            state=state,
            reviews=reviews,
            commit_messages=commit_messages,
            additions=pr.additions or 0,
            deletions=pr.deletions or 0,
            changed_files=pr.changed_files or 0,
            created_at=pr.created_at,
            merged_at=pr.merged_at,
        )
