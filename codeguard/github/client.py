"""Thin wrapper around PyGithub for authenticated GitHub API access."""

from __future__ import annotations

from github import Auth, Github
from github.GithubException import GithubException
from github.Repository import Repository

from codeguard.errors import SourceControlError


class GitHubClient:
    """Authenticated GitHub client scoped to a single repository.

    Usage:
        client = GitHubClient(token="ghp_...", repo="owner/repo")
        repo = client.repo  # PyGithub Repository object
    """

    def __init__(self, token: str, repo: str) -> None:
        self._gh = Github(auth=Auth.Token(token))
        self._repo_name = repo
        self._repo: Repository | None = None

    @property
    def repo_name(self) -> str:
        return self._repo_name

    @property
    def repo(self) -> Repository:
        if self._repo is None:
            try:
                self._repo = self._gh.get_repo(self._repo_name)
            except GithubException as e:
                raise SourceControlError(
                    f"Cannot access {self._repo_name}: {describe_github_error(e)}"
                ) from e
        return self._repo

    def close(self) -> None:
        self._gh.close()


def describe_github_error(error: GithubException) -> str:
    """Human-readable reason for a failed GitHub call (revoked token, rate limit, ...)."""
    message = ""
    if isinstance(error.data, dict):
        message = error.data.get("message", "")
    if error.status == 401:
        return "GitHub token is invalid or revoked"
    if error.status == 403 and "rate limit" in message.lower():
        return "GitHub API rate limit exceeded"
    if error.status == 404:
        return "repository not found or not accessible with this token"
    return f"GitHub API error {error.status}: {message or error}"
