"""Configuration loading for codeguard.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (CODEGUARD_GITHUB_TOKEN, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path("codeguard.db")
DEFAULT_SCAN_TIMEOUT_MINUTES = 10
DEFAULT_SCORE_DROP_THRESHOLD = 15
DEFAULT_AI_LOC_ALERT_PERCENTAGE = 50
DEFAULT_MAX_FILES = 500
DEFAULT_MAX_PRS = 50


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


def _int_env(name: str, default: int, problems: list[str]) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        problems.append(f"{name} must be an integer (got {raw!r}), using {default}")
        return default


@dataclass
class Config:
    github_token: str = ""
    company_id: str = ""  # tenant all CLI commands act on
    anthropic_api_key: str = ""  # empty disables the ML signal
    db_path: Path = DEFAULT_DB_PATH
    scan_timeout_minutes: int = DEFAULT_SCAN_TIMEOUT_MINUTES  # 0 disables the watchdog
    score_drop_threshold: int = DEFAULT_SCORE_DROP_THRESHOLD
    ai_loc_alert_percentage: int = DEFAULT_AI_LOC_ALERT_PERCENTAGE
    max_files_per_scan: int = DEFAULT_MAX_FILES
    max_prs_per_scan: int = DEFAULT_MAX_PRS
    requeue_timed_out_scans: bool = True  # one automatic retry per timed-out scan
    load_problems: list[str] = field(default_factory=list, repr=False)

    @classmethod
    def load(cls) -> Config:
        problems: list[str] = []
        return cls(
            github_token=os.getenv("CODEGUARD_GITHUB_TOKEN", ""),
            company_id=os.getenv("CODEGUARD_COMPANY_ID", ""),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            db_path=Path(os.getenv("CODEGUARD_DB_PATH", str(DEFAULT_DB_PATH))),
            scan_timeout_minutes=_int_env(
                "CODEGUARD_SCAN_TIMEOUT_MINUTES", DEFAULT_SCAN_TIMEOUT_MINUTES, problems
            ),
            score_drop_threshold=_int_env(
                "CODEGUARD_SCORE_DROP_THRESHOLD", DEFAULT_SCORE_DROP_THRESHOLD, problems
            ),
            ai_loc_alert_percentage=_int_env(
                "CODEGUARD_AI_LOC_ALERT_PERCENTAGE", DEFAULT_AI_LOC_ALERT_PERCENTAGE, problems
            ),
            max_files_per_scan=_int_env("CODEGUARD_MAX_FILES", DEFAULT_MAX_FILES, problems),
            max_prs_per_scan=_int_env("CODEGUARD_MAX_PRS", DEFAULT_MAX_PRS, problems),
            requeue_timed_out_scans=_bool_env("CODEGUARD_REQUEUE_TIMED_OUT_SCANS", True),
            load_problems=problems,
        )

    @property
    def ml_enabled(self) -> bool:
        return bool(self.anthropic_api_key)

    def validate(self) -> list[str]:
        """Return a list of missing or malformed config issues."""
        issues = list(self.load_problems)
        if not self.github_token:
            issues.append("GitHub token not set (CODEGUARD_GITHUB_TOKEN)")
        if not self.company_id:
            issues.append("Company not set (CODEGUARD_COMPANY_ID)")
        if self.scan_timeout_minutes < 0:
            issues.append("Scan timeout must not be negative (CODEGUARD_SCAN_TIMEOUT_MINUTES)")
        if self.score_drop_threshold <= 0:
            issues.append("Score drop threshold must be positive (CODEGUARD_SCORE_DROP_THRESHOLD)")
        return issues
