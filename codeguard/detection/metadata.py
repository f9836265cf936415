"""AI-tool metadata detection.

Looks for fingerprints AI coding tools leave in commit messages and PR text
(tool names, "generated with ..." phrases, bot co-author trailers). A match
is close to ground truth, so confidences are high.
"""

from __future__ import annotations

import re

from codeguard.detection.signals import MetadataResult

COMMIT_CONFIDENCE = 0.9
PR_CONFIDENCE = 0.85
COPILOT_TRAILER_CONFIDENCE = 0.95
COPILOT_TRAILER = "Co-authored-by: GitHub Copilot"

AI_COMMIT_PATTERNS = [
    re.compile(r"\bcopilot\b", re.IGNORECASE),
    re.compile(r"\bcursor\b", re.IGNORECASE),
    re.compile(r"\bcodeium\b", re.IGNORECASE),
    re.compile(
        r"generated\s+(by|with|using)\s+(ai|claude|chatgpt|gpt|openai|copilot|gemini|llm)",
        re.IGNORECASE,
    ),
    re.compile(r"ai[- ]assisted", re.IGNORECASE),
    re.compile(r"auto[- ]generated", re.IGNORECASE),
    re.compile(r"\[ai\]", re.IGNORECASE),
    re.compile(r"\[copilot\]", re.IGNORECASE),
    re.compile(r"co-authored-by:.*?(copilot|github|noreply)", re.IGNORECASE),
    re.compile("\U0001f916"),  # robot face
]

AI_PR_PATTERNS = [
    re.compile(r"generated\s+(by|with|using)\s+(ai|claude|chatgpt|gpt|copilot)", re.IGNORECASE),
    re.compile(r"ai[- ]generated", re.IGNORECASE),
    re.compile(r"this\s+pr\s+was\s+(created|generated)\s+(by|with|using)", re.IGNORECASE),
    re.compile(r"copilot\s+suggestion", re.IGNORECASE),
    re.compile(r"claude\s+(wrote|generated|created)", re.IGNORECASE),
]


def detect_metadata(
    commit_message: str, pr_title: str = "", pr_body: str = ""
) -> MetadataResult:
    """Return the first metadata match, checking the explicit Copilot trailer first."""
    if COPILOT_TRAILER in commit_message:
        return MetadataResult(
            matched=True,
            confidence=COPILOT_TRAILER_CONFIDENCE,
            source="copilot_trailer",
            matched_text=COPILOT_TRAILER,
        )

    for pattern in AI_COMMIT_PATTERNS:
        match = pattern.search(commit_message)
        if match:
            return MetadataResult(
                matched=True,
                confidence=COMMIT_CONFIDENCE,
                source="commit_message",
                matched_text=match.group(0),
            )

    pr_text = f"{pr_title or ''} {pr_body or ''}"
    for pattern in AI_PR_PATTERNS:
        match = pattern.search(pr_text)
        if match:
            return MetadataResult(
                matched=True,
                confidence=PR_CONFIDENCE,
                source="pr_description",
                matched_text=match.group(0),
            )

    return MetadataResult.no_match()
