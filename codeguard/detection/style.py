"""Stylistic fingerprint of AI-generated code.

Eight cheap heuristics, each normalized to [0, 1] where higher means "looks
more machine-written". On its own this is a weak signal; the combiner gives
it the smallest weight whenever something better is available.
"""

from __future__ import annotations

import math
import re
from functools import reduce

from codeguard.detection.signals import (
    NEUTRAL_SIGNAL,
    StyleResult,
    weighted_style_score,
)

COMMON_KEYWORDS = frozenset({
    "if", "else", "for", "while", "return", "const", "let", "var",
    "function", "class", "import", "export", "from", "async", "await",
    "try", "catch", "throw", "new", "this", "true", "false", "null",
    "undefined", "def", "self", "None", "True", "False",
})

HUMAN_MARKERS = [
    re.compile(r"\bteh\b"),
    re.compile(r"\breciever\b"),
    re.compile(r"\boccured\b"),
    re.compile(r"\bseperator\b"),
    re.compile(r"\blenght\b"),
    re.compile(r"\bwidht\b"),
    re.compile(r"\bretrun\b"),
    re.compile(r"\bfunciton\b"),
    re.compile(r"\btodo\b", re.IGNORECASE),
    re.compile(r"\bfixme\b", re.IGNORECASE),
    re.compile(r"\bhack\b", re.IGNORECASE),
    re.compile(r"\bugly\b", re.IGNORECASE),
    re.compile(r"\bwtf\b", re.IGNORECASE),
    re.compile(r"\bxxx\b", re.IGNORECASE),
]

BOILERPLATE_PATTERNS = [
    re.compile(r"if\s*\(!?\w+\)\s*(return|throw)\s"),
    re.compile(r"console\.(log|error|warn)"),
    re.compile(r"res\.status\(\d+\)\.json"),
    re.compile(r"throw new (Error|TypeError|RangeError)"),
    re.compile(r"raise (ValueError|TypeError|RuntimeError)\("),
    re.compile(r"logger\.(info|error|warning|debug)\("),
]


def analyze_code_style(code: str, language: str) -> StyleResult | None:
    """Fingerprint one file. Returns None when there is nothing to analyze."""
    if not code or not code.strip():
        return None

    signals = {
        "naming_verbosity": _naming_verbosity(code, language),
        "comment_uniformity": _comment_uniformity(code, language),
        "typo_absence": _typo_absence(code),
        "indent_consistency": _indent_consistency(code),
        "error_handling_ratio": _error_handling(code, language),
        "boilerplate_ratio": _boilerplate(code),
        "docstring_formality": _docstring_formality(code, language),
        "import_organization": _import_organization(code),
    }
    return StyleResult(score=weighted_style_score(signals), signals=signals)


def _naming_verbosity(code: str, language: str) -> float:
    if language == "Python":
        pattern = re.compile(r"\b([a-z][a-z0-9_]*)\b")
    else:
        pattern = re.compile(r"\b([a-z][a-zA-Z0-9]*)\b")

    identifiers = [
        name for name in pattern.findall(code)
        if len(name) > 2 and name not in COMMON_KEYWORDS
    ]
    if not identifiers:
        return NEUTRAL_SIGNAL

    avg_length = sum(len(name) for name in identifiers) / len(identifiers)
    if avg_length > 18:
        return 0.95
    if avg_length > 14:
        return 0.8
    if avg_length > 10:
        return 0.5
    return 0.2


def _comment_uniformity(code: str, language: str) -> float:
    marker = "#" if language in ("Python", "Shell", "Ruby") else "//"
    pattern = re.compile(rf"^\s*{re.escape(marker)}\s*(.+)$", re.MULTILINE)
    comments = [c.strip() for c in pattern.findall(code)]
    if len(comments) < 2:
        return NEUTRAL_SIGNAL

    capitalized = sum(1 for c in comments if c[:1].isupper()) / len(comments)
    avg_len = sum(len(c) for c in comments) / len(comments)
    variance = sum((len(c) - avg_len) ** 2 for c in comments) / len(comments)
    normalized_variance = min(variance / 500, 1.0)
    return min(capitalized * (1 - normalized_variance), 1.0)


def _typo_absence(code: str) -> float:
    if any(p.search(code) for p in HUMAN_MARKERS):
        return 0.1
    return 0.7


def _indent_consistency(code: str) -> float:
    lines = [line for line in code.split("\n") if line.strip()]
    if len(lines) < 5:
        return NEUTRAL_SIGNAL

    indents = [len(line) - len(line.lstrip()) for line in lines]
    non_zero = [i for i in indents if i > 0]
    if not non_zero:
        return NEUTRAL_SIGNAL

    unit = reduce(math.gcd, non_zero)
    # Every indent is a multiple of the gcd by construction, so look at the unit itself.
    return 0.8 if unit in (2, 4, 8) else 0.3


def _error_handling(code: str, language: str) -> float:
    if language == "Python":
        func_count = len(re.findall(r"\bdef\s", code)) or 1
        try_count = len(re.findall(r"\btry\s*:", code))
    else:
        func_count = len(re.findall(r"function\s|const\s+\w+\s*=\s*(?:async\s*)?\(", code)) or 1
        try_count = len(re.findall(r"\btry\s*\{", code))

    ratio = try_count / func_count
    if ratio > 0.8:
        return 0.9
    if ratio > 0.5:
        return 0.6
    return 0.2


def _boilerplate(code: str) -> float:
    matches = sum(len(p.findall(code)) for p in BOILERPLATE_PATTERNS)
    statements = len(re.findall(r";|\n", code)) or 1
    ratio = matches / statements
    if ratio > 0.3:
        return 0.8
    if ratio > 0.15:
        return 0.5
    return 0.2


def _docstring_formality(code: str, language: str) -> float:
    if language == "Python":
        formal = len(re.findall(r"(Args|Returns|Raises|Parameters|Yields):\s*\n", code))
    else:
        formal = len(re.findall(r"@(param|returns|throws|example)\s", code))

    func_count = len(re.findall(r"function\s|def\s|const\s+\w+\s*=", code)) or 1
    ratio = formal / func_count
    if ratio > 0.8:
        return 0.85
    if ratio > 0.4:
        return 0.5
    return 0.15


def _import_organization(code: str) -> float:
    imports = [
        line.strip().lower()
        for line in code.split("\n")
        if line.strip().startswith(("import ", "from "))
    ]
    if len(imports) < 3:
        return NEUTRAL_SIGNAL
    return 0.75 if imports == sorted(imports) else 0.25
