"""Error types shared across codeguard.

Each error carries a stable ``code`` so entry points can turn failures into
structured results instead of surfacing raw exceptions.
"""

from __future__ import annotations

VALIDATION_ERROR = "VALIDATION_ERROR"
SOURCE_CONTROL_ERROR = "SOURCE_CONTROL_ERROR"
NOT_FOUND = "NOT_FOUND"
INVALID_TRANSITION = "INVALID_TRANSITION"
DATA_INCONSISTENCY = "DATA_INCONSISTENCY"
INTERNAL_ERROR = "INTERNAL_ERROR"


class CodeGuardError(Exception):
    code = INTERNAL_ERROR

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class SourceControlError(CodeGuardError):
    """GitHub (or another host) refused or failed a request."""

    code = SOURCE_CONTROL_ERROR


class NotFoundError(CodeGuardError):
    code = NOT_FOUND


class InvalidTransitionError(CodeGuardError):
    code = INVALID_TRANSITION
