"""Exception types raised by the approval engine."""
from __future__ import annotations

from typing import Iterable, List


class ApprovalError(RuntimeError):
    """Base class for every error surfaced by the engine."""


class ValidationError(ApprovalError, ValueError):
    """Raised when input data is malformed or out of range; nothing is stored."""


class NotFoundError(ApprovalError, LookupError):
    """Raised when an actor, segment or campaign id is unknown."""


class ConflictError(ApprovalError):
    """Raised when a request clashes with existing state."""


class PartialBatchFailure(ApprovalError):
    """Raised on request when some segments of a fan-out could not be written."""

    def __init__(self, failed_segments: Iterable[str], message: str | None = None) -> None:
        self.failed_segments: List[str] = sorted(failed_segments)
        super().__init__(
            message
            or f"{len(self.failed_segments)} segment(s) failed: {', '.join(self.failed_segments)}"
        )


__all__ = [
    "ApprovalError",
    "ConflictError",
    "NotFoundError",
    "PartialBatchFailure",
    "ValidationError",
]
