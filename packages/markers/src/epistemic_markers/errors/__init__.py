"""Error taxonomy for the marker engine."""

from epistemic_markers.errors.types import (
    EpistemicError,
    ErrorType,
    MarkerIssue,
    StoreError,
)

__all__ = ["EpistemicError", "ErrorType", "MarkerIssue", "StoreError"]
