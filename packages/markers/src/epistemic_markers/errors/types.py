"""
Error taxonomy for parsing, decoding and persistence.

Parsing-level problems (unknown code, malformed marker) and a malformed
semantic block are absorbed where they occur and reported as ``MarkerIssue``
records. Store failures are raised as ``StoreError`` so batch callers can count
them.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorType(str, Enum):
    """Machine-interpretable error kinds."""

    UNKNOWN_CODE = "UNKNOWN_CODE"
    """Marker code is not in the registry; the occurrence is skipped."""

    MALFORMED_MARKER = "MALFORMED_MARKER"
    """Empty kind or empty content after trimming; the marker is rejected."""

    MALFORMED_BLOCK = "MALFORMED_BLOCK"
    """Semantic block payload failed to decode; treated as no block."""

    STORE_TRANSACTION = "STORE_TRANSACTION"
    """The authoritative store rolled back a write."""

    OFFSET_OUT_OF_RANGE = "OFFSET_OUT_OF_RANGE"
    """A decoded annotation points outside the current document."""


class MarkerIssue(BaseModel):
    """A problem with one item that did not abort the surrounding operation."""

    error_type: ErrorType
    message: str = Field(..., description="Human-readable message")
    source_file: Optional[str] = None
    offset: Optional[int] = Field(default=None, description="Start offset of the offending marker")
    details: Dict[str, Any] = Field(default_factory=dict)

    def to_log_message(self) -> str:
        loc = f"{self.source_file or '<text>'}@{self.offset}" if self.offset is not None else self.source_file or "<text>"
        return f"[{self.error_type.value}] {loc}: {self.message}"


class EpistemicError(Exception):
    """Base class for engine errors."""


class StoreError(EpistemicError):
    """Raised after a store transaction has been rolled back."""

    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(message)
        self.operation = operation
