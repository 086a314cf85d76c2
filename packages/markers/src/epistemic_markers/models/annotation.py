"""
Annotation - the portable, persisted unit.

One classified span of a document as mirrored in the semantic block. Field
names on the wire are the block's camelCase names (``uuid``, ``lineStart``,
``createdBy``); Python code uses the snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_serializer


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Annotation(BaseModel):
    """A classified span with offsets, kind, author and confidence."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="uuid", description="Prefixed annotation id, e.g. 'ann-<store id>'")
    kind: str = Field(..., description="Semantic kind, e.g. 'Hypothesis'")
    text: str = Field(..., description="Annotated text content")
    start: int = Field(..., description="Character offset where the span begins")
    end: int = Field(..., description="Character offset where the span ends")
    line_start: int = Field(default=0, alias="lineStart", description="1-indexed, 0 when unknown")
    line_end: int = Field(default=0, alias="lineEnd", description="1-indexed, 0 when unknown")
    created: datetime = Field(default_factory=utcnow)
    modified: datetime = Field(default_factory=utcnow)
    author: str = Field(default="user", alias="createdBy")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    theory: Optional[str] = None
    tags: Set[str] = Field(default_factory=set)
    properties: Dict[str, Any] = Field(default_factory=dict, description="Kind-specific data")

    @field_serializer("tags")
    def _sorted_tags(self, tags: Set[str]) -> list[str]:
        return sorted(tags)

    def in_bounds(self, text: str) -> bool:
        """Whether the offsets still fall inside ``text``; consumers skip it otherwise."""
        return 0 <= self.start <= self.end <= len(text)
