"""
Semantic block - the structured mirror of a document's annotation set.

Exactly one block lives at the end of each document. ``version`` "1.0" is the
only version written; other versions are read as-is.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from epistemic_markers.models.annotation import Annotation, utcnow

BLOCK_VERSION = "1.0"


class Relationship(BaseModel):
    """A typed edge between two annotations (supports, contradicts, ...)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="uuid")
    type: str
    source: str = Field(..., description="Source annotation id")
    target: str = Field(..., description="Target annotation id")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    created: datetime = Field(default_factory=utcnow)
    author: str = Field(default="user", alias="createdBy")
    bidirectional: bool = False
    properties: Dict[str, Any] = Field(default_factory=dict)


class BlockMetadata(BaseModel):
    """Note-level metadata."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    theories: Set[str] = Field(default_factory=set)
    domain: Optional[str] = None
    status: Optional[str] = Field(default=None, description="draft, in-progress, review, complete, archived")
    last_ai_review: Optional[datetime] = Field(default=None, alias="lastAiReview")
    last_ai_model: Optional[str] = Field(default=None, alias="lastAiModel")
    coherence_contribution: Optional[float] = Field(default=None, alias="coherenceContribution")
    flags: Set[str] = Field(default_factory=set)
    custom_fields: Dict[str, Any] = Field(default_factory=dict, alias="customFields")

    @field_serializer("theories", "flags")
    def _sorted(self, values: Set[str]) -> list[str]:
        return sorted(values)


class SemanticBlock(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: str = BLOCK_VERSION
    id: str = Field(..., alias="uuid", description="Note id, 'note-<uuid>'")
    created: datetime = Field(default_factory=utcnow)
    modified: datetime = Field(default_factory=utcnow)
    annotations: List[Annotation] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)
    metadata: BlockMetadata = Field(default_factory=BlockMetadata)

    def annotation_ids(self) -> list[str]:
        return [a.id for a in self.annotations]

    def get_annotation(self, annotation_id: str) -> Annotation | None:
        return next((a for a in self.annotations if a.id == annotation_id), None)

    def dangling_relationships(self) -> list[Relationship]:
        """Relationships naming an annotation id the block does not hold."""
        ids = set(self.annotation_ids())
        return [r for r in self.relationships if r.source not in ids or r.target not in ids]
