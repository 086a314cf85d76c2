"""Portable annotation models (the semantic block wire format) and store records."""

from epistemic_markers.models.annotation import Annotation
from epistemic_markers.models.block import BLOCK_VERSION, BlockMetadata, Relationship, SemanticBlock
from epistemic_markers.models.record import StoreRecord

__all__ = [
    "Annotation",
    "BLOCK_VERSION",
    "BlockMetadata",
    "Relationship",
    "SemanticBlock",
    "StoreRecord",
]
