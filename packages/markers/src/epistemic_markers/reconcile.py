"""
Reconciliation between the semantic block and the authoritative store.

The two representations are written independently, so they can drift:

- ``find_unsynced`` reports annotations the block has and the store lacks.
  Only that direction; store-only records are not reported by it.
- ``resync_from_store`` rebuilds ``block.annotations`` from the store records.
  The store wins: an annotation that only exists in the block is dropped.

``drift_report`` shows both directions for display without changing either
operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Sequence

from epistemic_core.identity import annotation_id_for, raw_id_for
from epistemic_markers.errors.types import MarkerIssue
from epistemic_markers.lines import line_span
from epistemic_markers.models.annotation import Annotation, utcnow
from epistemic_markers.models.block import SemanticBlock
from epistemic_markers.models.record import StoreRecord
from epistemic_markers.tokenizer import MarkerNode


class AnnotationState(str, Enum):
    unidentified = "unidentified"
    identified = "identified"
    synced = "synced"
    drifted = "drifted"


@dataclass
class DriftReport:
    synced: list[str] = field(default_factory=list)
    block_only: list[Annotation] = field(default_factory=list)
    store_only: list[StoreRecord] = field(default_factory=list)
    # Block annotations whose offsets fall outside the document
    out_of_range: list[MarkerIssue] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return bool(self.block_only or self.store_only)


# =============================================================================
# Conversions
# =============================================================================

def record_to_annotation(record: StoreRecord, text: str | None = None) -> Annotation:
    """Store record -> portable annotation. Lines are 0 when no text is given."""
    line_start, line_end = line_span(text, record.start_offset, record.end_offset) if text is not None else (0, 0)
    stamp = record.tagged_at or utcnow()

    properties = {"profile": record.profile, "notes": record.notes}
    if record.attributes:
        properties["attributes"] = dict(record.attributes)

    return Annotation(
        id=annotation_id_for(record.id),
        kind=record.kind,
        text=record.content,
        start=record.start_offset,
        end=record.end_offset,
        line_start=line_start,
        line_end=line_end,
        created=stamp,
        modified=stamp,
        author=record.tagged_by or "user",
        confidence=record.confidence,
        properties=properties,
    )


def annotation_to_record(annotation: Annotation, source_file: str, profile: str) -> StoreRecord:
    """Portable annotation -> store record, namespace prefix stripped."""
    return StoreRecord(
        id=raw_id_for(annotation.id),
        content=annotation.text,
        source_file=source_file,
        start_offset=annotation.start,
        end_offset=annotation.end,
        kind=annotation.kind,
        profile=annotation.properties.get("profile") or profile,
        tagged_by=annotation.author,
        tagged_at=annotation.created,
        confidence=annotation.confidence,
        notes=annotation.properties.get("notes"),
        attributes=annotation.properties.get("attributes") or {},
    )


def annotation_from_marker(
    marker: MarkerNode,
    raw_id: str,
    text: str,
    *,
    author: str = "user",
    confidence: float = 1.0,
    profile: str = "personal",
    now: datetime | None = None,
) -> Annotation:
    """Annotation for a marker that now carries ``raw_id``; offsets refer to ``text``."""
    now = now or utcnow()
    line_start, line_end = line_span(text, marker.start_offset, marker.end_offset)
    return Annotation(
        id=annotation_id_for(raw_id),
        kind=marker.kind,
        text=marker.content,
        start=marker.start_offset,
        end=marker.end_offset,
        line_start=line_start,
        line_end=line_end,
        created=now,
        modified=now,
        author=author,
        confidence=confidence,
        properties={"profile": profile, "shortcode": marker.code},
    )


# =============================================================================
# Block edits
# =============================================================================

def upsert(block: SemanticBlock, annotation: Annotation, *, now: datetime | None = None) -> SemanticBlock:
    """Replace the annotation with the same id in place, else append it."""
    now = now or utcnow()
    annotations = list(block.annotations)

    for index, existing in enumerate(annotations):
        if existing.id == annotation.id:
            annotations[index] = annotation.model_copy(update={"modified": now})
            break
    else:
        annotations.append(annotation)

    return block.model_copy(update={"annotations": annotations, "modified": now})


def remove(block: SemanticBlock, annotation_id: str, *, now: datetime | None = None) -> SemanticBlock:
    annotations = [a for a in block.annotations if a.id != annotation_id]
    return block.model_copy(update={"annotations": annotations, "modified": now or utcnow()})


# =============================================================================
# Drift
# =============================================================================

def _store_ids(store_records: Iterable[StoreRecord]) -> set[str]:
    return {raw_id_for(r.id) for r in store_records}


def find_unsynced(block: SemanticBlock, store_records: Sequence[StoreRecord]) -> list[Annotation]:
    """Block annotations whose id the store does not know."""
    store_ids = _store_ids(store_records)
    return [a for a in block.annotations if raw_id_for(a.id) not in store_ids]


def resync_from_store(
    block: SemanticBlock,
    store_records: Sequence[StoreRecord],
    text: str,
    *,
    now: datetime | None = None,
) -> SemanticBlock:
    """
    Replace the block's annotations with the store's records.

    Block-only annotations are discarded; relationships and metadata are kept.
    """
    annotations = [record_to_annotation(r, text) for r in store_records]
    return block.model_copy(update={"annotations": annotations, "modified": now or utcnow()})


def drift_report(block: SemanticBlock, store_records: Sequence[StoreRecord]) -> DriftReport:
    store_ids = _store_ids(store_records)
    block_ids = {raw_id_for(a.id) for a in block.annotations}

    report = DriftReport()
    for annotation in block.annotations:
        if raw_id_for(annotation.id) in store_ids:
            report.synced.append(annotation.id)
        else:
            report.block_only.append(annotation)
    report.store_only = [r for r in store_records if raw_id_for(r.id) not in block_ids]
    return report


def classify_state(
    identifier: str | None,
    block: SemanticBlock,
    store_records: Sequence[StoreRecord],
) -> AnnotationState:
    """Where one marker identifier stands between the two representations."""
    if not identifier:
        return AnnotationState.unidentified

    raw = raw_id_for(identifier)
    in_store = raw in _store_ids(store_records)
    in_block = any(raw_id_for(a.id) == raw for a in block.annotations)

    if in_store and in_block:
        return AnnotationState.synced
    if in_store or in_block:
        return AnnotationState.drifted
    return AnnotationState.identified
