"""Document Sync Orchestrator.

Coordinates one save of a Markdown note:
- Tokenize and validate markers
- Write each marker to the authoritative store (one transaction per marker)
- Inject newly assigned identifiers into the text
- Mirror the stored markers into the trailing semantic block

The store write and the document write are separate steps. Each identifier
assigned during a save is queued in the injection outbox in the same
transaction as its node, and marked applied once the caller has written the
document (``confirm_written``). ``recover`` replays entries that never reached
the document.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from epistemic_core.db.enums import QueryType, RelationType, SYMMETRIC_RELATIONS, ShortcodeCategory
from epistemic_core.identity import annotation_id_for, raw_id_for
from epistemic_markers import reconcile
from epistemic_markers.block import codec
from epistemic_markers.block.codec import DecodeStatus
from epistemic_markers.errors.types import ErrorType, MarkerIssue, StoreError
from epistemic_markers.injector import inject, inject_identifier
from epistemic_markers.lines import line_span
from epistemic_markers.models.annotation import Annotation, utcnow
from epistemic_markers.models.block import Relationship, SemanticBlock
from epistemic_markers.models.record import StoreRecord
from epistemic_markers.query import QueryCommand, format_result_callout, insert_after, parse_query_commands
from epistemic_markers.reconcile import DriftReport
from epistemic_markers.registry import ShortcodeRegistry
from epistemic_markers.store.repository import AnnotationStore, transaction
from epistemic_markers.tokenizer import (
    MarkerNode,
    parse_lexicon_marker,
    tokenize,
    unknown_markers,
    validate_marker,
)
from sync_pipeline.settings import get_settings

logger = logging.getLogger(__name__)

EXTERNAL_THEORY_KIND = "External_Theory"

_CALLOUT_HEAD = "\n> [!info] Query Results"
_WORD = re.compile(r"\w+")
_QUERY_STOPWORDS = frozenset(
    {"show", "find", "list", "notes", "note", "this", "that", "with", "about", "similar", "related", "paragraph"}
)

_EDGE_QUERIES: dict[QueryType, frozenset[RelationType]] = {
    QueryType.contradiction: frozenset({RelationType.refutes, RelationType.contradicts}),
    QueryType.support: frozenset({RelationType.supports}),
}


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class SyncConfig:
    """Configuration for document saves."""

    # Recorded on every annotation created by a save
    author: str = "user"
    profile: str = "personal"
    confidence: float = 1.0

    write_block: bool = True
    outbox_enabled: bool = True
    query_result_limit: int = 20

    @classmethod
    def from_settings(cls) -> "SyncConfig":
        from epistemic_core.settings import settings as core_settings

        pipeline_settings = get_settings()
        return cls(
            author=core_settings.username,
            profile=core_settings.active_profile,
            confidence=core_settings.default_confidence,
            write_block=pipeline_settings.write_block,
            outbox_enabled=pipeline_settings.outbox_enabled,
            query_result_limit=pipeline_settings.query_result_limit,
        )


@dataclass
class MarkerResult:
    """Result of storing a single marker."""
    code: str
    start_offset: int
    success: bool
    node_id: str | None = None
    created: bool = False
    error: str | None = None


@dataclass
class SaveResult:
    """Result of one document save."""
    text: str
    source_file: str
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    warnings: list[MarkerIssue] = field(default_factory=list)
    marker_results: list[MarkerResult] = field(default_factory=list)
    # Outbox entries to confirm once ``text`` is on disk
    pending_node_ids: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class RecoveryResult:
    """Result of replaying the injection outbox against a document."""
    text: str
    source_file: str
    recovered: list[str] = field(default_factory=list)
    already_applied: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)

    @property
    def resolved(self) -> list[str]:
        return self.recovered + self.already_applied


# =============================================================================
# Orchestrator
# =============================================================================

class DocumentSyncOrchestrator:
    """
    Keeps a document's markers, its semantic block and the store in step.

    Every method takes the current document text and returns new text; nothing
    here reads or writes files except ``save_file``.
    """

    def __init__(
        self,
        store: AnnotationStore,
        registry: ShortcodeRegistry | None = None,
        config: SyncConfig | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Repository bound to an open session
            registry: Active shortcodes; defaults plus configured custom codes
            config: Save configuration; read from the environment when omitted
        """
        self.store = store
        self.registry = registry or ShortcodeRegistry.from_settings()
        self.config = config or SyncConfig.from_settings()
        self._lexicon_codes = {d.code for d in self.registry.by_category(ShortcodeCategory.lexicon)}
        self._commit = True

    def _transaction(self, operation: str):
        return transaction(self.store.session, operation, commit=self._commit)

    # =========================================================================
    # Save
    # =========================================================================

    def save(self, text: str, source_file: str, title: str | None = None) -> SaveResult:
        """
        Store every marker in ``text`` and return the rewritten document.

        Args:
            text: Current document text
            source_file: Path the store records the nodes under
            title: Title for a newly created semantic block (file stem by default)

        Returns:
            SaveResult with the new text, per-marker results and warnings
        """
        result = SaveResult(text=text, source_file=source_file)

        block: SemanticBlock | None = None
        body = text
        if self.config.write_block:
            decoded = codec.decode_result(text)
            if decoded.status is DecodeStatus.malformed:
                logger.warning("Malformed semantic block in %s: %s", source_file, decoded.error)
                result.warnings.append(
                    MarkerIssue(
                        error_type=ErrorType.MALFORMED_BLOCK,
                        message="Semantic block could not be read and will be rebuilt",
                        source_file=source_file,
                        details={"error": decoded.error},
                    )
                )
            block = decoded.block or codec.create_empty(title or Path(source_file).stem)
            # Offsets are computed against the text without any block, which is
            # exactly the prefix ``embed`` writes back.
            body = codec.remove(text)

        markers = tokenize(body, self.registry)
        for issue in unknown_markers(body, self.registry, markers):
            result.warnings.append(issue.model_copy(update={"source_file": source_file}))

        stored: list[tuple[MarkerNode, str]] = []
        updates: dict[int, tuple[MarkerNode, str]] = {}

        for marker in markers:
            issues = validate_marker(marker, self.registry)
            if issues:
                result.skipped += 1
                for issue in issues:
                    logger.warning(issue.to_log_message())
                    result.warnings.append(issue.model_copy(update={"source_file": source_file}))
                continue

            marker_result = self._store_marker(marker, body, source_file)
            result.marker_results.append(marker_result)

            if not marker_result.success:
                result.failed += 1
                result.warnings.append(
                    MarkerIssue(
                        error_type=ErrorType.STORE_TRANSACTION,
                        message=marker_result.error or "store write failed",
                        source_file=source_file,
                        offset=marker.start_offset,
                    )
                )
                continue

            if marker_result.created:
                result.created += 1
            else:
                result.updated += 1

            stored.append((marker, marker_result.node_id))
            if not marker.has_identifier:
                updates[marker.start_offset] = (marker, marker_result.node_id)
                if self.config.outbox_enabled:
                    result.pending_node_ids.append(marker_result.node_id)

        new_body = inject(body, updates)
        placed = self._shift(stored, updates)
        if updates:
            self._relocate(placed, new_body, result)

        if block is not None:
            now = utcnow()
            for marker, node_id in placed:
                annotation = self._annotation_for(block, marker, node_id, new_body, now)
                block = reconcile.upsert(block, annotation, now=now)
            result.text = codec.embed(new_body, block, now=now)
        else:
            result.text = new_body

        logger.info(
            "Saved %s: created=%d updated=%d failed=%d skipped=%d",
            source_file,
            result.created,
            result.updated,
            result.failed,
            result.skipped,
        )
        return result

    def save_file(self, path: Path, title: str | None = None) -> SaveResult:
        """Save ``path`` in place and confirm its outbox entries after the write."""
        text = path.read_text(encoding="utf-8")
        result = self.save(text, str(path), title or path.stem)
        if result.text != text:
            path.write_text(result.text, encoding="utf-8")
        self.confirm_written(result.source_file, result.pending_node_ids)
        return result

    def preview(self, text: str, source_file: str, title: str | None = None) -> SaveResult:
        """
        Run ``save`` and discard every store write it made.

        The returned text shows the identifiers a real save would assign, but
        those ids are not kept; the next ``save`` assigns its own.
        """
        self._commit = False
        try:
            result = self.save(text, source_file, title)
        finally:
            self._commit = True
            self.store.session.rollback()
        result.pending_node_ids = []
        return result

    def confirm_written(self, source_file: str, node_ids: list[str]) -> int:
        """Mark outbox entries applied; call only after the document is written."""
        if not node_ids:
            return 0
        with self._transaction("confirm injections"):
            return self.store.mark_applied(node_ids, source_file)

    def _store_marker(self, marker: MarkerNode, body: str, source_file: str) -> MarkerResult:
        """Create or update the node for one marker in its own transaction."""
        line_start, line_end = line_span(body, marker.start_offset, marker.end_offset)
        pair = parse_lexicon_marker(marker.content) if marker.code in self._lexicon_codes else None
        attributes: dict[str, Any] | None = None
        if pair is not None:
            attributes = {
                "legacy_word": pair.legacy_word,
                "sister_word": pair.sister_word,
                "drift_percentage": pair.drift_percentage,
            }

        try:
            with self._transaction(f"store {marker.code} marker at {marker.start_offset}"):
                if marker.has_identifier and self.store.get_node(marker.identifier) is not None:
                    self.store.update_node(
                        marker.identifier,
                        marker,
                        line_start=line_start,
                        line_end=line_end,
                        attributes=attributes,
                        source_file=source_file,
                    )
                    node_id = raw_id_for(marker.identifier)
                    created = False
                else:
                    # An identifier the store does not know is re-created under that id.
                    node_id = self.store.create_node(
                        marker,
                        source_file,
                        node_id=marker.identifier,
                        created_by=self.config.author,
                        confidence=self.config.confidence,
                        profile=self.config.profile,
                        line_start=line_start,
                        line_end=line_end,
                        attributes=attributes,
                    )
                    created = True
                    if not marker.has_identifier and self.config.outbox_enabled:
                        self.store.enqueue_injection(node_id, marker, source_file)

                if pair is not None:
                    self.store.upsert_lexicon_entry(pair, definition_node_id=node_id)
        except StoreError as exc:
            logger.warning("Marker %s at %d not stored: %s", marker.code, marker.start_offset, exc)
            return MarkerResult(code=marker.code, start_offset=marker.start_offset, success=False, error=str(exc))

        return MarkerResult(
            code=marker.code,
            start_offset=marker.start_offset,
            success=True,
            node_id=node_id,
            created=created,
        )

    @staticmethod
    def _shift(
        stored: list[tuple[MarkerNode, str]],
        updates: dict[int, tuple[MarkerNode, str]],
    ) -> list[tuple[MarkerNode, str]]:
        """Markers re-expressed against the injected text."""
        placed = []
        delta = 0
        for marker, node_id in stored:
            start = marker.start_offset + delta
            if marker.start_offset in updates:
                raw = inject_identifier(marker, node_id)
                moved = replace(
                    marker,
                    identifier=node_id,
                    start_offset=start,
                    end_offset=start + len(raw),
                    raw_match=raw,
                )
                delta += len(raw) - len(marker.raw_match)
            else:
                moved = replace(marker, start_offset=start, end_offset=marker.end_offset + delta)
            placed.append((moved, node_id))
        return placed

    def _relocate(self, placed: list[tuple[MarkerNode, str]], text: str, result: SaveResult) -> None:
        try:
            with self._transaction("relocate nodes"):
                for marker, node_id in placed:
                    line_start, line_end = line_span(text, marker.start_offset, marker.end_offset)
                    self.store.relocate_node(node_id, marker.start_offset, marker.end_offset, line_start, line_end)
        except StoreError as exc:
            result.warnings.append(
                MarkerIssue(
                    error_type=ErrorType.STORE_TRANSACTION,
                    message=f"Stored offsets not updated: {exc}",
                    source_file=result.source_file,
                )
            )

    def _annotation_for(
        self,
        block: SemanticBlock,
        marker: MarkerNode,
        node_id: str,
        text: str,
        now: datetime,
    ) -> Annotation:
        existing = block.get_annotation(annotation_id_for(node_id))
        if existing is None:
            return reconcile.annotation_from_marker(
                marker,
                node_id,
                text,
                author=self.config.author,
                confidence=self.config.confidence,
                profile=self.config.profile,
                now=now,
            )

        line_start, line_end = line_span(text, marker.start_offset, marker.end_offset)
        return existing.model_copy(
            update={
                "kind": marker.kind,
                "text": marker.content,
                "start": marker.start_offset,
                "end": marker.end_offset,
                "line_start": line_start,
                "line_end": line_end,
                "properties": {**existing.properties, "shortcode": marker.code},
            }
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def check(self, text: str, source_file: str) -> DriftReport:
        """Compare the document's block with the store, both directions."""
        block = codec.decode(text) or codec.create_empty(Path(source_file).stem)
        report = reconcile.drift_report(block, self.store.nodes_for_file(source_file))

        body = codec.remove(text)
        for annotation in block.annotations:
            if annotation.in_bounds(body):
                continue
            report.out_of_range.append(
                MarkerIssue(
                    error_type=ErrorType.OFFSET_OUT_OF_RANGE,
                    message=f"{annotation.id} spans [{annotation.start}, {annotation.end}) outside the note",
                    source_file=source_file,
                    offset=annotation.start,
                    details={"annotation_id": annotation.id, "length": len(body)},
                )
            )
        return report

    def resync(self, text: str, source_file: str, title: str | None = None) -> str:
        """Rebuild the block's annotations from the store; block-only annotations are lost."""
        block = codec.read_or_create(text, title or Path(source_file).stem)
        body = codec.remove(text)
        records = self.store.nodes_for_file(source_file)
        return codec.embed(body, reconcile.resync_from_store(block, records, body))

    def recover(self, text: str, source_file: str) -> RecoveryResult:
        """
        Inject identifiers the store assigned but the document never received.

        Each pending outbox entry claims the first unidentified marker, in
        document order, with the same code and content.
        """
        result = RecoveryResult(text=text, source_file=source_file)
        pending = self.store.pending_injections(source_file)
        if not pending:
            return result

        markers = tokenize(text, self.registry)
        present = {raw_id_for(m.identifier) for m in markers if m.identifier}
        unidentified = [m for m in markers if not m.has_identifier]
        claimed: set[int] = set()
        updates: dict[int, tuple[MarkerNode, str]] = {}

        for entry in pending:
            if entry.node_id in present:
                result.already_applied.append(entry.node_id)
                continue

            match = next(
                (
                    m
                    for m in unidentified
                    if m.start_offset not in claimed and m.code == entry.shortcode and m.content == entry.content_text
                ),
                None,
            )
            if match is None:
                logger.info("No marker left for pending node %s in %s", entry.node_id, source_file)
                result.unmatched.append(entry.node_id)
                continue

            claimed.add(match.start_offset)
            updates[match.start_offset] = (match, entry.node_id)
            result.recovered.append(entry.node_id)

        result.text = inject(text, updates)
        return result

    def link(
        self,
        text: str,
        source_file: str,
        source_id: str,
        target_id: str,
        relation_type: RelationType | str,
        *,
        weight: float = 1.0,
        title: str | None = None,
    ) -> str:
        """Create a typed edge in the store and mirror it as a block relationship."""
        relation_type = RelationType(relation_type)
        with self._transaction("create edge"):
            edge_id = self.store.create_edge(
                source_id,
                target_id,
                relation_type,
                weight=weight,
                created_by=self.config.author,
            )

        if not self.config.write_block:
            return text

        block = codec.read_or_create(text, title or Path(source_file).stem)
        relationship = Relationship(
            id=edge_id,
            type=relation_type.value,
            source=annotation_id_for(raw_id_for(source_id)),
            target=annotation_id_for(raw_id_for(target_id)),
            confidence=weight,
            author=self.config.author,
            bidirectional=relation_type in SYMMETRIC_RELATIONS,
        )
        block = block.model_copy(update={"relationships": [*block.relationships, relationship]})
        return codec.embed(text, block)

    # =========================================================================
    # Queries
    # =========================================================================

    def run_queries(self, text: str, source_file: str | None = None) -> str:
        """Answer every ``{{QUERY: ...}}`` that has no result callout yet."""
        for command in reversed(parse_query_commands(text)):
            if text[command.end_offset:].startswith(_CALLOUT_HEAD):
                continue
            results = self.run_query(command, source_file)
            callout = format_result_callout(command.query_text, results, command.query_type)
            text = insert_after(text, command.offset, command.full_match, callout)
        return text

    def run_query(self, command: QueryCommand, source_file: str | None = None) -> list[dict[str, Any]]:
        results = self._execute(command, source_file)[: self.config.query_result_limit]
        try:
            with self._transaction("record query"):
                self.store.record_query(command.query_text, command.query_type, source_file, results)
        except StoreError as exc:
            logger.warning("Query %r not recorded in history: %s", command.query_text, exc)
        return results

    def _execute(self, command: QueryCommand, source_file: str | None) -> list[dict[str, Any]]:
        relation_types = _EDGE_QUERIES.get(command.query_type)
        if relation_types is not None:
            if source_file is None:
                return []
            rows = []
            for record in self.store.nodes_for_file(source_file):
                for related, weight in self.store.related_nodes(record.id, set(relation_types)):
                    rows.append({**_result_row(related), "weight": weight, "about": record.id})
            return rows

        if command.query_type is QueryType.translation:
            rows = []
            for entry in self.store.lexicon_entries():
                content = f"{entry.legacy_word} -> {entry.sister_word}"
                if entry.drift_percentage is not None:
                    content += f" (DP:{entry.drift_percentage:g}%)"
                rows.append(
                    {
                        "content": content,
                        "legacy_word": entry.legacy_word,
                        "sister_word": entry.sister_word,
                        "drift_percentage": entry.drift_percentage,
                    }
                )
            return rows

        if command.query_type is QueryType.theory_match:
            return [_result_row(r) for r in self.store.nodes_of_type(EXTERNAL_THEORY_KIND)]

        words = [w for w in _WORD.findall(command.query_text) if len(w) > 3 and w.lower() not in _QUERY_STOPWORDS]
        return [_result_row(r) for r in self.store.search_nodes(words, limit=self.config.query_result_limit)]


def _result_row(record: StoreRecord) -> dict[str, Any]:
    return {
        "node_id": record.id,
        "content": record.content,
        "node_type": record.kind,
        "source_file": record.source_file,
    }
