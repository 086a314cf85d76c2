"""Authoritative store: SQLAlchemy repository over the epistemic tables."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Literal

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from epistemic_core.db.enums import OutboxStatus, QueryType, RelationType, SYMMETRIC_RELATIONS
from epistemic_core.db.models import AtomicNode, InjectionOutbox, LexiconEntry, QueryHistory, SemanticEdge
from epistemic_core.identity import raw_id_for
from epistemic_markers.errors.types import StoreError
from epistemic_markers.models.record import StoreRecord
from epistemic_markers.tokenizer import LexiconPair, MarkerNode

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w]")


@contextmanager
def transaction(session: Session, operation: str = "store write", *, commit: bool = True) -> Iterator[Session]:
    """
    Commit on success; roll back and raise ``StoreError`` on failure.

    With ``commit=False`` the writes are only flushed, so a later
    ``session.rollback()`` discards them.
    """
    try:
        yield session
        if commit:
            session.commit()
        else:
            session.flush()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("%s failed, rolled back: %s", operation, exc)
        raise StoreError(f"{operation} failed: {exc}", operation=operation) from exc
    except Exception:
        session.rollback()
        raise


def node_to_record(node: AtomicNode) -> StoreRecord:
    return StoreRecord(
        id=node.node_id,
        content=node.content_text,
        source_file=node.source_file,
        start_offset=node.char_offset_start or 0,
        end_offset=node.char_offset_end or 0,
        kind=node.node_type,
        profile=node.profile,
        tagged_by=node.created_by,
        tagged_at=node.created_at,
        confidence=node.confidence,
        notes=node.notes,
        attributes=dict(node.attributes or {}),
    )


class AnnotationStore:
    """
    CRUD over annotation nodes, edges, the lexicon and the injection outbox.

    Methods flush but do not commit; wrap writes in ``transaction(store.session)``
    so each one is applied atomically.
    """

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Nodes
    # =========================================================================

    def create_node(
        self,
        marker: MarkerNode,
        source_file: str,
        *,
        node_id: str | None = None,
        created_by: str = "user",
        confidence: float = 1.0,
        profile: str = "personal",
        line_start: int | None = None,
        line_end: int | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> str:
        """Insert a node for ``marker`` and return its raw store id."""
        node = AtomicNode(
            content_text=marker.content,
            node_type=marker.kind,
            shortcode=marker.code,
            source_file=source_file,
            profile=profile,
            line_start=line_start,
            line_end=line_end,
            char_offset_start=marker.start_offset,
            char_offset_end=marker.end_offset,
            created_by=created_by,
            confidence=confidence,
            attributes=attributes or {},
        )
        if node_id is not None:
            node.node_id = raw_id_for(node_id)
        node.uses_sister_nomenclature = self.uses_sister_terms(marker.content)

        self.session.add(node)
        self.session.flush()
        return node.node_id

    def update_node(
        self,
        node_id: str,
        marker: MarkerNode,
        *,
        line_start: int | None = None,
        line_end: int | None = None,
        attributes: dict[str, Any] | None = None,
        source_file: str | None = None,
    ) -> AtomicNode:
        node = self.session.get(AtomicNode, raw_id_for(node_id))
        if node is None:
            raise KeyError(node_id)

        node.content_text = marker.content
        node.node_type = marker.kind
        node.shortcode = marker.code
        node.char_offset_start = marker.start_offset
        node.char_offset_end = marker.end_offset
        node.line_start = line_start
        node.line_end = line_end
        if source_file is not None:
            node.source_file = source_file
        if attributes is not None:
            node.attributes = attributes
        node.uses_sister_nomenclature = self.uses_sister_terms(marker.content)
        node.version = (node.version or 1) + 1
        node.updated_at = datetime.utcnow()
        self.session.flush()
        return node

    def relocate_node(self, node_id: str, start: int, end: int, line_start: int, line_end: int) -> bool:
        """Move a node's span without counting it as an edit."""
        node = self.get_node(node_id)
        if node is None:
            return False
        if (node.char_offset_start, node.char_offset_end, node.line_start, node.line_end) == (
            start,
            end,
            line_start,
            line_end,
        ):
            return False
        node.char_offset_start = start
        node.char_offset_end = end
        node.line_start = line_start
        node.line_end = line_end
        self.session.flush()
        return True

    def get_node(self, node_id: str) -> AtomicNode | None:
        return self.session.get(AtomicNode, raw_id_for(node_id))

    def get_record(self, node_id: str) -> StoreRecord | None:
        node = self.get_node(node_id)
        return node_to_record(node) if node is not None else None

    def nodes_for_file(self, source_file: str, profile: str | None = None) -> list[StoreRecord]:
        query = select(AtomicNode).where(AtomicNode.source_file == source_file)
        if profile is not None:
            query = query.where(AtomicNode.profile == profile)
        query = query.order_by(AtomicNode.char_offset_start)
        return [node_to_record(n) for n in self.session.execute(query).scalars()]

    def nodes_of_type(self, node_type: str) -> list[StoreRecord]:
        query = select(AtomicNode).where(AtomicNode.node_type == node_type).order_by(AtomicNode.created_at.desc())
        return [node_to_record(n) for n in self.session.execute(query).scalars()]

    def search_nodes(self, words: list[str], limit: int = 20) -> list[StoreRecord]:
        """Nodes whose content contains any of ``words`` (case-insensitive)."""
        words = [w for w in words if w]
        if not words:
            return []
        query = (
            select(AtomicNode)
            .where(or_(*[AtomicNode.content_text.ilike(f"%{w}%") for w in words]))
            .order_by(AtomicNode.created_at.desc())
            .limit(limit)
        )
        return [node_to_record(n) for n in self.session.execute(query).scalars()]

    def delete_node(self, node_id: str) -> bool:
        node = self.get_node(node_id)
        if node is None:
            return False
        self.session.delete(node)
        self.session.flush()
        return True

    # =========================================================================
    # Edges
    # =========================================================================

    def create_edge(
        self,
        source_id: str,
        target_id: str,
        relation_type: RelationType | str,
        *,
        weight: float = 1.0,
        created_by: str = "user",
        notes: str | None = None,
    ) -> str:
        relation_type = RelationType(relation_type)
        edge = SemanticEdge(
            source_node_id=raw_id_for(source_id),
            target_node_id=raw_id_for(target_id),
            relation_type=relation_type,
            weight=weight,
            is_bidirectional=relation_type in SYMMETRIC_RELATIONS,
            created_by=created_by,
            notes=notes,
        )
        self.session.add(edge)
        self.session.flush()
        return edge.edge_id

    def edges_for_node(
        self,
        node_id: str,
        direction: Literal["outgoing", "incoming", "both"] = "both",
    ) -> list[SemanticEdge]:
        raw = raw_id_for(node_id)
        if direction == "outgoing":
            condition = SemanticEdge.source_node_id == raw
        elif direction == "incoming":
            condition = SemanticEdge.target_node_id == raw
        else:
            condition = or_(SemanticEdge.source_node_id == raw, SemanticEdge.target_node_id == raw)
        return list(self.session.execute(select(SemanticEdge).where(condition)).scalars())

    def related_nodes(self, node_id: str, relation_types: set[RelationType]) -> list[tuple[StoreRecord, float]]:
        """Targets of outgoing edges of the given types, strongest first."""
        query = (
            select(AtomicNode, SemanticEdge.weight)
            .join(SemanticEdge, SemanticEdge.target_node_id == AtomicNode.node_id)
            .where(SemanticEdge.source_node_id == raw_id_for(node_id))
            .where(SemanticEdge.relation_type.in_(relation_types))
            .order_by(SemanticEdge.weight.desc())
        )
        return [(node_to_record(node), weight) for node, weight in self.session.execute(query).all()]

    # =========================================================================
    # Lexicon
    # =========================================================================

    def upsert_lexicon_entry(
        self,
        pair: LexiconPair,
        *,
        definition_node_id: str | None = None,
        context: str | None = None,
    ) -> LexiconEntry:
        entry = self.session.execute(
            select(LexiconEntry).where(
                LexiconEntry.legacy_word == pair.legacy_word,
                LexiconEntry.sister_word == pair.sister_word,
            )
        ).scalar_one_or_none()

        if entry is None:
            entry = LexiconEntry(legacy_word=pair.legacy_word, sister_word=pair.sister_word)
            self.session.add(entry)

        entry.drift_percentage = pair.drift_percentage
        if definition_node_id is not None:
            entry.definition_node_id = raw_id_for(definition_node_id)
        if context is not None:
            entry.context = context
        self.session.flush()
        return entry

    def lexicon_entries(self) -> list[LexiconEntry]:
        return list(self.session.execute(select(LexiconEntry).order_by(LexiconEntry.legacy_word)).scalars())

    def sister_words(self) -> set[str]:
        rows = self.session.execute(select(LexiconEntry.sister_word)).scalars()
        return {_NON_WORD.sub("", w.lower()) for w in rows}

    def uses_sister_terms(self, content: str) -> bool:
        lexicon = self.sister_words()
        if not lexicon:
            return False
        return any(_NON_WORD.sub("", word.lower()) in lexicon for word in content.split())

    # =========================================================================
    # Query history
    # =========================================================================

    def record_query(
        self,
        query_text: str,
        query_type: QueryType,
        source_file: str | None,
        results: list[dict[str, Any]],
    ) -> QueryHistory:
        entry = QueryHistory(
            query_text=query_text,
            query_type=query_type,
            executed_in_file=source_file,
            result_count=len(results),
            results=results,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    # =========================================================================
    # Injection outbox
    # =========================================================================

    def enqueue_injection(self, node_id: str, marker: MarkerNode, source_file: str) -> InjectionOutbox:
        entry = InjectionOutbox(
            node_id=raw_id_for(node_id),
            source_file=source_file,
            shortcode=marker.code,
            content_text=marker.content,
            start_offset=marker.start_offset,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def pending_injections(self, source_file: str) -> list[InjectionOutbox]:
        query = (
            select(InjectionOutbox)
            .where(InjectionOutbox.source_file == source_file)
            .where(InjectionOutbox.status == OutboxStatus.pending)
            .order_by(InjectionOutbox.start_offset, InjectionOutbox.created_at)
        )
        return list(self.session.execute(query).scalars())

    def mark_applied(self, node_ids: list[str], source_file: str) -> int:
        raw_ids = {raw_id_for(n) for n in node_ids}
        count = 0
        for entry in self.pending_injections(source_file):
            if entry.node_id in raw_ids:
                entry.status = OutboxStatus.applied
                entry.applied_at = datetime.utcnow()
                count += 1
        self.session.flush()
        return count
