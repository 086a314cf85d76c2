from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from epistemic_core.db.base import Base
from epistemic_core.db.enums import OutboxStatus, QueryType, RelationType
from epistemic_core.identity import new_raw_id


class AtomicNode(Base):
    __tablename__ = "atomic_node"

    # Opaque, unprefixed store id. Documents carry it as ":::H<id> ...:::" and the
    # semantic block as "ann-<id>".
    node_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_raw_id)
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    node_type: Mapped[str] = mapped_column(String(128), nullable=False)
    shortcode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source_file: Mapped[str] = mapped_column(Text, nullable=False)
    source_vault: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile: Mapped[str] = mapped_column(String(64), nullable=False, default="personal")
    line_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    line_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    char_offset_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    char_offset_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[str] = mapped_column(String(256), nullable=False, default="user")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Free-form marker attributes, e.g. {"legacy_word": ..., "sister_word": ...}.
    attributes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    uses_sister_nomenclature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("confidence >= 0.0 AND confidence <= 1.0", name="ck_atomic_node_confidence"),
        Index("ix_atomic_node_file_offset", "source_file", "char_offset_start"),
        Index("ix_atomic_node_type", "node_type"),
    )


class SemanticEdge(Base):
    __tablename__ = "semantic_edge"

    edge_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_raw_id)
    source_node_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("atomic_node.node_id", ondelete="CASCADE"), nullable=False
    )
    target_node_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("atomic_node.node_id", ondelete="CASCADE"), nullable=False
    )
    relation_type: Mapped[RelationType] = mapped_column(Enum(RelationType, native_enum=False), nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_bidirectional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str] = mapped_column(String(256), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    source: Mapped[AtomicNode] = relationship(foreign_keys=[source_node_id])
    target: Mapped[AtomicNode] = relationship(foreign_keys=[target_node_id])

    __table_args__ = (
        UniqueConstraint("source_node_id", "target_node_id", "relation_type", name="uq_semantic_edge"),
        CheckConstraint("weight >= 0.0 AND weight <= 1.0", name="ck_semantic_edge_weight"),
        Index("ix_semantic_edge_source", "source_node_id"),
        Index("ix_semantic_edge_target", "target_node_id"),
    )


class LexiconEntry(Base):
    __tablename__ = "lexicon_entry"

    entry_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_raw_id)
    legacy_word: Mapped[str] = mapped_column(String(512), nullable=False)
    sister_word: Mapped[str] = mapped_column(String(512), nullable=False)
    drift_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    definition_node_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("atomic_node.node_id", ondelete="SET NULL"), nullable=True
    )
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    usage_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("legacy_word", "sister_word", name="uq_lexicon_pair"),
        CheckConstraint(
            "drift_percentage IS NULL OR (drift_percentage >= 0 AND drift_percentage <= 100)",
            name="ck_lexicon_drift",
        ),
        Index("ix_lexicon_sister_word", "sister_word"),
    )


class QueryHistory(Base):
    __tablename__ = "query_history"

    query_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_raw_id)
    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    query_type: Mapped[QueryType] = mapped_column(Enum(QueryType, native_enum=False), nullable=False)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    executed_in_file: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    results: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class InjectionOutbox(Base):
    """A store id that was assigned but may not have reached the document yet."""

    __tablename__ = "injection_outbox"

    outbox_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_raw_id)
    node_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("atomic_node.node_id", ondelete="CASCADE"), nullable=False
    )
    source_file: Mapped[str] = mapped_column(Text, nullable=False)
    shortcode: Mapped[str] = mapped_column(String(32), nullable=False)
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[OutboxStatus] = mapped_column(
        Enum(OutboxStatus, native_enum=False), nullable=False, default=OutboxStatus.pending
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    node: Mapped[AtomicNode] = relationship()

    __table_args__ = (Index("ix_injection_outbox_file_status", "source_file", "status"),)
