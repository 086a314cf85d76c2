"""
Authoritative annotation store (SQLAlchemy).

Nodes, typed edges, lexicon entries, query history and the injection outbox
live in the relational database configured by ``EPISTEMIC_DATABASE_URL``.
"""

from epistemic_markers.store.repository import AnnotationStore, node_to_record, transaction

__all__ = ["AnnotationStore", "node_to_record", "transaction"]
