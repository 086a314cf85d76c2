"""
Epistemic Markers Package

Inline marker tokenization, identifier injection and semantic block
reconciliation for Markdown notes.
"""

__version__ = "0.1.0"

from epistemic_markers.registry import DEFAULT_SHORTCODES, ShortcodeDefinition, ShortcodeRegistry
from epistemic_markers.tokenizer import (
    LexiconPair,
    MarkerNode,
    parse_lexicon_marker,
    tokenize,
    unknown_markers,
    validate_marker,
)
from epistemic_markers.injector import inject, inject_identifier, serialize_marker
from epistemic_markers.lines import line_of, line_span
from epistemic_markers.models import Annotation, BlockMetadata, Relationship, SemanticBlock, StoreRecord
from epistemic_markers.errors.types import (
    EpistemicError,
    ErrorType,
    MarkerIssue,
    StoreError,
)
from epistemic_markers.reconcile import (
    AnnotationState,
    DriftReport,
    drift_report,
    find_unsynced,
    resync_from_store,
)
from epistemic_markers.query import QueryCommand, format_result_callout, parse_query_commands

__all__ = [
    # Registry
    "DEFAULT_SHORTCODES",
    "ShortcodeDefinition",
    "ShortcodeRegistry",
    # Tokenizer / injector
    "LexiconPair",
    "MarkerNode",
    "parse_lexicon_marker",
    "tokenize",
    "unknown_markers",
    "validate_marker",
    "inject",
    "inject_identifier",
    "serialize_marker",
    "line_of",
    "line_span",
    # Models
    "Annotation",
    "BlockMetadata",
    "Relationship",
    "SemanticBlock",
    "StoreRecord",
    # Errors
    "EpistemicError",
    "ErrorType",
    "MarkerIssue",
    "StoreError",
    # Reconciliation
    "AnnotationState",
    "DriftReport",
    "drift_report",
    "find_unsynced",
    "resync_from_store",
    # Queries
    "QueryCommand",
    "format_result_callout",
    "parse_query_commands",
]
