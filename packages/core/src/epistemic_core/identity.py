from __future__ import annotations

import uuid

ANNOTATION_PREFIX = "ann-"
NOTE_PREFIX = "note-"


def add_prefix(prefix: str, raw_id: str) -> str:
    if raw_id.startswith(prefix):
        return raw_id
    return f"{prefix}{raw_id}"


def strip_prefix(prefix: str, prefixed_id: str) -> str:
    if prefixed_id.startswith(prefix):
        return prefixed_id[len(prefix):]
    return prefixed_id


def annotation_id_for(raw_id: str) -> str:
    """Store id -> annotation id (``"1"`` -> ``"ann-1"``)."""
    return add_prefix(ANNOTATION_PREFIX, raw_id)


def raw_id_for(annotation_id: str) -> str:
    """Annotation id -> store id (``"ann-1"`` -> ``"1"``)."""
    return strip_prefix(ANNOTATION_PREFIX, annotation_id)


def new_raw_id() -> str:
    return str(uuid.uuid4())


def new_note_id() -> str:
    return f"{NOTE_PREFIX}{uuid.uuid4()}"
