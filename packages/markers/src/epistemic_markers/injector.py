"""
Identifier injection.

Rewrites markers so they carry their store-assigned identifier::

    :::H Time is emergent :::  ->  :::H<abc-123> Time is emergent :::

Every offset in ``updates`` refers to the *original* text. Replacements are
applied right-to-left so a rewrite never shifts a marker still waiting to be
rewritten.
"""

from __future__ import annotations

from typing import Mapping

from epistemic_markers.tokenizer import MarkerNode


def serialize_marker(code: str, content: str, identifier: str | None = None) -> str:
    """Canonical form of a marker; a pure function of its three inputs."""
    if identifier:
        return f":::{code}<{identifier}> {content} :::"
    return f":::{code} {content} :::"


def inject_identifier(marker: MarkerNode, identifier: str) -> str:
    return serialize_marker(marker.code, marker.content, identifier)


def inject(text: str, updates: Mapping[int, tuple[MarkerNode, str]]) -> str:
    """
    Return ``text`` with each marker in ``updates`` re-serialized with its identifier.

    Args:
        text: Document snapshot the markers were tokenized from
        updates: start_offset -> (marker, identifier)

    Returns:
        New document text; bytes outside the rewritten markers are untouched
    """
    result = text
    for _start, (marker, identifier) in sorted(updates.items(), key=lambda item: item[0], reverse=True):
        if result[marker.start_offset:marker.end_offset] != marker.raw_match:
            raise ValueError(
                f"marker at offset {marker.start_offset} does not match the text it was parsed from"
            )
        result = result[:marker.start_offset] + inject_identifier(marker, identifier) + result[marker.end_offset:]
    return result
