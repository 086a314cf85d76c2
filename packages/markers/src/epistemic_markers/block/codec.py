"""
Semantic block codec.

The block is an Obsidian comment at the end of the document::

    %%semantic
    { ...indented JSON... }
    %%

Each sentinel sits on its own line. A block that fails to decode is reported
as absent by ``decode``; ``decode_result`` keeps the distinction between "no
block" and "corrupt block" for callers that need it. Writing always removes
every block found and appends a single one at the end of the document.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

from pydantic import ValidationError

from epistemic_core.identity import new_note_id
from epistemic_markers.models.annotation import Annotation, utcnow
from epistemic_markers.models.block import BLOCK_VERSION, BlockMetadata, SemanticBlock

logger = logging.getLogger(__name__)

START_SENTINEL = "%%semantic"
END_SENTINEL = "%%"

_START = re.compile(r"^%%semantic[^\S\n]*$", re.MULTILINE)
_END = re.compile(r"^%%[^\S\n]*$", re.MULTILINE)


@dataclass(frozen=True)
class BlockSpan:
    """Offsets of one block. ``start``/``end`` bound the payload, sentinels excluded."""

    block_start: int
    start: int
    end: int
    block_end: int
    terminated: bool = True


class DecodeStatus(str, Enum):
    absent = "absent"
    ok = "ok"
    malformed = "malformed"


@dataclass(frozen=True)
class BlockDecodeResult:
    status: DecodeStatus
    block: SemanticBlock | None = None
    error: str | None = None


def _locate_from(text: str, pos: int) -> BlockSpan | None:
    start_match = _START.search(text, pos)
    if start_match is None:
        return None

    end_match = _END.search(text, start_match.end())
    if end_match is None:
        return BlockSpan(
            block_start=start_match.start(),
            start=start_match.end(),
            end=len(text),
            block_end=len(text),
            terminated=False,
        )

    return BlockSpan(
        block_start=start_match.start(),
        start=start_match.end(),
        end=end_match.start(),
        block_end=end_match.end(),
    )


def locate(text: str) -> BlockSpan | None:
    """The first block in ``text``, or None when there is no start sentinel."""
    return _locate_from(text, 0)


def locate_all(text: str) -> list[BlockSpan]:
    spans = []
    pos = 0
    while (span := _locate_from(text, pos)) is not None:
        spans.append(span)
        if span.block_end >= len(text):
            break
        pos = span.block_end
    return spans


def decode_result(text: str) -> BlockDecodeResult:
    span = locate(text)
    if span is None:
        return BlockDecodeResult(DecodeStatus.absent)
    if not span.terminated:
        return BlockDecodeResult(DecodeStatus.malformed, error="semantic block start found but no end marker")

    payload = text[span.start:span.end].strip()
    try:
        block = SemanticBlock.model_validate_json(payload)
    except ValidationError as exc:
        return BlockDecodeResult(DecodeStatus.malformed, error=str(exc))
    return BlockDecodeResult(DecodeStatus.ok, block=block)


def decode(text: str) -> SemanticBlock | None:
    """The document's block; None when it is missing *or* does not decode."""
    result = decode_result(text)
    if result.status is DecodeStatus.malformed:
        logger.warning("Discarding malformed semantic block: %s", result.error)
    return result.block


def remove(text: str) -> str:
    """Strip every block (sentinels included) and trailing whitespace."""
    spans = locate_all(text)
    if not spans:
        return text

    result = text
    for span in reversed(spans):
        tail = result[span.block_end:]
        if tail.startswith("\n"):
            tail = tail[1:]
        result = result[:span.block_start] + tail
    return result.rstrip()


def encode(block: SemanticBlock) -> str:
    payload = block.model_dump_json(indent=2, by_alias=True, exclude_none=True)
    return f"{START_SENTINEL}\n{payload}\n{END_SENTINEL}"


def embed(text: str, block: SemanticBlock, *, now: datetime | None = None) -> str:
    """Replace any block(s) in ``text`` with ``block`` at the end, ``modified`` refreshed."""
    stamped = block.model_copy(update={"modified": now or utcnow()})
    return f"{remove(text)}\n\n{encode(stamped)}"


def create_empty(title: str, annotations: Iterable[Annotation] = ()) -> SemanticBlock:
    now = utcnow()
    return SemanticBlock(
        version=BLOCK_VERSION,
        id=new_note_id(),
        created=now,
        modified=now,
        annotations=list(annotations),
        relationships=[],
        metadata=BlockMetadata(title=title),
    )


def read_or_create(text: str, title: str) -> SemanticBlock:
    """The document's block, or a fresh empty one if it has none (or a corrupt one)."""
    block = decode(text)
    if block is not None:
        return block
    return create_empty(title)
