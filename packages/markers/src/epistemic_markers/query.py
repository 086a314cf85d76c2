"""
Inline query commands.

``{{QUERY: Show contradictions to this paragraph}}`` is classified by keyword
into a ``QueryType``; results are written back as a callout right after the
command.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from epistemic_core.db.enums import QueryType
from epistemic_markers.models.annotation import utcnow

_QUERY_PATTERN = re.compile(r"\{\{QUERY:\s*([^}]+)\}\}")

# Checked in order; the first keyword found decides the type.
_KEYWORDS: tuple[tuple[tuple[str, ...], QueryType], ...] = (
    (("contradiction", "refute"), QueryType.contradiction),
    (("support", "evidence"), QueryType.support),
    (("similar", "related"), QueryType.similarity),
    (("sister", "translation"), QueryType.translation),
    (("theory", "70"), QueryType.theory_match),
)

CALLOUT_RESULT_LIMIT = 5
CALLOUT_CONTENT_CHARS = 100


@dataclass(frozen=True)
class QueryCommand:
    query_type: QueryType
    query_text: str
    offset: int
    full_match: str

    @property
    def end_offset(self) -> int:
        return self.offset + len(self.full_match)


def infer_query_type(query_text: str) -> QueryType:
    lower = query_text.lower()
    for keywords, query_type in _KEYWORDS:
        if any(k in lower for k in keywords):
            return query_type
    return QueryType.general


def parse_query_commands(text: str) -> list[QueryCommand]:
    return [
        QueryCommand(
            query_type=infer_query_type(match.group(1)),
            query_text=match.group(1).strip(),
            offset=match.start(),
            full_match=match.group(0),
        )
        for match in _QUERY_PATTERN.finditer(text)
    ]


def format_result_callout(
    query_text: str,
    results: Sequence[Mapping[str, Any]],
    query_type: QueryType,
    executed: datetime | None = None,
) -> str:
    """Obsidian info callout listing the first few results."""
    executed = executed or utcnow()
    lines = [
        "",
        f"> [!info] Query Results ({query_type.value})",
        f"> **Query:** {query_text}",
        f"> **Executed:** {executed.isoformat()}",
        f"> **Results:** {len(results)}",
        ">",
    ]

    if not results:
        lines.append("> No results found.")
    else:
        for i, result in enumerate(results[:CALLOUT_RESULT_LIMIT], start=1):
            content = str(result.get("content") or "")[:CALLOUT_CONTENT_CHARS]
            lines.append(f"> {i}. {content}...")
            similarity = result.get("similarity")
            if similarity:
                lines.append(f">    *Similarity: {similarity * 100:.1f}%*")
        if len(results) > CALLOUT_RESULT_LIMIT:
            lines.append(f"> ... and {len(results) - CALLOUT_RESULT_LIMIT} more results")

    return "\n".join(lines) + "\n\n"


def insert_after(text: str, offset: int, full_match: str, callout: str) -> str:
    position = offset + len(full_match)
    return text[:position] + callout + text[position:]
