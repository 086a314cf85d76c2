"""
Marker tokenizer.

Syntax::

    :::H Time is emergent from quantum decoherence :::
    :::H<a1b2c3d4-...> Time is emergent from quantum decoherence :::
    :::LW Wave Function -> SW Void Oscillation (DP:90%) :::

A marker is ``":::" CODE ("<" ID ">")? WS+ CONTENT WS* ":::"``. CONTENT is the
shortest run of characters (newlines included) up to the next ``:::``. CODE
must be a registered shortcode; the scanning pattern tries longer codes before
shorter ones so ``LW`` is never read as ``L`` followed by ``W ...``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache

from epistemic_markers.errors.types import ErrorType, MarkerIssue
from epistemic_markers.registry import ShortcodeRegistry

logger = logging.getLogger(__name__)

MARKER_DELIMITER = ":::"

# Any ":::CODE" opener, registered or not. Used only to report unknown codes.
_ANY_OPENER = re.compile(r":::([^\s<:]+)(?:<[^>]+>)?\s")

_LEXICON_PATTERN = re.compile(r"(.+?)\s*->\s*(.+?)(?:\s*\(DP:(\d+(?:\.\d+)?)%?\))?$")


@dataclass(frozen=True)
class MarkerNode:
    """One marker occurrence. ``raw_match == text[start_offset:end_offset]``."""

    identifier: str | None
    kind: str
    code: str
    content: str
    start_offset: int
    end_offset: int
    raw_match: str

    def __post_init__(self) -> None:
        if self.start_offset >= self.end_offset:
            raise ValueError(f"empty marker span [{self.start_offset}, {self.end_offset})")
        if self.end_offset - self.start_offset != len(self.raw_match):
            raise ValueError("raw_match length does not match marker span")

    @property
    def has_identifier(self) -> bool:
        return bool(self.identifier)


@dataclass(frozen=True)
class LexiconPair:
    legacy_word: str
    sister_word: str
    drift_percentage: float | None = None


def ordered_codes(codes: list[str] | tuple[str, ...]) -> list[str]:
    """Longest first; a code must be tried before any code that is its prefix."""
    return sorted(codes, key=len, reverse=True)


@lru_cache(maxsize=32)
def _compile(codes: tuple[str, ...]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(code) for code in ordered_codes(codes))
    # (CODE) (<ID>)? whitespace (content, non-greedy, across lines) whitespace? :::
    return re.compile(rf":::({alternation})(?:<([^>]+)>)?\s+(.*?)\s*:::", re.DOTALL)


def marker_pattern(registry: ShortcodeRegistry) -> re.Pattern[str]:
    codes = tuple(sorted(registry.codes()))
    if not codes:
        raise ValueError("shortcode registry is empty")
    return _compile(codes)


def tokenize(text: str, registry: ShortcodeRegistry) -> list[MarkerNode]:
    """Extract markers in ascending offset order."""
    nodes: list[MarkerNode] = []

    for match in marker_pattern(registry).finditer(text):
        code, identifier, content = match.group(1), match.group(2), match.group(3)
        definition = registry.resolve(code)
        if definition is None:
            logger.warning("Unknown shortcode %r at offset %d", code, match.start())
            continue

        nodes.append(
            MarkerNode(
                identifier=identifier or None,
                kind=definition.kind,
                code=code,
                content=content.strip(),
                start_offset=match.start(),
                end_offset=match.end(),
                raw_match=match.group(0),
            )
        )

    return nodes


def unknown_markers(text: str, registry: ShortcodeRegistry, nodes: list[MarkerNode] | None = None) -> list[MarkerIssue]:
    """Openers with an unregistered code that no recognised marker covers."""
    if nodes is None:
        nodes = tokenize(text, registry)
    spans = [(n.start_offset, n.end_offset) for n in nodes]

    issues = []
    for match in _ANY_OPENER.finditer(text):
        code = match.group(1)
        if code in registry:
            continue
        if any(start <= match.start() < end for start, end in spans):
            continue
        issues.append(
            MarkerIssue(
                error_type=ErrorType.UNKNOWN_CODE,
                message=f"Unknown shortcode: {code}",
                offset=match.start(),
                details={"code": code},
            )
        )
    return issues


def validate_marker(marker: MarkerNode, registry: ShortcodeRegistry) -> list[MarkerIssue]:
    """Problems that make a marker unusable. Empty list means valid."""
    issues = []
    if marker.code not in registry:
        issues.append(
            MarkerIssue(
                error_type=ErrorType.UNKNOWN_CODE,
                message=f"Unknown shortcode: {marker.code}",
                offset=marker.start_offset,
            )
        )
    if not marker.kind or not marker.kind.strip():
        issues.append(
            MarkerIssue(
                error_type=ErrorType.MALFORMED_MARKER,
                message="Invalid marker: missing kind",
                offset=marker.start_offset,
            )
        )
    if not marker.content or not marker.content.strip():
        issues.append(
            MarkerIssue(
                error_type=ErrorType.MALFORMED_MARKER,
                message="Marker has empty content",
                offset=marker.start_offset,
            )
        )
    return issues


def parse_lexicon_marker(content: str) -> LexiconPair | None:
    """
    Parse ``"legacy term -> sister term (DP:90%)"``.

    The drift suffix is optional. Returns None when the content has no arrow.
    """
    match = _LEXICON_PATTERN.search(content.strip())
    if not match:
        return None

    legacy, sister, drift = match.groups()
    return LexiconPair(
        legacy_word=legacy.strip(),
        sister_word=sister.strip(),
        drift_percentage=float(drift) if drift else None,
    )
