"""Character offset -> 1-indexed line number."""

from __future__ import annotations


def line_of(text: str, offset: int) -> int:
    """
    Line containing ``offset``: one plus the newlines strictly before it.

    A plain scan per call; callers invoke it once per annotation at save time.
    Offsets past the end count every newline in ``text``.
    """
    if offset <= 0:
        return 1
    return text.count("\n", 0, offset) + 1


def line_span(text: str, start: int, end: int) -> tuple[int, int]:
    return line_of(text, start), line_of(text, end)
