"""Sliding-window chunking and offset-to-line mapping."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterator

MIN_WINDOW = 100
MIN_STRIDE = 50
PREVIEW_CHARS = 180


def sliding_window(text: str, window: int, stride: int) -> Iterator[tuple[str, int]]:
    """Yield ``(chunk, start_offset)`` pairs over ``text``.

    The window is clamped to at least 100 chars and the stride to at least 50.
    The last window is cut at the end of the text and iteration stops once a
    window reaches the end.
    """
    window = max(MIN_WINDOW, window)
    stride = max(MIN_STRIDE, stride)
    if not text:
        return
    pos = 0
    while pos < len(text):
        end = min(len(text), pos + window)
        yield text[pos:end], pos
        if end >= len(text):
            break
        pos += stride


def line_start_offsets(text: str) -> list[int]:
    """Character offset at which each line begins (first entry is always 0)."""
    starts = [0]
    for i, ch in enumerate(text):
        if ch == "\n":
            starts.append(i + 1)
    return starts


def offset_to_line(starts: list[int], offset: int) -> int:
    """Map a character offset to its 1-based line number."""
    return max(1, bisect_right(starts, offset))


def make_preview(chunk: str, limit: int = PREVIEW_CHARS) -> str:
    """Single-line preview of a chunk, cut to ``limit`` chars."""
    flat = " ".join(chunk.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."
