"""Partition recognized text into keep / replace / skip segments.

All offsets are UTF-16 code units so that ranges stay compatible with
recognizers that report positions that way; use the helpers below to move
between Python string indices and UTF-16 offsets.
"""

from __future__ import annotations

from collections.abc import Iterable

from pdf_quickfix.models import Segment, SegmentKind

TextRange = tuple[int, int]  # [start, end) in UTF-16 code units


def utf16_length(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def utf16_offset(text: str, index: int) -> int:
    """Convert a Python string index to a UTF-16 offset."""
    return utf16_length(text[:index])


def string_index(text: str, offset: int) -> int:
    """Convert a UTF-16 offset to a Python string index.

    An offset falling inside a surrogate pair snaps forward to the next
    character boundary.
    """
    units = 0
    for index, char in enumerate(text):
        if units >= offset:
            return index
        units += 2 if ord(char) > 0xFFFF else 1
    return len(text)


def utf16_substring(text: str, start: int, end: int) -> str:
    return text[string_index(text, start):string_index(text, end)]


def merge_adjacent(segments: list[Segment]) -> list[Segment]:
    """Coalesce touching segments that share the same disposition."""
    if not segments:
        return []
    merged: list[Segment] = []
    last = segments[0]
    for seg in segments[1:]:
        if seg.start == last.end and seg.same_kind(last):
            last = Segment(last.start, seg.end, last.kind, last.replacement)
        else:
            merged.append(last)
            last = seg
    merged.append(last)
    return merged


def apply_span(
    segments: list[Segment],
    start: int,
    end: int,
    kind: SegmentKind,
    replacement: str | None = None,
) -> list[Segment]:
    """Overwrite ``[start, end)`` with ``kind``, splitting segments it overlaps."""
    if start >= end:
        return segments

    updated: list[Segment] = []
    for seg in segments:
        if end <= seg.start or start >= seg.end:
            updated.append(seg)
            continue
        if start > seg.start:
            updated.append(Segment(seg.start, start, seg.kind, seg.replacement))
        updated.append(Segment(max(start, seg.start), min(end, seg.end), kind, replacement))
        if end < seg.end:
            updated.append(Segment(end, seg.end, seg.kind, seg.replacement))

    updated.sort(key=lambda s: s.start)
    return merge_adjacent(updated)


def compute_segments(
    text: str,
    redaction_ranges: Iterable[TextRange],
    replacement_ranges: Iterable[tuple[TextRange, str]],
) -> list[Segment]:
    """Compute the ordered segment partition of ``text``.

    Replacements are applied first and redactions last, so a redaction always
    wins where the two overlap.
    """
    length = utf16_length(text)
    if length == 0:
        return []

    segments = [Segment(0, length, SegmentKind.KEEP)]
    for (start, end), replacement in replacement_ranges:
        segments = apply_span(
            segments, max(start, 0), min(end, length), SegmentKind.REPLACE, replacement
        )
    for start, end in redaction_ranges:
        segments = apply_span(segments, max(start, 0), min(end, length), SegmentKind.SKIP)
    return segments
