"""Map OCR candidates to pixel-space text runs and redaction rectangles."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import fitz
from PIL import Image

from pdf_quickfix.geometry import clamp_rect, normalized_box_to_pixel_rect, pad_rect
from pdf_quickfix.models import (
    FindReplaceRule,
    RecognizedRun,
    RedactionPattern,
    RunKind,
    SegmentKind,
)
from pdf_quickfix.ocr_engine import OCRProvider, RecognizedTextCandidate
from pdf_quickfix.patterns import redaction_ranges, replacement_ranges
from pdf_quickfix.segments import compute_segments, utf16_substring

logger = logging.getLogger(__name__)


@dataclass
class PageRecognition:
    """Pixel-space output of OCR orchestration for one page."""

    runs: list[RecognizedRun] = field(default_factory=list)
    redaction_rects: list[fitz.Rect] = field(default_factory=list)


def map_candidate(
    candidate: RecognizedTextCandidate,
    image_size: tuple[int, int],
    patterns: Sequence[RedactionPattern],
    rules: Sequence[tuple[FindReplaceRule, re.Pattern[str]]],
    padding: float,
    into: PageRecognition,
) -> None:
    """Segment one candidate and append its runs and redaction rects to ``into``."""
    text = candidate.string
    bounds = fitz.Rect(0, 0, image_size[0], image_size[1])

    segments = compute_segments(
        text,
        redaction_ranges(patterns, text),
        replacement_ranges(rules, text),
    )

    for seg in segments:
        box = candidate.bounding_box_normalized(seg.start, seg.end)
        if box is None:
            continue
        rect = clamp_rect(normalized_box_to_pixel_rect(box, image_size), bounds)
        if rect is None:
            continue

        if seg.kind == SegmentKind.SKIP:
            padded = clamp_rect(pad_rect(rect, padding), bounds)
            if padded is not None:
                into.redaction_rects.append(padded)
        elif seg.kind == SegmentKind.REPLACE:
            into.runs.append(RecognizedRun(RunKind.REPLACE, seg.replacement or "", rect))
        else:
            into.runs.append(
                RecognizedRun(RunKind.KEEP, utf16_substring(text, seg.start, seg.end), rect)
            )


def map_candidates(
    candidates: Sequence[RecognizedTextCandidate],
    image_size: tuple[int, int],
    patterns: Sequence[RedactionPattern],
    rules: Sequence[tuple[FindReplaceRule, re.Pattern[str]]],
    padding: float,
) -> PageRecognition:
    recognition = PageRecognition()
    for candidate in candidates:
        map_candidate(candidate, image_size, patterns, rules, padding, recognition)
    return recognition


def recognize_page(
    image: Image.Image,
    provider: OCRProvider,
    languages: Sequence[str],
    patterns: Sequence[RedactionPattern],
    rules: Sequence[tuple[FindReplaceRule, re.Pattern[str]]],
    padding: float,
    page_index: int = 0,
) -> PageRecognition:
    """Run OCR on a page raster and map the result.

    A failing recognizer is treated as "no text on this page".
    """
    try:
        candidates = provider.recognize_text(image, languages)
    except Exception as exc:
        logger.warning("OCR failed on page %d, continuing without text: %s", page_index + 1, exc)
        candidates = []
    return map_candidates(candidates, image.size, patterns, rules, padding)
