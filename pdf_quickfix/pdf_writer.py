"""Assemble composited page rasters and invisible OCR text into a PDF."""

from __future__ import annotations

import functools
import io
import logging
import os
import tempfile
from collections.abc import Sequence

import fitz

from pdf_quickfix.errors import PDFWriteError
from pdf_quickfix.models import PageProcessResult

logger = logging.getLogger(__name__)

# Noto Sans (pymupdf-fonts) covers Latin, Greek and Cyrillic scripts; MuPDF's
# built-in CJK font takes runs Noto Sans has no glyphs for.
_OVERLAY_FONT_NAMES = ("notos", "china-s")
_OVERLAY_FONT_RATIO = 0.85
_MIN_OVERLAY_FONT_PT = 8.0
_INVISIBLE = 3  # PDF text render mode "neither fill nor stroke"


@functools.lru_cache(maxsize=None)
def _overlay_fonts() -> tuple[fitz.Font, ...]:
    return tuple(fitz.Font(name) for name in _OVERLAY_FONT_NAMES)


def overlay_font(text: str) -> fitz.Font:
    """First overlay font with a glyph for every visible character of ``text``."""
    fonts = _overlay_fonts()
    for font in fonts:
        if all(font.has_glyph(ord(ch)) for ch in text if not ch.isspace()):
            return font
    return fonts[0]


def _draw_overlay(page: fitz.Page, result: PageProcessResult) -> None:
    """Write each run as invisible text so the page stays searchable."""
    page_height = result.page_size_points[1]
    writer = fitz.TextWriter(page.rect)
    written = 0
    for run in result.text_runs_in_points:
        if not run.text:
            continue
        rect = run.rect
        font_size = max(_MIN_OVERLAY_FONT_PT, rect.height * _OVERLAY_FONT_RATIO)
        # Run rects are bottom-left based; PyMuPDF places the baseline top-left based.
        baseline_y = page_height - (rect.y0 + (rect.height - font_size) * 0.1)
        writer.append(fitz.Point(rect.x0, baseline_y), run.text, font=overlay_font(run.text), fontsize=font_size)
        written += 1
    if written:
        writer.write_text(page, render_mode=_INVISIBLE)


def build_pdf(pages: Sequence[PageProcessResult]) -> bytes:
    """Serialize pages in order; one output page per result."""
    if not pages:
        raise PDFWriteError("No pages to write")

    try:
        out = fitz.open()
    except RuntimeError as exc:
        raise PDFWriteError(f"Cannot create PDF document: {exc}") from exc

    try:
        for result in pages:
            width, height = result.page_size_points
            page = out.new_page(width=width, height=height)

            buffer = io.BytesIO()
            result.image.save(buffer, format="PNG")
            page.insert_image(page.rect, stream=buffer.getvalue(), keep_proportion=False)

            _draw_overlay(page, result)
        return out.tobytes(garbage=3, deflate=True)
    except (RuntimeError, ValueError) as exc:
        raise PDFWriteError(f"Failed to assemble PDF: {exc}") from exc
    finally:
        out.close()


def write_atomic(data: bytes, path: str) -> None:
    """Write ``data`` to ``path`` via a temporary file in the same directory."""
    directory = os.path.dirname(os.path.abspath(path))
    try:
        fd, tmp_path = tempfile.mkstemp(suffix=".pdf.tmp", dir=directory)
    except OSError as exc:
        raise PDFWriteError(f"Cannot write to {directory}: {exc}") from exc
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
    except OSError as exc:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise PDFWriteError(f"Cannot write {path}: {exc}") from exc


def write_pdf(pages: Sequence[PageProcessResult], path: str) -> None:
    data = build_pdf(pages)
    write_atomic(data, path)
    logger.info("Wrote %d page(s) to %s", len(pages), path)
