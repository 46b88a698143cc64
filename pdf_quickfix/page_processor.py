"""Per-page rasterization, redaction compositing and overlay suppression."""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

import fitz
from PIL import Image, ImageDraw, ImageFont

from pdf_quickfix.errors import PageRenderError
from pdf_quickfix.geometry import (
    clamp_rect,
    pad_rect,
    page_to_pixel_transform,
    pixel_size_for_page,
    points_to_pixels,
    rect_pixels_to_points,
    rects_intersect,
    rotated_page_size,
    to_raster_box,
    transform_rect,
    union_rects,
)
from pdf_quickfix.models import (
    FindReplaceRule,
    PageProcessResult,
    QuickFixOptions,
    RecognizedRun,
    RedactionPattern,
    RedactionReportPage,
    RunKind,
)
from pdf_quickfix.ocr_engine import OCRProvider
from pdf_quickfix.ocr_orchestrator import PageRecognition, recognize_page

logger = logging.getLogger(__name__)

# Redaction rects are grown by this much before overlap tests so that
# rounding in OCR boxes never lets text survive under a black box.
SUPPRESSION_EPSILON_PX = 1.0

_REPLACEMENT_FONT_RATIO = 0.85
_MIN_REPLACEMENT_FONT_PX = 10

_FONT_CANDIDATES = ("DejaVuSans.ttf", "Arial.ttf", "arial.ttf", "Helvetica.ttc", "LiberationSans-Regular.ttf")


@functools.lru_cache(maxsize=32)
def _load_font(size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    """Return a system font at ``size`` pixels, falling back to Pillow's default."""
    for name in _FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    try:
        return ImageFont.load_default(size=size)
    except TypeError:  # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


@dataclass
class RenderedPage:
    """A page raster plus the geometry needed to map rectangles onto it."""

    page_index: int
    image: Image.Image  # RGB, white background
    page_size_points: tuple[float, float]
    transform: fitz.Matrix  # PDF user space -> pixel space
    bounds: fitz.Rect  # pixel bounds


def _pixmap_to_image(pixmap: fitz.Pixmap) -> Image.Image:
    return Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)


def visible_page_box(page: fitz.Page) -> fitz.Rect:
    """The page's crop box in PDF user space (bottom-left origin).

    PyMuPDF reports ``cropbox`` with a top-left origin relative to the media
    box, so it is flipped back here. Without a crop box this is the media box.
    """
    media = fitz.Rect(page.mediabox)
    crop = fitz.Rect(page.cropbox)
    return fitz.Rect(crop.x0, media.y1 - crop.y1, crop.x1, media.y1 - crop.y0)


def render_page(page: fitz.Page | None, page_index: int, dpi: float) -> RenderedPage:
    """Render the visible area of ``page`` at ``dpi`` honoring its rotation.

    If the default render path raises, the page is rendered again without
    annotations before giving up.
    """
    if page is None:
        raise PageRenderError(page_index, "Missing page")

    page_box = visible_page_box(page)
    rotation = page.rotation
    size_points = rotated_page_size(page_box, rotation)
    width_px, height_px = pixel_size_for_page(size_points, dpi)
    bounds = fitz.Rect(0, 0, width_px, height_px)
    transform = page_to_pixel_transform(page_box, rotation, bounds)

    # get_pixmap covers the visible box only.
    scale = points_to_pixels(1.0, dpi)
    zoom = fitz.Matrix(scale, scale)

    try:
        pixmap = page.get_pixmap(matrix=zoom, alpha=False)
    except RuntimeError as exc:
        logger.warning("Render failed on page %d (%s), retrying without annotations", page_index + 1, exc)
        try:
            pixmap = page.get_pixmap(matrix=zoom, alpha=False, annots=False)
        except RuntimeError as retry_exc:
            raise PageRenderError(page_index, f"Failed to rasterize page: {retry_exc}") from retry_exc

    try:
        image = Image.new("RGB", (width_px, height_px), "white")
    except (MemoryError, ValueError) as exc:
        raise PageRenderError(page_index, "Unable to create bitmap") from exc
    image.paste(_pixmap_to_image(pixmap), (0, 0))

    return RenderedPage(
        page_index=page_index,
        image=image,
        page_size_points=size_points,
        transform=transform,
        bounds=bounds,
    )


class PageProcessor:
    """Turns a rendered page into a composited raster and overlay runs."""

    def __init__(
        self,
        options: QuickFixOptions,
        ocr_provider: OCRProvider,
        languages: Sequence[str],
        redaction_patterns: Sequence[RedactionPattern] = (),
        rules: Sequence[tuple[FindReplaceRule, re.Pattern[str]]] = (),
    ) -> None:
        self.options = options
        self.ocr_provider = ocr_provider
        self.languages = list(languages)
        self.redaction_patterns = list(redaction_patterns)
        self.rules = list(rules)

    @property
    def needs_ocr(self) -> bool:
        return self.options.do_ocr or bool(self.redaction_patterns) or bool(self.rules)

    def manual_rects_to_pixels(
        self, rendered: RenderedPage, manual_rects: Sequence[tuple[float, float, float, float]]
    ) -> list[fitz.Rect]:
        """Map point-space ``(x, y, w, h)`` rects into padded, clamped pixel rects."""
        rects: list[fitz.Rect] = []
        for x, y, w, h in manual_rects:
            converted = transform_rect(fitz.Rect(x, y, x + w, y + h), rendered.transform)
            clamped = clamp_rect(pad_rect(converted, self.options.redaction_padding), rendered.bounds)
            if clamped is not None:
                rects.append(clamped)
        return rects

    def process(
        self,
        rendered: RenderedPage,
        manual_rects: Sequence[tuple[float, float, float, float]] = (),
    ) -> tuple[PageProcessResult, RedactionReportPage | None]:
        """Composite one page. Safe to call from worker threads."""
        if self.needs_ocr:
            recognition = recognize_page(
                rendered.image,
                self.ocr_provider,
                self.languages,
                self.redaction_patterns,
                self.rules,
                self.options.redaction_padding,
                rendered.page_index,
            )
        else:
            recognition = PageRecognition()

        redaction_rects = self.manual_rects_to_pixels(rendered, manual_rects)
        redaction_rects.extend(recognition.redaction_rects)

        overlap_rects = [pad_rect(r, SUPPRESSION_EPSILON_PX) for r in redaction_rects]
        overlap_bounds = union_rects(overlap_rects)

        def is_redacted(run: RecognizedRun) -> bool:
            if overlap_bounds is None or not rects_intersect(run.rect, overlap_bounds):
                return False
            return any(rects_intersect(r, run.rect) for r in overlap_rects)

        replacements = [
            run for run in recognition.runs if run.kind == RunKind.REPLACE and not is_redacted(run)
        ]
        final_image = self._composite(rendered, redaction_rects, replacements)

        runs_in_points: list[RecognizedRun] = []
        suppressed = 0
        if self.options.do_ocr:
            surviving = [run for run in recognition.runs if not is_redacted(run)]
            suppressed = len(recognition.runs) - len(surviving)
            runs_in_points = [
                RecognizedRun(run.kind, run.text, rect_pixels_to_points(run.rect, self.options.dpi))
                for run in surviving
            ]

        report = None
        if redaction_rects:
            report = RedactionReportPage(
                page_index=rendered.page_index,
                redaction_rect_count=len(redaction_rects),
                suppressed_ocr_run_count=suppressed,
            )

        if self.options.do_ocr or redaction_rects:
            logger.info(
                "Page %d: %d redaction(s), %d overlay run(s), %d suppressed",
                rendered.page_index + 1,
                len(redaction_rects),
                len(runs_in_points),
                suppressed,
            )

        result = PageProcessResult(
            page_size_points=rendered.page_size_points,
            image=final_image,
            text_runs_in_points=runs_in_points,
        )
        return result, report

    def _composite(
        self,
        rendered: RenderedPage,
        redaction_rects: Sequence[fitz.Rect],
        replacements: Sequence[RecognizedRun],
    ) -> Image.Image:
        height = rendered.image.height
        try:
            edited = rendered.image.copy()
        except (MemoryError, ValueError) as exc:
            raise PageRenderError(rendered.page_index, "Unable to create edit bitmap") from exc

        draw = ImageDraw.Draw(edited)
        for rect in redaction_rects:
            draw.rectangle(to_raster_box(rect, height), fill="black")

        for run in replacements:
            x0, top, x1, bottom = (round(v) for v in to_raster_box(run.rect, height))
            width, box_height = max(1, x1 - x0), max(1, bottom - top)
            # Draw into a tile the size of the run so text is clipped to it.
            tile = Image.new("RGB", (width, box_height), "white")
            font_px = max(_MIN_REPLACEMENT_FONT_PX, int(run.rect.height * _REPLACEMENT_FONT_RATIO))
            ImageDraw.Draw(tile).text((0, 0), run.text, fill="black", font=_load_font(font_px))
            edited.paste(tile, (x0, top))

        return edited
