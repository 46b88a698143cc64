"""Unit conversion and rectangle geometry shared by the QuickFix pipeline.

Pixel space and point space both use a bottom-left origin here, the same
convention as the normalized boxes reported by the OCR provider. Conversion to
the top-left origin used by Pillow and PyMuPDF happens only at the drawing
boundary (see :func:`to_raster_box`).
"""

from __future__ import annotations

import math
from collections.abc import Iterable

import fitz

POINTS_PER_INCH = 72.0

# Exact (cos, sin) pairs so right-angle rotations do not accumulate float error.
_RIGHT_ANGLES = {0: (1.0, 0.0), 90: (0.0, 1.0), 180: (-1.0, 0.0), 270: (0.0, -1.0)}


def points_to_pixels(value: float, dpi: float) -> float:
    return value * dpi / POINTS_PER_INCH


def pixels_to_points(value: float, dpi: float) -> float:
    return value * POINTS_PER_INCH / dpi


def rect_pixels_to_points(rect: fitz.Rect, dpi: float) -> fitz.Rect:
    return fitz.Rect(
        pixels_to_points(rect.x0, dpi),
        pixels_to_points(rect.y0, dpi),
        pixels_to_points(rect.x1, dpi),
        pixels_to_points(rect.y1, dpi),
    )


def normalized_box_to_pixel_rect(
    box: tuple[float, float, float, float], image_size: tuple[int, int]
) -> fitz.Rect:
    """Scale a normalized ``(x, y, width, height)`` box to pixels.

    No vertical flip is applied: the normalized box and the pixel space share
    the bottom-left origin.
    """
    x, y, w, h = box
    width, height = image_size
    return fitz.Rect(x * width, y * height, (x + w) * width, (y + h) * height)


def normalize_rotation(angle: int) -> int:
    """Normalize a page rotation into one of 0, 90, 180, 270."""
    angle = ((int(angle) % 360) + 360) % 360
    return (angle // 90) * 90


def rotated_page_size(media_box: fitz.Rect, rotation: int) -> tuple[float, float]:
    """Return the displayed page size in points, honoring the rotation."""
    if normalize_rotation(rotation) in (90, 270):
        return media_box.height, media_box.width
    return media_box.width, media_box.height


def pixel_size_for_page(page_size_points: tuple[float, float], dpi: float) -> tuple[int, int]:
    """Pixel dimensions of a page rendered at ``dpi``, never smaller than 1x1."""
    width = max(1, math.ceil(points_to_pixels(page_size_points[0], dpi)))
    height = max(1, math.ceil(points_to_pixels(page_size_points[1], dpi)))
    return width, height


def page_to_pixel_transform(
    media_box: fitz.Rect, rotation: int, target: fitz.Rect
) -> fitz.Matrix:
    """Build the affine transform from PDF user space to pixel space.

    The page box is rotated clockwise by its display rotation about its
    center, scaled to fit ``target`` while preserving aspect ratio, and
    centered in it.
    """
    rotation = normalize_rotation(rotation)
    cos_r, sin_r = _RIGHT_ANGLES[rotation]

    center_x = (media_box.x0 + media_box.x1) / 2.0
    center_y = (media_box.y0 + media_box.y1) / 2.0
    rotated_w, rotated_h = rotated_page_size(media_box, rotation)

    scale = 1.0
    if rotated_w > 0 and rotated_h > 0:
        scale = min(target.width / rotated_w, target.height / rotated_h)

    to_origin = fitz.Matrix(1, 0, 0, 1, -center_x, -center_y)
    rotate = fitz.Matrix(cos_r, -sin_r, sin_r, cos_r, 0, 0)
    zoom = fitz.Matrix(scale, 0, 0, scale, 0, 0)
    to_target = fitz.Matrix(
        1, 0, 0, 1, (target.x0 + target.x1) / 2.0, (target.y0 + target.y1) / 2.0
    )
    return to_origin * rotate * zoom * to_target


def transform_rect(rect: fitz.Rect, matrix: fitz.Matrix) -> fitz.Rect:
    """Bounding rectangle of ``rect`` after applying ``matrix``."""
    corners = [
        fitz.Point(rect.x0, rect.y0) * matrix,
        fitz.Point(rect.x1, rect.y0) * matrix,
        fitz.Point(rect.x0, rect.y1) * matrix,
        fitz.Point(rect.x1, rect.y1) * matrix,
    ]
    xs = [p.x for p in corners]
    ys = [p.y for p in corners]
    return fitz.Rect(min(xs), min(ys), max(xs), max(ys))


def standardized(rect: fitz.Rect) -> fitz.Rect:
    """Return ``rect`` with non-negative width and height."""
    return fitz.Rect(
        min(rect.x0, rect.x1),
        min(rect.y0, rect.y1),
        max(rect.x0, rect.x1),
        max(rect.y0, rect.y1),
    )


def pad_rect(rect: fitz.Rect, padding: float) -> fitz.Rect:
    return fitz.Rect(rect.x0 - padding, rect.y0 - padding, rect.x1 + padding, rect.y1 + padding)


def clamp_rect(rect: fitz.Rect, bounds: fitz.Rect) -> fitz.Rect | None:
    """Intersect ``rect`` with ``bounds``; None when nothing with area remains."""
    rect = standardized(rect)
    x0 = max(rect.x0, bounds.x0)
    y0 = max(rect.y0, bounds.y0)
    x1 = min(rect.x1, bounds.x1)
    y1 = min(rect.y1, bounds.y1)
    if x1 <= x0 or y1 <= y0:
        return None
    return fitz.Rect(x0, y0, x1, y1)


def rects_intersect(a: fitz.Rect, b: fitz.Rect) -> bool:
    """True when the two rectangles share an area (touching edges do not count)."""
    return a.x0 < b.x1 and b.x0 < a.x1 and a.y0 < b.y1 and b.y0 < a.y1


def union_rects(rects: Iterable[fitz.Rect]) -> fitz.Rect | None:
    union: fitz.Rect | None = None
    for r in rects:
        if union is None:
            union = fitz.Rect(r)
        else:
            union = fitz.Rect(
                min(union.x0, r.x0),
                min(union.y0, r.y0),
                max(union.x1, r.x1),
                max(union.y1, r.y1),
            )
    return union


def to_raster_box(rect: fitz.Rect, height: float) -> tuple[float, float, float, float]:
    """Flip a bottom-left rectangle into a top-left ``(x0, top, x1, bottom)`` box."""
    return rect.x0, height - rect.y1, rect.x1, height - rect.y0
