"""Tesseract-backed OCR provider producing line-level text candidates."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import pytesseract
from PIL import Image, ImageFilter, ImageOps

from pdf_quickfix.segments import string_index

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGES = ["en-US"]

# BCP-47 style tags accepted on the command line -> Tesseract traineddata names.
_TESSERACT_LANGUAGES = {
    "en": "eng",
    "tr": "tur",
    "de": "deu",
    "fr": "fra",
    "es": "spa",
    "it": "ita",
    "pt": "por",
    "nl": "nld",
}

SUPPORTED_LANGUAGES = ["en-US", "tr-TR", "de-DE", "fr-FR", "es-ES", "it-IT", "pt-PT", "nl-NL"]


class RecognizedTextCandidate(Protocol):
    """One recognized line of text."""

    @property
    def string(self) -> str: ...

    def bounding_box_normalized(
        self, start: int, end: int
    ) -> tuple[float, float, float, float] | None:
        """Normalized ``(x, y, w, h)`` box, bottom-left origin, for a UTF-16 range."""
        ...


class OCRProvider(Protocol):
    def recognize_text(
        self, image: Image.Image, languages: Sequence[str]
    ) -> list[RecognizedTextCandidate]: ...


def tesseract_language(languages: Sequence[str]) -> str:
    """Translate language tags into a Tesseract ``-l`` argument such as ``tur+eng``."""
    codes: list[str] = []
    for tag in languages or DEFAULT_LANGUAGES:
        primary = tag.replace("_", "-").split("-")[0].lower()
        code = _TESSERACT_LANGUAGES.get(primary, primary)
        if code not in codes:
            codes.append(code)
    return "+".join(codes)


class TesseractTextCandidate:
    """A text line assembled from Tesseract word boxes."""

    def __init__(
        self,
        words: list[tuple[str, tuple[int, int, int, int]]],
        image_size: tuple[int, int],
    ) -> None:
        self._image_size = image_size
        self._words: list[tuple[int, int, tuple[int, int, int, int]]] = []
        parts: list[str] = []
        cursor = 0
        for text, box in words:
            if parts:
                cursor += 1  # joining space
            self._words.append((cursor, cursor + len(text), box))
            parts.append(text)
            cursor += len(text)
        self._string = " ".join(parts)

    @property
    def string(self) -> str:
        return self._string

    def bounding_box_normalized(
        self, start: int, end: int
    ) -> tuple[float, float, float, float] | None:
        first = string_index(self._string, start)
        last = string_index(self._string, end)
        if first >= last:
            return None

        x0 = y0 = float("inf")
        x1 = y1 = float("-inf")
        for word_start, word_end, (left, top, width, height) in self._words:
            lo = max(first, word_start)
            hi = min(last, word_end)
            if lo >= hi:
                continue
            # Partial words are interpolated by character position.
            n = word_end - word_start
            x0 = min(x0, left + width * (lo - word_start) / n)
            x1 = max(x1, left + width * (hi - word_start) / n)
            y0 = min(y0, top)
            y1 = max(y1, top + height)

        if x0 == float("inf"):
            return None

        img_w, img_h = self._image_size
        return (
            x0 / img_w,
            (img_h - y1) / img_h,
            (x1 - x0) / img_w,
            (y1 - y0) / img_h,
        )


class TesseractOCRProvider:
    """Runs Tesseract on page rasters with optional preprocessing."""

    def __init__(self, preprocessing: bool = True, psm: int | None = None) -> None:
        self.preprocessing = preprocessing
        self.psm = psm

    def _preprocess(self, image: Image.Image) -> Image.Image:
        """Grayscale, contrast and noise reduction. Geometry is left untouched."""
        img = image.convert("L")
        img = ImageOps.autocontrast(img)
        img = img.filter(ImageFilter.MedianFilter(size=3))
        return img

    def recognize_text(
        self, image: Image.Image, languages: Sequence[str]
    ) -> list[TesseractTextCandidate]:
        if self.preprocessing:
            image = self._preprocess(image)

        config = f"--psm {self.psm}" if self.psm is not None else ""
        data = pytesseract.image_to_data(
            image,
            lang=tesseract_language(languages),
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        # Group words into lines keyed by (block, paragraph, line).
        lines: dict[tuple[int, int, int], list[tuple[str, tuple[int, int, int, int]]]] = {}
        for i in range(len(data["text"])):
            text = str(data["text"][i]).strip()
            conf = float(data["conf"][i])
            # Skip non-word elements (confidence == -1) and empty text
            if conf < 0 or not text:
                continue
            key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
            box = (
                int(data["left"][i]),
                int(data["top"][i]),
                int(data["width"][i]),
                int(data["height"][i]),
            )
            lines.setdefault(key, []).append((text, box))

        candidates = [TesseractTextCandidate(words, image.size) for words in lines.values()]
        logger.debug("Tesseract recognized %d line(s)", len(candidates))
        return candidates
