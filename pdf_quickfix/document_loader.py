"""Open, validate and normalize source PDFs.

Documents are opened with PyMuPDF. Their metadata is reduced to a closed set
of typed fields and their outline titles are coerced to clean strings, so the
rest of the pipeline never has to deal with loosely-typed values.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import fitz

from pdf_quickfix.errors import DocumentOpenError, JobCancelledError, PageRenderError
from pdf_quickfix.models import DocumentProfile, LoadOptions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

LARGE_DOCUMENT_PAGE_THRESHOLD = 1000
MASSIVE_DOCUMENT_PAGE_THRESHOLD = 2000
MASSIVE_FILE_SIZE_THRESHOLD = 200 * 1024 * 1024  # 200 MB

# Longest side, in pixels, used when test-rendering pages during validation.
_VALIDATION_MAX_DIMENSION = 1024.0

_PDF_DATE = re.compile(
    r"^D?:?(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?"
    r"(?:([Zz])|([+\-])(\d{2})'?(\d{2})?'?)?$"
)


class AttributeKind(Enum):
    STRING = "string"
    STRING_LIST = "string_list"
    DATE = "date"


ATTRIBUTE_KINDS: dict[str, AttributeKind] = {
    "title": AttributeKind.STRING,
    "author": AttributeKind.STRING,
    "subject": AttributeKind.STRING,
    "creator": AttributeKind.STRING,
    "producer": AttributeKind.STRING,
    "keywords": AttributeKind.STRING_LIST,
    "creationDate": AttributeKind.DATE,
    "modDate": AttributeKind.DATE,
}

_KEY_ALIASES = {key.lower(): key for key in ATTRIBUTE_KINDS}
_KEY_ALIASES.update({"creationdate": "creationDate", "moddate": "modDate", "modificationdate": "modDate"})


def parse_pdf_date(value: str) -> datetime | None:
    """Parse a PDF (``D:YYYYMMDDHHmmSS+HH'mm'``) or ISO 8601 date string."""
    text = value.strip()
    if not text:
        return None
    match = _PDF_DATE.match(text)
    if match:
        year, month, day, hour, minute, second, zulu, sign, tz_h, tz_m = match.groups()
        tz = timezone.utc
        if sign:
            offset = timedelta(hours=int(tz_h), minutes=int(tz_m or 0))
            tz = timezone(offset if sign == "+" else -offset)
        try:
            return datetime(
                int(year),
                int(month or 1),
                int(day or 1),
                int(hour or 0),
                int(minute or 0),
                int(second or 0),
                tzinfo=tz,
            )
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_pdf_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        suffix = "Z"
    else:
        total = int(offset.total_seconds() // 60)
        sign = "+" if total >= 0 else "-"
        hours, minutes = divmod(abs(total), 60)
        suffix = f"{sign}{hours:02d}'{minutes:02d}'"
    return "D:" + value.strftime("%Y%m%d%H%M%S") + suffix


def coerce_string(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value
    elif isinstance(value, bytes):
        text = value.decode("utf-8", errors="replace")
    elif isinstance(value, datetime):
        text = value.isoformat()
    elif isinstance(value, (list, tuple)):
        items = [s for s in (coerce_string(v) for v in value) if s]
        text = ", ".join(items)
    else:
        text = str(value)
    text = text.strip()
    return text or None


def coerce_string_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = [coerce_string(v) for v in value]
    else:
        single = coerce_string(value)
        items = re.split(r"[,;]", single) if single else []
    cleaned = [item.strip() for item in items if item and item.strip()]
    return cleaned or None


def coerce_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if isinstance(value, str):
        return parse_pdf_date(value)
    return None


_COERCERS: dict[AttributeKind, Callable[[Any], Any]] = {
    AttributeKind.STRING: coerce_string,
    AttributeKind.STRING_LIST: coerce_string_list,
    AttributeKind.DATE: coerce_date,
}


def sanitize_metadata(attributes: Mapping[Any, Any] | None) -> dict[str, Any]:
    """Normalize a loosely-typed attribute bag into the known typed fields.

    Unknown keys and values that cannot be coerced are dropped. Applying this
    to its own output returns an equal dict.
    """
    sanitized: dict[str, Any] = {}
    for raw_key, value in (attributes or {}).items():
        key = _KEY_ALIASES.get(str(raw_key).lower())
        if key is None:
            logger.debug("Dropping unsupported document attribute %r", raw_key)
            continue
        coerced = _COERCERS[ATTRIBUTE_KINDS[key]](value)
        if coerced is not None:
            sanitized[key] = coerced
    return sanitized


def to_pdf_metadata(sanitized: Mapping[str, Any]) -> dict[str, str]:
    """Render sanitized attributes as the string dict ``Document.set_metadata`` expects."""
    metadata: dict[str, str] = {}
    for key, value in sanitized.items():
        kind = ATTRIBUTE_KINDS[key]
        if kind == AttributeKind.DATE:
            metadata[key] = format_pdf_date(value)
        elif kind == AttributeKind.STRING_LIST:
            metadata[key] = ", ".join(value)
        else:
            metadata[key] = value
    return metadata


def sanitize_outline(doc: fitz.Document) -> bool:
    """Coerce outline titles to strings and drop unresolved entries.

    Returns True when the outline was rewritten.
    """
    toc = doc.get_toc(simple=True)
    if not toc:
        return False

    cleaned: list[list[Any]] = []
    previous_level = 0
    for level, title, page in toc:
        if page is None or int(page) < 1:
            continue
        level = max(1, min(int(level), previous_level + 1))
        cleaned.append([level, coerce_string(title) or "Untitled", int(page)])
        previous_level = level

    if cleaned == [list(entry[:3]) for entry in toc]:
        return False
    doc.set_toc(cleaned)
    return True


def document_profile(page_count: int, file_size_bytes: int | None = None) -> DocumentProfile:
    is_large = page_count > LARGE_DOCUMENT_PAGE_THRESHOLD
    is_massive = (
        page_count >= MASSIVE_DOCUMENT_PAGE_THRESHOLD
        or (file_size_bytes or 0) >= MASSIVE_FILE_SIZE_THRESHOLD
    )
    # Massive documents skip the expensive whole-document features.
    return DocumentProfile(
        is_large=is_large,
        is_massive=is_massive,
        search_enabled=not is_massive,
        thumbnails_enabled=not is_massive,
        outline_enabled=not is_massive,
    )


def validate_pages(
    doc: fitz.Document,
    page_limit: int | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> None:
    """Test-render the first ``page_limit`` pages (all when None) at a bounded size."""
    total = len(doc) if page_limit is None else min(page_limit, len(doc))
    for index in range(total):
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError("Validation cancelled")
        try:
            page = doc.load_page(index)
            rect = page.rect
            scale = min(
                _VALIDATION_MAX_DIMENSION / max(rect.width, 1.0),
                _VALIDATION_MAX_DIMENSION / max(rect.height, 1.0),
                1.0,
            )
            page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        except (RuntimeError, ValueError) as exc:
            raise PageRenderError(index, f"Validation render failed: {exc}") from exc
        if progress is not None:
            progress(index + 1, total)


def load_document(
    path: str,
    options: LoadOptions | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> fitz.Document:
    """Open ``path`` and return a normalized document.

    Raises:
        FileNotFoundError: If the file does not exist.
        DocumentOpenError: If the file is not a readable PDF.
        JobCancelledError: If ``cancel_event`` is set during validation.
    """
    options = options or LoadOptions()
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")

    try:
        doc = fitz.open(path)
    except Exception as exc:
        raise DocumentOpenError(f"Not a valid PDF: {path}") from exc

    try:
        if not doc.is_pdf:
            raise DocumentOpenError(f"Not a valid PDF: {path}")
        if doc.needs_pass:
            raise DocumentOpenError(f"PDF is password protected: {path}")

        if options.sanitize_metadata:
            sanitized = sanitize_metadata(doc.metadata)
            doc.set_metadata(to_pdf_metadata(sanitized))
        if options.sanitize_outline and sanitize_outline(doc):
            logger.info("Outline of %s was normalized", path)
        if options.validation_page_limit is not None:
            validate_pages(doc, options.validation_page_limit, progress, cancel_event)
    except BaseException:
        doc.close()
        raise

    return doc


def get_page_count(pdf_path: str) -> int:
    """Get the total page count of a PDF, closing it immediately."""
    doc = load_document(pdf_path, LoadOptions(sanitize_metadata=False, sanitize_outline=False))
    try:
        count = len(doc)
    finally:
        doc.close()
    return count
