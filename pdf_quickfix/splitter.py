"""Page-range splitting of PDFs into multiple part files."""

from __future__ import annotations

import logging
import math
import os
import re
import threading
from collections.abc import Sequence
from datetime import datetime

import fitz

from pdf_quickfix.document_loader import ProgressCallback, load_document
from pdf_quickfix.errors import DocumentOpenError, InvalidSplitModeError, JobCancelledError, SplitWriteError
from pdf_quickfix.models import (
    BatchSplitResult,
    LoadOptions,
    PageRange,
    SplitJobRecord,
    SplitMode,
    SplitModeKind,
    SplitOptions,
    SplitResult,
)

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024.0 * 1024.0
_RAW_LOAD = LoadOptions(sanitize_metadata=False, sanitize_outline=False)


def validate_mode(mode: SplitMode) -> None:
    """Reject policies that are invalid regardless of the source document.

    Raises:
        InvalidSplitModeError: If a count or size is not positive, or explicit
            breaks do not start at page 1.
    """
    if mode.kind == SplitModeKind.MAX_PAGES_PER_PART and mode.count <= 0:
        raise InvalidSplitModeError(f"max pages per part must be positive, got {mode.count}")
    if mode.kind == SplitModeKind.NUMBER_OF_PARTS and mode.count <= 0:
        raise InvalidSplitModeError(f"number of parts must be positive, got {mode.count}")
    if mode.kind == SplitModeKind.APPROX_TARGET_SIZE_MB and not mode.target_mb > 0:
        raise InvalidSplitModeError(f"target size must be positive, got {mode.target_mb}")
    if mode.kind == SplitModeKind.EXPLICIT_BREAKS:
        breaks = sorted(set(mode.breaks))
        if not breaks or breaks[0] != 1:
            raise InvalidSplitModeError("explicit breaks must include 1 as the first start page")


def resolve_mode(mode: SplitMode, page_count: int, file_size_bytes: int | None) -> SplitMode:
    """Rewrite an approximate-size policy into a max-pages policy.

    The page target is ``round(pages_per_mb * target_mb)`` clamped to
    ``[1, page_count]``. Without a usable file size the whole document
    becomes one part. Other policies are returned unchanged.
    """
    if mode.kind != SplitModeKind.APPROX_TARGET_SIZE_MB:
        return mode
    if not mode.target_mb > 0:
        raise InvalidSplitModeError(f"target size must be positive, got {mode.target_mb}")
    if not file_size_bytes or file_size_bytes <= 0:
        return SplitMode.max_pages_per_part(page_count)

    total_mb = file_size_bytes / _BYTES_PER_MB
    pages_per_mb = page_count / total_mb
    estimated = int(math.floor(pages_per_mb * mode.target_mb + 0.5))
    return SplitMode.max_pages_per_part(min(max(estimated, 1), page_count))


def _max_pages_ranges(page_count: int, max_pages: int) -> list[PageRange]:
    if max_pages <= 0:
        raise InvalidSplitModeError(f"max pages per part must be positive, got {max_pages}")
    return [PageRange(start, min(start + max_pages, page_count)) for start in range(0, page_count, max_pages)]


def _number_of_parts_ranges(page_count: int, parts: int) -> list[PageRange]:
    if parts <= 0:
        raise InvalidSplitModeError(f"number of parts must be positive, got {parts}")
    if parts == 1:
        return [PageRange(0, page_count)]

    base, remainder = divmod(page_count, parts)
    ranges: list[PageRange] = []
    start = 0
    for index in range(parts):
        # Remainder pages go to the earliest parts.
        length = base + (1 if index < remainder else 0)
        if length <= 0:
            continue
        end = min(start + length, page_count)
        ranges.append(PageRange(start, end))
        start = end
    return ranges or [PageRange(0, page_count)]


def _explicit_break_ranges(page_count: int, breaks: Sequence[int]) -> list[PageRange]:
    starts = sorted(set(breaks))
    if not starts or starts[0] != 1:
        raise InvalidSplitModeError("explicit breaks must include 1 as the first start page")

    ranges: list[PageRange] = []
    start_page = starts[0]
    for next_start in starts[1:]:
        end_index = min(next_start - 1, page_count)
        if start_page - 1 < end_index:
            ranges.append(PageRange(start_page - 1, end_index))
        start_page = next_start
    if start_page - 1 < page_count:
        ranges.append(PageRange(start_page - 1, page_count))
    return ranges or [PageRange(0, page_count)]


def make_ranges(page_count: int, mode: SplitMode) -> list[PageRange]:
    """Partition ``[0, page_count)`` into ordered, non-overlapping half-open ranges.

    Outline and approximate-size policies must be resolved first (see
    ``outline_breaks`` and ``resolve_mode``).

    Raises:
        InvalidSplitModeError: If the policy is invalid or unresolved.
    """
    if mode.kind == SplitModeKind.MAX_PAGES_PER_PART:
        return _max_pages_ranges(page_count, mode.count)
    if mode.kind == SplitModeKind.NUMBER_OF_PARTS:
        return _number_of_parts_ranges(page_count, mode.count)
    if mode.kind == SplitModeKind.EXPLICIT_BREAKS:
        return _explicit_break_ranges(page_count, mode.breaks)
    raise InvalidSplitModeError(f"{mode.kind.value} must be resolved before range calculation")


def outline_breaks(doc: fitz.Document) -> list[int]:
    """1-based start pages of the top-level outline entries, always including 1.

    Raises:
        InvalidSplitModeError: If the document has no usable top-level outline.
    """
    page_count = len(doc)
    starts = {
        int(page)
        for level, _title, page in doc.get_toc(simple=True)
        if level == 1 and page is not None and 1 <= int(page) <= page_count
    }
    if not starts:
        raise InvalidSplitModeError("Document has no outline to split by chapters")
    starts.add(1)
    return sorted(starts)


def part_filename(base_name: str, part_index: int, total_parts: int, page_range: PageRange) -> str:
    """``<base>_part01-of03_pages0001-0100.pdf`` with 1-based, inclusive page numbers."""
    return (
        f"{base_name}_part{part_index:02d}-of{total_parts:02d}"
        f"_pages{page_range.start + 1:04d}-{page_range.end:04d}.pdf"
    )


def parse_explicit_breaks(text: str) -> list[int]:
    """Parse ``"1, 101; 351"`` style input. Tokens that are not positive integers are ignored."""
    breaks = []
    for token in re.split(r"[\s,;]+", text.strip()):
        if token.isdigit() and int(token) > 0:
            breaks.append(int(token))
    return sorted(set(breaks))


class SplitHistory:
    """Append-only, process-lifetime list of split job records."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[SplitJobRecord] = []

    def append(self, record: SplitJobRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> tuple[SplitJobRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def recent(self, n: int = 10) -> list[SplitJobRecord]:
        """Newest first."""
        with self._lock:
            return list(reversed(self._records[-n:])) if n > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class PDFSplitter:
    """Splits a PDF into part files according to a ``SplitMode``."""

    def __init__(self, history: SplitHistory | None = None) -> None:
        self.history = history if history is not None else SplitHistory()

    def split(
        self,
        options: SplitOptions,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> SplitResult:
        """Split one file and record the job in the history.

        A failed job is recorded with its error before the error propagates.
        """
        try:
            result = self._split_file(options, progress, cancel_event)
        except Exception as exc:
            self._record_single(options, 0, str(exc))
            raise
        self._record_single(options, len(result.output_files))
        return result

    def _record_single(self, options: SplitOptions, output_count: int, error: str | None = None) -> None:
        self.history.append(
            SplitJobRecord(
                date=datetime.now(),
                source_description=os.path.basename(options.source_path),
                mode_description=options.mode.describe(),
                file_count=1,
                output_count=output_count,
                destination_folder=options.destination_directory,
                error_summary=error,
            )
        )

    def split_folder(
        self,
        folder: str,
        destination_directory: str | None,
        mode: SplitMode,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BatchSplitResult:
        """Split every PDF directly inside ``folder``.

        A failing file is recorded in ``errors`` and the batch continues.
        Invalid policies and cancellation abort the whole batch.
        """
        validate_mode(mode)
        if not os.path.isdir(folder):
            raise FileNotFoundError(f"Folder not found: {folder}")

        sources = sorted(
            os.path.join(folder, name)
            for name in os.listdir(folder)
            if name.lower().endswith(".pdf") and os.path.isfile(os.path.join(folder, name))
        )
        destination = destination_directory or folder
        outputs: list[str] = []
        errors: list[tuple[str, str]] = []

        for source in sources:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError("Split cancelled")
            options = SplitOptions(source_path=source, destination_directory=destination, mode=mode)
            try:
                result = self._split_file(options, progress, cancel_event)
            except JobCancelledError:
                raise
            except (FileNotFoundError, DocumentOpenError, InvalidSplitModeError, SplitWriteError) as exc:
                logger.warning("Split failed for %s: %s", source, exc)
                errors.append((os.path.basename(source), str(exc)))
                continue
            outputs.extend(result.output_files)

        batch = BatchSplitResult(output_files=outputs, errors=errors)
        self.history.append(
            SplitJobRecord(
                date=datetime.now(),
                source_description=f"Folder: {os.path.basename(os.path.normpath(folder))}",
                mode_description=mode.describe(),
                file_count=len(sources),
                output_count=len(outputs),
                destination_folder=destination,
                error_summary=batch.error_summary,
            )
        )
        return batch

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _split_file(
        self,
        options: SplitOptions,
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> SplitResult:
        validate_mode(options.mode)
        source = load_document(options.source_path, _RAW_LOAD)
        try:
            page_count = len(source)
            if page_count == 0:
                raise DocumentOpenError(f"PDF has no pages: {options.source_path}")

            mode = options.mode
            if mode.kind == SplitModeKind.OUTLINE_CHAPTERS:
                mode = SplitMode.explicit_breaks(outline_breaks(source))
            mode = resolve_mode(mode, page_count, _file_size(options.source_path))
            ranges = make_ranges(page_count, mode)
            logger.info(
                "Splitting %s (%d pages) into %d part(s): %s",
                options.source_path,
                page_count,
                len(ranges),
                options.mode.describe(),
            )
            return SplitResult(
                output_files=self._write_parts(source, ranges, options, progress, cancel_event)
            )
        finally:
            source.close()

    def _write_parts(
        self,
        source: fitz.Document,
        ranges: list[PageRange],
        options: SplitOptions,
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> list[str]:
        base_name = os.path.splitext(os.path.basename(options.source_path))[0]
        destination = options.destination_directory
        try:
            os.makedirs(destination, exist_ok=True)
        except OSError as exc:
            raise SplitWriteError(destination) from exc

        total_pages = len(source)
        processed = 0
        outputs: list[str] = []

        for part_index, page_range in enumerate(ranges, start=1):
            output_path = os.path.join(destination, part_filename(base_name, part_index, len(ranges), page_range))
            part = fitz.open()
            try:
                for page_index in range(page_range.start, page_range.end):
                    if cancel_event is not None and cancel_event.is_set():
                        raise JobCancelledError("Split cancelled")
                    # Copies the page into the part; the source stays untouched.
                    part.insert_pdf(source, from_page=page_index, to_page=page_index)
                    processed += 1
                    if progress is not None:
                        progress(processed, total_pages)

                if len(part) == 0:
                    continue
                try:
                    part.save(output_path, garbage=3, deflate=True)
                except (RuntimeError, ValueError, OSError) as exc:
                    raise SplitWriteError(output_path) from exc
            finally:
                part.close()
            outputs.append(output_path)

        return outputs


def _file_size(path: str) -> int | None:
    try:
        return os.path.getsize(path)
    except OSError:
        return None
