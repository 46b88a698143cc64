"""QuickFix engine orchestrating the rasterize / OCR / redact / assemble pipeline."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Mapping, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

import fitz

from pdf_quickfix.document_loader import ProgressCallback, load_document
from pdf_quickfix.errors import DocumentOpenError, JobCancelledError
from pdf_quickfix.models import (
    FindReplaceRule,
    JobConfig,
    LoadOptions,
    PageProcessResult,
    QuickFixOptions,
    QuickFixResult,
    RedactionPattern,
    RedactionReport,
    RedactionReportPage,
)
from pdf_quickfix.ocr_engine import DEFAULT_LANGUAGES, OCRProvider, TesseractOCRProvider
from pdf_quickfix.page_processor import PageProcessor, RenderedPage, render_page
from pdf_quickfix.patterns import compile_custom_patterns, compile_rules, default_patterns
from pdf_quickfix.pdf_writer import write_pdf
from pdf_quickfix.reports import RedactionReportStore

logger = logging.getLogger(__name__)

ManualRedactions = Mapping[int, Sequence[tuple[float, float, float, float]]]
PageOutcome = tuple[PageProcessResult, RedactionReportPage | None]


def default_output_path(input_path: str) -> str:
    """``report.pdf`` -> ``report.fixed.pdf`` beside the source."""
    root, _ = os.path.splitext(input_path)
    return f"{root}.fixed.pdf"


class QuickFixEngine:
    """Rasterizes every page, applies redactions and replacements, re-adds OCR text.

    Rendering stays on the calling thread (PyMuPDF documents are not
    thread-safe); OCR and compositing run on up to ``max_workers`` threads and
    results are reassembled in page order before writing.
    """

    def __init__(
        self,
        options: QuickFixOptions | None = None,
        languages: Sequence[str] | None = None,
        ocr_provider: OCRProvider | None = None,
        max_workers: int = 1,
        report_store: RedactionReportStore | None = None,
    ) -> None:
        self.options = options or QuickFixOptions()
        self.languages = list(languages) if languages else list(DEFAULT_LANGUAGES)
        self.ocr_provider = ocr_provider or TesseractOCRProvider()
        self.max_workers = max(1, max_workers)
        self.report_store = report_store or RedactionReportStore()

    def process(
        self,
        input_path: str,
        output_path: str | None = None,
        redaction_patterns: Sequence[RedactionPattern] | None = None,
        custom_regexes: Sequence[str] = (),
        find_replace: Sequence[FindReplaceRule] = (),
        manual_redactions: ManualRedactions | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Run the pipeline and return the output path."""
        return self.process_with_report(
            input_path,
            output_path,
            redaction_patterns,
            custom_regexes,
            find_replace,
            manual_redactions,
            progress,
            cancel_event,
        ).output_path

    def process_with_report(
        self,
        input_path: str,
        output_path: str | None = None,
        redaction_patterns: Sequence[RedactionPattern] | None = None,
        custom_regexes: Sequence[str] = (),
        find_replace: Sequence[FindReplaceRule] = (),
        manual_redactions: ManualRedactions | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> QuickFixResult:
        """Run the pipeline and return the output path with its redaction report.

        Args:
            input_path: Source PDF.
            output_path: Destination; defaults to ``<stem>.fixed.pdf`` beside the source.
            redaction_patterns: Patterns to redact; defaults to the built-in set.
            custom_regexes: Extra user regexes. Malformed ones are ignored.
            find_replace: Literal, case-insensitive replacements.
            manual_redactions: Point-space ``(x, y, w, h)`` rects per 0-based page.
            progress: Called with ``(pages_done, page_count)``.
            cancel_event: Polled between pages.

        Raises:
            FileNotFoundError: If the input does not exist.
            DocumentOpenError: If the input is not a readable PDF or has no pages.
            PageRenderError: If any page fails to render; nothing is written.
            PDFWriteError: If the output cannot be assembled or written.
            JobCancelledError: If ``cancel_event`` was set.
        """
        if self.options.dpi <= 0:
            raise ValueError(f"dpi must be positive, got {self.options.dpi}")

        start_time = time.monotonic()
        patterns = list(default_patterns() if redaction_patterns is None else redaction_patterns)
        patterns.extend(compile_custom_patterns(custom_regexes))
        processor = PageProcessor(
            options=self.options,
            ocr_provider=self.ocr_provider,
            languages=self.languages,
            redaction_patterns=patterns,
            rules=compile_rules(find_replace),
        )
        manual_redactions = manual_redactions or {}
        out_path = output_path or default_output_path(input_path)

        doc = load_document(input_path, LoadOptions(sanitize_metadata=False, sanitize_outline=False))
        try:
            page_count = len(doc)
            if page_count == 0:
                raise DocumentOpenError(f"PDF has no pages: {input_path}")
            if self.max_workers == 1:
                outcomes = self._process_sequential(doc, processor, manual_redactions, progress, cancel_event)
            else:
                outcomes = self._process_parallel(doc, processor, manual_redactions, progress, cancel_event)
        finally:
            doc.close()

        write_pdf([result for result, _ in outcomes], out_path)
        report = RedactionReport(tuple(page for _, page in outcomes if page is not None))
        self.report_store.record(out_path, report)

        logger.info(
            "QuickFix wrote %s: %d page(s), %d redaction(s) in %.2fs",
            out_path,
            len(outcomes),
            report.total_redaction_rect_count,
            time.monotonic() - start_time,
        )
        return QuickFixResult(output_path=out_path, redaction_report=report)

    def run_job(
        self,
        config: JobConfig,
        input_path: str,
        output_path: str | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> QuickFixResult:
        """Run with the patterns and rules of a per-job configuration."""
        return self.process_with_report(
            input_path,
            output_path,
            redaction_patterns=default_patterns() if config.use_default_redaction_patterns else [],
            custom_regexes=config.custom_regex_list,
            find_replace=config.find_replace_rules,
            manual_redactions=config.manual_redaction_rects,
            progress=progress,
            cancel_event=cancel_event,
        )

    @classmethod
    def from_config(
        cls,
        config: JobConfig,
        ocr_provider: OCRProvider | None = None,
        max_workers: int = 1,
        report_store: RedactionReportStore | None = None,
    ) -> QuickFixEngine:
        return cls(
            options=config.options(),
            languages=config.languages,
            ocr_provider=ocr_provider,
            max_workers=max_workers,
            report_store=report_store,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _render(self, doc: fitz.Document, index: int) -> RenderedPage:
        try:
            page = doc.load_page(index)
        except (RuntimeError, ValueError, IndexError):
            page = None
        return render_page(page, index, self.options.dpi)

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError("QuickFix cancelled")

    def _process_sequential(
        self,
        doc: fitz.Document,
        processor: PageProcessor,
        manual_redactions: ManualRedactions,
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> list[PageOutcome]:
        page_count = len(doc)
        outcomes: list[PageOutcome] = []
        for index in range(page_count):
            self._check_cancelled(cancel_event)
            rendered = self._render(doc, index)
            outcomes.append(processor.process(rendered, manual_redactions.get(index, ())))
            if progress is not None:
                progress(index + 1, page_count)
        return outcomes

    def _process_parallel(
        self,
        doc: fitz.Document,
        processor: PageProcessor,
        manual_redactions: ManualRedactions,
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> list[PageOutcome]:
        page_count = len(doc)
        futures: dict[int, Future] = {}
        done_count = 0
        # Bound the number of rendered pages held in memory at once.
        window = self.max_workers * 2

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="quickfix-page") as pool:
            try:
                for index in range(page_count):
                    self._check_cancelled(cancel_event)
                    pending = [f for f in futures.values() if not f.done()]
                    if len(pending) >= window:
                        wait(pending, return_when=FIRST_COMPLETED)
                    rendered = self._render(doc, index)
                    futures[index] = pool.submit(processor.process, rendered, manual_redactions.get(index, ()))

                outcomes: list[PageOutcome] = []
                for index in range(page_count):
                    outcomes.append(futures[index].result())
                    done_count += 1
                    if progress is not None:
                        progress(done_count, page_count)
                    self._check_cancelled(cancel_event)
                return outcomes
            except BaseException:
                for future in futures.values():
                    future.cancel()
                raise
