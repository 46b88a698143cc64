"""Redaction reports keyed by output file, and their text rendering."""

from __future__ import annotations

import os
import threading

from pdf_quickfix.models import RedactionReport


class RedactionReportStore:
    """Thread-safe map from output PDF path to the report of the run that wrote it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reports: dict[str, RedactionReport] = {}

    @staticmethod
    def _key(path: str) -> str:
        return os.path.abspath(path)

    def record(self, output_path: str, report: RedactionReport) -> None:
        with self._lock:
            self._reports[self._key(output_path)] = report

    def get(self, output_path: str) -> RedactionReport | None:
        with self._lock:
            return self._reports.get(self._key(output_path))

    def __len__(self) -> int:
        with self._lock:
            return len(self._reports)


def format_report(report: RedactionReport) -> str:
    """Render a report as the lines shown after a QuickFix run."""
    if not report.pages_with_redactions:
        return "No redactions applied."
    lines = [
        f"Redactions: {report.total_redaction_rect_count} area(s) "
        f"on {len(report.pages_with_redactions)} page(s)",
        f"Hidden OCR text runs: {report.total_suppressed_ocr_run_count}",
    ]
    for page in report.pages_with_redactions:
        lines.append(
            f"  Page {page.page_index + 1}: {page.redaction_rect_count} area(s), "
            f"{page.suppressed_ocr_run_count} hidden run(s)"
        )
    return "\n".join(lines)
