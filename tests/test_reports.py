"""Tests for the redaction report store and report formatting."""

from __future__ import annotations

import os
import threading

from pdf_quickfix.models import RedactionReport, RedactionReportPage
from pdf_quickfix.reports import RedactionReportStore, format_report


def _report() -> RedactionReport:
    return RedactionReport(
        (
            RedactionReportPage(page_index=0, redaction_rect_count=2, suppressed_ocr_run_count=1),
            RedactionReportPage(page_index=3, redaction_rect_count=1, suppressed_ocr_run_count=0),
        )
    )


class TestRedactionReport:
    def test_totals(self) -> None:
        report = _report()
        assert report.total_redaction_rect_count == 3
        assert report.total_suppressed_ocr_run_count == 1

    def test_empty_report(self) -> None:
        report = RedactionReport(())
        assert report.total_redaction_rect_count == 0
        assert format_report(report) == "No redactions applied."

    def test_format_lists_pages_one_based(self) -> None:
        text = format_report(_report())
        assert text.splitlines() == [
            "Redactions: 3 area(s) on 2 page(s)",
            "Hidden OCR text runs: 1",
            "  Page 1: 2 area(s), 1 hidden run(s)",
            "  Page 4: 1 area(s), 0 hidden run(s)",
        ]


class TestRedactionReportStore:
    def test_keyed_by_absolute_path(self, tmp_path) -> None:
        store = RedactionReportStore()
        path = tmp_path / "out.pdf"
        store.record(str(path), _report())
        relative = os.path.relpath(path)
        assert store.get(relative) == _report()
        assert store.get(str(tmp_path / "other.pdf")) is None

    def test_latest_report_wins(self) -> None:
        store = RedactionReportStore()
        store.record("/tmp/a.pdf", _report())
        store.record("/tmp/a.pdf", RedactionReport(()))
        assert store.get("/tmp/a.pdf") == RedactionReport(())
        assert len(store) == 1

    def test_concurrent_records(self) -> None:
        store = RedactionReportStore()
        threads = [
            threading.Thread(target=store.record, args=(f"/tmp/file{i}.pdf", _report()))
            for i in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 20
