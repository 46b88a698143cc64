"""Tests for the QuickFix engine pipeline."""

from __future__ import annotations

import os
import tempfile
import threading

import fitz
import pytest

from pdf_quickfix.errors import DocumentOpenError, JobCancelledError
from pdf_quickfix.models import FindReplaceRule, JobConfig, PageProcessResult, QuickFixOptions, RedactionReportPage
from pdf_quickfix.quickfix_engine import PageOutcome, QuickFixEngine, default_output_path
from pdf_quickfix.reports import RedactionReportStore


class FakeCandidate:
    def __init__(self, text: str, box: tuple[float, float, float, float]) -> None:
        self.string = text
        self.box = box

    def bounding_box_normalized(self, start: int, end: int):
        if start >= end:
            return None
        x, y, w, h = self.box
        step = w / len(self.string)
        return (x + step * start, y, step * (end - start), h)


class FakeProvider:
    """Returns the same lines for every page."""

    def __init__(self, lines=None) -> None:
        self.lines = lines or []
        self.call_count = 0
        self._lock = threading.Lock()

    def recognize_text(self, image, languages):
        with self._lock:
            self.call_count += 1
        return [FakeCandidate(text, box) for text, box in self.lines]


def _create_test_pdf(num_pages: int = 3) -> str:
    """Create a minimal valid PDF with the given number of pages and return its path."""
    path = tempfile.mktemp(suffix=".pdf")
    doc = fitz.open()
    for i in range(num_pages):
        page = doc.new_page(width=200, height=100)
        page.insert_text((20, 50), f"Page {i + 1} content", fontsize=12)
    doc.save(path)
    doc.close()
    return path


def _page_texts(path: str) -> list[str]:
    doc = fitz.open(path)
    try:
        return [page.get_text() for page in doc]
    finally:
        doc.close()


def _engine(provider: FakeProvider | None = None, **kwargs) -> QuickFixEngine:
    options = kwargs.pop("options", QuickFixOptions(do_ocr=True, dpi=72))
    return QuickFixEngine(options=options, ocr_provider=provider or FakeProvider(), **kwargs)


class TestQuickFixEngineValidation:
    def test_file_not_found_raises(self) -> None:
        with pytest.raises(FileNotFoundError, match="File not found"):
            _engine().process("/nonexistent/path.pdf")

    def test_invalid_pdf_raises(self) -> None:
        path = tempfile.mktemp(suffix=".pdf")
        with open(path, "w") as f:
            f.write("this is not a pdf")
        try:
            with pytest.raises(DocumentOpenError, match="Not a valid PDF"):
                _engine().process(path)
        finally:
            os.unlink(path)

    def test_non_positive_dpi_raises(self) -> None:
        engine = _engine(options=QuickFixOptions(dpi=0))
        with pytest.raises(ValueError, match="dpi must be positive"):
            engine.process("/nonexistent/path.pdf")

    def test_default_output_path(self) -> None:
        assert default_output_path("/docs/report.pdf") == "/docs/report.fixed.pdf"


class TestQuickFixEngineProcess:
    def test_writes_one_page_per_input_page(self) -> None:
        path = _create_test_pdf(3)
        try:
            output = _engine().process(path)
            assert output == default_output_path(path)
            doc = fitz.open(output)
            try:
                assert len(doc) == 3
                assert [(p.rect.width, p.rect.height) for p in doc] == [(200, 100)] * 3
            finally:
                doc.close()
        finally:
            os.unlink(path)
            if os.path.exists(default_output_path(path)):
                os.unlink(default_output_path(path))

    def test_original_text_layer_is_replaced_by_ocr_overlay(self) -> None:
        path = _create_test_pdf(2)
        out = tempfile.mktemp(suffix=".pdf")
        provider = FakeProvider([("recognized line", (0.1, 0.4, 0.6, 0.1))])
        try:
            _engine(provider).process(path, out)
            texts = _page_texts(out)
            assert all("recognized line" in text for text in texts)
            assert all("content" not in text for text in texts)
            assert provider.call_count == 2
        finally:
            for p in (path, out):
                if os.path.exists(p):
                    os.unlink(p)

    def test_redaction_report_counts_pattern_matches(self) -> None:
        path = _create_test_pdf(2)
        out = tempfile.mktemp(suffix=".pdf")
        provider = FakeProvider([
            ("ID 12345678901", (0.1, 0.7, 0.7, 0.1)),
            ("plain words", (0.1, 0.2, 0.5, 0.1)),
        ])
        store = RedactionReportStore()
        try:
            result = _engine(provider, report_store=store).process_with_report(path, out)
            report = result.redaction_report
            assert [p.page_index for p in report.pages_with_redactions] == [0, 1]
            assert report.total_redaction_rect_count == 2
            assert store.get(out) == report

            texts = _page_texts(out)
            assert all("12345678901" not in text for text in texts)
            assert all("plain words" in text for text in texts)
        finally:
            for p in (path, out):
                if os.path.exists(p):
                    os.unlink(p)

    def test_custom_regex_and_find_replace(self) -> None:
        path = _create_test_pdf(1)
        out = tempfile.mktemp(suffix=".pdf")
        provider = FakeProvider([
            ("Vendor: acme", (0.1, 0.7, 0.6, 0.1)),
            ("code ZZ9", (0.1, 0.2, 0.4, 0.1)),
        ])
        try:
            result = _engine(provider).process_with_report(
                path,
                out,
                redaction_patterns=[],
                custom_regexes=["ZZ9", "[broken"],
                find_replace=[FindReplaceRule("ACME", "Contoso")],
            )
            text = _page_texts(out)[0]
            assert "Contoso" in text
            assert "acme" not in text
            assert "ZZ9" not in text
            assert result.redaction_report.total_redaction_rect_count == 1
        finally:
            for p in (path, out):
                if os.path.exists(p):
                    os.unlink(p)

    def test_manual_redactions_by_page(self) -> None:
        path = _create_test_pdf(3)
        out = tempfile.mktemp(suffix=".pdf")
        try:
            result = _engine(options=QuickFixOptions(do_ocr=False, dpi=72)).process_with_report(
                path,
                out,
                redaction_patterns=[],
                manual_redactions={1: [(0, 0, 50, 50), (100, 50, 20, 20)]},
            )
            pages = result.redaction_report.pages_with_redactions
            assert [(p.page_index, p.redaction_rect_count) for p in pages] == [(1, 2)]
        finally:
            for p in (path, out):
                if os.path.exists(p):
                    os.unlink(p)

    def test_progress_reported_per_page(self) -> None:
        path = _create_test_pdf(3)
        out = tempfile.mktemp(suffix=".pdf")
        calls: list[tuple[int, int]] = []
        try:
            _engine().process(path, out, progress=lambda done, total: calls.append((done, total)))
            assert calls == [(1, 3), (2, 3), (3, 3)]
        finally:
            for p in (path, out):
                if os.path.exists(p):
                    os.unlink(p)

    def test_cancel_before_start_writes_nothing(self) -> None:
        path = _create_test_pdf(2)
        out = tempfile.mktemp(suffix=".pdf")
        cancel = threading.Event()
        cancel.set()
        try:
            with pytest.raises(JobCancelledError):
                _engine().process(path, out, cancel_event=cancel)
            assert not os.path.exists(out)
        finally:
            os.unlink(path)


class TestQuickFixEngineParallel:
    def test_parallel_output_matches_page_order(self) -> None:
        path = tempfile.mktemp(suffix=".pdf")
        doc = fitz.open()
        for i in range(6):
            doc.new_page(width=100 + i * 10, height=100)
        doc.save(path)
        doc.close()
        out = tempfile.mktemp(suffix=".pdf")
        calls: list[tuple[int, int]] = []
        try:
            _engine(max_workers=3).process(path, out, progress=lambda d, t: calls.append((d, t)))
            result = fitz.open(out)
            try:
                assert [p.rect.width for p in result] == [100, 110, 120, 130, 140, 150]
            finally:
                result.close()
            assert calls[-1] == (6, 6)
        finally:
            for p in (path, out):
                if os.path.exists(p):
                    os.unlink(p)


class TestRunJob:
    def test_job_config_drives_engine(self) -> None:
        path = _create_test_pdf(1)
        out = tempfile.mktemp(suffix=".pdf")
        provider = FakeProvider([("ID 12345678901 ok", (0.1, 0.5, 0.8, 0.1))])
        config = JobConfig(
            do_ocr=True,
            dpi=72,
            use_default_redaction_patterns=False,
            find_replace_rules=[FindReplaceRule("ok", "fine")],
        )
        try:
            engine = QuickFixEngine.from_config(config, ocr_provider=provider)
            result = engine.run_job(config, path, out)
            text = _page_texts(out)[0]
            assert "12345678901" in text
            assert "fine" in text
            assert result.redaction_report.pages_with_redactions == ()
        finally:
            for p in (path, out):
                if os.path.exists(p):
                    os.unlink(p)


def test_page_outcome_alias_is_a_real_type():
    assert PageOutcome == tuple[PageProcessResult, RedactionReportPage | None]
