"""Tests for document loading, validation and attribute sanitation."""

from __future__ import annotations

import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import fitz
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from pdf_quickfix.document_loader import (
    coerce_string_list,
    document_profile,
    format_pdf_date,
    get_page_count,
    load_document,
    parse_pdf_date,
    sanitize_metadata,
    sanitize_outline,
    to_pdf_metadata,
    validate_pages,
)
from pdf_quickfix.errors import DocumentOpenError, JobCancelledError, PageRenderError
from pdf_quickfix.models import LoadOptions


def _create_pdf(num_pages: int = 2, metadata: dict | None = None, toc: list | None = None) -> str:
    path = tempfile.mktemp(suffix=".pdf")
    doc = fitz.open()
    for _ in range(num_pages):
        doc.new_page()
    if metadata:
        doc.set_metadata(metadata)
    if toc:
        doc.set_toc(toc)
    doc.save(path)
    doc.close()
    return path


class TestPDFDates:
    def test_parse_full_pdf_date(self) -> None:
        parsed = parse_pdf_date("D:20240131120530+03'00'")
        assert parsed == datetime(2024, 1, 31, 12, 5, 30, tzinfo=timezone(timedelta(hours=3)))

    def test_parse_date_only(self) -> None:
        assert parse_pdf_date("D:2023") == datetime(2023, 1, 1, tzinfo=timezone.utc)

    def test_parse_iso(self) -> None:
        assert parse_pdf_date("2024-05-06T07:08:09Z") == datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "   ", "yesterday", "D:20241345"])
    def test_unparseable_dates(self, value: str) -> None:
        assert parse_pdf_date(value) is None

    def test_format_round_trip(self) -> None:
        value = datetime(2020, 2, 29, 23, 59, 1, tzinfo=timezone(timedelta(hours=-5, minutes=-30)))
        assert format_pdf_date(value) == "D:20200229235901-05'30'"
        assert parse_pdf_date(format_pdf_date(value)) == value


class TestSanitizeMetadata:
    def test_known_fields_are_typed(self) -> None:
        sanitized = sanitize_metadata(
            {
                "title": "  Report ",
                "Author": b"Jane",
                "keywords": "alpha, beta;gamma",
                "creationDate": "D:20240101000000Z",
                "format": "PDF 1.7",
                "encryption": None,
                "subject": "",
            }
        )
        assert sanitized == {
            "title": "Report",
            "author": "Jane",
            "keywords": ["alpha", "beta", "gamma"],
            "creationDate": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }

    def test_none_and_empty(self) -> None:
        assert sanitize_metadata(None) == {}
        assert sanitize_metadata({}) == {}

    def test_keyword_lists(self) -> None:
        assert coerce_string_list(["a", " ", 3]) == ["a", "3"]
        assert coerce_string_list(" ; , ") is None

    @given(
        attrs=st.dictionaries(
            st.sampled_from(["title", "author", "keywords", "creationDate", "modDate", "producer", "junk"]),
            st.one_of(st.none(), st.text(max_size=20), st.integers(), st.lists(st.text(max_size=5), max_size=3)),
            max_size=7,
        )
    )
    @settings(max_examples=200)
    def test_sanitize_is_idempotent(self, attrs: dict) -> None:
        once = sanitize_metadata(attrs)
        assert sanitize_metadata(once) == once

    def test_to_pdf_metadata(self) -> None:
        rendered = to_pdf_metadata(
            {"title": "T", "keywords": ["a", "b"], "modDate": datetime(2024, 1, 1, tzinfo=timezone.utc)}
        )
        assert rendered == {"title": "T", "keywords": "a, b", "modDate": "D:20240101000000Z"}


class TestSanitizeOutline:
    def test_clean_outline_is_untouched(self) -> None:
        path = _create_pdf(3, toc=[[1, "One", 1], [1, "Two", 3]])
        doc = fitz.open(path)
        try:
            assert sanitize_outline(doc) is False
        finally:
            doc.close()
            os.unlink(path)

    def test_blank_titles_are_replaced(self) -> None:
        path = _create_pdf(3, toc=[[1, "  ", 1], [1, " Two ", 2]])
        doc = fitz.open(path)
        try:
            assert sanitize_outline(doc) is True
            assert doc.get_toc(simple=True) == [[1, "Untitled", 1], [1, "Two", 2]]
        finally:
            doc.close()
            os.unlink(path)

    def test_no_outline(self) -> None:
        doc = fitz.open()
        doc.new_page()
        try:
            assert sanitize_outline(doc) is False
        finally:
            doc.close()


class TestDocumentProfile:
    def test_small_document(self) -> None:
        profile = document_profile(10, 1024)
        assert not profile.is_large and not profile.is_massive
        assert profile.search_enabled and profile.thumbnails_enabled and profile.outline_enabled

    def test_large_threshold_is_exclusive(self) -> None:
        assert not document_profile(1000).is_large
        assert document_profile(1001).is_large

    def test_massive_by_pages(self) -> None:
        profile = document_profile(2000)
        assert profile.is_massive
        assert not profile.search_enabled
        assert not profile.thumbnails_enabled
        assert not profile.outline_enabled

    def test_massive_by_size(self) -> None:
        assert document_profile(5, 200 * 1024 * 1024).is_massive
        assert not document_profile(5, 200 * 1024 * 1024 - 1).is_massive


class TestLoadDocument:
    def test_file_not_found(self) -> None:
        with pytest.raises(FileNotFoundError, match="File not found"):
            load_document("/nonexistent/path.pdf")

    def test_invalid_pdf(self) -> None:
        path = tempfile.mktemp(suffix=".pdf")
        with open(path, "w") as f:
            f.write("this is not a pdf")
        try:
            with pytest.raises(DocumentOpenError, match="Not a valid PDF"):
                load_document(path)
        finally:
            os.unlink(path)

    def test_encrypted_pdf_is_rejected(self) -> None:
        path = tempfile.mktemp(suffix=".pdf")
        doc = fitz.open()
        doc.new_page()
        doc.save(path, encryption=fitz.PDF_ENCRYPT_AES_256, user_pw="secret", owner_pw="owner")
        doc.close()
        try:
            with pytest.raises(DocumentOpenError, match="password"):
                load_document(path)
        finally:
            os.unlink(path)

    def test_metadata_is_sanitized(self) -> None:
        path = _create_pdf(1, metadata={"title": "  Spaced  ", "keywords": "a;b"})
        try:
            doc = load_document(path)
            try:
                assert doc.metadata["title"] == "Spaced"
                assert doc.metadata["keywords"] == "a, b"
            finally:
                doc.close()
        finally:
            os.unlink(path)

    def test_validation_reports_progress_up_to_limit(self) -> None:
        path = _create_pdf(5)
        calls: list[tuple[int, int]] = []
        try:
            doc = load_document(path, LoadOptions(validation_page_limit=2), progress=lambda d, t: calls.append((d, t)))
            doc.close()
            assert calls == [(1, 2), (2, 2)]
        finally:
            os.unlink(path)

    def test_validation_cancellation(self) -> None:
        path = _create_pdf(3)
        cancel = threading.Event()
        cancel.set()
        try:
            with pytest.raises(JobCancelledError):
                load_document(path, LoadOptions(validation_page_limit=3), cancel_event=cancel)
        finally:
            os.unlink(path)

    def test_render_failure_raises_page_error(self) -> None:
        doc = fitz.open()
        doc.new_page()
        try:
            with patch.object(fitz.Page, "get_pixmap", side_effect=RuntimeError("broken")):
                with pytest.raises(PageRenderError, match="Page 1"):
                    validate_pages(doc)
        finally:
            doc.close()

    def test_get_page_count(self) -> None:
        path = _create_pdf(7)
        try:
            assert get_page_count(path) == 7
        finally:
            os.unlink(path)
