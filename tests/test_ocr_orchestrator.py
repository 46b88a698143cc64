"""Unit tests for mapping OCR candidates to runs and redaction rects."""

from __future__ import annotations

import fitz
import pytest
from PIL import Image

from pdf_quickfix.models import FindReplaceRule, RunKind
from pdf_quickfix.ocr_orchestrator import map_candidates, recognize_page
from pdf_quickfix.patterns import compile_custom_patterns, compile_rules


class FakeCandidate:
    """Line whose characters are laid out evenly across a normalized box."""

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
    def __init__(self, candidates=None, error: Exception | None = None) -> None:
        self.candidates = candidates or []
        self.error = error
        self.calls: list[list[str]] = []

    def recognize_text(self, image, languages):
        self.calls.append(list(languages))
        if self.error is not None:
            raise self.error
        return self.candidates


class TestMapCandidates:
    def test_plain_line_becomes_one_keep_run(self) -> None:
        candidate = FakeCandidate("hello", (0.1, 0.5, 0.5, 0.1))
        recognition = map_candidates([candidate], (100, 100), [], [], padding=0)
        assert recognition.redaction_rects == []
        assert len(recognition.runs) == 1
        run = recognition.runs[0]
        assert run.kind == RunKind.KEEP
        assert run.text == "hello"
        assert (run.rect.x0, run.rect.y0, run.rect.x1, run.rect.y1) == pytest.approx((10, 50, 60, 60))

    def test_redacted_segment_becomes_padded_rect(self) -> None:
        candidate = FakeCandidate("ab1234cd", (0.0, 0.0, 0.8, 0.1))
        patterns = compile_custom_patterns([r"\d+"])
        recognition = map_candidates([candidate], (100, 100), patterns, [], padding=2)

        assert [run.text for run in recognition.runs] == ["ab", "cd"]
        assert len(recognition.redaction_rects) == 1
        rect = recognition.redaction_rects[0]
        # Digits span x 20..60; padding grows it, clamped at the bottom edge.
        assert (rect.x0, rect.y0, rect.x1, rect.y1) == pytest.approx((18, 0, 62, 12))

    def test_replacement_run_carries_replacement_text(self) -> None:
        candidate = FakeCandidate("call ACME", (0.0, 0.0, 0.9, 0.1))
        rules = compile_rules([FindReplaceRule("acme", "Contoso")])
        recognition = map_candidates([candidate], (100, 100), [], rules, padding=0)
        kinds = [(run.kind, run.text) for run in recognition.runs]
        assert kinds == [(RunKind.KEEP, "call "), (RunKind.REPLACE, "Contoso")]

    def test_missing_boxes_produce_no_runs(self) -> None:
        class NoBox(FakeCandidate):
            def bounding_box_normalized(self, start, end):
                return None

        recognition = map_candidates([NoBox("text", (0, 0, 1, 1))], (100, 100), [], [], padding=0)
        assert recognition.runs == []

    def test_boxes_outside_image_are_discarded(self) -> None:
        candidate = FakeCandidate("gone", (1.5, 1.5, 0.2, 0.2))
        recognition = map_candidates([candidate], (100, 100), [], [], padding=0)
        assert recognition.runs == []

    def test_candidates_are_independent(self) -> None:
        candidates = [
            FakeCandidate("one", (0.0, 0.8, 0.3, 0.1)),
            FakeCandidate("two", (0.0, 0.6, 0.3, 0.1)),
        ]
        recognition = map_candidates(candidates, (100, 100), [], [], padding=0)
        assert [run.text for run in recognition.runs] == ["one", "two"]


class TestRecognizePage:
    def test_passes_languages_to_provider(self) -> None:
        provider = FakeProvider([FakeCandidate("hi", (0, 0, 0.5, 0.5))])
        recognition = recognize_page(Image.new("RGB", (10, 10)), provider, ["tr-TR", "en-US"], [], [], 0)
        assert provider.calls == [["tr-TR", "en-US"]]
        assert len(recognition.runs) == 1

    def test_ocr_failure_means_no_text(self, caplog: pytest.LogCaptureFixture) -> None:
        provider = FakeProvider(error=RuntimeError("tesseract crashed"))
        with caplog.at_level("WARNING", logger="pdf_quickfix.ocr_orchestrator"):
            recognition = recognize_page(Image.new("RGB", (10, 10)), provider, ["en-US"], [], [], 0, page_index=4)
        assert recognition.runs == []
        assert recognition.redaction_rects == []
        assert "page 5" in caplog.text

    def test_image_size_drives_pixel_rects(self) -> None:
        provider = FakeProvider([FakeCandidate("x", (0.5, 0.5, 0.5, 0.5))])
        recognition = recognize_page(Image.new("RGB", (200, 40)), provider, [], [], [], 0)
        assert recognition.runs[0].rect == fitz.Rect(100, 20, 200, 40)
