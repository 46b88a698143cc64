"""Core data models for the PDF QuickFix redaction and splitting pipelines."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import fitz
from PIL import Image


@dataclass(frozen=True)
class RedactionPattern:
    """A named, pre-compiled pattern whose matches are redacted."""

    name: str
    regex: re.Pattern[str]

    @classmethod
    def compile(cls, name: str, pattern: str, flags: int = re.IGNORECASE) -> RedactionPattern:
        return cls(name=name, regex=re.compile(pattern, flags))


@dataclass(frozen=True)
class FindReplaceRule:
    """Literal text to find (case-insensitive) and the text that replaces it."""

    find: str
    replace: str


@dataclass(frozen=True)
class QuickFixOptions:
    """Configuration snapshot for one QuickFix run."""

    do_ocr: bool = True
    dpi: float = 300
    redaction_padding: float = 2.0  # pixels


class SegmentKind(Enum):
    """Disposition of a contiguous sub-range of recognized text."""

    KEEP = "keep"
    REPLACE = "replace"
    SKIP = "skip"


@dataclass(frozen=True)
class Segment:
    """A [start, end) span of one recognized string, in UTF-16 code units."""

    start: int
    end: int
    kind: SegmentKind
    replacement: str | None = None  # only set for REPLACE

    def same_kind(self, other: Segment) -> bool:
        return self.kind == other.kind and self.replacement == other.replacement


class RunKind(Enum):
    KEEP = "keep"
    REPLACE = "replace"


@dataclass(frozen=True)
class RecognizedRun:
    """A recognized text span with the rectangle it occupies.

    The rectangle is in pixel space (bottom-left origin) while a page is being
    composited and in point space once handed to PDF assembly.
    """

    kind: RunKind
    text: str
    rect: fitz.Rect


@dataclass
class PageProcessResult:
    """Output of the per-page pipeline, consumed by PDF assembly."""

    page_size_points: tuple[float, float]
    image: Image.Image
    text_runs_in_points: list[RecognizedRun]


@dataclass(frozen=True)
class RedactionReportPage:
    """Redaction counts for a single page."""

    page_index: int
    redaction_rect_count: int
    suppressed_ocr_run_count: int


@dataclass(frozen=True)
class RedactionReport:
    """Redaction audit for a whole document.

    Only pages where at least one redaction rectangle was applied are listed.
    """

    pages_with_redactions: tuple[RedactionReportPage, ...] = ()

    @property
    def total_redaction_rect_count(self) -> int:
        return sum(p.redaction_rect_count for p in self.pages_with_redactions)

    @property
    def total_suppressed_ocr_run_count(self) -> int:
        return sum(p.suppressed_ocr_run_count for p in self.pages_with_redactions)


@dataclass(frozen=True)
class QuickFixResult:
    """Where the fixed PDF was written and what was redacted."""

    output_path: str
    redaction_report: RedactionReport


@dataclass
class JobConfig:
    """Per-job configuration surface for a QuickFix run.

    ``manual_redaction_rects`` maps 0-based page indices to rectangles given
    as ``(x, y, width, height)`` in PDF point space (bottom-left origin).
    """

    do_ocr: bool = True
    dpi: float = 300
    redaction_padding: float = 2.0
    languages: list[str] = field(default_factory=list)
    use_default_redaction_patterns: bool = True
    custom_regex_list: list[str] = field(default_factory=list)
    find_replace_rules: list[FindReplaceRule] = field(default_factory=list)
    manual_redaction_rects: dict[int, list[tuple[float, float, float, float]]] = field(
        default_factory=dict
    )

    def options(self) -> QuickFixOptions:
        return QuickFixOptions(
            do_ocr=self.do_ocr,
            dpi=self.dpi,
            redaction_padding=self.redaction_padding,
        )


class SplitModeKind(Enum):
    MAX_PAGES_PER_PART = "max_pages_per_part"
    NUMBER_OF_PARTS = "number_of_parts"
    EXPLICIT_BREAKS = "explicit_breaks"
    APPROX_TARGET_SIZE_MB = "approx_target_size_mb"
    OUTLINE_CHAPTERS = "outline_chapters"


@dataclass(frozen=True)
class SplitMode:
    """Tagged split policy. Use the constructors rather than the raw fields."""

    kind: SplitModeKind
    count: int = 0
    breaks: tuple[int, ...] = ()
    target_mb: float = 0.0

    @classmethod
    def max_pages_per_part(cls, pages: int) -> SplitMode:
        return cls(SplitModeKind.MAX_PAGES_PER_PART, count=pages)

    @classmethod
    def number_of_parts(cls, parts: int) -> SplitMode:
        return cls(SplitModeKind.NUMBER_OF_PARTS, count=parts)

    @classmethod
    def explicit_breaks(cls, breaks: list[int] | tuple[int, ...]) -> SplitMode:
        return cls(SplitModeKind.EXPLICIT_BREAKS, breaks=tuple(breaks))

    @classmethod
    def approx_target_size_mb(cls, target_mb: float) -> SplitMode:
        return cls(SplitModeKind.APPROX_TARGET_SIZE_MB, target_mb=target_mb)

    @classmethod
    def outline_chapters(cls) -> SplitMode:
        return cls(SplitModeKind.OUTLINE_CHAPTERS)

    def describe(self) -> str:
        if self.kind == SplitModeKind.MAX_PAGES_PER_PART:
            return f"Max {self.count} pages per part"
        if self.kind == SplitModeKind.NUMBER_OF_PARTS:
            return f"{self.count} parts"
        if self.kind == SplitModeKind.EXPLICIT_BREAKS:
            return "Breaks at " + ", ".join(str(b) for b in self.breaks)
        if self.kind == SplitModeKind.APPROX_TARGET_SIZE_MB:
            return f"~{self.target_mb:g} MB per part"
        return "Chapters from outline"


@dataclass(frozen=True)
class PageRange:
    """A range of pages for splitting."""

    start: int  # inclusive
    end: int  # exclusive

    def __len__(self) -> int:
        return max(0, self.end - self.start)


@dataclass(frozen=True)
class SplitOptions:
    """Source, destination and policy for one split."""

    source_path: str
    destination_directory: str
    mode: SplitMode


@dataclass
class SplitResult:
    output_files: list[str]


@dataclass
class BatchSplitResult:
    """Combined outcome of splitting every PDF in a folder."""

    output_files: list[str]
    errors: list[tuple[str, str]]  # (source path, message)

    @property
    def error_summary(self) -> str | None:
        if not self.errors:
            return None
        return "; ".join(f"{source}: {message}" for source, message in self.errors)


@dataclass(frozen=True)
class SplitJobRecord:
    """Audit entry for one split job (single file or folder batch)."""

    date: datetime
    source_description: str
    mode_description: str
    file_count: int
    output_count: int
    destination_folder: str
    error_summary: str | None = None


@dataclass(frozen=True)
class DocumentProfile:
    """Feature flags derived from a document's size."""

    is_large: bool
    is_massive: bool
    search_enabled: bool
    thumbnails_enabled: bool
    outline_enabled: bool


@dataclass(frozen=True)
class LoadOptions:
    """How the document loader opens and normalizes a PDF."""

    validation_page_limit: int | None = None
    sanitize_metadata: bool = True
    sanitize_outline: bool = True
