"""Exception types raised by the QuickFix and split pipelines."""

from __future__ import annotations


class QuickFixError(RuntimeError):
    """Base class for pipeline failures surfaced to the caller."""


class DocumentOpenError(QuickFixError):
    """The source PDF could not be opened or has no usable pages."""


class PageRenderError(QuickFixError):
    """A page could not be rasterized or composited.

    Fatal for the whole document: no partial output is written.
    """

    def __init__(self, page_index: int, reason: str) -> None:
        super().__init__(f"Page {page_index + 1}: {reason}")
        self.page_index = page_index
        self.reason = reason


class PDFWriteError(QuickFixError):
    """The output PDF could not be assembled or written."""


class JobCancelledError(QuickFixError):
    """A cooperative cancellation request was observed."""


class SplitError(QuickFixError):
    """Base class for split failures."""


class InvalidSplitModeError(SplitError, ValueError):
    """The split policy is not valid for the source document."""


class SplitWriteError(SplitError):
    """A split part could not be written."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Failed to write {path}")
        self.path = path
