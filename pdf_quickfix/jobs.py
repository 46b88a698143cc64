"""Background job coordination with at-most-one-active-job per job kind.

Every started job gets a fresh token. Progress and completion callbacks are
handed to ``dispatch`` (the caller's UI context; direct call by default) and
are dropped unless the job's token is still the one tracked for its kind, so
a superseded job can never mutate caller state late.
"""

from __future__ import annotations

import itertools
import logging
import sys
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any

import fitz

from pdf_quickfix.document_loader import ProgressCallback, load_document
from pdf_quickfix.models import LoadOptions

logger = logging.getLogger(__name__)

Work = Callable[[threading.Event, ProgressCallback], Any]
Completion = Callable[[Any, "Exception | None"], None]
Dispatch = Callable[[Callable[[], None]], None]

# Pages test-rendered when opening interactively.
QUICK_OPEN_PAGE_LIMIT = 1


class JobKind(Enum):
    OPEN = "open"
    VALIDATION = "validation"
    QUICKFIX = "quickfix"
    SPLIT = "split"


@dataclass
class _ActiveJob:
    token: int
    cancel_event: threading.Event
    future: Future | None = None


def _direct(fn: Callable[[], None]) -> None:
    fn()


def _discard(result: Any) -> None:
    """Release resources held by the result of a superseded job."""
    if isinstance(result, fitz.Document):
        result.close()


class JobCoordinator:
    """Runs pipeline jobs on a worker pool, one active job per kind."""

    def __init__(self, max_workers: int = 2, dispatch: Dispatch | None = None) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pdf-quickfix")
        self._dispatch = dispatch or _direct
        self._lock = threading.Lock()
        self._jobs: dict[JobKind, _ActiveJob] = {}
        self._tokens = itertools.count(1)

    def start(
        self,
        kind: JobKind,
        work: Work,
        progress: ProgressCallback | None = None,
        completion: Completion | None = None,
    ) -> int:
        """Cancel any running job of ``kind`` and start ``work`` in its place.

        ``work`` receives a cancel event to poll and a progress callback.
        Returns the new job's token.
        """
        self.cancel(kind)
        with self._lock:
            token = next(self._tokens)
            job = _ActiveJob(token=token, cancel_event=threading.Event())
            self._jobs[kind] = job

        def report(processed: int, total: int) -> None:
            if progress is None or not self.is_active(kind, token):
                return

            def deliver() -> None:
                if self.is_active(kind, token):
                    progress(processed, total)

            self._dispatch(deliver)

        def run() -> None:
            result: Any = None
            error: Exception | None = None
            try:
                result = work(job.cancel_event, report)
            except Exception as exc:
                error = exc
            self._dispatch(lambda: self._complete(kind, token, result, error, completion))

        job.future = self._executor.submit(run)
        logger.debug("Started %s job %d", kind.value, token)
        return token

    def _complete(
        self,
        kind: JobKind,
        token: int,
        result: Any,
        error: Exception | None,
        completion: Completion | None,
    ) -> None:
        with self._lock:
            current = self._jobs.get(kind)
            if current is None or current.token != token:
                stale = True
            else:
                stale = False
                del self._jobs[kind]
        if stale:
            logger.debug("Dropping result of superseded %s job %d", kind.value, token)
            _discard(result)
            return
        if completion is not None:
            completion(result, error)

    def is_active(self, kind: JobKind, token: int) -> bool:
        with self._lock:
            current = self._jobs.get(kind)
            return current is not None and current.token == token

    def active_token(self, kind: JobKind) -> int | None:
        with self._lock:
            current = self._jobs.get(kind)
            return current.token if current else None

    def cancel(self, kind: JobKind) -> None:
        with self._lock:
            job = self._jobs.pop(kind, None)
        if job is not None:
            job.cancel_event.set()
            if job.future is not None:
                job.future.cancel()
            logger.debug("Cancelled %s job %d", kind.value, job.token)

    def cancel_all(self) -> None:
        for kind in JobKind:
            self.cancel(kind)

    def shutdown(self, wait: bool = True) -> None:
        self.cancel_all()
        self._executor.shutdown(wait=wait)

    # Document loading

    def open_document(
        self,
        path: str,
        progress: ProgressCallback | None = None,
        completion: Completion | None = None,
    ) -> int:
        options = LoadOptions(validation_page_limit=QUICK_OPEN_PAGE_LIMIT)
        return self.start(
            JobKind.OPEN,
            lambda cancel, report: load_document(path, options, report, cancel),
            progress,
            completion,
        )

    def validate_document(
        self,
        path: str,
        page_limit: int | None,
        progress: ProgressCallback | None = None,
        completion: Completion | None = None,
    ) -> int:
        # None validates every page.
        limit = page_limit if page_limit is not None else sys.maxsize
        options = LoadOptions(validation_page_limit=limit)
        return self.start(
            JobKind.VALIDATION,
            lambda cancel, report: load_document(path, options, report, cancel),
            progress,
            completion,
        )
