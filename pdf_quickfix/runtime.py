"""Process-wide setup shared by the command-line entry points."""

from __future__ import annotations

import logging
import threading

import fitz

_lock = threading.Lock()
_configured = False


def configure_runtime(verbose: bool = False) -> bool:
    """Configure logging and MuPDF diagnostics once per process.

    Returns True if this call performed the configuration.
    """
    global _configured
    with _lock:
        if _configured:
            return False
        logging.basicConfig(
            level=logging.INFO if verbose else logging.WARNING,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        # MuPDF prints recoverable parse warnings to stderr by default.
        fitz.TOOLS.mupdf_display_errors(verbose)
        _configured = True
        return True
