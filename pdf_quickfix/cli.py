"""CLI interface for PDF QuickFix."""

from __future__ import annotations

import os
import shutil

import click

from pdf_quickfix.models import JobConfig, SplitMode, SplitOptions


def _check_dependencies(need_tesseract: bool = True) -> list[str]:
    """Check for missing dependencies and return a list of issues."""
    issues: list[str] = []

    if need_tesseract and shutil.which("tesseract") is None:
        issues.append(
            "tesseract is not installed or not on PATH. "
            "Install it via your package manager:\n"
            "  macOS:   brew install tesseract\n"
            "  Ubuntu:  sudo apt-get install tesseract-ocr\n"
            "  Windows: download from https://github.com/tesseract-ocr/tesseract"
        )

    required_packages = {
        "fitz": "PyMuPDF",
        "PIL": "Pillow",
    }
    if need_tesseract:
        required_packages["pytesseract"] = "pytesseract"
        required_packages["pymupdf_fonts"] = "pymupdf-fonts"
    for module_name, pip_name in required_packages.items():
        try:
            __import__(module_name)
        except ImportError:
            issues.append(
                f"Python package '{pip_name}' is not installed. "
                f"Install it with: pip install {pip_name}"
            )

    return issues


def _exit_on_issues(issues: list[str]) -> None:
    if issues:
        for issue in issues:
            click.echo(issue, err=True)
        raise SystemExit(1)


def _fail(exc: Exception) -> None:
    click.echo(f"Error: {exc}", err=True)
    raise SystemExit(1)


def _parse_manual_redaction(value: str) -> tuple[int, tuple[float, float, float, float]]:
    """``"PAGE:X,Y,W,H"`` with a 1-based page and a point-space rect."""
    page_part, sep, rect_part = value.partition(":")
    try:
        if not sep:
            raise ValueError
        page = int(page_part)
        x, y, w, h = (float(v) for v in rect_part.split(","))
    except ValueError:
        raise click.BadParameter(f"expected PAGE:X,Y,W,H, got {value!r}") from None
    if page < 1 or w <= 0 or h <= 0:
        raise click.BadParameter(f"page must be >= 1 and size positive, got {value!r}")
    return page - 1, (x, y, w, h)


class _Progress:
    """Echoes ``processed/total`` to stderr when verbose."""

    def __init__(self, label: str, enabled: bool) -> None:
        self.label = label
        self.enabled = enabled

    def __call__(self, processed: int, total: int) -> None:
        if self.enabled:
            click.echo(f"{self.label}: {processed}/{total}", err=True)


@click.group()
def cli() -> None:
    """PDF QuickFix: redact, repair OCR text and split PDFs."""


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=False))
@click.option("-o", "--output", "output_path", default=None, type=click.Path(), help="Output file. Defaults to <input>.fixed.pdf.")
@click.option("--dpi", default=300, type=click.IntRange(150, 600), show_default=True, help="Rasterization resolution.")
@click.option("--padding", default=2.0, type=click.FloatRange(0, 8), show_default=True, help="Redaction padding in pixels.")
@click.option("--lang", "languages", multiple=True, help="OCR language tag, e.g. en-US. Repeatable.")
@click.option("--regex", "regexes", multiple=True, help="Extra redaction regex. Repeatable.")
@click.option("--replace", "replacements", multiple=True, help="Literal replacement FIND=REPLACE. Repeatable.")
@click.option("--redact", "manual", multiple=True, help="Manual redaction PAGE:X,Y,W,H in points. Repeatable.")
@click.option("--no-ocr", is_flag=True, default=False, help="Do not embed a searchable text layer.")
@click.option("--no-default-patterns", is_flag=True, default=False, help="Disable built-in IBAN/ID/PNR/tail patterns.")
@click.option("--jobs", default=1, type=click.IntRange(1, 32), show_default=True, help="Pages processed in parallel.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable detailed progress logging.")
def fix(
    pdf_path: str,
    output_path: str | None,
    dpi: int,
    padding: float,
    languages: tuple[str, ...],
    regexes: tuple[str, ...],
    replacements: tuple[str, ...],
    manual: tuple[str, ...],
    no_ocr: bool,
    no_default_patterns: bool,
    jobs: int,
    verbose: bool,
) -> None:
    """Rasterize, redact and re-embed searchable text.

    PDF_PATH is the path to the PDF file to fix.
    """
    from pdf_quickfix.patterns import parse_find_replace

    try:
        rules = [parse_find_replace(value) for value in replacements]
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--replace") from None

    manual_rects: dict[int, list[tuple[float, float, float, float]]] = {}
    for value in manual:
        page_index, rect = _parse_manual_redaction(value)
        manual_rects.setdefault(page_index, []).append(rect)

    config = JobConfig(
        do_ocr=not no_ocr,
        dpi=dpi,
        redaction_padding=padding,
        languages=list(languages),
        use_default_redaction_patterns=not no_default_patterns,
        custom_regex_list=list(regexes),
        find_replace_rules=rules,
        manual_redaction_rects=manual_rects,
    )
    need_tesseract = config.do_ocr or config.use_default_redaction_patterns or bool(regexes) or bool(rules)
    _exit_on_issues(_check_dependencies(need_tesseract))

    if not os.path.exists(pdf_path):
        click.echo(f"Error: File not found: {pdf_path}", err=True)
        raise SystemExit(1)

    from pdf_quickfix.errors import QuickFixError
    from pdf_quickfix.quickfix_engine import QuickFixEngine
    from pdf_quickfix.reports import format_report
    from pdf_quickfix.runtime import configure_runtime

    configure_runtime(verbose)
    engine = QuickFixEngine.from_config(config, max_workers=jobs)
    try:
        result = engine.run_job(config, pdf_path, output_path, progress=_Progress("Pages", verbose))
    except (QuickFixError, FileNotFoundError, ValueError) as exc:
        _fail(exc)

    click.echo(f"Output written to {result.output_path}", err=True)
    click.echo(format_report(result.redaction_report), err=True)


@cli.command()
@click.argument("source", type=click.Path(exists=False))
@click.option("--max-pages", type=int, default=None, help="Maximum pages per part.")
@click.option("--parts", type=int, default=None, help="Number of parts.")
@click.option("--breaks", default=None, help='1-based start pages, e.g. "1, 101, 351".')
@click.option("--size-mb", type=float, default=None, help="Approximate size per part in MB.")
@click.option("--outline", is_flag=True, default=False, help="Split at top-level outline chapters.")
@click.option("-d", "--dest", "destination", default=None, type=click.Path(), help="Destination folder. Defaults to the source folder.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable detailed progress logging.")
def split(
    source: str,
    max_pages: int | None,
    parts: int | None,
    breaks: str | None,
    size_mb: float | None,
    outline: bool,
    destination: str | None,
    verbose: bool,
) -> None:
    """Split a PDF, or every PDF in a folder, into parts.

    SOURCE is a PDF file or a folder of PDF files.
    """
    from pdf_quickfix.splitter import parse_explicit_breaks

    chosen = [
        option
        for option, value in (
            ("--max-pages", max_pages),
            ("--parts", parts),
            ("--breaks", breaks),
            ("--size-mb", size_mb),
            ("--outline", outline or None),
        )
        if value is not None
    ]
    if len(chosen) != 1:
        raise click.UsageError("Choose exactly one of --max-pages, --parts, --breaks, --size-mb, --outline.")

    if max_pages is not None:
        mode = SplitMode.max_pages_per_part(max_pages)
    elif parts is not None:
        mode = SplitMode.number_of_parts(parts)
    elif breaks is not None:
        mode = SplitMode.explicit_breaks(parse_explicit_breaks(breaks))
    elif size_mb is not None:
        mode = SplitMode.approx_target_size_mb(size_mb)
    else:
        mode = SplitMode.outline_chapters()

    _exit_on_issues(_check_dependencies(need_tesseract=False))

    if not os.path.exists(source):
        click.echo(f"Error: File not found: {source}", err=True)
        raise SystemExit(1)

    from pdf_quickfix.errors import QuickFixError
    from pdf_quickfix.runtime import configure_runtime
    from pdf_quickfix.splitter import PDFSplitter

    configure_runtime(verbose)
    splitter = PDFSplitter()
    progress = _Progress("Pages copied", verbose)
    try:
        if os.path.isdir(source):
            batch = splitter.split_folder(source, destination, mode, progress=progress)
            outputs, errors = batch.output_files, batch.errors
        else:
            dest = destination or os.path.dirname(os.path.abspath(source))
            result = splitter.split(SplitOptions(source, dest, mode), progress=progress)
            outputs, errors = result.output_files, []
    except (QuickFixError, FileNotFoundError, ValueError) as exc:
        _fail(exc)

    for path in outputs:
        click.echo(path)
    click.echo(f"{len(outputs)} part(s) written ({mode.describe()})", err=True)
    if errors:
        for name, message in errors:
            click.echo(f"  - {name}: {message}", err=True)
        raise SystemExit(1)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=False))
def inspect(pdf_path: str) -> None:
    """Show page count, size profile, metadata and outline of a PDF.

    PDF_PATH is the path to the PDF file to inspect.
    """
    _exit_on_issues(_check_dependencies(need_tesseract=False))

    from pdf_quickfix.document_loader import document_profile, load_document, sanitize_metadata
    from pdf_quickfix.errors import QuickFixError
    from pdf_quickfix.models import LoadOptions

    try:
        doc = load_document(pdf_path, LoadOptions(sanitize_metadata=False))
    except (QuickFixError, FileNotFoundError) as exc:
        _fail(exc)

    try:
        page_count = len(doc)
        metadata = sanitize_metadata(doc.metadata)
        toc = doc.get_toc(simple=True)
    finally:
        doc.close()

    profile = document_profile(page_count, os.path.getsize(pdf_path))
    click.echo(f"File:     {pdf_path}")
    click.echo(f"Pages:    {page_count}")
    size_label = "massive" if profile.is_massive else "large" if profile.is_large else "normal"
    click.echo(f"Profile:  {size_label}")
    for key, value in metadata.items():
        if isinstance(value, list):
            value = ", ".join(value)
        click.echo(f"{key + ':':<14}{value}")
    chapters = [entry for entry in toc if entry[0] == 1]
    click.echo(f"Outline:  {len(toc)} entries, {len(chapters)} chapter(s)")
    for _level, title, page in chapters:
        click.echo(f"  p.{page:<5} {title}")
