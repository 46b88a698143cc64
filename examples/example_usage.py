#!/usr/bin/env python3
"""Example usage of the PDF QuickFix library."""

from pdf_quickfix.models import FindReplaceRule, JobConfig, SplitMode, SplitOptions
from pdf_quickfix.quickfix_engine import QuickFixEngine
from pdf_quickfix.reports import format_report
from pdf_quickfix.splitter import PDFSplitter


def redact_and_repair(pdf_path: str, output_path: str) -> None:
    """Redact IDs and booking codes, rename a vendor and re-embed searchable text."""
    # Configure the job
    config = JobConfig(
        dpi=300,
        redaction_padding=2.0,
        languages=["tr-TR", "en-US"],
        custom_regex_list=[r"\bEMP-\d{5}\b"],
        find_replace_rules=[FindReplaceRule(find="ACME Ltd", replace="Contoso")],
        # Black out the signature block on the first page (points, bottom-left origin)
        manual_redaction_rects={0: [(72, 72, 200, 40)]},
    )

    # Run QuickFix
    engine = QuickFixEngine.from_config(config, max_workers=2)
    result = engine.run_job(
        config,
        pdf_path,
        output_path,
        progress=lambda done, total: print(f"  page {done}/{total}"),
    )

    # Print the redaction report
    print(f"\nWrote {result.output_path}")
    print(format_report(result.redaction_report))


def split_into_chapters(pdf_path: str, destination: str) -> None:
    """Split a PDF at its top-level outline entries."""
    splitter = PDFSplitter()
    result = splitter.split(SplitOptions(pdf_path, destination, SplitMode.outline_chapters()))

    for path in result.output_files:
        print(f"  {path}")

    record = splitter.history.recent(1)[0]
    print(f"\n{record.mode_description}: {record.output_count} part(s) in {record.destination_folder}")


def main():
    """Example usage."""
    # Example 1: Redact and repair a scanned PDF
    print("Example 1: Redacting and repairing a PDF...")
    # redact_and_repair("input.pdf", "input.fixed.pdf")

    # Example 2: Split a PDF by outline chapters
    print("\nExample 2: Splitting a PDF by chapters...")
    # split_into_chapters("book.pdf", "chapters")

    print("\nUncomment the function calls above and provide PDF paths to run.")


if __name__ == "__main__":
    main()
