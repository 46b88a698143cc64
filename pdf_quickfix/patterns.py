"""Redaction patterns, find/replace rules and UTF-16 match ranges."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from pdf_quickfix.models import FindReplaceRule, RedactionPattern
from pdf_quickfix.segments import TextRange, utf16_offset

logger = logging.getLogger(__name__)

IBAN = RedactionPattern.compile("IBAN", r"(?:\b[A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}[A-Z0-9]{0,16}\b)")
TCKN = RedactionPattern.compile("TCKN (Turkey ID)", r"(?<!\d)\d{11}(?!\d)")
PNR = RedactionPattern.compile("PNR (6 chars)", r"(?<![A-Z0-9])[A-Z0-9]{6}(?![A-Z0-9])")
AIRCRAFT_TAIL = RedactionPattern.compile("Aircraft Tail (TC-XYZ)", r"\bTC-[A-Z]{3,4}\b")


def default_patterns() -> list[RedactionPattern]:
    return [IBAN, TCKN, PNR, AIRCRAFT_TAIL]


def compile_custom_patterns(sources: Iterable[str]) -> list[RedactionPattern]:
    """Compile user-supplied regexes; malformed ones are dropped."""
    patterns: list[RedactionPattern] = []
    for source in sources:
        if not source:
            continue
        try:
            patterns.append(RedactionPattern.compile(f"Custom: {source}", source, 0))
        except re.error as exc:
            logger.debug("Dropping malformed custom regex %r: %s", source, exc)
    return patterns


def literal_pattern(rule: FindReplaceRule) -> re.Pattern[str] | None:
    """Escape a find/replace rule into a case-insensitive literal pattern."""
    if not rule.find:
        return None
    return re.compile(re.escape(rule.find), re.IGNORECASE)


def match_ranges(regex: re.Pattern[str], text: str) -> list[TextRange]:
    """Return every non-empty match of ``regex`` as a UTF-16 range."""
    ranges: list[TextRange] = []
    for match in regex.finditer(text):
        if match.end() <= match.start():
            continue
        ranges.append((utf16_offset(text, match.start()), utf16_offset(text, match.end())))
    return ranges


def redaction_ranges(patterns: Iterable[RedactionPattern], text: str) -> list[TextRange]:
    ranges: list[TextRange] = []
    for pattern in patterns:
        ranges.extend(match_ranges(pattern.regex, text))
    return ranges


def replacement_ranges(
    rules: Iterable[tuple[FindReplaceRule, re.Pattern[str]]], text: str
) -> list[tuple[TextRange, str]]:
    ranges: list[tuple[TextRange, str]] = []
    for rule, regex in rules:
        for text_range in match_ranges(regex, text):
            ranges.append((text_range, rule.replace))
    return ranges


def compile_rules(rules: Iterable[FindReplaceRule]) -> list[tuple[FindReplaceRule, re.Pattern[str]]]:
    compiled: list[tuple[FindReplaceRule, re.Pattern[str]]] = []
    for rule in rules:
        regex = literal_pattern(rule)
        if regex is not None:
            compiled.append((rule, regex))
    return compiled


def parse_find_replace(value: str) -> FindReplaceRule:
    """Parse a ``FIND=REPLACE`` command-line rule."""
    if "=" not in value:
        raise ValueError(f"Find/replace rule must look like FIND=REPLACE, got {value!r}")
    find, replace = value.split("=", 1)
    if not find:
        raise ValueError(f"Find text must not be empty in {value!r}")
    return FindReplaceRule(find=find, replace=replace)
