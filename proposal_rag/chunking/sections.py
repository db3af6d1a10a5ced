"""
Proposal Section Extractor
---------------------------
Finds the zones of a proposal ("Our Understanding", "Proposed Approach",
"Timeline", "Problem") by scanning for heading-like lines that contain a
known marker phrase.

A heading-like line is short (<= 80 chars, <= 10 words), may carry
markdown hashes, bullets or outline numbering ("2.", "II)", "Section 3:"),
and does not read like a sentence. Marker phrases are tried in a fixed
order, so "Our Understanding of the Problem" is an understanding heading.

Some headings (executive summary, deliverables, team, fees) are
boundary-only: they close the preceding span but never become a label.

Rules:
  - The first heading found for a label defines its span (earliest wins);
    repeated headings for the same label are ignored but still close spans.
  - A span runs from the line after its heading to the next heading of any
    kind, trimmed of surrounding whitespace. An empty body means absent.
  - Extraction is pure: same text in, same spans out.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from proposal_rag.schemas import SectionLabel

MAX_HEADING_CHARS = 80
MAX_HEADING_WORDS = 10

# (label or None for boundary-only, pattern) -- order matters
_HEADING_PATTERNS: list[tuple[Optional[SectionLabel], re.Pattern[str]]] = [
    (None, re.compile(r"\b(executive\s+summary|summary|overview)\b", re.I)),
    (
        SectionLabel.UNDERSTANDING,
        re.compile(r"\b(our\s+understanding|understanding|background|situation\s+analysis)\b", re.I),
    ),
    (
        SectionLabel.APPROACH,
        re.compile(
            r"\b(proposed\s+approach|recommended\s+approach|our\s+approach|approach|methodology|solution)\b",
            re.I,
        ),
    ),
    (
        SectionLabel.TIMELINE,
        re.compile(r"\b(project\s+timeline|timeline|work\s*plan|schedule|phases)\b", re.I),
    ),
    (None, re.compile(r"\b(deliverables|expected\s+outcomes)\b", re.I)),
    (None, re.compile(r"\b(project\s+team|team|staffing|personnel)\b", re.I)),
    (None, re.compile(r"\b(professional\s+fees|fees|pricing|budget)\b", re.I)),
    (
        SectionLabel.PROBLEM,
        re.compile(r"\b(problem|business\s+challenges?|challenges?|key\s+issues|objectives?)\b", re.I),
    ),
]

_OUTLINE_PREFIX = re.compile(
    r"^(?:#{1,6}\s*|[-*•]\s+|(?:section|part)\s+\w+\s*[:.)-]?\s*|(?:\d+|[ivxlc]+)(?:\.\d+)*[.):]?\s+)+",
    re.I,
)


@dataclass(frozen=True)
class SectionSpan:
    """One detected zone. Offsets index into the source text."""

    label: SectionLabel
    marker: str          # the heading line, stripped
    marker_start: int    # offset of the heading line
    start: int           # first character of the body
    end: int             # one past the last character of the body
    text: str


@dataclass(frozen=True)
class _Heading:
    label: Optional[SectionLabel]
    line: str
    line_start: int
    body_start: int


def _iter_lines(text: str):
    """Yield (line_without_newline, line_start, next_line_start)."""
    offset = 0
    for raw in text.splitlines(keepends=True):
        yield raw.rstrip("\r\n"), offset, offset + len(raw)
        offset += len(raw)


def _looks_like_heading(stripped: str) -> bool:
    if not stripped or len(stripped) > MAX_HEADING_CHARS:
        return False
    words = stripped.split()
    if len(words) > MAX_HEADING_WORDS:
        return False
    if stripped[-1] in "?!":
        return False
    if stripped.endswith(".") and len(words) > 4:
        return False
    return True


def classify_heading(line: str) -> tuple[bool, Optional[SectionLabel]]:
    """
    Return (is_heading, label) for a single line.

    Boundary-only headings return (True, None); ordinary lines (False, None).
    """
    stripped = line.strip()
    if not _looks_like_heading(stripped):
        return False, None
    core = _OUTLINE_PREFIX.sub("", stripped).strip(" :.-–—")
    if not core:
        return False, None
    for label, pattern in _HEADING_PATTERNS:
        if pattern.search(core):
            return True, label
    return False, None


class SectionExtractor:
    """
    Locates the first span of each known section in a proposal.

    Usage:
        spans = SectionExtractor().extract(text)
        if spans[SectionLabel.TIMELINE]:
            print(spans[SectionLabel.TIMELINE].text)
    """

    def find_headings(self, text: str) -> list[_Heading]:
        headings: list[_Heading] = []
        for line, line_start, next_start in _iter_lines(text):
            is_heading, label = classify_heading(line)
            if is_heading:
                headings.append(_Heading(label, line.strip(), line_start, next_start))
        return headings

    def extract(self, text: str) -> dict[SectionLabel, Optional[SectionSpan]]:
        """Map every SectionLabel to its first span, or None when absent."""
        spans: dict[SectionLabel, Optional[SectionSpan]] = {label: None for label in SectionLabel}
        headings = self.find_headings(text)

        for i, heading in enumerate(headings):
            if heading.label is None or spans[heading.label] is not None:
                continue
            body_end = headings[i + 1].line_start if i + 1 < len(headings) else len(text)
            raw = text[heading.body_start:body_end]
            body = raw.strip()
            if not body:
                continue
            start = heading.body_start + (len(raw) - len(raw.lstrip()))
            spans[heading.label] = SectionSpan(
                label=heading.label,
                marker=heading.line,
                marker_start=heading.line_start,
                start=start,
                end=start + len(body),
                text=body,
            )

        found = [label.value for label, span in spans.items() if span]
        logger.debug(
            f"[SectionExtractor] {len(headings)} heading(s) | sections: {', '.join(found) or 'none'}"
        )
        return spans
