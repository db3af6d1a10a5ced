"""
Proposal Chunker
-----------------
Splits proposal text into overlapping character windows and labels the
windows that open a known proposal section.

Windowing rules:
  - Blank text yields no chunks. Other text shorter than min_chunk_size is
    rejected with InputError; text no longer than max_chunk_size is a
    single chunk.
  - Every chunk is at most max_chunk_size characters, and consecutive chunks
    share exactly `overlap` characters, so the source text is recovered by
    `chunks[0] + "".join(c[overlap:] for c in chunks[1:])`.
  - Each window ends at the latest natural boundary inside its search range:
    a sentence or line start first, then a word start, then a hard cut.
  - Windows and the final tail never fall below min_chunk_size characters
    (once the text is long enough to be split at all).

Labelling rule:
  A chunk is labelled with a section when its window contains the opening
  of that section's body (the first min(100, overlap) characters). Because
  that opening is never longer than the overlap, it always lands whole in
  at least one window. When two sections open in the same window, the one
  whose heading appears first wins.

Sentence starts come from NLTK's Punkt tokenizer used with default
parameters, which needs no downloaded model data.
"""
from __future__ import annotations

import re
from bisect import bisect_right
from typing import Optional

from loguru import logger
from nltk.tokenize.punkt import PunktSentenceTokenizer

from proposal_rag.chunking.schemas import Chunk
from proposal_rag.chunking.sections import SectionExtractor, SectionSpan
from proposal_rag.errors import InputError
from proposal_rag.schemas import Document, SectionLabel
from proposal_rag.utils.helpers import estimate_tokens


# ── Constants ─────────────────────────────────────────────────────────────────

MAX_CHUNK_SIZE = 800       # characters per window
OVERLAP = 100              # characters shared by consecutive windows
MIN_CHUNK_SIZE = 100       # smallest window or tail worth embedding
SECTION_PREFIX_CHARS = 100

_PUNKT = PunktSentenceTokenizer()
_LINE_START = re.compile(r"\n[ \t]*(?=\S)")
_WORD_START = re.compile(r"(?<=\s)\S")


# ── Window arithmetic ─────────────────────────────────────────────────────────

def _resolve_min_chunk(max_chunk_size: int, min_chunk_size: Optional[int]) -> int:
    if min_chunk_size is None:
        return min(MIN_CHUNK_SIZE, max_chunk_size // 2)
    return min_chunk_size


def validate_params(max_chunk_size: int, overlap: int, min_chunk_size: int) -> None:
    """Raise InputError for window settings that cannot make progress."""
    if max_chunk_size <= 0:
        raise InputError(f"max_chunk_size must be positive, got {max_chunk_size}")
    if overlap < 0 or overlap >= max_chunk_size:
        raise InputError(
            f"overlap must be in [0, max_chunk_size), got {overlap} with max {max_chunk_size}"
        )
    if min_chunk_size < 0 or min_chunk_size > max_chunk_size // 2:
        raise InputError(
            f"min_chunk_size must be in [0, max_chunk_size // 2], got {min_chunk_size}"
        )


def boundary_offsets(text: str) -> tuple[list[int], list[int]]:
    """
    Candidate split offsets, sorted.

    Returns (preferred, fallback): preferred are sentence and line starts,
    fallback are word starts. Offset 0 is never a candidate.
    """
    preferred = {start for start, _ in _PUNKT.span_tokenize(text) if start > 0}
    preferred.update(m.end() for m in _LINE_START.finditer(text))
    fallback = [m.start() for m in _WORD_START.finditer(text)]
    return sorted(preferred), fallback


def _last_in_range(offsets: list[int], lower: int, upper: int) -> Optional[int]:
    idx = bisect_right(offsets, upper) - 1
    if idx >= 0 and offsets[idx] >= lower:
        return offsets[idx]
    return None


def chunk_spans(
    text: str,
    max_chunk_size: int = MAX_CHUNK_SIZE,
    overlap: int = OVERLAP,
    min_chunk_size: Optional[int] = None,
) -> list[tuple[int, int]]:
    """Return (start, end) offsets of each window. See module docstring."""
    min_chunk = _resolve_min_chunk(max_chunk_size, min_chunk_size)
    validate_params(max_chunk_size, overlap, min_chunk)

    n = len(text)
    if not text.strip():
        return []
    if n < min_chunk:
        raise InputError(f"text has {n} characters, below the {min_chunk}-character chunk minimum")
    if n <= max_chunk_size:
        return [(0, n)]

    preferred, fallback = boundary_offsets(text)
    floor = max(overlap + 1, min_chunk, max_chunk_size // 2)

    spans: list[tuple[int, int]] = []
    start = 0
    while n - start > max_chunk_size:
        # upper keeps the remaining tail at least min_chunk long
        upper = min(start + max_chunk_size, n + overlap - min_chunk)
        lower = start + floor
        end = _last_in_range(preferred, lower, upper)
        if end is None:
            end = _last_in_range(fallback, lower, upper)
        if end is None:
            end = upper
        spans.append((start, end))
        start = end - overlap
    spans.append((start, n))
    return spans


def chunk_text(
    text: str,
    max_chunk_size: int = MAX_CHUNK_SIZE,
    overlap: int = OVERLAP,
    min_chunk_size: Optional[int] = None,
) -> list[str]:
    """Split text into overlapping windows of at most max_chunk_size characters."""
    return [text[s:e] for s, e in chunk_spans(text, max_chunk_size, overlap, min_chunk_size)]


# ── Section labelling ─────────────────────────────────────────────────────────

def section_openings(
    sections: dict[SectionLabel, Optional[SectionSpan]],
    prefix_chars: int,
) -> list[tuple[int, SectionLabel, int, int]]:
    """(heading offset, label, opening start, opening end) for each present section."""
    openings = []
    for label, span in sections.items():
        if span is None:
            continue
        openings.append(
            (span.marker_start, label, span.start, min(span.start + prefix_chars, span.end))
        )
    return sorted(openings, key=lambda o: (o[0], o[2]))


def label_window(
    start: int, end: int, openings: list[tuple[int, SectionLabel, int, int]]
) -> Optional[SectionLabel]:
    for _, label, open_start, open_end in openings:
        if start <= open_start and open_end <= end:
            return label
    return None


# ── Main Chunker ──────────────────────────────────────────────────────────────

class ProposalChunker:
    """
    Turns a Document into labelled Chunks.

    Usage:
        chunker = ProposalChunker()
        chunks = chunker.chunk_document(doc)
    """

    def __init__(
        self,
        max_chunk_size: int = MAX_CHUNK_SIZE,
        overlap: int = OVERLAP,
        min_chunk_size: Optional[int] = None,
        extractor: Optional[SectionExtractor] = None,
    ) -> None:
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap
        self.min_chunk_size = _resolve_min_chunk(max_chunk_size, min_chunk_size)
        validate_params(self.max_chunk_size, self.overlap, self.min_chunk_size)
        self.extractor = extractor or SectionExtractor()
        self.prefix_chars = min(SECTION_PREFIX_CHARS, max(overlap, 1))

    @classmethod
    def from_config(cls, config: dict) -> "ProposalChunker":
        cfg = config.get("chunking", {})
        return cls(
            max_chunk_size=cfg.get("max_chunk_size", MAX_CHUNK_SIZE),
            overlap=cfg.get("overlap", OVERLAP),
            min_chunk_size=cfg.get("min_chunk_size"),
        )

    def chunk_document(self, doc: Document) -> list[Chunk]:
        spans = chunk_spans(doc.content, self.max_chunk_size, self.overlap, self.min_chunk_size)
        openings = section_openings(self.extractor.extract(doc.content), self.prefix_chars)

        chunks = []
        for index, (start, end) in enumerate(spans):
            text = doc.content[start:end]
            chunks.append(
                Chunk(
                    chunk_id=f"{doc.doc_id}-{index}",
                    doc_id=doc.doc_id,
                    chunk_index=index,
                    text=text,
                    start=start,
                    end=end,
                    token_estimate=estimate_tokens(text),
                    section=label_window(start, end, openings),
                    metadata=doc.metadata,
                )
            )

        labelled = sum(1 for c in chunks if c.section)
        logger.debug(
            f"[Chunker] {doc.doc_id} | {doc.metadata.filename} | "
            f"{doc.char_count} chars -> {len(chunks)} chunk(s), {labelled} labelled"
        )
        return chunks

    def chunk_batch(self, docs: list[Document]) -> list[Chunk]:
        """Chunk a list of Documents. Returns flat list of all chunks."""
        all_chunks: list[Chunk] = []
        for doc in docs:
            all_chunks.extend(self.chunk_document(doc))
        return all_chunks
