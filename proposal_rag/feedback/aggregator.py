"""
Feedback Aggregator
--------------------
Pure functions over a collection of FeedbackRecords. Nothing here reads or
writes the store; callers pass the records in (see FeedbackStore.load).

Records are put into a canonical order (created_at, then id) before any
bounded sample is taken, so every view is independent of the order the
store returned the rows in.

Views:
  global_stats      -- good / bad counts and percentages (0 and has_data=False
                       for an empty set, never a division error)
  query_type_stats  -- good / bad / success rate per QueryType; records with no
                       recognisable type land in UNKNOWN
  chunk_problems    -- per chunk id cited by bad-rated records: problem count plus
                       the most recent few questions and reasons, ranked by
                       (count desc, chunk id asc)
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Optional

from proposal_rag.schemas import FeedbackRecord, QueryType, Rating

SAMPLE_SIZE = 3
QUESTION_PREVIEW_CHARS = 50


def ordered(records: Iterable[FeedbackRecord]) -> list[FeedbackRecord]:
    return sorted(records, key=lambda r: (r.created_at, r.id))


# --- Global --------------------------------------------------------------------

@dataclass
class GlobalStats:
    total: int
    good: int
    bad: int

    @property
    def has_data(self) -> bool:
        return self.total > 0

    @property
    def good_pct(self) -> float:
        return self.good / self.total * 100 if self.total else 0.0

    @property
    def bad_pct(self) -> float:
        # complement keeps good_pct + bad_pct == 100 exactly
        return 100.0 - self.good_pct if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "good": self.good,
            "bad": self.bad,
            "good_pct": round(self.good_pct, 1),
            "bad_pct": round(self.bad_pct, 1),
            "has_data": self.has_data,
        }


def global_stats(records: Iterable[FeedbackRecord]) -> GlobalStats:
    good = bad = 0
    for r in records:
        if r.rating == Rating.GOOD:
            good += 1
        else:
            bad += 1
    return GlobalStats(total=good + bad, good=good, bad=bad)


# --- Per query type ------------------------------------------------------------

@dataclass
class QueryTypeStats:
    query_type: QueryType
    good: int = 0
    bad: int = 0
    recent_reasons: deque = field(default_factory=lambda: deque(maxlen=SAMPLE_SIZE))

    @property
    def total(self) -> int:
        return self.good + self.bad

    @property
    def success_rate(self) -> float:
        return self.good / self.total if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "query_type": self.query_type.value,
            "total": self.total,
            "good": self.good,
            "bad": self.bad,
            "success_rate": round(self.success_rate, 4),
            "recent_reasons": list(self.recent_reasons),
        }


def query_type_stats(
    records: Iterable[FeedbackRecord], sample_size: int = SAMPLE_SIZE
) -> list[QueryTypeStats]:
    """One entry per query type seen, ordered by total desc then type name."""
    stats: dict[QueryType, QueryTypeStats] = {}
    for r in ordered(records):
        entry = stats.get(r.query_type)
        if entry is None:
            entry = stats[r.query_type] = QueryTypeStats(
                r.query_type, recent_reasons=deque(maxlen=sample_size)
            )
        if r.rating == Rating.GOOD:
            entry.good += 1
        else:
            entry.bad += 1
        if r.reason:
            entry.recent_reasons.append(r.reason)
    return sorted(stats.values(), key=lambda s: (-s.total, s.query_type.value))


# --- Per chunk -----------------------------------------------------------------

@dataclass
class ChunkProblem:
    chunk_id: str
    count: int = 0
    questions: deque = field(default_factory=lambda: deque(maxlen=SAMPLE_SIZE))
    reasons: deque = field(default_factory=lambda: deque(maxlen=SAMPLE_SIZE))

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "bad_count": self.count,
            "sample_questions": list(self.questions),
            "sample_reasons": list(self.reasons),
        }


def chunk_problems(
    records: Iterable[FeedbackRecord],
    sample_size: int = SAMPLE_SIZE,
    limit: Optional[int] = None,
) -> list[ChunkProblem]:
    """
    Count bad ratings per cited chunk.

    A chunk cited twice by the same record counts once for that record.
    Counting every occurrence instead would let one record that repeats
    an id inflate that chunk's count.
    Samples keep the newest `sample_size` entries (oldest evicted first).
    """
    problems: dict[str, ChunkProblem] = {}
    for r in ordered(records):
        if r.rating != Rating.BAD:
            continue
        for chunk_id in dict.fromkeys(r.chunk_ids):
            entry = problems.get(chunk_id)
            if entry is None:
                entry = problems[chunk_id] = ChunkProblem(
                    chunk_id,
                    questions=deque(maxlen=sample_size),
                    reasons=deque(maxlen=sample_size),
                )
            entry.count += 1
            entry.questions.append(r.question[:QUESTION_PREVIEW_CHARS])
            if r.reason:
                entry.reasons.append(r.reason)

    ranked = sorted(problems.values(), key=lambda p: (-p.count, p.chunk_id))
    return ranked[:limit] if limit is not None else ranked


# --- Combined ------------------------------------------------------------------

@dataclass
class FeedbackSummary:
    stats: GlobalStats
    query_types: list[QueryTypeStats]
    chunks: list[ChunkProblem]
    malformed: int = 0

    def to_dict(self) -> dict:
        return {
            "stats": self.stats.to_dict(),
            "query_types": [q.to_dict() for q in self.query_types],
            "problem_chunks": [c.to_dict() for c in self.chunks],
            "malformed_records": self.malformed,
        }


def summarize(
    records: Iterable[FeedbackRecord], malformed: int = 0, sample_size: int = SAMPLE_SIZE
) -> FeedbackSummary:
    records = list(records)
    return FeedbackSummary(
        stats=global_stats(records),
        query_types=query_type_stats(records, sample_size),
        chunks=chunk_problems(records, sample_size),
        malformed=malformed,
    )
