"""Feedback aggregation: global stats, per query type, per chunk."""
import random
from datetime import datetime, timedelta, timezone

import pytest

from proposal_rag.feedback.aggregator import (
    chunk_problems,
    global_stats,
    query_type_stats,
    summarize,
)
from proposal_rag.feedback.store import parse_feedback_rows
from proposal_rag.schemas import FeedbackRecord, QueryType, Rating

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def record(
    rating: str,
    minute: int = 0,
    query_type=QueryType.METHODOLOGY,
    chunk_ids=(),
    reason=None,
    question="How do we usually run discovery workshops?",
) -> FeedbackRecord:
    return FeedbackRecord(
        id=f"r{minute:04d}",
        question=question,
        answer="answer",
        rating=Rating(rating),
        query_type=query_type,
        chunk_ids=list(chunk_ids),
        reason=reason,
        created_at=T0 + timedelta(minutes=minute),
    )


# =========================================================================
# GLOBAL
# =========================================================================
class TestGlobalStats:

    def test_empty(self):
        stats = global_stats([])
        assert stats.total == 0
        assert stats.good_pct == 0.0
        assert stats.bad_pct == 0.0
        assert stats.has_data is False

    def test_counts_and_percentages(self):
        records = [record("good", i) for i in range(2)] + [record("bad", 10 + i) for i in range(8)]
        stats = global_stats(records)
        assert (stats.total, stats.good, stats.bad) == (10, 2, 8)
        assert stats.good_pct == pytest.approx(20.0)
        assert stats.bad_pct == pytest.approx(80.0)

    def test_percentages_sum_to_100(self):
        records = [record("good", 0), record("bad", 1), record("bad", 2)]
        stats = global_stats(records)
        assert stats.good_pct + stats.bad_pct == pytest.approx(100.0)

    def test_to_dict_rounds(self):
        data = global_stats([record("good", 0), record("bad", 1), record("bad", 2)]).to_dict()
        assert data["good_pct"] == 33.3
        assert data["bad_pct"] == 66.7


# =========================================================================
# PER QUERY TYPE
# =========================================================================
class TestQueryTypeStats:

    def test_success_rate(self):
        records = [record("good", 0)] + [record("bad", i) for i in range(1, 5)]
        [entry] = query_type_stats(records)
        assert entry.query_type == QueryType.METHODOLOGY
        assert entry.total == 5
        assert entry.success_rate == pytest.approx(0.2)

    def test_unknown_bucket(self):
        records = [
            record("good", 0, query_type=None),
            record("bad", 1, query_type="not-a-type"),
            record("bad", 2, query_type=QueryType.PRICING),
        ]
        stats = {s.query_type: s for s in query_type_stats(records)}
        assert stats[QueryType.UNKNOWN].total == 2
        assert stats[QueryType.PRICING].total == 1

    def test_ordering_by_total_then_name(self):
        records = [
            record("good", 0, query_type=QueryType.RISKS),
            record("good", 1, query_type=QueryType.PRICING),
            record("bad", 2, query_type=QueryType.OUTCOMES),
            record("bad", 3, query_type=QueryType.OUTCOMES),
        ]
        assert [s.query_type for s in query_type_stats(records)] == [
            QueryType.OUTCOMES,
            QueryType.PRICING,
            QueryType.RISKS,
        ]

    def test_keeps_last_three_reasons(self):
        records = [record("bad", i, reason=f"reason {i}") for i in range(5)]
        [entry] = query_type_stats(records)
        assert list(entry.recent_reasons) == ["reason 2", "reason 3", "reason 4"]

    def test_blank_reasons_not_sampled(self):
        records = [record("bad", 0, reason="too vague"), record("bad", 1, reason=None)]
        [entry] = query_type_stats(records)
        assert list(entry.recent_reasons) == ["too vague"]


# =========================================================================
# PER CHUNK
# =========================================================================
class TestChunkProblems:

    def test_only_bad_records_count(self):
        records = [
            record("good", 0, chunk_ids=["c1"]),
            record("bad", 1, chunk_ids=["c1", "c2"]),
        ]
        problems = {p.chunk_id: p.count for p in chunk_problems(records)}
        assert problems == {"c1": 1, "c2": 1}

    def test_ranking_count_then_id(self):
        records = [
            record("bad", 0, chunk_ids=["c3", "c1"]),
            record("bad", 1, chunk_ids=["c3", "c2"]),
            record("bad", 2, chunk_ids=["c2"]),
            record("bad", 3, chunk_ids=["c9"]),
        ]
        assert [(p.chunk_id, p.count) for p in chunk_problems(records)] == [
            ("c2", 2),
            ("c3", 2),
            ("c1", 1),
            ("c9", 1),
        ]

    def test_duplicate_citation_counts_once(self):
        problems = chunk_problems([record("bad", 0, chunk_ids=["c1", "c1", "c1"])])
        assert problems[0].count == 1

    def test_question_preview_truncated(self):
        question = "x" * 80
        [problem] = chunk_problems([record("bad", 0, chunk_ids=["c1"], question=question)])
        assert list(problem.questions) == ["x" * 50]

    def test_samples_evict_oldest(self):
        records = [
            record("bad", i, chunk_ids=["c1"], question=f"question {i}", reason=f"reason {i}")
            for i in range(5)
        ]
        [problem] = chunk_problems(records)
        assert problem.count == 5
        assert list(problem.questions) == ["question 2", "question 3", "question 4"]
        assert list(problem.reasons) == ["reason 2", "reason 3", "reason 4"]

    def test_limit(self):
        records = [record("bad", i, chunk_ids=[f"c{i}"]) for i in range(6)]
        assert len(chunk_problems(records, limit=3)) == 3


# =========================================================================
# ORDER INDEPENDENCE
# =========================================================================
class TestOrderIndependence:

    def test_summary_invariant_under_permutation(self):
        records = [
            record(
                "bad" if i % 3 else "good",
                i,
                query_type=[QueryType.METHODOLOGY, QueryType.PRICING][i % 2],
                chunk_ids=[f"c{i % 4}", f"c{(i + 1) % 4}"],
                reason=f"reason {i}",
                question=f"question {i}",
            )
            for i in range(20)
        ]
        expected = summarize(records).to_dict()
        shuffled = list(records)
        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            assert summarize(shuffled).to_dict() == expected

    def test_mixed_naive_and_aware_timestamps(self):
        parsed = parse_feedback_rows(
            [
                {"id": "late", "question": "second", "rating": "bad", "chunk_ids": '["c1"]',
                 "created_at": "2025-01-02T00:00:00+00:00"},
                {"id": "early", "question": "first", "rating": "bad", "chunk_ids": '["c1"]',
                 "created_at": "2025-01-01T00:00:00"},
                {"id": "now", "question": "third", "rating": "good", "chunk_ids": "[]"},
            ]
        )
        assert parsed.malformed == []
        summary = summarize(parsed.records)
        assert summary.stats.total == 3
        [problem] = summary.chunks
        assert problem.count == 2
        assert list(problem.questions) == ["first", "second"]

    def test_summary_carries_malformed_count(self):
        summary = summarize([], malformed=2)
        assert summary.malformed == 2
        assert summary.to_dict()["malformed_records"] == 2
        assert summary.query_types == []
        assert summary.chunks == []
