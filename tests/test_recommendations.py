"""Recommendation rules over aggregated feedback."""
from datetime import datetime, timedelta, timezone

from proposal_rag.feedback.aggregator import summarize
from proposal_rag.feedback.recommendations import (
    GENERAL_RECOMMENDATIONS,
    Severity,
    generate_recommendations,
    recommendations_from_config,
)
from proposal_rag.schemas import FeedbackRecord, QueryType, Rating

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def record(rating, i, query_type=QueryType.GENERAL, chunk_ids=(), reason=None) -> FeedbackRecord:
    return FeedbackRecord(
        id=f"r{i:03d}",
        question=f"question {i}",
        rating=Rating(rating),
        query_type=query_type,
        chunk_ids=list(chunk_ids),
        reason=reason,
        created_at=T0 + timedelta(minutes=i),
    )


def by_category(recs, category):
    return [r for r in recs if r.category == category]


class TestGenerateRecommendations:

    def test_empty_yields_only_general(self):
        recs = generate_recommendations(summarize([]))
        assert [r.message for r in recs] == GENERAL_RECOMMENDATIONS
        assert all(r.severity == Severity.INFO for r in recs)

    def test_more_bad_than_good_is_critical(self):
        records = [record("bad", i) for i in range(8)] + [record("good", 8 + i) for i in range(2)]
        recs = generate_recommendations(summarize(records))
        [critical] = by_category(recs, "overall")
        assert critical.severity == Severity.CRITICAL
        assert critical.message.startswith("System has more bad than good feedback")
        assert recs[0] is critical

    def test_balanced_feedback_not_critical(self):
        records = [record("bad", 0), record("good", 1)]
        assert by_category(generate_recommendations(summarize(records)), "overall") == []

    def test_weak_query_type_flagged(self):
        records = [record("good", 0, QueryType.METHODOLOGY)] + [
            record("bad", i, QueryType.METHODOLOGY, reason=f"reason {i}") for i in range(1, 5)
        ]
        [warning] = by_category(generate_recommendations(summarize(records)), "query_type")
        assert warning.severity == Severity.WARNING
        assert warning.subject == "methodology"
        assert "20.0%" in warning.message
        assert "5 ratings" in warning.message
        assert any("reason 4" in action for action in warning.actions)

    def test_too_few_samples_not_flagged(self):
        records = [record("bad", 0, QueryType.PRICING), record("bad", 1, QueryType.PRICING)]
        assert by_category(generate_recommendations(summarize(records)), "query_type") == []

    def test_exactly_half_not_flagged(self):
        records = [record("good", i, QueryType.RISKS) for i in range(2)] + [
            record("bad", 2 + i, QueryType.RISKS) for i in range(2)
        ]
        assert by_category(generate_recommendations(summarize(records)), "query_type") == []

    def test_problem_chunks_capped_at_five(self):
        records = []
        for n in range(7):
            records += [record("bad", n * 10 + k, chunk_ids=[f"chunk-{n}"]) for k in range(2)]
        records.append(record("bad", 500, chunk_ids=["single"]))
        chunks = by_category(generate_recommendations(summarize(records)), "chunk")
        assert len(chunks) == 5
        assert [c.subject for c in chunks] == [f"chunk-{n}" for n in range(5)]
        assert "single" not in {c.subject for c in chunks}

    def test_general_items_always_last(self):
        records = [record("bad", i) for i in range(4)]
        recs = generate_recommendations(summarize(records))
        assert [r.message for r in recs[-5:]] == GENERAL_RECOMMENDATIONS

    def test_thresholds_from_config(self):
        records = [record("bad", 0, QueryType.PRICING), record("good", 1, QueryType.PRICING)]
        config = {"feedback": {"min_query_type_samples": 2, "success_threshold": 0.6}}
        recs = recommendations_from_config(summarize(records), config)
        assert [r.subject for r in by_category(recs, "query_type")] == ["pricing"]
