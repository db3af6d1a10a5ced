"""
Recommendation rules over a FeedbackSummary.

Deterministic and stateless:
  - more bad than good overall                -> one critical item
  - query type with >= 3 ratings and < 50% ok -> one warning per type
  - chunk with >= 2 bad ratings               -> rewrite/split/remove, top 5 by count
  - always                                    -> the fixed general checklist

An empty summary yields only the general checklist.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from proposal_rag.feedback.aggregator import FeedbackSummary

MIN_QUERY_TYPE_SAMPLES = 3
SUCCESS_THRESHOLD = 0.5
PROBLEM_CHUNK_MIN = 2
TOP_PROBLEM_CHUNKS = 5

GENERAL_RECOMMENDATIONS = [
    "Monitor feedback daily for trends",
    "Set up alerts for when bad feedback exceeds 40%",
    "Regularly review and update prompts",
    "Consider A/B testing different chunking strategies",
    "Implement automatic chunk quality scoring",
]


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Recommendation:
    severity: Severity
    category: str          # overall | query_type | chunk | general
    message: str
    subject: Optional[str] = None
    actions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "severity": self.severity.value,
            "category": self.category,
            "message": self.message,
            "subject": self.subject,
            "actions": self.actions,
        }


def generate_recommendations(
    summary: FeedbackSummary,
    min_query_type_samples: int = MIN_QUERY_TYPE_SAMPLES,
    success_threshold: float = SUCCESS_THRESHOLD,
    problem_chunk_min: int = PROBLEM_CHUNK_MIN,
    top_problem_chunks: int = TOP_PROBLEM_CHUNKS,
) -> list[Recommendation]:
    recs: list[Recommendation] = []

    stats = summary.stats
    if stats.bad > stats.good:
        recs.append(
            Recommendation(
                Severity.CRITICAL,
                "overall",
                f"System has more bad than good feedback ({stats.bad} bad vs {stats.good} good)",
                actions=[
                    "Immediate action needed on semantic search quality",
                    "Consider lowering the similarity threshold",
                    "Review chunking strategy",
                ],
            )
        )

    for qt in summary.query_types:
        if qt.total >= min_query_type_samples and qt.success_rate < success_threshold:
            actions = [
                "Review the prompt format for this query type",
                "Check whether query type detection is accurate",
            ]
            if qt.recent_reasons:
                actions.append(f"Common issues: {'; '.join(qt.recent_reasons)}")
            recs.append(
                Recommendation(
                    Severity.WARNING,
                    "query_type",
                    f"{qt.query_type.value} needs improvement "
                    f"({qt.success_rate * 100:.1f}% success over {qt.total} ratings)",
                    subject=qt.query_type.value,
                    actions=actions,
                )
            )

    flagged = [c for c in summary.chunks if c.count >= problem_chunk_min][:top_problem_chunks]
    for chunk in flagged:
        recs.append(
            Recommendation(
                Severity.WARNING,
                "chunk",
                f"Chunk {chunk.chunk_id}: {chunk.count} bad ratings",
                subject=chunk.chunk_id,
                actions=["Consider rewriting, splitting, or removing this chunk"],
            )
        )

    recs.extend(Recommendation(Severity.INFO, "general", msg) for msg in GENERAL_RECOMMENDATIONS)
    return recs


def recommendations_from_config(summary: FeedbackSummary, config: dict) -> list[Recommendation]:
    cfg = config.get("feedback", {})
    return generate_recommendations(
        summary,
        min_query_type_samples=cfg.get("min_query_type_samples", MIN_QUERY_TYPE_SAMPLES),
        success_threshold=cfg.get("success_threshold", SUCCESS_THRESHOLD),
        problem_chunk_min=cfg.get("problem_chunk_min", PROBLEM_CHUNK_MIN),
        top_problem_chunks=cfg.get("top_problem_chunks", TOP_PROBLEM_CHUNKS),
    )
