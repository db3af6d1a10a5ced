"""
Answer Orchestrator
--------------------
Runs one question through the answer lifecycle:

    NO_QUERY
        |  embed the question (EmbeddingUnavailable on failure, nothing retrieved)
        v
    EMBEDDED
        |  index.query(k=top_k, min_similarity); optional BM25 keyword fallback
        |  (RetrievalUnavailable on failure)
        v
    RETRIEVED --(zero candidates)--> EMPTY: fixed "no match" answer, no sources,
        |                                   completion service never called
        v
    SYNTHESIZING
        |  completion.complete(grounded messages) (SynthesisUnavailable on failure)
        v
    DONE: answer + sources in retrieval rank order

The three external calls are sequential; each depends on the previous result.
answer() is decorated with @traceable so LangSmith captures the whole chain.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from langsmith import traceable
from loguru import logger

from proposal_rag.chunking.schemas import ChunkFilters
from proposal_rag.embedding.embedder import TextEmbedder
from proposal_rag.errors import (
    EmbeddingUnavailable,
    InputError,
    RetrievalUnavailable,
    SynthesisUnavailable,
)
from proposal_rag.generation.generator import CompletionClient, build_messages
from proposal_rag.generation.prompts import NO_MATCH_RESPONSE
from proposal_rag.generation.query_types import detect_query_type
from proposal_rag.retrieval.index import RetrievalIndex, ScoredChunk
from proposal_rag.schemas import QueryType

TOP_K = 5
MIN_SIMILARITY = 0.2


class AnswerState(str, Enum):
    NO_QUERY = "no_query"
    EMBEDDED = "embedded"
    RETRIEVED = "retrieved"
    EMPTY = "empty"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


# ---------------------------------------------------------------------------
# Result schema
# ---------------------------------------------------------------------------

@dataclass
class AnswerResult:
    """
    Output of one answer() call. Timing fields are in milliseconds.

    sources follow retrieval rank order; chunk_ids is the parallel list of
    cited chunk ids that feedback records are keyed by.
    """

    query: str
    answer: str
    sources: list[dict]
    chunk_ids: list[str]
    query_type: QueryType
    state: AnswerState
    retrieval_mode: str = "semantic"   # semantic | keyword | none
    model: str = ""

    embedding_ms: float = 0.0
    retrieval_ms: float = 0.0
    generation_ms: float = 0.0

    @property
    def grounded(self) -> bool:
        return self.state == AnswerState.DONE and bool(self.sources)

    @property
    def total_ms(self) -> float:
        return self.embedding_ms + self.retrieval_ms + self.generation_ms

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "answer": self.answer,
            "sources": self.sources,
            "chunk_ids": self.chunk_ids,
            "query_type": self.query_type.value,
            "state": self.state.value,
            "retrieval_mode": self.retrieval_mode,
            "model": self.model,
            "latency_ms": {
                "embedding": round(self.embedding_ms, 1),
                "retrieval": round(self.retrieval_ms, 1),
                "generation": round(self.generation_ms, 1),
                "total": round(self.total_ms, 1),
            },
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class AnswerOrchestrator:
    """
    Embed -> retrieve -> (synthesize | no match).

    Usage:
        orchestrator = AnswerOrchestrator(embedder, index, completion)
        result = orchestrator.answer("How do we usually run discovery workshops?")
        print(result.answer)
    """

    def __init__(
        self,
        embedder: TextEmbedder,
        index: RetrievalIndex,
        completion: CompletionClient,
        top_k: int = TOP_K,
        min_similarity: float = MIN_SIMILARITY,
        keyword_fallback: bool = True,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.completion = completion
        self.top_k = top_k
        self.min_similarity = min_similarity
        self.keyword_fallback = keyword_fallback

    @classmethod
    def from_config(
        cls,
        config: dict,
        embedder: TextEmbedder,
        index: RetrievalIndex,
        completion: CompletionClient,
    ) -> "AnswerOrchestrator":
        cfg = config.get("retrieval", {})
        return cls(
            embedder=embedder,
            index=index,
            completion=completion,
            top_k=cfg.get("top_k", TOP_K),
            min_similarity=cfg.get("min_similarity", MIN_SIMILARITY),
            keyword_fallback=cfg.get("keyword_fallback", True),
        )

    # --- Steps ----------------------------------------------------------------

    def _embed(self, query: str):
        try:
            return self.embedder.embed_query(query)
        except EmbeddingUnavailable:
            raise
        except Exception as exc:
            raise EmbeddingUnavailable(str(exc)) from exc

    def _retrieve(
        self, query: str, embedding, filters: Optional[ChunkFilters]
    ) -> tuple[list[ScoredChunk], str]:
        try:
            candidates = self.index.query(
                embedding, k=self.top_k, filters=filters, min_similarity=self.min_similarity
            )
            if candidates:
                return candidates, "semantic"
            if self.keyword_fallback:
                candidates = self.index.search_keywords(query, k=self.top_k, filters=filters)
                if candidates:
                    logger.info(f"[Orchestrator] Semantic search empty, {len(candidates)} keyword hit(s)")
                    return candidates, "keyword"
            return [], "none"
        except RetrievalUnavailable:
            raise
        except Exception as exc:
            raise RetrievalUnavailable(str(exc)) from exc

    def _synthesize(self, messages: list[dict]) -> str:
        try:
            return self.completion.complete(messages)
        except SynthesisUnavailable:
            raise
        except Exception as exc:
            raise SynthesisUnavailable(str(exc)) from exc

    # --- Public API -----------------------------------------------------------

    @traceable(name="answer_question", run_type="chain")
    def answer(self, query: str, filters: Optional[ChunkFilters] = None) -> AnswerResult:
        if not query or not query.strip():
            raise InputError("Query must not be empty")
        query = query.strip()
        query_type = detect_query_type(query)

        t0 = time.perf_counter()
        embedding = self._embed(query)
        t1 = time.perf_counter()

        candidates, mode = self._retrieve(query, embedding, filters)
        state = AnswerState.RETRIEVED
        t2 = time.perf_counter()
        logger.debug(f"[Orchestrator] {state.value} | {len(candidates)} candidate(s) via {mode}")

        if not candidates:
            logger.info(f"[Orchestrator] No match for {query[:60]!r} ({query_type.value})")
            return AnswerResult(
                query=query,
                answer=NO_MATCH_RESPONSE,
                sources=[],
                chunk_ids=[],
                query_type=query_type,
                state=AnswerState.EMPTY,
                retrieval_mode=mode,
                embedding_ms=(t1 - t0) * 1000,
                retrieval_ms=(t2 - t1) * 1000,
            )

        state = AnswerState.SYNTHESIZING
        messages = build_messages(query, candidates, query_type)
        logger.debug(f"[Orchestrator] {state.value} | {len(messages)} message(s)")
        answer = self._synthesize(messages)
        t3 = time.perf_counter()

        result = AnswerResult(
            query=query,
            answer=answer,
            sources=[
                {"client": c.chunk.client, "filename": c.chunk.filename, "content": c.chunk.text}
                for c in candidates
            ],
            chunk_ids=[c.chunk.chunk_id for c in candidates],
            query_type=query_type,
            state=AnswerState.DONE,
            retrieval_mode=mode,
            model=getattr(self.completion, "model", ""),
            embedding_ms=(t1 - t0) * 1000,
            retrieval_ms=(t2 - t1) * 1000,
            generation_ms=(t3 - t2) * 1000,
        )
        logger.info(
            f"[Orchestrator] Answered {query_type.value} query | {len(candidates)} source(s) | "
            f"{result.total_ms:.0f} ms"
        )
        return result
