"""
Retrieval index contract.

The orchestrator and ingestion pipeline talk to the vector store only through
this narrow surface, so the store can be the bundled FAISS adapter, a hosted
vector database, or a stub in tests.

  insert(chunk, embedding)          -> InsertResult (never raises for one bad chunk)
  query(embedding, k, filters)      -> ranked ScoredChunks, len <= k
  search_keywords(text, k, filters) -> ranked ScoredChunks, len <= k
  has_document(doc_id)              -> bool

Ranking contract: descending score, ties broken by insertion order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

from proposal_rag.chunking.schemas import Chunk, ChunkFilters


@dataclass
class InsertResult:
    chunk_id: str
    ok: bool
    reason: str = ""


@dataclass
class ScoredChunk:
    chunk: Chunk
    score: float
    rank: int = 0

    def to_dict(self) -> dict:
        return {**self.chunk.citation(), "score": round(self.score, 4), "rank": self.rank}


class RetrievalIndex(Protocol):
    def insert(self, chunk: Chunk, embedding: np.ndarray) -> InsertResult: ...

    def query(
        self,
        embedding: np.ndarray,
        k: int = 5,
        filters: Optional[ChunkFilters] = None,
        min_similarity: float = 0.0,
    ) -> list[ScoredChunk]: ...

    def search_keywords(
        self, text: str, k: int = 5, filters: Optional[ChunkFilters] = None
    ) -> list[ScoredChunk]: ...

    def has_document(self, doc_id: str) -> bool: ...

    def has_chunk(self, chunk_id: str) -> bool: ...
