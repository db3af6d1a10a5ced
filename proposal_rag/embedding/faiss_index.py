"""
FAISS Proposal Index
---------------------
Local stand-in for the external vector store. Wraps faiss.IndexFlatIP
(inner product == cosine similarity after L2 normalisation) and keeps:
  - A parallel list of Chunk objects (same ordering as FAISS row IDs, so row
    id doubles as insertion order for tie-breaking)
  - A BM25 keyword index (rank_bm25), rebuilt lazily after inserts, used by
    the keyword fallback path

Inserts are per chunk and report failures instead of raising, so one bad
vector never aborts an ingestion batch. All mutation and search happens
under a lock; ingestion embeds in parallel and inserts from one thread.

Persistence:
  - FAISS index    -> <index_dir>/faiss.index
  - Chunk records  -> <index_dir>/chunks.json
  - Manifest       -> <index_dir>/index_manifest.json
"""
from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Optional

import faiss
import numpy as np
from langsmith import traceable
from loguru import logger
from rank_bm25 import BM25Okapi

from proposal_rag.chunking.schemas import Chunk, ChunkFilters
from proposal_rag.embedding.embedder import DIMENSIONS, l2_normalise
from proposal_rag.errors import RetrievalUnavailable
from proposal_rag.retrieval.index import InsertResult, ScoredChunk
from proposal_rag.utils.helpers import load_json, save_json

INDEX_DIR = Path("data/index")


def _bm25_tokens(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop single characters."""
    normalised = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return [t for t in normalised.split() if len(t) > 1]


class ProposalIndex:
    """
    Dense (FAISS) + sparse (BM25) index over proposal chunks.

    Usage:
        index = ProposalIndex(dimensions=1536)
        index.insert(chunk, vector)
        hits = index.query(query_vec, k=5, min_similarity=0.2)
        index.save(Path("data/index"))
    """

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.faiss_index: faiss.IndexFlatIP = faiss.IndexFlatIP(dimensions)
        self.chunks: list[Chunk] = []
        self._doc_ids: set[str] = set()
        self._chunk_ids: set[str] = set()
        self._bm25: Optional[BM25Okapi] = None
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self.chunks)

    # --- Insert ---------------------------------------------------------------

    def insert(self, chunk: Chunk, embedding: np.ndarray) -> InsertResult:
        vector = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if vector.shape[0] != self.dimensions:
            reason = f"embedding has {vector.shape[0]} dims, index expects {self.dimensions}"
            logger.warning(f"[ProposalIndex] Rejected {chunk.chunk_id}: {reason}")
            return InsertResult(chunk.chunk_id, False, reason)
        if not np.all(np.isfinite(vector)):
            logger.warning(f"[ProposalIndex] Rejected {chunk.chunk_id}: non-finite embedding")
            return InsertResult(chunk.chunk_id, False, "embedding contains NaN or inf")

        row = np.ascontiguousarray(l2_normalise(vector).reshape(1, -1), dtype=np.float32)
        with self._lock:
            self.faiss_index.add(row)
            self.chunks.append(chunk)
            self._doc_ids.add(chunk.doc_id)
            self._chunk_ids.add(chunk.chunk_id)
            self._bm25 = None
        return InsertResult(chunk.chunk_id, True)

    def has_document(self, doc_id: str) -> bool:
        with self._lock:
            return doc_id in self._doc_ids

    def has_chunk(self, chunk_id: str) -> bool:
        with self._lock:
            return chunk_id in self._chunk_ids

    # --- Search ---------------------------------------------------------------

    @traceable(name="index_query", run_type="retriever")
    def query(
        self,
        embedding: np.ndarray,
        k: int = 5,
        filters: Optional[ChunkFilters] = None,
        min_similarity: float = 0.0,
    ) -> list[ScoredChunk]:
        """
        Dense (semantic) search.

        Scores every row, applies filters and the similarity floor, then
        sorts by (score desc, row asc) so equal scores keep insertion order.
        """
        if k <= 0:
            return []
        qv = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if qv.shape[0] != self.dimensions:
            raise RetrievalUnavailable(
                f"query embedding has {qv.shape[0]} dims, index expects {self.dimensions}"
            )
        qv = np.ascontiguousarray(l2_normalise(qv).reshape(1, -1), dtype=np.float32)

        with self._lock:
            total = self.faiss_index.ntotal
            if total == 0:
                return []
            scores, indices = self.faiss_index.search(qv, total)
            chunks = list(self.chunks)

        candidates = []
        for score, idx in zip(scores[0], indices[0]):
            if idx < 0 or float(score) < min_similarity:
                continue
            chunk = chunks[idx]
            if filters and not filters.matches(chunk):
                continue
            candidates.append((float(score), int(idx), chunk))

        candidates.sort(key=lambda c: (-c[0], c[1]))
        return [
            ScoredChunk(chunk=chunk, score=score, rank=rank)
            for rank, (score, _, chunk) in enumerate(candidates[:k], start=1)
        ]

    def search_keywords(
        self, text: str, k: int = 5, filters: Optional[ChunkFilters] = None
    ) -> list[ScoredChunk]:
        """Sparse (BM25 keyword) search. Zero-score chunks are never returned."""
        tokens = _bm25_tokens(text)
        if k <= 0 or not tokens:
            return []
        with self._lock:
            if not self.chunks:
                return []
            if self._bm25 is None:
                self._bm25 = BM25Okapi(
                    [_bm25_tokens(f"{c.client} {c.filename} {c.text}") for c in self.chunks]
                )
            scores = self._bm25.get_scores(tokens)
            chunks = list(self.chunks)

        candidates = [
            (float(scores[i]), i, chunk)
            for i, chunk in enumerate(chunks)
            if scores[i] > 0 and (not filters or filters.matches(chunk))
        ]
        candidates.sort(key=lambda c: (-c[0], c[1]))
        return [
            ScoredChunk(chunk=chunk, score=score, rank=rank)
            for rank, (score, _, chunk) in enumerate(candidates[:k], start=1)
        ]

    # --- Persistence ----------------------------------------------------------

    def save(self, index_dir: Path = INDEX_DIR) -> None:
        """Persist FAISS index + chunk records to disk."""
        index_dir = Path(index_dir)
        index_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            faiss.write_index(self.faiss_index, str(index_dir / "faiss.index"))
            save_json([c.model_dump(mode="json") for c in self.chunks], index_dir / "chunks.json")
            save_json(
                {
                    "total_vectors": self.faiss_index.ntotal,
                    "dimensions": self.dimensions,
                    "total_chunks": len(self.chunks),
                    "documents": len(self._doc_ids),
                },
                index_dir / "index_manifest.json",
            )
        logger.info(f"[ProposalIndex] Saved {len(self.chunks)} chunks -> {index_dir}")

    @classmethod
    def load(cls, index_dir: Path = INDEX_DIR) -> "ProposalIndex":
        """Load a persisted index from disk."""
        index_dir = Path(index_dir)
        faiss_index = faiss.read_index(str(index_dir / "faiss.index"))
        instance = cls(dimensions=faiss_index.d)
        instance.faiss_index = faiss_index
        instance.chunks = [Chunk(**c) for c in load_json(index_dir / "chunks.json")]
        instance._doc_ids = {c.doc_id for c in instance.chunks}
        instance._chunk_ids = {c.chunk_id for c in instance.chunks}
        logger.info(
            f"[ProposalIndex] Loaded: {instance.faiss_index.ntotal} vectors, "
            f"{len(instance.chunks)} chunks"
        )
        return instance

    @classmethod
    def load_or_create(cls, index_dir: Path = INDEX_DIR, dimensions: int = DIMENSIONS) -> "ProposalIndex":
        if (Path(index_dir) / "faiss.index").exists():
            return cls.load(index_dir)
        logger.info(f"[ProposalIndex] No index at {index_dir}, starting empty")
        return cls(dimensions=dimensions)
