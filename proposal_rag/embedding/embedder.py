"""
Proposal Embedding Client
--------------------------
Turns proposal chunks, questions and reusable blocks into unit-length
vectors with OpenAI's embedding endpoint.

  - Requests are split into batches of `embedding.batch_size` inputs
  - Each batch is retried by tenacity; once retries run out the failure
    surfaces as EmbeddingUnavailable and no vector is returned
  - `embedding.timeout_s` is handed to the SDK client as its request timeout
  - Token usage is tallied per instance (see usage_summary)

Anything with `dimensions`, `embed_texts` and `embed_query` satisfies
TextEmbedder; the orchestrator, ingestion pipeline and block library only
depend on that protocol.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

import numpy as np
from langsmith import traceable
from loguru import logger
from openai import OpenAI, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential

from proposal_rag.errors import EmbeddingUnavailable

MODEL = "text-embedding-3-small"
DIMENSIONS = 1536
BATCH_SIZE = 256
TIMEOUT_S = 30.0
USD_PER_MILLION_TOKENS = 0.020


class TextEmbedder(Protocol):
    dimensions: int

    def embed_texts(self, texts: list[str]) -> np.ndarray: ...

    def embed_query(self, text: str) -> np.ndarray: ...


def l2_normalise(matrix: np.ndarray) -> np.ndarray:
    """Scale a vector, or each row of a matrix, to unit length. Zero rows stay zero."""
    matrix = np.asarray(matrix, dtype=np.float32)
    if matrix.ndim == 1:
        norm = float(np.linalg.norm(matrix))
        return matrix / norm if norm else matrix
    row_norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    row_norms[row_norms == 0] = 1.0
    return (matrix / row_norms).astype(np.float32)


@dataclass
class EmbeddingUsage:
    requests: int = 0
    tokens: int = 0

    @property
    def cost_usd(self) -> float:
        return round(self.tokens / 1_000_000 * USD_PER_MILLION_TOKENS, 6)


def _batches(texts: list[str], size: int) -> Iterator[tuple[int, list[str]]]:
    for number, offset in enumerate(range(0, len(texts), size), start=1):
        yield number, texts[offset: offset + size]


class Embedder:
    """
    OpenAI-backed TextEmbedder.

    Usage:
        embedder = Embedder.from_config(config)
        matrix = embedder.embed_texts([chunk.text for chunk in chunks])
        vector = embedder.embed_query("How do we usually scope discovery?")
    """

    def __init__(
        self,
        model: str = MODEL,
        dimensions: int = DIMENSIONS,
        batch_size: int = BATCH_SIZE,
        timeout_s: float = TIMEOUT_S,
        api_key: Optional[str] = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.batch_size = max(batch_size, 1)
        self.usage = EmbeddingUsage()
        self._client = OpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"), timeout=timeout_s)

    @classmethod
    def from_config(cls, config: dict) -> "Embedder":
        cfg = config.get("embedding", {})
        return cls(
            model=cfg.get("model", MODEL),
            dimensions=cfg.get("dimensions", DIMENSIONS),
            batch_size=cfg.get("batch_size", BATCH_SIZE),
            timeout_s=cfg.get("timeout_s", TIMEOUT_S),
        )

    @traceable(name="embed_texts", run_type="embedding")
    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """Return an (len(texts), dimensions) float32 matrix of unit rows."""
        if not texts:
            return np.empty((0, self.dimensions), dtype=np.float32)

        rows: list[list[float]] = []
        for number, batch in _batches(texts, self.batch_size):
            try:
                vectors, tokens = self._request(batch)
            except OpenAIError as exc:
                logger.error(f"[Embedder] {self.model} batch {number} failed after retries: {exc}")
                raise EmbeddingUnavailable(str(exc)) from exc
            rows.extend(vectors)
            self.usage.requests += 1
            self.usage.tokens += tokens

        logger.debug(
            f"[Embedder] {len(texts)} text(s) in {self.usage.requests} request(s) so far | "
            f"{self.usage.tokens} tokens"
        )
        return l2_normalise(np.array(rows, dtype=np.float32))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _request(self, batch: list[str]) -> tuple[list[list[float]], int]:
        # the endpoint rejects empty strings
        payload = [text if text.strip() else " " for text in batch]
        started = time.perf_counter()
        response = self._client.embeddings.create(
            model=self.model, input=payload, dimensions=self.dimensions
        )
        ordered = sorted(response.data, key=lambda item: item.index)
        logger.debug(
            f"[Embedder] {len(batch)} input(s) | {response.usage.total_tokens} tokens | "
            f"{time.perf_counter() - started:.2f}s"
        )
        return [item.embedding for item in ordered], response.usage.total_tokens

    def embed_query(self, text: str) -> np.ndarray:
        """Embed one question or block. Returns a (dimensions,) float32 vector."""
        return self.embed_texts([text])[0]

    def usage_summary(self) -> dict:
        return {
            "model": self.model,
            "requests": self.usage.requests,
            "tokens": self.usage.tokens,
            "estimated_cost_usd": self.usage.cost_usd,
        }
