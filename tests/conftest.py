"""Shared fixtures and fakes for the proposal_rag test suite. No network access."""
from __future__ import annotations

import hashlib
import re
from typing import Optional

import numpy as np
import pytest

from proposal_rag.chunking.schemas import Chunk
from proposal_rag.retrieval.index import InsertResult
from proposal_rag.schemas import Document, DocumentMetadata, SectionLabel

FAKE_DIMS = 64


class FakeEmbedder:
    """Deterministic bag-of-words hashing embedder."""

    def __init__(self, dimensions: int = FAKE_DIMS, fail_when: Optional[str] = None) -> None:
        self.dimensions = dimensions
        self.fail_when = fail_when
        self.calls = 0

    def embed_query(self, text: str) -> np.ndarray:
        self.calls += 1
        if self.fail_when and self.fail_when in text:
            raise RuntimeError("embedding service timed out")
        vec = np.zeros(self.dimensions, dtype=np.float32)
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            idx = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimensions
            vec[idx] += 1.0
        norm = np.linalg.norm(vec)
        return vec / norm if norm else vec

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        return np.array([self.embed_query(t) for t in texts], dtype=np.float32)


class FakeCompletion:
    """Records every call; optionally fails."""

    model = "fake-model"

    def __init__(self, reply: str = "Grounded answer.", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[list[dict]] = []

    def complete(self, messages: list[dict]) -> str:
        self.calls.append(messages)
        if self.error:
            raise self.error
        return self.reply


class StubIndex:
    """Retrieval index that returns nothing and records what it was asked."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.queries = 0
        self.keyword_queries = 0

    def insert(self, chunk, embedding) -> InsertResult:
        return InsertResult(chunk.chunk_id, True)

    def query(self, embedding, k=5, filters=None, min_similarity=0.0):
        self.queries += 1
        if self.error:
            raise self.error
        return []

    def search_keywords(self, text, k=5, filters=None):
        self.keyword_queries += 1
        return []

    def has_document(self, doc_id) -> bool:
        return False

    def has_chunk(self, chunk_id) -> bool:
        return False


PROPOSAL_TEXT = """\
Proposal for Acme Health

Executive Summary
Acme Health asked us to redesign its patient intake process across every clinic it operates.

Our Understanding
Acme Health runs twelve clinics with inconsistent intake forms. Staff re-enter data in three systems, and wait times have doubled since 2022.

2. Proposed Approach
We will run discovery workshops with clinic managers, map the current process, and design a single digital intake flow.

## Project Timeline
The engagement runs for twelve weeks. Weeks one to three cover discovery, weeks four to nine cover design and pilot, and weeks ten to twelve cover rollout.

Deliverables
We will hand over a current-state process map, a future-state design, and a rollout playbook for clinic managers.

Key Issues
Data quality in legacy systems is poor and clinic staff have limited time to attend workshops during opening hours.
"""


def make_doc(content: str = PROPOSAL_TEXT, filename: str = "acme.txt", client: str = "Acme Health", **meta) -> Document:
    return Document.build(content, filename=filename, client=client, **meta)


def make_chunk(
    chunk_id: str,
    text: str = "chunk text",
    client: str = "Acme Health",
    doc_id: str = "doc1",
    tags: Optional[list[str]] = None,
    section: Optional[SectionLabel] = None,
    sector: Optional[str] = None,
) -> Chunk:
    return Chunk(
        chunk_id=chunk_id,
        doc_id=doc_id,
        chunk_index=0,
        text=text,
        start=0,
        end=len(text),
        section=section,
        metadata=DocumentMetadata(filename=f"{doc_id}.txt", client=client, tags=tags or [], sector=sector),
    )


@pytest.fixture
def proposal_text() -> str:
    return PROPOSAL_TEXT


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()
