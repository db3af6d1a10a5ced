"""
Reusable Block Library
-----------------------
Hand-curated proposal excerpts with their own lifecycle: created by an
explicit user action, mutated only through usage bumps, never deleted
automatically.

Operations:
  create_block     -- title and content required; content embedded at creation
  list_blocks      -- tag overlap / author / text-substring filters,
                      sorted recent | popular | last_used (descending, id breaks ties)
  bump_usage       -- usage_count += 1 and last_used_at = now, under a lock, so
                      concurrent bumps of the same id are never lost
  bump_usage_many  -- independent bumps issued concurrently; one outcome per id
  suggest_blocks   -- composite ranking of similarity, usage and recency,
                      padded with popular blocks when too few match

The library persists to a single JSON file (storage.blocks_path); with no
path it is purely in-memory.
"""
from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
from loguru import logger
from pydantic import BaseModel, Field

from proposal_rag.embedding.embedder import TextEmbedder, l2_normalise
from proposal_rag.errors import BatchOutcome, InputError, ItemOutcome
from proposal_rag.schemas import ReusableBlock, normalise_tags
from proposal_rag.utils.helpers import load_json, save_json, utcnow

SUGGEST_MIN_SIMILARITY = 0.3
SIMILARITY_WEIGHT = 0.5
USAGE_WEIGHT = 0.3
RECENCY_WEIGHT = 0.2

# (max age in days, score); anything older scores 0.2
RECENCY_BANDS = [(7, 1.0), (30, 0.8), (90, 0.6), (180, 0.4)]


class BlockSort(str, Enum):
    RECENT = "recent"          # created_at
    POPULAR = "popular"        # usage_count
    LAST_USED = "last_used"    # last_used_at


class BlockFilters(BaseModel):
    tags: list[str] = Field(default_factory=list)
    author_id: Optional[str] = None
    text: Optional[str] = None

    def matches(self, block: ReusableBlock) -> bool:
        if self.tags and not set(normalise_tags(self.tags)) & set(block.tags):
            return False
        if self.author_id and block.author_id != self.author_id:
            return False
        if self.text:
            needle = self.text.lower()
            if needle not in block.title.lower() and needle not in block.content.lower():
                return False
        return True


@dataclass
class BlockSuggestion:
    block: ReusableBlock
    similarity: float
    score: float
    source: str  # "similar" | "popular"

    def to_dict(self) -> dict:
        return {
            "id": self.block.id,
            "title": self.block.title,
            "usage_count": self.block.usage_count,
            "similarity": round(self.similarity, 4),
            "score": round(self.score, 4),
            "source": self.source,
        }


def recency_score(last_used_at: datetime, now: Optional[datetime] = None) -> float:
    age_days = ((now or utcnow()) - last_used_at).total_seconds() / 86400
    for max_days, score in RECENCY_BANDS:
        if age_days <= max_days:
            return score
    return 0.2


def composite_score(similarity: float, usage_count: int, last_used_at: datetime, now: Optional[datetime] = None) -> float:
    usage = min(usage_count / 10, 1.0)
    return (
        SIMILARITY_WEIGHT * similarity
        + USAGE_WEIGHT * usage
        + RECENCY_WEIGHT * recency_score(last_used_at, now)
    )


def _sort_key(sort: BlockSort):
    if sort == BlockSort.POPULAR:
        return lambda b: (-b.usage_count, b.id)
    if sort == BlockSort.LAST_USED:
        return lambda b: (-b.last_used_at.timestamp(), b.id)
    return lambda b: (-b.created_at.timestamp(), b.id)


class BlockLibrary:
    """
    JSON-backed store of ReusableBlocks.

    Usage:
        library = BlockLibrary(Path("data/blocks.json"), embedder)
        block = library.create_block("Change management", "Our approach to ...", tags=["change"])
        library.bump_usage(block.id)
    """

    def __init__(self, path: Optional[Path] = None, embedder: Optional[TextEmbedder] = None) -> None:
        self.path = Path(path) if path else None
        self.embedder = embedder
        self._blocks: dict[str, ReusableBlock] = {}
        self._lock = threading.Lock()
        if self.path and self.path.exists():
            self._blocks = {b["id"]: ReusableBlock(**b) for b in load_json(self.path)}
            logger.info(f"[BlockLibrary] Loaded {len(self._blocks)} block(s) from {self.path}")

    def __len__(self) -> int:
        return len(self._blocks)

    def _persist(self) -> None:
        if self.path:
            save_json([b.model_dump(mode="json") for b in self._blocks.values()], self.path)

    # --- Create / read ---------------------------------------------------------

    def create_block(
        self,
        title: str,
        content: str,
        tags: Optional[list[str]] = None,
        author_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReusableBlock:
        if not title or not title.strip() or not content or not content.strip():
            raise InputError("Title and content are required")
        embedding: list[float] = []
        if self.embedder is not None:
            embedding = l2_normalise(self.embedder.embed_query(content)).tolist()
        block = ReusableBlock(
            title=title.strip(),
            content=content.strip(),
            tags=tags or [],
            author_id=author_id,
            notes=notes,
            embedding=embedding,
        )
        with self._lock:
            self._blocks[block.id] = block
            self._persist()
        logger.info(f"[BlockLibrary] Created block {block.id[:8]} '{block.title}'")
        return block

    def get_block(self, block_id: str) -> Optional[ReusableBlock]:
        return self._blocks.get(block_id)

    def list_blocks(
        self,
        filters: Optional[BlockFilters] = None,
        sort: BlockSort = BlockSort.RECENT,
        limit: int = 20,
    ) -> list[ReusableBlock]:
        with self._lock:
            blocks = list(self._blocks.values())
        if filters:
            blocks = [b for b in blocks if filters.matches(b)]
        blocks.sort(key=_sort_key(BlockSort(sort)))
        return blocks[: max(limit, 0)]

    # --- Usage -----------------------------------------------------------------

    def bump_usage(self, block_id: str) -> ItemOutcome:
        with self._lock:
            block = self._blocks.get(block_id)
            if block is None:
                return ItemOutcome(block_id, False, "block not found")
            self._blocks[block_id] = block.model_copy(
                update={"usage_count": block.usage_count + 1, "last_used_at": utcnow()}
            )
            self._persist()
        logger.debug(f"[BlockLibrary] Usage bumped for {block_id[:8]}")
        return ItemOutcome(block_id, True)

    async def abump_usage_many(self, block_ids: list[str], max_workers: int = 8) -> BatchOutcome:
        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = await asyncio.gather(
                *(loop.run_in_executor(pool, self.bump_usage, bid) for bid in block_ids),
                return_exceptions=True,
            )
        outcome = BatchOutcome("bump_usage")
        for bid, result in zip(block_ids, results):
            if isinstance(result, ItemOutcome):
                outcome.items.append(result)
            elif isinstance(result, Exception):
                outcome.record(bid, False, str(result))
            else:
                raise result
        if outcome.failed:
            logger.warning(f"[BlockLibrary] {outcome.failed}/{outcome.total} usage bump(s) failed")
        return outcome

    def bump_usage_many(self, block_ids: list[str], max_workers: int = 8) -> BatchOutcome:
        return asyncio.run(self.abump_usage_many(block_ids, max_workers))

    # --- Suggestions -----------------------------------------------------------

    def suggest_blocks(
        self,
        context: str,
        limit: int = 5,
        tags: Optional[list[str]] = None,
        exclude_ids: Optional[list[str]] = None,
        client: Optional[str] = None,
        sector: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[BlockSuggestion]:
        """
        Rank blocks for a drafting context.

        Blocks similar to the context (cosine >= 0.3) are scored by
        0.5*similarity + 0.3*min(usage/10, 1) + 0.2*recency. When fewer than
        `limit` qualify, the list is padded with the most used remaining blocks.
        """
        if not context or not context.strip():
            raise InputError("Context is required")
        excluded = set(exclude_ids or [])
        tag_filter = BlockFilters(tags=tags or [])
        with self._lock:
            pool = [b for b in self._blocks.values() if b.id not in excluded and tag_filter.matches(b)]

        similar: list[tuple[ReusableBlock, float]] = []
        if self.embedder is not None:
            query = l2_normalise(self.embedder.embed_query(context))
            for block in pool:
                if not block.embedding:
                    continue
                sim = float(np.dot(query, l2_normalise(np.asarray(block.embedding, dtype=np.float32))))
                if sim >= SUGGEST_MIN_SIMILARITY:
                    similar.append((block, sim))
            similar.sort(key=lambda p: (-p[1], p[0].id))
            similar = similar[: limit * 2]

        def _text(b: ReusableBlock) -> str:
            return f"{b.title} {b.content} {' '.join(b.tags)}".lower()

        if client:
            words = client.lower().split()
            similar = [p for p in similar if any(w in _text(p[0]) for w in words)]
        if sector:
            similar = [p for p in similar if sector.lower() in _text(p[0])]

        ranked = [
            BlockSuggestion(b, sim, composite_score(sim, b.usage_count, b.last_used_at, now), "similar")
            for b, sim in similar
        ]
        ranked.sort(key=lambda s: (-s.score, s.block.id))
        ranked = ranked[:limit]

        if len(ranked) < limit:
            taken = {s.block.id for s in ranked}
            popular = sorted((b for b in pool if b.id not in taken), key=_sort_key(BlockSort.POPULAR))
            for block in popular[: limit - len(ranked)]:
                ranked.append(
                    BlockSuggestion(block, 0.0, composite_score(0.0, block.usage_count, block.last_used_at, now), "popular")
                )

        logger.debug(f"[BlockLibrary] {len(ranked)} suggestion(s) for context of {len(context)} chars")
        return ranked
