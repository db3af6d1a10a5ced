"""
Ingestion Pipeline - Chunk, Embed, Index
------------------------------------------
Reads proposal files from a folder, chunks each document with
ProposalChunker, embeds every chunk and inserts it into the retrieval index.

Per-chunk embedding calls run concurrently on a thread pool
(asyncio + run_in_executor). A failed chunk never cancels its siblings:
every chunk gets its own ItemOutcome, and the run reports success and
failure counts instead of aborting on the first error. Inserts happen in
chunk order after all embeddings for the document are back, so row order
in the index always follows document order.

Documents whose chunks are all indexed already are skipped as duplicates. A
document left partly indexed by an earlier run is resumed: only its missing
chunks are embedded and inserted.
"""
from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from proposal_rag.chunking.chunker import MIN_CHUNK_SIZE, ProposalChunker
from proposal_rag.chunking.schemas import Chunk
from proposal_rag.embedding.embedder import TextEmbedder
from proposal_rag.errors import BatchOutcome, InputError
from proposal_rag.retrieval.index import RetrievalIndex
from proposal_rag.schemas import Document
from proposal_rag.utils.helpers import clean_text

console = Console()

SUPPORTED_SUFFIXES = {".txt", ".md"}
MAX_WORKERS = 8


@dataclass
class IngestReport:
    """Summary of one ingestion run."""

    documents_seen: int = 0
    documents_ingested: int = 0
    duplicates: list[str] = field(default_factory=list)
    rejected: list[dict] = field(default_factory=list)
    chunks: BatchOutcome = field(default_factory=lambda: BatchOutcome("ingest_chunks"))
    elapsed_s: float = 0.0

    def to_dict(self) -> dict:
        return {
            "documents_seen": self.documents_seen,
            "documents_ingested": self.documents_ingested,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "chunks": self.chunks.to_dict(),
            "elapsed_s": round(self.elapsed_s, 3),
        }


def load_documents(
    folder: str | Path,
    client: str,
    proposal_date: Optional[date] = None,
    tags: Optional[list[str]] = None,
    author: Optional[str] = None,
    sector: Optional[str] = None,
    min_chars: int = MIN_CHUNK_SIZE,
) -> tuple[list[Document], list[dict]]:
    """
    Read every .txt / .md file under folder (recursively) as a Document.

    A single file path is accepted too. Returns (documents, rejected) where
    rejected lists {filename, reason} for empty, invalid or too-short
    files (fewer than min_chars characters after cleaning).
    """
    root = Path(folder)
    if not root.exists():
        raise InputError(f"Path not found: {root}")
    files = [root] if root.is_file() else sorted(
        p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
    )

    docs: list[Document] = []
    rejected: list[dict] = []
    for path in files:
        try:
            content = clean_text(path.read_text(encoding="utf-8", errors="replace"))
            if content and len(content) < min_chars:
                raise InputError(f"{len(content)} characters, below the {min_chars}-character minimum")
            docs.append(
                Document.build(
                    content,
                    filename=path.name,
                    client=client,
                    proposal_date=proposal_date,
                    tags=tags or [],
                    author=author,
                    sector=sector,
                )
            )
        except InputError as exc:
            logger.warning(f"[Ingest] Skipping {path.name}: {exc}")
            rejected.append({"filename": path.name, "reason": str(exc)})

    logger.info(f"[Ingest] Loaded {len(docs)} document(s) from {root}")
    return docs, rejected


class IngestionPipeline:
    """
    Chunk -> embed (parallel) -> insert, with per-chunk outcomes.

    Usage:
        pipeline = IngestionPipeline(embedder, index)
        report = pipeline.ingest(docs)
    """

    def __init__(
        self,
        embedder: TextEmbedder,
        index: RetrievalIndex,
        chunker: Optional[ProposalChunker] = None,
        max_workers: int = MAX_WORKERS,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.chunker = chunker or ProposalChunker()
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, config: dict, embedder: TextEmbedder, index: RetrievalIndex) -> "IngestionPipeline":
        return cls(
            embedder=embedder,
            index=index,
            chunker=ProposalChunker.from_config(config),
            max_workers=config.get("embedding", {}).get("max_workers", MAX_WORKERS),
        )

    async def _embed_chunks(self, chunks: list[Chunk]) -> list:
        """Embed each chunk on the pool. Failures come back as exception objects."""
        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            tasks = [
                loop.run_in_executor(pool, self.embedder.embed_query, chunk.text)
                for chunk in chunks
            ]
            return await asyncio.gather(*tasks, return_exceptions=True)

    async def aingest_document(self, doc: Document, outcome: BatchOutcome) -> bool:
        """
        Ingest one document, recording each chunk in outcome.

        Returns False when every chunk was already indexed. Raises InputError
        when the document is too short to chunk.
        """
        chunks = self.chunker.chunk_document(doc)
        if self.index.has_document(doc.doc_id):
            chunks = [c for c in chunks if not self.index.has_chunk(c.chunk_id)]
            if not chunks:
                logger.info(f"[Ingest] {doc.metadata.filename} already indexed ({doc.doc_id}), skipping")
                return False
            logger.info(f"[Ingest] Resuming {doc.metadata.filename}: {len(chunks)} chunk(s) missing")

        results = await self._embed_chunks(chunks)

        for chunk, result in zip(chunks, results):
            if isinstance(result, Exception):
                logger.warning(f"[Ingest] Embedding failed for {chunk.chunk_id}: {result}")
                outcome.record(chunk.chunk_id, False, f"embedding failed: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            inserted = self.index.insert(chunk, result)
            outcome.record(inserted.chunk_id, inserted.ok, inserted.reason)

        logger.debug(f"[Ingest] {doc.metadata.filename} -> {len(chunks)} chunk(s)")
        return True

    async def aingest(self, docs: list[Document], show_progress: bool = False) -> IngestReport:
        report = IngestReport(documents_seen=len(docs))
        started = time.perf_counter()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            transient=True,
            disable=not show_progress,
        ) as progress:
            task = progress.add_task("[cyan]Ingesting proposals...[/cyan]", total=len(docs))
            for doc in docs:
                try:
                    ingested = await self.aingest_document(doc, report.chunks)
                except InputError as exc:
                    logger.warning(f"[Ingest] Rejected {doc.metadata.filename}: {exc}")
                    report.rejected.append({"filename": doc.metadata.filename, "reason": str(exc)})
                    ingested = None
                if ingested:
                    report.documents_ingested += 1
                elif ingested is False:
                    report.duplicates.append(doc.metadata.filename)
                progress.advance(task)

        report.elapsed_s = time.perf_counter() - started
        logger.info(
            f"[Ingest] {report.documents_ingested}/{report.documents_seen} document(s) ingested | "
            f"chunks ok={report.chunks.succeeded} failed={report.chunks.failed} | "
            f"duplicates={len(report.duplicates)}"
        )
        return report

    def ingest(self, docs: list[Document], show_progress: bool = False) -> IngestReport:
        """Synchronous entry point for the CLI and tests."""
        return asyncio.run(self.aingest(docs, show_progress=show_progress))
