"""
Chunk schema - the atomic unit that gets embedded and indexed.

A Chunk traces back to its parent Document (doc_id plus character offsets)
so every retrieval result carries full provenance for citations.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from proposal_rag.schemas import DocumentMetadata, SectionLabel, normalise_tags


class Chunk(BaseModel):
    """
    A bounded window of a Document's text.

    start/end are offsets into the parent document content, so
    `doc.content[start:end] == text` always holds.
    """

    # Identity
    chunk_id: str                        # "<doc_id>-<index>"
    doc_id: str                          # Parent Document.doc_id
    chunk_index: int                     # Position within the document

    # Content
    text: str
    start: int
    end: int
    token_estimate: int = 0

    # Zone of the proposal this chunk opens, if any
    section: Optional[SectionLabel] = None

    # Provenance (copied from parent doc for zero-join retrieval and filtering)
    metadata: DocumentMetadata

    @property
    def client(self) -> str:
        return self.metadata.client

    @property
    def filename(self) -> str:
        return self.metadata.filename

    def citation(self) -> dict:
        """The {client, filename, content} triple returned to callers as a source."""
        return {
            "chunk_id": self.chunk_id,
            "client": self.metadata.client,
            "filename": self.metadata.filename,
            "content": self.text,
            "section": self.section.value if self.section else None,
        }


class ChunkFilters(BaseModel):
    """Metadata filters applied on top of similarity / keyword search."""

    client: Optional[str] = None
    author: Optional[str] = None
    sector: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    section: Optional[SectionLabel] = None

    def matches(self, chunk: Chunk) -> bool:
        meta = chunk.metadata
        if self.client and (meta.client or "").lower() != self.client.lower():
            return False
        if self.author and (meta.author or "").lower() != self.author.lower():
            return False
        if self.sector and (meta.sector or "").lower() != self.sector.lower():
            return False
        if self.tags and not set(normalise_tags(self.tags)) & set(meta.tags):
            return False
        if self.section and chunk.section != self.section:
            return False
        return True
