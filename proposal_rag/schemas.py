"""
Core Pydantic schemas for the proposal knowledge base.

Documents, reusable blocks and feedback records are shared by ingestion,
answering and diagnostics. Free-form openness is kept only where it is
genuinely needed (feedback reasons, tags); everything else is a closed
enumeration or an explicit field.
"""
from __future__ import annotations

import hashlib
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, computed_field, field_validator

from proposal_rag.errors import InputError
from proposal_rag.utils.helpers import utcnow


# --- Enumerations ------------------------------------------------------------

class SectionLabel(str, Enum):
    """Proposal zones a chunk can be labelled with."""

    UNDERSTANDING = "understanding"
    APPROACH = "approach"
    TIMELINE = "timeline"
    PROBLEM = "problem"


class Rating(str, Enum):
    GOOD = "good"
    BAD = "bad"


class QueryType(str, Enum):
    """Classifier labels attached to questions; UNKNOWN collects everything else."""

    METHODOLOGY = "methodology"
    CLIENT_EXAMPLES = "client_examples"
    PROJECT_LIST = "project_list"
    DELIVERABLES = "deliverables"
    PRICING = "pricing"
    RISKS = "risks"
    PROPOSAL_LANGUAGE = "proposal_language"
    INDUSTRY_EXPERIENCE = "industry_experience"
    OUTCOMES = "outcomes"
    GEOGRAPHIC = "geographic"
    GENERAL = "general"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "QueryType":
        """Map a stored label to a QueryType. Missing or unrecognised -> UNKNOWN."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


# --- Documents ---------------------------------------------------------------

def normalise_tags(tags: Any) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return sorted({t.strip().lower() for t in tags if t and t.strip()})


class DocumentMetadata(BaseModel):
    """
    Metadata attached to every source proposal and copied onto its chunks.

    filename and client are required; everything else is optional.
    """

    filename: str = Field(min_length=1)
    client: str = Field(min_length=1)
    proposal_date: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("proposal_date", "date")
    )
    tags: list[str] = Field(default_factory=list)
    author: Optional[str] = None
    sector: Optional[str] = None

    @field_validator("filename", "client")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> list[str]:
        return normalise_tags(v)


class Document(BaseModel):
    """
    A source proposal: raw text plus metadata. Immutable once ingested.

    doc_id is the SHA-256 of the content, so re-submitting the same file is
    detected as a duplicate.
    """

    model_config = {"frozen": True}

    content: str
    metadata: DocumentMetadata

    @computed_field
    @property
    def doc_id(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()[:16]

    @computed_field
    @property
    def char_count(self) -> int:
        return len(self.content)

    @classmethod
    def build(cls, content: str, **metadata: Any) -> "Document":
        """Validate raw input, converting schema errors into InputError."""
        if not content or not content.strip():
            raise InputError(f"Document {metadata.get('filename')!r} has no content")
        try:
            return cls(content=content, metadata=DocumentMetadata(**metadata))
        except ValidationError as exc:
            fields = ", ".join(str(e["loc"][0]) for e in exc.errors())
            raise InputError(f"Invalid document metadata ({fields}): {exc}") from exc


# --- Reusable blocks ---------------------------------------------------------

def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps read back from storage as UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class ReusableBlock(BaseModel):
    """
    A hand-curated proposal excerpt. Long-lived; only usage stats ever change.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    author_id: Optional[str] = None
    usage_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None
    embedding: list[float] = Field(default_factory=list, repr=False)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> list[str]:
        return normalise_tags(v)

    @field_validator("created_at", "last_used_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# --- Feedback ------------------------------------------------------------------

class FeedbackRecord(BaseModel):
    """One user rating of one answer. Append-only."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    question: str
    answer: str = ""
    rating: Rating
    query_type: QueryType = QueryType.UNKNOWN
    chunk_ids: list[str] = Field(default_factory=list)
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("query_type", mode="before")
    @classmethod
    def _query_type(cls, v: Any) -> QueryType:
        return QueryType.parse(v)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)
