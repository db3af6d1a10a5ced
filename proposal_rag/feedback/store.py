"""
Feedback Store
---------------
Thin adapter over the feedback record store (a JSON Lines file standing in
for the external table). All I/O lives here; aggregation in aggregator.py
never touches the store.

Rows keep the external wire shape: chunk_ids is a JSON-encoded string and
the reason field is called feedback_reason. Parsing a row into a
FeedbackRecord is a separate step so one malformed row is skipped and
counted instead of aborting the whole read.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import orjson
from loguru import logger
from pydantic import ValidationError

from proposal_rag.errors import InputError, MalformedRecord, StoreUnavailable
from proposal_rag.schemas import FeedbackRecord, QueryType, Rating

FEEDBACK_PATH = Path("data/feedback.jsonl")

RawRow = Union[dict, str]


# --- Parsing -------------------------------------------------------------------

def _parse_chunk_ids(value: Any, record_id: Optional[str]) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        try:
            value = orjson.loads(value)
        except orjson.JSONDecodeError as exc:
            raise MalformedRecord(record_id, f"chunk_ids is not valid JSON: {exc}") from exc
    if not isinstance(value, list) or not all(isinstance(c, str) for c in value):
        raise MalformedRecord(record_id, "chunk_ids must be a list of strings")
    return value


def parse_feedback_row(row: RawRow) -> FeedbackRecord:
    """Turn one stored row into a FeedbackRecord, or raise MalformedRecord."""
    if isinstance(row, str):
        try:
            row = orjson.loads(row)
        except orjson.JSONDecodeError as exc:
            raise MalformedRecord(None, f"row is not valid JSON: {exc}") from exc
    if not isinstance(row, dict):
        raise MalformedRecord(None, f"row must be an object, got {type(row).__name__}")

    record_id = row.get("id")
    data = dict(row)
    data["chunk_ids"] = _parse_chunk_ids(row.get("chunk_ids"), record_id)
    if "feedback_reason" in data:
        data["reason"] = data.pop("feedback_reason")
    if data.get("rating") not in {r.value for r in Rating}:
        raise MalformedRecord(record_id, f"rating must be 'good' or 'bad', got {data.get('rating')!r}")
    if data.get("id") is None:
        data.pop("id", None)
    if data.get("created_at") is None:
        data.pop("created_at", None)
    if data.get("answer") is None:
        data["answer"] = ""

    try:
        return FeedbackRecord(**data)
    except ValidationError as exc:
        raise MalformedRecord(record_id, str(exc)) from exc


@dataclass
class ParsedFeedback:
    records: list[FeedbackRecord] = field(default_factory=list)
    malformed: list[MalformedRecord] = field(default_factory=list)

    @property
    def malformed_count(self) -> int:
        return len(self.malformed)


def parse_feedback_rows(rows: list[RawRow]) -> ParsedFeedback:
    parsed = ParsedFeedback()
    for row in rows:
        try:
            parsed.records.append(parse_feedback_row(row))
        except MalformedRecord as exc:
            logger.warning(f"[FeedbackStore] Skipping record: {exc}")
            parsed.malformed.append(exc)
    return parsed


def to_row(record: FeedbackRecord) -> dict:
    """Inverse of parse_feedback_row: the stored wire shape."""
    row = record.model_dump(mode="json")
    row["chunk_ids"] = orjson.dumps(record.chunk_ids).decode()
    row["feedback_reason"] = row.pop("reason")
    return row


# --- Store ---------------------------------------------------------------------

class FeedbackStore:
    """
    Append-only JSONL feedback log.

    Usage:
        store = FeedbackStore(Path("data/feedback.jsonl"))
        store.submit_feedback(question, answer, "good", chunk_ids)
        parsed = store.load()
    """

    def __init__(self, path: Path = FEEDBACK_PATH) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: dict) -> "FeedbackStore":
        return cls(Path(config.get("storage", {}).get("feedback_path", FEEDBACK_PATH)))

    def append(self, record: FeedbackRecord) -> None:
        line = orjson.dumps(to_row(record)) + b"\n"
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "ab") as f:
                    f.write(line)
        except OSError as exc:
            logger.error(f"[FeedbackStore] Write failed: {exc}")
            raise StoreUnavailable(str(exc)) from exc

    def submit_feedback(
        self,
        question: str,
        answer: str,
        rating: str,
        chunk_ids: Optional[list[str]],
        query_type: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> FeedbackRecord:
        """Validate one rating of one answer and append it."""
        if not question or not answer or not rating or chunk_ids is None:
            raise InputError("Missing required fields: question, answer, rating and chunk_ids")
        if rating not in {r.value for r in Rating}:
            raise InputError('Rating must be "good" or "bad"')
        record = FeedbackRecord(
            question=question,
            answer=answer,
            rating=Rating(rating),
            query_type=QueryType.parse(query_type),
            chunk_ids=list(chunk_ids),
            reason=reason or None,
        )
        self.append(record)
        logger.info(
            f"[FeedbackStore] Saved {record.rating.value} feedback {record.id[:8]} | "
            f"{len(record.chunk_ids)} chunk(s) | {record.query_type.value}"
        )
        return record

    def fetch_rows(self) -> list[RawRow]:
        """
        Snapshot of every stored row. Rows that are not valid JSON are
        returned as raw strings for the parser to reject.
        """
        if not self.path.exists():
            return []
        try:
            with open(self.path, "rb") as f:
                lines = f.read().splitlines()
        except OSError as exc:
            logger.error(f"[FeedbackStore] Read failed: {exc}")
            raise StoreUnavailable(str(exc)) from exc

        rows: list[RawRow] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                rows.append(orjson.loads(line))
            except orjson.JSONDecodeError:
                rows.append(line.decode("utf-8", errors="replace"))
        return rows

    def load(self) -> ParsedFeedback:
        parsed = parse_feedback_rows(self.fetch_rows())
        logger.debug(
            f"[FeedbackStore] {len(parsed.records)} record(s), {parsed.malformed_count} malformed"
        )
        return parsed
