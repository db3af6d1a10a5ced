"""
Error taxonomy
---------------
Every failure the core can surface falls into one of four families:

  InputError            -- the caller sent something unusable (empty query,
                           missing document metadata). Reported, never retried.
  DependencyUnavailable -- an external collaborator (embedding service, store,
                           completion service) failed. Fatal for the request;
                           no partial result is fabricated.
  PartialBatchFailure   -- some items of a multi-item operation failed while
                           others succeeded. Carries the full BatchOutcome.
  MalformedRecord       -- one feedback record could not be parsed. The record
                           is skipped and counted; aggregation continues.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class ProposalRAGError(Exception):
    """Base class for every error raised by proposal_rag."""


class InputError(ProposalRAGError, ValueError):
    """Missing or invalid caller input."""


# --- External dependencies ----------------------------------------------------

class DependencyUnavailable(ProposalRAGError):
    """An external service call failed."""

    service = "dependency"

    def __init__(self, message: str) -> None:
        super().__init__(f"{self.service} unavailable: {message}")


class EmbeddingUnavailable(DependencyUnavailable):
    service = "embedding service"


class RetrievalUnavailable(DependencyUnavailable):
    service = "retrieval store"


class SynthesisUnavailable(DependencyUnavailable):
    service = "completion service"


class StoreUnavailable(DependencyUnavailable):
    service = "record store"


# --- Batches --------------------------------------------------------------------

@dataclass
class ItemOutcome:
    """Result of one item inside a batch operation."""

    item_id: str
    ok: bool
    reason: str = ""


@dataclass
class BatchOutcome:
    """
    Per-item results of a multi-item operation (chunk ingestion, usage bumps).

    Never collapsed into a single success/failure flag: callers read the
    counts and the per-item detail.
    """

    operation: str
    items: list[ItemOutcome] = field(default_factory=list)

    def record(self, item_id: str, ok: bool, reason: str = "") -> None:
        self.items.append(ItemOutcome(item_id=item_id, ok=ok, reason=reason))

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.ok)

    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if not i.ok)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def failures(self) -> list[ItemOutcome]:
        return [i for i in self.items if not i.ok]

    @property
    def is_partial(self) -> bool:
        return self.succeeded > 0 and self.failed > 0

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self)

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": [{"id": f.item_id, "reason": f.reason} for f in self.failures],
        }


class PartialBatchFailure(ProposalRAGError):
    """Raised on demand when a BatchOutcome contains failed items."""

    def __init__(self, outcome: BatchOutcome) -> None:
        self.outcome = outcome
        super().__init__(
            f"{outcome.operation}: {outcome.failed}/{outcome.total} item(s) failed"
        )


# --- Feedback records -----------------------------------------------------------

class MalformedRecord(ProposalRAGError):
    """A feedback record that cannot be parsed (bad chunk-id encoding, bad rating)."""

    def __init__(self, record_id: Optional[str], reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Malformed feedback record {record_id or '<no id>'}: {reason}")
