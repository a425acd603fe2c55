# docvector/memory/types.py
"""
Domain types shared by the chunker, the vector stores and the retrieval service.

Metadata is typed: a small closed set of filterable keys plus an open bag
of display-only fields. Stores only ever look at the filterable keys.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np


RECORD_TYPE_DOCUMENT = "document_chunk"
RECORD_TYPE_CHAT = "chat_message"

FILTERABLE_KEYS = ("owner_id", "source_name", "record_type")

_CORE_KEYS = FILTERABLE_KEYS + ("chunk_index", "created_at")


@dataclass(frozen=True)
class TextChunk:
    """One sentence-aligned segment of a source document."""

    index: int
    text: str
    source_span: Tuple[int, int]


@dataclass(frozen=True)
class RecordMetadata:
    """Metadata attached to every stored vector."""

    owner_id: str
    source_name: str
    record_type: str
    chunk_index: int
    created_at: str
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        payload.update({
            "owner_id": self.owner_id,
            "source_name": self.source_name,
            "record_type": self.record_type,
            "chunk_index": self.chunk_index,
            "created_at": self.created_at,
        })
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RecordMetadata":
        extra = {k: v for k, v in payload.items() if k not in _CORE_KEYS}
        return cls(
            owner_id=payload.get("owner_id", ""),
            source_name=payload.get("source_name", ""),
            record_type=payload.get("record_type", ""),
            chunk_index=int(payload.get("chunk_index", 0)),
            created_at=payload.get("created_at", ""),
            extra=extra,
        )

    @property
    def text(self) -> Optional[str]:
        return self.extra.get("text")


@dataclass(frozen=True)
class MetadataFilter:
    """
    Conjunction of exact-match predicates over the filterable keys.

    Keys left as None do not constrain the match.
    """

    owner_id: Optional[str] = None
    source_name: Optional[str] = None
    record_type: Optional[str] = None

    def conditions(self) -> Dict[str, str]:
        return {
            key: getattr(self, key)
            for key in FILTERABLE_KEYS
            if getattr(self, key) is not None
        }

    def matches(self, metadata: RecordMetadata) -> bool:
        for key, value in self.conditions().items():
            if getattr(metadata, key) != value:
                return False
        return True

    def is_empty(self) -> bool:
        return not self.conditions()


@dataclass(frozen=True, eq=False)
class VectorRecord:
    """A stored embedding. Never mutated; replaced by upserting the same id."""

    id: str
    embedding: np.ndarray
    metadata: RecordMetadata


@dataclass(frozen=True)
class SearchResult:
    """Ranked match returned by a vector store query."""

    record_id: str
    score: float
    metadata: RecordMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "score": self.score,
            "metadata": self.metadata.to_payload(),
        }


@dataclass(frozen=True)
class StoreStats:
    total_vectors: int
    dimension: int
    by_record_type: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkFailure:
    chunk_index: int
    error_type: str
    message: str


@dataclass
class IngestResult:
    """
    Outcome of one ingest call.

    Every chunk ends up either in `succeeded` or in `failed`, unless the
    ingest was cancelled, in which case nothing was committed.
    """

    owner_id: str
    source_name: str
    chunk_count: int
    record_ids: List[str] = field(default_factory=list)
    succeeded: List[int] = field(default_factory=list)
    failed: List[ChunkFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def complete(self) -> bool:
        return not self.failed and not self.cancelled
