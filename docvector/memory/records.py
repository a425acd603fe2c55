# docvector/memory/records.py

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import numpy as np

from docvector.errors import InvalidArgument
from docvector.memory.types import (
    RECORD_TYPE_DOCUMENT,
    RecordMetadata,
    TextChunk,
    VectorRecord,
)

_SCALAR_TYPES = (str, int, float, bool)


def generate_record_id() -> str:
    return str(uuid.uuid4())


def _scalar_extra(extra: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Keep display fields JSON-safe: scalars pass through, anything else is stringified."""

    cleaned = {}

    for key, value in (extra or {}).items():

        if value is None:
            continue

        cleaned[key] = value if isinstance(value, _SCALAR_TYPES) else str(value)

    return cleaned


def build_record(
    chunk: TextChunk,
    embedding,
    owner_id: str,
    source_name: str,
    record_type: str = RECORD_TYPE_DOCUMENT,
    extra: Optional[Mapping[str, Any]] = None,
    record_id: Optional[str] = None,
) -> VectorRecord:
    """
    Combine a chunk, its embedding and descriptive metadata into a record.

    The chunk text and its source span travel in the display-only bag so
    search results can be rendered without a second lookup.
    """

    if not owner_id:
        raise InvalidArgument("owner_id is required")

    if not source_name:
        raise InvalidArgument("source_name is required")

    vector = np.asarray(embedding, dtype="float64")

    if vector.ndim != 1:
        raise InvalidArgument(
            f"Embedding must be one-dimensional, got shape {vector.shape}"
        )

    payload = _scalar_extra(extra)
    payload.update({
        "text": chunk.text,
        "start_char": chunk.source_span[0],
        "end_char": chunk.source_span[1],
    })

    metadata = RecordMetadata(
        owner_id=owner_id,
        source_name=source_name,
        record_type=record_type,
        chunk_index=chunk.index,
        created_at=datetime.now(timezone.utc).isoformat(),
        extra=payload,
    )

    return VectorRecord(
        id=record_id or generate_record_id(),
        embedding=vector,
        metadata=metadata,
    )
