# docvector/memory/retriever.py

"""
Retrieval service: the only component that drives the chunker, the
embedder and the vector store together.

Ingest:  text → chunks → embeddings → records → one batch upsert
Query:   text → embedding → filtered store query → ranked results
"""

import logging
import os
import threading
import time
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from docvector.config import (
    CHUNK_OVERLAP,
    CHUNK_SIZE,
    EMBED_BATCH_SIZE,
    EMBEDDING_DIMENSION,
    TOP_K,
    UPSERT_MAX_RETRIES,
    UPSERT_RETRY_DELAY_SECONDS,
    VECTOR_BACKEND,
)
from docvector.errors import EmbeddingFailed, InvalidArgument, ServiceUnavailable
from docvector.memory.chunker import chunk_text
from docvector.memory.embedder import Embedder, build_embedder
from docvector.memory.loader import extract
from docvector.memory.qdrant_client import QdrantVectorStore, RemoteStoreConfig
from docvector.memory.records import build_record
from docvector.memory.store import InMemoryVectorStore, VectorStore
from docvector.memory.types import (
    RECORD_TYPE_CHAT,
    RECORD_TYPE_DOCUMENT,
    ChunkFailure,
    IngestResult,
    MetadataFilter,
    SearchResult,
    StoreStats,
    TextChunk,
    VectorRecord,
)

logger = logging.getLogger(__name__)


def _require(**fields: Optional[str]):

    for name, value in fields.items():

        if value is None or not str(value).strip():
            raise InvalidArgument(f"{name} is required")


class RetrievalService:
    """
    Orchestrates ingest, search and delete over an explicitly passed
    store and embedder.

    Retries of an unavailable store belong here, not in the stores.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        max_chunk_size: int = CHUNK_SIZE,
        overlap_size: int = CHUNK_OVERLAP,
        upsert_retries: int = UPSERT_MAX_RETRIES,
        retry_delay: float = UPSERT_RETRY_DELAY_SECONDS,
        embed_batch_size: int = EMBED_BATCH_SIZE,
    ):

        if store.dimension != embedder.dimension:
            raise InvalidArgument(
                f"Embedder dimension {embedder.dimension} does not match "
                f"store dimension {store.dimension}"
            )

        if embed_batch_size <= 0:
            raise InvalidArgument("embed_batch_size must be positive")

        self._store = store
        self._embedder = embedder
        self._max_chunk_size = max_chunk_size
        self._overlap_size = overlap_size
        self._upsert_retries = max(upsert_retries, 0)
        self._retry_delay = retry_delay
        self._embed_batch_size = embed_batch_size

    @property
    def store(self) -> VectorStore:
        return self._store

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    # ============================================================
    # INGEST
    # ============================================================

    def ingest_document(
        self,
        owner_id: str,
        source_name: str,
        full_text: str,
        max_chunk_size: Optional[int] = None,
        overlap_size: Optional[int] = None,
        record_type: str = RECORD_TYPE_DOCUMENT,
        extra: Optional[Mapping[str, Any]] = None,
        cancel_event: Optional[threading.Event] = None,
        replace_existing: bool = False,
    ) -> IngestResult:
        """
        Chunk, embed and store one document.

        Chunks are embedded EMBED_BATCH_SIZE at a time. A chunk whose
        embedding fails is reported in `failed` and the rest are still
        stored. If the batch upsert still fails after retries, every
        embedded chunk is reported as failed. Cancellation is checked before
        each embedding batch and once more before the upsert; a cancelled
        ingest commits nothing.

        With replace_existing=True the owner's existing records for `source_name`
        are deleted before the upsert, so re-ingesting a document never duplicates it.
        """

        _require(owner_id=owner_id, source_name=source_name)

        size = self._max_chunk_size if max_chunk_size is None else max_chunk_size
        overlap = self._overlap_size if overlap_size is None else overlap_size

        chunks = chunk_text(full_text or "", size, overlap)

        result = IngestResult(
            owner_id=owner_id,
            source_name=source_name,
            chunk_count=len(chunks),
        )

        start_time = time.time()

        embedded: List[Tuple[TextChunk, np.ndarray]] = []

        for start in range(0, len(chunks), self._embed_batch_size):

            if self._cancelled(cancel_event, result, processed=start):
                return result

            batch = chunks[start:start + self._embed_batch_size]

            embedded.extend(self._embed_batch(batch, source_name, result))

        if self._cancelled(cancel_event, result, processed=len(chunks)):
            return result

        if replace_existing:
            self.delete_document(owner_id, source_name)

        records: List[VectorRecord] = [
            build_record(
                chunk,
                embedding,
                owner_id=owner_id,
                source_name=source_name,
                record_type=record_type,
                extra=extra,
            )
            for chunk, embedding in embedded
        ]

        if records:

            try:

                self._upsert_with_retry(records)

            except ServiceUnavailable as e:

                logger.error(
                    "Ingest upsert failed, no chunks committed",
                    extra={
                        "owner_id": owner_id,
                        "source_name": source_name,
                        "chunks": len(records),
                        "error": str(e),
                    },
                )

                result.failed.extend(
                    ChunkFailure(record.metadata.chunk_index, type(e).__name__, str(e))
                    for record in records
                )

                result.failed.sort(key=lambda failure: failure.chunk_index)

                return result

            result.record_ids = [record.id for record in records]
            result.succeeded = [record.metadata.chunk_index for record in records]

        logger.info(
            "Document ingestion complete",
            extra={
                "owner_id": owner_id,
                "source_name": source_name,
                "record_type": record_type,
                "chunks": len(chunks),
                "stored": len(result.record_ids),
                "failed": len(result.failed),
                "latency_seconds": round(time.time() - start_time, 3),
            },
        )

        return result

    def _cancelled(
        self,
        cancel_event: Optional[threading.Event],
        result: IngestResult,
        processed: int,
    ) -> bool:

        if cancel_event is None or not cancel_event.is_set():
            return False

        logger.warning(
            "Ingest cancelled, nothing committed",
            extra={
                "owner_id": result.owner_id,
                "source_name": result.source_name,
                "chunks_processed": processed,
                "chunks_total": result.chunk_count,
            },
        )

        result.cancelled = True

        return True

    def _embed_batch(
        self,
        batch: List[TextChunk],
        source_name: str,
        result: IngestResult,
    ) -> List[Tuple[TextChunk, np.ndarray]]:
        """
        Embed a batch in one call. If the batch call fails, embed chunk by
        chunk so only the chunks that really fail land in `result.failed`.
        """

        try:

            vectors = self._embedder.embed([chunk.text for chunk in batch])

            return list(zip(batch, vectors))

        except EmbeddingFailed as e:

            logger.warning(
                "Batch embedding failed, retrying chunk by chunk",
                extra={
                    "source_name": source_name,
                    "first_chunk": batch[0].index,
                    "batch_size": len(batch),
                    "error": str(e),
                },
            )

        embedded = []

        for chunk in batch:

            try:

                embedded.append((chunk, self._embedder.embed_text(chunk.text)))

            except EmbeddingFailed as e:

                logger.warning(
                    "Chunk embedding failed",
                    extra={
                        "source_name": source_name,
                        "chunk_index": chunk.index,
                        "error": str(e),
                    },
                )

                result.failed.append(
                    ChunkFailure(chunk.index, type(e).__name__, str(e))
                )

        return embedded

    def _upsert_with_retry(self, records: List[VectorRecord]) -> int:

        last_error = None

        for attempt in range(self._upsert_retries + 1):

            try:
                return self._store.upsert(records)

            except ServiceUnavailable as e:

                last_error = e

                logger.warning(
                    "Vector upsert failed",
                    extra={
                        "attempt": attempt + 1,
                        "max_attempts": self._upsert_retries + 1,
                        "error": str(e),
                    },
                )

                if attempt < self._upsert_retries:
                    time.sleep(self._retry_delay)

        raise last_error

    def ingest_pdf(
        self,
        owner_id: str,
        file_path: str,
        source_name: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        replace_existing: bool = False,
    ) -> IngestResult:
        """Extract a PDF and ingest its text. Extraction errors abort before chunking."""

        _require(owner_id=owner_id, file_path=file_path)

        document = extract(file_path)

        extra: Dict[str, Any] = {
            "file_name": os.path.basename(file_path),
            "page_count": document.page_count,
        }

        for key, value in document.info.items():
            extra[f"pdf_{key.lower()}"] = value

        return self.ingest_document(
            owner_id,
            source_name or os.path.basename(file_path),
            document.text,
            extra=extra,
            cancel_event=cancel_event,
            replace_existing=replace_existing,
        )

    def ingest_chat_message(
        self,
        owner_id: str,
        session_id: str,
        content: str,
        role: str = "user",
        message_id: Optional[str] = None,
    ) -> IngestResult:
        """Store a chat message under its session so the session can be deleted in bulk."""

        return self.ingest_document(
            owner_id,
            session_id,
            content,
            record_type=RECORD_TYPE_CHAT,
            extra={"role": role, "message_id": message_id},
        )

    # ============================================================
    # QUERY
    # ============================================================

    def search(
        self,
        owner_id: str,
        query_text: str,
        top_k: int = TOP_K,
        record_type: Optional[str] = None,
        source_name: Optional[str] = None,
    ) -> List[SearchResult]:
        """
        Embed the query once and search only the owner's records, optionally
        narrowed to one record type and one source (a document or a chat
        session id).

        An empty list is a normal outcome. An unavailable store is logged
        and re-raised so the caller can tell "no matches" from "no backend".
        """

        _require(owner_id=owner_id, query_text=query_text)

        if top_k <= 0:
            raise InvalidArgument(f"top_k must be positive, got {top_k}")

        embedding = self._embedder.embed_text(query_text)

        search_filter = MetadataFilter(
            owner_id=owner_id,
            source_name=source_name,
            record_type=record_type,
        )

        try:

            results = self._store.query(embedding, top_k=top_k, filter=search_filter)

        except ServiceUnavailable as e:

            logger.error(
                "Search unavailable",
                extra={"owner_id": owner_id, "error": str(e)},
            )

            raise

        logger.info(
            "Search completed",
            extra={
                "owner_id": owner_id,
                "record_type": record_type,
                "source_name": source_name,
                "top_k": top_k,
                "results": len(results),
                "top_score": results[0].score if results else None,
            },
        )

        return results

    def search_session(
        self,
        owner_id: str,
        session_id: str,
        query_text: str,
        top_k: int = TOP_K,
    ) -> List[SearchResult]:
        """Search the chat history of one session."""

        _require(session_id=session_id)

        return self.search(
            owner_id,
            query_text,
            top_k=top_k,
            record_type=RECORD_TYPE_CHAT,
            source_name=session_id,
        )

    # ============================================================
    # DELETE
    # ============================================================

    def delete_document(self, owner_id: str, source_name: str) -> int:

        _require(owner_id=owner_id, source_name=source_name)

        deleted = self._store.delete_where(
            MetadataFilter(owner_id=owner_id, source_name=source_name)
        )

        logger.info(
            "Document deleted",
            extra={
                "owner_id": owner_id,
                "source_name": source_name,
                "deleted": deleted,
            },
        )

        return deleted

    def delete_session(self, owner_id: str, session_id: str) -> int:

        _require(owner_id=owner_id, session_id=session_id)

        return self._store.delete_where(
            MetadataFilter(
                owner_id=owner_id,
                source_name=session_id,
                record_type=RECORD_TYPE_CHAT,
            )
        )

    # ============================================================
    # STATS / HEALTH
    # ============================================================

    def stats(self) -> StoreStats:
        return self._store.stats()

    def ensure_index(self) -> Dict[str, Any]:

        if isinstance(self._store, QdrantVectorStore):
            return self._store.ensure_index()

        return {
            "index_name": None,
            "dimension": self._store.dimension,
            "metric": "cosine",
            "created": False,
        }

    def health_check(self) -> Dict[str, Any]:

        if isinstance(self._store, QdrantVectorStore):
            store_status = self._store.health_check()
        else:
            store_status = {"backend": "memory", "status": "healthy"}

        return {
            "embedder": self._embedder.health_check(),
            "store": store_status,
        }


# ============================================================
# FACTORIES
# ============================================================

def build_vector_store(
    backend: str = VECTOR_BACKEND,
    dimension: int = EMBEDDING_DIMENSION,
    config: Optional[RemoteStoreConfig] = None,
) -> VectorStore:

    if backend == "memory":
        return InMemoryVectorStore(dimension)

    if backend == "qdrant":
        config = config or RemoteStoreConfig.from_env()
        return QdrantVectorStore(replace(config, dimension=dimension))

    raise InvalidArgument(f"Unsupported vector backend: {backend}")


def build_retrieval_service(
    backend: str = VECTOR_BACKEND,
    dimension: int = EMBEDDING_DIMENSION,
) -> RetrievalService:

    return RetrievalService(
        store=build_vector_store(backend, dimension),
        embedder=build_embedder(dimension=dimension),
    )
