# docvector/memory/store.py

import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from docvector.errors import InvalidArgument
from docvector.memory.types import (
    MetadataFilter,
    RecordMetadata,
    SearchResult,
    StoreStats,
    VectorRecord,
)

logger = logging.getLogger(__name__)


# ============================================================
# SIMILARITY
# ============================================================

def cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of every row of `matrix` against `query`.

    A zero norm on either side scores 0 instead of NaN. Scores are clipped
    to [-1, 1] to absorb floating point drift.
    """

    dots = matrix @ query

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)

    scores = np.divide(
        dots,
        norms,
        out=np.zeros_like(dots, dtype="float64"),
        where=norms > 0,
    )

    return np.clip(scores, -1.0, 1.0)


def cosine_similarity(a, b) -> float:

    a = np.asarray(a, dtype="float64")
    b = np.asarray(b, dtype="float64")

    if a.shape != b.shape:
        raise InvalidArgument(
            f"Vector length mismatch: {a.shape} vs {b.shape}"
        )

    return float(cosine_scores(a.reshape(1, -1), b)[0])


def rank_results(
    scored: Iterable[Tuple[str, float, object]],
    top_k: int,
) -> List[Tuple[str, float, object]]:
    """Sort by score descending, ties by ascending id, then truncate."""

    return sorted(scored, key=lambda item: (-item[1], item[0]))[:top_k]


def detach_metadata(metadata: RecordMetadata) -> RecordMetadata:
    """Copy of `metadata` whose `extra` bag is not shared with the original."""

    return replace(metadata, extra=dict(metadata.extra))


# ============================================================
# READER / WRITER LOCK
# ============================================================

class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    Waiting writers block new readers so a steady query load cannot starve
    ingest.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self):

        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):

        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# ============================================================
# COMMON CONTRACT
# ============================================================

class VectorStore(ABC):
    """
    Capability set shared by every backend: upsert, query, delete, stats.

    Stores never retry and never swallow errors: every call either returns
    a result or raises a typed error.
    """

    def __init__(self, dimension: int):

        if dimension <= 0:
            raise InvalidArgument("Embedding dimension must be positive")

        self._dim = dimension

    @property
    def dimension(self) -> int:
        return self._dim

    @abstractmethod
    def upsert(self, records: Sequence[VectorRecord]) -> int:
        """Insert or replace records by id. Returns the number written."""

    @abstractmethod
    def query(
        self,
        vector,
        top_k: int,
        filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:
        """Top-k matches by descending score, ties by ascending id."""

    @abstractmethod
    def delete(self, ids: Sequence[str]) -> int:
        """Delete by id. Unknown ids are ignored. Returns the number deleted."""

    @abstractmethod
    def stats(self) -> StoreStats:
        pass

    @abstractmethod
    def delete_where(self, filter: MetadataFilter) -> int:
        """
        Delete every record matching `filter` and return how many were removed.

        Matching and deleting must happen as one step on the backend, so a
        record upserted concurrently is either deleted or left untouched,
        never half-matched.
        """

    # ============================================================
    # VALIDATION HELPERS
    # ============================================================

    def _check_vector(self, vector) -> np.ndarray:

        vector = np.asarray(vector, dtype="float64")

        if vector.ndim == 2 and vector.shape[0] == 1:
            vector = vector[0]

        if vector.shape != (self._dim,):
            raise InvalidArgument(
                f"Query vector must have dimension {self._dim}, "
                f"got shape {vector.shape}"
            )

        return vector

    def _check_records(self, records: Sequence[VectorRecord]):

        for record in records:

            if not record.id:
                raise InvalidArgument("Vector record id is required")

            if np.shape(record.embedding) != (self._dim,):
                raise InvalidArgument(
                    f"Record {record.id} has embedding shape "
                    f"{np.shape(record.embedding)}, expected ({self._dim},)"
                )

    @staticmethod
    def _check_top_k(top_k: int):

        if top_k <= 0:
            raise InvalidArgument(f"top_k must be positive, got {top_k}")


# ============================================================
# IN-PROCESS BACKEND
# ============================================================

class InMemoryVectorStore(VectorStore):
    """
    Brute-force cosine store held in process memory.

    Records are keyed by id and guarded by a reader/writer lock. A
    secondary index from (owner_id, source_name) to ids keeps document
    deletes from scanning every record. Nothing is persisted.
    """

    def __init__(self, dimension: int):

        super().__init__(dimension)

        self._records: Dict[str, VectorRecord] = {}
        self._by_source: Dict[Tuple[str, str], Set[str]] = {}
        self._lock = ReadWriteLock()

        logger.info(
            "In-memory vector store initialized",
            extra={"dimension": dimension},
        )

    # ============================================================
    # WRITES
    # ============================================================

    def upsert(self, records: Sequence[VectorRecord]) -> int:

        self._check_records(records)

        written = set()

        with self._lock.write_locked():

            for record in records:

                embedding = np.array(record.embedding, dtype="float64")
                embedding.setflags(write=False)

                stored = VectorRecord(
                    id=record.id,
                    embedding=embedding,
                    metadata=detach_metadata(record.metadata),
                )

                self._remove_locked(record.id)

                self._records[record.id] = stored

                key = (record.metadata.owner_id, record.metadata.source_name)
                self._by_source.setdefault(key, set()).add(record.id)

                written.add(record.id)

            total = len(self._records)

        logger.info(
            "Vectors upserted",
            extra={"upserted": len(written), "total": total},
        )

        return len(written)

    def delete(self, ids: Sequence[str]) -> int:

        deleted = 0

        with self._lock.write_locked():

            for record_id in ids:

                if self._remove_locked(record_id):
                    deleted += 1

        logger.info(
            "Vectors deleted",
            extra={"requested": len(ids), "deleted": deleted},
        )

        return deleted

    def _remove_locked(self, record_id: str) -> bool:

        record = self._records.pop(record_id, None)

        if record is None:
            return False

        key = (record.metadata.owner_id, record.metadata.source_name)
        ids = self._by_source.get(key)

        if ids is not None:
            ids.discard(record_id)
            if not ids:
                del self._by_source[key]

        return True

    def delete_where(self, filter: MetadataFilter) -> int:
        """Match and delete under one write lock; (owner, source) filters skip the scan."""

        with self._lock.write_locked():

            if filter.owner_id is not None and filter.source_name is not None:
                candidates = self._by_source.get(
                    (filter.owner_id, filter.source_name), ()
                )
            else:
                candidates = self._records.keys()

            ids = [
                record_id
                for record_id in candidates
                if filter.matches(self._records[record_id].metadata)
            ]

            for record_id in ids:
                self._remove_locked(record_id)

        logger.info(
            "Vectors deleted by metadata",
            extra={"filter": filter.conditions(), "deleted": len(ids)},
        )

        return len(ids)

    # ============================================================
    # READS
    # ============================================================

    def query(
        self,
        vector,
        top_k: int,
        filter: Optional[MetadataFilter] = None,
    ) -> List[SearchResult]:

        self._check_top_k(top_k)

        query_vector = self._check_vector(vector)

        with self._lock.read_locked():

            candidates = [
                record
                for record in self._records.values()
                if filter is None or filter.matches(record.metadata)
            ]

        if not candidates:
            return []

        matrix = np.vstack([record.embedding for record in candidates])

        scores = cosine_scores(matrix, query_vector)

        ranked = rank_results(
            (
                (record.id, float(score), record.metadata)
                for record, score in zip(candidates, scores)
            ),
            top_k,
        )

        return [
            SearchResult(
                record_id=record_id,
                score=score,
                metadata=detach_metadata(metadata),
            )
            for record_id, score, metadata in ranked
        ]

    def get(self, record_id: str) -> Optional[VectorRecord]:

        with self._lock.read_locked():
            record = self._records.get(record_id)

        if record is None:
            return None

        return replace(record, metadata=detach_metadata(record.metadata))

    def stats(self) -> StoreStats:

        with self._lock.read_locked():

            by_type = Counter(
                record.metadata.record_type
                for record in self._records.values()
            )

            return StoreStats(
                total_vectors=len(self._records),
                dimension=self._dim,
                by_record_type=dict(by_type),
            )
