# docvector/memory/qdrant_client.py

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from qdrant_client import QdrantClient

from qdrant_client.http.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from docvector.config import (
    EMBEDDING_DIMENSION,
    QDRANT_API_KEY,
    QDRANT_COLLECTION,
    QDRANT_TIMEOUT_SECONDS,
    QDRANT_URL,
    VECTOR_METRIC,
)
from docvector.errors import DocVectorError, InvalidArgument, ServiceUnavailable
from docvector.memory.store import VectorStore, rank_results
from docvector.memory.types import (
    FILTERABLE_KEYS,
    RECORD_TYPE_CHAT,
    RECORD_TYPE_DOCUMENT,
    MetadataFilter,
    RecordMetadata,
    SearchResult,
    StoreStats,
    VectorRecord,
)

logger = logging.getLogger(__name__)

METRICS = {
    "cosine": Distance.COSINE,
    "dot": Distance.DOT,
    "dotproduct": Distance.DOT,
    "euclidean": Distance.EUCLID,
}

SCROLL_BATCH_SIZE = 256

# Payload key holding the caller's record id (point ids must be UUIDs)
_RECORD_ID_KEY = "record_id"


@dataclass(frozen=True)
class RemoteStoreConfig:
    """Connection settings for the managed vector index."""

    url: Optional[str]
    api_key: Optional[str]
    index_name: Optional[str]
    dimension: int = EMBEDDING_DIMENSION
    metric: str = VECTOR_METRIC
    timeout: int = QDRANT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "RemoteStoreConfig":
        return cls(
            url=QDRANT_URL,
            api_key=QDRANT_API_KEY,
            index_name=QDRANT_COLLECTION,
            dimension=EMBEDDING_DIMENSION,
            metric=VECTOR_METRIC,
            timeout=QDRANT_TIMEOUT_SECONDS,
        )

    def missing_fields(self) -> List[str]:

        missing = []

        if not self.url:
            missing.append("url")

        if not self.index_name:
            missing.append("index_name")

        if not self.dimension or self.dimension <= 0:
            missing.append("dimension")

        if not self.metric:
            missing.append("metric")

        return missing


def to_point_id(record_id: str) -> str:
    """Qdrant point ids must be UUIDs; other ids are mapped deterministically."""

    try:
        return str(uuid.UUID(record_id))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, record_id))


def to_qdrant_filter(filter: Optional[MetadataFilter]) -> Optional[Filter]:

    if filter is None or filter.is_empty():
        return None

    return Filter(
        must=[
            FieldCondition(key=key, match=MatchValue(value=value))
            for key, value in filter.conditions().items()
        ]
    )


class QdrantVectorStore(VectorStore):
    """
    Vector store backed by a managed Qdrant collection.

    The client is created lazily on first use. Every failure to reach the
    service, a missing configuration, or a missing index is raised as
    ServiceUnavailable. Nothing is retried here.
    """

    def __init__(
        self,
        config: RemoteStoreConfig,
        client: Optional[QdrantClient] = None,
    ):

        super().__init__(config.dimension)

        self._config = config
        self._collection = config.index_name
        self._client = client
        self._index_ready = False

        missing = config.missing_fields()

        if missing and client is None:

            logger.warning(
                "Remote vector store not configured, treating as unavailable",
                extra={"missing_fields": missing},
            )

    # ============================================================
    # CONNECTION
    # ============================================================

    def _get_client(self) -> QdrantClient:

        if self._client is not None:
            return self._client

        missing = self._config.missing_fields()

        if missing:
            raise ServiceUnavailable(
                f"Remote vector store not configured: missing {', '.join(missing)}"
            )

        try:

            self._client = QdrantClient(
                url=self._config.url,
                api_key=self._config.api_key,
                timeout=self._config.timeout,
            )

        except Exception as e:
            raise ServiceUnavailable(
                f"Failed to create Qdrant client: {e}"
            ) from e

        logger.info(
            "Qdrant client initialized",
            extra={
                "collection": self._collection,
                "dimension": self._dim,
                "timeout": self._config.timeout,
            },
        )

        return self._client

    def _call(self, operation: str, fn: Callable, *args, **kwargs) -> Any:

        try:
            return fn(*args, **kwargs)

        except DocVectorError:
            raise

        except Exception as e:

            self._index_ready = False

            logger.error(
                "Qdrant operation failed",
                extra={
                    "operation": operation,
                    "collection": self._collection,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            raise ServiceUnavailable(
                f"Qdrant {operation} failed: {e}"
            ) from e

    def _require_index(self) -> QdrantClient:

        client = self._get_client()

        if self._index_ready:
            return client

        exists = self._call(
            "collection_exists",
            client.collection_exists,
            collection_name=self._collection,
        )

        if not exists:
            raise ServiceUnavailable(
                f"Index '{self._collection}' does not exist; call ensure_index first"
            )

        self._index_ready = True

        return client

    # ============================================================
    # INDEX MANAGEMENT
    # ============================================================

    def ensure_index(
        self,
        name: Optional[str] = None,
        dimension: Optional[int] = None,
        metric: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create the index if it does not exist yet. Safe to call repeatedly.

        Also ensures keyword payload indexes for every filterable key.
        """

        name = name or self._collection
        dimension = dimension or self._dim
        metric = (metric or self._config.metric).lower()

        if dimension != self._dim:
            raise InvalidArgument(
                f"Index dimension {dimension} does not match store dimension {self._dim}"
            )

        if metric not in METRICS:
            raise InvalidArgument(f"Unsupported metric: {metric}")

        client = self._get_client()

        self._collection = name

        created = False

        if self._call("collection_exists", client.collection_exists, collection_name=name):

            info = self._call("get_collection", client.get_collection, collection_name=name)

            existing = info.config.params.vectors.size

            if existing != dimension:
                raise InvalidArgument(
                    f"Index '{name}' exists with dimension {existing}, expected {dimension}"
                )

        else:

            self._call(
                "create_collection",
                client.create_collection,
                collection_name=name,
                vectors_config=VectorParams(
                    size=dimension,
                    distance=METRICS[metric],
                ),
            )

            created = True

            logger.info(
                "Qdrant collection created",
                extra={"collection": name, "dimension": dimension, "metric": metric},
            )

        for field_name in FILTERABLE_KEYS:

            try:

                client.create_payload_index(
                    collection_name=name,
                    field_name=field_name,
                    field_schema=PayloadSchemaType.KEYWORD,
                )

            except Exception as e:
                # Already present, or not supported by a local instance
                logger.debug(
                    "Payload index already exists or skipped",
                    extra={"field": field_name, "error": str(e)},
                )

        self._index_ready = True

        return {
            "index_name": name,
            "dimension": dimension,
            "metric": metric,
            "created": created,
        }

    # ============================================================
    # WRITES
    # ============================================================

    def upsert(self, records: Sequence[VectorRecord]) -> int:

        self._check_records(records)

        if not records:
            return 0

        client = self._require_index()

        points = {}

        for record in records:

            payload = record.metadata.to_payload()
            payload[_RECORD_ID_KEY] = record.id

            points[record.id] = PointStruct(
                id=to_point_id(record.id),
                vector=np.asarray(record.embedding, dtype="float64").tolist(),
                payload=payload,
            )

        self._call(
            "upsert",
            client.upsert,
            collection_name=self._collection,
            points=list(points.values()),
            wait=True,
        )

        logger.info(
            "Vectors upserted",
            extra={"collection": self._collection, "upserted": len(points)},
        )

        return len(points)

    def delete(self, ids: Sequence[str]) -> int:

        if not ids:
            return 0

        client = self._require_index()

        point_ids = sorted({to_point_id(record_id) for record_id in ids})

        existing = self._call(
            "retrieve",
            client.retrieve,
            collection_name=self._collection,
            ids=point_ids,
            with_payload=False,
            with_vectors=False,
        )

        if not existing:
            return 0

        self._call(
            "delete",
            client.delete,
            collection_name=self._collection,
            points_selector=PointIdsList(points=[point.id for point in existing]),
            wait=True,
        )

        logger.info(
            "Vectors deleted",
            extra={"collection": self._collection, "deleted": len(existing)},
        )

        return len(existing)

    def delete_where(self, filter: MetadataFilter) -> int:
        """Native filtered delete; an empty filter is refused."""

        if filter.is_empty():
            raise InvalidArgument("Refusing to delete with an empty filter")

        client = self._require_index()

        qdrant_filter = to_qdrant_filter(filter)

        matched = self._call(
            "count",
            client.count,
            collection_name=self._collection,
            count_filter=qdrant_filter,
            exact=True,
        ).count

        if matched == 0:
            return 0

        self._call(
            "delete",
            client.delete,
            collection_name=self._collection,
            points_selector=FilterSelector(filter=qdrant_filter),
            wait=True,
        )

        logger.info(
            "Vectors deleted by metadata",
            extra={
                "collection": self._collection,
                "filter": filter.conditions(),
                "deleted": matched,
            },
        )

        return matched

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

        client = self._require_index()

        if not np.any(query_vector):
            return self._zero_query(client, top_k, filter)

        points = self._query_through_ties(client, query_vector, top_k, filter)

        clip = self._config.metric.lower() == "cosine"

        scored = []

        for point in points:

            payload = dict(point.payload or {})
            record_id = payload.pop(_RECORD_ID_KEY, str(point.id))

            score = float(point.score)

            if clip:
                score = min(max(score, -1.0), 1.0)

            scored.append((record_id, score, RecordMetadata.from_payload(payload)))

        return [
            SearchResult(record_id=record_id, score=score, metadata=metadata)
            for record_id, score, metadata in rank_results(scored, top_k)
        ]

    def _query_through_ties(
        self,
        client: QdrantClient,
        query_vector: np.ndarray,
        top_k: int,
        filter: Optional[MetadataFilter],
    ) -> list:
        """
        Fetch the top_k points plus every point tied with the one at the cutoff.

        Qdrant orders equal scores by its own point ids, so the limit grows
        until the last fetched score drops below the cutoff score or the
        matches run out. rank_results then breaks the ties by record id.
        """

        limit = top_k

        while True:

            points = self._call(
                "query_points",
                client.query_points,
                collection_name=self._collection,
                query=query_vector.tolist(),
                query_filter=to_qdrant_filter(filter),
                limit=limit,
                with_payload=True,
            ).points

            if len(points) < limit or points[-1].score != points[top_k - 1].score:
                return points

            limit *= 2

    def _zero_query(
        self,
        client: QdrantClient,
        top_k: int,
        filter: Optional[MetadataFilter],
    ) -> List[SearchResult]:
        """A zero vector has no direction: every match scores 0, ordered by id."""

        scored = []
        offset = None

        while True:

            points, offset = self._call(
                "scroll",
                client.scroll,
                collection_name=self._collection,
                scroll_filter=to_qdrant_filter(filter),
                limit=SCROLL_BATCH_SIZE,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )

            for point in points:

                payload = dict(point.payload or {})
                record_id = payload.pop(_RECORD_ID_KEY, str(point.id))

                scored.append((record_id, 0.0, RecordMetadata.from_payload(payload)))

            if offset is None or not points:
                break

        return [
            SearchResult(record_id=record_id, score=score, metadata=metadata)
            for record_id, score, metadata in rank_results(scored, top_k)
        ]

    def stats(self) -> StoreStats:

        client = self._require_index()

        total = self._call(
            "count",
            client.count,
            collection_name=self._collection,
            exact=True,
        ).count

        by_type = {}

        for record_type in (RECORD_TYPE_DOCUMENT, RECORD_TYPE_CHAT):

            count = self._call(
                "count",
                client.count,
                collection_name=self._collection,
                count_filter=to_qdrant_filter(MetadataFilter(record_type=record_type)),
                exact=True,
            ).count

            if count:
                by_type[record_type] = count

        return StoreStats(
            total_vectors=total,
            dimension=self._dim,
            by_record_type=by_type,
        )

    # ============================================================
    # HEALTH CHECK
    # ============================================================

    def health_check(self) -> Dict[str, Any]:
        """Never raises: reports configuration and index state."""

        status = {
            "backend": "qdrant",
            "collection": self._collection,
            "configured": self._client is not None or not self._config.missing_fields(),
            "index_ready": False,
            "status": "unavailable",
        }

        try:
            self._require_index()
        except ServiceUnavailable as e:
            status["error"] = str(e)
            return status

        status["index_ready"] = True
        status["status"] = "healthy"

        return status
