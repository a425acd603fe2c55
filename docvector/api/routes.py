from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
import logging
import os
import time
import uuid

from pathlib import Path

from docvector.config import ALLOWED_FILE_EXTENSIONS, MAX_FILE_SIZE_MB, UPLOAD_DIR
from docvector.memory.retriever import RetrievalService
from docvector.memory.types import IngestResult, RECORD_TYPE_CHAT, RECORD_TYPE_DOCUMENT
from docvector.observability.metrics import metrics_tracker
from docvector.observability.posthog_client import posthog_client

from docvector.models import (
    ChatMessageRequest,
    ChunkFailureInfo,
    DeleteResponse,
    HealthResponse,
    IndexResponse,
    IngestResponse,
    SearchHit,
    SearchRequest,
    SearchResponse,
    StatsResponse,
    TextIngestRequest,
)


# ============================================================
# LOGGER
# ============================================================

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================
# SERVICE DEPENDENCY
# ============================================================

def get_service(request: Request) -> RetrievalService:
    """The retrieval service is built once by create_app and held on app.state."""
    return request.app.state.retrieval_service


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


# ============================================================
# HELPERS
# ============================================================

def validate_file_size(content: bytes):

    size_mb = len(content) / (1024 * 1024)

    if size_mb > MAX_FILE_SIZE_MB:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: {size_mb:.2f}MB",
        )


def validate_file_extension(filename: str):

    extension = os.path.splitext(filename or "")[1].lower()

    if extension not in ALLOWED_FILE_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(ALLOWED_FILE_EXTENSIONS)}",
        )


def ingest_response(result: IngestResult) -> JSONResponse:
    """200 when every chunk was stored, 207 when some chunks failed or the ingest was cancelled."""

    body = IngestResponse(
        owner_id=result.owner_id,
        source_name=result.source_name,
        chunk_count=result.chunk_count,
        stored=len(result.record_ids),
        record_ids=result.record_ids,
        failed=[
            ChunkFailureInfo(
                chunk_index=failure.chunk_index,
                error_type=failure.error_type,
                message=failure.message,
            )
            for failure in result.failed
        ],
        cancelled=result.cancelled,
        complete=result.complete,
    )

    return JSONResponse(
        status_code=200 if result.complete else 207,
        content=body.dict(),
    )


def _track_ingest(request: Request, result: IngestResult, record_type: str, start_time: float):

    metrics_tracker.record_operation("ingest")
    metrics_tracker.record_operation("chunks_stored", len(result.record_ids))

    posthog_client.track_ingest(
        distinct_id=_request_id(request),
        owner_id=result.owner_id,
        source_name=result.source_name,
        record_type=record_type,
        chunks=result.chunk_count,
        failed=len(result.failed),
        latency=time.time() - start_time,
    )


# ============================================================
# HEALTH
# ============================================================

@router.get("/health", response_model=HealthResponse)
def health_check(service: RetrievalService = Depends(get_service)):

    components = service.health_check()

    healthy = components["store"].get("status") == "healthy"

    total_vectors = service.stats().total_vectors if healthy else 0

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        total_vectors=total_vectors,
        dimension=service.store.dimension,
        components=components,
    )


# ============================================================
# STATS
# ============================================================

@router.get("/stats", response_model=StatsResponse)
def get_stats(service: RetrievalService = Depends(get_service)):

    stats = service.stats()

    return StatsResponse(
        total_vectors=stats.total_vectors,
        dimension=stats.dimension,
        by_record_type=stats.by_record_type,
    )


# ============================================================
# INDEX
# ============================================================

@router.post("/index", response_model=IndexResponse)
def ensure_index(service: RetrievalService = Depends(get_service)):

    return IndexResponse(**service.ensure_index())


# ============================================================
# UPLOAD PDF
# ============================================================

@router.post("/documents")
async def upload_document(
    request: Request,
    owner_id: str = Form(...),
    file: UploadFile = File(...),
    source_name: str = Form(None),
    service: RetrievalService = Depends(get_service),
):

    validate_file_extension(file.filename)

    file_bytes = await file.read()

    validate_file_size(file_bytes)

    if not file_bytes:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    upload_dir = Path(UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)

    file_path = upload_dir / f"{uuid.uuid4().hex[:12]}.pdf"

    with file_path.open("wb") as buffer:
        buffer.write(file_bytes)

    logger.info(
        "PDF upload received",
        extra={
            "owner_id": owner_id,
            "file_name": file.filename,
            "size_bytes": len(file_bytes),
        },
    )

    start_time = time.time()

    try:

        result = service.ingest_pdf(
            owner_id=owner_id,
            file_path=str(file_path),
            source_name=source_name or file.filename,
        )

    finally:
        file_path.unlink(missing_ok=True)

    _track_ingest(request, result, RECORD_TYPE_DOCUMENT, start_time)

    return ingest_response(result)


# ============================================================
# INGEST TEXT
# ============================================================

@router.post("/documents/text")
def ingest_text(
    payload: TextIngestRequest,
    request: Request,
    service: RetrievalService = Depends(get_service),
):

    start_time = time.time()

    result = service.ingest_document(
        owner_id=payload.owner_id,
        source_name=payload.source_name,
        full_text=payload.text,
        max_chunk_size=payload.max_chunk_size,
        overlap_size=payload.overlap_size,
    )

    _track_ingest(request, result, RECORD_TYPE_DOCUMENT, start_time)

    return ingest_response(result)


# ============================================================
# INGEST CHAT MESSAGE
# ============================================================

@router.post("/messages")
def ingest_message(
    payload: ChatMessageRequest,
    request: Request,
    service: RetrievalService = Depends(get_service),
):

    start_time = time.time()

    result = service.ingest_chat_message(
        owner_id=payload.owner_id,
        session_id=payload.session_id,
        content=payload.content,
        role=payload.role,
        message_id=payload.message_id,
    )

    _track_ingest(request, result, RECORD_TYPE_CHAT, start_time)

    return ingest_response(result)


# ============================================================
# SEARCH
# ============================================================

@router.post("/search", response_model=SearchResponse)
def search(
    payload: SearchRequest,
    request: Request,
    service: RetrievalService = Depends(get_service),
):

    start_time = time.time()

    results = service.search(
        owner_id=payload.owner_id,
        query_text=payload.query,
        top_k=payload.top_k,
        record_type=payload.record_type,
        source_name=payload.source_name,
    )

    metrics_tracker.record_operation("search")

    posthog_client.track_search(
        distinct_id=_request_id(request),
        owner_id=payload.owner_id,
        query=payload.query,
        results=len(results),
        top_score=results[0].score if results else None,
        latency=time.time() - start_time,
    )

    hits = [
        SearchHit(
            record_id=result.record_id,
            score=result.score,
            source_name=result.metadata.source_name,
            record_type=result.metadata.record_type,
            chunk_index=result.metadata.chunk_index,
            text=result.metadata.text,
            metadata=result.metadata.to_payload(),
        )
        for result in results
    ]

    return SearchResponse(
        owner_id=payload.owner_id,
        query=payload.query,
        results=hits,
        total_results=len(hits),
    )


# ============================================================
# DELETE DOCUMENT
# ============================================================

@router.delete("/documents/{source_name}", response_model=DeleteResponse)
def delete_document(
    source_name: str,
    owner_id: str,
    request: Request,
    service: RetrievalService = Depends(get_service),
):

    deleted = service.delete_document(owner_id, source_name)

    metrics_tracker.record_operation("delete")

    posthog_client.track_delete(
        distinct_id=_request_id(request),
        owner_id=owner_id,
        source_name=source_name,
        deleted=deleted,
    )

    return DeleteResponse(
        owner_id=owner_id,
        source_name=source_name,
        deleted=deleted,
        success=True,
    )


# ============================================================
# DELETE CHAT SESSION
# ============================================================

@router.delete("/sessions/{session_id}", response_model=DeleteResponse)
def delete_session(
    session_id: str,
    owner_id: str,
    service: RetrievalService = Depends(get_service),
):

    deleted = service.delete_session(owner_id, session_id)

    metrics_tracker.record_operation("delete")

    return DeleteResponse(
        owner_id=owner_id,
        source_name=session_id,
        deleted=deleted,
        success=True,
    )


# ============================================================
# METRICS ENDPOINT
# ============================================================

@router.get("/metrics")
def get_metrics():

    return metrics_tracker.get_metrics()
