# docvector/models.py
from pydantic import BaseModel, Field, validator
from typing import Any, Dict, List, Optional

from docvector.config import TOP_K


def _strip_required(v: str, name: str) -> str:
    if not v or not v.strip():
        raise ValueError(f"{name} cannot be empty or only whitespace")
    return v.strip()


class TextIngestRequest(BaseModel):
    """Request to ingest raw text as a document."""
    owner_id: str = Field(..., min_length=1, max_length=200)
    source_name: str = Field(..., min_length=1, max_length=500)
    text: str
    max_chunk_size: Optional[int] = Field(None, gt=0)
    overlap_size: Optional[int] = Field(None, ge=0)

    @validator('owner_id')
    def validate_owner_id(cls, v):
        return _strip_required(v, "Owner ID")

    @validator('source_name')
    def validate_source_name(cls, v):
        return _strip_required(v, "Source name")


class ChatMessageRequest(BaseModel):
    """Request to store one chat message under a session."""
    owner_id: str = Field(..., min_length=1, max_length=200)
    session_id: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    role: str = "user"
    message_id: Optional[str] = None

    @validator('owner_id')
    def validate_owner_id(cls, v):
        return _strip_required(v, "Owner ID")

    @validator('session_id')
    def validate_session_id(cls, v):
        return _strip_required(v, "Session ID")


class SearchRequest(BaseModel):
    """Request to search an owner's records."""
    owner_id: str = Field(..., min_length=1, max_length=200)
    query: str = Field(..., min_length=1, max_length=2000)
    top_k: int = Field(TOP_K, gt=0, le=100)
    record_type: Optional[str] = None
    # Document name, or chat session id for chat messages
    source_name: Optional[str] = Field(None, min_length=1, max_length=500)

    @validator('owner_id')
    def validate_owner_id(cls, v):
        return _strip_required(v, "Owner ID")

    @validator('source_name')
    def validate_source_name(cls, v):
        if v is None:
            return v
        return _strip_required(v, "Source name")

    @validator('query')
    def validate_query(cls, v):
        """Ensure query is not just whitespace."""
        return _strip_required(v, "Query")


class ChunkFailureInfo(BaseModel):
    chunk_index: int
    error_type: str
    message: str


class IngestResponse(BaseModel):
    """Response after ingesting a document or message."""
    owner_id: str
    source_name: str
    chunk_count: int
    stored: int
    record_ids: List[str]
    failed: List[ChunkFailureInfo] = []
    cancelled: bool = False
    complete: bool


class SearchHit(BaseModel):
    record_id: str
    score: float = Field(..., ge=-1.0, le=1.0)
    source_name: str
    record_type: str
    chunk_index: int
    text: Optional[str] = None
    metadata: Dict[str, Any]


class SearchResponse(BaseModel):
    """Ranked search results for a query."""
    owner_id: str
    query: str
    results: List[SearchHit]
    total_results: int


class DeleteResponse(BaseModel):
    """Response after deleting a document or a chat session."""
    owner_id: str
    source_name: str
    deleted: int
    success: bool


class StatsResponse(BaseModel):
    """Vector store statistics."""
    total_vectors: int
    dimension: int
    by_record_type: Dict[str, int]


class IndexResponse(BaseModel):
    """Result of ensuring the vector index exists."""
    index_name: Optional[str] = None
    dimension: int
    metric: str
    created: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    total_vectors: int
    dimension: int
    components: Dict[str, Any]
