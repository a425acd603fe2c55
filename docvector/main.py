# docvector/main.py
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import os
import time
import uuid

from docvector.api.routes import router
from docvector.config import EMBEDDING_PROVIDER, VECTOR_BACKEND
from docvector.errors import (
    EmbeddingFailed,
    ExtractionFailed,
    InvalidArgument,
    ServiceUnavailable,
)
from docvector.memory.retriever import RetrievalService, build_retrieval_service
from docvector.observability.logger import setup_logging, get_logger
from docvector.observability.metrics import metrics_tracker
from docvector.observability.posthog_client import posthog_client

# Initialize logging FIRST
setup_logging()
logger = get_logger(__name__)

VERSION = "1.0.0"

# Pipeline errors and the HTTP status each one maps to
ERROR_STATUS = {
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    ExtractionFailed: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EmbeddingFailed: status.HTTP_502_BAD_GATEWAY,
    ServiceUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _register_error_handlers(app: FastAPI):

    def make_handler(status_code: int):

        async def handler(request: Request, exc: Exception):

            request_id = getattr(request.state, "request_id", "unknown")

            logger.warning(
                "request_rejected",
                extra={
                    "request_id": request_id,
                    "path": request.url.path,
                    "status_code": status_code,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

            posthog_client.track_error(
                distinct_id=request_id,
                error_type=type(exc).__name__,
                error_message=str(exc),
                endpoint=request.url.path,
            )

            return JSONResponse(
                status_code=status_code,
                content={
                    "detail": str(exc),
                    "request_id": request_id,
                    "error_type": type(exc).__name__,
                },
            )

        return handler

    for error_type, status_code in ERROR_STATUS.items():
        app.add_exception_handler(error_type, make_handler(status_code))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):

        request_id = getattr(request.state, "request_id", "unknown")

        logger.error(
            "unhandled_exception",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "error": str(exc),
                "error_type": type(exc).__name__
            },
            exc_info=True
        )

        posthog_client.track_error(
            distinct_id=request_id,
            error_type=type(exc).__name__,
            error_message=str(exc),
            endpoint=request.url.path,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An internal error occurred. Please try again.",
                "request_id": request_id,
                "error_type": type(exc).__name__
            }
        )


def create_app(service: Optional[RetrievalService] = None) -> FastAPI:
    """
    Build the API around one retrieval service.

    Tests pass their own service; otherwise one is built from the
    environment (VECTOR_BACKEND, EMBEDDING_PROVIDER, EMBEDDING_DIMENSION).
    """

    app = FastAPI(
        title="Document Vector Retrieval API",
        description="Chunk, embed, store and search documents per owner",
        version=VERSION
    )

    app.state.retrieval_service = service or build_retrieval_service()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Log every HTTP request with latency tracking
        and record request metrics.
        """

        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        logger.info(
            "request_started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None
            }
        )

        start_time = time.time()

        try:

            response = await call_next(request)

        except Exception as e:

            latency = time.time() - start_time

            metrics_tracker.record_failure()

            logger.error(
                "request_failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "latency_seconds": round(latency, 3),
                    "error": str(e),
                    "error_type": type(e).__name__
                },
                exc_info=True
            )

            raise

        latency = time.time() - start_time

        if response.status_code >= 500:
            metrics_tracker.record_failure()
        else:
            metrics_tracker.record_success(latency)

        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_seconds": round(latency, 3)
            }
        )

        return response

    _register_error_handlers(app)

    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():

        logger.info(
            "application_startup",
            extra={
                "version": VERSION,
                "vector_backend": VECTOR_BACKEND,
                "embedding_provider": EMBEDDING_PROVIDER,
            }
        )

        if EMBEDDING_PROVIDER == "openai" and not os.getenv("OPENAI_API_KEY"):

            logger.warning(
                "missing_api_key",
                extra={
                    "warning_detail":
                    "OPENAI_API_KEY not set. Embedding calls will fail."
                }
            )

    @app.on_event("shutdown")
    async def shutdown_event():

        logger.info("application_shutdown")

    @app.get("/")
    async def root():

        return {
            "message": "Document Vector Retrieval API",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics"
        }

    return app


app = create_app()


if __name__ == "__main__":

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
