# docvector/observability/posthog_client.py

"""
PostHog Observability Client

Architecture contract:
- Does NOT break existing logging
- Adds event tracking for ingest, search and delete
- Uses request_id as fallback distinct_id
- Never blocks or fails an API call
"""

import os
import logging
from typing import Optional, Dict, Any

from posthog import Posthog


logger = logging.getLogger(__name__)


class PostHogClient:
    """
    Safe PostHog wrapper.

    Disabled when POSTHOG_API_KEY is not set; every tracking call is then
    a no-op.
    """

    def __init__(self, api_key: Optional[str] = None, host: Optional[str] = None):

        self._enabled = False
        self._client: Optional[Posthog] = None

        api_key = api_key or os.getenv("POSTHOG_API_KEY")
        host = host or os.getenv("POSTHOG_HOST", "https://app.posthog.com")

        if not api_key:
            logger.info(
                "PostHog disabled: POSTHOG_API_KEY not set"
            )
            return

        try:

            self._client = Posthog(
                project_api_key=api_key,
                host=host,
                timeout=5,
                flush_interval=1,
            )

            self._enabled = True

            logger.info(
                "PostHog client initialized",
                extra={"host": host}
            )

        except Exception as e:

            logger.error(
                "PostHog initialization failed",
                extra={"error": str(e)}
            )

            self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled


    # ==========================================================
    # INTERNAL SAFE TRACK
    # ==========================================================

    def _track(
        self,
        distinct_id: str,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
    ):
        """Analytics must never fail a request: errors are logged as warnings."""

        if not self._enabled or not self._client:
            return

        try:

            self._client.capture(
                distinct_id=distinct_id,
                event=event,
                properties=properties or {},
            )

        except Exception as e:

            logger.warning(
                "PostHog tracking failed",
                extra={
                    "event": event,
                    "error": str(e),
                }
            )


    # ==========================================================
    # INGEST TRACKING
    # ==========================================================

    def track_ingest(
        self,
        distinct_id: str,
        owner_id: str,
        source_name: str,
        record_type: str,
        chunks: int,
        failed: int,
        latency: float,
    ):

        self._track(
            distinct_id,
            "document_ingested",
            {
                "owner_id": owner_id,
                "source_name": source_name,
                "record_type": record_type,
                "chunks": chunks,
                "failed_chunks": failed,
                "latency_seconds": latency,
            },
        )


    # ==========================================================
    # SEARCH TRACKING
    # ==========================================================

    def track_search(
        self,
        distinct_id: str,
        owner_id: str,
        query: str,
        results: int,
        top_score: Optional[float],
        latency: float,
    ):

        self._track(
            distinct_id,
            "search_completed",
            {
                "owner_id": owner_id,
                "query_length": len(query),
                "results": results,
                "top_score": top_score,
                "latency_seconds": latency,
            },
        )


    # ==========================================================
    # DELETE TRACKING
    # ==========================================================

    def track_delete(
        self,
        distinct_id: str,
        owner_id: str,
        source_name: str,
        deleted: int,
    ):

        self._track(
            distinct_id,
            "document_deleted",
            {
                "owner_id": owner_id,
                "source_name": source_name,
                "deleted": deleted,
            },
        )


    # ==========================================================
    # ERROR TRACKING
    # ==========================================================

    def track_error(
        self,
        distinct_id: str,
        error_type: str,
        error_message: str,
        endpoint: str,
    ):

        self._track(
            distinct_id,
            "system_error",
            {
                "error_type": error_type,
                "error_message": error_message,
                "endpoint": endpoint,
            },
        )


posthog_client = PostHogClient()
