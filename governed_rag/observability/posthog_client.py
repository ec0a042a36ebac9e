# governed_rag/observability/posthog_client.py

"""
PostHog product analytics.

Mirrors governed actions (uploads, questions, quota refusals, cleanup
passes) to PostHog, keyed by client address. Disabled when
POSTHOG_API_KEY is unset; tracking failures are logged and never reach
the request path.
"""

import logging
import os
from typing import Any, Dict, Optional

from posthog import Posthog

from governed_rag.domain import RateLimitStatus, UsageEvent

logger = logging.getLogger(__name__)


class PostHogClient:

    def __init__(
        self,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
    ):

        self._client: Optional[Posthog] = None

        api_key = api_key or os.getenv("POSTHOG_API_KEY")
        host = host or os.getenv("POSTHOG_HOST", "https://app.posthog.com")

        if not api_key:
            logger.info("PostHog disabled: POSTHOG_API_KEY not set")
            return

        self._client = Posthog(
            project_api_key=api_key,
            host=host,
            timeout=5,
            flush_interval=1,
        )

        logger.info(
            "PostHog client initialized",
            extra={"host": host},
        )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _track(
        self,
        distinct_id: str,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
    ):

        if self._client is None:
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
                },
            )

    def track_usage(self, event: UsageEvent):

        self._track(
            event.client_address,
            f"{event.action_type.value}_recorded",
            {
                "document_id": event.document_id,
                "response_time_ms": event.response_time_ms,
            },
        )

    def track_rate_limited(
        self,
        client_address: str,
        action: str,
        status: RateLimitStatus,
    ):

        self._track(
            client_address,
            "rate_limit_exceeded",
            {"action": action, **status.to_dict()},
        )

    def track_retrieval(
        self,
        client_address: str,
        document_id: str,
        chunks_retrieved: int,
        top_score: Optional[float],
    ):

        self._track(
            client_address,
            "retrieval_completed",
            {
                "document_id": document_id,
                "chunks_retrieved": chunks_retrieved,
                "top_score": top_score,
            },
        )

    def track_cleanup(self, removed: int):

        self._track("system", "cleanup_completed", {"removed": removed})

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

    def shutdown(self):

        if self._client is not None:
            self._client.shutdown()
