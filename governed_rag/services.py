"""
Wiring for the governed retrieval core.

One Services object is built at startup and handed to the HTTP layer;
nothing below reaches for module-level singletons.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from governed_rag.config import (
    CLEANUP_INTERVAL_SECONDS,
    DOCUMENT_RETENTION_HOURS,
    QUESTIONS_PER_WEEK,
    UPLOADS_PER_WEEK,
)
from governed_rag.memory.embedder import Embedder, OpenAIEmbedder
from governed_rag.memory.retriever import SimilaritySearchEngine
from governed_rag.memory.sessions import DocumentSessionManager
from governed_rag.observability.posthog_client import PostHogClient
from governed_rag.storage import Storage, build_storage
from governed_rag.usage.analytics import UsageAnalytics
from governed_rag.usage.rate_limiter import RateLimiter, window_from_config
from governed_rag.workflow.cleanup import CleanupScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    storage: Storage
    embedder: Embedder
    limiter: RateLimiter
    sessions: DocumentSessionManager
    search: SimilaritySearchEngine
    analytics: UsageAnalytics
    posthog: PostHogClient
    scheduler: CleanupScheduler

    def start(self):
        self.scheduler.start()

    def close(self):
        self.scheduler.stop()
        self.posthog.shutdown()
        self.storage.close()


def build_services(
    embedder: Optional[Embedder] = None,
    storage: Optional[Storage] = None,
    posthog: Optional[PostHogClient] = None,
    window=None,
    questions_limit: int = QUESTIONS_PER_WEEK,
    uploads_limit: int = UPLOADS_PER_WEEK,
    retention: timedelta = timedelta(hours=DOCUMENT_RETENTION_HOURS),
    cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
) -> Services:

    embedder = embedder or OpenAIEmbedder()
    storage = storage or build_storage(embedder.get_dimension())
    window = window or window_from_config()

    limiter = RateLimiter(
        storage.events,
        questions_limit=questions_limit,
        uploads_limit=uploads_limit,
        window=window,
    )

    sessions = DocumentSessionManager(
        storage.sessions,
        storage.embeddings,
        embedder,
        retention=retention,
    )

    services = Services(
        storage=storage,
        embedder=embedder,
        limiter=limiter,
        sessions=sessions,
        search=SimilaritySearchEngine(sessions),
        analytics=UsageAnalytics(storage.events, quota_window=window),
        posthog=posthog or PostHogClient(),
        scheduler=CleanupScheduler(sessions, interval_seconds=cleanup_interval_seconds),
    )

    logger.info(
        "Services built",
        extra={
            "questions_limit": questions_limit,
            "uploads_limit": uploads_limit,
            "retention_hours": retention.total_seconds() / 3600,
        },
    )

    return services
