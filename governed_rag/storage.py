"""
Store handle shared by every component.

Created once at process start and closed at shutdown; components receive
the stores they need from it instead of reaching for module globals.
"""
import logging
import os
from dataclasses import dataclass

from governed_rag.config import (
    PERSIST_STATE,
    STORAGE_DIR,
    VECTOR_BACKEND,
)
from governed_rag.memory.sessions import SessionRepository
from governed_rag.memory.store import EmbeddingStore, InMemoryEmbeddingStore
from governed_rag.usage.event_log import UsageEventLog

logger = logging.getLogger(__name__)


@dataclass
class Storage:
    embeddings: EmbeddingStore
    sessions: SessionRepository
    events: UsageEventLog

    def close(self):
        self.embeddings.close()
        logger.info("Storage closed")


def create_embedding_store(
    dim: int,
    backend: str = VECTOR_BACKEND,
    persist_dir: str = None,
) -> EmbeddingStore:
    """Create the embedding store selected by configuration"""

    backend = backend.lower()

    if backend == "memory":
        return InMemoryEmbeddingStore(persist_dir=persist_dir)

    if backend == "qdrant":
        from governed_rag.memory.qdrant_client import QdrantEmbeddingStore
        return QdrantEmbeddingStore(dim)

    raise ValueError(f"Unsupported vector backend: {backend}")


def build_storage(
    dim: int,
    backend: str = VECTOR_BACKEND,
    persist: bool = PERSIST_STATE,
    storage_dir: str = STORAGE_DIR,
) -> Storage:

    def path(name):
        return os.path.join(storage_dir, name) if persist else None

    storage = Storage(
        embeddings=create_embedding_store(dim, backend, persist_dir=path("vectors")),
        sessions=SessionRepository(path=path("sessions.json")),
        events=UsageEventLog(path=path("usage_events.jsonl")),
    )

    logger.info(
        "Storage ready",
        extra={
            "backend": backend,
            "persist": persist,
            "storage_dir": storage_dir if persist else None,
        },
    )

    return storage
