# tests/conftest.py
import hashlib
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from governed_rag.main import create_app
from governed_rag.memory.embedder import Embedder
from governed_rag.memory.retriever import SimilaritySearchEngine
from governed_rag.memory.sessions import DocumentSessionManager, SessionRepository
from governed_rag.memory.store import InMemoryEmbeddingStore
from governed_rag.observability.posthog_client import PostHogClient
from governed_rag.services import build_services
from governed_rag.storage import build_storage
from governed_rag.usage.event_log import UsageEventLog
from governed_rag.usage.rate_limiter import RateLimiter


T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class HashingEmbedder(Embedder):
    """
    Deterministic bag-of-words embedder.

    Texts sharing words get similar vectors, which is enough to exercise
    ranking without calling a provider.
    """

    def __init__(self, dimension: int = 64):
        super().__init__(dimension)
        self.calls: List[List[str]] = []

    def _embed_batch(self, texts, timeout):
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            vector = [0.0] * self._dimension
            for token in text.lower().split():
                digest = hashlib.md5(token.strip(".,?!").encode()).digest()
                vector[digest[0] % self._dimension] += 1.0
            vectors.append(vector)
        return vectors


class StubEmbedder(Embedder):
    """Returns fixed vectors per text."""

    def __init__(self, vectors: Dict[str, List[float]], default: Optional[List[float]] = None):
        dimension = len(next(iter(vectors.values())))
        super().__init__(dimension)
        self._vectors = vectors
        self._default = default or [0.0] * dimension
        self.error: Optional[Exception] = None

    def _embed_batch(self, texts, timeout):
        if self.error is not None:
            raise self.error
        return [self._vectors.get(t, self._default) for t in texts]


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def event_log():
    return UsageEventLog()


@pytest.fixture
def limiter(event_log, clock):
    return RateLimiter(event_log, questions_limit=5, uploads_limit=2, clock=clock)


@pytest.fixture
def embedding_store():
    return InMemoryEmbeddingStore()


@pytest.fixture
def repository():
    return SessionRepository()


@pytest.fixture
def sessions(repository, embedding_store, embedder, clock):
    return DocumentSessionManager(
        repository,
        embedding_store,
        embedder,
        retention=timedelta(hours=24),
        clock=clock,
    )


@pytest.fixture
def search_engine(sessions):
    return SimilaritySearchEngine(sessions)


@pytest.fixture
def services(monkeypatch):
    """
    Full service graph with a fake embedder and in-memory storage.
    """
    monkeypatch.delenv("POSTHOG_API_KEY", raising=False)

    embedder = HashingEmbedder()

    return build_services(
        embedder=embedder,
        storage=build_storage(embedder.get_dimension(), backend="memory", persist=False),
        posthog=PostHogClient(),
        questions_limit=3,
        uploads_limit=2,
        cleanup_interval_seconds=0,
    )


@pytest.fixture
def client(services):
    """
    FastAPI test client wired to the fake services.
    """
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def sample_text():
    return (
        "Our studio builds modern websites with Next.js and Tailwind. "
        "Typical website projects take one to two weeks.\n\n"
        "Mobile apps are built with React Native and usually take two to four weeks. "
        "Automation workflows use n8n and connect CRMs, spreadsheets and email.\n\n"
        "AI integration covers chatbots and document processing for small businesses."
    )
