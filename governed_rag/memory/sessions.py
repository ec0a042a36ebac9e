# governed_rag/memory/sessions.py

"""
Document sessions: uploaded-document metadata with a fixed retention.

Expiry is the only deletion path. A session and its chunks are removed
together under the manager write lock, so a concurrent reader sees either the
whole session or nothing.
"""

import json
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from governed_rag.config import (
    DOCUMENT_RETENTION_HOURS,
    MAX_CHUNKS_PER_DOCUMENT,
)
from governed_rag.domain import DocumentChunk, DocumentSession, ensure_utc, utcnow
from governed_rag.errors import NotFoundError, StorageError, ValidationError
from governed_rag.memory.chunker import chunk_text
from governed_rag.memory.embedder import Embedder
from governed_rag.memory.store import EmbeddingStore

logger = logging.getLogger(__name__)


def generate_document_id() -> str:
    return f"doc_{uuid.uuid4().hex[:12]}"


class ReadWriteLock:
    """
    Many readers or one writer.

    Waiting writers block new readers, so cleanup is not starved by a
    steady stream of searches.
    """

    def __init__(self):

        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):

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
    def write(self):

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


class SessionRepository:
    """
    Session records keyed by id, optionally mirrored to a JSON file.
    """

    def __init__(self, path: Optional[str] = None):

        self._lock = threading.RLock()
        self._sessions: Dict[str, DocumentSession] = {}
        self._path = path

        if path:
            self._load()

    def add(self, session: DocumentSession):

        with self._lock:

            if session.id in self._sessions:
                raise StorageError(f"Session {session.id} already exists")

            self._sessions[session.id] = session

            try:
                self._save()
            except StorageError:
                del self._sessions[session.id]
                raise

    def get(self, document_id: str) -> Optional[DocumentSession]:

        with self._lock:
            return self._sessions.get(document_id)

    def remove(self, document_id: str) -> bool:

        with self._lock:

            if self._sessions.pop(document_id, None) is None:
                return False

            self._save()

            return True

    def list_all(self) -> List[DocumentSession]:

        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def _load(self):

        if not os.path.exists(self._path):
            logger.info("Session registry file not found. Starting fresh.")
            return

        try:

            with open(self._path, "r") as f:
                data = json.load(f)

            self._sessions = {
                doc_id: DocumentSession.from_dict(meta)
                for doc_id, meta in data.items()
            }

        except (OSError, ValueError, KeyError) as e:
            raise StorageError(f"Session registry load failed: {e}") from e

        logger.info(
            "Session registry loaded",
            extra={"documents": len(self._sessions)},
        )

    def _save(self):

        if not self._path:
            return

        try:

            directory = os.path.dirname(self._path)

            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(self._path, "w") as f:
                json.dump(
                    {doc_id: s.to_dict() for doc_id, s in self._sessions.items()},
                    f,
                )

        except OSError as e:
            raise StorageError(f"Session registry save failed: {e}") from e


class DocumentSessionManager:

    def __init__(
        self,
        repository: SessionRepository,
        embedding_store: EmbeddingStore,
        embedder: Embedder,
        retention: timedelta = timedelta(hours=DOCUMENT_RETENTION_HOURS),
        max_chunks: int = MAX_CHUNKS_PER_DOCUMENT,
        clock: Callable[[], datetime] = utcnow,
    ):

        if retention <= timedelta(0):
            raise ValueError("Retention window must be positive")

        self._repository = repository
        self._store = embedding_store
        self._embedder = embedder
        self._retention = retention
        self._max_chunks = max_chunks
        self._clock = clock

        # Readers share it; deleting a session and its chunks is exclusive
        self._lock = ReadWriteLock()

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else self._clock()

    # ============================================================
    # INGESTION
    # ============================================================

    def create_session(
        self,
        owner_address: str,
        filename: str,
        chunks: List[str],
        now: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> DocumentSession:

        if not owner_address or not owner_address.strip():
            raise ValidationError("owner_address is required")

        if not filename or not filename.strip():
            raise ValidationError("filename is required")

        if not chunks:
            raise ValidationError("Cannot create a session without chunks")

        if len(chunks) > self._max_chunks:
            raise ValidationError(
                f"Chunk count {len(chunks)} exceeds limit of {self._max_chunks}"
            )

        # Provider call happens before any shared state is touched
        embeddings = self._embedder.embed(chunks, timeout=timeout)

        created_at = self._now(now)

        session = DocumentSession(
            id=generate_document_id(),
            owner_address=owner_address,
            filename=filename,
            created_at=created_at,
            expires_at=created_at + self._retention,
            chunk_count=len(chunks),
        )

        # Chunks under a fresh id are invisible until the session is published
        self._store.add_chunks(session.id, chunks, embeddings)

        try:
            with self._lock.write():
                self._repository.add(session)
        except StorageError:
            self._store.delete_document(session.id)
            raise

        logger.info(
            "Document session created",
            extra={
                "doc_id": session.id,
                "owner": owner_address,
                "chunks": session.chunk_count,
                "expires_at": session.expires_at.isoformat(),
            },
        )

        return session

    def ingest_text(
        self,
        owner_address: str,
        filename: str,
        text: str,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> DocumentSession:
        """Chunk already-extracted text and store it as a new session."""

        chunks = chunk_text(text)

        if not chunks:
            raise ValidationError("No text content found in document")

        return self.create_session(
            owner_address,
            filename,
            chunks,
            now=now,
            timeout=timeout,
        )

    # ============================================================
    # READS
    # ============================================================

    def _visible(self, document_id: str, now: datetime) -> DocumentSession:

        if not document_id or not document_id.strip():
            raise ValidationError("document_id is required")

        session = self._repository.get(document_id)

        # Expired sessions are gone for readers even before cleanup runs
        if session is None or session.is_expired(now):
            raise NotFoundError(f"Document {document_id} not found")

        return session

    def get_session(
        self,
        document_id: str,
        now: Optional[datetime] = None,
    ) -> DocumentSession:

        with self._lock.read():
            return self._visible(document_id, self._now(now))

    def read_chunks(
        self,
        document_id: str,
        now: Optional[datetime] = None,
    ) -> Tuple[DocumentSession, List[DocumentChunk]]:

        with self._lock.read():

            session = self._visible(document_id, self._now(now))

            return session, self._store.get_chunks(document_id)

    def list_sessions(
        self,
        owner_address: str,
        now: Optional[datetime] = None,
    ) -> List[DocumentSession]:

        now = self._now(now)

        sessions = [
            s for s in self._repository.list_all()
            if s.owner_address == owner_address and not s.is_expired(now)
        ]

        return sorted(sessions, key=lambda s: (s.created_at, s.id), reverse=True)

    # ============================================================
    # EXPIRY
    # ============================================================

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:

        now = self._now(now)

        removed = 0

        for session in self._repository.list_all():

            if not session.is_expired(now):
                continue

            # Exclusive per document
            with self._lock.write():

                if self._repository.get(session.id) is None:
                    continue

                chunks = self._store.delete_document(session.id)

                self._repository.remove(session.id)

            removed += 1

            logger.info(
                "Expired document removed",
                extra={
                    "doc_id": session.id,
                    "chunks": chunks,
                    "expired_at": session.expires_at.isoformat(),
                },
            )

        logger.info(
            "Cleanup completed",
            extra={"removed": removed, "now": now.isoformat()},
        )

        return removed

    def get_stats(self) -> Dict:

        return {
            "sessions": len(self._repository),
            **self._store.get_stats(),
        }
