# governed_rag/workflow/chat_turn.py
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from governed_rag.config import TOP_K
from governed_rag.domain import (
    ActionType,
    DocumentSession,
    RateLimitStatus,
    SearchResult,
    UsageEvent,
)
from governed_rag.errors import RateLimitExceeded
from governed_rag.memory.retriever import SimilaritySearchEngine
from governed_rag.memory.sessions import DocumentSessionManager
from governed_rag.usage.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class ChatTurn:
    passages: List[SearchResult]
    status: RateLimitStatus
    event: UsageEvent
    answer: Any = None


def build_context(passages: List[SearchResult]) -> str:
    """
    Format retrieved passages for the generation prompt.
    """
    parts = []
    for i, passage in enumerate(passages, 1):
        parts.append(f"[Context {i}, Confidence: {passage.score:.2f}]\n{passage.text}")
    return "\n\n".join(parts)


def run_chat_turn(
    client_address: str,
    question: str,
    document_id: str,
    limiter: RateLimiter,
    search_engine: SimilaritySearchEngine,
    top_k: int = TOP_K,
    generate: Optional[Callable[[str, List[SearchResult]], Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ChatTurn:
    """
    Quota check → retrieval → (generation) → usage record.

    `generate` is the text-generation collaborator; when given it is
    called with the question and the passages and its return value is
    passed back untouched. Nothing is recorded if any step fails.
    """
    status = limiter.check_status(client_address)

    if not status.can_question:
        raise RateLimitExceeded(ActionType.QUESTION, status)

    start = time.perf_counter()

    passages = search_engine.search(question, document_id, top_k=top_k)

    answer = generate(question, passages) if generate is not None else None

    elapsed_ms = int((time.perf_counter() - start) * 1000)

    event = limiter.record_action(
        client_address,
        ActionType.QUESTION,
        document_id=document_id,
        response_time_ms=elapsed_ms,
        metadata={"passages": len(passages), **(metadata or {})},
    )

    return ChatTurn(passages=passages, status=status, event=event, answer=answer)


def run_upload(
    client_address: str,
    filename: str,
    text: str,
    limiter: RateLimiter,
    sessions: DocumentSessionManager,
    metadata: Optional[Dict[str, Any]] = None,
) -> DocumentSession:
    """Quota check → chunk + embed + store → usage record."""

    status = limiter.check_status(client_address)

    if not status.can_upload:
        raise RateLimitExceeded(ActionType.UPLOAD, status)

    start = time.perf_counter()

    session = sessions.ingest_text(client_address, filename, text)

    limiter.record_action(
        client_address,
        ActionType.UPLOAD,
        document_id=session.id,
        response_time_ms=int((time.perf_counter() - start) * 1000),
        metadata={"filename": filename, "characters": len(text), **(metadata or {})},
    )

    return session
