# governed_rag/memory/retriever.py
import logging
from typing import List, Optional

import numpy as np

from governed_rag.config import TOP_K
from governed_rag.domain import SearchResult
from governed_rag.errors import ValidationError
from governed_rag.memory.embedder import normalize
from governed_rag.memory.sessions import DocumentSessionManager

logger = logging.getLogger(__name__)


class SimilaritySearchEngine:
    """
    Ranks one document's chunks against a query by cosine similarity.

    A plain linear scan: a single document holds tens to low hundreds of
    chunks, and exact scores keep the ordering reproducible.
    """

    def __init__(
        self,
        sessions: DocumentSessionManager,
        max_top_k: Optional[int] = None,
    ):
        self._sessions = sessions
        self._embedder = sessions.embedder
        self._max_top_k = max_top_k

    def search(
        self,
        query_text: str,
        document_id: str,
        top_k: int = TOP_K,
        min_score: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        """
        Retrieve the top-k most similar chunks of a document.

        Args:
            query_text: User's question
            document_id: Session whose chunks are searched
            top_k: Maximum number of results
            min_score: Optional similarity floor
            timeout: Embedding call timeout in seconds

        Returns:
            SearchResults ordered by descending score, ties by chunk index

        Raises:
            ValidationError: blank query or top_k out of range
            NotFoundError: unknown or expired document
            ProviderTimeout / ProviderError: embedding call failed
        """

        if not query_text or not query_text.strip():
            raise ValidationError("Query text cannot be empty")

        if top_k < 1:
            raise ValidationError(f"top_k must be positive, got {top_k}")

        if self._max_top_k is not None and top_k > self._max_top_k:
            raise ValidationError(f"top_k must not exceed {self._max_top_k}")

        # Fail fast on unknown documents before paying for an embedding
        self._sessions.get_session(document_id)

        query_embedding = self._embedder.embed([query_text], timeout=timeout)

        # The session may expire while the query was being embedded;
        # read_chunks raises NotFoundError in that case.
        _, chunks = self._sessions.read_chunks(document_id)

        if not chunks:
            return []

        matrix = normalize(np.vstack([c.embedding for c in chunks]).astype("float32"))

        scores = matrix @ query_embedding[0]

        indices = np.array([c.chunk_index for c in chunks])

        # lexsort sorts by the last key first: score descending, then index
        order = np.lexsort((indices, -scores))

        results = []

        for pos in order[:top_k]:

            score = float(scores[pos])

            if min_score is not None and score < min_score:
                break

            results.append(
                SearchResult(
                    chunk_index=int(indices[pos]),
                    text=chunks[pos].text,
                    score=score,
                )
            )

        logger.info(
            "Retrieval completed",
            extra={
                "doc_id": document_id,
                "chunks_scanned": len(chunks),
                "chunks_returned": len(results),
                "top_score": results[0].score if results else None,
            },
        )

        return results
