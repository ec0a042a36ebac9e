# governed_rag/memory/embedder.py

"""
Embedding provider wrapper with batching.

Architecture contract:
chunker → embedder → embedding store
query   → embedder → similarity search

The same Embedder instance must serve ingestion and queries, otherwise
scores compare vectors from different spaces.

Guarantees:
• Always returns numpy float32 array of shape (n, dimension)
• Always L2-normalized (cosine-ready)
• Caller-supplied timeout, surfaced as ProviderTimeout
• Provider failures surfaced as ProviderError, never swallowed
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
import openai
from openai import OpenAI

from governed_rag.config import (
    EMBEDDING_MODEL,
    EMBEDDING_TIMEOUT_SECONDS,
    EMBED_BATCH_SIZE,
)
from governed_rag.errors import ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

_MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def normalize(vectors: np.ndarray) -> np.ndarray:

    norms = np.linalg.norm(
        vectors,
        axis=1,
        keepdims=True,
    )

    return vectors / np.clip(norms, 1e-10, None)


class Embedder(ABC):
    """
    Base class for embedding providers.

    Subclasses implement `_embed_batch`; batching, normalisation and
    shape checks live here.
    """

    def __init__(self, dimension: int, batch_size: int = EMBED_BATCH_SIZE):

        if dimension <= 0:
            raise ValueError("Embedding dimension must be positive")

        self._dimension = dimension
        self._batch_size = batch_size

    @abstractmethod
    def _embed_batch(
        self,
        texts: List[str],
        timeout: Optional[float],
    ) -> List[List[float]]:
        """Raw vectors for one batch, in input order"""

    def embed(
        self,
        texts: List[str],
        timeout: Optional[float] = None,
    ) -> np.ndarray:

        if not texts:
            return np.empty((0, self._dimension), dtype="float32")

        batches = []

        for start in range(0, len(texts), self._batch_size):

            batch = texts[start:start + self._batch_size]

            vectors = np.asarray(
                self._embed_batch(batch, timeout),
                dtype="float32",
            )

            if vectors.shape != (len(batch), self._dimension):
                raise ProviderError(
                    f"Provider returned shape {vectors.shape}, "
                    f"expected {(len(batch), self._dimension)}"
                )

            batches.append(normalize(vectors))

        return np.vstack(batches)

    def get_dimension(self) -> int:
        return self._dimension


class OpenAIEmbedder(Embedder):
    """
    OpenAI embeddings API.

    Responsibilities:
    • Call OpenAI embedding API
    • Apply the configured (or per-call) timeout
    • Translate SDK errors into the core error taxonomy
    """

    def __init__(
        self,
        model: str = EMBEDDING_MODEL,
        timeout: float = EMBEDDING_TIMEOUT_SECONDS,
        batch_size: int = EMBED_BATCH_SIZE,
        client: Optional[OpenAI] = None,
    ):

        if model not in _MODEL_DIMENSIONS:
            raise ValueError(f"Unsupported embedding model: {model}")

        super().__init__(_MODEL_DIMENSIONS[model], batch_size=batch_size)

        self._model = model
        self._timeout = timeout

        # max_retries=0: retry policy belongs to the caller
        self._client = client or OpenAI(timeout=timeout, max_retries=0)

        logger.info(
            "Embedding model initialized",
            extra={
                "model": model,
                "dimension": self._dimension,
            },
        )

    def _embed_batch(
        self,
        texts: List[str],
        timeout: Optional[float],
    ) -> List[List[float]]:

        effective_timeout = timeout if timeout is not None else self._timeout

        try:

            response = self._client.with_options(
                timeout=effective_timeout
            ).embeddings.create(
                model=self._model,
                input=texts,
            )

        except openai.APITimeoutError as e:

            logger.error(
                "Embedding request timed out",
                extra={
                    "batch": len(texts),
                    "timeout_seconds": effective_timeout,
                },
            )

            raise ProviderTimeout(
                f"Embedding provider timed out after {effective_timeout}s"
            ) from e

        except openai.OpenAIError as e:

            logger.error(
                "Embedding generation failed",
                extra={"error": str(e)},
            )

            raise ProviderError(f"Embedding generation failed: {e}") from e

        # The API may return items out of order
        data = sorted(response.data, key=lambda item: item.index)

        return [item.embedding for item in data]

    def health_check(self) -> dict:

        return {
            "model": self._model,
            "dimension": self._dimension,
            "provider": "openai",
            "status": "healthy",
        }
