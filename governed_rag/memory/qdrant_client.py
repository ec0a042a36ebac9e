import logging
import uuid
from typing import Dict, List, Optional

import numpy as np
from qdrant_client import QdrantClient
from qdrant_client.http.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from governed_rag.config import (
    QDRANT_API_KEY,
    QDRANT_COLLECTION,
    QDRANT_URL,
)
from governed_rag.domain import DocumentChunk
from governed_rag.errors import StorageError
from governed_rag.memory.store import EmbeddingStore

logger = logging.getLogger(__name__)

_SCROLL_PAGE = 256


def _doc_filter(document_id: str) -> Filter:

    return Filter(
        must=[
            FieldCondition(
                key="doc_id",
                match=MatchValue(value=document_id),
            )
        ]
    )


class QdrantEmbeddingStore(EmbeddingStore):
    """
    Qdrant-backed embedding store.

    Qdrant is only used as durable storage here: ranking happens in the
    search engine so that ties resolve by chunk index.
    """

    def __init__(
        self,
        dim: int,
        location: str = QDRANT_URL,
        api_key: Optional[str] = QDRANT_API_KEY,
        collection: str = QDRANT_COLLECTION,
        client: Optional[QdrantClient] = None,
    ):

        if dim <= 0:
            raise ValueError("Embedding dimension must be positive")

        self._dim = dim
        self._collection = collection

        try:

            self._client = client or QdrantClient(
                location=location,
                api_key=api_key,
                timeout=60,
            )

            self._ensure_collection()

        except Exception as e:
            raise StorageError(f"Qdrant initialization failed: {e}") from e

        logger.info(
            "Embedding store initialized",
            extra={
                "backend": "qdrant",
                "collection": self._collection,
                "dimension": dim,
            },
        )

    def _ensure_collection(self):
        """
        Ensures collection exists AND the doc_id payload index exists.
        """

        collections = self._client.get_collections().collections

        exists = any(
            c.name == self._collection
            for c in collections
        )

        if not exists:

            self._client.create_collection(
                collection_name=self._collection,
                vectors_config=VectorParams(
                    size=self._dim,
                    distance=Distance.COSINE,
                ),
            )

            logger.info(
                "Qdrant collection created",
                extra={"collection": self._collection},
            )

            # Filtering by document needs the keyword index
            self._client.create_payload_index(
                collection_name=self._collection,
                field_name="doc_id",
                field_schema=PayloadSchemaType.KEYWORD,
            )

    def _count(self, document_id: str) -> int:

        return self._client.count(
            collection_name=self._collection,
            count_filter=_doc_filter(document_id),
            exact=True,
        ).count

    def add_chunks(self, document_id: str, texts: List[str], embeddings) -> int:

        embeddings = self._validate_batch(document_id, texts, embeddings)

        points = [
            PointStruct(
                id=str(uuid.uuid4()),
                vector=vector.tolist(),
                payload={
                    "text": texts[i],
                    "doc_id": document_id,
                    "chunk_idx": i,
                },
            )
            for i, vector in enumerate(embeddings)
        ]

        try:

            if self._count(document_id):
                raise StorageError(
                    f"Chunks already stored for document {document_id}"
                )

            self._client.upsert(
                collection_name=self._collection,
                points=points,
                wait=True,
            )

        except StorageError:
            raise

        except Exception as e:

            logger.error(
                "Qdrant upsert failed",
                extra={"doc_id": document_id, "error": str(e)},
                exc_info=True,
            )

            # Leave nothing half-written behind
            self._delete_quietly(document_id)

            raise StorageError(f"Failed to store chunks: {e}") from e

        return len(points)

    def get_chunks(self, document_id: str) -> List[DocumentChunk]:

        chunks = []

        offset = None

        try:

            while True:

                points, offset = self._client.scroll(
                    collection_name=self._collection,
                    scroll_filter=_doc_filter(document_id),
                    limit=_SCROLL_PAGE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=True,
                )

                for point in points:

                    payload = point.payload or {}

                    chunks.append(
                        DocumentChunk(
                            document_id=document_id,
                            chunk_index=int(payload["chunk_idx"]),
                            text=payload["text"],
                            embedding=np.asarray(point.vector, dtype="float32"),
                        )
                    )

                if offset is None:
                    break

        except Exception as e:
            raise StorageError(f"Failed to read chunks: {e}") from e

        chunks.sort(key=lambda c: c.chunk_index)

        return chunks

    def delete_document(self, document_id: str) -> int:

        try:

            removed = self._count(document_id)

            if removed:

                self._client.delete(
                    collection_name=self._collection,
                    points_selector=FilterSelector(filter=_doc_filter(document_id)),
                    wait=True,
                )

        except Exception as e:
            raise StorageError(f"Failed to delete chunks: {e}") from e

        logger.info(
            "Deleted vectors from Qdrant",
            extra={"doc_id": document_id, "chunks": removed},
        )

        return removed

    def _delete_quietly(self, document_id: str):

        try:

            self._client.delete(
                collection_name=self._collection,
                points_selector=FilterSelector(filter=_doc_filter(document_id)),
                wait=True,
            )

        except Exception as e:

            logger.warning(
                "Rollback delete failed",
                extra={"doc_id": document_id, "error": str(e)},
            )

    def get_stats(self) -> Dict:

        try:
            total = self._client.count(
                collection_name=self._collection,
                exact=True,
            ).count
        except Exception as e:
            raise StorageError(f"Failed to read Qdrant stats: {e}") from e

        return {
            "backend": "qdrant",
            "collection": self._collection,
            "total_chunks": total,
        }

    def close(self):

        self._client.close()
