import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np

from governed_rag.domain import DocumentChunk
from governed_rag.errors import StorageError, ValidationError


logger = logging.getLogger(__name__)


class EmbeddingStore(ABC):
    """
    Per-document mapping of chunk index → (text, embedding).

    Pure storage. Deleting chunks is reserved for the session manager,
    which cascades it with the owning session.
    """

    @abstractmethod
    def add_chunks(self, document_id: str, texts: List[str], embeddings) -> int:
        """Store a whole document's chunks in one batch, indexed from 0"""

    @abstractmethod
    def get_chunks(self, document_id: str) -> List[DocumentChunk]:
        """Return the document's chunks ordered by chunk_index (copies)"""

    @abstractmethod
    def delete_document(self, document_id: str) -> int:
        """Remove every chunk of the document, returning how many went"""

    @abstractmethod
    def get_stats(self) -> Dict:
        pass

    def close(self):
        pass

    @staticmethod
    def _validate_batch(document_id: str, texts: List[str], embeddings) -> np.ndarray:

        if not document_id:
            raise ValidationError("document_id is required")

        embeddings = np.asarray(embeddings, dtype="float32")

        if embeddings.ndim == 1:
            embeddings = embeddings.reshape(1, -1)

        if len(texts) != embeddings.shape[0]:
            raise ValidationError(
                f"Got {len(texts)} chunks but {embeddings.shape[0]} embeddings"
            )

        return embeddings


class InMemoryEmbeddingStore(EmbeddingStore):

    _TEXTS_FILE = "chunks.json"
    _VECTORS_FILE = "embeddings.npz"

    def __init__(self, persist_dir: Optional[str] = None):

        self._lock = threading.RLock()
        self._texts: Dict[str, List[str]] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._persist_dir = persist_dir

        if persist_dir:
            self._load_from_disk()

        logger.info(
            "Embedding store initialized",
            extra={
                "backend": "memory",
                "documents": len(self._texts),
                "persist_dir": persist_dir,
            },
        )

    def add_chunks(self, document_id: str, texts: List[str], embeddings) -> int:

        embeddings = self._validate_batch(document_id, texts, embeddings)

        with self._lock:

            if document_id in self._texts:
                raise StorageError(
                    f"Chunks already stored for document {document_id}"
                )

            self._texts[document_id] = list(texts)
            self._vectors[document_id] = embeddings.copy()

            try:
                self._save_to_disk()
            except StorageError:
                del self._texts[document_id]
                del self._vectors[document_id]
                raise

        return len(texts)

    def get_chunks(self, document_id: str) -> List[DocumentChunk]:

        with self._lock:

            texts = self._texts.get(document_id)

            if texts is None:
                return []

            vectors = self._vectors[document_id].copy()

            return [
                DocumentChunk(
                    document_id=document_id,
                    chunk_index=i,
                    text=text,
                    embedding=vectors[i],
                )
                for i, text in enumerate(texts)
            ]

    def delete_document(self, document_id: str) -> int:

        with self._lock:

            texts = self._texts.pop(document_id, None)
            self._vectors.pop(document_id, None)

            if texts is None:
                return 0

            self._save_to_disk()

            return len(texts)

    def get_stats(self) -> Dict:

        with self._lock:

            return {
                "backend": "memory",
                "documents": len(self._texts),
                "total_chunks": sum(len(t) for t in self._texts.values()),
            }

    # ============================================================
    # PERSISTENCE
    # ============================================================

    def _load_from_disk(self):

        texts_path = os.path.join(self._persist_dir, self._TEXTS_FILE)
        vectors_path = os.path.join(self._persist_dir, self._VECTORS_FILE)

        if not os.path.exists(texts_path) or not os.path.exists(vectors_path):
            return

        try:

            with open(texts_path, "r") as f:
                texts = json.load(f)

            with np.load(vectors_path) as data:
                vectors = {key: data[key] for key in data.files}

        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to load embedding store: {e}") from e

        self._texts = {doc_id: texts[doc_id] for doc_id in texts if doc_id in vectors}
        self._vectors = {doc_id: vectors[doc_id] for doc_id in self._texts}

    def _save_to_disk(self):

        if not self._persist_dir:
            return

        try:

            os.makedirs(self._persist_dir, exist_ok=True)

            with open(os.path.join(self._persist_dir, self._TEXTS_FILE), "w") as f:
                json.dump(self._texts, f)

            np.savez(
                os.path.join(self._persist_dir, self._VECTORS_FILE),
                **self._vectors,
            )

        except OSError as e:
            raise StorageError(f"Failed to persist embedding store: {e}") from e
