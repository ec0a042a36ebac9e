# tests/test_storage.py
import os

import pytest

from governed_rag.domain import ActionType, UsageEvent
from governed_rag.memory.store import InMemoryEmbeddingStore
from governed_rag.storage import build_storage, create_embedding_store

from conftest import T0


class TestStorageFactory:

    def test_memory_backend(self):
        assert isinstance(create_embedding_store(8, backend="memory"), InMemoryEmbeddingStore)

    def test_backend_name_case_insensitive(self):
        assert isinstance(create_embedding_store(8, backend="MEMORY"), InMemoryEmbeddingStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_embedding_store(8, backend="pinecone")

    def test_persisted_layout(self, tmp_path):
        storage = build_storage(64, backend="memory", persist=True, storage_dir=str(tmp_path))

        storage.embeddings.add_chunks("doc_a", ["a0"], [[1.0] * 64])
        storage.events.append(
            UsageEvent(
                client_address="A",
                action_type=ActionType.QUESTION,
                timestamp=T0,
            )
        )

        assert os.path.exists(tmp_path / "vectors" / "chunks.json")
        assert os.path.exists(tmp_path / "vectors" / "embeddings.npz")
        assert os.path.exists(tmp_path / "usage_events.jsonl")

        storage.close()

    def test_nothing_written_without_persist(self, tmp_path):
        storage = build_storage(8, backend="memory", persist=False, storage_dir=str(tmp_path))
        storage.embeddings.add_chunks("doc_a", ["a0"], [[1.0] * 8])

        assert os.listdir(tmp_path) == []
