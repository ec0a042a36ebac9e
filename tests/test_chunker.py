# tests/test_chunker.py
import pytest

from governed_rag.memory import chunker
from governed_rag.memory.chunker import chunk_text


def reassemble(chunks, overlap):
    text = chunks[0]
    for chunk in chunks[1:]:
        text += chunk[overlap:]
    return text


class TestEmptyAndShortInput:

    def test_empty_text_yields_no_chunks(self):
        assert chunk_text("") == []

    def test_whitespace_only_yields_no_chunks(self):
        assert chunk_text("   \n\t  ") == []

    def test_short_text_is_returned_unchanged(self):
        """Text that fits in one chunk comes back verbatim, spacing included."""
        text = "  Hello   world.\nSecond line  "
        assert chunk_text(text, size=100, overlap=10) == [text]

    def test_text_exactly_chunk_size_is_one_chunk(self):
        text = "a" * 50
        assert chunk_text(text, size=50, overlap=10) == [text]


class TestBoundedChunks:

    def test_no_chunk_exceeds_size(self):
        text = "word " * 400
        chunks = chunk_text(text, size=60, overlap=15)
        assert len(chunks) > 1
        assert all(len(c) <= 60 for c in chunks)

    def test_neighbours_share_exact_overlap(self):
        text = "The quick brown fox jumps over the lazy dog. " * 30
        chunks = chunk_text(text, size=80, overlap=20)

        for left, right in zip(chunks, chunks[1:]):
            assert left[-20:] == right[:20]

    def test_chunks_cover_the_whole_text(self):
        text = "Sentence number %d is here. " * 40 % tuple(range(40))
        chunks = chunk_text(text, size=120, overlap=30)
        assert reassemble(chunks, 30) == text

    def test_text_without_separators_is_cut_hard(self):
        text = "x" * 100
        chunks = chunk_text(text, size=30, overlap=5)
        assert [len(c) for c in chunks] == [30, 30, 30, 25]
        assert reassemble(chunks, 5) == text

    def test_breaks_prefer_word_boundaries(self):
        text = "alpha beta gamma delta epsilon " * 20
        chunks = chunk_text(text, size=40, overlap=8)
        for chunk in chunks[:-1]:
            assert chunk.endswith(" ")

    def test_paragraph_break_preferred_over_space(self):
        text = ("one two three four\n\n" + "five six seven eight nine ten " * 3)
        chunks = chunk_text(text, size=40, overlap=5)
        assert chunks[0] == "one two three four\n\n"

    def test_deterministic(self):
        text = "Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 50
        assert chunk_text(text, size=200, overlap=40) == chunk_text(text, size=200, overlap=40)

    def test_zero_overlap(self):
        text = "abcdefghij" * 10
        chunks = chunk_text(text, size=25, overlap=0)
        assert "".join(chunks) == text


class TestConfiguration:

    @pytest.mark.parametrize("size, overlap", [(0, 0), (-5, 0), (10, -1), (10, 10), (10, 20)])
    def test_invalid_parameters_rejected(self, size, overlap):
        with pytest.raises(ValueError):
            chunk_text("some text", size=size, overlap=overlap)

    def test_oversized_document_is_truncated(self, monkeypatch):
        monkeypatch.setattr(chunker, "MAX_DOCUMENT_CHARACTERS", 100)
        chunks = chunk_text("a" * 150, size=1000, overlap=10)
        assert chunks == ["a" * 100]
