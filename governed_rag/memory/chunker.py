# governed_rag/memory/chunker.py

import logging
from typing import List

from governed_rag.config import (
    CHUNK_SIZE,
    CHUNK_OVERLAP,
    MAX_DOCUMENT_CHARACTERS,
)

logger = logging.getLogger(__name__)

# Preferred break points, strongest first
_SEPARATORS = ("\n\n", "\n", ". ", "? ", "! ", " ")


def _find_break(text: str, lo: int, hi: int) -> int:
    """
    Return the end offset of the best break point in text[lo:hi],
    or hi when the window holds no separator.
    """

    for sep in _SEPARATORS:

        pos = text.rfind(sep, lo, hi)

        if pos != -1 and pos + len(sep) <= hi:
            return pos + len(sep)

    return hi


def chunk_text(
    text: str,
    size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> List[str]:
    """
    Bounded character chunker.

    Architecture contract:
    extracted text → chunker → embedder → embedding store

    Guarantees:
    • deterministic chunk generation
    • no chunk longer than `size`
    • neighbouring chunks share exactly `overlap` characters
    • text that fits in one chunk is returned unchanged
    • empty or whitespace-only text yields no chunks
    """

    if size <= 0:
        raise ValueError(f"Invalid chunk size: {size}")

    if overlap < 0:
        raise ValueError(f"Invalid chunk overlap: {overlap}")

    if overlap >= size:
        raise ValueError(
            f"Overlap must be smaller than chunk size "
            f"(overlap={overlap}, size={size})"
        )

    if not text or not text.strip():
        logger.warning("Chunking skipped: empty text")
        return []

    # enforce global character limit safety
    if len(text) > MAX_DOCUMENT_CHARACTERS:
        logger.warning(
            "Text exceeds max character limit, truncating",
            extra={
                "original_length": len(text),
                "max_allowed": MAX_DOCUMENT_CHARACTERS,
            },
        )
        text = text[:MAX_DOCUMENT_CHARACTERS]

    total = len(text)

    if total <= size:
        return [text]

    chunks = []

    start = 0

    while True:

        end = min(start + size, total)

        if end < total:
            # The break must leave more than `overlap` characters behind,
            # otherwise the next window would not move forward.
            end = _find_break(text, start + overlap + 1, end)

        chunks.append(text[start:end])

        if end >= total:
            break

        start = end - overlap

    logger.info(
        "Chunking completed",
        extra={
            "total_characters": total,
            "chunk_size": size,
            "overlap": overlap,
            "chunks_created": len(chunks),
        },
    )

    return chunks
