# governed_rag/config.py
"""
Configuration for the usage-governed retrieval core.

This file centralizes all tunable parameters for quotas, ingestion,
retrieval and storage. Every value can be overridden through an
environment variable of the same name.
"""

import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ========== DOCUMENT PROCESSING ==========

# Chunk configuration (characters, not words)
CHUNK_SIZE = _env_int("CHUNK_SIZE", 1000)
CHUNK_OVERLAP = _env_int("CHUNK_OVERLAP", 200)  # shared between neighbours

# Safety limits
MAX_DOCUMENT_CHARACTERS = _env_int("MAX_DOCUMENT_CHARACTERS", 500_000)
MAX_CHUNKS_PER_DOCUMENT = _env_int("MAX_CHUNKS_PER_DOCUMENT", 1000)


# ========== EMBEDDING CONFIGURATION ==========

EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_TIMEOUT_SECONDS = _env_float("EMBEDDING_TIMEOUT_SECONDS", 20.0)
EMBED_BATCH_SIZE = _env_int("EMBED_BATCH_SIZE", 32)


# ========== RETRIEVAL CONFIGURATION ==========

TOP_K = _env_int("TOP_K", 5)
MAX_TOP_K = _env_int("MAX_TOP_K", 20)


# ========== QUOTAS ==========

QUESTIONS_PER_WEEK = _env_int("QUESTIONS_PER_WEEK", 10)
UPLOADS_PER_WEEK = _env_int("UPLOADS_PER_WEEK", 3)

# "rolling" (last 7 days) or "calendar" (reset every Monday 00:00)
RATE_LIMIT_WINDOW = os.getenv("RATE_LIMIT_WINDOW", "rolling")
RATE_LIMIT_TIMEZONE = os.getenv("RATE_LIMIT_TIMEZONE", "Asia/Seoul")


# ========== DOCUMENT SESSIONS ==========

DOCUMENT_RETENTION_HOURS = _env_float("DOCUMENT_RETENTION_HOURS", 2.0)

# 0 disables the background cleanup thread
CLEANUP_INTERVAL_SECONDS = _env_int("CLEANUP_INTERVAL_SECONDS", 600)
CLEANUP_SECRET = os.getenv("CLEANUP_SECRET", "dev-cleanup-secret")


# ========== STORAGE ==========

# "memory" (in-process) or "qdrant"
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "memory")

QDRANT_URL = os.getenv("QDRANT_URL", ":memory:")
QDRANT_API_KEY = os.getenv("QDRANT_API_KEY")
QDRANT_COLLECTION = os.getenv("QDRANT_COLLECTION", "document_chunks")

STORAGE_DIR = os.getenv("STORAGE_DIR", "storage")
PERSIST_STATE = _env_bool("PERSIST_STATE", False)


# ========== OBSERVABILITY ==========

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")


# ========== DESIGN TRADE-OFFS (DOCUMENTED) ==========

"""
TRADE-OFF DECISIONS:

1. Rolling 7-day quota window:
   - Usage ages out continuously, no burst at a fixed reset instant
   - Calendar reset remains available with RATE_LIMIT_WINDOW=calendar

2. QUESTIONS_PER_WEEK = 10, UPLOADS_PER_WEEK = 3:
   - Keeps embedding and generation cost bounded for anonymous visitors

3. DOCUMENT_RETENTION_HOURS = 2:
   - Uploaded files are demo material, not a document archive
   - Short retention keeps the in-process store small

4. Linear scan instead of an ANN index:
   - One active document holds tens to low hundreds of chunks
   - Exact scores make tie-breaking deterministic
"""
