# governed_rag/models.py
from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator

from governed_rag.config import MAX_TOP_K, TOP_K


class RateLimitActionRequest(BaseModel):
    """Ask whether an action is still within quota."""
    action: str


class UploadRequest(BaseModel):
    """Already-extracted document text."""
    filename: str = Field(..., min_length=1, max_length=255)
    text: str = Field(..., min_length=1)

    @field_validator("filename")
    @classmethod
    def validate_filename(cls, v):
        if not v.strip():
            raise ValueError("Filename cannot be empty")
        return v.strip()


class DocumentInfo(BaseModel):
    id: str
    filename: str
    chunk_count: int
    created_at: datetime
    expires_at: datetime


class UploadResponse(BaseModel):
    success: bool = True
    document: DocumentInfo
    rate_limit: Dict[str, Any] = Field(..., serialization_alias="rateLimit")


class ListDocumentsResponse(BaseModel):
    documents: List[DocumentInfo]
    count: int


class RetrieveRequest(BaseModel):
    """Question against one uploaded document."""
    document_id: str = Field(..., min_length=1, max_length=100)
    question: str = Field(..., min_length=1, max_length=1000)
    top_k: int = Field(TOP_K, ge=1, le=MAX_TOP_K)

    @field_validator("question", "document_id")
    @classmethod
    def strip_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Value cannot be empty or only whitespace")
        return v.strip()


class Passage(BaseModel):
    chunk_index: int
    text: str
    score: float


class RetrieveResponse(BaseModel):
    document_id: str
    passages: List[Passage]
    context: str
    response_time_ms: int
    rate_limit: Dict[str, Any] = Field(..., serialization_alias="rateLimit")


class CleanupResponse(BaseModel):
    success: bool = True
    deleted_count: int = Field(..., serialization_alias="deletedCount")
    timestamp: datetime
    message: str


class HealthResponse(BaseModel):
    status: str
    sessions: int
    total_chunks: int
    usage_events: int
