"""
Domain entities for usage governance and document retrieval
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

from governed_rag.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix kinds."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ActionType(str, Enum):
    """Governed actions counted against a weekly quota"""
    QUESTION = "question"
    UPLOAD = "upload"

    @property
    def plural(self) -> str:
        return f"{self.value}s"


@dataclass(frozen=True)
class UsageEvent:
    """One governed action. Append-only."""
    client_address: str
    action_type: ActionType
    timestamp: datetime
    document_id: Optional[str] = None
    response_time_ms: Optional[int] = None
    # Diagnostics only (user agent, context tags, message counts)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_address": self.client_address,
            "action_type": self.action_type.value,
            "timestamp": self.timestamp.isoformat(),
            "document_id": self.document_id,
            "response_time_ms": self.response_time_ms,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageEvent":
        return cls(
            id=data["id"],
            client_address=data["client_address"],
            action_type=ActionType(data["action_type"]),
            timestamp=ensure_utc(datetime.fromisoformat(data["timestamp"])),
            document_id=data.get("document_id"),
            response_time_ms=data.get("response_time_ms"),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True)
class DocumentSession:
    """Uploaded document metadata (aggregate root for its chunks)"""
    id: str
    owner_address: str
    filename: str
    created_at: datetime
    expires_at: datetime
    chunk_count: int = 0

    def __post_init__(self):
        if self.expires_at <= self.created_at:
            raise ValidationError(
                f"Session {self.id} expires before it is created"
            )

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_address": self.owner_address,
            "filename": self.filename,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "chunk_count": self.chunk_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentSession":
        return cls(
            id=data["id"],
            owner_address=data["owner_address"],
            filename=data["filename"],
            created_at=ensure_utc(datetime.fromisoformat(data["created_at"])),
            expires_at=ensure_utc(datetime.fromisoformat(data["expires_at"])),
            chunk_count=data.get("chunk_count", 0),
        )


@dataclass(frozen=True)
class DocumentChunk:
    """Passage of a document with its embedding"""
    document_id: str
    chunk_index: int
    text: str
    embedding: np.ndarray = field(repr=False, compare=False)


@dataclass(frozen=True)
class RateLimitStatus:
    """Quota snapshot computed from the usage log. Never stored."""
    questions_used: int
    questions_limit: int
    uploads_used: int
    uploads_limit: int
    window_start: datetime

    @property
    def can_question(self) -> bool:
        return self.questions_used < self.questions_limit

    @property
    def can_upload(self) -> bool:
        return self.uploads_used < self.uploads_limit

    def allows(self, action: ActionType) -> bool:
        if action is ActionType.QUESTION:
            return self.can_question
        return self.can_upload

    def used(self, action: ActionType) -> int:
        if action is ActionType.QUESTION:
            return self.questions_used
        return self.uploads_used

    def limit(self, action: ActionType) -> int:
        if action is ActionType.QUESTION:
            return self.questions_limit
        return self.uploads_limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionsUsed": self.questions_used,
            "questionsLimit": self.questions_limit,
            "canQuestion": self.can_question,
            "uploadsUsed": self.uploads_used,
            "uploadsLimit": self.uploads_limit,
            "canUpload": self.can_upload,
            "windowStart": self.window_start.isoformat(),
        }


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end)"""
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.end < self.start:
            raise ValidationError("Time window ends before it starts")

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end


@dataclass(frozen=True)
class UsageSummary:
    total_questions: int = 0
    total_uploads: int = 0
    distinct_clients: int = 0
    average_response_time_ms: float = 0.0


@dataclass(frozen=True)
class SearchResult:
    chunk_index: int
    text: str
    score: float
