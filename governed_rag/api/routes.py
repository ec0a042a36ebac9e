import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from governed_rag.config import CLEANUP_SECRET
from governed_rag.domain import ActionType, DocumentSession
from governed_rag.models import (
    CleanupResponse,
    DocumentInfo,
    HealthResponse,
    ListDocumentsResponse,
    Passage,
    RateLimitActionRequest,
    RetrieveRequest,
    RetrieveResponse,
    UploadRequest,
    UploadResponse,
)
from governed_rag.services import Services
from governed_rag.workflow.chat_turn import build_context, run_chat_turn, run_upload


logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================
# HELPERS
# ============================================================

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_client_ip(request: Request) -> str:
    """
    Client address used for quota attribution.

    Proxy headers win over the socket peer, in the order the hosting
    platforms set them.
    """

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return "127.0.0.1"


def to_info(session: DocumentSession) -> DocumentInfo:

    return DocumentInfo(
        id=session.id,
        filename=session.filename,
        chunk_count=session.chunk_count,
        created_at=session.created_at,
        expires_at=session.expires_at,
    )


# ============================================================
# HEALTH
# ============================================================

@router.get("/health", response_model=HealthResponse)
def health_check(services: Services = Depends(get_services)):

    stats = services.sessions.get_stats()

    return HealthResponse(
        status="healthy",
        sessions=stats["sessions"],
        total_chunks=stats["total_chunks"],
        usage_events=len(services.storage.events),
    )


# ============================================================
# RATE LIMIT
# ============================================================

@router.get("/rate-limit")
def rate_limit_status(request: Request, services: Services = Depends(get_services)):

    ip = get_client_ip(request)

    return {
        "rateLimit": services.limiter.check_status(ip).to_dict(),
        "analytics": services.analytics.dashboard(),
    }


@router.post("/rate-limit")
def rate_limit_check(
    payload: RateLimitActionRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    try:
        action = ActionType(payload.action)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid action type")

    ip = get_client_ip(request)

    status = services.limiter.check_status(ip)

    if not status.allows(action):

        services.posthog.track_rate_limited(ip, action.value, status)

        return JSONResponse(
            status_code=429,
            content={
                "allowed": False,
                "error": (
                    f"Rate limit exceeded: {status.used(action)}/{status.limit(action)} "
                    f"{action.plural} used this week"
                ),
                "rateLimit": status.to_dict(),
            },
        )

    return {"allowed": True, "rateLimit": status.to_dict()}


# ============================================================
# DOCUMENTS
# ============================================================

@router.post("/documents", response_model=UploadResponse)
def upload_document(
    payload: UploadRequest,
    request: Request,
    user_agent: str = Header(None),
    services: Services = Depends(get_services),
):

    ip = get_client_ip(request)

    session = run_upload(
        ip,
        payload.filename,
        payload.text,
        limiter=services.limiter,
        sessions=services.sessions,
        metadata={"user_agent": user_agent} if user_agent else None,
    )

    status = services.limiter.check_status(ip)

    logger.info(
        "Document ingestion complete",
        extra={"doc_id": session.id, "client_address": ip},
    )

    return UploadResponse(
        document=to_info(session),
        rate_limit=status.to_dict(),
    )


@router.get("/documents", response_model=ListDocumentsResponse)
def list_documents(request: Request, services: Services = Depends(get_services)):

    sessions = services.sessions.list_sessions(get_client_ip(request))

    return ListDocumentsResponse(
        documents=[to_info(s) for s in sessions],
        count=len(sessions),
    )


# ============================================================
# RETRIEVAL
# ============================================================

@router.post("/retrieve", response_model=RetrieveResponse)
def retrieve_passages(
    payload: RetrieveRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    ip = get_client_ip(request)

    turn = run_chat_turn(
        ip,
        payload.question,
        payload.document_id,
        limiter=services.limiter,
        search_engine=services.search,
        top_k=payload.top_k,
    )

    services.posthog.track_retrieval(
        ip,
        payload.document_id,
        chunks_retrieved=len(turn.passages),
        top_score=turn.passages[0].score if turn.passages else None,
    )
    services.posthog.track_usage(turn.event)

    return RetrieveResponse(
        document_id=payload.document_id,
        passages=[
            Passage(chunk_index=p.chunk_index, text=p.text, score=p.score)
            for p in turn.passages
        ],
        context=build_context(turn.passages),
        response_time_ms=turn.event.response_time_ms,
        rate_limit=services.limiter.check_status(ip).to_dict(),
    )


# ============================================================
# CLEANUP
# ============================================================

@router.post("/cleanup", response_model=CleanupResponse)
def run_cleanup(
    authorization: str = Header(None),
    services: Services = Depends(get_services),
):

    if authorization != f"Bearer {CLEANUP_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized cleanup request")

    removed = services.sessions.cleanup_expired()

    services.posthog.track_cleanup(removed)

    return CleanupResponse(
        deleted_count=removed,
        timestamp=datetime.now(timezone.utc),
        message=f"Cleaned up {removed} expired documents",
    )
