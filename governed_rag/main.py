# governed_rag/main.py
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from governed_rag.api.routes import get_client_ip, router
from governed_rag.errors import (
    GovernedRagError,
    NotFoundError,
    ProviderError,
    ProviderTimeout,
    RateLimitExceeded,
    StorageError,
    ValidationError,
)
from governed_rag.observability.logger import get_logger, setup_logging
from governed_rag.services import Services, build_services

logger = get_logger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ProviderTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app.

    `services` is built from configuration at startup unless one is
    passed in (tests pass fakes).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):

        if services is None:
            # Initialize logging FIRST
            setup_logging()
            app.state.services = build_services()
        else:
            app.state.services = services

        app.state.services.start()

        logger.info("application_startup", extra={"version": "1.0.0"})

        yield

        app.state.services.close()

        logger.info("application_shutdown")

    app = FastAPI(
        title="Governed RAG API",
        description="Quota-governed document retrieval for the site assistant",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):

        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        logger.info(
            "request_started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client_ip": get_client_ip(request),
            },
        )

        start_time = time.time()

        response = await call_next(request)

        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_seconds": round(time.time() - start_time, 3),
            },
        )

        return response

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):

        ip = get_client_ip(request)

        request.app.state.services.posthog.track_rate_limited(
            ip, exc.action.value, exc.status
        )

        logger.warning(
            "rate_limit_exceeded",
            extra={
                "client_ip": ip,
                "action_type": exc.action.value,
                "used": exc.status.used(exc.action),
                "limit": exc.status.limit(exc.action),
            },
        )

        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "allowed": False,
                "error": str(exc),
                "rateLimit": exc.status.to_dict(),
            },
        )

    @app.exception_handler(GovernedRagError)
    async def core_error_handler(request: Request, exc: GovernedRagError):

        request_id = getattr(request.state, "request_id", "unknown")

        code = next(
            (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

        log = logger.error if code >= 500 else logger.info

        log(
            "request_failed",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
            exc_info=code >= 500,
        )

        if code >= 500:
            request.app.state.services.posthog.track_error(
                distinct_id=request_id,
                error_type=type(exc).__name__,
                error_message=str(exc),
                endpoint=request.url.path,
            )

        return JSONResponse(
            status_code=code,
            content={
                "detail": str(exc),
                "request_id": request_id,
                "error_type": type(exc).__name__,
            },
        )

    app.include_router(router)

    @app.get("/")
    async def root():

        return {
            "message": "Governed RAG API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


def run():
    import uvicorn

    from governed_rag.config import LOG_LEVEL

    uvicorn.run(
        "governed_rag.main:app",
        host="0.0.0.0",
        port=8000,
        log_config=None,
        log_level=LOG_LEVEL.lower(),
    )
