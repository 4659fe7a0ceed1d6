"""
Middleware and error handler configuration for the FastAPI app.
"""

from __future__ import annotations

import os

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

import knowledge.config as config
from knowledge.errors import (
    AuthFailedError,
    EmbeddingProviderError,
    OperationCancelledError,
    ValidationIssue,
)

logger = config.logger


def _error_payload(error_type: str, message: str, **extra) -> dict:
    payload = {"status": "error", "error_type": error_type, "message": message}
    payload.update(extra)
    return payload


async def _validation_issue_handler(request: Request, exc: ValidationIssue):
    logger.info(
        "request_validation_error",
        extra={"path": request.url.path, "field": exc.field, "error_type": exc.error_type},
    )
    status_code = 404 if exc.error_type == "not_found" else 400
    return JSONResponse(
        status_code=status_code,
        content=_error_payload("validation_error", str(exc), field=exc.field),
    )


async def _embedding_error_handler(request: Request, exc: EmbeddingProviderError):
    logger.warning(
        "embedding_provider_error",
        extra={"path": request.url.path, "error": exc.__class__.__name__, "status_code": exc.status_code},
    )
    # Auth failures are our credentials, not the caller's: report an upstream fault
    status_code = 502 if isinstance(exc, AuthFailedError) else 503
    return JSONResponse(
        status_code=status_code,
        content=_error_payload("embedding_provider_error", str(exc), provider_error=exc.__class__.__name__),
    )


async def _cancelled_handler(request: Request, exc: OperationCancelledError):
    report = exc.report.as_dict() if exc.report is not None else None
    return JSONResponse(
        status_code=409,
        content=_error_payload("cancelled", str(exc), report=report),
    )


def configure_error_handlers(app) -> None:
    app.add_exception_handler(ValidationIssue, _validation_issue_handler)
    app.add_exception_handler(EmbeddingProviderError, _embedding_error_handler)
    app.add_exception_handler(OperationCancelledError, _cancelled_handler)


def configure_middleware(app):
    """Configure host allowlist, CORS and error handlers for the FastAPI app."""
    configure_error_handlers(app)

    # Optional host allowlist for production deployments
    trusted_hosts_env = os.environ.get("TRUSTED_HOSTS", "")
    trusted_hosts = [host.strip() for host in trusted_hosts_env.split(",") if host.strip()]
    if trusted_hosts:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=trusted_hosts,
        )

    cors_allowed_env = os.environ.get("CORS_ALLOWED_ORIGINS", "")
    allow_origins = [origin.strip() for origin in cors_allowed_env.split(",") if origin.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
