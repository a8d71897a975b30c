# src/secure_viewer/main.py
"""Main entry point for the Secure Viewer application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from secure_viewer.api.v1 import documents_router, events_router, nonces_router
from secure_viewer.container import ServiceContainer, build_services
from secure_viewer.core.exceptions import (
    AuthenticationFailure,
    NotFoundError,
    RateLimitExceeded,
    TransientStoreError,
    ValidationError,
)
from secure_viewer.core.settings import settings
from secure_viewer.db.session import create_tables

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Secure Viewer API",
    description="Nonce-gated, watermarked delivery of encrypted documents",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=["X-RateLimit-Remaining", "X-RateLimit-Reset", "X-Page-Count"],
)

# Include API routers
app.include_router(nonces_router, prefix="/api/v1")
app.include_router(documents_router, prefix="/api/v1")
app.include_router(events_router, prefix="/api/v1")


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    # Every nonce failure shares one message so callers cannot tell them apart.
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(RateLimitExceeded)
async def _rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": str(exc)},
        headers={
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": exc.reset_at.isoformat(),
        },
    )


@app.exception_handler(AuthenticationFailure)
async def _auth_failure(request: Request, exc: AuthenticationFailure) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Document unavailable"},
    )


@app.exception_handler(TransientStoreError)
async def _store_unavailable(request: Request, exc: TransientStoreError) -> JSONResponse:
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable"},
    )


@app.on_event("startup")
async def on_startup() -> None:
    # Tests and embedding callers may install their own container first.
    if getattr(app.state, "services", None) is None:
        create_tables()
        app.state.services = build_services()
    services: ServiceContainer = app.state.services
    if settings.maintenance_enabled:
        await services.maintenance.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services:
        await services.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("secure_viewer.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
