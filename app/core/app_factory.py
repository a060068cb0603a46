"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated instances with their own rate limiter.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.adapters.rate_limit import AbstractRateLimiter, RateLimitSweeper
from app.api.routes import documents_router, formats_router, health_router, images_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import build_rate_limiter

logger = logging.getLogger(__name__)

# Response headers browsers may read on cross-origin downloads
EXPOSED_HEADERS = [
    "Content-Disposition",
    "X-Request-ID",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "Retry-After",
    "X-Size-Search-Attempts",
    "X-Size-Search-Quality",
    "X-Size-Within-Tolerance",
    "X-Target-Bytes",
]


def create_app(rate_limiter: AbstractRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limiter: Limiter to install on ``app.state``; a fresh in-memory
            limiter built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    limiter = rate_limiter if rate_limiter is not None else build_rate_limiter(settings.rate_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper: RateLimitSweeper | None = None
        if settings.rate_limit.enabled and settings.rate_limit.sweep_enabled:
            sweeper = RateLimitSweeper(
                app.state.rate_limiter,
                interval_seconds=settings.rate_limit.window_ms / 1000,
            )
            await sweeper.start()
        app.state.rate_limit_sweeper = sweeper
        logger.info(
            "app.startup",
            extra={
                "app_env": settings.app_env,
                "rate_limit_enabled": settings.rate_limit.enabled,
                "max_upload_bytes": settings.app.max_upload_bytes,
            },
        )
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            logger.info("app.shutdown")

    app = FastAPI(
        title="File Converter API",
        description=(
            "Converts images (JPG, PNG, WEBP, AVIF, TIFF) and office documents "
            "(DOC, DOCX, PDF, TXT, XML, XLS, XLSX, CSV) in memory, and shrinks "
            "images towards a target file size. Requests are rate limited per "
            "client address."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origin_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(images_router, prefix="/v1")
    app.include_router(documents_router, prefix="/v1")
    app.include_router(formats_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (tags, rate limit responses)
    apply_openapi_customizations(app)

    return app
