"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
builds the single quota engine of the process. Tests pass their own engine
(typically over an in-memory store) instead of the configured one.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import health_router, rate_limit_router, webhook_router
from app.core.admission import AdmissionExtractor, extract_whatsapp_admission
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.services.message_sink import MessageSink, log_message_sink
from app.services.quota_service import QuotaEngine, build_quota_engine

logger = logging.getLogger(__name__)


def create_app(
    engine: QuotaEngine | None = None,
    *,
    message_sink: MessageSink | None = None,
    admission_extractor: AdmissionExtractor | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        engine: Quota engine to serve; built from settings when omitted.
        message_sink: Downstream consumer of admitted webhook payloads.
        admission_extractor: Rule deriving (subject, category) from a payload.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    quota_engine = engine if engine is not None else build_quota_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "app.startup",
            extra={
                "categories": quota_engine.policies.categories,
                "whitelisted": len(quota_engine.whitelist),
                "store_backend": type(quota_engine.store).__name__,
            },
        )
        yield
        await quota_engine.close()
        logger.info("app.shutdown")

    app = FastAPI(
        title="Message Quota Service",
        description=(
            "Per-sender, per-category message quotas for an inbound messaging "
            "webhook, enforced with fixed windows on a shared Redis store. "
            "Includes administrative endpoints for status, whitelist, resets "
            "and statistics."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.quota_engine = quota_engine
    app.state.message_sink = message_sink or log_message_sink
    app.state.admission_extractor = admission_extractor or extract_whatsapp_admission

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(webhook_router)
    app.include_router(rate_limit_router)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
