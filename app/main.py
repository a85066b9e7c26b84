"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from app.config import Settings, configure_structlog, get_settings
from app.error_handlers import register_exception_handlers
from app.metrics import build_metrics_endpoint
from app.middleware.request_context import RequestContextMiddleware
from app.routers import health, providers
from oidc_cache.fetcher import DocumentFetcher
from oidc_cache.registry import IGNORE, Callback, ProviderSource
from oidc_cache.worker import Fetcher, ProviderWorker

logger = structlog.get_logger(__name__)


def _provider_source(settings: Settings) -> ProviderSource:
    """Select worker startup input from settings."""
    if settings.ignore_providers:
        return IGNORE
    return Callback(lambda: settings.providers)


def create_app(settings: Settings | None = None, fetcher: Fetcher | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_structlog(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_fetcher = None
        active_fetcher = fetcher
        if active_fetcher is None:
            owned_fetcher = DocumentFetcher(timeout=settings.refresh.http_timeout())
            active_fetcher = owned_fetcher

        worker = await ProviderWorker.start(
            _provider_source(settings),
            active_fetcher,
            default_refresh_seconds=settings.refresh.default_interval_seconds,
        )
        app.state.worker = worker
        try:
            yield
        finally:
            await worker.stop()
            if owned_fetcher is not None:
                await owned_fetcher.aclose()

    app = FastAPI(title=settings.app.service, lifespan=lifespan)
    register_exception_handlers(app, environment=settings.app.environment)
    app.add_middleware(RequestContextMiddleware)

    app.add_api_route(
        "/metrics", build_metrics_endpoint(), methods=["GET"], include_in_schema=False
    )
    app.include_router(providers.router)
    app.include_router(health.router)
    return app
