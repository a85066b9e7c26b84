"""Shared FastAPI dependency helpers."""

from fastapi import Request

from oidc_cache.worker import ProviderWorker


def get_worker(request: Request) -> ProviderWorker:
    """Expose the application-wide provider worker started in the lifespan."""
    return request.app.state.worker
