"""Health check router endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_worker
from oidc_cache.types import CachedDocuments
from oidc_cache.worker import ProviderWorker

router = APIRouter(prefix="/health", tags=["health"])


async def check_providers_ready(worker: Annotated[ProviderWorker, Depends(get_worker)]) -> bool:
    """Return True when every registered provider has cached documents."""
    snapshot = await worker.snapshot()
    if snapshot is None:
        return False
    return all(isinstance(item.documents, CachedDocuments) for item in snapshot.values())


@router.get("/live")
async def live() -> dict[str, str]:
    """Liveness probe endpoint."""
    return {"status": "live"}


@router.get("/ready")
async def ready(providers_ready: Annotated[bool, Depends(check_providers_ready)]) -> dict[str, str]:
    """Readiness probe requiring cached documents for all providers."""
    if not providers_ready:
        raise HTTPException(
            status_code=503,
            detail={"detail": "Service not ready.", "code": "documents_unavailable"},
        )
    return {"status": "ready"}
