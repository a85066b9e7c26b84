"""Provider document query endpoints."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_worker
from oidc_cache.types import ErroredDocuments, ProviderSnapshot
from oidc_cache.worker import ProviderWorker

router = APIRouter(prefix="/providers", tags=["providers"])

WorkerDep = Annotated[ProviderWorker, Depends(get_worker)]


def _not_found(name: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"detail": f"Unknown provider {name!r}.", "code": "provider_not_found"},
    )


def _unavailable(name: str) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={
            "detail": f"Documents for provider {name!r} are not available.",
            "code": "documents_unavailable",
        },
    )


async def _require_registered(worker: ProviderWorker, name: str) -> None:
    """Raise 404 when the provider name is not registered."""
    if await worker.config(name) is None:
        raise _not_found(name)


def _status_payload(snapshot: ProviderSnapshot) -> dict[str, Any]:
    documents = snapshot.documents
    return {
        "name": snapshot.name,
        "state": documents.state,
        "error": documents.reason if isinstance(documents, ErroredDocuments) else None,
        "next_refresh_in": snapshot.next_refresh_in,
        "fetching": snapshot.fetching,
        "refresh_count": snapshot.refresh_count,
    }


@router.get("")
async def list_providers(worker: WorkerDep) -> dict[str, list[str]]:
    """List registered provider names."""
    return {"providers": await worker.providers() or []}


@router.get("/{name}")
async def provider_status(name: str, worker: WorkerDep) -> dict[str, Any]:
    """Report the provider's refresh state, including its error marker."""
    snapshot = await worker.snapshot() or {}
    if name not in snapshot:
        raise _not_found(name)
    return _status_payload(snapshot[name])


@router.get("/{name}/discovery-document")
async def discovery_document(name: str, worker: WorkerDep) -> dict[str, Any]:
    """Return the cached discovery document."""
    await _require_registered(worker, name)
    document = await worker.discovery_document(name)
    if document is None:
        raise _unavailable(name)
    return document


@router.get("/{name}/jwks")
async def jwks(name: str, worker: WorkerDep) -> dict[str, Any]:
    """Return the cached public key set in JWKS form."""
    await _require_registered(worker, name)
    key_set = await worker.key_set(name)
    if key_set is None:
        raise _unavailable(name)
    return key_set.as_dict()


@router.post("/{name}/refresh", status_code=202)
async def refresh(name: str, worker: WorkerDep) -> dict[str, str]:
    """Request an immediate refresh of the provider's documents."""
    await _require_registered(worker, name)
    worker.refresh(name)
    return {"status": "accepted"}
