"""Public library exports."""

from oidc_cache.fetcher import DocumentFetcher
from oidc_cache.registry import IGNORE, Callback, resolve_providers
from oidc_cache.types import (
    CachedDocuments,
    EmptyDocuments,
    ErroredDocuments,
    FetchFailure,
    FetchSuccess,
    ProviderConfig,
    ProviderSnapshot,
)
from oidc_cache.worker import ProviderWorker

__all__ = [
    "IGNORE",
    "CachedDocuments",
    "Callback",
    "DocumentFetcher",
    "EmptyDocuments",
    "ErroredDocuments",
    "FetchFailure",
    "FetchSuccess",
    "ProviderConfig",
    "ProviderSnapshot",
    "ProviderWorker",
    "resolve_providers",
]
