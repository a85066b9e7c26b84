"""Provider configuration and cached document data contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from authlib.jose import KeySet
from pydantic import BaseModel, ConfigDict, Field, SecretStr

DocumentsState = Literal["empty", "cached", "errored"]


class ProviderConfig(BaseModel):
    """Connection settings for one identity provider."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    discovery_document_uri: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    client_secret: SecretStr
    redirect_uri: str | None = None
    response_type: str = "code"
    scope: str = "openid email profile"


@dataclass(frozen=True)
class EmptyDocuments:
    """No refresh has completed for the provider yet."""

    state: DocumentsState = "empty"


@dataclass(frozen=True)
class CachedDocuments:
    """Discovery document and key set from the last successful refresh."""

    discovery_document: dict[str, Any]
    key_set: KeySet
    remaining_lifetime: int | None = None
    state: DocumentsState = "cached"


@dataclass(frozen=True)
class ErroredDocuments:
    """Marker left by the last failed refresh."""

    reason: str
    state: DocumentsState = "errored"


Documents = EmptyDocuments | CachedDocuments | ErroredDocuments


@dataclass(frozen=True)
class FetchSuccess:
    """Fetcher result carrying both documents and their remaining lifetime."""

    discovery_document: dict[str, Any]
    key_set: KeySet
    remaining_lifetime: int | None = None


@dataclass(frozen=True)
class FetchFailure:
    """Fetcher result for a failed refresh attempt."""

    reason: str


FetchOutcome = FetchSuccess | FetchFailure


@dataclass(frozen=True)
class ProviderSnapshot:
    """Point-in-time view of one provider entry."""

    name: str
    documents: Documents
    next_refresh_in: float | None
    fetching: bool
    refresh_count: int
