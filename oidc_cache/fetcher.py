"""Async HTTP fetcher for provider discovery documents and key sets."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from authlib.jose import JsonWebKey, KeySet
from authlib.jose.errors import JoseError

from oidc_cache.exceptions import ProviderResponseError, ProviderUnavailableError
from oidc_cache.types import FetchFailure, FetchOutcome, FetchSuccess, ProviderConfig

DEFAULT_TIMEOUT = httpx.Timeout(connect=2.0, read=5.0, write=5.0, pool=5.0)
_SORTED_LIST_FIELDS = ("claims_supported", "scopes_supported", "response_types_supported")

logger = structlog.get_logger(__name__)


class DocumentFetcher:
    """Fetch and normalize one provider's discovery document and JWKS."""

    def __init__(
        self,
        timeout: httpx.Timeout | float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create fetcher with sane defaults and optional injected transport."""
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout or DEFAULT_TIMEOUT,
            follow_redirects=True,
        )

    async def fetch(self, config: ProviderConfig) -> FetchOutcome:
        """Fetch both documents, returning a failure value instead of raising."""
        try:
            return await self._fetch_documents(config)
        except (ProviderUnavailableError, ProviderResponseError) as exc:
            logger.warning(
                "provider_fetch_failed",
                discovery_document_uri=config.discovery_document_uri,
                error=str(exc),
            )
            return FetchFailure(reason=str(exc))

    async def aclose(self) -> None:
        """Close underlying HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> DocumentFetcher:
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """Exit async context manager and close managed resources."""
        del exc_type, exc, tb
        await self.aclose()

    async def _fetch_documents(self, config: ProviderConfig) -> FetchSuccess:
        response = await self._get(config.discovery_document_uri)
        discovery_document = normalize_discovery_document(self._json_object(response))

        jwks_response = await self._get(discovery_document["jwks_uri"])
        key_set = self._import_key_set(jwks_response)
        return FetchSuccess(
            discovery_document=discovery_document,
            key_set=key_set,
            remaining_lifetime=remaining_lifetime(jwks_response.headers),
        )

    async def _get(self, url: str) -> httpx.Response:
        """Execute GET request and normalize upstream failures."""
        try:
            response = await self._client.get(url)
        except httpx.RequestError as exc:
            raise ProviderUnavailableError(f"Identity provider unreachable: {url}") from exc
        except httpx.InvalidURL as exc:
            raise ProviderResponseError(f"Invalid provider URL: {url!r}") from exc

        if response.status_code >= 500:
            raise ProviderUnavailableError(
                f"Identity provider returned status {response.status_code}: {url}"
            )
        if response.status_code >= 400:
            raise ProviderResponseError(
                f"Identity provider request failed with status {response.status_code}: {url}",
                response.status_code,
            )
        return response

    @staticmethod
    def _json_object(response: httpx.Response) -> dict[str, Any]:
        """Return response JSON as object."""
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderResponseError(
                "Identity provider returned invalid JSON.", response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderResponseError(
                "Identity provider returned invalid JSON object.", response.status_code
            )
        return payload

    @classmethod
    def _import_key_set(cls, response: httpx.Response) -> KeySet:
        """Parse JWKS response into an authlib key set."""
        payload = cls._json_object(response)
        keys = payload.get("keys")
        if not isinstance(keys, list):
            raise ProviderResponseError("Invalid JWKS response payload.", response.status_code)
        try:
            return JsonWebKey.import_key_set({"keys": keys})
        except (JoseError, ValueError, TypeError, KeyError) as exc:
            raise ProviderResponseError("Invalid JWKS key entry.", response.status_code) from exc


def normalize_discovery_document(document: dict[str, Any]) -> dict[str, Any]:
    """Validate required discovery fields and sort capability lists."""
    for field in ("issuer", "jwks_uri"):
        value = document.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ProviderResponseError(f"Discovery document is missing {field!r}.")

    normalized = dict(document)
    for field in _SORTED_LIST_FIELDS:
        value = normalized.get(field)
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            normalized[field] = sorted(value)
    return normalized


def remaining_lifetime(headers: httpx.Headers) -> int | None:
    """Seconds until cached documents go stale, from Cache-Control max-age minus Age."""
    max_age = _max_age(headers.get("cache-control", ""))
    if max_age is None:
        return None
    try:
        age = int(headers.get("age", "0").strip())
    except ValueError:
        age = 0
    return max_age - age


def _max_age(cache_control: str) -> int | None:
    for directive in cache_control.split(","):
        name, _, value = directive.strip().partition("=")
        if name.lower() != "max-age":
            continue
        try:
            return int(value.strip().strip('"'))
        except ValueError:
            return None
    return None
