"""Unit tests for the discovery document and JWKS fetcher."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from oidc_cache.exceptions import ProviderResponseError
from oidc_cache.fetcher import DocumentFetcher, normalize_discovery_document, remaining_lifetime
from oidc_cache.types import FetchFailure, FetchSuccess, ProviderConfig

DISCOVERY_PATH = "/.well-known/openid-configuration"
JWKS_PATH = "/oauth2/v3/certs"

Handler = Callable[[httpx.Request], httpx.Response]


async def _fetch(handler: Handler, provider_config: dict[str, Any]):
    """Run one fetch against a mock transport."""
    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        fetcher = DocumentFetcher(http_client=http_client)
        return await fetcher.fetch(ProviderConfig.model_validate(provider_config))


def _provider_handler(
    discovery: Any,
    jwks: Any,
    jwks_headers: dict[str, str] | None = None,
    requested: list[str] | None = None,
) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        if requested is not None:
            requested.append(request.url.path)
        if request.url.path == DISCOVERY_PATH:
            return httpx.Response(status_code=200, json=discovery)
        if request.url.path == JWKS_PATH:
            return httpx.Response(status_code=200, json=jwks, headers=jwks_headers or {})
        return httpx.Response(status_code=404)

    return handler


async def test_fetch_returns_normalized_documents_and_lifetime(
    provider_config: dict[str, Any],
    discovery_payload: dict[str, Any],
    public_jwk: dict[str, Any],
) -> None:
    """Both documents are fetched; lifetime is max-age minus Age."""
    handler = _provider_handler(
        discovery_payload,
        {"keys": [public_jwk]},
        jwks_headers={"Cache-Control": "public, max-age=21600, must-revalidate", "Age": "600"},
    )

    outcome = await _fetch(handler, provider_config)

    assert isinstance(outcome, FetchSuccess)
    assert outcome.discovery_document["issuer"] == discovery_payload["issuer"]
    assert outcome.discovery_document["claims_supported"] == ["aud", "email", "iss", "sub"]
    assert outcome.discovery_document["response_types_supported"] == ["code", "id_token", "token"]
    assert outcome.key_set.as_dict()["keys"][0]["kid"] == "kid-1"
    assert outcome.remaining_lifetime == 21000


async def test_fetch_without_cache_headers_reports_unknown_lifetime(
    provider_config: dict[str, Any],
    discovery_payload: dict[str, Any],
    public_jwk: dict[str, Any],
) -> None:
    """Missing Cache-Control leaves the lifetime unknown."""
    handler = _provider_handler(discovery_payload, {"keys": [public_jwk]})

    outcome = await _fetch(handler, provider_config)

    assert isinstance(outcome, FetchSuccess)
    assert outcome.remaining_lifetime is None


async def test_fetch_maps_network_error_to_failure(provider_config: dict[str, Any]) -> None:
    """Network failures become a failure value rather than an exception."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("nxdomain", request=request)

    outcome = await _fetch(handler, provider_config)

    assert isinstance(outcome, FetchFailure)
    assert "unreachable" in outcome.reason


@pytest.mark.parametrize("status_code", [404, 500, 503])
async def test_fetch_maps_error_status_to_failure(
    provider_config: dict[str, Any], status_code: int
) -> None:
    """Error statuses from the discovery endpoint fail the refresh."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=status_code)

    outcome = await _fetch(handler, provider_config)

    assert isinstance(outcome, FetchFailure)
    assert str(status_code) in outcome.reason


async def test_fetch_rejects_invalid_json(provider_config: dict[str, Any]) -> None:
    """Non-JSON discovery responses fail the refresh."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, content=b"<html>oops</html>")

    outcome = await _fetch(handler, provider_config)

    assert outcome == FetchFailure(reason="Identity provider returned invalid JSON.")


async def test_fetch_requires_jwks_uri_before_requesting_keys(
    provider_config: dict[str, Any], discovery_payload: dict[str, Any]
) -> None:
    """A discovery document without jwks_uri fails without a second request."""
    requested: list[str] = []
    discovery_payload.pop("jwks_uri")
    handler = _provider_handler(discovery_payload, {"keys": []}, requested=requested)

    outcome = await _fetch(handler, provider_config)

    assert isinstance(outcome, FetchFailure)
    assert "jwks_uri" in outcome.reason
    assert requested == [DISCOVERY_PATH]


@pytest.mark.parametrize(
    "jwks_payload",
    [{"not_keys": []}, {"keys": "nope"}, {"keys": [{"kty": "RSA", "kid": "broken"}]}, ["keys"]],
)
async def test_fetch_rejects_invalid_jwks(
    provider_config: dict[str, Any], discovery_payload: dict[str, Any], jwks_payload: Any
) -> None:
    """Malformed key sets fail the whole refresh."""
    handler = _provider_handler(discovery_payload, jwks_payload)

    outcome = await _fetch(handler, provider_config)

    assert isinstance(outcome, FetchFailure)


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({"Cache-Control": "public, max-age=300"}, 300),
        ({"Cache-Control": "max-age=300", "Age": "400"}, -100),
        ({"Cache-Control": "max-age=300", "Age": "bogus"}, 300),
        ({"Cache-Control": "no-cache"}, None),
        ({"Cache-Control": "max-age=soon"}, None),
        ({}, None),
    ],
)
def test_remaining_lifetime_from_headers(headers: dict[str, str], expected: int | None) -> None:
    """Lifetime derives from Cache-Control max-age less the Age header."""
    assert remaining_lifetime(httpx.Headers(headers)) == expected


def test_normalize_discovery_document_requires_issuer(discovery_payload: dict[str, Any]) -> None:
    """Issuer is mandatory."""
    discovery_payload["issuer"] = ""

    with pytest.raises(ProviderResponseError):
        normalize_discovery_document(discovery_payload)


def test_normalize_discovery_document_keeps_unknown_fields(
    discovery_payload: dict[str, Any],
) -> None:
    """Only capability lists are reordered; the input is left untouched."""
    discovery_payload["custom_field"] = {"nested": True}
    original_scopes = list(discovery_payload["scopes_supported"])

    normalized = normalize_discovery_document(discovery_payload)

    assert normalized["custom_field"] == {"nested": True}
    assert normalized["scopes_supported"] == sorted(original_scopes)
    assert discovery_payload["scopes_supported"] == original_scopes


async def test_fetcher_closes_only_owned_client() -> None:
    """An injected client stays open after the fetcher closes."""
    async with httpx.AsyncClient() as http_client:
        fetcher = DocumentFetcher(http_client=http_client)
        await fetcher.aclose()
        assert http_client.is_closed is False

    owned = DocumentFetcher(timeout=1.0)
    async with owned:
        pass
    assert owned._client.is_closed is True
