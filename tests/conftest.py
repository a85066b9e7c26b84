"""Shared fixtures: signing keys and provider documents."""

from __future__ import annotations

from typing import Any

import pytest
from authlib.jose import JsonWebKey, KeySet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

ISSUER = "https://accounts.example.com"
DISCOVERY_URI = f"{ISSUER}/.well-known/openid-configuration"
JWKS_URI = f"{ISSUER}/oauth2/v3/certs"


def _generate_public_jwk(kid: str) -> dict[str, Any]:
    """Create an RSA public JWK with the given kid."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )
    jwk = JsonWebKey.import_key(public_pem, {"kty": "RSA", "kid": kid, "use": "sig"})
    return dict(jwk.as_dict())


@pytest.fixture(scope="session")
def public_jwk() -> dict[str, Any]:
    """One RSA public JWK shared across tests."""
    return _generate_public_jwk("kid-1")


@pytest.fixture
def key_set(public_jwk: dict[str, Any]) -> KeySet:
    """Key set holding the shared public JWK."""
    return JsonWebKey.import_key_set({"keys": [public_jwk]})


@pytest.fixture
def discovery_payload() -> dict[str, Any]:
    """Raw discovery document as served by a provider."""
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/o/oauth2/v2/auth",
        "token_endpoint": f"{ISSUER}/token",
        "jwks_uri": JWKS_URI,
        "response_types_supported": ["token", "code", "id_token"],
        "claims_supported": ["sub", "email", "aud", "iss"],
        "scopes_supported": ["openid", "email", "profile"],
    }


@pytest.fixture
def provider_config() -> dict[str, Any]:
    """Raw provider config mapping as supplied at startup."""
    return {
        "discovery_document_uri": DISCOVERY_URI,
        "client_id": "client-123",
        "client_secret": "secret-abc",
        "redirect_uri": "https://app.example.com/callback",
    }
