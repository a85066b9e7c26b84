"""Library exception hierarchy."""

from __future__ import annotations


class OIDCCacheError(Exception):
    """Base class for all provider cache exceptions."""


class ProviderConfigError(OIDCCacheError):
    """Raised when provider configuration cannot be resolved or validated."""


class ProviderUnavailableError(OIDCCacheError):
    """Raised when an identity provider is temporarily unreachable."""


class ProviderResponseError(OIDCCacheError):
    """Raised when an identity provider returns malformed or unexpected data."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        """Initialize with optional HTTP status code context."""
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
