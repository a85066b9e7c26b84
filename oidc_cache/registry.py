"""Provider registry resolution from startup input."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final

import structlog
from pydantic import ValidationError

from oidc_cache.exceptions import ProviderConfigError
from oidc_cache.types import ProviderConfig

logger = structlog.get_logger(__name__)

RawProviderConfigs = Mapping[str, ProviderConfig | Mapping[str, Any]]


class _Ignore:
    """Startup sentinel that leaves the worker inert."""

    _instance: _Ignore | None = None

    def __new__(cls) -> _Ignore:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "IGNORE"


IGNORE: Final = _Ignore()


@dataclass(frozen=True)
class Callback:
    """Zero-argument callable producing provider configs, evaluated once at startup."""

    fn: Callable[[], RawProviderConfigs]


ProviderSource = RawProviderConfigs | Callback | _Ignore


def resolve_providers(source: ProviderSource) -> dict[str, ProviderConfig] | None:
    """Resolve startup input into an immutable name-to-config snapshot.

    Returns ``None`` for :data:`IGNORE`. A :class:`Callback` is invoked exactly once.
    """
    if source is IGNORE:
        return None

    raw = source.fn() if isinstance(source, Callback) else source
    if not isinstance(raw, Mapping):
        raise ProviderConfigError("Provider configuration must be a mapping.")

    resolved: dict[str, ProviderConfig] = {}
    for name, config in raw.items():
        if not isinstance(name, str) or not name.strip():
            raise ProviderConfigError(f"Invalid provider name: {name!r}.")
        resolved[name] = _coerce_config(name, config)

    logger.info("provider_registry_resolved", providers=sorted(resolved))
    return resolved


def _coerce_config(name: str, config: ProviderConfig | Mapping[str, Any]) -> ProviderConfig:
    """Validate one provider config entry."""
    if isinstance(config, ProviderConfig):
        return config
    if not isinstance(config, Mapping):
        raise ProviderConfigError(f"Provider {name!r} configuration must be a mapping.")
    try:
        return ProviderConfig.model_validate(dict(config))
    except ValidationError as exc:
        raise ProviderConfigError(f"Provider {name!r} configuration is invalid.") from exc
