"""Integration-test fixtures: stub fetcher and a running app with its lifespan."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import pytest
from authlib.jose import KeySet
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.main import create_app
from oidc_cache.types import FetchFailure, FetchOutcome, FetchSuccess, ProviderConfig
from oidc_cache.worker import ProviderWorker

FAILING_URI = "https://failing.example.com/.well-known/openid-configuration"

RunningApp = Callable[..., AbstractAsyncContextManager[tuple[FastAPI, AsyncClient]]]
WaitForRefreshes = Callable[..., Any]


class FetcherStub:
    """Fetcher returning a fixed outcome per discovery URI."""

    def __init__(self, outcomes: dict[str, FetchOutcome]) -> None:
        self.outcomes = outcomes
        self.calls: list[str] = []

    async def fetch(self, config: ProviderConfig) -> FetchOutcome:
        """Return the configured outcome for the provider."""
        self.calls.append(config.discovery_document_uri)
        return self.outcomes[config.discovery_document_uri]


async def _wait_for_refreshes(worker: ProviderWorker, count: int = 1) -> None:
    """Poll until every provider completed ``count`` refreshes."""

    async def _poll() -> None:
        while True:
            snapshot = await worker.snapshot()
            if snapshot is None:
                return
            if all(item.refresh_count >= count and not item.fetching for item in snapshot.values()):
                return
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout=2.0)


@asynccontextmanager
async def _running_app(
    providers: dict[str, Any],
    fetcher: FetcherStub,
    ignore_providers: bool = False,
) -> AsyncIterator[tuple[FastAPI, AsyncClient]]:
    """Start the app lifespan, wait for first refreshes, and yield a client."""
    settings = Settings(providers=providers, ignore_providers=ignore_providers)
    app = create_app(settings=settings, fetcher=fetcher)
    async with app.router.lifespan_context(app):
        await _wait_for_refreshes(app.state.worker)
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://testserver"
        ) as client:
            yield app, client


@pytest.fixture
def failing_config() -> dict[str, Any]:
    """Raw config for a provider whose fetches always fail."""
    return {"discovery_document_uri": FAILING_URI, "client_id": "test", "client_secret": "test"}


@pytest.fixture
def fetcher(
    provider_config: dict[str, Any], discovery_payload: dict[str, Any], key_set: KeySet
) -> FetcherStub:
    """Stub with one successful and one failing provider keyed by discovery URI."""
    return FetcherStub(
        {
            provider_config["discovery_document_uri"]: FetchSuccess(
                discovery_document=discovery_payload, key_set=key_set, remaining_lifetime=600
            ),
            FAILING_URI: FetchFailure(reason="Identity provider unreachable."),
        }
    )


@pytest.fixture
def running_app() -> RunningApp:
    """Factory entering the app lifespan with the given providers and fetcher."""
    return _running_app


@pytest.fixture
def wait_for_refreshes() -> WaitForRefreshes:
    """Poll helper waiting for provider refresh cycles to complete."""
    return _wait_for_refreshes
