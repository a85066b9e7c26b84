"""Refresh worker owning every provider's cached discovery document and key set.

One owner task drains a mailbox of refresh requests, refresh outcomes and queries,
so provider entries are only ever touched from that task. Each fetch runs as its own
task and reports back through the mailbox; the next refresh is armed from the
lifetime the fetch reported.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import structlog
from authlib.jose import KeySet

from oidc_cache.registry import ProviderSource, resolve_providers
from oidc_cache.types import (
    CachedDocuments,
    Documents,
    EmptyDocuments,
    ErroredDocuments,
    FetchFailure,
    FetchOutcome,
    ProviderConfig,
    ProviderSnapshot,
)

DEFAULT_REFRESH_SECONDS = 60 * 60

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Fetcher(Protocol):
    """Collaborator that retrieves one provider's documents."""

    async def fetch(self, config: ProviderConfig) -> FetchOutcome: ...


class TimerHandle(Protocol):
    """Cancellable handle returned by a ``call_later`` implementation."""

    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


def refresh_delay(remaining_lifetime: int | None, default_seconds: float) -> float:
    """Seconds to wait before the next refresh given a fetched lifetime."""
    if remaining_lifetime is None:
        return default_seconds
    if remaining_lifetime > 0:
        return float(remaining_lifetime)
    return 0.0


@dataclass
class _ProviderEntry:
    name: str
    config: ProviderConfig
    documents: Documents = field(default_factory=EmptyDocuments)
    pending_refresh: TimerHandle | None = None
    timer_token: int = 0
    next_refresh_at: float | None = None
    fetch_task: asyncio.Task[None] | None = None
    refresh_count: int = 0

    @property
    def fetching(self) -> bool:
        return self.fetch_task is not None and not self.fetch_task.done()


@dataclass(frozen=True)
class _RefreshRequest:
    name: str
    timer_token: int | None = None


@dataclass(frozen=True)
class _RefreshCompleted:
    name: str
    outcome: FetchOutcome


@dataclass(frozen=True)
class _Query:
    reader: Callable[[dict[str, _ProviderEntry]], Any]
    reply: asyncio.Future[Any]


@dataclass(frozen=True)
class _Stop:
    pass


_Message = _RefreshRequest | _RefreshCompleted | _Query | _Stop


class ProviderWorker:
    """Own provider entries, refresh them on their own schedule, answer queries.

    Usage::

        async with await ProviderWorker.start(configs, DocumentFetcher()) as worker:
            jwks = await worker.key_set("google")
    """

    def __init__(
        self,
        providers: dict[str, ProviderConfig],
        fetcher: Fetcher,
        default_refresh_seconds: float = DEFAULT_REFRESH_SECONDS,
        call_later: CallLater | None = None,
        now: Callable[[], float] | None = None,
    ) -> None:
        """Create an idle worker; :meth:`start` is the usual entrypoint."""
        self._entries = {
            name: _ProviderEntry(name=name, config=config) for name, config in providers.items()
        }
        self._fetcher = fetcher
        self._default_refresh_seconds = default_refresh_seconds
        self._call_later = call_later
        self._now = now or time.monotonic
        self._mailbox: asyncio.Queue[_Message] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @classmethod
    async def start(
        cls,
        source: ProviderSource,
        fetcher: Fetcher,
        default_refresh_seconds: float = DEFAULT_REFRESH_SECONDS,
        call_later: CallLater | None = None,
        now: Callable[[], float] | None = None,
    ) -> ProviderWorker:
        """Resolve providers and begin refreshing them in the background.

        No network I/O happens here: each provider gets an immediate refresh request
        that the owner task picks up once the caller yields. ``IGNORE`` returns an
        inert worker whose queries all return ``None``.
        """
        providers = resolve_providers(source)
        worker = cls(
            providers or {},
            fetcher,
            default_refresh_seconds=default_refresh_seconds,
            call_later=call_later,
            now=now,
        )
        if providers is None:
            logger.info("provider_worker_ignored")
            return worker
        worker._begin()
        return worker

    @property
    def running(self) -> bool:
        return self._running

    async def config(self, name: str) -> ProviderConfig | None:
        """Return the registered configuration for ``name``."""
        return await self._call(lambda entries: _entry_attr(entries, name, "config"))

    async def discovery_document(self, name: str) -> dict[str, Any] | None:
        """Return the cached discovery document, or ``None`` when not cached."""
        return await self._call(lambda entries: _cached_attr(entries, name, "discovery_document"))

    async def key_set(self, name: str) -> KeySet | None:
        """Return the cached key set, or ``None`` when not cached."""
        return await self._call(lambda entries: _cached_attr(entries, name, "key_set"))

    async def documents(self, name: str) -> Documents | None:
        """Return the provider's documents variant, including the error marker."""
        return await self._call(lambda entries: _entry_attr(entries, name, "documents"))

    async def providers(self) -> list[str] | None:
        """Return registered provider names."""
        return await self._call(lambda entries: sorted(entries))

    async def snapshot(self) -> dict[str, ProviderSnapshot] | None:
        """Return a consistent view of every provider entry."""
        return await self._call(
            lambda entries: {name: self._snapshot(entry) for name, entry in entries.items()}
        )

    def refresh(self, name: str) -> None:
        """Request an out-of-schedule refresh; ignored while one is in flight."""
        if self._running:
            self._mailbox.put_nowait(_RefreshRequest(name))

    async def stop(self) -> None:
        """Cancel timers and abandon in-flight fetches."""
        if not self._running or self._task is None:
            return
        self._running = False
        self._mailbox.put_nowait(_Stop())
        await self._task
        logger.info("provider_worker_stopped")

    async def __aenter__(self) -> ProviderWorker:
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """Exit async context manager and stop the owner task."""
        del exc_type, exc, tb
        await self.stop()

    def _begin(self) -> None:
        for name in self._entries:
            self._mailbox.put_nowait(_RefreshRequest(name))
        self._running = True
        self._task = asyncio.create_task(self._run(), name="oidc-provider-worker")
        logger.info("provider_worker_started", providers=sorted(self._entries))

    async def _call(self, reader: Callable[[dict[str, _ProviderEntry]], T]) -> T | None:
        if not self._running:
            return None
        reply: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait(_Query(reader=reader, reply=reply))
        return await reply

    async def _run(self) -> None:
        try:
            while True:
                message = await self._mailbox.get()
                if isinstance(message, _Stop):
                    return
                self._handle(message)
        except Exception:
            logger.exception("provider_worker_crashed")
            raise
        finally:
            self._running = False
            self._shutdown()

    def _handle(self, message: _Message) -> None:
        if isinstance(message, _Query):
            if not message.reply.done():
                message.reply.set_result(message.reader(self._entries))
        elif isinstance(message, _RefreshRequest):
            self._handle_refresh_request(message)
        elif isinstance(message, _RefreshCompleted):
            self._handle_refresh_completed(message)

    def _handle_refresh_request(self, message: _RefreshRequest) -> None:
        entry = self._entries.get(message.name)
        if entry is None:
            logger.warning("provider_refresh_unknown_provider", provider=message.name)
            return
        if message.timer_token is not None and message.timer_token != entry.timer_token:
            return
        if entry.fetching:
            logger.debug("provider_refresh_already_running", provider=entry.name)
            return

        self._cancel_pending(entry)
        entry.fetch_task = asyncio.create_task(
            self._run_fetch(entry.name, entry.config), name=f"oidc-refresh-{entry.name}"
        )

    async def _run_fetch(self, name: str, config: ProviderConfig) -> None:
        try:
            outcome = await self._fetcher.fetch(config)
        except Exception as exc:
            logger.exception("provider_fetcher_raised", provider=name)
            outcome = FetchFailure(reason=f"Fetcher raised {type(exc).__name__}.")
        self._mailbox.put_nowait(_RefreshCompleted(name=name, outcome=outcome))

    def _handle_refresh_completed(self, message: _RefreshCompleted) -> None:
        entry = self._entries[message.name]
        entry.fetch_task = None
        entry.refresh_count += 1
        outcome = message.outcome

        if isinstance(outcome, FetchFailure):
            entry.documents = ErroredDocuments(reason=outcome.reason)
            logger.warning("provider_refresh_failed", provider=entry.name, reason=outcome.reason)
            return

        entry.documents = CachedDocuments(
            discovery_document=outcome.discovery_document,
            key_set=outcome.key_set,
            remaining_lifetime=outcome.remaining_lifetime,
        )
        delay = refresh_delay(outcome.remaining_lifetime, self._default_refresh_seconds)
        self._arm(entry, delay)
        logger.info(
            "provider_refresh_succeeded",
            provider=entry.name,
            remaining_lifetime=outcome.remaining_lifetime,
            next_refresh_in=delay,
        )

    def _arm(self, entry: _ProviderEntry, delay: float) -> None:
        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._cancel_pending(entry)
        request = _RefreshRequest(name=entry.name, timer_token=entry.timer_token)
        entry.pending_refresh = call_later(delay, lambda: self._mailbox.put_nowait(request))
        entry.next_refresh_at = self._now() + delay

    def _cancel_pending(self, entry: _ProviderEntry) -> None:
        # Invalidates any request the old timer already queued.
        entry.timer_token += 1
        if entry.pending_refresh is not None:
            entry.pending_refresh.cancel()
        entry.pending_refresh = None
        entry.next_refresh_at = None

    def _shutdown(self) -> None:
        for entry in self._entries.values():
            self._cancel_pending(entry)
            if entry.fetch_task is not None:
                entry.fetch_task.cancel()
                entry.fetch_task = None
        while not self._mailbox.empty():
            message = self._mailbox.get_nowait()
            if isinstance(message, _Query) and not message.reply.done():
                message.reply.set_result(None)

    def _snapshot(self, entry: _ProviderEntry) -> ProviderSnapshot:
        next_refresh_in = None
        if entry.next_refresh_at is not None:
            next_refresh_in = max(0.0, entry.next_refresh_at - self._now())
        return ProviderSnapshot(
            name=entry.name,
            documents=entry.documents,
            next_refresh_in=next_refresh_in,
            fetching=entry.fetching,
            refresh_count=entry.refresh_count,
        )


def _entry_attr(entries: dict[str, _ProviderEntry], name: str, attr: str) -> Any:
    entry = entries.get(name)
    return getattr(entry, attr) if entry is not None else None


def _cached_attr(entries: dict[str, _ProviderEntry], name: str, attr: str) -> Any:
    entry = entries.get(name)
    if entry is None or not isinstance(entry.documents, CachedDocuments):
        return None
    return getattr(entry.documents, attr)
