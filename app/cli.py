"""CLI entrypoints for provider cache operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence
from typing import Any

import uvicorn

from app.config import configure_structlog, get_settings
from oidc_cache.fetcher import DocumentFetcher
from oidc_cache.types import FetchFailure


async def _run_check_providers(provider: str | None) -> int:
    """Fetch each configured provider once and report the outcome."""
    settings = get_settings()
    providers = settings.providers
    if provider is not None:
        if provider not in providers:
            print(json.dumps({"error": f"Unknown provider {provider!r}."}))
            return 2
        providers = {provider: providers[provider]}

    results: dict[str, dict[str, Any]] = {}
    async with DocumentFetcher(timeout=settings.refresh.http_timeout()) as fetcher:
        outcomes = await asyncio.gather(*(fetcher.fetch(config) for config in providers.values()))

    for name, outcome in zip(providers, outcomes, strict=True):
        if isinstance(outcome, FetchFailure):
            results[name] = {"ok": False, "error": outcome.reason}
            continue
        results[name] = {
            "ok": True,
            "issuer": outcome.discovery_document.get("issuer"),
            "keys": len(outcome.key_set.keys),
            "remaining_lifetime": outcome.remaining_lifetime,
        }

    print(json.dumps(results, sort_keys=True))
    return 0 if all(result["ok"] for result in results.values()) else 1


def _run_serve() -> int:
    """Serve the HTTP query interface."""
    settings = get_settings()
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.app.host,
        port=settings.app.port,
        log_config=None,
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m app.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    check_parser = subcommands.add_parser("check-providers")
    check_parser.add_argument(
        "--provider",
        default=None,
        help="Only check this provider instead of every configured one.",
    )
    subcommands.add_parser("serve")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_structlog(get_settings())
    if args.command == "check-providers":
        return asyncio.run(_run_check_providers(provider=args.provider))
    if args.command == "serve":
        return _run_serve()
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
