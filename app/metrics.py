"""Prometheus text metrics for HTTP traffic and provider refresh state."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from fastapi import Request
from starlette.responses import PlainTextResponse

from oidc_cache.types import CachedDocuments, ProviderSnapshot

_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@dataclass
class _DurationStat:
    """Aggregate duration stats per label tuple."""

    count: int = 0
    total_seconds: float = 0.0


class MetricsRegistry:
    """In-process HTTP request metrics registry."""

    def __init__(self) -> None:
        self._durations: dict[tuple[str, str, str], _DurationStat] = {}
        self._lock = Lock()

    def record(self, method: str, path: str, status: str, duration_seconds: float) -> None:
        """Record one request measurement for the label set."""
        with self._lock:
            stat = self._durations.setdefault((method, path, status), _DurationStat())
            stat.count += 1
            stat.total_seconds += duration_seconds

    def render_prometheus_text(self) -> str:
        """Render request metrics in Prometheus exposition format."""
        lines = [
            "# HELP oidc_cache_http_requests_total Total HTTP requests seen by the service.",
            "# TYPE oidc_cache_http_requests_total counter",
        ]
        with self._lock:
            stats = sorted(self._durations.items())
        for (method, path, status), stat in stats:
            labels = _format_labels(method=method, path=path, status=status)
            lines.append(f"oidc_cache_http_requests_total{{{labels}}} {stat.count}")

        lines.append(
            "# HELP oidc_cache_http_request_duration_seconds HTTP request duration in seconds."
        )
        lines.append("# TYPE oidc_cache_http_request_duration_seconds summary")
        for (method, path, status), stat in stats:
            labels = _format_labels(method=method, path=path, status=status)
            lines.append(f"oidc_cache_http_request_duration_seconds_count{{{labels}}} {stat.count}")
            lines.append(
                f"oidc_cache_http_request_duration_seconds_sum{{{labels}}} {stat.total_seconds}"
            )
        return "\n".join(lines) + "\n"


def render_provider_metrics(snapshot: dict[str, ProviderSnapshot]) -> str:
    """Render per-provider cache gauges and refresh counters."""
    lines = [
        "# HELP oidc_cache_provider_cached Whether the provider currently has cached documents.",
        "# TYPE oidc_cache_provider_cached gauge",
    ]
    for name in sorted(snapshot):
        cached = 1 if isinstance(snapshot[name].documents, CachedDocuments) else 0
        lines.append(f'oidc_cache_provider_cached{{provider="{_escape_label(name)}"}} {cached}')

    lines.append(
        "# HELP oidc_cache_provider_refresh_total Completed refresh attempts per provider."
    )
    lines.append("# TYPE oidc_cache_provider_refresh_total counter")
    for name in sorted(snapshot):
        labels = f'provider="{_escape_label(name)}"'
        lines.append(f"oidc_cache_provider_refresh_total{{{labels}}} {snapshot[name].refresh_count}")
    return "\n".join(lines) + "\n"


def _escape_label(value: str) -> str:
    """Escape string values for Prometheus label rendering."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_labels(method: str, path: str, status: str) -> str:
    """Build deterministic label set string."""
    return (
        f'method="{_escape_label(method)}",'
        f'path="{_escape_label(path)}",'
        f'status="{_escape_label(status)}"'
    )


DEFAULT_METRICS_REGISTRY = MetricsRegistry()


def build_metrics_endpoint(registry: MetricsRegistry = DEFAULT_METRICS_REGISTRY):
    """Build FastAPI-compatible endpoint that serves metrics text."""

    async def metrics_endpoint(request: Request) -> PlainTextResponse:
        """Return current metrics in Prometheus exposition format."""
        body = registry.render_prometheus_text()
        worker = getattr(request.app.state, "worker", None)
        snapshot = await worker.snapshot() if worker is not None else None
        if snapshot is not None:
            body += render_provider_metrics(snapshot)
        return PlainTextResponse(body, media_type=_CONTENT_TYPE)

    return metrics_endpoint
