"""Lightweight observability helpers (logging + metrics)."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import defaultdict
from contextvars import ContextVar
from threading import Lock
from typing import Iterable, Protocol

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from study_rag.core.config import get_settings

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
logger = logging.getLogger(__name__)

DEFAULT_BUCKETS_MS = [50, 100, 250, 500, 1000, 2500, 5000, 10000]


def get_request_id() -> str | None:
    """Return the current request id if set by middleware."""
    return request_id_ctx.get()


class MetricsBackend(Protocol):
    """Metrics backend interface."""

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        ...

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        ...

    def observe_rag_query(
        self,
        mode: str,
        streamed: bool,
        results: int,
        duration_ms: float,
    ) -> None:
        ...

    def render_prometheus(self) -> str:
        ...


class MetricsCollector:
    """In-process metrics collector with Prometheus text output."""

    def __init__(self, buckets_ms: Iterable[int] | None = None) -> None:
        self._lock = Lock()
        self._buckets_ms = list(buckets_ms or DEFAULT_BUCKETS_MS)
        self._request_counts: dict[tuple[str, str, str], int] = defaultdict(int)
        self._request_histogram = _Histogram(self._buckets_ms)
        self._external_counts: dict[tuple[str, str, str], int] = defaultdict(int)
        self._external_histogram = _Histogram(self._buckets_ms)
        self._rag_counts: dict[tuple[str, str], int] = defaultdict(int)
        self._rag_empty: dict[str, int] = defaultdict(int)
        self._rag_histogram = _Histogram(self._buckets_ms)

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        """Record a single request observation."""
        with self._lock:
            self._request_counts[(method, path, str(status_code))] += 1
            self._request_histogram.observe((method, path), duration_ms)

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        """Record an embedding/generation provider call."""
        with self._lock:
            self._external_counts[(provider, operation, str(status_code))] += 1
            self._external_histogram.observe((provider, operation), duration_ms)

    def observe_rag_query(
        self,
        mode: str,
        streamed: bool,
        results: int,
        duration_ms: float,
    ) -> None:
        """Record one answered question."""
        delivery = "stream" if streamed else "batch"
        with self._lock:
            self._rag_counts[(mode, delivery)] += 1
            if results == 0:
                self._rag_empty[mode] += 1
            self._rag_histogram.observe((mode, delivery), duration_ms)

    def render_prometheus(self) -> str:
        """Render metrics in Prometheus text format."""
        lines: list[str] = [
            "# HELP http_requests_total Total HTTP requests",
            "# TYPE http_requests_total counter",
        ]
        with self._lock:
            for (method, path, status), count in sorted(self._request_counts.items()):
                lines.append(
                    f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}'
                )
            lines.extend(
                self._request_histogram.render(
                    "http_request_duration_ms",
                    "Request duration in milliseconds",
                    ("method", "path"),
                )
            )

            lines.extend(
                [
                    "# HELP external_api_requests_total External API requests",
                    "# TYPE external_api_requests_total counter",
                ]
            )
            for (provider, operation, status), count in sorted(self._external_counts.items()):
                lines.append(
                    "external_api_requests_total"
                    f'{{provider="{provider}",operation="{operation}",status="{status}"}} {count}'
                )
            lines.extend(
                self._external_histogram.render(
                    "external_api_duration_ms",
                    "External API duration in milliseconds",
                    ("provider", "operation"),
                )
            )

            lines.extend(
                [
                    "# HELP rag_queries_total Answered RAG queries",
                    "# TYPE rag_queries_total counter",
                ]
            )
            for (mode, delivery), count in sorted(self._rag_counts.items()):
                lines.append(f'rag_queries_total{{mode="{mode}",delivery="{delivery}"}} {count}')

            lines.extend(
                [
                    "# HELP rag_empty_results_total Queries with no retrieved context",
                    "# TYPE rag_empty_results_total counter",
                ]
            )
            for mode, count in sorted(self._rag_empty.items()):
                lines.append(f'rag_empty_results_total{{mode="{mode}"}} {count}')
            lines.extend(
                self._rag_histogram.render(
                    "rag_query_duration_ms",
                    "RAG query duration in milliseconds",
                    ("mode", "delivery"),
                )
            )
        return "\n".join(lines) + "\n"


class _Histogram:
    """Cumulative bucket histogram keyed by a label tuple. Not thread-safe."""

    def __init__(self, buckets_ms: list[int]) -> None:
        self._buckets_ms = buckets_ms
        self._sum: dict[tuple[str, ...], float] = defaultdict(float)
        self._count: dict[tuple[str, ...], int] = defaultdict(int)
        self._buckets: dict[tuple[str, ...], dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )

    def observe(self, key: tuple[str, ...], duration_ms: float) -> None:
        self._sum[key] += duration_ms
        self._count[key] += 1
        self._buckets[key][self._bucket_for(duration_ms)] += 1

    def render(self, name: str, help_text: str, label_names: tuple[str, ...]) -> list[str]:
        lines = [f"# HELP {name} {help_text}", f"# TYPE {name} histogram"]
        for key, total in sorted(self._sum.items()):
            labels = ",".join(f'{label}="{value}"' for label, value in zip(label_names, key))
            buckets = self._buckets[key]
            cumulative = 0
            for bound in self._buckets_ms:
                cumulative += buckets.get(str(bound), 0)
                lines.append(f'{name}_bucket{{{labels},le="{bound}"}} {cumulative}')
            cumulative += buckets.get("+Inf", 0)
            lines.append(f'{name}_bucket{{{labels},le="+Inf"}} {cumulative}')
            lines.append(f"{name}_sum{{{labels}}} {total:.2f}")
            lines.append(f"{name}_count{{{labels}}} {self._count[key]}")
        return lines

    def _bucket_for(self, duration_ms: float) -> str:
        for bound in self._buckets_ms:
            if duration_ms <= bound:
                return str(bound)
        return "+Inf"


class PrometheusMetrics:
    """Prometheus client-based metrics backend."""

    def __init__(self, buckets_ms: Iterable[int]) -> None:
        from prometheus_client import CollectorRegistry, Counter, Histogram

        self._registry = CollectorRegistry()
        self._buckets_ms = list(buckets_ms)

        self._http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
            registry=self._registry,
        )
        self._http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "Request duration in milliseconds",
            ["method", "path"],
            buckets=self._buckets_ms,
            registry=self._registry,
        )
        self._external_api_requests_total = Counter(
            "external_api_requests_total",
            "External API requests",
            ["provider", "operation", "status"],
            registry=self._registry,
        )
        self._external_api_duration_ms = Histogram(
            "external_api_duration_ms",
            "External API duration in milliseconds",
            ["provider", "operation"],
            buckets=self._buckets_ms,
            registry=self._registry,
        )
        self._rag_queries_total = Counter(
            "rag_queries_total",
            "Answered RAG queries",
            ["mode", "delivery"],
            registry=self._registry,
        )
        self._rag_empty_results_total = Counter(
            "rag_empty_results_total",
            "Queries with no retrieved context",
            ["mode"],
            registry=self._registry,
        )
        self._rag_query_duration_ms = Histogram(
            "rag_query_duration_ms",
            "RAG query duration in milliseconds",
            ["mode", "delivery"],
            buckets=self._buckets_ms,
            registry=self._registry,
        )

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        self._http_requests_total.labels(method, path, str(status_code)).inc()
        self._http_request_duration_ms.labels(method, path).observe(duration_ms)

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        self._external_api_requests_total.labels(
            provider, operation, str(status_code)
        ).inc()
        self._external_api_duration_ms.labels(provider, operation).observe(duration_ms)

    def observe_rag_query(
        self,
        mode: str,
        streamed: bool,
        results: int,
        duration_ms: float,
    ) -> None:
        delivery = "stream" if streamed else "batch"
        self._rag_queries_total.labels(mode, delivery).inc()
        if results == 0:
            self._rag_empty_results_total.labels(mode).inc()
        self._rag_query_duration_ms.labels(mode, delivery).observe(duration_ms)

    def render_prometheus(self) -> str:
        from prometheus_client import generate_latest

        return generate_latest(self._registry).decode("utf-8")


_metrics_backend: MetricsBackend | None = None


def get_metrics_backend() -> MetricsBackend:
    """Return a cached metrics backend instance."""
    global _metrics_backend
    if _metrics_backend is None:
        settings = get_settings()
        _metrics_backend = _build_metrics_backend(settings.metrics_backend)
    return _metrics_backend


def _build_metrics_backend(backend: str) -> MetricsBackend:
    if backend == "prometheus":
        return PrometheusMetrics(DEFAULT_BUCKETS_MS)
    return MetricsCollector(DEFAULT_BUCKETS_MS)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach request_id, log request/response, and emit metrics."""

    def __init__(
        self,
        app: ASGIApp,
        metrics: MetricsBackend | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(app)
        self.metrics = metrics or get_metrics_backend()
        self.logger = logger or logging.getLogger("study_rag.request")

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)
        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response else 500

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            route = request.scope.get("route")
            route_path = getattr(route, "path", None)
            # Normalize unmatched paths to avoid label cardinality explosion
            path = route_path or "/__unknown__"

            if self.metrics:
                self.metrics.observe_request(
                    request.method,
                    path,
                    status_code,
                    duration_ms,
                )

            log_payload = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "route": route_path,
                "status_code": status_code,
                "elapsed_ms": round(duration_ms, 2),
                "client": request.client.host if request.client else None,
            }
            self.logger.info(json.dumps(log_payload))
            request_id_ctx.reset(token)


def setup_tracing(app: FastAPI, settings=None) -> None:
    """Configure OpenTelemetry tracing if enabled."""
    settings = settings or get_settings()
    if not settings.otel_enabled:
        return

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.warning(
            "OpenTelemetry enabled but required packages are not installed. "
            "Install the 'tracing' extra."
        )
        return

    resource = Resource.create({"service.name": settings.otel_service_name})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)

    exporter_kwargs = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    exporter = OTLPSpanExporter(**exporter_kwargs)
    provider.add_span_processor(BatchSpanProcessor(exporter))

    # OpenAI's client rides on httpx, so provider calls get spans too
    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()
