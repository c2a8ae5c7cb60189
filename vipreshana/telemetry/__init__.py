"""Telemetry helpers for exposing Prometheus metrics and OpenTelemetry traces."""

from __future__ import annotations

import re
import time
from typing import Dict

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .. import __version__
from ..core.config import Settings

REQUEST_COUNT = Counter(
    "vipreshana_http_requests_total",
    "Total count of HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY = Histogram(
    "vipreshana_http_request_duration_seconds",
    "Latency distribution for HTTP requests",
    labelnames=("method", "path"),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)
OTP_EVENTS = Counter(
    "vipreshana_otp_events_total",
    "One-time code issuance and verification outcomes",
    labelnames=("event",),
)
BOOKING_TRANSITIONS = Counter(
    "vipreshana_booking_transitions_total",
    "Booking lifecycle operations by outcome",
    labelnames=("operation", "outcome"),
)

_uuid_pattern = re.compile(r"/[0-9a-fA-F-]{32,36}")
_phone_pattern = re.compile(r"/\+?\d{6,}")
_tracing_configured = False


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record request metrics for Prometheus scraping."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start
        path = _normalise_path(request.url.path)
        if path.startswith("/metrics"):
            return response
        REQUEST_COUNT.labels(
            method=request.method, path=path, status=str(response.status_code)
        ).inc()
        REQUEST_LATENCY.labels(method=request.method, path=path).observe(duration)
        return response


def setup_prometheus(app: FastAPI, settings: Settings) -> None:
    """Attach middleware and metrics endpoint."""

    app.add_middleware(PrometheusMiddleware)

    @app.get(settings.prometheus_metrics_path, include_in_schema=False)
    async def prometheus_metrics() -> Response:  # pragma: no cover - trivial
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def configure_tracing(app: FastAPI, settings: Settings) -> None:
    """Configure OpenTelemetry exporters when enabled via settings."""

    global _tracing_configured
    if not settings.otel_exporter_otlp_endpoint:
        return
    if _tracing_configured:
        FastAPIInstrumentor.instrument_app(app)
        return

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name or settings.project_name,
            "service.version": __version__,
        }
    )
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=_parse_headers(settings.otel_exporter_otlp_headers),
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    _tracing_configured = True


def _normalise_path(path: str) -> str:
    # Phone numbers appear in paths; never use them as label values.
    path = _uuid_pattern.sub("/{id}", path)
    path = _phone_pattern.sub("/{phone}", path)
    return path or "/"


def _parse_headers(raw: str | None) -> Dict[str, str]:
    if not raw:
        return {}
    headers: Dict[str, str] = {}
    for part in raw.split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers
