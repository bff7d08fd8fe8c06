from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from metrics_api.config import Settings, get_settings
from metrics_api.main import create_app


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "environment": "development",
        "log_level": "WARNING",
        "otel_export_enabled": False,
        "otel_auto_instrument": False,
        "users_list_max_delay_ms": 0,
        "load_test_min_iterations": 1_000,
        "load_test_max_iterations": 5_000,
        "seed_demo_users": True,
    }
    values.update(overrides)
    return Settings(**values)


def metric_points(app: FastAPI, name: str) -> dict[tuple[tuple[str, Any], ...], Any]:
    """Current data points of one instrument, keyed by sorted attribute pairs."""

    points: dict[tuple[tuple[str, Any], ...], Any] = {}
    data = app.state.context.telemetry.collect()
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name != name:
                    continue
                for point in metric.data.data_points:
                    points[tuple(sorted(point.attributes.items()))] = point
    return points


def metric_value(app: FastAPI, name: str, **attributes: str) -> int | float:
    point = metric_points(app, name).get(tuple(sorted(attributes.items())))
    if point is None:
        return 0
    return point.value


def request_spans(exporter: InMemorySpanExporter) -> list[ReadableSpan]:
    """Spans opened by RequestContextMiddleware, oldest first."""

    return [span for span in exporter.get_finished_spans() if "http.request_id" in (span.attributes or {})]


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def app_factory(span_exporter: InMemorySpanExporter) -> Callable[..., FastAPI]:
    created: list[FastAPI] = []

    def _build(**overrides: Any) -> FastAPI:
        app = create_app(make_settings(**overrides), span_exporter=span_exporter)
        created.append(app)
        return app

    yield _build

    for app in created:
        app.state.context.telemetry.shutdown(timeout_seconds=5)


@pytest.fixture
def app(app_factory: Callable[..., FastAPI]) -> FastAPI:
    return app_factory()


def client_for(app: FastAPI) -> AsyncClient:
    # Exceptions escaping the app fail the test: every error must become a response.
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with client_for(app) as client:
        yield client
