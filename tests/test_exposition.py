import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View
from prometheus_client import generate_latest

from metrics_api.observability.exposition import build_registry
from metrics_api.observability.metrics import DEFINITIONS, DURATION_BUCKETS_SECONDS, REQUEST_DURATION, Instruments


@pytest.fixture
def reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


def scrape(source) -> str:
    return generate_latest(build_registry(source, DEFINITIONS, "unit")).decode()


@pytest.fixture
def provider(reader: InMemoryMetricReader) -> MeterProvider:
    provider = MeterProvider(
        metric_readers=[reader],
        views=[
            View(
                instrument_name=REQUEST_DURATION.name,
                aggregation=ExplicitBucketHistogramAggregation(boundaries=DURATION_BUCKETS_SECONDS),
            )
        ],
    )
    yield provider
    provider.shutdown()


def test_untouched_instruments_still_get_help_and_type(reader, provider) -> None:
    Instruments(provider.get_meter("unit"), "test")
    body = scrape(reader.get_metrics_data)

    for definition in DEFINITIONS:
        assert f"# HELP {definition.name} {definition.description}" in body
    assert "# TYPE api_active_connections gauge" in body
    assert "api_requests_total{" not in body


def test_histogram_buckets_are_cumulative(reader, provider) -> None:
    instruments = Instruments(provider.get_meter("unit"), "test")
    for seconds in (0.001, 0.2, 0.3, 42.0):
        instruments.record_request(method="GET", route="/x", status_code=200, duration_seconds=seconds)

    body = scrape(reader.get_metrics_data)
    labels = 'method="GET",route="/x",status_code="200"'
    assert f'api_request_duration_seconds_count{{{labels}}} 4.0' in body
    assert f'api_request_duration_seconds_bucket{{{labels},le="+Inf"}} 4.0' in body
    assert f'api_request_duration_seconds_bucket{{{labels},le="0.005"}} 1.0' in body
    assert f'api_request_duration_seconds_bucket{{{labels},le="0.25"}} 2.0' in body
    assert f'api_request_duration_seconds_bucket{{{labels},le="10.0"}} 3.0' in body


def test_label_values_are_escaped(reader, provider) -> None:
    instruments = Instruments(provider.get_meter("unit"), "test")
    instruments.record_request(method="GET", route='/a"b\\c', status_code=404, duration_seconds=0.01)

    body = scrape(reader.get_metrics_data)
    assert 'api_requests_total{method="GET",route="/a\\"b\\\\c",status_code="404"} 1.0' in body


def test_active_connection_context_releases_on_error(reader, provider) -> None:
    instruments = Instruments(provider.get_meter("unit"), "test")
    with pytest.raises(RuntimeError):
        with instruments.active_connection():
            raise RuntimeError("boom")

    body = scrape(reader.get_metrics_data)
    assert "api_active_connections 0.0" in body


def test_other_scopes_are_ignored(reader, provider) -> None:
    provider.get_meter("someone-else").create_counter("api_requests_total").add(5)
    Instruments(provider.get_meter("unit"), "test").record_request(
        method="GET", route="/", status_code=200, duration_seconds=0.0
    )

    body = scrape(reader.get_metrics_data)
    assert 'api_requests_total{method="GET",route="/",status_code="200"} 1.0' in body
    assert "} 5.0" not in body


def test_no_data_renders_headers_only() -> None:
    body = scrape(lambda: None)
    assert body.endswith("\n")
    assert body.count("# TYPE") == len(DEFINITIONS)
