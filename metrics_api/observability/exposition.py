"""Prometheus exposition of the registry's live SDK values.

A per-app ``CollectorRegistry`` holds one collector that converts the
in-memory reader's data for our meter scope into prometheus_client metric
families on every scrape.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Any

from opentelemetry.sdk.metrics.export import Histogram, Metric, MetricsData, Sum
from prometheus_client import CollectorRegistry
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, HistogramMetricFamily
from prometheus_client.metrics_core import Metric as Family
from prometheus_client.utils import floatToGoString

from metrics_api.observability.metrics import InstrumentDefinition


MetricsSource = Callable[[], MetricsData | None]


def _scope_metrics(data: MetricsData | None, scope_name: str) -> dict[str, Metric]:
    found: dict[str, Metric] = {}
    if data is None:
        return found
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            if scope_metrics.scope.name != scope_name:
                continue
            for metric in scope_metrics.metrics:
                found[metric.name] = metric
    return found


def _label_names(points: Iterable[Any]) -> list[str]:
    return sorted({str(key) for point in points for key in (point.attributes or {})})


def _label_values(point: Any, names: list[str]) -> list[str]:
    attributes = point.attributes or {}
    return [str(attributes.get(name, "")) for name in names]


def _family(definition: InstrumentDefinition, metric: Metric | None) -> Family:
    points = list(metric.data.data_points) if metric is not None else []
    labels = _label_names(points)

    if definition.kind == "histogram":
        family = HistogramMetricFamily(definition.name, definition.description, labels=labels)
        if metric is not None and isinstance(metric.data, Histogram):
            for point in points:
                cumulative = 0
                buckets = []
                for bound, count in zip([*point.explicit_bounds, float("inf")], point.bucket_counts):
                    cumulative += count
                    buckets.append((floatToGoString(bound), cumulative))
                family.add_metric(_label_values(point, labels), buckets, point.sum)
        return family

    if definition.kind == "up_down_counter":
        family = GaugeMetricFamily(definition.name, definition.description, labels=labels)
    else:
        family = CounterMetricFamily(definition.name, definition.description, labels=labels)
    if metric is not None and isinstance(metric.data, Sum):
        for point in points:
            family.add_metric(_label_values(point, labels), point.value)
    return family


class ScopeMetricsCollector:
    """prometheus_client collector over one OpenTelemetry meter scope."""

    def __init__(self, source: MetricsSource, definitions: Iterable[InstrumentDefinition], scope_name: str) -> None:
        self.source = source
        self.definitions = tuple(definitions)
        self.scope_name = scope_name

    def collect(self) -> Iterator[Family]:
        collected = _scope_metrics(self.source(), self.scope_name)
        for definition in self.definitions:
            yield _family(definition, collected.get(definition.name))


def build_registry(
    source: MetricsSource,
    definitions: Iterable[InstrumentDefinition],
    scope_name: str,
) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(ScopeMetricsCollector(source, definitions, scope_name))
    return registry
