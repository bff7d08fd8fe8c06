import threading

from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from conftest import make_settings
from metrics_api.observability.telemetry import Telemetry, build_resource, init_telemetry


class _HangingProvider:
    def __init__(self) -> None:
        self.release = threading.Event()

    def shutdown(self) -> None:
        self.release.wait(5)


class _RecordingProvider:
    def __init__(self) -> None:
        self.calls = 0

    def shutdown(self) -> None:
        self.calls += 1


def _telemetry(tracer_provider, meter_provider) -> Telemetry:
    return Telemetry(
        resource=build_resource(make_settings()),
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        metric_reader=InMemoryMetricReader(),
        scope_name="test",
    )


def test_resource_describes_service() -> None:
    resource = build_resource(make_settings(service_name="svc", service_version="9.9.9", environment="staging"))
    assert resource.attributes["service.name"] == "svc"
    assert resource.attributes["service.version"] == "9.9.9"
    assert resource.attributes["deployment.environment"] == "staging"


def test_shutdown_gives_up_after_deadline() -> None:
    hanging = _HangingProvider()
    telemetry = _telemetry(hanging, _RecordingProvider())
    try:
        assert telemetry.shutdown(timeout_seconds=0.05) is False
    finally:
        hanging.release.set()


def test_shutdown_flushes_both_providers_once() -> None:
    tracer_provider, meter_provider = _RecordingProvider(), _RecordingProvider()
    telemetry = _telemetry(tracer_provider, meter_provider)

    assert telemetry.shutdown(timeout_seconds=1) is True
    assert telemetry.shutdown(timeout_seconds=1) is True
    assert tracer_provider.calls == 1
    assert meter_provider.calls == 1


def test_init_without_export_keeps_in_memory_reader() -> None:
    telemetry = init_telemetry(make_settings(service_name="unit-svc"))
    try:
        assert telemetry.scope_name == "unit-svc"
        telemetry.meter.create_counter("sample_counter").add(1)
        data = telemetry.collect()
        names = [m.name for rm in data.resource_metrics for sm in rm.scope_metrics for m in sm.metrics]
        assert "sample_counter" in names
    finally:
        telemetry.shutdown(timeout_seconds=5)


async def test_lifespan_shutdown_runs_off_the_event_loop(app) -> None:
    telemetry = app.state.context.telemetry
    real_shutdown = telemetry.shutdown
    seen: list[tuple[int, float]] = []

    def recording_shutdown(timeout_seconds: float) -> bool:
        seen.append((threading.get_ident(), timeout_seconds))
        return real_shutdown(timeout_seconds)

    telemetry.shutdown = recording_shutdown

    async with app.router.lifespan_context(app):
        pass

    assert len(seen) == 1
    thread_id, timeout = seen[0]
    assert thread_id != threading.get_ident()
    assert timeout == app.state.context.settings.shutdown_timeout_seconds
