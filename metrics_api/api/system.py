from __future__ import annotations

import random
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from metrics_api.api.dependencies import get_context, get_request_telemetry
from metrics_api.context import AppContext
from metrics_api.models.schemas import HealthResponse, LoadTestResponse
from metrics_api.observability.telemetry import RequestTelemetry


router = APIRouter(tags=["system"])


def _simulate_cpu_load(iterations: int) -> float:
    rng = random.Random()
    result = 0.0
    for _ in range(iterations):
        result += rng.random()
    return result


def _pick_iterations(ctx: AppContext, requested: int | None) -> int:
    ceiling = ctx.settings.load_test_max_iterations
    if requested is None:
        floor = min(ctx.settings.load_test_min_iterations, ceiling)
        requested = random.randint(floor, ceiling)
    return max(0, min(requested, ceiling))


@router.get("/health", response_model=HealthResponse)
async def health(
    ctx: AppContext = Depends(get_context),
    telemetry: RequestTelemetry = Depends(get_request_telemetry),
) -> HealthResponse:
    telemetry.event("Health check requested")
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=ctx.settings.service_version,
        uptime=ctx.uptime(),
        environment=ctx.settings.environment,
    )


@router.get("/error")
async def trigger_error(telemetry: RequestTelemetry = Depends(get_request_telemetry)) -> None:
    telemetry.event("Intentional error triggered")
    telemetry.fail("Intentional error for testing")
    raise RuntimeError("This is a test error for monitoring")


@router.get("/load-test", response_model=LoadTestResponse)
async def load_test(
    iterations: int | None = Query(default=None, ge=1),
    ctx: AppContext = Depends(get_context),
    telemetry: RequestTelemetry = Depends(get_request_telemetry),
) -> LoadTestResponse:
    count = _pick_iterations(ctx, iterations)
    telemetry.event("Load test started", {"iterations": count})

    # Capped above; run off the event loop so other requests are not starved.
    result = await run_in_threadpool(_simulate_cpu_load, count)

    formatted = f"{result:.2f}"
    telemetry.event("Load test completed", {"result": formatted})
    return LoadTestResponse(message="Load test completed", iterations=count, result=formatted)
