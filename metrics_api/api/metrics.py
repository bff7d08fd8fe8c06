from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from metrics_api.api.dependencies import get_context
from metrics_api.context import AppContext


router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics(ctx: AppContext = Depends(get_context)) -> Response:
    # The in-flight /metrics request itself shows up in api_active_connections.
    return Response(content=generate_latest(ctx.metrics_registry), media_type=CONTENT_TYPE_LATEST)
