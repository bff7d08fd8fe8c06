from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.sdk.trace.export import SpanExporter

from metrics_api import __version__
from metrics_api.api.handlers import register_exception_handlers
from metrics_api.api.metrics import router as metrics_router
from metrics_api.api.system import router as system_router
from metrics_api.api.users import router as users_router
from metrics_api.config import Settings, get_settings
from metrics_api.context import AppContext
from metrics_api.observability.exposition import build_registry
from metrics_api.observability.logging import configure_logging
from metrics_api.observability.metrics import Instruments
from metrics_api.observability.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from metrics_api.observability.telemetry import init_telemetry
from metrics_api.services.user_store import UserStore


logger = structlog.get_logger("app")


def create_app(
    settings: Settings | None = None,
    *,
    span_exporter: SpanExporter | None = None,
    install_global: bool = False,
) -> FastAPI:
    """Build the application and its context (telemetry, instruments, store).

    Telemetry is set up before any route exists so every request is captured.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    telemetry = init_telemetry(settings, span_exporter=span_exporter, install_global=install_global)
    instruments = Instruments(telemetry.meter, settings.environment)
    users = UserStore()
    if settings.seed_demo_users:
        users.seed_demo_users()
    context = AppContext(
        settings=settings,
        telemetry=telemetry,
        instruments=instruments,
        users=users,
        metrics_registry=build_registry(telemetry.collect, instruments.definitions, telemetry.scope_name),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "startup",
            service_name=settings.service_name,
            version=settings.service_version,
            environment=settings.environment,
            port=settings.port,
        )
        yield
        logger.info("shutdown")
        await asyncio.to_thread(telemetry.shutdown, settings.shutdown_timeout_seconds)

    app = FastAPI(title="Metrics API", version=__version__, lifespan=lifespan)
    app.state.context = context
    telemetry.instrument_app(app)

    # Last added runs first. Security headers wrap everything, including the
    # 500 that request accounting answers for unhandled exceptions.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(
        RequestContextMiddleware,
        tracer=telemetry.tracer,
        instruments=instruments,
        expose_error_details=settings.is_development,
    )
    app.add_middleware(SecurityHeadersMiddleware)

    register_exception_handlers(app)

    app.include_router(system_router)
    app.include_router(metrics_router)
    app.include_router(users_router)
    return app


def app_factory() -> FastAPI:
    """uvicorn entrypoint: environment settings, globally registered providers."""

    return create_app(get_settings(), install_global=True)
