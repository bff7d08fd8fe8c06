from __future__ import annotations

import uuid
from time import perf_counter
from typing import Any, Callable

import structlog
from opentelemetry.trace import Tracer
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse

from metrics_api.models.schemas import ErrorResponse
from metrics_api.observability.metrics import Instruments
from metrics_api.observability.telemetry import RequestTelemetry


TELEMETRY_STATE_KEY = "telemetry"

logger = structlog.get_logger("errors")

# helmet's defaults, minus the CSP (JSON API, nothing to protect).
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "X-DNS-Prefetch-Control": "off",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


def resolve_route(scope: dict[str, Any]) -> str:
    """Matched route template, or the raw path when nothing matched.

    The raw-path fallback makes the ``route`` label unbounded for unknown URLs.
    """

    route = scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return str(template)
    return str(scope.get("path") or "/")


class RequestContextMiddleware:
    """Wraps every HTTP request in a span, HTTP metrics, request id and an access log.

    Labels and span status are read in the ``finally`` block, after the response
    status is final; the active-connection slot is released there too, so a
    handler that raises still leaves the gauge balanced.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        tracer: Tracer,
        instruments: Instruments,
        expose_error_details: bool = False,
    ) -> None:
        self.app = app
        self.tracer = tracer
        self.instruments = instruments
        self.expose_error_details = expose_error_details

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_headers = Headers(scope=scope)
        request_id = request_headers.get("x-request-id") or str(uuid.uuid4())
        user_agent = request_headers.get("user-agent") or "unknown"
        path = scope.get("path") or "/"
        method = scope.get("method") or "GET"

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=path,
            method=method,
        )

        start = perf_counter()
        status_code: int = 500
        response_started = False

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code, response_started

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                response_started = True
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        with self.instruments.active_connection(), self.tracer.start_as_current_span(
            f"{method} {path}",
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            span.set_attributes(
                {
                    "http.method": method,
                    "http.target": path,
                    "http.request_id": request_id,
                    "user_agent.original": user_agent,
                }
            )
            telemetry = RequestTelemetry(span)
            scope.setdefault("state", {})[TELEMETRY_STATE_KEY] = telemetry

            try:
                await self.app(scope, receive, send_wrapper)
            except Exception as exc:
                telemetry.record_exception(exc)
                if response_started:
                    raise
                logger.error("unhandled_exception", exc_info=exc)
                await self._internal_error(exc)(scope, receive, send_wrapper)
            finally:
                elapsed = perf_counter() - start
                route = resolve_route(scope)

                # Metrics first so they update even if logging misbehaves.
                self.instruments.record_request(
                    method=method,
                    route=route,
                    status_code=status_code,
                    duration_seconds=elapsed,
                )

                span.update_name(f"{method} {route}")
                span.set_attributes(
                    {
                        "http.route": route,
                        "http.status_code": status_code,
                        "http.response.duration_ms": round(elapsed * 1000.0, 2),
                    }
                )
                if status_code >= 500 and not telemetry.failed:
                    telemetry.fail(f"HTTP {status_code}")

                structlog.get_logger("access").info(
                    "http_request",
                    route=route,
                    status_code=status_code,
                    elapsed_ms=round(elapsed * 1000.0, 2),
                    user_agent=user_agent,
                )

                structlog.contextvars.clear_contextvars()

    def _internal_error(self, exc: Exception) -> JSONResponse:
        # Goes out through send_wrapper: request id and security headers apply.
        message = str(exc) if self.expose_error_details else "Something went wrong"
        body = ErrorResponse(error="Internal server error", message=message)
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


class SecurityHeadersMiddleware:
    """Adds baseline security headers unless the handler already set them."""

    def __init__(self, app: Callable[..., Any], headers: dict[str, str] | None = None) -> None:
        self.app = app
        self.headers = SECURITY_HEADERS if headers is None else headers

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: dict[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in self.headers.items():
                    headers.setdefault(name, value)
            await send(message)

        await self.app(scope, receive, send_wrapper)
