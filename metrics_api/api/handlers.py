from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from metrics_api.api.dependencies import get_request_telemetry
from metrics_api.errors import ApiError
from metrics_api.models.schemas import ErrorResponse


def _error_response(status_code: int, error: str, **extra: str | None) -> JSONResponse:
    body = ErrorResponse(error=error, **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    get_request_telemetry(request).fail(exc.message)
    return _error_response(exc.status_code, exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    fields = sorted({".".join(str(part) for part in err.get("loc", ())[1:]) or "body" for err in errors})

    telemetry = get_request_telemetry(request)
    telemetry.event("Validation failed", {"invalid_fields": fields})
    telemetry.fail("Invalid request")
    return _error_response(400, "Invalid request", message=f"Invalid fields: {', '.join(fields)}")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    telemetry = get_request_telemetry(request)

    # Unmatched paths and methods both answer as an unknown route.
    if exc.status_code in (404, 405):
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        telemetry.event("Route not found", {"path": path})
        telemetry.fail("Route not found")
        return _error_response(404, "Route not found", path=path)

    telemetry.fail(str(exc.detail))
    return _error_response(exc.status_code, str(exc.detail))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
