from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import pydantic
from fastapi import Request
from fastapi.exceptions import RequestValidationError

from metrics_api.context import AppContext
from metrics_api.observability.middleware import TELEMETRY_STATE_KEY
from metrics_api.observability.telemetry import RequestTelemetry


BodyModel = TypeVar("BodyModel", bound=pydantic.BaseModel)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_request_telemetry(request: Request) -> RequestTelemetry:
    # Set by RequestContextMiddleware for every HTTP request.
    return getattr(request.state, TELEMETRY_STATE_KEY)


async def _read_body(request: Request) -> Any:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type in FORM_CONTENT_TYPES:
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        raise RequestValidationError([{"loc": ("body",), "msg": "Invalid JSON", "type": "json_invalid"}])


def user_body(model: type[BodyModel]) -> Callable[[Request], Awaitable[BodyModel]]:
    """Dependency parsing a JSON or form-encoded body into ``model``.

    An absent body parses as an empty object, so required-field checks in the
    store report which fields are missing instead of a schema error.
    """

    async def dependency(request: Request) -> BodyModel:
        data = await _read_body(request)
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as exc:
            raise RequestValidationError(
                [{**error, "loc": ("body", *error["loc"])} for error in exc.errors()]
            ) from exc

    return dependency
