from __future__ import annotations

import asyncio
import random

from fastapi import APIRouter, Depends

from metrics_api.api.dependencies import get_context, get_request_telemetry, user_body
from metrics_api.context import AppContext
from metrics_api.errors import ConflictError, NotFoundError, ValidationError
from metrics_api.models.schemas import UserCreate, UserMessageResponse, UserResponse, UsersResponse, UserUpdate
from metrics_api.observability.telemetry import RequestTelemetry


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=UsersResponse)
async def list_users(
    ctx: AppContext = Depends(get_context),
    telemetry: RequestTelemetry = Depends(get_request_telemetry),
) -> UsersResponse:
    users = ctx.users.list_users()
    telemetry.event("Fetching all users", {"count": len(users)})

    # Simulated backend latency; awaited so other requests keep flowing.
    max_delay_ms = ctx.settings.users_list_max_delay_ms
    if max_delay_ms > 0:
        await asyncio.sleep(random.uniform(0, max_delay_ms) / 1000.0)

    return UsersResponse(data=users, total=len(users))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    ctx: AppContext = Depends(get_context),
    telemetry: RequestTelemetry = Depends(get_request_telemetry),
) -> UserResponse:
    telemetry.set_attributes({"user.id": user_id})
    telemetry.event("Searching for user")

    try:
        user = ctx.users.get(user_id)
    except NotFoundError:
        telemetry.event("User not found")
        raise

    telemetry.event("User found", {"user_name": user.name})
    return UserResponse(data=user)


@router.post("", status_code=201, response_model=UserMessageResponse)
async def create_user(
    payload: UserCreate = Depends(user_body(UserCreate)),
    ctx: AppContext = Depends(get_context),
    telemetry: RequestTelemetry = Depends(get_request_telemetry),
) -> UserMessageResponse:
    try:
        user = ctx.users.create(payload)
    except ValidationError:
        telemetry.event("Validation failed", {"missing_fields": True})
        raise
    except ConflictError:
        telemetry.event("Email already exists")
        raise

    ctx.instruments.user_created()

    telemetry.event("User created successfully", {"user_id": user.id, "user_name": user.name})
    telemetry.set_attributes({"user.created.id": user.id, "user.created.name": user.name})
    return UserMessageResponse(data=user, message="User created successfully")


@router.put("/{user_id}", response_model=UserMessageResponse)
async def update_user(
    user_id: str,
    payload: UserUpdate = Depends(user_body(UserUpdate)),
    ctx: AppContext = Depends(get_context),
    telemetry: RequestTelemetry = Depends(get_request_telemetry),
) -> UserMessageResponse:
    telemetry.set_attributes({"user.id": user_id})

    try:
        user, updated_fields = ctx.users.update(user_id, payload)
    except NotFoundError:
        telemetry.event("User not found for update")
        raise
    except ValidationError:
        telemetry.event("Validation failed", {"missing_fields": True})
        raise
    except ConflictError:
        telemetry.event("Email already exists")
        raise

    telemetry.event(
        "User updated successfully",
        {"user_id": user_id, **{f"updated_fields.{name}": flag for name, flag in updated_fields.items()}},
    )
    return UserMessageResponse(data=user, message="User updated successfully")


@router.delete("/{user_id}", response_model=UserMessageResponse)
async def delete_user(
    user_id: str,
    ctx: AppContext = Depends(get_context),
    telemetry: RequestTelemetry = Depends(get_request_telemetry),
) -> UserMessageResponse:
    telemetry.set_attributes({"user.id": user_id})

    try:
        user = ctx.users.delete(user_id)
    except NotFoundError:
        telemetry.event("User not found for deletion")
        raise

    ctx.instruments.user_deleted()

    telemetry.event("User deleted successfully", {"user_id": user_id, "user_name": user.name})
    return UserMessageResponse(data=user, message="User deleted successfully")
