from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    email: str
    age: int
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class UserCreate(BaseModel):
    # All optional so missing fields surface as our 400, not FastAPI's 422.
    name: str | None = None
    email: str | None = None
    age: int | None = Field(default=None, ge=0)


class UserUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    age: int | None = Field(default=None, ge=0)

    def provided_fields(self) -> dict[str, str | int]:
        provided: dict[str, str | int] = {}
        for key, value in self.model_dump().items():
            if isinstance(value, str):
                value = value.strip()
            if value is None or value == "":
                continue
            provided[key] = value
        return provided


class UserResponse(BaseModel):
    success: bool = True
    data: User


class UserMessageResponse(BaseModel):
    success: bool = True
    data: User
    message: str


class UsersResponse(BaseModel):
    success: bool = True
    data: list[User]
    total: int


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    uptime: float
    environment: str


class LoadTestResponse(BaseModel):
    success: bool = True
    message: str
    iterations: int
    result: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str | None = None
    path: str | None = None
