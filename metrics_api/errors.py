from __future__ import annotations


class ApiError(Exception):
    """Base for errors surfaced to clients as ``{"success": false, "error": ...}``."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ApiError):
    status_code = 400


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409
