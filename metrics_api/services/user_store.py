from __future__ import annotations

import uuid
from datetime import datetime, timezone
from threading import Lock

import structlog

from metrics_api.errors import ConflictError, NotFoundError, ValidationError
from metrics_api.models.schemas import User, UserCreate, UserUpdate


logger = structlog.get_logger("users")

_DEMO_USERS = (
    ("1", "John Doe", "john@example.com", 30),
    ("2", "Jane Smith", "jane@example.com", 25),
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _email_key(email: str) -> str:
    return email.strip().lower()


class UserStore:
    """Thread-safe, process-local user records (resets on restart).

    Records are keyed by id, with a second index on the normalized email so the
    uniqueness check does not scan.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._users: dict[str, User] = {}
        self._ids_by_email: dict[str, str] = {}

    def seed_demo_users(self) -> None:
        with self._lock:
            for user_id, name, email, age in _DEMO_USERS:
                user = User(id=user_id, name=name, email=email, age=age, created_at=_now())
                self._users[user.id] = user
                self._ids_by_email[_email_key(email)] = user.id

    def count(self) -> int:
        with self._lock:
            return len(self._users)

    def list_users(self) -> list[User]:
        with self._lock:
            return [user.model_copy() for user in self._users.values()]

    def get(self, user_id: str) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFoundError("User not found")
            return user.model_copy()

    def create(self, payload: UserCreate) -> User:
        name = (payload.name or "").strip()
        email = (payload.email or "").strip()
        if not name or not email or payload.age is None:
            raise ValidationError("Missing required fields: name, email, age")
        if "@" not in email:
            raise ValidationError("Valid email is required")

        with self._lock:
            if _email_key(email) in self._ids_by_email:
                raise ConflictError("Email already exists")

            user = User(id=str(uuid.uuid4()), name=name, email=email, age=payload.age, created_at=_now())
            self._users[user.id] = user
            self._ids_by_email[_email_key(email)] = user.id

        logger.info("user_created", user_id=user.id)
        return user.model_copy()

    def update(self, user_id: str, payload: UserUpdate) -> tuple[User, dict[str, bool]]:
        """Apply the provided fields; returns the new record and which fields changed."""

        changes = payload.provided_fields()

        # An unknown id answers 404 before anything about the body is judged.
        with self._lock:
            current = self._users.get(user_id)
            if current is None:
                raise NotFoundError("User not found")
            if not changes:
                raise ValidationError("At least one field is required: name, email, age")
            if "email" in changes and "@" not in str(changes["email"]):
                raise ValidationError("Valid email is required")

            if "email" in changes:
                holder = self._ids_by_email.get(_email_key(str(changes["email"])))
                if holder is not None and holder != user_id:
                    raise ConflictError("Email already exists")

            updated = current.model_copy(update={**changes, "updated_at": _now()})
            if updated.email != current.email:
                self._ids_by_email.pop(_email_key(current.email), None)
                self._ids_by_email[_email_key(updated.email)] = user_id
            self._users[user_id] = updated

        flags = {field: field in changes for field in ("name", "email", "age")}
        return updated.model_copy(), flags

    def delete(self, user_id: str) -> User:
        with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                raise NotFoundError("User not found")
            self._ids_by_email.pop(_email_key(user.email), None)

        logger.info("user_deleted", user_id=user_id)
        return user
