from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Literal

from opentelemetry.metrics import Meter


InstrumentKind = Literal["counter", "histogram", "up_down_counter"]

BUSINESS_SOURCE = "api"

# Seconds; the SDK default boundaries assume milliseconds.
DURATION_BUCKETS_SECONDS: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


@dataclass(frozen=True)
class InstrumentDefinition:
    name: str
    kind: InstrumentKind
    description: str
    unit: str = ""


REQUESTS_TOTAL = InstrumentDefinition("api_requests_total", "counter", "Total number of API requests")
REQUEST_DURATION = InstrumentDefinition(
    "api_request_duration_seconds", "histogram", "Duration of API requests in seconds", unit="s"
)
ACTIVE_CONNECTIONS = InstrumentDefinition("api_active_connections", "up_down_counter", "Number of active connections")
USERS_CREATED = InstrumentDefinition("api_users_created_total", "counter", "Total number of users created")
USERS_DELETED = InstrumentDefinition("api_users_deleted_total", "counter", "Total number of users deleted")

DEFINITIONS: tuple[InstrumentDefinition, ...] = (
    REQUESTS_TOTAL,
    REQUEST_DURATION,
    ACTIVE_CONNECTIONS,
    USERS_CREATED,
    USERS_DELETED,
)


class Instruments:
    """The fixed set of API instruments, created once per application.

    The underlying SDK instruments are thread-safe, so one registry is shared by
    every request without extra locking.
    """

    definitions = DEFINITIONS

    def __init__(self, meter: Meter, environment: str) -> None:
        self.environment = environment
        self.requests_total = meter.create_counter(
            REQUESTS_TOTAL.name, unit=REQUESTS_TOTAL.unit, description=REQUESTS_TOTAL.description
        )
        self.request_duration = meter.create_histogram(
            REQUEST_DURATION.name, unit=REQUEST_DURATION.unit, description=REQUEST_DURATION.description
        )
        self.active_connections = meter.create_up_down_counter(
            ACTIVE_CONNECTIONS.name, unit=ACTIVE_CONNECTIONS.unit, description=ACTIVE_CONNECTIONS.description
        )
        self.users_created_total = meter.create_counter(
            USERS_CREATED.name, unit=USERS_CREATED.unit, description=USERS_CREATED.description
        )
        self.users_deleted_total = meter.create_counter(
            USERS_DELETED.name, unit=USERS_DELETED.unit, description=USERS_DELETED.description
        )

    def record_request(self, *, method: str, route: str, status_code: int, duration_seconds: float) -> None:
        attributes = {"method": method, "route": route, "status_code": str(status_code)}
        self.requests_total.add(1, attributes)
        self.request_duration.record(max(duration_seconds, 0.0), attributes)

    @contextmanager
    def active_connection(self) -> Iterator[None]:
        """Hold one active connection for the duration of the block, errors included."""

        self.active_connections.add(1)
        try:
            yield
        finally:
            self.active_connections.add(-1)

    def user_created(self) -> None:
        self.users_created_total.add(1, self._business_attributes())

    def user_deleted(self) -> None:
        self.users_deleted_total.add(1, self._business_attributes())

    def _business_attributes(self) -> dict[str, str]:
        return {"source": BUSINESS_SOURCE, "environment": self.environment}
