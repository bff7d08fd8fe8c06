from __future__ import annotations

from dataclasses import dataclass, field
from time import monotonic

from prometheus_client import CollectorRegistry

from metrics_api.config import Settings
from metrics_api.observability.metrics import Instruments
from metrics_api.observability.telemetry import Telemetry
from metrics_api.services.user_store import UserStore


@dataclass
class AppContext:
    """Everything a handler needs, built once by ``create_app``."""

    settings: Settings
    telemetry: Telemetry
    instruments: Instruments
    users: UserStore
    metrics_registry: CollectorRegistry
    started_at: float = field(default_factory=monotonic)

    def uptime(self) -> float:
        return monotonic() - self.started_at
