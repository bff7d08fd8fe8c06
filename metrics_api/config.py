from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    service_name: str = Field(default="metrics-api", alias="SERVICE_NAME")
    service_version: str = Field(default="1.0.0", alias="SERVICE_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_allow_origins: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")
    shutdown_timeout_seconds: float = Field(default=10.0, alias="SHUTDOWN_TIMEOUT_SECONDS")

    otel_export_enabled: bool = Field(default=True, alias="OTEL_EXPORT_ENABLED")
    otel_traces_endpoint: str = Field(
        default="http://localhost:4318/v1/traces",
        alias="OTEL_EXPORTER_OTLP_TRACES_ENDPOINT",
    )
    otel_metrics_endpoint: str = Field(
        default="http://localhost:4318/v1/metrics",
        alias="OTEL_EXPORTER_OTLP_METRICS_ENDPOINT",
    )
    otel_metric_export_interval_ms: int = Field(default=5000, alias="OTEL_METRIC_EXPORT_INTERVAL_MS")
    otel_auto_instrument: bool = Field(default=True, alias="OTEL_AUTO_INSTRUMENT")

    users_list_max_delay_ms: int = Field(default=100, alias="USERS_LIST_MAX_DELAY_MS")
    load_test_min_iterations: int = Field(default=100_000, alias="LOAD_TEST_MIN_ITERATIONS")
    load_test_max_iterations: int = Field(default=1_000_000, alias="LOAD_TEST_MAX_ITERATIONS")
    seed_demo_users: bool = Field(default=True, alias="SEED_DEMO_USERS")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
