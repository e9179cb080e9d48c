"""Exporter configuration.

ExporterConfig reads FLOE_STACKDRIVER_* environment variables (and a .env
file if present); explicit keyword arguments take precedence. Credentials are
not part of the settings model: pass them to the exporter constructor.

Environment Variables:
    FLOE_STACKDRIVER_PROJECT_ID: Google Cloud project (falls back to
        GOOGLE_CLOUD_PROJECT and application default credentials)
    FLOE_STACKDRIVER_MAX_THREADS: Worker thread limit (0 = export inline)
    FLOE_STACKDRIVER_MAX_QUEUE: Queued batch limit (0 = unbounded)
    FLOE_STACKDRIVER_ADMISSION_POLICY: run_inline, reject or block
    FLOE_STACKDRIVER_AUTO_TERMINATE_TIME: Exit grace period in seconds
    FLOE_STACKDRIVER_METRIC_PREFIX: Prefix of stats metric types

Example:
    >>> config = ExporterConfig(project_id="my-project", max_threads=4)
    >>> exporter = TraceExporter(config)
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from floe_telemetry_stackdriver.client import (
    DEFAULT_MONITORING_ENDPOINT,
    DEFAULT_TRACE_ENDPOINT,
)
from floe_telemetry_stackdriver.credentials import CLOUD_PLATFORM_SCOPE
from floe_telemetry_stackdriver.dispatcher import (
    DEFAULT_MAX_QUEUE,
    DEFAULT_MAX_THREADS,
    AdmissionPolicy,
)
from floe_telemetry_stackdriver.stats_converter import (
    DEFAULT_METRIC_PREFIX,
    DEFAULT_RESOURCE_TYPE,
)


class ExporterConfig(BaseSettings):
    """Configuration shared by TraceExporter and StatsExporter."""

    model_config = SettingsConfigDict(
        env_prefix="FLOE_STACKDRIVER_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    project_id: str | None = Field(
        default=None,
        description="Google Cloud project; resolved from the environment when unset",
    )
    scopes: list[str] = Field(
        default_factory=lambda: [CLOUD_PLATFORM_SCOPE],
        description="OAuth scopes requested for the API credentials",
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout per API call in seconds",
    )
    max_threads: int = Field(
        default=DEFAULT_MAX_THREADS,
        ge=0,
        description="Background worker threads; 0 exports on the calling thread",
    )
    max_queue: int = Field(
        default=DEFAULT_MAX_QUEUE,
        ge=0,
        description="Batches waiting for a worker; 0 means unbounded",
    )
    admission_policy: AdmissionPolicy = Field(
        default=AdmissionPolicy.RUN_INLINE,
        description="What export() does when the queue is full",
    )
    auto_terminate_time: float | None = Field(
        default=10.0,
        ge=0,
        description="Seconds the exit hook waits for the queue to drain; None disables it",
    )
    metric_prefix: str = Field(
        default=DEFAULT_METRIC_PREFIX,
        min_length=1,
        description="Prefix of stats metric types",
    )
    resource_type: str = Field(
        default=DEFAULT_RESOURCE_TYPE,
        description="Monitored resource type of exported time series",
    )
    resource_labels: dict[str, str] | None = Field(
        default=None,
        description='Monitored resource labels; defaults to {"project_id": <project>}',
    )
    trace_endpoint: str = Field(
        default=DEFAULT_TRACE_ENDPOINT,
        description="Cloud Trace API base URL",
    )
    monitoring_endpoint: str = Field(
        default=DEFAULT_MONITORING_ENDPOINT,
        description="Cloud Monitoring API base URL",
    )

    @field_validator("metric_prefix")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Normalize the prefix so metric types have exactly one separator."""
        prefix = value.rstrip("/")
        if not prefix:
            raise ValueError(f"metric_prefix must name a metric domain, got {value!r}")
        return prefix


__all__ = ["ExporterConfig"]
