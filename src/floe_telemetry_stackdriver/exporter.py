"""Trace and stats exporters for Google Cloud Trace and Cloud Monitoring.

An exporter wires the pieces together: export() checks the lifecycle, copies
the batch and submits one task to the BackgroundDispatcher. The task resolves
the shared client through its ClientProvisioner, converts the batch with a
fresh converter and makes exactly one API call. Failures inside the task are
logged and the batch is dropped.

Example:
    >>> with TraceExporter(project_id="my-project", max_threads=2) as exporter:
    ...     exporter.export(spans)
    >>> # leaving the block drains the queue and closes the HTTP client
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from floe_telemetry_stackdriver.client import (
    CloudMonitoringClient,
    CloudTraceClient,
    MetricServiceClient,
    TraceServiceClient,
)
from floe_telemetry_stackdriver.config import ExporterConfig
from floe_telemetry_stackdriver.credentials import (
    CredentialsSource,
    resolve_credentials,
    resolve_project_id,
)
from floe_telemetry_stackdriver.dispatcher import BackgroundDispatcher
from floe_telemetry_stackdriver.lifecycle import ExporterLifecycle, LifecycleState
from floe_telemetry_stackdriver.metrics import ExporterMetrics
from floe_telemetry_stackdriver.provisioner import ClientProvisioner
from floe_telemetry_stackdriver.stats_converter import StatsConverter
from floe_telemetry_stackdriver.trace_converter import SpanConverter

if TYPE_CHECKING:
    from types import TracebackType

    from typing_extensions import Self

    from floe_telemetry_stackdriver import wire
    from floe_telemetry_stackdriver.models import Span
    from floe_telemetry_stackdriver.stats import View, ViewData

logger = structlog.get_logger(__name__)

ClientT = TypeVar("ClientT")
RecordT = TypeVar("RecordT")


class _Exporter(ABC, Generic[ClientT, RecordT]):
    """Shared wiring of TraceExporter and StatsExporter.

    Subclasses build the default API client and export one batch.
    """

    exporter_name: str = ""

    def __init__(
        self,
        config: ExporterConfig | None = None,
        *,
        credentials: CredentialsSource | None = None,
        client: ClientT | None = None,
        on_error: Callable[[Exception], None] | None = None,
        **overrides: Any,
    ) -> None:
        if config is None:
            config = ExporterConfig(**overrides)
        elif overrides:
            config = ExporterConfig(**{**config.model_dump(), **overrides})
        self._config = config
        self._credentials = credentials
        self._log = logger.bind(exporter=self.exporter_name)

        self._project: ClientProvisioner[str] = ClientProvisioner(
            lambda: resolve_project_id(config.project_id)
        )
        if client is not None:
            self._provisioner: ClientProvisioner[ClientT] = ClientProvisioner.from_client(client)
        else:
            self._provisioner = ClientProvisioner(self._create_client)

        self._metrics = ExporterMetrics(self.exporter_name)
        self._dispatcher = BackgroundDispatcher(
            config.max_threads,
            config.max_queue,
            config.admission_policy,
            name=f"floe-stackdriver-{self.exporter_name}",
            on_error=on_error,
            metrics=self._metrics,
        )
        self._lifecycle = ExporterLifecycle(self._dispatcher, config.auto_terminate_time)
        # Injected clients belong to the caller
        if client is None:
            self._lifecycle.add_termination_callback(self._provisioner.close)

    @abstractmethod
    def _create_client(self) -> ClientT:
        """Build the API client used when none was injected."""
        ...

    @abstractmethod
    def _export_batch(self, batch: tuple[RecordT, ...]) -> None:
        """Convert and send one batch; runs on a dispatcher worker or inline."""
        ...

    @property
    def config(self) -> ExporterConfig:
        return self._config

    @property
    def project_id(self) -> str:
        """Project the exporter writes to, resolved on first access.

        Raises:
            ConfigurationError: If no project can be determined.
        """
        return self._project.resolve()

    @property
    def client(self) -> ClientT:
        """The shared API client, built on first access."""
        return self._provisioner.resolve()

    @property
    def state(self) -> LifecycleState:
        return self._lifecycle.state

    @property
    def is_running(self) -> bool:
        return self._lifecycle.is_running

    @property
    def is_shutting_down(self) -> bool:
        return self._lifecycle.is_shutting_down

    @property
    def is_shutdown(self) -> bool:
        return self._lifecycle.is_shutdown

    @property
    def is_killed(self) -> bool:
        return self._lifecycle.is_killed

    @property
    def dispatcher(self) -> BackgroundDispatcher:
        return self._dispatcher

    @property
    def lifecycle(self) -> ExporterLifecycle:
        return self._lifecycle

    def _submit(self, records: Iterable[RecordT]) -> None:
        # Running check comes first so a stopped exporter rejects empty batches too
        self._lifecycle.ensure_running()
        batch = tuple(records)
        if not batch:
            return
        self._dispatcher.submit(lambda: self._export_batch(batch))

    def shutdown(self) -> None:
        """Stop accepting batches; queued batches are still exported."""
        self._lifecycle.shutdown()

    def kill(self) -> None:
        """Stop accepting batches and drop queued ones."""
        self._lifecycle.kill()

    def wait_for_termination(self, timeout: float | None = None) -> bool:
        """Block until every batch finished or timeout seconds passed."""
        return self._lifecycle.wait_for_termination(timeout)

    def close(self, timeout: float | None = None) -> bool:
        """Shut down and wait for the queue to drain.

        Args:
            timeout: Seconds to wait; None waits indefinitely.

        Returns:
            True if every queued batch finished in time.
        """
        self.shutdown()
        return self.wait_for_termination(timeout)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class TraceExporter(_Exporter[TraceServiceClient, "Span"]):
    """Exports spans to Cloud Trace v2.

    Examples:
        >>> exporter = TraceExporter(project_id="my-project")
        >>> exporter.export([span])  # returns immediately
    """

    exporter_name = "trace"

    def _create_client(self) -> TraceServiceClient:
        return CloudTraceClient(
            resolve_credentials(self._credentials, self._config.scopes),
            endpoint=self._config.trace_endpoint,
            timeout=self._config.timeout,
        )

    def export(self, spans: Iterable[Span]) -> None:
        """Schedule a batch of spans for export.

        Args:
            spans: Finished spans. An empty batch makes no API call.

        Raises:
            ExporterNotRunningError: If shutdown or kill has been called.
            TaskRejectedError: If the queue is full under the REJECT policy.
        """
        self._submit(spans)

    def _export_batch(self, batch: tuple[Span, ...]) -> None:
        project_id = self.project_id
        client = self.client
        with self._metrics.export_timer(record_count=len(batch)):
            converter = SpanConverter(project_id)
            records = [converter.convert_span(span) for span in batch]
            client.batch_write_spans(f"projects/{project_id}", records)
        self._log.debug("spans_exported", count=len(records))


class StatsExporter(_Exporter[MetricServiceClient, "ViewData"]):
    """Exports view snapshots to Cloud Monitoring v3.

    Examples:
        >>> exporter = StatsExporter(project_id="my-project")
        >>> exporter.create_metric_descriptor(latency_view)
        >>> exporter.export([latency_view_data])
    """

    exporter_name = "stats"

    def _create_client(self) -> MetricServiceClient:
        return CloudMonitoringClient(
            resolve_credentials(self._credentials, self._config.scopes),
            endpoint=self._config.monitoring_endpoint,
            timeout=self._config.timeout,
        )

    def _converter(self, project_id: str) -> StatsConverter:
        return StatsConverter(
            project_id,
            metric_prefix=self._config.metric_prefix,
            resource_type=self._config.resource_type,
            resource_labels=self._config.resource_labels,
        )

    def export(self, views_data: Iterable[ViewData]) -> None:
        """Schedule a batch of view snapshots for export.

        All series of all views are sent in one create_time_series call.

        Args:
            views_data: View snapshots. An empty batch makes no API call.

        Raises:
            ExporterNotRunningError: If shutdown or kill has been called.
            TaskRejectedError: If the queue is full under the REJECT policy.
        """
        self._submit(views_data)

    def _export_batch(self, batch: tuple[ViewData, ...]) -> None:
        project_id = self.project_id
        client = self.client
        converter = self._converter(project_id)
        series = converter.convert_view_data_list(batch)
        with self._metrics.export_timer(record_count=len(series)):
            client.create_time_series(f"projects/{project_id}", series)
        self._log.debug("time_series_exported", views=len(batch), count=len(series))

    def create_metric_descriptor(self, view: View) -> wire.MetricDescriptor:
        """Register the metric descriptor of a view, synchronously.

        Args:
            view: View whose metric type to register.

        Returns:
            The descriptor returned by the API.

        Raises:
            MetricDescriptorConflictError: If an incompatible descriptor exists.
            TransportError: If the API call fails.
            ConfigurationError: If no project or credentials can be resolved.
            ExporterNotRunningError: If shutdown or kill has been called.
        """
        self._lifecycle.ensure_running()
        project_id = self.project_id
        descriptor = self._converter(project_id).convert_metric_descriptor(view)
        created = self.client.create_metric_descriptor(f"projects/{project_id}", descriptor)
        self._log.info("metric_descriptor_created", metric_type=descriptor.type)
        return created


__all__ = ["StatsExporter", "TraceExporter"]
