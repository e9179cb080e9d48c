"""OpenTelemetry self-instrumentation for the exporters.

The instruments come from the global OpenTelemetry meter and tracer, so they
are no-ops until the application installs an SDK.

Metrics Emitted:
    Counters:
        - floe_stackdriver_batches_total: Batches exported by exporter and status
        - floe_stackdriver_records_total: Spans or time series sent by exporter
        - floe_stackdriver_inline_runs_total: Tasks run on the submitting thread
        - floe_stackdriver_dropped_tasks_total: Queued tasks discarded by kill()

    Histograms:
        - floe_stackdriver_export_duration_seconds: Batch export duration

Trace Spans:
    - floe.stackdriver.export: One batch export, including the API call

Example:
    >>> metrics = ExporterMetrics("trace")
    >>> with metrics.export_timer(record_count=len(spans)):
    ...     client.batch_write_spans(name, records)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

from floe_telemetry_stackdriver._version import __version__

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.metrics import Counter, Histogram
    from opentelemetry.trace import Span, Tracer


logger = structlog.get_logger(__name__)


class ExporterMetrics:
    """OpenTelemetry metrics collector for one exporter.

    Label Conventions:
        - exporter: trace, stats
        - status: success, failure
    """

    BATCHES_TOTAL = "floe_stackdriver_batches_total"
    RECORDS_TOTAL = "floe_stackdriver_records_total"
    INLINE_RUNS_TOTAL = "floe_stackdriver_inline_runs_total"
    DROPPED_TASKS_TOTAL = "floe_stackdriver_dropped_tasks_total"
    EXPORT_DURATION_SECONDS = "floe_stackdriver_export_duration_seconds"

    SPAN_EXPORT = "floe.stackdriver.export"

    def __init__(
        self,
        exporter: str,
        meter_name: str = "floe.stackdriver",
        tracer_name: str = "floe.stackdriver",
    ) -> None:
        """Initialize the collector.

        Args:
            exporter: Exporter label value (trace or stats).
            meter_name: Name for the OpenTelemetry meter.
            tracer_name: Name for the OpenTelemetry tracer.
        """
        self.exporter = exporter
        self._meter = metrics.get_meter(meter_name, __version__)
        self._tracer: Tracer = trace.get_tracer(tracer_name, __version__)

        self._batches_counter: Counter | None = None
        self._records_counter: Counter | None = None
        self._inline_runs_counter: Counter | None = None
        self._dropped_tasks_counter: Counter | None = None
        self._duration_histogram: Histogram | None = None

    @property
    def batches_counter(self) -> Counter:
        """Get or create the batches counter."""
        if self._batches_counter is None:
            self._batches_counter = self._meter.create_counter(
                self.BATCHES_TOTAL,
                unit="1",
                description="Export batches by exporter and status",
            )
        return self._batches_counter

    @property
    def records_counter(self) -> Counter:
        """Get or create the records counter."""
        if self._records_counter is None:
            self._records_counter = self._meter.create_counter(
                self.RECORDS_TOTAL,
                unit="1",
                description="Spans or time series sent to Stackdriver",
            )
        return self._records_counter

    @property
    def inline_runs_counter(self) -> Counter:
        """Get or create the inline runs counter."""
        if self._inline_runs_counter is None:
            self._inline_runs_counter = self._meter.create_counter(
                self.INLINE_RUNS_TOTAL,
                unit="1",
                description="Export tasks run on the submitting thread",
            )
        return self._inline_runs_counter

    @property
    def dropped_tasks_counter(self) -> Counter:
        """Get or create the dropped tasks counter."""
        if self._dropped_tasks_counter is None:
            self._dropped_tasks_counter = self._meter.create_counter(
                self.DROPPED_TASKS_TOTAL,
                unit="1",
                description="Queued export tasks discarded by kill",
            )
        return self._dropped_tasks_counter

    @property
    def duration_histogram(self) -> Histogram:
        """Get or create the duration histogram."""
        if self._duration_histogram is None:
            self._duration_histogram = self._meter.create_histogram(
                self.EXPORT_DURATION_SECONDS,
                unit="s",
                description="Duration of batch exports in seconds",
            )
        return self._duration_histogram

    def record_batch(self, *, success: bool, record_count: int, duration_seconds: float) -> None:
        """Record a completed batch export."""
        attributes: dict[str, Any] = {"exporter": self.exporter}
        self.batches_counter.add(
            1, attributes={**attributes, "status": "success" if success else "failure"}
        )
        if success:
            self.records_counter.add(record_count, attributes=attributes)
        self.duration_histogram.record(duration_seconds, attributes=attributes)

    def record_inline_run(self) -> None:
        """Record a task run on the submitting thread."""
        self.inline_runs_counter.add(1, attributes={"exporter": self.exporter})

    def record_dropped_tasks(self, count: int) -> None:
        """Record tasks discarded from the queue."""
        if count:
            self.dropped_tasks_counter.add(count, attributes={"exporter": self.exporter})

    @contextmanager
    def export_timer(self, *, record_count: int) -> Generator[Span, None, None]:
        """Time a batch export inside a floe.stackdriver.export span.

        Records duration and success/failure; exceptions are marked on the
        span and re-raised.

        Args:
            record_count: Number of records in the batch.

        Yields:
            The export span.
        """
        start_time = time.monotonic()
        success = False
        with self._tracer.start_as_current_span(
            self.SPAN_EXPORT,
            attributes={
                "floe.stackdriver.exporter": self.exporter,
                "floe.stackdriver.record_count": record_count,
            },
        ) as span:
            try:
                yield span
                success = True
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise
            finally:
                self.record_batch(
                    success=success,
                    record_count=record_count,
                    duration_seconds=time.monotonic() - start_time,
                )


__all__ = ["ExporterMetrics"]
