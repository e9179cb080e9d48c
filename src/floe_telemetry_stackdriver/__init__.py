"""Google Cloud Trace and Cloud Monitoring (Stackdriver) exporters for floe.

Converts finished spans and stats view snapshots into the Cloud Trace v2 and
Cloud Monitoring v3 wire formats and delivers them from background threads
with bounded concurrency.

Example:
    >>> from floe_telemetry_stackdriver import TraceExporter
    >>> with TraceExporter(project_id="my-project") as exporter:
    ...     exporter.export(spans)
"""

from __future__ import annotations

from floe_telemetry_stackdriver._version import __version__
from floe_telemetry_stackdriver.errors import (
    AggregationMismatchError,
    ConfigurationError,
    ConversionError,
    ExporterNotRunningError,
    InvalidAttributeTypeError,
    MetricDescriptorConflictError,
    StackdriverExporterError,
    TaskRejectedError,
    TransportError,
    UnrecognizedAggregationKindError,
)

__all__ = [
    "AdmissionPolicy",
    "AggregationMismatchError",
    "ConfigurationError",
    "ConversionError",
    "ExporterConfig",
    "ExporterNotRunningError",
    "InvalidAttributeTypeError",
    "LifecycleState",
    "MetricDescriptorConflictError",
    "StackdriverExporterError",
    "StatsExporter",
    "TaskRejectedError",
    "TraceExporter",
    "TransportError",
    "UnrecognizedAggregationKindError",
    "__version__",
]

_LAZY_IMPORTS = {
    "AdmissionPolicy": "floe_telemetry_stackdriver.dispatcher",
    "ExporterConfig": "floe_telemetry_stackdriver.config",
    "LifecycleState": "floe_telemetry_stackdriver.lifecycle",
    "StatsExporter": "floe_telemetry_stackdriver.exporter",
    "TraceExporter": "floe_telemetry_stackdriver.exporter",
}


def __getattr__(name: str) -> object:
    """Lazy import so importing the errors does not pull in httpx and google-auth."""
    module_name = _LAZY_IMPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    import importlib

    return getattr(importlib.import_module(module_name), name)
