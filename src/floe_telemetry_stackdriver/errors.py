"""Exception hierarchy for floe-telemetry-stackdriver.

All exceptions inherit from StackdriverExporterError, so callers can catch
every exporter failure with a single except clause.

Exception Hierarchy:
    StackdriverExporterError (base)
    ├── ConfigurationError               # No usable project or credentials
    ├── ConversionError                  # A record cannot be converted
    │   ├── InvalidAttributeTypeError    # Attribute value of unsupported type
    │   ├── UnrecognizedAggregationKindError  # Aggregation outside the union
    │   └── AggregationMismatchError     # Data kind differs from the view's
    ├── ExporterNotRunningError          # Export submitted after shutdown began
    ├── TaskRejectedError                # Queue full under the REJECT policy
    └── TransportError                   # Remote API call failed
        └── MetricDescriptorConflictError  # Incompatible descriptor exists

Propagation:
    Errors raised while admitting work (ExporterNotRunningError,
    TaskRejectedError) reach the caller immediately. Errors raised inside a
    background export task (ConversionError, TransportError) are logged by the
    dispatcher and never reach the caller. create_metric_descriptor() is
    synchronous and propagates TransportError directly.

Example:
    >>> from floe_telemetry_stackdriver.errors import InvalidAttributeTypeError
    >>> raise InvalidAttributeTypeError("ratio", 0.5)
    Traceback (most recent call last):
        ...
    InvalidAttributeTypeError: Invalid attribute type for 'ratio': float
"""

from __future__ import annotations

from typing import Any


class StackdriverExporterError(Exception):
    """Base exception for all exporter errors.

    Example:
        >>> try:
        ...     exporter.create_metric_descriptor(view)
        ... except StackdriverExporterError as e:
        ...     print(f"Stackdriver operation failed: {e}")
    """

    pass


class ConfigurationError(StackdriverExporterError):
    """Raised when no usable project identity or credentials can be found.

    Surfaces when the client is first resolved (the first export), not when
    the exporter is constructed.

    Attributes:
        reason: Description of what could not be resolved.
    """

    def __init__(self, reason: str) -> None:
        """Initialize ConfigurationError.

        Args:
            reason: Description of what could not be resolved.
        """
        self.reason = reason
        super().__init__(f"Stackdriver exporter is not configured: {reason}")


class ConversionError(StackdriverExporterError):
    """Base class for errors converting a record to its wire format."""

    pass


class InvalidAttributeTypeError(ConversionError):
    """Raised when an attribute value is not a string, integer or boolean.

    Attributes:
        key: Attribute key holding the invalid value.
        value: The rejected value.
    """

    def __init__(self, key: str, value: Any) -> None:
        """Initialize InvalidAttributeTypeError.

        Args:
            key: Attribute key holding the invalid value.
            value: The rejected value.
        """
        self.key = key
        self.value = value
        super().__init__(f"Invalid attribute type for {key!r}: {type(value).__name__}")


class UnrecognizedAggregationKindError(ConversionError):
    """Raised for an aggregation outside Count, Sum, LastValue, Distribution.

    Attributes:
        kind: Type name of the unrecognized aggregation or aggregation data.
    """

    def __init__(self, kind: str) -> None:
        """Initialize UnrecognizedAggregationKindError.

        Args:
            kind: Type name of the unrecognized aggregation or aggregation data.
        """
        self.kind = kind
        super().__init__(f"Unrecognized aggregation kind: {kind}")


class AggregationMismatchError(ConversionError):
    """Raised when aggregated data does not match its view's aggregation.

    Attributes:
        view_name: Name of the view.
        expected: Aggregation kind declared by the view.
        actual: Kind of the aggregated data.
    """

    def __init__(self, view_name: str, expected: str, actual: str) -> None:
        self.view_name = view_name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"View {view_name!r} aggregates {expected} but holds {actual} data"
        )


class ExporterNotRunningError(StackdriverExporterError):
    """Raised when work is submitted after shutdown has been initiated.

    Attributes:
        state: Name of the lifecycle state at submission time.
    """

    def __init__(self, state: str) -> None:
        """Initialize ExporterNotRunningError.

        Args:
            state: Name of the lifecycle state at submission time.
        """
        self.state = state
        super().__init__(f"Exporter is no longer running (state: {state})")


class TaskRejectedError(StackdriverExporterError):
    """Raised when the queue is full and the admission policy is REJECT.

    Attributes:
        max_queue: Configured queue capacity.
    """

    def __init__(self, max_queue: int) -> None:
        """Initialize TaskRejectedError.

        Args:
            max_queue: Configured queue capacity.
        """
        self.max_queue = max_queue
        super().__init__(f"Export queue is full ({max_queue} pending tasks)")


class TransportError(StackdriverExporterError):
    """Raised when a call to the Stackdriver API fails.

    Attributes:
        url: Request URL without query string.
        status_code: HTTP status, or None if no response was received.
        reason: Error detail from the response or the network layer.
    """

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        """Initialize TransportError.

        Args:
            url: Request URL without query string.
            reason: Error detail from the response or the network layer.
            status_code: HTTP status, or None if no response was received.
        """
        self.url = url
        self.reason = reason
        self.status_code = status_code
        status = f"HTTP {status_code}" if status_code is not None else "no response"
        super().__init__(f"Stackdriver request to {url} failed ({status}): {reason}")


class MetricDescriptorConflictError(TransportError):
    """Raised when a metric descriptor with the same type but a different
    shape (kind, value type or labels) already exists."""

    pass


__all__ = [
    "AggregationMismatchError",
    "ConfigurationError",
    "ConversionError",
    "ExporterNotRunningError",
    "InvalidAttributeTypeError",
    "MetricDescriptorConflictError",
    "StackdriverExporterError",
    "TaskRejectedError",
    "TransportError",
    "UnrecognizedAggregationKindError",
]
