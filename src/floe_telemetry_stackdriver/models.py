"""Span snapshot types handed to the trace exporter.

These are the immutable span records produced by the instrumentation layer.
They are frozen, validated Pydantic models: the exporter never mutates them
and the converter only reads them.

Timestamps are either datetimes (naive values are taken as UTC) or integer
nanoseconds since the Unix epoch, which keeps full nanosecond precision.

See Also:
    - floe_telemetry_stackdriver.trace_converter: Span -> Cloud Trace v2 records
"""

from __future__ import annotations

import traceback
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Datetime or integer nanoseconds since the Unix epoch
TimeValue = datetime | int


class MessageEventType(str, Enum):
    """Direction of a message event, matching the Cloud Trace enum names."""

    TYPE_UNSPECIFIED = "TYPE_UNSPECIFIED"
    SENT = "SENT"
    RECEIVED = "RECEIVED"


class LinkType(str, Enum):
    """Relationship of a linked span to the current span."""

    TYPE_UNSPECIFIED = "TYPE_UNSPECIFIED"
    CHILD_LINKED_SPAN = "CHILD_LINKED_SPAN"
    PARENT_LINKED_SPAN = "PARENT_LINKED_SPAN"


class TruncatableString(BaseModel):
    """A string that may have been shortened to fit size limits.

    Attributes:
        value: The (possibly truncated) string.
        truncated_byte_count: Number of bytes removed from the original.

    Examples:
        >>> TruncatableString(value="GET /orders", truncated_byte_count=0)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: str = Field(..., description="String value, possibly truncated")
    truncated_byte_count: int = Field(
        default=0,
        ge=0,
        description="Number of bytes removed from the original string",
    )


def _coerce_truncatable(value: Any) -> Any:
    if isinstance(value, str):
        return TruncatableString(value=value)
    return value


class StackFrame(BaseModel):
    """A single frame of a captured stack trace."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    function_name: str = Field(..., description="Function (label) of the frame")
    file_name: str = Field(..., description="Source file path")
    line_number: int = Field(default=0, ge=0, description="Line number in file_name")

    @classmethod
    def from_frame_summary(cls, frame: traceback.FrameSummary) -> StackFrame:
        """Build a frame from a traceback.FrameSummary.

        Args:
            frame: Frame from traceback.extract_stack() or extract_tb().

        Returns:
            The equivalent StackFrame.
        """
        return cls(
            function_name=frame.name,
            file_name=frame.filename,
            line_number=frame.lineno or 0,
        )


class Annotation(BaseModel):
    """A timestamped free-text annotation on a span."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["annotation"] = "annotation"
    time: TimeValue = Field(..., description="When the annotation was recorded")
    description: TruncatableString = Field(..., description="Annotation text")
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Attribute values: TruncatableString, str, int or bool",
    )
    dropped_attributes_count: int = Field(default=0, ge=0)

    @field_validator("description", mode="before")
    @classmethod
    def coerce_description(cls, value: Any) -> Any:
        """Accept a plain string as an untruncated description."""
        return _coerce_truncatable(value)


class MessageEvent(BaseModel):
    """A message sent or received during the span."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["message_event"] = "message_event"
    time: TimeValue = Field(..., description="When the message was sent or received")
    type: MessageEventType = Field(..., description="Message direction")
    id: int = Field(..., ge=0, description="Message identifier, unique within the span")
    uncompressed_size: int = Field(..., ge=0, description="Uncompressed size in bytes")
    compressed_size: int = Field(default=0, ge=0, description="Compressed size in bytes")


TimeEvent = Annotated[Annotation | MessageEvent, Field(discriminator="kind")]


class Link(BaseModel):
    """A pointer from the span to another span."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    trace_id: str = Field(..., min_length=1)
    span_id: str = Field(..., min_length=1)
    type: LinkType = LinkType.TYPE_UNSPECIFIED
    attributes: dict[str, Any] = Field(default_factory=dict)
    dropped_attributes_count: int = Field(default=0, ge=0)


class Status(BaseModel):
    """Final status of a span (google.rpc.Status code and message)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    code: int = Field(..., description="google.rpc.Code value, 0 is OK")
    message: str = Field(default="", description="Developer-facing error message")


class Span(BaseModel):
    """A finished span ready for export.

    Every dropped_*_count records how many entries the instrumentation layer
    elided to stay within size limits; the converter propagates them as-is.

    Attributes:
        trace_id: 32-character hex trace identifier.
        span_id: 16-character hex span identifier.
        parent_span_id: Parent span identifier, None or "" for a root span.
        name: Display name of the span.
        start_time: Span start.
        end_time: Span end.
        attributes: Attribute values (TruncatableString, str, int or bool).
        stack_trace: Frames of the stack captured at span start.
        stack_trace_hash_id: Caller-computed identifier of stack_trace.
        time_events: Annotations and message events in recording order.
        links: Links to other spans.
        status: Final status, if set.
        same_process_as_parent_span: Whether the parent ran in this process.
        child_span_count: Number of direct children, if known.

    Examples:
        >>> span = Span(
        ...     trace_id="0123456789abcdef0123456789abcdef",
        ...     span_id="0123456789abcdef",
        ...     name="load_orders",
        ...     start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ...     end_time=datetime(2024, 1, 1, 0, 0, 2, tzinfo=timezone.utc),
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    trace_id: str = Field(..., min_length=1)
    span_id: str = Field(..., min_length=1)
    parent_span_id: str | None = None
    name: TruncatableString
    start_time: TimeValue
    end_time: TimeValue
    attributes: dict[str, Any] = Field(default_factory=dict)
    dropped_attributes_count: int = Field(default=0, ge=0)
    stack_trace: list[StackFrame] = Field(default_factory=list)
    stack_trace_hash_id: int | None = None
    dropped_frames_count: int = Field(default=0, ge=0)
    time_events: list[TimeEvent] = Field(default_factory=list)
    dropped_annotations_count: int = Field(default=0, ge=0)
    dropped_message_events_count: int = Field(default=0, ge=0)
    links: list[Link] = Field(default_factory=list)
    dropped_links_count: int = Field(default=0, ge=0)
    status: Status | None = None
    same_process_as_parent_span: bool | None = None
    child_span_count: int | None = Field(default=None, ge=0)

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, value: Any) -> Any:
        """Accept a plain string as an untruncated name."""
        return _coerce_truncatable(value)


__all__ = [
    "Annotation",
    "Link",
    "LinkType",
    "MessageEvent",
    "MessageEventType",
    "Span",
    "StackFrame",
    "Status",
    "TimeEvent",
    "TimeValue",
    "TruncatableString",
]
