"""Wire records for the Cloud Trace v2 and Cloud Monitoring v3 REST APIs.

Each model mirrors the JSON mapping of the corresponding protobuf message:
camelCase field names, int64 values rendered as decimal strings and
timestamps rendered as RFC 3339 with nanosecond precision. ``to_json()``
produces the request body fragment; models validate API responses too.

See Also:
    - https://cloud.google.com/trace/docs/reference/v2/rest/v2/projects.traces/batchWrite
    - https://cloud.google.com/monitoring/api/ref_v3/rest/v3/projects.timeSeries
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_serializer
from pydantic.alias_generators import to_camel

from floe_telemetry_stackdriver.models import LinkType, MessageEventType

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# proto3 JSON renders 64-bit integers as strings
Int64 = Annotated[int, PlainSerializer(str, return_type=str, when_used="json")]


class WireModel(BaseModel):
    """Base class for wire records."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json(self) -> dict[str, Any]:
        """Render the record as its REST JSON mapping."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Timestamp(WireModel):
    """google.protobuf.Timestamp: seconds and nanoseconds since the Unix epoch."""

    seconds: int
    nanos: int = Field(default=0, ge=0, lt=1_000_000_000)

    @model_serializer(mode="wrap", when_used="json")
    def serialize_rfc3339(self, handler: Any) -> str:
        """Render as an RFC 3339 UTC string, e.g. 2024-01-01T00:00:00.000000001Z."""
        moment = _EPOCH + timedelta(seconds=self.seconds)
        text = moment.strftime("%Y-%m-%dT%H:%M:%S")
        if self.nanos:
            text += f".{self.nanos:09d}"
        return text + "Z"


# ---------------------------------------------------------------------------
# Cloud Trace v2
# ---------------------------------------------------------------------------


class TruncatableString(WireModel):
    value: str
    truncated_byte_count: int = 0


class AttributeValue(WireModel):
    """Exactly one of string_value, int_value or bool_value is set."""

    string_value: TruncatableString | None = None
    int_value: Int64 | None = None
    bool_value: bool | None = None


class Attributes(WireModel):
    attribute_map: dict[str, AttributeValue] = Field(default_factory=dict)
    dropped_attributes_count: int = 0


class StackFrame(WireModel):
    function_name: TruncatableString
    file_name: TruncatableString
    line_number: Int64 = 0


class StackFrames(WireModel):
    frame: list[StackFrame] = Field(default_factory=list)
    dropped_frames_count: int = 0


class StackTrace(WireModel):
    """Full frames on first sight of a hash id, the hash id alone afterwards."""

    stack_frames: StackFrames | None = None
    stack_trace_hash_id: Int64 | None = None


class Annotation(WireModel):
    description: TruncatableString
    attributes: Attributes


class MessageEvent(WireModel):
    type: MessageEventType
    id: Int64
    uncompressed_size_bytes: Int64 = 0
    compressed_size_bytes: Int64 = 0


class TimeEvent(WireModel):
    time: Timestamp
    annotation: Annotation | None = None
    message_event: MessageEvent | None = None


class TimeEvents(WireModel):
    time_event: list[TimeEvent] = Field(default_factory=list)
    dropped_annotations_count: int = 0
    dropped_message_events_count: int = 0


class Link(WireModel):
    trace_id: str
    span_id: str
    type: LinkType = LinkType.TYPE_UNSPECIFIED
    attributes: Attributes


class Links(WireModel):
    link: list[Link] = Field(default_factory=list)
    dropped_links_count: int = 0


class Status(WireModel):
    code: int
    message: str = ""


class Span(WireModel):
    """A span in Cloud Trace v2 form.

    ``name`` is the resource name
    ``projects/<project>/traces/<trace_id>/spans/<span_id>``.
    """

    name: str
    span_id: str
    parent_span_id: str = ""
    display_name: TruncatableString
    start_time: Timestamp
    end_time: Timestamp
    attributes: Attributes
    stack_trace: StackTrace | None = None
    time_events: TimeEvents
    links: Links
    status: Status | None = None
    same_process_as_parent_span: bool | None = None
    child_span_count: int | None = None


# ---------------------------------------------------------------------------
# Cloud Monitoring v3
# ---------------------------------------------------------------------------


class MetricKind(str, Enum):
    """google.api.MetricDescriptor.MetricKind."""

    METRIC_KIND_UNSPECIFIED = "METRIC_KIND_UNSPECIFIED"
    GAUGE = "GAUGE"
    DELTA = "DELTA"
    CUMULATIVE = "CUMULATIVE"


class ValueType(str, Enum):
    """google.api.MetricDescriptor.ValueType."""

    VALUE_TYPE_UNSPECIFIED = "VALUE_TYPE_UNSPECIFIED"
    BOOL = "BOOL"
    INT64 = "INT64"
    DOUBLE = "DOUBLE"
    STRING = "STRING"
    DISTRIBUTION = "DISTRIBUTION"
    MONEY = "MONEY"


class LabelValueType(str, Enum):
    """google.api.LabelDescriptor.ValueType."""

    STRING = "STRING"
    BOOL = "BOOL"
    INT64 = "INT64"


class LabelDescriptor(WireModel):
    key: str
    value_type: LabelValueType = LabelValueType.STRING
    description: str | None = None


class MetricDescriptor(WireModel):
    """Schema registration for a metric type."""

    name: str | None = None
    type: str
    display_name: str | None = None
    description: str | None = None
    metric_kind: MetricKind
    value_type: ValueType
    unit: str | None = None
    labels: list[LabelDescriptor] = Field(default_factory=list)


class Metric(WireModel):
    type: str
    labels: dict[str, str] = Field(default_factory=dict)


class MonitoredResource(WireModel):
    type: str
    labels: dict[str, str] = Field(default_factory=dict)


class TimeInterval(WireModel):
    start_time: Timestamp | None = None
    end_time: Timestamp


class ExplicitBuckets(WireModel):
    bounds: list[float] = Field(default_factory=list)


class BucketOptions(WireModel):
    explicit_buckets: ExplicitBuckets


class Distribution(WireModel):
    count: Int64 = 0
    mean: float = 0.0
    sum_of_squared_deviation: float = 0.0
    bucket_options: BucketOptions
    bucket_counts: list[Int64] = Field(default_factory=list)


class TypedValue(WireModel):
    """Exactly one of the value fields is set."""

    int64_value: Int64 | None = None
    double_value: float | None = None
    distribution_value: Distribution | None = None


class Point(WireModel):
    interval: TimeInterval
    value: TypedValue


class TimeSeries(WireModel):
    metric: Metric
    resource: MonitoredResource
    metric_kind: MetricKind
    value_type: ValueType
    points: list[Point] = Field(default_factory=list)


__all__ = [
    "AttributeValue",
    "Attributes",
    "Annotation",
    "BucketOptions",
    "Distribution",
    "ExplicitBuckets",
    "Int64",
    "LabelDescriptor",
    "LabelValueType",
    "Link",
    "Links",
    "MessageEvent",
    "Metric",
    "MetricDescriptor",
    "MetricKind",
    "MonitoredResource",
    "Point",
    "Span",
    "StackFrame",
    "StackFrames",
    "StackTrace",
    "Status",
    "TimeEvent",
    "TimeEvents",
    "TimeInterval",
    "TimeSeries",
    "Timestamp",
    "TruncatableString",
    "TypedValue",
    "ValueType",
    "WireModel",
]
