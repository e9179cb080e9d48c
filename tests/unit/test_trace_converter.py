"""Unit tests for span to Cloud Trace v2 conversion."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from floe_telemetry_stackdriver import wire
from floe_telemetry_stackdriver.errors import ConversionError, InvalidAttributeTypeError
from floe_telemetry_stackdriver.models import (
    Annotation,
    Link,
    LinkType,
    MessageEvent,
    MessageEventType,
    Span,
    StackFrame,
    Status,
    TruncatableString,
)
from floe_telemetry_stackdriver.trace_converter import (
    AGENT_KEY,
    AGENT_VALUE,
    SpanConverter,
    convert_time,
    make_resource_name,
)

FRAMES = [
    StackFrame(function_name="load", file_name="pipeline.py", line_number=10),
    StackFrame(function_name="main", file_name="cli.py", line_number=3),
]


@pytest.fixture
def converter() -> SpanConverter:
    return SpanConverter("my-project")


class TestConvertTime:
    """Tests for timestamp conversion."""

    @pytest.mark.requirement("FR-001")
    def test_aware_datetime(self) -> None:
        """Aware datetimes convert to epoch seconds and nanos."""
        ts = convert_time(datetime(2024, 1, 1, 12, 0, 0, 250_000, tzinfo=timezone.utc))
        assert ts.seconds == 1_704_110_400
        assert ts.nanos == 250_000_000

    @pytest.mark.requirement("FR-001")
    def test_naive_datetime_is_utc(self) -> None:
        """Naive datetimes are taken as UTC."""
        assert convert_time(datetime(2024, 1, 1, 12, 0, 0)) == convert_time(
            datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        )

    @pytest.mark.requirement("FR-001")
    def test_integer_nanoseconds_keep_precision(self) -> None:
        """Integer epoch nanoseconds convert without rounding."""
        ts = convert_time(1_704_110_400_000_000_001)
        assert ts.seconds == 1_704_110_400
        assert ts.nanos == 1

    @pytest.mark.requirement("FR-001")
    def test_timestamp_json_is_rfc3339(self) -> None:
        """Timestamps render as RFC 3339 with nanoseconds when non-zero."""
        assert wire.TimeInterval(
            end_time=convert_time(1_704_110_400_000_000_001)
        ).to_json() == {"endTime": "2024-01-01T12:00:00.000000001Z"}
        assert wire.TimeInterval(end_time=convert_time(1_704_110_400 * 10**9)).to_json() == {
            "endTime": "2024-01-01T12:00:00Z"
        }


class TestAttributes:
    """Tests for attribute conversion."""

    @pytest.mark.requirement("FR-002")
    def test_string_value(self, converter: SpanConverter) -> None:
        """Plain strings become untruncated string values."""
        value = converter.convert_attribute_value("k", "v")
        assert value.string_value == wire.TruncatableString(value="v", truncated_byte_count=0)
        assert value.int_value is None

    @pytest.mark.requirement("FR-002")
    def test_truncatable_string_keeps_count(self, converter: SpanConverter) -> None:
        """TruncatableString values carry their truncated byte count."""
        value = converter.convert_attribute_value(
            "k", TruncatableString(value="abc", truncated_byte_count=7)
        )
        assert value.string_value is not None
        assert value.string_value.truncated_byte_count == 7

    @pytest.mark.requirement("FR-002")
    def test_bool_is_not_int(self, converter: SpanConverter) -> None:
        """Booleans become bool values, not int values."""
        value = converter.convert_attribute_value("k", True)
        assert value.bool_value is True
        assert value.int_value is None

    @pytest.mark.requirement("FR-002")
    def test_int_value_renders_as_string(self, converter: SpanConverter) -> None:
        """Integers become int64 values rendered as decimal strings."""
        value = converter.convert_attribute_value("k", 42)
        assert value.int_value == 42
        assert value.to_json() == {"intValue": "42"}

    @pytest.mark.requirement("FR-002")
    def test_float_is_rejected(self, converter: SpanConverter) -> None:
        """Unsupported value types raise InvalidAttributeTypeError."""
        with pytest.raises(InvalidAttributeTypeError, match="'ratio': float") as exc_info:
            converter.convert_attribute_value("ratio", 0.5)
        assert exc_info.value.key == "ratio"
        assert isinstance(exc_info.value, ConversionError)

    @pytest.mark.requirement("FR-003")
    def test_well_known_keys_are_renamed(self, converter: SpanConverter) -> None:
        """http.* keys map to Cloud Trace well-known labels, others pass through."""
        attributes = converter.convert_attributes(
            {"http.method": "GET", "http.status_code": 200, "db.system": "duckdb"}, 0
        )
        assert set(attributes.attribute_map) == {"/http/method", "/http/status_code", "db.system"}

    @pytest.mark.requirement("FR-004")
    def test_agent_attribute_added_without_touching_dropped_count(
        self, converter: SpanConverter, make_span: Callable[..., Span]
    ) -> None:
        """Every span carries g.co/agent; the dropped count is propagated as-is."""
        record = converter.convert_span(
            make_span(attributes={"a": 1}, dropped_attributes_count=3)
        )
        agent = record.attributes.attribute_map[AGENT_KEY]
        assert agent.string_value is not None
        assert agent.string_value.value == AGENT_VALUE
        assert record.attributes.dropped_attributes_count == 3
        assert len(record.attributes.attribute_map) == 2

    @pytest.mark.requirement("FR-004")
    def test_agent_attribute_wins_over_user_value(
        self, converter: SpanConverter, make_span: Callable[..., Span]
    ) -> None:
        """A user attribute named g.co/agent is replaced by the agent value."""
        record = converter.convert_span(make_span(attributes={AGENT_KEY: "spoofed"}))
        agent = record.attributes.attribute_map[AGENT_KEY].string_value
        assert agent is not None
        assert agent.value == AGENT_VALUE

    @pytest.mark.requirement("FR-004")
    def test_annotation_and_link_attributes_have_no_agent(
        self,
        converter: SpanConverter,
        make_span: Callable[..., Span],
        start_time: datetime,
    ) -> None:
        """Only the span attribute map gets the agent attribute."""
        record = converter.convert_span(
            make_span(
                time_events=[Annotation(time=start_time, description="cache miss")],
                links=[Link(trace_id="ab" * 16, span_id="cd" * 8)],
            )
        )
        annotation = record.time_events.time_event[0].annotation
        assert annotation is not None
        assert AGENT_KEY not in annotation.attributes.attribute_map
        assert AGENT_KEY not in record.links.link[0].attributes.attribute_map


class TestStackTraces:
    """Tests for stack trace conversion and deduplication."""

    @pytest.mark.requirement("FR-005")
    def test_repeated_hash_id_sends_frames_once(
        self, converter: SpanConverter, make_span: Callable[..., Span]
    ) -> None:
        """The second span with the same hash id carries only the hash id."""
        first = converter.convert_span(make_span(stack_trace=FRAMES, stack_trace_hash_id=99))
        second = converter.convert_span(
            make_span(span_id="1111111111111111", stack_trace=FRAMES, stack_trace_hash_id=99)
        )

        assert first.stack_trace is not None
        assert first.stack_trace.stack_frames is not None
        assert len(first.stack_trace.stack_frames.frame) == 2
        assert first.stack_trace.stack_trace_hash_id == 99

        assert second.stack_trace == wire.StackTrace(stack_trace_hash_id=99)

    @pytest.mark.requirement("FR-005")
    def test_new_converter_sends_frames_again(self, make_span: Callable[..., Span]) -> None:
        """Deduplication is scoped to one converter."""
        span = make_span(stack_trace=FRAMES, stack_trace_hash_id=99)
        SpanConverter("p").convert_span(span)
        record = SpanConverter("p").convert_span(span)
        assert record.stack_trace is not None
        assert record.stack_trace.stack_frames is not None

    @pytest.mark.requirement("FR-005")
    def test_frames_without_hash_id_always_sent(
        self, converter: SpanConverter, make_span: Callable[..., Span]
    ) -> None:
        """Without a hash id every span carries its frames."""
        for _ in range(2):
            record = converter.convert_span(make_span(stack_trace=FRAMES, dropped_frames_count=4))
            assert record.stack_trace is not None
            assert record.stack_trace.stack_trace_hash_id is None
            assert record.stack_trace.stack_frames is not None
            assert record.stack_trace.stack_frames.dropped_frames_count == 4

    @pytest.mark.requirement("FR-005")
    def test_no_stack_trace(self, converter: SpanConverter, make_span: Callable[..., Span]) -> None:
        """A span without frames or hash id has no stack trace."""
        record = converter.convert_span(make_span())
        assert record.stack_trace is None
        assert "stackTrace" not in record.to_json()


class TestSpan:
    """Tests for full span conversion."""

    @pytest.mark.requirement("FR-006")
    def test_resource_name_and_identity(
        self, converter: SpanConverter, make_span: Callable[..., Span]
    ) -> None:
        """Span name is the project-scoped resource name."""
        record = converter.convert_span(make_span(parent_span_id="aaaaaaaaaaaaaaaa"))
        assert record.name == make_resource_name(
            "my-project", "0123456789abcdef0123456789abcdef", "00f067aa0ba902b7"
        )
        assert record.span_id == "00f067aa0ba902b7"
        assert record.parent_span_id == "aaaaaaaaaaaaaaaa"
        assert record.display_name.value == "load_orders"

    @pytest.mark.requirement("FR-006")
    def test_root_span_has_empty_parent(
        self, converter: SpanConverter, make_span: Callable[..., Span]
    ) -> None:
        assert converter.convert_span(make_span()).parent_span_id == ""

    @pytest.mark.requirement("FR-006")
    def test_time_events_keep_order_and_counts(
        self,
        converter: SpanConverter,
        make_span: Callable[..., Span],
        start_time: datetime,
    ) -> None:
        """Annotations and message events convert in order with drop counts."""
        record = converter.convert_span(
            make_span(
                time_events=[
                    MessageEvent(
                        time=start_time,
                        type=MessageEventType.SENT,
                        id=1,
                        uncompressed_size=100,
                        compressed_size=40,
                    ),
                    Annotation(time=start_time, description="retry", attributes={"n": 2}),
                ],
                dropped_annotations_count=1,
                dropped_message_events_count=2,
            )
        )
        events = record.time_events
        assert events.dropped_annotations_count == 1
        assert events.dropped_message_events_count == 2
        message = events.time_event[0].message_event
        assert message is not None
        assert message.to_json() == {
            "type": "SENT",
            "id": "1",
            "uncompressedSizeBytes": "100",
            "compressedSizeBytes": "40",
        }
        assert events.time_event[1].annotation is not None

    @pytest.mark.requirement("FR-006")
    def test_unknown_time_event_raises(self, converter: SpanConverter) -> None:
        """Time events outside the union raise ConversionError."""
        with pytest.raises(ConversionError, match="Unrecognized time event"):
            converter.convert_time_events([object()], 0, 0)  # type: ignore[list-item]

    @pytest.mark.requirement("FR-006")
    def test_links_status_and_flags(
        self, converter: SpanConverter, make_span: Callable[..., Span]
    ) -> None:
        """Links, status and optional flags are carried over."""
        record = converter.convert_span(
            make_span(
                links=[
                    Link(
                        trace_id="ab" * 16,
                        span_id="cd" * 8,
                        type=LinkType.PARENT_LINKED_SPAN,
                        attributes={"reason": "fan-in"},
                    )
                ],
                dropped_links_count=5,
                status=Status(code=2, message="boom"),
                same_process_as_parent_span=False,
                child_span_count=3,
            )
        )
        assert record.links.dropped_links_count == 5
        assert record.links.link[0].type is LinkType.PARENT_LINKED_SPAN
        assert record.status == wire.Status(code=2, message="boom")
        assert record.same_process_as_parent_span is False
        assert record.child_span_count == 3

    @pytest.mark.requirement("FR-006")
    def test_json_rendering(self, converter: SpanConverter, make_span: Callable[..., Span]) -> None:
        """to_json renders camelCase keys and RFC 3339 times, omitting unset fields."""
        body = converter.convert_span(make_span(attributes={"rows": 12})).to_json()
        assert body["spanId"] == "00f067aa0ba902b7"
        assert body["displayName"] == {"value": "load_orders", "truncatedByteCount": 0}
        assert body["startTime"] == "2024-01-01T12:00:00Z"
        assert body["endTime"] == "2024-01-01T12:00:02Z"
        assert body["attributes"]["attributeMap"]["rows"] == {"intValue": "12"}
        assert "status" not in body
