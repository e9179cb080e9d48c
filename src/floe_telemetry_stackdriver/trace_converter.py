"""Convert span snapshots into Cloud Trace v2 wire records.

Use one SpanConverter per export request: the converter remembers which
stack traces it has already emitted and sends only the hash id for repeats.
A fresh converter for the next request keeps requests independent.

Example:
    >>> converter = SpanConverter("my-project")
    >>> records = [converter.convert_span(span) for span in spans]
"""

from __future__ import annotations

import platform
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from floe_telemetry_stackdriver import wire
from floe_telemetry_stackdriver._version import __version__
from floe_telemetry_stackdriver.errors import ConversionError, InvalidAttributeTypeError
from floe_telemetry_stackdriver.models import (
    Annotation,
    Link,
    MessageEvent,
    Span,
    StackFrame,
    Status,
    TimeEvent,
    TimeValue,
    TruncatableString,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_NANOS_PER_SECOND = 1_000_000_000

# Reserved attribute identifying the exporting agent
AGENT_KEY = "g.co/agent"
AGENT_VALUE = (
    f"floe-telemetry-stackdriver [{__version__}] python [{platform.python_version()}]"
)

# Conventional HTTP attribute names -> Cloud Trace well-known labels
WELL_KNOWN_ATTRIBUTES: Mapping[str, str] = {
    "http.host": "/http/host",
    "http.method": "/http/method",
    "http.path": "/http/path",
    "http.route": "/http/route",
    "http.user_agent": "/http/user_agent",
    "http.status_code": "/http/status_code",
}


def convert_time(value: TimeValue) -> wire.Timestamp:
    """Convert a datetime or epoch nanoseconds to a protobuf Timestamp.

    Naive datetimes are taken as UTC. Integer arithmetic only, so no
    precision is lost.

    Args:
        value: Datetime or integer nanoseconds since the Unix epoch.

    Returns:
        Timestamp with seconds and nanos.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - _EPOCH
        return wire.Timestamp(
            seconds=delta.days * 86_400 + delta.seconds,
            nanos=delta.microseconds * 1_000,
        )
    seconds, nanos = divmod(value, _NANOS_PER_SECOND)
    return wire.Timestamp(seconds=seconds, nanos=nanos)


def make_resource_name(project_id: str, trace_id: str, span_id: str) -> str:
    """Return the Cloud Trace resource name of a span."""
    return f"projects/{project_id}/traces/{trace_id}/spans/{span_id}"


class SpanConverter:
    """Converts spans to Cloud Trace v2 records for a single export request.

    Attributes:
        project_id: Google Cloud project the spans are written to.
    """

    def __init__(self, project_id: str) -> None:
        """Initialize the converter with an empty stack trace cache.

        Args:
            project_id: Google Cloud project the spans are written to.
        """
        self.project_id = project_id
        self._stack_trace_hash_ids: set[int] = set()

    def convert_span(self, span: Span) -> wire.Span:
        """Convert a span.

        Args:
            span: Span snapshot.

        Returns:
            The Cloud Trace v2 span record.

        Raises:
            InvalidAttributeTypeError: If an attribute value is not a string,
                integer or boolean.
        """
        return wire.Span(
            name=make_resource_name(self.project_id, span.trace_id, span.span_id),
            span_id=span.span_id,
            parent_span_id=span.parent_span_id or "",
            display_name=self.convert_truncatable_string(span.name),
            start_time=convert_time(span.start_time),
            end_time=convert_time(span.end_time),
            attributes=self.convert_attributes(
                span.attributes,
                span.dropped_attributes_count,
                include_agent_attribute=True,
            ),
            stack_trace=self.convert_stack_trace(
                span.stack_trace,
                span.dropped_frames_count,
                span.stack_trace_hash_id,
            ),
            time_events=self.convert_time_events(
                span.time_events,
                span.dropped_annotations_count,
                span.dropped_message_events_count,
            ),
            links=self.convert_links(span.links, span.dropped_links_count),
            status=self.convert_status(span.status),
            same_process_as_parent_span=span.same_process_as_parent_span,
            child_span_count=span.child_span_count,
        )

    def convert_truncatable_string(self, value: TruncatableString | str) -> wire.TruncatableString:
        """Convert a truncatable (or plain) string."""
        if isinstance(value, str):
            return wire.TruncatableString(value=value)
        return wire.TruncatableString(
            value=value.value,
            truncated_byte_count=value.truncated_byte_count,
        )

    def convert_attribute_value(self, key: str, value: Any) -> wire.AttributeValue:
        """Convert one attribute value.

        Args:
            key: Attribute key, used in the error message.
            value: TruncatableString, str, int or bool.

        Returns:
            AttributeValue with the matching field set.

        Raises:
            InvalidAttributeTypeError: For any other type.
        """
        if isinstance(value, (TruncatableString, str)):
            return wire.AttributeValue(string_value=self.convert_truncatable_string(value))
        # bool is a subclass of int, check it first
        if isinstance(value, bool):
            return wire.AttributeValue(bool_value=value)
        if isinstance(value, int):
            return wire.AttributeValue(int_value=value)
        raise InvalidAttributeTypeError(key, value)

    def convert_attributes(
        self,
        attributes: Mapping[str, Any],
        dropped_attributes_count: int,
        *,
        include_agent_attribute: bool = False,
    ) -> wire.Attributes:
        """Convert an attribute map, renaming well-known HTTP keys.

        Args:
            attributes: Attribute key -> value.
            dropped_attributes_count: Attributes elided by the instrumentation.
            include_agent_attribute: Add the g.co/agent attribute. Only spans
                carry it; annotations and links do not.

        Returns:
            Attributes record. The agent attribute is not reflected in
            dropped_attributes_count.
        """
        attribute_map = {
            WELL_KNOWN_ATTRIBUTES.get(key, key): self.convert_attribute_value(key, value)
            for key, value in attributes.items()
        }
        if include_agent_attribute:
            attribute_map[AGENT_KEY] = self.convert_attribute_value(AGENT_KEY, AGENT_VALUE)
        return wire.Attributes(
            attribute_map=attribute_map,
            dropped_attributes_count=dropped_attributes_count,
        )

    def convert_stack_frame(self, frame: StackFrame) -> wire.StackFrame:
        """Convert a single stack frame."""
        return wire.StackFrame(
            function_name=wire.TruncatableString(value=frame.function_name),
            file_name=wire.TruncatableString(value=frame.file_name),
            line_number=frame.line_number,
        )

    def convert_stack_trace(
        self,
        frames: Sequence[StackFrame],
        dropped_frames_count: int,
        stack_trace_hash_id: int | None,
    ) -> wire.StackTrace | None:
        """Convert a stack trace, omitting frames already sent by this converter.

        The first stack trace seen with a given hash id carries its frames;
        later ones carry only the hash id. Without a hash id the frames are
        always sent.

        Args:
            frames: Captured frames, innermost first.
            dropped_frames_count: Frames elided by the instrumentation.
            stack_trace_hash_id: Caller-computed identifier of the frames.

        Returns:
            StackTrace record, or None if the span carries no stack trace.
        """
        if stack_trace_hash_id is None:
            if not frames and not dropped_frames_count:
                return None
            return wire.StackTrace(
                stack_frames=self._convert_stack_frames(frames, dropped_frames_count),
            )

        if stack_trace_hash_id in self._stack_trace_hash_ids:
            return wire.StackTrace(stack_trace_hash_id=stack_trace_hash_id)

        self._stack_trace_hash_ids.add(stack_trace_hash_id)
        return wire.StackTrace(
            stack_frames=self._convert_stack_frames(frames, dropped_frames_count),
            stack_trace_hash_id=stack_trace_hash_id,
        )

    def _convert_stack_frames(
        self,
        frames: Sequence[StackFrame],
        dropped_frames_count: int,
    ) -> wire.StackFrames:
        return wire.StackFrames(
            frame=[self.convert_stack_frame(frame) for frame in frames],
            dropped_frames_count=dropped_frames_count,
        )

    def convert_annotation(self, annotation: Annotation) -> wire.TimeEvent:
        """Convert an annotation to a time event."""
        return wire.TimeEvent(
            time=convert_time(annotation.time),
            annotation=wire.Annotation(
                description=self.convert_truncatable_string(annotation.description),
                attributes=self.convert_attributes(
                    annotation.attributes,
                    annotation.dropped_attributes_count,
                ),
            ),
        )

    def convert_message_event(self, message_event: MessageEvent) -> wire.TimeEvent:
        """Convert a message event to a time event."""
        return wire.TimeEvent(
            time=convert_time(message_event.time),
            message_event=wire.MessageEvent(
                type=message_event.type,
                id=message_event.id,
                uncompressed_size_bytes=message_event.uncompressed_size,
                compressed_size_bytes=message_event.compressed_size,
            ),
        )

    def convert_time_events(
        self,
        time_events: Sequence[TimeEvent],
        dropped_annotations_count: int,
        dropped_message_events_count: int,
    ) -> wire.TimeEvents:
        """Convert time events, keeping their order.

        Raises:
            ConversionError: If an event is neither an annotation nor a
                message event.
        """
        converted: list[wire.TimeEvent] = []
        for time_event in time_events:
            if isinstance(time_event, Annotation):
                converted.append(self.convert_annotation(time_event))
            elif isinstance(time_event, MessageEvent):
                converted.append(self.convert_message_event(time_event))
            else:
                raise ConversionError(
                    f"Unrecognized time event type: {type(time_event).__name__}"
                )
        return wire.TimeEvents(
            time_event=converted,
            dropped_annotations_count=dropped_annotations_count,
            dropped_message_events_count=dropped_message_events_count,
        )

    def convert_link(self, link: Link) -> wire.Link:
        """Convert a link."""
        return wire.Link(
            trace_id=link.trace_id,
            span_id=link.span_id,
            type=link.type,
            attributes=self.convert_attributes(link.attributes, link.dropped_attributes_count),
        )

    def convert_links(self, links: Sequence[Link], dropped_links_count: int) -> wire.Links:
        """Convert a list of links."""
        return wire.Links(
            link=[self.convert_link(link) for link in links],
            dropped_links_count=dropped_links_count,
        )

    def convert_status(self, status: Status | None) -> wire.Status | None:
        """Convert an optional status."""
        if status is None:
            return None
        return wire.Status(code=status.code, message=status.message)


__all__ = [
    "AGENT_KEY",
    "AGENT_VALUE",
    "SpanConverter",
    "WELL_KNOWN_ATTRIBUTES",
    "convert_time",
    "make_resource_name",
]
