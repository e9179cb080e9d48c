"""Convert view snapshots into Cloud Monitoring v3 wire records.

Each (view, tag values) pair becomes one TimeSeries with a single point.
Labels are aligned positionally: the i-th view column names the i-th tag
value.

Example:
    >>> converter = StatsConverter("my-project")
    >>> series = converter.convert_view_data_list(views_data)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from floe_telemetry_stackdriver import wire
from floe_telemetry_stackdriver.errors import (
    AggregationMismatchError,
    ConversionError,
    UnrecognizedAggregationKindError,
)
from floe_telemetry_stackdriver.stats import (
    AggregationData,
    CountAggregation,
    CountData,
    DistributionAggregation,
    DistributionData,
    LastValueAggregation,
    LastValueData,
    SumAggregation,
    SumData,
    View,
    ViewData,
)
from floe_telemetry_stackdriver.trace_converter import convert_time

DEFAULT_METRIC_PREFIX = "custom.googleapis.com/floe"
DEFAULT_RESOURCE_TYPE = "global"

_AGGREGATION_DATA = (CountData, SumData, LastValueData, DistributionData)


def make_metric_type(metric_prefix: str, view: View) -> str:
    """Return the metric type of a view, e.g. custom.googleapis.com/floe/latency."""
    return f"{metric_prefix.rstrip('/')}/{view.name}"


def make_descriptor_name(project_id: str, metric_type: str) -> str:
    """Return the Cloud Monitoring resource name of a metric descriptor."""
    return f"projects/{project_id}/metricDescriptors/{metric_type}"


def convert_value_type(view: View) -> wire.ValueType:
    """Map a view's aggregation and measure to a metric value type.

    Raises:
        UnrecognizedAggregationKindError: For an aggregation outside the union.
    """
    aggregation = view.aggregation
    if isinstance(aggregation, DistributionAggregation):
        return wire.ValueType.DISTRIBUTION
    if isinstance(aggregation, CountAggregation):
        return wire.ValueType.INT64
    if isinstance(aggregation, (SumAggregation, LastValueAggregation)):
        return wire.ValueType.INT64 if view.measure.is_int64 else wire.ValueType.DOUBLE
    raise UnrecognizedAggregationKindError(type(aggregation).__name__)


def convert_metric_kind(view: View) -> wire.MetricKind:
    """Map a view's aggregation to a metric kind: LastValue is a gauge."""
    if isinstance(view.aggregation, LastValueAggregation):
        return wire.MetricKind.GAUGE
    return wire.MetricKind.CUMULATIVE


class StatsConverter:
    """Converts view snapshots and views to Cloud Monitoring v3 records.

    Attributes:
        project_id: Google Cloud project the series are written to.
        metric_prefix: Prefix of every metric type.
        resource_type: Monitored resource type of every series.
        resource_labels: Monitored resource labels of every series.
    """

    def __init__(
        self,
        project_id: str,
        *,
        metric_prefix: str = DEFAULT_METRIC_PREFIX,
        resource_type: str = DEFAULT_RESOURCE_TYPE,
        resource_labels: Mapping[str, str] | None = None,
    ) -> None:
        self.project_id = project_id
        self.metric_prefix = metric_prefix
        self.resource_type = resource_type
        self.resource_labels = (
            dict(resource_labels) if resource_labels is not None else {"project_id": project_id}
        )

    def convert_view_data_list(self, views_data: Iterable[ViewData]) -> list[wire.TimeSeries]:
        """Convert several snapshots, keeping view order then tag order."""
        series: list[wire.TimeSeries] = []
        for view_data in views_data:
            series.extend(self.convert_view_data(view_data))
        return series

    def convert_view_data(self, view_data: ViewData) -> list[wire.TimeSeries]:
        """Convert one snapshot to one time series per tag-value tuple.

        Raises:
            UnrecognizedAggregationKindError: For an aggregation outside the union.
        """
        view = view_data.view
        metric_type = make_metric_type(self.metric_prefix, view)
        metric_kind = convert_metric_kind(view)
        value_type = convert_value_type(view)
        resource = wire.MonitoredResource(type=self.resource_type, labels=self.resource_labels)

        return [
            wire.TimeSeries(
                metric=wire.Metric(
                    type=metric_type,
                    labels=self.convert_labels(view.columns, tag_values),
                ),
                resource=resource,
                metric_kind=metric_kind,
                value_type=value_type,
                points=[self.convert_point(view_data, aggr_data)],
            )
            for tag_values, aggr_data in view_data.data.items()
        ]

    def convert_labels(self, columns: Sequence[str], tag_values: Sequence[str]) -> dict[str, str]:
        """Pair columns with tag values by position."""
        return dict(zip(columns, tag_values, strict=True))

    def convert_point(self, view_data: ViewData, aggr_data: AggregationData) -> wire.Point:
        """Convert one aggregated value to a point.

        LastValue points are instantaneous at the recorded time; the other
        kinds cover [view start, last update].

        Raises:
            UnrecognizedAggregationKindError: For data outside the union.
            AggregationMismatchError: If the data kind differs from the view's
                aggregation.
        """
        view = view_data.view
        if isinstance(aggr_data, _AGGREGATION_DATA) and aggr_data.kind != view.aggregation.kind:
            raise AggregationMismatchError(view.name, view.aggregation.kind, aggr_data.kind)

        end_time = convert_time(aggr_data.time)

        if isinstance(aggr_data, LastValueData):
            return wire.Point(
                interval=wire.TimeInterval(start_time=end_time, end_time=end_time),
                value=self._scalar_value(view_data.view, aggr_data.value),
            )

        interval = wire.TimeInterval(
            start_time=convert_time(view_data.start_time),
            end_time=end_time,
        )
        if isinstance(aggr_data, CountData):
            value = wire.TypedValue(int64_value=aggr_data.value)
        elif isinstance(aggr_data, SumData):
            value = self._scalar_value(view_data.view, aggr_data.value)
        elif isinstance(aggr_data, DistributionData):
            value = wire.TypedValue(distribution_value=self.convert_distribution(aggr_data))
        else:
            raise UnrecognizedAggregationKindError(type(aggr_data).__name__)
        return wire.Point(interval=interval, value=value)

    def _scalar_value(self, view: View, value: int | float) -> wire.TypedValue:
        if view.measure.is_int64:
            if isinstance(value, float) and not value.is_integer():
                raise ConversionError(
                    f"Measure {view.measure.name!r} is INT64 but view {view.name!r} "
                    f"holds non-integral value {value!r}"
                )
            return wire.TypedValue(int64_value=int(value))
        return wire.TypedValue(double_value=float(value))

    def convert_distribution(self, aggr_data: DistributionData) -> wire.Distribution:
        """Convert distribution data, prepending a zero-width underflow bucket.

        Cloud Monitoring treats the first bound as the upper edge of the
        underflow bucket, so bounds become [0, *buckets] and counts
        [0, *bucket_counts].
        """
        return wire.Distribution(
            count=aggr_data.count,
            mean=aggr_data.mean,
            sum_of_squared_deviation=aggr_data.sum_of_squared_deviation,
            bucket_options=wire.BucketOptions(
                explicit_buckets=wire.ExplicitBuckets(bounds=[0.0, *aggr_data.buckets]),
            ),
            bucket_counts=[0, *aggr_data.bucket_counts],
        )

    def convert_metric_descriptor(self, view: View) -> wire.MetricDescriptor:
        """Build the metric descriptor registering a view's metric type."""
        metric_type = make_metric_type(self.metric_prefix, view)
        return wire.MetricDescriptor(
            name=make_descriptor_name(self.project_id, metric_type),
            type=metric_type,
            display_name=view.measure.name,
            description=view.description,
            metric_kind=convert_metric_kind(view),
            value_type=convert_value_type(view),
            unit=view.measure.unit,
            labels=[wire.LabelDescriptor(key=column) for column in view.columns],
        )


__all__ = [
    "DEFAULT_METRIC_PREFIX",
    "DEFAULT_RESOURCE_TYPE",
    "StatsConverter",
    "convert_metric_kind",
    "convert_value_type",
    "make_descriptor_name",
    "make_metric_type",
]
