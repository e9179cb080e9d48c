"""Stats view snapshot types handed to the stats exporter.

A ViewData snapshot pairs a View definition (measure, aggregation, label
columns) with the aggregated value for every combination of tag values seen
so far. Aggregations and aggregation data are closed tagged unions keyed by
``kind``; the converter matches them exhaustively.

See Also:
    - floe_telemetry_stackdriver.stats_converter: ViewData -> Monitoring v3 records
"""

from __future__ import annotations

import bisect
import statistics
from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from floe_telemetry_stackdriver.models import TimeValue

if TYPE_CHECKING:
    from typing_extensions import Self


class MeasureType(str, Enum):
    """Numeric type of the values recorded against a measure."""

    INT64 = "INT64"
    DOUBLE = "DOUBLE"


class Measure(BaseModel):
    """A named quantity that instrumentation records values for.

    Attributes:
        name: Measure name, used as the metric display name.
        unit: Unit of the values (UCUM, e.g. "ms", "By", "1").
        type: Whether values are integers or floating point.
        description: Human-readable description.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    unit: str = Field(default="1")
    type: MeasureType = MeasureType.DOUBLE
    description: str = ""

    @property
    def is_int64(self) -> bool:
        """Return True if values recorded against this measure are integers."""
        return self.type is MeasureType.INT64


class CountAggregation(BaseModel):
    """Count the number of recorded values."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["count"] = "count"


class SumAggregation(BaseModel):
    """Sum the recorded values."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["sum"] = "sum"


class LastValueAggregation(BaseModel):
    """Keep only the most recently recorded value."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["last_value"] = "last_value"


class DistributionAggregation(BaseModel):
    """Bucket recorded values by explicit, ascending boundaries."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["distribution"] = "distribution"
    buckets: list[float] = Field(..., description="Ascending bucket boundaries")

    @model_validator(mode="after")
    def validate_buckets_ascending(self) -> Self:
        """Validate that bucket boundaries are strictly ascending."""
        if any(a >= b for a, b in zip(self.buckets, self.buckets[1:], strict=False)):
            raise ValueError(f"bucket boundaries must be strictly ascending: {self.buckets}")
        return self


Aggregation = Annotated[
    CountAggregation | SumAggregation | LastValueAggregation | DistributionAggregation,
    Field(discriminator="kind"),
]


class View(BaseModel):
    """Aggregation rule over a measure, grouped by tag columns.

    Attributes:
        name: View name, appended to the metric prefix to form the metric type.
        measure: Measure the view aggregates.
        aggregation: How values are aggregated.
        columns: Tag keys the data is grouped by, in label order.
        description: Optional metric description.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    measure: Measure
    aggregation: Aggregation
    columns: list[str] = Field(default_factory=list)
    description: str | None = None


class CountData(BaseModel):
    """Aggregated count for one tag combination."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["count"] = "count"
    value: int = Field(default=0, ge=0)
    time: TimeValue = Field(..., description="When the value was last updated")


class SumData(BaseModel):
    """Aggregated sum for one tag combination."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["sum"] = "sum"
    value: int | float = 0
    time: TimeValue


class LastValueData(BaseModel):
    """Most recent value for one tag combination."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["last_value"] = "last_value"
    value: int | float
    time: TimeValue = Field(..., description="When the value was recorded")


class DistributionData(BaseModel):
    """Bucketed distribution for one tag combination.

    bucket_counts has one more entry than buckets: entry i counts values in
    [buckets[i-1], buckets[i]), the first entry counts values below
    buckets[0] and the last counts values at or above buckets[-1].

    Attributes:
        count: Number of recorded values.
        mean: Arithmetic mean of the recorded values.
        sum_of_squared_deviation: Sum of squared deviations from the mean.
        buckets: Bucket boundaries, as declared by the view.
        bucket_counts: Per-bucket value counts.
        time: When the distribution was last updated.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["distribution"] = "distribution"
    count: int = Field(default=0, ge=0)
    mean: float = 0.0
    sum_of_squared_deviation: float = Field(default=0.0, ge=0.0)
    buckets: list[float] = Field(default_factory=list)
    bucket_counts: list[int] = Field(default_factory=list)
    time: TimeValue

    @model_validator(mode="after")
    def validate_bucket_counts_length(self) -> Self:
        """Validate that there is one more bucket count than boundaries."""
        if len(self.bucket_counts) != len(self.buckets) + 1:
            raise ValueError(
                f"bucket_counts has {len(self.bucket_counts)} entries, "
                f"expected {len(self.buckets) + 1} for {len(self.buckets)} boundaries"
            )
        return self

    @classmethod
    def from_values(
        cls,
        buckets: Iterable[float],
        values: Iterable[float],
        time: TimeValue,
    ) -> DistributionData:
        """Build a distribution snapshot from raw recorded values.

        Args:
            buckets: Ascending bucket boundaries.
            values: Recorded values.
            time: Time of the last recorded value.

        Returns:
            DistributionData with count, mean, sum of squared deviation and
            bucket counts computed from values.

        Examples:
            >>> data = DistributionData.from_values([5, 10, 15], [1], time=0)
            >>> data.bucket_counts
            [1, 0, 0, 0]
        """
        bounds = list(buckets)
        recorded = list(values)
        counts = [0] * (len(bounds) + 1)
        for value in recorded:
            counts[bisect.bisect_right(bounds, value)] += 1

        mean = statistics.fmean(recorded) if recorded else 0.0
        return cls(
            count=len(recorded),
            mean=mean,
            sum_of_squared_deviation=sum((v - mean) ** 2 for v in recorded),
            buckets=bounds,
            bucket_counts=counts,
            time=time,
        )


AggregationData = Annotated[
    CountData | SumData | LastValueData | DistributionData,
    Field(discriminator="kind"),
]


class ViewData(BaseModel):
    """Snapshot of a view's aggregated data.

    Attributes:
        view: The view definition.
        start_time: When collection for the view started.
        end_time: When the snapshot was taken, if recorded.
        data: Aggregated value per tag-value tuple. Each tuple holds one value
            per view column, in column order.

    Examples:
        >>> view_data = ViewData(
        ...     view=view,
        ...     start_time=start,
        ...     data={("GET", "200"): CountData(value=3, time=now)},
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    view: View
    start_time: TimeValue
    end_time: TimeValue | None = None
    data: dict[tuple[str, ...], AggregationData] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_data_matches_view(self) -> Self:
        """Validate tag-value width and aggregation kind of every entry."""
        width = len(self.view.columns)
        expected = self.view.aggregation.kind
        for tag_values, aggr_data in self.data.items():
            if len(tag_values) != width:
                raise ValueError(
                    f"tag values {tag_values!r} do not match columns {self.view.columns!r}"
                )
            if aggr_data.kind != expected:
                raise ValueError(
                    f"view {self.view.name!r} aggregates {expected} "
                    f"but {tag_values!r} holds {aggr_data.kind} data"
                )
        return self


__all__ = [
    "Aggregation",
    "AggregationData",
    "CountAggregation",
    "CountData",
    "DistributionAggregation",
    "DistributionData",
    "LastValueAggregation",
    "LastValueData",
    "Measure",
    "MeasureType",
    "SumAggregation",
    "SumData",
    "View",
    "ViewData",
]
