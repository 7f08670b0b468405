"""Helpers for querying and publishing CloudWatch metrics."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

INSTANCE_ID = "InstanceId"
APPEND_METRIC = "append"
LOREM_IPSUM = (
    "Lorem ipsum dolor sit amet consectetur adipiscing elit Vivamus non mauris malesuada "
    "mattis ex eget porttitor purus Suspendisse potenti Praesent vel sollicitudin ipsum "
    "Quisque luctus pretium lorem non faucibus Ut vel quam dui Nunc fermentum condimentum "
    "consectetur Morbi tellus mauris tristique tincidunt elit consectetur hendrerit placerat "
    "dui In nulla erat finibus eget erat a hendrerit sodales urna In sapien purus auctor sit "
    "amet congue ut congue eget nisi Vivamus sed neque ut ligula lobortis accumsan quis id "
    "metus In feugiat velit et leo mattis non fringilla dui elementum Proin a nisi ac sapien "
    "vulputate consequat Vestibulum eu tellus mi Integer consectetur efficitur"
)


class MetricValidationError(Exception):
    """A metric could not be found or queried."""


def validate_metric(
    client: Any,
    metric_name: str,
    namespace: str,
    dimension_filters: Sequence[dict],
) -> None:
    """Raise unless the metric was published recently under the given dimensions."""
    try:
        data = client.list_metrics(
            MetricName=metric_name,
            Namespace=namespace,
            RecentlyActive="PT3H",
            Dimensions=list(dimension_filters),
        )
    except Exception as exc:
        raise MetricValidationError(f"Error getting metric data {exc}") from exc

    if not data.get("Metrics"):
        dims = " ".join(f"{{{f['Name']} {f['Value']}}}" for f in dimension_filters)
        raise MetricValidationError(
            f"No metrics found for dimension [{dims}] metric name {metric_name} "
            f"namespace {namespace}"
        )


def validate_metric_with_retries(
    client: Any,
    metric_name: str,
    namespace: str,
    dimension_filters: Sequence[dict],
    retries: int,
    retry_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Try :func:`validate_metric` up to ``retries`` times, pausing after each failure."""
    last_error: MetricValidationError | None = None
    for attempt in range(1, retries + 1):
        try:
            validate_metric(client, metric_name, namespace, dimension_filters)
            return
        except MetricValidationError as exc:
            last_error = exc
            logger.info("could not validate metrics try : %d of %d error %s", attempt, retries, exc)
            sleep(retry_seconds)
    if last_error is not None:
        raise MetricValidationError("could not validate metrics") from last_error


def validate_sample_count(
    client: Any,
    metric_name: str,
    namespace: str,
    dimensions: Sequence[dict],
    start_time: datetime,
    end_time: datetime,
    lower_bound: int,
    upper_bound: int,
    period_seconds: int,
) -> bool:
    """Tell whether the summed sample count lies within the inclusive bounds."""
    try:
        data = client.get_metric_statistics(
            MetricName=metric_name,
            Namespace=namespace,
            StartTime=start_time,
            EndTime=end_time,
            Period=period_seconds,
            Dimensions=list(dimensions),
            Statistics=["SampleCount"],
        )
    except Exception:  # noqa: BLE001 - a failed query is a failed check
        return False

    data_points = sum(int(point["SampleCount"]) for point in data.get("Datapoints", []))
    logger.info(
        "Number of datapoints for start time %s with endtime %s and period %d is %d "
        "is inclusive between %d and %d",
        start_time, end_time, period_seconds, data_points, lower_bound, upper_bound,
    )
    return lower_bound <= data_points <= upper_bound


def get_metric_data(
    client: Any,
    queries: Sequence[dict],
    start_time: datetime,
    end_time: datetime,
) -> dict:
    """Run a GetMetricData request and return its response."""
    return client.get_metric_data(
        StartTime=start_time,
        EndTime=end_time,
        MetricDataQueries=list(queries),
    )


def get_metric_statistics(
    client: Any,
    metric_name: str,
    namespace: str,
    dimensions: Sequence[dict],
    start_time: datetime,
    end_time: datetime,
    period_seconds: int,
    statistics: Iterable[str] | None,
    extended_statistics: Iterable[str] | None,
) -> dict:
    """Run GetMetricStatistics with either plain or extended statistics, never both."""
    params: dict[str, Any] = {
        "MetricName": metric_name,
        "Namespace": namespace,
        "StartTime": start_time,
        "EndTime": end_time,
        "Period": period_seconds,
        "Dimensions": list(dimensions),
    }
    if extended_statistics is None:
        params["Statistics"] = list(statistics or [])
    else:
        params["ExtendedStatistics"] = list(extended_statistics)
    return client.get_metric_statistics(**params)


def build_dimension_filter_list(append_dimension: int, instance_id: str) -> list[dict]:
    """Build ``append_dimension`` filters: generated ones followed by the instance id."""
    if append_dimension < 1:
        raise ValueError("append_dimension must be at least 1")
    filters = [
        {"Name": f"{APPEND_METRIC}{i}", "Value": f"{LOREM_IPSUM}{APPEND_METRIC}{i}"}
        for i in range(append_dimension - 1)
    ]
    filters.append({"Name": INSTANCE_ID, "Value": instance_id})
    return filters


def report_metric(client: Any, namespace: str, name: str, value: float, unit: str) -> None:
    """Publish a single datum without dimensions."""
    client.put_metric_data(
        Namespace=namespace,
        MetricData=[{"MetricName": name, "Value": float(value), "Unit": unit}],
    )