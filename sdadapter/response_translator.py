"""Translation of Stackdriver time series into custom, external and core metric values."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .errors import (
    new_bad_request,
    new_internal_error,
    new_metric_not_found_for_error,
)
from .filters import _quote
from .resources import (
    GroupResource,
    MetricDescriptor,
    ObjectMeta,
    Point,
    Quantity,
    TimeSeries,
)
from .selectors import Selector
from .translator import Translator

logger = logging.getLogger(__name__)

POD_SCHEMA_KEY = "pods"
NODE_SCHEMA_KEY = "nodes"
API_VERSION_INTERNAL = "__internal"

_EMPTY_SERIES = "Empty time series returned from Stackdriver"


@dataclass(frozen=True)
class ObjectReference:
    """Reference to the object a metric describes."""

    api_version: str = ""
    kind: str = ""
    name: str = ""
    namespace: str = ""


@dataclass(frozen=True)
class MetricIdentifier:
    """Metric name together with the selector it was queried with, if any."""

    name: str
    selector: Optional[Selector] = None


@dataclass(frozen=True)
class MetricValue:
    """A custom metric value of one object."""

    described_object: ObjectReference
    metric: MetricIdentifier
    timestamp: datetime
    value: Quantity


@dataclass(frozen=True)
class ExternalMetricValue:
    """An external metric value with the labels of its time series."""

    metric_name: str
    metric_labels: dict
    timestamp: datetime
    value: Quantity


@dataclass(frozen=True)
class CustomMetricInfo:
    """A custom metric available for a group resource."""

    group_resource: GroupResource
    metric: str
    namespaced: bool


@dataclass(frozen=True)
class TimeInfo:
    """End time and window of a core metric sample."""

    timestamp: datetime
    window: timedelta


def _parse_rfc3339(text: str) -> datetime:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    if "T" not in candidate and "t" not in candidate:
        raise ValueError(f"invalid RFC 3339 time: {text!r}")
    moment = datetime.fromisoformat(candidate.replace("t", "T"))
    if moment.tzinfo is None:
        raise ValueError(f"RFC 3339 time lacks an offset: {text!r}")
    return moment


def _latest_point(series: TimeSeries) -> Point:
    if not series.points:
        # A correct query never returns such a series.
        raise new_internal_error(_EMPTY_SERIES)
    # Points are returned in reverse time order.
    return series.points[0]


def _unexpected_value(value: object):
    return new_bad_request(
        f"Expected metric of type DoubleValue or Int64Value, but received TypedValue: {value}"
    )


def _milli_quantity(point: Point) -> Quantity:
    value = point.value
    if value.int64_value is not None:
        return Quantity.from_int(value.int64_value)
    if value.double_value is not None:
        return Quantity.from_milli(int(value.double_value * 1000))
    raise _unexpected_value(value)


def _core_quantity(point: Point) -> Quantity:
    value = point.value
    if value.int64_value is not None:
        return Quantity.from_int(value.int64_value)
    if value.double_value is not None:
        return Quantity.scaled(int(value.double_value * 1000 * 1000), -6)
    raise _unexpected_value(value)


def escape_metric(metric_name: str) -> str:
    """Replace every '/' in a metric name with '|'."""
    return metric_name.replace("/", "|")


def metric_key(translator: Translator, series: TimeSeries, resource_schema: str) -> str:
    """Return the key identifying the object a time series belongs to."""
    labels = series.resource.labels
    if not translator.use_new_resource_model:
        return labels.get("pod_id", "")
    resource_type = series.resource.type
    if resource_type in ("k8s_pod", "k8s_container"):
        # Containers share the pod key: only one container per pod may provide a metric.
        return f"{labels.get('namespace_name', '')}:{labels.get('pod_name', '')}"
    if resource_type == "k8s_node":
        return ":" + labels.get("node_name", "")
    if resource_type == "prometheus_target":
        metric_labels = series.metric.labels if series.metric is not None else {}
        if resource_schema == NODE_SCHEMA_KEY:
            return ":" + metric_labels.get("node", "")
        return f"{labels.get('namespace', '')}:{metric_labels.get('pod', '')}"
    logger.error(
        'Expected resource type as one of ["k8s_pod", "k8s_container", "k8s_node", '
        '"prometheus_target"], but received %s',
        resource_type,
    )
    raise new_internal_error(f"Stackdriver returned incorrect resource type {_quote(resource_type)}")


def _resource_key(translator: Translator, obj: ObjectMeta) -> str:
    if translator.use_new_resource_model:
        return f"{obj.namespace}:{obj.name}"
    return obj.uid


def _metric_values(
    translator: Translator,
    group_resource: GroupResource,
    time_series: Iterable[TimeSeries],
) -> dict[str, Quantity]:
    values: dict[str, Quantity] = {}
    for series in time_series:
        point = _latest_point(series)
        name = metric_key(translator, series, str(group_resource))
        quantity = _milli_quantity(point)
        values[name] = values.get(name, Quantity.from_int(0)) + quantity
    return values


def _metric_for(
    translator: Translator,
    value: Quantity,
    group_resource: GroupResource,
    namespace: str,
    name: str,
    metric_name: str,
    metric_selector: Selector,
) -> MetricValue:
    kind = translator.mapper.kind_for(group_resource)
    selector = None if metric_selector.is_empty() else metric_selector
    return MetricValue(
        described_object=ObjectReference(
            api_version=f"{group_resource.group}/{API_VERSION_INTERNAL}",
            kind=kind,
            name=name,
            namespace=namespace,
        ),
        metric=MetricIdentifier(name=metric_name, selector=selector),
        timestamp=translator.clock(),
        value=value,
    )


def get_resp_for_single_object(
    translator: Translator,
    time_series: Iterable[TimeSeries],
    group_resource: GroupResource,
    metric_name: str,
    metric_selector: Selector,
    namespace: str,
    name: str,
) -> MetricValue:
    """Return the custom metric value of a single object."""
    values = _metric_values(translator, group_resource, time_series)
    if not values:
        raise new_metric_not_found_for_error(group_resource, metric_name, name)
    if len(values) > 1:
        raise new_internal_error(
            f"Expected exactly one value for resource {_quote(name)} in namespace "
            f"{_quote(namespace)}, but received {len(values)} values"
        )
    (value,) = values.values()
    return _metric_for(translator, value, group_resource, namespace, name, metric_name, metric_selector)


def get_resp_for_multiple_objects(
    translator: Translator,
    time_series: Iterable[TimeSeries],
    objects: Iterable[ObjectMeta],
    group_resource: GroupResource,
    metric_name: str,
    metric_selector: Selector,
) -> list[MetricValue]:
    """Return the custom metric values of those objects that have one, in object order."""
    values = _metric_values(translator, group_resource, time_series)
    result: list[MetricValue] = []
    for obj in objects:
        value = values.get(_resource_key(translator, obj))
        if value is None:
            logger.debug("Metric '%s' not found for pod '%s'", metric_name, obj.name)
            continue
        result.append(
            _metric_for(
                translator, value, group_resource, obj.namespace, obj.name, metric_name, metric_selector
            )
        )
    return result


def _metric_labels(series: TimeSeries) -> dict[str, str]:
    labels: dict[str, str] = {}
    if series.metric is not None:
        labels.update({f"metric.labels.{k}": v for k, v in series.metric.labels.items()})
    labels["resource.type"] = series.resource.type
    labels.update({f"resource.labels.{k}": v for k, v in series.resource.labels.items()})
    return labels


def get_resp_for_external_metric(
    translator: Translator, time_series: Iterable[TimeSeries], metric_name: str
) -> list[ExternalMetricValue]:
    """Return one external metric value per time series, from its latest point."""
    result: list[ExternalMetricValue] = []
    for series in time_series:
        point = _latest_point(series)
        try:
            end_time = _parse_rfc3339(point.interval.end_time)
        except ValueError:
            raise new_internal_error(
                f"Timeseries from Stackdriver has incorrect end time: {point.interval.end_time}"
            ) from None
        result.append(
            ExternalMetricValue(
                metric_name=metric_name,
                metric_labels=_metric_labels(series),
                timestamp=end_time,
                value=_milli_quantity(point),
            )
        )
    return result


def get_metrics_from_descriptors(descriptors: Iterable[MetricDescriptor]) -> list[CustomMetricInfo]:
    """Return the metrics of INT64 or DOUBLE descriptors, with escaped names."""
    return [
        CustomMetricInfo(
            group_resource=GroupResource(group="", resource="*"),
            metric=escape_metric(descriptor.type),
            namespaced=True,
        )
        for descriptor in descriptors
        if descriptor.value_type in ("INT64", "DOUBLE")
    ]


def _hex(text: str) -> str:
    return text.encode("utf-8").hex()


def check_metric_uniqueness_for_pod(
    translator: Translator, time_series: Iterable[TimeSeries], metric_name: str
) -> None:
    """Raise unless each pod has at most one container providing the metric."""
    containers: dict[str, str] = {}
    for series in time_series:
        name = metric_key(translator, series, POD_SCHEMA_KEY)
        container_name = series.resource.labels.get("container_name")
        if container_name is None:
            raise new_internal_error("container_name is missing")
        known = containers.setdefault(name, container_name)
        if known != container_name:
            raise new_bad_request(
                "Only one container in pod can have specific metric. "
                f"Containers {_hex(known)} {_hex(container_name)} have the same metric "
                f"{_hex(metric_name)} in pod {_hex(name)}"
            )


@dataclass
class PodResult:
    """Core container metrics and their time information, keyed by pod."""

    translator: Translator
    container_metric: dict[str, dict[str, Quantity]] = field(default_factory=dict)
    time_info: dict[str, TimeInfo] = field(default_factory=dict)

    def add_container_metrics(self, time_series: Iterable[TimeSeries]) -> None:
        """Add the latest value of each container's series."""
        for series in time_series:
            point = _latest_point(series)
            quantity = _core_quantity(point)
            pod_key = metric_key(self.translator, series, POD_SCHEMA_KEY)
            if pod_key not in self.container_metric:
                self.container_metric[pod_key] = {}
                self.time_info[pod_key] = TimeInfo(
                    _parse_rfc3339(point.interval.end_time), self.translator.alignment_period
                )
            container_name = series.resource.labels.get("container_name")
            if container_name is None:
                raise new_internal_error("Container name is not present.")
            containers = self.container_metric[pod_key]
            if container_name in containers:
                raise new_internal_error("The same container appered two time in the response.")
            containers[container_name] = quantity


@dataclass
class NodeResult:
    """Core node metrics and their time information, keyed by node name."""

    translator: Translator
    node_metric: dict[str, Quantity] = field(default_factory=dict)
    time_info: dict[str, TimeInfo] = field(default_factory=dict)

    def add_node_metrics(self, time_series: Iterable[TimeSeries]) -> None:
        """Add the latest value of each node's series."""
        for series in time_series:
            point = _latest_point(series)
            quantity = _core_quantity(point)
            node_name = series.resource.labels.get("node_name", "")
            if node_name in self.node_metric:
                raise new_internal_error("The same node appered two time in the response.")
            self.node_metric[node_name] = quantity
            self.time_info[node_name] = TimeInfo(
                _parse_rfc3339(point.interval.end_time), self.translator.alignment_period
            )


def get_core_container_metric(
    translator: Translator, time_series: Iterable[TimeSeries]
) -> tuple[dict[str, dict[str, Quantity]], dict[str, TimeInfo]]:
    """Return container values per pod and the time information per pod."""
    result = PodResult(translator)
    result.add_container_metrics(time_series)
    return result.container_metric, result.time_info


def get_core_node_metric(
    translator: Translator, time_series: Iterable[TimeSeries]
) -> tuple[dict[str, Quantity], dict[str, TimeInfo]]:
    """Return the value and time information per node."""
    result = NodeResult(translator)
    result.add_node_metrics(time_series)
    return result.node_metric, result.time_info