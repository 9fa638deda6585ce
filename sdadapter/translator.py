"""Translation of metric queries into Stackdriver Monitoring API requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Protocol, Sequence

from .config import GceConfig
from .errors import (
    StatusError,
    new_bad_request,
    new_internal_error,
    new_label_not_allowed_error,
    new_no_such_metric_error,
    new_operation_not_supported_error,
)
from .filters import _quote
from .resources import MetricDescriptor, ObjectMeta, RestMapper
from .selectors import Operator, Selector

ALLOWED_EXTERNAL_METRICS_LABEL_PREFIXES = (
    "metric.labels",
    "resource.labels",
    "metadata.system_labels",
    "metadata.user_labels",
)
ALLOWED_EXTERNAL_METRICS_FULL_LABEL_NAMES = ("resource.type", "reducer")
ALLOWED_CUSTOM_METRICS_LABEL_PREFIXES = ("metric.labels",)
ALLOWED_CUSTOM_METRICS_FULL_LABEL_NAMES = ("reducer",)
ALLOWED_REDUCERS = frozenset(
    {
        "REDUCE_NONE",
        "REDUCE_MEAN",
        "REDUCE_MIN",
        "REDUCE_MAX",
        "REDUCE_SUM",
        "REDUCE_STDDEV",
        "REDUCE_COUNT",
        "REDUCE_COUNT_TRUE",
        "REDUCE_COUNT_FALSE",
        "REDUCE_FRACTION_TRUE",
        "REDUCE_PERCENTILE_99",
        "REDUCE_PERCENTILE_95",
        "REDUCE_PERCENTILE_50",
        "REDUCE_PERCENTILE_05",
    }
)

ALL_NAMESPACES = ""
MAX_NUM_OF_ARGS_IN_ONE_OF_FILTER = 100
PROMETHEUS_METRIC_PREFIX = "prometheus.googleapis.com"

_PROJECT_LABEL = "resource.labels.project_id"
_REDUCER_LABEL = "reducer"
_EXACT = (Operator.EQUALS, Operator.DOUBLE_EQUALS)


class MetricService(Protocol):
    """The part of the monitoring API the translator calls directly."""

    def get_metric_descriptor(self, name: str) -> MetricDescriptor:
        """Return the descriptor stored under the full resource name."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.replace(microsecond=0).isoformat()
    if moment.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


@dataclass(frozen=True)
class TimeSeriesListRequest:
    """A request listing time series of one project."""

    name: str
    filter: str
    interval_start_time: str
    interval_end_time: str
    per_series_aligner: str
    alignment_period: str
    cross_series_reducer: str = ""


@dataclass(frozen=True)
class MetricDescriptorListRequest:
    """A request listing metric descriptors of one project."""

    name: str
    filter: str


def join_filters(*args: str) -> str:
    """Join the non-empty filters with AND."""
    return " AND ".join(f for f in args if f)


def _is_allowed_label_name(
    label_name: str, allowed_prefixes: Sequence[str], allowed_full_names: Sequence[str]
) -> bool:
    if any(label_name.startswith(prefix + ".") for prefix in allowed_prefixes):
        return True
    return label_name in allowed_full_names


def _split_metric_label(label_name: str, allowed_prefixes: Sequence[str]) -> tuple[str, str]:
    for prefix in allowed_prefixes:
        if label_name.startswith(prefix + "."):
            return prefix, label_name[len(prefix) + 1 :]
    raise new_bad_request(f"Label name: {label_name} is not allowed.")


def _quote_all(items: Iterable[str]) -> list[str]:
    return [_quote(item) for item in items]


@dataclass
class Translator:
    """Translates between the custom metrics API and the Stackdriver API."""

    config: GceConfig
    req_window: timedelta
    alignment_period: timedelta
    mapper: RestMapper = field(default_factory=RestMapper)
    use_new_resource_model: bool = False
    support_distributions: bool = False
    service: Optional[MetricService] = None
    clock: Callable[[], datetime] = _utc_now

    def get_external_metric_request(
        self,
        metric_name: str,
        metric_kind: str,
        metric_value_type: str,
        metric_selector: Selector,
    ) -> TimeSeriesListRequest:
        """Return the request querying an external metric."""
        if metric_value_type == "DISTRIBUTION" and not self.support_distributions:
            raise new_bad_request("Distributions are not supported")
        metric_project = self.get_external_metric_project(metric_selector)
        metric_filter = self._filter_for_metric(metric_name)
        if metric_selector.is_empty():
            return self.create_list_timeseries_request(metric_filter, metric_kind, metric_value_type, "")
        selector_filter, reducer = self.filter_for_selector(
            metric_selector,
            ALLOWED_EXTERNAL_METRICS_LABEL_PREFIXES,
            ALLOWED_EXTERNAL_METRICS_FULL_LABEL_NAMES,
        )
        return self.create_list_timeseries_request(
            join_filters(metric_filter, selector_filter),
            metric_kind,
            metric_value_type,
            reducer,
            metric_project,
        )

    def list_metric_descriptors(self, fallback_for_container_metrics: bool) -> MetricDescriptorListRequest:
        """Return the request listing all custom metric descriptors of the cluster."""
        if self.use_new_resource_model:
            filter_text = join_filters(
                self._filter_for_cluster(),
                self._filter_for_any_resource(fallback_for_container_metrics),
            )
        else:
            filter_text = join_filters(self._legacy_filter_for_cluster(), self._legacy_filter_for_any_pod())
        return MetricDescriptorListRequest(name=f"projects/{self.config.project}", filter=filter_text)

    def get_metric_kind(self, metric_name: str, metric_selector: Selector) -> tuple[str, str]:
        """Return the metric kind and value type of a metric, fetched from the API."""
        if not metric_selector.selectable:
            raise new_bad_request(f"Label selector is impossible to match: {metric_selector}")
        metric_project = self.config.project
        for req in metric_selector:
            if req.key == _PROJECT_LABEL:
                if req.operator in _EXACT:
                    metric_project = req.values[0]
                    break
                raise new_label_not_allowed_error(
                    f"Project selector must use '=' or '==': You used {req.operator}"
                )
        if self.service is None:
            raise new_internal_error("no monitoring service is configured")
        try:
            descriptor = self.service.get_metric_descriptor(
                f"projects/{metric_project}/metricDescriptors/{metric_name}"
            )
        except Exception as exc:
            raise new_no_such_metric_error(metric_name, exc) from exc
        return descriptor.metric_kind, descriptor.value_type

    def get_external_metric_project(self, metric_selector: Selector) -> str:
        """Return the project named by a project_id selector, or the cluster's project."""
        for req in metric_selector:
            if req.key == _PROJECT_LABEL:
                if req.operator in _EXACT:
                    return req.values[0]
                raise new_label_not_allowed_error(
                    f"Project selector must use '=' or '==': You used {req.operator}"
                )
        return self.config.project

    def filter_for_selector(
        self,
        metric_selector: Selector,
        allowed_label_prefixes: Sequence[str],
        allowed_full_label_names: Sequence[str],
    ) -> tuple[str, str]:
        """Translate a label selector into a filter and a cross-series reducer."""
        if not metric_selector.selectable:
            raise new_bad_request(f"Label selector is impossible to match: {metric_selector}")
        filters: list[str] = []
        reducer = ""
        for req in metric_selector:
            key, op, values = req.key, req.operator, req.values
            if key == _REDUCER_LABEL:
                reducer = self._reducer_from(op, values)
                continue
            if op is Operator.EXISTS:
                try:
                    prefix, suffix = _split_metric_label(key, allowed_label_prefixes)
                except StatusError:
                    raise new_label_not_allowed_error(key) from None
                filters.append(f"{prefix} : {suffix}")
                continue
            if op is Operator.DOES_NOT_EXIST:
                raise new_bad_request("Label selector with operator DoesNotExist is not allowed")
            if op not in (
                Operator.EQUALS,
                Operator.DOUBLE_EQUALS,
                Operator.NOT_EQUALS,
                Operator.IN,
                Operator.NOT_IN,
                Operator.GREATER_THAN,
                Operator.LESS_THAN,
            ):
                raise new_operation_not_supported_error(f"Selector with operator {_quote(str(op))}")
            if not _is_allowed_label_name(key, allowed_label_prefixes, allowed_full_label_names):
                raise new_label_not_allowed_error(key)
            filters.append(self._requirement_filter(key, op, values))
        return " AND ".join(filters), reducer

    @staticmethod
    def _reducer_from(op: Operator, values: Sequence[str]) -> str:
        if op not in _EXACT:
            raise new_label_not_allowed_error(f"Reducer must use '=' or '==': You used {op}")
        if len(values) != 1:
            raise new_label_not_allowed_error("Reducer must select a single value")
        reducer = values[0]
        if reducer not in ALLOWED_REDUCERS:
            raise new_label_not_allowed_error("Specified reducer is not supported: " + reducer)
        return reducer

    @staticmethod
    def _requirement_filter(key: str, op: Operator, values: Sequence[str]) -> str:
        if op in _EXACT:
            return f"{key} = {_quote(values[0])}"
        if op is Operator.NOT_EQUALS:
            return f"{key} != {_quote(values[0])}"
        if op is Operator.IN:
            if len(values) == 1:
                return f"{key} = {values[0]}"
            return f"{key} = one_of({','.join(_quote_all(values))})"
        if op is Operator.NOT_IN:
            if len(values) == 1:
                return f"{key} != {values[0]}"
            return f"NOT {key} = one_of({','.join(_quote_all(values))})"
        try:
            number = int(values[0])
        except ValueError:
            raise new_internal_error(
                f"Unexpected error: value {values[0]} could not be parsed to integer"
            ) from None
        symbol = ">" if op is Operator.GREATER_THAN else "<"
        return f"{key} {symbol} {number}"

    def create_list_timeseries_request(
        self,
        filter: str,
        metric_kind: str,
        metric_value_type: str,
        reducer: str = "",
        project: Optional[str] = None,
    ) -> TimeSeriesListRequest:
        """Build a time-series list request ending now and spanning the request window."""
        project = self.config.project if project is None else project
        end_time = self.clock()
        start_time = end_time - self.req_window
        aligner = "ALIGN_NEXT_OLDER"
        alignment_period = self.req_window
        if metric_kind in ("DELTA", "CUMULATIVE"):
            aligner = "ALIGN_RATE"
            alignment_period = self.alignment_period
        if metric_value_type == "DISTRIBUTION":
            aligner = "ALIGN_DELTA"
        return TimeSeriesListRequest(
            name=f"projects/{project}",
            filter=filter,
            interval_start_time=_format_rfc3339(start_time),
            interval_end_time=_format_rfc3339(end_time),
            per_series_aligner=aligner,
            alignment_period=f"{int(alignment_period.total_seconds())}s",
            cross_series_reducer=reducer,
        )

    def get_pod_items(self, pods: Iterable[object]) -> list[ObjectMeta]:
        """Return the metadata of each pod."""
        return [getattr(pod, "metadata", pod) for pod in pods]

    def get_node_items(self, nodes: Iterable[object]) -> list[ObjectMeta]:
        """Return the metadata of each node."""
        return [getattr(node, "metadata", node) for node in nodes]

    def _filter_for_cluster(self) -> str:
        return " AND ".join(
            (
                f"resource.labels.project_id = {_quote(self.config.project)}",
                f"resource.labels.cluster_name = {_quote(self.config.cluster)}",
                f"resource.labels.location = {_quote(self.config.location)}",
            )
        )

    @staticmethod
    def _filter_for_metric(metric_name: str) -> str:
        return f"metric.type = {_quote(metric_name)}"

    @staticmethod
    def _filter_for_any_resource(fallback_for_container_metrics: bool) -> str:
        if fallback_for_container_metrics:
            return 'resource.type = one_of("k8s_pod","k8s_node","k8s_container")'
        return 'resource.type = one_of("k8s_pod","k8s_node")'

    def _legacy_filter_for_cluster(self) -> str:
        # Location is skipped: the legacy model may carry a wrong one.
        return " AND ".join(
            (
                f"resource.labels.project_id = {_quote(self.config.project)}",
                f"resource.labels.cluster_name = {_quote(self.config.cluster)}",
                'resource.labels.container_name = ""',
            )
        )

    @staticmethod
    def _legacy_filter_for_any_pod() -> str:
        return 'resource.labels.pod_id != "" AND resource.labels.pod_id != "machine"'