# sdadapter

`sdadapter` turns Kubernetes metric queries into Cloud Monitoring (Stackdriver)
time series requests. It also turns the time series that come back into metric
values that a custom, external or core metrics API can serve. It has no
dependencies outside the standard library.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `sdadapter.config`
  - `GceConfig` is a frozen dataclass with `project`, `location`, `cluster` and
    `instance`.
  - `MetadataClient` reads the GCE metadata server over HTTP. The host is
    `GCE_METADATA_HOST`, or `169.254.169.254` when that is unset.
  - `get_gce_config(client)` fills a `GceConfig` from a client. It uses the
    `cluster-location` and `cluster-name` instance attributes, and falls back
    to the zone when the location is missing. It raises `RuntimeError` on
    failure.
- `sdadapter.filters`
  - `FilterBuilder` is an immutable builder with `with_metric_type`,
    `with_project`, `with_cluster`, `with_location`, `with_container`,
    `with_namespace`, `with_pods`, `with_nodes` and `build`. `build` sorts the
    criteria and joins them with ` AND `.
  - `new_filter_builder(resource_type)` picks the pod, container, node,
    Prometheus or legacy `Schema`. The keys of `SCHEMA_TYPES` name these.
  - `with_pods` ignores lists longer than 100 entries.
- `sdadapter.selectors`
  - Kubernetes-style label selectors: `Operator`, `Requirement` and
    `Selector`.
  - `parse_selector("a=b,c in (x,y),!d")`, `selector_from_set({...})` and
    `everything()` create selectors.
  - Malformed input raises `SelectorError`, a subclass of `ValueError`.
- `sdadapter.resources`
  - `Quantity` is an exact decimal amount, created with `from_int`,
    `from_milli` or `scaled`. It can be added, and prints in SI notation.
  - The monitoring data types are `TimeSeries`, `Point`, `TypedValue`,
    `TimeInterval`, `MonitoredResource`, `Metric` and `MetricDescriptor`.
  - Object metadata is held in `ObjectMeta`, and a resource name with its API
    group in `GroupResource`.
  - `RestMapper` maps resource names to kinds.
- `sdadapter.translator`
  - `Translator` builds `TimeSeriesListRequest` and
    `MetricDescriptorListRequest` values with
    `get_external_metric_request`, `list_metric_descriptors` and
    `create_list_timeseries_request`.
  - It checks selectors against the allowed labels and reducers with
    `filter_for_selector`.
  - `get_metric_kind` fetches a descriptor through a caller-supplied service
    object that has a `get_metric_descriptor(name)` method.
  - `join_filters(*args)` joins the non-empty filters with ` AND `.
- `sdadapter.query_builder`
  - `QueryBuilder` is an immutable builder for a request covering pods, pod
    names or nodes, with an optional namespace, metric kind, value type,
    selector and container type.
  - `build()` validates the combination and returns a
    `TimeSeriesListRequest`.
- `sdadapter.response_translator`
  - `get_resp_for_single_object` and `get_resp_for_multiple_objects` produce
    `MetricValue` results.
  - `get_resp_for_external_metric` produces `ExternalMetricValue` results.
  - `get_metrics_from_descriptors` produces `CustomMetricInfo` results for
    INT64 and DOUBLE descriptors, with `/` escaped as `|`.
  - `check_metric_uniqueness_for_pod` checks that at most one container in
    each pod provides the metric.
  - `get_core_container_metric` and `get_core_node_metric` return per-pod and
    per-node `Quantity` maps together with `TimeInfo`. They are built on
    `PodResult` and `NodeResult`.
- `sdadapter.errors`
  - `StatusError` carries `code`, `reason`, `message` and `status`, following
    Kubernetes API conventions.
  - Helpers create the errors: `new_bad_request`, `new_internal_error`,
    `new_label_not_allowed_error`, `new_operation_not_supported_error` and the
    `new_*not_found*` family.

## Example

```python
from datetime import timedelta

from sdadapter.config import GceConfig
from sdadapter.query_builder import QueryBuilder
from sdadapter.resources import ObjectMeta
from sdadapter.selectors import parse_selector
from sdadapter.translator import Translator

config = GceConfig(project="my-project", location="my-zone", cluster="my-cluster")
translator = Translator(
    config,
    req_window=timedelta(minutes=2),
    alignment_period=timedelta(minutes=1),
    use_new_resource_model=True,
)

request = (
    QueryBuilder(translator, "custom.googleapis.com/foo")
    .with_pods([ObjectMeta(name="my-pod-name", uid="my-pod-id")])
    .with_namespace("default")
    .with_metric_kind("GAUGE")
    .with_metric_value_type("INT64")
    .with_metric_selector(parse_selector("metric.labels.custom=test"))
    .build()
)
print(request.name, request.filter, request.per_series_aligner)
```

`with_pod_names` takes names that are already quoted, for example
`'"pod-1"'`.

Problems with a query raise `sdadapter.errors.StatusError`.

## What it does not do

- It does not send time series or descriptor list requests. The request
  objects it returns only describe them, and a client of your choice must
  execute them and pass the resulting `TimeSeries` lists back in.
- `Translator.get_metric_kind` calls only the service object you give it.
- There is no metrics API server and no command-line program.