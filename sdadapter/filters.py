"""Composition of Stackdriver time-series filter strings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}


def _quote_char(ch: str) -> str:
    if ch in _ESCAPES:
        return _ESCAPES[ch]
    if ch.isprintable():
        return ch
    code = ord(ch)
    if code < 0x80:
        return f"\\x{code:02x}"
    if code < 0x10000:
        return f"\\u{code:04x}"
    return f"\\U{code:08x}"


def _quote(text: str) -> str:
    """Return text as a double-quoted, escaped string literal."""
    return '"' + "".join(_quote_char(ch) for ch in text) + '"'


POD_SCHEMA_KEY = "pod"
CONTAINER_SCHEMA_KEY = "container"
PROMETHEUS_SCHEMA_KEY = "prometheus"
NODE_SCHEMA_KEY = "node"
LEGACY_SCHEMA_KEY = "legacy"

POD_TYPE = "k8s_pod"
CONTAINER_TYPE = "k8s_container"
NODE_TYPE = "k8s_node"
PROMETHEUS_TYPE = "prometheus_target"
LEGACY_TYPE = "<not_allowed>"

MAX_PODS_IN_FILTER = 100


@dataclass(frozen=True)
class Schema:
    """Field names used for each criterion of a filter."""

    resource_type: str = ""
    metric_type: str = ""
    project: str = ""
    cluster: str = ""
    location: str = ""
    namespace: str = ""
    pods: str = ""
    nodes: str = ""


POD_SCHEMA = Schema(
    resource_type="resource.type",
    metric_type="metric.type",
    project="resource.labels.project_id",
    cluster="resource.labels.cluster_name",
    location="resource.labels.location",
    namespace="resource.labels.namespace_name",
    pods="resource.labels.pod_name",
)
CONTAINER_SCHEMA = POD_SCHEMA
LEGACY_POD_SCHEMA = Schema(
    resource_type="",
    metric_type="metric.type",
    project="resource.labels.project_id",
    cluster="resource.labels.cluster_name",
    location="resource.labels.location",
    namespace="resource.labels.namespace_name",
    pods="resource.labels.pod_id",
)
NODE_SCHEMA = Schema(
    resource_type="resource.type",
    metric_type="metric.type",
    project="resource.labels.project_id",
    cluster="resource.labels.cluster_name",
    location="resource.labels.location",
    nodes="resource.labels.node_name",
)
PROMETHEUS_SCHEMA = Schema(
    resource_type="resource.type",
    metric_type="metric.type",
    project="resource.labels.project_id",
    cluster="resource.labels.cluster",
    location="resource.labels.location",
    namespace="resource.labels.namespace",
    nodes="metric.labels.node",
    pods="metric.labels.pod",
)

SCHEMA_TYPES = {
    POD_SCHEMA_KEY: POD_TYPE,
    CONTAINER_SCHEMA_KEY: CONTAINER_TYPE,
    PROMETHEUS_SCHEMA_KEY: PROMETHEUS_TYPE,
    NODE_SCHEMA_KEY: NODE_TYPE,
    LEGACY_SCHEMA_KEY: LEGACY_TYPE,
}

_SCHEMAS_BY_TYPE = {
    POD_TYPE: POD_SCHEMA,
    CONTAINER_TYPE: CONTAINER_SCHEMA,
    PROMETHEUS_TYPE: PROMETHEUS_SCHEMA,
    NODE_TYPE: NODE_SCHEMA,
    LEGACY_TYPE: LEGACY_POD_SCHEMA,
}


@dataclass(frozen=True)
class FilterBuilder:
    """Immutable builder that composes criteria into one filter string."""

    schema: Optional[Schema] = None
    filters: tuple[str, ...] = ()

    def _add(self, criterion: str) -> FilterBuilder:
        return replace(self, filters=self.filters + (criterion,))

    def with_metric_type(self, metric_type: str) -> FilterBuilder:
        return self._add(f"{self.schema.metric_type} = {_quote(metric_type)}")

    def with_project(self, project: str) -> FilterBuilder:
        return self._add(f"{self.schema.project} = {_quote(project)}")

    def with_cluster(self, cluster: str) -> FilterBuilder:
        return self._add(f"{self.schema.cluster} = {_quote(cluster)}")

    def with_location(self, location: str) -> FilterBuilder:
        return self._add(f"{self.schema.location} = {_quote(location)}")

    def with_container(self) -> FilterBuilder:
        """Add the empty container name criterion used by the legacy model."""
        return self._add(f"resource.labels.container_name = {_quote('')}")

    def with_namespace(self, namespace: str) -> FilterBuilder:
        """Add a namespace criterion; an empty namespace is ignored."""
        if not namespace:
            return self
        return self._add(f"{self.schema.namespace} = {_quote(namespace)}")

    def with_pods(self, pods: Sequence[str]) -> FilterBuilder:
        """Add a pod criterion from already quoted names; at most 100 are allowed."""
        pods = list(pods)
        if len(pods) > MAX_PODS_IN_FILTER:
            logger.warning(
                "FilterBuilder tries to build with more than 100 pods, thus the pod filter is ignored"
            )
            return self
        if not pods:
            logger.warning("FilterBuilder tries to build with empty pod, thus the pod filter is ignored")
            return self
        if len(pods) == 1:
            return self._add(f"{self.schema.pods} = {pods[0]}")
        return self._add(f"{self.schema.pods} = one_of({','.join(pods)})")

    def with_nodes(self, nodes: Sequence[str]) -> FilterBuilder:
        """Add a node criterion matching any of the names by regular expression."""
        regex = f"^({'|'.join(nodes)})$"
        return self._add(f"{self.schema.nodes} = monitoring.regex.full_match({_quote(regex)})")

    def build(self) -> str:
        """Join all criteria, sorted, with AND."""
        query = " AND ".join(sorted(self.filters))
        logger.info("Query with filter(s): %s", _quote(query))
        return query


def new_filter_builder(resource_type: str) -> FilterBuilder:
    """Start a builder for the schema of the given resource type."""
    schema = _SCHEMAS_BY_TYPE.get(resource_type, POD_SCHEMA)
    filters: tuple[str, ...] = ()
    if resource_type != LEGACY_TYPE and schema.resource_type:
        filters = (f"{schema.resource_type} = {_quote(resource_type)}",)
    return FilterBuilder(schema=schema, filters=filters)