import pytest

from sdadapter.resources import (
    GroupResource,
    Metric,
    MetricDescriptor,
    MonitoredResource,
    ObjectMeta,
    Point,
    Quantity,
    RestMapper,
    TimeInterval,
    TimeSeries,
    TypedValue,
)


def test_milli_equals_whole_units():
    assert Quantity.from_milli(151000) == Quantity.from_int(151)


def test_addition_aggregates_values():
    total = Quantity.from_int(0) + Quantity.from_milli(101000) + Quantity.from_milli(50000)
    assert total == Quantity.from_milli(151000)


def test_scaled_micro_equals_milli():
    assert Quantity.scaled(100000, -6) == Quantity.from_milli(100)
    assert Quantity.scaled(1, -6) == Quantity.scaled(1000, -9)


def test_addition_is_commutative():
    a = Quantity.from_milli(1500)
    b = Quantity.scaled(7, 3)
    assert a + b == b + a


def test_str_of_whole_number():
    assert str(Quantity.from_int(151)) == "151"
    assert str(Quantity.from_milli(151000)) == "151"


def test_str_of_milli_value():
    assert str(Quantity.from_milli(100)) == "100m"


def test_str_round_trip_through_float():
    quantity = Quantity.from_milli(2500)
    assert float(quantity) == 2.5


def test_ordering():
    assert Quantity.from_milli(999) < Quantity.from_int(1)


def test_group_resource_str_without_group():
    assert str(GroupResource("", "pods")) == "pods"


def test_group_resource_str_with_group():
    assert str(GroupResource("apps", "deployments")) == "deployments.apps"


def test_rest_mapper_resolves_singular_any_case():
    mapper = RestMapper()
    mapper.add(GroupResource("", "pods"), "Pod")
    mapper.add(GroupResource("", "nodes"), "Node")
    assert mapper.kind_for(GroupResource(resource="Pod")) == "Pod"
    assert mapper.kind_for(GroupResource(resource="nodes")) == "Node"


def test_rest_mapper_unknown_resource():
    mapper = RestMapper()
    mapper.add(GroupResource("", "pods"), "Pod")
    with pytest.raises(LookupError):
        mapper.kind_for(GroupResource(resource="services"))


def test_rest_mapper_group_mismatch():
    mapper = RestMapper()
    mapper.add(GroupResource("", "pods"), "Pod")
    with pytest.raises(LookupError):
        mapper.kind_for(GroupResource(group="apps", resource="pods"))


def test_time_series_defaults_are_independent():
    first = TimeSeries()
    second = TimeSeries()
    first.points.append(Point(TimeInterval("a", "b"), TypedValue(int64_value=1)))
    first.resource.labels["pod_id"] = "my-pod-id"
    assert second.points == []
    assert second.resource.labels == {}
    assert second.metric is None


def test_time_series_holds_given_values():
    series = TimeSeries(
        resource=MonitoredResource("k8s_node", {"node_name": "my-node-name"}),
        metric=Metric("my|custom|metric", {"irrelevant_label": "value1"}),
        metric_kind="GAUGE",
        value_type="DOUBLE",
        points=[Point(TimeInterval("2017-01-02T13:00:00Z", "2017-01-02T13:02:00Z"), TypedValue(double_value=101.0))],
    )
    assert series.resource.labels["node_name"] == "my-node-name"
    assert series.points[0].interval.end_time == "2017-01-02T13:02:00Z"
    assert series.points[0].value.double_value == 101.0


def test_typed_value_str_names_set_field():
    assert "int64_value=151" in str(TypedValue(int64_value=151))
    assert "double_value" not in str(TypedValue(int64_value=151))


def test_object_meta_equality_and_hash():
    a = ObjectMeta(name="my-pod-name", namespace="my-namespace", uid="my-pod-id")
    b = ObjectMeta(name="my-pod-name", namespace="my-namespace", uid="my-pod-id")
    assert a == b
    assert len({a, b}) == 1


def test_metric_descriptor_fields():
    descriptor = MetricDescriptor("custom.googleapis.com/qps-int", "GAUGE", "INT64")
    assert descriptor.value_type == "INT64"
    assert descriptor.type == "custom.googleapis.com/qps-int"