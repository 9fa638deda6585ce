"""Value types shared by the translator: quantities, object metadata and monitoring data."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Optional

_SUFFIXES = {-9: "n", -6: "u", -3: "m", 0: "", 3: "k", 6: "M", 9: "G", 12: "T", 15: "P", 18: "E"}


@dataclass(frozen=True, order=True)
class Quantity:
    """An exact decimal amount, printed in decimal SI notation."""

    value: Fraction = Fraction(0)

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", Fraction(self.value))

    @classmethod
    def from_int(cls, value: int) -> Quantity:
        """Return a quantity of the given whole units."""
        return cls(Fraction(int(value)))

    @classmethod
    def from_milli(cls, value: int) -> Quantity:
        """Return a quantity of the given thousandths of a unit."""
        return cls(Fraction(int(value), 1000))

    @classmethod
    def scaled(cls, value: int, scale: int) -> Quantity:
        """Return value times ten to the power scale."""
        return cls(Fraction(int(value)) * Fraction(10) ** int(scale))

    def __add__(self, other: Quantity) -> Quantity:
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self.value + other.value)

    def __float__(self) -> float:
        return float(self.value)

    def __str__(self) -> str:
        mantissa = math.ceil(self.value * 10**9)
        if mantissa == 0:
            return "0"
        exponent = -9
        while exponent < 18 and mantissa % 1000 == 0:
            mantissa //= 1000
            exponent += 3
        return f"{mantissa}{_SUFFIXES[exponent]}"


@dataclass(frozen=True)
class GroupResource:
    """An API group together with a resource name."""

    group: str = ""
    resource: str = ""

    def __str__(self) -> str:
        if not self.group:
            return self.resource
        return f"{self.resource}.{self.group}"


@dataclass(frozen=True)
class ObjectMeta:
    """Identifying metadata of a cluster object."""

    name: str = ""
    namespace: str = ""
    uid: str = ""


@dataclass
class TimeInterval:
    """Start and end of a point, as RFC 3339 strings."""

    start_time: str = ""
    end_time: str = ""


@dataclass
class TypedValue:
    """A point value; at most one field is set."""

    int64_value: Optional[int] = None
    double_value: Optional[float] = None
    bool_value: Optional[bool] = None
    string_value: Optional[str] = None

    def __str__(self) -> str:
        parts = [
            f"{name}={value!r}"
            for name, value in (
                ("int64_value", self.int64_value),
                ("double_value", self.double_value),
                ("bool_value", self.bool_value),
                ("string_value", self.string_value),
            )
            if value is not None
        ]
        return "{" + " ".join(parts) + "}"


@dataclass
class Point:
    """One sample of a time series."""

    interval: TimeInterval = field(default_factory=TimeInterval)
    value: TypedValue = field(default_factory=TypedValue)


@dataclass
class MonitoredResource:
    """The monitored resource a time series describes."""

    type: str = ""
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """The metric type and labels of a time series."""

    type: str = ""
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class TimeSeries:
    """A time series; points are in reverse time order."""

    resource: MonitoredResource = field(default_factory=MonitoredResource)
    metric: Optional[Metric] = None
    metric_kind: str = ""
    value_type: str = ""
    points: list[Point] = field(default_factory=list)


@dataclass
class MetricDescriptor:
    """Description of a metric type."""

    type: str = ""
    metric_kind: str = ""
    value_type: str = ""


class RestMapper:
    """Maps resource names, plural or singular and in any case, to kinds."""

    def __init__(self) -> None:
        self._kinds: dict[tuple[str, str], str] = {}

    def add(self, resource: GroupResource, kind: str) -> None:
        """Register a plural resource and its kind; the singular is the kind in lower case."""
        group = resource.group.lower()
        self._kinds[(group, resource.resource.lower())] = kind
        self._kinds[(group, kind.lower())] = kind

    def kind_for(self, group_resource: GroupResource) -> str:
        """Return the kind of a resource; an empty group matches any group."""
        resource = group_resource.resource.lower()
        group = group_resource.group.lower()
        matches = {
            kind
            for (known_group, known_resource), kind in self._kinds.items()
            if known_resource == resource and (not group or known_group == group)
        }
        if len(matches) == 1:
            return matches.pop()
        if not matches:
            raise LookupError(f"no matches for {group_resource}")
        raise LookupError(f"{group_resource} matches multiple kinds {sorted(matches)}")