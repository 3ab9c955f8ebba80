"""
Sensor Groups
=============
Named, optionally weighted collections of devices aggregated per zone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sensorhub.enums import AggregationMethod


@dataclass
class SensorGroup:
    id: str
    member_sensor_ids: list[str]
    aggregation_method: AggregationMethod = AggregationMethod.AVERAGE
    weights: dict[str, float] = field(default_factory=dict)
    name: str | None = None
    description: str | None = None
    freshness_seconds: float | None = None
    # parameter -> {"min": x, "max": y}
    thresholds: dict[str, dict[str, float]] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.aggregation_method = AggregationMethod(self.aggregation_method)

    def weight_for(self, sensor_id: str) -> float:
        return float(self.weights.get(sensor_id, 1.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "member_sensor_ids": list(self.member_sensor_ids),
            "aggregation_method": self.aggregation_method.value,
            "weights": dict(self.weights),
            "freshness_seconds": self.freshness_seconds,
            "thresholds": {k: dict(v) for k, v in self.thresholds.items()},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class GroupReading:
    """Result of reducing the latest member readings of a group."""

    group_id: str
    timestamp: datetime
    method: AggregationMethod
    values: dict[str, float]
    contributing_sensor_ids: tuple[str, ...]
    excluded_sensor_ids: tuple[str, ...]
    violations: tuple[Any, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method.value,
            "values": dict(self.values),
            "contributing_sensor_ids": list(self.contributing_sensor_ids),
            "excluded_sensor_ids": list(self.excluded_sensor_ids),
            "violations": [v.to_dict() for v in self.violations],
        }
