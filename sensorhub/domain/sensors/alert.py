"""
Sensor Alerts
=============
Detected abnormal conditions and the threshold payloads that explain them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sensorhub.enums import AlertSeverity, AlertStatus, AlertType, ThresholdCondition


@dataclass(frozen=True)
class ThresholdViolation:
    """
    A crossed bound. Not a failure: it describes the physical condition the
    sensor observed and is turned into an ``out_of_range`` alert.
    """

    parameter: str
    condition: ThresholdCondition
    boundary: float
    actual_value: float

    @property
    def deviation(self) -> float:
        """How far past the boundary the value is (always >= 0)."""
        return abs(self.actual_value - self.boundary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter,
            "condition": self.condition.value,
            "boundary": self.boundary,
            "actual_value": self.actual_value,
            "deviation": self.deviation,
        }


@dataclass
class SensorAlert:
    id: str
    sensor_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    recommended_actions: list[str]
    created_at: datetime
    updated_at: datetime
    status: AlertStatus = AlertStatus.ACTIVE
    threshold: ThresholdViolation | None = None
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        """Acknowledged alerts are still open until resolved."""
        return self.status != AlertStatus.RESOLVED

    @property
    def dedup_key(self) -> str:
        parameter = self.threshold.parameter if self.threshold else ""
        condition = self.threshold.condition.value if self.threshold else ""
        return f"{self.sensor_id}:{self.type.value}:{parameter}:{condition}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sensor_id": self.sensor_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "description": self.description,
            "threshold": self.threshold.to_dict() if self.threshold else None,
            "recommended_actions": list(self.recommended_actions),
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "metadata": dict(self.metadata),
        }
