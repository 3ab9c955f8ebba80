"""
Sensor Schemas
==============

Pydantic models for sensor, calibration, group and alert request validation.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sensorhub.domain.sensors import SensorDevice
from sensorhub.enums import AggregationMethod, AlertStatus, AlertType, Protocol, SensorKind


# ============================================================================
# Sensor Schemas
# ============================================================================

class RegisterSensorRequest(BaseModel):
    """Request model for registering a sensor"""
    id: str = Field(..., min_length=1, max_length=100, description="Unique sensor id")
    kind: SensorKind = Field(..., description="Sensor kind")
    protocol: Protocol = Field(..., description="Transport protocol")
    connection_params: Dict[str, Any] = Field(default_factory=dict, description="Protocol-specific settings")
    polling_interval_seconds: float = Field(default=60.0, gt=0, description="Poll period for pull protocols")
    parameter: Optional[str] = Field(default=None, max_length=50, description="Measured parameter name")
    name: Optional[str] = Field(default=None, max_length=100)
    model: Optional[str] = Field(default=None, max_length=100)
    manufacturer: Optional[str] = Field(default=None, max_length=100)
    zone: Optional[str] = Field(default=None, max_length=100)
    emissivity: Optional[float] = Field(default=None, gt=0, le=1, description="IR emissivity (canopy sensors)")
    warmup_seconds: float = Field(default=0.0, ge=0, description="Delay before the first connect")
    connect: bool = Field(default=False, description="Connect right after registration")

    @field_validator("kind", "protocol", mode="before")
    def _lowercase(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    def to_device(self) -> SensorDevice:
        return SensorDevice(
            id=self.id,
            kind=self.kind,
            protocol=self.protocol,
            connection_params=dict(self.connection_params),
            polling_interval_seconds=self.polling_interval_seconds,
            parameter=self.parameter,
            name=self.name,
            model=self.model,
            manufacturer=self.manufacturer,
            zone=self.zone,
            emissivity=self.emissivity,
            warmup_seconds=self.warmup_seconds,
        )


class ThresholdBounds(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def _ordered(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


class SensorThresholdsRequest(BaseModel):
    """Per-sensor threshold overrides, keyed by parameter"""
    thresholds: Dict[str, ThresholdBounds] = Field(..., min_length=1)


# ============================================================================
# Calibration Schemas
# ============================================================================

class CalibrationPoint(BaseModel):
    reference: float
    measured: float
    timestamp: Optional[datetime] = None


class CalibrationRequest(BaseModel):
    """Reference/measured pairs for a linear calibration"""
    points: List[CalibrationPoint] = Field(..., min_length=2, description="At least two pairs")
    performed_by: str = Field(default="operator", max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "points": [
                    {"reference": 1.413, "measured": 1.52},
                    {"reference": 2.76, "measured": 2.91},
                ],
                "performed_by": "technician",
            }
        }
    )

    def measurement_dicts(self) -> List[Dict[str, Any]]:
        return [p.model_dump() for p in self.points]


# ============================================================================
# Group Schemas
# ============================================================================

class GroupRequest(BaseModel):
    """Create or replace a sensor group"""
    id: str = Field(..., min_length=1, max_length=100)
    member_sensor_ids: List[str] = Field(..., min_length=1)
    aggregation_method: AggregationMethod = AggregationMethod.AVERAGE
    weights: Dict[str, float] = Field(default_factory=dict)
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    freshness_seconds: Optional[float] = Field(default=None, gt=0)
    thresholds: Dict[str, ThresholdBounds] = Field(default_factory=dict)

    def service_kwargs(self) -> Dict[str, Any]:
        return {
            "aggregation_method": self.aggregation_method,
            "weights": self.weights,
            "name": self.name,
            "description": self.description,
            "freshness_seconds": self.freshness_seconds,
            "thresholds": {p: b.model_dump() for p, b in self.thresholds.items()},
        }


class UpdateGroupRequest(BaseModel):
    """Partial group update; omitted fields keep their value"""
    member_sensor_ids: Optional[List[str]] = Field(default=None, min_length=1)
    aggregation_method: Optional[AggregationMethod] = None
    weights: Optional[Dict[str, float]] = None
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    freshness_seconds: Optional[float] = Field(default=None, gt=0)
    thresholds: Optional[Dict[str, ThresholdBounds]] = None

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        if self.thresholds is not None:
            data["thresholds"] = {p: b.model_dump() for p, b in self.thresholds.items()}
        return data


# ============================================================================
# Alert Schemas
# ============================================================================

class AcknowledgeAlertRequest(BaseModel):
    acknowledged_by: Optional[str] = Field(default=None, max_length=100)


class AlertQuery(BaseModel):
    sensor_id: Optional[str] = None
    status: Optional[AlertStatus] = None
    type: Optional[AlertType] = None
