"""
Schemas Module
==============

Pydantic request models for the HTTP API.
"""

from sensorhub.schemas.sensors import (
    AcknowledgeAlertRequest,
    AlertQuery,
    CalibrationPoint,
    CalibrationRequest,
    GroupRequest,
    RegisterSensorRequest,
    SensorThresholdsRequest,
    ThresholdBounds,
    UpdateGroupRequest,
)

__all__ = [
    "AcknowledgeAlertRequest",
    "AlertQuery",
    "CalibrationPoint",
    "CalibrationRequest",
    "GroupRequest",
    "RegisterSensorRequest",
    "SensorThresholdsRequest",
    "ThresholdBounds",
    "UpdateGroupRequest",
]
