"""
Domain Layer for Sensor Management
===================================
Contains business entities and value objects.
"""

from sensorhub.domain.sensors.alert import SensorAlert, ThresholdViolation
from sensorhub.domain.sensors.calibration import (
    CalibrationRecord,
    CalibrationValidation,
    LinearFit,
    ReferenceMeasurement,
)
from sensorhub.domain.sensors.group import GroupReading, SensorGroup
from sensorhub.domain.sensors.reading import SensorReading
from sensorhub.domain.sensors.sensor_device import (
    DEFAULT_PARAMETERS,
    CalibrationState,
    SensorDevice,
    required_connection_keys,
)

__all__ = [
    "DEFAULT_PARAMETERS",
    "CalibrationRecord",
    "CalibrationState",
    "CalibrationValidation",
    "GroupReading",
    "LinearFit",
    "ReferenceMeasurement",
    "SensorAlert",
    "SensorDevice",
    "SensorGroup",
    "SensorReading",
    "ThresholdViolation",
    "required_connection_keys",
]
