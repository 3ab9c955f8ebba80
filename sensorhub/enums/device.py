"""
Device-related Enumerations
============================

This module contains all enums related to sensor devices, their transports
and the alerts they raise.
"""

from enum import Enum


class SensorKind(str, Enum):
    """
    Sensor categories.

    The kind decides which parameter a device measures by default and which
    recommended actions its alerts carry.
    """

    ROOT_ZONE = "root_zone"
    CANOPY_TEMPERATURE = "canopy_temperature"
    CO2 = "co2"
    LIGHT_PAR = "light_par"
    DERIVED_ONLY = "derived_only"

    @classmethod
    def _missing_(cls, value: object) -> "SensorKind | None":
        """Map hyphenated and legacy kind names."""
        if not isinstance(value, str):
            return None
        legacy_map = {
            "root-zone": cls.ROOT_ZONE,
            "canopy_temp": cls.CANOPY_TEMPERATURE,
            "canopy-temperature": cls.CANOPY_TEMPERATURE,
            "light-par": cls.LIGHT_PAR,
            "par": cls.LIGHT_PAR,
            "derived-only": cls.DERIVED_ONLY,
            "vpd": cls.DERIVED_ONLY,
        }
        return legacy_map.get(value.strip().lower())


class Protocol(str, Enum):
    """Communication protocols"""

    MODBUS = "modbus"
    MQTT = "mqtt"
    SERIAL = "serial"
    HTTP = "http"

    @classmethod
    def _missing_(cls, value: object) -> "Protocol | None":
        """Backwards-compatible mapping for legacy protocol values."""
        if not isinstance(value, str):
            return None
        legacy_map = {
            "MODBUS": cls.MODBUS,
            "Modbus": cls.MODBUS,
            "MQTT": cls.MQTT,
            "uart": cls.SERIAL,
            "UART": cls.SERIAL,
            "SERIAL": cls.SERIAL,
            "HTTP": cls.HTTP,
        }
        return legacy_map.get(value)

    @property
    def is_pull(self) -> bool:
        """Pull protocols are driven by the polling scheduler."""
        return self is not Protocol.MQTT


class SensorStatus(str, Enum):
    """Connection status of a registered device."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CALIBRATING = "calibrating"
    ERROR = "error"


class CalibrationStatus(str, Enum):
    """Calibration state of a device."""

    CALIBRATED = "calibrated"
    NEEDS_CALIBRATION = "needs_calibration"
    CALIBRATING = "calibrating"


class ReadingQuality(str, Enum):
    """Quality grade assigned to a reading at creation time."""

    GOOD = "good"
    QUESTIONABLE = "questionable"
    BAD = "bad"

    @property
    def rank(self) -> int:
        return _QUALITY_RANK[self]


_QUALITY_RANK = {
    ReadingQuality.GOOD: 0,
    ReadingQuality.QUESTIONABLE: 1,
    ReadingQuality.BAD: 2,
}


class AlertType(str, Enum):
    OUT_OF_RANGE = "out_of_range"
    SENSOR_ERROR = "sensor_error"
    CALIBRATION_NEEDED = "calibration_needed"
    MAINTENANCE_DUE = "maintenance_due"
    ANOMALY = "anomaly"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class ThresholdCondition(str, Enum):
    """Which bound of a range was crossed."""

    ABOVE = "above"
    BELOW = "below"


class AggregationMethod(str, Enum):
    AVERAGE = "average"
    MEDIAN = "median"
    MIN = "min"
    MAX = "max"
    WEIGHTED = "weighted"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class ComparisonRecommendation(str, Enum):
    PASS = "pass"
    INVESTIGATE = "investigate"
    RECALIBRATE = "recalibrate"
