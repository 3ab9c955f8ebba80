"""
Enums Module
============

Enumeration types shared by the sensor core.
"""

from sensorhub.enums.device import (
    AggregationMethod,
    AlertSeverity,
    AlertStatus,
    AlertType,
    CalibrationStatus,
    ComparisonRecommendation,
    Protocol,
    ReadingQuality,
    SensorKind,
    SensorStatus,
    ThresholdCondition,
    TrendDirection,
)
from sensorhub.enums.events import EventType, SensorEvent

__all__ = [
    "AggregationMethod",
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "CalibrationStatus",
    "ComparisonRecommendation",
    "EventType",
    "Protocol",
    "ReadingQuality",
    "SensorEvent",
    "SensorKind",
    "SensorStatus",
    "ThresholdCondition",
    "TrendDirection",
]
