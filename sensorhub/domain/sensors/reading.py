"""
Sensor Reading Value Object
============================
Immutable value object representing a calibrated sensor reading.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from sensorhub.enums import ReadingQuality


@dataclass(frozen=True)
class SensorReading:
    """
    Immutable sensor reading value object.
    Represents a single point-in-time observation from a sensor.
    """

    sensor_id: str
    timestamp: datetime
    values: Mapping[str, float]
    quality: ReadingQuality = ReadingQuality.GOOD
    raw_value: float | None = None
    quality_issues: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        # Freeze the mapping so the reading cannot be mutated through it
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary"""
        return {
            "sensor_id": self.sensor_id,
            "timestamp": self.timestamp.isoformat(),
            "values": dict(self.values),
            "quality": self.quality.value,
            "raw_value": self.raw_value,
            "quality_issues": list(self.quality_issues),
        }

    def get_value(self, key: str, default: Any = None) -> Any:
        """Get a specific value from the reading"""
        return self.values.get(key, default)
