"""
Threshold Service
=================
Resolves the acceptable range of every measured parameter and reports the
bounds a reading crosses.

Lookup order for a parameter on a sensor:
1. per-sensor override
2. facility-wide override
3. built-in default
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from sensorhub.domain.exceptions import ConfigurationError
from sensorhub.domain.sensors import ThresholdViolation
from sensorhub.enums import ThresholdCondition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdRange:
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    def __post_init__(self) -> None:
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ConfigurationError(f"Threshold min {self.min_value} is greater than max {self.max_value}")

    @classmethod
    def from_dict(cls, data: Mapping[str, float]) -> "ThresholdRange":
        unknown = set(data) - {"min", "max"}
        if unknown:
            raise ConfigurationError(f"Unknown threshold keys: {sorted(unknown)}")
        return cls(
            min_value=float(data["min"]) if data.get("min") is not None else None,
            max_value=float(data["max"]) if data.get("max") is not None else None,
        )

    def check(self, parameter: str, value: float) -> Optional[ThresholdViolation]:
        if self.max_value is not None and value > self.max_value:
            return ThresholdViolation(parameter, ThresholdCondition.ABOVE, self.max_value, value)
        if self.min_value is not None and value < self.min_value:
            return ThresholdViolation(parameter, ThresholdCondition.BELOW, self.min_value, value)
        return None

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {"min": self.min_value, "max": self.max_value}


# EC mS/cm, pH, moisture %, CO2 ppm, canopy temperature degC, PPFD umol/m2/s
DEFAULT_THRESHOLDS: Dict[str, ThresholdRange] = {
    "ec": ThresholdRange(1.0, 3.0),
    "ph": ThresholdRange(5.5, 6.5),
    "moisture": ThresholdRange(40.0, 80.0),
    "co2": ThresholdRange(400.0, 1500.0),
    "canopy_temp": ThresholdRange(18.0, 28.0),
    "ppfd": ThresholdRange(200.0, 1000.0),
}


def evaluate_ranges(values: Mapping[str, float], ranges: Mapping[str, ThresholdRange]) -> List[ThresholdViolation]:
    """Check each value that has a range; parameters without one are ignored."""
    violations: List[ThresholdViolation] = []
    for parameter, value in values.items():
        bounds = ranges.get(parameter)
        if bounds is None:
            continue
        violation = bounds.check(parameter, value)
        if violation is not None:
            violations.append(violation)
    return violations


class ThresholdService:
    """Default, facility and per-sensor threshold ranges."""

    def __init__(self, defaults: Mapping[str, ThresholdRange] | None = None):
        self._lock = threading.Lock()
        self._defaults: Dict[str, ThresholdRange] = dict(DEFAULT_THRESHOLDS if defaults is None else defaults)
        self._facility: Dict[str, ThresholdRange] = {}
        self._per_sensor: Dict[str, Dict[str, ThresholdRange]] = {}

    def set_facility_threshold(self, parameter: str, bounds: ThresholdRange) -> None:
        with self._lock:
            self._facility[parameter] = bounds
        logger.info("Facility threshold for %s set to %s", parameter, bounds.to_dict())

    def set_sensor_threshold(self, sensor_id: str, parameter: str, bounds: ThresholdRange) -> None:
        with self._lock:
            self._per_sensor.setdefault(sensor_id, {})[parameter] = bounds
        logger.info("Threshold for %s on sensor %s set to %s", parameter, sensor_id, bounds.to_dict())

    def clear_sensor_thresholds(self, sensor_id: str) -> None:
        with self._lock:
            self._per_sensor.pop(sensor_id, None)

    def effective_ranges(self, sensor_id: str | None = None) -> Dict[str, ThresholdRange]:
        with self._lock:
            ranges = dict(self._defaults)
            ranges.update(self._facility)
            if sensor_id is not None:
                ranges.update(self._per_sensor.get(sensor_id, {}))
        return ranges

    def evaluate(self, sensor_id: str, values: Mapping[str, float]) -> List[ThresholdViolation]:
        return evaluate_ranges(values, self.effective_ranges(sensor_id))
