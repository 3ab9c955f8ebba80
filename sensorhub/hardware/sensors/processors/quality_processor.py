"""
Quality Processor
=================
Scores a calibrated reading as good, questionable or bad.

- bad: a value lies outside the parameter's absolute physical range
- questionable: every value is in range, but one changed faster than the
  parameter's maximum rate since the previous reading of the same sensor
- good: otherwise

Only parameters with a declared physical range are checked; others pass
through untouched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from sensorhub.domain.sensors import SensorReading
from sensorhub.enums import ReadingQuality

logger = logging.getLogger(__name__)

# Readings closer together than this are compared as if one minute apart,
# so a fast poll interval does not turn sensor noise into a steep rate.
MIN_RATE_WINDOW_MINUTES = 1.0


@dataclass(frozen=True)
class PhysicalLimit:
    """
    Absolute range a sensor can physically report, and the fastest plausible
    change per minute (None disables the rate check).
    """

    min_value: float
    max_value: float
    max_change_per_minute: float | None = None

    def contains(self, value: float) -> bool:
        return self.min_value <= value <= self.max_value


DEFAULT_PHYSICAL_LIMITS: dict[str, PhysicalLimit] = {
    "temperature": PhysicalLimit(-40.0, 85.0, 5.0),
    "humidity": PhysicalLimit(0.0, 100.0, 10.0),
    "canopy_temp": PhysicalLimit(-40.0, 85.0, 5.0),
    "leaf_temp": PhysicalLimit(-40.0, 85.0, 5.0),
    "ec": PhysicalLimit(0.0, 20.0, 0.5),
    "ph": PhysicalLimit(0.0, 14.0, 0.5),
    "moisture": PhysicalLimit(0.0, 100.0, 10.0),
    "co2": PhysicalLimit(0.0, 10000.0, 500.0),
    "ppfd": PhysicalLimit(0.0, 3000.0, 500.0),
    "vpd": PhysicalLimit(0.0, 10.0),
    "leaf_vpd": PhysicalLimit(-5.0, 10.0),
}


@dataclass(frozen=True)
class QualityAssessment:
    quality: ReadingQuality
    issues: tuple[str, ...] = ()


class QualityProcessor:
    """Range and rate-of-change scoring for readings."""

    def __init__(self, limits: Mapping[str, PhysicalLimit] | None = None):
        self.limits: dict[str, PhysicalLimit] = dict(DEFAULT_PHYSICAL_LIMITS if limits is None else limits)

    def set_limit(self, parameter: str, limit: PhysicalLimit) -> None:
        self.limits[parameter] = limit

    def assess(
        self,
        values: Mapping[str, float],
        timestamp: datetime,
        previous: SensorReading | None = None,
    ) -> QualityAssessment:
        """
        Score ``values`` observed at ``timestamp``.

        Args:
            values: Calibrated values keyed by parameter
            timestamp: Observation time
            previous: The sensor's prior reading, if any

        Returns:
            The worst per-parameter quality with a list of human-readable issues
        """
        quality = ReadingQuality.GOOD
        issues: list[str] = []

        for parameter, value in values.items():
            limit = self.limits.get(parameter)
            if limit is None:
                continue

            if not limit.contains(value):
                issues.append(
                    f"{parameter}={value:g} outside physical range [{limit.min_value:g}, {limit.max_value:g}]"
                )
                quality = ReadingQuality.BAD
                continue

            rate = self._rate_per_minute(parameter, value, timestamp, previous)
            if (
                rate is not None
                and limit.max_change_per_minute is not None
                and rate > limit.max_change_per_minute
            ):
                issues.append(f"{parameter} changed {rate:.3g}/min (max {limit.max_change_per_minute:g}/min)")
                if quality.rank < ReadingQuality.QUESTIONABLE.rank:
                    quality = ReadingQuality.QUESTIONABLE

        if issues:
            logger.debug("Quality %s: %s", quality.value, "; ".join(issues))
        return QualityAssessment(quality=quality, issues=tuple(issues))

    @staticmethod
    def _rate_per_minute(
        parameter: str, value: float, timestamp: datetime, previous: SensorReading | None
    ) -> float | None:
        if previous is None:
            return None
        prior = previous.values.get(parameter)
        if prior is None:
            return None
        elapsed_minutes = (timestamp - previous.timestamp).total_seconds() / 60.0
        if elapsed_minutes < 0:
            return None
        return abs(value - prior) / max(elapsed_minutes, MIN_RATE_WINDOW_MINUTES)
